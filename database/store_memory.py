"""
InMemoryRuntimeStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database)
  - Full interface compatibility with SqlRuntimeStore
  - Safe within a single event loop (no awaits between read and write)
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import structlog
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Optional

from database.store_base import BaseRuntimeStore
from flows.errors import SessionConflictError
from models.schemas import Action, Flow, Session

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _answers_key(flow_id: str, session_id: str) -> str:
    return f"{flow_id}:{session_id}"


class InMemoryRuntimeStore(BaseRuntimeStore):
    """
    Keeps JSON-compatible dicts, never live model instances, so callers can
    not mutate stored state by holding on to a returned object.
    """

    def __init__(self):
        self._flows: dict[str, dict] = {}                        # id → flow dict
        self._sessions: dict[str, dict] = {}                     # session_id → session dict
        self._answers: dict[str, dict] = {}                      # "flow_id:session_id" → {step_id: answer}
        self._custom_fields: dict[str, dict] = {}                # contact_key → {field_id: value}
        self._actions: dict[str, list[dict]] = defaultdict(list) # session_id → [action dicts]

        # Indexes
        self._flow_key_index: dict[str, str] = {}                # key → flow id
        logger.info("inmemory_store_initialized")

    # ── Flows ─────────────────────────────────────────────

    async def get_flow(self, flow_id_or_key: str) -> Optional[Flow]:
        data = self._flows.get(flow_id_or_key)
        if data is None:
            fid = self._flow_key_index.get(flow_id_or_key)
            data = self._flows.get(fid) if fid else None
        return Flow.model_validate(data) if data else None

    async def save_flow(self, flow: Flow) -> Flow:
        self._flows[flow.id] = flow.model_dump(mode="json")
        if flow.key:
            self._flow_key_index[flow.key] = flow.id
        return flow

    # ── Sessions ──────────────────────────────────────────

    async def get_session(self, session_id: str) -> Optional[Session]:
        data = self._sessions.get(session_id)
        return Session.model_validate(data) if data else None

    async def upsert_session(self, session: Session, expected_version: Optional[int] = None) -> Session:
        existing = self._sessions.get(session.session_id)
        current = existing["version"] if existing else 0
        if expected_version is not None and expected_version != current:
            raise SessionConflictError(session.session_id, expected_version, current)

        data = session.model_copy(
            update={"version": current + 1, "updated_at": _utcnow()},
        ).model_dump(mode="json")
        if existing:
            data["created_at"] = existing["created_at"]
        self._sessions[session.session_id] = data
        return Session.model_validate(data)

    # ── Answers ───────────────────────────────────────────

    async def append_answer(self, flow_id: str, session_id: str, step_id: str,
                            question: str, answer: str) -> None:
        answers = self._answers.setdefault(_answers_key(flow_id, session_id), {})
        answers[step_id] = {
            "question": question,
            "answer": answer,
            "timestamp": _utcnow().isoformat(),
        }

    async def get_answers(self, flow_id: str, session_id: str) -> dict[str, dict[str, Any]]:
        return dict(self._answers.get(_answers_key(flow_id, session_id), {}))

    # ── Custom fields ─────────────────────────────────────

    async def upsert_custom_field_value(self, contact_key: str, field_id: str, value: str) -> None:
        self._custom_fields.setdefault(contact_key, {})[field_id] = value

    async def get_custom_field_values(self, contact_key: str) -> dict[str, str]:
        return dict(self._custom_fields.get(contact_key, {}))

    # ── Action log ────────────────────────────────────────

    async def log_action(self, session_id: str, action: Action) -> None:
        self._actions[session_id].append({
            **action.model_dump(mode="json"),
            "logged_at": _utcnow().isoformat(),
        })

    async def get_actions(self, session_id: str) -> list[dict[str, Any]]:
        return list(self._actions.get(session_id, []))

    # ── Stats (for debugging) ─────────────────────────────

    def stats(self) -> dict[str, int]:
        return {
            "flows": len(self._flows),
            "sessions": len(self._sessions),
            "answers": sum(len(v) for v in self._answers.values()),
            "custom_fields": sum(len(v) for v in self._custom_fields.values()),
            "actions": sum(len(v) for v in self._actions.values()),
        }
