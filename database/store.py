"""
SqlRuntimeStore — Portable SQL persistence for PostgreSQL, MySQL, SQLite.

Session writes use a compare-and-set on the `version` column, so two
workers racing on the same session id cannot silently overwrite each other:
the loser gets a SessionConflictError and may retry.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from database.models import (
    CustomFieldValueRow, DebugActionRow, FlowRow, FormAnswerRow, SessionStateRow,
)
from database.session import get_db_session
from database.store_base import BaseRuntimeStore
from flows.errors import SessionConflictError
from models.schemas import Action, Flow, Session

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlRuntimeStore(BaseRuntimeStore):
    """
    Persistent runtime store backed by any SQLAlchemy-supported database.
    Works with PostgreSQL, MySQL 8+, and SQLite.
    """

    # ── Flows ──────────────────────────────────────────────

    async def get_flow(self, flow_id_or_key: str) -> Optional[Flow]:
        async with get_db_session() as db:
            stmt = select(FlowRow).where(
                or_(FlowRow.id == flow_id_or_key, FlowRow.key == flow_id_or_key)
            )
            result = await db.execute(stmt)
            rows = list(result.scalars())
        if not rows:
            return None
        # An id match wins over a key match
        row = next((r for r in rows if r.id == flow_id_or_key), rows[0])
        return Flow.model_validate(row.definition)

    async def save_flow(self, flow: Flow) -> Flow:
        async with get_db_session() as db:
            row = await db.get(FlowRow, flow.id)
            definition = flow.model_dump(mode="json")
            if row:
                row.key = flow.key or None
                row.name = flow.name
                row.definition = definition
            else:
                db.add(FlowRow(id=flow.id, key=flow.key or None, name=flow.name, definition=definition))
        return flow

    # ── Sessions ───────────────────────────────────────────

    async def get_session(self, session_id: str) -> Optional[Session]:
        async with get_db_session() as db:
            row = await db.get(SessionStateRow, session_id)
            return Session.model_validate(row.to_dict()) if row else None

    async def upsert_session(self, session: Session, expected_version: Optional[int] = None) -> Session:
        now = _utcnow()
        values = {
            "flow_id": session.flow_id,
            "current_step_id": session.current_step_id,
            "bindings": session.bindings,
            "status": session.status.value,
            "suspended_on": session.suspended_on.value if session.suspended_on else None,
            "resume_step_id": session.resume_step_id,
            "assignee_id": session.assignee_id,
            "assignee_type": session.assignee_type,
            "updated_at": now,
        }

        async with get_db_session() as db:
            row = await db.get(SessionStateRow, session.session_id)
            current = row.version if row else 0
            if expected_version is not None and expected_version != current:
                raise SessionConflictError(session.session_id, expected_version, current)

            if row is None:
                row = SessionStateRow(
                    session_id=session.session_id, version=1,
                    created_at=session.created_at, **values,
                )
                db.add(row)
                try:
                    await db.flush()
                except IntegrityError as e:
                    # another writer inserted the same session id first
                    raise SessionConflictError(session.session_id, current, 1) from e
                stored = row.to_dict()
            else:
                stmt = (
                    update(SessionStateRow)
                    .where(SessionStateRow.session_id == session.session_id)
                    .where(SessionStateRow.version == current)
                    .values(version=current + 1, **values)
                )
                result = await db.execute(stmt)
                if result.rowcount == 0:
                    raise SessionConflictError(session.session_id, current, current + 1)
                stored = {**row.to_dict(), **values, "version": current + 1}

        return Session.model_validate(stored)

    # ── Answers ────────────────────────────────────────────

    async def append_answer(self, flow_id: str, session_id: str, step_id: str,
                            question: str, answer: str) -> None:
        entry = {"question": question, "answer": answer, "timestamp": _utcnow().isoformat()}
        async with get_db_session() as db:
            stmt = select(FormAnswerRow).where(
                FormAnswerRow.flow_id == flow_id, FormAnswerRow.session_id == session_id,
            )
            row = (await db.execute(stmt)).scalar_one_or_none()
            if row:
                # Reassign so the JSON column is flagged dirty
                row.answers = {**(row.answers or {}), step_id: entry}
            else:
                db.add(FormAnswerRow(flow_id=flow_id, session_id=session_id, answers={step_id: entry}))

    async def get_answers(self, flow_id: str, session_id: str) -> dict[str, dict[str, Any]]:
        async with get_db_session() as db:
            stmt = select(FormAnswerRow).where(
                FormAnswerRow.flow_id == flow_id, FormAnswerRow.session_id == session_id,
            )
            row = (await db.execute(stmt)).scalar_one_or_none()
            return dict(row.answers or {}) if row else {}

    # ── Custom fields ──────────────────────────────────────

    async def upsert_custom_field_value(self, contact_key: str, field_id: str, value: str) -> None:
        async with get_db_session() as db:
            stmt = select(CustomFieldValueRow).where(
                CustomFieldValueRow.contact_key == contact_key,
                CustomFieldValueRow.field_id == field_id,
            )
            row = (await db.execute(stmt)).scalar_one_or_none()
            if row:
                row.value = value
            else:
                db.add(CustomFieldValueRow(contact_key=contact_key, field_id=field_id, value=value))

    async def get_custom_field_values(self, contact_key: str) -> dict[str, str]:
        async with get_db_session() as db:
            stmt = select(CustomFieldValueRow).where(CustomFieldValueRow.contact_key == contact_key)
            result = await db.execute(stmt)
            return {r.field_id: r.value for r in result.scalars()}

    # ── Action log ─────────────────────────────────────────

    async def log_action(self, session_id: str, action: Action) -> None:
        async with get_db_session() as db:
            db.add(DebugActionRow(
                session_id=session_id,
                action_type=action.type,
                action_data=action.model_dump(mode="json"),
            ))

    async def get_actions(self, session_id: str) -> list[dict[str, Any]]:
        async with get_db_session() as db:
            stmt = (
                select(DebugActionRow)
                .where(DebugActionRow.session_id == session_id)
                .order_by(DebugActionRow.created_at)
            )
            result = await db.execute(stmt)
            return [
                {**(r.action_data or {}), "logged_at": r.created_at.isoformat()}
                for r in result.scalars()
            ]
