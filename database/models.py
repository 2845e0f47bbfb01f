"""
ORM tables for the SQL runtime store (PostgreSQL, MySQL 8+, SQLite).

  flows                one row per flow, the whole graph in `definition`
  session_states       execution cursor; `version` backs the compare-and-set
  form_answers         answers per (flow, session), keyed by question step
  custom_field_values  contact custom fields, keyed by phone number
  debug_actions        every action the engine emitted

Columns use the generic JSON type (jsonb on PostgreSQL, TEXT on SQLite) and
string ids, so the same models run on every supported database.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, Index, Integer, JSON, String, UniqueConstraint
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


# ──────────────────────────────────────────────────────────────
#  Flows
# ──────────────────────────────────────────────────────────────

class FlowRow(Base):
    __tablename__ = "flows"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    key: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True)
    name: Mapped[str] = mapped_column(String(256), default="")
    definition: Mapped[Any] = mapped_column(JSON, default=dict)     # Flow.model_dump(mode="json")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# ──────────────────────────────────────────────────────────────
#  Session state
# ──────────────────────────────────────────────────────────────

class SessionStateRow(Base):
    __tablename__ = "session_states"

    session_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    flow_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    current_step_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    bindings: Mapped[Any] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(32), default="active")
    suspended_on: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    resume_step_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    assignee_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    assignee_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_session_states_status", "status"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id, "flow_id": self.flow_id,
            "current_step_id": self.current_step_id,
            "bindings": self.bindings or {}, "status": self.status,
            "suspended_on": self.suspended_on, "resume_step_id": self.resume_step_id,
            "assignee_id": self.assignee_id, "assignee_type": self.assignee_type,
            "version": self.version,
            "created_at": self.created_at, "updated_at": self.updated_at,
        }


# ──────────────────────────────────────────────────────────────
#  Form answers — one row per (flow, session), answers keyed by step
# ──────────────────────────────────────────────────────────────

class FormAnswerRow(Base):
    __tablename__ = "form_answers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    flow_id: Mapped[str] = mapped_column(String(64), nullable=False)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    answers: Mapped[Any] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("flow_id", "session_id", name="uq_form_answers_flow_session"),
    )


# ──────────────────────────────────────────────────────────────
#  Contact custom-field values
# ──────────────────────────────────────────────────────────────

class CustomFieldValueRow(Base):
    __tablename__ = "custom_field_values"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    contact_key: Mapped[str] = mapped_column(String(128), nullable=False)
    field_id: Mapped[str] = mapped_column(String(64), nullable=False)
    value: Mapped[str] = mapped_column(String(2048), default="")

    __table_args__ = (
        UniqueConstraint("contact_key", "field_id", name="uq_custom_field_contact_field"),
    )


# ──────────────────────────────────────────────────────────────
#  Debug action log
# ──────────────────────────────────────────────────────────────

class DebugActionRow(Base):
    __tablename__ = "debug_actions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    action_data: Mapped[Any] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
