"""
Abstract runtime stores — the boundary between the flow engine and storage.

The engine depends on five narrow interfaces, injected at construction:

  - FlowStore         read flow definitions by id or key
  - SessionStore      durable execution cursor, optimistic version check
  - AnswerLog         question answers per (flow, session), best-effort
  - CustomFieldStore  contact custom-field values, best-effort
  - ActionLog         debug trail of emitted actions, best-effort

Implementations:
  - SqlRuntimeStore      (PostgreSQL / MySQL / SQLite via SQLAlchemy)
  - InMemoryRuntimeStore (dict-based, single-process, no persistence)
  - FileRuntimeStore     (JSON files on disk, single-process, durable)

Each backend implements all five through BaseRuntimeStore, so one instance
can be passed for every collaborator.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from models.schemas import Action, Flow, Session


class BaseFlowStore(ABC):

    @abstractmethod
    async def get_flow(self, flow_id_or_key: str) -> Optional[Flow]:
        ...

    @abstractmethod
    async def save_flow(self, flow: Flow) -> Flow:
        ...


class BaseSessionStore(ABC):

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    async def upsert_session(self, session: Session, expected_version: Optional[int] = None) -> Session:
        """
        Write the session and return the stored copy with its version bumped.
        When `expected_version` is given and the stored version differs,
        raise SessionConflictError without writing.
        """
        ...


class BaseAnswerLog(ABC):

    @abstractmethod
    async def append_answer(self, flow_id: str, session_id: str, step_id: str,
                            question: str, answer: str) -> None:
        ...

    @abstractmethod
    async def get_answers(self, flow_id: str, session_id: str) -> dict[str, dict[str, Any]]:
        ...


class BaseCustomFieldStore(ABC):

    @abstractmethod
    async def upsert_custom_field_value(self, contact_key: str, field_id: str, value: str) -> None:
        ...

    @abstractmethod
    async def get_custom_field_values(self, contact_key: str) -> dict[str, str]:
        ...


class BaseActionLog(ABC):

    @abstractmethod
    async def log_action(self, session_id: str, action: Action) -> None:
        ...

    @abstractmethod
    async def get_actions(self, session_id: str) -> list[dict[str, Any]]:
        ...


class BaseRuntimeStore(
    BaseFlowStore, BaseSessionStore, BaseAnswerLog, BaseCustomFieldStore, BaseActionLog,
):
    """Interface that all runtime store backends implement."""
