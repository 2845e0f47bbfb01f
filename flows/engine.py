"""
Flow Execution Engine — walks a flow graph against a persisted session.

Two layers:

  FlowExecution   one flow + one session for the duration of a single call.
                  Runs the step loop, persists the cursor, stops at
                  questions and waits.
  FlowEngine      the service callers use. Loads flows and sessions through
                  the injected stores, serializes calls per session id and
                  checks that a session is in the right state to resume.

Lifecycle of a session:

  (no row) ──start──▶ active ──question──▶ active, suspended_on=question
                        │                        │ resume(answer)
                        │                        ▼
                        ├──wait──▶ active, suspended_on=wait ──resume_after_wait──▶ …
                        │
                        └──graph exhausted──▶ completed

  cancel() moves any non-completed session to cancelled.
  A call that runs more than runtime.max_steps_per_call steps stops with
  StepLimitExceededError, cursor on the step it did not run.

The engine never performs side effects; it returns Actions in execution
order and the caller dispatches them.

Usage:
    engine = FlowEngine.from_store(store)
    actions = await engine.start(flow, "s1", {"phone": "+5491100000000", "name": "Ana"})
    actions = await engine.resume("s1", "q_age", "34")
"""
from __future__ import annotations

import asyncio
import structlog
import weakref
from typing import Any, Mapping, Optional

from config.settings import RuntimeConfig, get_settings
from database.store_base import (
    BaseActionLog, BaseAnswerLog, BaseCustomFieldStore, BaseFlowStore,
    BaseRuntimeStore, BaseSessionStore,
)
from flows.errors import (
    FlowNotFoundError, FlowRuntimeError, InvalidFlowError, MissingStartStepError,
    SessionConflictError, SessionNotResumableError, SessionPersistenceError,
    StepLimitExceededError, StepNotFoundError,
)
from flows.executor import StepExecutor
from flows.navigator import GraphNavigator
from models.schemas import (
    Action, Flow, QuestionOption, Session, SessionStatus, Step, StepKind, SuspendReason,
)
from utils.conditions import to_text

logger = structlog.get_logger()

_QUESTION_KINDS = (StepKind.QUESTION_SIMPLE.value, StepKind.QUESTION_MULTIPLE.value)


def match_option(options: list[QuestionOption], answer: str) -> Optional[str]:
    """
    Map a free-text answer to an option id: exact id, label (case-insensitive)
    or 1-based position, in that order.
    """
    text = (answer or "").strip()
    if not text or not options:
        return None
    for opt in options:
        if text == opt.id:
            return opt.id
    for opt in options:
        if opt.label and text.casefold() == opt.label.strip().casefold():
            return opt.id
    if text.isdigit() and 1 <= int(text) <= len(options):
        return options[int(text) - 1].id
    return None


# ──────────────────────────────────────────────────────────────
#  Per-session serialization
# ──────────────────────────────────────────────────────────────

class SessionLocks:
    """
    One asyncio.Lock per session id. Locks are held weakly and disappear
    once no call is using them.
    """

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


_default_locks = SessionLocks()


# ──────────────────────────────────────────────────────────────
#  Flow Execution — one call against one session
# ──────────────────────────────────────────────────────────────

class FlowExecution:

    def __init__(
        self,
        flow: Flow,
        session: Session,
        sessions: BaseSessionStore,
        answers: Optional[BaseAnswerLog] = None,
        custom_fields: Optional[BaseCustomFieldStore] = None,
        action_log: Optional[BaseActionLog] = None,
        config: Optional[RuntimeConfig] = None,
    ):
        starts = flow.start_steps()
        if not starts:
            raise MissingStartStepError(flow.id)
        if len(starts) > 1:
            raise InvalidFlowError(
                f"Flow '{flow.id}' has {len(starts)} start steps, expected exactly one", flow.id,
            )

        self.flow = flow
        self.session = session
        self.sessions = sessions
        self.answers = answers
        self.custom_fields = custom_fields
        self.action_log = action_log
        self.config = config or RuntimeConfig()
        self.start_step_id = starts[0].id

        self._steps: dict[str, Step] = {s.id: s for s in flow.steps}
        self.navigator = GraphNavigator(flow.connections)
        self.executor = StepExecutor(flow, self.navigator, session.session_id, self.config)

    @property
    def bindings(self) -> dict[str, Any]:
        return dict(self.session.bindings)

    def _get_step(self, step_id: str) -> Step:
        step = self._steps.get(step_id)
        if step is None:
            raise StepNotFoundError(step_id, self.flow.id, self.session.session_id)
        return step

    # ── Step loop ─────────────────────────────────────────────

    async def execute_from_step(self, step_id: str) -> list[Action]:
        """Run from `step_id` until a question, a wait or the end of the graph."""
        logger.info("flow_execution_started",
                    flow_id=self.flow.id, flow_name=self.flow.name,
                    session_id=self.session.session_id, step_id=step_id,
                    steps=len(self._steps))

        actions: list[Action] = []
        bindings: dict[str, Any] = dict(self.session.bindings)
        current: Optional[str] = step_id
        last_step: Optional[Step] = None
        dead_end = False
        steps_run = 0
        limit = self.config.max_steps_per_call

        while current:
            step = self._get_step(current)
            if steps_run >= limit:
                await self._save(current_step_id=step.id, bindings=bindings,
                                 suspended_on=None, resume_step_id=None)
                logger.error("step_limit_exceeded",
                             flow_id=self.flow.id, session_id=self.session.session_id,
                             step_id=step.id, limit=limit, actions=len(actions))
                raise StepLimitExceededError(step.id, limit, self.flow.id, self.session.session_id)
            steps_run += 1
            last_step = step
            logger.debug("step_executing", session_id=self.session.session_id,
                         step_id=step.id, kind=step.kind, label=step.label)

            if self.config.persist_before_step:
                await self._save(current_step_id=step.id, bindings=bindings,
                                 suspended_on=None, resume_step_id=None)

            result = self.executor.execute(step, bindings)
            actions.extend(result.actions)
            for action in result.actions:
                await self._log_action(action)

            if result.updated_bindings:
                bindings = {**bindings, **result.updated_bindings}
            if result.session_updates:
                self.session = self.session.model_copy(update=result.session_updates)

            if result.suspend:
                resume_at = result.next_step_id if result.suspend_reason == SuspendReason.WAIT else None
                await self._save(current_step_id=step.id, bindings=bindings,
                                 suspended_on=result.suspend_reason, resume_step_id=resume_at)
                logger.info("flow_suspended",
                            session_id=self.session.session_id, step_id=step.id,
                            reason=result.suspend_reason.value if result.suspend_reason else None,
                            resume_step_id=resume_at, actions=len(actions))
                return actions

            current = result.next_step_id
            dead_end = result.dead_end
            # cursor names the last step whose actions were emitted
            if current and not self.config.persist_before_step:
                await self._save(current_step_id=step.id, bindings=bindings,
                                 suspended_on=None, resume_step_id=None)

        if dead_end and last_step is not None:
            logger.warning("flow_fell_off_graph",
                           session_id=self.session.session_id, step_id=last_step.id,
                           kind=last_step.kind)
        await self.complete(bindings)
        return actions

    async def complete(self, bindings: Optional[Mapping[str, Any]] = None) -> Session:
        await self._save(
            current_step_id=None,
            bindings=dict(bindings if bindings is not None else self.session.bindings),
            status=SessionStatus.COMPLETED,
            suspended_on=None,
            resume_step_id=None,
        )
        logger.info("flow_completed", flow_id=self.flow.id, session_id=self.session.session_id)
        return self.session

    # ── Resumption after an answer ────────────────────────────

    async def continue_from_question(
        self, step_id: str, answer: str, option_id: Optional[str] = None,
    ) -> list[Action]:
        """Record the answer to question `step_id`, pick the branch and keep running."""
        step = self._get_step(step_id)
        if step.kind not in _QUESTION_KINDS:
            raise SessionNotResumableError(
                self.session.session_id, f"step '{step_id}' is a {step.kind} step, not a question",
            )

        cfg = step.config
        key = cfg.store_key or step.id
        bindings = {**self.session.bindings, key: answer}
        self.session = self.session.model_copy(update={"bindings": bindings})
        logger.info("question_answered",
                    session_id=self.session.session_id, step_id=step.id, store_key=key)

        await self._record_answer(step, answer)
        if cfg.save_to_field_id:
            await self._save_custom_field(cfg.save_to_field_id, answer, bindings)

        if step.kind == StepKind.QUESTION_MULTIPLE.value:
            option = option_id or match_option(cfg.options, answer)
            next_step_id = self.navigator.next_by_option(step.id, option)
            logger.debug("option_resolved", step_id=step.id, option_id=option, next_step_id=next_step_id)
        else:
            next_step_id = self.navigator.next_unconditional(step.id)

        if next_step_id:
            return await self.execute_from_step(next_step_id)

        await self.complete(bindings)
        return []

    # ── Persistence and side collaborators ────────────────────

    async def _save(self, **fields: Any) -> None:
        candidate = self.session.model_copy(update=fields)
        try:
            self.session = await self.sessions.upsert_session(
                candidate, expected_version=self.session.version,
            )
        except SessionConflictError:
            raise
        except Exception as e:
            if self.config.persistence_errors == "raise":
                raise SessionPersistenceError(self.session.session_id, str(e)) from e
            logger.error("session_persist_failed",
                         session_id=self.session.session_id, error=str(e))
            self.session = candidate

    async def _log_action(self, action: Action) -> None:
        logger.debug("action_emitted", session_id=self.session.session_id, action_type=action.type)
        if self.action_log is None:
            return
        try:
            await self.action_log.log_action(self.session.session_id, action)
        except Exception as e:
            logger.error("action_log_failed", session_id=self.session.session_id, error=str(e))

    async def _record_answer(self, step: Step, answer: str) -> None:
        if self.answers is None:
            return
        try:
            await self.answers.append_answer(
                self.flow.id, self.session.session_id, step.id, step.config.text, answer,
            )
        except Exception as e:
            logger.error("answer_log_failed",
                         session_id=self.session.session_id, step_id=step.id, error=str(e))

    async def _save_custom_field(self, field_id: str, value: str, bindings: Mapping[str, Any]) -> None:
        if self.custom_fields is None:
            return
        contact_key = to_text(bindings.get("phone"))
        if not contact_key:
            logger.warning("custom_field_skipped_no_phone",
                           session_id=self.session.session_id, field_id=field_id)
            return
        try:
            await self.custom_fields.upsert_custom_field_value(contact_key, field_id, value)
        except Exception as e:
            logger.error("custom_field_save_failed",
                         session_id=self.session.session_id, field_id=field_id, error=str(e))


# ──────────────────────────────────────────────────────────────
#  Flow Engine — public entry points
# ──────────────────────────────────────────────────────────────

class FlowEngine:

    def __init__(
        self,
        sessions: BaseSessionStore,
        flows: Optional[BaseFlowStore] = None,
        answers: Optional[BaseAnswerLog] = None,
        custom_fields: Optional[BaseCustomFieldStore] = None,
        action_log: Optional[BaseActionLog] = None,
        config: Optional[RuntimeConfig] = None,
        locks: Optional[SessionLocks] = None,
    ):
        self.sessions = sessions
        self.flows = flows
        self.answers = answers
        self.custom_fields = custom_fields
        self.action_log = action_log
        self.config = config or get_settings().runtime
        self._locks = locks or _default_locks

    @classmethod
    def from_store(cls, store: BaseRuntimeStore, **kwargs: Any) -> "FlowEngine":
        """Use one backend for every collaborator."""
        return cls(
            sessions=store, flows=store, answers=store,
            custom_fields=store, action_log=store, **kwargs,
        )

    def _execution(self, flow: Flow, session: Session) -> FlowExecution:
        return FlowExecution(
            flow, session, self.sessions,
            answers=self.answers, custom_fields=self.custom_fields,
            action_log=self.action_log, config=self.config,
        )

    async def _load_flow(self, flow_ref: str) -> Flow:
        if self.flows is None:
            raise FlowRuntimeError(f"No flow store configured to load flow '{flow_ref}'")
        flow = await self.flows.get_flow(flow_ref)
        if flow is None:
            raise FlowNotFoundError(flow_ref)
        return flow

    async def get_session(self, session_id: str) -> Optional[Session]:
        return await self.sessions.get_session(session_id)

    # ── Start ─────────────────────────────────────────────────

    async def start(
        self, flow: Flow, session_id: str, initial_bindings: Optional[Mapping[str, Any]] = None,
    ) -> list[Action]:
        """
        Run `flow` from its start step for `session_id`. An existing session
        row for the same id is restarted with the new bindings.
        """
        async with self._locks.get(session_id):
            existing = await self.sessions.get_session(session_id)
            fresh = {
                "flow_id": flow.id,
                "bindings": dict(initial_bindings or {}),
                "status": SessionStatus.ACTIVE,
                "current_step_id": None,
                "suspended_on": None,
                "resume_step_id": None,
            }
            if existing:
                logger.info("session_restarted", session_id=session_id,
                            previous_status=existing.status.value, flow_id=flow.id)
                session = existing.model_copy(update=fresh)
            else:
                session = Session(session_id=session_id, **fresh)

            execution = self._execution(flow, session)
            return await execution.execute_from_step(execution.start_step_id)

    async def start_by_key(
        self, flow_ref: str, session_id: str, initial_bindings: Optional[Mapping[str, Any]] = None,
    ) -> list[Action]:
        """Load a flow by id or key through the flow store, then start it."""
        flow = await self._load_flow(flow_ref)
        return await self.start(flow, session_id, initial_bindings)

    # ── Resume ────────────────────────────────────────────────

    async def _resumable_session(self, session_id: str, reason: SuspendReason) -> Session:
        session = await self.sessions.get_session(session_id)
        if session is None:
            raise SessionNotResumableError(session_id, "no session state, start the flow first")
        if session.status == SessionStatus.COMPLETED:
            raise SessionNotResumableError(session_id, "session has already completed")
        if session.status == SessionStatus.CANCELLED:
            raise SessionNotResumableError(session_id, "session was cancelled")
        if session.suspended_on != reason:
            waiting = session.suspended_on.value if session.suspended_on else "nothing"
            raise SessionNotResumableError(
                session_id, f"session is waiting on {waiting}, not a {reason.value}",
            )
        return session

    async def resume(
        self, session_id: str, step_id: Optional[str], answer: str, option_id: Optional[str] = None,
    ) -> list[Action]:
        """
        Feed the contact's answer to the question the session is waiting on.
        `step_id` must match the session cursor when given.
        """
        async with self._locks.get(session_id):
            session = await self._resumable_session(session_id, SuspendReason.QUESTION)
            if step_id and step_id != session.current_step_id:
                raise SessionNotResumableError(
                    session_id,
                    f"waiting for an answer to '{session.current_step_id}', got one for '{step_id}'",
                )

            flow = await self._load_flow(session.flow_id)
            execution = self._execution(flow, session)
            return await execution.continue_from_question(session.current_step_id, answer, option_id)

    async def resume_after_wait(self, session_id: str) -> list[Action]:
        """Scheduler callback once a wait step's delay has elapsed."""
        async with self._locks.get(session_id):
            session = await self._resumable_session(session_id, SuspendReason.WAIT)
            flow = await self._load_flow(session.flow_id)
            execution = self._execution(flow, session)
            if session.resume_step_id:
                return await execution.execute_from_step(session.resume_step_id)
            await execution.complete()
            return []

    # ── Cancel ────────────────────────────────────────────────

    async def cancel(self, session_id: str) -> Session:
        async with self._locks.get(session_id):
            session = await self.sessions.get_session(session_id)
            if session is None:
                raise SessionNotResumableError(session_id, "no session state to cancel")
            if session.status == SessionStatus.CANCELLED:
                return session
            if session.status == SessionStatus.COMPLETED:
                raise SessionNotResumableError(session_id, "session has already completed")

            cancelled = session.model_copy(update={
                "status": SessionStatus.CANCELLED,
                "current_step_id": None,
                "suspended_on": None,
                "resume_step_id": None,
            })
            stored = await self.sessions.upsert_session(cancelled, expected_version=session.version)
            logger.info("session_cancelled", session_id=session_id, flow_id=session.flow_id)
            return stored
