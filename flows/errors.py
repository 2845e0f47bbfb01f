"""Error hierarchy for flow execution."""
from __future__ import annotations


class FlowRuntimeError(Exception):
    """Base exception for all flow runtime operations."""

    def __init__(self, message: str, session_id: str = "", retryable: bool = False):
        self.session_id = session_id
        self.retryable = retryable
        super().__init__(message)


# ── Definition errors: fatal for the execution call ──────────

class FlowDefinitionError(FlowRuntimeError):
    def __init__(self, message: str, flow_id: str = "", session_id: str = ""):
        self.flow_id = flow_id
        super().__init__(message, session_id)


class MissingStartStepError(FlowDefinitionError):
    def __init__(self, flow_id: str = ""):
        super().__init__(f"Flow '{flow_id}' has no start step", flow_id)


class InvalidFlowError(FlowDefinitionError):
    pass


class StepNotFoundError(FlowDefinitionError):
    def __init__(self, step_id: str, flow_id: str = "", session_id: str = ""):
        self.step_id = step_id
        super().__init__(f"Step '{step_id}' not found in flow '{flow_id}'", flow_id, session_id)


class StepLimitExceededError(FlowDefinitionError):
    """A single call ran more steps than allowed, usually a loop with no question or wait."""

    def __init__(self, step_id: str, limit: int, flow_id: str = "", session_id: str = ""):
        self.step_id = step_id
        self.limit = limit
        super().__init__(
            f"Flow '{flow_id}' ran {limit} steps without pausing, stopped at '{step_id}'",
            flow_id, session_id,
        )


class InvalidStepConfigError(FlowDefinitionError):
    def __init__(self, step_id: str, kind: str, detail: str = ""):
        self.step_id = step_id
        self.kind = kind
        super().__init__(f"Invalid config for {kind} step '{step_id}': {detail}")


class FlowNotFoundError(FlowRuntimeError):
    def __init__(self, flow_ref: str):
        self.flow_ref = flow_ref
        super().__init__(f"Flow '{flow_ref}' not found")


# ── Session errors ───────────────────────────────────────────

class SessionNotResumableError(FlowRuntimeError):
    """The session is not waiting for the input it was given."""

    def __init__(self, session_id: str, reason: str):
        self.reason = reason
        super().__init__(f"Session '{session_id}' cannot be resumed: {reason}", session_id)


class SessionConflictError(FlowRuntimeError):
    """Another writer updated the session first. Safe to retry."""

    def __init__(self, session_id: str, expected_version: int, actual_version: int):
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Session '{session_id}' was modified concurrently "
            f"(expected v{expected_version}, found v{actual_version})",
            session_id, retryable=True,
        )


class SessionPersistenceError(FlowRuntimeError):
    def __init__(self, session_id: str, detail: str = ""):
        super().__init__(f"Failed to persist session '{session_id}': {detail}", session_id, retryable=True)
