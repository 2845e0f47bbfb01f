"""
Flow runtime — executes WhatsApp automation flows step by step.

Quick start:
  from flows import FlowEngine, load_flow
  from database import InMemoryRuntimeStore

  store = InMemoryRuntimeStore()
  engine = FlowEngine.from_store(store)
  actions = await engine.start(load_flow(row), "s1", {"phone": "+5491100000000"})
"""
from flows.errors import (
    FlowRuntimeError, FlowDefinitionError, MissingStartStepError, InvalidFlowError,
    StepNotFoundError, StepLimitExceededError, InvalidStepConfigError, FlowNotFoundError,
    SessionNotResumableError, SessionConflictError, SessionPersistenceError,
)
from flows.catalog import load_flow, make_step, parse_step, parse_connection, parse_step_config
from flows.navigator import GraphNavigator, first_unconditional
from flows.executor import StepExecutor, StepResult
from flows.engine import FlowEngine, FlowExecution, SessionLocks, match_option
from flows.validation import FlowIssue, validate_flow, has_errors

__all__ = [
    # Errors
    "FlowRuntimeError", "FlowDefinitionError", "MissingStartStepError", "InvalidFlowError",
    "StepNotFoundError", "StepLimitExceededError", "InvalidStepConfigError", "FlowNotFoundError",
    "SessionNotResumableError", "SessionConflictError", "SessionPersistenceError",
    # Loading
    "load_flow", "make_step", "parse_step", "parse_connection", "parse_step_config",
    # Execution
    "GraphNavigator", "first_unconditional", "StepExecutor", "StepResult",
    "FlowEngine", "FlowExecution", "SessionLocks", "match_option",
    # Validation
    "FlowIssue", "validate_flow", "has_errors",
]
