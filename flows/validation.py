"""
Static checks for a flow graph before it is published or executed.

validate_flow() never raises; it returns every problem found. Errors make
the flow unsafe to run, warnings flag graphs that run but probably do not
do what the author meant.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Optional

from flows.navigator import GraphNavigator
from models.schemas import Flow, StepKind
from utils.conditions import OPERATORS

ERROR = "error"
WARNING = "warning"


@dataclass(frozen=True)
class FlowIssue:
    severity: str
    message: str
    step_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity == ERROR


def has_errors(issues: list[FlowIssue]) -> bool:
    return any(i.is_error for i in issues)


def _reachable(flow: Flow, start_id: str, navigator: GraphNavigator) -> set[str]:
    seen = {start_id}
    queue = deque([start_id])
    while queue:
        for conn in navigator.outgoing(queue.popleft()):
            if conn.to_step_id not in seen:
                seen.add(conn.to_step_id)
                queue.append(conn.to_step_id)
    return seen


_PAUSING_KINDS = (StepKind.QUESTION_SIMPLE.value, StepKind.QUESTION_MULTIPLE.value, StepKind.WAIT.value)


def _unpaused_loop_steps(flow: Flow) -> list[str]:
    """Steps that sit on a cycle which passes no question or wait step."""
    running = {s.id for s in flow.steps if s.kind not in _PAUSING_KINDS}
    successors: dict[str, set[str]] = {sid: set() for sid in running}
    for conn in flow.connections:
        if conn.from_step_id in running and conn.to_step_id in running:
            successors[conn.from_step_id].add(conn.to_step_id)

    looping = []
    for step_id in sorted(running):
        seen: set[str] = set()
        queue = deque(successors[step_id])
        while queue:
            sid = queue.popleft()
            if sid == step_id:
                looping.append(step_id)
                break
            if sid not in seen:
                seen.add(sid)
                queue.extend(successors[sid])
    return looping


def validate_flow(flow: Flow) -> list[FlowIssue]:
    issues: list[FlowIssue] = []
    step_ids = {s.id for s in flow.steps}
    navigator = GraphNavigator(flow.connections)

    starts = flow.start_steps()
    if not starts:
        issues.append(FlowIssue(ERROR, "flow has no start step"))
    elif len(starts) > 1:
        for s in starts[1:]:
            issues.append(FlowIssue(ERROR, "flow has more than one start step", s.id))

    for conn in flow.connections:
        if conn.from_step_id not in step_ids:
            issues.append(FlowIssue(ERROR, f"connection '{conn.id}' starts at unknown step '{conn.from_step_id}'"))
        if conn.to_step_id not in step_ids:
            issues.append(FlowIssue(
                ERROR, f"connection '{conn.id}' points to unknown step '{conn.to_step_id}'", conn.from_step_id,
            ))

    if len(starts) == 1:
        reachable = _reachable(flow, starts[0].id, navigator)
        for step in flow.steps:
            if step.id not in reachable:
                issues.append(FlowIssue(WARNING, "step is not reachable from the start step", step.id))

    for step in flow.steps:
        kind, cfg = step.kind, step.config

        if kind == StepKind.SEND_MESSAGE.value:
            if not cfg.is_media and not cfg.body.strip():
                issues.append(FlowIssue(ERROR, "message text is empty", step.id))
            elif cfg.is_media and not (cfg.media_id or cfg.media_url or cfg.caption or cfg.body):
                issues.append(FlowIssue(ERROR, "media message has no media and no caption", step.id))

        elif kind in (StepKind.QUESTION_SIMPLE.value, StepKind.QUESTION_MULTIPLE.value):
            if not cfg.text.strip():
                issues.append(FlowIssue(ERROR, "question text is empty", step.id))

        elif kind == StepKind.CONDITION.value:
            if not cfg.variable:
                issues.append(FlowIssue(ERROR, "condition has no variable", step.id))
            if cfg.operator not in OPERATORS:
                issues.append(FlowIssue(ERROR, f"unknown condition operator '{cfg.operator}'", step.id))

        if kind == StepKind.QUESTION_MULTIPLE.value:
            keyed = {c.option_key for c in navigator.outgoing(step.id) if c.option_key}
            for opt in cfg.options:
                if opt.id not in keyed:
                    issues.append(FlowIssue(WARNING, f"option '{opt.id}' has no matching connection", step.id))

        if not step.is_branching:
            plain = [c for c in navigator.outgoing(step.id) if c.is_unconditional]
            if len(plain) > 1:
                issues.append(FlowIssue(
                    WARNING,
                    f"{len(plain)} unconditional connections, only the first ('{plain[0].to_step_id}') is followed",
                    step.id,
                ))

    looping = _unpaused_loop_steps(flow)
    if looping:
        issues.append(FlowIssue(
            WARNING,
            f"steps {', '.join(looping)} form a loop with no question or wait step",
            looping[0],
        ))

    return issues
