"""
Step Executor — runs a single step against the current bindings.

Each step kind has one handler. A handler never performs I/O: it describes
side effects as Actions and tells the engine where to go next and whether
to keep looping.

    executor = StepExecutor(flow, navigator, session_id="s1")
    result = executor.execute(step, bindings)
    result.actions        → [SendWhatsAppAction(...)]
    result.next_step_id   → "q1"
    result.suspend        → False
"""
from __future__ import annotations

import html
import structlog
from typing import Any, Callable, Mapping, Optional

from config.settings import RuntimeConfig
from flows.navigator import GraphNavigator
from models.schemas import (
    Action, AssignConversationAction, AssignToAdminAction, Flow, InteractiveButton,
    SendEmailAction, SendTemplateAction, SendWhatsAppAction, SendWhatsAppInteractiveAction,
    SendWhatsAppMediaAction, Step, StepKind, SuspendReason, WaitAction, WaitUnit,
)
from utils.conditions import evaluate_condition, to_text
from utils.interpolation import interpolate, interpolate_values

logger = structlog.get_logger()

# WhatsApp Cloud API limit for reply button titles
BUTTON_TITLE_LIMIT = 20


# ──────────────────────────────────────────────────────────────
#  Step Result
# ──────────────────────────────────────────────────────────────

class StepResult:
    """Outcome of executing one step."""

    def __init__(
        self,
        actions: Optional[list[Action]] = None,
        next_step_id: Optional[str] = None,
        suspend: bool = False,
        suspend_reason: Optional[SuspendReason] = None,
        updated_bindings: Optional[dict[str, Any]] = None,
        session_updates: Optional[dict[str, Any]] = None,
        dead_end: bool = False,
    ):
        self.actions = actions or []
        self.next_step_id = next_step_id
        self.suspend = suspend
        self.suspend_reason = suspend_reason
        self.updated_bindings = updated_bindings
        self.session_updates = session_updates or {}
        # True when a branching step found no edge to follow
        self.dead_end = dead_end

    def __repr__(self):
        if self.suspend:
            return f"<StepResult suspend={self.suspend_reason} [{len(self.actions)} actions]>"
        return f"<StepResult next={self.next_step_id} [{len(self.actions)} actions]>"


def build_assignment_email(flow_name: str, session_id: str, bindings: Mapping[str, Any]) -> str:
    """HTML summary of every binding, sent to the admin on assignment."""
    parts = [
        "<h2>New conversation assigned</h2>",
        f"<p><strong>Flow:</strong> {html.escape(flow_name)}</p>",
        f"<p><strong>Session ID:</strong> {html.escape(session_id)}</p>",
        "<hr>",
        "<h3>Contact information:</h3>",
        "<ul>",
    ]
    for key, value in bindings.items():
        parts.append(f"<li><strong>{html.escape(str(key))}:</strong> {html.escape(to_text(value))}</li>")
    parts.append("</ul>")
    return "".join(parts)


# ──────────────────────────────────────────────────────────────
#  Step Executor
# ──────────────────────────────────────────────────────────────

class StepExecutor:

    def __init__(
        self,
        flow: Flow,
        navigator: GraphNavigator,
        session_id: str,
        config: Optional[RuntimeConfig] = None,
    ):
        self.flow = flow
        self.navigator = navigator
        self.session_id = session_id
        self.config = config or RuntimeConfig()
        self._handlers: dict[str, Callable[[Step, Mapping[str, Any]], StepResult]] = {
            StepKind.START.value: self._start,
            StepKind.SEND_MESSAGE.value: self._send_message,
            StepKind.QUESTION_SIMPLE.value: self._question,
            StepKind.QUESTION_MULTIPLE.value: self._question,
            StepKind.WAIT.value: self._wait,
            StepKind.CONDITION.value: self._condition,
            StepKind.TEMPLATE.value: self._template,
            StepKind.ASSIGN_CONVERSATION.value: self._assign_conversation,
        }

    def execute(self, step: Step, bindings: Mapping[str, Any]) -> StepResult:
        handler = self._handlers.get(step.kind)
        if handler is None:
            return self._unhandled(step, bindings)
        return handler(step, bindings)

    @staticmethod
    def _recipient(bindings: Mapping[str, Any]) -> str:
        return to_text(bindings.get("phone", ""))

    def _advance(self, step: Step, actions: Optional[list[Action]] = None, **kwargs) -> StepResult:
        return StepResult(
            actions=actions,
            next_step_id=self.navigator.next_unconditional(step.id),
            **kwargs,
        )

    # ── Handlers ──────────────────────────────────────────────

    def _start(self, step: Step, bindings: Mapping[str, Any]) -> StepResult:
        return self._advance(step)

    def _send_message(self, step: Step, bindings: Mapping[str, Any]) -> StepResult:
        cfg = step.config
        to = self._recipient(bindings)

        if cfg.is_media:
            media_id = cfg.media_id or None
            media_url = cfg.media_url if cfg.media_url and not cfg.media_url.startswith("blob:") else None
            if media_id or media_url:
                media_type = cfg.media_type or (
                    cfg.content_type if cfg.content_type in ("audio", "document") else "image"
                )
                action = SendWhatsAppMediaAction(
                    to=to,
                    media_type=media_type,
                    media_id=media_id,
                    media_url=media_url,
                    caption=interpolate(cfg.caption or cfg.body, bindings),
                    file_name=cfg.file_name or None,
                )
                return self._advance(step, [action])

            logger.warning("media_message_without_source",
                           step_id=step.id, session_id=self.session_id)
            text = interpolate(cfg.caption or cfg.body or "Media message", bindings)
            return self._advance(step, [SendWhatsAppAction(to=to, text=text)])

        text = interpolate(cfg.body, bindings)
        return self._advance(step, [SendWhatsAppAction(to=to, text=text)])

    def _question(self, step: Step, bindings: Mapping[str, Any]) -> StepResult:
        cfg = step.config
        to = self._recipient(bindings)
        text = interpolate(cfg.text, bindings)

        if step.kind == StepKind.QUESTION_MULTIPLE.value and cfg.interactive and cfg.options:
            buttons = [
                InteractiveButton(
                    id=opt.id,
                    title=(opt.label or f"Option {i + 1}")[:BUTTON_TITLE_LIMIT],
                )
                for i, opt in enumerate(cfg.options)
            ]
            action = SendWhatsAppInteractiveAction(to=to, body=text, buttons=buttons)
        else:
            action = SendWhatsAppAction(to=to, text=text)

        return StepResult(
            actions=[action],
            next_step_id=None,
            suspend=True,
            suspend_reason=SuspendReason.QUESTION,
        )

    def _wait(self, step: Step, bindings: Mapping[str, Any]) -> StepResult:
        cfg = step.config
        duration = cfg.duration if cfg.duration is not None else self.config.default_wait_duration
        unit = cfg.unit or WaitUnit(self.config.default_wait_unit)
        next_step_id = self.navigator.next_unconditional(step.id)
        return StepResult(
            actions=[WaitAction(duration=duration, unit=unit, resume_step_id=next_step_id)],
            next_step_id=next_step_id,
            suspend=True,
            suspend_reason=SuspendReason.WAIT,
        )

    def _condition(self, step: Step, bindings: Mapping[str, Any]) -> StepResult:
        cfg = step.config
        met = evaluate_condition(cfg, bindings)
        next_step_id = self.navigator.next_conditional(
            step.id, met, fallback=self.config.condition_fallback,
        )
        logger.info("condition_evaluated",
                    step_id=step.id, variable=cfg.variable,
                    operator=cfg.operator, result=met, next_step_id=next_step_id)
        return StepResult(next_step_id=next_step_id, dead_end=next_step_id is None)

    def _template(self, step: Step, bindings: Mapping[str, Any]) -> StepResult:
        cfg = step.config
        action = SendTemplateAction(
            to=self._recipient(bindings),
            template=cfg.template_name,
            variables=interpolate_values(cfg.variables, bindings),
            language=cfg.language,
        )
        return self._advance(step, [action])

    def _assign_conversation(self, step: Step, bindings: Mapping[str, Any]) -> StepResult:
        cfg = step.config
        assign_to_self = cfg.assign_to_self or not cfg.agent_id

        if assign_to_self:
            assignee_id = self.config.default_agent_id or None
            if assignee_id is None:
                logger.warning("no_default_agent_configured",
                               step_id=step.id, session_id=self.session_id)
        else:
            assignee_id = cfg.agent_id

        admin = cfg.admin or assignee_id or cfg.admin_email or self.config.admin_email
        actions: list[Action] = [AssignToAdminAction(admin=admin)]
        if cfg.send_email:
            actions.append(SendEmailAction(
                to=cfg.admin_email or self.config.admin_email,
                subject=f"New conversation assigned - {self.flow.name}",
                body=build_assignment_email(self.flow.name, self.session_id, bindings),
            ))
        actions.append(AssignConversationAction(
            assignee_id=assignee_id,
            assignee_type=cfg.agent_type,
            session_id=self.session_id,
            assign_to_self=assign_to_self,
            flow_name=self.flow.name,
        ))

        logger.info("conversation_assigned",
                    session_id=self.session_id, assignee_id=assignee_id,
                    assignee_type=cfg.agent_type)
        return self._advance(
            step, actions,
            session_updates={"assignee_id": assignee_id, "assignee_type": cfg.agent_type},
        )

    def _unhandled(self, step: Step, bindings: Mapping[str, Any]) -> StepResult:
        logger.warning("unknown_step_kind",
                       step_id=step.id, kind=step.kind, flow_id=self.flow.id)
        return self._advance(step)
