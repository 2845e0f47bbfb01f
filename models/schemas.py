"""
Core data models for the flow runtime.
These are the universal types shared across all modules: the step catalog,
flow graphs, sessions and the actions the engine hands back to callers.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class StepKind(str, Enum):
    START = "start"
    SEND_MESSAGE = "send_message"
    QUESTION_SIMPLE = "question_simple"
    QUESTION_MULTIPLE = "question_multiple"
    WAIT = "wait"
    CONDITION = "condition"
    TEMPLATE = "template"
    ASSIGN_CONVERSATION = "assign_conversation"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SuspendReason(str, Enum):
    QUESTION = "question"
    WAIT = "wait"


class WaitUnit(str, Enum):
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


# ──────────────────────────────────────────────────────────────
#  Step Catalog — one typed config per step kind
#  Builder payloads use camelCase (storeKey, questionText, ...),
#  so every config accepts both spellings.
# ──────────────────────────────────────────────────────────────

class _StepConfigBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class StartConfig(_StepConfigBase):
    kind: Literal["start"] = "start"


class SendMessageConfig(_StepConfigBase):
    kind: Literal["send_message"] = "send_message"
    message: str = ""
    text: str = ""
    content_type: str = Field(default="text", alias="type")   # text | media | audio | document
    message_type: str = ""                                    # legacy: text | media | multimedia
    media_id: str = ""
    media_url: str = ""
    media_type: str = ""                                      # image | video | audio | document
    caption: str = ""
    file_name: str = ""

    @property
    def body(self) -> str:
        return self.message or self.text

    @property
    def is_media(self) -> bool:
        return (
            self.content_type in ("media", "audio", "document")
            or self.message_type in ("media", "multimedia")
        )


class QuestionOption(BaseModel):
    id: str
    label: str = ""

    @model_validator(mode="before")
    @classmethod
    def _title_as_label(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("label") and data.get("title"):
            data = {**data, "label": data["title"]}
        return data


class QuestionConfig(_StepConfigBase):
    kind: Literal["question_simple", "question_multiple"] = "question_simple"
    question_text: str = ""
    question: str = ""                        # legacy field name
    store_key: str = ""                       # binding name the answer is stored under
    save_to_field_id: str = ""                # custom field to mirror the answer into
    options: list[QuestionOption] = []
    interactive: bool = False                 # render options as reply buttons

    @property
    def text(self) -> str:
        return self.question_text or self.question


class WaitConfig(_StepConfigBase):
    kind: Literal["wait"] = "wait"
    duration: Optional[Union[int, float]] = None
    unit: Optional[WaitUnit] = None


class ConditionConfig(_StepConfigBase):
    kind: Literal["condition"] = "condition"
    variable: str = ""
    operator: str = "equals"                  # equals | contains | greater_than | less_than
    value: Any = ""


class TemplateConfig(_StepConfigBase):
    kind: Literal["template"] = "template"
    template_name: str = ""
    variables: dict[str, Any] = {}
    language: str = ""


class AssignConversationConfig(_StepConfigBase):
    kind: Literal["assign_conversation"] = "assign_conversation"
    agent_type: str = "human"                 # human | ai
    agent_id: Optional[str] = None
    assign_to_self: bool = False
    admin: str = ""                           # admin handle for the assign_to_admin action
    send_email: bool = False
    admin_email: str = ""


class UnhandledConfig(_StepConfigBase):
    """A step kind this runtime does not know. Executes as a no-op."""
    kind: Literal["unhandled"] = "unhandled"
    original_kind: str = ""
    raw: dict[str, Any] = {}


StepConfig = Annotated[
    Union[
        StartConfig, SendMessageConfig, QuestionConfig, WaitConfig,
        ConditionConfig, TemplateConfig, AssignConversationConfig, UnhandledConfig,
    ],
    Field(discriminator="kind"),
]


# ──────────────────────────────────────────────────────────────
#  Flow graph
# ──────────────────────────────────────────────────────────────

class Step(BaseModel):
    """One node in a flow. Its kind is carried by the typed config."""
    id: str
    label: str = ""
    config: StepConfig

    @property
    def kind(self) -> str:
        if isinstance(self.config, UnhandledConfig):
            return self.config.original_kind
        return self.config.kind

    @property
    def is_branching(self) -> bool:
        return self.kind in (StepKind.CONDITION.value, StepKind.QUESTION_MULTIPLE.value)


class Connection(BaseModel):
    """Directed edge. At most one of condition_label / option_key is set."""
    id: str = ""
    from_step_id: str
    to_step_id: str
    condition_label: Optional[str] = None     # "true" | "false" (condition steps)
    option_key: Optional[str] = None          # answer option id (question_multiple steps)

    @property
    def is_unconditional(self) -> bool:
        return not self.condition_label and not self.option_key


class Flow(BaseModel):
    """
    A user-authored automation graph. Read-only for the duration of an
    execution call.
    """
    id: str
    name: str = ""
    key: str = ""
    steps: list[Step] = []
    connections: list[Connection] = []
    metadata: dict[str, Any] = {}

    def get_step(self, step_id: str) -> Optional[Step]:
        return next((s for s in self.steps if s.id == step_id), None)

    def start_steps(self) -> list[Step]:
        return [s for s in self.steps if s.kind == StepKind.START.value]


# ──────────────────────────────────────────────────────────────
#  Session — the durable execution cursor
# ──────────────────────────────────────────────────────────────

class Session(BaseModel):
    session_id: str
    flow_id: str
    current_step_id: Optional[str] = None
    bindings: dict[str, Any] = {}
    status: SessionStatus = SessionStatus.ACTIVE
    suspended_on: Optional[SuspendReason] = None
    resume_step_id: Optional[str] = None      # where a wait picks up again
    assignee_id: Optional[str] = None
    assignee_type: Optional[str] = None
    version: int = 0                          # bumped on every successful write
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (SessionStatus.COMPLETED, SessionStatus.CANCELLED)

    @property
    def awaiting_answer(self) -> bool:
        return (
            self.status == SessionStatus.ACTIVE
            and self.suspended_on == SuspendReason.QUESTION
            and self.current_step_id is not None
        )


# ──────────────────────────────────────────────────────────────
#  Actions — side effects the engine asks its caller to perform
# ──────────────────────────────────────────────────────────────

class SendWhatsAppAction(BaseModel):
    type: Literal["send_whatsapp"] = "send_whatsapp"
    to: str = ""
    text: str


class SendWhatsAppMediaAction(BaseModel):
    type: Literal["send_whatsapp_media"] = "send_whatsapp_media"
    to: str = ""
    media_type: str
    media_id: Optional[str] = None
    media_url: Optional[str] = None
    caption: str = ""
    file_name: Optional[str] = None


class InteractiveButton(BaseModel):
    id: str
    title: str


class SendWhatsAppInteractiveAction(BaseModel):
    type: Literal["send_whatsapp_interactive"] = "send_whatsapp_interactive"
    to: str = ""
    body: str
    buttons: list[InteractiveButton] = []


class SendTemplateAction(BaseModel):
    type: Literal["send_whatsapp_template"] = "send_whatsapp_template"
    to: str = ""
    template: str
    variables: dict[str, Any] = {}
    language: str = ""


class SendEmailAction(BaseModel):
    type: Literal["send_email"] = "send_email"
    to: str
    subject: str
    body: str


class WaitAction(BaseModel):
    type: Literal["wait"] = "wait"
    duration: Union[int, float]
    unit: WaitUnit
    resume_step_id: Optional[str] = None


class AssignToAdminAction(BaseModel):
    type: Literal["assign_to_admin"] = "assign_to_admin"
    admin: str


class AssignConversationAction(BaseModel):
    type: Literal["assign_conversation"] = "assign_conversation"
    assignee_id: Optional[str] = None
    assignee_type: str = "human"
    session_id: str
    assign_to_self: bool = False
    flow_name: str = ""


Action = Annotated[
    Union[
        SendWhatsAppAction, SendWhatsAppMediaAction, SendWhatsAppInteractiveAction,
        SendTemplateAction, SendEmailAction, WaitAction,
        AssignToAdminAction, AssignConversationAction,
    ],
    Field(discriminator="type"),
]
