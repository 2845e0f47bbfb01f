"""
Step Catalog — parses stored flow definitions into typed models.

Flows are authored in the builder and persisted with a JSON config blob per
step (``configJson``) and camelCase edge fields. Everything is parsed once
here, so the executor only ever sees typed configs:

    flow = load_flow(row)          # dict from the flow store / API payload
    step = flow.get_step("q1")
    step.config.store_key          # typed, validated

Unknown step kinds are not a parse error: they load as ``UnhandledConfig``
and execute as a no-op, so older runtimes tolerate newer builder nodes.
"""
from __future__ import annotations

import json
import structlog
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from flows.errors import InvalidStepConfigError
from models.schemas import (
    AssignConversationConfig, ConditionConfig, Connection, Flow, QuestionConfig,
    SendMessageConfig, StartConfig, Step, StepKind, TemplateConfig,
    UnhandledConfig, WaitConfig,
)

logger = structlog.get_logger()


STEP_CONFIGS: dict[str, type[BaseModel]] = {
    StepKind.START.value: StartConfig,
    StepKind.SEND_MESSAGE.value: SendMessageConfig,
    StepKind.QUESTION_SIMPLE.value: QuestionConfig,
    StepKind.QUESTION_MULTIPLE.value: QuestionConfig,
    StepKind.WAIT.value: WaitConfig,
    StepKind.CONDITION.value: ConditionConfig,
    StepKind.TEMPLATE.value: TemplateConfig,
    StepKind.ASSIGN_CONVERSATION.value: AssignConversationConfig,
}

# Node names used by older builder versions
KIND_ALIASES: dict[str, str] = {
    "multipleChoice": StepKind.QUESTION_MULTIPLE.value,
    "sendMessage": StepKind.SEND_MESSAGE.value,
    "question": StepKind.QUESTION_SIMPLE.value,
}


def normalize_kind(kind: str) -> str:
    return KIND_ALIASES.get(kind, kind)


def _decode_config(step_id: str, kind: str, raw: Any) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidStepConfigError(step_id, kind, f"config is not valid JSON ({e})") from e
    if not isinstance(raw, dict):
        raise InvalidStepConfigError(step_id, kind, "config must be an object")
    return raw


def parse_step_config(step_id: str, kind: str, raw: Any = None):
    """Parse a raw config blob (dict or JSON string) into the typed config for `kind`."""
    kind = normalize_kind(kind)
    data = _decode_config(step_id, kind, raw)

    config_cls = STEP_CONFIGS.get(kind)
    if config_cls is None:
        logger.debug("unhandled_step_kind_loaded", step_id=step_id, kind=kind)
        return UnhandledConfig(original_kind=kind, raw=data)

    try:
        return config_cls.model_validate({**data, "kind": kind})
    except ValidationError as e:
        raise InvalidStepConfigError(step_id, kind, str(e)) from e


def make_step(step_id: str, kind: str, label: str = "", **config: Any) -> Step:
    """Build a step from keyword config. Used by loaders and tests alike."""
    return Step(id=step_id, label=label, config=parse_step_config(step_id, kind, config))


def _first(raw: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if raw.get(k) not in (None, ""):
            return raw[k]
    return default


def parse_step(raw: dict[str, Any]) -> Step:
    step_id = str(_first(raw, "id", default=""))
    kind = str(_first(raw, "type", "kind", default=""))
    config_raw = _first(raw, "configJson", "config_json", "config", "data")
    return Step(
        id=step_id,
        label=str(_first(raw, "label", default="")),
        config=parse_step_config(step_id, kind, config_raw),
    )


def parse_connection(raw: dict[str, Any], steps_by_id: Optional[dict[str, Step]] = None) -> Connection:
    from_id = str(_first(raw, "fromStepId", "from_step_id", "source", default=""))
    to_id = str(_first(raw, "toStepId", "to_step_id", "target", default=""))
    label = _first(raw, "conditionLabel", "condition_label")
    option = _first(raw, "sourceHandle", "source_handle", "option_key", "optionKey")

    # Condition edges drawn from a true/false handle carry the label in sourceHandle
    source = (steps_by_id or {}).get(from_id)
    if (
        label is None and option is not None and source is not None
        and source.kind == StepKind.CONDITION.value
        and str(option).lower() in ("true", "false")
    ):
        label, option = option, None

    return Connection(
        id=str(_first(raw, "id", default="")),
        from_step_id=from_id,
        to_step_id=to_id,
        condition_label=str(label).lower() if label is not None else None,
        option_key=str(option) if option is not None else None,
    )


def load_flow(raw: dict[str, Any]) -> Flow:
    """Parse a stored flow (steps + connections) into a typed Flow."""
    steps = [parse_step(s) for s in raw.get("steps") or []]
    steps_by_id = {s.id: s for s in steps}
    connections = [parse_connection(c, steps_by_id) for c in raw.get("connections") or []]
    flow = Flow(
        id=str(raw.get("id", "")),
        name=raw.get("name", "") or "",
        key=raw.get("key", "") or "",
        steps=steps,
        connections=connections,
        metadata=raw.get("metadata") or {},
    )
    logger.debug("flow_loaded", flow_id=flow.id, steps=len(steps), connections=len(connections))
    return flow
