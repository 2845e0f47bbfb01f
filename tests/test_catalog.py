"""Tests for parsing stored flow definitions into typed models."""
import json

import pytest

from flows.catalog import load_flow, make_step, parse_connection, parse_step, parse_step_config
from flows.errors import InvalidStepConfigError
from models.schemas import (
    ConditionConfig, QuestionConfig, SendMessageConfig, StepKind, UnhandledConfig, WaitUnit,
)


@pytest.fixture
def stored_flow():
    """Shape of a flow row as the builder persists it."""
    return {
        "id": "f1",
        "name": "Onboarding",
        "key": "onboarding",
        "steps": [
            {"id": "s", "type": "start", "configJson": "{}"},
            {"id": "m", "type": "send_message", "configJson": json.dumps({"message": "Hola {{name}}"})},
            {"id": "c", "type": "condition", "config": {"variable": "age", "operator": "greater_than", "value": 17}},
            {"id": "q", "type": "multipleChoice", "configJson": json.dumps({
                "questionText": "Pick",
                "storeKey": "pick",
                "saveToFieldId": "cf_1",
                "options": [{"id": "o1", "title": "Yes"}, {"id": "o2", "label": "No"}],
            })},
            {"id": "x", "type": "ai_agent", "configJson": json.dumps({"prompt": "hi"})},
        ],
        "connections": [
            {"id": "e1", "fromStepId": "s", "toStepId": "m"},
            {"id": "e2", "fromStepId": "m", "toStepId": "c"},
            {"id": "e3", "fromStepId": "c", "toStepId": "q", "sourceHandle": "true"},
            {"id": "e4", "fromStepId": "c", "toStepId": "x", "conditionLabel": "FALSE"},
            {"id": "e5", "source": "q", "target": "x", "sourceHandle": "o1"},
        ],
    }


class TestLoadFlow:
    def test_parses_steps_and_configs(self, stored_flow):
        flow = load_flow(stored_flow)
        assert flow.id == "f1"
        assert flow.key == "onboarding"
        assert [s.id for s in flow.steps] == ["s", "m", "c", "q", "x"]
        assert isinstance(flow.get_step("m").config, SendMessageConfig)
        assert flow.get_step("m").config.body == "Hola {{name}}"

    def test_camel_case_config_fields(self, stored_flow):
        q = load_flow(stored_flow).get_step("q")
        assert q.kind == StepKind.QUESTION_MULTIPLE.value
        assert isinstance(q.config, QuestionConfig)
        assert q.config.text == "Pick"
        assert q.config.store_key == "pick"
        assert q.config.save_to_field_id == "cf_1"

    def test_option_title_is_label(self, stored_flow):
        options = load_flow(stored_flow).get_step("q").config.options
        assert [(o.id, o.label) for o in options] == [("o1", "Yes"), ("o2", "No")]

    def test_condition_handle_becomes_label(self, stored_flow):
        conns = {c.id: c for c in load_flow(stored_flow).connections}
        assert conns["e3"].condition_label == "true"
        assert conns["e3"].option_key is None
        assert conns["e4"].condition_label == "false"

    def test_option_handle_on_question(self, stored_flow):
        e5 = next(c for c in load_flow(stored_flow).connections if c.id == "e5")
        assert e5.from_step_id == "q"
        assert e5.option_key == "o1"
        assert not e5.is_unconditional

    def test_unknown_kind_is_kept(self, stored_flow):
        x = load_flow(stored_flow).get_step("x")
        assert isinstance(x.config, UnhandledConfig)
        assert x.kind == "ai_agent"
        assert x.config.raw == {"prompt": "hi"}

    def test_flow_round_trips_through_json(self, stored_flow):
        flow = load_flow(stored_flow)
        restored = type(flow).model_validate(flow.model_dump(mode="json"))
        assert restored == flow


class TestParseStepConfig:
    def test_invalid_json_raises(self):
        with pytest.raises(InvalidStepConfigError) as exc:
            parse_step_config("m", "send_message", "{not json")
        assert exc.value.step_id == "m"

    def test_non_object_raises(self):
        with pytest.raises(InvalidStepConfigError):
            parse_step_config("m", "send_message", "[1, 2]")

    def test_bad_field_type_raises(self):
        with pytest.raises(InvalidStepConfigError):
            parse_step_config("w", "wait", {"duration": "soon"})

    def test_empty_config_uses_defaults(self):
        cfg = parse_step_config("c", "condition", "")
        assert isinstance(cfg, ConditionConfig)
        assert cfg.operator == "equals"

    def test_wait_unit_enum(self):
        cfg = parse_step_config("w", "wait", {"duration": 2, "unit": "hours"})
        assert cfg.duration == 2
        assert cfg.unit == WaitUnit.HOURS

    def test_media_message_flags(self):
        cfg = parse_step_config("m", "send_message", {"type": "media", "mediaId": "123", "caption": "c"})
        assert cfg.is_media
        assert cfg.media_id == "123"


class TestHelpers:
    def test_make_step_accepts_snake_case(self):
        step = make_step("q", "question_simple", question_text="Name?", store_key="name")
        assert step.config.text == "Name?"
        assert step.config.store_key == "name"
        assert not step.is_branching

    def test_legacy_question_field(self):
        step = parse_step({"id": "q", "type": "question", "config": {"question": "Old?"}})
        assert step.kind == StepKind.QUESTION_SIMPLE.value
        assert step.config.text == "Old?"

    def test_parse_connection_without_steps_keeps_handle_as_option(self):
        conn = parse_connection({"fromStepId": "c", "toStepId": "d", "sourceHandle": "true"})
        assert conn.option_key == "true"
        assert conn.condition_label is None
