"""Tests for single-step execution."""
import pytest
from structlog.testing import capture_logs

from config.settings import RuntimeConfig
from flows.catalog import make_step
from flows.executor import BUTTON_TITLE_LIMIT, StepExecutor, build_assignment_email
from flows.navigator import GraphNavigator
from models.schemas import SuspendReason, WaitUnit
from conftest import build_flow, edge


def make_executor(steps, connections, config=None, name="Test flow"):
    flow = build_flow("f_exec", steps, connections, name=name)
    return StepExecutor(flow, GraphNavigator(flow.connections), "s1", config or RuntimeConfig())


@pytest.fixture
def bindings():
    return {"phone": "+15550001111", "name": "Ana", "age": 34}


class TestStartAndMessages:
    def test_start_advances_without_actions(self, bindings):
        step = make_step("start", "start")
        result = make_executor([step], [edge("start", "next")]).execute(step, bindings)
        assert result.actions == []
        assert result.next_step_id == "next"
        assert not result.suspend

    def test_send_message_interpolates(self, bindings):
        step = make_step("m", "send_message", message="Hola {{name}}, {{missing}}")
        result = make_executor([step], [edge("m", "n")]).execute(step, bindings)
        assert len(result.actions) == 1
        action = result.actions[0]
        assert action.type == "send_whatsapp"
        assert action.to == "+15550001111"
        assert action.text == "Hola Ana, {{missing}}"
        assert result.next_step_id == "n"

    def test_missing_phone_sends_to_empty_recipient(self):
        step = make_step("m", "send_message", text="Hi")
        result = make_executor([step], []).execute(step, {})
        assert result.actions[0].to == ""
        assert result.next_step_id is None

    def test_media_message(self, bindings):
        step = make_step("m", "send_message", type="media", mediaType="image",
                         mediaId="wa_123", caption="For {{name}}")
        action = make_executor([step], []).execute(step, bindings).actions[0]
        assert action.type == "send_whatsapp_media"
        assert action.media_id == "wa_123"
        assert action.media_type == "image"
        assert action.caption == "For Ana"

    def test_media_without_usable_source_falls_back_to_text(self, bindings):
        step = make_step("m", "send_message", type="media", mediaUrl="blob:http://x/1", caption="Look")
        with capture_logs() as logs:
            action = make_executor([step], []).execute(step, bindings).actions[0]
        assert action.type == "send_whatsapp"
        assert action.text == "Look"
        assert any(e["event"] == "media_message_without_source" for e in logs)

    def test_bindings_are_not_mutated(self, bindings):
        snapshot = dict(bindings)
        step = make_step("m", "send_message", message="{{name}}")
        make_executor([step], []).execute(step, bindings)
        assert bindings == snapshot


class TestQuestions:
    def test_simple_question_suspends(self, bindings):
        step = make_step("q", "question_simple", questionText="Age, {{name}}?")
        result = make_executor([step], [edge("q", "n")]).execute(step, bindings)
        assert result.suspend
        assert result.suspend_reason == SuspendReason.QUESTION
        assert result.next_step_id is None
        assert result.actions[0].text == "Age, Ana?"

    def test_multiple_question_as_plain_text(self, bindings):
        step = make_step("q", "question_multiple", questionText="Pick",
                         options=[{"id": "o1", "label": "One"}])
        action = make_executor([step], []).execute(step, bindings).actions[0]
        assert action.type == "send_whatsapp"

    def test_interactive_buttons_are_clipped(self, bindings):
        long_label = "An option label that is far too long"
        step = make_step("q", "question_multiple", questionText="Pick", interactive=True,
                         options=[{"id": "o1", "label": long_label}, {"id": "o2"}])
        result = make_executor([step], []).execute(step, bindings)
        action = result.actions[0]
        assert action.type == "send_whatsapp_interactive"
        assert action.body == "Pick"
        assert action.buttons[0].title == long_label[:BUTTON_TITLE_LIMIT]
        assert action.buttons[1].title == "Option 2"
        assert result.suspend


class TestWait:
    def test_wait_uses_configured_defaults(self, bindings):
        step = make_step("w", "wait")
        config = RuntimeConfig(default_wait_duration=10, default_wait_unit="seconds")
        result = make_executor([step], [edge("w", "after")], config).execute(step, bindings)
        action = result.actions[0]
        assert action.type == "wait"
        assert action.duration == 10
        assert action.unit == WaitUnit.SECONDS
        assert action.resume_step_id == "after"
        assert result.suspend
        assert result.suspend_reason == SuspendReason.WAIT
        assert result.next_step_id == "after"

    def test_wait_with_explicit_duration(self, bindings):
        step = make_step("w", "wait", duration=2, unit="days")
        action = make_executor([step], []).execute(step, bindings).actions[0]
        assert (action.duration, action.unit, action.resume_step_id) == (2, WaitUnit.DAYS, None)


class TestCondition:
    @pytest.fixture
    def step(self):
        return make_step("c", "condition", variable="age", operator="greater_than", value="17")

    def test_routes_on_result(self, step):
        ex = make_executor([step], [edge("c", "yes", label="true"), edge("c", "no", label="false")])
        assert ex.execute(step, {"age": "30"}).next_step_id == "yes"
        assert ex.execute(step, {"age": "12"}).next_step_id == "no"
        assert ex.execute(step, {"age": "n/a"}).next_step_id == "no"

    def test_emits_no_actions(self, step):
        ex = make_executor([step], [edge("c", "yes", label="true")])
        assert ex.execute(step, {"age": 30}).actions == []

    def test_fallback_edge_logs_warning(self, step):
        ex = make_executor([step], [edge("c", "yes", label="true"), edge("c", "other")])
        with capture_logs() as logs:
            result = ex.execute(step, {"age": 1})
        assert result.next_step_id == "other"
        assert any(e["event"] == "condition_fallback_edge" for e in logs)

    def test_fallback_disabled(self, step):
        ex = make_executor([step], [edge("c", "yes", label="true"), edge("c", "other")],
                           RuntimeConfig(condition_fallback=False))
        result = ex.execute(step, {"age": 1})
        assert result.next_step_id is None
        assert result.dead_end


class TestTemplate:
    def test_variables_are_interpolated(self, bindings):
        step = make_step("t", "template", templateName="order_update", language="es",
                         variables={"1": "{{name}}", "2": "static", "3": 5})
        result = make_executor([step], [edge("t", "n")]).execute(step, bindings)
        action = result.actions[0]
        assert action.type == "send_whatsapp_template"
        assert action.template == "order_update"
        assert action.variables == {"1": "Ana", "2": "static", "3": 5}
        assert action.language == "es"
        assert result.next_step_id == "n"


class TestAssignConversation:
    def test_explicit_agent(self, bindings):
        step = make_step("a", "assign_conversation", agentId="agent_7", agentType="human")
        result = make_executor([step], [edge("a", "n")]).execute(step, bindings)
        assert [a.type for a in result.actions] == ["assign_to_admin", "assign_conversation"]
        assert result.actions[0].admin == "agent_7"
        action = result.actions[1]
        assert action.assignee_id == "agent_7"
        assert not action.assign_to_self
        assert action.session_id == "s1"
        assert result.session_updates == {"assignee_id": "agent_7", "assignee_type": "human"}
        assert result.next_step_id == "n"

    def test_assign_to_self_uses_default_agent(self, bindings):
        step = make_step("a", "assign_conversation", assignToSelf=True)
        config = RuntimeConfig(default_agent_id="agent_default")
        action = make_executor([step], [], config).execute(step, bindings).actions[-1]
        assert action.assignee_id == "agent_default"
        assert action.assign_to_self

    def test_no_default_agent(self, bindings):
        step = make_step("a", "assign_conversation")
        config = RuntimeConfig(admin_email="ops@example.com")
        with capture_logs() as logs:
            actions = make_executor([step], [], config).execute(step, bindings).actions
        assert actions[0].admin == "ops@example.com"
        assert actions[-1].assignee_id is None
        assert any(e["event"] == "no_default_agent_configured" for e in logs)

    def test_admin_always_emitted_before_email(self, bindings):
        step = make_step("a", "assign_conversation", agentId="agent_7",
                         sendEmail=True, admin="boss", adminEmail="boss@example.com")
        result = make_executor([step], [], name="Sales").execute(step, bindings)
        assert [a.type for a in result.actions] == ["assign_to_admin", "send_email", "assign_conversation"]
        assert result.actions[0].admin == "boss"
        email = result.actions[1]
        assert email.to == "boss@example.com"
        assert email.subject == "New conversation assigned - Sales"
        assert "<strong>name:</strong> Ana" in email.body

    def test_email_defaults_to_configured_admin(self, bindings):
        step = make_step("a", "assign_conversation", agentId="x", sendEmail=True)
        config = RuntimeConfig(admin_email="ops@example.com")
        email = make_executor([step], [], config).execute(step, bindings).actions[1]
        assert email.to == "ops@example.com"


class TestUnknownKind:
    def test_advances_with_warning(self, bindings):
        step = make_step("x", "ai_agent", prompt="hi")
        with capture_logs() as logs:
            result = make_executor([step], [edge("x", "n")]).execute(step, bindings)
        assert result.actions == []
        assert result.next_step_id == "n"
        assert any(e["event"] == "unknown_step_kind" and e["kind"] == "ai_agent" for e in logs)


class TestAssignmentEmail:
    def test_values_are_escaped(self):
        body = build_assignment_email("F", "s1", {"note": "<b>hi</b>", "tags": ["a", "b"]})
        assert "&lt;b&gt;hi&lt;/b&gt;" in body
        assert "<strong>tags:</strong> a,b" in body
