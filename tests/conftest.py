"""Shared test fixtures for the flow runtime."""
import pytest
from typing import Any, Optional

from config.settings import RuntimeConfig
from database.store_memory import InMemoryRuntimeStore
from flows.catalog import make_step
from flows.engine import FlowEngine, SessionLocks
from models.schemas import Connection, Flow


def edge(from_id: str, to_id: str, label: Optional[str] = None, option: Optional[str] = None) -> Connection:
    return Connection(
        id=f"{from_id}->{to_id}",
        from_step_id=from_id,
        to_step_id=to_id,
        condition_label=label,
        option_key=option,
    )


def build_flow(flow_id: str, steps: list, connections: list, name: str = "", key: str = "") -> Flow:
    return Flow(id=flow_id, name=name or flow_id, key=key, steps=steps, connections=connections)


@pytest.fixture
def runtime_config() -> RuntimeConfig:
    return RuntimeConfig(default_agent_id="agent_default", admin_email="ops@example.com")


@pytest.fixture
def store() -> InMemoryRuntimeStore:
    return InMemoryRuntimeStore()


@pytest.fixture
def engine(store, runtime_config) -> FlowEngine:
    return FlowEngine.from_store(store, config=runtime_config, locks=SessionLocks())


@pytest.fixture
def contact() -> dict[str, Any]:
    return {"phone": "+5491100000000", "name": "Ana"}


@pytest.fixture
def linear_flow() -> Flow:
    """start → hello → bye, no suspension points."""
    return build_flow(
        "f_linear",
        steps=[
            make_step("start", "start"),
            make_step("hello", "send_message", message="Hola {{name}}"),
            make_step("bye", "send_message", message="Chau {{ name }}"),
        ],
        connections=[edge("start", "hello"), edge("hello", "bye")],
    )


@pytest.fixture
def intake_flow() -> Flow:
    """start → welcome → ask age (stores under "age") → thanks."""
    return build_flow(
        "f_intake",
        key="intake",
        name="Intake",
        steps=[
            make_step("start", "start"),
            make_step("welcome", "send_message", message="Hola {{name}}"),
            make_step("q_age", "question_simple", questionText="How old are you?", storeKey="age"),
            make_step("thanks", "send_message", message="Thanks, {{name}} ({{age}})"),
        ],
        connections=[edge("start", "welcome"), edge("welcome", "q_age"), edge("q_age", "thanks")],
    )


@pytest.fixture
def choice_flow() -> Flow:
    """A multiple-choice question routing opt1 → A, opt2 → B, anything else → fallback."""
    return build_flow(
        "f_choice",
        steps=[
            make_step("start", "start"),
            make_step(
                "q_pick", "question_multiple",
                questionText="Pick one",
                storeKey="pick",
                options=[{"id": "opt1", "label": "Sales"}, {"id": "opt2", "label": "Support"}],
            ),
            make_step("A", "send_message", message="Sales it is"),
            make_step("B", "send_message", message="Support it is"),
            make_step("fallback", "send_message", message="Didn't get that"),
        ],
        connections=[
            edge("start", "q_pick"),
            edge("q_pick", "A", option="opt1"),
            edge("q_pick", "B", option="opt2"),
            edge("q_pick", "fallback"),
        ],
    )


@pytest.fixture
def condition_flow() -> Flow:
    """Routes on the "age" binding: > 17 goes to adult, otherwise minor."""
    return build_flow(
        "f_condition",
        steps=[
            make_step("start", "start"),
            make_step("check", "condition", variable="age", operator="greater_than", value="17"),
            make_step("adult", "send_message", message="Welcome"),
            make_step("minor", "send_message", message="Ask a parent"),
        ],
        connections=[
            edge("start", "check"),
            edge("check", "adult", label="true"),
            edge("check", "minor", label="false"),
        ],
    )
