"""Tests for static flow validation."""
from flows.catalog import make_step
from flows.validation import ERROR, WARNING, has_errors, validate_flow
from conftest import build_flow, edge


def issues_for(flow, severity=None):
    return [i for i in validate_flow(flow) if severity is None or i.severity == severity]


class TestValidateFlow:
    def test_valid_fixtures_have_no_issues(self, linear_flow, intake_flow, choice_flow, condition_flow):
        for flow in (linear_flow, intake_flow, choice_flow, condition_flow):
            assert validate_flow(flow) == [], flow.id

    def test_missing_start(self):
        flow = build_flow("f", [make_step("m", "send_message", text="hi")], [])
        issues = issues_for(flow, ERROR)
        assert any("no start step" in i.message for i in issues)
        assert has_errors(issues)

    def test_multiple_starts(self):
        flow = build_flow("f", [make_step("a", "start"), make_step("b", "start")], [])
        errors = issues_for(flow, ERROR)
        assert [i.step_id for i in errors] == ["b"]

    def test_dangling_connection(self):
        flow = build_flow("f", [make_step("start", "start")], [edge("start", "ghost"), edge("nowhere", "start")])
        messages = [i.message for i in issues_for(flow, ERROR)]
        assert any("unknown step 'ghost'" in m for m in messages)
        assert any("unknown step 'nowhere'" in m for m in messages)

    def test_unreachable_step_is_warning(self):
        flow = build_flow(
            "f",
            [make_step("start", "start"), make_step("island", "send_message", text="hi")],
            [],
        )
        issues = validate_flow(flow)
        assert [(i.severity, i.step_id) for i in issues] == [(WARNING, "island")]
        assert not has_errors(issues)

    def test_empty_texts(self):
        flow = build_flow(
            "f",
            [make_step("start", "start"),
             make_step("m", "send_message", text="  "),
             make_step("q", "question_simple")],
            [edge("start", "m"), edge("m", "q")],
        )
        assert {i.step_id for i in issues_for(flow, ERROR)} == {"m", "q"}

    def test_media_message_with_media_is_valid(self):
        flow = build_flow(
            "f",
            [make_step("start", "start"), make_step("m", "send_message", type="media", mediaId="123")],
            [edge("start", "m")],
        )
        assert validate_flow(flow) == []

    def test_condition_problems(self):
        flow = build_flow(
            "f",
            [make_step("start", "start"), make_step("c", "condition", operator="matches")],
            [edge("start", "c")],
        )
        messages = [i.message for i in issues_for(flow, ERROR)]
        assert "condition has no variable" in messages
        assert "unknown condition operator 'matches'" in messages

    def test_option_without_edge(self, choice_flow):
        choice_flow.connections = [c for c in choice_flow.connections if c.option_key != "opt2"]
        warnings = issues_for(choice_flow, WARNING)
        assert any("'opt2'" in i.message for i in warnings)

    def test_ambiguous_unconditional_edges(self):
        flow = build_flow(
            "f",
            [make_step("start", "start"),
             make_step("a", "send_message", text="a"),
             make_step("b", "send_message", text="b")],
            [edge("start", "a"), edge("start", "b")],
        )
        warnings = issues_for(flow, WARNING)
        assert len(warnings) == 1
        assert warnings[0].step_id == "start"
        assert "'a'" in warnings[0].message

    def test_loop_without_pause_is_warning(self):
        flow = build_flow(
            "f",
            [make_step("start", "start"),
             make_step("a", "send_message", text="a"),
             make_step("b", "send_message", text="b")],
            [edge("start", "a"), edge("a", "b"), edge("b", "a")],
        )
        issues = validate_flow(flow)
        assert [(i.severity, i.step_id) for i in issues] == [(WARNING, "a")]
        assert "a, b" in issues[0].message
        assert not has_errors(issues)

    def test_loop_through_question_is_fine(self):
        flow = build_flow(
            "f",
            [make_step("start", "start"),
             make_step("a", "send_message", text="a"),
             make_step("q", "question_simple", questionText="Again?")],
            [edge("start", "a"), edge("a", "q"), edge("q", "a")],
        )
        assert validate_flow(flow) == []
