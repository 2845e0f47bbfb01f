"""Tests for {{ placeholder }} substitution."""
from utils.interpolation import interpolate, interpolate_values


class TestInterpolate:
    def test_text_without_placeholders_is_unchanged(self):
        text = "Plain text, no braces { here }"
        assert interpolate(text, {"name": "Ana"}) == text

    def test_known_key(self):
        assert interpolate("Hola {{name}}", {"name": "Ana"}) == "Hola Ana"

    def test_unknown_key_left_literal(self):
        assert interpolate("Hola {{missing}}", {}) == "Hola {{missing}}"

    def test_whitespace_inside_braces_is_ignored(self):
        assert interpolate("Hi {{  name }}!", {"name": "Bo"}) == "Hi Bo!"

    def test_multiple_and_repeated_keys(self):
        out = interpolate("{{a}}-{{b}}-{{a}}", {"a": 1, "b": "x"})
        assert out == "1-x-1"

    def test_value_rendering(self):
        bindings = {"tags": ["vip", "new"], "note": None, "ok": True}
        assert interpolate("{{tags}}|{{note}}|{{ok}}", bindings) == "vip,new||true"

    def test_empty_template(self):
        assert interpolate("", {"a": 1}) == ""
        assert interpolate(None, {"a": 1}) == ""


class TestInterpolateValues:
    def test_only_strings_are_interpolated(self):
        out = interpolate_values({"1": "{{name}}", "2": 7}, {"name": "Ana"})
        assert out == {"1": "Ana", "2": 7}
