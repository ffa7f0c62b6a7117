"""Tests for the tool-call literal normalizer."""

import pytest

from beetle_core.stream.tool_call import ToolCall, normalize_literal, parse_tool_call


class TestParseToolCall:
    def test_python_literal_dict(self):
        call = parse_tool_call("[READ_FILE] {'file_path': 'a.ts', 'ok': True}")
        assert call == ToolCall("READ_FILE", {"file_path": "a.ts", "ok": True})

    def test_none_and_false_tokens(self):
        call = parse_tool_call("[LIST] {'next': None, 'done': False}")
        assert call.result == {"next": None, "done": False}

    def test_no_bracket_returns_none(self):
        assert parse_tool_call("plain progress line") is None

    def test_missing_payload(self):
        assert parse_tool_call("[GREP]") == ToolCall("GREP", None)

    def test_empty_payload(self):
        assert parse_tool_call("[GREP] ") == ToolCall("GREP", None)

    def test_empty_list_payload(self):
        assert parse_tool_call("[GREP] []") == ToolCall("GREP", [])

    def test_progress_text_passed_through(self):
        call = parse_tool_call("[SCAN] Scanning repository...")
        assert call == ToolCall("SCAN", "Scanning repository...")

    def test_embedded_double_quotes_in_code(self):
        call = parse_tool_call("""[READ_FILE] {'content': 'print("hi")', 'lines': 1}""")
        assert call.result == {"content": 'print("hi")', "lines": 1}

    def test_apostrophe_inside_string(self):
        call = parse_tool_call("[NOTE] {'text': 'it's fine'}")
        assert call.result == {"text": "it's fine"}

    def test_literal_words_inside_strings_untouched(self):
        call = parse_tool_call("[READ_FILE] {'code': 'return True if x else None'}")
        assert call.result == {"code": "return True if x else None"}

    def test_list_of_dicts(self):
        call = parse_tool_call("[SEARCH] [{'path': 'a.py', 'hit': True}, {'path': 'b.py', 'hit': False}]")
        assert call.result == [{"path": "a.py", "hit": True}, {"path": "b.py", "hit": False}]

    def test_strict_json_payload(self):
        call = parse_tool_call('[READ_FILE] {"file_path": "x.go", "size": 12}')
        assert call.result == {"file_path": "x.go", "size": 12}

    def test_type_taken_from_first_bracket(self):
        call = parse_tool_call("2025-01-01 10:00:00 - agent - TOOL_CALL - [RUN] {'cmd': 'ls'}")
        assert call.type == "RUN"
        assert call.result == {"cmd": "ls"}

    def test_never_raises_on_internal_failure(self, mocker):
        mocker.patch("beetle_core.stream.tool_call.normalize_literal", side_effect=RuntimeError("boom"))
        assert parse_tool_call("[READ_FILE] {'a': 1}") == ToolCall("READ_FILE", None)


class TestNormalizeLiteral:
    @pytest.mark.parametrize(
        "literal,expected",
        [
            ("True", "true"),
            ("{'a': None}", '{"a": null}'),
            ("['x', 'y']", '["x", "y"]'),
            ("{'n': 1.5}", '{"n": 1.5}'),
        ],
    )
    def test_rewrites_to_json(self, literal, expected):
        assert normalize_literal(literal) == expected

    def test_escape_sequences_are_decoded(self):
        assert normalize_literal(r"'a\nb'") == '"a\\nb"'
