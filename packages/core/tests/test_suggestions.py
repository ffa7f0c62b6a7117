"""Tests for suggestion extraction and severity filtering."""

import pytest

from beetle_core.delivery.suggestions import (
    ParsedSuggestion,
    Severity,
    parse_issue,
    parse_patch,
    parse_suggestion,
    parse_warning,
    should_post,
)

ISSUE = """# SQL injection in user lookup
ISSUE_ID: x1
**File**: `src/db.ts`
**Line_Start**: 10
**Line_End**: 12
**Severity**: High
**Confidence**: 4/5

### Problem
The query concatenates user input.

```suggestion
const rows = await db.query("SELECT * FROM users WHERE id = ?", [id]);
```
"""


class TestParseSuggestion:
    def test_full_issue(self):
        s = parse_suggestion(ISSUE)
        assert s == ParsedSuggestion(
            file_path="src/db.ts",
            line_start=10,
            line_end=12,
            replacement_code='const rows = await db.query("SELECT * FROM users WHERE id = ?", [id]);',
            severity=Severity.HIGH,
            confidence="4/5",
            raw_content=ISSUE,
        )

    def test_missing_file_is_not_a_suggestion(self):
        assert parse_suggestion("**Line_Start**: 3\nsome text") is None

    def test_missing_line_start_is_not_a_suggestion(self):
        assert parse_suggestion("**File**: `a.py`\nsome text") is None

    def test_empty_content(self):
        assert parse_suggestion("") is None

    @pytest.mark.parametrize(
        "content",
        [
            "**File:** `a.py`\n**Line_Start:** 7",
            "File: a.py\nLine_Start: 7",
            "- **File**: a.py\n- **Line_Start**: 7",
        ],
    )
    def test_label_variants(self, content):
        s = parse_suggestion(content)
        assert s.file_path == "a.py"
        assert s.line_start == 7

    def test_optional_fields_absent(self):
        s = parse_suggestion("**File**: `a.py`\n**Line_Start**: 1")
        assert s.line_end is None
        assert s.replacement_code is None
        assert s.severity is None
        assert s.confidence is None
        assert s.is_multiline is False

    def test_falls_back_to_first_fence(self):
        s = parse_suggestion("**File**: `a.py`\n**Line_Start**: 1\n```python\n    return 1\n```")
        assert s.replacement_code == "    return 1"

    def test_suggestion_fence_preferred(self):
        content = "**File**: `a.py`\n**Line_Start**: 1\n```python\nold\n```\n```suggestion\nnew\n```"
        assert parse_suggestion(content).replacement_code == "new"

    def test_unknown_severity_is_absent(self):
        s = parse_suggestion("**File**: `a.py`\n**Line_Start**: 1\n**Severity**: Low")
        assert s.severity is None

    def test_same_start_and_end_is_single_line(self):
        s = parse_suggestion("**File**: `a.py`\n**Line_Start**: 4\n**Line_End**: 4")
        assert s.is_multiline is False


class TestSeverity:
    @pytest.mark.parametrize(
        "token,expected",
        [
            ("Critical", Severity.CRITICAL),
            ("HIGH", Severity.HIGH),
            ("medium", Severity.MEDIUM),
            ("🔴 Critical", Severity.CRITICAL),
            ("Low", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse(self, token, expected):
        assert Severity.parse(token) is expected


class TestShouldPost:
    @pytest.mark.parametrize(
        "threshold,severity,expected",
        [
            (0, None, True),
            (0, Severity.MEDIUM, True),
            (0, Severity.HIGH, True),
            (0, Severity.CRITICAL, True),
            (1, None, True),
            (1, Severity.MEDIUM, True),
            (1, Severity.HIGH, True),
            (1, Severity.CRITICAL, True),
            (2, None, True),
            (2, Severity.MEDIUM, False),
            (2, Severity.HIGH, False),
            (2, Severity.CRITICAL, True),
        ],
    )
    def test_table(self, threshold, severity, expected):
        assert should_post(threshold, severity) is expected

    def test_accepts_string_severity(self):
        assert should_post(1, "Medium") is True
        assert should_post(2, "High") is False


class TestInformationalExtractors:
    def test_parse_issue(self):
        details = parse_issue("# Title\nISSUE_ID: x1\nbody line\nmore")
        assert details.title == "Title"
        assert details.issue_id == "x1"
        assert details.description == "body line\nmore"

    def test_parse_issue_without_title(self):
        details = parse_issue("just text")
        assert details.title == ""
        assert details.description == "just text"

    def test_parse_patch(self):
        content = (
            "PATCH_ID: p1\nISSUE_ID: x1\n**File:** `src/a.py`\n**Line_Range:** 3-5\n"
            "**Issue:** Unsafe eval\n**Language:** python\n"
            "### Before\n```python\neval(x)\n```\n### After\n```python\nliteral_eval(x)\n```\n"
            "### Explanation\nAvoid eval."
        )
        details = parse_patch(content)
        assert details.file == "src/a.py"
        assert details.line_range == "3-5"
        assert details.issue == "Unsafe eval"
        assert details.language == "python"
        assert "eval(x)" in details.before
        assert "literal_eval(x)" in details.after
        assert details.explanation == "Avoid eval."
        assert details.issue_id == "x1"
        assert details.patch_id == "p1"

    def test_parse_warning(self):
        content = (
            "**File:** `a.py`\n**Line:** 9\n**Type:** Performance\n"
            "### Warning\nSlow loop\n### Current Code\n```\nfor x in y: pass\n```\n"
            "### Suggestion\nVectorise\n### Example Fix\n```\nsum(y)\n```\n### Why This Matters\nSpeed."
        )
        details = parse_warning(content)
        assert details.file == "a.py"
        assert details.line == "9"
        assert details.type == "Performance"
        assert details.warning == "Slow loop"
        assert details.suggestion == "Vectorise"
        assert details.why_this_matters == "Speed."
