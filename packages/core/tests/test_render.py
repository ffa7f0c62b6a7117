"""Tests for review comment body rendering."""

from beetle_core.delivery.render import render_comment_body, strip_line_numbers
from beetle_core.delivery.suggestions import parse_suggestion

CONTENT = """# Unchecked input
ISSUE_ID: x1
## [Metadata]: internal
**File**: `src/app.py`
**Line_Start**: 4
**Line_End**: 6
**Severity**: Critical

### Problem
User input reaches `eval`.

```python
4| value = eval(raw)
```

<details>
<summary>Suggested fix</summary>
```suggestion
4| value = int(raw)
5|     check(value)
```
</details>
"""


def _render(content):
    return render_comment_body(parse_suggestion(content))


class TestRenderCommentBody:
    def test_starts_at_problem_section(self):
        body = _render(CONTENT)
        assert body.startswith("### Problem")
        assert "# Unchecked input" not in body
        assert "ISSUE_ID" not in body

    def test_metadata_lines_removed(self):
        body = _render(CONTENT)
        assert "**File**" not in body
        assert "**Severity**" not in body
        assert "## [Metadata]" not in body

    def test_line_numbers_stripped_from_code_blocks(self):
        body = _render(CONTENT)
        assert "4|" not in body
        assert "value = eval(raw)" in body

    def test_suggestion_block_keeps_relative_indentation(self):
        body = _render(CONTENT)
        assert "```suggestion\nvalue = int(raw)\n    check(value)\n```" in body

    def test_blank_line_after_summary(self):
        body = _render(CONTENT)
        assert "</summary>\n\n```suggestion" in body

    def test_multiline_note_appended(self):
        body = _render(CONTENT)
        assert body.endswith("*📍 This suggestion applies to lines 4-6*")

    def test_single_line_has_no_note(self):
        body = _render("**File**: `a.py`\n**Line_Start**: 2\n### Problem\nx")
        assert "📍" not in body
        assert body == "### Problem\nx"

    def test_no_problem_heading_keeps_body(self):
        body = _render("**File**: `a.py`\n**Line_Start**: 2\nUse a constant here.")
        assert body == "Use a constant here."

    def test_blank_line_before_table(self):
        body = _render("**File**: `a.py`\n**Line_Start**: 2\n### Problem\nImpact:\n| a | b |\n|---|---|\n| 1 | 2 |")
        assert "Impact:\n\n| a | b |\n|---|---|" in body

    def test_collapses_blank_runs(self):
        body = _render("**File**: `a.py`\n**Line_Start**: 2\n### Problem\none\n\n\n\ntwo")
        assert body == "### Problem\none\n\ntwo"

    def test_backslashes_in_code_survive(self):
        content = "**File**: `a.py`\n**Line_Start**: 2\n### Problem\nx\n```suggestion\npattern = r'\\d+\\1'\n```"
        assert "pattern = r'\\d+\\1'" in _render(content)


class TestStripLineNumbers:
    def test_keeps_code_indentation(self):
        assert strip_line_numbers("10|     return x\n11| y") == "    return x\ny"
