# tests/unit/test_extraction.py
"""
Tests for forge_engine.extraction and forge_engine.recovery.

Covers strategy order (fenced block, brace span, phrase patterns),
pass-through of text with no JSON, and the single repair pass.
"""
import json

import pytest

pytestmark = pytest.mark.unit

from forge_engine.extraction import (
    STRATEGIES,
    ExtractionStrategy,
    extract_json_text,
    matching_strategy,
)
from forge_engine.recovery import (
    REPAIRS,
    close_open_braces,
    recover_json_text,
    strip_trailing_commas,
)


# ============================================================================
# 1. Extraction strategies
# ============================================================================


class TestFencedBlock:
    """A ```json fenced body wins over everything else."""

    def test_fenced_json_block(self):
        text = 'Sure, here you go:\n```json\n{"type": "monorepo"}\n```\nAnything else?'
        assert extract_json_text(text) == '{"type": "monorepo"}'
        assert matching_strategy(text) == "fenced_block"

    def test_fence_without_language_tag(self):
        text = '```\n{"description": "A CLI tool"}\n```'
        assert extract_json_text(text) == '{"description": "A CLI tool"}'

    def test_short_fenced_body_falls_through_to_brace_span(self):
        # Fenced body too short; the brace span elsewhere in the text is used
        text = '```\n{}\n``` then {"description": "fallback value"}'
        assert matching_strategy(text) == "brace_span"


class TestBraceSpan:
    """First '{' to last '}' when nothing is fenced."""

    def test_prose_around_object(self):
        text = 'The analysis is {"pattern": "layered", "entryPoints": []} as requested.'
        assert extract_json_text(text) == '{"pattern": "layered", "entryPoints": []}'
        assert matching_strategy(text) == "brace_span"

    def test_nested_objects_kept_whole(self):
        text = 'x {"a": {"b": {"c": 1}}} y'
        assert json.loads(extract_json_text(text)) == {"a": {"b": {"c": 1}}}

    def test_closing_brace_before_opening_is_not_a_span(self):
        text = "} nothing useful {"
        assert matching_strategy(text) is None


class TestNoJson:
    """Text without JSON comes back unchanged."""

    def test_plain_text_unchanged(self):
        text = "I could not inspect the repository."
        assert extract_json_text(text) == text
        assert matching_strategy(text) is None

    def test_empty_text(self):
        assert extract_json_text("") == ""


class TestStrategyList:
    """Strategies are named, ordered and replaceable."""

    def test_default_order(self):
        assert [s.name for s in STRATEGIES] == ["fenced_block", "brace_span", "phrase_patterns"]

    def test_custom_strategies(self):
        upper = ExtractionStrategy("marker", lambda t: "FOUND" if "marker" in t else None)
        assert extract_json_text("has marker", [upper]) == "FOUND"
        assert extract_json_text("nothing", [upper]) == "nothing"


# ============================================================================
# 2. Recovery
# ============================================================================


class TestRecovery:
    """One pass: strip trailing commas, then append missing '}'."""

    def test_trailing_comma_in_object(self):
        assert json.loads(recover_json_text('{"a":1,}')) == {"a": 1}

    def test_trailing_comma_in_array(self):
        assert json.loads(recover_json_text('{"a": [1, 2, ], }')) == {"a": [1, 2]}

    def test_missing_closing_brace(self):
        assert json.loads(recover_json_text('{"a":{"b":1}')) == {"a": {"b": 1}}

    def test_valid_json_untouched(self):
        text = '{"a": [1, {"b": 2}]}'
        assert recover_json_text(text) == text

    def test_extra_closing_braces_not_removed(self):
        assert close_open_braces('{"a": 1}}') == '{"a": 1}}'

    def test_strip_trailing_commas_keeps_whitespace(self):
        assert strip_trailing_commas('{"a": 1,\n}') == '{"a": 1\n}'

    def test_repair_order(self):
        assert [r.name for r in REPAIRS] == ["strip_trailing_commas", "close_open_braces"]

    def test_unrecoverable_stays_invalid(self):
        with pytest.raises(json.JSONDecodeError):
            json.loads(recover_json_text("{'single': 'quotes'}"))
