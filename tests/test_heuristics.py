# tests/test_heuristics.py
"""
Tests for the static description/stack fallbacks in forge_workflows.heuristics.
"""
import pytest

pytestmark = pytest.mark.unit

from forge_workflows.heuristics import (
    MAX_STACK_ITEMS,
    dedupe_stack,
    detect_stack,
    features_from_files,
    languages_from_files,
    parse_manifest,
    synthesize_description,
)
from forge_workflows.schemas import TechStackItem


# ============================================================================
# 1. File and manifest signals
# ============================================================================


class TestSignals:

    def test_parse_manifest(self):
        assert parse_manifest('{"name": "widgets"}') == {"name": "widgets"}
        assert parse_manifest("[1, 2]") is None
        assert parse_manifest("not json") is None
        assert parse_manifest(None) is None

    def test_languages_ranked_by_count(self):
        files = ["a.py", "b.py", "src/c.ts", "README.md", "d.py"]
        assert languages_from_files(files) == ["Python", "TypeScript"]

    def test_languages_limit(self):
        files = ["a.py", "b.go", "c.rs", "d.rb"]
        assert len(languages_from_files(files, limit=2)) == 2

    def test_features_from_root_files(self):
        files = ["./Dockerfile", "pyproject.toml", "src/app.py"]
        assert features_from_files(files) == ["Docker", "Python packaging"]


# ============================================================================
# 2. Description synthesis
# ============================================================================


class TestSynthesizeDescription:

    def test_about_wins(self):
        text = synthesize_description("widgets", about="  Widget   service ", readme="# Other")
        assert text == "Widget service"

    def test_manifest_description(self):
        assert synthesize_description("widgets", manifest={"description": "From package.json"}) == "From package.json"

    def test_readme_skips_title_and_badges(self):
        readme = "# Widgets\n\n![badge](https://img)\n\nA service for widgets.\n\nMore details."
        assert synthesize_description("widgets", readme=readme) == "A service for widgets."

    def test_readme_title_only(self):
        assert synthesize_description("widgets", readme="# Widgets Tool") == "Widgets Tool"

    def test_from_languages_features_topics(self):
        text = synthesize_description("widgets", languages=["Python"], features=["Docker"], topics=["cli"])
        assert text == "A Python codebase. Includes Docker. Topics: cli."

    def test_nothing_known(self):
        assert synthesize_description("widgets") == "A software project."


# ============================================================================
# 3. Stack detection
# ============================================================================


class TestDetectStack:

    def test_combines_sources_without_duplicates(self):
        manifest = {"dependencies": {"react": "^18"}, "devDependencies": {"vitest": "^1"}}
        items = detect_stack(["a.py", "Dockerfile"], manifest, github_language="Python")
        assert [i.title for i in items] == ["Python", "Docker", "React", "Vitest"]
        assert items[0].description == "Primary language"

    def test_topics_included(self):
        items = detect_stack([], topics=["machine-learning"])
        assert [i.title for i in items] == ["machine-learning"]

    def test_empty(self):
        assert detect_stack([]) == []


class TestDedupeStack:

    def test_case_insensitive_and_blank(self):
        items = [TechStackItem(title="React"), TechStackItem(title="react "), TechStackItem(title="  ")]
        assert [i.title for i in dedupe_stack(items)] == ["React"]

    def test_capped(self):
        items = [TechStackItem(title=f"tech-{n}") for n in range(MAX_STACK_ITEMS + 5)]
        assert len(dedupe_stack(items)) == MAX_STACK_ITEMS
