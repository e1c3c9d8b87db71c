# forge_engine/extraction.py
"""
Extraction — pull a JSON-looking substring out of free-form agent text.

Strategies are tried in order and the first one that yields a candidate
wins. Each strategy is a named, pure function so new heuristics can be
appended without changing the behaviour of the existing ones.
"""
import re
from dataclasses import dataclass
from typing import Callable

MIN_CANDIDATE_CHARS = 10

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")

_PHRASE_PATTERNS = (
    re.compile(
        r"(?:Here's the|Here is the|The|Result:|Output:)\s*(?:JSON|json)?\s*[:\-]?\s*(\{[\s\S]*\})",
        re.IGNORECASE,
    ),
    re.compile(r"(?:```\s*)?(\{[\s\S]*\})(?:\s*```)?"),
    re.compile(r"JSON:\s*(\{[\s\S]*\})", re.IGNORECASE),
)


@dataclass(frozen=True)
class ExtractionStrategy:
    """A named extraction heuristic returning a candidate or None."""
    name: str
    apply: Callable[[str], str | None]


def _fenced_block(text: str) -> str | None:
    match = _FENCED_BLOCK.search(text)
    if match:
        body = match.group(1).strip()
        if len(body) > MIN_CANDIDATE_CHARS:
            return body
    return None


def _brace_span(text: str) -> str | None:
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        return text[first:last + 1]
    return None


def _phrase_patterns(text: str) -> str | None:
    for pattern in _PHRASE_PATTERNS:
        match = pattern.search(text)
        if match:
            candidate = match.group(1).strip()
            if len(candidate) > MIN_CANDIDATE_CHARS:
                return candidate
    return None


STRATEGIES: list[ExtractionStrategy] = [
    ExtractionStrategy("fenced_block", _fenced_block),
    ExtractionStrategy("brace_span", _brace_span),
    ExtractionStrategy("phrase_patterns", _phrase_patterns),
]


def extract_json_text(text: str, strategies: list[ExtractionStrategy] | None = None) -> str:
    """Return the best JSON-looking substring of ``text``.

    Never raises. When no strategy matches, ``text`` is returned unchanged
    and the caller's quality gate decides what to do with it.
    """
    for strategy in strategies or STRATEGIES:
        candidate = strategy.apply(text)
        if candidate is not None:
            return candidate
    return text


def matching_strategy(text: str) -> str | None:
    """Name of the strategy that would win for ``text`` (diagnostics)."""
    for strategy in STRATEGIES:
        if strategy.apply(text) is not None:
            return strategy.name
    return None
