# forge_engine/recovery.py
"""
Recovery — one best-effort repair pass over JSON that failed to parse.

Repairs run once, in order, and are not applied recursively. Brace
balancing only appends closing ``}``: a truncated trailing object is the
failure that actually shows up, not mismatched bracket types.
"""
import re
from dataclasses import dataclass
from typing import Callable

_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


@dataclass(frozen=True)
class RepairStrategy:
    """A named text-to-text repair."""
    name: str
    apply: Callable[[str], str]


def strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", text)


def close_open_braces(text: str) -> str:
    missing = text.count("{") - text.count("}")
    if missing > 0:
        return text + "}" * missing
    return text


REPAIRS: list[RepairStrategy] = [
    RepairStrategy("strip_trailing_commas", strip_trailing_commas),
    RepairStrategy("close_open_braces", close_open_braces),
]


def recover_json_text(text: str) -> str:
    """Apply every repair once and return the result (may still be invalid)."""
    for repair in REPAIRS:
        text = repair.apply(text)
    return text
