# forge_engine/normalization.py
"""
Normalization — coerce loosely formatted agent output before validation.

The collaborator is told to use exact enum spellings and sometimes does
not. This pass walks a parsed JSON value alongside the pydantic model it
is meant to satisfy and fixes, field by field:

- closed enumerations (``Literal`` types registered in ``ENUM_COERCIONS``),
- ``null`` in a required boolean (becomes ``False``),
- bare numbers in string fields (become strings).

Everything else is left untouched, so canonical input comes back equal.
The pass never raises; on any internal surprise the input is returned.
"""
import logging
import re
import types
from dataclasses import dataclass
from typing import Any, Literal, Union, get_args, get_origin

from pydantic import BaseModel

logger = logging.getLogger("forge.engine.normalization")


# ── Closed enumerations shared by every step contract ────────────────────────

RepositoryType = Literal["monorepo", "single-package", "multi-project"]
PackageType = Literal["app", "library", "tool", "config", "unknown"]
CommentLevel = Literal["extensive", "moderate", "minimal", "none"]
Complexity = Literal["simple", "moderate", "complex", "very-complex"]
Maturity = Literal["prototype", "development", "production", "mature"]
Maintainability = Literal["excellent", "good", "fair", "poor"]


@dataclass(frozen=True)
class EnumCoercion:
    """Map free text onto a closed set.

    Exact (trimmed, lower-cased) matches win; otherwise the first hint whose
    needle occurs in the text decides; otherwise ``default``.
    """
    allowed: tuple[str, ...]
    default: str
    hints: tuple[tuple[tuple[str, ...], str], ...] = ()
    hyphenate: bool = False

    def __call__(self, value: Any) -> str:
        if not isinstance(value, str):
            return self.default
        text = value.strip().lower()
        if self.hyphenate:
            text = re.sub(r"\s+", "-", text)
        if text in self.allowed:
            return text
        for needles, target in self.hints:
            if any(needle in text for needle in needles):
                return target
        return self.default


ENUM_COERCIONS: dict[Any, EnumCoercion] = {
    RepositoryType: EnumCoercion(
        allowed=get_args(RepositoryType),
        default="single-package",
        hints=((("mono",), "monorepo"), (("multi",), "multi-project")),
        hyphenate=True,
    ),
    PackageType: EnumCoercion(
        allowed=get_args(PackageType),
        default="unknown",
        hints=(
            (("lib",), "library"),
            (("app",), "app"),
            (("tool",), "tool"),
            (("config", "cfg"), "config"),
        ),
    ),
    CommentLevel: EnumCoercion(allowed=get_args(CommentLevel), default="none"),
    Complexity: EnumCoercion(
        allowed=get_args(Complexity),
        default="moderate",
        hints=(
            (("very",), "very-complex"),
            (("complex", "high"), "complex"),
            (("simple", "low"), "simple"),
        ),
        hyphenate=True,
    ),
    Maturity: EnumCoercion(
        allowed=get_args(Maturity),
        default="development",
        hints=(
            (("proto", "poc"), "prototype"),
            (("prod",), "production"),
            (("mature", "stable"), "mature"),
            (("dev", "alpha", "beta"), "development"),
        ),
    ),
    Maintainability: EnumCoercion(
        allowed=get_args(Maintainability),
        default="fair",
        hints=(
            (("excel",), "excellent"),
            (("poor", "bad"), "poor"),
            (("good",), "good"),
            (("fair", "average"), "fair"),
        ),
    ),
}


def register_enum(literal_type: Any, coercion: EnumCoercion) -> None:
    """Register (or replace) the coercion used for a ``Literal`` type."""
    ENUM_COERCIONS[literal_type] = coercion


# ── Model-directed walk ──────────────────────────────────────────────────────

# Strings read as False for bool fields; any other value goes through bool()
FALSE_WORDS = frozenset({"", "false", "no", "none", "null", "0", "n/a"})


def _is_model(annotation: Any) -> bool:
    return isinstance(annotation, type) and issubclass(annotation, BaseModel)


def _normalize_value(value: Any, annotation: Any) -> Any:
    origin = get_origin(annotation)
    args = get_args(annotation)

    if origin in (Union, types.UnionType):
        if value is None and type(None) in args:
            return None
        members = [a for a in args if a is not type(None)]
        if len(members) == 1:
            return _normalize_value(value, members[0])
        return value

    if origin is Literal:
        coercion = ENUM_COERCIONS.get(annotation)
        return coercion(value) if coercion else value

    if annotation is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in FALSE_WORDS:
            return False
        return bool(value)

    if annotation is str:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    if origin is list and args and isinstance(value, list):
        return [_normalize_value(item, args[0]) for item in value]

    if origin is dict and len(args) == 2 and isinstance(value, dict):
        return {k: _normalize_value(v, args[1]) for k, v in value.items()}

    if _is_model(annotation):
        return _normalize_model(value, annotation)

    return value


def _normalize_model(value: Any, model: type[BaseModel]) -> Any:
    if not isinstance(value, dict):
        return value
    out = dict(value)
    for name, field in model.model_fields.items():
        if field.alias and field.alias in out:
            key = field.alias
        elif name in out:
            key = name
        else:
            continue
        out[key] = _normalize_value(out[key], field.annotation)
    return out


def normalize_for_model(value: Any, model: type[BaseModel]) -> Any:
    """Return a copy of ``value`` with enum-like fields coerced for ``model``."""
    try:
        return _normalize_model(value, model)
    except Exception as e:  # noqa: BLE001
        logger.debug("Normalization skipped for %s: %s", model.__name__, e)
        return value
