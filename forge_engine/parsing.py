# forge_engine/parsing.py
"""
Structured-response parsing: free agent text → validated pydantic record.

Two tiers, short-circuiting on first success:

1. extract → json parse → normalize → validate
2. (if recovery is enabled) recover → json parse → normalize → validate

A cheap quality gate runs before any parse so that obviously empty or
placeholder responses fail fast with ``ExtractionQualityError``.
"""
import json
import logging
from dataclasses import dataclass
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from forge_engine.exceptions import (
    ExtractionQualityError,
    ResponseParseError,
    ResponseValidationError,
    preview,
)
from forge_engine.extraction import MIN_CANDIDATE_CHARS, extract_json_text
from forge_engine.metrics import METRICS
from forge_engine.normalization import normalize_for_model
from forge_engine.recovery import recover_json_text

logger = logging.getLogger("forge.engine.parsing")

T = TypeVar("T", bound=BaseModel)

PLACEHOLDER = "..."


@dataclass
class AgentCallAttempt:
    """One collaborator call and everything derived from its text.

    Lives only for the duration of a retry attempt; never persisted.
    """
    prompt: str
    schema: type[BaseModel]
    raw_text: str = ""
    extracted: str | None = None
    recovered: str | None = None
    value: BaseModel | None = None
    failure: str | None = None


def _violations(error: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in error.errors()
    ]


def _parse_normalize_validate(text: str, schema: type[T]) -> T:
    data = json.loads(text)
    return schema.model_validate(normalize_for_model(data, schema))


def check_extraction_quality(extracted: str, raw_text: str) -> None:
    """Raise ``ExtractionQualityError`` for degenerate candidates."""
    if len(extracted) < MIN_CANDIDATE_CHARS or extracted == PLACEHOLDER or "{" not in extracted:
        raise ExtractionQualityError(
            f"Poor JSON extraction: candidate of {len(extracted)} chars is not parseable",
            preview=preview(raw_text),
        )


def parse_attempt(attempt: AgentCallAttempt, *, recover: bool = True) -> BaseModel:
    """Fill ``attempt`` in place and return the validated value."""
    schema = attempt.schema
    attempt.extracted = extract_json_text(attempt.raw_text)

    try:
        check_extraction_quality(attempt.extracted, attempt.raw_text)
    except ExtractionQualityError as e:
        attempt.failure = str(e)
        METRICS.record_parse("extraction_quality")
        raise

    try:
        attempt.value = _parse_normalize_validate(attempt.extracted, schema)
        METRICS.record_parse("parsed")
        return attempt.value
    except (json.JSONDecodeError, ValidationError) as e:
        original_error: Exception = e

    last_error: Exception = original_error
    recovery_message: str | None = None
    if recover:
        attempt.recovered = recover_json_text(attempt.extracted)
        try:
            attempt.value = _parse_normalize_validate(attempt.recovered, schema)
            logger.debug("Recovered %s after repair pass", schema.__name__)
            METRICS.record_parse("recovered")
            return attempt.value
        except (json.JSONDecodeError, ValidationError) as e:
            last_error = e
            recovery_message = str(e)

    message = f"Failed to parse {schema.__name__}: {original_error}"
    if recovery_message is not None:
        message += f" | after recovery: {recovery_message}"
    attempt.failure = message

    if isinstance(last_error, ValidationError):
        METRICS.record_parse("validation_error")
        raise ResponseValidationError(
            message,
            original_error=str(original_error),
            recovery_error=recovery_message,
            preview=preview(attempt.extracted),
            violations=_violations(last_error),
        ) from last_error

    METRICS.record_parse("parse_error")
    raise ResponseParseError(
        message,
        original_error=str(original_error),
        recovery_error=recovery_message,
        preview=preview(attempt.extracted),
    ) from last_error


def parse_structured_response(
    text: str,
    schema: type[T],
    *,
    recover: bool = True,
    prompt: str = "",
) -> T:
    """Turn collaborator ``text`` into a validated ``schema`` instance.

    Raises:
        ExtractionQualityError: candidate shorter than 10 chars, ``"..."``,
            or without any ``{``; no JSON parse is attempted.
        ResponseValidationError: JSON parsed but the value fails ``schema``.
        ResponseParseError: JSON invalid even after the recovery pass.
    """
    attempt = AgentCallAttempt(prompt=prompt, schema=schema, raw_text=text or "")
    return parse_attempt(attempt, recover=recover)  # type: ignore[return-value]

