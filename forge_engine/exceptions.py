"""Engine-specific exceptions."""
from typing import Any

PREVIEW_CHARS = 500


class ForgeError(Exception):
    """Base exception for forge_engine."""
    pass


class ExtractionQualityError(ForgeError):
    """Extracted candidate text is too short or degenerate to parse."""

    def __init__(self, message: str, preview: str = ""):
        super().__init__(message)
        self.preview = preview


class ResponseParseError(ForgeError):
    """JSON is still invalid after one recovery pass."""

    def __init__(
        self,
        message: str,
        original_error: str,
        recovery_error: str | None = None,
        preview: str = "",
    ):
        super().__init__(message)
        self.original_error = original_error
        self.recovery_error = recovery_error
        self.preview = preview


class ResponseValidationError(ResponseParseError):
    """Parsed and normalized value does not satisfy the target schema."""

    def __init__(
        self,
        message: str,
        original_error: str,
        recovery_error: str | None = None,
        preview: str = "",
        violations: list[str] | None = None,
    ):
        super().__init__(message, original_error, recovery_error, preview)
        self.violations = violations or []


class RetryExhaustedError(ForgeError):
    """A wrapped operation failed on every attempt."""

    def __init__(self, message: str, attempts: int, last_error: BaseException):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class ContractDefectError(ForgeError):
    """A step composition or step output violates a declared schema.

    Never retried: the same definition reproduces the same defect.
    """

    def __init__(self, message: str, step_id: str = "", issues: list[str] | None = None):
        super().__init__(message)
        self.step_id = step_id
        self.issues = issues or []


class MissingRepositoryCoordinatesError(ForgeError):
    """No owner/repo pair could be derived from the run input."""
    pass


class CollaboratorError(ForgeError):
    """Text-generation collaborator errors (model unavailable, timeout, etc.)."""
    pass


class CommandError(ForgeError):
    """A shell or docker command exited non-zero."""

    def __init__(self, command: str, returncode: int | None, stderr: str = ""):
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"Command failed: {detail}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class PipelineError(ForgeError):
    """Pipeline composition misuse (edit after commit, duplicate ids, etc.)."""
    pass


def error_message(error: Any) -> str:
    """Readable message for any raised or passed-around value."""
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    if isinstance(error, str):
        return error
    return str(error)


def to_error(error: Any) -> BaseException:
    """Wrap a non-exception value so it can be raised with a message."""
    if isinstance(error, BaseException):
        return error
    return ForgeError(error_message(error))


def preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    return (text or "")[:limit]
