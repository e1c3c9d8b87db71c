"""
Forge Engine — step-pipeline orchestration for agent-driven workflows.

Provides:
- Pipeline composition (.then / .parallel / .commit) with structural
  contract checks at commit time
- Resilient agent-text parsing (extraction, recovery, normalization)
- Retry-with-notify and fire-and-forget step alerts
- A litellm-backed collaborator with tool calling
"""

__version__ = "1.0.0"

from forge_engine.alerts import Alert, AlertLevel, AlertStatus, Notifier
from forge_engine.config import ForgeSettings
from forge_engine.counter import ToolCallCounter
from forge_engine.exceptions import (
    CollaboratorError,
    CommandError,
    ContractDefectError,
    ExtractionQualityError,
    ForgeError,
    MissingRepositoryCoordinatesError,
    PipelineError,
    ResponseParseError,
    ResponseValidationError,
    RetryExhaustedError,
)
from forge_engine.parsing import parse_structured_response
from forge_engine.pipeline import Pipeline, PipelineBuilder, PipelineRun
from forge_engine.retry import with_retry
from forge_engine.steps import ParallelPhase, Step, StepContext, carry, step

__all__ = [
    "Alert", "AlertLevel", "AlertStatus", "Notifier", "ForgeSettings", "ToolCallCounter",
    "CollaboratorError", "CommandError", "ContractDefectError", "ExtractionQualityError",
    "ForgeError", "MissingRepositoryCoordinatesError", "PipelineError", "ResponseParseError",
    "ResponseValidationError", "RetryExhaustedError", "parse_structured_response",
    "Pipeline", "PipelineBuilder", "PipelineRun", "with_retry",
    "ParallelPhase", "Step", "StepContext", "carry", "step",
]
