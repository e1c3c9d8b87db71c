# forge_engine/steps.py
"""
Step and ParallelPhase — the units a pipeline is composed from.

A Step pairs an async execute function with declared input and output
models. Records cross step boundaries as plain JSON-shaped dicts keyed by
alias, so a consumer only needs to be structurally compatible with its
producer, not the same class.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel, ValidationError, create_model

from forge_engine.alerts import Alert, AlertLevel, AlertStatus, Notifier
from forge_engine.counter import ToolCallCounter
from forge_engine.exceptions import ContractDefectError, PipelineError, error_message
from forge_engine.metrics import METRICS
from forge_engine.retry import DEFAULT_MAX_ATTEMPTS, with_retry

logger = logging.getLogger("forge.engine.steps")

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")

ExecuteFn = Callable[["StepContext", Any], Awaitable[Any]]


class StepStatus(str, Enum):
    """Status of a step within one run."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class StepTransition:
    """One entry of a run's ordered transition log."""
    step_id: str
    status: StepStatus
    at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    duration_ms: int = 0
    error: str | None = None


@dataclass
class StepContext:
    """
    Everything a step's execute function may touch besides its input.

    Attributes:
        run_id: Identifier of the current pipeline run.
        step_id: Identifier of the executing step.
        tool_calls: Counter shared by every step of the run.
        notifier: Alert sink (fire-and-forget).
        resources: Opaque services object supplied by the caller of
            ``Pipeline.run`` (agents, shims, settings, ...).
        max_attempts: Default retry budget for ``retry``.
    """
    run_id: str
    step_id: str
    tool_calls: ToolCallCounter
    notifier: Notifier
    resources: Any = None
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def alert(
        self,
        status: AlertStatus | str,
        title: str,
        *,
        subtitle: str | None = None,
        level: AlertLevel | str | None = None,
        container_id: str | None = None,
        project_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Emit a lifecycle alert stamped with step, run and tool-call count."""
        try:
            self.notifier.notify(Alert(
                step_id=self.step_id,
                status=AlertStatus(status),
                run_id=self.run_id,
                title=title,
                subtitle=subtitle,
                level=AlertLevel(level) if level else None,
                container_id=container_id or None,
                project_id=project_id or None,
                tool_call_count=self.tool_calls.value,
                metadata=metadata,
            ))
        except Exception as e:  # noqa: BLE001
            logger.debug("Alert for %s not emitted: %s", self.step_id, e)

    async def retry(
        self,
        attempt: Callable[[], Awaitable[T]],
        *,
        title: str = "Retrying after error",
        max_attempts: int | None = None,
        container_id: str | None = None,
    ) -> T:
        """Run ``attempt`` with a retry budget, alerting on every retry."""
        budget = max_attempts or self.max_attempts

        def _on_retry(attempt_number: int, error: BaseException) -> None:
            METRICS.record_retry(self.step_id)
            self.alert(
                AlertStatus.IN_PROGRESS,
                title,
                subtitle=error_message(error),
                level=AlertLevel.WARNING,
                container_id=container_id,
                metadata={"attempt": attempt_number, "maxAttempts": budget},
            )

        return await with_retry(
            attempt,
            max_attempts=budget,
            on_retry=_on_retry,
            label=f"Step '{self.step_id}'",
        )


def _violations(error: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in error.errors()
    ]


def to_wire(record: BaseModel) -> dict[str, Any]:
    """JSON-shaped dict keyed by alias; the form records take between steps."""
    return record.model_dump(mode="json", by_alias=True)


def carry(source: BaseModel, target: type[M], **updates: Any) -> M:
    """Build ``target`` from ``source``'s fields plus ``updates`` (by field name).

    Mirrors the pass-through of shared context: whatever ``target``
    declares and ``source`` has flows forward unchanged.
    """
    data = to_wire(source)
    for name, value in updates.items():
        info = target.model_fields.get(name)
        key = info.alias if info is not None and info.alias else name
        data[key] = to_wire(value) if isinstance(value, BaseModel) else value
    return target.model_validate(data)


@dataclass(frozen=True)
class Step:
    """
    A named unit of pipeline work.

    Attributes:
        id: Unique identifier (a Python identifier, used as join key).
        input_model: Declared input contract.
        output_model: Declared output contract.
        execute: ``async (ctx, input) -> output``; may return a model or dict.
        description: Human-readable summary.
        fatal: When True, a failure of this step must surface to the
            pipeline caller instead of being reported as a failed run.
    """
    id: str
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    execute: ExecuteFn
    description: str = ""
    fatal: bool = False

    def __post_init__(self):
        if not self.id.isidentifier():
            raise PipelineError(f"Step id must be an identifier, got {self.id!r}")

    def parse_input(self, data: dict[str, Any]) -> BaseModel:
        try:
            return self.input_model.model_validate(data)
        except ValidationError as e:
            raise ContractDefectError(
                f"Step '{self.id}' received input that violates {self.input_model.__name__}",
                step_id=self.id,
                issues=_violations(e),
            ) from e

    def validate_output(self, result: Any) -> BaseModel:
        payload = to_wire(result) if isinstance(result, BaseModel) else result
        try:
            return self.output_model.model_validate(payload)
        except ValidationError as e:
            raise ContractDefectError(
                f"Step '{self.id}' produced output that violates {self.output_model.__name__}",
                step_id=self.id,
                issues=_violations(e),
            ) from e

    async def run(self, ctx: StepContext, data: dict[str, Any]) -> BaseModel:
        result = await self.execute(ctx, self.parse_input(data))
        return self.validate_output(result)


def step(
    id: str,
    *,
    input_model: type[BaseModel],
    output_model: type[BaseModel],
    description: str | None = None,
    fatal: bool = False,
) -> Callable[[ExecuteFn], Step]:
    """Decorator turning an async function into a ``Step``.

    Usage:
        @step("github_clone", input_model=DockerOutput, output_model=CloneOutput)
        async def github_clone(ctx, data):
            ...
    """
    def decorator(func: ExecuteFn) -> Step:
        doc = (func.__doc__ or "").strip().splitlines()
        return Step(
            id=id,
            input_model=input_model,
            output_model=output_model,
            execute=func,
            description=description if description is not None else (doc[0] if doc else ""),
            fatal=fatal,
        )
    return decorator


@dataclass(frozen=True)
class ParallelPhase:
    """Steps run concurrently on the same input; outputs joined by step id."""
    steps: tuple[Step, ...]

    def __post_init__(self):
        if not self.steps:
            raise PipelineError("ParallelPhase needs at least one step")
        ids = [s.id for s in self.steps]
        if len(set(ids)) != len(ids):
            raise PipelineError(f"Duplicate step ids in parallel phase: {ids}")
        join = create_model(
            "Join_" + "_".join(ids),
            **{s.id: (s.output_model, ...) for s in self.steps},
        )
        object.__setattr__(self, "_join_model", join)

    @property
    def id(self) -> str:
        return "parallel[" + ",".join(s.id for s in self.steps) + "]"

    @property
    def join_model(self) -> type[BaseModel]:
        """Model of the fan-in record ``{step_id: step_output}``."""
        return self._join_model  # type: ignore[attr-defined]
