# forge_engine/pipeline.py
"""
Pipeline engine — compose steps with ``.then`` / ``.parallel`` and run them.

    pipeline = (
        PipelineBuilder("context_gathering", input_model=In, output_model=Out)
        .then(gather_start)
        .parallel([analyze_repository, analyze_codebase, analyze_build])
        .then(synthesize_context)
        .commit()
    )
    run = await pipeline.run({"containerId": "abc", "projectId": "p1"})

The step graph is fixed at ``commit()``; structural compatibility of every
boundary is verified there, before any step runs. Execution is sequential
at the top level, concurrent only inside a ParallelPhase, and a phase
fails as a unit.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Union

import structlog
from pydantic import BaseModel, ValidationError

from forge_engine.alerts import Notifier
from forge_engine.contracts import check_compatibility
from forge_engine.counter import ToolCallCounter
from forge_engine.exceptions import ContractDefectError, PipelineError, error_message
from forge_engine.logging_config import new_run_id, run_id_var
from forge_engine.metrics import METRICS
from forge_engine.retry import DEFAULT_MAX_ATTEMPTS
from forge_engine.steps import (
    ParallelPhase,
    Step,
    StepContext,
    StepStatus,
    StepTransition,
    to_wire,
)

logger = logging.getLogger("forge.engine.pipeline")
events = structlog.get_logger("forge.engine.pipeline")

Stage = Union[Step, ParallelPhase]


@dataclass
class PipelineRun:
    """
    One execution of a pipeline.

    Attributes:
        run_id: Unique run identifier.
        pipeline_id: Id of the pipeline definition.
        tool_calls: Counter shared by every step of this run.
        transitions: Ordered step transition log.
        context: Accumulated context (every produced record merged forward,
            keyed by alias). Holds the best partial context on failure.
        output: Validated pipeline output (None until success).
        error: Unrecovered error, if the run failed.
        failed_step: Step that raised ``error``, when known.
    """
    run_id: str
    pipeline_id: str
    tool_calls: ToolCallCounter = field(default_factory=ToolCallCounter)
    transitions: list[StepTransition] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    output: BaseModel | None = None
    error: BaseException | None = None
    failed_step: Step | None = None

    @property
    def tool_call_count(self) -> int:
        return self.tool_calls.value

    @property
    def succeeded(self) -> bool:
        return self.output is not None and self.error is None

    def merge(self, record: BaseModel) -> None:
        self.context.update(to_wire(record))

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline_id": self.pipeline_id,
            "tool_call_count": self.tool_call_count,
            "succeeded": self.succeeded,
            "error": error_message(self.error) if self.error else None,
            "failed_step": self.failed_step.id if self.failed_step else None,
            "transitions": [
                {
                    "step_id": t.step_id,
                    "status": t.status.value,
                    "at": t.at,
                    "duration_ms": t.duration_ms,
                    "error": t.error,
                }
                for t in self.transitions
            ],
        }


class PipelineBuilder:
    """Mutable composition; ``commit()`` freezes it into a ``Pipeline``."""

    def __init__(
        self,
        id: str,
        *,
        input_model: type[BaseModel],
        output_model: type[BaseModel],
        description: str = "",
    ):
        self.id = id
        self.input_model = input_model
        self.output_model = output_model
        self.description = description
        self._stages: list[Stage] = []
        self._seen: set[str] = set()
        self._committed = False

    def _ensure_open(self) -> None:
        if self._committed:
            raise PipelineError(f"Pipeline '{self.id}' is committed; no further steps allowed")

    def _register(self, steps: Iterable[Step]) -> None:
        for s in steps:
            if s.id in self._seen:
                raise PipelineError(f"Duplicate step id '{s.id}' in pipeline '{self.id}'")
            self._seen.add(s.id)

    def then(self, step: Step) -> "PipelineBuilder":
        """Append a sequential step."""
        self._ensure_open()
        self._register([step])
        self._stages.append(step)
        return self

    def parallel(self, steps: Iterable[Step]) -> "PipelineBuilder":
        """Append a fan-out/fan-in phase."""
        self._ensure_open()
        phase = ParallelPhase(tuple(steps))
        self._register(phase.steps)
        self._stages.append(phase)
        return self

    def commit(self) -> "Pipeline":
        """Verify every boundary and freeze the composition."""
        self._ensure_open()
        if not self._stages:
            raise PipelineError(f"Pipeline '{self.id}' has no steps")

        producer = self.input_model
        issues: list[str] = []
        for stage in self._stages:
            consumers = stage.steps if isinstance(stage, ParallelPhase) else (stage,)
            for consumer in consumers:
                issues.extend(
                    f"{producer.__name__} -> {consumer.id}: {issue}"
                    for issue in check_compatibility(producer, consumer.input_model)
                )
            producer = stage.join_model if isinstance(stage, ParallelPhase) else stage.output_model
        issues.extend(
            f"{producer.__name__} -> output: {issue}"
            for issue in check_compatibility(producer, self.output_model)
        )
        if issues:
            raise ContractDefectError(
                f"Pipeline '{self.id}' has {len(issues)} incompatible boundary field(s)",
                issues=issues,
            )

        self._committed = True
        return Pipeline(
            id=self.id,
            input_model=self.input_model,
            output_model=self.output_model,
            stages=tuple(self._stages),
            description=self.description,
        )


@dataclass(frozen=True)
class Pipeline:
    """A committed, immutable step graph."""
    id: str
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    stages: tuple[Stage, ...]
    description: str = ""

    @property
    def step_ids(self) -> list[str]:
        ids: list[str] = []
        for stage in self.stages:
            if isinstance(stage, ParallelPhase):
                ids.extend(s.id for s in stage.steps)
            else:
                ids.append(stage.id)
        return ids

    async def run(
        self,
        raw_input: dict[str, Any] | BaseModel,
        *,
        resources: Any = None,
        notifier: Notifier | None = None,
        counter: ToolCallCounter | None = None,
        run_id: str | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        raise_on_error: bool = True,
    ) -> PipelineRun:
        """
        Execute every stage in order.

        Args:
            raw_input: Data satisfying ``input_model`` (dict keyed by alias
                or a model instance).
            resources: Opaque services object exposed as ``ctx.resources``.
            notifier: Alert sink; a no-op notifier when omitted.
            counter: Tool-call counter to share (a fresh one when omitted).
            run_id: Explicit run id (generated when omitted).
            max_attempts: Default retry budget handed to steps.
            raise_on_error: Re-raise the unrecovered error after recording
                it on the returned run.

        Returns:
            PipelineRun with ``output`` set on success.
        """
        run = PipelineRun(
            run_id=run_id or new_run_id(),
            pipeline_id=self.id,
            tool_calls=counter or ToolCallCounter(),
        )
        notifier = notifier or Notifier()
        token = run_id_var.set(run.run_id)
        start = time.monotonic()
        logger.info("Pipeline '%s' run %s starting (%d stages)", self.id, run.run_id, len(self.stages))

        try:
            payload = to_wire(raw_input) if isinstance(raw_input, BaseModel) else raw_input
            try:
                current: BaseModel = self.input_model.model_validate(payload)
            except ValidationError as e:
                raise PipelineError(f"Invalid input for pipeline '{self.id}': {e}") from e
            run.merge(current)

            for stage in self.stages:
                if isinstance(stage, ParallelPhase):
                    current = await self._run_parallel(stage, current, run, notifier, resources, max_attempts)
                else:
                    current = await self._run_step(stage, to_wire(current), run, notifier, resources, max_attempts)
                    run.merge(current)

            try:
                run.output = self.output_model.model_validate(to_wire(current))
            except ValidationError as e:
                raise ContractDefectError(
                    f"Pipeline '{self.id}' final record violates {self.output_model.__name__}",
                    issues=[str(err) for err in e.errors()],
                ) from e

            logger.info(
                "Pipeline '%s' run %s completed in %dms (tool calls: %d)",
                self.id, run.run_id, int((time.monotonic() - start) * 1000), run.tool_call_count,
            )
            return run
        except Exception as e:
            run.error = e
            logger.error("Pipeline '%s' run %s failed: %s", self.id, run.run_id, error_message(e))
            if raise_on_error:
                raise
            return run
        finally:
            events.info(
                "pipeline_run",
                pipeline=self.id,
                success=run.succeeded,
                duration_ms=int((time.monotonic() - start) * 1000),
                tool_calls=run.tool_call_count,
                failed_step=run.failed_step.id if run.failed_step else None,
                error_type=type(run.error).__name__ if run.error else None,
            )
            run_id_var.reset(token)

    async def _run_step(
        self,
        step: Step,
        data: dict[str, Any],
        run: PipelineRun,
        notifier: Notifier,
        resources: Any,
        max_attempts: int,
    ) -> BaseModel:
        ctx = StepContext(
            run_id=run.run_id,
            step_id=step.id,
            tool_calls=run.tool_calls,
            notifier=notifier,
            resources=resources,
            max_attempts=max_attempts,
        )
        run.transitions.append(StepTransition(step.id, StepStatus.RUNNING))
        start = time.monotonic()
        try:
            output = await step.run(ctx, data)
        except Exception as e:
            elapsed = time.monotonic() - start
            run.transitions.append(StepTransition(
                step.id, StepStatus.FAILED, duration_ms=int(elapsed * 1000), error=error_message(e),
            ))
            if run.failed_step is None:
                run.failed_step = step
            METRICS.record_step(step.id, StepStatus.FAILED.value, elapsed)
            logger.warning("Step '%s' failed after %dms: %s", step.id, int(elapsed * 1000), error_message(e))
            raise

        elapsed = time.monotonic() - start
        run.transitions.append(StepTransition(step.id, StepStatus.SUCCESS, duration_ms=int(elapsed * 1000)))
        METRICS.record_step(step.id, StepStatus.SUCCESS.value, elapsed)
        logger.debug("Step '%s' completed in %dms", step.id, int(elapsed * 1000))
        return output

    async def _run_parallel(
        self,
        phase: ParallelPhase,
        current: BaseModel,
        run: PipelineRun,
        notifier: Notifier,
        resources: Any,
        max_attempts: int,
    ) -> BaseModel:
        shared = to_wire(current)
        # Every member settles before the phase decides; no partial join.
        results = await asyncio.gather(
            *(self._run_step(s, dict(shared), run, notifier, resources, max_attempts) for s in phase.steps),
            return_exceptions=True,
        )
        for member, result in zip(phase.steps, results):
            if isinstance(result, BaseException):
                run.failed_step = member
                raise result

        for record in results:
            run.merge(record)
        return phase.join_model.model_validate(
            {s.id: to_wire(r) for s, r in zip(phase.steps, results)}
        )
