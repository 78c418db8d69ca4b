"""Deletion plan executor.

Runs the phases of a plan strictly in order. There is no rollback: if a step
fails the executor aborts and the caller re-invokes the deletion, which is
idempotent.
"""

import asyncio
import enum

import structlog

from safe_delete.deletion.errors import CascadeStepError
from safe_delete.deletion.planner import DeletionPlan, Phase
from safe_delete.deletion.registry import KeyKind, ReferenceAction
from safe_delete.deletion.steps import GuardedDeleteStep, StepOutcome, StepResult

logger = structlog.get_logger(__name__)


class ExecutorState(enum.StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class DeletionPlanExecutor:
    """Drives guarded delete steps phase by phase."""

    def __init__(self, step: GuardedDeleteStep, *, concurrent: bool = False) -> None:
        self._step = step
        self._concurrent = concurrent
        self.state = ExecutorState.IDLE
        self.results: list[StepResult] = []

    async def execute(self, plan: DeletionPlan, keys: dict[KeyKind, list[str]]) -> list[StepResult]:
        """
        Execute every phase of ``plan``.

        Args:
            plan: Deletion plan
            keys: Cascade keys captured before execution

        Returns:
            One StepResult per reference, in execution order

        Raises:
            CascadeStepError: On the first step that fails; later phases are not run.
                Any other exception also aborts the executor and propagates.
        """
        if self.state is not ExecutorState.IDLE:
            msg = f"Executor already used (state={self.state})"
            raise RuntimeError(msg)

        self.state = ExecutorState.RUNNING
        for phase in plan.phases:
            logger.debug("cascade_phase_started", entity=str(plan.root.entity), phase=phase.number)
            try:
                await self._run_phase(phase, keys)
            except CascadeStepError as e:
                self.state = ExecutorState.ABORTED
                self.results.append(
                    StepResult(e.table, e.column or "", 0, StepOutcome.ERROR, cause=e.cause)
                )
                logger.error(
                    "cascade_aborted",
                    entity=str(plan.root.entity),
                    phase=phase.number,
                    table=e.table,
                    cause=e.cause,
                )
                raise
            except BaseException as e:
                self.state = ExecutorState.ABORTED
                logger.error(
                    "cascade_aborted",
                    entity=str(plan.root.entity),
                    phase=phase.number,
                    error_type=type(e).__name__,
                )
                raise

        self.state = ExecutorState.COMPLETED
        logger.info(
            "cascade_completed",
            entity=str(plan.root.entity),
            phases=len(plan.phases),
            removed=sum(result.removed for result in self.results if result.action is ReferenceAction.DELETE),
        )
        return list(self.results)

    async def _run_phase(self, phase: Phase, keys: dict[KeyKind, list[str]]) -> None:
        if self._concurrent:
            outcomes = await asyncio.gather(
                *(
                    self._step.run(ref.table, ref.column, keys.get(ref.key, []), ref.action)
                    for ref in phase.references
                ),
                return_exceptions=True,
            )
            first_error: BaseException | None = None
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    first_error = first_error or outcome
                else:
                    self._record(phase, outcome)
            if first_error is not None:
                raise first_error
            return

        for ref in phase.references:
            self._record(phase, await self._step.run(ref.table, ref.column, keys.get(ref.key, []), ref.action))

    def _record(self, phase: Phase, result: StepResult) -> None:
        self.results.append(result)
        logger.info(
            "cascade_step_completed",
            phase=phase.number,
            table=result.table,
            column=result.column,
            outcome=str(result.outcome),
            affected=result.removed,
        )

