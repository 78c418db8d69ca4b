"""Deletion service: the public entry points of the engine.

Control flow for one invocation:

    guard -> resolver -> executor -> finalizer -> DeletionResult

Each invocation snapshots the schema once, captures every owned id up front,
then runs the plan's phases in order with one unit of work per statement.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
from sqlalchemy import column, select, table
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from safe_delete.core.config import settings
from safe_delete.core.database import get_engine
from safe_delete.core.telemetry import service_span
from safe_delete.deletion.errors import CascadeStepError, error_cause, truncate_cause
from safe_delete.deletion.executor import DeletionPlanExecutor
from safe_delete.deletion.finalizer import FinalizationOutcome, GuardCheck, RootFinalizer
from safe_delete.deletion.guard import PrincipalSnapshot, ProtectedEntityGuard
from safe_delete.deletion.planner import DeletionPlan, build_plan
from safe_delete.deletion.probe import SchemaProbe, is_absence_error
from safe_delete.deletion.registry import ROOTS, EntityKind, KeyKind, ReferenceAction, uncovered_foreign_keys
from safe_delete.deletion.resolver import CascadeKeys, SubCascadeResolver
from safe_delete.deletion.scanner import BlockingReferenceReport, BlockingReferenceScanner
from safe_delete.deletion.steps import (
    AutocommitRunner,
    GuardedDeleteStep,
    StatementRunner,
    StepOutcome,
    StepResult,
    TransactionalRunner,
)

logger = structlog.get_logger(__name__)

_SERVICE = "deletion-service"
_PRINCIPAL_COLUMNS = ("id", "email", "phone", "role")


@dataclass(frozen=True)
class DeletionResult:
    """Outcome of a successful (or already satisfied) deletion."""

    entity: str
    entity_id: str
    outcome: FinalizationOutcome
    steps: tuple[StepResult, ...]

    @property
    def already_gone(self) -> bool:
        return self.outcome is FinalizationOutcome.ALREADY_GONE

    @property
    def removed(self) -> dict[str, int]:
        """Rows removed per ``"table.column"`` step (non-zero only)."""
        return {
            step.label: step.removed for step in self.steps if step.removed and step.action is ReferenceAction.DELETE
        }

    @property
    def nullified(self) -> dict[str, int]:
        """Rows kept with their reference cleared, per ``"table.column"`` step (non-zero only)."""
        return {
            step.label: step.removed for step in self.steps if step.removed and step.action is ReferenceAction.NULLIFY
        }

    @property
    def absent(self) -> list[str]:
        return [step.label for step in self.steps if step.outcome is StepOutcome.ABSENT]


class DeletionService:
    """Safe deletion of principals and products against a possibly drifted schema."""

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        guard: ProtectedEntityGuard | None = None,
        probe_enabled: bool | None = None,
        concurrent_steps: bool | None = None,
        transactional: bool | None = None,
        batch_size: int | None = None,
        cause_max_length: int | None = None,
    ) -> None:
        self._engine = engine
        self._guard = guard if guard is not None else ProtectedEntityGuard.from_settings()
        self._probe_enabled = settings.CASCADE_SCHEMA_PROBE_ENABLED if probe_enabled is None else probe_enabled
        self._transactional = settings.CASCADE_TRANSACTIONAL if transactional is None else transactional
        self._concurrent_steps = settings.CASCADE_CONCURRENT_STEPS if concurrent_steps is None else concurrent_steps
        self._batch_size = batch_size or settings.CASCADE_BATCH_SIZE
        self._cause_max_length = cause_max_length or settings.CASCADE_ERROR_CAUSE_MAX_LENGTH

        if self._transactional and self._concurrent_steps:
            # One connection cannot run statements concurrently
            logger.warning("concurrent_steps_disabled", reason="transactional mode uses a single connection")
            self._concurrent_steps = False

        # Fail at startup rather than mid-deletion if the registry is invalid
        for entity in EntityKind:
            build_plan(entity)

    async def delete_principal_safely(self, principal_id: str) -> DeletionResult:
        """
        Delete a principal and everything that references it.

        Deleting a principal that no longer exists is a successful no-op
        (``outcome == ALREADY_GONE``).

        Args:
            principal_id: Id of the ``users`` row

        Returns:
            DeletionResult with per-step outcomes

        Raises:
            ProtectedEntityError: If the principal is protected (no statement is issued)
            CascadeStepError: If a dependent table could not be cleaned
            FinalizationError: If the principal row could not be removed
        """
        plan = build_plan(EntityKind.USER)
        with service_span(
            "deletion.delete_principal",
            _SERVICE,
        ) as span:
            span.set_attribute("deletion.entity", str(EntityKind.USER))
            span.set_attribute("deletion.entity_id", principal_id)
            span.set_attribute("deletion.phase_count", len(plan.phases))

            async with self._open_runner() as runner:
                probe = await self._load_probe(runner)
                principal = await self._load_principal(runner, probe, principal_id)
                if principal is not None:
                    self._guard.ensure_deletable(principal)
                else:
                    logger.info("principal_not_found", principal_id=principal_id)

                async def recheck_guard() -> None:
                    current = await self._load_principal(runner, probe, principal_id)
                    if current is not None:
                        self._guard.ensure_deletable(current)

                result = await self._cascade(
                    runner,
                    probe,
                    plan,
                    principal_id,
                    self._principal_seed(principal_id, principal),
                    recheck_guard=recheck_guard,
                )

            span.set_attribute("deletion.outcome", str(result.outcome))
            return result

    async def delete_product_safely(self, product_id: str) -> DeletionResult:
        """
        Delete a product with its reviews, cart lines and order items.

        Args:
            product_id: Id of the ``products`` row

        Returns:
            DeletionResult with per-step outcomes

        Raises:
            CascadeStepError: If a dependent table could not be cleaned
            FinalizationError: If the product row could not be removed
        """
        plan = build_plan(EntityKind.PRODUCT)
        with service_span(
            "deletion.delete_product",
            _SERVICE,
        ) as span:
            span.set_attribute("deletion.entity", str(EntityKind.PRODUCT))
            span.set_attribute("deletion.entity_id", product_id)
            span.set_attribute("deletion.phase_count", len(plan.phases))

            async with self._open_runner() as runner:
                probe = await self._load_probe(runner)
                result = await self._cascade(runner, probe, plan, product_id, {KeyKind.PRODUCT_ID: [product_id]})

            span.set_attribute("deletion.outcome", str(result.outcome))
            return result

    async def scan_blocking_references(self, principal_id: str) -> BlockingReferenceReport:
        """
        Report which records reference a principal or anything it owns. Read-only.

        Args:
            principal_id: Id of the ``users`` row

        Returns:
            BlockingReferenceReport with non-zero counts keyed ``"table.column"``
        """
        plan = build_plan(EntityKind.USER)
        with service_span(
            "deletion.scan_blocking_references",
            _SERVICE,
        ) as span:
            span.set_attribute("deletion.entity", str(EntityKind.USER))
            span.set_attribute("deletion.entity_id", principal_id)

            runner = AutocommitRunner(self._engine)
            probe = await self._load_probe(runner)
            principal = await self._load_principal(runner, probe, principal_id)
            resolver = SubCascadeResolver(
                runner, probe, batch_size=self._batch_size, cause_max_length=self._cause_max_length
            )
            keys = await resolver.resolve(self._principal_seed(principal_id, principal), plan.derivations)
            scanner = BlockingReferenceScanner(
                runner, probe, batch_size=self._batch_size, cause_max_length=self._cause_max_length
            )
            report = await scanner.scan(plan, principal_id, keys)

            span.set_attribute("deletion.blocking_tables", len(report.counts))
            return report

    @asynccontextmanager
    async def _open_runner(self) -> AsyncIterator[StatementRunner]:
        if not self._transactional:
            yield AutocommitRunner(self._engine)
            return
        async with self._engine.connect() as conn, conn.begin():
            yield TransactionalRunner(conn)

    async def _load_probe(self, runner: StatementRunner) -> SchemaProbe:
        if not self._probe_enabled:
            return SchemaProbe.disabled()
        probe = await runner.load_probe()
        gaps = uncovered_foreign_keys(probe.foreign_keys)
        if gaps:
            # Reported again by name in any blocking-reference scan
            logger.warning("registry_coverage_gap", foreign_keys=gaps)
        return probe

    async def _load_principal(
        self,
        runner: StatementRunner,
        probe: SchemaProbe,
        principal_id: str,
    ) -> PrincipalSnapshot | None:
        root = ROOTS[EntityKind.USER]
        if not probe.exists(root.table, root.id_column):
            return None
        columns = [name for name in _PRINCIPAL_COLUMNS if probe.exists(root.table, name)]
        while True:
            target = table(root.table, *(column(name) for name in columns))
            statement = select(*(target.c[name] for name in columns)).where(target.c[root.id_column] == principal_id)
            try:
                row = await runner.first_row(statement)
                break
            except SQLAlchemyError as e:
                cause = truncate_cause(error_cause(e), self._cause_max_length)
                if not is_absence_error(e):
                    raise CascadeStepError(root.table, cause) from e
                # Without a probe, drop the undeployed optional column named in the error and retry
                message = str(error_cause(e))
                missing = next((name for name in columns if name != root.id_column and name in message), None)
                if missing is None:
                    return None
                columns.remove(missing)
        if row is None:
            return None
        return PrincipalSnapshot(
            id=str(row["id"]),
            email=row.get("email"),
            phone=row.get("phone"),
            role=str(row["role"]) if row.get("role") is not None else None,
        )

    @staticmethod
    def _principal_seed(principal_id: str, principal: PrincipalSnapshot | None) -> CascadeKeys:
        seed: CascadeKeys = {KeyKind.PRINCIPAL_ID: [principal_id]}
        if principal is not None and principal.email:
            seed[KeyKind.PRINCIPAL_EMAIL] = [principal.email]
        if principal is not None and principal.phone:
            seed[KeyKind.PRINCIPAL_PHONE] = [principal.phone]
        return seed

    async def _cascade(
        self,
        runner: StatementRunner,
        probe: SchemaProbe,
        plan: DeletionPlan,
        entity_id: str,
        seed: CascadeKeys,
        *,
        recheck_guard: GuardCheck | None = None,
    ) -> DeletionResult:
        log = logger.bind(entity=str(plan.root.entity), entity_id=entity_id)
        log.info("deletion_started", phases=len(plan.phases), probe_enabled=probe.enabled)

        # 1. Capture owned ids before anything is removed
        resolver = SubCascadeResolver(
            runner, probe, batch_size=self._batch_size, cause_max_length=self._cause_max_length
        )
        keys = await resolver.resolve(seed, plan.derivations)

        # 2. Run every phase
        step = GuardedDeleteStep(runner, probe, batch_size=self._batch_size, cause_max_length=self._cause_max_length)
        executor = DeletionPlanExecutor(step, concurrent=self._concurrent_steps)
        steps = await executor.execute(plan, keys)

        # 3. Remove the root row
        scanner = BlockingReferenceScanner(
            runner, probe, batch_size=self._batch_size, cause_max_length=self._cause_max_length
        )
        finalizer = RootFinalizer(
            runner,
            scanner,
            cause_max_length=self._cause_max_length,
            recheck_guard=recheck_guard,
        )
        outcome = await finalizer.finalize(plan, entity_id, keys)

        result = DeletionResult(
            entity=str(plan.root.entity),
            entity_id=entity_id,
            outcome=outcome,
            steps=tuple(steps),
        )
        log.info(
            "deletion_completed",
            outcome=str(outcome),
            removed=sum(result.removed.values()),
            nullified=sum(result.nullified.values()),
            absent_steps=len(result.absent),
        )
        return result


async def delete_principal_safely(principal_id: str) -> DeletionResult:
    """Delete a principal using the default engine and settings."""
    return await DeletionService(get_engine()).delete_principal_safely(principal_id)


async def delete_product_safely(product_id: str) -> DeletionResult:
    """Delete a product using the default engine and settings."""
    return await DeletionService(get_engine()).delete_product_safely(product_id)


async def scan_blocking_references(principal_id: str) -> BlockingReferenceReport:
    """Scan blocking references of a principal using the default engine and settings."""
    return await DeletionService(get_engine()).scan_blocking_references(principal_id)
