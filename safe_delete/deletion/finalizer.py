"""Root finalizer.

Removes the root row once every phase has run:

1. structured DELETE (zero rows affected means someone else already removed it)
2. on error, re-check existence; a vanished row is success
3. still present: re-check the protection guard, then one raw DELETE
4. still failing: scan blocking references and raise ``FinalizationError``
"""

import enum
from collections.abc import Awaitable, Callable

import structlog
from sqlalchemy import column, delete, func, select, table, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.expression import TableClause

from safe_delete.deletion.errors import FinalizationError, error_cause, truncate_cause
from safe_delete.deletion.planner import DeletionPlan
from safe_delete.deletion.probe import is_absence_error
from safe_delete.deletion.registry import KeyKind
from safe_delete.deletion.scanner import BlockingReferenceScanner
from safe_delete.deletion.steps import StatementRunner

logger = structlog.get_logger(__name__)

GuardCheck = Callable[[], Awaitable[None]]


class FinalizationOutcome(enum.StrEnum):
    DELETED = "deleted"
    ALREADY_GONE = "already_gone"
    FALLBACK = "fallback"


class RootFinalizer:
    """Deletes the root row of a plan with a fallback path and a diagnostic on failure."""

    def __init__(
        self,
        runner: StatementRunner,
        scanner: BlockingReferenceScanner,
        *,
        cause_max_length: int = 100,
        recheck_guard: GuardCheck | None = None,
    ) -> None:
        self._runner = runner
        self._scanner = scanner
        self._cause_max_length = cause_max_length
        self._recheck_guard = recheck_guard

    async def finalize(
        self,
        plan: DeletionPlan,
        entity_id: str,
        keys: dict[KeyKind, list[str]],
    ) -> FinalizationOutcome:
        """
        Delete the root row of ``plan``.

        Args:
            plan: Executed deletion plan
            entity_id: Root entity id
            keys: Cascade keys captured before execution (used for the diagnostic scan)

        Returns:
            FinalizationOutcome

        Raises:
            ProtectedEntityError: If the guard re-check refuses the fallback
            FinalizationError: If the row is still present after the fallback
        """
        root = plan.root
        target = table(root.table, column(root.id_column))
        log = logger.bind(entity=str(root.entity), entity_id=entity_id)

        # 1. Structured delete
        try:
            removed = await self._runner.rowcount(delete(target).where(target.c[root.id_column] == entity_id))
        except SQLAlchemyError as e:
            first_cause = truncate_cause(error_cause(e), self._cause_max_length)
            log.warning("root_delete_failed", cause=first_cause)
        else:
            outcome = FinalizationOutcome.DELETED if removed else FinalizationOutcome.ALREADY_GONE
            log.info("root_finalized", outcome=str(outcome))
            return outcome

        # 2. Gone in the meantime?
        if not await self._still_present(target, root.id_column, entity_id):
            log.info("root_finalized", outcome=str(FinalizationOutcome.ALREADY_GONE))
            return FinalizationOutcome.ALREADY_GONE

        # 3. Guard re-check, then raw statement
        if self._recheck_guard is not None:
            await self._recheck_guard()
        quote = self._runner.dialect.identifier_preparer.quote
        raw = text(f"DELETE FROM {quote(root.table)} WHERE {quote(root.id_column)} = :entity_id").bindparams(
            entity_id=entity_id
        )
        try:
            removed = await self._runner.rowcount(raw)
        except SQLAlchemyError as e:
            cause = truncate_cause(error_cause(e), self._cause_max_length)
        else:
            outcome = FinalizationOutcome.FALLBACK if removed else FinalizationOutcome.ALREADY_GONE
            log.info("root_finalized", outcome=str(outcome))
            return outcome

        # 4. Explain what still blocks it
        report = await self._scanner.scan(plan, entity_id, keys)
        log.error("root_finalization_failed", cause=cause, blocking=report.counts)
        raise FinalizationError(str(root.entity), entity_id, report, cause)

    async def _still_present(self, target: TableClause, id_column: str, entity_id: str) -> bool:
        statement = select(func.count()).select_from(target).where(target.c[id_column] == entity_id)
        try:
            return bool(await self._runner.scalar(statement))
        except SQLAlchemyError as e:
            if is_absence_error(e):
                return False
            logger.warning("root_existence_check_failed", entity_id=entity_id, error=str(e))
            return True
