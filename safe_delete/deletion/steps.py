"""Guarded delete step and the statement runners it executes through.

Every statement runs in its own unit of work: a short transaction on the
engine (``AutocommitRunner``) or a SAVEPOINT inside one long transaction
(``TransactionalRunner``). A failed statement therefore never poisons the
statements after it.
"""

import enum
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from itertools import batched
from typing import Any, TypeVar

import structlog
from sqlalchemy import column, delete, table, update
from sqlalchemy.engine import CursorResult, Dialect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql import Executable

from safe_delete.deletion.errors import CascadeStepError, SchemaAbsent, error_cause, truncate_cause
from safe_delete.deletion.probe import SchemaProbe, is_absence_error
from safe_delete.deletion.registry import ReferenceAction

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class StepOutcome(enum.StrEnum):
    """Result classification of one guarded delete step."""

    REMOVED = "removed"
    NULLIFIED = "nullified"
    EMPTY = "empty"
    ABSENT = "absent"
    ERROR = "error"


@dataclass(frozen=True)
class StepResult:
    """Rows affected by one step; a NULLIFY step counts the rows it unassigned, not removed."""

    table: str
    column: str
    removed: int
    outcome: StepOutcome
    cause: str | None = None
    action: ReferenceAction = ReferenceAction.DELETE

    @property
    def label(self) -> str:
        return f"{self.table}.{self.column}"


class StatementRunner(ABC):
    """Executes one statement per unit of work and extracts its result inside that unit."""

    dialect: Dialect

    @abstractmethod
    async def _run(self, statement: Executable, extract: Callable[[CursorResult[Any]], T]) -> T:
        """Execute ``statement`` in a fresh unit of work and return ``extract(result)``."""

    @abstractmethod
    async def load_probe(self) -> SchemaProbe:
        """Snapshot the deployed schema."""

    async def rowcount(self, statement: Executable) -> int:
        return await self._run(statement, lambda result: result.rowcount)

    async def scalars(self, statement: Executable) -> list[Any]:
        return await self._run(statement, lambda result: list(result.scalars().all()))

    async def scalar(self, statement: Executable) -> Any:
        return await self._run(statement, lambda result: result.scalar())

    async def first_row(self, statement: Executable) -> dict[str, Any] | None:
        def extract(result: CursorResult[Any]) -> dict[str, Any] | None:
            row = result.mappings().first()
            return dict(row) if row is not None else None

        return await self._run(statement, extract)


class AutocommitRunner(StatementRunner):
    """Runs each statement in its own committed transaction."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self.dialect = engine.dialect

    async def _run(self, statement: Executable, extract: Callable[[CursorResult[Any]], T]) -> T:
        async with self._engine.begin() as conn:
            result = await conn.execute(statement)
            return extract(result)

    async def load_probe(self) -> SchemaProbe:
        async with self._engine.connect() as conn:
            return await SchemaProbe.load(conn)


class TransactionalRunner(StatementRunner):
    """Runs each statement in a SAVEPOINT of a caller-owned transaction."""

    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn
        self.dialect = conn.dialect

    async def _run(self, statement: Executable, extract: Callable[[CursorResult[Any]], T]) -> T:
        async with self._conn.begin_nested():
            result = await self._conn.execute(statement)
            return extract(result)

    async def load_probe(self) -> SchemaProbe:
        return await SchemaProbe.load(self._conn)


class GuardedDeleteStep:
    """Deletes rows of one table matching a key, tolerating an undeployed table or column."""

    def __init__(
        self,
        runner: StatementRunner,
        probe: SchemaProbe,
        *,
        batch_size: int = 500,
        cause_max_length: int = 100,
    ) -> None:
        self._runner = runner
        self._probe = probe
        self._batch_size = batch_size
        self._cause_max_length = cause_max_length

    async def run(
        self,
        table_name: str,
        column_name: str,
        values: Sequence[str],
        action: ReferenceAction = ReferenceAction.DELETE,
    ) -> StepResult:
        """
        Delete rows of ``table_name`` whose ``column_name`` is in ``values``.

        With ``ReferenceAction.NULLIFY`` the matching rows are kept and
        ``column_name`` is set to NULL instead.

        Args:
            table_name: Dependent table
            column_name: Column holding the key
            values: Key values; an empty sequence issues no statement
            action: Delete the rows or clear the column

        Returns:
            StepResult classified REMOVED, NULLIFIED, EMPTY or ABSENT

        Raises:
            CascadeStepError: If a statement fails for any reason other than absence
        """
        affected = 0
        try:
            if not self._probe.exists(table_name, column_name):
                raise SchemaAbsent(table_name, column_name)
            unique_values = list(dict.fromkeys(values))
            if not unique_values:
                return StepResult(table_name, column_name, 0, StepOutcome.EMPTY, action=action)

            target = table(table_name, column(column_name))
            for batch in batched(unique_values, self._batch_size):
                if action is ReferenceAction.NULLIFY:
                    statement = update(target).where(target.c[column_name].in_(batch)).values({column_name: None})
                else:
                    statement = delete(target).where(target.c[column_name].in_(batch))
                try:
                    affected += await self._runner.rowcount(statement)
                except SQLAlchemyError as e:
                    if is_absence_error(e):
                        raise SchemaAbsent(table_name, column_name) from e
                    cause = truncate_cause(error_cause(e), self._cause_max_length)
                    logger.error(
                        "cascade_step_failed",
                        table=table_name,
                        column=column_name,
                        action=str(action),
                        affected=affected,
                        cause=cause,
                    )
                    raise CascadeStepError(table_name, cause, column_name) from e
        except SchemaAbsent:
            return StepResult(table_name, column_name, affected, StepOutcome.ABSENT, action=action)

        if not affected:
            outcome = StepOutcome.EMPTY
        elif action is ReferenceAction.NULLIFY:
            outcome = StepOutcome.NULLIFIED
        else:
            outcome = StepOutcome.REMOVED
        return StepResult(table_name, column_name, affected, outcome, action=action)
