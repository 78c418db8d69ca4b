"""Blocking-reference scanner.

Read-only diagnostic: counts rows that still reference an entity, for every
registry pair of its plan plus any live foreign key to the root row, or to
something it owns, that the registry does not know about.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from itertools import batched
from typing import Any

import structlog
from sqlalchemy import column, func, select, table
from sqlalchemy.exc import SQLAlchemyError

from safe_delete.deletion.errors import error_cause, truncate_cause
from safe_delete.deletion.planner import DeletionPlan
from safe_delete.deletion.probe import SchemaProbe, is_absence_error
from safe_delete.deletion.registry import KEY_OWNERS, KeyKind
from safe_delete.deletion.steps import StatementRunner

logger = structlog.get_logger(__name__)


@dataclass
class BlockingReferenceReport:
    """Non-zero reference counts keyed ``"table.column"``."""

    entity: str
    entity_id: str
    counts: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def blocking(self) -> bool:
        return bool(self.counts)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "entity_id": self.entity_id,
            "counts": dict(self.counts),
            "errors": dict(self.errors),
        }


class BlockingReferenceScanner:
    """Counts dependent rows without modifying anything."""

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

    async def count(self, table_name: str, column_name: str, values: Sequence[str]) -> int:
        """
        Count rows of ``table_name`` whose ``column_name`` is in ``values``.

        Absent tables/columns and empty ``values`` count as zero.

        Raises:
            SQLAlchemyError: If the count fails for a reason other than absence
        """
        if not values or not self._probe.exists(table_name, column_name):
            return 0
        target = table(table_name, column(column_name))
        total = 0
        for batch in batched(dict.fromkeys(values), self._batch_size):
            statement = select(func.count()).select_from(target).where(target.c[column_name].in_(batch))
            try:
                total += int(await self._runner.scalar(statement) or 0)
            except SQLAlchemyError as e:
                if is_absence_error(e):
                    return 0
                raise
        return total

    async def scan(self, plan: DeletionPlan, entity_id: str, keys: dict[KeyKind, list[str]]) -> BlockingReferenceReport:
        """
        Count every reference to the entity and what it owns.

        Args:
            plan: Deletion plan of the root entity
            entity_id: Root entity id
            keys: Resolved cascade keys

        Returns:
            BlockingReferenceReport with only non-zero counts; count failures
            other than absence are recorded in ``errors``
        """
        report = BlockingReferenceReport(entity=str(plan.root.entity), entity_id=entity_id)
        pairs: list[tuple[str, str, list[str]]] = [
            (ref.table, ref.column, keys.get(ref.key, [])) for ref in plan.references
        ]

        # Live foreign keys to the root row or an owned entity that the registry does not cover
        owned = {KEY_OWNERS[key]: key for key in plan.keys if keys.get(key)}
        known = {ref.label for ref in plan.references}
        for fk in self._probe.foreign_keys:
            key = owned.get((fk.referred_table, fk.referred_column))
            if key is None or fk.label in known or fk.table == plan.root.table:
                continue
            known.add(fk.label)
            pairs.append((fk.table, fk.column, keys[key]))

        for table_name, column_name, values in pairs:
            label = f"{table_name}.{column_name}"
            try:
                found = await self.count(table_name, column_name, values)
            except SQLAlchemyError as e:
                report.errors[label] = truncate_cause(error_cause(e), self._cause_max_length)
                continue
            if found:
                report.counts[label] = report.counts.get(label, 0) + found

        logger.info(
            "blocking_references_scanned",
            entity=report.entity,
            entity_id=entity_id,
            blocking_tables=len(report.counts),
            total=report.total,
            errors=len(report.errors),
        )
        return report
