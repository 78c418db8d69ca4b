"""Sub-cascade resolver.

Captures the ids of everything a root entity owns (vendor profiles, products,
orders, reviews, chat rooms) before any delete runs, so later phases still
know which rows to remove after their owners are gone.
"""

from collections.abc import Sequence
from itertools import batched

import structlog
from sqlalchemy import column, select, table
from sqlalchemy.exc import SQLAlchemyError

from safe_delete.deletion.errors import CascadeStepError, error_cause, truncate_cause
from safe_delete.deletion.planner import build_plan
from safe_delete.deletion.probe import SchemaProbe, is_absence_error
from safe_delete.deletion.registry import Derivation, EntityKind, KeyKind
from safe_delete.deletion.steps import StatementRunner

logger = structlog.get_logger(__name__)

CascadeKeys = dict[KeyKind, list[str]]


class SubCascadeResolver:
    """Resolves owned ids through the registry's derivations."""

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

    async def lookup(
        self,
        table_name: str,
        column_name: str,
        values: Sequence[str],
        select_column: str = "id",
    ) -> list[str]:
        """
        Select ``select_column`` of rows whose ``column_name`` is in ``values``.

        Returns an empty list without issuing SQL when ``values`` is empty or the
        table/column is not deployed.

        Raises:
            CascadeStepError: If the lookup fails for a reason other than absence
        """
        if not values:
            return []
        if not (self._probe.exists(table_name, column_name) and self._probe.exists(table_name, select_column)):
            return []

        target = table(table_name, column(column_name), column(select_column))
        found: list[str] = []
        for batch in batched(dict.fromkeys(values), self._batch_size):
            statement = select(target.c[select_column]).where(target.c[column_name].in_(batch))
            try:
                found.extend(str(value) for value in await self._runner.scalars(statement) if value is not None)
            except SQLAlchemyError as e:
                if is_absence_error(e):
                    return []
                cause = truncate_cause(error_cause(e), self._cause_max_length)
                logger.error("cascade_lookup_failed", table=table_name, column=column_name, cause=cause)
                raise CascadeStepError(table_name, cause, column_name) from e
        return list(dict.fromkeys(found))

    async def resolve(
        self,
        seed: CascadeKeys,
        derivations: Sequence[Derivation],
        *,
        target: KeyKind | None = None,
    ) -> CascadeKeys:
        """
        Expand seed keys into every owned id the derivations can reach.

        Args:
            seed: Keys known up front (root id, email, phone)
            derivations: Ordered derivations from a deletion plan
            target: Only resolve what is needed to produce this key

        Returns:
            Seed keys plus derived keys (values de-duplicated)
        """
        if target is not None:
            needed = {target}
            for derivation in reversed(derivations):
                if derivation.key in needed:
                    needed.add(derivation.source)
            derivations = [d for d in derivations if d.key in needed]

        keys: CascadeKeys = {key: list(values) for key, values in seed.items()}
        for derivation in derivations:
            ids = await self.lookup(
                derivation.table,
                derivation.column,
                keys.get(derivation.source, []),
                derivation.select_column,
            )
            merged = keys.setdefault(derivation.key, [])
            for value in ids:
                if value not in merged:
                    merged.append(value)

        logger.debug(
            "cascade_keys_resolved",
            **{str(key): len(values) for key, values in keys.items()},
        )
        return keys

    async def resolve_owned_products(self, principal_id: str) -> list[str]:
        """Ids of products listed by any vendor profile of the principal."""
        plan = build_plan(EntityKind.USER)
        keys = await self.resolve({KeyKind.PRINCIPAL_ID: [principal_id]}, plan.derivations, target=KeyKind.PRODUCT_ID)
        return keys.get(KeyKind.PRODUCT_ID, [])

    async def resolve_owned_orders(self, principal_id: str) -> list[str]:
        """Ids of orders placed by the principal or received by any of their vendor profiles."""
        plan = build_plan(EntityKind.USER)
        keys = await self.resolve({KeyKind.PRINCIPAL_ID: [principal_id]}, plan.derivations, target=KeyKind.ORDER_ID)
        return keys.get(KeyKind.ORDER_ID, [])
