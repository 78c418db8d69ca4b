"""Deletion plan construction.

A plan groups the registry references reachable from a root entity into
ordered phases. Each dependent table gets the phase

    max(category rank, 1 + phase of every table that must be emptied before it)

so the documented category grouping is kept wherever the foreign-key graph
allows it, and the graph wins where they disagree.
"""

import functools
from dataclasses import dataclass
from graphlib import CycleError, TopologicalSorter

import structlog

from safe_delete.deletion.errors import PlanError
from safe_delete.deletion.registry import (
    DERIVATIONS,
    KEY_OWNERS,
    REFERENCES,
    ROOTS,
    Category,
    Derivation,
    EntityKind,
    KeyKind,
    Reference,
    ReferenceAction,
    RootSpec,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Phase:
    """Steps that may run in any order relative to each other."""

    number: int
    references: tuple[Reference, ...]

    @property
    def tables(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(ref.table for ref in self.references))


@dataclass(frozen=True)
class DeletionPlan:
    """Ordered phases of guarded delete steps for one root entity."""

    root: RootSpec
    phases: tuple[Phase, ...]
    derivations: tuple[Derivation, ...]
    keys: frozenset[KeyKind]

    @property
    def references(self) -> tuple[Reference, ...]:
        return tuple(ref for phase in self.phases for ref in phase.references)

    def phase_of(self, table: str) -> int:
        """Return the phase number of ``table``; the root table runs after every phase."""
        if table == self.root.table:
            return int(Category.ROOT)
        for phase in self.phases:
            if table in phase.tables:
                return phase.number
        msg = f"Table {table} is not part of the {self.root.entity} deletion plan"
        raise KeyError(msg)

    def describe(self) -> list[str]:
        """Human-readable plan, one line per phase."""
        lines = [
            f"phase {phase.number}: {', '.join(_describe_reference(ref) for ref in phase.references)}"
            for phase in self.phases
        ]
        lines.append(f"finalize: {self.root.table}.{self.root.id_column}")
        return lines


def _describe_reference(ref: Reference) -> str:
    if ref.action is ReferenceAction.NULLIFY:
        return f"{ref.label} (set null)"
    return ref.label


def _reachable(
    root: RootSpec,
    references: tuple[Reference, ...],
    derivations: tuple[Derivation, ...],
) -> tuple[frozenset[KeyKind], tuple[Derivation, ...], tuple[Reference, ...]]:
    available = {root.id_key, *(key for key, _ in root.alternate_keys)}
    seeded = set(available)
    used = []
    for derivation in derivations:
        if derivation.source not in available:
            if derivation.source not in KEY_OWNERS:
                msg = f"Derivation of {derivation.key} consumes unknown key {derivation.source}"
                raise PlanError(msg)
            continue
        if derivation.key in seeded:
            # Never re-derive a key the root row provides directly
            continue
        used.append(derivation)
        available.add(derivation.key)
    refs = tuple(ref for ref in references if ref.key in available and ref.table != root.table)
    return frozenset(available), tuple(used), refs


def _validate(references: tuple[Reference, ...], derivations: tuple[Derivation, ...]) -> None:
    for ref in references:
        if ref.key not in KEY_OWNERS:
            msg = f"Reference {ref.label} uses key {ref.key} with no owning table"
            raise PlanError(msg)
    for derivation in derivations:
        owner_table, _ = KEY_OWNERS[derivation.key]
        if owner_table != derivation.table:
            msg = f"Derivation of {derivation.key} reads {derivation.table}, but the key is owned by {owner_table}"
            raise PlanError(msg)


@functools.cache
def _build(
    entity: EntityKind,
    references: tuple[Reference, ...],
    derivations: tuple[Derivation, ...],
) -> DeletionPlan:
    root = ROOTS[entity]
    _validate(references, derivations)
    keys, used_derivations, refs = _reachable(root, references, derivations)

    # 1. Build table -> tables that must be emptied first
    predecessors: dict[str, set[str]] = {root.table: set()}
    for ref in refs:
        predecessors.setdefault(ref.table, set())
        owner_table, _ = KEY_OWNERS[ref.key]
        if owner_table != ref.table:
            predecessors.setdefault(owner_table, set()).add(ref.table)

    # 2. Reject cycles
    try:
        order = list(TopologicalSorter(predecessors).static_order())
    except CycleError as e:
        msg = f"Reference registry for {entity} contains a dependency cycle: {e.args[1]}"
        raise PlanError(msg) from e

    # 3. Assign phases in topological order
    rank: dict[str, int] = {root.table: int(Category.ROOT)}
    for ref in refs:
        rank[ref.table] = max(rank.get(ref.table, 0), int(ref.category))
    phase_by_table: dict[str, int] = {}
    for table in order:
        earliest = max((phase_by_table[p] + 1 for p in predecessors[table]), default=0)
        phase_by_table[table] = max(rank.get(table, int(Category.ROOT)), earliest)

    if any(phase_by_table[table] >= phase_by_table[root.table] for table in phase_by_table if table != root.table):
        msg = f"Reference registry for {entity} orders a dependent table after the {root.table} row"
        raise PlanError(msg)

    # 4. Group references into phases, keeping registry order inside a phase
    grouped: dict[int, list[Reference]] = {}
    for ref in refs:
        grouped.setdefault(phase_by_table[ref.table], []).append(ref)
    phases = tuple(Phase(number, tuple(grouped[number])) for number in sorted(grouped))

    logger.debug(
        "deletion_plan_built",
        entity=str(entity),
        phase_count=len(phases),
        step_count=len(refs),
    )
    return DeletionPlan(root=root, phases=phases, derivations=used_derivations, keys=keys)


def build_plan(
    entity: EntityKind,
    references: tuple[Reference, ...] = REFERENCES,
    derivations: tuple[Derivation, ...] = DERIVATIONS,
) -> DeletionPlan:
    """
    Build (or return the cached) deletion plan for a root entity.

    Args:
        entity: Root entity kind
        references: Reference registry (defaults to the marketplace registry)
        derivations: Owned-id derivations (defaults to the marketplace registry)

    Returns:
        DeletionPlan with phases in execution order

    Raises:
        PlanError: If the registry is inconsistent or its dependency graph has a cycle
    """
    return _build(entity, references, derivations)
