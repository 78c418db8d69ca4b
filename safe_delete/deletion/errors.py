"""Deletion engine exceptions.

``CascadeError`` is the base a route layer translates into an error response;
``ProtectedEntityError`` is kept separate so callers can map it to a
forbidden/conflict status instead.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from safe_delete.deletion.scanner import BlockingReferenceReport


def truncate_cause(cause: object, max_length: int) -> str:
    """Render an error cause as a single line of at most ``max_length`` characters."""
    text = " ".join(str(cause).split())
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def error_cause(exc: BaseException) -> BaseException:
    """Driver-level error wrapped by a SQLAlchemy ``DBAPIError``, or ``exc`` itself."""
    orig = getattr(exc, "orig", None)
    return orig if orig is not None else exc


class DeletionError(Exception):
    """Base class for all deletion errors."""


class ProtectedEntityError(DeletionError):
    """Raised when a deletion targets a protected principal."""

    def __init__(self, entity_id: str, reason: str) -> None:
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Principal {entity_id} is protected and cannot be deleted: {reason}")


class PlanError(DeletionError):
    """Raised when the reference registry cannot produce a valid deletion plan."""


class CascadeError(DeletionError):
    """Base class for failures while cascading or finalizing a deletion."""


class CascadeStepError(CascadeError):
    """A delete or lookup against one dependent table failed for a reason other than absence."""

    def __init__(self, table: str, cause: str, column: str | None = None) -> None:
        self.table = table
        self.column = column
        self.cause = cause
        super().__init__(f"Failed to delete from {table}: {cause}")


class FinalizationError(CascadeError):
    """The root row could not be removed; ``report`` lists what still references it."""

    def __init__(
        self,
        entity: str,
        entity_id: str,
        report: "BlockingReferenceReport",
        cause: str,
    ) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.report = report
        self.cause = cause
        blocking = ", ".join(f"{label}={count}" for label, count in report.counts.items()) or "none found"
        super().__init__(f"Failed to delete {entity} {entity_id}: {cause} (blocking references: {blocking})")


class SchemaAbsent(Exception):  # noqa: N818
    """Internal signal that a table or column is not deployed. Never surfaced to callers."""

    def __init__(self, table: str, column: str | None = None) -> None:
        self.table = table
        self.column = column
        target = f"{table}.{column}" if column else table
        super().__init__(f"{target} does not exist")
