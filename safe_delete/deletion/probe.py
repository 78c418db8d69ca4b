"""Schema presence probe.

Answers "is this table/column deployed?" from one inspector snapshot taken at
the start of a deletion. When metadata cannot be read, every answer is
``UNKNOWN``; callers then attempt the statement and classify the error text
with ``is_absence_error``.
"""

import enum
import re
from dataclasses import dataclass, field

import structlog
from sqlalchemy import inspect
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

logger = structlog.get_logger(__name__)

# PostgreSQL ("relation/column ... does not exist") and SQLite ("no such table/column") wording
_ABSENCE_PATTERNS = (
    re.compile(r"relation \S+ does not exist", re.IGNORECASE),
    re.compile(r"column \S+ does not exist", re.IGNORECASE),
    re.compile(r"no such (table|column)", re.IGNORECASE),
)
_ABSENCE_ERROR_TYPES = frozenset(
    {
        "UndefinedTableError",
        "UndefinedColumnError",
        "UndefinedTable",
        "UndefinedColumn",
    }
)


class Presence(enum.StrEnum):
    """Probe answer."""

    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class LiveForeignKey:
    """Single-column foreign key observed in the deployed schema."""

    table: str
    column: str
    referred_table: str
    referred_column: str
    ondelete: str | None = None

    @property
    def label(self) -> str:
        return f"{self.table}.{self.column}"


@dataclass(frozen=True)
class SchemaSnapshot:
    """Deployed tables with their column names and outgoing foreign keys."""

    columns: dict[str, frozenset[str]]
    foreign_keys: tuple[LiveForeignKey, ...] = field(default=())


def is_absence_error(exc: BaseException) -> bool:
    """
    Check whether a database error means a table or column is not deployed.

    Args:
        exc: Exception raised by a statement

    Returns:
        True if the error type or message reports a missing relation/column
    """
    orig = getattr(exc, "orig", None)
    for candidate in (exc, orig):
        if candidate is None:
            continue
        if type(candidate).__name__ in _ABSENCE_ERROR_TYPES:
            return True
        message = str(candidate)
        if any(pattern.search(message) for pattern in _ABSENCE_PATTERNS):
            return True
    return False


def _read_snapshot(sync_conn: Connection) -> SchemaSnapshot:
    inspector = inspect(sync_conn)
    columns: dict[str, frozenset[str]] = {}
    foreign_keys: list[LiveForeignKey] = []
    for table in inspector.get_table_names():
        columns[table] = frozenset(col["name"] for col in inspector.get_columns(table))
        for fk in inspector.get_foreign_keys(table):
            constrained = fk.get("constrained_columns") or []
            referred = fk.get("referred_columns") or []
            if len(constrained) == 1 and len(referred) == 1 and fk.get("referred_table"):
                ondelete = (fk.get("options") or {}).get("ondelete")
                foreign_keys.append(LiveForeignKey(table, constrained[0], fk["referred_table"], referred[0], ondelete))
    return SchemaSnapshot(columns=columns, foreign_keys=tuple(foreign_keys))


class SchemaProbe:
    """Answers table/column presence from a snapshot; never raises."""

    def __init__(self, snapshot: SchemaSnapshot | None = None) -> None:
        self._snapshot = snapshot

    @classmethod
    def disabled(cls) -> "SchemaProbe":
        """Probe that answers UNKNOWN for everything."""
        return cls(None)

    @classmethod
    async def load(cls, conn: AsyncConnection) -> "SchemaProbe":
        """
        Snapshot the deployed schema through ``conn``.

        Args:
            conn: Open async connection

        Returns:
            SchemaProbe; a disabled probe if metadata cannot be read
        """
        try:
            snapshot = await conn.run_sync(_read_snapshot)
        except (SQLAlchemyError, NotImplementedError) as e:
            logger.warning("schema_probe_unavailable", error=str(e))
            return cls.disabled()
        logger.debug("schema_probe_loaded", table_count=len(snapshot.columns))
        return cls(snapshot)

    @property
    def enabled(self) -> bool:
        return self._snapshot is not None

    @property
    def foreign_keys(self) -> tuple[LiveForeignKey, ...]:
        return self._snapshot.foreign_keys if self._snapshot else ()

    def presence(self, table: str, column: str | None = None) -> Presence:
        if self._snapshot is None:
            return Presence.UNKNOWN
        columns = self._snapshot.columns.get(table)
        if columns is None:
            return Presence.ABSENT
        if column is not None and column not in columns:
            return Presence.ABSENT
        return Presence.PRESENT

    def exists(self, table: str, column: str | None = None) -> bool:
        """
        Check presence of a table (and optionally a column).

        Returns True when the answer is unknown so the caller attempts the
        statement and relies on error classification instead.
        """
        return self.presence(table, column) is not Presence.ABSENT
