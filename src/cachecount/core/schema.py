"""
Column mapping for the analytics dataset.

The store exposes a fixed schema of positional string slots ("blobs") and
numeric slots ("doubles"). This module is the single place that knows which
logical field lives in which slot. Both the collector (writes) and the query
engine (reads) go through it.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

# Store limits
MAX_BLOBS = 20
MAX_DOUBLES = 20
MAX_INDEX_BYTES = 96


class ColumnKind(str, Enum):
    """Physical slot type."""
    BLOB = "blob"
    DOUBLE = "double"


@dataclass(frozen=True)
class Column:
    """A logical field bound to a physical slot."""
    name: str
    kind: ColumnKind
    slot: int

    @property
    def physical(self) -> str:
        return f"{self.kind.value}{self.slot}"


COLUMNS: tuple[Column, ...] = (
    # blobs
    Column("host", ColumnKind.BLOB, 1),
    Column("user_agent", ColumnKind.BLOB, 2),
    Column("path", ColumnKind.BLOB, 3),
    Column("country", ColumnKind.BLOB, 4),
    Column("referrer", ColumnKind.BLOB, 5),
    Column("browser_name", ColumnKind.BLOB, 6),
    Column("device_model", ColumnKind.BLOB, 7),
    Column("site_id", ColumnKind.BLOB, 8),
    Column("browser_version", ColumnKind.BLOB, 9),
    Column("device_type", ColumnKind.BLOB, 10),
    Column("utm_source", ColumnKind.BLOB, 11),
    Column("utm_medium", ColumnKind.BLOB, 12),
    Column("utm_campaign", ColumnKind.BLOB, 13),
    Column("utm_term", ColumnKind.BLOB, 14),
    Column("utm_content", ColumnKind.BLOB, 15),
    Column("region", ColumnKind.BLOB, 16),
    Column("city", ColumnKind.BLOB, 17),

    # doubles
    Column("new_visitor", ColumnKind.DOUBLE, 1),  # first hit of the calendar day
    Column("new_session", ColumnKind.DOUBLE, 2),  # first hit after 30m inactivity
    Column("bounce", ColumnKind.DOUBLE, 3),  # 1, -1 or 0, see core.hits.bounce_value
)


def _build_index(columns: tuple[Column, ...]) -> dict[str, Column]:
    """Index columns by logical name, rejecting any overlap."""
    by_name: dict[str, Column] = {}
    seen_slots: set[str] = set()

    for column in columns:
        if column.name in by_name:
            raise ValueError(f"Duplicate logical column: {column.name}")
        if column.physical in seen_slots:
            raise ValueError(f"Physical slot {column.physical} mapped twice")

        limit = MAX_BLOBS if column.kind == ColumnKind.BLOB else MAX_DOUBLES
        if not 1 <= column.slot <= limit:
            raise ValueError(f"{column.physical} is outside the store schema")

        by_name[column.name] = column
        seen_slots.add(column.physical)

    return by_name


_BY_NAME = _build_index(COLUMNS)

# logical name -> physical slot, e.g. {"path": "blob3"}
COLUMN_MAPPINGS: Mapping[str, str] = MappingProxyType(
    {name: column.physical for name, column in _BY_NAME.items()}
)

_BY_PHYSICAL: Mapping[str, str] = MappingProxyType(
    {physical: name for name, physical in COLUMN_MAPPINGS.items()}
)

BLOB_COLUMNS = tuple(sorted(
    (c for c in COLUMNS if c.kind == ColumnKind.BLOB), key=lambda c: c.slot
))
DOUBLE_COLUMNS = tuple(sorted(
    (c for c in COLUMNS if c.kind == ColumnKind.DOUBLE), key=lambda c: c.slot
))


def physical_column(name: str) -> str:
    """Return the physical slot for a logical column name.

    Raises:
        KeyError: If the name is not part of the mapping
    """
    try:
        return COLUMN_MAPPINGS[name]
    except KeyError:
        raise KeyError(f"Unknown logical column: {name}") from None


def logical_column(physical: str) -> str:
    """Return the logical name stored in a physical slot."""
    try:
        return _BY_PHYSICAL[physical]
    except KeyError:
        raise KeyError(f"Unmapped physical column: {physical}") from None


def is_blob(name: str) -> bool:
    return name in _BY_NAME and _BY_NAME[name].kind == ColumnKind.BLOB


def to_blobs(values: Mapping[str, Any]) -> list[str]:
    """Lay out string values positionally (blob1 first).

    Unknown keys are dropped. Slots without a value are written as "".
    """
    width = BLOB_COLUMNS[-1].slot if BLOB_COLUMNS else 0
    blobs = [""] * width
    for column in BLOB_COLUMNS:
        value = values.get(column.name)
        blobs[column.slot - 1] = "" if value is None else str(value)
    return blobs


def to_doubles(values: Mapping[str, Any]) -> list[float]:
    """Lay out numeric values positionally (double1 first)."""
    width = DOUBLE_COLUMNS[-1].slot if DOUBLE_COLUMNS else 0
    doubles = [0.0] * width
    for column in DOUBLE_COLUMNS:
        value = values.get(column.name)
        doubles[column.slot - 1] = float(value or 0)
    return doubles


def to_index(site_id: str | None) -> str:
    """Truncate the index key to the store's byte limit."""
    encoded = (site_id or "").encode("utf-8")[:MAX_INDEX_BYTES]
    return encoded.decode("utf-8", errors="ignore")
