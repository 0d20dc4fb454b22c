"""Atomic sequential ID generation for execution records.

Uses the ``id_counters`` table inside the caller's transaction so the
counter increment commits or rolls back with the surrounding writes.
Minimum 4 digits, grows naturally past 9999.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select, update

from crmflow.infrastructure.database.engine import SEQUENTIAL_PREFIXES
from crmflow.infrastructure.database.schema import id_counters

if TYPE_CHECKING:
    from sqlalchemy import Connection


def next_sequential_id(conn: Connection, type_prefix: str) -> str:
    """Claim the next sequential ID for *type_prefix* (e.g. ``"RUN-0007"``).

    Raises:
        ValueError: If *type_prefix* is not a recognized sequential type.
    """
    if type_prefix not in SEQUENTIAL_PREFIXES:
        msg = (
            f"Unknown sequential type prefix: {type_prefix!r}. "
            f"Expected one of {sorted(SEQUENTIAL_PREFIXES)}"
        )
        raise ValueError(msg)

    row = conn.execute(
        select(id_counters.c.next_value).where(id_counters.c.type_prefix == type_prefix)
    ).one()
    current_value: int = row.next_value

    conn.execute(
        update(id_counters)
        .where(id_counters.c.type_prefix == type_prefix)
        .values(next_value=current_value + 1)
    )
    return f"{type_prefix}{current_value:04d}"
