"""Source-to-destination id mapping shared by the migrator and the importer.

Named entities (Client, Project, Task) are matched by their unique name:
a source row whose name already exists in the destination maps onto the
existing row; otherwise a new row is inserted and its id recorded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

from ..database import crud

if TYPE_CHECKING:
    from ..providers.base import StorageBackend

logger = logging.getLogger(__name__)

CLIENT_COLUMNS = ("rate", "currency", "created_at", "updated_at")
PROJECT_COLUMNS = (
    "color",
    "icon",
    "total_time",
    "dark_icons",
    "icon_color",
    "icon_color_mode",
    "created_at",
    "updated_at",
)
TASK_COLUMNS = ("created_at", "updated_at")

RowHook = Callable[[Mapping[str, Any], dict[str, Any]], None]


@dataclass
class IdMap:
    """Source id -> destination id for one table."""

    table: str
    ids: dict[int, int] = field(default_factory=dict)

    def __contains__(self, source_id: object) -> bool:
        return source_id in self.ids

    def __len__(self) -> int:
        return len(self.ids)

    def add(self, source_id: int, dest_id: int) -> None:
        self.ids[int(source_id)] = int(dest_id)

    def get(self, source_id: int | None, default: int | None = None) -> int | None:
        if source_id is None:
            return default
        return self.ids.get(int(source_id), default)


def carry(row: Mapping[str, Any], columns: Iterable[str]) -> dict[str, Any]:
    """Pick the listed columns that the source row has a value for.

    Missing and NULL values are left out so the destination defaults apply.
    """
    return {col: row[col] for col in columns if col in row and row[col] is not None}


def copy_named_rows(
    dest: StorageBackend,
    table: str,
    rows: Iterable[Mapping[str, Any]],
    columns: Iterable[str],
    *,
    keep_ids: bool = False,
    skip_ids: Iterable[int] = (),
    hook: RowHook | None = None,
) -> tuple[IdMap, int]:
    """Insert named rows the destination lacks and map every source id.

    Args:
        dest: Destination backend (caller manages the transaction).
        table: Table with a unique `name` column.
        rows: Source rows; each needs `id` and `name`.
        columns: Extra columns to carry over when present.
        keep_ids: Reuse the source id when it is free in the destination.
        skip_ids: Source ids that are neither copied nor mapped.
        hook: Called with (source_row, payload) to adjust the payload before
            insert, e.g. to remap foreign keys.

    Returns:
        Tuple of (id map, rows inserted).
    """
    id_map = IdMap(table)
    skipped = set(skip_ids)
    columns = tuple(columns)
    inserted = 0

    for row in rows:
        source_id = row.get("id")
        name = row.get("name")
        if source_id is None or source_id in skipped:
            continue
        if not name:
            logger.warning("Skipping %s %s without a name", table, source_id)
            continue

        existing = crud.find_id_by_name(dest, table, name)
        if existing is not None:
            id_map.add(source_id, existing)
            continue

        payload: dict[str, Any] = {"name": name, **carry(row, columns)}
        if hook is not None:
            hook(row, payload)
        if keep_ids and not crud.id_exists(dest, table, source_id):
            payload = {"id": source_id, **payload}
        new_id = crud.insert_row(dest, table, payload)
        id_map.add(source_id, new_id)
        inserted += 1

    logger.info("%s: %d inserted, %d mapped", table, inserted, len(id_map))
    return id_map, inserted


def read_table(source: StorageBackend, table: str) -> list[dict[str, Any]]:
    """Return every row of a source table, or [] when the table is absent."""
    if not crud.table_exists(source, table):
        logger.debug("Source has no %s table", table)
        return []
    return crud.select_all(source, table)
