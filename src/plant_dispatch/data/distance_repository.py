"""Persistence of precomputed distance pairs in the ``distance_pairs`` table."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ..config import settings
from ..errors import PersistenceFailure
from ..models.domain import DistancePair, Location

logger = logging.getLogger(__name__)

TABLE = "distance_pairs"
COLUMNS = "from_id, to_id, from_label, to_label, distance, floor"


def _row_to_pair(row: dict[str, Any]) -> DistancePair:
    """Rebuild a pair from a stored row; coordinates are not stored and read back as -1."""
    floor = int(row["floor"])
    from_location = Location(
        location_id=str(row["from_id"]),
        name=row.get("from_label") or "",
        external_id=str(row["from_id"]),
        x=-1.0,
        y=-1.0,
        floor=floor,
    )
    to_location = Location(
        location_id=str(row["to_id"]),
        name=row.get("to_label") or "",
        external_id=str(row["to_id"]),
        x=-1.0,
        y=-1.0,
        floor=floor,
    )
    distance = row.get("distance")
    return DistancePair(
        from_location=from_location,
        to_location=to_location,
        distance=float(distance) if distance is not None else None,
        floor=floor,
    )


class DistanceRepository:
    """Paginated load and per-floor replace of distance pairs."""

    def __init__(self, client: Any, page_size: int | None = None) -> None:
        self.client = client
        self.page_size = page_size or settings.distance_page_size

    def count(self) -> int:
        response = self.client.table(TABLE).select("floor", count="exact", head=True).execute()
        return int(response.count or 0)

    def load_all(self) -> dict[int, list[DistancePair]]:
        """Load every stored pair grouped by floor.

        Rows are fetched in pages of ``page_size`` driven by an exact count query.
        A failing count or page aborts the load; whatever was fetched before the
        failure is still grouped and returned.
        """
        rows: list[dict[str, Any]] = []
        try:
            total_rows = self.count()
            for offset in range(0, total_rows, self.page_size):
                response = (
                    self.client.table(TABLE)
                    .select(COLUMNS)
                    .range(offset, offset + self.page_size - 1)
                    .execute()
                )
                batch = response.data or []
                if batch:
                    logger.debug(f"Batch {offset // self.page_size + 1}: fetched {len(batch)} distance rows")
                    rows.extend(batch)
        except Exception as exc:
            logger.error(f"Error loading distance pairs after {len(rows)} rows: {exc}")

        by_floor: dict[int, list[DistancePair]] = {}
        for row in rows:
            try:
                pair = _row_to_pair(row)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning(f"Skipping malformed distance row {row!r}: {exc}")
                continue
            by_floor.setdefault(pair.floor, []).append(pair)
        return by_floor

    def replace_floor(self, floor: int, pairs: Sequence[DistancePair]) -> int:
        """Delete every stored pair of ``floor`` and insert ``pairs`` instead.

        Readers running concurrently may see the floor empty between the two
        statements.
        """
        try:
            self.client.table(TABLE).delete().eq("floor", floor).execute()
        except Exception as exc:
            raise PersistenceFailure(f"Failed to delete distance pairs for floor {floor}: {exc}") from exc

        records = [pair.to_record() for pair in pairs]
        if not records:
            return 0
        try:
            self.client.table(TABLE).insert(records).execute()
        except Exception as exc:
            raise PersistenceFailure(f"Failed to insert {len(records)} distance pairs for floor {floor}: {exc}") from exc
        return len(records)
