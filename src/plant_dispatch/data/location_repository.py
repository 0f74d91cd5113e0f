"""Location loader with database-first approach, falling back to a seed workbook."""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from typing import Any, Sequence

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ..config import settings
from ..errors import PersistenceFailure, SourceUnavailable
from ..models.domain import Location

logger = logging.getLogger(__name__)

TABLE = "location"
SEED_COLUMNS = {"Name", "ExternalId", "X", "Y", "Floor"}


def _row_to_location(row: dict[str, Any]) -> Location:
    external_id = row.get("deskly_id")
    if external_id is None:
        external_id = str(row["id"])
    return Location(
        location_id=str(row["id"]),
        name=row.get("name") or "",
        external_id=str(external_id),
        x=float(row.get("x_value") or 0.0),
        y=float(row.get("y_value") or 0.0),
        floor=int(row.get("floor") or 0),
    )


class LocationRepository:
    """Reads and writes the ``location`` table."""

    def __init__(self, client: Any, seed_file: Path | None = None) -> None:
        self.client = client
        self.seed_file = seed_file if seed_file is not None else settings.location_seed_file

    def _load_from_database(self) -> list[Location]:
        try:
            response = self.client.table(TABLE).select("id, name, deskly_id, x_value, y_value, floor").execute()
        except Exception as exc:
            raise SourceUnavailable(f"Failed to fetch locations: {exc}") from exc

        locations: list[Location] = []
        for row in response.data or []:
            try:
                locations.append(_row_to_location(row))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping invalid location row: {e}")
                continue
        return locations

    def fetch_locations(self) -> list[Location]:
        """Get locations from the database, seeding from the workbook if the table is empty.

        Raises:
            SourceUnavailable: the location table could not be read, or the seed
                workbook could not be loaded.
        """
        db_locations = self._load_from_database()
        if db_locations:
            return db_locations

        if self.seed_file is None or not self.seed_file.exists():
            return []

        try:
            file_locations = load_locations_from_workbook(self.seed_file)
        except (OSError, ValueError, KeyError, TypeError, zipfile.BadZipFile, InvalidFileException) as exc:
            raise SourceUnavailable(f"Failed to load location workbook '{self.seed_file}': {exc}") from exc
        if file_locations:
            try:
                self.upsert_locations(file_locations)
            except PersistenceFailure as e:
                # Seeding is best effort; the workbook data is still usable for this run
                logger.warning(f"Failed to sync seed locations to database (non-critical): {e}")
        return file_locations

    def upsert_locations(self, locations: Sequence[Location]) -> dict[str, int]:
        """Insert unknown locations and update those whose external id or coordinates changed.

        Locations are matched by name. Returns counts for ``inserted``, ``updated`` and ``unchanged``.
        """
        try:
            response = self.client.table(TABLE).select("id, name, deskly_id, x_value, y_value, floor").execute()
        except Exception as exc:
            raise PersistenceFailure(f"Failed to read existing locations: {exc}") from exc

        existing = {row.get("name"): row for row in (response.data or [])}
        to_insert: list[dict[str, Any]] = []
        updated = 0
        unchanged = 0
        for location in locations:
            record = {
                "name": location.name,
                "deskly_id": location.external_id,
                "x_value": location.x,
                "y_value": location.y,
                "floor": location.floor,
            }
            current = existing.get(location.name)
            if current is None:
                to_insert.append(record)
                continue

            changed = (
                str(current.get("deskly_id") or "") != location.external_id
                or float(current.get("x_value") or 0.0) != location.x
                or float(current.get("y_value") or 0.0) != location.y
                or int(current.get("floor") or 0) != location.floor
            )
            if not changed:
                unchanged += 1
                continue
            try:
                self.client.table(TABLE).update(record).eq("id", current["id"]).execute()
            except Exception as exc:
                raise PersistenceFailure(f"Failed to update location '{location.name}': {exc}") from exc
            updated += 1

        if to_insert:
            try:
                self.client.table(TABLE).insert(to_insert).execute()
            except Exception as exc:
                raise PersistenceFailure(f"Failed to insert {len(to_insert)} locations: {exc}") from exc

        logger.info(f"Locations synced: {len(to_insert)} inserted, {updated} updated, {unchanged} unchanged")
        return {"inserted": len(to_insert), "updated": updated, "unchanged": unchanged}


def load_locations_from_workbook(source: Path) -> list[Location]:
    """Load locations from an .xlsx workbook with columns Name, ExternalId, X, Y, Floor."""
    if not source.exists():
        raise FileNotFoundError(f"Location workbook not found: {source}")

    wb = load_workbook(source, data_only=True, read_only=True)
    sheet = wb.active
    rows = sheet.iter_rows(min_row=1, values_only=True)
    header = next(rows, None)
    if header is None:
        raise ValueError(f"Location workbook '{source}' is empty.")

    header_map = {name: idx for idx, name in enumerate(header)}
    missing_columns = SEED_COLUMNS - set(header_map)
    if missing_columns:
        raise ValueError(f"Location workbook missing columns: {', '.join(sorted(missing_columns))}")

    locations: list[Location] = []
    for index, row in enumerate(rows, start=1):
        name = row[header_map["Name"]]
        if not name:
            continue
        external_id = row[header_map["ExternalId"]]
        locations.append(
            Location(
                location_id=f"seed-{index}",
                name=str(name).strip(),
                external_id=str(external_id).strip() if external_id is not None else "",
                x=float(row[header_map["X"]] or 0.0),
                y=float(row[header_map["Y"]] or 0.0),
                floor=int(row[header_map["Floor"]] or 0),
            )
        )
    return locations
