"""Watering task persistence: candidate lists, assignee transitions and plant schedules."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from ..errors import PersistenceFailure, SourceUnavailable
from ..models.domain import OPEN_STATUSES, TaskStatus, TaskSummary, WateringTask

logger = logging.getLogger(__name__)

TASK_TABLE = "watering_task"
TASK_VIEW = "watering_task_view"
SCHEDULE_TABLE = "plant_schedule"
STATE_COLUMNS = "id, plant_id, assigned_user_id, candidate_user_ids, status, notified_at, created_at"


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _row_to_task(row: dict[str, Any]) -> WateringTask:
    return WateringTask(
        task_id=int(row["id"]),
        plant_id=int(row["plant_id"]),
        status=TaskStatus.parse(row.get("status")),
        candidate_ids=[int(cid) for cid in (row.get("candidate_user_ids") or [])],
        assigned_user_id=_optional_int(row.get("assigned_user_id")),
        notified_at=_parse_timestamp(row.get("notified_at")),
        created_at=_parse_timestamp(row.get("created_at")),
        plant_name=row.get("plant_name"),
        location_name=row.get("location_name"),
        external_location_id=row.get("deskly_id"),
        floor=_optional_int(row.get("floor")),
        volume=_optional_float(row.get("volume")),
        method=row.get("method"),
        image_url=row.get("image_url"),
        interval_days=_optional_int(row.get("interval")),
    )


def _iso(moment: datetime) -> str:
    return moment.isoformat()


class TaskAssignmentStore:
    """Reads and mutates ``watering_task`` rows.

    Transition writes are row-level conditional updates: they only touch a row
    still in the expected status (and with the expected assignee when one is
    given) and report whether a row was changed. Store errors raise
    :class:`PersistenceFailure`; the transition is then treated as not applied.
    """

    def __init__(self, client: Any) -> None:
        self.client = client

    # -- reads ---------------------------------------------------------------

    def fetch_tasks(self, statuses: Iterable[TaskStatus] | None = None) -> list[WateringTask]:
        """Fetch tasks joined with plant/location data from the task view."""
        query = self.client.table(TASK_VIEW).select("*")
        if statuses is not None:
            query = query.in_("status", [status.value for status in statuses])
        try:
            response = query.execute()
        except Exception as exc:
            raise SourceUnavailable(f"Failed to fetch watering tasks: {exc}") from exc

        tasks: list[WateringTask] = []
        for row in response.data or []:
            try:
                tasks.append(_row_to_task(row))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping invalid watering task row: {e}")
        return tasks

    def get_task(self, task_id: int) -> WateringTask | None:
        """Re-read the current state of a task from the base table."""
        try:
            response = (
                self.client.table(TASK_TABLE)
                .select(STATE_COLUMNS)
                .eq("id", task_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise SourceUnavailable(f"Failed to fetch watering task {task_id}: {exc}") from exc
        rows = response.data or []
        return _row_to_task(rows[0]) if rows else None

    def get_summary(self, task_id: int) -> TaskSummary | None:
        try:
            response = (
                self.client.table(TASK_VIEW)
                .select("id, plant_id, plant_name, location_name, volume, method, image_url")
                .eq("id", task_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise SourceUnavailable(f"Failed to fetch display data for task {task_id}: {exc}") from exc
        rows = response.data or []
        if not rows:
            return None
        return _row_to_task(rows[0]).summary()

    def fetch_overdue(self, notified_before: datetime) -> list[WateringTask]:
        """Assigned tasks whose last notification is older than ``notified_before``."""
        try:
            response = (
                self.client.table(TASK_TABLE)
                .select(STATE_COLUMNS)
                .eq("status", TaskStatus.ASSIGNED.value)
                .lt("notified_at", _iso(notified_before))
                .execute()
            )
        except Exception as exc:
            raise SourceUnavailable(f"Failed to fetch overdue tasks: {exc}") from exc
        return [_row_to_task(row) for row in response.data or []]

    # -- transitions ---------------------------------------------------------

    def _conditional_update(
        self,
        task_id: int,
        values: dict[str, Any],
        *,
        expected_statuses: Sequence[TaskStatus],
        expected_assignee: int | None = None,
    ) -> bool:
        query = self.client.table(TASK_TABLE).update(values).eq("id", task_id)
        if len(expected_statuses) == 1:
            query = query.eq("status", expected_statuses[0].value)
        else:
            query = query.in_("status", [status.value for status in expected_statuses])
        if expected_assignee is not None:
            query = query.eq("assigned_user_id", expected_assignee)
        try:
            response = query.execute()
        except Exception as exc:
            raise PersistenceFailure(f"Failed to update watering task {task_id}: {exc}") from exc
        return bool(response.data)

    def set_candidates(
        self,
        task_id: int,
        ordered_ids: Sequence[int],
        now: datetime | None = None,
    ) -> TaskStatus | None:
        """Store the ranked candidates of a pending task.

        A non-empty list assigns its head; an empty list expires the task.

        Returns:
            The new status, or None when the task was no longer pending.
        """
        candidates = list(ordered_ids)
        if candidates:
            values = {
                "candidate_user_ids": candidates,
                "assigned_user_id": candidates[0],
                "status": TaskStatus.ASSIGNED.value,
                "notified_at": _iso(now or datetime.now(timezone.utc)),
            }
            new_status = TaskStatus.ASSIGNED
        else:
            values = {
                "candidate_user_ids": [],
                "assigned_user_id": None,
                "status": TaskStatus.EXPIRED.value,
            }
            new_status = TaskStatus.EXPIRED

        applied = self._conditional_update(task_id, values, expected_statuses=(TaskStatus.PENDING,))
        return new_status if applied else None

    def advance_to_next(
        self,
        task_id: int,
        remaining_ids: Sequence[int],
        expected_assignee: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        remaining = list(remaining_ids)
        if not remaining:
            raise ValueError("advance_to_next needs at least one remaining candidate")
        values = {
            "assigned_user_id": remaining[0],
            "candidate_user_ids": remaining,
            "status": TaskStatus.ASSIGNED.value,
            "notified_at": _iso(now or datetime.now(timezone.utc)),
        }
        return self._conditional_update(
            task_id,
            values,
            expected_statuses=(TaskStatus.ASSIGNED,),
            expected_assignee=expected_assignee,
        )

    def mark_expired(self, task_id: int, expected_assignee: int | None = None) -> bool:
        values = {"assigned_user_id": None, "candidate_user_ids": None, "status": TaskStatus.EXPIRED.value}
        return self._conditional_update(
            task_id,
            values,
            expected_statuses=(TaskStatus.ASSIGNED,),
            expected_assignee=expected_assignee,
        )

    def mark_done(self, task_id: int, expected_assignee: int | None = None) -> bool:
        values = {"assigned_user_id": None, "candidate_user_ids": None, "status": TaskStatus.DONE.value}
        return self._conditional_update(
            task_id,
            values,
            expected_statuses=(TaskStatus.ASSIGNED,),
            expected_assignee=expected_assignee,
        )

    def reset_assignments(self) -> int:
        """Put every open task back to pending without assignee or candidates."""
        values = {"assigned_user_id": None, "candidate_user_ids": None, "status": TaskStatus.PENDING.value}
        try:
            response = (
                self.client.table(TASK_TABLE)
                .update(values)
                .in_("status", [status.value for status in OPEN_STATUSES])
                .execute()
            )
        except Exception as exc:
            raise PersistenceFailure(f"Failed to reset task assignments: {exc}") from exc
        return len(response.data or [])

    # -- recurring schedule ----------------------------------------------------

    def create_due_tasks(self, now: datetime | None = None) -> int:
        """Create a pending task for every plant whose next watering is overdue.

        Plants with an open (pending or assigned) task are skipped; done and
        expired tasks do not block a new one.
        """
        now = now or datetime.now(timezone.utc)
        try:
            response = (
                self.client.table(SCHEDULE_TABLE)
                .select("id, plant_id, next_watering")
                .lt("next_watering", _iso(now))
                .execute()
            )
        except Exception as exc:
            raise SourceUnavailable(f"Failed to fetch due plant schedules: {exc}") from exc

        due_plants = response.data or []
        if not due_plants:
            logger.info("No plants are due for watering.")
            return 0

        plant_ids = [row["plant_id"] for row in due_plants]
        try:
            existing = (
                self.client.table(TASK_TABLE)
                .select("plant_id, status")
                .in_("plant_id", plant_ids)
                .in_("status", [status.value for status in OPEN_STATUSES])
                .execute()
            )
        except Exception as exc:
            raise SourceUnavailable(f"Failed to fetch existing watering tasks: {exc}") from exc

        open_plant_ids = {row["plant_id"] for row in existing.data or []}
        seen: set[Any] = set()
        new_tasks: list[dict[str, Any]] = []
        for row in due_plants:
            plant_id = row["plant_id"]
            if plant_id in open_plant_ids or plant_id in seen:
                continue
            seen.add(plant_id)
            new_tasks.append(
                {
                    "plant_id": plant_id,
                    "created_at": _iso(now),
                    "status": TaskStatus.PENDING.value,
                    "assigned_user_id": None,
                    "candidate_user_ids": None,
                    "notified_at": None,
                }
            )

        if not new_tasks:
            return 0
        try:
            self.client.table(TASK_TABLE).insert(new_tasks).execute()
        except Exception as exc:
            raise PersistenceFailure(f"Failed to insert {len(new_tasks)} watering tasks: {exc}") from exc
        logger.info(f"Created {len(new_tasks)} new watering tasks")
        return len(new_tasks)

    def get_plant_interval(self, task_id: int) -> tuple[int, int]:
        """Return ``(plant_id, interval_days)`` for the plant behind a task.

        Raises:
            SourceUnavailable: the lookup failed or the plant has no care interval.
        """
        try:
            response = (
                self.client.table(TASK_TABLE)
                .select("plant_id, plant(care_id, plant_care(interval))")
                .eq("id", task_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise SourceUnavailable(f"Failed to load care interval for task {task_id}: {exc}") from exc

        rows = response.data or []
        if not rows:
            raise SourceUnavailable(f"Watering task {task_id} not found while loading care interval")
        row = rows[0]
        plant = row.get("plant") or {}
        care = plant.get("plant_care") or {}
        interval = care.get("interval")
        if not interval:
            raise SourceUnavailable(f"Plant {row.get('plant_id')} has no care interval")
        return int(row["plant_id"]), int(interval)

    def update_plant_schedule(self, plant_id: int, last_watered: datetime, next_watering: datetime) -> None:
        try:
            self.client.table(SCHEDULE_TABLE).update(
                {"last_watered": _iso(last_watered), "next_watering": _iso(next_watering)}
            ).eq("plant_id", plant_id).execute()
        except Exception as exc:
            raise PersistenceFailure(f"Failed to update schedule for plant {plant_id}: {exc}") from exc
