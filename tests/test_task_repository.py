from datetime import datetime, timedelta, timezone

import pytest

from plant_dispatch.data.task_repository import TaskAssignmentStore
from plant_dispatch.errors import PersistenceFailure, SourceUnavailable
from plant_dispatch.models.domain import TaskStatus

NOW = datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc)


def _task_row(task_id: int, status: str = "pending", plant_id: int = 10, **extra) -> dict:
    row = {
        "id": task_id,
        "plant_id": plant_id,
        "status": status,
        "assigned_user_id": None,
        "candidate_user_ids": None,
        "notified_at": None,
        "created_at": NOW.isoformat(),
    }
    row.update(extra)
    return row


def test_set_candidates_assigns_head(fake_db):
    fake_db.seed("watering_task", [_task_row(1)])
    store = TaskAssignmentStore(fake_db)

    status = store.set_candidates(1, [5, 6, 7], now=NOW)

    assert status == TaskStatus.ASSIGNED
    task = store.get_task(1)
    assert task.status == TaskStatus.ASSIGNED
    assert task.assigned_user_id == 5
    assert task.candidate_ids == [5, 6, 7]
    assert task.notified_at == NOW


def test_set_candidates_empty_expires(fake_db):
    fake_db.seed("watering_task", [_task_row(1)])
    store = TaskAssignmentStore(fake_db)

    assert store.set_candidates(1, []) == TaskStatus.EXPIRED
    task = store.get_task(1)
    assert task.status == TaskStatus.EXPIRED
    assert task.assigned_user_id is None


def test_set_candidates_skips_tasks_that_are_not_pending(fake_db):
    fake_db.seed("watering_task", [_task_row(1, status="assigned", assigned_user_id=3, candidate_user_ids=[3])])
    store = TaskAssignmentStore(fake_db)

    assert store.set_candidates(1, [5]) is None
    assert store.get_task(1).assigned_user_id == 3


def test_advance_to_next_requires_expected_assignee(fake_db):
    fake_db.seed("watering_task", [_task_row(1, status="assigned", assigned_user_id=1, candidate_user_ids=[1, 2, 3])])
    store = TaskAssignmentStore(fake_db)

    assert store.advance_to_next(1, [2, 3], expected_assignee=9, now=NOW) is False
    assert store.advance_to_next(1, [2, 3], expected_assignee=1, now=NOW) is True

    task = store.get_task(1)
    assert task.assigned_user_id == 2
    assert task.candidate_ids == [2, 3]
    assert task.status == TaskStatus.ASSIGNED
    assert task.notified_at == NOW


def test_advance_to_next_rejects_empty_list(fake_db):
    with pytest.raises(ValueError):
        TaskAssignmentStore(fake_db).advance_to_next(1, [])


def test_mark_done_and_expired_only_apply_to_assigned(fake_db):
    fake_db.seed(
        "watering_task",
        [
            _task_row(1, status="assigned", assigned_user_id=1, candidate_user_ids=[1]),
            _task_row(2, status="expired"),
        ],
    )
    store = TaskAssignmentStore(fake_db)

    assert store.mark_done(1, expected_assignee=1) is True
    assert store.mark_done(1, expected_assignee=1) is False
    assert store.mark_expired(2) is False
    assert store.get_task(1).status == TaskStatus.DONE


def test_transition_failure_raises_persistence_failure(fake_db):
    fake_db.seed("watering_task", [_task_row(1, status="assigned", assigned_user_id=1)])
    fake_db.fail("watering_task", "update")

    with pytest.raises(PersistenceFailure):
        TaskAssignmentStore(fake_db).mark_expired(1, expected_assignee=1)


def test_legacy_completed_status_reads_as_done(fake_db):
    fake_db.seed("watering_task", [_task_row(1, status="completed")])

    assert TaskAssignmentStore(fake_db).get_task(1).status == TaskStatus.DONE


def test_reset_assignments_only_touches_open_tasks(fake_db):
    fake_db.seed(
        "watering_task",
        [
            _task_row(1, status="assigned", assigned_user_id=4, candidate_user_ids=[4]),
            _task_row(2, status="pending"),
            _task_row(3, status="done"),
        ],
    )
    store = TaskAssignmentStore(fake_db)

    assert store.reset_assignments() == 2
    assert store.get_task(1).status == TaskStatus.PENDING
    assert store.get_task(1).assigned_user_id is None
    assert store.get_task(3).status == TaskStatus.DONE


def test_create_due_tasks_skips_plants_with_open_tasks(fake_db):
    past = (NOW - timedelta(days=1)).isoformat()
    future = (NOW + timedelta(days=1)).isoformat()
    fake_db.seed(
        "plant_schedule",
        [
            {"id": 1, "plant_id": 10, "next_watering": past},
            {"id": 2, "plant_id": 11, "next_watering": past},
            {"id": 3, "plant_id": 12, "next_watering": past},
            {"id": 4, "plant_id": 13, "next_watering": future},
        ],
    )
    fake_db.seed(
        "watering_task",
        [
            _task_row(1, status="assigned", plant_id=10),
            _task_row(2, status="expired", plant_id=11),
            _task_row(3, status="done", plant_id=12),
        ],
    )

    created = TaskAssignmentStore(fake_db).create_due_tasks(NOW)

    assert created == 2
    new_rows = [row for row in fake_db.tables["watering_task"] if row["id"] not in (1, 2, 3)]
    assert sorted(row["plant_id"] for row in new_rows) == [11, 12]
    assert all(row["status"] == "pending" for row in new_rows)


def test_create_due_tasks_nothing_due(fake_db):
    fake_db.seed("plant_schedule", [{"id": 1, "plant_id": 10, "next_watering": (NOW + timedelta(hours=1)).isoformat()}])

    assert TaskAssignmentStore(fake_db).create_due_tasks(NOW) == 0
    assert "watering_task" not in fake_db.tables


def test_get_plant_interval_reads_nested_care(fake_db):
    fake_db.seed("watering_task", [_task_row(1, plant={"care_id": 2, "plant_care": {"interval": 7}})])

    assert TaskAssignmentStore(fake_db).get_plant_interval(1) == (10, 7)


def test_get_plant_interval_without_care_is_unavailable(fake_db):
    fake_db.seed("watering_task", [_task_row(1, plant={"care_id": None, "plant_care": None})])

    with pytest.raises(SourceUnavailable):
        TaskAssignmentStore(fake_db).get_plant_interval(1)


def test_fetch_overdue_uses_notified_at(fake_db):
    fake_db.seed(
        "watering_task",
        [
            _task_row(1, status="assigned", assigned_user_id=1, notified_at=(NOW - timedelta(hours=1)).isoformat()),
            _task_row(2, status="assigned", assigned_user_id=1, notified_at=(NOW - timedelta(minutes=5)).isoformat()),
            _task_row(3, status="pending"),
        ],
    )

    overdue = TaskAssignmentStore(fake_db).fetch_overdue(NOW - timedelta(minutes=30))

    assert [task.task_id for task in overdue] == [1]
