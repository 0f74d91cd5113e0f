import threading
from datetime import datetime, timedelta, timezone

import pytest

from plant_dispatch.data.people_repository import PeopleRepository
from plant_dispatch.data.task_repository import TaskAssignmentStore
from plant_dispatch.models.domain import DeliveryHandle, TaskStatus
from plant_dispatch.services.escalation.controller import (
    ALREADY_DONE_TEXT,
    THANK_YOU_TEXT,
    TIMED_OUT_TEXT,
    TOO_LATE_TEXT,
    ConfirmationOutcome,
    EscalationController,
    TransitionOutcome,
)
from plant_dispatch.services.escalation.scheduler import ThreadingTimeoutScheduler

NOW = datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(fake_db):
    fake_db.seed(
        "employee",
        [
            {"id": 1, "mail": "p1@example.com", "slack_id": "U1", "real_name": "P One"},
            {"id": 2, "mail": "p2@example.com", "slack_id": "U2", "real_name": "P Two"},
            {"id": 3, "mail": "p3@example.com", "slack_id": None, "real_name": "P Three"},
        ],
    )
    fake_db.seed(
        "watering_task",
        [
            {
                "id": 42,
                "plant_id": 10,
                "status": "assigned",
                "assigned_user_id": 1,
                "candidate_user_ids": [1, 2, 3],
                "notified_at": NOW.isoformat(),
                "created_at": NOW.isoformat(),
                "plant": {"care_id": 1, "plant_care": {"interval": 7}},
            }
        ],
    )
    fake_db.seed("watering_task_view", [{"id": 42, "plant_id": 10, "plant_name": "Ficus", "location_name": "Desk 12"}])
    fake_db.seed("plant_schedule", [{"id": 1, "plant_id": 10, "next_watering": NOW.isoformat(), "last_watered": None}])
    return TaskAssignmentStore(fake_db)


@pytest.fixture
def controller(fake_db, store, gateway, scheduler):
    return EscalationController(
        store,
        PeopleRepository(fake_db),
        gateway,
        scheduler,
        timeout_seconds=1800,
        display_offset_hours=2,
        clock=lambda: NOW,
    )


def test_start_notifies_assignee_and_arms_timeout(store, controller, gateway, scheduler):
    delivery = controller.start(store.get_task(42))

    assert delivery == DeliveryHandle(channel="U1", ts="1.0", task_id=42, recipient_id=1)
    assert [(handle, recipient) for handle, _, recipient in gateway.sent] == [("U1", 1)]
    assert [(name, delay) for name, delay, _ in scheduler.scheduled] == [("task-42", 1800)]


def test_timeout_escalates_to_next_candidate(store, controller, gateway, scheduler):
    controller.start(store.get_task(42))

    scheduler.fire_next()

    task = store.get_task(42)
    assert task.status == TaskStatus.ASSIGNED
    assert task.assigned_user_id == 2
    assert task.candidate_ids == [2, 3]
    assert task.notified_at == NOW
    assert gateway.updated[0][1] == TIMED_OUT_TEXT
    assert gateway.sent[-1][0] == "U2"
    assert gateway.sent[-1][1].plant_name == "Ficus"
    assert len(scheduler.scheduled) == 1


def test_timeout_without_remaining_candidates_expires(fake_db, store, controller):
    fake_db.tables["watering_task"][0]["candidate_user_ids"] = [1]

    outcome = controller.handle_timeout(42, 1)

    assert outcome == TransitionOutcome.EXPIRED
    task = store.get_task(42)
    assert task.status == TaskStatus.EXPIRED
    assert task.assigned_user_id is None


def test_unreachable_candidate_still_times_out(store, controller, gateway, scheduler):
    controller.handle_timeout(42, 1)
    controller.handle_timeout(42, 2)

    # employee 3 has no Slack id: nothing sent but a timeout is armed
    assert [handle for handle, _, _ in gateway.sent] == ["U2"]
    assert scheduler.scheduled[-1][0] == "task-42"
    # the timer armed for employee 2 is outdated by now
    assert scheduler.fire_next() == TransitionOutcome.STALE
    scheduler.fire_all()
    assert store.get_task(42).status == TaskStatus.EXPIRED


def test_confirmation_finalizes_and_advances_schedule(fake_db, store, controller, gateway):
    delivery = DeliveryHandle(channel="U1", ts="1.0", task_id=42, recipient_id=1)

    outcome = controller.confirm(42, person_id=1, delivery=delivery)

    assert outcome == ConfirmationOutcome.DONE
    assert store.get_task(42).status == TaskStatus.DONE
    schedule = fake_db.tables["plant_schedule"][0]
    assert schedule["last_watered"] == (NOW + timedelta(hours=2)).isoformat()
    assert schedule["next_watering"] == (NOW + timedelta(hours=2, days=7)).isoformat()
    assert gateway.updated == [(delivery, THANK_YOU_TEXT)]


def test_late_confirmation_after_escalation_is_rejected(fake_db, store, controller, gateway):
    controller.handle_timeout(42, 1)

    outcome = controller.confirm(42, person_id=1, delivery=DeliveryHandle("U1", "1.0", 42, 1))

    assert outcome == ConfirmationOutcome.TOO_LATE
    task = store.get_task(42)
    assert task.status == TaskStatus.ASSIGNED
    assert task.assigned_user_id == 2
    assert fake_db.tables["plant_schedule"][0]["last_watered"] is None
    assert gateway.updated[-1][1] == TOO_LATE_TEXT


def test_stale_timeout_after_confirmation_is_noop(store, controller, gateway, scheduler):
    delivery = controller.start(store.get_task(42))
    controller.confirm(42, person_id=1)

    assert scheduler.fire_next() == TransitionOutcome.STALE
    assert store.get_task(42).status == TaskStatus.DONE
    assert gateway.updated[-1] == (delivery, ALREADY_DONE_TEXT)
    assert scheduler.scheduled == []


def test_timeout_for_previous_assignee_is_noop(store, controller):
    controller.handle_timeout(42, 1)

    assert controller.handle_timeout(42, 1) == TransitionOutcome.STALE
    assert store.get_task(42).assigned_user_id == 2


def test_confirmation_for_unknown_task(controller):
    assert controller.confirm(999) == ConfirmationOutcome.NOT_FOUND


def test_missing_interval_leaves_task_assigned(fake_db, store, controller):
    fake_db.tables["watering_task"][0]["plant"] = {"care_id": None, "plant_care": None}

    assert controller.confirm(42, person_id=1) == ConfirmationOutcome.FAILED
    assert store.get_task(42).status == TaskStatus.ASSIGNED


def test_failed_transition_write_is_not_applied(fake_db, store, controller):
    fake_db.fail("watering_task", "update")

    assert controller.handle_timeout(42, 1) == TransitionOutcome.FAILED
    assert store.get_task(42).assigned_user_id == 1


def test_notification_failure_does_not_block_escalation(fake_db, store, gateway, scheduler):
    gateway.fail = True
    controller = EscalationController(
        store, PeopleRepository(fake_db), gateway, scheduler, timeout_seconds=60, clock=lambda: NOW
    )

    assert controller.start(store.get_task(42)) is None
    assert len(scheduler.scheduled) == 1


def test_sweep_overdue_redrives_lost_timers(fake_db, store, controller):
    fake_db.tables["watering_task"][0]["notified_at"] = (NOW - timedelta(hours=1)).isoformat()

    assert controller.sweep_overdue(now=NOW) == 1
    assert store.get_task(42).assigned_user_id == 2
    # freshly notified, not overdue any more
    assert controller.sweep_overdue(now=NOW) == 0


def test_racing_confirmation_and_timeout_have_one_winner(store, controller):
    barrier = threading.Barrier(2)
    results = {}

    def confirm():
        barrier.wait()
        results["confirm"] = controller.confirm(42, person_id=1)

    def timeout():
        barrier.wait()
        results["timeout"] = controller.handle_timeout(42, 1)

    threads = [threading.Thread(target=confirm), threading.Thread(target=timeout)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    task = store.get_task(42)
    if results["confirm"] == ConfirmationOutcome.DONE:
        assert results["timeout"] == TransitionOutcome.STALE
        assert task.status == TaskStatus.DONE
    else:
        assert results["confirm"] == ConfirmationOutcome.TOO_LATE
        assert results["timeout"] == TransitionOutcome.ESCALATED
        assert task.assigned_user_id == 2


def test_threading_scheduler_runs_callback_once():
    fired = threading.Event()
    calls = []
    scheduler = ThreadingTimeoutScheduler()

    def callback():
        calls.append(1)
        fired.set()

    scheduler.schedule("quick", 0.01, callback)

    assert fired.wait(timeout=2)
    assert calls == [1]


def test_threading_scheduler_shutdown_cancels_pending_timers():
    scheduler = ThreadingTimeoutScheduler()
    scheduler.schedule("slow", 60, lambda: None)
    assert scheduler.pending == 1

    scheduler.shutdown()

    assert scheduler.pending == 0


def test_task_locks_are_released_after_transitions(controller):
    held = controller._task_lock(42)
    assert controller._task_lock(42) is held
    del held

    assert controller.confirm(42, person_id=1) == ConfirmationOutcome.DONE
    controller.handle_timeout(42, 1)

    assert 42 not in controller._locks
    assert len(controller._locks) == 0
