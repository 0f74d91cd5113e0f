"""Escalation state machine for assigned watering tasks.

A task moves ``pending -> assigned -> (assigned)* -> done | expired``:

* ``assigned -> assigned``: the confirmation timeout fired, the current
  assignee is dropped and the next candidate is notified.
* ``assigned -> expired``: the timeout fired and no candidate is left.
* ``assigned -> done``: the current assignee confirmed before the timeout;
  the plant's schedule is advanced by its care interval.

Confirmation and timeout of one task may race. Both go through a per-task
lock, re-read the task and only act if it is still ``assigned`` to the
expected person; the store's conditional updates guard against writers in
other processes. Timers are never cancelled: a timeout for a finished or
already escalated task is a no-op.
"""

from __future__ import annotations

import logging
import threading
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import partial
from typing import Callable

from ...config import settings
from ...data.people_repository import PeopleRepository
from ...data.task_repository import TaskAssignmentStore
from ...errors import NotificationFailure, PersistenceFailure, SourceUnavailable, StaleTransition
from ...models.domain import DeliveryHandle, TaskStatus, TaskSummary, WateringTask
from ..interfaces import NotificationGateway
from .scheduler import TimeoutScheduler

logger = logging.getLogger(__name__)

TIMED_OUT_TEXT = "*The confirmation window has elapsed.* The watering was not taken over."
ALREADY_DONE_TEXT = "The plant has already been watered."
THANK_YOU_TEXT = "The plant has been watered! Thank you!"
TOO_LATE_TEXT = ":warning: *The watering was confirmed too late.*\nPlease tell your team if you watered anyway."
PROBLEM_TEXT = ":warning: *There was a problem confirming the watering (task not found).*"


class TransitionOutcome(str, Enum):
    ESCALATED = "escalated"
    EXPIRED = "expired"
    STALE = "stale"
    FAILED = "failed"


class ConfirmationOutcome(str, Enum):
    DONE = "done"
    TOO_LATE = "too_late"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(slots=True)
class _TimeoutStep:
    outcome: TransitionOutcome
    status: TaskStatus | None = None
    next_assignee: int | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_assigned(task: WateringTask, expected_assignee: int | None) -> None:
    if task.status != TaskStatus.ASSIGNED:
        raise StaleTransition(task.task_id, TaskStatus.ASSIGNED.value, task.status.value)
    if expected_assignee is not None and task.assigned_user_id != expected_assignee:
        raise StaleTransition(
            task.task_id,
            f"assigned to {expected_assignee}",
            f"assigned to {task.assigned_user_id}",
        )


class EscalationController:
    def __init__(
        self,
        store: TaskAssignmentStore,
        people: PeopleRepository,
        gateway: NotificationGateway,
        scheduler: TimeoutScheduler,
        *,
        timeout_seconds: float | None = None,
        display_offset_hours: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.people = people
        self.gateway = gateway
        self.scheduler = scheduler
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.confirmation_timeout_seconds
        self.display_offset = timedelta(
            hours=display_offset_hours if display_offset_hours is not None else settings.display_utc_offset_hours
        )
        self.clock = clock
        # Entries disappear once no transition of the task holds its lock
        self._locks: weakref.WeakValueDictionary[int, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _task_lock(self, task_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(task_id)
            if lock is None:
                lock = self._locks[task_id] = threading.Lock()
            return lock

    def display_now(self) -> datetime:
        """Current time shifted by the configured display offset."""
        return self.clock() + self.display_offset

    def shutdown(self) -> None:
        self.scheduler.shutdown()

    # -- notify ----------------------------------------------------------------

    def start(self, task: WateringTask) -> DeliveryHandle | None:
        """Notify the current assignee of a freshly assigned task and arm its timeout."""
        if task.status != TaskStatus.ASSIGNED or task.assigned_user_id is None:
            logger.info(f"Task {task.task_id} has no assignee ({task.status.value}), nothing to notify")
            return None
        return self._notify_and_arm(task.task_id, task.assigned_user_id, task.summary())

    def _notify_and_arm(self, task_id: int, assignee_id: int, summary: TaskSummary) -> DeliveryHandle | None:
        delivery: DeliveryHandle | None = None
        try:
            person = self.people.get_person(assignee_id)
        except SourceUnavailable as exc:
            logger.error(f"Could not look up employee {assignee_id} for task {task_id}: {exc}")
            person = None

        if person is None or not person.slack_id:
            # Unreachable candidates still time out so the task moves on
            logger.warning(f"No Slack ID for employee {assignee_id}, skipping notification for task {task_id}")
        else:
            try:
                delivery = self.gateway.send(person.slack_id, summary, recipient_id=assignee_id)
                logger.info(f"Notified {person.email or person.slack_id} about task {task_id}")
            except NotificationFailure as exc:
                logger.error(f"Notifying employee {assignee_id} about task {task_id} failed: {exc}")

        self.scheduler.schedule(
            f"task-{task_id}",
            self.timeout_seconds,
            partial(self.handle_timeout, task_id, assignee_id, delivery),
        )
        return delivery

    def _update_message(self, delivery: DeliveryHandle | None, text: str) -> None:
        if delivery is None:
            return
        try:
            self.gateway.update(delivery, text)
        except NotificationFailure as exc:
            logger.warning(f"Updating message for task {delivery.task_id} failed: {exc}")

    # -- timeout ---------------------------------------------------------------

    def handle_timeout(
        self,
        task_id: int,
        expected_assignee: int,
        delivery: DeliveryHandle | None = None,
    ) -> TransitionOutcome:
        """Escalate or expire a task whose assignee did not confirm in time."""
        with self._task_lock(task_id):
            step = self._apply_timeout(task_id, expected_assignee)

        if step.outcome in (TransitionOutcome.ESCALATED, TransitionOutcome.EXPIRED):
            self._update_message(delivery, TIMED_OUT_TEXT)
        elif step.outcome == TransitionOutcome.STALE:
            self._update_message(delivery, ALREADY_DONE_TEXT if step.status == TaskStatus.DONE else TIMED_OUT_TEXT)

        if step.outcome == TransitionOutcome.ESCALATED and step.next_assignee is not None:
            self._notify_and_arm(task_id, step.next_assignee, self._summary_for(task_id))
        return step.outcome

    def _apply_timeout(self, task_id: int, expected_assignee: int) -> _TimeoutStep:
        try:
            task = self.store.get_task(task_id)
        except SourceUnavailable as exc:
            logger.error(f"Timeout for task {task_id} not applied: {exc}")
            return _TimeoutStep(TransitionOutcome.FAILED)

        if task is None:
            logger.warning(f"Timeout for unknown task {task_id}")
            return _TimeoutStep(TransitionOutcome.STALE)
        try:
            _require_assigned(task, expected_assignee)
        except StaleTransition as exc:
            logger.debug(f"Ignoring stale timeout: {exc}")
            return _TimeoutStep(TransitionOutcome.STALE, status=task.status)

        remaining = [cid for cid in task.candidate_ids if cid != expected_assignee]
        try:
            if remaining:
                applied = self.store.advance_to_next(
                    task_id, remaining, expected_assignee=expected_assignee, now=self.clock()
                )
                if applied:
                    logger.info(f"Task {task_id} escalated from {expected_assignee} to {remaining[0]}")
                    return _TimeoutStep(TransitionOutcome.ESCALATED, TaskStatus.ASSIGNED, remaining[0])
            else:
                applied = self.store.mark_expired(task_id, expected_assignee=expected_assignee)
                if applied:
                    logger.info(f"Task {task_id} expired, no candidates left")
                    return _TimeoutStep(TransitionOutcome.EXPIRED, TaskStatus.EXPIRED)
        except PersistenceFailure as exc:
            logger.error(f"Timeout for task {task_id} not applied: {exc}")
            return _TimeoutStep(TransitionOutcome.FAILED)

        logger.debug(f"Timeout for task {task_id} lost the race against another writer")
        return _TimeoutStep(TransitionOutcome.STALE)

    def _summary_for(self, task_id: int) -> TaskSummary:
        try:
            summary = self.store.get_summary(task_id)
        except SourceUnavailable as exc:
            logger.warning(f"Display data for task {task_id} unavailable: {exc}")
            summary = None
        return summary or TaskSummary(task_id=task_id, plant_name=None, location_name="Unknown")

    # -- confirmation ------------------------------------------------------------

    def confirm(
        self,
        task_id: int,
        person_id: int | None = None,
        delivery: DeliveryHandle | None = None,
    ) -> ConfirmationOutcome:
        """Finalize a task confirmed by ``person_id`` (any assignee when None)."""
        with self._task_lock(task_id):
            outcome = self._apply_confirmation(task_id, person_id)

        if outcome == ConfirmationOutcome.DONE:
            self._update_message(delivery, THANK_YOU_TEXT)
        elif outcome == ConfirmationOutcome.TOO_LATE:
            self._update_message(delivery, TOO_LATE_TEXT)
        elif outcome == ConfirmationOutcome.NOT_FOUND:
            self._update_message(delivery, PROBLEM_TEXT)
        return outcome

    def _apply_confirmation(self, task_id: int, person_id: int | None) -> ConfirmationOutcome:
        try:
            task = self.store.get_task(task_id)
        except SourceUnavailable as exc:
            logger.error(f"Confirmation for task {task_id} not applied: {exc}")
            return ConfirmationOutcome.FAILED

        if task is None:
            logger.error(f"No watering task found for id {task_id}")
            return ConfirmationOutcome.NOT_FOUND
        try:
            _require_assigned(task, person_id)
        except StaleTransition as exc:
            logger.info(f"Confirmation by {person_id} too late: {exc}")
            return ConfirmationOutcome.TOO_LATE

        try:
            plant_id, interval_days = self.store.get_plant_interval(task_id)
        except SourceUnavailable as exc:
            # Known gap: the task stays assigned until reconciled by hand
            logger.error(f"Finalization of task {task_id} aborted, interval unavailable: {exc}")
            return ConfirmationOutcome.FAILED

        try:
            applied = self.store.mark_done(task_id, expected_assignee=task.assigned_user_id)
        except PersistenceFailure as exc:
            logger.error(f"Marking task {task_id} done failed: {exc}")
            return ConfirmationOutcome.FAILED
        if not applied:
            logger.info(f"Confirmation for task {task_id} lost the race against the timeout")
            return ConfirmationOutcome.TOO_LATE

        last_watered = self.display_now()
        next_watering = last_watered + timedelta(days=interval_days)
        try:
            self.store.update_plant_schedule(plant_id, last_watered, next_watering)
        except PersistenceFailure as exc:
            logger.error(f"Task {task_id} is done but the schedule of plant {plant_id} was not advanced: {exc}")
        logger.info(f"Task {task_id} done, plant {plant_id} next watering {next_watering.isoformat()}")
        return ConfirmationOutcome.DONE

    # -- recovery ----------------------------------------------------------------

    def sweep_overdue(self, now: datetime | None = None) -> int:
        """Re-drive timeouts for assigned tasks whose confirmation window has passed.

        Covers timers lost to a process restart. Returns the number of tasks
        that escalated or expired.
        """
        now = now or self.clock()
        cutoff = now - timedelta(seconds=self.timeout_seconds)
        try:
            overdue = self.store.fetch_overdue(cutoff)
        except SourceUnavailable as exc:
            logger.error(f"Sweep aborted: {exc}")
            return 0

        moved = 0
        for task in overdue:
            if task.assigned_user_id is None:
                continue
            outcome = self.handle_timeout(task.task_id, task.assigned_user_id)
            if outcome in (TransitionOutcome.ESCALATED, TransitionOutcome.EXPIRED):
                moved += 1
        if overdue:
            logger.info(f"Sweep: {moved} of {len(overdue)} overdue tasks moved on")
        return moved
