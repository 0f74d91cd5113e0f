"""Assignment run orchestration: due tasks -> presence -> ranking -> notification."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

from ..config import settings
from ..data.distance_repository import DistanceRepository
from ..data.people_repository import PeopleRepository
from ..data.task_repository import TaskAssignmentStore
from ..errors import DispatchError, PersistenceFailure
from ..models.domain import Booking, TaskStatus
from .escalation.controller import EscalationController
from .interfaces import PresenceResolver
from .ranking.ranker import CandidateRanker

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AssignmentRunReport:
    tasks_created: int = 0
    tasks_ranked: int = 0
    assigned: dict[int, list[int]] = field(default_factory=dict)
    expired: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    bookings: int = 0
    aborted: bool = False
    error: str | None = None


class AssignmentWorkflow:
    """One end-to-end assignment run over all pending tasks."""

    def __init__(
        self,
        store: TaskAssignmentStore,
        distances: DistanceRepository,
        people: PeopleRepository,
        presence: PresenceResolver,
        controller: EscalationController,
        ranker: CandidateRanker | None = None,
        floor_ids: Sequence[str] | None = None,
    ) -> None:
        self.store = store
        self.distances = distances
        self.people = people
        self.presence = presence
        self.controller = controller
        self.ranker = ranker or CandidateRanker()
        self.floor_ids = tuple(floor_ids) if floor_ids is not None else settings.deskly_floor_ids

    def _collect_bookings(self) -> list[Booking]:
        bookings: list[Booking] = []
        for floor_id in self.floor_ids:
            logger.debug(f"Fetching bookings for floor {floor_id}")
            bookings.extend(self.presence.bookings_for_floor(floor_id))
        return bookings

    def _resolve_bookings(self, bookings: list[Booking]) -> list[Booking]:
        """Seed unknown people into the directory, then attach their internal ids."""
        persons = []
        seen: set[str] = set()
        for booking in bookings:
            if booking.person.person_id not in seen:
                seen.add(booking.person.person_id)
                persons.append(booking.person)

        try:
            self.people.seed_from_bookings(persons)
        except PersistenceFailure as exc:
            logger.warning(f"Seeding employees from bookings failed: {exc}")

        resolved = {person.person_id: person for person in self.people.resolve(persons)}
        return [
            Booking(
                location_id=booking.location_id,
                person=resolved.get(booking.person.person_id, booking.person),
                floor=booking.floor,
                starts_at=booking.starts_at,
                ends_at=booking.ends_at,
            )
            for booking in bookings
        ]

    def run(self, now: datetime | None = None) -> AssignmentRunReport:
        """Create due tasks, rank candidates for every pending task and notify the first ones.

        Source failures abort the run and are reported, never raised.
        """
        now = now or datetime.now(timezone.utc)
        report = AssignmentRunReport()
        try:
            report.tasks_created = self.store.create_due_tasks(now)
            tasks = self.store.fetch_tasks([TaskStatus.PENDING])
            if not tasks:
                logger.info("No pending watering tasks.")
                return report

            bookings = self._resolve_bookings(self._collect_bookings())
            report.bookings = len(bookings)
            distances_by_floor = self.distances.load_all()
        except DispatchError as exc:
            logger.error(f"Assignment run aborted: {exc}")
            report.aborted = True
            report.error = str(exc)
            return report

        bookings_by_floor: dict[int, list[Booking]] = {}
        for booking in bookings:
            bookings_by_floor.setdefault(booking.floor, []).append(booking)

        for task in tasks:
            floor_pairs = distances_by_floor.get(task.floor, []) if task.floor is not None else []
            ranking = self.ranker.rank(task, floor_pairs, bookings_by_floor.get(task.floor, []))
            report.tasks_ranked += 1
            try:
                status = self.store.set_candidates(task.task_id, ranking.candidate_ids, now=now)
            except PersistenceFailure as exc:
                logger.error(f"Storing candidates for task {task.task_id} failed: {exc}")
                report.skipped.append(task.task_id)
                continue

            if status is None:
                logger.info(f"Task {task.task_id} is no longer pending, skipped")
                report.skipped.append(task.task_id)
            elif status == TaskStatus.EXPIRED:
                logger.info(f"Task {task.task_id}: no candidates on floor {task.floor}, expired")
                report.expired.append(task.task_id)
            else:
                report.assigned[task.task_id] = ranking.candidate_ids
                task.status = TaskStatus.ASSIGNED
                task.candidate_ids = list(ranking.candidate_ids)
                task.assigned_user_id = ranking.candidate_ids[0]
                task.notified_at = now
                self.controller.start(task)

        logger.info(
            f"Assignment run finished: {len(report.assigned)} assigned, {len(report.expired)} expired, "
            f"{len(report.skipped)} skipped"
        )
        return report
