"""Proximity ranking of present people for a watering task."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Sequence

from ...models.domain import Booking, DistancePair, Person, WateringTask

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RankingResult:
    """Kept pairs sorted by distance and the candidate ids derived from them."""

    task_id: int
    pairs: list[DistancePair] = field(default_factory=list)
    candidate_ids: list[int] = field(default_factory=list)


def _occupants(bookings: Sequence[Booking]) -> dict[str, Person]:
    """First booked person per location id."""
    lookup: dict[str, Person] = {}
    for booking in bookings:
        if booking.location_id and booking.location_id not in lookup:
            lookup[booking.location_id] = booking.person
    return lookup


def _keep(from_own: bool, to_own: bool, from_occupied: bool, to_occupied: bool) -> bool:
    if from_own and not to_own:
        return to_occupied
    if to_own and not from_own:
        return from_occupied
    if from_own and to_own:
        return from_occupied or to_occupied
    return False


class CandidateRanker:
    """Orders the people present on a floor by their distance to a task's location."""

    def filter_pairs(
        self,
        own_location_id: str,
        pairs: Sequence[DistancePair],
        bookings: Sequence[Booking],
    ) -> list[DistancePair]:
        """Keep pairs linking the task location to an occupied location, annotated with occupants."""
        occupants = _occupants(bookings)
        kept: list[DistancePair] = []
        for pair in pairs:
            from_id = pair.from_location.external_id
            to_id = pair.to_location.external_id
            if not _keep(
                from_id == own_location_id,
                to_id == own_location_id,
                from_id in occupants,
                to_id in occupants,
            ):
                continue
            kept.append(replace(pair, from_person=occupants.get(from_id), to_person=occupants.get(to_id)))
        return kept

    def rank(
        self,
        task: WateringTask,
        pairs: Sequence[DistancePair],
        bookings: Sequence[Booking],
    ) -> RankingResult:
        result = RankingResult(task_id=task.task_id)
        own_location_id = task.external_location_id
        if not own_location_id:
            logger.warning(f"Task {task.task_id} has no location id; cannot rank candidates")
            return result
        if not pairs:
            logger.info(f"Task {task.task_id}: no distance pairs for floor {task.floor}")
            return result

        kept = self.filter_pairs(own_location_id, pairs, bookings)
        # sorted() is stable, equal distances keep their stored order
        kept = sorted(kept, key=lambda pair: pair.distance if pair.distance is not None else float("inf"))
        result.pairs = kept

        for pair in kept:
            for person in self._people_in_order(pair, own_location_id):
                if person.employee_id is None:
                    logger.warning(f"Task {task.task_id}: {person.email or person.person_id} has no employee id, skipping")
                    continue
                if person.employee_id not in result.candidate_ids:
                    result.candidate_ids.append(person.employee_id)

        logger.debug(f"Task {task.task_id}: {len(kept)} relevant pairs, candidates {result.candidate_ids}")
        return result

    @staticmethod
    def _people_in_order(pair: DistancePair, own_location_id: str) -> list[Person]:
        """Occupant of the non-own endpoint first, then the own endpoint's occupant."""
        if pair.from_location.external_id == own_location_id:
            ordered = (pair.to_person, pair.from_person)
        else:
            ordered = (pair.from_person, pair.to_person)
        people: list[Person] = []
        for person in ordered:
            if person is not None and person not in people:
                people.append(person)
        return people
