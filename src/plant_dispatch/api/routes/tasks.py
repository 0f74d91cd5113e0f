"""Watering task endpoints: assignment runs, confirmation and maintenance."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...engine import Engine, get_engine
from ...errors import PersistenceFailure, SourceUnavailable
from ...models.domain import TaskStatus, WateringTask
from ...schemas.tasks import (
    AssignmentRunResponse,
    ConfirmRequest,
    ConfirmResponse,
    ResetResponse,
    SweepResponse,
    TaskListResponse,
    TaskModel,
)
from ...services.escalation.controller import ConfirmationOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _task_model(task: WateringTask) -> TaskModel:
    return TaskModel(
        task_id=task.task_id,
        plant_id=task.plant_id,
        status=task.status.value,
        assigned_user_id=task.assigned_user_id,
        candidate_ids=task.candidate_ids,
        notified_at=task.notified_at,
        created_at=task.created_at,
        plant_name=task.plant_name,
        location_name=task.location_name,
        floor=task.floor,
    )


@router.post("/run", response_model=AssignmentRunResponse, status_code=status.HTTP_200_OK)
def run_assignment(engine: Engine = Depends(get_engine)) -> AssignmentRunResponse:
    """Create due tasks, rank present people and notify the first candidate of each task."""
    report = engine.workflow.run()
    return AssignmentRunResponse(
        tasks_created=report.tasks_created,
        tasks_ranked=report.tasks_ranked,
        bookings=report.bookings,
        assigned=report.assigned,
        expired=report.expired,
        skipped=report.skipped,
        aborted=report.aborted,
        error=report.error,
    )


@router.get("", response_model=TaskListResponse, status_code=status.HTTP_200_OK)
def list_tasks(
    task_status: List[str] | None = Query(default=None, alias="status", description="Optional status filter"),
    engine: Engine = Depends(get_engine),
) -> TaskListResponse:
    statuses = None
    if task_status:
        try:
            statuses = [TaskStatus.parse(value) for value in task_status]
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown status: {exc}") from exc
    try:
        tasks = engine.store.fetch_tasks(statuses)
    except SourceUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return TaskListResponse(items=[_task_model(task) for task in tasks], total=len(tasks))


@router.post("/{task_id}/confirm", response_model=ConfirmResponse, status_code=status.HTTP_200_OK)
def confirm_task(
    task_id: int,
    payload: ConfirmRequest | None = None,
    engine: Engine = Depends(get_engine),
) -> ConfirmResponse:
    outcome = engine.controller.confirm(task_id, person_id=payload.person_id if payload else None)
    if outcome == ConfirmationOutcome.NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Watering task {task_id} not found")
    if outcome == ConfirmationOutcome.TOO_LATE:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Watering task {task_id} is no longer assigned to this person",
        )
    if outcome == ConfirmationOutcome.FAILED:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Watering task {task_id} could not be finalized, try again",
        )
    return ConfirmResponse(task_id=task_id, outcome=outcome.value)


@router.post("/sweep", response_model=SweepResponse, status_code=status.HTTP_200_OK)
def sweep_overdue(engine: Engine = Depends(get_engine)) -> SweepResponse:
    """Escalate assigned tasks whose confirmation window passed without a running timer."""
    return SweepResponse(moved=engine.controller.sweep_overdue())


@router.post("/reset", response_model=ResetResponse, status_code=status.HTTP_200_OK)
def reset_assignments(engine: Engine = Depends(get_engine)) -> ResetResponse:
    try:
        count = engine.store.reset_assignments()
    except PersistenceFailure as exc:
        logger.exception("Resetting task assignments failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return ResetResponse(reset=count)
