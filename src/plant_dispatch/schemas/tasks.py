"""Watering task API schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field


class TaskModel(BaseModel):
    task_id: int
    plant_id: int
    status: str
    assigned_user_id: int | None = None
    candidate_ids: List[int] = Field(default_factory=list)
    notified_at: datetime | None = None
    created_at: datetime | None = None
    plant_name: str | None = None
    location_name: str | None = None
    floor: int | None = None


class TaskListResponse(BaseModel):
    items: List[TaskModel]
    total: int


class AssignmentRunResponse(BaseModel):
    tasks_created: int
    tasks_ranked: int
    bookings: int
    assigned: dict[int, List[int]]
    expired: List[int]
    skipped: List[int]
    aborted: bool
    error: str | None = None


class ConfirmRequest(BaseModel):
    person_id: int | None = Field(default=None, description="Employee confirming; any assignee when omitted.")


class ConfirmResponse(BaseModel):
    task_id: int
    outcome: str


class SweepResponse(BaseModel):
    moved: int


class ResetResponse(BaseModel):
    reset: int
