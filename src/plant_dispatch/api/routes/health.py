"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ...data.distance_repository import DistanceRepository
from ...db.supabase import get_supabase_client

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/database", status_code=status.HTTP_200_OK)
def check_database() -> dict:
    """Check database connection and distance pair storage."""
    supabase = get_supabase_client()
    if not supabase:
        return {
            "configured": False,
            "message": "Supabase not configured. Set PLANT_SUPABASE_URL and PLANT_SUPABASE_KEY environment variables.",
            "distance_pairs": 0,
        }

    try:
        pairs = DistanceRepository(supabase).count()
    except Exception as exc:
        return {
            "configured": True,
            "connected": False,
            "error": str(exc),
            "message": f"Database connection error: {exc}",
        }
    return {
        "configured": True,
        "connected": True,
        "distance_pairs": pairs,
        "message": f"Database connected. Found {pairs} distance pairs.",
    }
