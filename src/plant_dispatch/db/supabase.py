"""Supabase client for the dispatch backend."""

import logging
from functools import lru_cache

from supabase import Client, ClientOptions, create_client

from ..config import settings

logger = logging.getLogger(__name__)


@lru_cache()
def get_supabase_client() -> Client | None:
    """Get cached Supabase client instance.

    Returns:
        Supabase Client bound to ``settings.supabase_schema`` if configured, None otherwise.
        Note: This does not test the connection - actual queries may fail with network errors.
    """
    if not settings.supabase_url or not settings.supabase_key:
        logger.warning("Supabase credentials not configured (missing URL or key)")
        return None

    try:
        return create_client(
            settings.supabase_url,
            settings.supabase_key,
            options=ClientOptions(schema=settings.supabase_schema),
        )
    except Exception as e:
        logger.error(f"Failed to create Supabase client: {e}")
        return None


# Query shapes used by the repositories:
#
# client.table("distance_pairs").select("floor", count="exact", head=True).execute()
# client.table("distance_pairs").select("*").range(0, 999).execute()
#
# # Conditional update (row-level compare-then-act)
# client.table("watering_task") \
#     .update({"status": "done"}) \
#     .eq("id", 42) \
#     .eq("status", "assigned") \
#     .execute()
