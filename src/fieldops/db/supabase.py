"""Supabase client for the collection backend."""

import logging
from functools import lru_cache

from supabase import Client, create_client

from ..config import settings

logger = logging.getLogger(__name__)


@lru_cache()
def get_supabase_client() -> Client | None:
    """Cached client for the collection tables, or None when unconfigured.

    The client is created lazily; a bad URL or key surfaces on the first
    query, which the store provider and the health endpoint report.
    """
    required = (
        ("FIELDOPS_SUPABASE_URL", settings.supabase_url),
        ("FIELDOPS_SUPABASE_KEY", settings.supabase_key),
    )
    missing = [name for name, value in required if not value]
    if missing:
        logger.warning(f"Supabase store disabled: {', '.join(missing)} not set")
        return None

    try:
        return create_client(settings.supabase_url, settings.supabase_key)
    except Exception as e:
        logger.error(f"Failed to create Supabase client for {settings.supabase_url}: {e}")
        return None
