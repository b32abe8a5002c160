"""Selects the configured persistence backend."""

from __future__ import annotations

import logging
from functools import lru_cache

from ..config import settings
from ..db.supabase import get_supabase_client
from .store import CollectionStore, InMemoryStore
from .supabase_store import SupabaseStore


@lru_cache()
def get_store() -> CollectionStore:
    """Return the process-wide store instance."""
    if settings.store_backend == "supabase":
        client = get_supabase_client()
        if client is not None:
            return SupabaseStore(client)
        logging.warning("Supabase backend requested but not configured - falling back to in-memory store")
    return InMemoryStore()
