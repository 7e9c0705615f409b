from __future__ import annotations

import logging
from functools import lru_cache

from supabase import Client, create_client

from app.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_supabase() -> Client | None:
    """Shared Supabase client, or None when the store is not configured."""
    settings = get_settings()
    if not settings.supabase_url:
        return None

    key = settings.supabase_service_key or settings.supabase_key
    if not key:
        logger.warning("SUPABASE_URL is set without a key; using in-process storage.")
        return None

    try:
        return create_client(settings.supabase_url, key)
    except Exception as exc:
        logger.warning("Could not create Supabase client (%s); using in-process storage.", exc)
        return None
