"""
Document storage client. Assignments and submissions live in two Supabase
tables keyed by their string ``id``; only get/upsert/insert/delete and
equality-filtered, sorted selects are used against them.
"""

import logging

from supabase import create_client, Client
from app.core.config import settings

logger = logging.getLogger(__name__)

_supabase_client: Client | None = None


def get_supabase() -> Client:
    global _supabase_client
    if _supabase_client is None:
        logger.info("Creating Supabase client for %s", settings.SUPABASE_URL)
        _supabase_client = create_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_KEY or settings.SUPABASE_KEY,
        )
    return _supabase_client
