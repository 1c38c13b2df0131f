from __future__ import annotations

from supabase import Client, create_client

from ..config import Settings


def get_supabase_client(settings: Settings) -> Client:
    url, key = settings.require_supabase()
    return create_client(url, key)
