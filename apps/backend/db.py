import logging
from typing import Optional

from supabase import Client, ClientOptions, create_client

from apps.backend.config.settings import settings

log = logging.getLogger("clanpoints.db")

_service_client: Optional[Client] = None


def get_supabase() -> Optional[Client]:
    """
    Service-role client for the ledger tables. Built once per process.
    Returns None when Supabase is not configured.
    """
    global _service_client
    if _service_client is not None:
        return _service_client
    if not settings.store_configured:
        return None
    try:
        _service_client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        log.error("Supabase client init failed: %s", e)
        return None
    return _service_client


def get_auth_client(storage) -> Client:
    """
    Anon-key client bound to a per-request session storage (PKCE flow).
    """
    options = ClientOptions(
        storage=storage,
        flow_type="pkce",
        auto_refresh_token=False,
        persist_session=True,
    )
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY, options=options)
