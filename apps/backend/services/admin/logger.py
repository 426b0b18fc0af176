import logging
import time
from typing import Any, Dict, Mapping

from fastapi import Request, Response

log = logging.getLogger("clanpoints.http")

MASK = "***masked***"

SENSITIVE_HEADERS = {
    "authorization",
    "cookie",
    "set-cookie",
    "apikey",
    "x-supabase-key",
}

# OAuth callback params
SENSITIVE_PARAMS = {"code", "state", "access_token", "refresh_token"}

SESSION_COOKIE_PREFIX = "sb-"


def _masked(items: Mapping[str, str], sensitive: set) -> Dict[str, str]:
    return {k: (MASK if k.lower() in sensitive else v) for k, v in items.items()}


def build_entry(request: Request, response: Response, start_time: float) -> Dict[str, Any]:
    return {
        "method": request.method,
        "path": request.url.path,
        "query": _masked(dict(request.query_params), SENSITIVE_PARAMS),
        "status_code": response.status_code,
        "duration_ms": int((time.time() - start_time) * 1000),
        "client": request.client.host if request.client else None,
        "has_session": any(k.startswith(SESSION_COOKIE_PREFIX) for k in request.cookies),
        "headers": _masked(dict(request.headers), SENSITIVE_HEADERS),
    }


def log_request_response(request: Request, response: Response, start_time: float) -> Dict[str, Any]:
    entry = build_entry(request, response, start_time)
    if response.status_code >= 500:
        log.warning(entry)
    else:
        log.info(entry)
    return entry
