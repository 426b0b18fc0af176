from typing import Optional

from fastapi import Depends, Request

from apps.backend.config.settings import settings
from apps.backend.db import get_supabase
from apps.backend.repositories.ledger_repository import LedgerRepository
from apps.backend.services.identity_gateway import CookieSessionStorage, SupabaseIdentityGateway
from apps.backend.services.points.models import Member
from apps.backend.services.points.points_service import PointsService
from apps.backend.services.points.read_cache import NullCache


class CoreError(Exception):
    def __init__(self, message: str, status_code: int = 400, code: str = "error"):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)


def _require_supabase():
    supabase = get_supabase()
    if not supabase:
        raise CoreError("Supabase client unavailable", 500, code="store_unavailable")
    return supabase


def get_repository() -> LedgerRepository:
    return LedgerRepository(_require_supabase())


def get_cache(request: Request):
    cache = getattr(request.app.state, "read_cache", None)
    return NullCache() if cache is None else cache


def get_points_service(
    repo: LedgerRepository = Depends(get_repository),
    cache=Depends(get_cache),
) -> PointsService:
    return PointsService(
        repo,
        cache,
        timezone_name=settings.CALENDAR_TIMEZONE,
        username_attempts=settings.ROOKIE_USERNAME_ATTEMPTS,
    )


def get_gateway(request: Request) -> SupabaseIdentityGateway:
    """
    One gateway per request. The session storage is parked on request.state so
    the session middleware can write cookie changes onto the response.
    """
    storage = CookieSessionStorage(request.cookies)
    request.state.session_storage = storage
    return SupabaseIdentityGateway(storage)


def current_subject(gateway: SupabaseIdentityGateway = Depends(get_gateway)) -> Optional[str]:
    return gateway.current_subject()


def require_actor(
    subject_id: Optional[str] = Depends(current_subject),
    service: PointsService = Depends(get_points_service),
) -> Member:
    """
    Resolves the caller's member record from the session on every request.
    Roles are always read from the store, never from the client.
    """
    if not subject_id:
        raise CoreError("Login required", 401, code="unauthenticated")
    member = service.current_member(subject_id)
    if member is None:
        raise CoreError("Access Denied", 403, code="unauthorized")
    return member
