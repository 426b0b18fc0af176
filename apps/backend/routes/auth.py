from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote, urlencode

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse

from apps.backend.config.settings import settings
from apps.backend.repositories.ledger_repository import LedgerRepository, LedgerStoreError
from apps.backend.services.core_service import current_subject, get_gateway, get_points_service, get_repository
from apps.backend.services.identity_gateway import IdentityGatewayError, SupabaseIdentityGateway
from apps.backend.services.points.account_linking import AccountLinker, complete_login
from apps.backend.services.points.points_service import PointsService
from apps.backend.utils.envelope import ok

log = logging.getLogger("clanpoints.auth")

router = APIRouter(tags=["auth"])

LOGIN_FAILED = "Could not authenticate with GitHub"
LOGIN_MESSAGES = {
    "unauthorized": (
        "Your GitHub username is not registered in our system. "
        "Please contact an organizer to get added to the member list."
    ),
}


def _safe_next(next_path: Optional[str]) -> str:
    # local paths only
    if not next_path or not next_path.startswith("/") or next_path.startswith("//"):
        return settings.DEFAULT_NEXT_PATH
    return next_path


def _to_login(error: str) -> RedirectResponse:
    return RedirectResponse("/login?" + urlencode({"error": error}), status_code=303)


@router.get("/login")
def login_page(error: Optional[str] = None, subject_id: Optional[str] = Depends(current_subject)):
    if subject_id:
        return RedirectResponse(settings.DEFAULT_NEXT_PATH, status_code=303)
    message = LOGIN_MESSAGES.get(error or "", error)
    return ok({"error": error, "message": message, "login_url": "/auth/login"})


@router.get("/auth/login")
def auth_login(next: Optional[str] = None, gateway: SupabaseIdentityGateway = Depends(get_gateway)):
    target = _safe_next(next)
    if gateway.current_subject():
        return RedirectResponse(target, status_code=303)

    callback = f"{settings.SITE_URL}/auth/callback?next={quote(target, safe='/')}"
    try:
        url = gateway.begin_oauth(callback)
    except IdentityGatewayError as e:
        log.error("OAuth start failed: %s", e)
        return _to_login(LOGIN_FAILED)
    return RedirectResponse(url, status_code=303)


@router.get("/auth/callback")
def auth_callback(
    code: Optional[str] = None,
    next: Optional[str] = None,
    gateway: SupabaseIdentityGateway = Depends(get_gateway),
    repo: LedgerRepository = Depends(get_repository),
):
    """
    Stage 1: exchange the provider code for a session (gateway).
    Stage 2: allow-list check + account link (AccountLinker).
    """
    if not code:
        return _to_login(LOGIN_FAILED)

    try:
        outcome = complete_login(gateway, AccountLinker(repo), code)
    except IdentityGatewayError as e:
        log.warning("Authentication failed: %s", e)
        return _to_login(LOGIN_FAILED)
    except LedgerStoreError as e:
        log.error("Account link failed, access not granted: %s", e)
        return _to_login(LOGIN_FAILED)

    if not outcome.ok:
        return _to_login(outcome.error or "unauthorized")

    log.info("Login ok member=%s outcome=%s", outcome.member_id, outcome.link.outcome if outcome.link else None)
    return RedirectResponse(_safe_next(next), status_code=303)


@router.post("/auth/logout")
def auth_logout(gateway: SupabaseIdentityGateway = Depends(get_gateway)):
    gateway.sign_out()
    return ok({"signed_out": True})


@router.get("/me")
def me(
    subject_id: Optional[str] = Depends(current_subject),
    service: PointsService = Depends(get_points_service),
):
    member = service.current_member(subject_id)
    return ok({"member": member.to_dict() if member else None})
