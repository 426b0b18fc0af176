"""
Account Linking Authority
=========================

Stage 2 of login. Stage 1 (the identity gateway) proves who the caller is;
this stage decides whether that identity may use the app and binds it to a
pre-provisioned member.

- The allow-list is the members table keyed by external username.
- Successful provider authentication is necessary but not sufficient.
- Linking never creates members and is idempotent: re-running with the same
  (subject, username) converges to the same bound state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal, Optional

from apps.backend.repositories.ledger_repository import LedgerStoreError
from apps.backend.services.identity_gateway import ExternalIdentity, ProviderProfile

log = logging.getLogger("clanpoints.auth")

LinkOutcome = Literal["denied", "linked", "linked_now"]


def resolve_external_username(profile: ProviderProfile) -> str:
    """
    provider username -> preferred username -> email local part -> "unknown"
    """
    email_local = (profile.email or "").split("@")[0] if profile.email else None
    for candidate in (profile.username, profile.preferred_username, email_local):
        if candidate and candidate.strip():
            return candidate.strip().lower()
    return "unknown"


@dataclass(frozen=True)
class LinkResult:
    outcome: LinkOutcome
    member_id: Optional[str] = None

    @property
    def granted(self) -> bool:
        return self.outcome != "denied"


class AccountLinker:
    """
    Repo contract:
    - find_member_by_external_username(username) -> Member|None
    - update_member(member_id, external_subject_id=?, avatar_url=?) -> None
    - unlink_subject(subject_id, keep_member_id=?) -> None
    """

    def __init__(self, repo: Any) -> None:
        self.repo = repo

    def link(self, subject_id: str, profile: ProviderProfile) -> LinkResult:
        username = resolve_external_username(profile)
        member = self.repo.find_member_by_external_username(username)

        if member is None:
            log.info("Login denied, username not on member list: %s", username)
            return LinkResult(outcome="denied")

        new_avatar = profile.avatar_url or None

        if member.external_subject_id == subject_id:
            if new_avatar and new_avatar != member.avatar_url:
                self.repo.update_member(member.id, avatar_url=new_avatar)
            return LinkResult(outcome="linked", member_id=member.id)

        log.info(
            "Linking member %s to subject %s (previous link: %s)",
            member.id,
            subject_id,
            member.external_subject_id or "none",
        )
        # a subject belongs to at most one member
        self.repo.unlink_subject(subject_id, keep_member_id=member.id)
        self.repo.update_member(
            member.id,
            external_subject_id=subject_id,
            avatar_url=new_avatar or member.avatar_url,
        )
        return LinkResult(outcome="linked_now", member_id=member.id)


# -------------------------------------------------
# Login pipeline
# -------------------------------------------------
@dataclass(frozen=True)
class LoginOutcome:
    ok: bool
    member_id: Optional[str] = None
    link: Optional[LinkResult] = None
    error: Optional[str] = None


def complete_login(gateway: Any, linker: AccountLinker, code: str) -> LoginOutcome:
    """
    Stage 1: gateway.complete_oauth(code) -> ExternalIdentity
             (IdentityGatewayError propagates; nothing to undo)
    Stage 2: linker.link(...) -> denied terminates the fresh session.
             Store failures also terminate it and propagate.
    """
    identity: ExternalIdentity = gateway.complete_oauth(code)

    try:
        result = linker.link(identity.subject_id, identity.profile)
    except LedgerStoreError:
        gateway.sign_out()
        raise

    if not result.granted:
        gateway.sign_out()
        return LoginOutcome(ok=False, link=result, error="unauthorized")

    return LoginOutcome(ok=True, member_id=result.member_id, link=result)
