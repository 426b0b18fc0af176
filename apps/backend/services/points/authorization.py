"""
Authorization Policy
====================

Re-derived from the actor's stored role on every write; caller-supplied role
claims are never consulted.

can_award rules, in order:
1. actor is captain or organizer                      else "role"
2. captain: every target is a rookie in actor's clan  else "scope"
3. organizer: every target is a rookie                else "scope"
4. amount != 0 and at least one target                else "invalid-amount"
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from apps.backend.services.points.models import AWARDING_ROLES, Member

DENIAL_MESSAGES = {
    "role": "Access Denied: captain or organizer role required",
    "scope": "You can only award points to rookies you are responsible for",
    "invalid-amount": "Select at least one rookie. Points cannot be zero.",
    "unauthorized": "Access Denied",
}


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: Optional[str] = None
    detail: Optional[str] = None

    @property
    def message(self) -> str:
        return self.detail or DENIAL_MESSAGES.get(self.reason or "", "")


ALLOWED = AuthorizationDecision(allowed=True)


def _deny(reason: str, detail: Optional[str] = None) -> AuthorizationDecision:
    return AuthorizationDecision(allowed=False, reason=reason, detail=detail)


def can_award(actor: Member, targets: Sequence[Member], amount: int) -> AuthorizationDecision:
    if actor.role not in AWARDING_ROLES:
        return _deny("role")

    if actor.role == "captain":
        # a captain without a clan has nobody in scope
        if any(t.role != "rookie" or t.clan_id is None or t.clan_id != actor.clan_id for t in targets):
            return _deny("scope")
    elif any(t.role != "rookie" for t in targets):
        return _deny("scope")

    if not targets or int(amount) == 0:
        return _deny("invalid-amount")

    return ALLOWED


def can_manage_roster(actor: Member) -> AuthorizationDecision:
    if actor.role not in AWARDING_ROLES:
        return _deny("role")
    return ALLOWED


def require_organizer(actor: Member) -> AuthorizationDecision:
    if actor.role != "organizer":
        return _deny("role", "Access Denied: Organizer role required")
    return ALLOWED
