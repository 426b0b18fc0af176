"""
Points Service (Canonical Integration Layer)
============================================

Purpose:
- Orchestrate authorization policy + aggregator + read cache with the ledger
  repository (DB adapter).
- Keep routes thin. Keep domain logic in the canonical modules.

This service:
- Serves the leaderboard (cached), month calendar and member profiles
- Awards points (bulk, all-or-nothing) and invalidates the leaderboard cache
  once the insert has committed
- Adds rookies to a captain's clan with a generated username when none is given
- Builds the organizer-only member overview

Expected conditions come back as `Result`; LedgerStoreError propagates.
No HTTP here. Routes should call this.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from apps.backend.repositories.ledger_repository import LedgerRepository, UniqueViolation
from apps.backend.services.points.aggregator import (
    build_calendar,
    build_leaderboard,
    build_profile_calendar,
    fetch_window,
    mark_viewer,
    member_total,
)
from apps.backend.services.points.authorization import (
    DENIAL_MESSAGES,
    can_award,
    can_manage_roster,
    require_organizer,
)
from apps.backend.services.points.models import AWARDING_ROLES, ROLES, Member, Result
from apps.backend.services.points.read_cache import LEADERBOARD_KEY

log = logging.getLogger("clanpoints.points")

USERNAME_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
USERNAME_SUFFIX_LENGTH = 6


def synthetic_username(name: str) -> str:
    base = re.sub(r"[^a-z0-9]", "-", name.lower())
    suffix = "".join(secrets.choice(USERNAME_SUFFIX_ALPHABET) for _ in range(USERNAME_SUFFIX_LENGTH))
    return f"{base}-{suffix}"


def _dedupe(ids: Sequence[Any]) -> List[str]:
    out: List[str] = []
    for x in ids or []:
        s = str(x).strip()
        if s and s not in out:
            out.append(s)
    return out


class PointsService:
    """
    Repo contract (see LedgerRepository):
    - find_member_by_subject / find_member_by_id / find_members_by_ids
    - find_member_by_external_username / insert_member / list_members
    - list_rookies_with_transactions
    - insert_transactions / find_idempotency_keys
    - list_transactions_by_member / list_transactions_by_time_range
    """

    def __init__(
        self,
        repo: LedgerRepository,
        cache: Any,
        *,
        timezone_name: str = "UTC",
        username_attempts: int = 5,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        username_factory: Callable[[str], str] = synthetic_username,
    ) -> None:
        self.repo = repo
        self.cache = cache
        self.tz = ZoneInfo(timezone_name)
        self.username_attempts = max(1, int(username_attempts))
        self._now = now
        self._username_factory = username_factory

    # -----------------------------
    # Session member
    # -----------------------------
    def current_member(self, subject_id: Optional[str]) -> Optional[Member]:
        if not subject_id:
            return None
        return self.repo.find_member_by_subject(subject_id)

    # -----------------------------
    # Leaderboard
    # -----------------------------
    def get_leaderboard(self, viewer_subject_id: Optional[str] = None) -> List[Dict[str, Any]]:
        rows = self.cache.get(LEADERBOARD_KEY)
        if rows is None:
            members, transactions = self.repo.list_rookies_with_transactions()
            rows = build_leaderboard(members, transactions)
            self.cache.set(LEADERBOARD_KEY, rows)
        return mark_viewer(rows, viewer_subject_id)

    # -----------------------------
    # Calendars / profile
    # -----------------------------
    def resolve_month(self, year: Optional[int], month: Optional[int]) -> Tuple[int, int]:
        today = self._now().astimezone(self.tz)
        return (year or today.year), (month or today.month)

    def get_calendar(self, year: Optional[int] = None, month: Optional[int] = None) -> Dict[str, Any]:
        y, m = self.resolve_month(year, month)
        start, end = fetch_window(y, m, self.tz)
        transactions = self.repo.list_transactions_by_time_range(start, end)
        return build_calendar(transactions, y, m, self.tz).to_dict()

    def get_profile(self, member_id: str, year: Optional[int] = None, month: Optional[int] = None) -> Result:
        member = self.repo.find_member_by_id(member_id)
        if member is None:
            return Result.not_found("Member not found")

        y, m = self.resolve_month(year, month)
        transactions = self.repo.list_transactions_by_member(member.id)
        return Result.success(
            {
                "member": member.to_dict(),
                "total_points": member_total(transactions, member.id),
                "transactions": [t.to_dict() for t in transactions],
                "calendar": build_profile_calendar(transactions, y, m, member_id=member.id, tz=self.tz).to_dict(),
            }
        )

    # -----------------------------
    # Rosters
    # -----------------------------
    def captain_roster(self, actor: Member) -> Result:
        decision = can_manage_roster(actor)
        if not decision.allowed:
            return Result.denied(decision.reason, decision.message)
        rookies = self.repo.list_members(role="rookie", clan_id=actor.clan_id) if actor.clan_id else []
        return Result.success({"member": actor.to_dict(), "rookies": [r.to_dict() for r in rookies]})

    def organizer_roster(self, actor: Member) -> Result:
        decision = require_organizer(actor)
        if not decision.allowed:
            return Result.denied(decision.reason, decision.message)
        rookies = self.repo.list_members(role="rookie")
        return Result.success({"member": actor.to_dict(), "rookies": [r.to_dict() for r in rookies]})

    def admin_overview(self, actor: Member) -> Result:
        decision = require_organizer(actor)
        if not decision.allowed:
            return Result.denied(decision.reason, decision.message)

        members = self.repo.list_members()
        groups: Dict[str, Dict[str, Any]] = {}
        for role in reversed(ROLES):
            in_role = [m for m in members if m.role == role]
            linked = sum(1 for m in in_role if m.is_linked)
            groups[role] = {
                "members": [m.to_dict() for m in in_role],
                "total": len(in_role),
                "linked": linked,
                "pending": len(in_role) - linked,
            }
        return Result.success(groups)

    # -----------------------------
    # Award points
    # -----------------------------
    def award_points(
        self,
        actor: Member,
        target_ids: Sequence[Any],
        amount: int,
        description: Optional[str],
        *,
        request_id: Optional[str] = None,
    ) -> Result:
        """
        Authorize against the actor's stored role, insert one row per
        beneficiary in a single bulk insert, then invalidate the leaderboard.

        request_id (optional) makes retries safe: row keys are
        "<request_id>:<member_id>" and already-stored keys are not re-inserted.
        """
        ids = _dedupe(target_ids)
        targets = self.repo.find_members_by_ids(ids) if ids else []

        if actor.role in AWARDING_ROLES and len(targets) != len(ids):
            return Result.denied("scope", DENIAL_MESSAGES["scope"])

        decision = can_award(actor, targets, amount)
        if not decision.allowed:
            log.info("Award denied actor=%s reason=%s targets=%d", actor.id, decision.reason, len(ids))
            return Result.denied(decision.reason, decision.message)

        text = (description or "").strip()
        if not text:
            return Result.invalid("Description is required")

        rows = [
            {
                "member_id": t.id,
                "given_by_id": actor.id,
                "amount": int(amount),
                "description": text,
                "idempotency_key": f"{request_id}:{t.id}" if request_id else None,
            }
            for t in targets
        ]

        if request_id:
            existing = self.repo.find_idempotency_keys(r["idempotency_key"] for r in rows)
            rows = [r for r in rows if r["idempotency_key"] not in existing]
            if not rows:
                log.info("Award replay ignored actor=%s request_id=%s", actor.id, request_id)
                return Result.success({"count": len(targets)}, replayed=True)

        try:
            self.repo.insert_transactions(rows)
        except UniqueViolation:
            if not request_id:
                raise
            # a concurrent submission with the same request_id won the insert
            existing = self.repo.find_idempotency_keys(r["idempotency_key"] for r in rows)
            if len(existing) != len(rows):
                raise
            return Result.success({"count": len(targets)}, replayed=True)

        self.cache.invalidate(LEADERBOARD_KEY)
        log.info("Awarded %d points to %d member(s) by %s", int(amount), len(targets), actor.id)
        return Result.success({"count": len(targets)})

    # -----------------------------
    # Add rookie
    # -----------------------------
    def add_rookie(self, actor: Member, name: Optional[str], external_username: Optional[str] = None) -> Result:
        decision = can_manage_roster(actor)
        if not decision.allowed:
            return Result.denied(decision.reason, decision.message)

        display_name = (name or "").strip()
        if not display_name:
            return Result.invalid("Name is required")

        supplied = (external_username or "").strip().lower()
        if supplied:
            if self.repo.find_member_by_external_username(supplied) is not None:
                return Result.invalid("A member with this GitHub username already exists.")
            try:
                member = self._insert_rookie(actor, display_name, supplied)
            except UniqueViolation:
                return Result.invalid("A member with this GitHub username already exists.")
            return self._rookie_added(member)

        for attempt in range(self.username_attempts):
            candidate = self._username_factory(display_name)
            if self.repo.find_member_by_external_username(candidate) is not None:
                log.info("Generated username collision (attempt %d): %s", attempt + 1, candidate)
                continue
            try:
                member = self._insert_rookie(actor, display_name, candidate)
            except UniqueViolation:
                log.info("Generated username taken at insert (attempt %d): %s", attempt + 1, candidate)
                continue
            return self._rookie_added(member)

        return Result.invalid("Could not generate a unique username. Try again.")

    def _insert_rookie(self, actor: Member, display_name: str, username: str) -> Member:
        return self.repo.insert_member(
            display_name=display_name,
            external_username=username,
            role="rookie",
            clan_id=actor.clan_id,
        )

    def _rookie_added(self, member: Member) -> Result:
        log.info("Rookie added id=%s username=%s clan=%s", member.id, member.external_username, member.clan_id)
        return Result(
            ok=True,
            data=member.to_dict(),
            message=f"{member.display_name} added to your clan!",
        )
