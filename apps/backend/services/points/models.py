"""
Points Domain Model
===================

Member, Clan and Transaction records as the core sees them, plus the
discriminated `Result` returned across component boundaries for expected
conditions (denied, not found, validation).

Transactions are immutable: corrections are new rows with the opposite sign,
and totals are always computed by summation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Literal, Optional


Role = Literal["rookie", "captain", "organizer"]

ROLES = ("rookie", "captain", "organizer")
AWARDING_ROLES = ("captain", "organizer")


@dataclass(frozen=True)
class Clan:
    id: str
    name: str
    logo_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "logo_url": self.logo_url}


@dataclass(frozen=True)
class Member:
    id: str
    external_username: str
    display_name: str
    role: Role = "rookie"
    clan_id: Optional[str] = None
    external_subject_id: Optional[str] = None
    avatar_url: Optional[str] = None
    clan_name: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_linked(self) -> bool:
        return bool(self.external_subject_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.display_name,
            "github_username": self.external_username,
            "role": self.role,
            "clan_id": self.clan_id,
            "clan_name": self.clan_name,
            "avatar_url": self.avatar_url,
            "linked": self.is_linked,
        }


@dataclass(frozen=True)
class Transaction:
    """
    amount:
        + positive => points awarded
        + negative => correction / penalty
    """
    id: str
    member_id: str
    given_by_id: str
    amount: int
    description: str
    created_at: datetime

    idempotency_key: Optional[str] = None

    # Joined presentation data (present on time-range and history reads)
    member_name: Optional[str] = None
    member_avatar_url: Optional[str] = None
    given_by_name: Optional[str] = None
    given_by_role: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "given_by_id": self.given_by_id,
            "amount": int(self.amount),
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "member": {"name": self.member_name, "avatar_url": self.member_avatar_url},
            "given_by": {"name": self.given_by_name, "role": self.given_by_role},
        }


# -------------------------------------------------
# Results
# -------------------------------------------------
ErrorCode = Literal[
    "role",
    "scope",
    "invalid-amount",
    "unauthorized",
    "validation",
    "not-found",
]


@dataclass(frozen=True)
class Result:
    ok: bool
    data: Any = None
    error: Optional[ErrorCode] = None
    message: str = ""
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, data: Any = None, **meta: Any) -> "Result":
        return cls(ok=True, data=data, meta=meta)

    @classmethod
    def denied(cls, reason: ErrorCode, message: str) -> "Result":
        return cls(ok=False, error=reason, message=message)

    @classmethod
    def invalid(cls, message: str) -> "Result":
        return cls(ok=False, error="validation", message=message)

    @classmethod
    def not_found(cls, message: str = "Not Found") -> "Result":
        return cls(ok=False, error="not-found", message=message)
