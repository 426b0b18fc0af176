"""
Transaction Aggregator (Canonical)
==================================

Purpose:
- Derive the leaderboard, the month calendar and the profile calendar from
  raw transactions.
- Pure domain logic: no DB, no HTTP, no cached state. Every view can be
  recomputed from scratch at any time.

Effective date:
- A description ending in `-D/M` or `-DD/MM` places the transaction on that
  day/month of its created_at year (calendar timezone).
- Day must be 1..31 and month 1..12; anything else falls back to created_at's
  date.
- Day is not checked against the month's length. Out-of-range days roll
  forward into the next month (31/2 in a leap year lands on 2 March).
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from apps.backend.services.points.models import Member, Transaction

EFFECTIVE_DATE_SUFFIX = re.compile(r"-(\d{1,2})/(\d{1,2})$")

UTC = ZoneInfo("UTC")


def _tz(tz: Optional[tzinfo]) -> tzinfo:
    return tz or UTC


# -----------------------------
# Dates
# -----------------------------
def extract_effective_date(description: Optional[str], created_at: datetime, tz: Optional[tzinfo] = None) -> date:
    local = created_at.astimezone(_tz(tz)) if created_at.tzinfo else created_at
    if description:
        m = EFFECTIVE_DATE_SUFFIX.search(description)
        if m:
            day = int(m.group(1))
            month = int(m.group(2))
            if 1 <= day <= 31 and 1 <= month <= 12:
                return date(local.year, month, 1) + timedelta(days=day - 1)
    return local.date()


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    last = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last)


def shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    idx = year * 12 + (month - 1) + delta
    return idx // 12, idx % 12 + 1


def fetch_window(year: int, month: int, tz: Optional[tzinfo] = None) -> Tuple[datetime, datetime]:
    """
    created_at range searched for a month: previous month start through next
    month end, so suffix-dated entries recorded around the month are caught.
    """
    py, pm = shift_month(year, month, -1)
    ny, nm = shift_month(year, month, 1)
    start = datetime.combine(month_bounds(py, pm)[0], time.min, tzinfo=_tz(tz))
    end = datetime.combine(month_bounds(ny, nm)[1], time.max, tzinfo=_tz(tz))
    return start, end


def in_month(day: date, year: int, month: int) -> bool:
    first, last = month_bounds(year, month)
    return first <= day <= last


# -----------------------------
# Leaderboard
# -----------------------------
@dataclass(frozen=True)
class LeaderboardRow:
    rank: int
    member_id: str
    name: str
    avatar_url: Optional[str]
    clan_name: Optional[str]
    total_points: int
    subject_id: Optional[str] = None

    def to_dict(self, *, is_current_user: bool = False) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "id": self.member_id,
            "name": self.name,
            "avatar_url": self.avatar_url,
            "clan_name": self.clan_name,
            "total_points": int(self.total_points),
            "is_current_user": is_current_user,
        }


def member_total(transactions: Iterable[Transaction], member_id: str) -> int:
    return sum(int(t.amount) for t in transactions if t.member_id == member_id)


def build_leaderboard(members: Iterable[Member], transactions: Iterable[Transaction]) -> List[LeaderboardRow]:
    totals: Dict[str, int] = {}
    for t in transactions:
        totals[t.member_id] = totals.get(t.member_id, 0) + int(t.amount)

    rookies = [m for m in members if m.role == "rookie"]
    ordered = sorted(rookies, key=lambda m: totals.get(m.id, 0), reverse=True)

    return [
        LeaderboardRow(
            rank=i + 1,
            member_id=m.id,
            name=m.display_name,
            avatar_url=m.avatar_url,
            clan_name=m.clan_name,
            total_points=totals.get(m.id, 0),
            subject_id=m.external_subject_id,
        )
        for i, m in enumerate(ordered)
    ]


def mark_viewer(rows: Iterable[LeaderboardRow], subject_id: Optional[str]) -> List[Dict[str, Any]]:
    return [r.to_dict(is_current_user=bool(subject_id) and r.subject_id == subject_id) for r in rows]


# -----------------------------
# Calendars
# -----------------------------
@dataclass
class DescriptionGroup:
    description: str
    subtotal: int = 0
    transactions: List[Transaction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "subtotal": int(self.subtotal),
            "count": len(self.transactions),
            "transactions": [t.to_dict() for t in self.transactions],
        }


@dataclass
class DayBucket:
    day: date
    total: int = 0
    transactions: List[Transaction] = field(default_factory=list)
    groups: Dict[str, DescriptionGroup] = field(default_factory=dict)

    def add(self, t: Transaction, *, grouped: bool) -> None:
        self.total += int(t.amount)
        if not grouped:
            self.transactions.append(t)
            return
        group = self.groups.get(t.description)
        if group is None:
            group = self.groups[t.description] = DescriptionGroup(description=t.description)
        group.subtotal += int(t.amount)
        group.transactions.append(t)

    def to_dict(self) -> Dict[str, Any]:
        if self.groups:
            return {
                "total": int(self.total),
                "count": sum(len(g.transactions) for g in self.groups.values()),
                "groups": [g.to_dict() for g in self.groups.values()],
            }
        return {"total": int(self.total), "transactions": [t.to_dict() for t in self.transactions]}


@dataclass
class CalendarMonth:
    year: int
    month: int
    days: Dict[str, DayBucket] = field(default_factory=dict)
    total_points: int = 0
    total_transactions: int = 0

    def to_dict(self) -> Dict[str, Any]:
        py, pm = shift_month(self.year, self.month, -1)
        ny, nm = shift_month(self.year, self.month, 1)
        return {
            "year": self.year,
            "month": self.month,
            "days": {k: v.to_dict() for k, v in sorted(self.days.items())},
            "total_points": int(self.total_points),
            "total_transactions": int(self.total_transactions),
            "prev": {"year": py, "month": pm},
            "next": {"year": ny, "month": nm},
        }


def _bucket(
    transactions: Iterable[Transaction],
    year: int,
    month: int,
    *,
    grouped: bool,
    member_id: Optional[str] = None,
    tz: Optional[tzinfo] = None,
) -> CalendarMonth:
    out = CalendarMonth(year=year, month=month)
    for t in transactions:
        if member_id is not None and t.member_id != member_id:
            continue
        effective = extract_effective_date(t.description, t.created_at, tz)
        if not in_month(effective, year, month):
            continue
        key = effective.isoformat()
        bucket = out.days.get(key)
        if bucket is None:
            bucket = out.days[key] = DayBucket(day=effective)
        bucket.add(t, grouped=grouped)
        out.total_points += int(t.amount)
        out.total_transactions += 1
    return out


def build_calendar(
    transactions: Iterable[Transaction],
    year: int,
    month: int,
    tz: Optional[tzinfo] = None,
) -> CalendarMonth:
    """Global calendar: flat transaction list per day."""
    return _bucket(transactions, year, month, grouped=False, tz=tz)


def build_profile_calendar(
    transactions: Iterable[Transaction],
    year: int,
    month: int,
    *,
    member_id: Optional[str] = None,
    tz: Optional[tzinfo] = None,
) -> CalendarMonth:
    """Profile calendar: per day, grouped by description with subtotals."""
    return _bucket(transactions, year, month, grouped=True, member_id=member_id, tz=tz)
