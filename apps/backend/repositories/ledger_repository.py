"""
Ledger Repository (Supabase/Postgres Adapter)
=============================================

Purpose:
- DB-facing adapter for members, clans and the points transaction ledger.
- Designed to work with a supabase-py client; every query goes through here.

Expected tables (existing project schema):
1) public.clans
   - id uuid primary key
   - name text not null
   - logo_url text null

2) public.members
   - id uuid primary key
   - name text not null
   - github_username text unique not null   (allow-list key, lower-cased)
   - auth_user_id uuid null                 (linked auth subject)
   - avatar_url text null
   - role text not null                     ('rookie' | 'captain' | 'organizer')
   - clan_id uuid null references clans(id)
   - created_at timestamptz default now()

3) public.transactions
   - id uuid primary key
   - member_id uuid not null references members(id)
   - given_by_id uuid not null references members(id)
   - amount int not null
   - description text
   - idempotency_key text unique null
   - created_at timestamptz default now()

Failures surface as LedgerStoreError (UniqueViolation for 23505) so callers
never see driver exceptions.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from postgrest.exceptions import APIError

from apps.backend.services.points.models import ROLES, Member, Transaction

log = logging.getLogger("clanpoints.repository")

MEMBER_COLUMNS = "id, name, github_username, auth_user_id, avatar_url, role, clan_id, created_at, clans(name, logo_url)"
HISTORY_COLUMNS = (
    "id, member_id, given_by_id, amount, description, created_at, idempotency_key, "
    "given_by:members!transactions_given_by_id_fkey (name, role)"
)
RANGE_COLUMNS = (
    "id, member_id, given_by_id, amount, description, created_at, idempotency_key, "
    "member:members!transactions_member_id_fkey (name, avatar_url), "
    "given_by:members!transactions_given_by_id_fkey (name, role)"
)
LEADERBOARD_COLUMNS = (
    "id, name, github_username, auth_user_id, avatar_url, role, clan_id, clans(name), "
    "transactions!transactions_member_id_fkey (id, given_by_id, amount, description, created_at)"
)

UNIQUE_VIOLATION = "23505"

# PostgREST trims trailing zeros from fractional seconds
FRACTION = re.compile(r"\.(\d+)")


class LedgerStoreError(Exception):
    pass


class UniqueViolation(LedgerStoreError):
    pass


def _wrap(op: str, ex: Exception) -> LedgerStoreError:
    if isinstance(ex, APIError) and str(getattr(ex, "code", "")) == UNIQUE_VIOLATION:
        return UniqueViolation(f"{op}: {ex}")
    return LedgerStoreError(f"{op}: {ex}")


def _six_digits(m: re.Match) -> str:
    return "." + m.group(1)[:6].ljust(6, "0")


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        ts = value
    else:
        raw = str(value or "").strip()
        if not raw:
            return datetime.now(timezone.utc)
        raw = FRACTION.sub(_six_digits, raw.replace("Z", "+00:00"), count=1)
        ts = datetime.fromisoformat(raw)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class LedgerRepository:
    def __init__(
        self,
        supabase_client: Any,
        *,
        table_members: str = "members",
        table_clans: str = "clans",
        table_transactions: str = "transactions",
    ) -> None:
        self.sb = supabase_client
        self.table_members = table_members
        self.table_clans = table_clans
        self.table_transactions = table_transactions

    def _rows(self, op: str, query) -> List[Dict[str, Any]]:
        try:
            r = query.execute()
        except Exception as ex:
            log.error("Ledger store %s failed: %s", op, ex)
            raise _wrap(op, ex) from ex
        rows = getattr(r, "data", None) or []
        return [x for x in rows if isinstance(x, dict)]

    # -----------------------------
    # Members
    # -----------------------------
    def find_member_by_external_username(self, username: str) -> Optional[Member]:
        rows = self._rows(
            "find_member_by_external_username",
            self.sb.table(self.table_members)
            .select(MEMBER_COLUMNS)
            .eq("github_username", username.lower().strip())
            .limit(1),
        )
        return self._row_to_member(rows[0]) if rows else None

    def find_member_by_subject(self, subject_id: str) -> Optional[Member]:
        rows = self._rows(
            "find_member_by_subject",
            self.sb.table(self.table_members).select(MEMBER_COLUMNS).eq("auth_user_id", subject_id).limit(1),
        )
        return self._row_to_member(rows[0]) if rows else None

    def find_member_by_id(self, member_id: str) -> Optional[Member]:
        rows = self._rows(
            "find_member_by_id",
            self.sb.table(self.table_members).select(MEMBER_COLUMNS).eq("id", member_id).limit(1),
        )
        return self._row_to_member(rows[0]) if rows else None

    def find_members_by_ids(self, member_ids: Iterable[str]) -> List[Member]:
        ids = sorted({str(x) for x in member_ids if x})
        if not ids:
            return []
        rows = self._rows(
            "find_members_by_ids",
            self.sb.table(self.table_members).select(MEMBER_COLUMNS).in_("id", ids),
        )
        return [self._row_to_member(x) for x in rows]

    def update_member(
        self,
        member_id: str,
        *,
        external_subject_id: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> None:
        patch: Dict[str, Any] = {}
        if external_subject_id is not None:
            patch["auth_user_id"] = external_subject_id
        if avatar_url is not None:
            patch["avatar_url"] = avatar_url
        if not patch:
            return
        self._rows("update_member", self.sb.table(self.table_members).update(patch).eq("id", member_id))

    def unlink_subject(self, subject_id: str, *, keep_member_id: Optional[str] = None) -> None:
        """
        Clears auth_user_id on every member bound to subject_id except keep_member_id.
        """
        q = self.sb.table(self.table_members).update({"auth_user_id": None}).eq("auth_user_id", subject_id)
        if keep_member_id is not None:
            q = q.neq("id", keep_member_id)
        self._rows("unlink_subject", q)

    def insert_member(
        self,
        *,
        display_name: str,
        external_username: str,
        role: str,
        clan_id: Optional[str],
    ) -> Member:
        payload = {
            "name": display_name,
            "github_username": external_username.lower(),
            "role": role,
            "clan_id": clan_id,
        }
        rows = self._rows("insert_member", self.sb.table(self.table_members).insert(payload))
        if not rows:
            raise LedgerStoreError("insert_member: no row returned")
        return self._row_to_member(rows[0])

    def list_members(
        self,
        *,
        role: Optional[str] = None,
        clan_id: Optional[str] = None,
        order_by_name: bool = True,
    ) -> List[Member]:
        q = self.sb.table(self.table_members).select(MEMBER_COLUMNS)
        if role is not None:
            q = q.eq("role", role)
        if clan_id is not None:
            q = q.eq("clan_id", clan_id)
        if order_by_name:
            q = q.order("name", desc=False)
        return [self._row_to_member(x) for x in self._rows("list_members", q)]

    def list_rookies_with_transactions(self) -> Tuple[List[Member], List[Transaction]]:
        """
        One embedded query: every rookie plus the transactions they received.
        """
        rows = self._rows(
            "list_rookies_with_transactions",
            self.sb.table(self.table_members).select(LEADERBOARD_COLUMNS).eq("role", "rookie"),
        )
        members: List[Member] = []
        transactions: List[Transaction] = []
        for row in rows:
            member = self._row_to_member(row)
            members.append(member)
            for t in row.get("transactions") or []:
                if isinstance(t, dict):
                    transactions.append(self._row_to_transaction({**t, "member_id": member.id}))
        return members, transactions

    # -----------------------------
    # Transactions
    # -----------------------------
    def insert_transactions(self, rows: List[Dict[str, Any]]) -> int:
        """
        Bulk insert, all-or-nothing (single PostgREST request).
        """
        if not rows:
            return 0
        payload = [
            {
                "member_id": r["member_id"],
                "given_by_id": r["given_by_id"],
                "amount": int(r["amount"]),
                "description": r.get("description"),
                "idempotency_key": r.get("idempotency_key"),
            }
            for r in rows
        ]
        inserted = self._rows("insert_transactions", self.sb.table(self.table_transactions).insert(payload))
        return len(inserted) or len(payload)

    def find_idempotency_keys(self, keys: Iterable[str]) -> Set[str]:
        wanted = sorted({k for k in keys if k})
        if not wanted:
            return set()
        rows = self._rows(
            "find_idempotency_keys",
            self.sb.table(self.table_transactions).select("idempotency_key").in_("idempotency_key", wanted),
        )
        return {str(x["idempotency_key"]) for x in rows if x.get("idempotency_key")}

    def list_transactions_by_member(self, member_id: str) -> List[Transaction]:
        rows = self._rows(
            "list_transactions_by_member",
            self.sb.table(self.table_transactions)
            .select(HISTORY_COLUMNS)
            .eq("member_id", member_id)
            .order("created_at", desc=True),
        )
        return [self._row_to_transaction(x) for x in rows]

    def list_transactions_by_time_range(self, start: datetime, end: datetime) -> List[Transaction]:
        rows = self._rows(
            "list_transactions_by_time_range",
            self.sb.table(self.table_transactions)
            .select(RANGE_COLUMNS)
            .gte("created_at", start.isoformat())
            .lte("created_at", end.isoformat())
            .order("created_at", desc=True),
        )
        return [self._row_to_transaction(x) for x in rows]

    # -----------------------------
    # Health
    # -----------------------------
    def check_tables(self) -> Dict[str, bool]:
        checks: Dict[str, bool] = {}
        for table in (self.table_members, self.table_clans, self.table_transactions):
            try:
                self.sb.table(table).select("id").limit(1).execute()
                checks[table] = True
            except Exception as ex:
                log.warning("Health check failed for %s: %s", table, ex)
                checks[table] = False
        return checks

    # -----------------------------
    # Row mapping
    # -----------------------------
    @staticmethod
    def _row_to_member(row: Dict[str, Any]) -> Member:
        role = row.get("role")
        if role not in ROLES:
            raise LedgerStoreError(f"member {row.get('id')}: unknown role {role!r}")
        clan = row.get("clans")
        if isinstance(clan, list):
            clan = clan[0] if clan else None
        if not isinstance(clan, dict):
            clan = {}
        return Member(
            id=str(row.get("id")),
            external_username=str(row.get("github_username") or ""),
            display_name=str(row.get("name") or ""),
            role=role,
            clan_id=(str(row["clan_id"]) if row.get("clan_id") else None),
            external_subject_id=(str(row["auth_user_id"]) if row.get("auth_user_id") else None),
            avatar_url=row.get("avatar_url"),
            clan_name=clan.get("name"),
            created_at=parse_timestamp(row["created_at"]) if row.get("created_at") else None,
        )

    @staticmethod
    def _row_to_transaction(row: Dict[str, Any]) -> Transaction:
        member = row.get("member") if isinstance(row.get("member"), dict) else {}
        given_by = row.get("given_by") if isinstance(row.get("given_by"), dict) else {}
        return Transaction(
            id=str(row.get("id")),
            member_id=str(row.get("member_id")),
            given_by_id=str(row.get("given_by_id")),
            amount=int(row.get("amount", 0)),
            description=str(row.get("description") or ""),
            created_at=parse_timestamp(row.get("created_at")),
            idempotency_key=row.get("idempotency_key"),
            member_name=member.get("name"),
            member_avatar_url=member.get("avatar_url"),
            given_by_name=given_by.get("name"),
            given_by_role=given_by.get("role"),
        )
