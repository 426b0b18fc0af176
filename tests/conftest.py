import itertools
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from apps.backend.main import create_app
from apps.backend.repositories.ledger_repository import LedgerStoreError, UniqueViolation
from apps.backend.services.core_service import get_cache, get_gateway, get_repository
from apps.backend.services.identity_gateway import ExternalIdentity, IdentityGatewayError, ProviderProfile
from apps.backend.services.points.models import Clan, Member, Transaction
from apps.backend.services.points.points_service import PointsService
from apps.backend.services.points.read_cache import ReadCache


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeLedgerStore:
    """In-memory stand-in for LedgerRepository."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.clans: Dict[str, Clan] = {}
        self.members: Dict[str, Member] = {}
        self.transactions: List[Transaction] = []
        self.fail_on = set()
        self.updates = []
        self.unlinked = []
        self.insert_batches = []

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _check(self, op: str):
        if op in self.fail_on:
            raise LedgerStoreError(f"{op}: simulated outage")

    def _with_clan(self, m: Member) -> Member:
        clan = self.clans.get(m.clan_id) if m.clan_id else None
        return replace(m, clan_name=clan.name if clan else None)

    # seeding
    def add_clan(self, name: str) -> Clan:
        clan = Clan(id=self._next_id("clan"), name=name)
        self.clans[clan.id] = clan
        return clan

    def add_member(self, name, username, role="rookie", clan_id=None, subject=None, avatar=None) -> Member:
        member = Member(
            id=self._next_id("member"),
            external_username=username.lower(),
            display_name=name,
            role=role,
            clan_id=clan_id,
            external_subject_id=subject,
            avatar_url=avatar,
        )
        self.members[member.id] = member
        return self._with_clan(member)

    def add_transaction(self, member_id, amount, description, created_at, given_by_id="member-0") -> Transaction:
        t = Transaction(
            id=self._next_id("tx"),
            member_id=member_id,
            given_by_id=given_by_id,
            amount=amount,
            description=description,
            created_at=created_at,
        )
        self.transactions.append(t)
        return t

    # repository contract
    def find_member_by_external_username(self, username):
        self._check("find_member_by_external_username")
        for m in self.members.values():
            if m.external_username == username.lower().strip():
                return self._with_clan(m)
        return None

    def find_member_by_subject(self, subject_id):
        self._check("find_member_by_subject")
        for m in self.members.values():
            if m.external_subject_id == subject_id:
                return self._with_clan(m)
        return None

    def find_member_by_id(self, member_id):
        self._check("find_member_by_id")
        m = self.members.get(member_id)
        return self._with_clan(m) if m else None

    def find_members_by_ids(self, member_ids):
        self._check("find_members_by_ids")
        return [self._with_clan(self.members[i]) for i in member_ids if i in self.members]

    def update_member(self, member_id, *, external_subject_id=None, avatar_url=None):
        self._check("update_member")
        m = self.members[member_id]
        if external_subject_id is not None:
            m = replace(m, external_subject_id=external_subject_id)
        if avatar_url is not None:
            m = replace(m, avatar_url=avatar_url)
        self.members[member_id] = m
        self.updates.append((member_id, external_subject_id, avatar_url))

    def unlink_subject(self, subject_id, *, keep_member_id=None):
        self._check("unlink_subject")
        for member_id, m in list(self.members.items()):
            if m.external_subject_id == subject_id and member_id != keep_member_id:
                self.members[member_id] = replace(m, external_subject_id=None)
                self.unlinked.append(member_id)

    def insert_member(self, *, display_name, external_username, role, clan_id):
        self._check("insert_member")
        if any(m.external_username == external_username for m in self.members.values()):
            raise UniqueViolation("insert_member: duplicate github_username")
        return self.add_member(display_name, external_username, role=role, clan_id=clan_id)

    def list_members(self, *, role=None, clan_id=None, order_by_name=True):
        self._check("list_members")
        out = [
            self._with_clan(m)
            for m in self.members.values()
            if (role is None or m.role == role) and (clan_id is None or m.clan_id == clan_id)
        ]
        return sorted(out, key=lambda m: m.display_name) if order_by_name else out

    def list_rookies_with_transactions(self):
        self._check("list_rookies_with_transactions")
        rookies = self.list_members(role="rookie", order_by_name=False)
        ids = {m.id for m in rookies}
        return rookies, [t for t in self.transactions if t.member_id in ids]

    def insert_transactions(self, rows):
        self._check("insert_transactions")
        keys = {t.idempotency_key for t in self.transactions if t.idempotency_key}
        if any(r.get("idempotency_key") in keys for r in rows if r.get("idempotency_key")):
            raise UniqueViolation("insert_transactions: duplicate idempotency_key")
        self.insert_batches.append(list(rows))
        now = datetime.now(timezone.utc)
        for r in rows:
            self.transactions.append(
                Transaction(
                    id=self._next_id("tx"),
                    member_id=r["member_id"],
                    given_by_id=r["given_by_id"],
                    amount=int(r["amount"]),
                    description=r.get("description") or "",
                    created_at=now,
                    idempotency_key=r.get("idempotency_key"),
                )
            )
        return len(rows)

    def find_idempotency_keys(self, keys):
        self._check("find_idempotency_keys")
        wanted = set(keys)
        return {t.idempotency_key for t in self.transactions if t.idempotency_key in wanted}

    def list_transactions_by_member(self, member_id):
        self._check("list_transactions_by_member")
        rows = [t for t in self.transactions if t.member_id == member_id]
        return sorted(rows, key=lambda t: t.created_at, reverse=True)

    def list_transactions_by_time_range(self, start, end):
        self._check("list_transactions_by_time_range")
        rows = [t for t in self.transactions if start <= t.created_at <= end]
        return sorted(rows, key=lambda t: t.created_at, reverse=True)

    def check_tables(self):
        return {"members": True, "clans": True, "transactions": "check_tables" not in self.fail_on}


class FakeGateway:
    """Identity gateway double: no provider, no cookies."""

    def __init__(self, subject_id: Optional[str] = None):
        self.subject_id = subject_id
        self.identity: Optional[ExternalIdentity] = None
        self.exchange_error = False
        self.signed_out = 0
        self.redirects = []

    def login_as(self, subject_id: str, **profile):
        self.identity = ExternalIdentity(subject_id=subject_id, profile=ProviderProfile(**profile))

    def begin_oauth(self, redirect_to: str) -> str:
        self.redirects.append(redirect_to)
        return "https://github.example/login/oauth/authorize?state=test"

    def complete_oauth(self, code: str) -> ExternalIdentity:
        if self.exchange_error or self.identity is None:
            raise IdentityGatewayError("exchange failed")
        self.subject_id = self.identity.subject_id
        return self.identity

    def current_subject(self) -> Optional[str]:
        return self.subject_id

    def sign_out(self) -> None:
        self.signed_out += 1
        self.subject_id = None


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store():
    return FakeLedgerStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ReadCache(ttl_seconds=30, clock=clock)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def service(store, cache):
    return PointsService(store, cache, now=lambda: utc(2024, 1, 20, 12, 0))


@pytest.fixture
def seeded(store):
    """Two clans, one captain each, an organizer and three rookies."""
    clan1 = store.add_clan("Alpha Bashers")
    clan2 = store.add_clan("Beta Bashers")
    return {
        "clan1": clan1,
        "clan2": clan2,
        "organizer": store.add_member("Olive", "olive", role="organizer", subject="sub-olive"),
        "captain1": store.add_member("Cara", "cara", role="captain", clan_id=clan1.id, subject="sub-cara"),
        "captain2": store.add_member("Cody", "cody", role="captain", clan_id=clan2.id, subject="sub-cody"),
        "rookie_a": store.add_member("Ana", "ana", clan_id=clan1.id, subject="sub-ana"),
        "rookie_b": store.add_member("Ben", "ben", clan_id=clan1.id),
        "rookie_r": store.add_member("Rex", "rex", clan_id=clan2.id),
    }


@pytest.fixture
def app(store, cache, gateway):
    application = create_app()
    application.dependency_overrides[get_repository] = lambda: store
    application.dependency_overrides[get_cache] = lambda: cache
    application.dependency_overrides[get_gateway] = lambda: gateway
    return application


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)
