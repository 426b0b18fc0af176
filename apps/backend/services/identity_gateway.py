from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Set

from supabase_auth import SyncSupportedStorage

from apps.backend.config.settings import settings
from apps.backend.db import get_auth_client

log = logging.getLogger("clanpoints.identity")

COOKIE_PREFIX = "sb-"
COOKIE_MAX_AGE = 60 * 60 * 24 * 7
# browsers drop cookies over 4096 bytes
COOKIE_CHUNK_SIZE = 3500
CHUNK_SUFFIX = re.compile(r"^(?P<base>.+)\.(?P<index>\d+)$")


class IdentityGatewayError(Exception):
    pass


@dataclass(frozen=True)
class ProviderProfile:
    username: Optional[str] = None
    preferred_username: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_metadata(cls, metadata: Optional[Dict[str, Any]], email: Optional[str] = None) -> "ProviderProfile":
        md = metadata or {}
        return cls(
            username=md.get("user_name"),
            preferred_username=md.get("preferred_username"),
            email=email,
            display_name=md.get("full_name") or md.get("name"),
            avatar_url=md.get("avatar_url"),
        )


@dataclass(frozen=True)
class ExternalIdentity:
    subject_id: str
    profile: ProviderProfile


# -------------------------------------------------
# Cookie-backed session storage
# -------------------------------------------------
def _encode(value: str) -> str:
    return base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")


def _decode(value: str) -> Optional[str]:
    try:
        padded = value + "=" * (-len(value) % 4)
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return None


def cookie_name(key: str) -> str:
    return f"{COOKIE_PREFIX}{key}"


class CookieSessionStorage(SyncSupportedStorage):
    """
    Storage for the auth client's session and PKCE verifier, read from the
    request cookies and written back onto the response.

    Items live under the auth client's own keys ("supabase.auth.token",
    "supabase.auth.token-code-verifier"); the cookie for key K is "sb-K".
    Encoded values longer than COOKIE_CHUNK_SIZE are split across "sb-K.0",
    "sb-K.1", ... and joined again on read.
    """

    def __init__(self, cookies: Mapping[str, str]) -> None:
        self._items: Dict[str, str] = {}
        self._incoming: Set[str] = set()
        whole: Dict[str, str] = {}
        chunked: Dict[str, Dict[int, str]] = {}

        for name, raw in (cookies or {}).items():
            if not name.startswith(COOKIE_PREFIX) or not raw:
                continue
            self._incoming.add(name)
            m = CHUNK_SUFFIX.match(name)
            if m:
                chunked.setdefault(m.group("base"), {})[int(m.group("index"))] = raw
            else:
                whole[name] = raw

        for base, parts in chunked.items():
            if base in whole or sorted(parts) != list(range(len(parts))):
                continue
            whole[base] = "".join(parts[i] for i in range(len(parts)))

        for name, raw in whole.items():
            decoded = _decode(raw)
            if decoded is not None:
                self._items[name[len(COOKIE_PREFIX):]] = decoded

        self.changes: Dict[str, Optional[str]] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value
        self.changes[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)
        self.changes[key] = None

    @property
    def has_items(self) -> bool:
        return bool(self._items)

    def clear(self) -> None:
        for k in list(self._items):
            self.remove_item(k)

    def _cookies_for(self, key: str) -> Dict[str, str]:
        value = self.changes.get(key)
        if value is None:
            return {}
        encoded = _encode(value)
        if len(encoded) <= COOKIE_CHUNK_SIZE:
            return {cookie_name(key): encoded}
        return {
            f"{cookie_name(key)}.{i}": encoded[start:start + COOKIE_CHUNK_SIZE]
            for i, start in enumerate(range(0, len(encoded), COOKIE_CHUNK_SIZE))
        }

    def _stale_for(self, key: str, keep: Set[str]) -> Set[str]:
        base = cookie_name(key)
        owned = {n for n in self._incoming if n == base or (n.startswith(base + ".") and CHUNK_SUFFIX.match(n))}
        if self.changes.get(key) is None:
            owned.add(base)
        return owned - keep

    def apply(self, response) -> None:
        for key in self.changes:
            fresh = self._cookies_for(key)
            for name in sorted(self._stale_for(key, set(fresh))):
                response.delete_cookie(name, path="/")
            for name, value in fresh.items():
                response.set_cookie(
                    name,
                    value,
                    max_age=COOKIE_MAX_AGE,
                    path="/",
                    httponly=True,
                    secure=settings.SESSION_COOKIE_SECURE,
                    samesite="lax",
                )


# -------------------------------------------------
# Gateway
# -------------------------------------------------
class SupabaseIdentityGateway:
    """
    OAuth exchange and session handling via Supabase Auth.
    Yields opaque subject ids and provider profile data; knows nothing of members.
    """

    def __init__(
        self,
        storage: CookieSessionStorage,
        *,
        client_factory: Callable[[Any], Any] = get_auth_client,
        provider: Optional[str] = None,
    ) -> None:
        self.storage = storage
        self.provider = provider or settings.OAUTH_PROVIDER
        self._client_factory = client_factory
        self._client = None

    @property
    def client(self):
        if self._client is None:
            if not settings.auth_configured:
                raise IdentityGatewayError("Missing SUPABASE_URL or SUPABASE_ANON_KEY in backend env.")
            self._client = self._client_factory(self.storage)
        return self._client

    def begin_oauth(self, redirect_to: str) -> str:
        try:
            res = self.client.auth.sign_in_with_oauth(
                {"provider": self.provider, "options": {"redirect_to": redirect_to}}
            )
        except IdentityGatewayError:
            raise
        except Exception as e:
            raise IdentityGatewayError(f"OAuth start failed: {e}") from e
        url = getattr(res, "url", None)
        if not url:
            raise IdentityGatewayError("OAuth start returned no provider URL.")
        return url

    def complete_oauth(self, code: str) -> ExternalIdentity:
        if not code:
            raise IdentityGatewayError("Missing OAuth code.")
        try:
            res = self.client.auth.exchange_code_for_session({"auth_code": code})
        except IdentityGatewayError:
            raise
        except Exception as e:
            raise IdentityGatewayError(f"Code exchange failed: {e}") from e

        user = getattr(res, "user", None)
        if not user or not getattr(user, "id", None):
            raise IdentityGatewayError("Code exchange succeeded but user is missing.")

        return ExternalIdentity(
            subject_id=str(user.id),
            profile=ProviderProfile.from_metadata(getattr(user, "user_metadata", None), getattr(user, "email", None)),
        )

    def current_subject(self) -> Optional[str]:
        if not self.storage.has_items or not settings.auth_configured:
            return None
        try:
            session = self.client.auth.get_session()
        except Exception as e:
            log.info("Session lookup failed: %s", e)
            return None
        user = getattr(session, "user", None) if session else None
        return str(user.id) if user and getattr(user, "id", None) else None

    def sign_out(self) -> None:
        try:
            if self.storage.has_items and settings.auth_configured:
                self.client.auth.sign_out()
        except Exception as e:
            log.warning("Sign-out call failed, clearing local session anyway: %s", e)
        self.storage.clear()
