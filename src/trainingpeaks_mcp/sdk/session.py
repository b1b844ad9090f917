"""
Session state: tokens, users, credentials, and the shared mutable cells.

The session accessor and the cookie jar are the only state shared between
concurrent requests. Both are guarded by locks.
"""

import json
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import requests
from requests.cookies import RequestsCookieJar, get_cookie_header

from trainingpeaks_mcp.sdk.types import (
    DEFAULT_TOKEN_TYPE,
    NEVER_EXPIRES,
    DEFAULT_TOKEN_LIFETIME_SECONDS,
    TOKEN_REFRESH_WINDOW_SECONDS,
    MAX_COOKIES,
)

_COOKIE_PAIR = re.compile(r"^\s*([^=;\s]+)=([^;]*)")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def resolve_expiration(
    expires: Any = None,
    expires_in: Any = None,
    now: Optional[datetime] = None,
) -> datetime:
    """
    Compute an absolute expiry from the API's `expires` / `expires_in`.

    A parseable `expires` wins. Otherwise `expires_in` seconds from now is
    used, where 0 means the token never expires.

    Raises:
        ValueError: If neither field is present
    """
    if expires_in is None and not expires:
        raise ValueError("No expiration information received")

    now = now or _utcnow()

    parsed = _parse_timestamp(expires)
    if parsed is not None:
        return parsed

    if expires_in is not None:
        seconds = int(expires_in)
        if seconds == 0:
            return NEVER_EXPIRES
        return now + timedelta(seconds=seconds)

    return now + timedelta(seconds=DEFAULT_TOKEN_LIFETIME_SECONDS)


@dataclass(frozen=True)
class AuthToken:
    """Bearer credential. Superseded on refresh, never mutated."""
    access_token: str
    expires_at: datetime
    token_type: str = DEFAULT_TOKEN_TYPE
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], now: Optional[datetime] = None) -> "AuthToken":
        """
        Build a token from a TrainingPeaks token payload.

        Args:
            payload: Dict with access_token, token_type, expires_in and/or expires,
                and optionally refresh_token and scope
            now: Reference time for expires_in (defaults to current UTC time)

        Raises:
            ValueError: If a required field or the expiration is missing
        """
        if not payload.get("access_token"):
            raise ValueError("No access token received")
        if not payload.get("token_type"):
            raise ValueError("No token type received")

        return cls(
            access_token=payload["access_token"],
            token_type=payload["token_type"],
            expires_at=resolve_expiration(payload.get("expires"), payload.get("expires_in"), now),
            refresh_token=payload.get("refresh_token") or None,
            scope=payload.get("scope") or None,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    def should_refresh(self, now: Optional[datetime] = None, window_seconds: int = TOKEN_REFRESH_WINDOW_SECONDS) -> bool:
        """True when the token expires within the refresh window."""
        return (now or _utcnow()) + timedelta(seconds=window_seconds) >= self.expires_at

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires": self.expires_at.isoformat(),
            "refresh_token": self.refresh_token,
            "scope": self.scope,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthToken":
        return cls.from_payload({"token_type": DEFAULT_TOKEN_TYPE, **data})


@dataclass(frozen=True)
class Credentials:
    """Username and password for a single login attempt. Never persisted."""
    username: str
    password: str = field(repr=False)

    def __post_init__(self):
        if not self.username or not self.password:
            raise ValueError("Missing credentials")


@dataclass
class User:
    """TrainingPeaks user profile."""
    id: str
    username: str
    name: str
    preferences: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "User":
        """Build a user from a users/v3/user `user` object."""
        user_id = data.get("userId", data.get("id"))
        if user_id is None:
            raise ValueError("No user id received")
        name = data.get("name") or data.get("fullName") or (
            f"{data.get('firstName', '')} {data.get('lastName', '')}".strip()
        )
        username = data.get("username") or data.get("userName") or data.get("email") or ""
        return cls(
            id=str(user_id),
            username=username,
            name=name or username,
            preferences=data.get("preferences") or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "preferences": self.preferences,
        }


class SessionAccessor:
    """Get/set access to the current AuthToken. Implementations must replace atomically."""

    def get(self) -> Optional[AuthToken]:
        raise NotImplementedError

    def set(self, token: AuthToken) -> None:
        raise NotImplementedError


class InMemorySession(SessionAccessor):
    """Thread-safe single-cell session. Last write wins."""

    def __init__(self, token: Optional[AuthToken] = None):
        self._token = token
        self._lock = threading.Lock()

    def get(self) -> Optional[AuthToken]:
        with self._lock:
            return self._token

    def set(self, token: AuthToken) -> None:
        with self._lock:
            self._token = token

    def clear(self) -> None:
        with self._lock:
            self._token = None


class BoundedCookieJar(RequestsCookieJar):
    """
    Domain-aware cookie jar capped at `max_cookies`.

    Cookies are keyed by (domain, path, name) and sent only to matching
    hosts, following the usual cookie rules. Setting an existing cookie
    replaces it and moves it to the newest slot. When the cap is exceeded
    the oldest cookies are evicted first.
    """

    def __init__(self, policy=None, max_cookies: int = MAX_COOKIES):
        if max_cookies < 1:
            raise ValueError("max_cookies must be >= 1")
        super().__init__(policy)
        self.max_cookies = max_cookies
        self._order: "OrderedDict[tuple, None]" = OrderedDict()

    def set_cookie(self, cookie, *args, **kwargs):
        # same re-entrant lock extract_cookies() holds while calling set_cookie()
        with self._cookies_lock:
            super().set_cookie(cookie, *args, **kwargs)
            key = (cookie.domain, cookie.path, cookie.name)
            self._order.pop(key, None)
            self._order[key] = None
            self._evict()

    def _evict(self) -> None:
        live = {(c.domain, c.path, c.name) for c in iter(self)}
        for key in [k for k in self._order if k not in live]:
            del self._order[key]
        while len(self._order) > self.max_cookies:
            (domain, path, name), _ = self._order.popitem(last=False)
            self.clear(domain, path, name)

    def cookies_for(self, url: str) -> List[str]:
        """name=value pairs this jar would send with a request to `url`."""
        header = get_cookie_header(self, requests.Request("GET", url).prepare())
        return [c.strip() for c in (header or "").split(";") if c.strip()]


def parse_set_cookie(header: str) -> Optional[tuple]:
    """Return (name, value) from a Set-Cookie header value, or None."""
    match = _COOKIE_PAIR.match(header or "")
    if not match:
        return None
    return match.group(1), match.group(2)


def merge_cookies(*groups: Iterable[str]) -> List[str]:
    """Merge name=value cookie lists; later groups override earlier names."""
    merged: "OrderedDict[str, str]" = OrderedDict()
    for group in groups:
        for cookie in group:
            pair = parse_set_cookie(cookie)
            if pair is None:
                continue
            merged.pop(pair[0], None)
            merged[pair[0]] = pair[1]
    return [f"{name}={value}" for name, value in merged.items()]


# ── Session serialization ──────────────────────────────────────────────

def export_session(token: AuthToken, user: Optional[User] = None) -> str:
    """Serialize a token and user as JSON for an external session store."""
    return json.dumps({
        "token": token.to_dict(),
        "user": user.to_dict() if user else None,
    })


def load_session(data: str) -> tuple:
    """
    Load a session exported by export_session().

    Returns:
        (AuthToken, Optional[User])

    Raises:
        ValueError: If the JSON is malformed or has no token
    """
    parsed = json.loads(data)
    if not isinstance(parsed, dict) or not parsed.get("token"):
        raise ValueError("Session data has no token")
    token = AuthToken.from_dict(parsed["token"])
    user = User.from_payload(parsed["user"]) if parsed.get("user") else None
    return token, user
