"""
Token refresh.

Two entry points share one TokenRefresher per client:

- ensure_fresh(): before sending, refresh a token that is expired or inside
  the refresh window
- execute_with_refresh(): wraps a single request attempt; a 401 triggers at
  most one refresh per outer call, the new token is stored through the
  session accessor, and the request is replayed once with it
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from trainingpeaks_mcp.sdk.diagnostics import RequestContext
from trainingpeaks_mcp.sdk.errors import TrainingPeaksError, classify
from trainingpeaks_mcp.sdk.session import AuthToken, SessionAccessor
from trainingpeaks_mcp.sdk.types import REFRESH_COOLDOWN_SECONDS

logger = logging.getLogger(__name__)

T = TypeVar("T")

RefreshProcedure = Callable[[str], AuthToken]


@dataclass
class RefreshState:
    """Tracks the refresh budget of one outer call. Create one per request."""
    attempted: bool = False


@dataclass
class _Flight:
    done: threading.Event = field(default_factory=threading.Event)
    token: Optional[AuthToken] = None
    error: Optional[BaseException] = None


class TokenRefresher:
    """
    Coordinates refreshes of the token behind one session accessor.

    Concurrent callers share a single in-flight refresh: the first caller runs
    the procedure and stores the new token, the others wait for its result.
    A successful refresh starts a cooldown during which ensure_fresh() does
    not refresh again.
    """

    def __init__(
        self,
        session: SessionAccessor,
        refresh: RefreshProcedure,
        cooldown: float = REFRESH_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        log: Optional[logging.Logger] = None,
    ):
        self.session = session
        self.procedure = refresh
        self.cooldown = cooldown
        self._clock = clock
        self._log = log or logger
        self._lock = threading.Lock()
        self._flight: Optional[_Flight] = None
        self._last_refresh: Optional[float] = None

    def in_cooldown(self) -> bool:
        with self._lock:
            return self._last_refresh is not None and self._clock() - self._last_refresh < self.cooldown

    def refresh(self, stale: AuthToken) -> AuthToken:
        """
        Replace `stale` with a refreshed token and return the new one.

        If a refresh is already running, waits for it instead of starting
        another. If the stored token was already replaced, returns it as is.

        Raises:
            Whatever the refresh procedure or the session accessor raised
        """
        with self._lock:
            flight = self._flight
            leader = flight is None
            if leader:
                current = self.session.get()
                if current is not None and current != stale:
                    self._log.debug("Token already replaced by another caller")
                    return current
                flight = self._flight = _Flight()

        if not leader:
            self._log.debug("Token refresh already in progress, waiting for it")
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.token

        try:
            token = self.procedure(stale.refresh_token)
            if token is None:
                raise ValueError("Token refresh returned no token")
            self.session.set(token)
            flight.token = token
            with self._lock:
                self._last_refresh = self._clock()
            return token
        except Exception as exc:
            flight.error = exc
            raise
        finally:
            with self._lock:
                self._flight = None
            flight.done.set()

    def ensure_fresh(self, state: RefreshState, context: Optional[RequestContext] = None) -> None:
        """
        Refresh ahead of sending when the stored token is about to expire.

        Uses the same per-call budget as the 401 path. A failed refresh is
        logged and the request goes out with the current token.

        Raises:
            TrainingPeaksError: If the session accessor cannot be read
        """
        if state.attempted:
            return
        label = context.describe() if context else "request"

        try:
            current = self.session.get()
        except Exception as exc:
            self._log.error(f"{label} cannot read session: {exc}")
            raise TrainingPeaksError(classify(exc, context)) from exc

        if current is None or not current.should_refresh():
            return
        if not current.refresh_token:
            self._log.warning(f"{label} token expires at {current.expires_at.isoformat()} and cannot be refreshed")
            return
        if self.in_cooldown():
            self._log.warning(f"{label} token refresh attempted too recently, skipping")
            return

        state.attempted = True
        self._log.info(f"{label} token expires at {current.expires_at.isoformat()}, refreshing before sending")
        try:
            self.refresh(current)
        except Exception as exc:
            self._log.error(f"{label} token refresh before sending failed: {exc}")


def execute_with_refresh(
    send: Callable[[Optional[AuthToken]], T],
    session: Optional[SessionAccessor],
    refresh: Optional[RefreshProcedure],
    state: Optional[RefreshState] = None,
    context: Optional[RequestContext] = None,
    log: Optional[logging.Logger] = None,
    refresher: Optional[TokenRefresher] = None,
) -> T:
    """
    Run `send`, refreshing the token once if it is rejected with a 401.

    Args:
        send: Performs the request. Called with None first, then with the
            refreshed token, which must replace the Authorization header.
        session: Accessor for the current token
        refresh: Exchanges a refresh token for a new AuthToken
        state: Refresh budget shared by every attempt of the same outer call
        context: Request metadata for logs
        log: Logger to use instead of the module logger
        refresher: Shared TokenRefresher; built from session and refresh if omitted

    Returns:
        Whatever `send` returns

    Raises:
        TrainingPeaksError: The original 401 if the refresh is unavailable or
            fails (including a failing session accessor), or if the replay is
            rejected again; any other error as-is
    """
    log = log or logger
    state = state if state is not None else RefreshState()
    label = context.describe() if context else "request"
    if refresher is None and session is not None and refresh is not None:
        refresher = TokenRefresher(session, refresh, log=log)

    try:
        return send(None)
    except TrainingPeaksError as exc:
        if exc.error.status != 401 or refresher is None or state.attempted:
            raise
        original = exc

    state.attempted = True
    log.warning(f"{label} received 401, attempting token refresh")

    try:
        current = refresher.session.get()
    except Exception as store_error:
        log.error(f"{label} cannot read session for refresh: {store_error}")
        raise original from store_error

    if current is None or not current.refresh_token:
        log.warning(f"{label} cannot refresh: no refresh token available")
        raise original

    try:
        new_token = refresher.refresh(current)
    except Exception as refresh_error:
        log.error(f"{label} token refresh failed: {refresh_error}")
        raise original from refresh_error

    log.info(f"{label} token refreshed, retrying request")

    try:
        return send(new_token)
    except TrainingPeaksError as retry_error:
        if retry_error.error.status == 401:
            log.error(f"{label} still unauthorized after token refresh")
            raise original from retry_error
        raise
