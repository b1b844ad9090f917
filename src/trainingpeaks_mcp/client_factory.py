"""
Client factory for TrainingPeaks MCP server.

Provides session-based client management using FastMCP Context.
Each MCP connection has isolated session state via mcp-session-id header.

Session Persistence:
- FastMCP Context state doesn't persist across HTTP requests
- Solution: File-based session store using ctx.session_id as key
- Sessions stored in $TP_SESSION_DIR/{session_id}.json
- Refreshed tokens are written back to the store
"""

import os
import json
import logging
import threading
from pathlib import Path
from typing import Optional

from fastmcp import Context

from trainingpeaks_mcp.sdk.auth import make_refresh_procedure
from trainingpeaks_mcp.sdk.client import TrainingPeaksClient
from trainingpeaks_mcp.sdk.config import SDKConfig
from trainingpeaks_mcp.sdk.errors import TrainingPeaksError
from trainingpeaks_mcp.sdk.session import AuthToken, SessionAccessor, export_session, load_session

logger = logging.getLogger(__name__)

TP_TOKENS_KEY = "tp_tokens"
SESSION_STORE_DIR = Path(os.environ.get("TP_SESSION_DIR", "/data/tp_sessions"))


def _get_session_file_path(session_id: str) -> Path:
    """Get the file path for a session's data."""
    SESSION_STORE_DIR.mkdir(parents=True, exist_ok=True)
    # strip path separators from the session id
    safe_session_id = "".join(c for c in session_id if c.isalnum() or c in "-_")
    return SESSION_STORE_DIR / f"{safe_session_id}.json"


def _load_session_data(session_id: str) -> dict:
    """Load session data from file system."""
    session_file = _get_session_file_path(session_id)
    if not session_file.exists():
        return {}
    try:
        with open(session_file, "r") as f:
            return json.load(f)
    except (json.JSONDecodeError, IOError):
        return {}


def _save_session_data(session_id: str, data: dict) -> None:
    """Save session data to file system."""
    session_file = _get_session_file_path(session_id)
    try:
        with open(session_file, "w") as f:
            json.dump(data, f)
    except IOError as e:
        # session won't persist but the tool still works
        logger.warning(f"Failed to save session data: {e}")


def _get_session_tokens(ctx: Context) -> Optional[str]:
    """
    Get the exported session from the persistent store.

    Checks in-memory Context state first, then the file store.
    """
    tokens = ctx.get_state(TP_TOKENS_KEY)
    if tokens:
        return tokens

    try:
        session_id = ctx.session_id
    except RuntimeError:
        # not in a request context
        return None

    tokens = _load_session_data(session_id).get(TP_TOKENS_KEY)
    if tokens:
        ctx.set_state(TP_TOKENS_KEY, tokens)
    return tokens


def set_session_tokens(ctx: Context, tokens: str) -> None:
    """
    Store an exported session in Context state and on disk.

    Args:
        ctx: FastMCP Context
        tokens: JSON from export_session()

    Raises:
        ValueError: If tokens is not a valid exported session
    """
    load_session(tokens)
    ctx.set_state(TP_TOKENS_KEY, tokens)

    try:
        session_id = ctx.session_id
    except RuntimeError:
        return

    session_data = _load_session_data(session_id)
    session_data[TP_TOKENS_KEY] = tokens
    _save_session_data(session_id, session_data)


def clear_session_tokens(ctx: Context) -> None:
    """Remove the session from Context state and disk."""
    ctx.set_state(TP_TOKENS_KEY, None)

    try:
        session_id = ctx.session_id
    except RuntimeError:
        return

    session_file = _get_session_file_path(session_id)
    if session_file.exists():
        session_file.unlink()


class ContextSession(SessionAccessor):
    """
    Session accessor backed by the MCP session store.

    Reads come from memory; writes replace the token under a lock and are
    written through to the store together with the stored user.
    """

    def __init__(self, ctx: Context, tokens: str):
        self._ctx = ctx
        self._token, self._user = load_session(tokens)
        self._lock = threading.Lock()

    def get(self) -> Optional[AuthToken]:
        with self._lock:
            return self._token

    def set(self, token: AuthToken) -> None:
        with self._lock:
            self._token = token
            exported = export_session(token, self._user)
        set_session_tokens(self._ctx, exported)


def get_client(ctx: Context, config: Optional[SDKConfig] = None) -> TrainingPeaksClient:
    """
    Get a TrainingPeaks client for the current MCP session.

    Usage in tools:
        @app.tool()
        async def get_user_name(ctx: Context) -> str:
            client = get_client(ctx)
            return json.dumps(sdk_auth.get_user(client).to_dict())

    Args:
        ctx: FastMCP Context (automatically injected by framework)
        config: SDK configuration (defaults to SDKConfig.from_env())

    Returns:
        Client that sends the session's bearer token and refreshes it on 401

    Raises:
        ValueError: If no TrainingPeaks session is active
    """
    tokens = _get_session_tokens(ctx)
    if not tokens:
        raise ValueError("No TrainingPeaks session. Call tp_login_tool() first.")
    config = config or SDKConfig.from_env()
    return TrainingPeaksClient(
        config,
        session=ContextSession(ctx, tokens),
        refresh=make_refresh_procedure(config),
    )


def is_token_expired_error(error: Exception) -> bool:
    """True when the API rejected the session's token, even after refresh."""
    return isinstance(error, TrainingPeaksError) and error.error.status == 401


def handle_token_expired(ctx: Context) -> str:
    """
    Clear an expired session and return the error to show the user.

    Args:
        ctx: FastMCP Context

    Returns:
        JSON error message
    """
    try:
        clear_session_tokens(ctx)
    except OSError as e:
        logger.warning(f"Failed to clear expired session: {e}")

    return json.dumps({
        "error": "Your TrainingPeaks session has expired. Please log in again.",
        "error_code": "SESSION_EXPIRED",
    }, indent=2)
