"""
Authentication tools for TrainingPeaks MCP server.

Provides login, session management, and common identity tools.
"""

import json
import logging

from fastmcp import Context

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

from trainingpeaks_mcp.tp_platform import tp_login
from trainingpeaks_mcp.client_factory import (
    get_client,
    set_session_tokens,
    clear_session_tokens,
    is_token_expired_error,
    handle_token_expired,
)
from trainingpeaks_mcp.sdk import auth as sdk_auth
from trainingpeaks_mcp.sdk.errors import TrainingPeaksError


def register_tools(app):
    """Register authentication and identity tools with the MCP app."""

    @app.tool()
    async def tp_login_tool(username: str, password: str, ctx: Context) -> dict:
        """
        Login to TrainingPeaks.

        Validates credentials with TrainingPeaks and stores the session
        for subsequent API calls.

        Args:
            username: Your TrainingPeaks username or email
            password: Your TrainingPeaks password

        Returns:
            Login result with user info or error message
        """
        result = tp_login(username, password)
        if result.success:
            set_session_tokens(ctx, result.tokens)
        return result.to_dict()

    @app.tool()
    async def set_tp_session(tp_tokens: str, ctx: Context) -> dict:
        """
        Restore a TrainingPeaks session from a saved login.

        Args:
            tp_tokens: The `tokens` value returned by a previous login

        Returns:
            Session restoration result
        """
        try:
            set_session_tokens(ctx, tp_tokens)
            return {"success": True, "message": "Session restored"}
        except (ValueError, KeyError, OSError) as e:
            logger.error(f"Error restoring TrainingPeaks session: {e}")
            return {"success": False, "error": str(e)}

    @app.tool()
    async def tp_logout(ctx: Context) -> dict:
        """
        Logout from the current TrainingPeaks session.

        Returns:
            Logout confirmation
        """
        clear_session_tokens(ctx)
        return {"success": True, "message": "Logged out"}

    @app.tool()
    async def get_user_name(ctx: Context) -> str:
        """
        Get the current user's display name.

        Returns:
            JSON with user's name, username and id
        """
        client = get_client(ctx)
        try:
            user = sdk_auth.get_user(client)
        except TrainingPeaksError as e:
            if is_token_expired_error(e):
                return handle_token_expired(ctx)
            return json.dumps({"error": e.error.message, "error_code": e.error.code}, indent=2)
        return json.dumps({
            "name": user.name,
            "user_id": user.id,
            "username": user.username,
        }, indent=2)

    @app.tool()
    async def get_session_status(ctx: Context) -> str:
        """
        Show when the current session's token expires.

        Returns:
            JSON with expiry time and whether a refresh is due
        """
        client = get_client(ctx)
        token = client.session.get()
        return json.dumps({
            "token_type": token.token_type,
            "expires_at": token.expires_at.isoformat(),
            "expired": token.is_expired(),
            "refresh_due": token.should_refresh(),
            "can_refresh": token.refresh_token is not None,
        }, indent=2)

    @app.tool()
    async def get_available_features(ctx: Context) -> str:
        """
        Get list of available TrainingPeaks tools.

        Returns:
            JSON with available feature categories
        """
        features = {
            "platform": "TrainingPeaks",
            "auth": [
                "tp_login_tool - Authenticate with TrainingPeaks",
                "set_tp_session - Restore saved session",
                "tp_logout - Clear session",
                "get_session_status - Token expiry and refresh state",
            ],
            "user": [
                "get_user_name - Get display name and user info",
                "get_available_features - This feature list",
            ],
            "notes": [
                "Login uses the TrainingPeaks web form by default (TRAININGPEAKS_AUTH_STRATEGY=direct_api switches strategy)",
                "Expired tokens are refreshed automatically when the API allows it",
            ],
        }
        return json.dumps(features, indent=2)

    return app
