"""
TrainingPeaks Platform login functionality.

Wraps the SDK login in a LoginResult with stable error codes for the tools.
"""

from dataclasses import dataclass
from typing import Optional

from trainingpeaks_mcp.sdk import auth as sdk_auth
from trainingpeaks_mcp.sdk.config import SDKConfig
from trainingpeaks_mcp.sdk.errors import AuthFlowError, ErrorKind, TrainingPeaksError
from trainingpeaks_mcp.sdk.session import Credentials, export_session


@dataclass
class LoginResult:
    """Result of a login attempt."""
    success: bool
    tokens: Optional[str] = None
    display_name: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    details: Optional[dict] = None

    def to_dict(self) -> dict:
        """Convert to dictionary, excluding None values."""
        result = {"success": self.success}
        if self.success:
            if self.tokens:
                result["tokens"] = self.tokens
            if self.display_name:
                result["display_name"] = self.display_name
            if self.user_id:
                result["user_id"] = self.user_id
            if self.username:
                result["username"] = self.username
        else:
            if self.error:
                result["error"] = self.error
            if self.error_code:
                result["error_code"] = self.error_code
            if self.details:
                result["details"] = self.details
        return result


def tp_login(username: str, password: str, config: Optional[SDKConfig] = None) -> LoginResult:
    """
    Authenticate with TrainingPeaks.

    Args:
        username: TrainingPeaks username or email
        password: TrainingPeaks password
        config: SDK configuration (defaults to SDKConfig.from_env())

    Returns:
        LoginResult with exported session if successful, error details if not
    """
    try:
        credentials = Credentials(username=username, password=password)
    except ValueError as e:
        return LoginResult(
            success=False,
            error=str(e),
            error_code="MISSING_CREDENTIALS",
            details={"message": "Both username and password are required"},
        )

    try:
        config = config or SDKConfig.from_env()
        outcome = sdk_auth.authenticate(credentials, config)

        return LoginResult(
            success=True,
            tokens=export_session(outcome.token, outcome.user),
            display_name=outcome.user.name,
            user_id=outcome.user.id,
            username=outcome.user.username,
        )

    except AuthFlowError as e:
        return LoginResult(
            success=False,
            error=str(e),
            error_code="LOGIN_FLOW_ERROR",
            details={
                "message": "The TrainingPeaks login sequence did not complete",
                "step": e.step,
                "context": e.error.message,
                "solution": "The login page may have changed. Try again later or restore a saved session.",
            },
        )

    except TrainingPeaksError as e:
        error = e.error
        if error.kind == ErrorKind.CLIENT_ERROR and error.status in (400, 401, 403):
            return LoginResult(
                success=False,
                error="Invalid username or password",
                error_code="INVALID_CREDENTIALS",
                details={
                    "message": error.message,
                    "context": "TrainingPeaks rejected the login credentials",
                    "solution": "Double-check your username and password:\n  • Try logging in at trainingpeaks.com to verify credentials\n  • Check for typos or extra spaces",
                },
            )
        if error.kind == ErrorKind.RATE_LIMITED:
            return LoginResult(
                success=False,
                error="Too many login attempts",
                error_code="RATE_LIMITED",
                details={
                    "message": error.message,
                    "solution": "Wait a few minutes before trying again",
                },
            )
        return LoginResult(
            success=False,
            error=f"Login failed: {error.message}",
            error_code="LOGIN_ERROR",
            details={
                "message": "TrainingPeaks login failed with an error",
                "context": error.to_dict(),
                "solution": "Try again in a few moments. If the problem persists:\n  • Verify your credentials at trainingpeaks.com\n  • Check if TrainingPeaks is experiencing outages",
            },
        )

    except Exception as e:
        return LoginResult(
            success=False,
            error=f"Unexpected error: {str(e)}",
            error_code="UNEXPECTED_ERROR",
            details={
                "message": "An unexpected error occurred during TrainingPeaks authentication",
                "context": str(e),
                "solution": "Please try again. If the problem persists:\n  • Verify your internet connection\n  • Try again later if TrainingPeaks servers might be down",
            },
        )
