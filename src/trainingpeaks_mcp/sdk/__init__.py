"""
TrainingPeaks Low-Level SDK.

Request pipeline (retry, token refresh, error classification) and the
authentication flows built on it.
"""

from trainingpeaks_mcp.sdk.auth import (
    DirectApiLogin,
    LoginOutcome,
    WebLoginFlow,
    authenticate,
    get_user,
    make_refresh_procedure,
    refresh_auth_token,
)
from trainingpeaks_mcp.sdk.client import HttpResponse, RequestOptions, TrainingPeaksClient
from trainingpeaks_mcp.sdk.config import ApiUrls, SDKConfig
from trainingpeaks_mcp.sdk.errors import (
    AuthFlowError,
    ClassifiedError,
    ErrorKind,
    TrainingPeaksError,
    classify,
)
from trainingpeaks_mcp.sdk.refresh import RefreshState, TokenRefresher, execute_with_refresh
from trainingpeaks_mcp.sdk.retry import DEFAULT_RETRY_POLICY, RetryHandler, RetryPolicy
from trainingpeaks_mcp.sdk.session import (
    AuthToken,
    BoundedCookieJar,
    Credentials,
    InMemorySession,
    SessionAccessor,
    User,
    export_session,
    load_session,
)
from trainingpeaks_mcp.sdk.types import AuthStrategy

__all__ = [
    "TrainingPeaksClient",
    "HttpResponse",
    "RequestOptions",
    "SDKConfig",
    "ApiUrls",
    "AuthStrategy",
    "ErrorKind",
    "ClassifiedError",
    "TrainingPeaksError",
    "AuthFlowError",
    "classify",
    "RetryPolicy",
    "RetryHandler",
    "DEFAULT_RETRY_POLICY",
    "TokenRefresher",
    "RefreshState",
    "execute_with_refresh",
    "AuthToken",
    "Credentials",
    "User",
    "SessionAccessor",
    "InMemorySession",
    "BoundedCookieJar",
    "export_session",
    "load_session",
    "LoginOutcome",
    "WebLoginFlow",
    "DirectApiLogin",
    "authenticate",
    "refresh_auth_token",
    "make_refresh_procedure",
    "get_user",
]
