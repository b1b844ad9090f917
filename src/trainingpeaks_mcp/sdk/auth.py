"""
TrainingPeaks authentication SDK functions.

Two strategies, selected by SDKConfig.auth_strategy:

- WEB_LOGIN: the five-step form login used by the web app
  (login page -> credentials -> session cookie -> token -> user)
- DIRECT_API: JSON login against the public API

Every HTTP call goes through TrainingPeaksClient, so individual calls are
retried on transient failures. The login sequence as a whole is not.
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from urllib.parse import urlsplit

from trainingpeaks_mcp.sdk.client import HttpResponse, TrainingPeaksClient
from trainingpeaks_mcp.sdk.config import ApiUrls, SDKConfig
from trainingpeaks_mcp.sdk.errors import AuthFlowError, TrainingPeaksError
from trainingpeaks_mcp.sdk.scraping import LoginPageScraper
from trainingpeaks_mcp.sdk.session import AuthToken, Credentials, User, parse_set_cookie
from trainingpeaks_mcp.sdk.types import CSRF_FIELD_NAME, DEFAULT_TOKEN_TYPE, LOGIN_NAVIGATION_HEADERS, AuthStrategy

logger = logging.getLogger(__name__)


@dataclass
class LoginOutcome:
    """Result of a successful authentication."""
    token: AuthToken
    user: User


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def _require(response: HttpResponse) -> HttpResponse:
    if not response.success:
        raise TrainingPeaksError(response.error)
    return response


def _token_from(data, step: str, default_type: Optional[str] = None) -> AuthToken:
    payload = data.get("token", data) if isinstance(data, dict) else None
    if not isinstance(payload, dict):
        raise AuthFlowError("No token payload received", step)
    if default_type and not payload.get("token_type"):
        payload = {**payload, "token_type": default_type}
    try:
        return AuthToken.from_payload(payload)
    except ValueError as e:
        raise AuthFlowError(str(e), step) from e


def _user_from(data, step: str) -> User:
    payload = data.get("user", data) if isinstance(data, dict) else None
    if not isinstance(payload, dict):
        raise AuthFlowError("No user payload received", step)
    try:
        return User.from_payload(payload)
    except ValueError as e:
        raise AuthFlowError(str(e), step) from e


class WebLoginFlow:
    """
    Form-based login against the TrainingPeaks web app.

    The flow holds no state between calls except the client's cookie jar,
    which carries cookies from one step to the next.
    """

    def __init__(
        self,
        client: TrainingPeaksClient,
        config: Optional[SDKConfig] = None,
        scraper: Optional[LoginPageScraper] = None,
    ):
        if client.session is not None:
            raise ValueError("Web login client must not carry a session accessor")
        self.client = client
        self.config = config or client.config
        self.scraper = scraper or LoginPageScraper()

    def login(self, credentials: Credentials) -> LoginOutcome:
        """
        Run the five login steps.

        Args:
            credentials: Username and password

        Returns:
            LoginOutcome with the bearer token and user profile

        Raises:
            AuthFlowError: If a step precondition fails (no CSRF token, no
                session cookie, malformed token or user payload)
            TrainingPeaksError: If an HTTP call fails, including a rejected
                credentials submit
        """
        urls = self.config.urls
        logger.info(f"Starting web login for {credentials.username}")

        csrf_token = self._fetch_csrf_token(urls)
        session_cookie = self._submit_credentials(urls, credentials, csrf_token)
        token = self._exchange_token(urls, session_cookie)
        user = self._fetch_user(urls, token)

        logger.info(f"Web login succeeded for user {user.id}")
        return LoginOutcome(token=token, user=user)

    def _fetch_csrf_token(self, urls: ApiUrls) -> str:
        response = _require(self.client.get(
            urls.login_page,
            headers=LOGIN_NAVIGATION_HEADERS,
        ))
        csrf_token = self.scraper.csrf_token(response.data)
        if not csrf_token:
            raise AuthFlowError("No CSRF token found", "login_page")
        self.client.cookie_jar.set(CSRF_FIELD_NAME, csrf_token, domain=urlsplit(urls.login_page).hostname)
        logger.debug("CSRF token extracted from login page")
        return csrf_token

    def _submit_credentials(self, urls: ApiUrls, credentials: Credentials, csrf_token: str) -> str:
        response = self.client.post(
            urls.login_page,
            {
                "username": credentials.username,
                "password": credentials.password,
                CSRF_FIELD_NAME: csrf_token,
            },
            headers={
                **LOGIN_NAVIGATION_HEADERS,
                "origin": _origin(urls.login_page),
                "referer": urls.login_page,
            },
            form=True,
            allow_redirects=False,
        )
        if not response.success:
            error = response.error
            if error.status is not None and error.status >= 400:
                scraped = self.scraper.error_message(error.response_data)
                reason = scraped or f"Status {error.status}"
                logger.warning(f"Login rejected: {reason}")
                raise TrainingPeaksError(dataclasses.replace(error, message=f"Login failed: {reason}"))
            raise TrainingPeaksError(error)

        name = self.config.auth_cookie_name
        for cookie in response.cookies:
            pair = parse_set_cookie(cookie)
            if pair and pair[0] == name and pair[1]:
                logger.debug(f"Session cookie {name} received")
                return pair[1]
        raise AuthFlowError("Session cookie not found", "session_cookie")

    def _exchange_token(self, urls: ApiUrls, session_cookie: str) -> AuthToken:
        response = _require(self.client.get(
            urls.token,
            headers=self.config.api_headers,
            cookies=[f"{self.config.auth_cookie_name}={session_cookie}"],
        ))
        return _token_from(response.data, "token_exchange")

    def _fetch_user(self, urls: ApiUrls, token: AuthToken) -> User:
        response = _require(self.client.get(
            urls.user_profile,
            headers={**self.config.api_headers, "Authorization": token.authorization_header},
        ))
        return _user_from(response.data, "user_profile")


class DirectApiLogin:
    """JSON username/password login against the public API."""

    def __init__(self, client: TrainingPeaksClient, config: Optional[SDKConfig] = None):
        self.client = client
        self.config = config or client.config

    def login(self, credentials: Credentials) -> LoginOutcome:
        urls = self.config.urls
        logger.info(f"Starting direct API login for {credentials.username}")

        response = _require(self.client.post(
            urls.direct_login,
            {"username": credentials.username, "password": credentials.password},
        ))
        token = _token_from(response.data, "token_exchange", DEFAULT_TOKEN_TYPE)

        response = _require(self.client.get(
            urls.direct_profile,
            headers={"Authorization": token.authorization_header},
        ))
        user = _user_from(response.data, "user_profile")

        logger.info(f"Direct API login succeeded for user {user.id}")
        return LoginOutcome(token=token, user=user)


STRATEGIES: Dict[AuthStrategy, Callable[[TrainingPeaksClient, SDKConfig], object]] = {
    AuthStrategy.WEB_LOGIN: WebLoginFlow,
    AuthStrategy.DIRECT_API: DirectApiLogin,
}


def authenticate(
    credentials: Credentials,
    config: Optional[SDKConfig] = None,
    client: Optional[TrainingPeaksClient] = None,
) -> LoginOutcome:
    """
    Log in with the strategy named by config.auth_strategy.

    Args:
        credentials: Username and password
        config: SDK configuration (defaults to SDKConfig())
        client: Client without a session accessor; a fresh one is created if omitted

    Returns:
        LoginOutcome with token and user

    Raises:
        TrainingPeaksError: On any login failure (AuthFlowError for step errors)
    """
    config = config or SDKConfig()
    client = client or TrainingPeaksClient(config)
    strategy = STRATEGIES[config.auth_strategy]
    return strategy(client, config).login(credentials)


def refresh_auth_token(client: TrainingPeaksClient, urls: ApiUrls, refresh_token: str) -> AuthToken:
    """
    Exchange a refresh token for a new AuthToken.

    POST users/v3/token/refresh

    Raises:
        TrainingPeaksError: If the call fails or the payload is unusable
    """
    response = _require(client.post(urls.token_refresh, {"refresh_token": refresh_token}))
    token = _token_from(response.data, "token_refresh")
    if token.refresh_token is None:
        token = dataclasses.replace(token, refresh_token=refresh_token)
    return token


def make_refresh_procedure(config: Optional[SDKConfig] = None) -> Callable[[str], AuthToken]:
    """
    Build a refresh procedure for TrainingPeaksClient(refresh=...).

    The procedure uses its own client with no session accessor, so a
    rejected refresh cannot trigger another refresh.
    """
    config = config or SDKConfig()
    refresh_client = TrainingPeaksClient(config)

    def refresh(refresh_token: str) -> AuthToken:
        return refresh_auth_token(refresh_client, config.urls, refresh_token)

    return refresh


def get_user(client: TrainingPeaksClient, urls: Optional[ApiUrls] = None) -> User:
    """
    Get the authenticated user's profile.

    GET users/v3/user

    Returns:
        User with id, username, name and preferences
    """
    urls = urls or client.config.urls
    response = _require(client.get(urls.user_profile, headers=client.config.api_headers))
    return _user_from(response.data, "user_profile")
