"""
SDK configuration.

URLs, timeouts, retry policy and auth settings, with defaults that match the
production TrainingPeaks deployment. Every value can be overridden through
TRAININGPEAKS_* environment variables or by constructing SDKConfig directly.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from trainingpeaks_mcp.sdk.retry import RetryPolicy, DEFAULT_RETRY_POLICY
from trainingpeaks_mcp.sdk.types import (
    API_BASE_URL,
    APP_BASE_URL,
    HOME_BASE_URL,
    DIRECT_API_BASE_URL,
    USERS_API_VERSION,
    LOGIN_PATH,
    USERS_PATH,
    TOKEN_PATH,
    USER_PROFILE_PATH,
    TOKEN_REFRESH_PATH,
    USER_PREFERENCES_PATH,
    DIRECT_LOGIN_PATH,
    DIRECT_PROFILE_PATH,
    DEFAULT_AUTH_COOKIE,
    DEFAULT_TIMEOUT_SECONDS,
    API_FETCH_HEADERS,
    AuthStrategy,
)


@dataclass(frozen=True)
class ApiUrls:
    """Fully resolved TrainingPeaks endpoint URLs."""
    login_page: str
    token: str
    user_profile: str
    token_refresh: str
    user_preferences: str
    app_origin: str
    direct_login: str
    direct_profile: str

    @classmethod
    def build(
        cls,
        api_base: str = API_BASE_URL,
        home_base: str = HOME_BASE_URL,
        app_base: str = APP_BASE_URL,
        direct_api_base: str = DIRECT_API_BASE_URL,
        users_version: str = USERS_API_VERSION,
        overrides: Optional[Dict[str, str]] = None,
    ) -> "ApiUrls":
        """
        Derive every endpoint from the base URLs.

        Args:
            api_base: tpapi base URL (users API)
            home_base: Base URL hosting the login form
            app_base: Web app origin, sent as Origin/Referer
            direct_api_base: Base URL for the direct JSON auth strategy
            users_version: Users API version segment
            overrides: Full URLs replacing individual endpoints, keyed by field name

        Returns:
            ApiUrls with overrides applied
        """
        users_base = f"{api_base.rstrip('/')}{USERS_PATH}/{users_version}"
        urls = {
            "login_page": f"{home_base.rstrip('/')}{LOGIN_PATH}",
            "token": f"{users_base}{TOKEN_PATH}",
            "user_profile": f"{users_base}{USER_PROFILE_PATH}",
            "token_refresh": f"{users_base}{TOKEN_REFRESH_PATH}",
            "user_preferences": f"{users_base}{USER_PREFERENCES_PATH}",
            "app_origin": app_base.rstrip("/"),
            "direct_login": f"{direct_api_base.rstrip('/')}{DIRECT_LOGIN_PATH}",
            "direct_profile": f"{direct_api_base.rstrip('/')}{DIRECT_PROFILE_PATH}",
        }
        for key, value in (overrides or {}).items():
            if key not in urls:
                raise ValueError(f"Unknown endpoint override '{key}'")
            urls[key] = value
        return cls(**urls)


@dataclass(frozen=True)
class SDKConfig:
    """Programmatic configuration for the request pipeline and auth flows."""
    urls: ApiUrls = field(default_factory=ApiUrls.build)
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY
    auth_cookie_name: str = DEFAULT_AUTH_COOKIE
    auth_strategy: AuthStrategy = AuthStrategy.WEB_LOGIN
    browser_headers: bool = True
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if not self.auth_cookie_name:
            raise ValueError("auth_cookie_name must not be empty")

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "SDKConfig":
        """
        Build a config from TRAININGPEAKS_* environment variables.

        Recognised variables:
            TRAININGPEAKS_API_BASE_URL, TRAININGPEAKS_HOME_BASE_URL,
            TRAININGPEAKS_APP_URL, TRAININGPEAKS_DIRECT_API_BASE_URL,
            TRAININGPEAKS_LOGIN_URL (full override of the login page),
            TRAININGPEAKS_TIMEOUT (ms), TRAININGPEAKS_RETRY_ATTEMPTS,
            TRAININGPEAKS_RETRY_DELAY (ms), TRAININGPEAKS_AUTH_COOKIE,
            TRAININGPEAKS_AUTH_STRATEGY (web_login | direct_api),
            TRAININGPEAKS_BROWSER_HEADERS (true | false)
        """
        env = os.environ if environ is None else environ

        overrides = {}
        if env.get("TRAININGPEAKS_LOGIN_URL"):
            overrides["login_page"] = env["TRAININGPEAKS_LOGIN_URL"]

        urls = ApiUrls.build(
            api_base=env.get("TRAININGPEAKS_API_BASE_URL", API_BASE_URL),
            home_base=env.get("TRAININGPEAKS_HOME_BASE_URL", HOME_BASE_URL),
            app_base=env.get("TRAININGPEAKS_APP_URL", APP_BASE_URL),
            direct_api_base=env.get("TRAININGPEAKS_DIRECT_API_BASE_URL", DIRECT_API_BASE_URL),
            overrides=overrides,
        )

        retry_policy = RetryPolicy(
            attempts=int(env.get("TRAININGPEAKS_RETRY_ATTEMPTS", DEFAULT_RETRY_POLICY.attempts)),
            base_delay=float(env.get("TRAININGPEAKS_RETRY_DELAY", DEFAULT_RETRY_POLICY.base_delay)),
            backoff_factor=DEFAULT_RETRY_POLICY.backoff_factor,
            max_delay=DEFAULT_RETRY_POLICY.max_delay,
            jitter=DEFAULT_RETRY_POLICY.jitter,
        )

        timeout_ms = env.get("TRAININGPEAKS_TIMEOUT")
        timeout = float(timeout_ms) / 1000 if timeout_ms else DEFAULT_TIMEOUT_SECONDS

        return cls(
            urls=urls,
            timeout=timeout,
            retry_policy=retry_policy,
            auth_cookie_name=env.get("TRAININGPEAKS_AUTH_COOKIE", DEFAULT_AUTH_COOKIE),
            auth_strategy=AuthStrategy(env.get("TRAININGPEAKS_AUTH_STRATEGY", AuthStrategy.WEB_LOGIN.value)),
            browser_headers=env.get("TRAININGPEAKS_BROWSER_HEADERS", "true").lower() != "false",
        )

    @property
    def api_headers(self) -> Dict[str, str]:
        """Headers the web app sends alongside tpapi calls."""
        return {
            **API_FETCH_HEADERS,
            "origin": self.urls.app_origin,
            "referer": f"{self.urls.app_origin}/",
        }
