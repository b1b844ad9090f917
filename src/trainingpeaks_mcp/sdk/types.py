"""
TrainingPeaks API types, enums, and constants.

All TrainingPeaks-specific URLs, cookie names, header sets and magic values
live here.
"""

from datetime import datetime, timezone
from enum import Enum


class AuthStrategy(Enum):
    """How credentials are exchanged for a bearer token.

    Selected explicitly by configuration; there is no runtime probing.
    """
    WEB_LOGIN = "web_login"
    DIRECT_API = "direct_api"


# Base URLs
API_BASE_URL = "https://tpapi.trainingpeaks.com"
HOME_BASE_URL = "https://home.trainingpeaks.com"
APP_BASE_URL = "https://app.trainingpeaks.com"
DIRECT_API_BASE_URL = "https://api.trainingpeaks.com"

USERS_API_VERSION = "v3"

# Paths appended to the base URLs
LOGIN_PATH = "/login"
USERS_PATH = "/users"
TOKEN_PATH = "/token"
USER_PROFILE_PATH = "/user"
TOKEN_REFRESH_PATH = "/token/refresh"
USER_PREFERENCES_PATH = "/preferences"

DIRECT_LOGIN_PATH = "/api/auth/login"
DIRECT_PROFILE_PATH = "/api/user/profile"

# Auth
DEFAULT_AUTH_COOKIE = "Production_tpAuth"
DEFAULT_TOKEN_TYPE = "Bearer"
CSRF_FIELD_NAME = "__RequestVerificationToken"

# A token whose expires_in is 0 never expires.
NEVER_EXPIRES = datetime(2099, 12, 31, 23, 59, 59, tzinfo=timezone.utc)

# Used when the API sends an unparseable `expires` and no `expires_in` (23h).
DEFAULT_TOKEN_LIFETIME_SECONDS = 23 * 60 * 60

# Refresh tokens this long before they expire.
TOKEN_REFRESH_WINDOW_SECONDS = 5 * 60

# Minimum gap after a successful refresh before refreshing ahead of expiry again.
REFRESH_COOLDOWN_SECONDS = 30

# Transport
DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_REDIRECTS = 5
MAX_COOKIES = 50

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}

HTML_ACCEPT = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,"
    "image/avif,image/webp,image/apng,*/*;q=0.8"
)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# Headers the web app sends to tpapi; origin/referer are filled from the app URL.
API_FETCH_HEADERS = {
    "sec-fetch-dest": "empty",
    "sec-fetch-mode": "cors",
    "sec-fetch-site": "same-site",
    "accept-language": "en-US,en;q=0.9",
    "priority": "u=1, i",
}

# Headers a browser sends when navigating the login form.
LOGIN_NAVIGATION_HEADERS = {
    "accept": HTML_ACCEPT,
    "accept-language": "en-US,en;q=0.9",
    "cache-control": "max-age=0",
    "sec-fetch-dest": "document",
    "sec-fetch-mode": "navigate",
    "sec-fetch-site": "same-origin",
    "sec-fetch-user": "?1",
    "upgrade-insecure-requests": "1",
}
