"""
HTML extraction for the login form.

Pattern-based. Pass a different LoginPageScraper to the login flow to change
how the page is matched.
"""

import html as html_lib
import re
from typing import Optional, Sequence, Pattern

from trainingpeaks_mcp.sdk.types import CSRF_FIELD_NAME

CSRF_TOKEN_PATTERNS = (
    re.compile(rf'name="{CSRF_FIELD_NAME}"[^>]*value="([^"]*)"'),
    re.compile(rf'value="([^"]*)"[^>]*name="{CSRF_FIELD_NAME}"'),
)

ERROR_MESSAGE_PATTERNS = (
    re.compile(r'<[^>]*data-cy="invalid_credentials_message"[^>]*>([^<]+)<', re.IGNORECASE),
    re.compile(r'<div[^>]*class="[^"]*error[^"]*"[^>]*>([^<]+)</div>', re.IGNORECASE),
    re.compile(r'<span[^>]*class="[^"]*error[^"]*"[^>]*>([^<]+)</span>', re.IGNORECASE),
    re.compile(r'<div[^>]*class="[^"]*alert-danger[^"]*"[^>]*>([^<]+)</div>', re.IGNORECASE),
)


class LoginPageScraper:
    """Extracts the CSRF token and login error text from login page HTML."""

    def __init__(
        self,
        csrf_patterns: Sequence[Pattern] = CSRF_TOKEN_PATTERNS,
        error_patterns: Sequence[Pattern] = ERROR_MESSAGE_PATTERNS,
    ):
        self.csrf_patterns = csrf_patterns
        self.error_patterns = error_patterns

    def csrf_token(self, page: Optional[str]) -> Optional[str]:
        """Return the __RequestVerificationToken value, or None if absent or empty."""
        if not page or not isinstance(page, str):
            return None
        for pattern in self.csrf_patterns:
            match = pattern.search(page)
            if match and match.group(1):
                return html_lib.unescape(match.group(1))
        return None

    def error_message(self, page: Optional[str]) -> Optional[str]:
        """Return the first error/alert container text, or None."""
        if not page or not isinstance(page, str):
            return None
        for pattern in self.error_patterns:
            match = pattern.search(page)
            if match and match.group(1).strip():
                return html_lib.unescape(match.group(1).strip())
        return None


_default_scraper = LoginPageScraper()


def extract_csrf_token(page: Optional[str]) -> Optional[str]:
    return _default_scraper.csrf_token(page)


def extract_error_message(page: Optional[str]) -> Optional[str]:
    return _default_scraper.error_message(page)
