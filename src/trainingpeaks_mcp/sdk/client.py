"""
TrainingPeaks HTTP client.

Handles HTTP transport, header and cookie assembly, retries, token refresh
and error classification. Endpoint-specific logic lives in the sibling
modules (auth, users).

Every call returns an HttpResponse envelope. Expected failures come back as
data (success=False with a ClassifiedError), never as exceptions.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from requests.structures import CaseInsensitiveDict

from trainingpeaks_mcp.sdk.browser import browser_headers
from trainingpeaks_mcp.sdk.config import SDKConfig
from trainingpeaks_mcp.sdk.diagnostics import RequestContext, render_curl
from trainingpeaks_mcp.sdk.errors import (
    ClassifiedError,
    TrainingPeaksError,
    budget_exhausted_error,
    cancelled_error,
    classify,
)
from trainingpeaks_mcp.sdk.refresh import RefreshProcedure, RefreshState, TokenRefresher, execute_with_refresh
from trainingpeaks_mcp.sdk.retry import RetryHandler
from trainingpeaks_mcp.sdk.session import (
    AuthToken,
    BoundedCookieJar,
    SessionAccessor,
    merge_cookies,
    parse_set_cookie,
)
from trainingpeaks_mcp.sdk.types import DEFAULT_HEADERS, FORM_CONTENT_TYPE, MAX_REDIRECTS

logger = logging.getLogger(__name__)


@dataclass
class RequestOptions:
    """Per-request settings."""
    headers: Dict[str, str] = field(default_factory=dict)
    params: Optional[Dict[str, Any]] = None
    cookies: List[str] = field(default_factory=list)
    timeout: Optional[float] = None
    form: bool = False
    allow_redirects: bool = True
    cancel: Optional[threading.Event] = None


@dataclass
class HttpResponse:
    """Uniform result envelope."""
    data: Any
    success: bool
    cookies: List[str] = field(default_factory=list)
    error: Optional[ClassifiedError] = None
    status: Optional[int] = None


def set_cookie_headers(response: requests.Response) -> List[str]:
    """All Set-Cookie values seen on a response and its redirect history."""
    values = []
    for item in [*getattr(response, "history", []), response]:
        raw_headers = getattr(getattr(item, "raw", None), "headers", None)
        if raw_headers is not None and hasattr(raw_headers, "getlist"):
            found = list(raw_headers.getlist("Set-Cookie"))
        else:
            single = item.headers.get("Set-Cookie")
            found = [single] if single else []
        values.extend(found)
    return values


def _decode(response: requests.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class TrainingPeaksClient:
    """
    Request pipeline for TrainingPeaks.

    Each request runs through RetryHandler -> execute_with_refresh -> transport.
    The session accessor (optional) supplies the bearer token; the refresh
    procedure (optional) renews it ahead of expiry and once per request when
    the token is rejected. Cookies live in a domain-aware BoundedCookieJar
    that requests reads and writes, redirects included.
    """

    def __init__(
        self,
        config: Optional[SDKConfig] = None,
        session: Optional[SessionAccessor] = None,
        refresh: Optional[RefreshProcedure] = None,
        cookie_jar: Optional[BoundedCookieJar] = None,
        retry_handler: Optional[RetryHandler] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.config = config or SDKConfig()
        self.session = session
        self.refresh = refresh
        self.cookie_jar = cookie_jar if cookie_jar is not None else BoundedCookieJar()
        self._log = log or logger
        self._retry = retry_handler or RetryHandler(self.config.retry_policy, log=self._log)
        self._browser_headers = browser_headers() if self.config.browser_headers else {}
        self._refresher = (
            TokenRefresher(session, refresh, log=self._log)
            if session is not None and refresh is not None else None
        )

        self._http = requests.Session()
        self._http.cookies = self.cookie_jar
        self._http.max_redirects = MAX_REDIRECTS

    def close(self) -> None:
        self._http.close()

    # ── Header assembly ──────────────────────────────────────────────────

    def _session_token(self, context: Optional[RequestContext] = None) -> Optional[AuthToken]:
        if self.session is None:
            return None
        try:
            return self.session.get()
        except Exception as exc:
            self._log.error(f"Cannot read session: {exc}")
            raise TrainingPeaksError(classify(exc, context)) from exc

    def build_headers(
        self,
        options: Optional[RequestOptions] = None,
        token: Optional[AuthToken] = None,
        context: Optional[RequestContext] = None,
    ) -> Dict[str, str]:
        """
        Merge headers in increasing precedence: defaults, browser headers,
        configured headers, caller headers. Then add the session's
        Authorization header unless the caller set one.

        Cookies are not part of the result; see request_cookies().

        Args:
            options: Request options carrying caller headers
            token: Refreshed AuthToken that must replace any Authorization header
            context: Request the headers belong to, for error reporting

        Returns:
            Plain dict of headers to send

        Raises:
            TrainingPeaksError: If the session accessor cannot be read
        """
        options = options or RequestOptions()
        headers = CaseInsensitiveDict(DEFAULT_HEADERS)
        headers.update(self._browser_headers)
        headers.update(self.config.headers)
        if options.form:
            headers["Content-Type"] = FORM_CONTENT_TYPE
        headers.update(options.headers)
        headers.pop("Cookie", None)

        if token is not None:
            headers["Authorization"] = token.authorization_header
        elif "Authorization" not in headers:
            current = self._session_token(context)
            if current is not None:
                headers["Authorization"] = current.authorization_header

        return dict(headers)

    def request_cookies(self, options: Optional[RequestOptions] = None) -> Dict[str, str]:
        """
        Cookies the caller supplied for one request: Cookie headers from the
        config and the options, then options.cookies. Later names win.
        """
        options = options or RequestOptions()
        groups = []
        for source in (self.config.headers, options.headers):
            for key, value in source.items():
                if key.lower() == "cookie":
                    groups.append(value.split(";"))
        groups.append(options.cookies)

        cookies = {}
        for cookie in merge_cookies(*groups):
            name, value = parse_set_cookie(cookie)
            cookies[name] = value
        return cookies

    def render_curl(self, method: str, url: str, body: Any = None, options: Optional[RequestOptions] = None) -> str:
        """Render the request that request() would send as a curl command."""
        options = options or RequestOptions()
        headers = self.build_headers(options)
        caller = [f"{name}={value}" for name, value in self.request_cookies(options).items()]
        cookies = merge_cookies(self.cookie_jar.cookies_for(url), caller)
        return render_curl(method, url, headers=headers, data=body, cookies=cookies)

    # ── Requests ─────────────────────────────────────────────────────────

    def request(
        self,
        method: str,
        url: str,
        body: Any = None,
        options: Optional[RequestOptions] = None,
    ) -> HttpResponse:
        """
        Make a request through the retry and refresh layers.

        Args:
            method: HTTP method
            url: Full URL
            body: JSON-serializable body, or a dict of form fields with options.form
            options: Headers, params, cookies, timeout, redirects, cancellation

        Returns:
            HttpResponse with data and Set-Cookie values on success, or
            success=False and a ClassifiedError on failure
        """
        options = options or RequestOptions()
        timeout = options.timeout or self.config.timeout
        deadline = time.monotonic() + timeout
        context = RequestContext(method=method.upper(), url=url, body=body)
        state = RefreshState()

        def attempt(number: int) -> requests.Response:
            if self._refresher is not None:
                self._refresher.ensure_fresh(state, context)
            return execute_with_refresh(
                lambda token: self._send(context, body, options, deadline, token),
                self.session,
                self.refresh,
                state=state,
                context=context,
                log=self._log,
                refresher=self._refresher,
            )

        try:
            context.headers = self.build_headers(options, context=context)
            if self._log.isEnabledFor(logging.DEBUG):
                self._log.debug(f"HTTP request as cURL:\n{self.render_curl(method, url, body, options)}")
            self._log.debug(f"{context.describe()} starting (timeout={timeout}s)")
            response = self._retry.execute(attempt, context, cancel=options.cancel, deadline=deadline)
        except TrainingPeaksError as exc:
            self._log.error(f"{context.describe()} failed: {exc.error.code} {exc.error.message}")
            return HttpResponse(data=None, success=False, error=exc.error, status=exc.error.status)

        cookies = []
        for header in set_cookie_headers(response):
            pair = parse_set_cookie(header)
            if pair is not None:
                cookies.append(f"{pair[0]}={pair[1]}")

        self._log.info(
            f"{context.describe()} succeeded with {response.status_code} "
            f"after {context.attempt} attempt(s), {len(cookies)} cookie(s)"
        )
        return HttpResponse(
            data=_decode(response),
            success=True,
            cookies=cookies,
            status=response.status_code,
        )

    def _send(self, context: RequestContext, body: Any, options: RequestOptions, deadline: float, token) -> requests.Response:
        if options.cancel is not None and options.cancel.is_set():
            raise TrainingPeaksError(cancelled_error(context))

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TrainingPeaksError(budget_exhausted_error(context, context.attempt))

        kwargs = {
            "headers": self.build_headers(options, token, context),
            "params": options.params,
            "timeout": remaining,
            "allow_redirects": options.allow_redirects,
        }
        cookies = self.request_cookies(options)
        if cookies:
            kwargs["cookies"] = cookies
        if body is not None:
            if options.form or isinstance(body, (str, bytes)):
                kwargs["data"] = body
            else:
                kwargs["json"] = body

        try:
            response = self._http.request(context.method, context.url, **kwargs)
        except requests.RequestException as exc:
            raise TrainingPeaksError(classify(exc, context)) from exc

        if response.status_code >= 400:
            raise TrainingPeaksError(classify(response, context))
        return response

    def get(self, url: str, **options) -> HttpResponse:
        return self.request("GET", url, options=RequestOptions(**options))

    def post(self, url: str, body: Any = None, **options) -> HttpResponse:
        return self.request("POST", url, body, RequestOptions(**options))

    def put(self, url: str, body: Any = None, **options) -> HttpResponse:
        return self.request("PUT", url, body, RequestOptions(**options))

    def patch(self, url: str, body: Any = None, **options) -> HttpResponse:
        return self.request("PATCH", url, body, RequestOptions(**options))

    def delete(self, url: str, **options) -> HttpResponse:
        return self.request("DELETE", url, options=RequestOptions(**options))
