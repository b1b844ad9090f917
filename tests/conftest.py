"""
Shared pytest fixtures for TrainingPeaks MCP testing.
"""
import json
from datetime import datetime, timedelta, timezone
from http import HTTPStatus
from http.client import HTTPMessage
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
import requests
from requests.adapters import BaseAdapter

# Monkey-patch: production uses fastmcp.FastMCP, tests use mcp.server.fastmcp.
# Patch fastmcp.Context to match mcp.server.fastmcp.Context so tools work
# with the test FastMCP.
import fastmcp
from mcp.server.fastmcp import server as mcp_server
fastmcp.Context = mcp_server.Context

from trainingpeaks_mcp.sdk.config import SDKConfig
from trainingpeaks_mcp.sdk.retry import RetryHandler, RetryPolicy
from trainingpeaks_mcp.sdk.session import AuthToken, User, export_session


def get_tool_result_text(result):
    """Extract text from tool result.

    FastMCP call_tool returns a tuple (list_of_TextContent, metadata_dict).
    This helper extracts the text from the first TextContent item.
    """
    if isinstance(result, tuple) and len(result) > 0:
        result = result[0]
    if isinstance(result, list) and len(result) > 0:
        if hasattr(result[0], 'text'):
            return result[0].text
    return str(result)


class _RawHeaders:
    """Stands in for urllib3's header dict, which keeps repeated Set-Cookie values."""

    def __init__(self, set_cookies):
        self._set_cookies = list(set_cookies)

    def getlist(self, name):
        if name.lower() == "set-cookie":
            return list(self._set_cookies)
        return []


def make_response(status=200, json_data=None, text=None, set_cookies=(), url="https://tpapi.trainingpeaks.com/", headers=None):
    """Build a real requests.Response for transport mocks."""
    response = requests.Response()
    response.status_code = status
    response.url = url
    try:
        response.reason = HTTPStatus(status).phrase
    except ValueError:
        response.reason = ""
    response.encoding = "utf-8"
    if json_data is not None:
        response._content = json.dumps(json_data).encode()
        response.headers["Content-Type"] = "application/json"
    elif text is not None:
        response._content = text.encode()
        response.headers["Content-Type"] = "text/html; charset=utf-8"
    else:
        response._content = b""
    response._content_consumed = True
    response.headers.update(headers or {})
    if set_cookies:
        response.headers["Set-Cookie"] = ", ".join(set_cookies)

    # requests reads cookies from the wrapped http.client message
    message = HTTPMessage()
    for value in set_cookies:
        message["Set-Cookie"] = value
    response.raw = SimpleNamespace(
        headers=_RawHeaders(set_cookies),
        _original_response=SimpleNamespace(msg=message),
    )
    return response


class FakeTransport(BaseAdapter):
    """
    Transport adapter answering from a {url: make_response kwargs} table.

    Mounted on a client's requests.Session, it lets requests run its real
    cookie and redirect handling. Every prepared request is kept in `sent`.
    """

    def __init__(self, routes):
        super().__init__()
        self.routes = routes
        self.sent = []

    def send(self, request, **kwargs):
        self.sent.append(request)
        response = make_response(url=request.url, **self.routes[request.url])
        response.request = request
        return response

    def close(self):
        pass

    def cookies_sent(self):
        return [(r.url, r.headers.get("Cookie")) for r in self.sent]


def mount_transport(client, routes):
    transport = FakeTransport(routes)
    client._http.mount("https://", transport)
    return transport


@pytest.fixture
def no_sleep():
    """Sleep stub recording requested delays in seconds."""
    return Mock()


@pytest.fixture
def sdk_config():
    """Config with deterministic headers and fast retries."""
    return SDKConfig(
        retry_policy=RetryPolicy(attempts=3, base_delay=10, jitter=False),
        browser_headers=False,
    )


@pytest.fixture
def retry_handler(sdk_config, no_sleep):
    return RetryHandler(sdk_config.retry_policy, sleep=no_sleep)


@pytest.fixture
def auth_token():
    return AuthToken(
        access_token="tok1",
        token_type="Bearer",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        refresh_token="ref1",
    )


@pytest.fixture
def tp_user():
    return User(id="u1", username="alice", name="Alice")


@pytest.fixture
def tp_tokens(auth_token, tp_user):
    """Exported session as stored by the login tool."""
    return export_session(auth_token, tp_user)


@pytest.fixture
def mock_context():
    """Create a mock MCP context with state management."""
    context = Mock()
    state = {}

    def get_state(key):
        return state.get(key)

    def set_state(key, value):
        state[key] = value

    context.get_state = get_state
    context.set_state = set_state
    context.session_id = "session-123"
    context._state = state

    return context
