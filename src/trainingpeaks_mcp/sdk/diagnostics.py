"""
Request tracing helpers.

Request ids, the per-call RequestContext passed through every pipeline layer,
and cURL rendering of a prepared request for debug logs.
"""

import json
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

_BASE36 = string.digits + string.ascii_lowercase

# Browser noise that a reproduction with curl does not need.
CURL_SKIPPED_HEADERS = {
    "user-agent",
    "accept-encoding",
    "accept-language",
    "cache-control",
}

REDACTED = "***"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def new_request_id() -> str:
    """Generate a request id of the form req_<base36 ms timestamp>_<6 chars>."""
    timestamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(random.choices(_BASE36, k=6))
    return f"req_{timestamp}_{suffix}"


def request_timestamp(request_id: str) -> Optional[datetime]:
    """Recover the creation time embedded in a request id, or None."""
    parts = request_id.split("_")
    if len(parts) < 3 or parts[0] != "req":
        return None
    try:
        millis = int(parts[1], 36)
    except ValueError:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


@dataclass
class RequestContext:
    """Per-call metadata used to correlate logs, retries and errors."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    request_id: str = field(default_factory=new_request_id)
    attempt: int = 0

    def describe(self) -> str:
        return f"{self.method.upper()} {self.url} [{self.request_id}]"


def render_curl(
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    data: Any = None,
    cookies: Optional[Iterable[str]] = None,
    redact: bool = True,
) -> str:
    """
    Render a request as an equivalent curl command.

    Args:
        method: HTTP method
        url: Full request URL
        headers: Request headers; browser noise headers are left out
        data: Request body (dicts and lists are rendered as JSON)
        cookies: "name=value" cookie strings, rendered with -b
        redact: Mask the Authorization header and any password field

    Returns:
        Multi-line curl command string
    """
    lines = [f"curl -X {method.upper()} '{url}'"]

    for key, value in (headers or {}).items():
        lowered = key.lower()
        if lowered in CURL_SKIPPED_HEADERS or lowered.startswith("sec-fetch-"):
            continue
        if redact and lowered == "authorization":
            scheme = str(value).split(" ", 1)[0]
            value = f"{scheme} {REDACTED}"
        lines.append(f"-H '{key}: {value}'")

    cookie_list = list(cookies or [])
    if cookie_list:
        lines.append(f"-b '{'; '.join(cookie_list)}'")

    if data:
        if isinstance(data, dict):
            if redact:
                data = {k: (REDACTED if "password" in k.lower() else v) for k, v in data.items()}
            body = json.dumps(data, indent=2)
        elif isinstance(data, list):
            body = json.dumps(data, indent=2)
        else:
            body = str(data)
        lines.append(f"-d '{body}'")

    return " \\\n  ".join(lines)
