"""
Browser-like request headers.

The login form and tpapi are served to browsers; requests that look like one
get the same treatment.
"""

import random
from typing import Dict, Optional

CHROME_VERSIONS = ["120.0.0.0", "121.0.0.0", "122.0.0.0", "123.0.0.0", "124.0.0.0"]
FIREFOX_VERSIONS = ["120.0", "121.0", "122.0", "123.0", "124.0"]
SAFARI_VERSIONS = ["17.0", "17.1", "17.2", "17.3", "17.4"]

OPERATING_SYSTEMS = {
    "macOS": "Macintosh; Intel Mac OS X 10_15_7",
    "Windows": "Windows NT 10.0; Win64; x64",
    "Linux": "X11; Linux x86_64",
}


def user_agent(browser: str, os_name: str, version: Optional[str] = None) -> str:
    """Build a User-Agent string for Chrome, Firefox or Safari on macOS, Windows or Linux."""
    platform = OPERATING_SYSTEMS[os_name]
    if browser == "Firefox":
        version = version or FIREFOX_VERSIONS[0]
        return f"Mozilla/5.0 ({platform}; rv:{version}) Gecko/20100101 Firefox/{version}"
    if browser == "Safari":
        version = version or SAFARI_VERSIONS[0]
        return (
            f"Mozilla/5.0 ({platform}) AppleWebKit/605.1.15 "
            f"(KHTML, like Gecko) Version/{version} Safari/605.1.15"
        )
    version = version or CHROME_VERSIONS[0]
    return (
        f"Mozilla/5.0 ({platform}) AppleWebKit/537.36 "
        f"(KHTML, like Gecko) Chrome/{version} Safari/537.36"
    )


def random_user_agent(rng=random) -> str:
    """Pick a realistic User-Agent at random."""
    browser = rng.choice(["Chrome", "Firefox", "Safari"])
    os_name = "macOS" if browser == "Safari" else rng.choice(list(OPERATING_SYSTEMS))
    versions = {"Chrome": CHROME_VERSIONS, "Firefox": FIREFOX_VERSIONS, "Safari": SAFARI_VERSIONS}
    return user_agent(browser, os_name, rng.choice(versions[browser]))


def browser_headers(rng=random) -> Dict[str, str]:
    """
    Chrome client-hint headers whose values agree with the User-Agent.

    sec-ch-ua, sec-ch-ua-platform and user-agent share one version and platform.
    """
    version = rng.choice(CHROME_VERSIONS)
    os_name = rng.choice(list(OPERATING_SYSTEMS))
    major = version.split(".", 1)[0]
    return {
        "sec-ch-ua": f'"Not)A;Brand";v="8", "Chromium";v="{major}", "Google Chrome";v="{major}"',
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": f'"{os_name}"',
        "user-agent": user_agent("Chrome", os_name, version),
    }
