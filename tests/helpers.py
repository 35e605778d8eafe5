"""Mock payloads and request-log helpers shared by the test modules."""

from __future__ import annotations

import re
import time
from typing import Any

from aioresponses import aioresponses

from thermia_online._constants import (
    AZURE_AUTHORIZE_URL,
    AZURE_CONFIRM_URL,
    AZURE_REDIRECT_URI,
    AZURE_SELF_ASSERTED_URL,
    AZURE_TOKEN_URL,
    CONFIG_URLS_BY_API_TYPE,
)

API_BASE = "https://api.example"
CONFIG_URL = CONFIG_URLS_BY_API_TYPE["genesis"]

SIGN_IN_PAGE = """<!DOCTYPE html>
<html><head><script>
var SETTINGS = {"remoteResource": "https://example/unified", "transId": "StateProperties=STATE123",
  "csrf": "CSRF456", "api": "CombinedSigninAndSignup"};
</script></head><body></body></html>
"""

# aioresponses matches on the full URL including query parameters
AUTHORIZE_URL = re.compile(rf"^{re.escape(AZURE_AUTHORIZE_URL)}")
SELF_ASSERTED_URL = re.compile(rf"^{re.escape(AZURE_SELF_ASSERTED_URL)}")
CONFIRM_URL = re.compile(rf"^{re.escape(AZURE_CONFIRM_URL)}")
TOKEN_URL = re.compile(rf"^{re.escape(AZURE_TOKEN_URL)}$")


def token_payload(
    access_token: str = "access-1", refresh_token: str = "refresh-1", expires_in: int = 3600
) -> dict[str, Any]:
    return {
        "access_token": access_token,
        "expires_on": str(int(time.time()) + expires_in),
        "refresh_token": refresh_token,
        "token_type": "Bearer",
    }


def mock_sign_in(
    m: aioresponses,
    *,
    token: dict[str, Any] | None = None,
    self_asserted: dict[str, Any] | None = None,
    code: str = "AUTHCODE",
) -> None:
    """Register the four sign-in steps."""
    m.get(AUTHORIZE_URL, body=SIGN_IN_PAGE, content_type="text/html")
    m.post(
        SELF_ASSERTED_URL,
        payload=self_asserted or {"status": "200"},
        headers={"Set-Cookie": "x-ms-cpim-trans=abc; Path=/"},
    )
    m.get(
        CONFIRM_URL,
        status=302,
        headers={"Location": f"{AZURE_REDIRECT_URI}?state=xyz&code={code}"},
    )
    m.post(TOKEN_URL, payload=token or token_payload())


def calls(m: aioresponses, method: str, url: str) -> int:
    """Number of *method* requests sent to *url* (query string ignored)."""
    return sum(
        len(v)
        for (meth, u), v in m.requests.items()
        if meth == method and str(u).split("?")[0] == url
    )


def request_order(m: aioresponses) -> list[tuple[str, str]]:
    """``(method, url)`` of each distinct request, in first-seen order."""
    return [(meth, str(u).split("?")[0]) for meth, u in m.requests]
