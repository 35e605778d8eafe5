"""Session lifecycle for the Thermia Online identity provider.

Thermia signs users in through an Azure AD B2C custom policy that is meant
to be driven by a browser.  :class:`Authenticator` replays that sign-in:

1. ``GET /authorize`` with a PKCE challenge; the HTML page embeds a
   ``SETTINGS`` object holding the transaction id and a CSRF token.
2. ``POST /SelfAsserted`` with the e-mail and password as a form.
3. ``GET /confirmed`` with the cookies from step 2; the redirect ``Location``
   carries the authorization code.
4. ``POST /token`` exchanging the code and the PKCE verifier for tokens.

A stored refresh token is tried first; if the provider rejects it the
refresh fields are cleared and the full sign-in runs instead.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import re
import time
from dataclasses import dataclass, field, replace
from urllib.parse import parse_qs, urlparse

from aiohttp_retry import RetryClient

from thermia_online._constants import (
    AZURE_AUTHORIZE_URL,
    AZURE_CLIENT_ID_AND_SCOPE,
    AZURE_CONFIRM_URL,
    AZURE_FORM_HEADERS,
    AZURE_POLICY,
    AZURE_REDIRECT_URI,
    AZURE_SELF_ASSERTED_URL,
    AZURE_TOKEN_URL,
    REFRESH_TOKEN_VALIDITY,
)
from thermia_online._crypto import Challenge
from thermia_online._transport import RetryPolicy, request, scrub
from thermia_online.exceptions import (
    AuthenticationError,
    NetworkError,
    ThermiaError,
    TokenParseError,
)

_LOGGER = logging.getLogger(__name__)

_SETTINGS_RE = re.compile(r"var SETTINGS = (\{.*?\});", re.DOTALL)


class AuthState(enum.Enum):
    """Where :class:`Authenticator` is in the sign-in sequence."""

    UNAUTHENTICATED = "unauthenticated"
    REFRESH_ATTEMPT = "refresh_attempt"
    AWAITING_AUTHORIZE = "awaiting_authorize"
    AWAITING_CREDENTIAL_SUBMIT = "awaiting_credential_submit"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EXCHANGING_TOKEN = "exchanging_token"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class Session:
    """Bearer token, refresh token and their expiries (Unix timestamps).

    Immutable: the authenticator swaps in a new instance in one assignment,
    so readers never see a half-updated session.
    """

    bearer_token: str | None = None
    access_token_expiry: float | None = None
    refresh_token: str | None = None
    refresh_token_expiry: float | None = None

    def __post_init__(self) -> None:
        if self.bearer_token is not None and self.access_token_expiry is None:
            raise ValueError("A bearer token requires an access token expiry.")

    def is_stale(self, now: float) -> bool:
        """True if either expiry is missing or already past."""
        return (
            self.access_token_expiry is None
            or self.access_token_expiry < now
            or self.refresh_token_expiry is None
            or self.refresh_token_expiry < now
        )

    def can_refresh(self, now: float) -> bool:
        return (
            self.refresh_token is not None
            and self.refresh_token_expiry is not None
            and self.refresh_token_expiry > now
        )


@dataclass
class AuthFlowContext:
    """Correlation state carried from one sign-in step to the next."""

    state_code: str
    csrf_token: str
    session_cookies: dict[str, str] = field(default_factory=dict)
    authorization_code: str | None = None


@dataclass(frozen=True)
class TokenGrant:
    """The parts of a token endpoint response the client keeps."""

    access_token: str
    expires_on: float
    refresh_token: str | None


def extract_auth_settings(html: str) -> AuthFlowContext:
    """Pull the transaction state and CSRF token out of the sign-in page.

    The page assigns a JSON object to ``var SETTINGS``; ``transId`` has the
    form ``StateProperties=<state>``.  Raises :class:`AuthenticationError`
    if the page no longer looks like that.
    """
    match = _SETTINGS_RE.search(html)
    if match is None:
        raise AuthenticationError("Sign-in page did not contain a SETTINGS object.")
    try:
        settings = json.loads(match.group(1))
        trans_id = str(settings["transId"])
        csrf_token = str(settings["csrf"])
    except (ValueError, KeyError, TypeError) as e:
        raise AuthenticationError(f"Unexpected SETTINGS object on sign-in page: {e}") from e
    _, sep, state_code = trans_id.partition("=")
    if not sep or not state_code:
        raise AuthenticationError(f"Unexpected transId format on sign-in page: {trans_id!r}")
    return AuthFlowContext(state_code=state_code, csrf_token=csrf_token)


def extract_authorization_code(url: str) -> str | None:
    """Return the ``code`` query parameter of *url*, or ``None``."""
    values = parse_qs(urlparse(url).query).get("code")
    if values and values[0]:
        return values[0]
    return None


def parse_token_response(text: str) -> TokenGrant:
    """Parse a token endpoint body.

    Raises :class:`TokenParseError` if the body is not JSON or lacks an
    ``access_token`` / numeric ``expires_on``.
    """
    try:
        payload = json.loads(text)
    except (ValueError, TypeError) as e:
        raise TokenParseError(f"Token response is not JSON: {e}") from e
    if not isinstance(payload, dict):
        raise TokenParseError(f"Token response is a {type(payload).__name__}, not an object.")
    access_token = payload.get("access_token")
    if not access_token:
        raise TokenParseError(f"Token response has no access_token (keys: {sorted(payload)}).")
    try:
        expires_on = float(payload["expires_on"])
    except (KeyError, TypeError, ValueError) as e:
        raise TokenParseError("Token response has no usable expires_on.") from e
    refresh_token = payload.get("refresh_token")
    return TokenGrant(str(access_token), expires_on, str(refresh_token) if refresh_token else None)


class Authenticator:
    """Obtains and refreshes the bearer token for one account.

    :meth:`authenticate` and :meth:`ensure_valid` share a lock, so at most
    one sign-in is in flight; concurrent callers wait for it and then see
    its result.
    """

    def __init__(
        self,
        email: str,
        password: str,
        *,
        refresh_token_validity: float = REFRESH_TOKEN_VALIDITY,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._email = email
        self._password = password
        self._refresh_token_validity = refresh_token_validity
        self._retry = retry or RetryPolicy()
        self._session = Session()
        self._state = AuthState.UNAUTHENTICATED
        self._lock = asyncio.Lock()

    @property
    def session(self) -> Session:
        """The current session snapshot."""
        return self._session

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._session.bearer_token is not None

    def auth_headers(self) -> dict[str, str]:
        """Default headers for API calls, carrying the current bearer token."""
        return {
            "Authorization": f"Bearer {self._session.bearer_token or ''}",
            "Content-Type": "application/json",
            "cache-control": "no-cache",
        }

    def is_stale(self) -> bool:
        return self._session.is_stale(time.time())

    def invalidate(self, token: str | None = None) -> None:
        """Mark the access token as expired so the next check re-authenticates.

        With *token*, only expire the session if it still carries that token;
        a 401 for a request sent before a re-authentication is then ignored.
        """
        if token is not None and self._session.bearer_token != token:
            return
        self._session = replace(self._session, access_token_expiry=0.0)

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def authenticate(self) -> bool:
        """Run the refresh path or the full sign-in.

        Returns ``False`` if the token endpoint answered with something that
        is not a token grant.  Raises :class:`AuthenticationError` when the
        credentials or the sign-in flow are rejected, and
        :class:`NetworkError` when a step cannot be reached.
        """
        async with self._lock:
            return await self._authenticate()

    async def ensure_valid(self) -> None:
        """Re-authenticate if either token has expired; otherwise do nothing."""
        if not self.is_stale():
            return
        async with self._lock:
            # Another caller may have finished a sign-in while we waited.
            if not self.is_stale():
                return
            _LOGGER.info("Token expired, re-authenticating")
            if not await self._authenticate():
                _LOGGER.warning("Re-authentication did not produce a token")

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _authenticate(self) -> bool:
        token_text: str | None = None
        if self._session.can_refresh(time.time()):
            self._state = AuthState.REFRESH_ATTEMPT
            token_text = await self._refresh()

        if token_text is None:
            try:
                token_text = await self._login()
            except ThermiaError:
                self._state = AuthState.FAILED
                raise

        try:
            grant = parse_token_response(token_text)
        except TokenParseError as e:
            _LOGGER.warning("Not authenticated: %s", e)
            self._state = AuthState.UNAUTHENTICATED
            return False

        self._session = Session(
            bearer_token=grant.access_token,
            access_token_expiry=grant.expires_on,
            refresh_token=grant.refresh_token,
            refresh_token_expiry=time.time() + self._refresh_token_validity,
        )
        self._state = AuthState.AUTHENTICATED
        _LOGGER.debug("Authenticated; access token valid until %s", grant.expires_on)
        return True

    async def _refresh(self) -> str | None:
        """Try the refresh-token grant; ``None`` means fall back to full sign-in."""
        data = {
            "client_id": AZURE_CLIENT_ID_AND_SCOPE,
            "redirect_uri": AZURE_REDIRECT_URI,
            "scope": AZURE_CLIENT_ID_AND_SCOPE,
            "refresh_token": self._session.refresh_token or "",
            "grant_type": "refresh_token",
        }
        status: int | None = None
        detail = ""
        try:
            async with self._retry.client() as http:
                resp = await request(
                    http,
                    "POST",
                    AZURE_TOKEN_URL,
                    data=data,
                    headers=AZURE_FORM_HEADERS,
                )
        except NetworkError as e:
            status = e.status
            detail = str(e)
        else:
            if resp.ok:
                return resp.text
            status = resp.status
            detail = scrub(resp.text)

        self._session = replace(self._session, refresh_token=None, refresh_token_expiry=None)
        _LOGGER.info(
            "Refresh token rejected (status %s, %s); falling back to full sign-in",
            status,
            detail,
        )
        return None

    async def _login(self) -> str:
        """Drive the four-step browser sign-in and return the token response body."""
        challenge = Challenge.generate()
        # A fresh HTTP session per attempt keeps cookies from different
        # attempts apart.
        async with self._retry.client() as http:
            self._state = AuthState.AWAITING_AUTHORIZE
            context = await self._authorize(http, challenge)
            self._state = AuthState.AWAITING_CREDENTIAL_SUBMIT
            await self._submit_credentials(http, context)
            self._state = AuthState.AWAITING_CONFIRMATION
            await self._confirm(http, context)
            self._state = AuthState.EXCHANGING_TOKEN
            return await self._exchange_code(http, context, challenge)

    async def _authorize(self, http: RetryClient, challenge: Challenge) -> AuthFlowContext:
        params = {
            "client_id": AZURE_CLIENT_ID_AND_SCOPE,
            "scope": AZURE_CLIENT_ID_AND_SCOPE,
            "redirect_uri": AZURE_REDIRECT_URI,
            "response_type": "code",
            "code_challenge": challenge.challenge,
            "code_challenge_method": "S256",
        }
        _LOGGER.debug("Requesting sign-in page")
        resp = await request(http, "GET", AZURE_AUTHORIZE_URL, params=params)
        if not resp.ok:
            _LOGGER.error("Authorize request failed: HTTP %s %s", resp.status, scrub(resp.text))
            raise NetworkError("Error fetching authorization API.", resp.status)
        return extract_auth_settings(resp.text)

    async def _submit_credentials(self, http: RetryClient, context: AuthFlowContext) -> None:
        data = {
            "request_type": "RESPONSE",
            "signInName": self._email,
            "password": self._password,
        }
        params = {"tx": f"StateProperties={context.state_code}", "p": AZURE_POLICY}
        headers = {**AZURE_FORM_HEADERS, "X-Csrf-Token": context.csrf_token}
        _LOGGER.debug("Submitting credentials")
        resp = await request(
            http,
            "POST",
            AZURE_SELF_ASSERTED_URL,
            data=data,
            params=params,
            headers=headers,
        )
        if not resp.ok:
            _LOGGER.error("Credential submission rejected: HTTP %s", resp.status)
            raise AuthenticationError(
                "Error in API authentication. Wrong credentials?", resp.status
            )
        # B2C reports a bad password as HTTP 200 with {"status": "400", ...}.
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and str(body.get("status", "200")) != "200":
            message = body.get("message") or "credentials rejected"
            _LOGGER.error("Credential submission rejected: %s", message)
            raise AuthenticationError(f"Error in API authentication: {message}")
        context.session_cookies = dict(resp.cookies)

    async def _confirm(self, http: RetryClient, context: AuthFlowContext) -> None:
        params = {
            "csrf_token": context.csrf_token,
            "tx": f"StateProperties={context.state_code}",
            "p": AZURE_POLICY,
        }
        _LOGGER.debug("Confirming sign-in")
        resp = await request(
            http,
            "GET",
            AZURE_CONFIRM_URL,
            params=params,
            cookies=context.session_cookies,
            allow_redirects=False,
        )
        if resp.status >= 400:
            _LOGGER.error("Sign-in confirmation failed: HTTP %s", resp.status)
            raise AuthenticationError("Sign-in confirmation failed.", resp.status)
        location = resp.headers.get("Location") or ""
        code = extract_authorization_code(location) or extract_authorization_code(resp.url)
        if code is None:
            raise AuthenticationError("Sign-in confirmation did not return an authorization code.")
        context.authorization_code = code

    async def _exchange_code(
        self, http: RetryClient, context: AuthFlowContext, challenge: Challenge
    ) -> str:
        data = {
            "client_id": AZURE_CLIENT_ID_AND_SCOPE,
            "redirect_uri": AZURE_REDIRECT_URI,
            "scope": AZURE_CLIENT_ID_AND_SCOPE,
            "code": context.authorization_code or "",
            "code_verifier": challenge.verifier,
            "grant_type": "authorization_code",
        }
        _LOGGER.debug("Exchanging authorization code for tokens")
        resp = await request(http, "POST", AZURE_TOKEN_URL, data=data, headers=AZURE_FORM_HEADERS)
        if resp.status != 200:
            _LOGGER.error(
                "Authentication request failed: HTTP %s %s", resp.status, scrub(resp.text)
            )
            raise AuthenticationError(
                "Authentication request failed, please check credentials.", resp.status
            )
        return resp.text
