"""Claude subscription usage via the Anthropic OAuth usage endpoint.

Credentials are the OAuth blob the ``claude`` CLI stores either in
``~/.claude/.credentials.json`` or in the macOS Keychain item
``Claude Code-credentials``. Tokens close to expiry are refreshed before
the request; a 401/403 triggers one more refresh and a single retry. A
refreshed blob is written back to whichever of the two stores it came from.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import httpx

from usagehub.exceptions import AuthError, ProviderError, TransportError
from usagehub.models import (
    MUTED_COLOR,
    MetricLine,
    QueryResult,
    badge_line,
    dollars_format,
    percent_format,
    progress_line,
    text_line,
)
from usagehub.providers.base import Provider
from usagehub.runtime import http
from usagehub.runtime.auth import is_auth_status, retry_once_on_auth
from usagehub.runtime.credentials import (
    Credential,
    CredentialChain,
    FileSource,
    KeychainSource,
    json_field,
)
from usagehub.runtime.env import PluginEnv
from usagehub.values import (
    dollars,
    get_bool,
    get_mapping,
    get_number,
    get_string,
    needs_refresh_by_expiry,
    now_ms,
    plan_label,
    to_iso,
    try_parse_json_map,
)

CREDENTIAL_FILE = "~/.claude/.credentials.json"
KEYCHAIN_SERVICE = "Claude Code-credentials"
OAUTH_KEY = "claudeAiOauth"
USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
REFRESH_URL = "https://platform.claude.com/v1/oauth/token"
CLIENT_ID = "9d1c250a-e61b-44d9-88ed-5944d1962f5e"
SCOPES = "user:profile user:inference user:sessions:claude_code user:mcp_servers"
REFRESH_BUFFER_MS = 5 * 60 * 1000

FIVE_HOURS_MS = 5 * 60 * 60 * 1000
SEVEN_DAYS_MS = 7 * 24 * 60 * 60 * 1000

NOT_LOGGED_IN = "Not logged in. Run `claude` to authenticate."
TOKEN_EXPIRED = "Token expired. Run `claude` to log in again."
SESSION_EXPIRED = "Session expired. Run `claude` to log in again."


def default_credentials() -> CredentialChain:
    extract = json_field(OAUTH_KEY, "accessToken")
    return CredentialChain([
        FileSource(CREDENTIAL_FILE, extract=extract),
        KeychainSource(KEYCHAIN_SERVICE, extract=extract),
    ])


class ClaudeProvider(Provider):
    """Reports session, weekly, and extra-usage quotas for Claude plans.

    Args:
        credentials: Credential chain override, for tests.
        transport: httpx transport override, for tests.
    """

    def __init__(
        self,
        credentials: Optional[CredentialChain] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._credentials = credentials
        self._transport = transport

    @property
    def id(self) -> str:
        return "claude"

    def query(self, env: PluginEnv) -> QueryResult:
        chain = self._credentials or default_credentials()
        credential = chain.load()
        if credential is None:
            raise ProviderError(NOT_LOGGED_IN)
        oauth = get_mapping(credential.data, OAUTH_KEY) or {}
        access_token = credential.secret

        if needs_refresh_by_expiry(now_ms(), get_number(oauth, "expiresAt"), REFRESH_BUFFER_MS):
            refreshed = self._refresh(env, chain, credential, oauth)
            if refreshed:
                access_token = refreshed

        did_refresh = False

        def perform(token: Optional[str]) -> httpx.Response:
            try:
                return self._fetch_usage(token or access_token)
            except TransportError as exc:
                if did_refresh:
                    raise ProviderError("Usage request failed after refresh. Try again.") from exc
                raise ProviderError("Usage request failed. Check your connection.") from exc

        def refresh() -> Optional[str]:
            nonlocal did_refresh
            did_refresh = True
            return self._refresh(env, chain, credential, oauth)

        response = retry_once_on_auth(perform, refresh)
        if is_auth_status(response.status_code):
            raise AuthError(TOKEN_EXPIRED)
        if not response.is_success:
            raise ProviderError(
                f"Usage request failed (HTTP {response.status_code}). Try again later."
            )

        data = try_parse_json_map(response.text)
        if data is None:
            raise ProviderError("Usage response invalid. Try again later.")

        lines = _usage_lines(data)
        if not lines:
            lines.append(badge_line("Status", "No usage data", color=MUTED_COLOR))
        return QueryResult(plan=plan_label(get_string(oauth, "subscriptionType")), lines=lines)

    def _fetch_usage(self, access_token: str) -> httpx.Response:
        return http.request(
            "GET",
            USAGE_URL,
            headers={
                "Authorization": f"Bearer {access_token.strip()}",
                "Accept": "application/json",
                "Content-Type": "application/json",
                "anthropic-beta": "oauth-2025-04-20",
                "User-Agent": "usagehub",
            },
            timeout=http.DEFAULT_TIMEOUT,
            transport=self._transport,
        )

    def _refresh(
        self,
        env: PluginEnv,
        chain: CredentialChain,
        credential: Credential,
        oauth: dict[str, Any],
    ) -> Optional[str]:
        """Exchange the refresh token; returns the new access token or ``None``.

        Raises:
            ProviderError: When the server rejects the refresh token.
        """
        refresh_token = (get_string(oauth, "refreshToken") or "").strip()
        if not refresh_token:
            return None

        body = json.dumps({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": CLIENT_ID,
            "scope": SCOPES,
        })
        try:
            response = http.request(
                "POST",
                REFRESH_URL,
                headers={"Content-Type": "application/json"},
                body=body,
                timeout=http.REFRESH_TIMEOUT,
                transport=self._transport,
            )
        except TransportError as exc:
            env.logger.warning("refresh failed: %s", exc)
            return None

        if response.status_code in (400, 401):
            payload = try_parse_json_map(response.text)
            code = get_string(payload, "error") or get_string(payload, "error_description")
            if code == "invalid_grant":
                raise AuthError(SESSION_EXPIRED)
            raise AuthError(TOKEN_EXPIRED)
        if not response.is_success:
            return None

        payload = try_parse_json_map(response.text)
        new_token = (get_string(payload, "access_token") or "").strip()
        if not new_token:
            return None

        oauth["accessToken"] = new_token
        new_refresh = get_string(payload, "refresh_token")
        if new_refresh:
            oauth["refreshToken"] = new_refresh
        expires_in = get_number(payload, "expires_in")
        if expires_in is not None:
            oauth["expiresAt"] = now_ms() + int(expires_in * 1000)

        credential.data[OAUTH_KEY] = oauth
        if chain.save(credential, json.dumps(credential.data)):
            env.logger.info("refreshed token saved to %s", credential.source.value)
        return new_token


def _window_line(data: dict[str, Any], key: str, label: str, period_ms: int) -> Optional[MetricLine]:
    window = get_mapping(data, key)
    utilization = get_number(window, "utilization")
    if window is None or utilization is None:
        return None
    return progress_line(
        label,
        utilization,
        100,
        percent_format(),
        resets_at=to_iso(window.get("resets_at")),
        period_duration_ms=period_ms,
    )


def _usage_lines(data: dict[str, Any]) -> list[MetricLine]:
    lines: list[MetricLine] = []
    for key, label, period in (
        ("five_hour", "Session", FIVE_HOURS_MS),
        ("seven_day", "Weekly", SEVEN_DAYS_MS),
        ("seven_day_sonnet", "Sonnet", SEVEN_DAYS_MS),
    ):
        line = _window_line(data, key, label, period)
        if line is not None:
            lines.append(line)

    extra = get_mapping(data, "extra_usage")
    if get_bool(extra, "is_enabled"):
        used = get_number(extra, "used_credits")
        limit = get_number(extra, "monthly_limit")
        if used is not None and limit is not None and limit > 0:
            lines.append(progress_line("Extra usage", dollars(used), dollars(limit), dollars_format()))
        elif used is not None and used > 0:
            lines.append(text_line("Extra usage", f"${dollars(used):g}"))
    return lines
