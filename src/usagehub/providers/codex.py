"""OpenAI Codex rate limits via the ChatGPT ``wham/usage`` endpoint.

The ``codex`` CLI keeps its ChatGPT login in ``auth.json`` under
``$CODEX_HOME``, ``~/.config/codex`` or ``~/.codex``. The access token is
refreshed when the file's ``last_refresh`` is more than eight days old and
once more on a 401/403; the refreshed tokens are written back to the same
file so the CLI keeps working with them.

Current window usage arrives in ``x-codex-*`` response headers, with the
JSON body as the fallback.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from usagehub.config import expand_path
from usagehub.exceptions import AuthError, ProviderError, TransportError
from usagehub.models import (
    MUTED_COLOR,
    MetricLine,
    QueryResult,
    badge_line,
    clamp,
    count_format,
    percent_format,
    progress_line,
)
from usagehub.providers.base import Provider
from usagehub.runtime import http
from usagehub.runtime.auth import is_auth_status, retry_once_on_auth
from usagehub.runtime.credentials import (
    Credential,
    CredentialChain,
    Extracted,
    FileSource,
    parse_credential_json,
)
from usagehub.runtime.env import PluginEnv
from usagehub.values import (
    decode_jwt_payload,
    get_mapping,
    get_number,
    get_string,
    now_ms,
    number,
    parse_date_ms,
    plan_label,
    to_iso,
    try_parse_json_map,
)

AUTH_FILENAME = "auth.json"
CONFIG_DIRS = ("~/.config/codex", "~/.codex")
CODEX_HOME_ENV = "CODEX_HOME"

CLIENT_ID = "app_EMoamEEZ73f0CkXaXp7hrann"
REFRESH_URL = "https://auth.openai.com/oauth/token"
USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"
REFRESH_AGE_MS = 8 * 24 * 60 * 60 * 1000
AUTH_CLAIMS = "https://api.openai.com/auth"

FIVE_HOURS_MS = 5 * 60 * 60 * 1000
SEVEN_DAYS_MS = 7 * 24 * 60 * 60 * 1000
CREDITS_LIMIT = 1000.0

NOT_LOGGED_IN = "Not logged in. Run `codex` to authenticate."
API_KEY_ONLY = "Usage not available for API key."
TOKEN_EXPIRED = "Token expired. Run `codex` to log in again."

REFRESH_ERRORS = {
    "refresh_token_expired": "Session expired. Run `codex` to log in again.",
    "refresh_token_reused": "Token conflict. Run `codex` to log in again.",
    "refresh_token_invalidated": "Token revoked. Run `codex` to log in again.",
}


def resolve_auth_path() -> Optional[Path]:
    """``$CODEX_HOME/auth.json`` if set, else the first existing default."""
    codex_home = os.environ.get(CODEX_HOME_ENV, "").strip()
    if codex_home:
        return expand_path(codex_home) / AUTH_FILENAME
    for base in CONFIG_DIRS:
        path = expand_path(base) / AUTH_FILENAME
        if path.is_file():
            return path
    return None


def _auth_blob(text: str) -> Optional[Extracted]:
    """Keep the whole blob even without a token, to tell API-key logins apart."""
    data = parse_credential_json(text)
    if data is None:
        return None
    token = get_string(get_mapping(data, "tokens"), "access_token") or ""
    return token.strip(), data


def account_id(tokens: Optional[dict[str, Any]]) -> str:
    """The ChatGPT account id, read from ``tokens`` or the id token's claims."""
    explicit = (get_string(tokens, "account_id") or "").strip()
    if explicit:
        return explicit
    claims = decode_jwt_payload(get_string(tokens, "id_token") or "")
    return (get_string(get_mapping(claims, AUTH_CLAIMS), "chatgpt_account_id") or "").strip()


def needs_refresh(auth: dict[str, Any], now: int) -> bool:
    last = parse_date_ms(auth.get("last_refresh"))
    if last is None:
        return True
    return now - last > REFRESH_AGE_MS


class CodexProvider(Provider):
    """Reports session, weekly, code-review and credit usage for ChatGPT plans.

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
        return "codex"

    def query(self, env: PluginEnv) -> QueryResult:
        chain = self._credentials or self._default_credentials()
        credential = chain.load() if chain is not None else None
        if credential is None:
            raise ProviderError(NOT_LOGGED_IN)
        if not credential.secret:
            if (get_string(credential.data, "OPENAI_API_KEY") or "").strip():
                raise ProviderError(API_KEY_ONLY)
            raise ProviderError(NOT_LOGGED_IN)

        auth = credential.data
        access_token = credential.secret
        account = account_id(get_mapping(auth, "tokens"))

        if needs_refresh(auth, now_ms()):
            refreshed = self._refresh(env, chain, credential)
            if refreshed:
                access_token = refreshed

        did_refresh = False

        def perform(token: Optional[str]) -> httpx.Response:
            try:
                return self._fetch_usage(token or access_token, account)
            except TransportError as exc:
                if did_refresh:
                    raise ProviderError("Usage request failed after refresh. Try again.") from exc
                raise ProviderError("Usage request failed. Check your connection.") from exc

        def refresh() -> Optional[str]:
            nonlocal did_refresh
            did_refresh = True
            return self._refresh(env, chain, credential)

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

        lines = _usage_lines(data, response.headers)
        if not lines:
            lines.append(badge_line("Status", "No usage data", color=MUTED_COLOR))
        return QueryResult(plan=plan_label(get_string(data, "plan_type")), lines=lines)

    @staticmethod
    def _default_credentials() -> Optional[CredentialChain]:
        path = resolve_auth_path()
        if path is None:
            return None
        return CredentialChain([FileSource(path, extract=_auth_blob)])

    def _fetch_usage(self, access_token: str, account: str) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            "User-Agent": "usagehub",
        }
        if account:
            headers["ChatGPT-Account-Id"] = account
        return http.request(
            "GET",
            USAGE_URL,
            headers=headers,
            timeout=http.DEFAULT_TIMEOUT,
            transport=self._transport,
        )

    def _refresh(self, env: PluginEnv, chain: CredentialChain, credential: Credential) -> Optional[str]:
        """Exchange the refresh token and write the new tokens back.

        Raises:
            AuthError: When the server rejects the refresh token.
        """
        auth = credential.data
        tokens = get_mapping(auth, "tokens")
        refresh_token = (get_string(tokens, "refresh_token") or "").strip()
        if tokens is None or not refresh_token:
            return None

        body = urlencode({
            "grant_type": "refresh_token",
            "client_id": CLIENT_ID,
            "refresh_token": refresh_token,
        })
        try:
            response = http.request(
                "POST",
                REFRESH_URL,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                body=body,
                timeout=http.REFRESH_TIMEOUT,
                transport=self._transport,
            )
        except TransportError as exc:
            env.logger.warning("refresh failed: %s", exc)
            return None

        if response.status_code in (400, 401):
            raise AuthError(REFRESH_ERRORS.get(_refresh_error_code(response.text), TOKEN_EXPIRED))
        if not response.is_success:
            return None

        payload = try_parse_json_map(response.text)
        new_token = (get_string(payload, "access_token") or "").strip()
        if not new_token:
            return None

        tokens["access_token"] = new_token
        for key in ("refresh_token", "id_token"):
            value = get_string(payload, key)
            if value:
                tokens[key] = value
        auth["tokens"] = tokens
        auth["last_refresh"] = to_iso(datetime.now(timezone.utc))

        if chain.save(credential, json.dumps(auth, indent=2)):
            env.logger.info("refreshed token saved to %s", credential.location)
        return new_token


def _refresh_error_code(text: str) -> str:
    payload = try_parse_json_map(text)
    if payload is None:
        return ""
    error = payload.get("error")
    if isinstance(error, dict):
        code = get_string(error, "code")
    else:
        code = error if isinstance(error, str) else None
    return code or get_string(payload, "code") or ""


def _resets_at(window: Optional[dict[str, Any]], now_sec: float) -> str:
    reset_at = get_number(window, "reset_at")
    if reset_at is not None:
        return to_iso(reset_at)
    after = get_number(window, "reset_after_seconds")
    if after is not None:
        return to_iso(now_sec + after)
    return ""


def _window_line(
    label: str,
    used: float,
    window: Optional[dict[str, Any]],
    period_ms: int,
    now_sec: float,
) -> MetricLine:
    return progress_line(
        label,
        used,
        100,
        percent_format(),
        resets_at=_resets_at(window, now_sec),
        period_duration_ms=period_ms,
    )


def _usage_lines(data: dict[str, Any], headers: httpx.Headers) -> list[MetricLine]:
    now_sec = now_ms() / 1000
    lines: list[MetricLine] = []

    rate_limit = get_mapping(data, "rate_limit")
    primary = get_mapping(rate_limit, "primary_window")
    secondary = get_mapping(rate_limit, "secondary_window")
    review = get_mapping(get_mapping(data, "code_review_rate_limit"), "primary_window")

    for header, label, window, period in (
        ("x-codex-primary-used-percent", "Session", primary, FIVE_HOURS_MS),
        ("x-codex-secondary-used-percent", "Weekly", secondary, SEVEN_DAYS_MS),
    ):
        used = number(headers.get(header))
        if used is not None:
            lines.append(_window_line(label, used, window, period, now_sec))

    if not lines and rate_limit is not None:
        for label, window, period in (
            ("Session", primary, FIVE_HOURS_MS),
            ("Weekly", secondary, SEVEN_DAYS_MS),
        ):
            used = get_number(window, "used_percent")
            if used is not None:
                lines.append(_window_line(label, used, window, period, now_sec))

    used = get_number(review, "used_percent")
    if used is not None:
        lines.append(_window_line("Reviews", used, review, SEVEN_DAYS_MS, now_sec))

    balance = number(headers.get("x-codex-credits-balance"))
    if balance is None:
        balance = get_number(get_mapping(data, "credits"), "balance")
    if balance is not None:
        lines.append(progress_line(
            "Credits",
            clamp(CREDITS_LIMIT - balance, 0, CREDITS_LIMIT),
            CREDITS_LIMIT,
            count_format("credits"),
        ))
    return lines
