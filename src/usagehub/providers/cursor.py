"""Cursor plan usage via the ``api2.cursor.sh`` dashboard service.

The editor stores its access and refresh tokens in ``state.vscdb`` under
``cursorAuth/*``. The access token is a JWT; when its ``exp`` claim is
within five minutes (or unreadable) it is refreshed first, and a refreshed
token is written back to the database for the editor to pick up.

Plan name and credit grants come from two secondary calls whose failure
only drops the corresponding details.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Sequence

import httpx

from usagehub.exceptions import AuthError, DataError, ProviderError, TransportError
from usagehub.models import MetricLine, QueryResult, dollars_format, progress_line, text_line
from usagehub.providers.base import Provider
from usagehub.runtime import http, sqlite
from usagehub.runtime.auth import is_auth_status, retry_once_on_auth
from usagehub.runtime.env import PluginEnv
from usagehub.values import (
    decode_jwt_payload,
    dollars,
    get_bool,
    get_mapping,
    get_number,
    get_string,
    integer,
    needs_refresh_by_expiry,
    now_ms,
    plan_label,
    to_iso,
    try_parse_json_map,
)

logger = logging.getLogger(__name__)

STATE_DBS = (
    "~/Library/Application Support/Cursor/User/globalStorage/state.vscdb",
    "~/.config/Cursor/User/globalStorage/state.vscdb",
)
ACCESS_TOKEN_KEY = "cursorAuth/accessToken"
REFRESH_TOKEN_KEY = "cursorAuth/refreshToken"

BASE_URL = "https://api2.cursor.sh"
USAGE_URL = BASE_URL + "/aiserver.v1.DashboardService/GetCurrentPeriodUsage"
PLAN_URL = BASE_URL + "/aiserver.v1.DashboardService/GetPlanInfo"
CREDITS_URL = BASE_URL + "/aiserver.v1.DashboardService/GetCreditGrantsBalance"
REFRESH_URL = BASE_URL + "/oauth/token"
CLIENT_ID = "KbZUR41cY7W6zRSdpSUJ7I7mLYBKOCmB"
REFRESH_BUFFER_MS = 5 * 60 * 1000
DEFAULT_BILLING_MS = 30 * 24 * 60 * 60 * 1000

NOT_LOGGED_IN = "Not logged in. Sign in via the Cursor app."
TOKEN_EXPIRED = "Token expired. Sign in via the Cursor app."
SESSION_EXPIRED = "Session expired. Sign in via the Cursor app."
NO_SUBSCRIPTION = "No active Cursor subscription."


def token_expiry_ms(token: str) -> Optional[int]:
    """Return the JWT ``exp`` claim in epoch milliseconds."""
    exp = get_number(decode_jwt_payload(token), "exp")
    if exp is None:
        return None
    return integer(exp * 1000)


class CursorProvider(Provider):
    """Reports plan spend, on-demand spend and credit grants for Cursor.

    Args:
        state_dbs: Candidate ``state.vscdb`` paths; the first holding a
            token is used.
        transport: httpx transport override, for tests.
    """

    def __init__(
        self,
        state_dbs: Sequence[str] = STATE_DBS,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._state_dbs = list(state_dbs)
        self._transport = transport

    @property
    def id(self) -> str:
        return "cursor"

    def query(self, env: PluginEnv) -> QueryResult:
        db_path, access_token, refresh_token = self._load_tokens()
        if not access_token and not refresh_token:
            raise ProviderError(NOT_LOGGED_IN)

        if needs_refresh_by_expiry(now_ms(), _expiry(access_token), REFRESH_BUFFER_MS):
            try:
                refreshed = self._refresh(env, db_path, refresh_token)
            except AuthError:
                if not access_token:
                    raise
                refreshed = None
            if refreshed:
                access_token = refreshed
            elif not access_token:
                raise ProviderError(NOT_LOGGED_IN)

        did_refresh = False

        def perform(token: Optional[str]) -> httpx.Response:
            try:
                return self._post(USAGE_URL, token or access_token)
            except TransportError as exc:
                if did_refresh:
                    raise ProviderError("Usage request failed after refresh. Try again.") from exc
                raise ProviderError("Usage request failed. Check your connection.") from exc

        def refresh() -> Optional[str]:
            nonlocal did_refresh, access_token
            did_refresh = True
            refreshed = self._refresh(env, db_path, refresh_token)
            if refreshed:
                access_token = refreshed
            return refreshed

        response = retry_once_on_auth(perform, refresh)
        if is_auth_status(response.status_code):
            raise AuthError(TOKEN_EXPIRED)
        if not response.is_success:
            raise ProviderError(
                f"Usage request failed (HTTP {response.status_code}). Try again later."
            )

        usage = try_parse_json_map(response.text)
        if usage is None:
            raise ProviderError("Usage response invalid. Try again later.")

        plan_usage = get_mapping(usage, "planUsage")
        if not get_bool(usage, "enabled") or plan_usage is None:
            raise ProviderError(NO_SUBSCRIPTION)

        plan_info = get_mapping(self._post_optional(PLAN_URL, access_token), "planInfo")
        credit_grants = self._post_optional(CREDITS_URL, access_token)

        limit = get_number(plan_usage, "limit")
        if limit is None:
            raise ProviderError("Plan usage limit missing from API response.")

        lines = _credit_grant_lines(credit_grants)
        lines.extend(_plan_lines(usage, plan_usage, limit))
        return QueryResult(plan=plan_label(get_string(plan_info, "planName")), lines=lines)

    # ------------------------------------------------------------------
    # Token storage
    # ------------------------------------------------------------------

    def _load_tokens(self) -> tuple[str, str, str]:
        for db_path in self._state_dbs:
            try:
                access = sqlite.read_item(db_path, ACCESS_TOKEN_KEY) or ""
                refresh = sqlite.read_item(db_path, REFRESH_TOKEN_KEY) or ""
            except (TransportError, DataError) as exc:
                logger.debug("state database %s unusable: %s", db_path, exc)
                continue
            if access.strip() or refresh.strip():
                return db_path, access.strip(), refresh.strip()
        return "", "", ""

    def _refresh(self, env: PluginEnv, db_path: str, refresh_token: str) -> Optional[str]:
        """Exchange the refresh token; returns the new access token or ``None``.

        Raises:
            AuthError: When the server rejects the refresh token or asks
                for a logout.
        """
        if not refresh_token:
            return None

        body = json.dumps({
            "grant_type": "refresh_token",
            "client_id": CLIENT_ID,
            "refresh_token": refresh_token,
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

        payload = try_parse_json_map(response.text)
        if response.status_code in (400, 401):
            if get_bool(payload, "shouldLogout"):
                raise AuthError(SESSION_EXPIRED)
            raise AuthError(TOKEN_EXPIRED)
        if not response.is_success or payload is None:
            return None
        if get_bool(payload, "shouldLogout"):
            raise AuthError(SESSION_EXPIRED)

        new_token = (get_string(payload, "access_token") or "").strip()
        if not new_token:
            return None

        try:
            sqlite.write_item(db_path, ACCESS_TOKEN_KEY, new_token)
        except (TransportError, DataError) as exc:
            env.logger.warning("refreshed token not saved: %s", exc)
        return new_token

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _post(self, url: str, token: str) -> httpx.Response:
        return http.request(
            "POST",
            url,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Connect-Protocol-Version": "1",
            },
            body="{}",
            timeout=http.DEFAULT_TIMEOUT,
            transport=self._transport,
        )

    def _post_optional(self, url: str, token: str) -> Optional[dict[str, Any]]:
        try:
            response = self._post(url, token)
        except TransportError as exc:
            logger.debug("%s failed: %s", url, exc)
            return None
        if not response.is_success:
            return None
        return try_parse_json_map(response.text)


def _expiry(token: str) -> Optional[int]:
    return token_expiry_ms(token) if token else None


def _credit_grant_lines(grants: Optional[dict[str, Any]]) -> list[MetricLine]:
    if not get_bool(grants, "hasCreditGrants"):
        return []
    total = get_number(grants, "totalCents")
    used = get_number(grants, "usedCents")
    if total is None or used is None or total <= 0:
        return []
    return [progress_line("Credits", dollars(used), dollars(total), dollars_format())]


def _plan_lines(usage: dict[str, Any], plan_usage: dict[str, Any], limit: float) -> list[MetricLine]:
    spent = get_number(plan_usage, "totalSpend")
    if spent is None:
        spent = limit - (get_number(plan_usage, "remaining") or 0)

    period_ms = DEFAULT_BILLING_MS
    start = integer(usage.get("billingCycleStart"))
    end = integer(usage.get("billingCycleEnd"))
    if start is not None and end is not None and end > start:
        period_ms = end - start

    lines = [
        progress_line(
            "Plan usage",
            dollars(spent),
            dollars(limit),
            dollars_format(),
            resets_at=to_iso(usage.get("billingCycleEnd")),
            period_duration_ms=period_ms,
        )
    ]

    bonus = get_number(plan_usage, "bonusSpend")
    if bonus is not None and bonus > 0:
        lines.append(text_line("Bonus spend", f"${dollars(bonus):g}"))

    spend_limit = get_mapping(usage, "spendLimitUsage")
    if spend_limit is not None:
        cap = get_number(spend_limit, "individualLimit")
        if cap is None:
            cap = get_number(spend_limit, "pooledLimit")
        remaining = get_number(spend_limit, "individualRemaining")
        if remaining is None:
            remaining = get_number(spend_limit, "pooledRemaining") or 0
        if cap is not None and cap > 0:
            lines.append(progress_line("On-demand", dollars(cap - remaining), dollars(cap), dollars_format()))
    return lines
