"""Tests for the Cursor provider: state database tokens, refresh, plan mapping."""

from __future__ import annotations

import base64
import json
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest

from usagehub.exceptions import AuthError, ProviderError
from usagehub.models import FormatKind, LineType
from usagehub.providers.cursor import (
    ACCESS_TOKEN_KEY,
    CREDITS_URL,
    NO_SUBSCRIPTION,
    NOT_LOGGED_IN,
    PLAN_URL,
    REFRESH_TOKEN_KEY,
    REFRESH_URL,
    SESSION_EXPIRED,
    TOKEN_EXPIRED,
    USAGE_URL,
    CursorProvider,
    token_expiry_ms,
)
from usagehub.runtime import sqlite
from usagehub.values import now_ms

CYCLE_START = 1767225600000
CYCLE_END = 1769904000000

USAGE = {
    "enabled": True,
    "billingCycleStart": str(CYCLE_START),
    "billingCycleEnd": str(CYCLE_END),
    "planUsage": {"totalSpend": 1250, "limit": 2000, "bonusSpend": 300},
    "spendLimitUsage": {"individualLimit": 5000, "individualRemaining": 4000},
}
PLAN = {"planInfo": {"planName": "pro plus"}}
CREDITS = {"hasCreditGrants": True, "totalCents": 10000, "usedCents": 2500}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _jwt(exp_seconds: Optional[float]) -> str:
    claims: dict[str, Any] = {"sub": "user"}
    if exp_seconds is not None:
        claims["exp"] = exp_seconds
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    return f"header.{payload}.signature"


FRESH = _jwt(now_ms() / 1000 + 3600)
EXPIRED = _jwt(now_ms() / 1000 - 60)


def _state_db(path: Path, access: Optional[str], refresh: Optional[str] = "refresh-1") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with closing(sqlite3.connect(path)) as connection:
        connection.execute("CREATE TABLE ItemTable (key TEXT UNIQUE, value BLOB)")
        for key, value in ((ACCESS_TOKEN_KEY, access), (REFRESH_TOKEN_KEY, refresh)):
            if value is not None:
                connection.execute("INSERT INTO ItemTable VALUES (?, ?)", (key, value))
        connection.commit()
    return path


@pytest.fixture
def state_db(tmp_path: Path) -> Path:
    return _state_db(tmp_path / "Cursor" / "state.vscdb", FRESH)


def _api(usage: Any = USAGE, usage_status: int = 200, refresh: Optional[httpx.Response] = None):
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == USAGE_URL:
            return httpx.Response(usage_status, json=usage)
        if url == PLAN_URL:
            return httpx.Response(200, json=PLAN)
        if url == CREDITS_URL:
            return httpx.Response(200, json=CREDITS)
        if url == REFRESH_URL and refresh is not None:
            return refresh
        return httpx.Response(404)

    return handler


def _provider(transport: httpx.BaseTransport, *paths: Path) -> CursorProvider:
    return CursorProvider(state_dbs=[str(p) for p in paths], transport=transport)


def _requests_to(transport, url: str) -> list[httpx.Request]:
    return [r for r in transport.requests if str(r.url) == url]


class TestTokenExpiry:
    def test_exp_claim_in_milliseconds(self):
        assert token_expiry_ms(_jwt(1700000000)) == 1700000000000

    def test_unreadable(self):
        assert token_expiry_ms("opaque") is None
        assert token_expiry_ms(_jwt(None)) is None


# ---------------------------------------------------------------------------
# Plan mapping
# ---------------------------------------------------------------------------


class TestPlanMapping:
    def test_lines(self, state_db, plugin_env, recording_transport):
        transport = recording_transport(_api())
        result = _provider(transport, state_db).query(plugin_env)

        assert result.plan == "Pro Plus"
        assert [line.label for line in result.lines] == ["Credits", "Plan usage", "Bonus spend", "On-demand"]

        credits, plan_usage, bonus, on_demand = result.lines
        assert (credits.used, credits.limit) == (25.0, 100.0)
        assert credits.format.kind == FormatKind.DOLLARS

        assert (plan_usage.used, plan_usage.limit) == (12.5, 20.0)
        assert plan_usage.resets_at == "2026-02-01T00:00:00.000Z"
        assert plan_usage.period_duration_ms == CYCLE_END - CYCLE_START

        assert bonus.type == LineType.TEXT
        assert bonus.value == "$3"
        assert (on_demand.used, on_demand.limit) == (10.0, 50.0)

    def test_request_headers(self, state_db, plugin_env, recording_transport):
        transport = recording_transport(_api())
        _provider(transport, state_db).query(plugin_env)

        request = _requests_to(transport, USAGE_URL)[0]
        assert request.method == "POST"
        assert request.headers["Authorization"] == f"Bearer {FRESH}"
        assert request.headers["Connect-Protocol-Version"] == "1"
        assert _requests_to(transport, REFRESH_URL) == []

    def test_spend_derived_from_remaining(self, state_db, plugin_env, recording_transport):
        usage = {"enabled": True, "planUsage": {"limit": 2000, "remaining": 500}}
        transport = recording_transport(_api(usage))
        result = _provider(transport, state_db).query(plugin_env)

        plan_usage = next(line for line in result.lines if line.label == "Plan usage")
        assert plan_usage.used == 15.0
        assert plan_usage.period_duration_ms == 30 * 24 * 60 * 60 * 1000

    def test_secondary_calls_are_optional(self, state_db, plugin_env, recording_transport):
        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == USAGE_URL:
                return httpx.Response(200, json=USAGE)
            raise httpx.ConnectError("refused")

        result = _provider(recording_transport(handler), state_db).query(plugin_env)

        assert result.plan == ""
        assert [line.label for line in result.lines] == ["Plan usage", "Bonus spend", "On-demand"]

    def test_second_database_is_used(self, tmp_path, plugin_env, recording_transport):
        second = _state_db(tmp_path / "linux" / "state.vscdb", FRESH)
        transport = recording_transport(_api())

        result = _provider(transport, tmp_path / "absent.vscdb", second).query(plugin_env)

        assert result.lines


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    def test_not_logged_in(self, tmp_path, plugin_env, recording_transport):
        transport = recording_transport(_api())
        with pytest.raises(ProviderError) as exc_info:
            _provider(transport, _state_db(tmp_path / "state.vscdb", None, None)).query(plugin_env)
        assert str(exc_info.value) == NOT_LOGGED_IN
        assert transport.requests == []

    @pytest.mark.parametrize("usage", [{"enabled": False}, {"enabled": True}])
    def test_no_subscription(self, state_db, plugin_env, recording_transport, usage):
        transport = recording_transport(_api(usage))
        with pytest.raises(ProviderError) as exc_info:
            _provider(transport, state_db).query(plugin_env)
        assert str(exc_info.value) == NO_SUBSCRIPTION

    def test_missing_limit(self, state_db, plugin_env, recording_transport):
        transport = recording_transport(_api({"enabled": True, "planUsage": {"totalSpend": 5}}))
        with pytest.raises(ProviderError, match="limit missing"):
            _provider(transport, state_db).query(plugin_env)

    def test_server_error(self, state_db, plugin_env, recording_transport):
        transport = recording_transport(_api(usage_status=500))
        with pytest.raises(ProviderError, match=r"HTTP 500"):
            _provider(transport, state_db).query(plugin_env)


# ---------------------------------------------------------------------------
# Token refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_expired_token_is_refreshed_and_written_back(self, tmp_path, plugin_env, recording_transport):
        db = _state_db(tmp_path / "state.vscdb", EXPIRED)
        new_token = _jwt(now_ms() / 1000 + 7200)
        transport = recording_transport(_api(refresh=httpx.Response(200, json={"access_token": new_token})))

        _provider(transport, db).query(plugin_env)

        refresh_request = _requests_to(transport, REFRESH_URL)[0]
        body = json.loads(refresh_request.content)
        assert body["grant_type"] == "refresh_token"
        assert body["refresh_token"] == "refresh-1"
        assert _requests_to(transport, USAGE_URL)[0].headers["Authorization"] == f"Bearer {new_token}"
        assert sqlite.read_item(db, ACCESS_TOKEN_KEY) == new_token

    def test_should_logout(self, tmp_path, plugin_env, recording_transport):
        db = _state_db(tmp_path / "state.vscdb", None)
        transport = recording_transport(_api(refresh=httpx.Response(200, json={"shouldLogout": True})))

        with pytest.raises(AuthError) as exc_info:
            _provider(transport, db).query(plugin_env)

        assert str(exc_info.value) == SESSION_EXPIRED
        assert _requests_to(transport, USAGE_URL) == []

    def test_rejected_refresh_with_usable_access_token(self, tmp_path, plugin_env, recording_transport):
        db = _state_db(tmp_path / "state.vscdb", EXPIRED)
        transport = recording_transport(_api(refresh=httpx.Response(401, json={})))

        result = _provider(transport, db).query(plugin_env)

        assert result.lines
        assert _requests_to(transport, USAGE_URL)[0].headers["Authorization"] == f"Bearer {EXPIRED}"

    def test_auth_failure_after_retry(self, state_db, plugin_env, recording_transport):
        transport = recording_transport(
            _api(usage_status=401, refresh=httpx.Response(200, json={"access_token": "access-2"}))
        )

        with pytest.raises(AuthError) as exc_info:
            _provider(transport, state_db).query(plugin_env)

        assert str(exc_info.value) == TOKEN_EXPIRED
        assert len(_requests_to(transport, USAGE_URL)) == 2
