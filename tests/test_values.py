"""Tests for usagehub.values -- lenient accessors, timestamps, formatting."""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest

from usagehub.values import (
    decode_base64,
    decode_jwt_payload,
    dollars,
    get_bool,
    get_mapping,
    get_number,
    get_string,
    integer,
    needs_refresh_by_expiry,
    number,
    parse_date_ms,
    plan_label,
    to_iso,
    try_parse_json_map,
)


class TestAccessors:

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(3, 3.0), (2.5, 2.5), ("12.5", 12.5), (" 7 ", 7.0)],
    )
    def test_number_accepts(self, value, expected) -> None:
        assert number(value) == expected

    @pytest.mark.parametrize("value", [None, True, False, "abc", float("nan"), float("inf"), [1], {}])
    def test_number_rejects(self, value) -> None:
        assert number(value) is None

    def test_integer_truncates(self) -> None:
        assert integer("9.9") == 9
        assert integer(-9.9) == -9

    def test_getters_tolerate_missing_containers(self) -> None:
        assert get_mapping(None, "a") is None
        assert get_string(None, "a") is None
        assert get_number({}, "a") is None
        assert get_bool(None, "a") is None

    def test_getters_check_types(self) -> None:
        data = {"m": {"x": 1}, "s": "text", "n": "5", "b": True}
        assert get_mapping(data, "m") == {"x": 1}
        assert get_mapping(data, "s") is None
        assert get_string(data, "s") == "text"
        assert get_string(data, "n") == "5"
        assert get_number(data, "n") == 5.0
        assert get_number(data, "b") is None
        assert get_bool(data, "b") is True
        assert get_bool(data, "s") is None


class TestJson:

    def test_parse_map(self) -> None:
        assert try_parse_json_map('{"a": 1}') == {"a": 1}

    @pytest.mark.parametrize("text", [None, "", "  ", "[1]", "null", "{broken"])
    def test_parse_map_rejects(self, text) -> None:
        assert try_parse_json_map(text) is None


class TestBase64:

    def test_standard(self) -> None:
        assert decode_base64(base64.b64encode(b"hello").decode()) == "hello"

    def test_urlsafe_without_padding(self) -> None:
        encoded = base64.urlsafe_b64encode(b"\xfb\xff>?").decode().rstrip("=")
        assert "-" in encoded or "_" in encoded
        assert decode_base64(encoded) is not None

    def test_invalid(self) -> None:
        assert decode_base64("***") is None

    def test_jwt_payload(self) -> None:
        claims = {"sub": "user-1", "exp": 1700000000}
        payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
        assert decode_jwt_payload(f"header.{payload}.signature") == claims

    def test_jwt_wrong_shape(self) -> None:
        assert decode_jwt_payload("only.two") is None


class TestToIso:

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("2025-01-01T10:00:00Z", "2025-01-01T10:00:00.000Z"),
            ("2025-01-01T10:00:00.123456Z", "2025-01-01T10:00:00.123Z"),
            ("2025-01-01T10:00:00+02:00", "2025-01-01T08:00:00.000Z"),
            ("2025-01-01T10:00:00+0200", "2025-01-01T08:00:00.000Z"),
            ("2025-01-01 10:00:00", "2025-01-01T10:00:00.000Z"),
            ("2025-01-01 10:00:00 UTC", "2025-01-01T10:00:00.000Z"),
            ("2025-01-01T10:00:00 UTC", "2025-01-01T10:00:00.000Z"),
            ("2025-01-01", "2025-01-01T00:00:00.000Z"),
            (1700000000, "2023-11-14T22:13:20.000Z"),
            (1700000000000, "2023-11-14T22:13:20.000Z"),
            ("1700000000", "2023-11-14T22:13:20.000Z"),
        ],
    )
    def test_normalises(self, value, expected) -> None:
        assert to_iso(value) == expected

    def test_datetime(self) -> None:
        moment = datetime(2025, 6, 1, 12, 30, tzinfo=timezone(timedelta(hours=-4)))
        assert to_iso(moment) == "2025-06-01T16:30:00.000Z"

    @pytest.mark.parametrize("value", [None, True, "", "soon", "2025-13-01", {}])
    def test_unparsable(self, value) -> None:
        assert to_iso(value) == ""


class TestParseDateMs:

    def test_iso(self) -> None:
        assert parse_date_ms("2023-11-14T22:13:20Z") == 1700000000000

    def test_number_is_already_millis(self) -> None:
        assert parse_date_ms(1700000000000) == 1700000000000
        assert parse_date_ms("1700000000000") == 1700000000000

    @pytest.mark.parametrize("value", [None, True, "", "never"])
    def test_unparsable(self, value) -> None:
        assert parse_date_ms(value) is None


class TestNeedsRefresh:

    def test_unknown_expiry(self) -> None:
        assert needs_refresh_by_expiry(1000, None, 0)

    def test_within_buffer(self) -> None:
        assert needs_refresh_by_expiry(1000, 1500, 600)

    def test_outside_buffer(self) -> None:
        assert not needs_refresh_by_expiry(1000, 5000, 600)


class TestFormatting:

    @pytest.mark.parametrize(
        ("raw", "label"),
        [("pro", "Pro"), ("team max", "Team Max"), ("  max ", "Max"), ("", ""), (None, "")],
    )
    def test_plan_label(self, raw, label) -> None:
        assert plan_label(raw) == label

    def test_dollars(self) -> None:
        assert dollars(1234) == 12.34
        assert dollars(1234.5) == 12.35
        assert dollars(0) == 0
