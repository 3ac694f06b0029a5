"""Tests for usagehub.runtime.discovery -- process, port, and scheme discovery."""

from __future__ import annotations

import json
from typing import Iterator

import httpx
import psutil
import pytest

from usagehub.exceptions import ConfigError
from usagehub.models import DiscoveryResult
from usagehub.runtime import discovery
from usagehub.runtime.discovery import (
    CSRF_HEADER,
    DiscoveryOptions,
    call_json,
    client_os,
    discover,
    extract_flag,
    find_working_port,
    make_probe,
    parse_lsof_ports,
)

WINDSURF_CMD = (
    "/Applications/Windsurf.app/Contents/Resources/app/extensions/windsurf/bin/"
    "language_server_macos_arm --csrf_token abc123 --extension_server_port 42100 "
    "--windsurf_version 1.9.2 --ide_name windsurf"
)


def _options(**overrides) -> DiscoveryOptions:
    values = dict(
        process_name="language_server",
        markers=["windsurf"],
        csrf_flag="--csrf_token",
        port_flag="--extension_server_port",
        extra_flags=["--windsurf_version"],
    )
    values.update(overrides)
    return DiscoveryOptions(**values)


@pytest.fixture
def processes(monkeypatch: pytest.MonkeyPatch):
    """Replace the process table with a list of ``(pid, command)`` pairs."""
    table: list[tuple[int, str]] = []

    def fake() -> Iterator[tuple[int, str]]:
        yield from table

    monkeypatch.setattr(discovery, "list_processes", fake)
    return table


@pytest.fixture
def ports(monkeypatch: pytest.MonkeyPatch):
    """Replace lsof with a ``pid -> ports`` dict."""
    by_pid: dict[int, list[int]] = {}
    monkeypatch.setattr(discovery, "listening_ports", lambda pid: by_pid.get(pid, []))
    return by_pid


class TestExtractFlag:

    def test_space_separated(self) -> None:
        assert extract_flag("bin --csrf_token abc123 --x y", "--csrf_token") == "abc123"

    def test_equals_form(self) -> None:
        assert extract_flag("bin --csrf_token=abc123", "--csrf_token") == "abc123"

    def test_first_occurrence_wins(self) -> None:
        assert extract_flag("bin --a 1 --a=2", "--a") == "1"

    def test_missing_or_valueless(self) -> None:
        assert extract_flag("bin --other 1", "--csrf_token") == ""
        assert extract_flag("bin --csrf_token", "--csrf_token") == ""


class TestParseLsofPorts:

    def test_extracts_listening_ports(self) -> None:
        output = (
            "COMMAND   PID USER   FD   TYPE DEVICE SIZE/OFF NODE NAME\n"
            "language_ 123 me   12u  IPv4 0x1      0t0  TCP 127.0.0.1:42101 (LISTEN)\n"
            "language_ 123 me   13u  IPv6 0x2      0t0  TCP [::1]:42102 (LISTEN)\n"
            "language_ 123 me   14u  IPv4 0x3      0t0  TCP 127.0.0.1:42101 (LISTEN)\n"
            "language_ 123 me   15u  IPv4 0x4      0t0  TCP 127.0.0.1:5000->1.2.3.4:443 (ESTABLISHED)\n"
        )
        assert parse_lsof_ports(output) == [42101, 42102]

    def test_empty_output(self) -> None:
        assert parse_lsof_ports("") == []


class TestDiscover:

    @pytest.mark.parametrize(
        "overrides",
        [{"process_name": ""}, {"markers": []}, {"csrf_flag": ""}],
    )
    def test_invalid_options(self, overrides: dict) -> None:
        with pytest.raises(ConfigError):
            discover(_options(**overrides))

    def test_finds_process_ports_and_flags(self, processes, ports) -> None:
        processes.append((7, "/usr/bin/unrelated --csrf_token nope"))
        processes.append((123, WINDSURF_CMD))
        ports[123] = [42101, 42102]

        result = discover(_options())

        assert result == DiscoveryResult(
            pid=123,
            csrf="abc123",
            ports=[42101, 42102],
            extra={"windsurf_version": "1.9.2"},
            extension_port=42100,
        )

    def test_no_matching_process(self, processes, ports) -> None:
        processes.append((7, "/usr/bin/python script.py"))
        assert discover(_options()) is None

    def test_ide_name_flag_takes_precedence_over_path(self, processes, ports) -> None:
        # Path says windsurf, flag says windsurf-next.
        processes.append((5, "/opt/windsurf/language_server --ide_name windsurf-next --csrf_token t"))
        ports[5] = [1000]
        assert discover(_options(markers=["windsurf"])) is None
        result = discover(_options(markers=["windsurf-next"]))
        assert result is not None
        assert result.pid == 5

    def test_app_data_dir_flag_identifies_variant(self, processes, ports) -> None:
        processes.append((9, "language_server --app_data_dir antigravity --csrf_token t"))
        ports[9] = [2000]
        result = discover(_options(markers=["antigravity"]))
        assert result is not None
        assert result.ports == [2000]

    def test_path_marker_match(self, processes, ports) -> None:
        processes.append((11, "/home/me/.windsurf/bin/windsurf/language_server --csrf_token t"))
        ports[11] = [3000]
        assert discover(_options()) is not None

    def test_missing_csrf_token(self, processes, ports) -> None:
        processes.append((123, "/x/windsurf/language_server --extension_server_port 42100"))
        ports[123] = [42101]
        assert discover(_options()) is None

    def test_no_ports_and_no_declared_port(self, processes, ports) -> None:
        processes.append((123, "/x/windsurf/language_server --csrf_token abc123"))
        assert discover(_options()) is None

    def test_declared_port_alone_is_enough(self, processes, ports) -> None:
        processes.append((123, "/x/windsurf/language_server --csrf_token abc123 --extension_server_port 42100"))
        result = discover(_options())
        assert result is not None
        assert result.ports == []
        assert result.extension_port == 42100

    def test_unparsable_declared_port_is_ignored(self, processes, ports) -> None:
        processes.append((123, "/x/windsurf/language_server --csrf_token abc --extension_server_port nope"))
        ports[123] = [42101]
        result = discover(_options())
        assert result is not None
        assert result.extension_port is None

    def test_enumeration_failure_is_absence(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken():
            raise psutil.AccessDenied()
            yield  # pragma: no cover

        monkeypatch.setattr(discovery, "list_processes", broken)
        assert discover(_options()) is None


class TestFindWorkingPort:

    def test_prefers_https_then_http_per_port(self) -> None:
        tried: list[tuple[str, int]] = []

        def probe(scheme: str, port: int) -> bool:
            tried.append((scheme, port))
            return (scheme, port) == ("http", 2)

        result = DiscoveryResult(pid=1, csrf="c", ports=[1, 2, 3])
        assert find_working_port(result, probe) == (2, "http")
        assert tried == [("https", 1), ("http", 1), ("https", 2), ("http", 2)]

    def test_falls_back_to_extension_port(self) -> None:
        result = DiscoveryResult(pid=1, csrf="c", ports=[1], extension_port=42100)
        assert find_working_port(result, lambda scheme, port: False) == (42100, "http")

    def test_nothing_answers(self) -> None:
        result = DiscoveryResult(pid=1, csrf="c", ports=[1])
        assert find_working_port(result, lambda scheme, port: False) is None


class TestLanguageServerCalls:

    def test_probe_sends_csrf_and_accepts_any_status(self, recording_transport) -> None:
        transport = recording_transport([httpx.Response(404)])
        probe = make_probe("abc123", "svc/GetUnleashData", {"context": {}}, transport)

        assert probe("http", 42101)
        sent = transport.requests[0]
        assert str(sent.url) == "http://127.0.0.1:42101/svc/GetUnleashData"
        assert sent.headers[CSRF_HEADER] == "abc123"
        assert sent.headers["Connect-Protocol-Version"] == "1"
        assert json.loads(sent.content) == {"context": {}}

    def test_probe_fails_on_transport_error(self, recording_transport) -> None:
        transport = recording_transport([httpx.ConnectError("refused")])
        probe = make_probe("abc123", "svc/GetUnleashData", {}, transport)
        assert not probe("https", 42101)

    def test_call_json_returns_object(self, recording_transport) -> None:
        transport = recording_transport([httpx.Response(200, json={"userStatus": {}})])
        data = call_json("http", 42101, "abc123", "svc/GetUserStatus", {"metadata": {}}, transport)
        assert data == {"userStatus": {}}
        assert transport.requests[0].headers[CSRF_HEADER] == "abc123"

    @pytest.mark.parametrize(
        "reply",
        [
            httpx.Response(500, json={"error": "x"}),
            httpx.Response(200, json=[1, 2]),
            httpx.Response(200, text="not json"),
            httpx.ConnectError("refused"),
        ],
    )
    def test_call_json_without_usable_answer(self, recording_transport, reply) -> None:
        transport = recording_transport([reply])
        assert call_json("https", 42101, "abc123", "svc/GetUserStatus", {}, transport) is None


class TestClientOs:
    @pytest.mark.parametrize(
        ("system", "expected"),
        [("Darwin", "macos"), ("Windows", "windows"), ("Linux", "linux"), ("", "linux")],
    )
    def test_names(self, monkeypatch, system, expected) -> None:
        monkeypatch.setattr(discovery.platform, "system", lambda: system)
        assert client_os() == expected
