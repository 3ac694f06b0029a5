"""Discovery of IDE-embedded language servers.

Editors such as Windsurf and Antigravity run a local ``language_server``
process that exposes usage data over a Connect/JSON API on a random port.
Nothing publishes that port, so :func:`discover` finds it the hard way:

1. Scan the process table for a command line containing the server's
   binary name.
2. Tell editor variants apart by ``--ide_name`` / ``--app_data_dir`` flags,
   or by a ``/<marker>/`` segment in the binary path.
3. Read the CSRF token (and optionally a declared port) from the command
   line flags.
4. List the TCP ports the process is listening on with ``lsof``.

:func:`find_working_port` then probes the candidates, https first, because
the server answers on one port per scheme. Results are never cached: the
editor may restart its server between two queries.
"""

from __future__ import annotations

import json
import logging
import os
import platform
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, Sequence

import httpx
import psutil

from usagehub.exceptions import ConfigError, TransportError
from usagehub.models import DiscoveryResult
from usagehub.runtime import http
from usagehub.values import try_parse_json_map

logger = logging.getLogger(__name__)

IDE_NAME_FLAG = "--ide_name"
APP_DATA_DIR_FLAG = "--app_data_dir"

LSOF_CANDIDATES = ("/usr/sbin/lsof", "/usr/bin/lsof")
LSOF_TIMEOUT = 5

PROBE_TIMEOUT = 5.0
CALL_TIMEOUT = 10.0
CSRF_HEADER = "x-codeium-csrf-token"
LS_SERVICE = "exa.language_server_pb.LanguageServerService"


@dataclass
class DiscoveryOptions:
    """What to look for in the process table.

    Attributes:
        process_name: Case-insensitive substring of the server command line.
        markers: Accepted editor identities (``"windsurf"``, ``"antigravity"``).
        csrf_flag: Flag carrying the token the server expects on every call.
        port_flag: Optional flag carrying a declared fallback port.
        extra_flags: Additional flags to return verbatim, e.g. a version.
    """

    process_name: str
    markers: list[str]
    csrf_flag: str
    port_flag: Optional[str] = None
    extra_flags: list[str] = field(default_factory=list)


# --- Command line parsing ---


def extract_flag(command: str, flag: str) -> str:
    """Return the value of *flag* in *command*, or ``""``.

    Both ``--flag value`` and ``--flag=value`` spellings are recognised and
    the first occurrence wins.
    """
    parts = command.split()
    prefix = flag + "="
    for i, part in enumerate(parts):
        if part == flag and i + 1 < len(parts):
            return parts[i + 1]
        if part.startswith(prefix):
            return part[len(prefix):]
    return ""


def _matches_marker(command: str, markers: Sequence[str]) -> bool:
    ide_name = extract_flag(command, IDE_NAME_FLAG).lower()
    app_data_dir = extract_flag(command, APP_DATA_DIR_FLAG).lower()
    command_lower = command.lower()
    for marker in markers:
        marker = marker.lower()
        if ide_name:
            matched = ide_name == marker
        elif app_data_dir:
            matched = app_data_dir == marker
        else:
            matched = f"/{marker}/" in command_lower
        if matched:
            return True
    return False


# --- OS inspection ---


def list_processes() -> Iterator[tuple[int, str]]:
    """Yield ``(pid, command line)`` for every visible process.

    Processes that exit or deny access mid-scan are skipped.
    """
    for proc in psutil.process_iter(["pid", "cmdline"]):
        try:
            cmdline = proc.info.get("cmdline") or []
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if cmdline:
            yield proc.info["pid"], " ".join(cmdline)


def _find_lsof() -> Optional[str]:
    for candidate in LSOF_CANDIDATES:
        if os.path.exists(candidate):
            return candidate
    return shutil.which("lsof")


def parse_lsof_ports(output: str) -> list[int]:
    """Extract listening TCP ports from ``lsof -nP -iTCP -sTCP:LISTEN`` output."""
    ports: set[int] = set()
    for line in output.splitlines():
        if "LISTEN" not in line:
            continue
        for token in reversed(line.split()):
            _, sep, port_text = token.rpartition(":")
            if not sep:
                continue
            try:
                port = int(port_text)
            except ValueError:
                continue
            if 0 < port < 65536:
                ports.add(port)
                break
    return sorted(ports)


def listening_ports(pid: int) -> list[int]:
    """Return the sorted TCP listening ports of *pid*, or ``[]`` if unknown."""
    lsof = _find_lsof()
    if lsof is None:
        logger.debug("lsof not available, cannot list ports for pid %d", pid)
        return []
    try:
        result = subprocess.run(
            [lsof, "-nP", "-iTCP", "-sTCP:LISTEN", "-a", "-p", str(pid)],
            capture_output=True,
            text=True,
            timeout=LSOF_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("lsof failed for pid %d: %s", pid, exc)
        return []
    if result.returncode != 0:
        return []
    return parse_lsof_ports(result.stdout)


# --- Discovery ---


def discover(options: DiscoveryOptions) -> Optional[DiscoveryResult]:
    """Locate a running language server matching *options*.

    Returns:
        A :class:`~usagehub.models.DiscoveryResult`, or ``None`` when no
        process matches, the CSRF flag is missing, or the process has
        neither listening ports nor a declared port.

    Raises:
        ConfigError: If *options* lacks a process name, markers, or CSRF flag.
    """
    if not options.process_name:
        raise ConfigError("process name is required")
    if not options.markers:
        raise ConfigError("at least one marker is required")
    if not options.csrf_flag:
        raise ConfigError("csrf flag is required")

    needle = options.process_name.lower()
    found: Optional[tuple[int, str]] = None
    try:
        for pid, command in list_processes():
            if needle not in command.lower():
                continue
            if not _matches_marker(command, options.markers):
                continue
            found = (pid, command)
            break
    except (psutil.Error, OSError) as exc:
        logger.debug("process enumeration failed: %s", exc)
        return None

    if found is None:
        return None
    pid, command = found

    csrf = extract_flag(command, options.csrf_flag)
    if not csrf:
        return None

    extension_port: Optional[int] = None
    if options.port_flag:
        raw = extract_flag(command, options.port_flag)
        try:
            extension_port = int(raw) if raw else None
        except ValueError:
            extension_port = None

    extra: dict[str, str] = {}
    for flag in options.extra_flags:
        value = extract_flag(command, flag)
        if value:
            extra[flag.lstrip("-")] = value

    ports = listening_ports(pid)
    if not ports and extension_port is None:
        return None

    return DiscoveryResult(
        pid=pid,
        csrf=csrf,
        ports=ports,
        extra=extra,
        extension_port=extension_port,
    )


# --- Talking to the server ---


def call_language_server(
    scheme: str,
    port: int,
    csrf: str,
    service: str,
    body: Any,
    timeout: float = CALL_TIMEOUT,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Response:
    """POST a Connect/JSON call to ``<scheme>://127.0.0.1:<port>/<service>``.

    Certificate verification is disabled for https since the server uses a
    self-signed certificate.

    Raises:
        TransportError: If the server cannot be reached.
    """
    scheme = scheme or "http"
    return http.request(
        "POST",
        f"{scheme}://127.0.0.1:{port}/{service}",
        headers={
            "Content-Type": "application/json",
            "Connect-Protocol-Version": "1",
            CSRF_HEADER: csrf,
        },
        body=json.dumps(body),
        timeout=timeout,
        verify=scheme != "https",
        transport=transport,
    )


def call_json(
    scheme: str,
    port: int,
    csrf: str,
    service: str,
    body: Any,
    transport: Optional[httpx.BaseTransport] = None,
) -> Optional[dict[str, Any]]:
    """Like :func:`call_language_server`, but returns the decoded JSON object.

    Transport failures, non-2xx statuses and non-object bodies all yield
    ``None``; callers treat them as "no data from this server".
    """
    try:
        response = call_language_server(scheme, port, csrf, service, body, transport=transport)
    except TransportError as exc:
        logger.debug("%s failed on %s:%d: %s", service, scheme, port, exc)
        return None
    if not response.is_success:
        return None
    return try_parse_json_map(response.text)


def client_os() -> str:
    """The ``os`` value editors report in their language-server handshake."""
    system = platform.system()
    return {"Darwin": "macos", "Windows": "windows"}.get(system, system.lower() or "linux")


Probe = Callable[[str, int], bool]


def find_working_port(result: DiscoveryResult, probe: Probe) -> Optional[tuple[int, str]]:
    """Pick the ``(port, scheme)`` to talk to.

    Each listening port is tried with https, then http. The declared
    extension port is the fallback over http.

    Args:
        result: A discovery result.
        probe: ``probe(scheme, port)`` returns True when the server answered
            without a transport error, whatever the HTTP status.
    """
    for port in result.ports:
        for scheme in ("https", "http"):
            if probe(scheme, port):
                return port, scheme
    if result.extension_port is not None:
        return result.extension_port, "http"
    return None


def make_probe(
    csrf: str,
    service: str,
    body: Any,
    transport: Optional[httpx.BaseTransport] = None,
) -> Probe:
    """Build a :data:`Probe` that calls *service* with a short timeout."""

    def probe(scheme: str, port: int) -> bool:
        try:
            call_language_server(scheme, port, csrf, service, body, PROBE_TIMEOUT, transport)
        except TransportError:
            return False
        return True

    return probe
