"""macOS Keychain access through the ``security`` command-line tool.

Generic-password items are looked up by *service* name only, which is how
the vendor CLIs store their OAuth blobs (they pick arbitrary account
names). Every function raises :class:`~usagehub.exceptions.TransportError`
on non-macOS platforms or when ``security`` fails, so callers can treat a
missing item and a missing keychain the same way.
"""

from __future__ import annotations

import platform
import re
import subprocess

from usagehub.exceptions import TransportError

SECURITY_BIN = "security"
_ACCOUNT_PATTERN = re.compile(r'"acct"<blob>="([^"]+)"')
_TIMEOUT = 10


def is_supported() -> bool:
    return platform.system() == "Darwin"


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def _run(args: list[str], failure: str) -> str:
    if not is_supported():
        raise TransportError("keychain API is only supported on macOS")
    try:
        result = subprocess.run(
            [SECURITY_BIN, *args],
            capture_output=True,
            text=True,
            timeout=_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise TransportError(f"{failure}: {exc}") from exc
    if result.returncode != 0:
        detail = _first_line(result.stderr or result.stdout) or f"exit status {result.returncode}"
        raise TransportError(f"{failure}: {detail}")
    return result.stdout


def read_generic_password(service: str) -> str:
    """Return the secret stored under *service*, stripped of surrounding whitespace."""
    return _run(["find-generic-password", "-s", service, "-w"], "keychain item not found").strip()


def write_generic_password(service: str, value: str) -> None:
    """Create or update the item for *service*, keeping its existing account name."""
    account = ""
    try:
        attributes = _run(["find-generic-password", "-s", service], "keychain item not found")
    except TransportError:
        attributes = ""
    match = _ACCOUNT_PATTERN.search(attributes)
    if match:
        account = match.group(1)

    args = ["add-generic-password", "-s", service]
    if account:
        args += ["-a", account]
    args += ["-w", value, "-U"]
    _run(args, "keychain write failed")


def delete_generic_password(service: str) -> None:
    _run(["delete-generic-password", "-s", service], "keychain delete failed")
