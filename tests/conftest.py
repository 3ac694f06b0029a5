"""Shared test fixtures for usagehub.

Provides config isolation, a scratch provider environment, a recording
httpx transport, and the CLI runner. Fixtures are discovered by pytest and
available to all test modules without explicit imports.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterator, Union

import httpx
import pytest

from usagehub.output import reset_output
from usagehub.runtime.env import PluginEnv, create_env


# ---------------------------------------------------------------------------
# Global state
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> Iterator[None]:
    """Reset the global OutputManager after every test.

    The OutputManager and the Rich log handler cache sys.stdout/sys.stderr
    at creation time; after CliRunner restores the real streams those
    references are stale.
    """
    yield
    reset_output()
    root = logging.getLogger("usagehub")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def _no_keychain(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests away from the real macOS Keychain."""
    monkeypatch.setattr("usagehub.runtime.keychain.is_supported", lambda: False)


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Forces XDG resolution with ``XDG_CONFIG_HOME`` under *tmp_path*, clears
    ``USAGEHUB_*`` variables and changes the working directory to
    *tmp_path* so the default ``usagehub/plugins`` lookup finds nothing.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("usagehub.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for var in ("USAGEHUB_PLUGINS_DIR", "USAGEHUB_DATA_DIR"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def plugin_env(tmp_path: Path) -> PluginEnv:
    """A provider environment rooted in a scratch data directory."""
    return create_env("test", tmp_path / "data")


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


Reply = Union[httpx.Response, Exception]


class RecordingTransport(httpx.MockTransport):
    """MockTransport that records requests and replays canned replies.

    *replies* is either a list consumed in order (the last one repeats) or
    a callable ``(request) -> Response``. An exception in the list is
    raised instead of answering.
    """

    def __init__(self, replies: Union[list[Reply], Callable[[httpx.Request], httpx.Response]]) -> None:
        self.requests: list[httpx.Request] = []
        self._replies = replies
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if callable(self._replies):
            return self._replies(request)
        index = min(len(self.requests), len(self._replies)) - 1
        reply = self._replies[index]
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def recording_transport() -> Callable[..., RecordingTransport]:
    return RecordingTransport


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner capturing stdout and stderr."""
    from typer.testing import CliRunner

    return CliRunner()
