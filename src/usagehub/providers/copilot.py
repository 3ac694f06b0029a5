"""GitHub Copilot quota via ``api.github.com/copilot_internal/user``.

The token is the GitHub OAuth token the ``gh`` CLI already holds. Once a
token from ``gh`` has worked it is cached in our own Keychain item and in
``<plugin_data_dir>/auth.json`` so later queries skip the subprocess. A
cached token the API rejects is dropped and ``gh`` is asked again.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional, Sequence

import httpx

from usagehub.config import write_text
from usagehub.exceptions import AuthError, ProviderError, TransportError
from usagehub.models import (
    MUTED_COLOR,
    MetricLine,
    QueryResult,
    badge_line,
    clamp,
    percent_format,
    progress_line,
)
from usagehub.providers.base import Provider
from usagehub.runtime import http, keychain
from usagehub.runtime.auth import is_auth_status
from usagehub.runtime.credentials import (
    CommandSource,
    Credential,
    CredentialChain,
    CredentialSource,
    EnvSource,
    FileSource,
    KeychainSource,
    SourceKind,
    json_field,
)
from usagehub.runtime.env import PluginEnv
from usagehub.values import get_mapping, get_number, get_string, number, plan_label, to_iso, try_parse_json_map

CACHE_SERVICE = "usagehub-copilot"
GH_KEYCHAIN_SERVICE = "gh:github.com"
STATE_FILENAME = "auth.json"
USAGE_URL = "https://api.github.com/copilot_internal/user"

GH_TOKEN_COMMANDS = (
    ("gh", "auth", "token", "--hostname", "github.com"),
    ("gh", "auth", "token", "-h", "github.com"),
    ("gh", "auth", "token"),
)
TOKEN_ENV_VARS = ("GH_TOKEN", "GITHUB_TOKEN")

THIRTY_DAYS_MS = 30 * 24 * 60 * 60 * 1000

NOT_LOGGED_IN = "Not logged in. Run `gh auth login` first."
TOKEN_INVALID = "Token invalid. Run `gh auth login` to re-authenticate."
CONNECTION_FAILED = "Usage request failed. Check your connection."


def default_gh_sources() -> list[CredentialSource]:
    """Where ``gh`` keeps its token, most direct first."""
    return [
        KeychainSource(GH_KEYCHAIN_SERVICE),
        CommandSource(GH_TOKEN_COMMANDS),
        EnvSource(TOKEN_ENV_VARS),
    ]


class CopilotProvider(Provider):
    """Reports premium-request and chat quotas for Copilot plans.

    Args:
        gh_sources: Replacement for :func:`default_gh_sources`, for tests.
        transport: httpx transport override, for tests.
    """

    def __init__(
        self,
        gh_sources: Optional[Sequence[CredentialSource]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._gh_sources = list(gh_sources) if gh_sources is not None else None
        self._transport = transport

    @property
    def id(self) -> str:
        return "copilot"

    def query(self, env: PluginEnv) -> QueryResult:
        state_path = env.plugin_data_dir / STATE_FILENAME
        gh_chain = CredentialChain(self._gh_sources if self._gh_sources is not None else default_gh_sources())
        chain = CredentialChain([
            KeychainSource(CACHE_SERVICE, extract=json_field("token")),
            *gh_chain.sources,
            FileSource(state_path, extract=json_field("token")),
        ])

        credential = chain.load()
        if credential is None:
            raise ProviderError(NOT_LOGGED_IN)

        response = self._fetch_usage(credential.secret)
        if is_auth_status(response.status_code) and _is_cached(credential):
            env.logger.info("cached token invalid, trying fallback sources")
            self._clear_cache(env, state_path)
            fallback = gh_chain.load()
            if fallback is not None:
                response = self._fetch_usage(fallback.secret)
                credential = fallback

        if is_auth_status(response.status_code):
            raise AuthError(TOKEN_INVALID)
        if not response.is_success:
            raise ProviderError(
                f"Usage request failed (HTTP {response.status_code}). Try again later."
            )

        if credential.source in (SourceKind.KEYCHAIN, SourceKind.CLI) and not _is_cached(credential):
            self._save_cache(env, state_path, credential.secret)

        data = try_parse_json_map(response.text)
        if data is None:
            raise ProviderError("Usage response invalid. Try again later.")

        lines = _usage_lines(data)
        if not lines:
            lines.append(badge_line("Status", "No usage data", color=MUTED_COLOR))
        return QueryResult(plan=plan_label(get_string(data, "copilot_plan")), lines=lines)

    def _fetch_usage(self, token: str) -> httpx.Response:
        try:
            return http.request(
                "GET",
                USAGE_URL,
                headers={
                    "Authorization": f"token {token}",
                    "Accept": "application/json",
                    "Editor-Version": "vscode/1.96.2",
                    "Editor-Plugin-Version": "copilot-chat/0.26.7",
                    "User-Agent": "GitHubCopilotChat/0.26.7",
                    "X-Github-Api-Version": "2025-04-01",
                },
                timeout=http.DEFAULT_TIMEOUT,
                transport=self._transport,
            )
        except TransportError as exc:
            raise ProviderError(CONNECTION_FAILED) from exc

    # ------------------------------------------------------------------
    # Token cache
    # ------------------------------------------------------------------

    @staticmethod
    def _save_cache(env: PluginEnv, state_path: Path, token: str) -> None:
        blob = json.dumps({"token": token})
        try:
            keychain.write_generic_password(CACHE_SERVICE, blob)
        except TransportError as exc:
            env.logger.debug("keychain cache not written: %s", exc)
        try:
            write_text(state_path, blob)
        except OSError as exc:
            env.logger.warning("cannot write %s: %s", state_path, exc)

    @staticmethod
    def _clear_cache(env: PluginEnv, state_path: Path) -> None:
        try:
            keychain.delete_generic_password(CACHE_SERVICE)
        except TransportError as exc:
            env.logger.debug("keychain cache not deleted: %s", exc)
        try:
            write_text(state_path, "null")
        except OSError as exc:
            env.logger.warning("cannot clear %s: %s", state_path, exc)


def _is_cached(credential: Credential) -> bool:
    if credential.source == SourceKind.KEYCHAIN:
        return credential.location == CACHE_SERVICE
    return credential.source == SourceKind.FILE


def _snapshot_line(label: str, snapshot: Optional[dict[str, Any]], reset_date: Any) -> Optional[MetricLine]:
    remaining = get_number(snapshot, "percent_remaining")
    if remaining is None:
        return None
    return progress_line(
        label,
        clamp(100 - remaining, 0, 100),
        100,
        percent_format(),
        resets_at=to_iso(reset_date),
        period_duration_ms=THIRTY_DAYS_MS,
    )


def _limited_line(label: str, remaining_value: Any, total_value: Any, reset_date: Any) -> Optional[MetricLine]:
    remaining = number(remaining_value)
    total = number(total_value)
    if remaining is None or total is None or total <= 0:
        return None
    used_percent = clamp(int((total - remaining) / total * 100 + 0.5), 0, 100)
    return progress_line(
        label,
        used_percent,
        100,
        percent_format(),
        resets_at=to_iso(reset_date),
        period_duration_ms=THIRTY_DAYS_MS,
    )


def _usage_lines(data: dict[str, Any]) -> list[MetricLine]:
    lines: list[MetricLine] = []

    snapshots = get_mapping(data, "quota_snapshots")
    if snapshots is not None:
        reset_date = data.get("quota_reset_date")
        for key, label in (("premium_interactions", "Premium"), ("chat", "Chat")):
            line = _snapshot_line(label, get_mapping(snapshots, key), reset_date)
            if line is not None:
                lines.append(line)

    limited = get_mapping(data, "limited_user_quotas")
    monthly = get_mapping(data, "monthly_quotas")
    if limited is not None and monthly is not None:
        reset_date = data.get("limited_user_reset_date")
        for key, label in (("chat", "Chat"), ("completions", "Completions")):
            line = _limited_line(label, limited.get(key), monthly.get(key), reset_date)
            if line is not None:
                lines.append(line)

    return lines
