"""Windsurf credit usage read from the editor's embedded language server.

There is no public usage API: the data comes from ``GetUserStatus`` on the
``language_server`` process the running editor spawned. The call needs the
user's API key, which Windsurf keeps in its ``state.vscdb``. Stable and
Next builds are tried in that order; the first one running wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from usagehub.exceptions import DataError, ProviderError, TransportError
from usagehub.models import MetricLine, QueryResult, badge_line, count_format, progress_line
from usagehub.providers.base import Provider
from usagehub.runtime import discovery, sqlite
from usagehub.runtime.discovery import LS_SERVICE
from usagehub.runtime.env import PluginEnv
from usagehub.values import get_mapping, get_number, get_string, parse_date_ms, to_iso, try_parse_json_map

logger = logging.getLogger(__name__)

AUTH_STATUS_KEY = "windsurfAuthStatus"
NOT_RUNNING = "Start Windsurf and try again."


@dataclass(frozen=True)
class Variant:
    marker: str
    ide_name: str
    state_dbs: tuple[str, ...]


VARIANTS = (
    Variant(
        marker="windsurf",
        ide_name="windsurf",
        state_dbs=(
            "~/Library/Application Support/Windsurf/User/globalStorage/state.vscdb",
            "~/.config/Windsurf/User/globalStorage/state.vscdb",
        ),
    ),
    Variant(
        marker="windsurf-next",
        ide_name="windsurf-next",
        state_dbs=(
            "~/Library/Application Support/Windsurf - Next/User/globalStorage/state.vscdb",
            "~/.config/Windsurf - Next/User/globalStorage/state.vscdb",
        ),
    ),
)


def discovery_options(variant: Variant) -> discovery.DiscoveryOptions:
    return discovery.DiscoveryOptions(
        process_name="language_server",
        markers=[variant.marker],
        csrf_flag="--csrf_token",
        port_flag="--extension_server_port",
        extra_flags=["--windsurf_version"],
    )


class WindsurfProvider(Provider):
    """Reports prompt and flex credits for Windsurf plans.

    Args:
        variants: Editor builds to try, in order.
        transport: httpx transport override, for tests.
    """

    def __init__(
        self,
        variants: tuple[Variant, ...] = VARIANTS,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._variants = variants
        self._transport = transport

    @property
    def id(self) -> str:
        return "windsurf"

    def query(self, env: PluginEnv) -> QueryResult:
        for variant in self._variants:
            result = self._probe_variant(env, variant)
            if result is not None:
                return result
        raise ProviderError(NOT_RUNNING)

    def _probe_variant(self, env: PluginEnv, variant: Variant) -> Optional[QueryResult]:
        found = discovery.discover(discovery_options(variant))
        if found is None:
            env.logger.debug("no %s language server", variant.marker)
            return None

        probe_body = {
            "context": {
                "properties": {
                    "devMode": "false",
                    "extensionVersion": "unknown",
                    "ide": variant.ide_name,
                    "ideVersion": "unknown",
                    "os": discovery.client_os(),
                }
            }
        }
        probe = discovery.make_probe(
            found.csrf, f"{LS_SERVICE}/GetUnleashData", probe_body, self._transport
        )
        target = discovery.find_working_port(found, probe)
        if target is None:
            return None
        port, scheme = target

        api_key = self._load_api_key(variant)
        if not api_key:
            env.logger.debug("no API key in %s state database", variant.marker)
            return None

        version = found.extra.get("windsurf_version", "").strip() or "unknown"
        metadata = {
            "apiKey": api_key,
            "ideName": variant.ide_name,
            "ideVersion": version,
            "extensionName": variant.ide_name,
            "extensionVersion": version,
            "locale": "en",
        }
        data = discovery.call_json(
            scheme, port, found.csrf, f"{LS_SERVICE}/GetUserStatus", {"metadata": metadata}, self._transport
        )
        user_status = get_mapping(data, "userStatus")
        if user_status is None:
            return None
        return _user_status_result(user_status)

    def _load_api_key(self, variant: Variant) -> str:
        for db_path in variant.state_dbs:
            try:
                value = sqlite.read_item(db_path, AUTH_STATUS_KEY)
            except (TransportError, DataError) as exc:
                logger.debug("state database %s unusable: %s", db_path, exc)
                continue
            api_key = get_string(try_parse_json_map(value), "apiKey")
            if api_key:
                return api_key
        return ""


def _credit_line(label: str, used: float, total: float, resets_at: str, period_ms: int) -> MetricLine:
    return progress_line(
        label,
        max(used, 0),
        total,
        count_format("credits"),
        resets_at=resets_at,
        period_duration_ms=period_ms,
    )


def _user_status_result(user_status: dict[str, Any]) -> QueryResult:
    plan_status = get_mapping(user_status, "planStatus")
    plan = get_string(get_mapping(plan_status, "planInfo"), "planName") or ""

    plan_end = get_string(plan_status, "planEnd") or ""
    start_ms = parse_date_ms(get_string(plan_status, "planStart"))
    end_ms = parse_date_ms(plan_end)
    period_ms = end_ms - start_ms if start_ms is not None and end_ms is not None and end_ms > start_ms else 0

    lines: list[MetricLine] = []
    for label, total_key, used_key in (
        ("Prompt credits", "availablePromptCredits", "usedPromptCredits"),
        ("Flex credits", "availableFlexCredits", "usedFlexCredits"),
    ):
        total = get_number(plan_status, total_key)
        if total is None or total <= 0:
            continue
        used = get_number(plan_status, used_key) or 0
        lines.append(_credit_line(label, used / 100, total / 100, to_iso(plan_end), period_ms))

    if not lines:
        lines.append(badge_line("Credits", "Unlimited"))
    return QueryResult(plan=plan, lines=lines)
