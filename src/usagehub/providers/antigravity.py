"""Antigravity per-model quotas read from the editor's language server.

Antigravity ships the same ``language_server`` binary as Windsurf, started
with ``--ide_name antigravity`` (or from an ``/antigravity/`` install path).
No API key is needed: ``GetUserStatus`` answers with the plan and one
quota per model, and older servers that lack it still answer
``GetCommandModelConfigs`` with the model list alone.

Several model variants share one quota (``"Claude Sonnet (Thinking)"`` and
``"Claude Sonnet"``), so labels are stripped of trailing parentheticals and
the most-used variant is reported.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from usagehub.exceptions import ProviderError
from usagehub.models import MetricLine, QueryResult, clamp, percent_format, progress_line, round_to
from usagehub.providers.base import Provider
from usagehub.runtime import discovery
from usagehub.runtime.discovery import LS_SERVICE
from usagehub.runtime.env import PluginEnv
from usagehub.values import array, get_mapping, get_number, get_string, mapping, to_iso

IDE_NAME = "antigravity"
NOT_RUNNING = "Start Antigravity and try again."
NO_DATA = "No data from language server."
NO_USAGE = "No usage data available."

FIVE_HOURS_MS = 5 * 60 * 60 * 1000

DISCOVERY_OPTIONS = discovery.DiscoveryOptions(
    process_name="language_server",
    markers=[IDE_NAME],
    csrf_flag="--csrf_token",
    port_flag="--extension_server_port",
)


def normalize_label(label: str) -> str:
    """Strip trailing ``(...)`` groups: ``"Gemini 3 Pro (High)"`` -> ``"Gemini 3 Pro"``."""
    text = label.strip()
    while text.endswith(")"):
        start = text.rfind("(")
        if start < 0:
            break
        text = text[:start].strip()
    return text


def model_sort_key(label: str) -> str:
    """Gemini Pro, other Gemini, Claude Opus, other Claude, then the rest."""
    lower = label.lower()
    if "gemini" in lower and "pro" in lower:
        group = "0a"
    elif "gemini" in lower:
        group = "0b"
    elif "claude" in lower and "opus" in lower:
        group = "1a"
    elif "claude" in lower:
        group = "1b"
    else:
        group = "2"
    return f"{group}_{label}"


class AntigravityProvider(Provider):
    """Reports remaining model quota for Antigravity.

    Args:
        transport: httpx transport override, for tests.
    """

    def __init__(self, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._transport = transport

    @property
    def id(self) -> str:
        return "antigravity"

    def query(self, env: PluginEnv) -> QueryResult:
        found = discovery.discover(DISCOVERY_OPTIONS)
        if found is None:
            raise ProviderError(NOT_RUNNING)

        probe_body = {
            "context": {
                "properties": {
                    "devMode": "false",
                    "extensionVersion": "unknown",
                    "ide": IDE_NAME,
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
            raise ProviderError(NOT_RUNNING)
        port, scheme = target

        body = {
            "metadata": {
                "ideName": IDE_NAME,
                "extensionName": IDE_NAME,
                "ideVersion": "unknown",
                "locale": "en",
            }
        }
        plan = ""
        data = self._call(port, scheme, found.csrf, "GetUserStatus", body)
        user_status = get_mapping(data, "userStatus")
        if user_status is not None:
            plan_info = get_mapping(get_mapping(user_status, "planStatus"), "planInfo")
            plan = get_string(plan_info, "planName") or ""
            cascade = get_mapping(user_status, "cascadeModelConfigData")
            configs = array(cascade.get("clientModelConfigs")) if cascade else None
        else:
            env.logger.debug("GetUserStatus unavailable, falling back to GetCommandModelConfigs")
            data = self._call(port, scheme, found.csrf, "GetCommandModelConfigs", body)
            configs = array(data.get("clientModelConfigs")) if data else None

        if not configs:
            raise ProviderError(NO_DATA)

        lines = _model_lines(configs)
        if not lines:
            raise ProviderError(NO_USAGE)
        return QueryResult(plan=plan, lines=lines)

    def _call(self, port: int, scheme: str, csrf: str, method: str, body: Any) -> Optional[dict[str, Any]]:
        return discovery.call_json(scheme, port, csrf, f"{LS_SERVICE}/{method}", body, self._transport)


def _model_lines(configs: list[Any]) -> list[MetricLine]:
    # label -> (remaining fraction, reset time)
    lowest: dict[str, tuple[float, str]] = {}
    for entry in configs:
        config = mapping(entry)
        quota = get_mapping(config, "quotaInfo")
        remaining = get_number(quota, "remainingFraction")
        label = get_string(config, "label")
        if remaining is None or label is None:
            continue
        name = normalize_label(label)
        if name not in lowest or remaining < lowest[name][0]:
            lowest[name] = (remaining, get_string(quota, "resetTime") or "")

    lines: list[MetricLine] = []
    for name in sorted(lowest, key=model_sort_key):
        remaining, reset_time = lowest[name]
        used = round_to((1 - clamp(remaining, 0, 1)) * 100, 2)
        lines.append(progress_line(
            name,
            used,
            100,
            percent_format(),
            resets_at=to_iso(reset_time),
            period_duration_ms=FIVE_HOURS_MS,
        ))
    return lines
