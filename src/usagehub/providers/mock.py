"""Stress-test provider returning every line shape the UI must handle."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from usagehub.models import (
    QueryResult,
    badge_line,
    count_format,
    dollars_format,
    percent_format,
    progress_line,
    text_line,
)
from usagehub.providers.base import Provider
from usagehub.runtime.env import PluginEnv
from usagehub.values import to_iso

THIRTY_DAYS_MS = 30 * 24 * 60 * 60 * 1000


class MockProvider(Provider):
    @property
    def id(self) -> str:
        return "mock"

    def query(self, env: PluginEnv) -> QueryResult:
        now = datetime.now(timezone.utc)
        resets_at = to_iso(now + timedelta(days=15))
        past_reset = to_iso(now - timedelta(minutes=1))
        pct = percent_format()

        lines = [
            progress_line("Ahead pace", 30, 100, pct, resets_at, THIRTY_DAYS_MS),
            progress_line("On Track pace", 45, 100, pct, resets_at, THIRTY_DAYS_MS),
            progress_line("Behind pace", 65, 100, pct, resets_at, THIRTY_DAYS_MS),
            progress_line("Empty bar", 0, 500, dollars_format()),
            progress_line("Exactly full", 1000, 1000, count_format("tokens")),
            progress_line("Over limit!", 1337, 1000, count_format("requests")),
            progress_line("Huge numbers", 8429301, 10000000, count_format("tokens")),
            progress_line("Tiny sliver", 1, 10000, pct),
            progress_line("Almost full", 9999, 10000, pct),
            progress_line("Expired reset", 42, 100, pct, past_reset, THIRTY_DAYS_MS),
            text_line("Status", "Active"),
            text_line(
                "Very long value",
                "This is an extremely long value string that should test text "
                "overflow and wrapping behavior in the card layout",
            ),
            text_line("", "Empty label"),
            badge_line("Tier", "Enterprise", color="#8B5CF6"),
            badge_line("Alert", "Rate limited", color="#ef4444"),
            badge_line("Region", "us-east-1"),
        ]
        return QueryResult(plan="stress-test", lines=lines)
