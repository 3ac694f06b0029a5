"""Built-in usage providers.

Each provider lives in its own module and subclasses
:class:`~usagehub.providers.base.Provider`. :func:`builtin_providers` returns
one fresh instance of each for the :class:`~usagehub.manager.Manager`.
"""

from __future__ import annotations

from usagehub.providers.antigravity import AntigravityProvider
from usagehub.providers.base import Provider
from usagehub.providers.claude import ClaudeProvider
from usagehub.providers.codex import CodexProvider
from usagehub.providers.copilot import CopilotProvider
from usagehub.providers.cursor import CursorProvider
from usagehub.providers.mock import MockProvider
from usagehub.providers.windsurf import WindsurfProvider

__all__ = [
    "AntigravityProvider",
    "ClaudeProvider",
    "CodexProvider",
    "CopilotProvider",
    "CursorProvider",
    "MockProvider",
    "Provider",
    "WindsurfProvider",
    "builtin_providers",
]


def builtin_providers() -> list[Provider]:
    return [
        AntigravityProvider(),
        ClaudeProvider(),
        CodexProvider(),
        CopilotProvider(),
        CursorProvider(),
        MockProvider(),
        WindsurfProvider(),
    ]
