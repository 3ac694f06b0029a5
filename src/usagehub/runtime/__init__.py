"""Plugin runtime: the services providers build on.

Submodules:
    env: Per-query execution environment (:func:`~usagehub.runtime.env.create_env`).
    http: One-shot HTTP requests raising ``TransportError``.
    auth: Bounded refresh-and-retry (:func:`~usagehub.runtime.auth.retry_once_on_auth`).
    credentials: Credential lookup and origin-only write-back.
    keychain: macOS Keychain through ``security``.
    discovery: Local language-server process and port discovery.
    sqlite: Read-only editor state databases.
"""

from usagehub.runtime.auth import is_auth_status, retry_once_on_auth
from usagehub.runtime.env import PluginEnv, create_env

__all__ = ["PluginEnv", "create_env", "is_auth_status", "retry_once_on_auth"]
