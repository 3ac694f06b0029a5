"""Credential lookup across competing storage backends.

Vendor tools keep their tokens in different places depending on platform
and version: the macOS Keychain, a JSON file in the home directory, behind
a companion CLI (``gh auth token``), or in an environment variable for
headless setups. A :class:`CredentialChain` tries a provider's sources in
order and returns the first usable :class:`Credential`.

Every credential records where it came from (:attr:`Credential.source` and
:attr:`Credential.location`). When a provider refreshes an OAuth token it
hands the updated blob back to :meth:`CredentialChain.save`, which writes
only to that origin, and only if the origin is a file or the Keychain.
Tokens obtained from a CLI or the environment belong to another tool and
are never written.

Example::

    chain = CredentialChain([
        FileSource("~/.claude/.credentials.json", extract=json_field("claudeAiOauth", "accessToken")),
        KeychainSource("Claude Code-credentials", extract=json_field("claudeAiOauth", "accessToken")),
    ])
    credential = chain.load()
"""

from __future__ import annotations

import binascii
import enum
import logging
import os
import re
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from pydantic import BaseModel, Field

from usagehub.config import expand_path, write_text
from usagehub.exceptions import TransportError
from usagehub.runtime import keychain
from usagehub.values import decode_base64, try_parse_json_map

logger = logging.getLogger(__name__)

_HEX = re.compile(r"^[0-9a-fA-F]+$")
CLI_BASE64_PREFIX = "go-keyring-base64:"
CLI_TIMEOUT = 10

Extracted = tuple[str, dict[str, Any]]
Extractor = Callable[[str], Optional[Extracted]]


class SourceKind(str, enum.Enum):
    """Where a credential was read from."""

    FILE = "file"
    KEYCHAIN = "keychain"
    CLI = "cli"
    ENV = "env"


WRITABLE_KINDS = frozenset({SourceKind.FILE, SourceKind.KEYCHAIN})


class Credential(BaseModel):
    """A secret plus its provenance.

    Attributes:
        source: Kind of store the secret was read from.
        location: File path, Keychain service, command line, or variable
            name identifying the exact origin.
        secret: The token itself.
        data: The full decoded JSON blob when the stored value was JSON.
            Providers mutate this during a refresh and pass it back for
            write-back.
    """

    source: SourceKind
    location: str
    secret: str
    data: dict[str, Any] = Field(default_factory=dict)


# --- Decoding ---


def parse_credential_json(text: str) -> Optional[dict[str, Any]]:
    """Decode a stored credential blob.

    Accepts plain JSON, or JSON wrapped in a hex string (optionally
    ``0x``-prefixed) as written by some Keychain integrations.
    """
    parsed = try_parse_json_map(text)
    if parsed is not None:
        return parsed

    hex_text = text.strip()
    if hex_text[:2] in ("0x", "0X"):
        hex_text = hex_text[2:]
    if not hex_text or len(hex_text) % 2 != 0 or not _HEX.match(hex_text):
        return None
    try:
        decoded = binascii.unhexlify(hex_text).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    return try_parse_json_map(decoded)


def normalize_cli_token(raw: str) -> str:
    """Strip whitespace and unwrap the ``go-keyring-base64:`` convention."""
    token = raw.strip()
    if token.startswith(CLI_BASE64_PREFIX):
        decoded = decode_base64(token[len(CLI_BASE64_PREFIX):])
        if decoded is not None:
            token = decoded
    return token.strip()


def raw_secret(text: str) -> Optional[Extracted]:
    """Extractor for stores holding the bare token."""
    token = normalize_cli_token(text)
    return (token, {}) if token else None


def json_field(*path: str) -> Extractor:
    """Build an extractor that decodes a JSON blob and follows *path* to the token."""

    def extract(text: str) -> Optional[Extracted]:
        data = parse_credential_json(text)
        if data is None:
            return None
        node: Any = data
        for key in path:
            if not isinstance(node, dict):
                return None
            node = node.get(key)
        if not isinstance(node, str) or not node.strip():
            return None
        return node, data

    return extract


# --- Sources ---


class CredentialSource(ABC):
    """One place a credential may live."""

    kind: SourceKind

    def __init__(self, extract: Extractor = raw_secret) -> None:
        self._extract = extract

    @property
    @abstractmethod
    def location(self) -> str:
        ...

    @abstractmethod
    def load(self) -> Optional[Credential]:
        """Return the credential, or ``None`` if absent or unusable."""
        ...

    def write(self, text: str) -> None:
        raise TypeError(f"{self.kind.value} credentials are read-only")

    def _make(self, text: str, location: Optional[str] = None) -> Optional[Credential]:
        extracted = self._extract(text)
        if extracted is None:
            return None
        secret, data = extracted
        return Credential(
            source=self.kind,
            location=location or self.location,
            secret=secret,
            data=data,
        )


class KeychainSource(CredentialSource):
    """A macOS Keychain generic-password item identified by service name."""

    kind = SourceKind.KEYCHAIN

    def __init__(self, service: str, extract: Extractor = raw_secret) -> None:
        super().__init__(extract)
        self._service = service

    @property
    def location(self) -> str:
        return self._service

    def load(self) -> Optional[Credential]:
        try:
            text = keychain.read_generic_password(self._service)
        except TransportError as exc:
            logger.debug("keychain %r unavailable: %s", self._service, exc)
            return None
        return self._make(text)

    def write(self, text: str) -> None:
        keychain.write_generic_password(self._service, text)

    def delete(self) -> None:
        keychain.delete_generic_password(self._service)


class FileSource(CredentialSource):
    """A plaintext file, ``~``-relative paths allowed."""

    kind = SourceKind.FILE

    def __init__(self, path: str | Path, extract: Extractor = raw_secret) -> None:
        super().__init__(extract)
        self._path = str(path)

    @property
    def location(self) -> str:
        return self._path

    def load(self) -> Optional[Credential]:
        path = expand_path(self._path)
        if not path.is_file():
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("cannot read %s: %s", path, exc)
            return None
        return self._make(text)

    def write(self, text: str) -> None:
        write_text(self._path, text)


class CommandSource(CredentialSource):
    """A companion CLI that prints the token on stdout.

    *commands* are alternative argv lists tried in order, for tools whose
    flags changed between versions.
    """

    kind = SourceKind.CLI

    def __init__(self, commands: Sequence[Sequence[str]], extract: Extractor = raw_secret) -> None:
        super().__init__(extract)
        self._commands = [list(argv) for argv in commands]

    @property
    def location(self) -> str:
        return self._commands[0][0] if self._commands else ""

    def load(self) -> Optional[Credential]:
        for argv in self._commands:
            try:
                result = subprocess.run(
                    argv,
                    capture_output=True,
                    encoding="utf-8",
                    timeout=CLI_TIMEOUT,
                )
            except (OSError, subprocess.SubprocessError, UnicodeDecodeError) as exc:
                logger.debug("%s failed: %s", " ".join(argv), exc)
                continue
            if result.returncode != 0:
                continue
            credential = self._make(result.stdout, " ".join(argv))
            if credential is not None:
                return credential
        return None


class EnvSource(CredentialSource):
    """Well-known environment variables, first non-blank wins."""

    kind = SourceKind.ENV

    def __init__(self, names: Sequence[str], extract: Extractor = raw_secret) -> None:
        super().__init__(extract)
        self._names = list(names)

    @property
    def location(self) -> str:
        return ",".join(self._names)

    def load(self) -> Optional[Credential]:
        for name in self._names:
            value = os.environ.get(name, "")
            if value.strip():
                credential = self._make(value, name)
                if credential is not None:
                    return credential
        return None


# --- Chain ---


class CredentialChain:
    """Ordered fallback over credential sources.

    Args:
        sources: Tried in order by :meth:`load`; the first credential found
            wins.
    """

    def __init__(self, sources: Sequence[CredentialSource]) -> None:
        self._sources = list(sources)

    @property
    def sources(self) -> list[CredentialSource]:
        return list(self._sources)

    def load(self) -> Optional[Credential]:
        for source in self._sources:
            credential = source.load()
            if credential is not None:
                logger.debug("credential found in %s %s", source.kind.value, credential.location)
                return credential
        return None

    def origin_of(self, credential: Credential) -> Optional[CredentialSource]:
        """Return the source *credential* was read from, if it is writable."""
        if credential.source not in WRITABLE_KINDS:
            return None
        for source in self._sources:
            if source.kind == credential.source and source.location == credential.location:
                return source
        return None

    def save(self, credential: Credential, text: str) -> bool:
        """Write *text* back to the credential's origin.

        Returns:
            ``True`` if the origin was written. ``False`` for CLI or
            environment credentials, unknown origins, and write failures
            (which are logged, not raised).
        """
        source = self.origin_of(credential)
        if source is None:
            logger.debug("not writing back %s credential", credential.source.value)
            return False
        try:
            source.write(text)
        except (OSError, TransportError) as exc:
            logger.warning("failed to write credential to %s: %s", source.location, exc)
            return False
        return True
