"""Permissive accessors for loosely-typed JSON payloads.

Vendor APIs, local databases, and credential blobs change shape without
notice, so providers never validate them against a fixed schema. Instead
they decode with :mod:`json` and probe the result with the typed accessors
in this module, each of which returns ``None`` when the value is missing or
of the wrong type::

    data = try_parse_json_map(response.text) or {}
    window = get_mapping(data, "five_hour")
    used = get_number(window, "utilization")
    if used is not None:
        ...

Accessors accept ``None`` containers so lookups can be chained without
intermediate checks. :func:`number` treats numeric strings as numbers and
rejects booleans, NaN, and infinities.

The module also hosts the timestamp helpers (:func:`to_iso`,
:func:`parse_date_ms`) and small formatting helpers (:func:`plan_label`,
:func:`dollars`) shared by providers.
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from usagehub.models import round_to

_NUMERIC = re.compile(r"^-?\d+(\.\d+)?$")
_TZ_NO_COLON = re.compile(r"[+-]\d{4}$")
_TIMESTAMP = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})"
    r"(?:T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})?)?$"
)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# --- Scalar coercion ---


def number(value: Any) -> Optional[float]:
    """Coerce *value* to a finite float, accepting numeric strings."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(result):
        return None
    return result


def integer(value: Any) -> Optional[int]:
    """Like :func:`number` but truncated toward zero."""
    result = number(value)
    if result is None:
        return None
    return int(result)


def string(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def boolean(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def mapping(value: Any) -> Optional[dict[str, Any]]:
    return value if isinstance(value, dict) else None


def array(value: Any) -> Optional[list[Any]]:
    return value if isinstance(value, list) else None


# --- Keyed lookups ---


def get_mapping(container: Optional[Mapping[str, Any]], key: str) -> Optional[dict[str, Any]]:
    if not container:
        return None
    return mapping(container.get(key))


def get_string(container: Optional[Mapping[str, Any]], key: str) -> Optional[str]:
    if not container:
        return None
    return string(container.get(key))


def get_number(container: Optional[Mapping[str, Any]], key: str) -> Optional[float]:
    if not container:
        return None
    return number(container.get(key))


def get_bool(container: Optional[Mapping[str, Any]], key: str) -> Optional[bool]:
    if not container:
        return None
    return boolean(container.get(key))


# --- Decoding ---


def try_parse_json_map(text: Optional[str]) -> Optional[dict[str, Any]]:
    """Decode *text* as a JSON object, returning ``None`` on any failure."""
    if text is None or not text.strip():
        return None
    try:
        return mapping(json.loads(text))
    except ValueError:
        return None


def decode_base64(value: str) -> Optional[str]:
    """Decode standard or URL-safe base64, with or without padding."""
    padded = value.strip() + "=" * (-len(value.strip()) % 4)
    for altchars in (None, b"-_"):
        try:
            raw = base64.b64decode(padded, altchars=altchars, validate=True)
        except (binascii.Error, ValueError):
            continue
        return raw.decode("utf-8", errors="replace")
    return None


def decode_jwt_payload(token: str) -> Optional[dict[str, Any]]:
    """Return the claims of a JWT without verifying its signature."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    decoded = decode_base64(parts[1])
    if decoded is None:
        return None
    return try_parse_json_map(decoded)


# --- Time ---


def _parse_timestamp(text: str) -> Optional[datetime]:
    match = _TIMESTAMP.match(text)
    if match is None:
        return None
    year, month, day, hour, minute, second, fraction, tz = match.groups()
    micros = int((fraction or "0")[:6].ljust(6, "0"))
    if tz is None or tz == "Z":
        tzinfo = timezone.utc
    else:
        sign = 1 if tz[0] == "+" else -1
        tzinfo = timezone(sign * timedelta(hours=int(tz[1:3]), minutes=int(tz[4:6])))
    try:
        return datetime(
            int(year), int(month), int(day),
            int(hour or 0), int(minute or 0), int(second or 0), micros,
            tzinfo=tzinfo,
        )
    except ValueError:
        return None


def _to_millis(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def _format_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S") + f".{utc.microsecond // 1000:03d}Z"


def _number_to_iso(value: float) -> str:
    if not math.isfinite(value):
        return ""
    millis = value * 1000 if abs(value) < 1e10 else value
    try:
        return _format_iso(_EPOCH + timedelta(milliseconds=int(millis)))
    except OverflowError:
        return ""


def parse_date_ms(value: Any) -> Optional[int]:
    """Return *value* as epoch milliseconds.

    Numbers are taken to already be milliseconds; strings may be ISO-8601
    timestamps or numeric.
    """
    if isinstance(value, datetime):
        return _to_millis(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        moment = _parse_timestamp(text)
        if moment is not None:
            return _to_millis(moment)
        parsed = number(text)
        return int(parsed) if parsed is not None else None
    return None


def to_iso(value: Any) -> str:
    """Normalise a timestamp to ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

    Accepts datetimes, epoch seconds or milliseconds (values below ``1e10``
    are seconds), and the string spellings vendors actually send: ISO-8601
    with or without zone, ``"2025-01-01 10:00:00"``, a ``" UTC"`` suffix, and
    ``+hhmm`` offsets. Returns ``""`` when nothing matches.
    """
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, datetime):
        return _format_iso(value)
    if isinstance(value, (int, float)):
        return _number_to_iso(float(value))
    if not isinstance(value, str):
        return ""

    text = value.strip()
    if not text:
        return ""
    if text.endswith(" UTC"):
        text = text[: -len(" UTC")] + "Z"
    if " " in text and text.startswith("20"):
        text = text.replace(" ", "T", 1)
    if _NUMERIC.match(text):
        return _number_to_iso(float(text))
    if _TZ_NO_COLON.search(text):
        text = text[:-2] + ":" + text[-2:]

    moment = _parse_timestamp(text)
    if moment is None:
        return ""
    return _format_iso(moment)


def needs_refresh_by_expiry(now_ms: int, expires_at_ms: Optional[float], buffer_ms: int) -> bool:
    """True when the token expires within *buffer_ms*, or its expiry is unknown."""
    if expires_at_ms is None:
        return True
    return now_ms + buffer_ms >= expires_at_ms


def now_ms() -> int:
    return _to_millis(datetime.now(timezone.utc))


# --- Formatting ---


def plan_label(value: Optional[str]) -> str:
    """Capitalise the first letter of each word: ``"pro max"`` -> ``"Pro Max"``."""
    text = (value or "").strip()
    chars = list(text)
    for i, char in enumerate(chars):
        if char.islower() and (i == 0 or chars[i - 1].isspace()):
            chars[i] = char.upper()
    return "".join(chars)


def dollars(cents: float) -> float:
    """Convert integer-ish cents to dollars."""
    return round_to(cents, 0) / 100
