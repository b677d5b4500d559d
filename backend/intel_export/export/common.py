from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
import math
import re
from typing import Any, Mapping
from urllib.parse import urlparse

_HTML_TAG_PATTERN = re.compile(r"<[^>]+>")
_DIGITS_PATTERN = re.compile(r"^-?\d+(?:\.\d+)?$")
_REDUCED_ISO_DATE_PATTERN = re.compile(r"(\d{4})(?:-(\d{2}))?")


def _as_dict(value: object) -> dict[str, object]:
    if isinstance(value, dict):
        return value
    return {}


def _as_optional_mapping(value: object) -> Mapping[str, Any] | None:
    if isinstance(value, Mapping):
        return value
    return None


def _as_str_list(value: object) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return []


def _as_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _dedupe_preserve_order(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_iso_timestamp(value: datetime) -> str:
    """Render as `YYYY-MM-DDTHH:MM:SS.mmmZ`; naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def compact_timestamp(value: datetime) -> str:
    return format_iso_timestamp(value)[:19].replace("-", "").replace(":", "").replace("T", "")


def _from_epoch_millis(value: float) -> datetime | None:
    if math.isnan(value) or math.isinf(value):
        return None
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _as_utc(value: datetime) -> datetime | None:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    try:
        return value.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        return None


def _from_reduced_iso(match: re.Match[str]) -> datetime | None:
    year, month = match.group(1), match.group(2)
    try:
        return datetime(int(year), int(month or 1), 1, tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_timestamp(value: object) -> datetime | None:
    """Parse a feed timestamp into an aware UTC datetime, or None if unusable.

    Numbers and longer digit strings are epoch milliseconds; `YYYY` and
    `YYYY-MM` are reduced-precision ISO dates. Values that cannot be shifted
    to UTC without leaving the datetime range are unusable.
    """
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_epoch_millis(float(value))
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    reduced = _REDUCED_ISO_DATE_PATTERN.fullmatch(text)
    if reduced is not None:
        return _from_reduced_iso(reduced)
    if _DIGITS_PATTERN.fullmatch(text):
        return _from_epoch_millis(float(text))

    iso_text = f"{text[:-1]}+00:00" if text.endswith(("Z", "z")) else text
    try:
        parsed = datetime.fromisoformat(iso_text)
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            return None
    if parsed is None:
        return None
    return _as_utc(parsed)


def strip_html(value: str) -> str:
    return " ".join(_HTML_TAG_PATTERN.sub("", value).split())


def host_label(link: str) -> str | None:
    try:
        hostname = urlparse(link.strip()).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    if hostname.startswith("www."):
        hostname = hostname[4:]
    label = hostname.split(".")[0]
    return label.upper() or None


def _coerce_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed
