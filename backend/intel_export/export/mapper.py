from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import hashlib
import logging
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel

from intel_export.config import Settings, settings as default_settings
from intel_export.export.common import (
    _as_optional_mapping,
    _as_str_list,
    _as_text,
    _coerce_float,
    _dedupe_preserve_order,
    _utc_now,
    format_iso_timestamp,
    host_label,
    parse_timestamp,
    strip_html,
)
from intel_export.export.records import (
    PRIORITIES,
    IntelExportRecord,
    IntelLocation,
    IntelRecordError,
    ValidationWarning,
)

logger = logging.getLogger("intel_export.mapper")

UNTITLED = "Untitled"
UNKNOWN_SOURCE = "UNKNOWN"
SUMMARY_ELLIPSIS = "…"

Clock = Callable[[], datetime]


@dataclass
class MappingResult:
    record: IntelExportRecord
    warnings: list[ValidationWarning] = field(default_factory=list)


def _feed_as_mapping(feed: object) -> Mapping[str, Any]:
    if isinstance(feed, BaseModel):
        return feed.model_dump(exclude_none=True)
    mapping = _as_optional_mapping(feed)
    if mapping is None:
        raise IntelRecordError(f"Feed record must be a mapping, got {type(feed).__name__}.")
    return mapping


def _first_text(feed: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        text = _as_text(feed.get(key)).strip()
        if text:
            return text
    return ""


def _resolve_id(feed: Mapping[str, Any], title: str, body: str) -> str:
    explicit = _first_text(feed, "id", "link")
    if explicit:
        return explicit
    digest = hashlib.sha256(f"{title}\n{body}".encode("utf-8")).hexdigest()
    return f"intel-{digest[:12]}"


def _resolve_title(
    feed: Mapping[str, Any], warnings: list[ValidationWarning], max_length: int
) -> str:
    title = _as_text(feed.get("title")).strip()
    if not title:
        warnings.append(ValidationWarning(field="title", message="Missing title; using placeholder."))
        return UNTITLED
    if len(title) > max_length:
        warnings.append(
            ValidationWarning(
                field="title",
                message=f"Title exceeds {max_length} chars; truncated.",
            )
        )
        return title[:max_length].rstrip() or UNTITLED
    return title


def _resolve_body(feed: Mapping[str, Any]) -> str:
    content = feed.get("content")
    if content is not None and _as_text(content):
        return _as_text(content)
    return _as_text(feed.get("description"))


def _resolve_created(
    feed: Mapping[str, Any], warnings: list[ValidationWarning], clock: Clock
) -> tuple[str, str | None]:
    source_key = "timestamp" if feed.get("timestamp") not in (None, "") else "pubDate"
    raw = feed.get(source_key)
    parsed = parse_timestamp(raw)
    if parsed is None:
        if raw in (None, ""):
            message = "Missing created timestamp; defaulted to export time."
        else:
            message = f"Invalid created timestamp {_as_text(raw)[:64]!r}; defaulted to export time."
        warnings.append(ValidationWarning(field="created", message=message))
        return format_iso_timestamp(clock()), source_key
    return format_iso_timestamp(parsed), source_key


def _resolve_updated(feed: Mapping[str, Any], created: str, created_from: str | None) -> str | None:
    raw = feed.get("updated")
    if raw in (None, "") and created_from == "timestamp":
        raw = feed.get("pubDate")
    parsed = parse_timestamp(raw)
    if parsed is None:
        return None
    updated = format_iso_timestamp(parsed)
    if updated == created:
        return None
    return updated


def _resolve_sources(feed: Mapping[str, Any]) -> list[str]:
    declared = [
        *_as_str_list(feed.get("source")),
        *_as_str_list(feed.get("author")),
        *_as_str_list(feed.get("sources")),
    ]
    sources = _dedupe_preserve_order(declared)
    if sources:
        return sources
    derived = host_label(_as_text(feed.get("link")))
    return [derived or UNKNOWN_SOURCE]


def _resolve_tags(
    feed: Mapping[str, Any], warnings: list[ValidationWarning], threshold: int
) -> list[str] | None:
    tags = _dedupe_preserve_order(
        [*_as_str_list(feed.get("tags")), *_as_str_list(feed.get("categories"))]
    )
    if not tags:
        return None
    if len(tags) > threshold:
        warnings.append(
            ValidationWarning(
                field="tags",
                message=f"Tag count {len(tags)} exceeds recommended maximum of {threshold}.",
            )
        )
    return tags


def _resolve_priority(feed: Mapping[str, Any]) -> str:
    candidate = _as_text(feed.get("priority")).strip().lower()
    if candidate in PRIORITIES:
        return candidate
    return "medium"


def _resolve_summary(feed: Mapping[str, Any], max_chars: int) -> str | None:
    base = _first_text(feed, "summary", "description", "content")
    if not base:
        return None
    plain = strip_html(base)
    if not plain:
        return None
    if len(plain) <= max_chars:
        return plain
    return plain[:max_chars].rstrip() + SUMMARY_ELLIPSIS


def _resolve_location(
    feed: Mapping[str, Any], warnings: list[ValidationWarning]
) -> IntelLocation | None:
    nested = _as_optional_mapping(feed.get("location"))
    source: Mapping[str, Any] = nested if nested is not None else feed

    lat_raw = next((source.get(key) for key in ("lat", "latitude") if source.get(key) is not None), None)
    lon_raw = next(
        (source.get(key) for key in ("lon", "long", "longitude") if source.get(key) is not None),
        None,
    )
    if lat_raw is None and lon_raw is None:
        return None

    lat = _coerce_float(lat_raw)
    lon = _coerce_float(lon_raw)
    if lat is None or lon is None:
        warnings.append(
            ValidationWarning(field="location", message="Location requires numeric lat and lon; omitted.")
        )
        return None
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
        warnings.append(
            ValidationWarning(
                field="location",
                message=f"Location ({lat}, {lon}) is out of bounds; omitted.",
            )
        )
        return None

    name = _as_text(source.get("name")).strip() if nested is not None else ""
    return IntelLocation(lat=lat, lon=lon, name=name or None)


def _resolve_confidence(
    feed: Mapping[str, Any], warnings: list[ValidationWarning]
) -> float | int | str | None:
    raw = feed.get("confidence")
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        return raw.strip() or None
    if isinstance(raw, (int, float)):
        numeric = _coerce_float(raw)
        if numeric is None:
            warnings.append(ValidationWarning(field="confidence", message="Confidence is not a finite number; omitted."))
            return None
        if not 0.0 <= numeric <= 1.0:
            warnings.append(
                ValidationWarning(field="confidence", message=f"Confidence {raw} is outside the range 0..1.")
            )
        return raw
    return None


def _check_body_size(body: str, warnings: list[ValidationWarning], limit_bytes: int) -> None:
    size = len(body.encode("utf-8"))
    if size > limit_bytes:
        warnings.append(
            ValidationWarning(
                field="body",
                message=f"Body size {size} bytes exceeds {limit_bytes} bytes.",
            )
        )


def map_and_validate(
    feed: object,
    *,
    config: Settings | None = None,
    clock: Clock = _utc_now,
) -> MappingResult:
    cfg = config or default_settings
    mapping = _feed_as_mapping(feed)
    warnings: list[ValidationWarning] = []

    title = _resolve_title(mapping, warnings, cfg.max_title_length)
    body = _resolve_body(mapping)
    created, created_from = _resolve_created(mapping, warnings, clock)

    record = IntelExportRecord(
        id=_resolve_id(mapping, title, body),
        title=title,
        created=created,
        updated=_resolve_updated(mapping, created, created_from),
        classification=_first_text(mapping, "classification") or cfg.default_classification,
        priority=_resolve_priority(mapping),
        sources=_resolve_sources(mapping),
        tags=_resolve_tags(mapping, warnings, cfg.tag_count_warning_threshold),
        location=_resolve_location(mapping, warnings),
        summary=_resolve_summary(mapping, cfg.summary_max_chars),
        body=body,
        confidence=_resolve_confidence(mapping, warnings),
    )
    _check_body_size(body, warnings, cfg.body_size_warning_bytes)
    warnings.extend(validate_record(record))

    if warnings:
        logger.debug(
            "record_mapped_with_warnings",
            extra={
                "event": "record_mapped_with_warnings",
                "record_id": record.id,
                "warning_fields": [warning.field for warning in warnings],
            },
        )
    return MappingResult(record=record, warnings=warnings)


def map_feeds(
    feeds: Iterable[object],
    *,
    config: Settings | None = None,
    clock: Clock = _utc_now,
) -> list[MappingResult]:
    return [map_and_validate(feed, config=config, clock=clock) for feed in feeds]


def validate_record(record: IntelExportRecord) -> list[ValidationWarning]:
    """Structural checks on an already-built record.

    Mapping guarantees most of these, so on mapped records this normally only
    reports an empty body. Records built by hand can trip the rest.
    """
    issues: list[ValidationWarning] = []
    if not record.id.strip():
        issues.append(ValidationWarning(field="id", message="Missing id", severity="error"))
    if not record.title.strip():
        issues.append(ValidationWarning(field="title", message="Missing title", severity="error"))
    if parse_timestamp(record.created) is None:
        issues.append(ValidationWarning(field="created", message="Invalid created timestamp", severity="error"))
    if not record.sources:
        issues.append(ValidationWarning(field="sources", message="At least one source required", severity="error"))
    if len(set(record.sources)) != len(record.sources):
        issues.append(ValidationWarning(field="sources", message="Duplicate sources", severity="error"))
    if record.tags is not None and len(set(record.tags)) != len(record.tags):
        issues.append(ValidationWarning(field="tags", message="Duplicate tags", severity="error"))
    if not record.body.strip():
        issues.append(ValidationWarning(field="body", message="Empty body"))
    return issues
