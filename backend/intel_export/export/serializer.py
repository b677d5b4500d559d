from __future__ import annotations

import json
import re
from typing import Sequence

from intel_export.export.records import IntelExportRecord, IntelLocation

FRONTMATTER_DELIMITER = "---"
INTEL_FILE_EXTENSION = ".intel"
INTEL_FRONTMATTER_ORDER: tuple[str, ...] = (
    "id",
    "title",
    "created",
    "updated",
    "classification",
    "priority",
    "sources",
    "tags",
    "location",
    "summary",
    "confidence",
)

_UNSAFE_FILE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f\x7f]')

FrontmatterValue = str | int | float | list[str] | dict[str, object] | None


def _render_scalar(value: object) -> str:
    if isinstance(value, bool):
        return json.dumps(str(value).lower())
    if isinstance(value, (int, float)):
        return json.dumps(value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False, separators=(", ", ": "))
    return json.dumps(str(value), ensure_ascii=False)


def _render_list(values: Sequence[object]) -> str:
    return "[" + ", ".join(json.dumps(str(item), ensure_ascii=False) for item in values) + "]"


def render_frontmatter(
    pairs: Sequence[tuple[str, FrontmatterValue]], *, keep_empty_lists: bool = False
) -> list[str]:
    """Render ordered `(key, value)` pairs between `---` delimiters.

    Pairs whose value is None are skipped, as are empty lists unless
    `keep_empty_lists` is set; the relative order of the rest is exactly the
    order given.
    """
    lines = [FRONTMATTER_DELIMITER]
    for key, value in pairs:
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            if not value and not keep_empty_lists:
                continue
            lines.append(f"{key}: {_render_list(value)}")
            continue
        lines.append(f"{key}: {_render_scalar(value)}")
    lines.append(FRONTMATTER_DELIMITER)
    return lines


def _location_value(location: IntelLocation | None) -> dict[str, object] | None:
    if location is None:
        return None
    value: dict[str, object] = {"lat": location.lat, "lon": location.lon}
    if location.name:
        value["name"] = location.name
    return value


def _confidence_value(confidence: float | int | str | None) -> str | None:
    if confidence is None:
        return None
    if isinstance(confidence, str):
        return confidence
    return json.dumps(confidence)


def intel_frontmatter_pairs(record: IntelExportRecord) -> list[tuple[str, FrontmatterValue]]:
    values: dict[str, FrontmatterValue] = {
        "id": record.id,
        "title": record.title,
        "created": record.created,
        "updated": record.updated,
        "classification": record.classification,
        "priority": record.priority,
        "sources": record.sources,
        "tags": record.tags,
        "location": _location_value(record.location),
        "summary": record.summary,
        "confidence": _confidence_value(record.confidence),
    }
    return [(key, values[key]) for key in INTEL_FRONTMATTER_ORDER]


def serialize_intel(record: IntelExportRecord) -> str:
    lines = render_frontmatter(intel_frontmatter_pairs(record))
    lines.append("")
    document = "\n".join(lines) + "\n" + record.body
    if not document.endswith("\n"):
        document += "\n"
    return document


def intel_file_stem(record_id: str) -> str:
    stem = _UNSAFE_FILE_CHARS.sub("_", record_id).strip().lstrip(".")
    return stem or "intel"


def intel_file_name(record_id: str) -> str:
    return f"{intel_file_stem(record_id)}{INTEL_FILE_EXTENSION}"
