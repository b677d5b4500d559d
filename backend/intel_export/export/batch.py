from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import io
import json
import logging
from typing import Iterable
import zipfile

from intel_export.config import Settings, settings as default_settings
from intel_export.export.common import _dedupe_preserve_order, _utc_now, compact_timestamp, format_iso_timestamp
from intel_export.export.mapper import Clock, map_and_validate
from intel_export.export.records import (
    BatchWarning,
    IntelExportRecord,
    IntelRecordError,
    ValidationWarning,
)
from intel_export.export.serializer import (
    INTEL_FILE_EXTENSION,
    intel_file_name,
    intel_file_stem,
    render_frontmatter,
    serialize_intel,
)

logger = logging.getLogger("intel_export.batch")

REPORT_TITLE = "Intelligence Batch Report"
REPORT_FILE_EXTENSION = ".intelreport"
REPORT_PRIORITY = "medium"
# Fixed entry timestamp so identical inputs yield byte-identical archives.
_ZIP_ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)


@dataclass
class ExportedArticle:
    record: IntelExportRecord
    file_name: str
    serialized: str
    warnings: list[ValidationWarning] = field(default_factory=list)


@dataclass
class ZipExportResult:
    file_name: str
    count: int
    file_names: list[str]
    warnings: list[BatchWarning]
    content: bytes


@dataclass
class ReportExportResult:
    file_name: str
    serialized: str
    warnings: list[BatchWarning]
    article_count: int


@dataclass
class ReportJsonResult:
    json: str
    warnings: list[BatchWarning]
    article_count: int


class IntelFileNamer:
    """Assigns collision-free `.intel` names in processing order.

    The first record for a base id gets `<id>.intel`; later ones get
    `<id>-<n>.intel` with `n` counted per base id, skipping names that an
    earlier record already took verbatim.
    """

    def __init__(self) -> None:
        self._taken: set[str] = set()
        self._suffix_counters: dict[str, int] = {}

    def assign(self, record_id: str) -> tuple[str, bool]:
        stem = intel_file_stem(record_id)
        candidate = f"{stem}{INTEL_FILE_EXTENSION}"
        if candidate not in self._taken:
            self._taken.add(candidate)
            return candidate, False

        counter = self._suffix_counters.get(stem, 0)
        while True:
            counter += 1
            candidate = f"{stem}-{counter}{INTEL_FILE_EXTENSION}"
            if candidate not in self._taken:
                break
        self._suffix_counters[stem] = counter
        self._taken.add(candidate)
        return candidate, True


def _resolve_limit(limit: int | None, config: Settings) -> int:
    resolved = config.export_default_limit if limit is None else limit
    if isinstance(resolved, bool) or not isinstance(resolved, int):
        raise ValueError(f"limit must be an integer, got {type(resolved).__name__}.")
    if resolved < 0:
        raise ValueError(f"limit must be >= 0, got {resolved}.")
    return resolved


def _export_articles(
    feeds: list[object],
    *,
    limit: int,
    config: Settings,
    clock: Clock,
) -> tuple[list[ExportedArticle], list[BatchWarning]]:
    namer = IntelFileNamer()
    seen_ids: set[str] = set()
    articles: list[ExportedArticle] = []
    warnings: list[BatchWarning] = []

    for position, feed in enumerate(feeds[:limit]):
        try:
            mapped = map_and_validate(feed, config=config, clock=clock)
        except IntelRecordError as exc:
            logger.warning(
                "intel_record_skipped",
                extra={"event": "intel_record_skipped", "position": position, "reason": str(exc)},
            )
            warnings.append(BatchWarning(type="skipped", message=f"Feed #{position} skipped: {exc}"))
            continue

        record = mapped.record
        for issue in mapped.warnings:
            warnings.append(
                BatchWarning(
                    type="validation",
                    message=f"{issue.field}: {issue.message}",
                    record_id=record.id,
                )
            )

        file_name, collided = namer.assign(record.id)
        if collided:
            if record.id in seen_ids:
                message = f"Duplicate id '{record.id}' written as {file_name}."
            else:
                message = (
                    f"File name {intel_file_name(record.id)} for id '{record.id}' already taken; "
                    f"written as {file_name}."
                )
            warnings.append(
                BatchWarning(
                    type="collision",
                    message=message,
                    record_id=record.id,
                    file_name=file_name,
                )
            )
        seen_ids.add(record.id)

        articles.append(
            ExportedArticle(
                record=record,
                file_name=file_name,
                serialized=serialize_intel(record),
                warnings=mapped.warnings,
            )
        )

    return articles, warnings


def _empty_warning() -> BatchWarning:
    return BatchWarning(type="empty", message="No feeds provided for export.")


def build_zip_archive(articles: Iterable[ExportedArticle]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
        for article in articles:
            info = zipfile.ZipInfo(article.file_name, date_time=_ZIP_ENTRY_DATE_TIME)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            archive.writestr(info, article.serialized.encode("utf-8"))
    return buffer.getvalue()


def export_zip(
    feeds: Iterable[object],
    *,
    limit: int | None = None,
    config: Settings | None = None,
    clock: Clock = _utc_now,
) -> ZipExportResult:
    cfg = config or default_settings
    resolved_limit = _resolve_limit(limit, cfg)
    feed_list = list(feeds)

    articles, warnings = _export_articles(feed_list, limit=resolved_limit, config=cfg, clock=clock)
    if not feed_list:
        warnings.insert(0, _empty_warning())

    content = build_zip_archive(articles)
    file_name = f"intel-articles-{compact_timestamp(clock())}.zip"
    file_names = [article.file_name for article in articles]

    logger.info(
        "intel_zip_exported",
        extra={
            "event": "intel_zip_exported",
            "file_name": file_name,
            "feed_count": len(feed_list),
            "file_count": len(file_names),
            "collision_count": sum(1 for warning in warnings if warning.type == "collision"),
            "warning_count": len(warnings),
        },
    )
    return ZipExportResult(
        file_name=file_name,
        count=len(articles),
        file_names=file_names,
        warnings=warnings,
        content=content,
    )


@dataclass
class _ReportContext:
    report_id: str
    created: str
    classification: str
    sources: list[str]
    tags: list[str]
    articles: list[ExportedArticle]
    warnings: list[BatchWarning]


def _build_report_context(
    feeds: Iterable[object],
    *,
    limit: int | None,
    config: Settings | None,
    clock: Clock,
) -> _ReportContext:
    cfg = config or default_settings
    resolved_limit = _resolve_limit(limit, cfg)
    feed_list = list(feeds)

    articles, warnings = _export_articles(feed_list, limit=resolved_limit, config=cfg, clock=clock)
    if not feed_list:
        warnings.insert(0, _empty_warning())
    if len(feed_list) > resolved_limit:
        warnings.append(
            BatchWarning(
                type="truncated",
                message=f"Report truncated to {resolved_limit} of {len(feed_list)} feeds.",
            )
        )

    now = clock()
    sources = _dedupe_preserve_order(
        [source for article in articles for source in article.record.sources]
    )[: cfg.report_source_cap]
    tags = _dedupe_preserve_order(
        [tag for article in articles for tag in (article.record.tags or [])]
    )[: cfg.report_tag_cap]

    return _ReportContext(
        report_id=f"intel-report-{compact_timestamp(now)}",
        created=format_iso_timestamp(now),
        classification=cfg.default_classification,
        sources=sources,
        tags=tags,
        articles=articles,
        warnings=warnings,
    )


def _article_payload(article: ExportedArticle) -> dict[str, object]:
    record = article.record
    payload: dict[str, object] = {
        "id": record.id,
        "title": record.title,
        "created": record.created,
        "priority": record.priority,
        "sources": record.sources,
    }
    if record.tags is not None:
        payload["tags"] = record.tags
    if record.summary is not None:
        payload["summary"] = record.summary
    payload["intelFile"] = article.file_name
    payload["intelContent"] = article.serialized
    return payload


def export_report(
    feeds: Iterable[object],
    *,
    limit: int | None = None,
    config: Settings | None = None,
    clock: Clock = _utc_now,
) -> ReportExportResult:
    context = _build_report_context(feeds, limit=limit, config=config, clock=clock)
    article_count = len(context.articles)

    lines = render_frontmatter(
        [
            ("id", context.report_id),
            ("title", REPORT_TITLE),
            ("created", context.created),
            ("classification", context.classification),
            ("priority", REPORT_PRIORITY),
            ("sources", context.sources),
            ("tags", context.tags),
            ("articleCount", article_count),
        ],
        keep_empty_lists=True,
    )
    payload = [_article_payload(article) for article in context.articles]
    lines.extend(
        [
            "",
            f"# {REPORT_TITLE}",
            "",
            f"Contains {article_count} articles.",
            "",
            "```json",
            json.dumps(payload, indent=2, ensure_ascii=False),
            "```",
        ]
    )
    serialized = "\n".join(lines) + "\n"
    file_name = f"{context.report_id}{REPORT_FILE_EXTENSION}"

    logger.info(
        "intel_report_exported",
        extra={
            "event": "intel_report_exported",
            "file_name": file_name,
            "article_count": article_count,
            "warning_count": len(context.warnings),
        },
    )
    return ReportExportResult(
        file_name=file_name,
        serialized=serialized,
        warnings=context.warnings,
        article_count=article_count,
    )


def export_report_json(
    feeds: Iterable[object],
    *,
    limit: int | None = None,
    config: Settings | None = None,
    clock: Clock = _utc_now,
) -> ReportJsonResult:
    context = _build_report_context(feeds, limit=limit, config=config, clock=clock)
    article_count = len(context.articles)
    document = {
        "reportId": context.report_id,
        "title": REPORT_TITLE,
        "created": context.created,
        "classification": context.classification,
        "priority": REPORT_PRIORITY,
        "sources": context.sources,
        "tags": context.tags,
        "articleCount": article_count,
        "articles": [_article_payload(article) for article in context.articles],
    }
    return ReportJsonResult(
        json=json.dumps(document, indent=2, ensure_ascii=False),
        warnings=context.warnings,
        article_count=article_count,
    )
