from __future__ import annotations

from datetime import datetime, timezone
import io
import json
import logging
import zipfile

import pytest

from intel_export.export.batch import IntelFileNamer, export_report, export_report_json, export_zip
from intel_export.export.mapper import map_and_validate
from intel_export.export.serializer import serialize_intel

FIXED_NOW = datetime(2026, 2, 9, 12, 0, 0, tzinfo=timezone.utc)


def _clock() -> datetime:
    return FIXED_NOW


def _feed(feed_id: str, **overrides: object) -> dict[str, object]:
    feed: dict[str, object] = {
        "id": feed_id,
        "title": f"Title {feed_id}",
        "link": f"https://example.com/article/{feed_id}",
        "pubDate": "2025-08-09T12:00:00.000Z",
        "timestamp": "2025-08-09T12:00:00.000Z",
        "description": f"Desc {feed_id}",
        "content": f"Body {feed_id}\n",
        "categories": ["Cat"],
        "tags": ["Tag"],
        "priority": "HIGH",
        "source": "Src",
    }
    feed.update(overrides)
    return feed


def _report_payload(serialized: str) -> list[dict[str, object]]:
    start = serialized.index("```json\n") + len("```json\n")
    end = serialized.index("\n```", start)
    return json.loads(serialized[start:end])


def _frontmatter(serialized: str) -> dict[str, str]:
    end = serialized.index("\n---\n", 3)
    pairs = [line.split(": ", 1) for line in serialized[4:end].split("\n")]
    return {key: value for key, value in pairs}


def test_zip_export_writes_one_intel_file_per_feed() -> None:
    feeds = [_feed("x"), _feed("y")]
    result = export_zip(feeds, limit=10, clock=_clock)

    assert result.count == 2
    assert result.file_names == ["x.intel", "y.intel"]
    assert result.file_name == "intel-articles-20260209120000.zip"

    with zipfile.ZipFile(io.BytesIO(result.content)) as archive:
        assert archive.namelist() == ["x.intel", "y.intel"]
        expected = serialize_intel(map_and_validate(feeds[0], clock=_clock).record)
        assert archive.read("x.intel").decode("utf-8") == expected


def test_zip_export_resolves_duplicate_ids_with_suffix() -> None:
    result = export_zip([_feed("dup"), _feed("dup")], limit=10, clock=_clock)

    assert result.count == 2
    assert result.file_names == ["dup.intel", "dup-1.intel"]
    collisions = [warning for warning in result.warnings if warning.type == "collision"]
    assert len(collisions) == 1
    assert collisions[0].file_name == "dup-1.intel"
    assert collisions[0].record_id == "dup"


def test_zip_export_warns_once_per_colliding_record() -> None:
    result = export_zip([_feed("dup"), _feed("other"), _feed("dup"), _feed("dup")], clock=_clock)

    assert result.file_names == ["dup.intel", "other.intel", "dup-1.intel", "dup-2.intel"]
    assert sum(1 for warning in result.warnings if warning.type == "collision") == 2


def test_suffix_skips_names_taken_by_literal_ids() -> None:
    result = export_zip([_feed("dup"), _feed("dup-1"), _feed("dup")], clock=_clock)
    assert result.file_names == ["dup.intel", "dup-1.intel", "dup-2.intel"]


def test_literal_suffixed_id_gets_file_name_clash_warning() -> None:
    result = export_zip([_feed("dup"), _feed("dup"), _feed("dup-1")], clock=_clock)

    assert result.file_names == ["dup.intel", "dup-1.intel", "dup-1-1.intel"]
    collisions = [warning for warning in result.warnings if warning.type == "collision"]
    assert collisions[0].message == "Duplicate id 'dup' written as dup-1.intel."
    assert collisions[1].record_id == "dup-1"
    assert "Duplicate id" not in collisions[1].message
    assert "dup-1.intel" in collisions[1].message and "already taken" in collisions[1].message


def test_out_of_range_timestamp_does_not_abort_batch() -> None:
    feeds = [_feed("a", timestamp="0001-01-01T00:00:00+01:00", pubDate=None), _feed("b")]
    result = export_zip(feeds, clock=_clock)

    assert result.file_names == ["a.intel", "b.intel"]
    assert any(
        warning.type == "validation" and warning.record_id == "a" and warning.message.startswith("created:")
        for warning in result.warnings
    )

    report = export_report(feeds, clock=_clock)
    assert report.article_count == 2


def test_file_namer_counts_per_base_id() -> None:
    namer = IntelFileNamer()
    assigned = [namer.assign(record_id) for record_id in ["a", "b", "a", "b", "a"]]
    assert assigned == [
        ("a.intel", False),
        ("b.intel", False),
        ("a-1.intel", True),
        ("b-1.intel", True),
        ("a-2.intel", True),
    ]


def test_zip_export_of_empty_input_warns_and_still_builds_archive() -> None:
    result = export_zip([], limit=5, clock=_clock)

    assert result.count == 0
    assert result.file_names == []
    assert any(warning.type == "empty" for warning in result.warnings)
    with zipfile.ZipFile(io.BytesIO(result.content)) as archive:
        assert archive.namelist() == []


def test_zip_export_silently_drops_feeds_past_limit() -> None:
    result = export_zip([_feed(f"f{index}") for index in range(5)], limit=2, clock=_clock)

    assert result.file_names == ["f0.intel", "f1.intel"]
    assert not any(warning.type == "truncated" for warning in result.warnings)


def test_zip_export_is_byte_reproducible() -> None:
    feeds = [_feed("a"), _feed("b"), _feed("a")]
    first = export_zip(feeds, clock=_clock)
    second = export_zip(feeds, clock=_clock)
    assert first.content == second.content


def test_zip_export_skips_unmappable_feed_and_continues() -> None:
    result = export_zip([_feed("a"), "not a feed", _feed("b")], clock=_clock)

    assert result.file_names == ["a.intel", "b.intel"]
    skipped = [warning for warning in result.warnings if warning.type == "skipped"]
    assert len(skipped) == 1
    assert "#1" in skipped[0].message


def test_zip_export_relays_record_validation_warnings() -> None:
    result = export_zip([_feed("big", content="X" * 204801)], clock=_clock)

    relayed = [warning for warning in result.warnings if warning.type == "validation"]
    assert relayed
    assert relayed[0].record_id == "big"
    assert any("Body size" in warning.message for warning in relayed)


def test_zip_export_logs_summary_event(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="intel_export.batch"):
        export_zip([_feed("dup"), _feed("dup")], clock=_clock)

    events = [record for record in caplog.records if getattr(record, "event", None) == "intel_zip_exported"]
    assert events
    assert events[-1].file_count == 2
    assert events[-1].collision_count == 1


def test_negative_limit_is_rejected() -> None:
    with pytest.raises(ValueError):
        export_zip([_feed("a")], limit=-1)
    with pytest.raises(ValueError):
        export_report([_feed("a")], limit=-1)


def test_report_embeds_every_article_document() -> None:
    feeds = [_feed(feed_id) for feed_id in ["a", "b", "c"]]
    result = export_report(feeds, limit=10, clock=_clock)

    assert result.file_name == "intel-report-20260209120000.intelreport"
    assert result.serialized.startswith("---\n")
    assert result.serialized.endswith("```\n")
    assert result.serialized.count('"intelContent"') == 3
    assert "Contains 3 articles." in result.serialized
    assert result.article_count == 3

    payload = _report_payload(result.serialized)
    assert [article["intelFile"] for article in payload] == ["a.intel", "b.intel", "c.intel"]
    expected_first = serialize_intel(map_and_validate(feeds[0], clock=_clock).record)
    assert payload[0]["intelContent"] == expected_first
    assert set(payload[0]) == {
        "id",
        "title",
        "created",
        "priority",
        "sources",
        "tags",
        "summary",
        "intelFile",
        "intelContent",
    }


def test_report_frontmatter_order_and_values() -> None:
    result = export_report([_feed("a"), _feed("b", source="Other", tags=["Extra"])], clock=_clock)
    frontmatter = _frontmatter(result.serialized)

    assert list(frontmatter) == [
        "id",
        "title",
        "created",
        "classification",
        "priority",
        "sources",
        "tags",
        "articleCount",
    ]
    assert frontmatter["id"] == '"intel-report-20260209120000"'
    assert frontmatter["created"] == '"2026-02-09T12:00:00.000Z"'
    assert json.loads(frontmatter["sources"]) == ["Src", "Other"]
    assert json.loads(frontmatter["tags"]) == ["Tag", "Cat", "Extra"]
    assert frontmatter["articleCount"] == "2"


def test_report_truncation_embeds_limit_and_warns() -> None:
    feeds = [_feed(f"f{index}") for index in range(15)]
    result = export_report(feeds, limit=5, clock=_clock)

    assert result.serialized.count('"intelContent"') == 5
    assert "articleCount: 5\n" in result.serialized
    assert any("truncated" in warning.message.lower() for warning in result.warnings)


def test_report_at_limit_does_not_warn() -> None:
    result = export_report([_feed(f"f{index}") for index in range(5)], limit=5, clock=_clock)
    assert not any(warning.type == "truncated" for warning in result.warnings)


def test_report_of_empty_input_states_zero_articles() -> None:
    result = export_report([], limit=10, clock=_clock)

    assert "Contains 0 articles." in result.serialized
    assert "articleCount: 0\n" in result.serialized
    assert _report_payload(result.serialized) == []
    frontmatter = _frontmatter(result.serialized)
    assert frontmatter["sources"] == "[]"
    assert frontmatter["tags"] == "[]"
    assert list(frontmatter) == [
        "id",
        "title",
        "created",
        "classification",
        "priority",
        "sources",
        "tags",
        "articleCount",
    ]


def test_report_caps_source_and_tag_unions() -> None:
    feeds = [
        _feed(f"f{index}", source=f"Source{index}", tags=[f"tag{index}-a", f"tag{index}-b"], categories=[])
        for index in range(60)
    ]
    result = export_report(feeds, clock=_clock)
    frontmatter = _frontmatter(result.serialized)

    sources = json.loads(frontmatter["sources"])
    tags = json.loads(frontmatter["tags"])
    assert len(sources) == 50
    assert sources[0] == "Source0"
    assert len(tags) == 100
    assert len(set(tags)) == 100


def test_report_intel_file_matches_zip_collision_naming() -> None:
    feeds = [_feed("dup"), _feed("dup")]
    report = export_report(feeds, clock=_clock)
    bundle = export_zip(feeds, clock=_clock)

    assert [article["intelFile"] for article in _report_payload(report.serialized)] == bundle.file_names


def test_report_json_mirrors_report_content() -> None:
    feeds = [_feed("a"), _feed("b")]
    result = export_report_json(feeds, limit=10, clock=_clock)
    parsed = json.loads(result.json)

    assert parsed["articleCount"] == 2
    assert len(parsed["articles"]) == 2
    assert parsed["reportId"] == "intel-report-20260209120000"
    assert parsed["articles"] == _report_payload(export_report(feeds, limit=10, clock=_clock).serialized)


def test_report_json_warns_on_truncation() -> None:
    result = export_report_json([_feed(f"f{index}") for index in range(3)], limit=1, clock=_clock)

    assert json.loads(result.json)["articleCount"] == 1
    assert any(warning.type == "truncated" for warning in result.warnings)
