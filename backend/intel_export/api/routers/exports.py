from __future__ import annotations

import json
import logging

from fastapi import APIRouter, HTTPException, Response
from fastapi.responses import PlainTextResponse

from intel_export.api.contracts import BatchExportRequest, FeedExportRequest, ProvenanceHashRequest
from intel_export.export import (
    BatchWarning,
    IntelRecordError,
    export_report,
    export_report_json,
    export_zip,
    intel_file_name,
    map_and_validate,
    serialize_intel,
)
from intel_export.provenance import (
    HASH_ALGORITHM,
    ProvenanceCanonicalizationError,
    canonicalize_provenance_bundle,
    hash_provenance_bundle,
)

logger = logging.getLogger("intel_export.api")

router = APIRouter()


def _attachment_headers(file_name: str, warnings: list[BatchWarning]) -> dict[str, str]:
    return {
        "Content-Disposition": f'attachment; filename="{file_name}"',
        "X-Intel-Warning-Count": str(len(warnings)),
    }


@router.post("/exports/intel")
def export_single_intel(payload: FeedExportRequest) -> dict[str, object]:
    try:
        mapped = map_and_validate(payload.feed)
    except IntelRecordError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    record = mapped.record
    return {
        "file_name": intel_file_name(record.id),
        "serialized": serialize_intel(record),
        "record": record.model_dump(exclude_none=True),
        "warnings": [warning.model_dump() for warning in mapped.warnings],
    }


@router.post("/exports/intel-zip", response_model=None)
def export_intel_zip(payload: BatchExportRequest) -> Response:
    result = export_zip(payload.feeds, limit=payload.limit)
    headers = _attachment_headers(result.file_name, result.warnings)
    headers["X-Intel-File-Count"] = str(result.count)
    return Response(content=result.content, media_type="application/zip", headers=headers)


@router.post("/exports/intel-report", response_model=None)
def export_intel_report(payload: BatchExportRequest) -> PlainTextResponse:
    result = export_report(payload.feeds, limit=payload.limit)
    headers = _attachment_headers(result.file_name, result.warnings)
    headers["X-Intel-Article-Count"] = str(result.article_count)
    return PlainTextResponse(
        content=result.serialized,
        media_type="text/markdown; charset=utf-8",
        headers=headers,
    )


@router.post("/exports/intel-report.json")
def export_intel_report_json(payload: BatchExportRequest) -> dict[str, object]:
    result = export_report_json(payload.feeds, limit=payload.limit)
    return {
        "report": json.loads(result.json),
        "warnings": [warning.model_dump() for warning in result.warnings],
    }


@router.post("/provenance/hash")
def hash_provenance(payload: ProvenanceHashRequest) -> dict[str, str]:
    try:
        canonical = canonicalize_provenance_bundle(payload.bundle)
        digest = hash_provenance_bundle(payload.bundle)
    except ProvenanceCanonicalizationError as exc:
        logger.info(
            "provenance_hash_rejected",
            extra={"event": "provenance_hash_rejected", "reason": str(exc)},
        )
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"canonical": canonical, "hash": digest, "algorithm": HASH_ALGORITHM}
