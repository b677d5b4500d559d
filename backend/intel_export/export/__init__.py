from intel_export.export.batch import (
    ExportedArticle,
    IntelFileNamer,
    ReportExportResult,
    ReportJsonResult,
    ZipExportResult,
    export_report,
    export_report_json,
    export_zip,
)
from intel_export.export.mapper import MappingResult, map_and_validate, map_feeds, validate_record
from intel_export.export.records import (
    BatchWarning,
    IntelExportRecord,
    IntelLocation,
    IntelRecordError,
    ValidationWarning,
)
from intel_export.export.serializer import intel_file_name, render_frontmatter, serialize_intel

__all__ = [
    "BatchWarning",
    "ExportedArticle",
    "IntelExportRecord",
    "IntelFileNamer",
    "IntelLocation",
    "IntelRecordError",
    "MappingResult",
    "ReportExportResult",
    "ReportJsonResult",
    "ValidationWarning",
    "ZipExportResult",
    "export_report",
    "export_report_json",
    "export_zip",
    "intel_file_name",
    "map_and_validate",
    "map_feeds",
    "render_frontmatter",
    "serialize_intel",
    "validate_record",
]
