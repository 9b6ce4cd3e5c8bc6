"""export/__init__.py"""
from .exporter import (
    EmptyExportMarker,
    ExportResult,
    export_filename,
    export_pair,
    lookup,
    render_export_csv,
)

__all__ = [
    "EmptyExportMarker",
    "ExportResult",
    "export_filename",
    "export_pair",
    "lookup",
    "render_export_csv",
]
