"""Run report artifacts."""

from promotex.artifacts.writer import (
    REPORT_JSON,
    REPORT_MD,
    canonical_dumps,
    default_run_dir,
    render_markdown_report,
    sha256_file,
    timestamp_for,
    write_json,
    write_promotion_artifacts,
)

__all__ = [
    "REPORT_JSON",
    "REPORT_MD",
    "canonical_dumps",
    "default_run_dir",
    "render_markdown_report",
    "sha256_file",
    "timestamp_for",
    "write_json",
    "write_promotion_artifacts",
]
