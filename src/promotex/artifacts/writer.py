"""Per-run promotion report artifacts."""

from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from promotex.pipeline.types import PromotionReport

ARTIFACT_INDEX_SCHEMA_VERSION = "promotex.report.v1"
REPORT_JSON = "PROMOTION_REPORT.json"
REPORT_MD = "PROMOTION_REPORT.md"
INDEX_JSON = "ARTIFACT_INDEX.json"

DETERMINISTIC_TIMESTAMP = "1970-01-01T00:00:00Z"


def canonical_dumps(obj: Any) -> str:
    """Sorted keys, no whitespace, UTF-8 kept as-is."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(canonical_dumps(obj), encoding="utf-8")


def sha256_file(path: Path) -> str:
    with path.open("rb") as handle:
        return hashlib.file_digest(handle, "sha256").hexdigest()


def timestamp_for(timestamp_mode: str) -> str:
    if timestamp_mode == "deterministic":
        return DETERMINISTIC_TIMESTAMP
    if timestamp_mode == "wallclock":
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    raise ValueError(
        f"Unsupported timestamp mode: {timestamp_mode}. Expected one of: deterministic, wallclock."
    )


def default_run_dir(root: Path, image_stream: str, release_version: str | None) -> Path:
    return (root / "out" / "promotions" / _slug(image_stream) / _slug(release_version or "unknown")).resolve()


def write_promotion_artifacts(run_dir: Path, report: PromotionReport) -> dict[str, Any]:
    """Write report JSON + markdown and return the artifact index payload."""
    run_dir.mkdir(parents=True, exist_ok=True)

    json_path = run_dir / REPORT_JSON
    write_json(json_path, report.to_dict())

    md_path = run_dir / REPORT_MD
    md_path.write_text(render_markdown_report(report), encoding="utf-8")

    index_payload: dict[str, Any] = {
        "schema_version": ARTIFACT_INDEX_SCHEMA_VERSION,
        "artifacts": [
            {"name": path.name, "path": path.name, "sha256": sha256_file(path)}
            for path in (json_path, md_path)
        ],
    }
    write_json(run_dir / INDEX_JSON, index_payload)
    return index_payload


def render_markdown_report(report: PromotionReport) -> str:
    result = report.result.value if report.result else "unknown"
    lines = [
        "# PROMOTION_REPORT",
        "",
        f"- result: {result}",
        f"- image_stream: {report.image_stream}",
        f"- release_version: {report.release_version}",
        f"- source_tag: {report.source_tag}",
        f"- rollout_state: {report.rollout_state.value}",
        f"- notification: {report.notification}",
        f"- dry_run: {report.dry_run}",
        f"- started_at: {report.started_at}",
        f"- finished_at: {report.finished_at}",
        "",
        "## Stages",
        "",
    ]
    for record in report.stages:
        suffix = f": {record.detail}" if record.detail else ""
        lines.append(f"- {record.stage.value} -> {record.transition.value}{suffix}")

    lines.extend(["", "## Mutations", ""])
    if report.mutations:
        lines.extend(f"- {item}" for item in report.mutations)
    else:
        lines.append("- none")

    if report.planned_mutations:
        lines.extend(["", "## Planned Mutations", ""])
        lines.extend(f"- {item}" for item in report.planned_mutations)

    if report.error_code:
        lines.extend(["", "## Error", "", f"- {report.error_code}: {report.error_message}"])

    if report.notification_error:
        lines.extend(["", "## Notification Error", "", f"- {report.notification_error}"])

    lines.append("")
    return "\n".join(lines)


def _slug(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", value.strip()).strip("_")
    return cleaned or "unknown"
