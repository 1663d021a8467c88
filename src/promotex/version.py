"""Release version lookup."""

from __future__ import annotations

from pathlib import Path

from promotex.errors import MissingVersionFile


def read_release_version(version_file: Path) -> str:
    """Read the release version token from the tracked version file.

    Raises:
        MissingVersionFile: If the file is absent, unreadable, or blank
    """
    if not version_file.is_file():
        raise MissingVersionFile(f"Version file not found: {version_file}")

    try:
        text = version_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise MissingVersionFile(f"Version file unreadable: {version_file}: {exc}") from exc

    version = text.strip()
    if not version:
        raise MissingVersionFile(f"Version file is empty: {version_file}")
    if len(version.split()) != 1:
        raise MissingVersionFile(f"Version file must hold exactly one token: {version_file}")
    return version
