"""Shared utilities for Tether - timestamps, atomic writes, name sanitizing."""

import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

__all__ = [
    "get_iso_timestamp",
    "parse_timestamp",
    "later_timestamp",
    "atomic_write_bytes",
    "atomic_write_text",
    "sanitize_project_name",
]


def get_iso_timestamp() -> str:
    """Get current UTC timestamp in ISO format with Z suffix.

    Returns:
        ISO 8601 formatted timestamp string (e.g., "2024-01-15T10:30:00.123456Z")
    """
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp into an aware UTC datetime.

    Accepts both "Z" and "+00:00" suffixes. Naive timestamps are treated as UTC.

    Args:
        value: Timestamp string (or None)

    Returns:
        Aware datetime, or None if value is empty or unparseable
    """
    if not value:
        return None

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def later_timestamp(a: Optional[str], b: Optional[str]) -> Optional[str]:
    """Return whichever of two ISO timestamps is later (None sorts first)."""
    parsed_a = parse_timestamp(a)
    parsed_b = parse_timestamp(b)

    if parsed_a is None:
        return b
    if parsed_b is None:
        return a

    return a if parsed_a >= parsed_b else b


def atomic_write_bytes(path: Union[str, Path], data: bytes) -> None:
    """Write bytes to a file atomically.

    Writes to a temporary file in the same directory, fsyncs it, then
    renames it over the destination. Readers in other processes see either
    the old content or the new content, never a partial file.

    Args:
        path: Destination file path (parent directories are created)
        data: Content to write
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        # Never leave the temp file behind on failure
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def atomic_write_text(path: Union[str, Path], text: str) -> None:
    """Write UTF-8 text to a file atomically (see atomic_write_bytes)."""
    atomic_write_bytes(path, text.encode("utf-8"))


def sanitize_project_name(name: str) -> str:
    """Sanitize project name for use as an ID prefix.

    Converts to lowercase, replaces spaces/underscores with hyphens,
    removes special characters, and strips leading/trailing hyphens.

    Args:
        name: Raw project name

    Returns:
        Sanitized project name safe for use in IDs

    Examples:
        >>> sanitize_project_name("My Project")
        'my-project'
        >>> sanitize_project_name("my_project")
        'my-project'
        >>> sanitize_project_name("Special!@#Chars")
        'special-chars'
    """
    # Convert to lowercase
    name = name.lower()

    # Replace spaces and underscores with hyphens
    name = re.sub(r"[\s_]+", "-", name)

    # Replace any non-alphanumeric characters (except hyphens) with hyphens
    name = re.sub(r"[^a-z0-9-]+", "-", name)

    # Replace multiple consecutive hyphens with single hyphen
    name = re.sub(r"-+", "-", name)

    # Strip leading and trailing hyphens
    name = name.strip("-")

    return name
