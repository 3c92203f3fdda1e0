"""Record storage for Tether - one JSON file per issue under <dir>/issues/."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from tether_core.constants import ISSUES_DIR
from tether_core.utils import atomic_write_bytes

__all__ = [
    "issue_path",
    "issue_id_from_path",
    "serialize_issue",
    "parse_issue",
    "list_issues",
    "read_issue",
    "read_issue_bytes",
    "write_issue",
    "delete_issue",
]

PathLike = Union[str, Path]


def issue_path(base_dir: PathLike, issue_id: str) -> Path:
    """Path of an issue file inside a store or workspace directory."""
    return Path(base_dir) / ISSUES_DIR / f"{issue_id}.json"


def issue_id_from_path(path: PathLike) -> Optional[str]:
    """Extract the issue ID from an "issues/<id>.json" path, or None."""
    path = Path(path)
    if path.suffix != ".json" or path.parent.name != ISSUES_DIR:
        return None
    return path.stem


def serialize_issue(issue: Dict[str, Any]) -> bytes:
    """Serialize an issue deterministically (sorted keys, trailing newline)."""
    return (json.dumps(issue, indent=2, sort_keys=True, ensure_ascii=False) + "\n").encode("utf-8")


def parse_issue(data: bytes) -> Dict[str, Any]:
    """Parse issue bytes.

    Raises:
        ValueError: If the bytes are not a JSON object with an "id"
    """
    issue = json.loads(data.decode("utf-8"))
    if not isinstance(issue, dict) or "id" not in issue:
        raise ValueError("issue file is not a JSON object with an 'id'")
    return issue


def list_issues(base_dir: PathLike) -> List[Dict[str, Any]]:
    """List all issues in a directory.

    Args:
        base_dir: Store or workspace directory (containing issues/)

    Returns:
        List of issue dicts sorted by ID. Unreadable files are logged and skipped.
    """
    issues_dir = Path(base_dir) / ISSUES_DIR
    if not issues_dir.is_dir():
        return []

    issues = []
    for path in sorted(issues_dir.glob("*.json")):
        try:
            issues.append(parse_issue(path.read_bytes()))
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping unreadable issue file {path}: {e}")

    issues.sort(key=lambda issue: issue["id"])
    return issues


def read_issue(base_dir: PathLike, issue_id: str) -> Optional[Dict[str, Any]]:
    """Read an issue by ID.

    Returns:
        Issue dict, or None if not found
    """
    data = read_issue_bytes(base_dir, issue_id)
    if data is None:
        return None
    return parse_issue(data)


def read_issue_bytes(base_dir: PathLike, issue_id: str) -> Optional[bytes]:
    """Read the exact on-disk bytes of an issue, or None if not found."""
    path = issue_path(base_dir, issue_id)
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def write_issue(base_dir: PathLike, issue: Dict[str, Any]) -> Path:
    """Write an issue atomically.

    Args:
        base_dir: Store or workspace directory
        issue: Issue dict (must contain "id")

    Returns:
        Path of the written file
    """
    path = issue_path(base_dir, issue["id"])
    atomic_write_bytes(path, serialize_issue(issue))
    return path


def delete_issue(base_dir: PathLike, issue_id: str) -> bool:
    """Delete an issue file.

    Returns:
        True if a file was removed, False if it did not exist
    """
    try:
        issue_path(base_dir, issue_id).unlink()
        return True
    except FileNotFoundError:
        return False
