"""Issue management for Tether - CRUD operations on the record store."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from tether_core.constants import VALID_STATUSES, VALID_KINDS, PRIORITY_RANGE, DEFAULT_PRIORITY
from tether_core.exceptions import ValidationError
from tether_core.ids import generate_id
from tether_core.storage import list_issues as _list_issues, read_issue, write_issue
from tether_core.utils import get_iso_timestamp, later_timestamp

__all__ = [
    "validate_fields",
    "new_issue",
    "touch_issue",
    "create_issue",
    "get_issue",
    "list_issues",
    "update_issue",
    "close_issue",
]

PathLike = Union[str, Path]


def validate_fields(
    status: Optional[str] = None,
    kind: Optional[str] = None,
    priority: Optional[int] = None,
) -> None:
    """Validate enumerated issue fields.

    Raises:
        ValidationError: If status, kind or priority is invalid
    """
    if status is not None and status not in VALID_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {sorted(VALID_STATUSES)}")

    if kind is not None and kind not in VALID_KINDS:
        raise ValidationError(f"Invalid kind: {kind}. Must be one of {sorted(VALID_KINDS)}")

    if priority is not None:
        min_priority, max_priority = PRIORITY_RANGE
        if not (min_priority <= priority <= max_priority):
            raise ValidationError(f"Priority must be between {min_priority} and {max_priority}, got {priority}")


def new_issue(issue_id: str, title: str, **fields: Any) -> Dict[str, Any]:
    """Build a complete issue dict at version 1 with every field present."""
    now = get_iso_timestamp()
    issue: Dict[str, Any] = {
        "id": issue_id,
        "version": 1,
        "kind": "task",
        "title": title,
        "description": "",
        "notes": None,
        "status": "open",
        "priority": DEFAULT_PRIORITY,
        "assignee": None,
        "labels": [],
        "dependencies": [],
        "parent_id": None,
        "created_at": now,
        "updated_at": now,
        "closed_at": None,
        "close_reason": None,
        "due_date": None,
        "deferred_until": None,
        "extensions": {},
    }
    issue.update(fields)
    return issue


def touch_issue(issue: Dict[str, Any]) -> Dict[str, Any]:
    """Mark an issue as mutated: bump version, advance updated_at.

    updated_at never moves backwards, even if the local clock is behind the
    timestamp already on the record.
    """
    issue["version"] = int(issue.get("version", 0)) + 1
    issue["updated_at"] = later_timestamp(issue.get("updated_at"), get_iso_timestamp())
    return issue


def create_issue(
    store_dir: PathLike,
    prefix: str,
    title: str,
    description: str = "",
    kind: str = "task",
    status: str = "open",
    priority: int = DEFAULT_PRIORITY,
    parent_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a new issue.

    Args:
        store_dir: Record store directory
        prefix: ID prefix from config
        title: Issue title
        description: Optional detailed description
        kind: bug, feature, task, epic or chore
        status: Status (open, in_progress, blocked, deferred, closed)
        priority: Priority 0-4 (0=critical, 4=backlog)
        parent_id: Optional parent issue ID

    Returns:
        Dict with created issue data

    Raises:
        ValidationError: If a field is invalid or the parent does not exist
    """
    validate_fields(status=status, kind=kind, priority=priority)

    existing_ids = {issue["id"] for issue in _list_issues(store_dir)}

    if parent_id is not None and parent_id not in existing_ids:
        raise ValidationError(f"Parent issue {parent_id} not found")

    issue_id = generate_id(title, prefix, existing_ids=existing_ids)

    issue = new_issue(
        issue_id,
        title,
        description=description,
        kind=kind,
        status=status,
        priority=priority,
        parent_id=parent_id,
    )
    if status == "closed":
        issue["closed_at"] = issue["updated_at"]

    write_issue(store_dir, issue)
    return issue


def get_issue(store_dir: PathLike, issue_id: str) -> Optional[Dict[str, Any]]:
    """Get issue by ID.

    Returns:
        Dict with issue data, or None if not found
    """
    return read_issue(store_dir, issue_id)


def list_issues(
    store_dir: PathLike,
    status: Optional[Union[str, List[str]]] = None,
) -> List[Dict[str, Any]]:
    """List issues with optional status filtering.

    Args:
        store_dir: Record store directory
        status: Single status string, list of statuses, or None for all

    Returns:
        List of issue dicts, sorted by priority then created_at (desc)
    """
    issues = _list_issues(store_dir)

    if status is not None:
        wanted = {status} if isinstance(status, str) else set(status)
        issues = [issue for issue in issues if issue.get("status") in wanted]

    # Stable sorts: newest first, then by priority
    issues.sort(key=lambda issue: issue.get("created_at") or "", reverse=True)
    issues.sort(key=lambda issue: issue.get("priority", DEFAULT_PRIORITY))
    return issues


def update_issue(
    store_dir: PathLike,
    issue_id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[int] = None,
    kind: Optional[str] = None,
) -> Dict[str, Any]:
    """Update issue fields.

    Every successful update increments version and advances updated_at.

    Returns:
        The updated issue

    Raises:
        ValidationError: If the issue does not exist or a field is invalid
    """
    validate_fields(status=status, kind=kind, priority=priority)

    issue = read_issue(store_dir, issue_id)
    if issue is None:
        raise ValidationError(f"Issue {issue_id} not found")

    if title is not None:
        issue["title"] = title

    if description is not None:
        issue["description"] = description

    if kind is not None:
        issue["kind"] = kind

    if priority is not None:
        issue["priority"] = priority

    touch_issue(issue)

    if status is not None:
        issue["status"] = status
        if status == "closed":
            issue["closed_at"] = issue["updated_at"]
        else:
            # Clear closed_at when reopening
            issue["closed_at"] = None
            issue["close_reason"] = None

    write_issue(store_dir, issue)
    return issue


def close_issue(store_dir: PathLike, issue_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
    """Close an issue.

    Raises:
        ValidationError: If the issue does not exist
    """
    issue = read_issue(store_dir, issue_id)
    if issue is None:
        raise ValidationError(f"Issue {issue_id} not found")

    touch_issue(issue)
    issue["status"] = "closed"
    issue["closed_at"] = issue["updated_at"]
    issue["close_reason"] = reason

    write_issue(store_dir, issue)
    return issue
