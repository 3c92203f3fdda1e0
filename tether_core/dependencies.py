"""Dependency management for Tether - relationships between issues.

A dependency {"type": "blocks", "target": B} stored on issue A means
"A blocks B". Hierarchy is not a dependency; it lives in parent_id.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Union

from tether_core.constants import VALID_DEPENDENCY_TYPES
from tether_core.exceptions import ValidationError
from tether_core.issues import touch_issue
from tether_core.storage import list_issues, read_issue, write_issue

__all__ = [
    "add_dependency",
    "remove_dependency",
    "get_dependencies",
    "get_children",
    "get_blockers",
    "is_blocked",
    "find_dangling_references",
]

PathLike = Union[str, Path]


def add_dependency(
    store_dir: PathLike,
    issue_id: str,
    target_id: str,
    dep_type: str = "blocks",
) -> Dict[str, Any]:
    """Add a dependency from one issue to another.

    Args:
        store_dir: Record store directory
        issue_id: Issue that owns the dependency
        target_id: Issue the dependency points at
        dep_type: Type of dependency (blocks)

    Returns:
        The updated issue (unchanged if the dependency already existed)

    Raises:
        ValidationError: If the type is invalid or either issue is missing
    """
    if dep_type not in VALID_DEPENDENCY_TYPES:
        raise ValidationError(f"Invalid dependency type: {dep_type}. Must be one of {sorted(VALID_DEPENDENCY_TYPES)}")

    if issue_id == target_id:
        raise ValidationError("An issue cannot depend on itself")

    issue = read_issue(store_dir, issue_id)
    if issue is None:
        raise ValidationError(f"Issue {issue_id} not found")

    if read_issue(store_dir, target_id) is None:
        raise ValidationError(f"Issue {target_id} not found")

    dependency = {"type": dep_type, "target": target_id}
    if dependency in issue.get("dependencies", []):
        return issue

    issue.setdefault("dependencies", []).append(dependency)
    touch_issue(issue)
    write_issue(store_dir, issue)
    return issue


def remove_dependency(store_dir: PathLike, issue_id: str, target_id: str) -> Dict[str, Any]:
    """Remove every dependency from issue_id to target_id.

    Raises:
        ValidationError: If the issue does not exist
    """
    issue = read_issue(store_dir, issue_id)
    if issue is None:
        raise ValidationError(f"Issue {issue_id} not found")

    remaining = [dep for dep in issue.get("dependencies", []) if dep.get("target") != target_id]
    if len(remaining) == len(issue.get("dependencies", [])):
        return issue

    issue["dependencies"] = remaining
    touch_issue(issue)
    write_issue(store_dir, issue)
    return issue


def get_dependencies(store_dir: PathLike, issue_id: str) -> List[Dict[str, Any]]:
    """Get the dependency list stored on an issue ([] if missing)."""
    issue = read_issue(store_dir, issue_id)
    if issue is None:
        return []
    return list(issue.get("dependencies", []))


def get_children(store_dir: PathLike, parent_id: str) -> List[Dict[str, Any]]:
    """Get all issues whose parent_id is parent_id."""
    return [issue for issue in list_issues(store_dir) if issue.get("parent_id") == parent_id]


def get_blockers(store_dir: PathLike, issue_id: str) -> List[Dict[str, Any]]:
    """Get open issues that block issue_id."""
    return [
        issue
        for issue in list_issues(store_dir)
        if issue.get("status") != "closed"
        and {"type": "blocks", "target": issue_id} in issue.get("dependencies", [])
    ]


def is_blocked(store_dir: PathLike, issue_id: str) -> bool:
    return len(get_blockers(store_dir, issue_id)) > 0


def find_dangling_references(issues: Iterable[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Find dependency and parent targets that do not resolve to a known issue.

    Args:
        issues: Full set of issues to check

    Returns:
        List of {"issue", "field", "target"} dicts, sorted by issue ID
    """
    issues = list(issues)
    known = {issue["id"] for issue in issues}
    dangling = []

    for issue in sorted(issues, key=lambda i: i["id"]):
        for dep in issue.get("dependencies", []):
            if dep.get("target") not in known:
                dangling.append({"issue": issue["id"], "field": "dependencies", "target": dep.get("target")})

        parent_id = issue.get("parent_id")
        if parent_id and parent_id not in known:
            dangling.append({"issue": issue["id"], "field": "parent_id", "target": parent_id})

    return dangling
