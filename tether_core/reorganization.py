"""Reorganization for Tether - reparenting, cycle detection, integrity checks."""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from tether_core.dependencies import find_dangling_references
from tether_core.exceptions import IntegrityError, ValidationError
from tether_core.issues import touch_issue
from tether_core.storage import list_issues, read_issue, write_issue

__all__ = [
    "detect_cycle",
    "reparent_issue",
    "find_parent_cycles",
    "check_integrity",
]

PathLike = Union[str, Path]


def _parent_map(issues: Iterable[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    return {issue["id"]: issue.get("parent_id") for issue in issues}


def detect_cycle(store_dir: PathLike, issue_id: str, new_parent_id: str) -> bool:
    """Detect if reparenting would create a cycle.

    Args:
        store_dir: Record store directory
        issue_id: Issue to reparent
        new_parent_id: Proposed new parent

    Returns:
        True if cycle would be created
    """
    parents = _parent_map(list_issues(store_dir))

    # Walk up from new_parent to see if we reach issue_id
    current: Optional[str] = new_parent_id
    visited = set()

    while current:
        if current == issue_id:
            return True

        if current in visited:
            break  # Pre-existing cycle above us, not caused by this change

        visited.add(current)
        current = parents.get(current)

    return False


def reparent_issue(
    store_dir: PathLike,
    issue_id: str,
    new_parent_id: Optional[str],
) -> Dict[str, Any]:
    """Change parent of an issue.

    Args:
        store_dir: Record store directory
        issue_id: Issue to reparent
        new_parent_id: New parent ID (None to remove parent)

    Returns:
        The updated issue

    Raises:
        ValidationError: If either issue does not exist
        IntegrityError: If reparenting would create a cycle
    """
    issue = read_issue(store_dir, issue_id)
    if issue is None:
        raise ValidationError(f"Issue {issue_id} not found")

    if new_parent_id is not None:
        if read_issue(store_dir, new_parent_id) is None:
            raise ValidationError(f"Issue {new_parent_id} not found")
        if detect_cycle(store_dir, issue_id, new_parent_id):
            raise IntegrityError("Cannot reparent: would create a cycle")

    if issue.get("parent_id") == new_parent_id:
        return issue

    issue["parent_id"] = new_parent_id
    touch_issue(issue)
    write_issue(store_dir, issue)
    return issue


def find_parent_cycles(issues: Iterable[Dict[str, Any]]) -> List[List[str]]:
    """Find every parent_id cycle in a set of issues.

    Returns:
        List of cycles, each a list of issue IDs starting at its smallest ID
    """
    parents = _parent_map(issues)
    cycles = []
    seen = set()

    for start in sorted(parents):
        if start in seen:
            continue

        path: List[str] = []
        on_path = {}
        current: Optional[str] = start

        while current in parents and current not in seen:
            if current in on_path:
                cycle = path[on_path[current]:]
                pivot = cycle.index(min(cycle))
                cycles.append(cycle[pivot:] + cycle[:pivot])
                break
            on_path[current] = len(path)
            path.append(current)
            current = parents[current]

        seen.update(path)

    return cycles


def check_integrity(store_dir: PathLike) -> Dict[str, Any]:
    """Check the record store for dangling references and parent cycles.

    Returns:
        Dict with "dangling" (list of references), "cycles" (list of ID lists)
        and "ok" (True when both are empty)
    """
    issues = list_issues(store_dir)
    dangling = find_dangling_references(issues)
    cycles = find_parent_cycles(issues)

    return {
        "ok": not dangling and not cycles,
        "dangling": dangling,
        "cycles": cycles,
    }
