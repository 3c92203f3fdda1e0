"""Workspace operations for sync conflict recovery, backups, and bulk editing.

Workspaces are directories under .tether/workspaces/ that store issue data.
They mirror the record store layout:

    .tether/workspaces/{name}/
        issues/
        mappings/
        attic/

attic/ holds copies that lost a conflict resolution. Nothing in Tether
reads it back automatically; it exists for manual reconciliation.
"""

import re
import shutil
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from tether_core.constants import (
    ISSUES_DIR,
    MAPPINGS_DIR,
    ATTIC_DIR,
    WORKSPACE_LAYOUT,
    OUTBOX_WORKSPACE,
    WORKSPACE_NAME_PATTERN,
    STORE_WATERMARK,
)
from tether_core.config import get_workspaces_dir
from tether_core.db import get_db, get_last_sync_time, set_last_sync_time
from tether_core.exceptions import QuarantineError, ValidationError
from tether_core.mapping import dump_mapping_table, merge_mapping_tables, read_mapping_table
from tether_core.storage import issue_path, list_issues, parse_issue, read_issue_bytes, serialize_issue
from tether_core.utils import atomic_write_bytes, atomic_write_text, get_iso_timestamp, parse_timestamp

__all__ = [
    "is_valid_workspace_name",
    "get_workspace_dir",
    "resolve_workspace_dir",
    "ensure_layout",
    "get_attic_dir",
    "resolve_conflict",
    "quarantine",
    "save_to_workspace",
    "import_from_workspace",
    "list_workspaces",
    "delete_workspace",
    "workspace_exists",
]

PathLike = Union[str, Path]


def is_valid_workspace_name(name: str) -> bool:
    """Workspace names are lowercase alphanumerics, hyphens and underscores."""
    return bool(name) and re.match(WORKSPACE_NAME_PATTERN, name) is not None


def get_workspace_dir(root: PathLike, name: str) -> Path:
    """Directory of a named workspace.

    Raises:
        ValidationError: If the name is invalid
    """
    if not is_valid_workspace_name(name):
        raise ValidationError(
            f'Invalid workspace name: "{name}". Use lowercase alphanumeric characters, hyphens, and underscores.'
        )
    return get_workspaces_dir(Path(root)) / name


def resolve_workspace_dir(
    root: PathLike,
    workspace: Optional[str] = None,
    dir: Optional[PathLike] = None,
    outbox: bool = False,
) -> Path:
    """Resolve exactly one workspace selector to a directory.

    Args:
        root: Tether root
        workspace: Named workspace under .tether/workspaces/
        dir: Arbitrary directory
        outbox: The reserved "outbox" workspace

    Raises:
        ValidationError: If zero or several selectors are given, or the name is invalid
    """
    selected = [s for s in (workspace is not None, dir is not None, outbox) if s]
    if not selected:
        raise ValidationError("One of --workspace, --dir, or --outbox is required")
    if len(selected) > 1:
        raise ValidationError("Only one of --workspace, --dir, or --outbox may be given")

    if dir is not None:
        return Path(dir)

    return get_workspace_dir(root, OUTBOX_WORKSPACE if outbox else workspace)


def ensure_layout(target_dir: PathLike) -> Path:
    """Create the issues/, mappings/, attic/ layout under target_dir."""
    target_dir = Path(target_dir)
    for sub in WORKSPACE_LAYOUT:
        (target_dir / sub).mkdir(parents=True, exist_ok=True)
    return target_dir


def get_attic_dir(root: PathLike, name: str) -> Path:
    """Attic of a named workspace, creating the workspace layout if needed."""
    return ensure_layout(get_workspace_dir(root, name)) / ATTIC_DIR


def resolve_conflict(local: Dict[str, Any], remote: Dict[str, Any]) -> str:
    """Decide which of two divergent copies of one issue stays live.

    Precedence: higher version wins; on equal versions the later updated_at
    wins; if both tie, the copy whose canonical serialization sorts greater
    wins, so every replica reaches the same decision.

    Returns:
        "local" or "remote"
    """
    local_version = int(local.get("version", 0))
    remote_version = int(remote.get("version", 0))
    if local_version != remote_version:
        return "local" if local_version > remote_version else "remote"

    local_ts = parse_timestamp(local.get("updated_at"))
    remote_ts = parse_timestamp(remote.get("updated_at"))
    if local_ts != remote_ts:
        if remote_ts is None:
            return "local"
        if local_ts is None:
            return "remote"
        return "local" if local_ts > remote_ts else "remote"

    winner = "local" if serialize_issue(local) >= serialize_issue(remote) else "remote"
    logger.warning(
        f"Conflict on {local.get('id')}: version and updated_at tie; {winner} copy wins by content order"
    )
    return winner


def quarantine(attic_dir: PathLike, issue_id: str, data: bytes) -> Path:
    """Write a conflict-losing copy to attic/<issue_id>/<timestamp>.json.

    The bytes are written unchanged. Existing attic entries are never
    overwritten.

    Raises:
        QuarantineError: If the copy cannot be written
    """
    stamp = get_iso_timestamp().replace(":", "").replace("-", "")
    record_dir = Path(attic_dir) / issue_id
    target = record_dir / f"{stamp}.json"

    try:
        record_dir.mkdir(parents=True, exist_ok=True)
        counter = 1
        while target.exists():
            target = record_dir / f"{stamp}-{counter}.json"
            counter += 1
        atomic_write_bytes(target, data)
    except OSError as e:
        raise QuarantineError(f"Cannot quarantine {issue_id} into {attic_dir}: {e}", path=str(target)) from e

    logger.warning(f"Quarantined losing copy of {issue_id} to {target}")
    return target


def _watermark_key(target_dir: Path) -> str:
    return f"last_sync:{target_dir.resolve()}"


def _copy_mappings(source_dir: Path, target_dir: Path) -> int:
    """Union every mappings/*.yml of source into target. Returns tables changed."""
    changed = 0
    source_mappings = source_dir / MAPPINGS_DIR
    if not source_mappings.is_dir():
        return 0

    for path in sorted(source_mappings.glob("*.yml")):
        target_path = target_dir / MAPPINGS_DIR / path.name
        ours = read_mapping_table(target_path)
        merged, dropped = merge_mapping_tables(ours, read_mapping_table(path))
        for foreign_id in dropped:
            logger.warning(f"Mapping {path.name}: keeping existing entry for {foreign_id}")
        if merged != ours or not target_path.exists():
            atomic_write_text(target_path, dump_mapping_table(merged))
            changed += 1

    return changed


def _place_copy(
    target_dir: Path,
    issue_id: str,
    incoming: bytes,
    attic_dir: Path,
    incoming_side: str,
) -> Optional[bool]:
    """Write incoming bytes for an issue into target_dir, resolving conflicts.

    Returns:
        None if target already held identical bytes, True if written cleanly,
        False if a conflict was resolved (the loser went to attic_dir)
    """
    current = read_issue_bytes(target_dir, issue_id)
    if current == incoming:
        return None
    if current is None:
        atomic_write_bytes(issue_path(target_dir, issue_id), incoming)
        return True

    try:
        current_issue = parse_issue(current)
    except ValueError:
        # An unreadable copy can never win
        quarantine(attic_dir, issue_id, current)
        atomic_write_bytes(issue_path(target_dir, issue_id), incoming)
        return False

    incoming_issue = parse_issue(incoming)
    sides = {"local": current_issue, "remote": incoming_issue}
    if incoming_side == "local":
        sides = {"local": incoming_issue, "remote": current_issue}
    winner = resolve_conflict(sides["local"], sides["remote"])

    if winner == incoming_side:
        quarantine(attic_dir, issue_id, current)
        atomic_write_bytes(issue_path(target_dir, issue_id), incoming)
    else:
        quarantine(attic_dir, issue_id, incoming)

    return False


def save_to_workspace(
    root: PathLike,
    store_dir: PathLike,
    workspace: Optional[str] = None,
    dir: Optional[PathLike] = None,
    outbox: bool = False,
    updates_only: bool = False,
    db: Optional[sqlite3.Connection] = None,
) -> Dict[str, Any]:
    """Save issues from the record store to a workspace or directory.

    With updates_only (implied by outbox), only issues whose updated_at is
    later than the workspace's watermark are copied; without a workspace
    watermark the store's last sync point is used. If neither exists the
    save degrades to a full copy, and says so in the result and the log.

    An issue already in the workspace with different content is resolved
    by precedence and the losing copy goes to the workspace attic.

    Args:
        root: Tether root
        store_dir: Record store directory
        workspace, dir, outbox: Exactly one target selector
        updates_only: Copy only issues changed since the watermark
        db: State database connection (opened from root when omitted)

    Returns:
        Dict with saved, conflicts, target_dir, degraded
    """
    target_dir = resolve_workspace_dir(root, workspace=workspace, dir=dir, outbox=outbox)
    ensure_layout(target_dir)
    attic_dir = target_dir / ATTIC_DIR

    own_db = db is None
    if own_db:
        db = get_db(Path(root))

    try:
        updates_only = updates_only or outbox
        degraded = False
        watermark = None

        if updates_only:
            watermark = get_last_sync_time(db, _watermark_key(target_dir)) or get_last_sync_time(db, STORE_WATERMARK)
            if watermark is None:
                degraded = True
                logger.warning(f"No sync watermark for {target_dir}; saving all issues (full copy)")

        watermark_ts = parse_timestamp(watermark)
        saved = 0
        conflicts = 0

        for issue in list_issues(store_dir):
            if watermark_ts is not None:
                updated = parse_timestamp(issue.get("updated_at"))
                if updated is not None and updated <= watermark_ts:
                    continue

            data = read_issue_bytes(store_dir, issue["id"]) or serialize_issue(issue)
            outcome = _place_copy(target_dir, issue["id"], data, attic_dir, incoming_side="local")
            if outcome is False:
                conflicts += 1
            else:
                saved += 1

        _copy_mappings(Path(store_dir), target_dir)
        set_last_sync_time(db, _watermark_key(target_dir), get_iso_timestamp())
    finally:
        if own_db:
            db.close()

    logger.info(f"Saved {saved} issues to {target_dir} ({conflicts} conflicts)")
    return {
        "saved": saved,
        "conflicts": conflicts,
        "target_dir": str(target_dir),
        "degraded": degraded,
    }


def import_from_workspace(
    root: PathLike,
    store_dir: PathLike,
    workspace: Optional[str] = None,
    dir: Optional[PathLike] = None,
    outbox: bool = False,
    clear_on_success: bool = False,
) -> Dict[str, Any]:
    """Import issues from a workspace or directory back into the record store.

    A store issue with different content is resolved by precedence; the
    losing copy goes to the workspace attic. Mapping tables are merged
    without overwriting store entries. With clear_on_success (implied by
    outbox) the workspace is deleted afterwards, unless the import put
    anything in its attic.

    Returns:
        Dict with imported, conflicts, source_dir, cleared
    """
    source_dir = resolve_workspace_dir(root, workspace=workspace, dir=dir, outbox=outbox)
    if not source_dir.is_dir():
        raise ValidationError(f"Workspace not found: {source_dir}")

    attic_dir = source_dir / ATTIC_DIR
    clear_on_success = clear_on_success or outbox

    imported = 0
    conflicts = 0

    for path in sorted((source_dir / ISSUES_DIR).glob("*.json")):
        data = path.read_bytes()
        try:
            issue_id = parse_issue(data)["id"]
        except ValueError as e:
            logger.warning(f"Skipping unreadable workspace issue {path}: {e}")
            continue

        outcome = _place_copy(Path(store_dir), issue_id, data, attic_dir, incoming_side="remote")
        if outcome is False:
            conflicts += 1
        else:
            imported += 1

    _copy_mappings(source_dir, Path(store_dir))

    cleared = False
    if clear_on_success and imported > 0:
        if conflicts:
            logger.warning(f"Keeping {source_dir}: its attic holds {conflicts} conflicting copies")
        elif dir is None:
            delete_workspace(root, OUTBOX_WORKSPACE if outbox else workspace)
            cleared = True

    return {
        "imported": imported,
        "conflicts": conflicts,
        "source_dir": str(source_dir),
        "cleared": cleared,
    }


def list_workspaces(root: PathLike) -> List[str]:
    """List workspace names under .tether/workspaces/ (sorted).

    Entries that cannot be inspected are logged and skipped.
    """
    workspaces_dir = get_workspaces_dir(Path(root))

    try:
        entries = list(workspaces_dir.iterdir())
    except (FileNotFoundError, NotADirectoryError):
        return []

    workspaces = []
    for entry in entries:
        try:
            if entry.is_dir():
                workspaces.append(entry.name)
        except OSError as e:
            logger.warning(f"Skipping unreadable workspace entry {entry}: {e}")

    return sorted(workspaces)


def delete_workspace(root: PathLike, name: str) -> bool:
    """Delete a workspace. Deleting a missing workspace is a no-op.

    Returns:
        True if a workspace was removed
    """
    workspace_dir = get_workspace_dir(root, name)

    try:
        shutil.rmtree(workspace_dir)
    except FileNotFoundError:
        return False

    logger.info(f"Deleted workspace {name}")
    return True


def workspace_exists(root: PathLike, name: str) -> bool:
    return get_workspace_dir(root, name).is_dir()
