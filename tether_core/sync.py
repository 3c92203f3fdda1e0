"""Sync module for Tether - git-backed sync of the record store.

The record store (.tether/data-sync/) is a git working tree on the sync
branch. Sync moves whole record files between replicas; it never merges
the content of a record. When both sides changed the same record, one
copy stays live by precedence and the other is written unchanged to the
active workspace's attic/.
"""

import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from loguru import logger

from tether_core.constants import ISSUES_DIR, MAPPINGS_DIR, STORE_WATERMARK
from tether_core.db import set_last_sync_time
from tether_core.exceptions import TetherError
from tether_core.git import GitRepo
from tether_core.issues import touch_issue
from tether_core.mapping import (
    dump_mapping_table,
    mapping_path,
    merge_mapping_tables,
    parse_mapping_table,
    read_mapping_table,
)
from tether_core.storage import (
    delete_issue,
    issue_id_from_path,
    list_issues,
    parse_issue,
    read_issue_bytes,
    write_issue,
)
from tether_core.utils import atomic_write_bytes, atomic_write_text, get_iso_timestamp, parse_timestamp
from tether_core.workspace import quarantine, resolve_conflict

__all__ = [
    "get_sync_status",
    "format_sync_status",
    "pull_changes",
    "push_changes",
    "full_sync",
    "reconcile_provenance",
]

PathLike = Union[str, Path]

TRACKED_DIRS = (ISSUES_DIR, MAPPINGS_DIR)


def _remote_ref(remote: str, branch: str) -> str:
    return f"{remote}/{branch}"


def _tracking_ref(repo: GitRepo, remote: str, branch: str, state: str) -> Optional[str]:
    """Remote-tracking ref to compare against, or None if the remote has no branch."""
    ref = _remote_ref(remote, branch)
    if state == "missing" or not repo.ref_exists(ref):
        return None
    return ref


def _describe_status(code: str) -> str:
    if "D" in code:
        return "deleted"
    if code == "??" or "A" in code:
        return "new"
    return "modified"


def _local_changes(repo: GitRepo, tracking: Optional[str]) -> List[str]:
    changes = [
        f"{_describe_status(code)}: {path}"
        for code, path in repo.working_tree_status(*TRACKED_DIRS)
    ]

    if repo.has_commits():
        changes.extend(f"unpushed: {line}" for line in repo.log_range(tracking, "HEAD"))

    return changes


def get_sync_status(repo: GitRepo, branch: str, remote: str) -> Dict[str, Any]:
    """Report local and remote changes without changing either side.

    The fetch only moves the remote-tracking ref. An unreachable remote
    is reported as remote_available=False with no remote changes.

    Args:
        repo: The record store repository
        branch: Sync branch
        remote: Remote name

    Returns:
        Dict with synced, local_changes, remote_changes, sync_branch,
        remote, remote_available
    """
    state = repo.fetch(remote, branch)
    tracking = _tracking_ref(repo, remote, branch, state)

    local_changes = _local_changes(repo, tracking)

    remote_changes: List[str] = []
    if state == "fetched" and tracking is not None:
        base = "HEAD" if repo.has_commits() else None
        remote_changes = repo.log_range(base, tracking)

    return {
        "synced": not local_changes and not remote_changes,
        "local_changes": local_changes,
        "remote_changes": remote_changes,
        "sync_branch": branch,
        "remote": remote,
        "remote_available": state != "unreachable",
    }


def format_sync_status(status: Dict[str, Any]) -> str:
    """Render a sync status for humans."""
    lines = [f"Sync branch: {status['sync_branch']} (remote: {status['remote']})"]

    if not status.get("remote_available", True):
        lines.append("Remote unavailable: remote changes unknown")

    lines.append("Status: in sync" if status["synced"] else "Status: diverged")

    if status["local_changes"]:
        lines.append(f"\nLocal changes ({len(status['local_changes'])}):")
        lines.extend(f"  {change}" for change in status["local_changes"])

    if status["remote_changes"]:
        lines.append(f"\nRemote changes ({len(status['remote_changes'])}):")
        lines.extend(f"  {change}" for change in status["remote_changes"])

    return "\n".join(lines)


def _commit_local(repo: GitRepo, message: str) -> bool:
    repo.add(".")
    return repo.commit(message)


def _overlapping_files(repo: GitRepo, ref: str) -> List[str]:
    """Files changed on both HEAD and ref since their merge base."""
    base = repo.merge_base("HEAD", ref)
    ours = set(repo.changed_files(base, "HEAD"))
    theirs = set(repo.changed_files(base, ref))
    return sorted(ours & theirs)


def _pick_forced(local: Dict[str, Any], remote: Dict[str, Any]) -> str:
    """Forced resolution: the later updated_at wins, local on a tie."""
    local_ts = parse_timestamp(local.get("updated_at"))
    remote_ts = parse_timestamp(remote.get("updated_at"))
    if remote_ts is not None and (local_ts is None or remote_ts > local_ts):
        return "remote"
    return "local"


def _resolve_record(
    issue_id: str,
    local_bytes: Optional[bytes],
    remote_bytes: Optional[bytes],
    attic_dir: Path,
    force: bool,
) -> Tuple[Optional[bytes], Optional[Path], bool]:
    """Choose the live copy of a record changed on both sides.

    Returns:
        (winning bytes or None if both sides deleted it, attic path of the
        quarantined loser or None, True if the choice was forced)
    """
    if local_bytes is None or remote_bytes is None:
        # Deletion against modification: the modified copy survives
        kept = remote_bytes if local_bytes is None else local_bytes
        if kept is not None:
            side = "remote" if local_bytes is None else "local"
            logger.info(f"{issue_id} was deleted on one side; keeping the {side} modification")
        return kept, None, False

    copies = {"local": local_bytes, "remote": remote_bytes}
    parsed: Dict[str, Dict[str, Any]] = {}
    for side, data in copies.items():
        try:
            parsed[side] = parse_issue(data)
        except ValueError as e:
            logger.warning(f"Unreadable {side} copy of {issue_id}: {e}")

    if len(parsed) == 2:
        if force:
            winner = _pick_forced(parsed["local"], parsed["remote"])
        else:
            winner = resolve_conflict(parsed["local"], parsed["remote"])
    else:
        # An unreadable copy can never win
        winner = "remote" if "remote" in parsed and "local" not in parsed else "local"

    loser = "remote" if winner == "local" else "local"

    if force and len(parsed) == 2:
        logger.warning(f"Forced overwrite of {issue_id}: {winner} copy wins, {loser} copy discarded")
        return copies[winner], None, True

    logger.warning(f"Conflict on {issue_id}: {winner} copy stays live")
    return copies[winner], quarantine(attic_dir, issue_id, copies[loser]), False


def _resolve_mapping(path: str, local_bytes: Optional[bytes], remote_bytes: Optional[bytes]) -> bytes:
    ours = parse_mapping_table(local_bytes or b"", origin=f"local {path}")
    theirs = parse_mapping_table(remote_bytes or b"", origin=f"remote {path}")
    merged, dropped = merge_mapping_tables(ours, theirs)
    for foreign_id in dropped:
        logger.warning(f"Mapping {path}: keeping local entry for {foreign_id}")
    return dump_mapping_table(merged).encode("utf-8")


def _resolve_overlap(
    repo: GitRepo,
    ref: str,
    paths: List[str],
    attic_dir: Path,
    force: bool,
) -> Dict[str, Any]:
    """Write one whole-file winner for every path changed on both sides."""
    conflicts = 0
    quarantined: List[str] = []
    forced: List[str] = []

    for path in paths:
        local_bytes = repo.show("HEAD", path)
        remote_bytes = repo.show(ref, path)
        if local_bytes == remote_bytes:
            continue

        target = repo.path / path
        issue_id = issue_id_from_path(path)

        if issue_id is not None:
            winner, attic_path, was_forced = _resolve_record(
                issue_id, local_bytes, remote_bytes, attic_dir, force
            )
            if attic_path is not None:
                conflicts += 1
                quarantined.append(str(attic_path))
            if was_forced:
                forced.append(issue_id)
        elif path.startswith(f"{MAPPINGS_DIR}/"):
            winner = _resolve_mapping(path, local_bytes, remote_bytes)
        else:
            logger.warning(f"Unexpected file {path} changed on both sides; keeping local copy")
            winner = local_bytes

        if winner is None:
            repo.remove(path)
            continue

        atomic_write_bytes(target, winner)
        repo.add(path)

    return {"conflicts": conflicts, "quarantined": quarantined, "forced": forced}


def _retarget_references(store_dir: Path, replaced: Dict[str, str]) -> None:
    """Point parent and dependency references at surviving duplicates."""
    for issue in list_issues(store_dir):
        changed = False

        parent_id = issue.get("parent_id")
        if parent_id in replaced:
            issue["parent_id"] = replaced[parent_id]
            changed = True

        dependencies = []
        seen = set()
        for dep in issue.get("dependencies") or []:
            target = replaced.get(dep.get("target"), dep.get("target"))
            if target != dep.get("target"):
                changed = True
            key = (dep.get("type"), target)
            if target == issue["id"] or key in seen:
                changed = True
                continue
            seen.add(key)
            dependencies.append({**dep, "target": target})

        if changed:
            issue["dependencies"] = dependencies
            touch_issue(issue)
            write_issue(store_dir, issue)


def reconcile_provenance(store_dir: PathLike, attic_dir: PathLike) -> List[Dict[str, str]]:
    """Collapse live records that were imported from the same foreign record.

    Two replicas importing the same foreign record independently can each
    create a local record for it. The one named by the source's mapping
    table survives (the smallest ID if the table names neither); the
    others are quarantined and removed, and references to them are
    pointed at the survivor.

    Returns:
        One {source, original_id, kept, removed} entry per removed record
    """
    store_dir = Path(store_dir)
    groups: Dict[Tuple[str, str], List[str]] = {}

    for issue in list_issues(store_dir):
        for source, block in (issue.get("extensions") or {}).items():
            if isinstance(block, dict) and block.get("original_id"):
                groups.setdefault((source, str(block["original_id"])), []).append(issue["id"])

    removed: List[Dict[str, str]] = []
    tables: Dict[str, Dict[str, str]] = {}

    for (source, original_id), ids in sorted(groups.items()):
        if len(ids) < 2:
            continue

        if source not in tables:
            tables[source] = read_mapping_table(mapping_path(store_dir, source))
        table = tables[source]

        named = table.get(original_id)
        keeper = named if named in ids else min(ids)
        if named is None:
            table[original_id] = keeper
            atomic_write_text(mapping_path(store_dir, source), dump_mapping_table(table))

        for duplicate in sorted(set(ids) - {keeper}):
            data = read_issue_bytes(store_dir, duplicate)
            if data is None:
                continue
            quarantine(attic_dir, duplicate, data)
            delete_issue(store_dir, duplicate)
            logger.warning(f"{duplicate} duplicates {keeper} ({source} {original_id}); removed")
            removed.append({
                "source": source,
                "original_id": original_id,
                "kept": keeper,
                "removed": duplicate,
            })

    if removed:
        _retarget_references(store_dir, {entry["removed"]: entry["kept"] for entry in removed})

    return removed


def _pull_result(remote_available: bool, **overrides: Any) -> Dict[str, Any]:
    result = {
        "pulled": 0,
        "conflicts": 0,
        "quarantined": [],
        "forced": [],
        "duplicates": [],
        "remote_available": remote_available,
    }
    result.update(overrides)
    return result


def pull_changes(
    repo: GitRepo,
    branch: str,
    remote: str,
    attic_dir: PathLike,
    force: bool = False,
) -> Dict[str, Any]:
    """Bring remote record changes into the record store.

    Local edits are committed first. Records changed on both sides are
    never content-merged: the precedence winner is written whole and the
    loser goes to attic_dir. With force the later updated_at wins and the
    loser is discarded (logged). Mapping tables changed on both sides are
    unioned, local entries winning.

    A missing remote branch or an unreachable remote is a no-op.

    Args:
        repo: The record store repository
        branch: Sync branch
        remote: Remote name
        attic_dir: Attic of the active workspace
        force: Let the later write win without quarantine

    Returns:
        Dict with pulled (commits), conflicts, quarantined (attic paths),
        forced (issue IDs), duplicates, remote_available

    Raises:
        QuarantineError: If a losing copy cannot be written (the merge is aborted)
        GitError: If git fails
    """
    attic_dir = Path(attic_dir)
    state = repo.fetch(remote, branch)
    if state == "unreachable":
        return _pull_result(False)
    if state == "missing":
        logger.info(f"Nothing to pull: {remote}/{branch} does not exist yet")
        return _pull_result(True)

    ref = _remote_ref(remote, branch)
    incoming = repo.log_range("HEAD" if repo.has_commits() else None, ref)
    if not incoming:
        logger.info("Already up to date")
        return _pull_result(True)

    _commit_local(repo, "tether: local changes")

    outcome = {"conflicts": 0, "quarantined": [], "forced": []}
    if not repo.has_commits():
        repo.reset_to(ref)
    elif repo.is_ancestor("HEAD", ref):
        repo.fast_forward(ref)
    else:
        overlap = _overlapping_files(repo, ref)
        repo.merge_no_commit(ref)
        try:
            outcome = _resolve_overlap(repo, ref, overlap, attic_dir, force)
            repo.add(".")
            repo.commit_merge(f"tether: merge {ref}")
        except (TetherError, OSError):
            repo.abort_merge()
            raise

    duplicates = reconcile_provenance(repo.path, attic_dir)
    if duplicates:
        _commit_local(repo, "tether: reconcile duplicate imports")

    logger.info(f"Pulled {len(incoming)} commits from {ref} ({outcome['conflicts']} conflicts)")
    return _pull_result(
        True,
        pulled=len(incoming),
        conflicts=outcome["conflicts"],
        quarantined=outcome["quarantined"],
        forced=outcome["forced"],
        duplicates=duplicates,
    )


def push_changes(repo: GitRepo, branch: str, remote: str) -> Dict[str, Any]:
    """Commit local record changes and publish them to the sync branch.

    Returns:
        Dict with pushed (commits) and files (paths changed); pushed is 0
        when there was nothing to publish

    Raises:
        GitError: If the push fails (for example, the remote moved on)
    """
    _commit_local(repo, "tether: sync local changes")

    if not repo.has_commits():
        logger.info("Nothing to push")
        return {"pushed": 0, "files": 0}

    ref = _remote_ref(remote, branch)
    tracking = ref if repo.ref_exists(ref) else None
    pending = repo.log_range(tracking, "HEAD")
    if not pending:
        logger.info("Nothing to push")
        return {"pushed": 0, "files": 0}

    files = repo.changed_files(tracking, "HEAD")
    repo.push(remote, branch)
    logger.info(f"Pushed {len(pending)} commits to {ref}")
    return {"pushed": len(pending), "files": len(files)}


def full_sync(
    repo: GitRepo,
    branch: str,
    remote: str,
    attic_dir: PathLike,
    force: bool = False,
    db: Optional[sqlite3.Connection] = None,
) -> Dict[str, Any]:
    """Pull, then push. Records the store watermark when both succeed.

    If the remote cannot be reached, local changes are committed but not
    pushed and the watermark is left alone.

    Returns:
        The pull result merged with the push result
    """
    pulled = pull_changes(repo, branch, remote, attic_dir, force=force)

    if not pulled["remote_available"]:
        _commit_local(repo, "tether: local changes")
        logger.warning("Remote unavailable; local changes were committed but not pushed")
        return {**pulled, "pushed": 0, "files": 0}

    pushed = push_changes(repo, branch, remote)

    if db is not None:
        set_last_sync_time(db, STORE_WATERMARK, get_iso_timestamp())

    return {**pulled, **pushed}
