"""CLI module for Tether - typer app and all commands."""

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import typer
from typing_extensions import Annotated

from tether_core.config import (
    DEFAULT_CONFIG,
    find_root,
    get_config_path,
    get_store_dir,
    get_workspaces_dir,
    load_config,
    require_root,
    write_config,
)
from tether_core.constants import ISSUES_DIR, MAPPINGS_DIR, TETHER_DIR, DATA_SYNC_DIR, STATE_DB, WORKSPACES_DIR
from tether_core.db import get_db
from tether_core.dependencies import add_dependency, get_blockers, get_children
from tether_core.exceptions import TetherError, ValidationError
from tether_core.git import GitRepo
from tether_core.importer import DEFAULT_SOURCE, import_from_beads, import_from_file
from tether_core.issues import (
    create_issue as _create_issue,
    get_issue,
    list_issues,
    update_issue as _update_issue,
    close_issue as _close_issue,
)
from tether_core.logging_setup import setup_logging
from tether_core.reorganization import check_integrity, reparent_issue
from tether_core.sync import format_sync_status, full_sync, get_sync_status, pull_changes, push_changes
from tether_core.utils import sanitize_project_name
from tether_core.workspace import (
    delete_workspace,
    get_attic_dir,
    import_from_workspace,
    list_workspaces,
    save_to_workspace,
)

__all__ = ["app", "main"]

# Create Typer apps
app = typer.Typer(help="Tether - git-backed issue tracker with conflict-safe sync")
workspace_app = typer.Typer(help="Save, restore and manage workspaces")
app.add_typer(workspace_app, name="workspace")

state = {"verbose": False}

STATUS_MARKERS = {
    "open": "○",
    "in_progress": "◐",
    "blocked": "⊘",
    "deferred": "◌",
    "closed": "●",
}


@contextmanager
def _errors() -> Iterator[None]:
    """Report TetherError as "Error: ..." and exit with code 1."""
    try:
        yield
    except TetherError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1) from e


def _open_root() -> Tuple[Path, Dict[str, Any]]:
    root = require_root()
    config = load_config(root)
    if config.get("log_file"):
        setup_logging(verbose=state["verbose"], log_file=config["log_file"])
    return root, config


def _sync_context(root: Path, config: Dict[str, Any]) -> Tuple[GitRepo, str, str]:
    sync_config = config["sync"]
    repo = GitRepo(get_store_dir(root), timeout=float(sync_config["fetch_timeout"]))
    return repo, sync_config["branch"], sync_config["remote"]


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2))


@app.callback()
def callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")] = False,
):
    """Tether - git-backed issue tracker with conflict-safe sync."""
    state["verbose"] = verbose
    setup_logging(verbose=verbose)


@app.command()
def init(
    prefix: Annotated[Optional[str], typer.Option(help="Issue ID prefix (defaults to the directory name)")] = None,
    remote: Annotated[str, typer.Option(help="Remote used for sync")] = DEFAULT_CONFIG["sync"]["remote"],
    branch: Annotated[str, typer.Option(help="Sync branch")] = DEFAULT_CONFIG["sync"]["branch"],
    remote_url: Annotated[Optional[str], typer.Option(help="Remote URL (defaults to the host repository's)")] = None,
):
    """Initialize tether in current directory."""
    root = Path.cwd()

    if find_root(str(root)) == root.resolve():
        print(f"Already initialized: {get_config_path(root)}")
        return

    with _errors():
        tether_dir = root / TETHER_DIR
        store_dir = get_store_dir(root)
        for sub in (ISSUES_DIR, MAPPINGS_DIR):
            (store_dir / sub).mkdir(parents=True, exist_ok=True)
        get_workspaces_dir(root).mkdir(parents=True, exist_ok=True)

        (tether_dir / ".gitignore").write_text(f"{DATA_SYNC_DIR}/\n{STATE_DB}\n{WORKSPACES_DIR}/\n")

        repo = GitRepo(store_dir)
        repo.init(branch)

        # The sync branch lives on the same remote as the host repository
        url = remote_url or GitRepo(root).remote_url(remote)
        if url:
            repo.remote_add(remote, url)

        config = {
            "prefix": sanitize_project_name(prefix or root.name) or "issue",
            "sync": dict(DEFAULT_CONFIG["sync"], branch=branch, remote=remote),
            "log_file": None,
        }
        write_config(root, config)
        get_db(root).close()

    print(f"Initialized tether in {tether_dir}")
    print(f"Prefix:      {config['prefix']}")
    print(f"Sync branch: {branch}")
    print(f"Remote:      {url or '(none)'}")


@app.command()
def create(
    title: Annotated[str, typer.Argument(help="Issue title")],
    description: Annotated[str, typer.Option(help="Detailed description")] = "",
    kind: Annotated[str, typer.Option(help="bug, feature, task, epic or chore")] = "task",
    priority: Annotated[int, typer.Option(help="Priority level (0-4)")] = 2,
    status: Annotated[str, typer.Option(help="Initial status")] = "open",
    parent: Annotated[Optional[str], typer.Option(help="Parent issue ID")] = None,
    blocks: Annotated[Optional[str], typer.Option(help="ID of an issue this one blocks")] = None,
):
    """Create a new issue."""
    with _errors():
        root, config = _open_root()
        store_dir = get_store_dir(root)

        issue = _create_issue(
            store_dir,
            config["prefix"],
            title,
            description=description,
            kind=kind,
            status=status,
            priority=priority,
            parent_id=parent,
        )

        if blocks:
            issue = add_dependency(store_dir, issue["id"], blocks)

    print(f"Created {issue['id']}: {issue['title']}")
    if parent:
        print(f"  Parent: {parent}")
    if blocks:
        print(f"  Blocks: {blocks}")


@app.command()
def update(
    issue_id: Annotated[str, typer.Argument(help="Issue ID")],
    title: Annotated[Optional[str], typer.Option(help="Set title")] = None,
    description: Annotated[Optional[str], typer.Option(help="Set description")] = None,
    status: Annotated[Optional[str], typer.Option(help="Set status")] = None,
    priority: Annotated[Optional[int], typer.Option(help="Set priority (0-4)")] = None,
    kind: Annotated[Optional[str], typer.Option(help="Set kind")] = None,
    parent: Annotated[Optional[str], typer.Option(help="Set parent ID (use 'none' to remove)")] = None,
):
    """Update an issue."""
    fields = [title, description, status, priority, kind]
    if parent is None and all(value is None for value in fields):
        print("Error: Nothing to update")
        raise typer.Exit(code=1)

    with _errors():
        root, _ = _open_root()
        store_dir = get_store_dir(root)

        if get_issue(store_dir, issue_id) is None:
            raise ValidationError(f"Issue {issue_id} not found")

        if parent is not None:
            reparent_issue(store_dir, issue_id, None if parent.lower() == "none" else parent)

        if any(value is not None for value in fields):
            _update_issue(
                store_dir,
                issue_id,
                title=title,
                description=description,
                status=status,
                priority=priority,
                kind=kind,
            )

        issue = get_issue(store_dir, issue_id)

    print(f"Updated {issue['id']} (version {issue['version']})")


@app.command()
def close(
    issue_ids: Annotated[List[str], typer.Argument(help="Issue ID(s) to close")],
    reason: Annotated[Optional[str], typer.Option(help="Reason for closing")] = None,
):
    """Close one or more issues."""
    with _errors():
        root, _ = _open_root()
        store_dir = get_store_dir(root)

        # Validate all first so a typo closes nothing
        for issue_id in issue_ids:
            if get_issue(store_dir, issue_id) is None:
                raise ValidationError(f"Issue {issue_id} not found")

        for issue_id in issue_ids:
            _close_issue(store_dir, issue_id, reason=reason)
            print(f"Closed {issue_id}")


@app.command()
def show(
    issue_id: Annotated[str, typer.Argument(help="Issue ID")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
):
    """Show issue details."""
    with _errors():
        root, _ = _open_root()
        store_dir = get_store_dir(root)

        issue = get_issue(store_dir, issue_id)
        if issue is None:
            raise ValidationError(f"Issue {issue_id} not found")

        children = get_children(store_dir, issue_id)
        blockers = get_blockers(store_dir, issue_id)

    if json_output:
        _print_json(issue)
        return

    print(f"ID:          {issue['id']}")
    print(f"Title:       {issue['title']}")
    print(f"Kind:        {issue.get('kind')}")
    print(f"Status:      {issue['status']}")
    print(f"Priority:    {issue['priority']}")
    print(f"Version:     {issue['version']}")
    print(f"Created:     {issue['created_at']}")
    print(f"Updated:     {issue['updated_at']}")
    if issue.get("parent_id"):
        print(f"Parent:      {issue['parent_id']}")

    if issue.get("description"):
        print(f"\nDescription:\n{issue['description']}")

    if issue.get("dependencies"):
        print("\nBlocks:")
        for dep in issue["dependencies"]:
            target = get_issue(store_dir, dep["target"])
            target_title = target["title"] if target else "(unknown)"
            print(f"  {dep['target']} - {target_title}")

    if blockers:
        print("\nBlocked by:")
        for blocker in blockers:
            print(f"  {blocker['id']} - {blocker['title']}")

    if children:
        print("\nChildren:")
        for child in children:
            marker = STATUS_MARKERS.get(child["status"], "?")
            print(f"  {marker} {child['id']} - {child['title']}")

    for source, block in sorted((issue.get("extensions") or {}).items()):
        if isinstance(block, dict) and block.get("original_id"):
            print(f"\nImported from {source}: {block['original_id']}")


@app.command(name="list")
def list_cmd(
    status: Annotated[Optional[List[str]], typer.Option(help="Filter by status (can specify multiple times, use 'any' for all statuses)")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
):
    """List issues."""
    # Default to backlog (exclude closed) when no --status provided
    if not status:
        status_filter: Optional[List[str]] = ["open", "in_progress", "blocked", "deferred"]
    elif status == ["any"]:
        status_filter = None
    else:
        status_filter = status

    with _errors():
        root, _ = _open_root()
        issues = list_issues(get_store_dir(root), status=status_filter)

    if json_output:
        _print_json(issues)
        return

    if not issues:
        print("No issues found")
        return

    for issue in issues:
        marker = STATUS_MARKERS.get(issue["status"], "?")
        print(f"{marker} {issue['id']} [P{issue['priority']}] {issue['title']}")


@app.command(name="import")
def import_cmd(
    file: Annotated[Optional[Path], typer.Argument(help="JSONL file of foreign records")] = None,
    from_beads: Annotated[bool, typer.Option("--from-beads", help="Import <beads-dir>/issues.jsonl")] = False,
    beads_dir: Annotated[Path, typer.Option(help="Beads directory")] = Path(".beads"),
    source: Annotated[str, typer.Option(help="Foreign source name")] = DEFAULT_SOURCE,
    force: Annotated[bool, typer.Option(help="Replace local issues even when the foreign copy is not newer")] = False,
    dry_run: Annotated[bool, typer.Option(help="Report what would be imported without writing")] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
):
    """Import foreign issues (Beads JSONL)."""
    with _errors():
        if (file is None) == (not from_beads):
            raise ValidationError("Give either FILE or --from-beads")

        root, config = _open_root()
        store_dir = get_store_dir(root)
        options = dict(prefix=config["prefix"], force=force, dry_run=dry_run)

        if from_beads:
            result = import_from_beads(store_dir, beads_dir, **options)
        else:
            result = import_from_file(store_dir, file, source=source, **options)

    if json_output:
        _print_json(result)
        return

    verb = "Would import" if dry_run else "Imported"
    print(
        f"{verb} {result['imported']} new, {result['merged']} merged, "
        f"{result['skipped']} skipped, {result['failed']} failed "
        f"({result['total']} records, {result['malformed']} malformed lines)"
    )
    if result["gaps"]:
        print(f"Untranslated references: {len(result['gaps'])}")
    if result["dangling"]:
        print(f"Dangling references: {len(result['dangling'])} (run 'tether check')")


@app.command()
def sync(
    status: Annotated[bool, typer.Option("--status", help="Show sync status without changing anything")] = False,
    pull: Annotated[bool, typer.Option("--pull", help="Only pull remote changes")] = False,
    push: Annotated[bool, typer.Option("--push", help="Only push local changes")] = False,
    force: Annotated[bool, typer.Option(help="Let the later write win instead of quarantining conflicts")] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
):
    """Sync issues with the remote sync branch."""
    with _errors():
        if sum((status, pull, push)) > 1:
            raise ValidationError("Only one of --status, --pull, --push may be given")

        root, config = _open_root()
        repo, branch, remote = _sync_context(root, config)
        # Status and push never quarantine
        attic_dir = None
        if not (status or push):
            attic_dir = get_attic_dir(root, config["sync"]["workspace"])

        if status:
            result = get_sync_status(repo, branch, remote)
        elif pull:
            result = pull_changes(repo, branch, remote, attic_dir, force=force)
        elif push:
            result = push_changes(repo, branch, remote)
        else:
            db = get_db(root)
            try:
                result = full_sync(repo, branch, remote, attic_dir, force=force, db=db)
            finally:
                db.close()

    if json_output:
        _print_json(result)
        return

    if status:
        print(format_sync_status(result))
        return

    if "pulled" in result:
        if not result["remote_available"]:
            print("Remote unavailable: nothing pulled")
        else:
            print(f"Pulled {result['pulled']} commits")
        if result["conflicts"]:
            print(f"Conflicts: {result['conflicts']} (losing copies in {attic_dir})")
        for issue_id in result["forced"]:
            print(f"Forced: {issue_id}")
        for entry in result["duplicates"]:
            print(f"Removed duplicate {entry['removed']} (kept {entry['kept']})")

    if "pushed" in result:
        if result["pushed"]:
            print(f"Pushed {result['pushed']} commits ({result['files']} files)")
        else:
            print("Nothing to push")


@workspace_app.command(name="save")
def workspace_save(
    workspace: Annotated[Optional[str], typer.Option("--workspace", "-w", help="Workspace name")] = None,
    dir: Annotated[Optional[Path], typer.Option("--dir", help="Arbitrary target directory")] = None,
    outbox: Annotated[bool, typer.Option("--outbox", help="Use the outbox workspace (implies --updates-only)")] = False,
    updates_only: Annotated[bool, typer.Option("--updates-only", help="Only issues changed since the last save")] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
):
    """Save issues from the record store to a workspace."""
    with _errors():
        root, _ = _open_root()
        result = save_to_workspace(
            root,
            get_store_dir(root),
            workspace=workspace,
            dir=dir,
            outbox=outbox,
            updates_only=updates_only,
        )

    if json_output:
        _print_json(result)
        return

    print(f"Saved {result['saved']} issues to {result['target_dir']}")
    if result["degraded"]:
        print("No previous sync point: saved everything")
    if result["conflicts"]:
        print(f"Conflicts: {result['conflicts']} (losing copies in attic/)")


@workspace_app.command(name="import")
def workspace_import(
    workspace: Annotated[Optional[str], typer.Option("--workspace", "-w", help="Workspace name")] = None,
    dir: Annotated[Optional[Path], typer.Option("--dir", help="Arbitrary source directory")] = None,
    outbox: Annotated[bool, typer.Option("--outbox", help="Use the outbox workspace (implies --clear)")] = False,
    clear: Annotated[bool, typer.Option("--clear", help="Delete the workspace after a clean import")] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
):
    """Import issues from a workspace into the record store."""
    with _errors():
        root, _ = _open_root()
        result = import_from_workspace(
            root,
            get_store_dir(root),
            workspace=workspace,
            dir=dir,
            outbox=outbox,
            clear_on_success=clear,
        )

    if json_output:
        _print_json(result)
        return

    print(f"Imported {result['imported']} issues from {result['source_dir']}")
    if result["conflicts"]:
        print(f"Conflicts: {result['conflicts']} (losing copies in attic/)")
    if result["cleared"]:
        print("Workspace cleared")


@workspace_app.command(name="list")
def workspace_list():
    """List workspaces."""
    with _errors():
        root, _ = _open_root()
        names = list_workspaces(root)

    if not names:
        print("No workspaces")
        return

    for name in names:
        print(name)


@workspace_app.command(name="delete")
def workspace_delete(
    name: Annotated[str, typer.Argument(help="Workspace name")],
    force: Annotated[bool, typer.Option("--force", "-f", help="Do not ask for confirmation")] = False,
):
    """Delete a workspace (including its attic)."""
    with _errors():
        root, _ = _open_root()
        if not force:
            typer.confirm(f"Delete workspace {name} and its attic?", abort=True)
        removed = delete_workspace(root, name)

    print(f"Deleted workspace {name}" if removed else f"Workspace {name} does not exist")


@app.command()
def check(
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
):
    """Check for dangling references and parent cycles."""
    with _errors():
        root, _ = _open_root()
        result = check_integrity(get_store_dir(root))

    if json_output:
        _print_json(result)
    elif result["ok"]:
        print("No problems found")
    else:
        for ref in result["dangling"]:
            print(f"Dangling {ref['field']}: {ref['issue']} -> {ref['target']}")
        for cycle in result["cycles"]:
            print(f"Parent cycle: {' -> '.join(cycle + cycle[:1])}")

    if not result["ok"]:
        raise typer.Exit(code=1)


def main():
    """Main CLI entry point."""
    app()
