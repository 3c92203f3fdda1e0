"""Tether - git-backed issue tracker with foreign import and conflict-safe sync.

This package provides the core functionality for the tether issue tracker.
Import from here for the public API.
"""

from tether_core.exceptions import (
    TetherError,
    ConfigError,
    ValidationError,
    IntegrityError,
    GitError,
    QuarantineError,
    IDCollisionError,
)
from tether_core.constants import (
    VALID_STATUSES,
    VALID_KINDS,
    VALID_DEPENDENCY_TYPES,
    PRIORITY_RANGE,
    WORKSPACE_LAYOUT,
    STORE_WATERMARK,
)
from tether_core.utils import (
    get_iso_timestamp,
    sanitize_project_name,
)
from tether_core.ids import generate_id
from tether_core.config import (
    find_root,
    require_root,
    load_config,
    write_config,
    get_store_dir,
)
from tether_core.db import (
    init_database,
    get_db,
    get_last_sync_time,
    set_last_sync_time,
)
from tether_core.storage import (
    read_issue,
    read_issue_bytes,
    write_issue,
    delete_issue,
)
from tether_core.issues import (
    create_issue,
    get_issue,
    list_issues,
    update_issue,
    close_issue,
)
from tether_core.dependencies import (
    add_dependency,
    remove_dependency,
    get_dependencies,
    get_children,
    get_blockers,
    is_blocked,
)
from tether_core.reorganization import (
    detect_cycle,
    reparent_issue,
    check_integrity,
)
from tether_core.mapping import IdMapper
from tether_core.importer import (
    import_records,
    import_from_file,
    import_from_beads,
)
from tether_core.workspace import (
    resolve_conflict,
    quarantine,
    save_to_workspace,
    import_from_workspace,
    list_workspaces,
    delete_workspace,
    workspace_exists,
)
from tether_core.git import GitRepo
from tether_core.sync import (
    get_sync_status,
    format_sync_status,
    pull_changes,
    push_changes,
    full_sync,
)
from tether_core.cli import app, main

__all__ = [
    # Exceptions
    "TetherError",
    "ConfigError",
    "ValidationError",
    "IntegrityError",
    "GitError",
    "QuarantineError",
    "IDCollisionError",
    # Constants
    "VALID_STATUSES",
    "VALID_KINDS",
    "VALID_DEPENDENCY_TYPES",
    "PRIORITY_RANGE",
    "WORKSPACE_LAYOUT",
    "STORE_WATERMARK",
    # Utils
    "get_iso_timestamp",
    "sanitize_project_name",
    # IDs
    "generate_id",
    # Config
    "find_root",
    "require_root",
    "load_config",
    "write_config",
    "get_store_dir",
    # Database
    "init_database",
    "get_db",
    "get_last_sync_time",
    "set_last_sync_time",
    # Storage
    "read_issue",
    "read_issue_bytes",
    "write_issue",
    "delete_issue",
    # Issues
    "create_issue",
    "get_issue",
    "list_issues",
    "update_issue",
    "close_issue",
    # Dependencies
    "add_dependency",
    "remove_dependency",
    "get_dependencies",
    "get_children",
    "get_blockers",
    "is_blocked",
    # Reorganization
    "detect_cycle",
    "reparent_issue",
    "check_integrity",
    # Mapping and import
    "IdMapper",
    "import_records",
    "import_from_file",
    "import_from_beads",
    # Workspaces
    "resolve_conflict",
    "quarantine",
    "save_to_workspace",
    "import_from_workspace",
    "list_workspaces",
    "delete_workspace",
    "workspace_exists",
    # Sync
    "GitRepo",
    "get_sync_status",
    "format_sync_status",
    "pull_changes",
    "push_changes",
    "full_sync",
    # CLI
    "app",
    "main",
]
