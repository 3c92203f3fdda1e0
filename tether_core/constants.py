"""Constants for Tether - magic strings, numbers, and layout names."""

__all__ = [
    "VALID_STATUSES",
    "VALID_KINDS",
    "VALID_DEPENDENCY_TYPES",
    "PRIORITY_RANGE",
    "DEFAULT_PRIORITY",
    "MAX_ID_RETRIES",
    "HASH_LENGTH",
    "BASE36_CHARS",
    "TETHER_DIR",
    "CONFIG_FILE",
    "DATA_SYNC_DIR",
    "WORKSPACES_DIR",
    "STATE_DB",
    "ISSUES_DIR",
    "MAPPINGS_DIR",
    "ATTIC_DIR",
    "WORKSPACE_LAYOUT",
    "OUTBOX_WORKSPACE",
    "WORKSPACE_NAME_PATTERN",
    "DEFAULT_SYNC_BRANCH",
    "DEFAULT_SYNC_REMOTE",
    "DEFAULT_SYNC_WORKSPACE",
    "DEFAULT_FETCH_TIMEOUT",
    "STORE_WATERMARK",
]

# Issue statuses
VALID_STATUSES = {"open", "in_progress", "blocked", "deferred", "closed"}

# Issue kinds
VALID_KINDS = {"bug", "feature", "task", "epic", "chore"}

# Dependency relationship types (closed set; hierarchy lives in parent_id)
VALID_DEPENDENCY_TYPES = {"blocks"}

# Priority range (inclusive)
PRIORITY_RANGE = (0, 4)
DEFAULT_PRIORITY = 2

# ID generation
MAX_ID_RETRIES = 10
HASH_LENGTH = 6
BASE36_CHARS = "0123456789abcdefghijklmnopqrstuvwxyz"

# On-disk layout under the tether root
TETHER_DIR = ".tether"
CONFIG_FILE = "config.yml"
DATA_SYNC_DIR = "data-sync"
WORKSPACES_DIR = "workspaces"
STATE_DB = "state.db"

# Layout shared by the record store and every workspace
ISSUES_DIR = "issues"
MAPPINGS_DIR = "mappings"
ATTIC_DIR = "attic"
WORKSPACE_LAYOUT = (ISSUES_DIR, MAPPINGS_DIR, ATTIC_DIR)

# Workspaces
OUTBOX_WORKSPACE = "outbox"
WORKSPACE_NAME_PATTERN = r"^[a-z0-9][a-z0-9_-]*$"

# Sync defaults
DEFAULT_SYNC_BRANCH = "tether-sync"
DEFAULT_SYNC_REMOTE = "origin"
DEFAULT_SYNC_WORKSPACE = "conflicts"
DEFAULT_FETCH_TIMEOUT = 30.0

# Metadata key for the record store's own sync watermark
STORE_WATERMARK = "last_sync:store"
