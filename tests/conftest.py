"""Shared pytest fixtures for tether tests."""

import subprocess
import sys
from pathlib import Path

import pytest
from loguru import logger


@pytest.fixture(autouse=True)
def reset_logging():
    """Give every test a fresh loguru configuration (the CLI replaces sinks)."""
    logger.remove()
    logger.add(sys.stderr, level="WARNING")
    yield
    logger.remove()


@pytest.fixture
def log_messages():
    """Capture loguru records as (level name, message) tuples."""
    messages = []
    handler_id = logger.add(
        lambda message: messages.append((message.record["level"].name, message.record["message"])),
        level="DEBUG",
    )
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def store_dir(tmp_path):
    """Create an empty record store directory (issues/ and mappings/)."""
    store = tmp_path / "store"
    (store / "issues").mkdir(parents=True)
    (store / "mappings").mkdir()
    return store


@pytest.fixture
def tether_root(tmp_path):
    """Create an initialized tether root without git.

    Returns a dict with:
        - root: the tether root directory
        - store: record store directory (.tether/data-sync)
        - config: the written config dict
    """
    from tether_core.config import DEFAULT_CONFIG, get_store_dir, write_config

    root = tmp_path / "project"
    store = get_store_dir(root)
    (store / "issues").mkdir(parents=True)
    (store / "mappings").mkdir()

    config = dict(DEFAULT_CONFIG, prefix="tst")
    write_config(root, config)

    return {"root": root, "store": store, "config": config}


@pytest.fixture
def db_connection(tmp_path):
    """Create a fresh state database connection for testing.

    Automatically initializes schema and closes connection after test completes.
    """
    from tether_core.db import init_database

    conn = init_database(str(tmp_path / "state.db"))

    yield conn

    conn.close()


def _git(cwd, *args):
    result = subprocess.run(
        ["git", "-C", str(cwd), *args],
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git():
    """Run a git command in a directory and return its stdout."""
    return _git


def _make_clone(path: Path, remote_url: str, branch: str):
    from tether_core.git import GitRepo

    repo = GitRepo(path)
    repo.init(branch)
    _git(path, "config", "user.email", f"{path.name}@example.com")
    _git(path, "config", "user.name", path.name)
    _git(path, "config", "commit.gpgsign", "false")
    repo.remote_add("origin", remote_url)
    (path / "issues").mkdir()
    (path / "mappings").mkdir()
    return repo


@pytest.fixture
def sync_pair(tmp_path):
    """Two record stores (alice and bob) sharing a bare remote.

    Returns a dict with:
        - remote: path of the bare repository
        - branch: sync branch name
        - alice, bob: GitRepo for each store (no commits yet)
        - alice_attic, bob_attic: attic directories for quarantined copies
    """
    remote = tmp_path / "remote.git"
    subprocess.run(["git", "init", "--bare", "--quiet", str(remote)], check=True)

    branch = "tether-sync"
    return {
        "remote": remote,
        "branch": branch,
        "alice": _make_clone(tmp_path / "alice", str(remote), branch),
        "bob": _make_clone(tmp_path / "bob", str(remote), branch),
        "alice_attic": tmp_path / "alice-attic",
        "bob_attic": tmp_path / "bob-attic",
    }
