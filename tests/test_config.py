"""Tests for configuration, root discovery and logging setup."""

import pytest


def test_load_config_fills_defaults(tether_root):
    """Keys missing from config.yml come from the defaults."""
    from tether_core.config import get_config_path, load_config

    get_config_path(tether_root["root"]).write_text("prefix: web\nsync:\n  branch: issues\n")

    config = load_config(tether_root["root"])

    assert config["prefix"] == "web"
    assert config["sync"]["branch"] == "issues"
    assert config["sync"]["remote"] == "origin"
    assert config["sync"]["workspace"] == "conflicts"
    assert config["log_file"] is None


def test_write_then_load_config(tether_root):
    """A written config loads back unchanged."""
    from tether_core.config import load_config

    assert load_config(tether_root["root"]) == tether_root["config"]


def test_load_config_missing(tmp_path):
    """A directory without config.yml is not a tether root."""
    from tether_core.config import load_config
    from tether_core.exceptions import ConfigError

    with pytest.raises(ConfigError, match="Not a tether repository"):
        load_config(tmp_path)


@pytest.mark.parametrize("content", ["prefix: [unclosed", "- a\n- list\n"])
def test_load_config_invalid(tether_root, content):
    """Unparseable or non-mapping config files are rejected."""
    from tether_core.config import get_config_path, load_config
    from tether_core.exceptions import ConfigError

    get_config_path(tether_root["root"]).write_text(content)

    with pytest.raises(ConfigError, match="Invalid config file"):
        load_config(tether_root["root"])


def test_find_root_walks_up(tether_root):
    """find_root finds the root from any subdirectory."""
    from tether_core.config import find_root

    nested = tether_root["root"] / "src" / "deep"
    nested.mkdir(parents=True)

    assert find_root(str(nested)) == tether_root["root"].resolve()


def test_require_root_outside(tmp_path):
    """require_root raises outside any tether root."""
    from tether_core.config import find_root, require_root
    from tether_core.exceptions import ConfigError

    assert find_root(str(tmp_path)) is None
    with pytest.raises(ConfigError):
        require_root(str(tmp_path))


def test_watermarks_round_trip(db_connection):
    """Watermarks are stored per key and can be replaced."""
    from tether_core.constants import STORE_WATERMARK
    from tether_core.db import get_last_sync_time, set_last_sync_time

    assert get_last_sync_time(db_connection, STORE_WATERMARK) is None

    set_last_sync_time(db_connection, STORE_WATERMARK, "2024-01-01T00:00:00Z")
    set_last_sync_time(db_connection, STORE_WATERMARK, "2024-02-01T00:00:00Z")
    set_last_sync_time(db_connection, "last_sync:/tmp/ws", "2024-03-01T00:00:00Z")

    assert get_last_sync_time(db_connection, STORE_WATERMARK) == "2024-02-01T00:00:00Z"
    assert get_last_sync_time(db_connection, "last_sync:/tmp/ws") == "2024-03-01T00:00:00Z"


def test_init_database_is_idempotent(tmp_path):
    """Opening the state database twice keeps its contents."""
    from tether_core.db import get_last_sync_time, init_database, set_last_sync_time

    path = str(tmp_path / "nested" / "state.db")
    conn = init_database(path)
    set_last_sync_time(conn, "last_sync:store", "2024-01-01T00:00:00Z")
    conn.close()

    conn = init_database(path)
    assert get_last_sync_time(conn, "last_sync:store") == "2024-01-01T00:00:00Z"
    assert get_last_sync_time(conn, "schema_version") == "1"
    conn.close()


def test_setup_logging_writes_log_file(tmp_path):
    """With a log file configured, debug messages land in it."""
    from loguru import logger

    from tether_core.logging_setup import setup_logging

    log_file = tmp_path / "logs" / "tether.log"
    setup_logging(log_file=str(log_file))

    logger.debug("written to the file only")
    logger.complete()

    assert "written to the file only" in log_file.read_text()
