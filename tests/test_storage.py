"""Tests for the one-file-per-issue record store."""

import json


def test_serialize_issue_is_deterministic():
    """Serialization should sort keys and end with a newline."""
    from tether_core.storage import serialize_issue

    a = serialize_issue({"title": "X", "id": "tst-aaaaaa", "version": 1})
    b = serialize_issue({"version": 1, "id": "tst-aaaaaa", "title": "X"})

    assert a == b
    assert a.endswith(b"\n")
    assert list(json.loads(a)) == ["id", "title", "version"]


def test_write_and_read_issue(store_dir):
    """Should write issues/<id>.json and read it back."""
    from tether_core.storage import read_issue, read_issue_bytes, serialize_issue, write_issue

    issue = {"id": "tst-abc123", "title": "Ünïcode title", "version": 1}
    path = write_issue(store_dir, issue)

    assert path == store_dir / "issues" / "tst-abc123.json"
    assert read_issue(store_dir, "tst-abc123") == issue
    assert read_issue_bytes(store_dir, "tst-abc123") == serialize_issue(issue)


def test_write_issue_leaves_no_temp_files(store_dir):
    """Atomic writes should not leave temporary files behind."""
    from tether_core.storage import write_issue

    write_issue(store_dir, {"id": "tst-abc123", "title": "A"})
    write_issue(store_dir, {"id": "tst-abc123", "title": "B"})

    assert [p.name for p in (store_dir / "issues").iterdir()] == ["tst-abc123.json"]


def test_read_missing_issue_returns_none(store_dir):
    """Should return None for an unknown ID."""
    from tether_core.storage import read_issue, read_issue_bytes

    assert read_issue(store_dir, "tst-nope00") is None
    assert read_issue_bytes(store_dir, "tst-nope00") is None


def test_list_issues_sorted_by_id(store_dir):
    """Should list every issue sorted by ID."""
    from tether_core.storage import list_issues, write_issue

    for issue_id in ("tst-ccc333", "tst-aaa111", "tst-bbb222"):
        write_issue(store_dir, {"id": issue_id, "title": issue_id})

    assert [i["id"] for i in list_issues(store_dir)] == ["tst-aaa111", "tst-bbb222", "tst-ccc333"]


def test_list_issues_missing_directory(tmp_path):
    """A directory without issues/ holds no issues."""
    from tether_core.storage import list_issues

    assert list_issues(tmp_path / "nowhere") == []


def test_list_issues_skips_unreadable_files(store_dir, log_messages):
    """Corrupt issue files should be logged and skipped, not fatal."""
    from tether_core.storage import list_issues, write_issue

    write_issue(store_dir, {"id": "tst-good00", "title": "Good"})
    (store_dir / "issues" / "tst-bad000.json").write_text("{not json")
    (store_dir / "issues" / "tst-noid00.json").write_text('{"title": "no id"}')

    issues = list_issues(store_dir)

    assert [i["id"] for i in issues] == ["tst-good00"]
    warnings = [msg for level, msg in log_messages if level == "WARNING"]
    assert len(warnings) == 2


def test_delete_issue(store_dir):
    """delete_issue should report whether a file was removed."""
    from tether_core.storage import delete_issue, write_issue

    write_issue(store_dir, {"id": "tst-abc123", "title": "A"})

    assert delete_issue(store_dir, "tst-abc123") is True
    assert delete_issue(store_dir, "tst-abc123") is False


def test_issue_id_from_path():
    """Only issues/<id>.json paths map to an issue ID."""
    from tether_core.storage import issue_id_from_path

    assert issue_id_from_path("issues/tst-abc123.json") == "tst-abc123"
    assert issue_id_from_path("mappings/beads.yml") is None
    assert issue_id_from_path("issues/readme.txt") is None
