"""Tests for issue CRUD operations."""

import re

import pytest


def test_create_issue_basic(store_dir):
    """Should create issue with version 1 and equal timestamps."""
    from tether_core.issues import create_issue
    from tether_core.storage import read_issue

    issue = create_issue(store_dir, "myapp", "Add auth", description="OAuth2 flow")

    assert re.match(r"^myapp-[a-z0-9]{6}$", issue["id"])
    assert issue["version"] == 1
    assert issue["status"] == "open"
    assert issue["kind"] == "task"
    assert issue["priority"] == 2
    assert issue["dependencies"] == []
    assert issue["created_at"] == issue["updated_at"]
    assert issue["updated_at"].endswith("Z")
    assert read_issue(store_dir, issue["id"]) == issue


def test_create_issue_generates_unique_ids(store_dir):
    """Issues with the same title still get distinct IDs."""
    from tether_core.issues import create_issue

    ids = {create_issue(store_dir, "myapp", "Same title")["id"] for _ in range(20)}

    assert len(ids) == 20


@pytest.mark.parametrize(
    "fields",
    [
        {"status": "done"},
        {"kind": "story"},
        {"priority": 5},
        {"priority": -1},
    ],
)
def test_create_issue_rejects_invalid_fields(store_dir, fields):
    """Invalid status, kind or priority should raise ValidationError."""
    from tether_core.exceptions import ValidationError
    from tether_core.issues import create_issue
    from tether_core.storage import list_issues

    with pytest.raises(ValidationError):
        create_issue(store_dir, "myapp", "Bad", **fields)

    assert list_issues(store_dir) == []


def test_create_issue_requires_existing_parent(store_dir):
    """A missing parent should be rejected."""
    from tether_core.exceptions import ValidationError
    from tether_core.issues import create_issue

    with pytest.raises(ValidationError, match="not found"):
        create_issue(store_dir, "myapp", "Child", parent_id="myapp-nope00")


def test_create_closed_issue_sets_closed_at(store_dir):
    """Creating an already-closed issue records closed_at."""
    from tether_core.issues import create_issue

    issue = create_issue(store_dir, "myapp", "Done already", status="closed")

    assert issue["closed_at"] == issue["updated_at"]


def test_update_issue_bumps_version(store_dir):
    """Every update should increment version and not move updated_at back."""
    from tether_core.issues import create_issue, update_issue

    issue = create_issue(store_dir, "myapp", "Original")
    updated = update_issue(store_dir, issue["id"], title="Renamed", priority=0)

    assert updated["title"] == "Renamed"
    assert updated["priority"] == 0
    assert updated["version"] == 2
    assert updated["updated_at"] >= issue["updated_at"]


def test_update_issue_never_moves_updated_at_backwards(store_dir):
    """A record stamped in the future keeps its updated_at on update."""
    from tether_core.issues import new_issue, update_issue
    from tether_core.storage import write_issue

    future = "2999-01-01T00:00:00Z"
    write_issue(store_dir, new_issue("myapp-future", "From the future", updated_at=future, version=4))

    updated = update_issue(store_dir, "myapp-future", description="edited")

    assert updated["version"] == 5
    assert updated["updated_at"] == future


def test_update_issue_status_transitions(store_dir):
    """Closing sets closed_at; reopening clears it."""
    from tether_core.issues import create_issue, update_issue

    issue = create_issue(store_dir, "myapp", "Toggle")

    closed = update_issue(store_dir, issue["id"], status="closed")
    assert closed["closed_at"] is not None

    reopened = update_issue(store_dir, issue["id"], status="open")
    assert reopened["closed_at"] is None
    assert reopened["version"] == 3


def test_update_missing_issue(store_dir):
    """Updating an unknown issue raises ValidationError."""
    from tether_core.exceptions import ValidationError
    from tether_core.issues import update_issue

    with pytest.raises(ValidationError):
        update_issue(store_dir, "myapp-nope00", title="x")


def test_close_issue_records_reason(store_dir):
    """close_issue should set status, closed_at and close_reason."""
    from tether_core.issues import close_issue, create_issue

    issue = create_issue(store_dir, "myapp", "Finish me")
    closed = close_issue(store_dir, issue["id"], reason="done")

    assert closed["status"] == "closed"
    assert closed["close_reason"] == "done"
    assert closed["closed_at"] == closed["updated_at"]
    assert closed["version"] == 2


def test_list_issues_filters_and_sorts(store_dir):
    """Should filter by status and sort by priority first."""
    from tether_core.issues import close_issue, create_issue, list_issues

    low = create_issue(store_dir, "myapp", "Low", priority=4)
    high = create_issue(store_dir, "myapp", "High", priority=0)
    done = create_issue(store_dir, "myapp", "Done", priority=1)
    close_issue(store_dir, done["id"])

    assert [i["id"] for i in list_issues(store_dir)] == [high["id"], done["id"], low["id"]]
    assert [i["id"] for i in list_issues(store_dir, status="open")] == [high["id"], low["id"]]
    assert [i["id"] for i in list_issues(store_dir, status=["closed"])] == [done["id"]]
