"""Tests for dependencies, reparenting and integrity checks."""

import pytest


def test_add_blocks_dependency(store_dir):
    """Should store {blocks, target} on the blocking issue and bump version."""
    from tether_core.dependencies import add_dependency, get_dependencies
    from tether_core.issues import create_issue

    blocker = create_issue(store_dir, "myapp", "Blocker")
    blocked = create_issue(store_dir, "myapp", "Blocked")

    updated = add_dependency(store_dir, blocker["id"], blocked["id"])

    assert get_dependencies(store_dir, blocker["id"]) == [{"type": "blocks", "target": blocked["id"]}]
    assert updated["version"] == 2


def test_add_dependency_is_idempotent(store_dir):
    """Adding the same edge twice does not duplicate it or bump the version."""
    from tether_core.dependencies import add_dependency
    from tether_core.issues import create_issue

    a = create_issue(store_dir, "myapp", "A")
    b = create_issue(store_dir, "myapp", "B")

    add_dependency(store_dir, a["id"], b["id"])
    again = add_dependency(store_dir, a["id"], b["id"])

    assert len(again["dependencies"]) == 1
    assert again["version"] == 2


def test_add_dependency_rejects_unknown_type(store_dir):
    """Only the "blocks" relation exists; hierarchy uses parent_id."""
    from tether_core.dependencies import add_dependency
    from tether_core.exceptions import ValidationError
    from tether_core.issues import create_issue

    a = create_issue(store_dir, "myapp", "A")
    b = create_issue(store_dir, "myapp", "B")

    with pytest.raises(ValidationError, match="Invalid dependency type"):
        add_dependency(store_dir, a["id"], b["id"], "parent")


def test_add_dependency_rejects_self_and_missing(store_dir):
    """Self edges and unknown targets are rejected."""
    from tether_core.dependencies import add_dependency
    from tether_core.exceptions import ValidationError
    from tether_core.issues import create_issue

    a = create_issue(store_dir, "myapp", "A")

    with pytest.raises(ValidationError):
        add_dependency(store_dir, a["id"], a["id"])
    with pytest.raises(ValidationError):
        add_dependency(store_dir, a["id"], "myapp-nope00")


def test_remove_dependency(store_dir):
    """Removing an edge bumps the version; removing a missing one does not."""
    from tether_core.dependencies import add_dependency, remove_dependency
    from tether_core.issues import create_issue

    a = create_issue(store_dir, "myapp", "A")
    b = create_issue(store_dir, "myapp", "B")
    add_dependency(store_dir, a["id"], b["id"])

    removed = remove_dependency(store_dir, a["id"], b["id"])
    assert removed["dependencies"] == []
    assert removed["version"] == 3

    unchanged = remove_dependency(store_dir, a["id"], b["id"])
    assert unchanged["version"] == 3


def test_blockers_ignore_closed_issues(store_dir):
    """A closed blocker no longer blocks."""
    from tether_core.dependencies import add_dependency, get_blockers, is_blocked
    from tether_core.issues import close_issue, create_issue

    blocker = create_issue(store_dir, "myapp", "Blocker")
    blocked = create_issue(store_dir, "myapp", "Blocked")
    add_dependency(store_dir, blocker["id"], blocked["id"])

    assert [i["id"] for i in get_blockers(store_dir, blocked["id"])] == [blocker["id"]]
    assert is_blocked(store_dir, blocked["id"])

    close_issue(store_dir, blocker["id"])

    assert not is_blocked(store_dir, blocked["id"])


def test_get_children(store_dir):
    """Children are found through parent_id."""
    from tether_core.dependencies import get_children
    from tether_core.issues import create_issue

    parent = create_issue(store_dir, "myapp", "Parent")
    child = create_issue(store_dir, "myapp", "Child", parent_id=parent["id"])
    create_issue(store_dir, "myapp", "Unrelated")

    assert [i["id"] for i in get_children(store_dir, parent["id"])] == [child["id"]]


def test_reparent_detects_cycle(store_dir):
    """Making an ancestor the child of its descendant is rejected."""
    from tether_core.exceptions import IntegrityError
    from tether_core.issues import create_issue
    from tether_core.reorganization import detect_cycle, reparent_issue

    grandparent = create_issue(store_dir, "myapp", "Grandparent")
    parent = create_issue(store_dir, "myapp", "Parent", parent_id=grandparent["id"])
    child = create_issue(store_dir, "myapp", "Child", parent_id=parent["id"])

    assert detect_cycle(store_dir, grandparent["id"], child["id"])

    with pytest.raises(IntegrityError, match="cycle"):
        reparent_issue(store_dir, grandparent["id"], child["id"])


def test_reparent_and_remove_parent(store_dir):
    """Reparenting bumps the version; None removes the parent."""
    from tether_core.issues import create_issue
    from tether_core.reorganization import reparent_issue

    a = create_issue(store_dir, "myapp", "A")
    b = create_issue(store_dir, "myapp", "B")

    moved = reparent_issue(store_dir, b["id"], a["id"])
    assert moved["parent_id"] == a["id"]
    assert moved["version"] == 2

    orphan = reparent_issue(store_dir, b["id"], None)
    assert orphan["parent_id"] is None
    assert orphan["version"] == 3


def test_check_integrity_clean_store(store_dir):
    """A consistent store reports ok."""
    from tether_core.issues import create_issue
    from tether_core.reorganization import check_integrity

    parent = create_issue(store_dir, "myapp", "Parent")
    create_issue(store_dir, "myapp", "Child", parent_id=parent["id"])

    assert check_integrity(store_dir) == {"ok": True, "dangling": [], "cycles": []}


def test_check_integrity_reports_dangling_and_cycles(store_dir):
    """Dangling targets and parent cycles written by other tools are detected."""
    from tether_core.issues import new_issue
    from tether_core.reorganization import check_integrity
    from tether_core.storage import write_issue

    write_issue(store_dir, new_issue("myapp-aaaaaa", "A", parent_id="myapp-bbbbbb"))
    write_issue(store_dir, new_issue("myapp-bbbbbb", "B", parent_id="myapp-aaaaaa"))
    write_issue(store_dir, new_issue(
        "myapp-cccccc",
        "C",
        parent_id="myapp-gone00",
        dependencies=[{"type": "blocks", "target": "myapp-gone11"}],
    ))

    result = check_integrity(store_dir)

    assert result["ok"] is False
    assert result["cycles"] == [["myapp-aaaaaa", "myapp-bbbbbb"]]
    assert result["dangling"] == [
        {"issue": "myapp-cccccc", "field": "dependencies", "target": "myapp-gone11"},
        {"issue": "myapp-cccccc", "field": "parent_id", "target": "myapp-gone00"},
    ]
