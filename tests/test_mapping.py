"""Tests for the foreign-ID to local-ID mapper."""

import pytest
import yaml


def test_assign_generates_prefixed_id():
    """A new foreign ID gets a fresh local ID with the mapper's prefix."""
    from tether_core.mapping import IdMapper

    mapper = IdMapper(prefix="tst")
    local_id = mapper.assign("bd-1")

    assert local_id.startswith("tst-")
    assert mapper.lookup("bd-1") == local_id
    assert mapper.reverse_lookup(local_id) == "bd-1"
    assert mapper.dirty


def test_assign_is_idempotent():
    """Assigning a mapped foreign ID returns the existing local ID."""
    from tether_core.mapping import IdMapper

    mapper = IdMapper(prefix="tst")
    first = mapper.assign("bd-1")

    assert mapper.assign("bd-1") == first
    assert mapper.assign("bd-1", first) == first
    assert len(mapper) == 1


def test_assign_never_overwrites():
    """Remapping a foreign ID to a different local ID is refused."""
    from tether_core.exceptions import IntegrityError
    from tether_core.mapping import IdMapper

    mapper = IdMapper(table={"bd-1": "tst-aaaaaa"})

    with pytest.raises(IntegrityError, match="refusing to remap"):
        mapper.assign("bd-1", "tst-bbbbbb")

    assert mapper.lookup("bd-1") == "tst-aaaaaa"


def test_assign_is_injective():
    """Two foreign IDs can never share a local ID."""
    from tether_core.exceptions import IntegrityError
    from tether_core.mapping import IdMapper

    mapper = IdMapper(table={"bd-1": "tst-aaaaaa"})

    with pytest.raises(IntegrityError):
        mapper.assign("bd-2", "tst-aaaaaa")

    generated = {mapper.assign(f"bd-{n}") for n in range(2, 200)}
    assert len(generated) == 198
    assert "tst-aaaaaa" not in generated


def test_assign_avoids_reserved_ids():
    """Generated IDs never collide with IDs already used in the store."""
    from tether_core.mapping import IdMapper

    mapper = IdMapper(prefix="tst", existing_ids={"tst-aaaaaa"})
    mapper.reserve(["tst-bbbbbb"])

    for n in range(50):
        assert mapper.assign(f"bd-{n}") not in {"tst-aaaaaa", "tst-bbbbbb"}


def test_persist_writes_sorted_yaml(tmp_path):
    """persist() writes the whole table with sorted keys."""
    from tether_core.mapping import IdMapper, mapping_path

    path = mapping_path(tmp_path, "beads")
    mapper = IdMapper(path=path)
    mapper.assign("bd-9", "tst-999999")
    mapper.assign("bd-1", "tst-111111")

    mapper.persist()

    text = path.read_text()
    assert text.index("bd-1") < text.index("bd-9")
    assert yaml.safe_load(text) == {"bd-1": "tst-111111", "bd-9": "tst-999999"}
    assert not mapper.dirty


def test_in_memory_mapper_persist_is_noop(tmp_path):
    """A mapper without a path never touches the filesystem."""
    from tether_core.mapping import IdMapper

    mapper = IdMapper()
    mapper.assign("bd-1")
    mapper.persist()

    assert list(tmp_path.iterdir()) == []


def test_load_round_trips(tmp_path):
    """A persisted table loads back identically."""
    from tether_core.mapping import IdMapper, mapping_path

    path = mapping_path(tmp_path, "beads")
    original = IdMapper(path=path)
    original.assign("bd-1", "tst-111111")
    original.persist()

    loaded = IdMapper.load(path)

    assert loaded.items() == [("bd-1", "tst-111111")]
    assert not loaded.dirty


@pytest.mark.parametrize("content", ["{not: [valid", "- just\n- a list\n", ""])
def test_load_is_permissive(tmp_path, content):
    """Corrupt or non-mapping documents load as an empty table."""
    from tether_core.mapping import IdMapper

    path = tmp_path / "beads.yml"
    path.write_text(content)

    assert len(IdMapper.load(path)) == 0


def test_load_missing_file(tmp_path):
    """A missing file is an empty table."""
    from tether_core.mapping import IdMapper

    assert len(IdMapper.load(tmp_path / "absent.yml")) == 0


def test_load_drops_non_injective_entries(tmp_path, log_messages):
    """A hand-edited file with a shared local ID keeps the first entry."""
    from tether_core.mapping import IdMapper

    path = tmp_path / "beads.yml"
    path.write_text("bd-1: tst-aaaaaa\nbd-2: tst-aaaaaa\n")

    mapper = IdMapper.load(path)

    assert mapper.items() == [("bd-1", "tst-aaaaaa")]
    assert any("duplicates" in msg for _, msg in log_messages)


def test_merge_mapping_tables_keeps_ours():
    """Union merge: entries in ours win, clashing entries from theirs are dropped."""
    from tether_core.mapping import merge_mapping_tables

    ours = {"bd-1": "tst-aaaaaa"}
    theirs = {"bd-1": "tst-zzzzzz", "bd-2": "tst-bbbbbb", "bd-3": "tst-aaaaaa"}

    merged, dropped = merge_mapping_tables(ours, theirs)

    assert merged == {"bd-1": "tst-aaaaaa", "bd-2": "tst-bbbbbb"}
    assert dropped == ["bd-1", "bd-3"]


def test_dump_empty_table():
    """An empty table serializes to an empty YAML mapping."""
    from tether_core.mapping import dump_mapping_table

    assert dump_mapping_table({}) == "{}\n"
