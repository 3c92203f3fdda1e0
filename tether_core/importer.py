"""Import for Tether - translate foreign (Beads-style JSONL) records into local issues.

The import runs in explicit phases so forward references inside a batch
always resolve:

1. read: parse JSONL, skipping malformed lines
2. assign: build the complete foreign -> local ID table for the batch
3. convert: build local issues, translating references through the table
4. rewrite: inject edges implied by inverse relations into their owners
5. write: persist each issue atomically, best effort, then the mapping once
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from loguru import logger

from tether_core.constants import VALID_STATUSES, VALID_KINDS, DEFAULT_PRIORITY
from tether_core.dependencies import find_dangling_references
from tether_core.exceptions import IntegrityError, ValidationError
from tether_core.issues import new_issue
from tether_core.mapping import IdMapper, mapping_path
from tether_core.storage import list_issues, write_issue
from tether_core.utils import get_iso_timestamp, parse_timestamp, later_timestamp

__all__ = [
    "DEFAULT_SOURCE",
    "read_foreign_records",
    "map_status",
    "map_kind",
    "index_by_provenance",
    "assign_local_ids",
    "inverse_edges",
    "convert_record",
    "apply_inverse_edges",
    "import_records",
    "import_from_file",
    "import_from_beads",
]

PathLike = Union[str, Path]

DEFAULT_SOURCE = "beads"

# Foreign statuses that do not map onto a local status of the same name
STATUS_MAP = {
    "tombstone": "closed",
}

# Relations copied as-is / relations whose edge belongs to the target record
DIRECT_RELATIONS = {"blocks"}
INVERSE_RELATIONS = {"blocked_by": "blocks"}


def read_foreign_records(path: PathLike) -> Tuple[List[Dict[str, Any]], int]:
    """Parse a JSONL file of foreign records.

    Blank lines are ignored. Lines that are not JSON objects with both an
    "id" and a "title" are logged, counted and skipped. When a foreign ID
    appears more than once, the last occurrence wins.

    Args:
        path: JSONL file

    Returns:
        (records in first-seen order, number of malformed lines)
    """
    records: Dict[str, Dict[str, Any]] = {}
    malformed = 0

    with Path(path).open("r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue

            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                malformed += 1
                logger.warning(f"{path}:{line_num}: skipping invalid JSON line ({e.msg})")
                continue

            if not isinstance(record, dict) or not record.get("id") or not record.get("title"):
                malformed += 1
                logger.warning(f"{path}:{line_num}: skipping record without id or title")
                continue

            foreign_id = str(record["id"])
            if foreign_id in records:
                logger.warning(f"{path}:{line_num}: duplicate record {foreign_id}; keeping the later line")
            records[foreign_id] = record

    return list(records.values()), malformed


def map_status(foreign_status: Optional[str]) -> str:
    """Map a foreign status onto the local vocabulary (unknown -> open)."""
    status = STATUS_MAP.get(foreign_status or "", foreign_status)
    return status if status in VALID_STATUSES else "open"


def map_kind(foreign_type: Optional[str]) -> str:
    """Map a foreign issue type onto a local kind (unknown -> task)."""
    return foreign_type if foreign_type in VALID_KINDS else "task"


def index_by_provenance(issues: List[Dict[str, Any]], source: str) -> Dict[str, Dict[str, Any]]:
    """Index local issues by the foreign ID in their provenance block."""
    index = {}
    for issue in issues:
        block = (issue.get("extensions") or {}).get(source)
        if isinstance(block, dict) and block.get("original_id"):
            index[str(block["original_id"])] = issue
    return index


def assign_local_ids(
    batch: List[Dict[str, Any]],
    mapper: IdMapper,
    by_provenance: Dict[str, Dict[str, Any]],
) -> Dict[str, str]:
    """Pass 1: assign a local ID to every foreign record in the batch.

    A provenance match wins over the mapping table; otherwise the mapper
    is consulted and extended. Must run over the whole batch before any
    conversion.

    Returns:
        Complete foreign ID -> local ID table for the batch and prior imports
    """
    table = mapper.as_dict()

    for foreign in batch:
        foreign_id = str(foreign["id"])
        existing = by_provenance.get(foreign_id)

        if existing is None:
            table[foreign_id] = mapper.assign(foreign_id)
            continue

        table[foreign_id] = existing["id"]
        try:
            mapper.assign(foreign_id, existing["id"])
        except IntegrityError as e:
            # Provenance is authoritative; leave the stale table entry alone
            logger.warning(f"Mapping disagrees with provenance for {foreign_id}: {e}")

    return table


def inverse_edges(
    foreign: Dict[str, Any],
    local_id: str,
    id_table: Dict[str, str],
) -> List[Tuple[str, str]]:
    """(owner local ID, target local ID) pairs implied by a record's inverse relations.

    "X blocked_by Y" yields (Y, X): the edge is stored on Y as "Y blocks X".
    Unresolved owners are left out; convert_record reports them as gaps.
    """
    edges = []
    for dep in foreign.get("dependencies") or []:
        if dep.get("type") not in INVERSE_RELATIONS:
            continue
        target = dep.get("target") or dep.get("depends_on_id")
        owner_id = id_table.get(str(target)) if target is not None else None
        if owner_id is not None and (owner_id, local_id) not in edges:
            edges.append((owner_id, local_id))
    return edges


def convert_record(
    foreign: Dict[str, Any],
    local_id: str,
    id_table: Dict[str, str],
    source: str = DEFAULT_SOURCE,
    imported_at: Optional[str] = None,
) -> Tuple[Dict[str, Any], List[Dict[str, str]], List[Tuple[str, str]]]:
    """Pass 2: convert one foreign record into a local issue.

    Args:
        foreign: Foreign record
        local_id: Local ID assigned in pass 1
        id_table: Complete foreign -> local table from pass 1
        source: Foreign source name (provenance block key)
        imported_at: Import timestamp for the provenance block

    Returns:
        (issue, gaps, inverse edges). Gaps describe references that could not
        be translated. Inverse edges are (owner local ID, target local ID)
        pairs to be added to the owner's dependencies by apply_inverse_edges.
    """
    foreign_id = str(foreign["id"])
    gaps: List[Dict[str, str]] = []
    dependencies: List[Dict[str, str]] = []

    for dep in foreign.get("dependencies") or []:
        relation = dep.get("type")
        target = dep.get("target") or dep.get("depends_on_id")
        target_id = id_table.get(str(target)) if target is not None else None

        if relation not in DIRECT_RELATIONS and relation not in INVERSE_RELATIONS:
            gaps.append({"issue": foreign_id, "type": str(relation), "target": str(target), "reason": "unsupported relation"})
            continue

        if target_id is None:
            gaps.append({"issue": foreign_id, "type": relation, "target": str(target), "reason": "unresolved target"})
            continue

        if relation in DIRECT_RELATIONS:
            entry = {"type": relation, "target": target_id}
            if entry not in dependencies:
                dependencies.append(entry)

    parent_id = None
    foreign_parent = foreign.get("parent")
    if foreign_parent:
        parent_id = id_table.get(str(foreign_parent))
        if parent_id is None:
            gaps.append({"issue": foreign_id, "type": "parent", "target": str(foreign_parent), "reason": "unresolved target"})

    now = imported_at or get_iso_timestamp()
    # The stored updated_at must stay the foreign one, never the import time
    created_at = foreign.get("created_at") or foreign.get("updated_at") or now
    updated_at = later_timestamp(created_at, foreign.get("updated_at") or created_at)

    priority = foreign.get("priority")
    if not isinstance(priority, int) or isinstance(priority, bool) or not (0 <= priority <= 4):
        priority = DEFAULT_PRIORITY

    issue = new_issue(
        local_id,
        foreign["title"],
        kind=map_kind(foreign.get("type") or foreign.get("issue_type")),
        description=foreign.get("description") or "",
        notes=foreign.get("notes"),
        status=map_status(foreign.get("status")),
        priority=priority,
        assignee=foreign.get("assignee"),
        labels=list(foreign.get("labels") or []),
        dependencies=dependencies,
        parent_id=parent_id,
        created_at=created_at,
        updated_at=updated_at,
        closed_at=foreign.get("closed_at"),
        close_reason=foreign.get("close_reason"),
        due_date=foreign.get("due"),
        deferred_until=foreign.get("defer"),
        extensions={source: {"original_id": foreign_id, "imported_at": now}},
    )
    return issue, gaps, inverse_edges(foreign, local_id, id_table)


def apply_inverse_edges(
    converted: Dict[str, Dict[str, Any]],
    inverse: List[Tuple[str, str]],
    foreign_ids: Dict[str, str],
) -> List[Dict[str, str]]:
    """Rewrite pass: add edges implied by inverse relations to their owners.

    Only issues written by this batch are mutated. An edge whose owner is
    not in the batch (skipped, or from an earlier import) is reported as a
    gap instead of rewriting an issue the batch does not own.

    Args:
        converted: Local ID -> issue for every issue this batch will write
        inverse: (owner local ID, target local ID) pairs
        foreign_ids: Local ID -> foreign ID, for gap reporting

    Returns:
        Gaps for edges that could not be placed
    """
    gaps = []
    for owner_id, target_id in inverse:
        owner = converted.get(owner_id)
        if owner is None:
            gaps.append({
                "issue": foreign_ids.get(target_id, target_id),
                "type": "blocked_by",
                "target": foreign_ids.get(owner_id, owner_id),
                "reason": "inverse owner not written in this batch",
            })
            continue

        entry = {"type": "blocks", "target": target_id}
        if entry not in owner["dependencies"]:
            owner["dependencies"].append(entry)

    return gaps


def _is_newer(foreign: Dict[str, Any], existing: Dict[str, Any]) -> bool:
    foreign_ts = parse_timestamp(foreign.get("updated_at"))
    local_ts = parse_timestamp(existing.get("updated_at"))
    if foreign_ts is None:
        return False
    if local_ts is None:
        return True
    return foreign_ts > local_ts


def import_records(
    store_dir: PathLike,
    batch: List[Dict[str, Any]],
    mapper: IdMapper,
    source: str = DEFAULT_SOURCE,
    force: bool = False,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """Import a parsed batch of foreign records into the record store.

    Merge policy for a record that already exists locally: skip it unless
    the foreign updated_at is strictly newer (or force is set); otherwise
    replace its content and set version to the prior local version + 1.

    Args:
        store_dir: Record store directory
        batch: Foreign records (from read_foreign_records)
        mapper: Identifier mapper for this source (persisted once at the end)
        source: Foreign source name
        force: Replace existing issues even when the foreign copy is not newer
        dry_run: Compute the result without writing anything

    Returns:
        Dict with imported, merged, skipped, failed, total, gaps, dangling
    """
    result: Dict[str, Any] = {
        "imported": 0,
        "merged": 0,
        "skipped": 0,
        "failed": 0,
        "total": len(batch),
        "gaps": [],
        "dangling": [],
    }

    existing_issues = list_issues(store_dir)
    mapper.reserve(issue["id"] for issue in existing_issues)
    by_id = {issue["id"]: issue for issue in existing_issues}
    by_provenance = index_by_provenance(existing_issues, source)

    # Pass 1: the complete ID table must exist before any conversion
    id_table = assign_local_ids(batch, mapper, by_provenance)
    foreign_by_local = {local_id: foreign_id for foreign_id, local_id in id_table.items()}

    # Pass 2: convert, applying the merge policy
    imported_at = get_iso_timestamp()
    converted: Dict[str, Dict[str, Any]] = {}
    merged_ids = set()
    inverse: List[Tuple[str, str]] = []
    # Edges of skipped records, reapplied only to owners this batch rewrites
    carried: List[Tuple[str, str]] = []

    for foreign in batch:
        foreign_id = str(foreign["id"])
        local_id = id_table[foreign_id]
        existing = by_provenance.get(foreign_id) or by_id.get(local_id)

        if existing is not None and not force and not _is_newer(foreign, existing):
            result["skipped"] += 1
            logger.debug(f"Skipping {foreign_id} ({local_id}): local copy is not older")
            carried.extend(inverse_edges(foreign, local_id, id_table))
            continue

        issue, gaps, edges = convert_record(foreign, local_id, id_table, source, imported_at)
        result["gaps"].extend(gaps)
        inverse.extend(edges)

        if existing is not None:
            issue["version"] = int(existing.get("version", 0)) + 1
            extensions = dict(existing.get("extensions") or {})
            extensions.update(issue["extensions"])
            issue["extensions"] = extensions
            if not foreign.get("created_at"):
                issue["created_at"] = existing.get("created_at") or issue["created_at"]
            # updated_at must advance with every version bump
            if not _is_newer(issue, existing):
                issue["updated_at"] = later_timestamp(existing.get("updated_at"), imported_at)
            merged_ids.add(local_id)

        converted[local_id] = issue

    # Rewrite pass: inverse relations land on the issue that owns the edge
    result["gaps"].extend(apply_inverse_edges(converted, inverse, foreign_by_local))
    apply_inverse_edges(converted, [edge for edge in carried if edge[0] in converted], foreign_by_local)

    for gap in result["gaps"]:
        logger.warning(f"Untranslated {gap['type']} reference {gap['issue']} -> {gap['target']}: {gap['reason']}")

    # Write pass: best effort, one issue at a time
    for local_id, issue in converted.items():
        if dry_run:
            result["merged" if local_id in merged_ids else "imported"] += 1
            continue

        try:
            write_issue(store_dir, issue)
        except OSError as e:
            result["failed"] += 1
            logger.warning(f"Failed to write issue {local_id} ({foreign_by_local.get(local_id)}): {e}")
            continue

        result["merged" if local_id in merged_ids else "imported"] += 1
        by_id[local_id] = issue

    if dry_run:
        return result

    mapper.persist()

    written = set(converted)
    result["dangling"] = [
        ref for ref in find_dangling_references(by_id.values()) if ref["issue"] in written
    ]
    for ref in result["dangling"]:
        logger.warning(f"Imported issue {ref['issue']} has dangling {ref['field']} -> {ref['target']}")

    logger.info(
        f"Import from {source}: {result['imported']} new, {result['merged']} merged, "
        f"{result['skipped']} skipped, {result['failed']} failed"
    )
    return result


def import_from_file(
    store_dir: PathLike,
    path: PathLike,
    source: str = DEFAULT_SOURCE,
    prefix: str = "issue",
    mapper: Optional[IdMapper] = None,
    force: bool = False,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """Import a foreign JSONL file into the record store.

    Args:
        store_dir: Record store directory
        path: JSONL file with one foreign record per line
        source: Foreign source name (selects mappings/<source>.yml)
        prefix: Prefix for newly generated local IDs
        mapper: Mapper to use (loaded from the store when omitted)
        force: Replace existing issues even when the foreign copy is not newer
        dry_run: Compute the result without writing anything

    Returns:
        import_records result plus "malformed" (count of skipped lines)

    Raises:
        ValidationError: If the file does not exist
    """
    path = Path(path)
    if not path.is_file():
        raise ValidationError(f"File not found: {path}")

    batch, malformed = read_foreign_records(path)

    if mapper is None:
        mapper = IdMapper.load(mapping_path(store_dir, source), prefix=prefix)

    result = import_records(store_dir, batch, mapper, source=source, force=force, dry_run=dry_run)
    result["malformed"] = malformed
    return result


def import_from_beads(
    store_dir: PathLike,
    beads_dir: PathLike = ".beads",
    **kwargs: Any,
) -> Dict[str, Any]:
    """Import <beads_dir>/issues.jsonl (see import_from_file).

    Raises:
        ValidationError: If the Beads export does not exist
    """
    jsonl_path = Path(beads_dir) / "issues.jsonl"
    if not jsonl_path.is_file():
        raise ValidationError(f"Beads database not found at {beads_dir}")
    return import_from_file(store_dir, jsonl_path, source="beads", **kwargs)
