"""Identifier mapping for Tether - foreign ID to local ID tables.

One table per foreign source, stored as YAML at <dir>/mappings/<source>.yml.
The table is advisory: the provenance block on each imported record
(extensions.<source>.original_id) is the record of truth, so a missing or
corrupt table loads as empty instead of failing the caller.
"""

from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

import yaml
from loguru import logger

from tether_core.constants import MAPPINGS_DIR
from tether_core.exceptions import IntegrityError
from tether_core.ids import generate_id
from tether_core.utils import atomic_write_text

__all__ = [
    "IdMapper",
    "mapping_path",
    "parse_mapping_table",
    "read_mapping_table",
    "dump_mapping_table",
    "merge_mapping_tables",
]

PathLike = Union[str, Path]


def mapping_path(base_dir: PathLike, source: str) -> Path:
    """Path of a source's mapping table inside a store or workspace directory."""
    return Path(base_dir) / MAPPINGS_DIR / f"{source}.yml"


def _parse_table(text: str) -> Dict[str, str]:
    loaded = yaml.safe_load(text)
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError("mapping document is not a key-value mapping")
    return {str(key): str(value) for key, value in loaded.items()}


def parse_mapping_table(data: Union[str, bytes], origin: str = "mapping") -> Dict[str, str]:
    """Parse mapping YAML permissively (corrupt -> {})."""
    if isinstance(data, bytes):
        data = data.decode("utf-8", "replace")
    try:
        return _parse_table(data)
    except (ValueError, yaml.YAMLError) as e:
        logger.warning(f"Ignoring unreadable {origin}: {e}")
        return {}


def read_mapping_table(path: PathLike) -> Dict[str, str]:
    """Read a mapping table permissively (absent or corrupt -> {})."""
    path = Path(path)
    try:
        text = path.read_text()
    except FileNotFoundError:
        return {}
    except OSError as e:
        logger.warning(f"Ignoring unreadable mapping file {path}: {e}")
        return {}
    return parse_mapping_table(text, origin=f"mapping file {path}")


def dump_mapping_table(table: Dict[str, str]) -> str:
    """Serialize a mapping table with sorted keys for deterministic diffs."""
    if not table:
        return "{}\n"
    return yaml.safe_dump(dict(table), sort_keys=True, default_flow_style=False)


def merge_mapping_tables(
    ours: Dict[str, str],
    theirs: Dict[str, str],
) -> Tuple[Dict[str, str], List[str]]:
    """Union two mapping tables without overwriting existing entries.

    Entries in ours always win. An entry from theirs is dropped when its
    foreign ID is already mapped differently, or when its local ID is
    already taken by another foreign ID (injectivity).

    Returns:
        (merged table, sorted list of foreign IDs whose entry from theirs was dropped)
    """
    merged = dict(ours)
    taken = set(merged.values())
    dropped = []

    for foreign_id, local_id in sorted(theirs.items()):
        if foreign_id in merged:
            if merged[foreign_id] != local_id:
                dropped.append(foreign_id)
            continue
        if local_id in taken:
            dropped.append(foreign_id)
            continue
        merged[foreign_id] = local_id
        taken.add(local_id)

    return merged, dropped


class IdMapper:
    """Bidirectional foreign-ID/local-ID table for one foreign source.

    Mappers are created explicitly and handed to the operations that need
    them; with path=None the table lives only in memory.
    """

    def __init__(
        self,
        path: Optional[PathLike] = None,
        table: Optional[Dict[str, str]] = None,
        prefix: str = "issue",
        existing_ids: Iterable[str] = (),
    ):
        self.path = Path(path) if path is not None else None
        self.prefix = prefix
        self._forward: Dict[str, str] = {}
        self._reverse: Dict[str, str] = {}
        self._reserved = set(existing_ids)
        self.dirty = False

        for foreign_id, local_id in (table or {}).items():
            self._insert(foreign_id, local_id)

    @classmethod
    def load(
        cls,
        path: PathLike,
        prefix: str = "issue",
        existing_ids: Iterable[str] = (),
    ) -> "IdMapper":
        """Load a mapper from disk. Missing or corrupt files give an empty table.

        A file whose entries violate injectivity keeps the first entry for
        each local ID (in sorted foreign-ID order) and logs the rest.
        """
        mapper = cls(path=path, prefix=prefix, existing_ids=existing_ids)
        for foreign_id, local_id in sorted(read_mapping_table(path).items()):
            if local_id in mapper._reverse:
                logger.warning(
                    f"Mapping file {path}: {foreign_id} -> {local_id} duplicates "
                    f"{mapper._reverse[local_id]}; ignoring"
                )
                continue
            mapper._insert(foreign_id, local_id)
        return mapper

    def _insert(self, foreign_id: str, local_id: str) -> None:
        if self._reverse.get(local_id, foreign_id) != foreign_id:
            raise IntegrityError(
                f"Local ID {local_id} is already mapped to {self._reverse[local_id]}; "
                f"cannot also map {foreign_id}"
            )
        self._forward[foreign_id] = local_id
        self._reverse[local_id] = foreign_id

    def lookup(self, foreign_id: str) -> Optional[str]:
        return self._forward.get(foreign_id)

    def reverse_lookup(self, local_id: str) -> Optional[str]:
        return self._reverse.get(local_id)

    def reserve(self, local_ids: Iterable[str]) -> None:
        """Mark local IDs as taken so that assign() never generates them."""
        self._reserved.update(local_ids)

    def assign(self, foreign_id: str, local_id: Optional[str] = None) -> str:
        """Return the local ID for foreign_id, creating the entry if needed.

        Idempotent: assigning an already-mapped foreign ID returns the
        existing local ID. A mapped entry is never overwritten.

        Args:
            foreign_id: ID in the foreign system
            local_id: Local ID to bind (generated when omitted)

        Returns:
            The local ID bound to foreign_id

        Raises:
            IntegrityError: If foreign_id is bound to a different local ID, or
                local_id is already bound to another foreign ID
        """
        existing = self._forward.get(foreign_id)
        if existing is not None:
            if local_id is not None and local_id != existing:
                raise IntegrityError(
                    f"Foreign ID {foreign_id} is already mapped to {existing}; refusing to remap to {local_id}"
                )
            return existing

        if local_id is None:
            local_id = generate_id(
                foreign_id,
                self.prefix,
                existing_ids=self._reserved | set(self._reverse),
            )

        self._insert(foreign_id, local_id)
        self._reserved.add(local_id)
        self.dirty = True
        return local_id

    def items(self) -> List[Tuple[str, str]]:
        return sorted(self._forward.items())

    def as_dict(self) -> Dict[str, str]:
        return dict(self._forward)

    def persist(self) -> None:
        """Write the whole table atomically. No-op for in-memory mappers."""
        if self.path is None:
            return
        atomic_write_text(self.path, dump_mapping_table(self._forward))
        self.dirty = False
        logger.debug(f"Persisted {len(self._forward)} mapping entries to {self.path}")

    def __len__(self) -> int:
        return len(self._forward)

    def __contains__(self, foreign_id: object) -> bool:
        return foreign_id in self._forward

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._forward))
