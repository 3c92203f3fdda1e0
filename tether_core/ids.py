"""ID generation for Tether - random hash-based local IDs.

Local IDs are "<prefix>-<6 base36 chars>". The suffix is drawn from fresh
entropy on every call, so two replicas that create (or import) the same
record independently get different IDs; sync reconciles such duplicates
by provenance rather than by ID.
"""

import hashlib
import os
import time
from typing import Iterable, Optional

from tether_core.constants import BASE36_CHARS, HASH_LENGTH, MAX_ID_RETRIES
from tether_core.exceptions import IDCollisionError

__all__ = [
    "generate_id",
]


def _base36(num: int) -> str:
    digits = []
    while num:
        num, remainder = divmod(num, 36)
        digits.append(BASE36_CHARS[remainder])
    return "".join(reversed(digits)) or "0"


def _random_suffix(seed: str) -> str:
    """HASH_LENGTH base36 chars from sha256(seed | time_ns | urandom)."""
    entropy = f"{seed}|{time.time_ns()}|{os.urandom(16).hex()}"
    digest = hashlib.sha256(entropy.encode("utf-8")).digest()
    return _base36(int.from_bytes(digest[:4], "big"))[:HASH_LENGTH].zfill(HASH_LENGTH)


def generate_id(
    seed: str,
    prefix: str,
    existing_ids: Optional[Iterable[str]] = None,
    max_retries: int = MAX_ID_RETRIES,
) -> str:
    """Generate a local ID not present in existing_ids.

    Args:
        seed: Extra entropy (issue title, or foreign ID on import)
        prefix: ID prefix from the tether config
        existing_ids: IDs already in use (store records and mapped IDs)
        max_retries: Attempts before giving up

    Raises:
        IDCollisionError: If every attempt collided
    """
    taken = set(existing_ids or ())

    for _ in range(max_retries):
        candidate = f"{prefix}-{_random_suffix(seed)}"
        if candidate not in taken:
            return candidate

    raise IDCollisionError(
        f"Unable to generate unique ID with prefix '{prefix}' after {max_retries} attempts"
    )
