from __future__ import annotations

from typing import Iterable

from .errors import CapacityExceeded
from .models import MAX_NODE_ID, MAX_NODES, MIN_NODE_ID


def allocate_id(existing_ids: Iterable[int]) -> int:
    """Return the lowest free node id in [1, 99].

    Freed ids are reused before higher ones; the result depends only on the
    set of ids already taken.
    """
    taken = set(existing_ids)
    if len(taken) >= MAX_NODES:
        raise CapacityExceeded(f"Max capacity reached. {len(taken)} nodes already registered.")
    for candidate in range(MIN_NODE_ID, MAX_NODE_ID + 1):
        if candidate not in taken:
            return candidate
    raise CapacityExceeded("Unable to allocate a new node id: every id in 1..99 is taken.")
