from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

MIN_NODE_ID = 1
MAX_NODE_ID = 99
MAX_NODES = 99


def format_id(node_id: int) -> str:
    """Two-digit, zero-padded form used in every derived name (5 -> "05")."""
    return f"{int(node_id):02d}"


def node_name(node_id: int) -> str:
    return f"node_{format_id(node_id)}"


@dataclass(frozen=True)
class NodeRecord:
    id: int
    neighborhood: str
    full_node: bool
    swap_enable: bool
    reserve_doubling: bool
    data_dir: str

    @property
    def name(self) -> str:
        return node_name(self.id)


@dataclass(frozen=True)
class NodeInfo:
    """Read-only view of a node: its record plus configuration-derived values.

    Never persisted; rebuilt from the record and the current settings.
    """

    id: int
    name: str
    image: str
    neighborhood: str
    full_node: bool
    swap_enable: bool
    reserve_doubling: bool
    data_dir: str
    api_port: str
    p2p_port: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one container call inside a bulk operation."""

    name: str
    ok: bool
    error: str | None = None
