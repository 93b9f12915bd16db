from __future__ import annotations

from pydantic import BaseModel, Field


class NodeInfoOut(BaseModel):
    id: int = Field(..., ge=1, le=99, description="Node identity")
    name: str = Field(..., description="Container name, node_<id>")
    image: str
    neighborhood: str
    full_node: bool
    swap_enable: bool
    reserve_doubling: bool
    data_dir: str = Field(..., description="Host directory mounted as the node's data dir")
    api_port: str = Field(..., description="Host API port, bound to loopback only")
    p2p_port: str = Field(..., description="Host P2P port, bound to all interfaces")


class OperationResultOut(BaseModel):
    name: str
    ok: bool
    error: str | None = None


class LogsOut(BaseModel):
    name: str
    lines: list[str]


class EventOut(BaseModel):
    id: int
    ts: str
    level: str
    node_id: int | None = None
    message: str
