"""Pydantic models for the ``nodes.json`` and ``graph.json`` documents."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class NodeFlags(BaseModel):
    online: bool
    gateway: bool = False


class ClientCounts(BaseModel):
    total: Any = 0
    wifi: Any = 0
    wifi24: Any = 0
    wifi5: Any = 0


class NodeStatistics(BaseModel):
    """Statistics of an online node; unknown values are left out of the output."""

    uptime: Any = None
    gateway: Any = None
    gateway_nexthop: Any = None
    nexthop: Any = None
    airtime: list[Any] = Field(default_factory=list)
    memory_usage: float | None = None
    rootfs_usage: Any = None
    clients: ClientCounts = Field(default_factory=ClientCounts)
    loadavg: Any = None


class NodeStatus(BaseModel):
    nodeinfo: dict[str, Any]
    flags: NodeFlags
    statistics: NodeStatistics | None = None
    lastseen: str
    firstseen: str


class NodesDocument(BaseModel):
    version: int = 2
    timestamp: str
    nodes: list[NodeStatus] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class GraphNode(BaseModel):
    id: str
    node_id: str | None = None
    unseen: bool = False


class GraphLink(BaseModel):
    source: int
    target: int
    tq: float
    type: str | None = None


class BatadvGraph(BaseModel):
    multigraph: bool = False
    directed: bool = True
    nodes: list[GraphNode] = Field(default_factory=list)
    links: list[GraphLink] = Field(default_factory=list)
    graph: None = None


class GraphDocument(BaseModel):
    version: int = 1
    timestamp: str
    batadv: BatadvGraph = Field(default_factory=BatadvGraph)

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude_none=True)
        data["batadv"]["graph"] = None
        return data
