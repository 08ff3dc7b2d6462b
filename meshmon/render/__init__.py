"""Renderers for the node status listing and the routing topology graph."""

from meshmon.render.graph import GraphBuilder, NodeTable, PeerResolution, ResolutionKind, resolve_peer
from meshmon.render.identity import IdentityTables
from meshmon.render.models import GraphDocument, GraphLink, GraphNode, NodesDocument, NodeStatistics, NodeStatus
from meshmon.render.status import StatusNormalizer

__all__ = [
    "GraphBuilder",
    "NodeTable",
    "PeerResolution",
    "ResolutionKind",
    "resolve_peer",
    "IdentityTables",
    "StatusNormalizer",
    "GraphDocument",
    "GraphLink",
    "GraphNode",
    "NodesDocument",
    "NodeStatistics",
    "NodeStatus",
]
