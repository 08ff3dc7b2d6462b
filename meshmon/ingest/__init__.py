"""Ingestion from the device registry, the topology feed and per-node queries."""

from meshmon.ingest.feeds import FeedClient
from meshmon.ingest.models import (
    NativeDescriptor,
    NodeUpdate,
    QueryEndpoint,
    ReconcilePlan,
    RegistryDevice,
    RegistryInterface,
    RegistryLocation,
    TopologyEdge,
    TopologyFeed,
)
from meshmon.ingest.poller import Poller
from meshmon.ingest.reconciler import Reconciler, native_descriptors

__all__ = [
    "FeedClient",
    "Poller",
    "Reconciler",
    "native_descriptors",
    "NativeDescriptor",
    "NodeUpdate",
    "QueryEndpoint",
    "ReconcilePlan",
    "RegistryDevice",
    "RegistryInterface",
    "RegistryLocation",
    "TopologyEdge",
    "TopologyFeed",
]
