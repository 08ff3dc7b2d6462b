"""Shared fixtures for the meshmon test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from meshmon.config import AggregatorConfig
from meshmon.ingest.models import TopologyFeed, registry_adapter

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def iso(delta: timedelta = timedelta(0)) -> str:
    """ISO timestamp ``delta`` before NOW."""
    return (NOW - delta).isoformat().replace("+00:00", "Z")


# ── snapshot fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def ago():
    """Helper fixture: ``ago(hours=3)`` gives an ISO timestamp three hours before NOW."""

    def _ago(**kwargs) -> str:
        return iso(timedelta(**kwargs))

    return _ago


@pytest.fixture()
def make_record():
    """Factory fixture returning a node record.

    ``peers`` becomes the adjacency table under the record's own MAC,
    ``medium`` the mesh tag of that MAC (``None`` for no mesh grouping).
    """

    def _make(
        node_id: str,
        mac: str,
        peers: dict | None = None,
        medium: str | None = "wireless",
        addresses: list[str] | None = None,
        lastseen: str | None = None,
        software: dict | None = None,
        statistics: dict | None = None,
        **nodeinfo,
    ) -> dict:
        mesh = {"bat0": {"interfaces": {medium: [mac]}}} if medium else {}
        record: dict = {
            "nodeinfo": {
                "node_id": node_id,
                "hostname": f"host-{node_id}",
                "network": {"mac": mac, "addresses": addresses or [], "mesh": mesh},
                **nodeinfo,
            },
            "firstseen": iso(timedelta(days=30)),
            "lastseen": lastseen if lastseen is not None else iso(),
        }
        if software is not None:
            record["nodeinfo"]["software"] = software
        if statistics is not None:
            record["statistics"] = statistics
        if peers is not None:
            record["neighbours"] = {"node_id": node_id, "batadv": {mac: {"neighbours": peers}}}
        return record

    return _make


# ── ingest fixtures ───────────────────────────────────────────────────


@pytest.fixture()
def config():
    return AggregatorConfig()


@pytest.fixture()
def registry_data():
    """Raw registry feed: one location with two devices linked by one edge."""
    return {
        "1": {
            "location": {"name": "graz", "lat": 47.07, "long": 15.43},
            "administrator": {"nick": "alice"},
            "nodes": [
                {
                    "id": 12,
                    "name": "roof",
                    "type": {"fw": "openwrt", "version": "19.07"},
                    "interfaces": [
                        {
                            "id": 1,
                            "name": "wifi0",
                            "ip": "10.12.0.1",
                            "netmask": "255.255.255.0",
                            "online": True,
                            "responddPath": "/cgi-bin/respondd?QUERY",
                        },
                        {"id": 2, "name": "lan", "ip": "10.12.1.1", "netmask": "255.255.255.0", "online": True},
                    ],
                },
                {
                    "id": 13,
                    "name": "tower",
                    "type": "openwrt",
                    "interfaces": [
                        {"id": 1, "name": "radio1", "ip": "10.12.0.2", "netmask": "255.255.255.0", "online": True},
                    ],
                },
            ],
        }
    }


@pytest.fixture()
def topology_data():
    return {
        "topology": [
            {"lastHopIP": "10.12.0.1", "destinationIP": "10.12.0.2", "linkQuality": 1.0, "neighborLinkQuality": 0.5},
        ]
    }


@pytest.fixture()
def registry(registry_data):
    return registry_adapter.validate_python(registry_data)


@pytest.fixture()
def topology(topology_data):
    return TopologyFeed.model_validate(topology_data)


@pytest.fixture()
def mock_client(registry, topology):
    """MagicMock of FeedClient returning the sample feeds."""
    client = MagicMock()
    client.fetch_registry.return_value = registry
    client.fetch_topology.return_value = topology
    client.query_node.return_value = {}
    return client
