"""Tests for meshmon/ingest/reconciler.py"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from meshmon.datastore import MemoryNodeStore, SourceTag
from meshmon.exceptions import FeedError, PayloadError
from meshmon.ingest.models import TopologyFeed, registry_adapter
from meshmon.ingest.reconciler import Reconciler, native_descriptors


@pytest.fixture()
def native_record():
    """Snapshot record of a node that reports itself on 10.12.0.2."""
    return {
        "nodeinfo": {
            "node_id": "c0ffee",
            "network": {"mac": "c0:ff:ee:00:00:01", "addresses": ["10.12.0.2", "fe80::1/64"]},
            "software": {"firmware": {"base": "gluon", "release": "v2023.1"}},
        },
        "neighbours": {"batadv": {}},
        "firstseen": "2024-06-01T00:00:00.000Z",
        "lastseen": "2026-01-01T11:59:00.000Z",
    }


def _updates_by(plan, node_id):
    return [u for u in plan.updates if u.node_id == node_id]


class TestNativeDescriptors:
    """Tests for native_descriptors."""

    def test_indexes_addresses_without_prefix_length(self, native_record):
        descriptors = native_descriptors({"c0ffee": native_record}, "manman")

        assert set(descriptors) == {"10.12.0.2", "fe80::1"}
        descriptor = descriptors["10.12.0.2"]
        assert descriptor.node_id == "c0ffee"
        assert descriptor.mac == "c0:ff:ee:00:00:01"
        assert descriptor.has_firmware is True
        assert descriptor.has_neighbours is False

    def test_any_adjacency_key_counts_as_neighbours(self, native_record):
        native_record["neighbours"]["batadv"] = {"c0:ff:ee:00:00:01": {"neighbours": {}}}
        assert native_descriptors({"c0ffee": native_record}, "manman")["10.12.0.2"].has_neighbours is True

    def test_skips_registry_records(self, native_record):
        assert native_descriptors({"manman.3": native_record}, "manman") == {}

    def test_skips_non_string_keys(self, native_record):
        assert native_descriptors({12345: native_record}, "manman") == {}

    def test_falls_back_to_snapshot_key(self, native_record):
        del native_record["nodeinfo"]["node_id"]
        assert native_descriptors({"c0ffee": native_record}, "manman")["10.12.0.2"].node_id == "c0ffee"


class TestPlanPrimary:
    """Plans for registry devices without a native counterpart."""

    def test_updates_for_linked_devices(self, mock_client, config, registry, topology):
        reconciler = Reconciler(mock_client, MemoryNodeStore(), config)

        plan = reconciler.plan(registry, topology, {})

        assert plan.retirements == []
        assert [(u.node_id, sorted(u.record)) for u in plan.updates] == [
            ("manman.12", ["nodeinfo", "overlay"]),
            ("manman.12", ["neighbours", "overlay"]),
            ("manman.13", ["nodeinfo", "overlay"]),
            ("manman.13", ["neighbours", "overlay"]),
        ]
        assert all(u.source == SourceTag.PRIMARY for u in plan.updates)
        assert all(u.record["overlay"] is False for u in plan.updates)

    def test_primary_nodeinfo(self, mock_client, config, registry, topology):
        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(registry, topology, {})

        nodeinfo = _updates_by(plan, "manman.12")[0].record["nodeinfo"]

        assert nodeinfo["node_id"] == "manman.12"
        assert nodeinfo["hostname"] == "graz-roof"
        assert nodeinfo["location"] == {"latitude": 47.07, "longitude": 15.43}
        assert nodeinfo["owner"] == {"name": "alice", "contact": "alice /manman"}
        assert nodeinfo["software"] == {"firmware": {"base": "openwrt", "release": "19.07"}}
        assert nodeinfo["manman"] == {
            "enabled": True,
            "location": "graz",
            "location_id": "1",
            "node": "roof",
            "node_id": 12,
        }
        network = nodeinfo["network"]
        assert network["mac"] == "manman.12"
        assert network["addresses"] == ["10.12.0.1/24", "10.12.1.1/24"]
        assert network["interfaces"]["wifi0"] == {"ip": "10.12.0.1/24", "up": True, "type": None}
        assert network["mesh"] == {
            "manman.12.1": {"interfaces": {"wireless": ["manman.12.1"]}},
            "manman.12.2": {"interfaces": {"wired": ["manman.12.2"]}},
        }

    def test_string_firmware_type(self, mock_client, config, registry, topology):
        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(registry, topology, {})

        nodeinfo = _updates_by(plan, "manman.13")[0].record["nodeinfo"]

        assert nodeinfo["software"] == {"firmware": {"base": "openwrt", "release": "openwrt"}}

    def test_neighbours_from_topology_edges(self, mock_client, config, registry, topology):
        """Each edge is recorded in both directions with tq and etx from the quality product."""
        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(registry, topology, {})

        forward = _updates_by(plan, "manman.12")[1].record["neighbours"]
        backward = _updates_by(plan, "manman.13")[1].record["neighbours"]

        assert forward == {
            "node_id": "manman.12",
            "batadv": {
                "manman.12": {
                    "neighbours": {
                        "manman.13.1": {"tq": 127.5, "etx": 2.0, "ip": "10.12.0.2", "ifname": "radio1"},
                    }
                }
            },
        }
        assert backward["batadv"]["manman.13"]["neighbours"] == {
            "manman.12.1": {"tq": 127.5, "etx": 2.0, "ip": "10.12.0.1", "ifname": "wifi0"},
        }

    def test_zero_quality_has_no_etx(self, mock_client, config, registry, topology_data):
        topology_data["topology"][0]["linkQuality"] = 0
        topology = TopologyFeed.model_validate(topology_data)

        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(registry, topology, {})

        peers = _updates_by(plan, "manman.12")[1].record["neighbours"]["batadv"]["manman.12"]["neighbours"]
        assert peers["manman.13.1"]["tq"] == 0
        assert peers["manman.13.1"]["etx"] is None

    def test_unknown_peer_address_kept_as_ip(self, mock_client, config, registry, topology_data):
        topology_data["topology"].append(
            {"lastHopIP": "10.12.0.1", "destinationIP": "10.99.0.1", "linkQuality": 1, "neighborLinkQuality": 1}
        )
        topology = TopologyFeed.model_validate(topology_data)

        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(registry, topology, {})

        peers = _updates_by(plan, "manman.12")[1].record["neighbours"]["batadv"]["manman.12"]["neighbours"]
        assert peers["10.99.0.1"] == {"tq": 255, "etx": 1.0, "ip": "10.99.0.1", "ifname": None}

    def test_devices_without_links_are_not_emitted(self, mock_client, config, registry):
        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(registry, TopologyFeed(), {})

        assert plan.updates == []

    def test_unknown_locations_are_skipped(self, mock_client, config, registry_data, topology):
        registry_data["1"]["location"]["name"] = "unknown-42"
        registry = registry_adapter.validate_python(registry_data)

        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(registry, topology, {})

        assert plan.updates == []
        assert plan.endpoints == []

    def test_query_endpoints(self, mock_client, config, registry, topology):
        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(registry, topology, {})

        assert [(e.device_id, e.category, e.url) for e in plan.endpoints] == [
            ("manman.12", "nodeinfo", "http://10.12.0.1/cgi-bin/respondd?nodeinfo"),
            ("manman.12", "neighbours", "http://10.12.0.1/cgi-bin/respondd?neighbours"),
            ("manman.12", "statistics", "http://10.12.0.1/cgi-bin/respondd?statistics"),
        ]


class TestPlanOverlay:
    """Plans for registry devices that also report natively."""

    def test_native_descriptor_wins(self, mock_client, config, registry, topology, native_record):
        snapshot = {"c0ffee": native_record}

        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(registry, topology, snapshot)

        assert _updates_by(plan, "manman.13") == []
        overlay = _updates_by(plan, "c0ffee")
        assert [u.source for u in overlay] == [SourceTag.OVERLAY, SourceTag.OVERLAY]
        nodeinfo = overlay[0].record["nodeinfo"]
        assert overlay[0].record["overlay"] is True
        assert nodeinfo["node_id"] == "c0ffee"
        assert nodeinfo["software"] == {}
        assert "network" not in nodeinfo and "hostname" not in nodeinfo
        neighbours = overlay[1].record["neighbours"]
        assert neighbours["node_id"] == "c0ffee"
        assert "manman.13" in neighbours["batadv"]

    def test_peer_named_by_native_id(self, mock_client, config, registry, topology, native_record):
        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(registry, topology, {"c0ffee": native_record})

        peers = _updates_by(plan, "manman.12")[1].record["neighbours"]["batadv"]["manman.12"]["neighbours"]
        assert list(peers) == ["c0ffee"]

    def test_firmware_supplied_when_native_lacks_it(self, mock_client, config, registry, topology, native_record):
        del native_record["nodeinfo"]["software"]

        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(registry, topology, {"c0ffee": native_record})

        nodeinfo = _updates_by(plan, "c0ffee")[0].record["nodeinfo"]
        assert nodeinfo["software"] == {"firmware": {"base": "openwrt", "release": "openwrt"}}

    def test_no_neighbours_overlay_when_native_has_them(self, mock_client, config, registry, topology, native_record):
        native_record["neighbours"]["batadv"] = {"c0:ff:ee:00:00:01": {"neighbours": {"x": {"tq": 1}}}}

        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(registry, topology, {"c0ffee": native_record})

        assert [sorted(u.record) for u in _updates_by(plan, "c0ffee")] == [["nodeinfo", "overlay"]]

    def test_stale_registry_record_retired(self, mock_client, config, registry, topology, native_record):
        snapshot = {"c0ffee": native_record, "manman.13": {"firstseen": "2020-01-01T00:00:00.000Z"}}

        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(registry, topology, snapshot)

        assert plan.retirements == [("manman.13", "c0ffee")]


class TestPlanTurnkey:
    """Plans for vendor-managed devices."""

    @pytest.fixture()
    def turnkey_registry(self, registry_data):
        registry_data["1"]["nodes"][1]["type"] = "gluon"
        registry_data["1"]["nodes"][1]["mac"] = "de:ad:be:ef:00:13"
        return registry_adapter.validate_python(registry_data)

    def test_turnkey_device_not_emitted_and_peer_named_by_mac(self, mock_client, config, turnkey_registry, topology):
        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(turnkey_registry, topology, {})

        assert _updates_by(plan, "manman.13") == []
        peers = _updates_by(plan, "manman.12")[1].record["neighbours"]["batadv"]["manman.12"]["neighbours"]
        assert list(peers) == ["de:ad:be:ef:00:13"]

    def test_stale_non_turnkey_record_retired(self, mock_client, config, turnkey_registry, topology):
        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(turnkey_registry, topology, {"manman.13": {}})

        assert plan.retirements == [("manman.13", None)]

    def test_turnkey_ignores_native_descriptor(self, mock_client, config, turnkey_registry, topology, native_record):
        snapshot = {"c0ffee": native_record}

        plan = Reconciler(mock_client, MemoryNodeStore(), config).plan(turnkey_registry, topology, snapshot)

        assert _updates_by(plan, "c0ffee") == []


class TestRunCycle:
    """Tests for Reconciler.run_cycle against a store."""

    def test_applies_updates_and_endpoints(self, mock_client, config):
        store = MemoryNodeStore()
        reconciler = Reconciler(mock_client, store, config)

        plan = reconciler.run_cycle()

        assert plan is not None
        snapshot = store.snapshot()
        assert set(snapshot) == {"manman.12", "manman.13"}
        assert snapshot["manman.12"]["nodeinfo"]["hostname"] == "graz-roof"
        assert "manman.13.1" in snapshot["manman.12"]["neighbours"]["batadv"]["manman.12"]["neighbours"]
        assert len(reconciler.endpoints) == 3

    def test_duplicate_retired_keeping_earliest_firstseen(self, mock_client, config, native_record):
        """After reconciliation exactly one record survives, with the earliest firstseen."""
        store = MemoryNodeStore(
            {
                "c0ffee": native_record,
                "manman.13": {
                    "nodeinfo": {"node_id": "manman.13"},
                    "firstseen": "2020-01-01T00:00:00.000Z",
                    "lastseen": "2025-01-01T00:00:00.000Z",
                },
            }
        )

        Reconciler(mock_client, store, config).run_cycle()

        snapshot = store.snapshot()
        assert "manman.13" not in snapshot
        assert snapshot["c0ffee"]["firstseen"] == "2020-01-01T00:00:00.000Z"
        assert snapshot["c0ffee"]["overlay"] is True
        assert snapshot["c0ffee"]["nodeinfo"]["manman"]["node_id"] == 13

    @pytest.mark.parametrize("error", [FeedError("connection refused"), PayloadError("bad json")])
    def test_failed_fetch_abandons_cycle(self, mock_client, config, error):
        store = MagicMock()
        mock_client.fetch_topology.side_effect = error
        reconciler = Reconciler(mock_client, store, config)

        assert reconciler.run_cycle() is None

        store.snapshot.assert_not_called()
        store.update.assert_not_called()
        store.retire.assert_not_called()
        assert reconciler.endpoints == []

    def test_endpoints_kept_after_failed_cycle(self, mock_client, config):
        reconciler = Reconciler(mock_client, MemoryNodeStore(), config)
        reconciler.run_cycle()
        mock_client.fetch_registry.side_effect = FeedError("timeout")

        reconciler.run_cycle()

        assert len(reconciler.endpoints) == 3

    def test_duplicate_retired_when_native_record_lacks_node_id(self, mock_client, config, native_record):
        """The snapshot key stands in for a missing nodeinfo.node_id."""
        del native_record["nodeinfo"]["node_id"]
        native_record["firstseen"] = "2025-01-01T00:00:00.000Z"
        store = MemoryNodeStore(
            {
                "c0ffee": native_record,
                "manman.13": {"nodeinfo": {"node_id": "manman.13"}, "firstseen": "2020-01-01T00:00:00.000Z"},
            }
        )

        plan = Reconciler(mock_client, store, config).run_cycle()

        assert ("manman.13", "c0ffee") in plan.retirements
        snapshot = store.snapshot()
        assert "manman.13" not in snapshot
        assert snapshot["c0ffee"]["firstseen"] == "2020-01-01T00:00:00.000Z"
        assert snapshot["c0ffee"]["nodeinfo"]["node_id"] == "c0ffee"
        assert snapshot["c0ffee"]["nodeinfo"]["manman"]["node_id"] == 13
