"""Reconcile the device registry and the routing topology feed with the snapshot.

Registry devices are addressed by ``<prefix>.<device id>``. Once a device's
address turns up in a record that reports its own identity (a native node),
the native id wins: the registry data is layered over that record as an
overlay and the registry-named duplicate is retired.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterator

from loguru import logger

from meshmon._util import get_path, strip_prefix_len
from meshmon.config import AggregatorConfig
from meshmon.datastore import NodeStore, SourceTag
from meshmon.exceptions import MeshMonError
from meshmon.ingest._util import classify_interface, netmask_to_prefix_len
from meshmon.ingest.feeds import FeedClient
from meshmon.ingest.models import (
    QUERY_CATEGORIES,
    AdjacencyEntry,
    NativeDescriptor,
    NodeUpdate,
    QueryEndpoint,
    ReconcilePlan,
    RegistryDevice,
    RegistryFeed,
    RegistryInterface,
    RegistryLocation,
    TopologyEdge,
    TopologyFeed,
)


def native_descriptors(snapshot: dict[str, dict[str, Any]], external_prefix: str) -> dict[str, NativeDescriptor]:
    """Index the addresses of every natively identified record."""
    descriptors: dict[str, NativeDescriptor] = {}
    for node_id, record in snapshot.items():
        if not isinstance(node_id, str) or node_id.startswith(external_prefix):
            continue
        addresses = get_path(record, "nodeinfo.network.addresses", [])
        if not isinstance(addresses, list) or not addresses:
            continue
        native_id = get_path(record, "nodeinfo.node_id")
        mac = get_path(record, "nodeinfo.network.mac")
        descriptor = NativeDescriptor(
            mac=mac if isinstance(mac, str) else None,
            node_id=native_id if isinstance(native_id, str) and native_id else node_id,
            has_neighbours=bool(get_path(record, "neighbours.batadv", {})),
            has_firmware=bool(get_path(record, "nodeinfo.software.firmware", {})),
        )
        for address in addresses:
            if isinstance(address, str):
                descriptors[strip_prefix_len(address)] = descriptor
    return descriptors


@dataclass
class _RegistryIndex:
    """Address indexes over the registry feed for one cycle."""

    device_ids: dict[str, str] = field(default_factory=dict)
    interface_ids: dict[str, str] = field(default_factory=dict)
    turnkey_macs: dict[str, str | None] = field(default_factory=dict)
    interfaces: dict[str, RegistryInterface] = field(default_factory=dict)
    adopted: dict[str, NativeDescriptor] = field(default_factory=dict)


class Reconciler:
    """Periodic registry/topology reconciliation.

    :meth:`plan` is a pure function of the two feeds and a snapshot;
    :meth:`run_cycle` fetches, plans and hands the result to the store.
    Query endpoints found by the last successful cycle are exposed through
    :attr:`endpoints` for the per-node poller.
    """

    def __init__(self, client: FeedClient, store: NodeStore, config: AggregatorConfig) -> None:
        self.client = client
        self.store = store
        self.config = config
        self.prefix = config.external_id_prefix
        self._endpoints: list[QueryEndpoint] = []
        self._lock = threading.Lock()

    @property
    def endpoints(self) -> list[QueryEndpoint]:
        with self._lock:
            return list(self._endpoints)

    def registry_id(self, device: RegistryDevice) -> str:
        return f"{self.prefix}.{device.id}"

    def run_cycle(self) -> ReconcilePlan | None:
        """Fetch both feeds and apply the resulting plan.

        A failed fetch or an unparseable payload abandons the cycle before
        anything is applied; the next cycle starts from scratch.
        """
        try:
            registry = self.client.fetch_registry()
            topology = self.client.fetch_topology()
        except MeshMonError as e:
            logger.error(f"Reconcile cycle abandoned: {e}")
            return None

        plan = self.plan(registry, topology, self.store.snapshot())
        self.apply(plan)
        return plan

    def apply(self, plan: ReconcilePlan) -> None:
        for stale_id, survivor_id in plan.retirements:
            self.store.retire(stale_id, survivor_id)
        for update in plan.updates:
            if update.node_id:
                self.store.update(update.node_id, update.record, update.source)
        with self._lock:
            self._endpoints = list(plan.endpoints)
        logger.info(
            f"Reconciled: {len(plan.updates)} updates, {len(plan.retirements)} retired, "
            f"{len(plan.endpoints)} query endpoints"
        )

    def plan(
        self,
        registry: RegistryFeed,
        topology: TopologyFeed,
        snapshot: dict[str, dict[str, Any]],
    ) -> ReconcilePlan:
        plan = ReconcilePlan()
        descriptors = native_descriptors(snapshot, self.prefix)
        index = self._index_registry(registry, descriptors, set(snapshot), plan)
        adjacency = self._adjacency(topology, index, descriptors)

        for location_id, location in registry.items():
            for device in location.nodes:
                plan.updates.extend(self._device_updates(location_id, location, device, adjacency, index))
        return plan

    def _index_registry(
        self,
        registry: RegistryFeed,
        descriptors: dict[str, NativeDescriptor],
        existing: set[str],
        plan: ReconcilePlan,
    ) -> _RegistryIndex:
        index = _RegistryIndex()

        def retire(stale_id: str, survivor_id: str | None, reason: str) -> None:
            if stale_id not in existing or stale_id == survivor_id:
                return
            existing.discard(stale_id)
            plan.retirements.append((stale_id, survivor_id))
            logger.info(f"Retiring {reason} {stale_id} (survivor: {survivor_id})")

        for location in registry.values():
            if location.is_unknown:
                continue
            for device in location.nodes:
                reg_id = self.registry_id(device)
                for intf in device.interfaces:
                    index.device_ids[intf.ip] = reg_id
                    index.interface_ids[intf.ip] = f"{reg_id}.{intf.id}" if device.id else reg_id
                    index.turnkey_macs[intf.ip] = device.mac if device.is_turnkey else None
                    index.interfaces[intf.ip] = intf

                    if device.is_turnkey:
                        retire(reg_id, None, "non-turnkey artifact")

                    if intf.respondd_path:
                        for category in QUERY_CATEGORIES:
                            path = intf.respondd_path.replace("QUERY", category)
                            plan.endpoints.append(
                                QueryEndpoint(device_id=reg_id, url=f"http://{intf.ip}{path}", category=category)
                            )

                    descriptor = descriptors.get(intf.ip)
                    if descriptor is not None and not device.is_turnkey:
                        index.adopted[reg_id] = descriptor
                        retire(reg_id, descriptor.node_id, "registry duplicate")
        return index

    def _adjacency(
        self,
        topology: TopologyFeed,
        index: _RegistryIndex,
        descriptors: dict[str, NativeDescriptor],
    ) -> dict[str, list[AdjacencyEntry]]:
        adjacency: dict[str, list[AdjacencyEntry]] = defaultdict(list)

        def add(edge: TopologyEdge, src: str, dest: str) -> None:
            descriptor = descriptors.get(dest)
            peer = (
                index.turnkey_macs.get(dest)
                or (descriptor.node_id if descriptor else None)
                or index.interface_ids.get(dest)
                or dest
            )
            other_side = index.interfaces.get(dest)
            product = edge.quality_product
            adjacency[index.device_ids.get(src, src)].append(
                AdjacencyEntry(
                    ip=src,
                    node=peer,
                    node_ip=dest,
                    ifname=other_side.name if other_side else None,
                    tq=255 * product,
                    etx=1 / product if product else None,
                )
            )

        for edge in topology.topology:
            add(edge, edge.last_hop_ip, edge.destination_ip)
            add(edge, edge.destination_ip, edge.last_hop_ip)
        return adjacency

    def _device_updates(
        self,
        location_id: str,
        location: RegistryLocation,
        device: RegistryDevice,
        adjacency: dict[str, list[AdjacencyEntry]],
        index: _RegistryIndex,
    ) -> Iterator[NodeUpdate]:
        reg_id = self.registry_id(device)
        conns = adjacency.get(reg_id)
        if device.is_turnkey or not conns or location.is_unknown:
            return

        descriptor = index.adopted.get(reg_id)
        common: dict[str, Any] = {
            "location": {"latitude": location.location.lat, "longitude": location.location.long},
            "owner": {
                "name": location.administrator.nick,
                "contact": f"{location.administrator.nick} /{self.prefix}",
            },
            self.prefix: {
                "enabled": True,
                "location": location.location.name,
                "location_id": location_id,
                "node": device.name,
                "node_id": device.id,
            },
        }
        firmware = {"firmware": {"base": device.firmware_base, "release": device.firmware_release}}

        if descriptor is None:
            yield NodeUpdate(
                node_id=reg_id,
                record={
                    "overlay": False,
                    "nodeinfo": {
                        "node_id": reg_id,
                        "hostname": f"{location.location.name}-{device.name}",
                        "network": self._network(reg_id, device),
                        "software": firmware,
                        **common,
                    },
                },
                source=SourceTag.PRIMARY,
            )
        else:
            yield NodeUpdate(
                node_id=descriptor.node_id,
                record={
                    "overlay": True,
                    "nodeinfo": {
                        "node_id": descriptor.node_id,
                        "software": {} if descriptor.has_firmware else firmware,
                        **common,
                    },
                },
                source=SourceTag.OVERLAY,
            )

        if descriptor is None or not descriptor.has_neighbours:
            node_id = descriptor.node_id if descriptor else reg_id
            peers = {c.node: {"tq": c.tq, "etx": c.etx, "ip": c.node_ip, "ifname": c.ifname} for c in conns}
            yield NodeUpdate(
                node_id=node_id,
                record={
                    "overlay": descriptor is not None,
                    "neighbours": {"node_id": node_id, "batadv": {reg_id: {"neighbours": peers}}},
                },
                source=SourceTag.OVERLAY if descriptor else SourceTag.PRIMARY,
            )

    def _network(self, reg_id: str, device: RegistryDevice) -> dict[str, Any]:
        addresses: list[str] = []
        interfaces: dict[str, Any] = {}
        mesh: dict[str, Any] = {}
        for intf in device.interfaces:
            address = f"{intf.ip}/{netmask_to_prefix_len(intf.netmask)}"
            addresses.append(address)
            interfaces[intf.name] = {"ip": address, "up": intf.online, "type": intf.type}
            medium = classify_interface(intf.name, intf.ip, self.config.is_vpn_address)
            if medium:
                interface_id = f"{reg_id}.{intf.id}"
                mesh[interface_id] = {"interfaces": {medium: [interface_id]}}
        return {"addresses": addresses, "interfaces": interfaces, "mac": reg_id, "mesh": mesh}
