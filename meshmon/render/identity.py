"""Request-scoped identity lookup tables built from a node snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

from meshmon._util import get_path, has_path, strip_prefix_len


def iter_mesh_interfaces(record: dict[str, Any] | None) -> Iterator[tuple[str, str]]:
    """Yield ``(medium, interface_id)`` for every mesh interface of *record*.

    Interface lists that are not sequences are skipped.
    """
    mesh = get_path(record, "nodeinfo.network.mesh", {})
    if not isinstance(mesh, dict):
        return
    for group in mesh.values():
        interfaces = get_path(group, "interfaces", {})
        if not isinstance(interfaces, dict):
            continue
        for medium, ids in interfaces.items():
            if not isinstance(ids, (list, tuple)):
                continue
            for interface_id in ids:
                yield medium, interface_id


@dataclass
class IdentityTables:
    """MAC, IP and medium-type indexes over one snapshot.

    ``macs`` maps interface ids to canonical node ids, ``ips`` maps bare
    addresses to canonical node ids and ``types`` maps interface ids to their
    medium tag. The tables belong to a single render and may be amended while
    it runs (see :class:`~meshmon.render.graph.GraphBuilder`).
    """

    macs: dict[str, str] = field(default_factory=dict)
    ips: dict[str, str] = field(default_factory=dict)
    types: dict[str, str] = field(default_factory=dict)

    @classmethod
    def build(cls, snapshot: dict[str, dict[str, Any]], include_adjacency: bool = False) -> IdentityTables:
        """Single pass over *snapshot*.

        With *include_adjacency* the local keys of ``neighbours.batadv`` (for
        records that also report ``nodeinfo.network.mac``) and the addresses of
        records with adjacency data are indexed as well; the graph builder needs
        these, the status listing does not.
        """
        tables = cls()
        for node_id, record in snapshot.items():
            if include_adjacency and has_path(record, "neighbours.batadv"):
                batadv = get_path(record, "neighbours.batadv", {})
                if has_path(record, "nodeinfo.network.mac") and isinstance(batadv, dict):
                    for mac in batadv:
                        tables.macs[mac] = node_id
                addresses = get_path(record, "nodeinfo.network.addresses", [])
                if isinstance(addresses, list):
                    for address in addresses:
                        if isinstance(address, str):
                            tables.ips[strip_prefix_len(address)] = node_id
            for medium, interface_id in iter_mesh_interfaces(record):
                tables.types[interface_id] = medium
                tables.macs[interface_id] = node_id
        return tables

    def resolve(self, identifier: Any) -> Any:
        """Map a MAC to its canonical id, leaving unknown values untouched."""
        if isinstance(identifier, str) and identifier in self.macs:
            return self.macs[identifier]
        return identifier
