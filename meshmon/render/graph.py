"""Topology graph of the mesh routing layer (``graph.json``).

Links are read from every online record's ``neighbours.batadv`` table. Peer
identifiers in those tables are only loosely related to node ids: a peer may
be named by a MAC that some other record announces as one of its mesh
interfaces, by an address, or by a registry id with an interface suffix. The
builder resolves them through :class:`~meshmon.render.identity.IdentityTables`
and creates graph nodes lazily for whatever stays unknown.

Edges are processed strictly in snapshot order on one thread: a peer address
in the VPN range re-tags both endpoints as ``tunnel`` and that re-tagging is
visible to every later edge of the same build.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from loguru import logger

from meshmon._util import get_path, has_path, iso_timestamp, is_online, now_utc
from meshmon.render.identity import IdentityTables, iter_mesh_interfaces
from meshmon.render.models import GraphDocument, GraphLink, GraphNode

TUNNEL = "tunnel"
LEGACY_TUNNEL = "l2tp"
VPN_DAEMON = "fastd"

# Software feature flags announcing which VPN implementation a node runs
_VPN_FEATURES: tuple[tuple[str, str], ...] = (
    (VPN_DAEMON, "nodeinfo.software.fastd.enabled"),
    (LEGACY_TUNNEL, "nodeinfo.software.tunneldigger.enabled"),
)

# Peer address fields, most specific first
PEER_IP_FIELDS = ("olsr1_ip", "ip", "olsr2_ip")

MAX_QUALITY = 255


class ResolutionKind(str, Enum):
    CANONICAL = "canonical"
    BY_IP = "by_ip"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class PeerResolution:
    """Outcome of resolving one peer identifier of an adjacency table.

    ``identifier`` is the name the peer is looked up under from here on; for
    ``BY_IP`` it is replaced by the canonical id when that id is itself a known
    interface name, which folds the two names of the peer into one node.
    """

    kind: ResolutionKind
    identifier: str
    canonical_id: str | None = None


def peer_ip(link: dict[str, Any]) -> str | None:
    for key in PEER_IP_FIELDS:
        value = link.get(key)
        if value:
            return value
    return None


def link_weight(quality: Any) -> float:
    """Inverse link quality; missing or zero quality counts as 1."""
    if not isinstance(quality, (int, float)) or isinstance(quality, bool) or not quality:
        quality = 1
    return MAX_QUALITY / quality


def resolve_peer(peer: str, ip: str | None, tables: IdentityTables) -> PeerResolution:
    """Resolve *peer* by MAC first, then by the address it was reported with.

    A successful address lookup also records *peer* as an alias of the
    canonical id in the MAC table.
    """
    canonical = tables.macs.get(peer)
    if canonical:
        return PeerResolution(ResolutionKind.CANONICAL, peer, canonical)

    canonical = tables.ips.get(ip) if ip else None
    if not canonical:
        return PeerResolution(ResolutionKind.UNRESOLVED, peer)

    tables.macs[peer] = canonical
    if tables.macs.get(canonical):
        return PeerResolution(ResolutionKind.BY_IP, canonical, canonical)
    return PeerResolution(ResolutionKind.BY_IP, peer, canonical)


class NodeTable:
    """Identifier to graph-node index mapping for one build.

    Grows monotonically; an identifier never moves to another index once
    links have been emitted for it.
    """

    def __init__(
        self,
        snapshot: dict[str, dict[str, Any]],
        tables: IdentityTables,
        offline_time: float,
        now: datetime,
    ) -> None:
        self.snapshot = snapshot
        self.tables = tables
        self.offline_time = offline_time
        self.now = now
        self.nodes: list[GraphNode] = []
        self._index: dict[str, int] = {}

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._index

    def get(self, identifier: str) -> int | None:
        return self._index.get(identifier)

    def ensure(self, identifier: str) -> int:
        """Return the node index for *identifier*, creating the node if needed.

        Before creating a node, an existing node for the same canonical id is
        reused. A new node also claims all adjacency keys and mesh interfaces
        of its record, so later links naming any of them land on it.
        """
        if identifier in self._index:
            return self._index[identifier]

        canonical = self.tables.macs.get(identifier)
        if canonical:
            for i, node in enumerate(self.nodes):
                if node.node_id == canonical:
                    self._index[identifier] = i
                    return i

        index = len(self.nodes)
        record = self.snapshot.get(canonical) if canonical else None
        self._index[identifier] = index
        batadv = get_path(record, "neighbours.batadv", {})
        if isinstance(batadv, dict):
            for mac in batadv:
                self._index[mac] = index
        for _, interface_id in iter_mesh_interfaces(record):
            self._index[interface_id] = index

        self.nodes.append(
            GraphNode(
                id=identifier,
                node_id=canonical,
                unseen=not is_online(record, self.offline_time, self.now),
            )
        )
        return index


class GraphBuilder:
    """Build the directed, weighted routing-layer graph from a node snapshot."""

    def __init__(
        self,
        offline_time: float,
        vpn_prefixes: Iterable[str] = ("10.12.11.",),
        vpn_addresses: Iterable[str] = ("2001:470:508d::12",),
        external_id_prefix: str = "manman",
    ) -> None:
        self.offline_time = offline_time
        self.vpn_prefixes = tuple(vpn_prefixes)
        self.vpn_addresses = frozenset(vpn_addresses)
        prefix = re.escape(external_id_prefix)
        self._placeholder_re = re.compile(rf"^{prefix}\.\d+$")
        self._long_alias_re = re.compile(rf"^({prefix}\.\d+)\.\d+$")

    @classmethod
    def from_config(cls, config: Any) -> GraphBuilder:
        return cls(
            offline_time=config.offline_time,
            vpn_prefixes=config.vpn_prefixes,
            vpn_addresses=config.vpn_addresses,
            external_id_prefix=config.external_id_prefix,
        )

    def is_vpn_address(self, ip: str | None) -> bool:
        if not ip:
            return False
        return ip in self.vpn_addresses or ip.startswith(self.vpn_prefixes)

    def is_placeholder(self, identifier: str) -> bool:
        """Registry ids without an interface suffix say nothing about the medium."""
        return bool(self._placeholder_re.match(identifier))

    def short_alias(self, identifier: str) -> str:
        """Collapse ``<prefix>.<id>.<intf>`` to ``<prefix>.<id>``."""
        match = self._long_alias_re.match(identifier)
        return match.group(1) if match else identifier

    def render(self, snapshot: dict[str, dict[str, Any]], now: datetime | None = None) -> GraphDocument:
        now = now or now_utc()
        tables = IdentityTables.build(snapshot, include_adjacency=True)
        node_table = NodeTable(snapshot, tables, self.offline_time, now)
        document = GraphDocument(timestamp=iso_timestamp(now))
        links = document.batadv.links

        for record in snapshot.values():
            if not has_path(record, "neighbours.batadv") or not is_online(record, self.offline_time, now):
                continue
            batadv = get_path(record, "neighbours.batadv", {})
            if not isinstance(batadv, dict):
                continue
            for dest, local in batadv.items():
                peers = get_path(local, "neighbours")
                if not isinstance(peers, dict):
                    continue
                for peer, link in peers.items():
                    if not isinstance(link, dict):
                        link = {}
                    links.append(self._build_link(peer, dest, link, snapshot, tables, node_table))

        document.batadv.nodes = node_table.nodes
        logger.debug(f"graph.json: {len(node_table.nodes)} nodes, {len(links)} links")
        return document

    def _build_link(
        self,
        peer: str,
        dest: str,
        link: dict[str, Any],
        snapshot: dict[str, dict[str, Any]],
        tables: IdentityTables,
        node_table: NodeTable,
    ) -> GraphLink:
        ip = peer_ip(link)
        resolution = resolve_peer(peer, ip, tables)
        src = resolution.identifier
        weight = link_weight(link.get("tq"))
        medium = self.classify(src, dest, ip, snapshot, tables)

        source = node_table.ensure(self.short_alias(src))
        target = node_table.ensure(self.short_alias(dest))
        return GraphLink(source=source, target=target, tq=weight, type=medium)

    def classify(
        self,
        src: str,
        dest: str,
        ip: str | None,
        snapshot: dict[str, dict[str, Any]],
        tables: IdentityTables,
    ) -> str | None:
        """Medium type of the link *src* -> *dest*; first matching rule wins.

        1. peer address in the VPN range: ``tunnel``, and both endpoints are
           re-tagged ``tunnel`` for the rest of the build
        2. either endpoint tagged ``l2tp``
        3. either endpoint tagged ``fastd``
        4. either endpoint tagged ``tunnel``, refined by the endpoints'
           announced VPN software when both are ``tunnel`` or untagged
        5. the destination's tag, or the source's when the destination is a
           bare registry placeholder
        """
        types = tables.types
        ts, td = types.get(src), types.get(dest)

        if self.is_vpn_address(ip):
            types[src] = TUNNEL
            types[dest] = TUNNEL
            return TUNNEL
        if LEGACY_TUNNEL in (ts, td):
            return LEGACY_TUNNEL
        if VPN_DAEMON in (ts, td):
            return VPN_DAEMON
        if TUNNEL in (ts, td):
            if ts in (None, TUNNEL) and td in (None, TUNNEL):
                return self._vote_vpn_software(src, dest, snapshot, tables) or TUNNEL
            return TUNNEL
        if self.is_placeholder(dest):
            return ts
        return td

    @staticmethod
    def _vote_vpn_software(
        src: str,
        dest: str,
        snapshot: dict[str, dict[str, Any]],
        tables: IdentityTables,
    ) -> str | None:
        """Pick ``fastd`` or ``l2tp`` if every endpoint announcing software runs it.

        Returns ``None`` when nobody announces software or both implementations
        qualify.
        """
        records = [snapshot.get(tables.macs.get(dest, "")), snapshot.get(tables.macs.get(src, ""))]
        reporting = sum(1 for r in records if has_path(r, "nodeinfo.software"))
        winners = [
            tag
            for tag, path in _VPN_FEATURES
            if reporting and sum(1 for r in records if get_path(r, path, False)) == reporting
        ]
        if len(winners) == 1:
            return winners[0]
        return None
