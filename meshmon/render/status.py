"""Node status listing (``nodes.json``)."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from loguru import logger

from meshmon._util import get_path, iso_timestamp, is_online, now_utc
from meshmon.render.identity import IdentityTables
from meshmon.render.models import ClientCounts, NodeFlags, NodesDocument, NodeStatistics, NodeStatus


def memory_usage(memory: Any) -> float | None:
    """Used-memory ratio ``(total - free - buffers - cached) / total``.

    Returns ``None`` when ``total`` is missing or zero.
    """
    if not isinstance(memory, dict):
        return None
    values = [memory.get(key) or 0 for key in ("total", "free", "buffers", "cached")]
    if not all(isinstance(v, (int, float)) for v in values):
        return None
    total, free, buffers, cached = values
    if not total:
        return None
    used = total - free - buffers - cached
    return used / total


class StatusNormalizer:
    """Turn a node snapshot into the version 2 status listing."""

    def __init__(self, offline_time: float) -> None:
        self.offline_time = offline_time

    def render(self, snapshot: dict[str, dict[str, Any]], now: datetime | None = None) -> NodesDocument:
        now = now or now_utc()
        timestamp = iso_timestamp(now)
        tables = IdentityTables.build(snapshot)
        document = NodesDocument(timestamp=timestamp)

        for record in snapshot.values():
            nodeinfo = record.get("nodeinfo")
            if not nodeinfo:
                continue
            online = is_online(record, self.offline_time, now)
            document.nodes.append(
                NodeStatus(
                    nodeinfo=nodeinfo,
                    flags=NodeFlags(
                        online=online,
                        gateway=bool(get_path(record, "nodeinfo.vpn") or get_path(record, "nodeinfo.gateway")),
                    ),
                    statistics=self._statistics(record, tables) if online else None,
                    lastseen=record.get("lastseen") or timestamp,
                    firstseen=record.get("firstseen") or timestamp,
                )
            )

        online_count = sum(1 for n in document.nodes if n.flags.online)
        logger.debug(f"nodes.json: {len(document.nodes)} nodes, {online_count} online")
        return document

    @staticmethod
    def _statistics(record: dict[str, Any], tables: IdentityTables) -> NodeStatistics:
        stats = record.get("statistics")
        if not isinstance(stats, dict):
            stats = {}
        clients = stats.get("clients")
        if not isinstance(clients, dict):
            clients = {}
        airtime = stats.get("airtime")
        return NodeStatistics(
            uptime=stats.get("uptime"),
            gateway=tables.resolve(stats.get("gateway")),
            gateway_nexthop=tables.resolve(stats.get("gateway_nexthop")),
            nexthop=tables.resolve(stats.get("nexthop")),
            airtime=airtime if isinstance(airtime, list) else [],
            memory_usage=memory_usage(stats.get("memory")),
            rootfs_usage=stats.get("rootfs_usage"),
            clients=ClientCounts(
                total=clients.get("total", 0),
                wifi=clients.get("wifi", 0),
                wifi24=clients.get("wifi24", 0),
                wifi5=clients.get("wifi5", 0),
            ),
            loadavg=stats.get("loadavg"),
        )
