"""Canonical node datastore interface and an in-memory implementation.

The aggregator core never mutates records in place: renderers read a
snapshot, ingestion proposes updates through :meth:`NodeStore.update` and
duplicate retirement through :meth:`NodeStore.retire`.
"""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Any, Mapping

from loguru import logger

from meshmon._util import earliest_timestamp, get_path, iso_timestamp


class SourceTag(IntEnum):
    """Origin of an update: primary registry data or an overlay over a native record."""

    PRIMARY = 0
    OVERLAY = 1


class NodeStore(ABC):
    """Abstract base class for the canonical node datastore."""

    @abstractmethod
    def snapshot(self, query: Mapping[str, Any] | None = None) -> dict[str, dict[str, Any]]:
        """Return a copy of all records matching *query*."""

    @abstractmethod
    def update(self, node_id: str, partial: dict[str, Any], source: SourceTag) -> None:
        """Merge *partial* into the record of *node_id*."""

    @abstractmethod
    def retire(self, stale_id: str, survivor_id: str | None = None) -> None:
        """Remove the duplicate *stale_id* in favour of *survivor_id*."""


def deep_merge(target: dict[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge *source* into *target*; non-dict values overwrite."""
    for key, value in source.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


class MemoryNodeStore(NodeStore):
    """Thread-safe in-memory node store.

    Every accepted update bumps ``lastseen``; ``firstseen`` is set on the first
    update of a node and never moves forward afterwards.
    """

    def __init__(self, records: Mapping[str, dict[str, Any]] | None = None) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, dict[str, Any]] = copy.deepcopy(dict(records or {}))
        self._sources: dict[str, SourceTag] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, node_id: object) -> bool:
        with self._lock:
            return node_id in self._records

    def snapshot(self, query: Mapping[str, Any] | None = None) -> dict[str, dict[str, Any]]:
        """Deep copy of all records, optionally filtered by dotted-path equality.

        ``{"nodeinfo.owner.name": "alice"}`` keeps only records whose owner
        name equals ``alice``. Values are compared as strings so query-string
        parameters can be passed through unchanged.
        """
        with self._lock:
            records = copy.deepcopy(self._records)
        if not query:
            return records
        return {
            node_id: record
            for node_id, record in records.items()
            if all(str(get_path(record, path)) == str(value) for path, value in query.items())
        }

    def update(self, node_id: str, partial: dict[str, Any], source: SourceTag = SourceTag.PRIMARY) -> None:
        if not node_id:
            logger.debug(f"Dropping update without node id (source={source.name})")
            return
        now = iso_timestamp()
        with self._lock:
            record = self._records.setdefault(node_id, {})
            deep_merge(record, partial)
            record.setdefault("firstseen", now)
            record["lastseen"] = now
            self._sources[node_id] = source

    def retire(self, stale_id: str, survivor_id: str | None = None) -> None:
        """Remove *stale_id*; hand its ``firstseen`` to *survivor_id* if earlier."""
        with self._lock:
            stale = self._records.pop(stale_id, None)
            self._sources.pop(stale_id, None)
            if stale is None or survivor_id is None:
                return
            survivor = self._records.get(survivor_id)
            if survivor is None:
                return
            firstseen = earliest_timestamp(stale.get("firstseen"), survivor.get("firstseen"))
            if firstseen is not None:
                survivor["firstseen"] = firstseen

    def source_of(self, node_id: str) -> SourceTag | None:
        with self._lock:
            return self._sources.get(node_id)
