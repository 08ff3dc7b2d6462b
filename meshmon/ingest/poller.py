"""Direct per-node status queries against endpoints found by the reconciler."""

from __future__ import annotations

import concurrent.futures
from typing import Callable

from loguru import logger

from meshmon.datastore import NodeStore, SourceTag
from meshmon.exceptions import MeshMonError
from meshmon.ingest.feeds import FeedClient
from meshmon.ingest.models import QueryEndpoint


class Poller:
    """Query every known endpoint once per cycle, all at the same time.

    Queries are best-effort: a failing query is logged at debug level and
    dropped without retry. :meth:`poll` does not wait for the queries unless
    asked to, so a hanging node never holds up the next cycle.
    """

    def __init__(
        self,
        client: FeedClient,
        store: NodeStore,
        endpoints: Callable[[], list[QueryEndpoint]],
    ) -> None:
        self.client = client
        self.store = store
        self.endpoints = endpoints

    def poll(self, wait: bool = False) -> list[concurrent.futures.Future[bool]]:
        endpoints = self.endpoints()
        if not endpoints:
            return []

        logger.debug(f"Polling {len(endpoints)} node endpoints")
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=len(endpoints), thread_name_prefix="node-query")
        futures = [pool.submit(self.query, endpoint) for endpoint in endpoints]
        pool.shutdown(wait=wait)
        return futures

    def query(self, endpoint: QueryEndpoint) -> bool:
        """Run one query; True if it produced an update."""
        try:
            result = self.client.query_node(endpoint.url)
        except MeshMonError as e:
            logger.debug(f"{endpoint.device_id} {endpoint.category}: {e}")
            return False

        node_id = result.get("node_id") if isinstance(result, dict) else None
        if not node_id or not isinstance(node_id, str):
            logger.debug(f"{endpoint.device_id} {endpoint.category}: response without usable node_id ({node_id!r})")
            return False

        self.store.update(node_id, {endpoint.category: result}, SourceTag.PRIMARY)
        return True
