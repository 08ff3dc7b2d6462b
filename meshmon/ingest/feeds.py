"""HTTP client for the registry feed, the topology feed and per-node queries."""

from __future__ import annotations

from types import TracebackType
from typing import Any, Self

import requests
from loguru import logger
from pydantic import ValidationError

from meshmon.exceptions import FeedError, PayloadError
from meshmon.ingest.models import RegistryFeed, TopologyFeed, registry_adapter


class FeedClient:
    """Fetch JSON documents over HTTP(S).

    Feed fetches share one ``requests.Session``; per-node queries use a
    one-off request each so they can run from many threads at once.
    """

    def __init__(
        self,
        registry_url: str,
        topology_url: str,
        timeout: float = 10.0,
        verify_tls: bool = False,
    ) -> None:
        self.registry_url = registry_url
        self.topology_url = topology_url
        self.timeout = timeout
        self.verify_tls = verify_tls
        self._session: requests.Session | None = None

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            self._session.verify = self.verify_tls
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: TracebackType | None
    ) -> None:
        self.close()

    @staticmethod
    def _decode(resp: requests.Response, url: str) -> Any:
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise FeedError(f"GET {url} failed: {e}", status_code=resp.status_code) from e
        try:
            return resp.json()
        except ValueError as e:
            raise PayloadError(f"GET {url} returned invalid JSON: {e}") from e

    def get_json(self, url: str) -> Any:
        """GET *url* on the shared session and return the decoded JSON body.

        Raises:
            FeedError: On connection failure, timeout or an error status.
            PayloadError: If the body is not valid JSON.
        """
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise FeedError(f"GET {url} failed: {e}") from e
        return self._decode(resp, url)

    def fetch_registry(self) -> RegistryFeed:
        data = self.get_json(self.registry_url)
        try:
            registry = registry_adapter.validate_python(data)
        except ValidationError as e:
            raise PayloadError(f"Registry feed {self.registry_url} does not match schema: {e}") from e
        logger.debug(f"Registry feed: {len(registry)} locations")
        return registry

    def fetch_topology(self) -> TopologyFeed:
        data = self.get_json(self.topology_url)
        try:
            topology = TopologyFeed.model_validate(data)
        except ValidationError as e:
            raise PayloadError(f"Topology feed {self.topology_url} does not match schema: {e}") from e
        logger.debug(f"Topology feed: {len(topology.topology)} edges")
        return topology

    def query_node(self, url: str) -> Any:
        """Query one node's status endpoint (thread-safe)."""
        try:
            resp = requests.get(url, timeout=self.timeout, verify=self.verify_tls)
        except requests.RequestException as e:
            raise FeedError(f"GET {url} failed: {e}") from e
        return self._decode(resp, url)
