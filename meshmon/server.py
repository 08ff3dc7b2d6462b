"""HTTP endpoint serving ``nodes.json`` and ``graph.json``, plus the ``serve`` CLI."""

from __future__ import annotations

import argparse
import http.server
import json
import sys
from typing import Any, Callable
from urllib.parse import parse_qsl, urlsplit

from loguru import logger

from meshmon.config import AggregatorConfig, load_config
from meshmon.datastore import MemoryNodeStore, NodeStore
from meshmon.exceptions import MeshMonError
from meshmon.ingest.feeds import FeedClient
from meshmon.ingest.poller import Poller
from meshmon.ingest.reconciler import Reconciler
from meshmon.render.graph import GraphBuilder
from meshmon.render.status import StatusNormalizer
from meshmon.scheduler import IntervalTimer


class Aggregator:
    """Wires the store, the renderers and the two periodic ingest tasks together."""

    def __init__(self, config: AggregatorConfig, store: NodeStore | None = None) -> None:
        self.config = config
        self.store = store if store is not None else MemoryNodeStore()
        self.status = StatusNormalizer(config.offline_time)
        self.graph = GraphBuilder.from_config(config)
        self.client = FeedClient(config.fetch_url, config.topology_url, config.request_timeout, config.verify_tls)
        self.reconciler = Reconciler(self.client, self.store, config)
        self.poller = Poller(self.client, self.store, lambda: self.reconciler.endpoints)
        self.timers = [
            IntervalTimer("reconcile", config.fetch_interval, self.reconciler.run_cycle),
            IntervalTimer("query", config.query_interval, self.poller.poll),
        ]
        self.documents: dict[str, Callable[[dict[str, str]], dict[str, Any]]] = {
            "nodes.json": self.nodes_json,
            "graph.json": self.graph_json,
        }

    def nodes_json(self, query: dict[str, str] | None = None) -> dict[str, Any]:
        return self.status.render(self.store.snapshot(query)).to_dict()

    def graph_json(self, query: dict[str, str] | None = None) -> dict[str, Any]:
        return self.graph.render(self.store.snapshot(query)).to_dict()

    def start(self) -> None:
        for timer in self.timers:
            timer.start()

    def stop(self) -> None:
        for timer in self.timers:
            timer.stop()
        self.client.close()


class AggregatorHandler(http.server.BaseHTTPRequestHandler):
    """Serves the rendered documents; the query string filters the snapshot."""

    aggregator: Aggregator

    def do_GET(self) -> None:
        parts = urlsplit(self.path)
        render = self.aggregator.documents.get(parts.path.lstrip("/"))
        if render is None:
            self.send_response(404)
            self.end_headers()
            return

        data = json.dumps(render(dict(parse_qsl(parts.query)))).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.send_header("Access-Control-Allow-Origin", "*")
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, format: str, *args: object) -> None:
        logger.debug(f"{self.address_string()} {format % args}")


def make_server(aggregator: Aggregator) -> http.server.ThreadingHTTPServer:
    handler = type("BoundAggregatorHandler", (AggregatorHandler,), {"aggregator": aggregator})
    return http.server.ThreadingHTTPServer((aggregator.config.host, aggregator.config.port), handler)


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Build argparse parser for the aggregator service."""
    parser = argparse.ArgumentParser(
        description="Run the mesh telemetry aggregator and serve nodes.json / graph.json",
    )
    parser.add_argument("-c", "--config", help="JSON config file")
    parser.add_argument("--host", default=None, help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=None, help="HTTP port (default: 4000)")
    parser.add_argument("--offline-time", type=int, default=None, help="Offline threshold in seconds (default: 900)")
    parser.add_argument("--fetch-url", default=None, help="Device registry feed URL")
    parser.add_argument("--topology-url", default=None, help="Routing topology feed URL")
    parser.add_argument("--fetch-interval", type=float, default=None, help="Reconcile cadence in seconds (default: 60)")
    parser.add_argument(
        "--query-interval", type=float, default=None, help="Per-node query cadence in seconds (default: 60.002)"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    return parser.parse_args(args)


def main(args: list[str] | None = None) -> None:
    """Main entry point for the aggregator service."""
    parsed = parse_args(args)

    if not parsed.verbose:
        logger.remove()
        logger.add(sys.stderr, level="INFO")

    try:
        config = load_config(
            parsed.config,
            host=parsed.host,
            port=parsed.port,
            offline_time=parsed.offline_time,
            fetch_url=parsed.fetch_url,
            topology_url=parsed.topology_url,
            fetch_interval=parsed.fetch_interval,
            query_interval=parsed.query_interval,
        )
    except MeshMonError as e:
        logger.error(str(e))
        sys.exit(1)

    aggregator = Aggregator(config)
    server = make_server(aggregator)
    aggregator.start()
    logger.info(f"Serving on http://{config.host}:{config.port}/nodes.json and /graph.json")
    logger.info(f"Registry feed {config.fetch_url}, topology feed {config.topology_url}")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Stopped.")
    finally:
        aggregator.stop()
        server.server_close()
