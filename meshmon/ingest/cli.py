"""CLI entry point for a single dry-run reconcile cycle (standalone-capable)."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger
from tabulate import tabulate

from meshmon.config import load_config
from meshmon.datastore import MemoryNodeStore
from meshmon.exceptions import MeshMonError
from meshmon.ingest.feeds import FeedClient
from meshmon.ingest.models import ReconcilePlan
from meshmon.ingest.reconciler import Reconciler
from meshmon.render.cli import load_snapshot


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Build argparse parser for the reconcile dry run."""
    parser = argparse.ArgumentParser(
        description="Fetch registry and topology feeds once and print the proposed updates",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="JSON config file",
    )
    parser.add_argument(
        "--fetch-url",
        default=None,
        help="Device registry feed URL",
    )
    parser.add_argument(
        "--topology-url",
        default=None,
        help="Routing topology feed URL",
    )
    parser.add_argument(
        "-s",
        "--snapshot",
        help="JSON node snapshot to reconcile against (default: empty)",
    )
    parser.add_argument(
        "--format",
        choices=["table", "json"],
        default="table",
        help="Output format (default: table)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Verbose logging",
    )
    return parser.parse_args(args)


def format_plan(plan: ReconcilePlan) -> str:
    """Render a plan as tables of updates, retirements and endpoints."""
    sections = []
    update_rows = [
        [u.node_id, u.source.name.lower(), ", ".join(k for k in u.record if k != "overlay")] for u in plan.updates
    ]
    sections.append(tabulate(update_rows, headers=["node", "source", "categories"], tablefmt="simple"))
    if plan.retirements:
        sections.append(tabulate(plan.retirements, headers=["retired", "survivor"], tablefmt="simple"))
    if plan.endpoints:
        endpoint_rows = [[e.device_id, e.category, e.url] for e in plan.endpoints]
        sections.append(tabulate(endpoint_rows, headers=["device", "category", "url"], tablefmt="simple"))
    return "\n\n".join(sections)


def main(args: list[str] | None = None) -> None:
    """Main entry point for reconcile CLI."""
    parsed = parse_args(args)

    if not parsed.verbose:
        logger.remove()
        logger.add(sys.stderr, level="INFO")

    try:
        config = load_config(parsed.config, fetch_url=parsed.fetch_url, topology_url=parsed.topology_url)
        snapshot = load_snapshot(Path(parsed.snapshot)) if parsed.snapshot else {}
    except MeshMonError as e:
        logger.error(str(e))
        sys.exit(1)

    with FeedClient(config.fetch_url, config.topology_url, config.request_timeout, config.verify_tls) as client:
        reconciler = Reconciler(client, MemoryNodeStore(snapshot), config)
        try:
            plan = reconciler.plan(client.fetch_registry(), client.fetch_topology(), snapshot)
        except MeshMonError as e:
            logger.error(f"Reconcile failed: {e}")
            sys.exit(1)

    if parsed.format == "json":
        print(plan.model_dump_json(indent=2))
    else:
        print(format_plan(plan))
