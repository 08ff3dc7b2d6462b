"""CLI entry point for rendering from a snapshot file (standalone-capable)."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from loguru import logger

from meshmon.config import load_config
from meshmon.exceptions import MeshMonError
from meshmon.render.graph import GraphBuilder
from meshmon.render.status import StatusNormalizer

DOCUMENTS = ("nodes", "graph")


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Build argparse parser for offline rendering."""
    parser = argparse.ArgumentParser(
        description="Render nodes.json or graph.json from a JSON node snapshot",
    )
    parser.add_argument(
        "document",
        choices=DOCUMENTS,
        help="Document to render",
    )
    parser.add_argument(
        "snapshot",
        help="JSON file mapping node id to node record",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="JSON config file",
    )
    parser.add_argument(
        "--offline-time",
        type=int,
        default=None,
        help="Seconds after which a node counts as offline (default: 900)",
    )
    parser.add_argument(
        "-o",
        "--output",
        help="Output file (default: stdout)",
    )
    parser.add_argument(
        "--indent",
        type=int,
        default=None,
        help="Pretty-print with the given indent",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Verbose logging",
    )
    return parser.parse_args(args)


def load_snapshot(path: Path) -> dict[str, dict]:
    """Read a snapshot file; raises MeshMonError on unreadable or non-object content."""
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise MeshMonError(f"Cannot read snapshot {path}: {e}") from e
    if not isinstance(data, dict):
        raise MeshMonError(f"Snapshot {path} must contain a JSON object")
    return data


def main(args: list[str] | None = None) -> None:
    """Main entry point for render CLI."""
    parsed = parse_args(args)

    if not parsed.verbose:
        logger.remove()
        logger.add(sys.stderr, level="INFO")

    try:
        config = load_config(parsed.config, offline_time=parsed.offline_time)
        snapshot = load_snapshot(Path(parsed.snapshot))
    except MeshMonError as e:
        logger.error(str(e))
        sys.exit(1)

    if parsed.document == "nodes":
        document = StatusNormalizer(config.offline_time).render(snapshot).to_dict()
    else:
        document = GraphBuilder.from_config(config).render(snapshot).to_dict()

    output = json.dumps(document, indent=parsed.indent)
    if parsed.output:
        Path(parsed.output).write_text(output + "\n")
        logger.info(f"Output written to {parsed.output}")
    else:
        print(output)
