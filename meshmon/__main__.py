"""Orchestrator CLI: dispatches to sub-CLIs.

Sub-commands:
  serve      Run the aggregator and serve nodes.json / graph.json
  render     Render nodes.json or graph.json from a snapshot file
  reconcile  Fetch the registry and topology feeds once, print proposed updates

Examples:
  meshmon serve -c meshmon.json --port 4000

  meshmon render graph snapshot.json --indent 2

  meshmon reconcile --fetch-url https://example.org/all.json --topology-url http://127.0.0.1:9090
"""

from __future__ import annotations

import os
import sys

from tabulate import tabulate

from meshmon import __version__, configure_logging
from meshmon import glogger

COMMANDS = {
    "serve": ("meshmon.server", "Run the aggregator HTTP service"),
    "render": ("meshmon.render.cli", "Render a document from a snapshot file"),
    "reconcile": ("meshmon.ingest.cli", "Dry-run one reconcile cycle"),
}


def _print_usage() -> None:
    print("usage: meshmon <command> [options]\n")
    print("Available commands:")
    for cmd, (_, desc) in COMMANDS.items():
        print(f"  {cmd:14s}  {desc}")
    print("\nRun 'meshmon <command> --help' for command-specific options.")


def _startup_rows(argv: list[str]) -> list[list[str]]:
    command = argv[1] if len(argv) > 1 and argv[1] in COMMANDS else "-"
    rows = [
        ["meshmon", __version__],
        ["python", sys.version.split()[0]],
        ["command", command],
        ["log level", os.getenv("LOGURU_LEVEL", "DEBUG")],
    ]
    for var in ("GITHUB_REF", "GITHUB_SHA", "BUILDTIME"):
        val = os.environ.get(var)
        if val and not val.endswith("_is_undefined"):
            rows.append([var, val])
    return rows


def _print_startup_banner() -> None:
    table_str = tabulate(_startup_rows(sys.argv), tablefmt="mixed_grid")
    lines = table_str.split("\n")
    table_width = len(lines[0])
    title = "meshmon starting up"
    title_border = "┍" + "━" * (table_width - 2) + "┑"
    title_row = "│ " + title.center(table_width - 4) + " │"
    separator = lines[0].replace("┍", "┝").replace("┑", "┥").replace("┯", "┿")

    glogger.opt(raw=True).info(
        "\n{}\n", title_border + "\n" + title_row + "\n" + separator + "\n" + "\n".join(lines[1:])
    )


def main() -> None:
    """Main entry point: dispatch to sub-CLI."""
    configure_logging()
    _print_startup_banner()

    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help"):
        _print_usage()
        sys.exit(0 if len(sys.argv) >= 2 else 1)

    command = sys.argv[1]
    if command not in COMMANDS:
        print(f"meshmon: unknown command '{command}'\n", file=sys.stderr)
        _print_usage()
        sys.exit(1)

    module_path, _ = COMMANDS[command]

    from importlib import import_module

    module = import_module(module_path)
    module.main(sys.argv[2:])


if __name__ == "__main__":
    main()
