"""Mesh network telemetry aggregator.

Collects node inventory, routing adjacency and statistics from several
independently polled sources, reconciles them into one record per device and
renders ``nodes.json`` / ``graph.json`` documents for map front-ends.
"""

__version__ = "0.1.0"

import os
import sys
from typing import Any, Callable, Dict

from loguru import logger as glogger

glogger.disable(__name__)


def _loguru_skiplog_filter(record: dict) -> bool:  # type: ignore[type-arg]
    """Filter function to hide records with ``extra['skiplog']`` set."""
    return not record.get("extra", {}).get("skiplog", False)


def configure_logging(
    loguru_filter: Callable[[Dict[str, Any]], bool] = _loguru_skiplog_filter,
) -> None:
    """Configure a default ``loguru`` sink with a convenient format and filter."""
    os.environ["LOGURU_LEVEL"] = os.getenv("LOGURU_LEVEL", "DEBUG")
    glogger.remove()
    logger_fmt: str = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{module}</cyan>::<cyan>{extra[classname]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )
    glogger.add(sys.stderr, level=os.getenv("LOGURU_LEVEL"), format=logger_fmt, filter=loguru_filter)  # type: ignore[arg-type]
    glogger.configure(extra={"classname": "None", "skiplog": False})
    glogger.enable(__name__)


from meshmon.config import AggregatorConfig, load_config  # noqa: E402
from meshmon.datastore import MemoryNodeStore, NodeStore, SourceTag  # noqa: E402
from meshmon.exceptions import ConfigError, FeedError, MeshMonError, PayloadError  # noqa: E402

__all__ = [
    "glogger",
    "configure_logging",
    "AggregatorConfig",
    "load_config",
    "MemoryNodeStore",
    "NodeStore",
    "SourceTag",
    "MeshMonError",
    "FeedError",
    "PayloadError",
    "ConfigError",
]
