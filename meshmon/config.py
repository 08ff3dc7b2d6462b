"""Aggregator configuration model and loader."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from meshmon.exceptions import ConfigError

DEFAULT_FETCH_URL = "https://ffgraz-ygg.mkg20001.io/ol/all.json"
DEFAULT_TOPOLOGY_URL = "http://127.0.0.1:9090"


class AggregatorConfig(BaseModel):
    """Runtime options recognized by the aggregator.

    Intervals and thresholds are in seconds.
    """

    offline_time: int = Field(default=900, gt=0)
    fetch_url: str = DEFAULT_FETCH_URL
    topology_url: str = DEFAULT_TOPOLOGY_URL
    fetch_interval: float = Field(default=60.0, gt=0)
    query_interval: float = Field(default=60.002, gt=0)
    request_timeout: float = Field(default=10.0, gt=0)
    verify_tls: bool = False
    host: str = "127.0.0.1"
    port: int = Field(default=4000, ge=0, le=65535)
    external_id_prefix: str = "manman"
    vpn_prefixes: list[str] = Field(default_factory=lambda: ["10.12.11."])
    vpn_addresses: list[str] = Field(default_factory=lambda: ["2001:470:508d::12"])

    def is_vpn_address(self, ip: str | None) -> bool:
        """True if *ip* lies in the designated VPN address range."""
        if not ip:
            return False
        return ip in self.vpn_addresses or any(ip.startswith(p) for p in self.vpn_prefixes)


def load_config(path: str | Path | None = None, **overrides: Any) -> AggregatorConfig:
    """Load configuration from an optional JSON file, then apply overrides.

    Overrides whose value is ``None`` are ignored so that unset CLI flags do
    not clobber values from the file.

    Raises:
        ConfigError: If the file cannot be read or a value is invalid.
    """
    data: dict[str, Any] = {}
    if path is not None:
        try:
            data = json.loads(Path(path).read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")
        logger.debug(f"Loaded config from {path}: {sorted(data)}")

    data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return AggregatorConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
