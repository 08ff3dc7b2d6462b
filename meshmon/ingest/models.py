"""Pydantic models for the registry feed, the topology feed and ingest events."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from meshmon.datastore import SourceTag

TURNKEY_TYPE = "gluon"

# Data categories served by per-node query endpoints
QUERY_CATEGORIES = ("nodeinfo", "neighbours", "statistics")


class RegistryInterface(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int | str | None = None
    name: str = ""
    ip: str = ""
    netmask: str = ""
    online: bool | None = None
    type: Any = None
    respondd_path: str | None = Field(default=None, alias="responddPath")


class RegistryDevice(BaseModel):
    """A device managed in the registry; ``type`` is a string or ``{fw, version}``."""

    id: int | str
    name: str = ""
    type: str | dict[str, Any] | None = None
    mac: str | None = None
    interfaces: list[RegistryInterface] = Field(default_factory=list)

    @property
    def is_turnkey(self) -> bool:
        return self.type == TURNKEY_TYPE

    @property
    def firmware_base(self) -> Any:
        if isinstance(self.type, dict):
            return self.type.get("fw") or self.type
        return self.type

    @property
    def firmware_release(self) -> Any:
        if isinstance(self.type, dict):
            return self.type.get("version") or self.type
        return self.type


class LocationInfo(BaseModel):
    name: str = ""
    lat: Any = None
    long: Any = None


class Administrator(BaseModel):
    nick: str = ""


class RegistryLocation(BaseModel):
    location: LocationInfo = Field(default_factory=LocationInfo)
    administrator: Administrator = Field(default_factory=Administrator)
    nodes: list[RegistryDevice] = Field(default_factory=list)

    @property
    def is_unknown(self) -> bool:
        return self.location.name.startswith("unknown")


RegistryFeed = dict[str, RegistryLocation]
registry_adapter: TypeAdapter[RegistryFeed] = TypeAdapter(RegistryFeed)


class TopologyEdge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    last_hop_ip: str = Field(alias="lastHopIP")
    destination_ip: str = Field(alias="destinationIP")
    link_quality: float = Field(default=0.0, alias="linkQuality")
    neighbor_link_quality: float = Field(default=0.0, alias="neighborLinkQuality")

    @property
    def quality_product(self) -> float:
        return self.link_quality * self.neighbor_link_quality


class TopologyFeed(BaseModel):
    topology: list[TopologyEdge] = Field(default_factory=list)


class NativeDescriptor(BaseModel):
    """What the snapshot already knows about a device from its own protocol."""

    mac: str | None = None
    node_id: str | None = None
    has_neighbours: bool = False
    has_firmware: bool = False


class AdjacencyEntry(BaseModel):
    ip: str
    node: str
    node_ip: str
    ifname: str | None = None
    tq: float
    etx: float | None = None


class QueryEndpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    device_id: str
    url: str
    category: str


class NodeUpdate(BaseModel):
    node_id: str | None
    record: dict[str, Any]
    source: SourceTag = SourceTag.PRIMARY


class ReconcilePlan(BaseModel):
    """Everything one reconcile cycle proposes, applied in field order."""

    retirements: list[tuple[str, str | None]] = Field(default_factory=list)
    updates: list[NodeUpdate] = Field(default_factory=list)
    endpoints: list[QueryEndpoint] = Field(default_factory=list)
