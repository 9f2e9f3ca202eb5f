"""
Core data model for exposure requests and remote load balancer entities.

Exposure requests and the values derived from them are immutable
dataclasses. Remote entities (load balancer, listener, backend membership)
are pydantic models that parse the control plane's camelCase JSON.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Node annotation carrying the cloud instance id used as backend server id
NODE_ANNOTATION_INSTANCE_ID = "node.beta.kubernetes.io/instance-id"


class Protocol(str, Enum):
    TCP = "TCP"
    UDP = "UDP"

    @classmethod
    def parse(cls, value: str) -> "Protocol":
        return cls(str(value).upper())


@dataclass(frozen=True)
class PortSpec:
    """One port of an exposure request."""

    protocol: Protocol
    port: int
    node_port: int
    name: str = ""

    @property
    def key(self) -> Tuple[str, int]:
        return (self.protocol.value, self.port)


@dataclass(frozen=True)
class EndpointCandidate:
    """A backend target (node or pod) that may receive traffic."""

    server_id: str
    address: str
    name: str = ""
    port: Optional[int] = None  # None means use the port spec's node port
    weight: int = 1


@dataclass(frozen=True)
class ExposureRequest:
    """Desired network exposure for one logical service."""

    namespace: str
    name: str
    ports: Tuple[PortSpec, ...] = ()
    annotations: Mapping[str, str] = field(default_factory=dict)
    endpoints: Tuple[EndpointCandidate, ...] = ()
    selector: Mapping[str, str] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any]) -> "ExposureRequest":
        """
        Build a request from a manifest dict.

        The manifest layout is the one validated by
        ``validation.validate_exposure_manifest``.
        """
        metadata = manifest.get("metadata", {})
        spec = manifest.get("spec", {})
        ports = tuple(
            PortSpec(
                protocol=Protocol.parse(p.get("protocol", "TCP")),
                port=int(p["port"]),
                node_port=int(p.get("nodePort", p["port"])),
                name=p.get("name", ""),
            )
            for p in spec.get("ports", [])
        )
        endpoints = tuple(
            EndpointCandidate(
                server_id=e.get("serverId")
                or (e.get("annotations") or {}).get(NODE_ANNOTATION_INSTANCE_ID)
                or e.get("name")
                or e["address"],
                address=e["address"],
                name=e.get("name", ""),
                port=e.get("port"),
                weight=int(e.get("weight", 1)),
            )
            for e in spec.get("endpoints", [])
        )
        return cls(
            namespace=metadata.get("namespace", "default"),
            name=metadata["name"],
            ports=ports,
            annotations=dict(metadata.get("annotations") or {}),
            endpoints=endpoints,
            selector=dict(spec.get("selector") or {}),
        )

    def to_manifest(self) -> Dict[str, Any]:
        """Render the request back to its manifest form."""
        return {
            "metadata": {
                "namespace": self.namespace,
                "name": self.name,
                "annotations": dict(self.annotations),
            },
            "spec": {
                "ports": [
                    {
                        "name": p.name,
                        "protocol": p.protocol.value,
                        "port": p.port,
                        "nodePort": p.node_port,
                    }
                    for p in self.ports
                ],
                "endpoints": [
                    {
                        "serverId": e.server_id,
                        "address": e.address,
                        "name": e.name,
                        "port": e.port,
                        "weight": e.weight,
                    }
                    for e in self.endpoints
                ],
                "selector": dict(self.selector),
            },
        }


@dataclass(frozen=True)
class DesiredState:
    """Intent derived from an exposure request and the configured defaults."""

    forward_rule: str
    health_check: bool
    ports: Tuple[PortSpec, ...]
    internal: bool = False


class ReconcilePhase(Enum):
    """Phases a reconciliation pass moves through."""

    RESOLVING_LOAD_BALANCER = "resolving_load_balancer"
    ENSURING_LISTENERS = "ensuring_listeners"
    SYNCING_BACKENDS = "syncing_backends"
    CONVERGED = "converged"
    ENUMERATING_LISTENERS = "enumerating_listeners"
    TEARING_DOWN_BACKENDS = "tearing_down_backends"
    DELETING_LISTENERS = "deleting_listeners"
    DELETED = "deleted"


@dataclass
class ReconcileResult:
    """Outcome of one ensure or delete pass."""

    phase: ReconcilePhase = ReconcilePhase.RESOLVING_LOAD_BALANCER
    ingress: List[str] = field(default_factory=list)
    listeners_created: int = 0
    listeners_updated: int = 0
    listeners_deleted: int = 0
    backends_added: int = 0
    backends_removed: int = 0

    @property
    def has_changes(self) -> bool:
        return any(
            (
                self.listeners_created,
                self.listeners_updated,
                self.listeners_deleted,
                self.backends_added,
                self.backends_removed,
            )
        )


# Remote entities


class RemoteModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class LoadBalancerRef(RemoteModel):
    """Resolved identity and addresses of the load balancer."""

    id: str = Field(validation_alias=AliasChoices("slbId", "id"))
    name: str = Field(default="", validation_alias=AliasChoices("slbName", "name"))
    business_ip: str = Field(
        default="", validation_alias=AliasChoices("businessIp", "business_ip")
    )
    eip_address: str = Field(
        default="", validation_alias=AliasChoices("eipAddress", "eip_address")
    )

    @field_validator("eip_address", "business_ip", mode="before")
    @classmethod
    def none_to_empty(cls, v: Optional[str]) -> str:
        return v or ""

    def ingress(self, internal: bool = False) -> List[str]:
        """Business IP always; elastic IP only when set and not internal."""
        addresses = [self.business_ip]
        if self.eip_address and not internal:
            addresses.append(self.eip_address)
        return addresses


class Listener(RemoteModel):
    """A listener binding one protocol/port on the load balancer."""

    id: str = Field(validation_alias=AliasChoices("listenerId", "id"))
    load_balancer_id: str = Field(
        default="", validation_alias=AliasChoices("slbId", "load_balancer_id")
    )
    name: str = Field(default="", validation_alias=AliasChoices("listenerName", "name"))
    protocol: str = "TCP"
    port: int
    forward_rule: str = Field(
        default="", validation_alias=AliasChoices("forwardRule", "forward_rule")
    )
    health_check: bool = Field(
        default=False, validation_alias=AliasChoices("isHealthCheck", "health_check")
    )

    @field_validator("protocol", mode="before")
    @classmethod
    def upper_protocol(cls, v: Any) -> str:
        return str(v or "TCP").upper()

    @field_validator("health_check", mode="before")
    @classmethod
    def parse_health_check(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in ("1", "true", "t", "on", "yes")
        return bool(v)

    @property
    def key(self) -> Tuple[str, int]:
        return (self.protocol, self.port)


class BackendMembership(RemoteModel):
    """A backend server registered under a listener."""

    id: str = Field(default="", validation_alias=AliasChoices("backendId", "id"))
    listener_id: str = Field(
        default="", validation_alias=AliasChoices("listenerId", "listener_id")
    )
    server_id: str = Field(
        validation_alias=AliasChoices("serverId", "ServerId", "server_id")
    )
    port: int
    server_name: str = Field(
        default="", validation_alias=AliasChoices("serverName", "server_name")
    )
    server_ip: str = Field(
        default="", validation_alias=AliasChoices("serverIp", "server_ip")
    )
    server_type: str = Field(
        default="ECS", validation_alias=AliasChoices("type", "server_type")
    )
    weight: int = 1

    def to_server(self) -> Dict[str, Any]:
        """Wire form used when registering the backend."""
        return {
            "serverId": self.server_id,
            "port": self.port,
            "serverName": self.server_name,
            "serverIp": self.server_ip,
            "type": self.server_type,
            "weight": self.weight,
        }
