"""Listener matching and listener option building."""

from typing import Any, Dict, Iterable, Optional

from models import DesiredState, Listener, PortSpec


def match_listener(listeners: Iterable[Listener], port: PortSpec) -> Optional[Listener]:
    """
    Find the remote listener serving a desired port.

    Listeners are matched on (protocol, port). If the remote side holds
    duplicates the first one wins.
    """
    for listener in listeners:
        if listener.key == port.key:
            return listener
    return None


def listener_name(port: PortSpec, index: int) -> str:
    # index keeps names unique when TCP and UDP share a node port
    return f"listener_{port.node_port}_{index}"


def build_listener_options(
    load_balancer_id: str, port: PortSpec, index: int, desired: DesiredState
) -> Dict[str, Any]:
    """Request body for creating or updating the listener of a port."""
    return {
        "slbId": load_balancer_id,
        "listenerName": listener_name(port, index),
        "protocol": port.protocol.value,
        "port": port.port,
        "forwardRule": desired.forward_rule,
        "isHealthCheck": "1" if desired.health_check else "0",
    }


def listener_needs_update(listener: Listener, port: PortSpec, desired: DesiredState) -> bool:
    """Whether the remote listener's policy differs from the desired one."""
    return (
        listener.forward_rule != desired.forward_rule
        or listener.health_check != desired.health_check
        or listener.key != port.key
    )
