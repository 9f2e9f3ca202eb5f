"""Pytest configuration and fixtures."""

import itertools
from typing import Any, Dict, List, Sequence

import pytest

from config import IntentDefaults
from errors import ListenerNotFound, LoadBalancerNotFound
from models import (
    BackendMembership,
    EndpointCandidate,
    ExposureRequest,
    Listener,
    LoadBalancerRef,
    PortSpec,
    Protocol,
)
from plugins.providers.base import LoadBalancerProvider
from plugins.resolvers.request import RequestCandidateResolver


class FakeProvider(LoadBalancerProvider):
    """
    In-memory load balancer that records every call.

    ``fail`` maps a method name to an exception raised on its next call.
    """

    def __init__(self, load_balancer: LoadBalancerRef = None):
        self.load_balancer = load_balancer or LoadBalancerRef(
            id="slb-1", business_ip="10.0.0.10", eip_address="1.2.3.4"
        )
        self.listeners: Dict[str, Listener] = {}
        self.backends: Dict[str, List[BackendMembership]] = {}
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self._ids = itertools.count(1)
        self.config: Dict[str, Any] = {}
        self.closed = False

    @property
    def name(self) -> str:
        return "fake"

    @property
    def version(self) -> str:
        return "0.0.1"

    async def initialize(self, config: Dict[str, Any]) -> None:
        self.config = config

    async def close(self) -> None:
        self.closed = True

    def _record(self, method: str, *args):
        self.calls.append((method,) + args)
        if method in self.fail:
            raise self.fail.pop(method)

    def mutations(self) -> List[tuple]:
        return [c for c in self.calls if not c[0].startswith(("get_", "list_"))]

    def add_listener(self, protocol: str, port: int, **kwargs) -> Listener:
        listener_id = kwargs.pop("id", f"lsn-{next(self._ids)}")
        listener = Listener(
            id=listener_id,
            load_balancer_id=self.load_balancer.id,
            protocol=protocol,
            port=port,
            **kwargs,
        )
        self.listeners[listener_id] = listener
        self.backends.setdefault(listener_id, [])
        return listener

    async def get_load_balancer(self, load_balancer_id: str) -> LoadBalancerRef:
        self._record("get_load_balancer", load_balancer_id)
        if load_balancer_id != self.load_balancer.id:
            raise LoadBalancerNotFound(load_balancer_id)
        return self.load_balancer

    async def list_listeners(self, load_balancer_id: str) -> List[Listener]:
        self._record("list_listeners", load_balancer_id)
        return list(self.listeners.values())

    async def get_listener(self, load_balancer_id: str, listener_id: str) -> Listener:
        self._record("get_listener", load_balancer_id, listener_id)
        if listener_id not in self.listeners:
            raise ListenerNotFound(listener_id)
        return self.listeners[listener_id]

    async def create_listener(
        self, load_balancer_id: str, options: Dict[str, Any]
    ) -> Listener:
        self._record("create_listener", load_balancer_id, dict(options))
        listener_id = f"lsn-{next(self._ids)}"
        listener = Listener.model_validate({**options, "listenerId": listener_id})
        self.listeners[listener_id] = listener
        self.backends[listener_id] = []
        return listener

    async def update_listener(
        self, load_balancer_id: str, listener_id: str, options: Dict[str, Any]
    ) -> Listener:
        self._record("update_listener", load_balancer_id, listener_id, dict(options))
        if listener_id not in self.listeners:
            raise ListenerNotFound(listener_id)
        listener = Listener.model_validate({**options, "listenerId": listener_id})
        self.listeners[listener_id] = listener
        return listener

    async def delete_listener(self, load_balancer_id: str, listener_id: str) -> None:
        self._record("delete_listener", load_balancer_id, listener_id)
        if listener_id not in self.listeners:
            raise ListenerNotFound(listener_id)
        del self.listeners[listener_id]
        self.backends.pop(listener_id, None)

    async def list_backends(
        self, load_balancer_id: str, listener_id: str
    ) -> List[BackendMembership]:
        self._record("list_backends", load_balancer_id, listener_id)
        return list(self.backends.get(listener_id, []))

    async def create_backends(
        self,
        load_balancer_id: str,
        listener_id: str,
        members: Sequence[BackendMembership],
    ) -> None:
        self._record(
            "create_backends", load_balancer_id, listener_id, [m.server_id for m in members]
        )
        self.backends.setdefault(listener_id, []).extend(members)

    async def delete_backends(
        self, load_balancer_id: str, listener_id: str, server_ids: Sequence[str]
    ) -> None:
        self._record("delete_backends", load_balancer_id, listener_id, list(server_ids))
        self.backends[listener_id] = [
            m for m in self.backends.get(listener_id, []) if m.server_id not in server_ids
        ]


@pytest.fixture
def fake_provider():
    """A recording in-memory provider."""
    return FakeProvider()


@pytest.fixture
def request_resolver():
    return RequestCandidateResolver()


@pytest.fixture
def defaults():
    return IntentDefaults()


@pytest.fixture
def sample_candidates():
    """Two worker nodes."""
    return (
        EndpointCandidate(server_id="i-node-a", address="192.168.0.11", name="node-a"),
        EndpointCandidate(server_id="i-node-b", address="192.168.0.12", name="node-b"),
    )


@pytest.fixture
def sample_request(sample_candidates):
    """Exposure with TCP/80 -> 30080 and TCP/443 -> 30443."""
    return ExposureRequest(
        namespace="default",
        name="web",
        ports=(
            PortSpec(Protocol.TCP, 80, 30080, "http"),
            PortSpec(Protocol.TCP, 443, 30443, "https"),
        ),
        annotations={},
        endpoints=sample_candidates,
        selector={"app": "web"},
    )


@pytest.fixture
def sample_manifest():
    """Manifest form of an exposure."""
    return {
        "metadata": {
            "name": "web",
            "namespace": "default",
            "annotations": {"loadbalancer.inspur.com/forward-rule": "WRR"},
        },
        "spec": {
            "ports": [
                {"name": "http", "protocol": "TCP", "port": 80, "nodePort": 30080},
            ],
            "endpoints": [
                {"serverId": "i-node-a", "address": "192.168.0.11", "name": "node-a"},
            ],
            "selector": {"app": "web"},
        },
    }
