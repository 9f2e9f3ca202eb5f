"""Tests for the reconciliation engine against a recording fake provider."""

import asyncio
import dataclasses

import pytest

from config import IntentDefaults
from engine import ReconciliationEngine
from errors import (
    LoadBalancerNotConfigured,
    LoadBalancerNotFound,
    NoAvailableBackends,
    NoPortsConfigured,
    PartialSyncFailure,
    RemoteTransientError,
)
from intent import ANNOTATION_FORWARD_RULE, ANNOTATION_HEALTH_CHECK, ANNOTATION_INTERNAL
from models import (
    BackendMembership,
    EndpointCandidate,
    LoadBalancerRef,
    PortSpec,
    Protocol,
    ReconcilePhase,
)


@pytest.fixture
def engine(fake_provider, request_resolver, defaults):
    return ReconciliationEngine(fake_provider, request_resolver, "slb-1", defaults)


def server_ids(provider, listener_id):
    return {m.server_id for m in provider.backends[listener_id]}


@pytest.mark.asyncio
class TestEnsure:
    """Tests for the ensure pass."""

    async def test_creates_listeners_for_every_port(self, engine, fake_provider, sample_request):
        fake_provider.load_balancer = LoadBalancerRef(id="slb-1", business_ip="10.0.0.10")

        result = await engine.ensure(sample_request)

        creates = [c for c in fake_provider.calls if c[0] == "create_listener"]
        assert len(creates) == 2
        assert creates[0][2] == {
            "slbId": "slb-1",
            "listenerName": "listener_30080_0",
            "protocol": "TCP",
            "port": 80,
            "forwardRule": "RR",
            "isHealthCheck": "0",
        }
        assert creates[1][2]["listenerName"] == "listener_30443_1"
        assert creates[1][2]["port"] == 443

        syncs = [c for c in fake_provider.calls if c[0] == "create_backends"]
        assert len(syncs) == 2
        assert result.ingress == ["10.0.0.10"]
        assert result.phase == ReconcilePhase.CONVERGED
        assert result.listeners_created == 2
        assert result.backends_added == 4

    async def test_ingress_includes_elastic_ip(self, engine, sample_request):
        result = await engine.ensure(sample_request)
        assert result.ingress == ["10.0.0.10", "1.2.3.4"]

    async def test_internal_annotation_hides_elastic_ip(self, engine, sample_request):
        request = dataclasses.replace(
            sample_request, annotations={ANNOTATION_INTERNAL: "true"}
        )
        result = await engine.ensure(request)
        assert result.ingress == ["10.0.0.10"]

    async def test_second_pass_makes_no_mutations(self, engine, fake_provider, sample_request):
        await engine.ensure(sample_request)
        fake_provider.calls.clear()

        result = await engine.ensure(sample_request)

        assert fake_provider.mutations() == []
        assert not result.has_changes

    async def test_backend_set_equals_candidates(self, engine, fake_provider, sample_request):
        await engine.ensure(sample_request)

        for listener_id in fake_provider.listeners:
            assert server_ids(fake_provider, listener_id) == {"i-node-a", "i-node-b"}

    async def test_backends_target_node_port(self, engine, fake_provider, sample_request):
        await engine.ensure(sample_request)

        by_port = {l.port: l.id for l in fake_provider.listeners.values()}
        assert {m.port for m in fake_provider.backends[by_port[80]]} == {30080}
        assert {m.port for m in fake_provider.backends[by_port[443]]} == {30443}

    async def test_existing_listener_is_reused(self, engine, fake_provider, sample_request):
        existing = fake_provider.add_listener("TCP", 80, forward_rule="RR")

        result = await engine.ensure(sample_request)

        creates = [c for c in fake_provider.calls if c[0] == "create_listener"]
        assert len(creates) == 1
        assert creates[0][2]["port"] == 443
        assert server_ids(fake_provider, existing.id) == {"i-node-a", "i-node-b"}
        assert result.listeners_updated == 0

    async def test_policy_change_updates_listener(self, engine, fake_provider, sample_request):
        existing = fake_provider.add_listener("TCP", 80, forward_rule="RR")
        request = dataclasses.replace(
            sample_request,
            ports=sample_request.ports[:1],
            annotations={ANNOTATION_FORWARD_RULE: "WRR", ANNOTATION_HEALTH_CHECK: "1"},
        )

        result = await engine.ensure(request)

        updates = [c for c in fake_provider.calls if c[0] == "update_listener"]
        assert len(updates) == 1
        assert updates[0][2] == existing.id
        assert updates[0][3]["forwardRule"] == "WRR"
        assert updates[0][3]["isHealthCheck"] == "1"
        assert result.listeners_updated == 1
        assert fake_provider.listeners[existing.id].health_check is True

    async def test_udp_and_tcp_on_same_port_get_separate_listeners(
        self, engine, fake_provider, sample_request
    ):
        request = dataclasses.replace(
            sample_request,
            ports=(
                PortSpec(Protocol.TCP, 53, 30053),
                PortSpec(Protocol.UDP, 53, 30053),
            ),
        )

        await engine.ensure(request)

        names = sorted(l.name for l in fake_provider.listeners.values())
        assert names == ["listener_30053_0", "listener_30053_1"]
        assert {l.key for l in fake_provider.listeners.values()} == {
            ("TCP", 53),
            ("UDP", 53),
        }

    async def test_listeners_for_removed_ports_are_kept(
        self, engine, fake_provider, sample_request
    ):
        await engine.ensure(sample_request)
        request = dataclasses.replace(sample_request, ports=sample_request.ports[:1])
        fake_provider.calls.clear()

        await engine.ensure(request)

        assert len(fake_provider.listeners) == 2
        assert not [c for c in fake_provider.calls if c[0] == "delete_listener"]

    async def test_endpoint_change_converges_membership(
        self, engine, fake_provider, sample_request
    ):
        await engine.ensure(sample_request)
        new_candidates = (
            sample_request.endpoints[1],
            EndpointCandidate(server_id="i-node-c", address="192.168.0.13", name="node-c"),
        )
        request = dataclasses.replace(sample_request, endpoints=new_candidates)
        fake_provider.calls.clear()

        result = await engine.update(request)

        for listener_id in fake_provider.listeners:
            assert server_ids(fake_provider, listener_id) == {"i-node-b", "i-node-c"}
        assert result.backends_added == 2
        assert result.backends_removed == 2
        for listener_id in fake_provider.listeners:
            names = [
                c[0]
                for c in fake_provider.calls
                if c[0] in ("delete_backends", "create_backends") and c[2] == listener_id
            ]
            assert names == ["delete_backends", "create_backends"]

    async def test_extraneous_backends_are_removed(
        self, engine, fake_provider, sample_request
    ):
        listener = fake_provider.add_listener("TCP", 80, forward_rule="RR")
        fake_provider.backends[listener.id] = [
            BackendMembership(server_id="i-stale", port=30080),
            BackendMembership(server_id="i-node-a", port=30080),
        ]
        request = dataclasses.replace(sample_request, ports=sample_request.ports[:1])

        await engine.ensure(request)

        assert server_ids(fake_provider, listener.id) == {"i-node-a", "i-node-b"}
        assert ("delete_backends", "slb-1", listener.id, ["i-stale"]) in fake_provider.calls
        assert ("create_backends", "slb-1", listener.id, ["i-node-b"]) in fake_provider.calls

    async def test_no_candidates_empties_listeners(
        self, engine, fake_provider, sample_request
    ):
        await engine.ensure(sample_request)
        request = dataclasses.replace(sample_request, endpoints=())

        await engine.ensure(request)

        for listener_id in fake_provider.listeners:
            assert server_ids(fake_provider, listener_id) == set()

    async def test_no_candidates_fails_when_empty_not_allowed(
        self, fake_provider, request_resolver, sample_request
    ):
        engine = ReconciliationEngine(
            fake_provider,
            request_resolver,
            "slb-1",
            IntentDefaults(allow_empty_backends=False),
        )
        await engine.ensure(sample_request)
        before = len(fake_provider.mutations())
        request = dataclasses.replace(sample_request, endpoints=())

        with pytest.raises(NoAvailableBackends) as exc_info:
            await engine.ensure(request)

        assert exc_info.value.retryable is True
        assert "default/web" in str(exc_info.value)
        assert len(fake_provider.mutations()) == before
        for listener_id in fake_provider.listeners:
            assert server_ids(fake_provider, listener_id) == {"i-node-a", "i-node-b"}

    async def test_no_ports_is_fatal(self, engine, fake_provider, sample_request):
        request = dataclasses.replace(sample_request, ports=())

        with pytest.raises(NoPortsConfigured) as exc_info:
            await engine.ensure(request)

        assert exc_info.value.retryable is False
        assert fake_provider.mutations() == []

    async def test_missing_load_balancer_aborts(self, fake_provider, request_resolver, sample_request):
        engine = ReconciliationEngine(fake_provider, request_resolver, "slb-missing")

        with pytest.raises(LoadBalancerNotFound):
            await engine.ensure(sample_request)

        assert fake_provider.mutations() == []

    async def test_unconfigured_load_balancer_is_fatal(
        self, fake_provider, request_resolver, sample_request
    ):
        engine = ReconciliationEngine(fake_provider, request_resolver, "")

        with pytest.raises(LoadBalancerNotConfigured):
            await engine.ensure(sample_request)

        assert fake_provider.calls == []

    async def test_create_failure_keeps_converged_ports(
        self, engine, fake_provider, sample_request
    ):
        await engine.ensure(
            dataclasses.replace(sample_request, ports=sample_request.ports[:1])
        )
        fake_provider.fail["create_listener"] = RemoteTransientError("boom", status=503)

        with pytest.raises(RemoteTransientError):
            await engine.ensure(sample_request)

        assert len(fake_provider.listeners) == 1
        (listener,) = fake_provider.listeners.values()
        assert listener.port == 80
        assert server_ids(fake_provider, listener.id) == {"i-node-a", "i-node-b"}

        # Next pass resumes at the failing port only
        fake_provider.calls.clear()
        await engine.ensure(sample_request)
        creates = [c for c in fake_provider.calls if c[0] == "create_listener"]
        assert [c[2]["port"] for c in creates] == [443]

    async def test_backend_failure_raises_partial_sync(
        self, engine, fake_provider, sample_request
    ):
        fake_provider.fail["create_backends"] = RemoteTransientError("boom", status=500)

        with pytest.raises(PartialSyncFailure) as exc_info:
            await engine.ensure(sample_request)

        error = exc_info.value
        assert error.failed_additions == ["i-node-a", "i-node-b"]
        assert error.failed_removals == []
        assert error.retryable is True
        # Aborted before the second port
        assert len(fake_provider.listeners) == 1


@pytest.mark.asyncio
class TestDelete:
    """Tests for the delete pass."""

    async def test_removes_backends_before_listener(
        self, engine, fake_provider, sample_request
    ):
        await engine.ensure(sample_request)
        listener_ids = list(fake_provider.listeners)
        fake_provider.calls.clear()

        result = await engine.delete(sample_request)

        assert fake_provider.listeners == {}
        assert result.phase == ReconcilePhase.DELETED
        assert result.listeners_deleted == 2
        assert result.backends_removed == 4
        for listener_id in listener_ids:
            names = [
                c[0]
                for c in fake_provider.calls
                if c[0] in ("delete_backends", "delete_listener") and c[2] == listener_id
            ]
            assert names == ["delete_backends", "delete_listener"]

    async def test_listener_without_backends_skips_backend_delete(
        self, engine, fake_provider, sample_request
    ):
        fake_provider.add_listener("TCP", 80)

        await engine.delete(sample_request)

        assert not [c for c in fake_provider.calls if c[0] == "delete_backends"]
        assert [c[0] for c in fake_provider.mutations()] == ["delete_listener"]

    async def test_unconfigured_load_balancer_is_success(
        self, fake_provider, request_resolver, sample_request
    ):
        engine = ReconciliationEngine(fake_provider, request_resolver, "")

        result = await engine.delete(sample_request)

        assert result.phase == ReconcilePhase.DELETED
        assert fake_provider.calls == []

    async def test_missing_load_balancer_is_success(
        self, fake_provider, request_resolver, sample_request
    ):
        engine = ReconciliationEngine(fake_provider, request_resolver, "slb-gone")

        result = await engine.delete(sample_request)

        assert result.phase == ReconcilePhase.DELETED
        assert [c[0] for c in fake_provider.calls] == ["get_load_balancer"]

    async def test_only_requested_ports_are_deleted(
        self, engine, fake_provider, sample_request
    ):
        await engine.ensure(sample_request)
        other = fake_provider.add_listener("TCP", 8080)

        await engine.delete(sample_request)

        assert list(fake_provider.listeners) == [other.id]

    async def test_failure_aborts_and_retry_resumes(
        self, engine, fake_provider, sample_request
    ):
        await engine.ensure(sample_request)
        fake_provider.fail["delete_listener"] = RemoteTransientError("boom")

        with pytest.raises(RemoteTransientError):
            await engine.delete(sample_request)
        assert len(fake_provider.listeners) == 2

        result = await engine.delete(sample_request)

        assert fake_provider.listeners == {}
        assert result.listeners_deleted == 2

    async def test_second_delete_is_noop(self, engine, fake_provider, sample_request):
        await engine.ensure(sample_request)
        await engine.delete(sample_request)
        fake_provider.calls.clear()

        result = await engine.delete(sample_request)

        assert fake_provider.mutations() == []
        assert result.phase == ReconcilePhase.DELETED


@pytest.mark.asyncio
class TestGetStatus:
    """Tests for status queries."""

    async def test_reports_ingress(self, engine, sample_request):
        addresses, exists = await engine.get_status(sample_request)
        assert exists is True
        assert addresses == ["10.0.0.10", "1.2.3.4"]

    async def test_not_configured(self, fake_provider, request_resolver, sample_request):
        engine = ReconciliationEngine(fake_provider, request_resolver, "")

        addresses, exists = await engine.get_status(sample_request)

        assert exists is False
        assert addresses == []


@pytest.mark.asyncio
class TestCancellation:
    """Tests for passes cancelled mid-flight."""

    async def test_cancel_during_backend_sync_propagates(
        self, engine, fake_provider, sample_request
    ):
        started = asyncio.Event()

        async def blocking_create_backends(load_balancer_id, listener_id, members):
            started.set()
            await asyncio.Event().wait()

        fake_provider.create_backends = blocking_create_backends

        task = asyncio.create_task(engine.ensure(sample_request))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    async def test_cancel_during_listener_create_propagates(
        self, engine, fake_provider, sample_request
    ):
        started = asyncio.Event()

        async def blocking_create_listener(load_balancer_id, options):
            started.set()
            await asyncio.Event().wait()

        fake_provider.create_listener = blocking_create_listener

        task = asyncio.create_task(engine.ensure(sample_request))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert fake_provider.listeners == {}
