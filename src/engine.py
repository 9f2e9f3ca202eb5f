"""
Reconciliation Engine - converge the remote load balancer to an exposure request.

Ensure/update pass:
    resolve load balancer -> extract intent -> for each port in order:
    match listener, create or update it, re-read it, sync its backends.

Delete pass:
    resolve load balancer -> list listeners -> for each port with a
    listener: remove its backends, then the listener.

Steps within one pass run strictly in sequence. A failure aborts the pass
and is raised unchanged; ports already converged stay converged, so the
next pass resumes at the failing port. The engine never retries.

An empty candidate set removes every backend from every listener, which
blackholes traffic when node discovery glitches. Setting
``IntentDefaults.allow_empty_backends`` to False fails such a pass with
NoAvailableBackends before any listener is touched.
"""

import logging
import time
from typing import List, Tuple

from backends import BackendSynchronizer
from config import IntentDefaults
from errors import (
    ListenerNotFound,
    LoadBalancerNotConfigured,
    LoadBalancerNotFound,
    NoAvailableBackends,
    NotFound,
)
from intent import extract_intent, is_internal
from listeners import build_listener_options, listener_needs_update, match_listener
from models import (
    DesiredState,
    ExposureRequest,
    Listener,
    LoadBalancerRef,
    PortSpec,
    ReconcilePhase,
    ReconcileResult,
)
from plugins.providers.base import LoadBalancerProvider
from plugins.resolvers.base import CandidateResolver

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """
    Converges listeners and backend memberships beneath one load balancer.

    The engine holds no per-request state, so passes for different
    exposure requests may run concurrently on the same instance.
    """

    def __init__(
        self,
        provider: LoadBalancerProvider,
        resolver: CandidateResolver,
        load_balancer_id: str,
        defaults: IntentDefaults = None,
    ):
        self.provider = provider
        self.resolver = resolver
        self.load_balancer_id = load_balancer_id
        self.defaults = defaults or IntentDefaults()
        self.backends = BackendSynchronizer(provider)

    async def _resolve_load_balancer(self) -> LoadBalancerRef:
        if not self.load_balancer_id:
            raise LoadBalancerNotConfigured()
        return await self.provider.get_load_balancer(self.load_balancer_id)

    async def get_status(self, request: ExposureRequest) -> Tuple[List[str], bool]:
        """
        Report the ingress addresses of the load balancer.

        Returns:
            Tuple of (addresses, exists). exists is False when no load
            balancer is configured for the cluster.
        """
        try:
            lb = await self._resolve_load_balancer()
        except LoadBalancerNotConfigured:
            logger.info(f"{request.key}: no load balancer configured")
            return [], False
        return lb.ingress(internal=is_internal(request, self.defaults)), True

    async def ensure(self, request: ExposureRequest) -> ReconcileResult:
        """
        Create or update listeners and backends for every requested port.

        Returns:
            ReconcileResult with the ingress addresses and change counts.

        Raises:
            LoadBalancerNotConfigured: If no load balancer id is configured.
            LoadBalancerNotFound: If the load balancer does not exist.
            NoPortsConfigured: If the request has no ports.
            NoAvailableBackends: If there are no candidates and empty
                listeners are not allowed.
            LoadBalancerError: Any remote failure, unchanged.
        """
        return await self._converge(request, "ensure")

    async def update(self, request: ExposureRequest) -> ReconcileResult:
        """Re-converge an existing exposure, e.g. after its endpoints changed."""
        return await self._converge(request, "update")

    async def _converge(self, request: ExposureRequest, operation: str) -> ReconcileResult:
        start_time = time.monotonic()
        result = ReconcileResult()
        try:
            result.phase = ReconcilePhase.RESOLVING_LOAD_BALANCER
            lb = await self._resolve_load_balancer()
            desired = extract_intent(request, self.defaults)
            candidates = await self.resolver.resolve(request)
            if not candidates:
                if not self.defaults.allow_empty_backends:
                    raise NoAvailableBackends(request.key)
                logger.warning(
                    f"{request.key}: no backend candidates, listeners will have "
                    f"no members"
                )
            logger.info(
                f"{operation} {request.key}: {len(desired.ports)} ports, "
                f"{len(candidates)} candidates, load balancer {lb.id}"
            )

            result.phase = ReconcilePhase.ENSURING_LISTENERS
            listeners = await self.provider.list_listeners(lb.id)

            for index, port in enumerate(desired.ports):
                result.phase = ReconcilePhase.ENSURING_LISTENERS
                listener = await self._ensure_listener(
                    lb, listeners, port, index, desired, result
                )

                result.phase = ReconcilePhase.SYNCING_BACKENDS
                listener = await self.provider.get_listener(lb.id, listener.id)
                diff = await self.backends.sync(lb.id, listener, port, candidates)
                result.backends_added += len(diff.to_add)
                result.backends_removed += len(diff.to_remove)

            result.phase = ReconcilePhase.CONVERGED
            result.ingress = lb.ingress(internal=desired.internal)
            return result
        finally:
            elapsed = time.monotonic() - start_time
            logger.info(
                f"{operation} {request.key} took {elapsed:.2f}s "
                f"(phase: {result.phase.value})"
            )

    async def _ensure_listener(
        self,
        lb: LoadBalancerRef,
        listeners: List[Listener],
        port: PortSpec,
        index: int,
        desired: DesiredState,
        result: ReconcileResult,
    ) -> Listener:
        options = build_listener_options(lb.id, port, index, desired)
        listener = match_listener(listeners, port)

        if listener is None:
            logger.info(
                f"Creating listener {options['listenerName']} for "
                f"{port.protocol.value}/{port.port}"
            )
            listener = await self.provider.create_listener(lb.id, options)
            # later ports with the same key must see this listener
            listeners.append(listener)
            result.listeners_created += 1
        elif listener_needs_update(listener, port, desired):
            logger.info(
                f"Updating listener {listener.id} for "
                f"{port.protocol.value}/{port.port}"
            )
            listener = await self.provider.update_listener(lb.id, listener.id, options)
            result.listeners_updated += 1
        else:
            logger.debug(f"Listener {listener.id} is up to date")
        return listener

    async def delete(self, request: ExposureRequest) -> ReconcileResult:
        """
        Remove the listeners and backends of every requested port.

        Backends under a listener are always removed before the listener.
        A missing load balancer or listener counts as already deleted.
        """
        start_time = time.monotonic()
        result = ReconcileResult()
        try:
            try:
                lb = await self._resolve_load_balancer()
            except (LoadBalancerNotConfigured, LoadBalancerNotFound) as e:
                logger.info(f"{request.key}: nothing to delete ({e})")
                result.phase = ReconcilePhase.DELETED
                return result

            result.phase = ReconcilePhase.ENUMERATING_LISTENERS
            listeners = await self.provider.list_listeners(lb.id)
            if not request.ports:
                logger.warning(f"{request.key}: no ports, nothing to delete")

            for port in request.ports:
                listener = match_listener(listeners, port)
                if listener is None:
                    continue
                await self._teardown_listener(lb, listener, result)
                listeners.remove(listener)

            result.phase = ReconcilePhase.DELETED
            return result
        finally:
            elapsed = time.monotonic() - start_time
            logger.info(
                f"delete {request.key} took {elapsed:.2f}s "
                f"(phase: {result.phase.value})"
            )

    async def _teardown_listener(
        self, lb: LoadBalancerRef, listener: Listener, result: ReconcileResult
    ) -> None:
        result.phase = ReconcilePhase.TEARING_DOWN_BACKENDS
        try:
            members = await self.provider.list_backends(lb.id, listener.id)
        except NotFound:
            logger.info(f"Listener {listener.id} already gone")
            return

        server_ids = list(dict.fromkeys(m.server_id for m in members))
        if server_ids:
            logger.info(f"Removing backends {server_ids} from listener {listener.id}")
            await self.provider.delete_backends(lb.id, listener.id, server_ids)
            result.backends_removed += len(server_ids)

        result.phase = ReconcilePhase.DELETING_LISTENERS
        logger.info(f"Deleting listener {listener.id} ({listener.protocol}/{listener.port})")
        try:
            await self.provider.delete_listener(lb.id, listener.id)
        except ListenerNotFound:
            logger.info(f"Listener {listener.id} already gone")
            return
        result.listeners_deleted += 1
