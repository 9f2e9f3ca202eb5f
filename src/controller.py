"""
Exposure Controller - Main reconciliation loop.

Keeps the latest desired exposure request per service and drives the
reconciliation engine until the remote load balancer matches it. Similar to
Kubernetes controllers: failures are requeued with exponential backoff and
converged exposures are periodically resynced to catch drift.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from config import ControllerConfig
from engine import ReconciliationEngine
from errors import LoadBalancerError
from events import EventBus, EventType, ExposureEvent
from models import ExposureRequest, ReconcileResult

logger = logging.getLogger(__name__)


class ExposureStatus(Enum):
    PENDING = "pending"
    RECONCILING = "reconciling"
    READY = "ready"
    FAILED = "failed"
    DELETING = "deleting"


def compute_backoff(
    retry_count: int,
    base_delay: float,
    max_delay: float,
    jitter_factor: float,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Delay before the next retry: exponential in retry_count, capped at
    max_delay, with ±jitter_factor of jitter.
    """
    delay = min(base_delay * 2 ** min(retry_count, 10), max_delay)
    return delay * (1 + (rand() * 2 - 1) * jitter_factor)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ExposureRecord:
    """Controller bookkeeping for one exposure."""

    request: ExposureRequest
    status: ExposureStatus = ExposureStatus.PENDING
    generation: int = 1
    observed_generation: int = 0
    message: str = ""
    ingress: List[str] = field(default_factory=list)
    retry_count: int = 0
    # Monotonic time of the next pass; None parks the exposure
    next_reconcile_at: Optional[float] = 0.0
    deletion_requested: bool = False
    last_reconcile_time: Optional[str] = None
    last_result: Optional[ReconcileResult] = None

    @property
    def key(self) -> str:
        return self.request.key

    def to_dict(self) -> Dict[str, Any]:
        result = self.last_result
        return {
            "namespace": self.request.namespace,
            "name": self.request.name,
            "status": self.status.value,
            "message": self.message,
            "generation": self.generation,
            "observed_generation": self.observed_generation,
            "ingress": list(self.ingress),
            "retry_count": self.retry_count,
            "last_reconcile_time": self.last_reconcile_time,
            "last_result": None
            if result is None
            else {
                "phase": result.phase.value,
                "listeners_created": result.listeners_created,
                "listeners_updated": result.listeners_updated,
                "listeners_deleted": result.listeners_deleted,
                "backends_added": result.backends_added,
                "backends_removed": result.backends_removed,
            },
            "manifest": self.request.to_manifest(),
        }


class Controller:
    """
    Main controller that implements the reconciliation loop.

    Passes for different exposures run concurrently, bounded by
    ``max_concurrent_reconciles``. An exposure never has two passes in
    flight; a request submitted during a pass is picked up right after it.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        config: Optional[ControllerConfig] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self.config = config or ControllerConfig()
        self.semaphore = asyncio.Semaphore(self.config.max_concurrent_reconciles)
        self.running = False
        self._event_bus = event_bus
        self._clock = clock
        self._records: Dict[str, ExposureRecord] = {}
        self._in_flight: Set[str] = set()
        self._wakeup = asyncio.Event()

    # Host-facing operations

    async def submit(self, request: ExposureRequest) -> ExposureRecord:
        """Record a new desired state for an exposure and schedule a pass."""
        record = self._records.get(request.key)
        if record is None:
            record = ExposureRecord(request=request)
            self._records[request.key] = record
            logger.info(f"Exposure {request.key} submitted")
        else:
            record.request = request
            record.generation += 1
            record.deletion_requested = False
            logger.info(
                f"Exposure {request.key} updated to generation {record.generation}"
            )

        record.status = ExposureStatus.PENDING
        record.message = "Waiting for reconciliation"
        record.retry_count = 0
        record.next_reconcile_at = 0.0
        await self._publish(EventType.SUBMITTED, record)
        self._wakeup.set()
        return record

    async def remove(self, key: str) -> Optional[ExposureRecord]:
        """Mark an exposure for deletion. Returns None for unknown keys."""
        record = self._records.get(key)
        if record is None:
            return None

        logger.info(f"Exposure {key} marked for deletion")
        record.deletion_requested = True
        record.status = ExposureStatus.DELETING
        record.message = "Deleting load balancer configuration"
        record.retry_count = 0
        record.next_reconcile_at = 0.0
        await self._publish(EventType.DELETING, record)
        self._wakeup.set()
        return record

    def trigger(self, key: str) -> bool:
        """Force a pass for an exposure as soon as possible."""
        record = self._records.get(key)
        if record is None:
            return False
        logger.info(f"Manually triggering reconciliation for {key}")
        record.next_reconcile_at = 0.0
        self._wakeup.set()
        return True

    def get(self, key: str) -> Optional[ExposureRecord]:
        return self._records.get(key)

    def list_records(self) -> List[ExposureRecord]:
        return [self._records[key] for key in sorted(self._records)]

    async def load_balancer_status(self, key: str) -> Optional[Tuple[List[str], bool]]:
        """
        Read the live ingress addresses for an exposure from the provider.

        Returns:
            Tuple of (addresses, exists), or None for unknown keys.

        Raises:
            LoadBalancerError: If the provider call fails.
        """
        record = self._records.get(key)
        if record is None:
            return None
        return await self.engine.get_status(record.request)

    # Loop

    async def start(self):
        """Run the reconciliation loop until stop() is called."""
        logger.info("Starting Exposure Controller")
        self.running = True
        while self.running:
            try:
                await self.reconcile_due()
            except Exception as e:
                logger.error(f"Error in reconciliation loop: {e}", exc_info=True)

            self._wakeup.clear()
            try:
                await asyncio.wait_for(
                    self._wakeup.wait(), timeout=self._sleep_interval()
                )
            except asyncio.TimeoutError:
                pass

    async def stop(self):
        logger.info("Stopping Exposure Controller")
        self.running = False
        self._wakeup.set()

    def _sleep_interval(self) -> float:
        now = self._clock()
        upcoming = [
            r.next_reconcile_at - now
            for r in self._records.values()
            if r.next_reconcile_at is not None
        ]
        interval = float(self.config.reconcile_interval)
        if upcoming:
            interval = min(interval, max(min(upcoming), 0.0))
        return interval

    def _due_keys(self) -> List[str]:
        now = self._clock()
        due = [
            key
            for key, record in self._records.items()
            if record.next_reconcile_at is not None
            and record.next_reconcile_at <= now
            and key not in self._in_flight
        ]
        return due[: self.config.max_concurrent_reconciles * 2]

    async def reconcile_due(self) -> int:
        """Run one pass for every exposure that is due. Returns the count."""
        keys = self._due_keys()
        if keys:
            logger.info(f"Found {len(keys)} exposures needing reconciliation")
            await asyncio.gather(
                *(self.reconcile(key) for key in keys), return_exceptions=True
            )
        return len(keys)

    async def reconcile(self, key: str) -> None:
        """Run a single pass for one exposure."""
        async with self.semaphore:
            record = self._records.get(key)
            if record is None or key in self._in_flight:
                return
            self._in_flight.add(key)
            try:
                if record.deletion_requested:
                    await self._delete(record)
                else:
                    await self._ensure(record)
            finally:
                self._in_flight.discard(key)

    async def _ensure(self, record: ExposureRecord) -> None:
        generation = record.generation
        scheduled = (
            record.status == ExposureStatus.READY
            and record.observed_generation == generation
        )
        record.status = ExposureStatus.RECONCILING
        record.message = "Reconciling"

        try:
            if record.observed_generation == 0:
                result = await self.engine.ensure(record.request)
            else:
                result = await self.engine.update(record.request)
        except LoadBalancerError as e:
            await self._handle_failure(
                record, generation, e, e.retryable, deleting=False
            )
            return
        except Exception as e:
            logger.error(f"Error reconciling {record.key}: {e}", exc_info=True)
            await self._handle_failure(record, generation, e, True, deleting=False)
            return

        record.last_result = result
        record.last_reconcile_time = _now()
        record.ingress = list(result.ingress)

        if scheduled and result.has_changes:
            logger.info(f"Drift detected for {record.key}: changes found during resync")

        if record.deletion_requested or record.generation != generation:
            # Changed while the pass ran; go again
            record.next_reconcile_at = 0.0
            return

        record.status = ExposureStatus.READY
        record.observed_generation = generation
        record.message = "Load balancer reconciled"
        record.retry_count = 0
        record.next_reconcile_at = self._clock() + self.config.resync_interval
        logger.info(f"Successfully reconciled {record.key}: ingress {record.ingress}")
        await self._publish(EventType.RECONCILED, record)

    async def _delete(self, record: ExposureRecord) -> None:
        generation = record.generation
        try:
            result = await self.engine.delete(record.request)
        except LoadBalancerError as e:
            await self._handle_failure(
                record, generation, e, e.retryable, deleting=True
            )
            return
        except Exception as e:
            logger.error(f"Error deleting {record.key}: {e}", exc_info=True)
            await self._handle_failure(record, generation, e, True, deleting=True)
            return

        record.last_result = result
        record.last_reconcile_time = _now()
        if not record.deletion_requested or record.generation != generation:
            # Resubmitted while tearing down
            record.next_reconcile_at = 0.0
            return

        if self._records.get(record.key) is record:
            del self._records[record.key]
        record.ingress = []
        record.message = "Deleted"
        logger.info(f"Deleted exposure {record.key}")
        await self._publish(EventType.DELETED, record)

    async def _handle_failure(
        self,
        record: ExposureRecord,
        generation: int,
        error: Exception,
        retryable: bool,
        deleting: bool,
    ) -> None:
        record.message = str(error)
        record.last_reconcile_time = _now()

        if record.generation != generation or (
            record.deletion_requested and not deleting
        ):
            # Changed or removed while the pass ran; go again
            record.next_reconcile_at = 0.0
            return

        if not record.deletion_requested:
            record.status = ExposureStatus.FAILED

        if retryable:
            delay = compute_backoff(
                record.retry_count,
                self.config.backoff_base_delay,
                self.config.backoff_max_delay,
                self.config.backoff_jitter_factor,
            )
            record.retry_count += 1
            record.next_reconcile_at = self._clock() + delay
            logger.error(
                f"Failed to reconcile {record.key}: {error} "
                f"(retry {record.retry_count} in {delay:.1f}s)"
            )
        else:
            record.next_reconcile_at = None
            logger.error(
                f"Failed to reconcile {record.key}: {error} "
                f"(not retryable, waiting for a new request)"
            )
        await self._publish(EventType.FAILED, record)

    async def _publish(self, event_type: EventType, record: ExposureRecord) -> None:
        if self._event_bus is None:
            return
        event = ExposureEvent(
            event_type=event_type,
            namespace=record.request.namespace,
            name=record.request.name,
            status=record.status.value,
            message=record.message,
            data=record.to_dict(),
        )
        await self._event_bus.publish(event)
