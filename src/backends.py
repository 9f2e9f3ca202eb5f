"""
Backend Synchronizer - converge a listener's backend membership.

The desired membership is derived from the endpoint candidates; the
current membership is read from the control plane. Members are keyed by
server id. A member whose target port or weight drifted is removed and
re-added.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

from errors import PartialSyncFailure
from models import BackendMembership, EndpointCandidate, Listener, PortSpec

logger = logging.getLogger(__name__)


@dataclass
class BackendDiff:
    """Members to register and server ids to deregister."""

    to_add: List[BackendMembership] = field(default_factory=list)
    to_remove: List[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.to_add and not self.to_remove


def desired_members(
    listener: Listener, port: PortSpec, candidates: Iterable[EndpointCandidate]
) -> Dict[str, BackendMembership]:
    """Translate endpoint candidates into backend members keyed by server id."""
    members: Dict[str, BackendMembership] = {}
    for candidate in candidates:
        if candidate.server_id in members:
            continue
        members[candidate.server_id] = BackendMembership(
            listener_id=listener.id,
            server_id=candidate.server_id,
            port=candidate.port or port.node_port,
            server_name=candidate.name,
            server_ip=candidate.address,
            weight=candidate.weight,
        )
    return members


def diff_backends(
    current: Sequence[BackendMembership], desired: Dict[str, BackendMembership]
) -> BackendDiff:
    """Compute toAdd = desired - current and toRemove = current - desired."""
    diff = BackendDiff()
    current_by_id: Dict[str, BackendMembership] = {}
    duplicated = set()
    for member in current:
        if member.server_id in current_by_id:
            duplicated.add(member.server_id)
            continue
        current_by_id[member.server_id] = member

    for server_id, member in current_by_id.items():
        wanted = desired.get(server_id)
        if wanted is None:
            diff.to_remove.append(server_id)
        elif (
            server_id in duplicated
            or wanted.port != member.port
            or wanted.weight != member.weight
        ):
            # deletion is by server id, so re-register after removing
            diff.to_remove.append(server_id)
            diff.to_add.append(wanted)

    for server_id, wanted in desired.items():
        if server_id not in current_by_id:
            diff.to_add.append(wanted)

    # Stable order keeps remote calls deterministic
    diff.to_remove = sorted(set(diff.to_remove))
    diff.to_add.sort(key=lambda m: m.server_id)
    return diff


class BackendSynchronizer:
    """Applies backend diffs for a listener through a load balancer provider."""

    def __init__(self, provider):
        self.provider = provider

    async def sync(
        self,
        load_balancer_id: str,
        listener: Listener,
        port: PortSpec,
        candidates: Iterable[EndpointCandidate],
    ) -> BackendDiff:
        """
        Converge the listener's membership to the candidate set.

        Removals are applied before additions. Both are attempted; if
        either fails, PartialSyncFailure names the failed subset.

        Returns:
            The diff that was applied.

        Raises:
            PartialSyncFailure: If some additions or removals failed.
        """
        current = await self.provider.list_backends(load_balancer_id, listener.id)
        desired = desired_members(listener, port, candidates)
        diff = diff_backends(current, desired)

        if diff.empty:
            logger.debug(
                f"Backends of listener {listener.id} already converged "
                f"({len(desired)} members)"
            )
            return diff

        failed_removals: List[str] = []
        failed_additions: List[str] = []
        causes: List[BaseException] = []

        if diff.to_remove:
            logger.info(
                f"Removing backends {diff.to_remove} from listener {listener.id}"
            )
            try:
                await self.provider.delete_backends(
                    load_balancer_id, listener.id, diff.to_remove
                )
            except Exception as e:
                logger.error(f"Failed to remove backends from {listener.id}: {e}")
                failed_removals = list(diff.to_remove)
                causes.append(e)

        if diff.to_add:
            logger.info(
                f"Adding backends {[m.server_id for m in diff.to_add]} "
                f"to listener {listener.id}"
            )
            try:
                await self.provider.create_backends(
                    load_balancer_id, listener.id, diff.to_add
                )
            except Exception as e:
                logger.error(f"Failed to add backends to {listener.id}: {e}")
                failed_additions = [m.server_id for m in diff.to_add]
                causes.append(e)

        if causes:
            raise PartialSyncFailure(
                listener.id,
                failed_additions=failed_additions,
                failed_removals=failed_removals,
                causes=causes,
            )
        return diff
