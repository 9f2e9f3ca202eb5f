"""
Error taxonomy for load balancer reconciliation.

Every error carries a ``retryable`` flag. The controller requeues retryable
failures with backoff and parks non-retryable ones until the exposure
request changes. The engine itself never retries.
"""

from typing import List, Optional, Sequence


class LoadBalancerError(Exception):
    """Base class for all reconciliation errors."""

    retryable = True

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(LoadBalancerError):
    """Fatal until an operator or user corrects the configuration."""

    retryable = False


class NoPortsConfigured(ConfigurationError):
    """The exposure request declares no ports."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"no ports provided for load balancer service {key}")


class LoadBalancerNotConfigured(ConfigurationError):
    """No load balancer id is configured for this cluster."""

    def __init__(self, message: str = "load balancer id is not configured"):
        super().__init__(message)


class SelectorMissing(ConfigurationError):
    """The service has no selector usable for pod discovery."""

    def __init__(self, key: str, label: str):
        self.key = key
        self.label = label
        super().__init__(f"service {key} doesn't have selector ({label})")


class NoAvailableBackends(LoadBalancerError):
    """No backend candidates were found and empty listeners are not allowed."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"there are no available nodes for LoadBalancer service {key}")


class NotFound(LoadBalancerError):
    """A remote entity does not exist."""

    retryable = False


class LoadBalancerNotFound(NotFound):
    def __init__(self, load_balancer_id: str):
        self.load_balancer_id = load_balancer_id
        super().__init__(f"load balancer {load_balancer_id} not found")


class ListenerNotFound(NotFound):
    def __init__(self, listener_id: str):
        self.listener_id = listener_id
        super().__init__(f"listener {listener_id} not found")


class RemoteError(LoadBalancerError):
    """The control plane rejected a request or returned an unusable response."""

    retryable = False

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class RemoteTransientError(LoadBalancerError):
    """Network failure, timeout or server-side error; retry the whole pass."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class AuthenticationError(RemoteTransientError):
    """The identity provider refused or failed the token exchange."""


class PartialSyncFailure(LoadBalancerError):
    """
    Raised when backend synchronization for a listener did not fully apply.

    Names the server ids whose addition or removal failed so a retry can
    re-diff instead of redoing everything.
    """

    def __init__(
        self,
        listener_id: str,
        failed_additions: Sequence[str] = (),
        failed_removals: Sequence[str] = (),
        causes: Sequence[BaseException] = (),
    ):
        self.listener_id = listener_id
        self.failed_additions: List[str] = list(failed_additions)
        self.failed_removals: List[str] = list(failed_removals)
        self.causes: List[BaseException] = list(causes)

        parts = []
        if self.failed_additions:
            parts.append(f"add {', '.join(self.failed_additions)}")
        if self.failed_removals:
            parts.append(f"remove {', '.join(self.failed_removals)}")
        detail = "; ".join(parts) or "unknown subset"
        reasons = "; ".join(str(c) for c in self.causes)
        message = f"backend sync for listener {listener_id} failed to {detail}"
        if reasons:
            message = f"{message}: {reasons}"
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return all(getattr(c, "retryable", True) for c in self.causes)
