"""
Load Balancer Provider Base - Abstract interface for load balancer control planes.

A provider implements the remote operations the reconciliation engine
needs against one vendor's Layer-4 load balancer API. The default shipped
provider is ``incloud``, which talks to the InCloud SLB REST API.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence

from models import BackendMembership, Listener, LoadBalancerRef


class LoadBalancerProvider(ABC):
    """
    Abstract base class for load balancer providers.

    All operations are coroutines; cancelling the calling task must abort
    any in-flight request. Errors are raised from the ``errors`` module:
    NotFound subclasses for absent entities, RemoteTransientError for
    network and server failures, RemoteError for rejected requests.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this provider (e.g., 'incloud')."""
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        """Provider version string."""
        pass

    @abstractmethod
    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Initialize the provider with configuration.

        Called once when the provider is loaded. Use this to validate
        configuration and set up credentials.

        Args:
            config: Provider-specific configuration dictionary
        """
        pass

    @abstractmethod
    async def get_load_balancer(self, load_balancer_id: str) -> LoadBalancerRef:
        """
        Read the load balancer.

        Raises:
            LoadBalancerNotFound: If the load balancer does not exist.
        """
        pass

    @abstractmethod
    async def list_listeners(self, load_balancer_id: str) -> List[Listener]:
        """List all listeners of the load balancer."""
        pass

    @abstractmethod
    async def get_listener(self, load_balancer_id: str, listener_id: str) -> Listener:
        """
        Read a single listener.

        Raises:
            ListenerNotFound: If the listener does not exist.
        """
        pass

    @abstractmethod
    async def create_listener(
        self, load_balancer_id: str, options: Dict[str, Any]
    ) -> Listener:
        """
        Create a listener.

        Args:
            load_balancer_id: Owning load balancer
            options: Listener options as built by listeners.build_listener_options

        Returns:
            The created listener, including its id.
        """
        pass

    @abstractmethod
    async def update_listener(
        self, load_balancer_id: str, listener_id: str, options: Dict[str, Any]
    ) -> Listener:
        """Update a listener in place."""
        pass

    @abstractmethod
    async def delete_listener(self, load_balancer_id: str, listener_id: str) -> None:
        """
        Delete a listener.

        Raises:
            ListenerNotFound: If the listener is already gone.
        """
        pass

    @abstractmethod
    async def list_backends(
        self, load_balancer_id: str, listener_id: str
    ) -> List[BackendMembership]:
        """List the backend members registered under a listener."""
        pass

    @abstractmethod
    async def create_backends(
        self,
        load_balancer_id: str,
        listener_id: str,
        members: Sequence[BackendMembership],
    ) -> None:
        """Register backend members under a listener."""
        pass

    @abstractmethod
    async def delete_backends(
        self, load_balancer_id: str, listener_id: str, server_ids: Sequence[str]
    ) -> None:
        """Deregister backend members by server id."""
        pass

    async def close(self) -> None:
        """Release any resources held by the provider."""
        return None

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """
        Load provider-specific configuration from environment variables.

        Override this method in subclasses to define how the provider
        loads its configuration from the environment.

        Returns:
            Dictionary of configuration values for this provider.
        """
        return {}
