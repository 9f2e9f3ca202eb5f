"""
Input Plugin Base - Abstract interface for exposure request sources.

Input plugins receive exposure requests from the outside world and hand
them to the controller:
- HTTP API: REST endpoints
- Cluster watcher: Service objects of a Kubernetes cluster
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Tuple


class InputPlugin(ABC):
    """
    Abstract base class for input plugins.

    The controller and event bus are injected before ``start`` is called.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this plugin (e.g., 'http')."""
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        """Plugin version string."""
        pass

    @abstractmethod
    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Initialize the plugin with configuration.

        Args:
            config: Plugin-specific configuration dictionary
        """
        pass

    @abstractmethod
    async def start(self) -> None:
        """
        Start receiving exposure requests.

        For HTTP plugins, this serves the API until stop() is called.
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the input plugin gracefully."""
        pass

    @abstractmethod
    async def health_check(self) -> Tuple[bool, str]:
        """
        Check if the input plugin is healthy.

        Returns:
            Tuple of (is_healthy, status_message).
        """
        pass

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """
        Load plugin-specific configuration from environment variables.

        Returns:
            Dictionary of configuration values for this plugin.
        """
        return {}

    def set_controller(self, controller: Any) -> None:
        """
        Set the controller that exposure requests are submitted to.

        Args:
            controller: The Controller instance
        """
        pass

    def set_event_bus(self, event_bus: Any) -> None:
        """
        Set the event bus for plugins that stream events.

        Args:
            event_bus: The EventBus instance
        """
        pass
