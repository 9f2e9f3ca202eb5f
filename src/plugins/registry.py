"""
Plugin Registry - Discovery and registration of plugins.

This module provides the central registry for provider, resolver and input
plugins, handling discovery, registration, and instantiation.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, List, Optional, Type

from plugins.inputs.base import InputPlugin
from plugins.providers.base import LoadBalancerProvider
from plugins.resolvers.base import CandidateResolver

logger = logging.getLogger(__name__)

PROVIDER_ENTRY_POINT_GROUP = "l4lb.providers"
RESOLVER_ENTRY_POINT_GROUP = "l4lb.resolvers"


class PluginRegistry:
    """
    Central registry for all plugins.

    Plugin classes are registered once; instances are created and
    initialized lazily and cached per name.
    """

    def __init__(self):
        # Registered plugin classes (not instantiated)
        self._providers: Dict[str, Type[LoadBalancerProvider]] = {}
        self._resolvers: Dict[str, Type[CandidateResolver]] = {}
        self._inputs: Dict[str, Type[InputPlugin]] = {}

        # Cached plugin metadata to avoid repeated instantiation
        self._info: Dict[str, Dict[str, Dict[str, str]]] = {
            "providers": {},
            "resolvers": {},
            "inputs": {},
        }

        # Plugin configurations loaded from environment
        self._configs: Dict[str, Dict[str, Dict[str, Any]]] = {
            "providers": {},
            "resolvers": {},
            "inputs": {},
        }

        # Instantiated and initialized plugin instances
        self._provider_instances: Dict[str, LoadBalancerProvider] = {}
        self._resolver_instances: Dict[str, CandidateResolver] = {}
        self._input_instances: Dict[str, InputPlugin] = {}

    # Registration methods

    def _register(self, kind: str, classes: Dict[str, Type], plugin_class: Type) -> str:
        # Temporary instance to read name/version, once at registration
        temp_instance = plugin_class()
        name = temp_instance.name
        version = getattr(temp_instance, "version", "")

        if name in classes:
            logger.warning(f"Overwriting existing {kind[:-1]} plugin: {name}")

        classes[name] = plugin_class
        self._info[kind][name] = {"name": name, "version": version}
        self._configs[kind][name] = plugin_class.load_config_from_env()
        logger.info(f"Registered {kind[:-1]} plugin: {name} {version}".rstrip())
        return name

    def register_provider(self, plugin_class: Type[LoadBalancerProvider]) -> None:
        """
        Register a load balancer provider class.

        Args:
            plugin_class: The LoadBalancerProvider subclass to register
        """
        self._register("providers", self._providers, plugin_class)

    def register_resolver(self, plugin_class: Type[CandidateResolver]) -> None:
        """
        Register a candidate resolver class.

        Args:
            plugin_class: The CandidateResolver subclass to register
        """
        self._register("resolvers", self._resolvers, plugin_class)

    def register_input_plugin(self, plugin_class: Type[InputPlugin]) -> None:
        """
        Register an input plugin class.

        Args:
            plugin_class: The InputPlugin subclass to register
        """
        self._register("inputs", self._inputs, plugin_class)

    # Instantiation methods

    @staticmethod
    def _unknown(kind: str, name: str, classes: Dict[str, Type]) -> ValueError:
        available = ", ".join(classes.keys()) or "none"
        return ValueError(f"Unknown {kind} plugin: {name}. Available plugins: {available}")

    def _merged_config(
        self, kind: str, name: str, config: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        merged = dict(self._configs[kind].get(name, {}))
        if config:
            merged.update(config)
        return merged

    async def get_provider(
        self, name: str, config: Optional[Dict[str, Any]] = None
    ) -> LoadBalancerProvider:
        """
        Get an initialized provider instance.

        The environment configuration captured at registration is merged
        with config, config taking precedence.

        Raises:
            ValueError: If the provider name is not registered
        """
        if name not in self._providers:
            raise self._unknown("provider", name, self._providers)

        if name not in self._provider_instances:
            plugin = self._providers[name]()
            await plugin.initialize(self._merged_config("providers", name, config))
            self._provider_instances[name] = plugin
            logger.info(f"Initialized provider plugin: {name}")

        return self._provider_instances[name]

    async def get_resolver(
        self, name: str, config: Optional[Dict[str, Any]] = None
    ) -> CandidateResolver:
        """
        Get an initialized resolver instance.

        Raises:
            ValueError: If the resolver name is not registered
        """
        if name not in self._resolvers:
            raise self._unknown("resolver", name, self._resolvers)

        if name not in self._resolver_instances:
            plugin = self._resolvers[name]()
            await plugin.initialize(self._merged_config("resolvers", name, config))
            self._resolver_instances[name] = plugin
            logger.info(f"Initialized resolver plugin: {name}")

        return self._resolver_instances[name]

    async def get_input_plugin(
        self, name: str, config: Optional[Dict[str, Any]] = None
    ) -> InputPlugin:
        """
        Get an initialized input plugin instance.

        Raises:
            ValueError: If the plugin name is not registered
        """
        if name not in self._inputs:
            raise self._unknown("input", name, self._inputs)

        if name not in self._input_instances:
            plugin = self._inputs[name]()
            await plugin.initialize(self._merged_config("inputs", name, config))
            self._input_instances[name] = plugin
            logger.info(f"Initialized input plugin: {name}")

        return self._input_instances[name]

    async def close(self) -> None:
        """Release provider resources."""
        for name, provider in self._provider_instances.items():
            try:
                await provider.close()
            except Exception as e:
                logger.error(f"Error closing provider '{name}': {e}")

    # Discovery methods

    def list_providers(self) -> List[str]:
        return list(self._providers.keys())

    def list_resolvers(self) -> List[str]:
        return list(self._resolvers.keys())

    def list_input_plugins(self) -> List[str]:
        return list(self._inputs.keys())

    def has_provider(self, name: str) -> bool:
        return name in self._providers

    def has_resolver(self, name: str) -> bool:
        return name in self._resolvers

    def get_plugin_info(self) -> Dict[str, List[Dict[str, str]]]:
        """Name and version of every registered plugin, grouped by kind."""
        return {kind: list(info.values()) for kind, info in self._info.items()}


# Global registry instance
_registry: Optional[PluginRegistry] = None


def get_registry() -> PluginRegistry:
    """Get the global plugin registry singleton."""
    global _registry
    if _registry is None:
        _registry = PluginRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def _discover(group: str, register) -> None:
    for ep in entry_points(group=group):
        try:
            register(ep.load())
        except Exception as e:
            logger.warning(f"Could not load plugin {ep.name} from {group}: {e}")


def register_builtin_plugins() -> None:
    """
    Register the plugins that ship with the controller, then any installed
    provider and resolver plugins advertised through entry points.
    """
    registry = get_registry()

    from plugins.inputs.http import HTTPInputPlugin
    from plugins.providers.incloud import InCloudProvider
    from plugins.resolvers.pod_nodes import PodNodeCandidateResolver
    from plugins.resolvers.request import RequestCandidateResolver

    registry.register_provider(InCloudProvider)
    registry.register_resolver(RequestCandidateResolver)
    registry.register_resolver(PodNodeCandidateResolver)
    registry.register_input_plugin(HTTPInputPlugin)

    _discover(PROVIDER_ENTRY_POINT_GROUP, registry.register_provider)
    _discover(RESOLVER_ENTRY_POINT_GROUP, registry.register_resolver)
