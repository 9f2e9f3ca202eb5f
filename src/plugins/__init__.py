"""
Plugin system for the L4 Load Balancer Controller.

This package provides the plugin architecture for load balancer providers,
endpoint candidate resolvers and request inputs.
"""

from plugins.registry import PluginRegistry, get_registry

__all__ = ["PluginRegistry", "get_registry"]
