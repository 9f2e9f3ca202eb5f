"""InCloud SLB provider plugin."""

from plugins.providers.incloud.client import InCloudProvider

__all__ = ["InCloudProvider"]
