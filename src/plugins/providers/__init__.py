"""
Load balancer provider plugins package.

Providers implement the remote operations against one vendor's load
balancer control plane.
"""

from plugins.providers.base import LoadBalancerProvider

__all__ = ["LoadBalancerProvider"]
