"""
Candidate resolver plugins package.

Resolvers decide which endpoint candidates of an exposure request become
backend members.
"""

from plugins.resolvers.base import CandidateResolver, ClusterStateProvider

__all__ = ["CandidateResolver", "ClusterStateProvider"]
