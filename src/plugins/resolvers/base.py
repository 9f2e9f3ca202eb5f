"""
Candidate Resolver Base - how the desired backend set is obtained.

The reconciliation engine asks a resolver for the endpoint candidates of
an exposure request. Resolvers differ in how they narrow the candidates:
use them as given, or keep only the nodes hosting the service's pods.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Set

from models import EndpointCandidate, ExposureRequest


class ClusterStateProvider(ABC):
    """Typed access to the cluster state a resolver needs."""

    @abstractmethod
    async def list_pod_node_names(
        self, namespace: str, label_selector: str
    ) -> Set[str]:
        """
        Return the names of nodes running pods matched by a label selector.

        Args:
            namespace: Namespace of the pods
            label_selector: Kubernetes label selector, e.g. 'app=web'
        """
        pass


class CandidateResolver(ABC):
    """Abstract base class for endpoint candidate resolvers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this resolver (e.g., 'request')."""
        pass

    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Initialize the resolver with configuration.

        Args:
            config: Resolver-specific configuration dictionary
        """
        return None

    @abstractmethod
    async def resolve(self, request: ExposureRequest) -> List[EndpointCandidate]:
        """
        Return the endpoint candidates that should receive traffic.

        Args:
            request: The exposure request being reconciled

        Returns:
            Candidates in a stable order.
        """
        pass

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Load resolver-specific configuration from environment variables."""
        return {}
