"""
Pod-node resolver - register only the nodes that host the service's pods.

Pods are discovered through the Kubernetes API using the service's ``app``
selector. When pods move or scale, the next reconciliation pass picks up
the new node set.
"""

import asyncio
import logging
import os
import ssl
from typing import Any, Dict, List, Optional, Set

import aiohttp

from errors import RemoteTransientError, SelectorMissing
from models import EndpointCandidate, ExposureRequest
from plugins.resolvers.base import CandidateResolver, ClusterStateProvider

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"
SELECTOR_LABEL = "app"


class KubernetesClusterState(ClusterStateProvider):
    """Reads pod placement from the Kubernetes API with a service account."""

    def __init__(
        self,
        api_url: str = "https://kubernetes.default.svc",
        token_path: str = f"{SERVICE_ACCOUNT_DIR}/token",
        ca_path: Optional[str] = f"{SERVICE_ACCOUNT_DIR}/ca.crt",
        timeout: int = 30,
    ):
        self.api_url = api_url.rstrip("/")
        self.token_path = token_path
        self.ca_path = ca_path
        self.timeout = timeout

    def _read_token(self) -> str:
        # Projected tokens rotate, so read on every call
        with open(self.token_path, "r") as f:
            return f.read().strip()

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if self.ca_path and os.path.exists(self.ca_path):
            return ssl.create_default_context(cafile=self.ca_path)
        return None

    async def list_pod_node_names(
        self, namespace: str, label_selector: str
    ) -> Set[str]:
        url = f"{self.api_url}/api/v1/namespaces/{namespace}/pods"
        headers = {"Authorization": f"Bearer {self._read_token()}"}
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(
                    url,
                    headers=headers,
                    params={"labelSelector": label_selector},
                    ssl=self._ssl_context(),
                ) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise RemoteTransientError(
                            f"Listing pods {namespace}/{label_selector} failed: "
                            f"{response.status} - {text}",
                            status=response.status,
                        )
                    data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteTransientError(f"Listing pods failed: {e}") from e

        nodes = set()
        for pod in data.get("items", []):
            node_name = pod.get("spec", {}).get("nodeName")
            if node_name:
                nodes.add(node_name)
        return nodes


class PodNodeCandidateResolver(CandidateResolver):
    """Keeps only candidates whose node runs a pod of the service."""

    def __init__(self, cluster_state: Optional[ClusterStateProvider] = None):
        self.cluster_state = cluster_state

    @property
    def name(self) -> str:
        return "pod-nodes"

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        return {
            "api_url": os.getenv("KUBERNETES_API_URL", "https://kubernetes.default.svc"),
            "token_path": os.getenv(
                "KUBERNETES_TOKEN_PATH", f"{SERVICE_ACCOUNT_DIR}/token"
            ),
            "ca_path": os.getenv("KUBERNETES_CA_PATH", f"{SERVICE_ACCOUNT_DIR}/ca.crt"),
        }

    async def initialize(self, config: Dict[str, Any]) -> None:
        if self.cluster_state is None:
            self.cluster_state = KubernetesClusterState(**config)

    async def resolve(self, request: ExposureRequest) -> List[EndpointCandidate]:
        app = request.selector.get(SELECTOR_LABEL)
        if not app:
            raise SelectorMissing(request.key, SELECTOR_LABEL)

        node_names = await self.cluster_state.list_pod_node_names(
            request.namespace, f"{SELECTOR_LABEL}={app}"
        )
        candidates = [e for e in request.endpoints if e.name in node_names]
        logger.debug(
            f"{request.key}: {len(candidates)} of {len(request.endpoints)} "
            f"nodes host pods of app={app}"
        )
        return candidates
