"""
InCloud Load Balancer Provider - Implements LoadBalancerProvider for InCloud SLB.

Talks to the SLB REST control plane. Every request carries a bearer token
obtained from the identity provider through a shared TokenProvider.
"""

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from auth import TokenProvider
from config import LoadBalancerConfig
from errors import (
    ConfigurationError,
    ListenerNotFound,
    LoadBalancerNotFound,
    NotFound,
    RemoteError,
    RemoteTransientError,
)
from models import BackendMembership, Listener, LoadBalancerRef
from plugins.providers.base import LoadBalancerProvider

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = {401, 408, 429}

ModelT = TypeVar("ModelT", bound=BaseModel)


def _parse(model: Type[ModelT], data: Any) -> ModelT:
    """Validate one control-plane entity; malformed payloads are RemoteError."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise RemoteError(
            f"Malformed {model.__name__} in response: {e.error_count()} errors"
        ) from e


def _as_list(data: Any) -> List[Any]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise RemoteError(f"Expected a list in response, got {type(data).__name__}")
    return data


class InCloudProvider(LoadBalancerProvider):
    """
    Provider for the InCloud SLB REST API.

    Listeners live under ``/slbs/{slbId}/listeners`` and backend members
    under ``/slbs/{slbId}/listeners/{listenerId}/members``.
    """

    def __init__(self, token_provider: Optional[TokenProvider] = None):
        self.api_url_prefix: str = ""
        self.timeout: int = 30
        self.token_provider = token_provider

    @property
    def name(self) -> str:
        return "incloud"

    @property
    def version(self) -> str:
        return "1.0.0"

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Load InCloud provider configuration from environment variables."""
        return asdict(LoadBalancerConfig.from_env())

    async def initialize(self, config: Dict[str, Any]) -> None:
        """Initialize the provider with configuration."""
        self.api_url_prefix = (config.get("api_url_prefix") or "").rstrip("/")
        self.timeout = config.get("request_timeout", self.timeout)

        if not self.api_url_prefix:
            raise ConfigurationError(
                "SLB API url prefix not configured. Set SLB_URL_PREFIX."
            )

        if self.token_provider is None:
            missing = [
                key
                for key in (
                    "identity_provider_url",
                    "client_id",
                    "client_secret",
                    "requested_subject",
                )
                if not config.get(key)
            ]
            if missing:
                raise ConfigurationError(
                    f"Identity provider settings missing: {', '.join(missing)}"
                )
            self.token_provider = TokenProvider(
                identity_provider_url=config["identity_provider_url"],
                client_id=config["client_id"],
                client_secret=config["client_secret"],
                requested_subject=config["requested_subject"],
                timeout=self.timeout,
            )

        logger.debug(
            f"InCloud provider initialized: api_url_prefix={self.api_url_prefix}, "
            f"timeout={self.timeout}s"
        )

    # Load balancer

    async def get_load_balancer(self, load_balancer_id: str) -> LoadBalancerRef:
        try:
            data = await self._request("GET", f"/slbs/{load_balancer_id}")
        except NotFound:
            raise LoadBalancerNotFound(load_balancer_id)
        return _parse(LoadBalancerRef, data)

    # Listeners

    async def list_listeners(self, load_balancer_id: str) -> List[Listener]:
        data = await self._request("GET", f"/slbs/{load_balancer_id}/listeners")
        return [_parse(Listener, item) for item in _as_list(data)]

    async def get_listener(self, load_balancer_id: str, listener_id: str) -> Listener:
        try:
            data = await self._request(
                "GET", f"/slbs/{load_balancer_id}/listeners/{listener_id}"
            )
        except NotFound:
            raise ListenerNotFound(listener_id)
        return _parse(Listener, data)

    async def create_listener(
        self, load_balancer_id: str, options: Dict[str, Any]
    ) -> Listener:
        data = await self._request(
            "POST", f"/slbs/{load_balancer_id}/listeners", json=options
        )
        return self._listener_from_response(data, options)

    async def update_listener(
        self, load_balancer_id: str, listener_id: str, options: Dict[str, Any]
    ) -> Listener:
        try:
            data = await self._request(
                "PUT",
                f"/slbs/{load_balancer_id}/listeners/{listener_id}",
                json=options,
            )
        except NotFound:
            raise ListenerNotFound(listener_id)
        return self._listener_from_response(data, {**options, "listenerId": listener_id})

    async def delete_listener(self, load_balancer_id: str, listener_id: str) -> None:
        try:
            await self._request(
                "DELETE", f"/slbs/{load_balancer_id}/listeners/{listener_id}"
            )
        except NotFound:
            raise ListenerNotFound(listener_id)

    # Backends

    async def list_backends(
        self, load_balancer_id: str, listener_id: str
    ) -> List[BackendMembership]:
        data = await self._request("GET", self._members_path(load_balancer_id, listener_id))
        return [_parse(BackendMembership, item) for item in _as_list(data)]

    async def create_backends(
        self,
        load_balancer_id: str,
        listener_id: str,
        members: Sequence[BackendMembership],
    ) -> None:
        payload = {
            "slbId": load_balancer_id,
            "listenerId": listener_id,
            "servers": [m.to_server() for m in members],
        }
        await self._request(
            "POST", self._members_path(load_balancer_id, listener_id), json=payload
        )

    async def delete_backends(
        self, load_balancer_id: str, listener_id: str, server_ids: Sequence[str]
    ) -> None:
        await self._request(
            "DELETE",
            self._members_path(load_balancer_id, listener_id),
            json={"serverIds": list(server_ids)},
        )

    # Private helper methods

    @staticmethod
    def _members_path(load_balancer_id: str, listener_id: str) -> str:
        return f"/slbs/{load_balancer_id}/listeners/{listener_id}/members"

    @staticmethod
    def _listener_from_response(data: Any, options: Dict[str, Any]) -> Listener:
        """Some endpoints only echo the id; fill the rest from the request."""
        if isinstance(data, dict):
            merged = {**options, **data}
        elif isinstance(data, str) and data:
            merged = {**options, "listenerId": data}
        else:
            merged = dict(options)
        if not (merged.get("listenerId") or merged.get("id")):
            raise RemoteError("Listener response did not include a listener id")
        return _parse(Listener, merged)

    async def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for SLB API requests."""
        token = await self.token_provider.get_token()
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {token}",
        }

    @staticmethod
    def _unwrap(body: Any) -> Any:
        """Strip the {code, message, data} envelope when present."""
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def _request(
        self, method: str, path: str, json: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Perform one API call and return the response payload.

        Raises:
            NotFound: On HTTP 404.
            RemoteTransientError: On connection errors, timeouts, 401, 408,
                429 and 5xx responses.
            RemoteError: On any other non-2xx response or a body that is
                not JSON.
        """
        url = f"{self.api_url_prefix}{path}"
        headers = await self._get_headers()
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method, url, headers=headers, json=json
                ) as response:
                    status = response.status
                    if status == 404:
                        raise NotFound(f"{method} {path}: not found")
                    if status in TRANSIENT_STATUSES or status >= 500:
                        if status == 401:
                            self.token_provider.invalidate()
                        text = await response.text()
                        raise RemoteTransientError(
                            f"{method} {path} failed: {status} - {text}",
                            status=status,
                        )
                    if status >= 300:
                        text = await response.text()
                        raise RemoteError(
                            f"{method} {path} failed: {status} - {text}",
                            status=status,
                        )
                    if status == 204:
                        return None
                    try:
                        body = await response.json(content_type=None)
                    except ValueError as e:
                        raise RemoteError(
                            f"{method} {path} returned a non-JSON body",
                            status=status,
                        ) from e
        except aiohttp.ClientError as e:
            raise RemoteTransientError(f"{method} {path} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise RemoteTransientError(
                f"{method} {path} timed out after {self.timeout}s"
            ) from e

        return self._unwrap(body)
