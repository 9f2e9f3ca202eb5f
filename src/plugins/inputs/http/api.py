"""
HTTP Input Plugin - REST API for exposure management.

This plugin provides a FastAPI-based REST API for submitting, inspecting
and deleting exposure requests, and an SSE stream of lifecycle events.
"""

import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, field_validator

from errors import LoadBalancerError
from events import EventBus, ExposureEvent
from models import ExposureRequest
from plugins.inputs.base import InputPlugin
from validation import validate_exposure_manifest

logger = logging.getLogger(__name__)

MAX_SPEC_SIZE = 1024 * 1024  # 1MB max for spec


def validate_json_size(value: Dict[str, Any], field_name: str) -> Dict[str, Any]:
    """Validate that JSON data doesn't exceed size limits."""
    if len(json.dumps(value)) > MAX_SPEC_SIZE:
        raise ValueError(
            f"{field_name} exceeds maximum size of {MAX_SPEC_SIZE // 1024}KB"
        )
    return value


class ExposureApply(BaseModel):
    """Request body for submitting an exposure."""

    annotations: Dict[str, str] = Field(
        default_factory=dict, description="Load balancer annotations"
    )
    spec: Dict[str, Any] = Field(
        ..., description="Ports, endpoint candidates and pod selector"
    )

    @field_validator("spec")
    @classmethod
    def validate_spec_size(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return validate_json_size(v, "spec")


class ExposureResponse(BaseModel):
    """Response model for an exposure."""

    namespace: str
    name: str
    status: str
    message: str = ""
    generation: int
    observed_generation: int
    ingress: List[str] = []
    retry_count: int = 0
    last_reconcile_time: Optional[str] = None
    last_result: Optional[Dict[str, Any]] = None
    manifest: Dict[str, Any] = {}


class LoadBalancerStatusResponse(BaseModel):
    """Live load balancer addresses for an exposure."""

    namespace: str
    name: str
    exists: bool
    ingress: List[str] = []


class PluginInfo(BaseModel):
    """Response model for plugin information."""

    name: str
    version: str = ""


class HTTPInputPlugin(InputPlugin):
    """
    Input plugin that provides a REST API for exposure management.

    Implements the standard InputPlugin interface using FastAPI.
    """

    def __init__(self):
        self.app: Optional[FastAPI] = None
        self.host: str = "0.0.0.0"
        self.port: int = 8000
        self.log_level: str = "info"
        self.server = None
        self._controller = None
        self._event_bus: Optional[EventBus] = None
        self._config: Dict[str, Any] = {}

    @property
    def name(self) -> str:
        return "http"

    @property
    def version(self) -> str:
        return "1.0.0"

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Load HTTP plugin configuration from environment variables."""
        return {
            "host": os.getenv("API_HOST", "0.0.0.0"),
            "port": int(os.getenv("API_PORT", "8000")),
            "log_level": os.getenv("LOG_LEVEL", "INFO").lower(),
        }

    async def initialize(self, config: Dict[str, Any]) -> None:
        """Initialize the HTTP API plugin."""
        self._config = config
        self.host = config.get("host", "0.0.0.0")
        self.port = config.get("port", 8000)
        self.log_level = str(config.get("log_level", "info")).lower()

        self.app = FastAPI(
            title="L4 Load Balancer Controller API",
            description="Reconciles exposure requests onto a layer-4 load balancer",
            version="1.0.0",
        )
        self._setup_routes()

        logger.info(f"HTTP input plugin initialized on {self.host}:{self.port}")

    def set_controller(self, controller) -> None:
        """Set the controller exposure requests are submitted to."""
        self._controller = controller

    def set_event_bus(self, event_bus: EventBus) -> None:
        """Set the event bus instance for streaming events."""
        self._event_bus = event_bus

    def _require_controller(self):
        if not self._controller:
            raise HTTPException(status_code=503, detail="Controller not available")
        return self._controller

    def _setup_routes(self) -> None:
        """
        Set up all FastAPI routes for the REST API.

        Configures the following endpoint groups:
        - Health check: GET /
        - Exposures: /api/v1/exposures[/{namespace}/{name}]
        - Live status: GET /api/v1/exposures/{namespace}/{name}/status
        - Reconciliation: POST /api/v1/exposures/{namespace}/{name}/reconcile
        - Events: GET /api/v1/events (SSE)
        - Plugin discovery: GET /api/v1/plugins
        """
        if not self.app:
            raise RuntimeError("App not initialized")

        @self.app.get("/")
        async def health_check():
            """Health check endpoint."""
            return {"status": "ok", "service": "l4lb-controller"}

        # ==================== Exposure Endpoints ====================

        @self.app.put(
            "/api/v1/exposures/{namespace}/{name}",
            response_model=ExposureResponse,
            status_code=202,
        )
        async def apply_exposure(namespace: str, name: str, body: ExposureApply):
            """Submit the desired state of an exposure."""
            controller = self._require_controller()

            manifest = {
                "metadata": {
                    "namespace": namespace,
                    "name": name,
                    "annotations": body.annotations,
                },
                "spec": body.spec,
            }
            is_valid, error = validate_exposure_manifest(manifest)
            if not is_valid:
                raise HTTPException(status_code=422, detail=error)

            request = ExposureRequest.from_manifest(manifest)
            record = await controller.submit(request)
            return ExposureResponse(**record.to_dict())

        @self.app.get("/api/v1/exposures", response_model=List[ExposureResponse])
        async def list_exposures(
            namespace: Optional[str] = None, status: Optional[str] = None
        ):
            """List exposures with optional filters."""
            controller = self._require_controller()
            records = controller.list_records()
            if namespace:
                records = [r for r in records if r.request.namespace == namespace]
            if status:
                records = [r for r in records if r.status.value == status]
            return [ExposureResponse(**r.to_dict()) for r in records]

        @self.app.get(
            "/api/v1/exposures/{namespace}/{name}", response_model=ExposureResponse
        )
        async def get_exposure(namespace: str, name: str):
            """Get an exposure and its reconciliation status."""
            controller = self._require_controller()
            record = controller.get(f"{namespace}/{name}")
            if record is None:
                raise HTTPException(status_code=404, detail="Exposure not found")
            return ExposureResponse(**record.to_dict())

        @self.app.get(
            "/api/v1/exposures/{namespace}/{name}/status",
            response_model=LoadBalancerStatusResponse,
        )
        async def get_load_balancer_status(namespace: str, name: str):
            """Read the exposure's ingress addresses from the load balancer."""
            controller = self._require_controller()
            try:
                status = await controller.load_balancer_status(f"{namespace}/{name}")
            except LoadBalancerError as e:
                logger.error(f"Status query for {namespace}/{name} failed: {e}")
                raise HTTPException(status_code=502, detail=str(e))
            if status is None:
                raise HTTPException(status_code=404, detail="Exposure not found")
            ingress, exists = status
            return LoadBalancerStatusResponse(
                namespace=namespace, name=name, exists=exists, ingress=ingress
            )

        @self.app.delete(
            "/api/v1/exposures/{namespace}/{name}",
            response_model=ExposureResponse,
            status_code=202,
        )
        async def delete_exposure(namespace: str, name: str):
            """Mark an exposure for deletion."""
            controller = self._require_controller()
            record = await controller.remove(f"{namespace}/{name}")
            if record is None:
                raise HTTPException(status_code=404, detail="Exposure not found")
            return ExposureResponse(**record.to_dict())

        @self.app.post(
            "/api/v1/exposures/{namespace}/{name}/reconcile", status_code=202
        )
        async def trigger_reconciliation(namespace: str, name: str):
            """Manually trigger reconciliation for an exposure."""
            controller = self._require_controller()
            key = f"{namespace}/{name}"
            if not controller.trigger(key):
                raise HTTPException(status_code=404, detail="Exposure not found")
            return {"message": "Reconciliation triggered", "exposure": key}

        # ==================== Plugin Discovery ====================

        @self.app.get("/api/v1/plugins", response_model=Dict[str, List[PluginInfo]])
        async def list_plugins():
            """List registered provider, resolver and input plugins."""
            from plugins.registry import get_registry

            info = get_registry().get_plugin_info()
            return {
                kind: [PluginInfo(**plugin) for plugin in plugins]
                for kind, plugins in info.items()
            }

        # ==================== Event Streaming ====================

        @self.app.get("/api/v1/events")
        async def stream_events(
            namespace: Optional[str] = None, name: Optional[str] = None
        ):
            """SSE stream of exposure events.

            Optionally filter by namespace and name.
            """
            if not self._event_bus:
                raise HTTPException(
                    status_code=503,
                    detail="Event streaming not available",
                )

            def filter_fn(event: ExposureEvent) -> bool:
                if namespace and event.namespace != namespace:
                    return False
                if name and event.name != name:
                    return False
                return True

            subscriber_id, subscription = await self._event_bus.subscribe(filter_fn)

            async def event_generator():
                try:
                    async for event in subscription:
                        yield event.to_sse()
                except asyncio.CancelledError:
                    pass
                finally:
                    await self._event_bus.unsubscribe(subscriber_id)

            return StreamingResponse(
                event_generator(),
                media_type="text/event-stream",
                headers={
                    "Cache-Control": "no-cache",
                    "X-Accel-Buffering": "no",
                },
            )

    async def start(self) -> None:
        """Start the HTTP server."""
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=self.log_level,
        )
        self.server = uvicorn.Server(config)

        logger.info(f"Starting HTTP input plugin on {self.host}:{self.port}")
        await self.server.serve()

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        logger.info("Stopping HTTP input plugin")
        if self.server:
            self.server.should_exit = True

    async def health_check(self) -> Tuple[bool, str]:
        """Check if the HTTP API is healthy."""
        if self.server and self.server.started:
            return True, "HTTP API is running"
        return False, "HTTP API is not running"
