"""
Main entry point for the L4 Load Balancer Controller.

This module wires configuration, plugins, the reconciliation engine and the
controller together and runs them until a shutdown signal arrives.
"""

import asyncio
import logging
import signal
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from config import get_config
from controller import Controller
from engine import ReconciliationEngine
from events import EventBus
from plugins.inputs.base import InputPlugin
from plugins.registry import PluginRegistry, get_registry, register_builtin_plugins

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Main application that orchestrates the controller and plugins."""

    def __init__(self, registry: Optional[PluginRegistry] = None):
        self.config = get_config()
        self.registry = registry
        self.engine: Optional[ReconciliationEngine] = None
        self.controller: Optional[Controller] = None
        self.event_bus: Optional[EventBus] = None
        self.input_plugins: List[InputPlugin] = []
        self.running = False

    def _plugin_config(self, name: str, base: Dict[str, Any]) -> Dict[str, Any]:
        # PLUGIN_CONFIGS overrides win over the section settings
        merged = dict(base)
        merged.update(self.config.plugins.get_plugin_config(name))
        return merged

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing L4 Load Balancer Controller")

        if self.registry is None:
            register_builtin_plugins()
            self.registry = get_registry()
        registry = self.registry

        lb_config = self.config.load_balancer
        missing = lb_config.missing_fields()
        if missing:
            logger.warning(
                f"Load balancer settings incomplete, missing: {', '.join(missing)}"
            )
        if not lb_config.is_configured:
            logger.warning(
                "No load balancer id configured (SLB_ID); exposures will fail "
                "until one is assigned"
            )

        provider_name = self.config.plugins.provider
        provider = await registry.get_provider(
            provider_name, self._plugin_config(provider_name, asdict(lb_config))
        )
        resolver_name = self.config.plugins.resolver
        resolver = await registry.get_resolver(
            resolver_name, self._plugin_config(resolver_name, {})
        )
        logger.info(f"Using provider '{provider_name}' and resolver '{resolver_name}'")

        self.engine = ReconciliationEngine(
            provider=provider,
            resolver=resolver,
            load_balancer_id=lb_config.load_balancer_id,
            defaults=self.config.defaults,
        )

        self.event_bus = EventBus()
        self.controller = Controller(
            engine=self.engine,
            config=self.config.controller,
            event_bus=self.event_bus,
        )

        # Determine which input plugins to load
        enabled_inputs = self.config.plugins.enabled_input_plugins
        if not enabled_inputs:
            enabled_inputs = registry.list_input_plugins()

        api = self.config.api
        for plugin_name in enabled_inputs:
            if plugin_name not in registry.list_input_plugins():
                logger.warning(f"Input plugin '{plugin_name}' not found, skipping")
                continue

            base = {}
            if plugin_name == "http":
                base = {"host": api.host, "port": api.port, "log_level": api.log_level}
            plugin = await registry.get_input_plugin(
                plugin_name, self._plugin_config(plugin_name, base)
            )
            plugin.set_controller(self.controller)
            plugin.set_event_bus(self.event_bus)
            self.input_plugins.append(plugin)

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.controller:
            await self.initialize()

        self.running = True
        logger.info("Starting L4 Load Balancer Controller")

        tasks = [asyncio.create_task(self.controller.start())]
        for plugin in self.input_plugins:
            tasks.append(asyncio.create_task(plugin.start()))

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if not self.running:
            return
        logger.info("Stopping L4 Load Balancer Controller")
        self.running = False

        if self.controller:
            await self.controller.stop()

        for plugin in self.input_plugins:
            await plugin.stop()

        if self.registry:
            await self.registry.close()

        logger.info("L4 Load Balancer Controller stopped")


async def main():
    """Main entry point."""
    setup_logging(get_config().api.log_level)
    app = Application()

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
