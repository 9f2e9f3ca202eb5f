"""
Configuration module for the load balancer controller.

Loads configuration from environment variables or a YAML config file.
Supports plugin-based architecture with plugin-specific configuration.
"""

import json
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

import yaml

TRUE_VALUES = ("1", "t", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in TRUE_VALUES


@dataclass
class LoadBalancerConfig:
    """Connection settings for the load balancer control plane."""

    api_url_prefix: str = ""
    load_balancer_id: str = ""
    identity_provider_url: str = ""
    client_id: str = ""
    client_secret: str = field(default="", repr=False)  # Never log secret
    requested_subject: str = ""
    request_timeout: int = 30  # seconds

    REQUIRED_FIELDS = (
        "api_url_prefix",
        "identity_provider_url",
        "client_id",
        "client_secret",
        "requested_subject",
    )

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            api_url_prefix=os.getenv("SLB_URL_PREFIX", "").rstrip("/"),
            load_balancer_id=os.getenv("SLB_ID", ""),
            identity_provider_url=os.getenv("KEYCLOAK_URL", ""),
            client_id=os.getenv("TOKEN_CLIENT_ID", ""),
            client_secret=os.getenv("CLIENT_SECRET", ""),
            requested_subject=os.getenv("REQUESTED_SUBJECT", ""),
            request_timeout=int(os.getenv("SLB_REQUEST_TIMEOUT", "30")),
        )

    @property
    def is_configured(self) -> bool:
        """Whether a load balancer id has been assigned to this cluster."""
        return bool(self.load_balancer_id)

    def missing_fields(self) -> List[str]:
        """Return the names of required connection settings that are empty."""
        return [name for name in self.REQUIRED_FIELDS if not getattr(self, name)]


@dataclass
class IntentDefaults:
    """Fallback values for exposure annotations."""

    forward_rule: str = "RR"
    health_check: bool = False
    internal: bool = False
    # When False, an empty candidate set fails the pass instead of
    # emptying every listener
    allow_empty_backends: bool = True

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            forward_rule=os.getenv("DEFAULT_FORWARD_RULE", "RR"),
            health_check=_env_bool("DEFAULT_HEALTH_CHECK", False),
            internal=_env_bool("DEFAULT_INTERNAL", False),
            allow_empty_backends=_env_bool("ALLOW_EMPTY_BACKENDS", True),
        )


@dataclass
class ControllerConfig:
    """Controller reconciliation loop configuration."""

    reconcile_interval: int = 10  # seconds
    resync_interval: int = 300  # seconds
    max_concurrent_reconciles: int = 5

    # Exponential backoff configuration
    backoff_base_delay: int = 5  # base delay in seconds
    backoff_max_delay: int = 600  # max delay in seconds
    backoff_jitter_factor: float = 0.1  # ±10% jitter

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            reconcile_interval=int(os.getenv("RECONCILE_INTERVAL", "10")),
            resync_interval=int(os.getenv("RESYNC_INTERVAL", "300")),
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
            backoff_base_delay=int(os.getenv("BACKOFF_BASE_DELAY", "5")),
            backoff_max_delay=int(os.getenv("BACKOFF_MAX_DELAY", "600")),
            backoff_jitter_factor=float(os.getenv("BACKOFF_JITTER_FACTOR", "0.1")),
        )


@dataclass
class APIConfig:
    """API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=int(os.getenv("API_PORT", "8000")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class PluginConfig:
    """Plugin system configuration."""

    provider: str = "incloud"
    resolver: str = "request"
    # List of enabled input plugin names (empty = use all registered plugins)
    enabled_input_plugins: List[str] = field(default_factory=list)

    # Plugin-specific configurations keyed by plugin name
    plugin_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        enabled_inputs_str = os.getenv("ENABLED_INPUT_PLUGINS", "")
        enabled_inputs = (
            [p.strip() for p in enabled_inputs_str.split(",") if p.strip()]
            if enabled_inputs_str
            else []
        )

        # Load plugin configs from JSON environment variable
        plugin_configs = {}
        if os.getenv("PLUGIN_CONFIGS"):
            try:
                plugin_configs = json.loads(os.getenv("PLUGIN_CONFIGS"))
            except json.JSONDecodeError:
                pass

        return cls(
            provider=os.getenv("LB_PROVIDER", "incloud"),
            resolver=os.getenv("CANDIDATE_RESOLVER", "request"),
            enabled_input_plugins=enabled_inputs,
            plugin_configs=plugin_configs,
        )

    def get_plugin_config(self, plugin_name: str) -> Dict[str, Any]:
        """Get configuration for a specific plugin."""
        return self.plugin_configs.get(plugin_name, {})


def _section(section_cls, data: Optional[Dict[str, Any]]):
    """Build a config section from a mapping, ignoring unknown keys."""
    known = {f.name for f in fields(section_cls)}
    values = {k: v for k, v in (data or {}).items() if k in known}
    return section_cls(**values)


@dataclass
class Config:
    """Main configuration object."""

    load_balancer: LoadBalancerConfig
    defaults: IntentDefaults
    controller: ControllerConfig
    api: APIConfig
    plugins: PluginConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            load_balancer=LoadBalancerConfig.from_env(),
            defaults=IntentDefaults.from_env(),
            controller=ControllerConfig.from_env(),
            api=APIConfig.from_env(),
            plugins=PluginConfig.from_env(),
        )

    @classmethod
    def from_file(cls, path: str):
        """
        Load configuration from a YAML file.

        Each top-level key names a section (load_balancer, defaults,
        controller, api, plugins). Missing sections take their defaults.
        """
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")

        return cls(
            load_balancer=_section(LoadBalancerConfig, data.get("load_balancer")),
            defaults=_section(IntentDefaults, data.get("defaults")),
            controller=_section(ControllerConfig, data.get("controller")),
            api=_section(APIConfig, data.get("api")),
            plugins=_section(PluginConfig, data.get("plugins")),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            load_balancer=LoadBalancerConfig(),
            defaults=IntentDefaults(),
            controller=ControllerConfig(),
            api=APIConfig(),
            plugins=PluginConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        path = path or os.getenv("LB_CONTROLLER_CONFIG")
        config = Config.from_file(path) if path else Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
