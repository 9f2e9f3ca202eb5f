"""
Intent extraction - derive the desired load balancer state from a request.

Each tunable is read from a well-known annotation and falls back to the
configured default when the annotation is absent or unparsable.
"""

import logging
from typing import Mapping, Optional

from config import IntentDefaults
from errors import NoPortsConfigured
from models import DesiredState, ExposureRequest

logger = logging.getLogger(__name__)

# Load balancer visibility (internal vs internet-facing)
ANNOTATION_INTERNAL = "service.beta.kubernetes.io/inspur-internal-load-balancer"
# Listener forwarding rule
ANNOTATION_FORWARD_RULE = "loadbalancer.inspur.com/forward-rule"
# Listener health check toggle
ANNOTATION_HEALTH_CHECK = "loadbalancer.inspur.com/is-healthcheck"

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def get_annotation(
    annotations: Mapping[str, str], key: str, default: Optional[str]
) -> Optional[str]:
    """
    Return the annotation value for key, or default when it is absent.

    A present annotation is returned verbatim, including the empty string.
    """
    if key in annotations:
        value = annotations[key]
        logger.debug(f"Found annotation {key}={value!r}")
        return value
    logger.debug(f"Annotation {key} not set, falling back to default {default!r}")
    return default


def parse_bool(value: Optional[str]) -> Optional[bool]:
    """Parse a boolean-ish string; returns None when it isn't one."""
    if value is None:
        return None
    value = value.strip()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    return None


def _bool_annotation(
    annotations: Mapping[str, str], key: str, default: bool
) -> bool:
    raw = get_annotation(annotations, key, None)
    parsed = parse_bool(raw)
    if parsed is None:
        if raw is not None:
            logger.warning(
                f"Annotation {key}={raw!r} is not a boolean, using default {default}"
            )
        return default
    return parsed


def is_internal(request: ExposureRequest, defaults: IntentDefaults) -> bool:
    """Whether the load balancer should be exposed on its business IP only."""
    return _bool_annotation(request.annotations, ANNOTATION_INTERNAL, defaults.internal)


def extract_intent(request: ExposureRequest, defaults: IntentDefaults) -> DesiredState:
    """
    Derive the desired state for an exposure request.

    Raises:
        NoPortsConfigured: If the request declares no ports.
    """
    if not request.ports:
        raise NoPortsConfigured(request.key)

    annotations = request.annotations
    forward_rule = get_annotation(
        annotations, ANNOTATION_FORWARD_RULE, defaults.forward_rule
    )
    return DesiredState(
        forward_rule=forward_rule,
        health_check=_bool_annotation(
            annotations, ANNOTATION_HEALTH_CHECK, defaults.health_check
        ),
        ports=tuple(request.ports),
        internal=is_internal(request, defaults),
    )
