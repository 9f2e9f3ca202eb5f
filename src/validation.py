"""
Schema Validation - JSON Schema validation of exposure manifests.

Manifests reach the controller through the HTTP API and the lbctl CLI;
both validate them here before building an ExposureRequest.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, ValidationError

logger = logging.getLogger(__name__)

_NAME_PATTERN = "^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"

EXPOSURE_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["metadata", "spec"],
    "properties": {
        "metadata": {
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string", "pattern": _NAME_PATTERN, "maxLength": 63},
                "namespace": {
                    "type": "string",
                    "pattern": _NAME_PATTERN,
                    "maxLength": 63,
                },
                "annotations": {
                    "type": "object",
                    "additionalProperties": {"type": "string"},
                },
            },
        },
        "spec": {
            "type": "object",
            "required": ["ports"],
            "properties": {
                "ports": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["port"],
                        "properties": {
                            "name": {"type": "string"},
                            "protocol": {
                                "type": "string",
                                "enum": ["TCP", "UDP", "tcp", "udp"],
                            },
                            "port": {"type": "integer", "minimum": 1, "maximum": 65535},
                            "nodePort": {
                                "type": "integer",
                                "minimum": 1,
                                "maximum": 65535,
                            },
                        },
                    },
                },
                "endpoints": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["address"],
                        "properties": {
                            "serverId": {"type": "string", "minLength": 1},
                            "address": {"type": "string", "format": "ipv4"},
                            "name": {"type": "string"},
                            "port": {
                                "type": ["integer", "null"],
                                "minimum": 1,
                                "maximum": 65535,
                            },
                            "weight": {"type": "integer", "minimum": 0},
                            "annotations": {
                                "type": "object",
                                "additionalProperties": {"type": "string"},
                            },
                        },
                    },
                },
                "selector": {
                    "type": "object",
                    "additionalProperties": {"type": "string"},
                },
            },
        },
    },
}


def validate_spec_against_schema(
    spec: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a document against a JSON Schema.

    Args:
        spec: The document to validate
        schema: The Draft 7 JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        validator = Draft7Validator(schema, format_checker=Draft7Validator.FORMAT_CHECKER)
        errors = sorted(
            validator.iter_errors(spec),
            key=lambda e: [str(p) for p in e.absolute_path],
        )

        if not errors:
            return True, None

        error_messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            error_messages.append(f"{path}: {error.message}")

        return False, "; ".join(error_messages)

    except ValidationError as e:
        return False, f"Validation error: {str(e)}"


def validate_exposure_manifest(manifest: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate an exposure manifest.

    Beyond the schema, port numbers must be unique per protocol.

    Returns:
        Tuple of (is_valid, error_message)
    """
    valid, error = validate_spec_against_schema(manifest, EXPOSURE_SCHEMA)
    if not valid:
        return valid, error

    seen = set()
    for index, port in enumerate(manifest["spec"]["ports"]):
        key = (port.get("protocol", "TCP").upper(), port["port"])
        if key in seen:
            return False, f"spec.ports.{index}: duplicate port {key[0]}/{key[1]}"
        seen.add(key)
    return True, None
