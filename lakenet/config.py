"""
LAKENET Configuration
=====================

Default parameters, YAML loading and schema validation for LAKENET runs.

Configuration layers (highest to lowest priority):
1. Runtime overrides (CLI / caller)
2. YAML configuration file
3. Built-in defaults
"""

import logging
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional, Union

import jsonschema
import yaml
from pyproj import CRS
from pyproj.exceptions import CRSError

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "crs": "EPSG:3005",  # BC Albers, metres; every layer is reprojected to it
    "tolerances": {
        "lake_buffer": 3.0,
        "river_buffer": 7.0,
        "boundary_margin": 1000.0,
        "min_region_part_area": 1_000_000.0,  # m²
    },
    "columns": {
        "region_id": "region_id",
        "waterbody_key": "waterbody_key",
        "watershed_group_id": "watershed_group_id",
        "name": "gnis_name",
        "river_id": None,
    },
    "layers": {
        "regions": None,
        "lakes": None,
        "rivers": None,
    },
    "processing": {
        "workers": 1,
        "show_progress": True,
    },
    "store": {
        "directory": "lakenet_store",
    },
    "output": {
        "final_table": "lake_networks.csv",
        "checkpoint_table": "lake_checkpoint.csv",
    },
    "logging": {
        "level": "INFO",
        "log_dir": None,
    },
}

_POSITIVE = {"type": "number", "exclusiveMinimum": 0}
_OPTIONAL_STRING = {"type": ["string", "null"]}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "crs": {"type": "string"},
        "tolerances": {
            "type": "object",
            "properties": {
                "lake_buffer": _POSITIVE,
                "river_buffer": _POSITIVE,
                "boundary_margin": _POSITIVE,
                "min_region_part_area": {"type": "number", "minimum": 0},
            },
            "required": [
                "lake_buffer",
                "river_buffer",
                "boundary_margin",
                "min_region_part_area",
            ],
        },
        "columns": {
            "type": "object",
            "properties": {
                "region_id": {"type": "string"},
                "waterbody_key": {"type": "string"},
                "watershed_group_id": {"type": "string"},
                "name": {"type": "string"},
                "river_id": _OPTIONAL_STRING,
            },
        },
        "layers": {
            "type": "object",
            "properties": {
                "regions": _OPTIONAL_STRING,
                "lakes": _OPTIONAL_STRING,
                "rivers": _OPTIONAL_STRING,
            },
        },
        "processing": {
            "type": "object",
            "properties": {
                "workers": {"type": "integer", "minimum": 1},
                "show_progress": {"type": "boolean"},
            },
        },
        "store": {
            "type": "object",
            "properties": {"directory": {"type": "string"}},
        },
        "output": {
            "type": "object",
            "properties": {
                "final_table": {"type": "string"},
                "checkpoint_table": {"type": "string"},
            },
        },
        "logging": {
            "type": "object",
            "properties": {
                "level": {
                    "type": "string",
                    "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                },
                "log_dir": _OPTIONAL_STRING,
            },
        },
    },
    "required": ["crs", "tolerances", "columns", "processing"],
}


def deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dictionaries, with overlay taking precedence.

    Args:
        base: Base dictionary
        overlay: Overlay dictionary

    Returns:
        Merged dictionary
    """
    result = deepcopy(base)

    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = deepcopy(value)

    return result


def _load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """Load and parse YAML file."""
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {file_path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Failed to load {file_path}: {e}")

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(f"Configuration in {file_path} must be a mapping")
    return content


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration against the JSON schema and check the CRS.

    Raises:
        ConfigurationError: If validation fails
    """
    try:
        jsonschema.validate(config, CONFIG_SCHEMA)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigurationError(f"Configuration validation failed at {path}: {e.message}")
    except jsonschema.SchemaError as e:
        raise ConfigurationError(f"Invalid schema: {e.message}")

    try:
        crs = CRS.from_user_input(config["crs"])
    except CRSError as e:
        raise ConfigurationError(f"Unknown CRS {config['crs']!r}: {e}")
    if crs.is_geographic:
        raise ConfigurationError(
            f"CRS {config['crs']!r} is geographic; tolerances are lengths in CRS units "
            f"and need a projected CRS"
        )


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Load configuration from YAML file or use defaults.

    Args:
        config_path: Optional path to a YAML configuration file
        overrides: Optional runtime overrides merged last

    Returns:
        Validated configuration dictionary

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    config = deepcopy(DEFAULT_CONFIG)

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")
        config = deep_merge(config, _load_yaml_file(path))
        logger.info(f"Loaded configuration from {path}")
    else:
        logger.debug("Using default configuration")

    if overrides:
        config = deep_merge(config, overrides)

    validate_config(config)
    return config
