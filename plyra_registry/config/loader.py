"""
Configuration Loader
~~~~~~~~~~~~~~~~~~~~

Reads ``registry_config.yaml`` and turns it into a validated
:class:`RegistryConfig`.

The file is optional. Sections it names (``registry``, ``backup``,
``history``, ``approval``, ``apply``, ``validation``, ``transpile``,
``deploy``, ``git``, ``lock``) are laid over the built-in defaults key
by key, so a file that only sets ``backup.keep`` keeps every other
default. Without an explicit path the loader looks for
``registry_config.yaml`` in the working directory.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import yaml
from pydantic import ValidationError

from plyra_registry.config.defaults import DEFAULT_CONFIG
from plyra_registry.config.schema import RegistryConfig
from plyra_registry.exceptions import ConfigFileNotFoundError, ConfigValidationError

__all__ = ["DEFAULT_CONFIG_FILE", "load_config", "load_config_from_dict"]

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "registry_config.yaml"


def _overlay(defaults: dict, overrides: dict) -> dict:
    """Return ``defaults`` with ``overrides`` laid on top, section by section."""
    combined = dict(defaults)
    for key, value in overrides.items():
        current = combined.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            combined[key] = _overlay(current, value)
        else:
            combined[key] = value
    return combined


def _read_yaml(path: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"{path} is not valid YAML: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError(
            f"{path} must hold a mapping of config sections, got {type(data).__name__}"
        )
    return data


def load_config(path: str | None = None) -> RegistryConfig:
    """
    Build the configuration for a registry run.

    Args:
        path: YAML file to read. When omitted, ``registry_config.yaml``
            in the working directory is used if it exists; otherwise the
            defaults apply unchanged.

    Raises:
        ConfigFileNotFoundError: ``path`` was given but does not exist.
        ConfigValidationError: The file is not YAML, not a mapping, or
            holds values the schema rejects.
    """
    if path is None:
        if not os.path.isfile(DEFAULT_CONFIG_FILE):
            logger.debug("No %s found; using defaults", DEFAULT_CONFIG_FILE)
            return load_config_from_dict({})
        path = DEFAULT_CONFIG_FILE
    elif not os.path.exists(path):
        raise ConfigFileNotFoundError(f"Configuration file not found: {path}")

    sections = _read_yaml(path)
    logger.debug("Read config sections %s from %s", sorted(sections), path)
    return load_config_from_dict(sections)


def load_config_from_dict(data: dict[str, Any]) -> RegistryConfig:
    """Validate ``data`` laid over the defaults; raises ConfigValidationError."""
    try:
        return RegistryConfig(**_overlay(DEFAULT_CONFIG, data))
    except ValidationError as exc:
        raise ConfigValidationError(f"Invalid registry configuration: {exc}") from exc
