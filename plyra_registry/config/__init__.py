"""Configuration loading and validation."""

from plyra_registry.config.defaults import DEFAULT_CONFIG
from plyra_registry.config.loader import load_config, load_config_from_dict
from plyra_registry.config.schema import RegistryConfig

__all__ = ["DEFAULT_CONFIG", "RegistryConfig", "load_config", "load_config_from_dict"]
