"""Configuration: YAML + env overlay."""

from relaybot.config.loader import load_config, load_config_with_env
from relaybot.config.schema import Config

__all__ = ["Config", "load_config", "load_config_with_env"]
