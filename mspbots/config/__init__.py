"""Configuration module for mspbots."""

from mspbots.config.loader import get_config_path, load_config, save_config
from mspbots.config.schema import Config

__all__ = ["Config", "load_config", "save_config", "get_config_path"]
