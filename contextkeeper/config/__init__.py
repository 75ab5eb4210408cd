"""Configuration module for contextkeeper."""

from contextkeeper.config.loader import load_config, get_config_path
from contextkeeper.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
