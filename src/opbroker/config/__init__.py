"""Broker configuration models and loading."""

from .loader import build_config, find_config_file, load_config
from .models import BrokerConfigModel

__all__ = ["BrokerConfigModel", "build_config", "find_config_file", "load_config"]
