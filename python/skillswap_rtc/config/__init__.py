"""Configuration module."""
from .settings import SignalingConfig, get_config, reset_config
from .logging import setup_logging, get_logger

__all__ = ["SignalingConfig", "get_config", "reset_config", "setup_logging", "get_logger"]
