"""
Bridge Configuration Module

Provides centralized configuration management for the WhatsApp bridge.
"""

from .schema import (
    BridgeConfig,
    LoggingConfig,
    ServerConfig,
    SessionConfig,
    SupabaseConfig,
    WebhookConfig,
)
from .loader import load_config, load_config_from_file

__all__ = [
    "BridgeConfig",
    "LoggingConfig",
    "ServerConfig",
    "SessionConfig",
    "SupabaseConfig",
    "WebhookConfig",
    "load_config",
    "load_config_from_file",
]
