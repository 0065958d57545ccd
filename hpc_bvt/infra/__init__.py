"""
Infrastructure module - configuration, logging and transport options.
"""

from .config import (
    Credentials,
    BvtConfig,
    load_config,
    TERMINAL_STATE,
)

from .logging_config import setup_logging

from .tls import client_ssl_context

__all__ = [
    # config
    "Credentials",
    "BvtConfig",
    "load_config",
    "TERMINAL_STATE",
    # logging
    "setup_logging",
    # tls
    "client_ssl_context",
]
