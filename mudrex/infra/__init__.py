# Infrastructure module - logging and configuration
# Logging must import first: config and core both depend on it

from .logging import (
    RequestContext,
    configure_logging,
    get_logger,
    get_request_id,
    register_secret,
    unregister_secret,
)
from .config import ClientConfig

__all__ = [
    "RequestContext",
    "configure_logging",
    "get_logger",
    "get_request_id",
    "register_secret",
    "unregister_secret",
    "ClientConfig",
]
