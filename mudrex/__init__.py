# Mudrex futures API client
# All module calls go through one rate-limited, retrying dispatcher per client

__version__ = "1.0.0"

from .core.errors import ConfigurationError, ErrorKind, MudrexAPIError
from .infra.config import ClientConfig
from .api.credentials import Credentials
from .api.rate_limiter import RateLimiter
from .api.dispatcher import RequestDescriptor, RequestDispatcher
from .modules import MarginType, OrderSide, OrderType, WalletType
from .client import MudrexClient

__all__ = [
    "__version__",
    "MudrexClient",
    "ClientConfig",
    "Credentials",
    "RateLimiter",
    "RequestDescriptor",
    "RequestDispatcher",
    "MudrexAPIError",
    "ErrorKind",
    "ConfigurationError",
    "OrderSide",
    "OrderType",
    "MarginType",
    "WalletType",
]
