# API module - request runtime
# Credentials + RateLimiter + error classification composed by RequestDispatcher

from .credentials import Credentials
from .rate_limiter import Permit, RateLimiter
from .dispatcher import RequestDescriptor, RequestDispatcher

__all__ = ["Credentials", "Permit", "RateLimiter", "RequestDescriptor", "RequestDispatcher"]
