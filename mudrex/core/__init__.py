# Core module - error taxonomy, classification, retry policy, request lifecycle

from .errors import (
    ConfigurationError,
    ErrorKind,
    MudrexAPIError,
    RetryPolicy,
    classify,
)
from .state_machine import RequestLifecycle, RequestState, StateTransition

__all__ = [
    "ConfigurationError",
    "ErrorKind",
    "MudrexAPIError",
    "RetryPolicy",
    "classify",
    "RequestLifecycle",
    "RequestState",
    "StateTransition",
]
