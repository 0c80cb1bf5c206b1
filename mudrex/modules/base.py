"""
Module Client Base
------------------
Shared plumbing for the six API façades.

Each façade maps its parameters to a RequestDescriptor and hands it to the
client's single RequestDispatcher; none of them holds state of its own.
"""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional, Union
from urllib.parse import quote

from ..api.dispatcher import RequestDescriptor, RequestDispatcher
from ..core.errors import ErrorKind, MudrexAPIError

Number = Union[int, float, str, Decimal]


class OrderSide(str, Enum):
    """Position direction of an order."""
    LONG = "LONG"
    SHORT = "SHORT"


class OrderType(str, Enum):
    """How an order is triggered."""
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class MarginType(str, Enum):
    ISOLATED = "ISOLATED"
    CROSS = "CROSS"


class WalletType(str, Enum):
    SPOT = "SPOT"
    FUTURES = "FUTURES"


def invalid(message: str, method: str = "", path: str = "") -> MudrexAPIError:
    """A VALIDATION error raised before anything is sent."""
    return MudrexAPIError(kind=ErrorKind.VALIDATION, message=message, method=method, path=path)


def require_id(value: Any, name: str) -> str:
    if value is None or not str(value).strip():
        raise invalid(f"{name} is required")
    return str(value).strip()


def path_segment(value: Any, name: str) -> str:
    """Validate an identifier and quote it for use in a URL path."""
    return quote(require_id(value, name), safe="")


def to_decimal(value: Number, name: str) -> Decimal:
    """Convert a user-supplied number to a positive Decimal."""
    if isinstance(value, bool):
        raise invalid(f"{name} must be a number, got {value!r}")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise invalid(f"{name} must be a number, got {value!r}") from None
    if not number.is_finite() or number <= 0:
        raise invalid(f"{name} must be positive, got {value!r}")
    return number


def to_enum(enum_type: type, value: Any, name: str) -> Enum:
    try:
        return enum_type(value.upper() if isinstance(value, str) else value)
    except ValueError:
        valid = [member.value for member in enum_type]
        raise invalid(f"{name} must be one of {valid}, got {value!r}") from None


def pagination(offset: Optional[int], limit: Optional[int]) -> dict:
    if offset is not None and (isinstance(offset, bool) or not isinstance(offset, int) or offset < 0):
        raise invalid(f"offset must be a non-negative integer, got {offset!r}")
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0):
        raise invalid(f"limit must be a positive integer, got {limit!r}")
    return {"offset": offset, "limit": limit}


def unwrap(payload: Any) -> Any:
    """Strip the {"success": ..., "data": ...} envelope when present."""
    if isinstance(payload, dict) and "data" in payload and "success" in payload:
        return payload["data"]
    return payload


class ModuleClient:
    """Base class for API façades sharing one dispatcher."""

    def __init__(self, dispatcher: RequestDispatcher):
        self._dispatcher = dispatcher

    async def _request(
        self,
        method: str,
        path: str,
        query: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> Any:
        payload = await self._dispatcher.execute(
            RequestDescriptor(method, path, query or {}, body)
        )
        return unwrap(payload)
