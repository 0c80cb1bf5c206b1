"""
Orders
------
Create, inspect, amend and cancel futures orders.

Note: POST/PATCH/DELETE calls here are retried by the dispatcher after a
transport failure unless the client was built with
retry_non_idempotent=False; a retried create_order can be placed twice.
"""

from typing import Any, Dict, Optional

from .base import (
    ModuleClient,
    Number,
    OrderSide,
    OrderType,
    invalid,
    pagination,
    path_segment,
    require_id,
    to_decimal,
    to_enum,
)


class OrdersAPI(ModuleClient):
    """Order endpoints."""

    async def create_order(
        self,
        asset_id: str,
        side: OrderSide,
        quantity: Number,
        order_type: OrderType = OrderType.MARKET,
        price: Optional[Number] = None,
        leverage: Optional[Number] = None,
        stoploss_price: Optional[Number] = None,
        takeprofit_price: Optional[Number] = None,
        reduce_only: bool = False,
    ) -> Any:
        """
        Place an order.

        Args:
            asset_id: Contract to trade
            side: LONG or SHORT
            quantity: Positive contract quantity
            order_type: MARKET or LIMIT; LIMIT requires price
            price: Limit price
            leverage: Optional leverage to apply with the order
            stoploss_price: Optional stop-loss trigger price
            takeprofit_price: Optional take-profit trigger price
            reduce_only: Only reduce an existing position
        """
        kind = to_enum(OrderType, order_type, "order_type")
        if kind is OrderType.LIMIT and price is None:
            raise invalid("price is required for LIMIT orders")

        body: Dict[str, Any] = {
            "asset_id": require_id(asset_id, "asset_id"),
            "order_type": to_enum(OrderSide, side, "side").value,
            "trigger_type": kind.value,
            "quantity": to_decimal(quantity, "quantity"),
            "reduce_only": bool(reduce_only),
        }
        if price is not None:
            body["order_price"] = to_decimal(price, "price")
        if leverage is not None:
            body["leverage"] = to_decimal(leverage, "leverage")
        if stoploss_price is not None:
            body["is_stoploss"] = True
            body["stoploss_price"] = to_decimal(stoploss_price, "stoploss_price")
        if takeprofit_price is not None:
            body["is_takeprofit"] = True
            body["takeprofit_price"] = to_decimal(takeprofit_price, "takeprofit_price")

        return await self._request("POST", "/orders", body=body)

    async def list_open_orders(self) -> Any:
        return await self._request("GET", "/orders")

    async def get_order(self, order_id: str) -> Any:
        return await self._request("GET", f"/orders/{path_segment(order_id, 'order_id')}")

    async def get_order_history(self, offset: Optional[int] = None, limit: Optional[int] = None) -> Any:
        return await self._request("GET", "/orders/history", query=pagination(offset, limit))

    async def amend_order(
        self,
        order_id: str,
        price: Optional[Number] = None,
        quantity: Optional[Number] = None,
    ) -> Any:
        """Change the price and/or quantity of an open order."""
        path = f"/orders/{path_segment(order_id, 'order_id')}"
        if price is None and quantity is None:
            raise invalid("amend_order needs a price or a quantity", "PATCH", path)

        body: Dict[str, Any] = {}
        if price is not None:
            body["order_price"] = to_decimal(price, "price")
        if quantity is not None:
            body["quantity"] = to_decimal(quantity, "quantity")
        return await self._request("PATCH", path, body=body)

    async def cancel_order(self, order_id: str) -> Any:
        return await self._request("DELETE", f"/orders/{path_segment(order_id, 'order_id')}")
