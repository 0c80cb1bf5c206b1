"""Open positions, position history, closing and risk orders."""

from typing import Any, Dict, Optional

from .base import ModuleClient, Number, invalid, pagination, path_segment, to_decimal


class PositionsAPI(ModuleClient):
    """Position endpoints."""

    async def list_open_positions(self) -> Any:
        return await self._request("GET", "/positions")

    async def get_position_history(self, offset: Optional[int] = None, limit: Optional[int] = None) -> Any:
        return await self._request("GET", "/positions/history", query=pagination(offset, limit))

    async def close_position(self, position_id: str, quantity: Optional[Number] = None) -> Any:
        """Close a position fully, or partially when quantity is given."""
        path = f"/positions/{path_segment(position_id, 'position_id')}/close"
        body: Dict[str, Any] = {}
        if quantity is not None:
            body["quantity"] = to_decimal(quantity, "quantity")
        return await self._request("POST", path, body=body)

    async def set_risk_order(
        self,
        position_id: str,
        stoploss_price: Optional[Number] = None,
        takeprofit_price: Optional[Number] = None,
    ) -> Any:
        """Attach or replace the stop-loss / take-profit of a position."""
        path = f"/positions/{path_segment(position_id, 'position_id')}"
        if stoploss_price is None and takeprofit_price is None:
            raise invalid("set_risk_order needs a stop-loss or take-profit price", "PATCH", path)

        body: Dict[str, Any] = {}
        if stoploss_price is not None:
            body["is_stoploss"] = True
            body["stoploss_price"] = to_decimal(stoploss_price, "stoploss_price")
        if takeprofit_price is not None:
            body["is_takeprofit"] = True
            body["takeprofit_price"] = to_decimal(takeprofit_price, "takeprofit_price")
        return await self._request("PATCH", path, body=body)
