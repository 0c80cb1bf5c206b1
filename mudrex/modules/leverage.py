"""Per-asset leverage and margin mode."""

from typing import Any

from .base import MarginType, ModuleClient, Number, path_segment, to_decimal, to_enum


class LeverageAPI(ModuleClient):

    async def get_leverage(self, asset_id: str) -> Any:
        return await self._request("GET", f"/futures/{path_segment(asset_id, 'asset_id')}/leverage")

    async def set_leverage(
        self,
        asset_id: str,
        leverage: Number,
        margin_type: MarginType = MarginType.ISOLATED,
    ) -> Any:
        """Set leverage and margin mode for one asset."""
        path = f"/futures/{path_segment(asset_id, 'asset_id')}/leverage"
        body = {
            "leverage": to_decimal(leverage, "leverage"),
            "margin_type": to_enum(MarginType, margin_type, "margin_type").value,
        }
        return await self._request("POST", path, body=body)
