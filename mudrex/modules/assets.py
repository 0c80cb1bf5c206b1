"""Tradable futures contracts."""

from typing import Any, Optional

from .base import ModuleClient, pagination, path_segment


class AssetsAPI(ModuleClient):

    async def list_assets(
        self,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
        sort: Optional[str] = None,
        order: Optional[str] = None,
    ) -> Any:
        """List tradable assets, optionally paginated and sorted."""
        query = pagination(offset, limit)
        query.update({"sort": sort, "order": order})
        return await self._request("GET", "/assets", query=query)

    async def get_asset(self, asset_id: str) -> Any:
        return await self._request("GET", f"/assets/{path_segment(asset_id, 'asset_id')}")
