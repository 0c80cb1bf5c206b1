"""Trading fee history."""

from typing import Any, Optional

from .base import ModuleClient, pagination


class FeesAPI(ModuleClient):

    async def get_fee_history(self, offset: Optional[int] = None, limit: Optional[int] = None) -> Any:
        return await self._request("GET", "/fees/history", query=pagination(offset, limit))
