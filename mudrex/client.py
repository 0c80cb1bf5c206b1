"""
Mudrex Client
-------------
Composition root: one config, one dispatcher, one rate-limit bucket,
six module façades sharing them.

Usage:
    async with MudrexClient("your-api-key") as client:
        funds = await client.wallet.get_futures_balance()
        order = await client.orders.create_order("BTCUSDT", OrderSide.LONG, "0.01")
"""

from typing import Any, Optional

import httpx

from .api.dispatcher import RequestDispatcher
from .infra.config import ClientConfig
from .modules import AssetsAPI, FeesAPI, LeverageAPI, OrdersAPI, PositionsAPI, WalletAPI


class MudrexClient:
    """
    Async client for the Mudrex futures API.

    Build a new client to rotate keys; a client's credentials never change.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        config: Optional[ClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **overrides: Any,
    ):
        """
        Args:
            api_key: API key (ignored when config is given)
            config: Complete configuration
            transport: Alternative httpx transport, mainly for tests
            **overrides: ClientConfig fields, e.g. rate_limit=1, max_retries=5
        """
        if config is None:
            config = ClientConfig(api_key=api_key or "", **overrides)
        elif overrides:
            config = config.with_overrides(**overrides)

        self.config = config
        self.dispatcher = RequestDispatcher(config, transport=transport)

        self.wallet = WalletAPI(self.dispatcher)
        self.assets = AssetsAPI(self.dispatcher)
        self.leverage = LeverageAPI(self.dispatcher)
        self.orders = OrdersAPI(self.dispatcher)
        self.positions = PositionsAPI(self.dispatcher)
        self.fees = FeesAPI(self.dispatcher)

    @classmethod
    def from_env(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "MudrexClient":
        """Build a client from MUDREX_* environment variables."""
        return cls(config=ClientConfig.from_env(), transport=transport)

    async def aclose(self) -> None:
        await self.dispatcher.aclose()

    async def __aenter__(self) -> "MudrexClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return (
            f"MudrexClient(base_url={self.dispatcher.credentials.base_url!r}, "
            f"key={self.dispatcher.credentials.masked_key!r}, "
            f"rate_limit={self.config.rate_limit:g})"
        )
