"""Wallet balances and transfers between the spot and futures wallets."""

from typing import Any

from .base import ModuleClient, Number, WalletType, invalid, to_decimal, to_enum


class WalletAPI(ModuleClient):
    """Spot and futures wallet endpoints."""

    async def get_spot_balance(self) -> Any:
        return await self._request("GET", "/wallet/funds")

    async def get_futures_balance(self) -> Any:
        return await self._request("GET", "/wallet/futures/funds")

    async def transfer(
        self,
        amount: Number,
        from_wallet: WalletType = WalletType.SPOT,
        to_wallet: WalletType = WalletType.FUTURES,
    ) -> Any:
        """
        Move funds between wallets.

        Args:
            amount: Positive amount in the settlement currency
            from_wallet: Source wallet
            to_wallet: Destination wallet, must differ from the source
        """
        source = to_enum(WalletType, from_wallet, "from_wallet")
        destination = to_enum(WalletType, to_wallet, "to_wallet")
        if source is destination:
            raise invalid(f"Cannot transfer from {source.value} to itself")

        body = {
            "from_wallet_type": source.value,
            "to_wallet_type": destination.value,
            "amount": to_decimal(amount, "amount"),
        }
        return await self._request("POST", "/wallet/futures/transfer", body=body)
