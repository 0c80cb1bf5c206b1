# Modules - thin façades over the shared RequestDispatcher
# One instance of each per client; all share one rate-limit bucket

from .base import MarginType, ModuleClient, OrderSide, OrderType, WalletType
from .wallet import WalletAPI
from .assets import AssetsAPI
from .leverage import LeverageAPI
from .orders import OrdersAPI
from .positions import PositionsAPI
from .fees import FeesAPI

__all__ = [
    "ModuleClient",
    "OrderSide",
    "OrderType",
    "MarginType",
    "WalletType",
    "WalletAPI",
    "AssetsAPI",
    "LeverageAPI",
    "OrdersAPI",
    "PositionsAPI",
    "FeesAPI",
]
