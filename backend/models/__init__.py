from models.user import User
from models.instrument import Instrument
from models.wallet import Wallet, WalletTransaction
from models.position import Position
from models.trade import TradeLedgerEntry
from models.price_snapshot import PriceSnapshot
from models.system_settings import SystemSettings

__all__ = [
    "User",
    "Instrument",
    "Wallet",
    "WalletTransaction",
    "Position",
    "TradeLedgerEntry",
    "PriceSnapshot",
    "SystemSettings",
]
