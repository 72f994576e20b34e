from schemas.user import (
    UserCreate,
    UserResponse,
    Token,
    RegisterResponse
)
from schemas.instrument import (
    InstrumentResponse,
    InstrumentSnapshot
)
from schemas.wallet import (
    WalletAmount,
    WalletResponse,
    WalletMutationResponse
)
from schemas.trade import (
    TradeSubmit,
    TradeIntentResponse,
    TradeOutcomeResponse,
    OrderStatusResponse,
    CancelResponse,
    LedgerEntryResponse
)
from schemas.portfolio import (
    HoldingResponse,
    PortfolioSummary
)
from schemas.market import (
    MarketStatusResponse,
    Holiday,
    SystemSettingsResponse,
    SystemSettingsUpdate,
    SeedHistoryRequest,
    SeedHistoryResponse
)

__all__ = [
    # User
    "UserCreate", "UserResponse", "Token", "RegisterResponse",
    # Instrument
    "InstrumentResponse", "InstrumentSnapshot",
    # Wallet
    "WalletAmount", "WalletResponse", "WalletMutationResponse",
    # Trade
    "TradeSubmit", "TradeIntentResponse", "TradeOutcomeResponse", "OrderStatusResponse",
    "CancelResponse", "LedgerEntryResponse",
    # Portfolio
    "HoldingResponse", "PortfolioSummary",
    # Market
    "MarketStatusResponse", "Holiday", "SystemSettingsResponse", "SystemSettingsUpdate",
    "SeedHistoryRequest", "SeedHistoryResponse"
]
