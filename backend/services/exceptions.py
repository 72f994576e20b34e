"""
Trading error taxonomy. Every failure carries a machine-checkable ``kind``
and a human-readable ``reason``; the API layer renders both.
"""


class TradingError(Exception):
    kind = "TradingError"
    status_code = 400

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.reason}


class InsufficientFunds(TradingError):
    kind = "InsufficientFunds"


class InsufficientShares(TradingError):
    kind = "InsufficientShares"


class MarketClosed(TradingError):
    kind = "MarketClosed"
    status_code = 403


class InstrumentNotFound(TradingError):
    kind = "InstrumentNotFound"
    status_code = 404


class WalletNotFound(TradingError):
    kind = "WalletNotFound"
    status_code = 404


class IntentNotFound(TradingError):
    kind = "IntentNotFound"
    status_code = 404


class LimitExceeded(TradingError):
    kind = "LimitExceeded"


class StoreUnavailable(TradingError):
    kind = "StoreUnavailable"
    status_code = 503


class InvalidSchedule(TradingError):
    """Session hours or a date range that cannot describe any trading time."""
    kind = "InvalidSchedule"
    status_code = 422
