"""
Trade ledger - persisted trade records and FIFO realized-profit accounting
"""

from .models import (
    ConsumedLot,
    Ledger,
    LedgerSummary,
    LotStatus,
    OpenPosition,
    SellOutcome,
    TradeKind,
    TradeRecord,
    TradingStatistics,
)
from .store import LedgerStore, WatchedTokenStore
from .accounting import PositionAccountingEngine

__all__ = [
    "ConsumedLot",
    "Ledger",
    "LedgerSummary",
    "LotStatus",
    "OpenPosition",
    "SellOutcome",
    "TradeKind",
    "TradeRecord",
    "TradingStatistics",
    "LedgerStore",
    "WatchedTokenStore",
    "PositionAccountingEngine",
]
