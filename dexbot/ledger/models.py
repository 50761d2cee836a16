"""
Ledger data model - trade records, realized-profit fragments and the
aggregate summary persisted alongside them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..data.models import utcnow


ZERO = Decimal("0")


class TradeKind(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class LotStatus(str, Enum):
    HOLDING = "HOLDING"
    SOLD = "SOLD"


class ConsumedLot(BaseModel):
    """Slice of a BUY lot matched against a SELL"""
    source_buy_id: str
    tokens_consumed: Decimal
    cost_consumed: Decimal
    gas_consumed: Decimal


class TradeRecord(BaseModel):
    id: str
    kind: TradeKind
    token_address: str
    token_symbol: str
    native_amount: Decimal
    token_amount: Decimal
    reference_price: Decimal = ZERO
    gas_cost: Decimal = ZERO
    timestamp: datetime = Field(default_factory=utcnow)
    tx_hash: str

    # BUY only
    status: Optional[LotStatus] = None
    original_token_amount: Optional[Decimal] = None
    original_native_amount: Optional[Decimal] = None
    original_gas_cost: Optional[Decimal] = None

    # SELL only
    total_cost_basis: Optional[Decimal] = None
    profit: Optional[Decimal] = None
    profit_percentage: Optional[Decimal] = None
    consumed_lots: List[ConsumedLot] = Field(default_factory=list)

    @field_validator("token_address")
    @classmethod
    def _normalize_address(cls, value: str) -> str:
        return value.lower()

    @property
    def is_holding(self) -> bool:
        return self.kind == TradeKind.BUY and self.status == LotStatus.HOLDING


class LedgerSummary(BaseModel):
    total_trades: int = 0
    total_profit: Decimal = ZERO
    total_loss: Decimal = ZERO
    win_rate: Decimal = ZERO
    last_updated: Optional[datetime] = None


class Ledger(BaseModel):
    trades: List[TradeRecord] = Field(default_factory=list)
    summary: LedgerSummary = Field(default_factory=LedgerSummary)

    def find(self, record_id: str) -> Optional[TradeRecord]:
        for record in self.trades:
            if record.id == record_id:
                return record
        return None

    def sells(self) -> List[TradeRecord]:
        return [t for t in self.trades if t.kind == TradeKind.SELL]


class SellOutcome(BaseModel):
    record_id: str
    profit: Decimal
    profit_percentage: Decimal
    total_cost_basis: Decimal
    revenue: Decimal
    consumed_lots: List[ConsumedLot] = Field(default_factory=list)


class OpenPosition(BaseModel):
    token_address: str
    token_symbol: str
    total_tokens: Decimal
    total_cost: Decimal
    avg_cost: Decimal
    lot_count: int


class TradingStatistics(BaseModel):
    total_trades: int
    buy_count: int
    sell_count: int
    total_profit: Decimal
    total_loss: Decimal
    net_profit: Decimal
    win_rate: Decimal
    open_position_count: int
    average_profit: Decimal
    average_loss: Decimal
    profit_loss_ratio: Optional[Decimal] = None
