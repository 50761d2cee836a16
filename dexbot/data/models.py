from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RouteVersion(str, Enum):
    V2 = "v2"
    V3 = "v3"


class PriceQuote(BaseModel):
    source: str
    base: str
    quote: str = "USD"
    price: Decimal
    ts: datetime = Field(default_factory=utcnow)


class TokenInfo(BaseModel):
    address: str
    symbol: str
    decimals: int


class RouteQuote(BaseModel):
    """A single successful quote for one router version / fee tier."""
    route_version: RouteVersion
    fee_tier: Optional[int] = None
    expected_output_amount: Decimal
    raw_amounts: List[int]

    @property
    def raw_output(self) -> int:
        return self.raw_amounts[-1]

    @property
    def label(self) -> str:
        if self.fee_tier is None:
            return self.route_version.value.upper()
        return f"{self.route_version.value.upper()} ({self.fee_tier / 10000:g}%)"


class QuoteResult(BaseModel):
    success: bool
    route_version: RouteVersion
    fee_tier: Optional[int] = None
    quote: Optional[RouteQuote] = None
    error: Optional[str] = None

    @property
    def expected_output_amount(self) -> Optional[Decimal]:
        return self.quote.expected_output_amount if self.quote else None


class RouteComparison(BaseModel):
    best_output: Decimal
    worst_output: Decimal
    total_quotes: int
    total_rejected: int
    improvement: str


class BestRouteResult(BaseModel):
    success: bool
    best_route: Optional[RouteQuote] = None
    all_quotes: List[RouteQuote] = Field(default_factory=list)
    rejected_quotes: List[QuoteResult] = Field(default_factory=list)
    comparison: Optional[RouteComparison] = None
    error: Optional[str] = None


class SwapParams(BaseModel):
    path: List[str]
    amount_in: int
    amount_out_min: int
    recipient: str
    deadline: int
    is_buy: bool
    fee_tier: Optional[int] = None


class SwapReceipt(BaseModel):
    tx_hash: str
    gas_used: int = 0
    gas_cost: Decimal = Decimal("0")
    status_ok: bool
    block_number: Optional[int] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class TokenPrice(BaseModel):
    """Spot price of a token, taken from the best route for one BNB."""
    success: bool
    token_address: str
    symbol: Optional[str] = None
    price_native: Decimal = Decimal("0")
    price_usd: Decimal = Decimal("0")
    route: Optional[str] = None
    error: Optional[str] = None


class Holding(BaseModel):
    symbol: str
    address: Optional[str] = None
    balance: Decimal
    price_usd: Decimal = Decimal("0")
    value_usd: Decimal = Decimal("0")
    is_native: bool = False


class HoldingsReport(BaseModel):
    success: bool
    holdings: List[Holding] = Field(default_factory=list)
    total_value_usd: Decimal = Decimal("0")
    scanned_tokens: int = 0
    found_tokens: int = 0
    error: Optional[str] = None


class WatchResult(BaseModel):
    success: bool
    token_address: str
    symbol: Optional[str] = None
    error: Optional[str] = None
