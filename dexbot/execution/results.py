"""
Trade result variants returned by the orchestrator
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from ..data.models import RouteQuote, utcnow
from ..ledger.models import SellOutcome
from .errors import TradeErrorKind, format_error


class TradeStep(Enum):
    """States of the buy/sell state machine"""
    VALIDATE_INPUT = "validate_input"
    VALIDATE_TOKEN = "validate_token"
    GET_BEST_ROUTE = "get_best_route"
    COMPUTE_MIN_OUTPUT = "compute_min_output"
    AUTHORIZE = "authorize"
    SUBMIT_SWAP = "submit_swap"
    AWAIT_RECEIPT = "await_receipt"
    RECORD_LEDGER = "record_ledger"
    EMIT_NOTIFICATION = "emit_notification"
    DONE = "done"
    FAILED = "failed"


class TradeSuccess(BaseModel):
    success: Literal[True] = True
    side: Literal["buy", "sell"]
    token_address: str
    token_symbol: str
    tx_hash: str
    route: RouteQuote
    amount_in: Decimal
    expected_output: Decimal
    amount_out: Decimal
    amount_out_min: int
    gas_used: int
    gas_cost: Decimal
    slippage_percent: Decimal
    approval_tx_hash: Optional[str] = None
    ledger_record_id: Optional[str] = None
    sell_outcome: Optional[SellOutcome] = None
    notification_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def ledger_recorded(self) -> bool:
        return self.ledger_record_id is not None

    @property
    def message(self) -> str:
        verb = "Bought" if self.side == "buy" else "Sold"
        return f"{verb} {self.token_symbol} via {self.route.label}"


class TradeFailure(BaseModel):
    success: Literal[False] = False
    side: Literal["buy", "sell"]
    kind: TradeErrorKind
    step: TradeStep
    detail: str = ""
    tx_hash: Optional[str] = None

    @property
    def error(self) -> str:
        return format_error(self.kind, self.detail)


TradeResult = Union[TradeSuccess, TradeFailure]
