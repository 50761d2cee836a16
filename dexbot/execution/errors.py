"""
Trade error taxonomy and classification of execution failures
"""

import re
from enum import Enum
from typing import List, Tuple, Union


class TradeErrorKind(Enum):
    """User-facing failure categories"""
    INVALID_INPUT = "invalid_input"
    INVALID_TOKEN = "invalid_token"
    TRADING_DISABLED = "trading_disabled"
    NO_ROUTE = "no_route"
    LIQUIDITY = "liquidity"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    EXPIRED = "expired"
    NETWORK = "network"
    REVERTED = "reverted"
    EXECUTION_FAILED = "execution_failed"


MESSAGES = {
    TradeErrorKind.INVALID_INPUT: "Invalid input",
    TradeErrorKind.INVALID_TOKEN: "Invalid token address",
    TradeErrorKind.TRADING_DISABLED: "Trading is disabled",
    TradeErrorKind.NO_ROUTE: "No route with liquidity found",
    TradeErrorKind.LIQUIDITY: "Insufficient liquidity or price moved beyond slippage tolerance",
    TradeErrorKind.INSUFFICIENT_FUNDS: "Insufficient funds for amount plus gas",
    TradeErrorKind.EXPIRED: "Transaction expired before it was mined",
    TradeErrorKind.NETWORK: "Network or gas error, try again",
    TradeErrorKind.REVERTED: "Transaction reverted on-chain",
    TradeErrorKind.EXECUTION_FAILED: "Execution failed",
}

# Order matters: the first matching pattern wins.
_PATTERNS: List[Tuple[TradeErrorKind, re.Pattern]] = [
    (TradeErrorKind.LIQUIDITY, re.compile(
        r"insufficient_output_amount|too little received|slippage|insufficient_liquidity|"
        r"insufficient liquidity|pancake: k\b", re.IGNORECASE)),
    (TradeErrorKind.INSUFFICIENT_FUNDS, re.compile(
        r"insufficient funds|exceeds balance|transfer amount exceeds|insufficient balance",
        re.IGNORECASE)),
    (TradeErrorKind.EXPIRED, re.compile(r"expired|transaction too old|deadline", re.IGNORECASE)),
    (TradeErrorKind.NETWORK, re.compile(
        r"timeout|timed out|connection|nonce|replacement transaction underpriced|gas",
        re.IGNORECASE)),
]


class TradeError(Exception):
    """Raised inside the orchestrator to short-circuit a trade"""

    def __init__(self, kind: TradeErrorKind, detail: str = ""):
        self.kind = kind
        self.detail = detail
        super().__init__(format_error(kind, detail))


def format_error(kind: TradeErrorKind, detail: str = "") -> str:
    base = MESSAGES[kind]
    return f"{base}: {detail}" if detail else base


def classify_execution_error(error: Union[BaseException, str]) -> TradeErrorKind:
    """Map a raw execution failure to a category by its text."""
    if isinstance(error, TradeError):
        return error.kind
    text = str(error)
    for kind, pattern in _PATTERNS:
        if pattern.search(text):
            return kind
    return TradeErrorKind.EXECUTION_FAILED
