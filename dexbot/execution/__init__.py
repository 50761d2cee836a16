"""
Execution Engine - route selection and buy/sell execution on PancakeSwap
"""

from .errors import TradeError, TradeErrorKind, classify_execution_error, format_error
from .exchange_client import ExchangeClient, PancakeSwapClient
from .quote_aggregator import QuoteAggregator
from .orchestrator import TradeOrchestrator, min_output
from .portfolio import PortfolioService
from .results import TradeFailure, TradeResult, TradeStep, TradeSuccess

__all__ = [
    "TradeError",
    "TradeErrorKind",
    "classify_execution_error",
    "format_error",
    "ExchangeClient",
    "PancakeSwapClient",
    "QuoteAggregator",
    "TradeOrchestrator",
    "min_output",
    "PortfolioService",
    "TradeFailure",
    "TradeResult",
    "TradeStep",
    "TradeSuccess",
]
