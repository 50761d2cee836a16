"""
Trade Orchestrator - drives a buy or sell from validation through
quoting, approval, swap submission, ledger bookkeeping and notification.

Every public operation returns a TradeSuccess or a TradeFailure; the
ledger is only touched once the swap receipt confirms success.
"""

import time
from decimal import Decimal
from typing import Optional

from loguru import logger
from web3 import Web3

from ..data.config import TradingSettings
from ..data.models import BestRouteResult, RouteQuote, SwapParams, SwapReceipt, TokenInfo
from ..data.pipelines.price_oracle import ReferencePriceOracle
from ..ledger.accounting import PositionAccountingEngine
from ..ledger.models import SellOutcome
from ..ledger.store import WatchedTokenStore
from ..notifications.messages import build_buy_message, build_sell_message
from ..notifications.sinks import NotificationSink
from ..utils.units import Number, from_base_units, scale_by_percent, to_base_units, to_decimal
from .errors import TradeError, TradeErrorKind, classify_execution_error
from .exchange_client import MAX_UINT256, ExchangeClient
from .quote_aggregator import QuoteAggregator
from .results import TradeFailure, TradeResult, TradeStep, TradeSuccess

MIN_SLIPPAGE = Decimal("0.1")
MAX_SLIPPAGE = Decimal("50")


def min_output(raw_expected: int, slippage_percent: Number) -> int:
    """Minimum acceptable output in smallest units, integer arithmetic only."""
    return scale_by_percent(raw_expected, Decimal(100) - to_decimal(slippage_percent))


class TradeOrchestrator:
    """Buy/sell state machine over an ExchangeClient"""

    def __init__(self, settings: TradingSettings, client: ExchangeClient,
                 aggregator: QuoteAggregator, accounting: PositionAccountingEngine,
                 watched_tokens: WatchedTokenStore, price_oracle: Optional[ReferencePriceOracle] = None,
                 sink: Optional[NotificationSink] = None):
        self.settings = settings
        self.client = client
        self.aggregator = aggregator
        self.accounting = accounting
        self.watched_tokens = watched_tokens
        self.price_oracle = price_oracle
        self.sink = sink

    # ---------- validation helpers

    def _check_enabled(self) -> None:
        if not self.settings.trading_enabled:
            raise TradeError(TradeErrorKind.TRADING_DISABLED, "set ENABLE_TRADING=true to trade")

    @staticmethod
    def _check_address(token_address: str) -> str:
        if not isinstance(token_address, str) or not Web3.is_address(token_address):
            raise TradeError(TradeErrorKind.INVALID_TOKEN, str(token_address))
        return token_address.lower()

    @staticmethod
    def _check_amount(amount: Number) -> Decimal:
        try:
            value = to_decimal(amount)
        except Exception:
            raise TradeError(TradeErrorKind.INVALID_INPUT, f"not a number: {amount}")
        if not value.is_finite() or value <= 0:
            raise TradeError(TradeErrorKind.INVALID_INPUT, f"amount must be positive, got {amount}")
        return value

    def _slippage(self, slippage_percent: Optional[Number]) -> Decimal:
        if slippage_percent is None:
            return self.settings.slippage_percent
        try:
            value = to_decimal(slippage_percent)
        except Exception:
            raise TradeError(TradeErrorKind.INVALID_INPUT, f"invalid slippage: {slippage_percent}")
        if not value.is_finite() or value < MIN_SLIPPAGE or value > MAX_SLIPPAGE:
            raise TradeError(TradeErrorKind.INVALID_INPUT,
                             f"slippage must be between {MIN_SLIPPAGE}% and {MAX_SLIPPAGE}%")
        return value

    async def _check_token(self, token_address: str) -> TokenInfo:
        try:
            if not await self.client.is_contract(token_address):
                raise TradeError(TradeErrorKind.INVALID_TOKEN, f"{token_address} is not a contract")
            return await self.aggregator.token_info(token_address)
        except TradeError:
            raise
        except Exception as e:
            raise TradeError(TradeErrorKind.INVALID_TOKEN, f"cannot read token {token_address}: {e}")

    async def _best_route(self, token_address: str, amount: Decimal, is_buy: bool,
                          token: TokenInfo) -> RouteQuote:
        result: BestRouteResult = await self.aggregator.get_best_route(token_address, amount, is_buy, token=token)
        if not result.success or result.best_route is None:
            reasons = "; ".join(f"{q.route_version.value}/{q.fee_tier}: {q.error}" for q in result.rejected_quotes)
            raise TradeError(TradeErrorKind.NO_ROUTE, reasons or (result.error or ""))
        return result.best_route

    def _swap_params(self, route: RouteQuote, token_address: str, is_buy: bool, amount_out_min: int) -> SwapParams:
        native = self.settings.wrapped_native_address
        return SwapParams(
            path=[native, token_address] if is_buy else [token_address, native],
            amount_in=route.raw_amounts[0],
            amount_out_min=amount_out_min,
            recipient=self.client.wallet_address,
            deadline=int(time.time()) + self.settings.deadline_minutes * 60,
            is_buy=is_buy,
            fee_tier=route.fee_tier,
        )

    # ---------- side-effect helpers; failures here never fail a confirmed trade

    async def _reference_price(self) -> Decimal:
        if self.price_oracle is None:
            return Decimal("0")
        try:
            return await self.price_oracle.get_reference_price()
        except Exception as e:
            logger.warning(f"Reference price unavailable: {e}")
            return Decimal("0")

    async def _token_balance(self, token_address: str) -> Optional[int]:
        try:
            return await self.client.get_token_balance(token_address)
        except Exception as e:
            logger.warning(f"Could not read {token_address} balance: {e}")
            return None

    async def _native_balance(self) -> Optional[int]:
        try:
            return await self.client.get_native_balance()
        except Exception as e:
            logger.warning(f"Could not read native balance: {e}")
            return None

    async def _notify(self, message: str) -> Optional[str]:
        if self.sink is None:
            return None
        try:
            result = await self.sink.publish(message)
        except Exception as e:
            logger.warning(f"Notification delivery failed: {e}")
            return None
        if not result.success:
            logger.warning(f"Notification delivery failed: {result.error}")
            return None
        return result.id

    def _watch(self, token_address: str) -> None:
        try:
            self.watched_tokens.add(token_address)
        except Exception as e:
            logger.warning(f"Could not add {token_address} to the traded token list: {e}")

    async def _unwatch_if_empty(self, token_address: str) -> None:
        remaining = await self._token_balance(token_address)
        if remaining != 0:
            return
        try:
            self.watched_tokens.remove(token_address)
        except Exception as e:
            logger.warning(f"Could not remove {token_address} from the traded token list: {e}")

    def _failure(self, side: str, error: Exception, step: TradeStep, tx_hash: Optional[str]) -> TradeFailure:
        if isinstance(error, TradeError):
            kind, detail = error.kind, error.detail
        else:
            kind, detail = classify_execution_error(error), str(error)
        logger.error(f"{side.upper()} failed at {step.value}: {kind.value} {detail}")
        return TradeFailure(side=side, kind=kind, step=step, detail=detail, tx_hash=tx_hash)

    @staticmethod
    def _check_receipt(receipt: SwapReceipt) -> None:
        if not receipt.status_ok:
            raise TradeError(TradeErrorKind.REVERTED, receipt.tx_hash)

    # ---------- operations

    async def buy(self, token_address: str, native_amount: Number,
                  slippage_percent: Optional[Number] = None) -> TradeResult:
        """Spend `native_amount` BNB on `token_address` through the best route."""
        step = TradeStep.VALIDATE_INPUT
        tx_hash: Optional[str] = None
        try:
            address = self._check_address(token_address)
            amount = self._check_amount(native_amount)
            if amount > self.settings.max_trade_amount:
                raise TradeError(TradeErrorKind.INVALID_INPUT,
                                 f"{amount} exceeds max trade amount {self.settings.max_trade_amount}")
            slippage = self._slippage(slippage_percent)
            self._check_enabled()

            step = TradeStep.VALIDATE_TOKEN
            token = await self._check_token(address)

            step = TradeStep.GET_BEST_ROUTE
            route = await self._best_route(address, amount, True, token)

            step = TradeStep.COMPUTE_MIN_OUTPUT
            amount_out_min = min_output(route.raw_output, slippage)

            step = TradeStep.SUBMIT_SWAP
            balance_before = await self._token_balance(address)
            params = self._swap_params(route, address, True, amount_out_min)
            logger.info(f"Buying {token.symbol} with {amount} {self.settings.native_symbol} via {route.label}")
            receipt = await self.client.execute_swap(route.route_version, params)
            tx_hash = receipt.tx_hash

            step = TradeStep.AWAIT_RECEIPT
            self._check_receipt(receipt)

            step = TradeStep.RECORD_LEDGER
            balance_after = await self._token_balance(address)
            if balance_before is not None and balance_after is not None and balance_after > balance_before:
                token_amount = from_base_units(balance_after - balance_before, token.decimals)
            else:
                token_amount = route.expected_output_amount

            reference_price = await self._reference_price()
            record_id = self.accounting.record_buy(
                address, token.symbol, amount, token_amount, reference_price, receipt.gas_cost, tx_hash
            )
            self._watch(address)

            step = TradeStep.EMIT_NOTIFICATION
            notification_id = await self._notify(build_buy_message(
                token.symbol, amount, token_amount, tx_hash, route.label,
                native_symbol=self.settings.native_symbol, reference_price=reference_price,
            ))

            logger.info(f"BUY {token.symbol} done: {token_amount} for {amount} ({tx_hash})")
            return TradeSuccess(
                side="buy",
                token_address=address,
                token_symbol=token.symbol,
                tx_hash=tx_hash,
                route=route,
                amount_in=amount,
                expected_output=route.expected_output_amount,
                amount_out=token_amount,
                amount_out_min=amount_out_min,
                gas_used=receipt.gas_used,
                gas_cost=receipt.gas_cost,
                slippage_percent=slippage,
                ledger_record_id=record_id,
                notification_id=notification_id,
            )
        except Exception as e:
            return self._failure("buy", e, step, tx_hash)

    async def sell(self, token_address: str, token_amount: Number,
                   slippage_percent: Optional[Number] = None) -> TradeResult:
        """Sell `token_amount` tokens for BNB through the best route."""
        return await self._sell(token_address, token_amount, slippage_percent)

    async def _sell(self, token_address: str, token_amount: Number, slippage_percent: Optional[Number],
                    raw_amount: Optional[int] = None) -> TradeResult:
        step = TradeStep.VALIDATE_INPUT
        tx_hash: Optional[str] = None
        approval_tx_hash: Optional[str] = None
        try:
            address = self._check_address(token_address)
            amount = self._check_amount(token_amount)
            slippage = self._slippage(slippage_percent)
            self._check_enabled()

            step = TradeStep.VALIDATE_TOKEN
            token = await self._check_token(address)
            if raw_amount is None:
                raw_amount = to_base_units(amount, token.decimals)
            balance = await self.client.get_token_balance(address)
            if balance < raw_amount:
                raise TradeError(
                    TradeErrorKind.INSUFFICIENT_FUNDS,
                    f"balance {from_base_units(balance, token.decimals)} {token.symbol} < {amount}",
                )

            step = TradeStep.GET_BEST_ROUTE
            route = await self._best_route(address, amount, False, token)

            step = TradeStep.COMPUTE_MIN_OUTPUT
            amount_out_min = min_output(route.raw_output, slippage)

            step = TradeStep.AUTHORIZE
            spender = self.client.router_address(route.route_version)
            allowance = await self.client.get_allowance(address, self.client.wallet_address, spender)
            if allowance < raw_amount:
                logger.info(f"Allowance {allowance} below {raw_amount}, approving {spender}")
                approval = await self.client.approve(address, spender, MAX_UINT256)
                approval_tx_hash = approval.tx_hash
                self._check_receipt(approval)

            step = TradeStep.SUBMIT_SWAP
            native_before = await self._native_balance()
            params = self._swap_params(route, address, False, amount_out_min)
            logger.info(f"Selling {amount} {token.symbol} via {route.label}")
            receipt = await self.client.execute_swap(route.route_version, params)
            tx_hash = receipt.tx_hash

            step = TradeStep.AWAIT_RECEIPT
            self._check_receipt(receipt)

            step = TradeStep.RECORD_LEDGER
            native_after = await self._native_balance()
            received = None
            if native_before is not None and native_after is not None:
                received = from_base_units(native_after - native_before) + receipt.gas_cost
            if received is None or received <= 0:
                received = route.expected_output_amount

            reference_price = await self._reference_price()
            outcome: Optional[SellOutcome] = self.accounting.record_sell(
                address, token.symbol, amount, received, reference_price, receipt.gas_cost, tx_hash
            )

            await self._unwatch_if_empty(address)

            step = TradeStep.EMIT_NOTIFICATION
            notification_id = await self._notify(build_sell_message(
                token.symbol, amount, received, tx_hash, route.label,
                native_symbol=self.settings.native_symbol,
                profit=outcome.profit if outcome else None,
                profit_percentage=outcome.profit_percentage if outcome else None,
            ))

            logger.info(f"SELL {token.symbol} done: {amount} for {received} ({tx_hash})")
            return TradeSuccess(
                side="sell",
                token_address=address,
                token_symbol=token.symbol,
                tx_hash=tx_hash,
                route=route,
                amount_in=amount,
                expected_output=route.expected_output_amount,
                amount_out=received,
                amount_out_min=amount_out_min,
                gas_used=receipt.gas_used,
                gas_cost=receipt.gas_cost,
                slippage_percent=slippage,
                approval_tx_hash=approval_tx_hash,
                ledger_record_id=outcome.record_id if outcome else None,
                sell_outcome=outcome,
                notification_id=notification_id,
            )
        except Exception as e:
            return self._failure("sell", e, step, tx_hash)

    async def sell_percentage(self, token_address: str, percent: Optional[Number] = None,
                              slippage_percent: Optional[Number] = None) -> TradeResult:
        """Sell a percentage of the wallet's balance (default from settings)."""
        step = TradeStep.VALIDATE_INPUT
        try:
            address = self._check_address(token_address)
            pct = self._check_amount(self.settings.default_sell_percentage if percent is None else percent)
            if pct > 100:
                raise TradeError(TradeErrorKind.INVALID_INPUT, f"percentage must be at most 100, got {pct}")

            step = TradeStep.VALIDATE_TOKEN
            token = await self._check_token(address)
            balance = await self.client.get_token_balance(address)
            raw_amount = scale_by_percent(balance, pct)
            if raw_amount <= 0:
                raise TradeError(TradeErrorKind.INSUFFICIENT_FUNDS, f"no {token.symbol} balance to sell")
        except Exception as e:
            return self._failure("sell", e, step, None)

        return await self._sell(address, from_base_units(raw_amount, token.decimals), slippage_percent,
                                raw_amount=raw_amount)
