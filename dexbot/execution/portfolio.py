"""
Portfolio Service - token spot prices, on-chain holdings valuation and
manual additions to the traded token list.
"""

from decimal import Decimal
from typing import Optional

from loguru import logger
from web3 import Web3

from ..data.config import TradingSettings
from ..data.models import Holding, HoldingsReport, TokenPrice, WatchResult
from ..data.pipelines.price_oracle import ReferencePriceOracle
from ..ledger.store import WatchedTokenStore
from ..utils.units import from_base_units
from .exchange_client import ExchangeClient
from .quote_aggregator import QuoteAggregator

ONE = Decimal("1")


class PortfolioService:
    """Read-side view of the wallet: prices and balances valued in USD"""

    def __init__(self, settings: TradingSettings, client: ExchangeClient, aggregator: QuoteAggregator,
                 watched_tokens: WatchedTokenStore, price_oracle: Optional[ReferencePriceOracle] = None):
        self.settings = settings
        self.client = client
        self.aggregator = aggregator
        self.watched_tokens = watched_tokens
        self.price_oracle = price_oracle

    async def _reference_price(self) -> Decimal:
        if self.price_oracle is None:
            return Decimal("0")
        try:
            return await self.price_oracle.get_reference_price()
        except Exception as e:
            logger.warning(f"Reference price unavailable: {e}")
            return Decimal("0")

    async def get_token_price(self, token_address: str,
                              reference_price: Optional[Decimal] = None) -> TokenPrice:
        """
        Price one token in BNB and USD by quoting a 1 BNB buy across every
        route. Never raises; failures come back with success=False.
        """
        if not isinstance(token_address, str) or not Web3.is_address(token_address):
            return TokenPrice(success=False, token_address=str(token_address), error="invalid token address")
        address = token_address.lower()

        try:
            token = await self.aggregator.token_info(address)
        except Exception as e:
            logger.warning(f"Could not read token metadata for {address}: {e}")
            return TokenPrice(success=False, token_address=address, error=f"token metadata unavailable: {e}")

        result = await self.aggregator.get_best_route(address, ONE, True, token=token)
        if not result.success or result.best_route is None:
            return TokenPrice(success=False, token_address=address, symbol=token.symbol,
                              error=result.error or "no route with liquidity found")

        route = result.best_route
        price_native = ONE / route.expected_output_amount
        if reference_price is None:
            reference_price = await self._reference_price()
        return TokenPrice(
            success=True,
            token_address=address,
            symbol=token.symbol,
            price_native=price_native,
            price_usd=price_native * reference_price,
            route=route.label,
        )

    async def get_holdings(self) -> HoldingsReport:
        """BNB balance plus every watched token the wallet still holds, valued in USD"""
        try:
            native_balance = from_base_units(await self.client.get_native_balance())
        except Exception as e:
            logger.error(f"Could not read native balance: {e}")
            return HoldingsReport(success=False, error=str(e))

        reference_price = await self._reference_price()
        native_value = native_balance * reference_price
        holdings = [Holding(
            symbol=self.settings.native_symbol,
            balance=native_balance,
            price_usd=reference_price,
            value_usd=native_value,
            is_native=True,
        )]
        total = native_value

        watched = self.watched_tokens.load()
        for address in watched:
            try:
                raw_balance = await self.client.get_token_balance(address)
                if raw_balance <= 0:
                    continue
                token = await self.aggregator.token_info(address)
            except Exception as e:
                logger.error(f"Failed to check token {address}: {e}")
                continue

            balance = from_base_units(raw_balance, token.decimals)
            price = await self.get_token_price(address, reference_price=reference_price)
            value = balance * price.price_usd if price.success else Decimal("0")
            total += value
            holdings.append(Holding(
                symbol=token.symbol,
                address=address,
                balance=balance,
                price_usd=price.price_usd,
                value_usd=value,
            ))

        return HoldingsReport(
            success=True,
            holdings=holdings,
            total_value_usd=total,
            scanned_tokens=len(watched),
            found_tokens=len(holdings),
        )

    async def watch_token(self, token_address: str) -> WatchResult:
        """Add a token to the traded token list after checking it is a readable contract"""
        if not isinstance(token_address, str) or not Web3.is_address(token_address):
            return WatchResult(success=False, token_address=str(token_address), error="invalid token address")
        address = token_address.lower()

        try:
            if not await self.client.is_contract(address):
                return WatchResult(success=False, token_address=address, error=f"{address} is not a contract")
            token = await self.aggregator.token_info(address)
        except Exception as e:
            return WatchResult(success=False, token_address=address, error=f"cannot read token: {e}")

        if not self.watched_tokens.add(address):
            return WatchResult(success=False, token_address=address, symbol=token.symbol,
                               error="traded token list could not be saved")
        logger.info(f"Added {token.symbol} ({address}) to the traded token list")
        return WatchResult(success=True, token_address=address, symbol=token.symbol)
