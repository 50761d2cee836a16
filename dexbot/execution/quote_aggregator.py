"""
Quote Aggregator - concurrent quoting across PancakeSwap V2 and the V3
fee tiers, and selection of the route with the largest output.
"""

import asyncio
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from loguru import logger

from ..data.config import TradingSettings
from ..data.models import (
    BestRouteResult,
    QuoteResult,
    RouteComparison,
    RouteQuote,
    RouteVersion,
    TokenInfo,
)
from ..utils.units import NATIVE_DECIMALS, Number, from_base_units, to_base_units, to_decimal
from .exchange_client import ExchangeClient


class QuoteAggregator:
    """Finds the best PancakeSwap route for a BNB <-> token swap"""

    def __init__(self, client: ExchangeClient, settings: TradingSettings):
        self.client = client
        self.settings = settings
        self._token_cache: Dict[str, TokenInfo] = {}

    def candidates(self) -> List[Tuple[RouteVersion, Optional[int]]]:
        """Fan-out order: V2 first, then V3 by ascending fee tier"""
        routes: List[Tuple[RouteVersion, Optional[int]]] = [(RouteVersion.V2, None)]
        routes.extend((RouteVersion.V3, fee) for fee in sorted(self.settings.v3_fee_tiers))
        return routes

    async def token_info(self, token_address: str) -> TokenInfo:
        key = token_address.lower()
        if key not in self._token_cache:
            self._token_cache[key] = await self.client.get_token_metadata(token_address)
        return self._token_cache[key]

    def _path(self, token_address: str, is_buy: bool) -> List[str]:
        native = self.settings.wrapped_native_address
        return [native, token_address] if is_buy else [token_address, native]

    async def get_quote(self, token_address: str, amount: Number, is_buy: bool,
                        route_version: RouteVersion, fee_tier: Optional[int] = None,
                        token: Optional[TokenInfo] = None) -> QuoteResult:
        """
        Quote a single route. Buys spend `amount` BNB, sells spend `amount`
        tokens. Never raises; failures come back with success=False.
        """
        try:
            value = to_decimal(amount)
            if not value.is_finite() or value <= 0:
                raise ValueError(f"amount must be positive, got {amount}")

            token = token or await self.token_info(token_address)
            in_decimals = NATIVE_DECIMALS if is_buy else token.decimals
            out_decimals = token.decimals if is_buy else NATIVE_DECIMALS

            raw_in = to_base_units(value, in_decimals)
            if raw_in <= 0:
                raise ValueError(f"amount {amount} rounds to zero")

            raw_out = await asyncio.wait_for(
                self.client.quote_output(self._path(token_address, is_buy), raw_in, route_version, fee_tier),
                timeout=self.settings.quote_timeout_seconds,
            )
            if raw_out <= 0:
                raise ValueError("route returned zero output")

            quote = RouteQuote(
                route_version=route_version,
                fee_tier=fee_tier,
                expected_output_amount=from_base_units(raw_out, out_decimals),
                raw_amounts=[raw_in, raw_out],
            )
            return QuoteResult(success=True, route_version=route_version, fee_tier=fee_tier, quote=quote)

        except asyncio.TimeoutError:
            error = f"quote timed out after {self.settings.quote_timeout_seconds}s"
        except Exception as e:
            error = str(e) or e.__class__.__name__

        logger.debug(f"{route_version.value.upper()} quote (fee {fee_tier}) for {token_address} failed: {error}")
        return QuoteResult(success=False, route_version=route_version, fee_tier=fee_tier, error=error)

    async def get_best_route(self, token_address: str, amount: Number, is_buy: bool,
                             token: Optional[TokenInfo] = None) -> BestRouteResult:
        """Quote every candidate concurrently and keep the largest output"""
        try:
            token = token or await self.token_info(token_address)
        except Exception as e:
            logger.error(f"Could not read token metadata for {token_address}: {e}")
            return BestRouteResult(success=False, error=f"token metadata unavailable: {e}")

        results: List[QuoteResult] = await asyncio.gather(*[
            self.get_quote(token_address, amount, is_buy, version, fee, token=token)
            for version, fee in self.candidates()
        ])

        quotes = [r.quote for r in results if r.success and r.quote is not None]
        rejected = [r for r in results if not r.success]

        if not quotes:
            logger.warning(f"No route with liquidity for {token.symbol} ({token_address})")
            return BestRouteResult(
                success=False,
                rejected_quotes=rejected,
                error="no route with liquidity found",
            )

        best = quotes[0]
        for quote in quotes[1:]:
            if quote.raw_output > best.raw_output:
                best = quote

        worst = min(quotes, key=lambda q: q.raw_output)
        comparison = RouteComparison(
            best_output=best.expected_output_amount,
            worst_output=worst.expected_output_amount,
            total_quotes=len(quotes),
            total_rejected=len(rejected),
            improvement=self._improvement(best.expected_output_amount, worst.expected_output_amount,
                                          len(quotes)),
        )

        logger.info(
            f"Best route for {'buying' if is_buy else 'selling'} {token.symbol}: {best.label} "
            f"-> {best.expected_output_amount} ({len(quotes)} quotes, {len(rejected)} rejected)"
        )
        return BestRouteResult(
            success=True,
            best_route=best,
            all_quotes=quotes,
            rejected_quotes=rejected,
            comparison=comparison,
        )

    @staticmethod
    def _improvement(best: Decimal, worst: Decimal, count: int) -> str:
        if count < 2 or worst <= 0:
            return "0%"
        return f"{(best - worst) / worst * 100:.2f}%"
