from decimal import Decimal
from typing import Optional, Sequence

from loguru import logger

from ..cache import MemoryCache, cache as default_cache
from ..models import PriceQuote
from ..registry import registry
from ..sources.base import DataSource


async def best_price(symbol: str, sources: Optional[Sequence[DataSource]] = None) -> Optional[PriceQuote]:
    """First source that answers wins; sources are tried in order."""
    for source in sources or registry.price_sources:
        try:
            quote = await source.native_price(symbol)
        except Exception as e:
            logger.warning(f"{source.name} price lookup for {symbol} failed: {e}")
            continue
        if quote is not None and quote.price > 0:
            return quote
    return None


class ReferencePriceOracle:
    """Spot USD price of the native asset, cached for a short TTL."""

    def __init__(self, symbol: str = "BNB", sources: Optional[Sequence[DataSource]] = None,
                 cache: Optional[MemoryCache] = None, ttl: int = 30):
        self.symbol = symbol
        self.sources = sources
        self.cache = cache or default_cache
        self.ttl = ttl

    async def get_reference_price(self) -> Decimal:
        key = f"reference_price:{self.symbol}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        quote = await best_price(self.symbol, self.sources)
        if quote is None:
            logger.warning(f"No reference price available for {self.symbol}")
            return Decimal("0")

        self.cache.set(key, quote.price, ttl=self.ttl)
        return quote.price
