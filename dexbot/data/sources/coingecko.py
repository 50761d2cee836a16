from decimal import Decimal
from typing import Dict, Any, Optional
from .base import DataSource
from ..http_client import get_json
from ..models import PriceQuote

# CoinGecko keys assets by id, not ticker
COIN_IDS = {"BNB": "binancecoin", "ETH": "ethereum", "MATIC": "matic-network"}

class CoinGecko(DataSource):
    name = "coingecko"
    BASE = "https://api.coingecko.com/api/v3"

    async def health(self) -> Dict[str, Any]:
        try:
            await get_json(f"{self.BASE}/ping")
            return {"ok": True}
        except Exception as e:
            return {"ok": False, "error": str(e)}

    async def native_price(self, symbol: str, vs: str = "usd") -> Optional[PriceQuote]:
        coin_id = COIN_IDS.get(symbol.upper(), symbol.lower())
        data = await get_json(f"{self.BASE}/simple/price", params={"ids": coin_id, "vs_currencies": vs})
        price = data.get(coin_id, {}).get(vs)
        if price is None:
            return None
        return PriceQuote(source=self.name, base=symbol.upper(), quote=vs.upper(), price=Decimal(str(price)))
