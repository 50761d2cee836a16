from decimal import Decimal
from typing import Dict, Any, Optional
from .base import DataSource
from ..http_client import get_json
from ..models import PriceQuote

class Binance(DataSource):
    name = "binance"
    BASE = "https://api.binance.com/api/v3"

    async def health(self) -> Dict[str, Any]:
        try:
            await get_json(f"{self.BASE}/ping")
            return {"ok": True}
        except Exception as e:
            return {"ok": False, "error": str(e)}

    async def native_price(self, symbol: str) -> Optional[PriceQuote]:
        data = await get_json(f"{self.BASE}/ticker/price", params={"symbol": f"{symbol.upper()}USDT"})
        price = data.get("price")
        if price is None:
            return None
        return PriceQuote(source=self.name, base=symbol.upper(), quote="USDT", price=Decimal(str(price)))
