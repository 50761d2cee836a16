from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from ..models import PriceQuote

class DataSource(ABC):
    name: str

    @abstractmethod
    async def health(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def native_price(self, symbol: str) -> Optional[PriceQuote]:
        ...
