from .sources.binance import Binance
from .sources.coingecko import CoinGecko

class DataRegistry:
    def __init__(self):
        self.binance = Binance()
        self.coingecko = CoinGecko()

    @property
    def price_sources(self):
        return [self.binance, self.coingecko]

registry = DataRegistry()
