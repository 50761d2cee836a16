
import os
import json
from decimal import Decimal
from typing import Dict, Any, Optional, Tuple
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, field_validator

# PancakeSwap mainnet deployments on BNB Smart Chain
PANCAKESWAP_ROUTER_V2_ADDRESS = "0x10ED43C718714eb63d5aA57B78B54704E256024E"
PANCAKESWAP_ROUTER_V3_ADDRESS = "0x1b81D678ffb9C0263b24A97847620C99d213eB14"
PANCAKESWAP_QUOTER_V3_ADDRESS = "0xB048Bbc1Ee6b733FFfCFb9e9CeF7375518e25997"
WBNB_ADDRESS = "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c"


class TradingSettings(BaseModel):
    """Settings handed to the trade orchestrator at construction."""

    rpc_url: str = "https://bsc-dataseed.binance.org/"
    chain_id: int = 56
    router_v2_address: str = PANCAKESWAP_ROUTER_V2_ADDRESS
    router_v3_address: str = PANCAKESWAP_ROUTER_V3_ADDRESS
    quoter_v3_address: str = PANCAKESWAP_QUOTER_V3_ADDRESS
    wrapped_native_address: str = WBNB_ADDRESS
    native_symbol: str = "BNB"

    slippage_percent: Decimal = Decimal("10")
    gas_price_gwei: Decimal = Decimal("0.1")
    gas_limit: int = 300000
    deadline_minutes: int = 20
    v3_fee_tiers: Tuple[int, ...] = (500, 2500, 10000)

    max_trade_amount: Decimal = Decimal("1")
    default_buy_amount: Decimal = Decimal("0.05")
    default_sell_percentage: Decimal = Decimal("100")
    trading_enabled: bool = False

    quote_timeout_seconds: float = 15.0
    receipt_timeout_seconds: int = 300

    ledger_path: Path = Path("data/trade_ledger.json")
    traded_tokens_path: Path = Path("data/traded_tokens.json")

    notifications_enabled: bool = False
    telegram_bot_token: Optional[str] = Field(default=None, repr=False)
    telegram_chat_id: Optional[str] = None

    @field_validator("slippage_percent")
    @classmethod
    def _check_slippage(cls, value: Decimal) -> Decimal:
        if value < Decimal("0.1") or value > Decimal("50"):
            raise ValueError("slippage must be between 0.1% and 50%")
        return value


class ConfigManager:
    """
    Centralized configuration manager.
    Singleton pattern to load and access config settings.
    """
    _instance = None
    _config: Dict[str, Any] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            cls._instance._load_config()
        return cls._instance

    @classmethod
    def reset(cls):
        """Drop the cached instance so the next access reloads from disk"""
        cls._instance = None

    def _load_config(self):
        """Load configuration from JSON file and env vars"""
        load_dotenv()
        try:
            config_path = Path(os.getenv("DEXBOT_CONFIG", "config/config.json"))

            if config_path.exists():
                with open(config_path, "r") as f:
                    self._config = json.load(f)
                logger.info(f"Loaded config from {config_path}")
            else:
                logger.warning(f"Config file not found at {config_path}. Using defaults.")
                self._config = {}

        except Exception as e:
            logger.error(f"Error loading config: {e}")
            self._config = {}

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value by key (dot notation supported)"""
        keys = key.split(".")
        value = self._config

        try:
            for k in keys:
                value = value.get(k)
                if value is None:
                    return default
            return value
        except AttributeError:
            return default

    @property
    def trading_config(self) -> Dict[str, Any]:
        return self.get("trading", {})

    @property
    def notification_config(self) -> Dict[str, Any]:
        return self.get("notifications", {})

    def trading_settings(self) -> TradingSettings:
        """
        Build TradingSettings: config.json values first, environment
        variables override them.
        """
        values: Dict[str, Any] = dict(self.trading_config)

        env_map = {
            "BSC_RPC_URL": "rpc_url",
            "WBNB_ADDRESS": "wrapped_native_address",
            "DEFAULT_SLIPPAGE": "slippage_percent",
            "DEFAULT_GAS_PRICE": "gas_price_gwei",
            "DEFAULT_GAS_LIMIT": "gas_limit",
            "MAX_TRADE_AMOUNT": "max_trade_amount",
            "DEFAULT_BUY_AMOUNT": "default_buy_amount",
            "DEFAULT_SELL_PERCENTAGE": "default_sell_percentage",
            "LEDGER_PATH": "ledger_path",
            "TRADED_TOKENS_PATH": "traded_tokens_path",
        }
        for env_name, field_name in env_map.items():
            raw = os.getenv(env_name)
            if raw:
                values[field_name] = raw

        enable_trading = os.getenv("ENABLE_TRADING")
        if enable_trading is not None:
            values["trading_enabled"] = enable_trading.lower() == "true"

        notifications = self.notification_config
        values.setdefault("notifications_enabled", notifications.get("enabled", False))
        values.setdefault("telegram_chat_id", notifications.get("telegram_chat_id"))
        enable_notifications = os.getenv("ENABLE_NOTIFICATIONS")
        if enable_notifications is not None:
            values["notifications_enabled"] = enable_notifications.lower() == "true"
        if os.getenv("TELEGRAM_BOT_TOKEN"):
            values["telegram_bot_token"] = os.getenv("TELEGRAM_BOT_TOKEN")
        if os.getenv("TELEGRAM_CHAT_ID"):
            values["telegram_chat_id"] = os.getenv("TELEGRAM_CHAT_ID")

        return TradingSettings(**values)

    @staticmethod
    def private_key() -> Optional[str]:
        return os.getenv("PRIVATE_KEY")
