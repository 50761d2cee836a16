import pytest

from dexbot.data.config import TradingSettings
from dexbot.ledger import LedgerStore, PositionAccountingEngine, WatchedTokenStore


@pytest.fixture
def settings(tmp_path):
    return TradingSettings(
        trading_enabled=True,
        ledger_path=tmp_path / "trade_ledger.json",
        traded_tokens_path=tmp_path / "traded_tokens.json",
        quote_timeout_seconds=1.0,
    )


@pytest.fixture
def ledger_store(settings):
    return LedgerStore(settings.ledger_path)


@pytest.fixture
def accounting(ledger_store):
    return PositionAccountingEngine(ledger_store)


@pytest.fixture
def watched_tokens(settings):
    return WatchedTokenStore(settings.traded_tokens_path)
