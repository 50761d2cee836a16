"""
FIFO realized-profit accounting tests
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from dexbot.ledger import Ledger, LedgerStore, LotStatus, PositionAccountingEngine, TradeKind, TradeRecord

from .fakes import TOKEN

OTHER = "0x2170ed0880ac9a755fd29b2688956bd959f933f8"


def buy(engine, native, tokens, token=TOKEN, symbol="CAKE", gas="0"):
    return engine.record_buy(token, symbol, Decimal(native), Decimal(tokens), Decimal("600"),
                             Decimal(gas), f"0xbuy{native}{tokens}")


def sell(engine, tokens, native, token=TOKEN, symbol="CAKE"):
    return engine.record_sell(token, symbol, Decimal(tokens), Decimal(native), Decimal("600"),
                              Decimal("0.001"), f"0xsell{native}{tokens}")


def lot(record_id, native, tokens, timestamp):
    return TradeRecord(
        id=record_id,
        kind=TradeKind.BUY,
        token_address=TOKEN,
        token_symbol="CAKE",
        native_amount=Decimal(native),
        token_amount=Decimal(tokens),
        tx_hash=f"0x{record_id}",
        timestamp=timestamp,
        status=LotStatus.HOLDING,
        original_native_amount=Decimal(native),
        original_token_amount=Decimal(tokens),
        original_gas_cost=Decimal("0"),
    )


class TestRecordBuy:
    """BUY lots"""

    def test_buy_creates_holding_lot(self, accounting, ledger_store):
        record_id = buy(accounting, "0.1", "100")

        ledger = ledger_store.load()
        lot = ledger.find(record_id)
        assert lot.kind == TradeKind.BUY
        assert lot.status == LotStatus.HOLDING
        assert lot.original_token_amount == Decimal("100")
        assert lot.original_native_amount == Decimal("0.1")
        assert ledger.summary.total_trades == 1

    def test_ids_are_unique(self, accounting, ledger_store):
        ids = {buy(accounting, "0.1", "100") for _ in range(5)}

        assert len(ids) == 5
        assert all(i.startswith("buy_") for i in ids)

    def test_unpersisted_buy_returns_none(self, accounting, ledger_store, monkeypatch):
        monkeypatch.setattr(ledger_store, "save", lambda ledger: False)

        assert buy(accounting, "0.1", "100") is None


class TestRecordSell:
    """FIFO matching of SELLs against BUY lots"""

    def test_concrete_scenario(self, accounting, ledger_store):
        lot_a = buy(accounting, "0.1", "100")
        lot_b = buy(accounting, "0.2", "66.67")

        outcome = sell(accounting, "50", "0.14")

        assert outcome.total_cost_basis == Decimal("0.05")
        assert outcome.profit == Decimal("0.09")
        assert outcome.profit_percentage == Decimal("180")
        assert [c.source_buy_id for c in outcome.consumed_lots] == [lot_a]

        ledger = ledger_store.load()
        a, b = ledger.find(lot_a), ledger.find(lot_b)
        assert a.token_amount == Decimal("50")
        assert a.native_amount == Decimal("0.05")
        assert a.status == LotStatus.HOLDING
        assert b.token_amount == Decimal("66.67")
        assert b.native_amount == Decimal("0.2")

    def test_oldest_lot_consumed_first_across_lots(self, accounting, ledger_store):
        lot_a = buy(accounting, "0.1", "100")
        lot_b = buy(accounting, "0.2", "100")

        outcome = sell(accounting, "150", "0.3")

        consumed = {c.source_buy_id: c for c in outcome.consumed_lots}
        assert list(consumed) == [lot_a, lot_b]
        assert consumed[lot_a].tokens_consumed == Decimal("100")
        assert consumed[lot_b].tokens_consumed == Decimal("50")
        assert outcome.total_cost_basis == Decimal("0.2")

        ledger = ledger_store.load()
        assert ledger.find(lot_a).status == LotStatus.SOLD
        assert ledger.find(lot_a).token_amount == 0
        assert ledger.find(lot_b).token_amount == Decimal("50")

    def test_exhausting_position_conserves_cost(self, accounting, ledger_store):
        buy(accounting, "0.1", "100")
        buy(accounting, "0.2", "66.67")

        first = sell(accounting, "30", "0.05")
        second = sell(accounting, "136.67", "0.4")

        assert first.total_cost_basis + second.total_cost_basis == Decimal("0.3")
        assert accounting.get_open_position(TOKEN) is None
        ledger = ledger_store.load()
        for lot in (t for t in ledger.trades if t.kind == TradeKind.BUY):
            assert lot.status == LotStatus.SOLD
            assert lot.token_amount == 0
            assert lot.native_amount == 0

    def test_partial_consumption_shrinks_lot(self, accounting, ledger_store):
        lot_id = buy(accounting, "0.3", "3", gas="0.003")
        before = ledger_store.load().find(lot_id)

        outcome = sell(accounting, "1", "0.2")

        after = ledger_store.load().find(lot_id)
        assert Decimal(0) <= after.token_amount < before.token_amount
        assert after.native_amount == Decimal("0.2")
        assert after.gas_cost == Decimal("0.002")
        assert outcome.consumed_lots[0].gas_consumed == Decimal("0.001")

    def test_sell_without_lots_leaves_ledger_unchanged(self, accounting, ledger_store):
        buy(accounting, "0.1", "100", token=OTHER, symbol="ETH")
        before = ledger_store.path.read_text()

        assert sell(accounting, "10", "0.1") is None
        assert ledger_store.path.read_text() == before

    def test_sell_on_empty_ledger_returns_none(self, accounting, ledger_store):
        assert sell(accounting, "10", "0.1") is None
        assert not ledger_store.path.exists()

    def test_lots_are_matched_by_timestamp_not_ledger_order(self, accounting, ledger_store):
        opened = datetime(2024, 1, 1, tzinfo=timezone.utc)
        ledger_store.save(Ledger(trades=[
            lot("late", "0.3", "100", opened + timedelta(hours=1)),
            lot("early", "0.1", "100", opened),
        ]))

        outcome = sell(accounting, "50", "0.2")

        assert [c.source_buy_id for c in outcome.consumed_lots] == ["early"]
        assert outcome.total_cost_basis == Decimal("0.05")
        ledger = ledger_store.load()
        assert ledger.find("early").token_amount == Decimal("50")
        assert ledger.find("late").token_amount == Decimal("100")

    def test_other_tokens_are_not_consumed(self, accounting, ledger_store):
        other = buy(accounting, "1", "10", token=OTHER, symbol="ETH")
        buy(accounting, "0.1", "100")

        outcome = sell(accounting, "100", "0.2")

        assert [c.source_buy_id for c in outcome.consumed_lots] != [other]
        assert ledger_store.load().find(other).status == LotStatus.HOLDING

    def test_oversell_consumes_everything_available(self, accounting):
        buy(accounting, "0.1", "100")

        outcome = sell(accounting, "150", "0.3")

        assert outcome.total_cost_basis == Decimal("0.1")
        assert outcome.consumed_lots[0].tokens_consumed == Decimal("100")

    def test_zero_cost_basis_gives_zero_percentage(self, accounting):
        buy(accounting, "0", "100")

        outcome = sell(accounting, "100", "0.5")

        assert outcome.profit == Decimal("0.5")
        assert outcome.profit_percentage == 0

    def test_token_address_is_case_insensitive(self, accounting):
        buy(accounting, "0.1", "100", token=TOKEN.upper().replace("0X", "0x"))

        assert sell(accounting, "100", "0.2", token=TOKEN) is not None


class TestSummary:
    """Aggregate summary kept alongside the trades"""

    def test_summary_tracks_profit_loss_and_win_rate(self, accounting, ledger_store):
        buy(accounting, "0.1", "100")
        sell(accounting, "50", "0.08")   # +0.03
        sell(accounting, "50", "0.04")   # -0.01
        buy(accounting, "0.2", "10")
        sell(accounting, "10", "0.3")    # +0.1

        summary = ledger_store.load().summary
        assert summary.total_trades == 5
        assert summary.total_profit == Decimal("0.13")
        assert summary.total_loss == Decimal("0.01")
        assert summary.win_rate.quantize(Decimal("0.01")) == Decimal("66.67")
        assert summary.last_updated is not None

    def test_statistics(self, accounting):
        buy(accounting, "0.1", "100")
        sell(accounting, "50", "0.08")
        sell(accounting, "25", "0.02")
        buy(accounting, "1", "5", token=OTHER, symbol="ETH")

        stats = accounting.get_statistics()

        assert stats.total_trades == 4
        assert stats.buy_count == 2
        assert stats.sell_count == 2
        assert stats.net_profit == Decimal("0.025")
        assert stats.win_rate == Decimal("50")
        assert stats.open_position_count == 2
        assert stats.average_profit == Decimal("0.015")
        assert stats.profit_loss_ratio == Decimal("6")

    def test_statistics_on_empty_ledger(self, accounting):
        stats = accounting.get_statistics()

        assert stats.total_trades == 0
        assert stats.win_rate == 0
        assert stats.profit_loss_ratio is None


class TestQueries:
    """Read-side helpers"""

    def test_open_position_aggregates_lots(self, accounting):
        buy(accounting, "0.1", "100")
        buy(accounting, "0.2", "100")

        position = accounting.get_open_position(TOKEN)

        assert position.total_tokens == Decimal("200")
        assert position.total_cost == Decimal("0.3")
        assert position.avg_cost == Decimal("0.0015")
        assert position.lot_count == 2

    def test_trade_history_newest_first(self, accounting):
        for i in range(12):
            buy(accounting, "0.01", str(i + 1))

        history = accounting.get_trade_history()

        assert len(history) == 10
        assert history[0].token_amount == Decimal("12")

    def test_holding_tokens(self, accounting):
        buy(accounting, "0.1", "100")
        buy(accounting, "0.1", "5", token=OTHER, symbol="ETH")
        sell(accounting, "5", "0.1", token=OTHER, symbol="ETH")

        assert accounting.get_holding_tokens() == [TOKEN]

    @pytest.mark.parametrize("native,tokens", [("0.5", "1000"), ("0.000001", "1")])
    def test_full_sell_returns_exact_cost(self, accounting, native, tokens):
        buy(accounting, native, tokens)

        outcome = sell(accounting, tokens, "1")

        assert outcome.total_cost_basis == Decimal(native)


class TestConcurrency:
    """Engines sharing one ledger file"""

    def test_concurrent_buys_from_two_engines_are_all_kept(self, settings):
        engines = [PositionAccountingEngine(LedgerStore(settings.ledger_path)) for _ in range(2)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(lambda i: buy(engines[i % 2], "0.01", str(i + 1)), range(40)))

        ledger = LedgerStore(settings.ledger_path).load()
        assert None not in ids
        assert len(set(ids)) == 40
        assert len(ledger.trades) == 40
        assert ledger.summary.total_trades == 40

    def test_concurrent_sells_consume_each_token_once(self, settings):
        engines = [PositionAccountingEngine(LedgerStore(settings.ledger_path)) for _ in range(2)]
        buy(engines[0], "0.1", "100")

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(lambda i: sell(engines[i % 2], "1", "0.002"), range(20)))

        assert all(o is not None for o in outcomes)
        assert all(o.total_cost_basis == Decimal("0.001") for o in outcomes)
        position = engines[1].get_open_position(TOKEN)
        assert position.total_tokens == Decimal("80")
        assert position.total_cost == Decimal("0.080")
        ledger = LedgerStore(settings.ledger_path).load()
        assert len(ledger.sells()) == 20
        assert ledger.summary.total_profit == Decimal("0.020")
