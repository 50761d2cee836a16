"""
Buy/sell state machine tests against the in-memory exchange
"""

from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from dexbot.data.models import RouteVersion
from dexbot.execution import QuoteAggregator, TradeErrorKind, TradeOrchestrator, TradeStep, min_output
from dexbot.execution.exchange_client import MAX_UINT256
from dexbot.notifications import PublishResult

from .fakes import E18, TOKEN, V2, V3_2500, V3_500, FakeExchangeClient


@pytest.fixture
def client():
    return FakeExchangeClient(
        buy_quotes={V2: 100 * E18, V3_500: 90 * E18, V3_2500: 110 * E18},
        sell_quotes={V2: 14 * E18 // 100, V3_500: 12 * E18 // 100},
    )


@pytest.fixture
def sink():
    mock = Mock()
    mock.publish = AsyncMock(return_value=PublishResult(success=True, id="42"))
    return mock


@pytest.fixture
def oracle():
    mock = Mock()
    mock.get_reference_price = AsyncMock(return_value=Decimal("600"))
    return mock


@pytest.fixture
def bot(settings, client, accounting, watched_tokens, oracle, sink):
    return TradeOrchestrator(
        settings=settings,
        client=client,
        aggregator=QuoteAggregator(client, settings),
        accounting=accounting,
        watched_tokens=watched_tokens,
        price_oracle=oracle,
        sink=sink,
    )


class TestMinOutput:

    def test_integer_math(self):
        assert min_output(110 * E18, Decimal("10")) == 99 * E18
        assert min_output(1001, 10) == 900
        assert min_output(12345, "0.5") == 12283

    def test_fractional_basis_points_are_kept(self):
        assert min_output(10000, Decimal("0.125")) == 9987
        assert min_output(10 ** 30, Decimal("0.125")) == 99875 * 10 ** 25


class TestBuy:
    """BUY flow"""

    @pytest.mark.asyncio
    async def test_successful_buy(self, bot, client, accounting, watched_tokens, sink):
        result = await bot.buy(TOKEN, "0.1")

        assert result.success
        assert result.route.route_version == RouteVersion.V3
        assert result.route.fee_tier == 2500
        assert result.amount_out == Decimal("110")
        assert result.amount_out_min == 99 * E18
        assert result.ledger_recorded
        assert result.notification_id == "42"

        version, params = client.swaps[0]
        assert version == RouteVersion.V3
        assert params.is_buy
        assert params.amount_in == E18 // 10
        assert params.fee_tier == 2500

        position = accounting.get_open_position(TOKEN)
        assert position.total_tokens == Decimal("110")
        assert position.total_cost == Decimal("0.1")
        assert watched_tokens.contains(TOKEN)

        message = sink.publish.await_args.args[0]
        assert "CAKE" in message
        assert "V3 (0.25%)" in message

    @pytest.mark.asyncio
    async def test_custom_slippage(self, bot):
        result = await bot.buy(TOKEN, "0.1", slippage_percent="1")

        assert result.amount_out_min == 1089 * E18 // 10

    @pytest.mark.asyncio
    async def test_records_reference_price_and_gas(self, bot, ledger_store):
        result = await bot.buy(TOKEN, "0.1")

        record = ledger_store.load().find(result.ledger_record_id)
        assert record.reference_price == Decimal("600")
        assert record.gas_cost == Decimal("0.001")

    @pytest.mark.asyncio
    async def test_trading_disabled(self, bot, client, settings):
        settings.trading_enabled = False

        result = await bot.buy(TOKEN, "0.1")

        assert not result.success
        assert result.kind == TradeErrorKind.TRADING_DISABLED
        assert client.swaps == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-0.1", "lots", "Infinity"])
    async def test_invalid_amount(self, bot, amount):
        result = await bot.buy(TOKEN, amount)

        assert result.kind == TradeErrorKind.INVALID_INPUT
        assert result.step == TradeStep.VALIDATE_INPUT

    @pytest.mark.asyncio
    async def test_amount_above_max_trade(self, bot):
        result = await bot.buy(TOKEN, "1.5")

        assert result.kind == TradeErrorKind.INVALID_INPUT
        assert "max trade" in result.detail

    @pytest.mark.asyncio
    async def test_slippage_out_of_range(self, bot):
        result = await bot.buy(TOKEN, "0.1", slippage_percent="60")

        assert result.kind == TradeErrorKind.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_malformed_address(self, bot):
        result = await bot.buy("0x1234", "0.1")

        assert result.kind == TradeErrorKind.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_not_a_contract(self, bot, client):
        client.contract = False

        result = await bot.buy(TOKEN, "0.1")

        assert result.kind == TradeErrorKind.INVALID_TOKEN
        assert result.step == TradeStep.VALIDATE_TOKEN

    @pytest.mark.asyncio
    async def test_no_route(self, bot, client, accounting):
        client.buy_quotes = {}

        result = await bot.buy(TOKEN, "0.1")

        assert result.kind == TradeErrorKind.NO_ROUTE
        assert result.step == TradeStep.GET_BEST_ROUTE
        assert accounting.get_trade_history() == []

    @pytest.mark.asyncio
    async def test_swap_error_is_classified_and_ledger_untouched(self, bot, client, ledger_store):
        client.swap_error = RuntimeError("execution reverted: PancakeRouter: INSUFFICIENT_OUTPUT_AMOUNT")

        result = await bot.buy(TOKEN, "0.1")

        assert result.kind == TradeErrorKind.LIQUIDITY
        assert result.step == TradeStep.SUBMIT_SWAP
        assert not ledger_store.path.exists()

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, bot, client, ledger_store):
        client.swap_status_ok = False

        result = await bot.buy(TOKEN, "0.1")

        assert result.kind == TradeErrorKind.REVERTED
        assert result.step == TradeStep.AWAIT_RECEIPT
        assert result.tx_hash is not None
        assert not ledger_store.path.exists()

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_trade(self, bot, sink):
        sink.publish = AsyncMock(side_effect=RuntimeError("telegram down"))

        result = await bot.buy(TOKEN, "0.1")

        assert result.success
        assert result.notification_id is None

    @pytest.mark.asyncio
    async def test_malformed_token_list_does_not_fail_confirmed_buy(self, bot, watched_tokens):
        watched_tokens.path.write_text('{"tokens": null}')

        result = await bot.buy(TOKEN, "0.1")

        assert result.success
        assert result.ledger_recorded
        assert watched_tokens.contains(TOKEN)

    @pytest.mark.asyncio
    async def test_token_list_failure_does_not_fail_confirmed_buy(self, bot, watched_tokens, monkeypatch):
        monkeypatch.setattr(watched_tokens, "add", Mock(side_effect=TypeError("broken list")))

        result = await bot.buy(TOKEN, "0.1")

        assert result.success
        assert result.tx_hash is not None

    @pytest.mark.asyncio
    async def test_ledger_failure_is_flagged_not_fatal(self, bot, ledger_store, monkeypatch):
        monkeypatch.setattr(ledger_store, "save", lambda ledger: False)

        result = await bot.buy(TOKEN, "0.1")

        assert result.success
        assert not result.ledger_recorded


class TestSell:
    """SELL flow"""

    @pytest.mark.asyncio
    async def test_buy_then_sell_realizes_profit(self, bot, client):
        client.buy_quotes = {V2: 100 * E18}
        await bot.buy(TOKEN, "0.1")

        result = await bot.sell(TOKEN, "50")

        assert result.success
        assert result.route.route_version == RouteVersion.V2
        assert result.amount_out == Decimal("0.14")
        assert result.sell_outcome.total_cost_basis == Decimal("0.05")
        assert result.sell_outcome.profit == Decimal("0.09")
        assert result.sell_outcome.profit_percentage == Decimal("180")

    @pytest.mark.asyncio
    async def test_approves_when_allowance_short(self, bot, client):
        await bot.buy(TOKEN, "0.1")

        result = await bot.sell(TOKEN, "10")

        assert result.approval_tx_hash is not None
        assert client.approvals == [(TOKEN, client.router_address(RouteVersion.V2), MAX_UINT256)]

    @pytest.mark.asyncio
    async def test_skips_approval_when_allowance_sufficient(self, bot, client):
        await bot.buy(TOKEN, "0.1")
        client.allowance = MAX_UINT256

        result = await bot.sell(TOKEN, "10")

        assert result.approval_tx_hash is None
        assert client.approvals == []

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, bot, client):
        result = await bot.sell(TOKEN, "10")

        assert result.kind == TradeErrorKind.INSUFFICIENT_FUNDS
        assert client.swaps == []

    @pytest.mark.asyncio
    async def test_selling_everything_unwatches_token(self, bot, client, watched_tokens):
        client.buy_quotes = {V2: 100 * E18}
        await bot.buy(TOKEN, "0.1")

        result = await bot.sell(TOKEN, "100")

        assert result.success
        assert client.token_balance == 0
        assert not watched_tokens.contains(TOKEN)

    @pytest.mark.asyncio
    async def test_partial_sell_keeps_token_watched(self, bot, client, watched_tokens):
        await bot.buy(TOKEN, "0.1")

        await bot.sell(TOKEN, "10")

        assert watched_tokens.contains(TOKEN)

    @pytest.mark.asyncio
    async def test_sell_without_ledger_lots_still_succeeds(self, bot, client):
        client.token_balance = 50 * E18

        result = await bot.sell(TOKEN, "50")

        assert result.success
        assert result.sell_outcome is None
        assert not result.ledger_recorded

    @pytest.mark.asyncio
    async def test_token_list_failure_does_not_fail_confirmed_sell(self, bot, client, watched_tokens, monkeypatch):
        client.buy_quotes = {V2: 100 * E18}
        await bot.buy(TOKEN, "0.1")
        monkeypatch.setattr(watched_tokens, "remove", Mock(side_effect=OSError("read-only")))

        result = await bot.sell(TOKEN, "100")

        assert result.success
        assert result.sell_outcome is not None

    @pytest.mark.asyncio
    async def test_sell_notification_carries_profit(self, bot, client, sink):
        client.buy_quotes = {V2: 100 * E18}
        await bot.buy(TOKEN, "0.1")

        await bot.sell(TOKEN, "50")

        message = sink.publish.await_args.args[0]
        assert "+180.00%" in message


class TestSellPercentage:

    @pytest.mark.asyncio
    async def test_half_of_balance(self, bot, client):
        client.buy_quotes = {V2: 100 * E18}
        await bot.buy(TOKEN, "0.1")

        result = await bot.sell_percentage(TOKEN, 50)

        assert result.amount_in == Decimal("50")
        assert client.token_balance == 50 * E18

    @pytest.mark.asyncio
    async def test_default_percentage_sells_everything(self, bot, client):
        await bot.buy(TOKEN, "0.1")

        result = await bot.sell_percentage(TOKEN)

        assert result.success
        assert client.token_balance == 0

    @pytest.mark.asyncio
    async def test_empty_balance(self, bot):
        result = await bot.sell_percentage(TOKEN, 50)

        assert result.kind == TradeErrorKind.INSUFFICIENT_FUNDS

    @pytest.mark.asyncio
    async def test_percentage_above_100(self, bot):
        result = await bot.sell_percentage(TOKEN, 150)

        assert result.kind == TradeErrorKind.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_full_balance_beyond_default_decimal_precision(self, bot, client):
        client.token_balance = 10 ** 33 - 1

        result = await bot.sell_percentage(TOKEN, 100)

        assert result.success
        assert client.swaps[-1][1].amount_in == 10 ** 33 - 1
        assert client.token_balance == 0

    @pytest.mark.asyncio
    async def test_fractional_percentage_is_exact(self, bot, client):
        client.token_balance = 10 ** 33 - 1

        await bot.sell_percentage(TOKEN, "12.5")

        assert client.swaps[-1][1].amount_in == (10 ** 33 - 1) // 8
