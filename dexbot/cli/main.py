"""
dexbot - PancakeSwap trading bot for BNB Smart Chain
Command-line front-end: buy/sell with best-route selection and realized P&L tracking
"""
import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..data.config import ConfigManager, TradingSettings
from ..data.onchain.web3_client import get_w3
from ..data.pipelines.price_oracle import ReferencePriceOracle
from ..data.registry import registry
from ..execution import (
    PancakeSwapClient,
    PortfolioService,
    QuoteAggregator,
    TradeFailure,
    TradeOrchestrator,
    TradeResult,
)
from ..ledger import LedgerStore, PositionAccountingEngine, TradeKind, WatchedTokenStore
from ..notifications import build_sink
from ..utils.formatting import format_address, format_number, format_percentage

console = Console()


def setup_logging():
    logger.remove()
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    debug_mode = os.getenv("DEBUG", "false").lower() == "true"
    if debug_mode:
        log_level = "DEBUG"
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=log_level,
        colorize=True
    )
    log_dir = Path("logs"); log_dir.mkdir(exist_ok=True)
    logger.add(
        log_dir / "dexbot_{time:YYYY-MM-DD}.log",
        rotation="1 day",
        retention="30 days",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
        level="DEBUG"
    )
    logger.debug("Logging system configured")


def load_settings(config_path: Optional[str] = None) -> TradingSettings:
    if config_path:
        os.environ["DEXBOT_CONFIG"] = config_path
        ConfigManager.reset()
    return ConfigManager().trading_settings()


def build_accounting(settings: TradingSettings) -> PositionAccountingEngine:
    return PositionAccountingEngine(LedgerStore(settings.ledger_path))


def build_client(settings: TradingSettings) -> PancakeSwapClient:
    private_key = ConfigManager.private_key()
    if not private_key:
        raise click.ClickException("PRIVATE_KEY is not set")
    return PancakeSwapClient(get_w3(settings.rpc_url), private_key, settings)


def build_portfolio(settings: TradingSettings) -> PortfolioService:
    client = build_client(settings)
    return PortfolioService(
        settings=settings,
        client=client,
        aggregator=QuoteAggregator(client, settings),
        watched_tokens=WatchedTokenStore(settings.traded_tokens_path),
        price_oracle=ReferencePriceOracle(settings.native_symbol),
    )


def build_orchestrator(settings: TradingSettings) -> TradeOrchestrator:
    client = build_client(settings)
    return TradeOrchestrator(
        settings=settings,
        client=client,
        aggregator=QuoteAggregator(client, settings),
        accounting=build_accounting(settings),
        watched_tokens=WatchedTokenStore(settings.traded_tokens_path),
        price_oracle=ReferencePriceOracle(settings.native_symbol),
        sink=build_sink(settings),
    )


def print_trade_result(result: TradeResult, native_symbol: str = "BNB"):
    if isinstance(result, TradeFailure):
        console.print(f"[red]❌ {result.side.capitalize()} failed ({result.step.value}): {result.error}[/red]")
        if result.tx_hash:
            console.print(f"[dim]Transaction: {result.tx_hash}[/dim]")
        return

    table = Table(title=f"{'🟢' if result.side == 'buy' else '🔴'} {result.message}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    spent_symbol = native_symbol if result.side == "buy" else result.token_symbol
    got_symbol = result.token_symbol if result.side == "buy" else native_symbol
    table.add_row("Transaction", result.tx_hash)
    table.add_row("Spent", f"{format_number(result.amount_in)} {spent_symbol}")
    table.add_row("Received", f"{format_number(result.amount_out)} {got_symbol}")
    table.add_row("Expected", f"{format_number(result.expected_output)} {got_symbol}")
    table.add_row("Slippage", f"{result.slippage_percent}%")
    table.add_row("Gas", f"{result.gas_used} ({format_number(result.gas_cost)} {native_symbol})")
    if result.approval_tx_hash:
        table.add_row("Approval", result.approval_tx_hash)
    if result.sell_outcome:
        outcome = result.sell_outcome
        color = "green" if outcome.profit >= 0 else "red"
        table.add_row("Cost basis", f"{format_number(outcome.total_cost_basis)} {native_symbol}")
        table.add_row("Profit", f"[{color}]{format_number(outcome.profit)} {native_symbol} "
                                f"({format_percentage(outcome.profit_percentage)})[/{color}]")
    console.print(table)

    if not result.ledger_recorded:
        console.print("[yellow]⚠️ Trade executed but was not recorded in the ledger[/yellow]")


@click.group()
@click.option('--config', '-c', help='Path to configuration file')
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, config, debug):
    """dexbot - PancakeSwap trading with best-route selection and P&L tracking"""
    load_dotenv()
    if debug:
        os.environ['DEBUG'] = 'true'
    setup_logging()
    ctx.ensure_object(dict)
    ctx.obj['settings'] = load_settings(config)


@cli.command()
@click.argument('token')
@click.argument('amount', required=False)
@click.option('--slippage', '-s', help='Slippage tolerance in percent (0.1 - 50)')
@click.pass_context
def buy(ctx, token, amount, slippage):
    """Buy TOKEN with AMOUNT BNB (default from settings)"""
    settings: TradingSettings = ctx.obj['settings']
    amount = amount or settings.default_buy_amount

    async def run_buy():
        bot = build_orchestrator(settings)
        console.print(f"[cyan]🔄 Buying {token} with {amount} {settings.native_symbol}...[/cyan]")
        return await bot.buy(token, amount, slippage_percent=slippage)

    try:
        result = asyncio.run(run_buy())
    except KeyboardInterrupt:
        console.print("\n[yellow]Buy cancelled by user[/yellow]")
        return
    print_trade_result(result, settings.native_symbol)
    if isinstance(result, TradeFailure):
        sys.exit(1)


@cli.command()
@click.argument('token')
@click.argument('amount', required=False)
@click.option('--percent', '-p', help='Sell this percentage of the wallet balance instead of an amount')
@click.option('--slippage', '-s', help='Slippage tolerance in percent (0.1 - 50)')
@click.pass_context
def sell(ctx, token, amount, percent, slippage):
    """Sell AMOUNT of TOKEN, or --percent of the balance (default from settings)"""
    settings: TradingSettings = ctx.obj['settings']
    if amount and percent:
        raise click.UsageError("Give either AMOUNT or --percent, not both")

    async def run_sell():
        bot = build_orchestrator(settings)
        if amount:
            console.print(f"[cyan]🔄 Selling {amount} of {token}...[/cyan]")
            return await bot.sell(token, amount, slippage_percent=slippage)
        pct = percent or settings.default_sell_percentage
        console.print(f"[cyan]🔄 Selling {pct}% of {token}...[/cyan]")
        return await bot.sell_percentage(token, pct, slippage_percent=slippage)

    try:
        result = asyncio.run(run_sell())
    except KeyboardInterrupt:
        console.print("\n[yellow]Sell cancelled by user[/yellow]")
        return
    print_trade_result(result, settings.native_symbol)
    if isinstance(result, TradeFailure):
        sys.exit(1)


@cli.command()
@click.argument('token')
@click.argument('amount')
@click.option('--sell', 'is_sell', is_flag=True, help='Quote selling AMOUNT tokens instead of buying with AMOUNT BNB')
@click.pass_context
def quote(ctx, token, amount, is_sell):
    """Compare PancakeSwap V2/V3 routes for a trade"""
    settings: TradingSettings = ctx.obj['settings']

    async def run_quote():
        bot = build_orchestrator(settings)
        info = await bot.aggregator.token_info(token)
        return info, await bot.aggregator.get_best_route(token, amount, not is_sell, token=info)

    info, result = asyncio.run(run_quote())
    if not result.success:
        console.print(f"[red]❌ No route found: {result.error}[/red]")
        for rejected in result.rejected_quotes:
            console.print(f"[dim]  {rejected.route_version.value.upper()} fee={rejected.fee_tier}: {rejected.error}[/dim]")
        sys.exit(1)

    out_symbol = settings.native_symbol if is_sell else info.symbol
    table = Table(title=f"📊 Route comparison ({'sell' if is_sell else 'buy'} {amount})")
    table.add_column("Route", style="cyan")
    table.add_column("Expected output", style="white", justify="right")
    table.add_column("Best", justify="center")
    for route_quote in result.all_quotes:
        is_best = route_quote == result.best_route
        table.add_row(route_quote.label, f"{format_number(route_quote.expected_output_amount)} {out_symbol}",
                      "[green]✅[/green]" if is_best else "")
    for rejected in result.rejected_quotes:
        label = rejected.route_version.value.upper()
        if rejected.fee_tier is not None:
            label = f"{label} ({rejected.fee_tier / 10000:g}%)"
        table.add_row(f"[dim]{label}[/dim]", f"[red]{rejected.error}[/red]", "")
    console.print(table)

    comparison = result.comparison
    console.print(f"\n[bold]Improvement over worst route:[/bold] {comparison.improvement} "
                  f"({comparison.total_quotes} quotes, {comparison.total_rejected} rejected)")


@cli.command()
@click.argument('token')
@click.pass_context
def position(ctx, token):
    """Show the open position for TOKEN"""
    settings: TradingSettings = ctx.obj['settings']
    pos = build_accounting(settings).get_open_position(token)
    if pos is None:
        console.print(f"[yellow]No open position for {token}[/yellow]")
        return

    table = Table(title=f"📦 {pos.token_symbol} position")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Token", pos.token_address)
    table.add_row("Holding", f"{format_number(pos.total_tokens)} {pos.token_symbol}")
    table.add_row("Cost", f"{format_number(pos.total_cost)} {settings.native_symbol}")
    table.add_row("Avg cost", f"{format_number(pos.avg_cost, 12)} {settings.native_symbol}/{pos.token_symbol}")
    table.add_row("Open lots", str(pos.lot_count))
    console.print(table)


@cli.command()
@click.pass_context
def stats(ctx):
    """Show realized trading statistics"""
    settings: TradingSettings = ctx.obj['settings']
    s = build_accounting(settings).get_statistics()
    symbol = settings.native_symbol

    net_color = "green" if s.net_profit >= 0 else "red"
    content = (
        f"Total trades: {s.total_trades} ({s.buy_count} buys, {s.sell_count} sells)\n"
        f"Open positions: {s.open_position_count}\n"
        f"Total profit: [green]{format_number(s.total_profit)} {symbol}[/green]\n"
        f"Total loss: [red]{format_number(s.total_loss)} {symbol}[/red]\n"
        f"Net P&L: [{net_color}]{format_number(s.net_profit)} {symbol}[/{net_color}]\n"
        f"Win rate: {s.win_rate:.2f}%\n"
        f"Avg profit per sell: {format_number(s.average_profit)} {symbol}\n"
        f"Avg loss per sell: {format_number(s.average_loss)} {symbol}\n"
        f"Profit/loss ratio: {f'{s.profit_loss_ratio:.2f}' if s.profit_loss_ratio is not None else 'n/a'}"
    )
    console.print(Panel(content, title="📈 Trading statistics", border_style="blue"))


@cli.command()
@click.option('--limit', '-n', type=int, default=10, help='Number of trades to show')
@click.pass_context
def history(ctx, limit):
    """Show the most recent trades"""
    settings: TradingSettings = ctx.obj['settings']
    trades = build_accounting(settings).get_trade_history(limit)
    if not trades:
        console.print("[yellow]No trades recorded yet[/yellow]")
        return

    table = Table(title=f"📜 Last {len(trades)} trades")
    table.add_column("Time", style="dim")
    table.add_column("Side", justify="center")
    table.add_column("Token", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column(settings.native_symbol, justify="right")
    table.add_column("P&L", justify="right")
    table.add_column("Tx", style="dim")
    for t in trades:
        side = "[green]BUY[/green]" if t.kind == TradeKind.BUY else "[red]SELL[/red]"
        amount = t.original_token_amount if t.kind == TradeKind.BUY and t.original_token_amount else t.token_amount
        native = t.original_native_amount if t.kind == TradeKind.BUY and t.original_native_amount else t.native_amount
        pnl = ""
        if t.profit is not None:
            color = "green" if t.profit >= 0 else "red"
            pnl = f"[{color}]{format_number(t.profit)} ({format_percentage(t.profit_percentage)})[/{color}]"
        table.add_row(t.timestamp.strftime("%Y-%m-%d %H:%M:%S"), side, t.token_symbol,
                      format_number(amount), format_number(native), pnl, format_address(t.tx_hash, 8, 6))
    console.print(table)


@cli.command()
@click.pass_context
def holdings(ctx):
    """List tokens with open lots and the watched token set"""
    settings: TradingSettings = ctx.obj['settings']
    accounting = build_accounting(settings)
    tokens = accounting.get_holding_tokens()
    watched = WatchedTokenStore(settings.traded_tokens_path).load()

    if not tokens and not watched:
        console.print("[yellow]No holdings[/yellow]")
        return

    table = Table(title="💼 Holdings")
    table.add_column("Token", style="cyan")
    table.add_column("Symbol")
    table.add_column("Holding", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Watched", justify="center")
    for address in tokens:
        pos = accounting.get_open_position(address)
        if pos is None:
            continue
        table.add_row(address, pos.token_symbol, format_number(pos.total_tokens),
                      f"{format_number(pos.total_cost)} {settings.native_symbol}",
                      "✅" if address in watched else "")
    for address in watched:
        if address not in tokens:
            table.add_row(address, "-", "-", "-", "✅")
    console.print(table)


@cli.command()
@click.argument('token')
@click.pass_context
def price(ctx, token):
    """Show the spot price of TOKEN in BNB and USD"""
    settings: TradingSettings = ctx.obj['settings']

    async def run_price():
        return await build_portfolio(settings).get_token_price(token)

    result = asyncio.run(run_price())
    if not result.success:
        console.print(f"[red]❌ No price for {token}: {result.error}[/red]")
        sys.exit(1)

    table = Table(title=f"💲 {result.symbol} price")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Token", result.token_address)
    table.add_row(f"Price ({settings.native_symbol})", f"{format_number(result.price_native, 12)} {settings.native_symbol}")
    table.add_row("Price (USD)", f"${format_number(result.price_usd, 8)}" if result.price_usd else "n/a")
    table.add_row("Route", result.route)
    console.print(table)


@cli.command()
@click.pass_context
def wallet(ctx):
    """Show on-chain balances of BNB and every traded token, valued in USD"""
    settings: TradingSettings = ctx.obj['settings']

    async def run_wallet():
        return await build_portfolio(settings).get_holdings()

    report = asyncio.run(run_wallet())
    if not report.success:
        console.print(f"[red]❌ Could not read wallet balances: {report.error}[/red]")
        sys.exit(1)

    table = Table(title="👛 Wallet")
    table.add_column("Symbol", style="cyan")
    table.add_column("Balance", justify="right")
    table.add_column("Price (USD)", justify="right")
    table.add_column("Value (USD)", justify="right")
    table.add_column("Token", style="dim")
    for h in report.holdings:
        table.add_row(h.symbol, format_number(h.balance), f"${format_number(h.price_usd, 8)}",
                      f"${h.value_usd:.2f}", h.address or "native")
    console.print(table)
    console.print(f"\n[bold]Total value:[/bold] ${report.total_value_usd:.2f} "
                  f"({report.found_tokens} assets, {report.scanned_tokens} traded tokens scanned)")


@cli.command()
@click.argument('token')
@click.pass_context
def watch(ctx, token):
    """Add TOKEN to the traded token list"""
    settings: TradingSettings = ctx.obj['settings']

    async def run_watch():
        return await build_portfolio(settings).watch_token(token)

    result = asyncio.run(run_watch())
    if not result.success:
        console.print(f"[red]❌ Could not add {token}: {result.error}[/red]")
        sys.exit(1)
    console.print(f"[green]✅ Added {result.symbol} ({result.token_address})[/green]")


@cli.command()
@click.pass_context
def status(ctx):
    """Show configuration and connectivity"""
    settings: TradingSettings = ctx.obj['settings']

    table = Table(title="🏥 System status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    trading = "[green]ENABLED[/green]" if settings.trading_enabled else "[yellow]DISABLED[/yellow]"
    table.add_row("Trading", trading, "ENABLE_TRADING")
    table.add_row("Slippage", f"{settings.slippage_percent}%", f"gas {settings.gas_price_gwei} gwei / limit {settings.gas_limit}")
    table.add_row("Max trade", f"{settings.max_trade_amount} {settings.native_symbol}",
                  f"default buy {settings.default_buy_amount}, default sell {settings.default_sell_percentage}%")

    private_key = ConfigManager.private_key()
    table.add_row("Wallet", "[green]CONFIGURED[/green]" if private_key else "[red]NOT CONFIGURED[/red]", "PRIVATE_KEY")

    try:
        w3 = get_w3(settings.rpc_url)
        block = w3.eth.block_number
        table.add_row("RPC", "[green]CONNECTED[/green]", f"{settings.rpc_url} (block {block})")
    except Exception as e:
        table.add_row("RPC", "[red]UNREACHABLE[/red]", str(e))

    async def check_prices():
        health = {source.name: await source.health() for source in registry.price_sources}
        return health, await ReferencePriceOracle(settings.native_symbol).get_reference_price()

    health, price = asyncio.run(check_prices())
    for name, h in health.items():
        table.add_row(f"Price: {name}", "[green]OK[/green]" if h.get("ok") else "[red]DOWN[/red]", h.get("error", ""))
    table.add_row(f"{settings.native_symbol}/USD", f"${price}" if price else "[yellow]n/a[/yellow]", "reference price")

    sink = build_sink(settings)
    table.add_row("Notifications", "[green]ON[/green]" if sink else "[yellow]OFF[/yellow]",
                  type(sink).__name__ if sink else "ENABLE_NOTIFICATIONS")
    table.add_row("Ledger", str(settings.ledger_path), "exists" if settings.ledger_path.exists() else "not created yet")
    console.print(table)


def main():
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
