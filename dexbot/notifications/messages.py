"""
Trade announcement text for buys and sells
"""

from decimal import Decimal
from typing import Optional

from ..utils.formatting import format_address, format_number, format_percentage


def build_buy_message(symbol: str, native_amount: Decimal, token_amount: Decimal, tx_hash: str,
                      route_label: str, native_symbol: str = "BNB",
                      reference_price: Optional[Decimal] = None) -> str:
    lines = [
        f"🟢 Bought ${symbol}",
        f"💰 Spent: {format_number(native_amount)} {native_symbol}",
        f"🎯 Received: {format_number(token_amount)} {symbol}",
        f"🛣 Route: {route_label}",
    ]
    if reference_price:
        usd = native_amount * reference_price
        lines.append(f"💵 Value: ${format_number(usd, 2)}")
    lines.append(f"📄 Tx: {format_address(tx_hash, 10, 8)}")
    return "\n".join(lines)


def build_sell_message(symbol: str, token_amount: Decimal, native_received: Decimal, tx_hash: str,
                       route_label: str, native_symbol: str = "BNB",
                       profit: Optional[Decimal] = None,
                       profit_percentage: Optional[Decimal] = None) -> str:
    """Sell announcement; realized profit is included when the ledger matched the sale."""
    lines = [
        f"🔴 Sold ${symbol}",
        f"💸 Amount: {format_number(token_amount)} {symbol}",
        f"💰 Received: {format_number(native_received)} {native_symbol}",
        f"🛣 Route: {route_label}",
    ]
    if profit is not None:
        emoji = "📈" if profit >= 0 else "📉"
        pct = f" ({format_percentage(profit_percentage)})" if profit_percentage is not None else ""
        lines.append(f"{emoji} P/L: {format_number(profit)} {native_symbol}{pct}")
    lines.append(f"📄 Tx: {format_address(tx_hash, 10, 8)}")
    return "\n".join(lines)
