"""
Position Accounting Engine - FIFO cost-basis matching and realized profit.

Every mutating operation is one load-mutate-save cycle against the
LedgerStore, serialized by a lock shared by all engines writing the same
ledger file.
"""

import threading
import time
from collections import deque
from decimal import Decimal
from pathlib import Path
from typing import Deque, Dict, List, Optional

from loguru import logger

from ..data.models import utcnow
from .models import (
    ZERO,
    ConsumedLot,
    Ledger,
    LotStatus,
    OpenPosition,
    SellOutcome,
    TradeKind,
    TradeRecord,
    TradingStatistics,
)
from .store import LedgerStore


_LOCKS: Dict[Path, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = path.resolve()
    with _LOCKS_GUARD:
        if key not in _LOCKS:
            _LOCKS[key] = threading.RLock()
        return _LOCKS[key]


def _dec(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def open_lots(ledger: Ledger, token_address: str) -> Deque[TradeRecord]:
    """HOLDING BUY lots for a token, oldest first (ties keep ledger order)."""
    address = token_address.lower()
    lots = [t for t in ledger.trades if t.is_holding and t.token_address == address]
    lots.sort(key=lambda t: t.timestamp)
    return deque(lots)


class PositionAccountingEngine:
    """Realized-profit bookkeeping over a persisted trade ledger"""

    def __init__(self, store: LedgerStore):
        self.store = store
        self._lock = _lock_for(store.path)

    def _new_id(self, ledger: Ledger, kind: TradeKind) -> str:
        base = f"{kind.value.lower()}_{int(time.time() * 1000)}"
        candidate, n = base, 1
        existing = {t.id for t in ledger.trades}
        while candidate in existing:
            candidate = f"{base}_{n}"
            n += 1
        return candidate

    def record_buy(self, token_address: str, symbol: str, native_amount, token_amount,
                   reference_price, gas_cost, tx_hash: str) -> Optional[str]:
        """Append a HOLDING lot. Returns the record id, or None if it could not be persisted."""
        try:
            with self._lock:
                ledger = self.store.load()
                record = TradeRecord(
                    id=self._new_id(ledger, TradeKind.BUY),
                    kind=TradeKind.BUY,
                    token_address=token_address,
                    token_symbol=symbol,
                    native_amount=_dec(native_amount),
                    token_amount=_dec(token_amount),
                    reference_price=_dec(reference_price),
                    gas_cost=_dec(gas_cost),
                    tx_hash=tx_hash,
                    status=LotStatus.HOLDING,
                    original_native_amount=_dec(native_amount),
                    original_token_amount=_dec(token_amount),
                    original_gas_cost=_dec(gas_cost),
                )
                ledger.trades.append(record)
                ledger.summary.total_trades = len(ledger.trades)
                ledger.summary.last_updated = utcnow()

                if not self.store.save(ledger):
                    logger.error(f"BUY {symbol} ({tx_hash}) executed but was not recorded in the ledger")
                    return None

            logger.info(f"Recorded BUY {record.id}: {record.token_amount} {symbol} for {record.native_amount}")
            return record.id
        except Exception as e:
            logger.error(f"Failed to record BUY for {token_address}: {e}")
            return None

    def record_sell(self, token_address: str, symbol: str, token_amount, native_received,
                    reference_price, gas_cost, tx_hash: str) -> Optional[SellOutcome]:
        """
        Match a sale against the oldest HOLDING lots first.

        Cost taken from a lot is proportional to the share of the lot sold;
        gas is apportioned the same way. Partially consumed lots shrink in
        place and stay HOLDING. Returns None (ledger untouched) when the
        token has no open lots, or when the result could not be persisted.
        """
        try:
            with self._lock:
                ledger = self.store.load()
                lots = open_lots(ledger, token_address)
                if not lots:
                    logger.warning(f"No open BUY lots for {symbol} ({token_address}), sell not recorded")
                    return None

                remaining = _dec(token_amount)
                consumed: List[ConsumedLot] = []
                total_cost = ZERO

                while lots and remaining > 0:
                    lot = lots.popleft()
                    if lot.token_amount <= 0:
                        continue

                    if remaining >= lot.token_amount:
                        tokens_used = lot.token_amount
                        cost = lot.native_amount
                        gas = lot.gas_cost
                        lot.token_amount = ZERO
                        lot.native_amount = ZERO
                        lot.gas_cost = ZERO
                        lot.status = LotStatus.SOLD
                    else:
                        tokens_used = remaining
                        cost = lot.native_amount * tokens_used / lot.token_amount
                        gas = lot.gas_cost * tokens_used / lot.token_amount
                        lot.token_amount -= tokens_used
                        lot.native_amount = max(lot.native_amount - cost, ZERO)
                        lot.gas_cost = max(lot.gas_cost - gas, ZERO)

                    remaining -= tokens_used
                    total_cost += cost
                    consumed.append(ConsumedLot(
                        source_buy_id=lot.id,
                        tokens_consumed=tokens_used,
                        cost_consumed=cost,
                        gas_consumed=gas,
                    ))

                if not consumed:
                    logger.warning(f"Open lots for {symbol} are empty, sell not recorded")
                    return None
                if remaining > 0:
                    logger.warning(f"Sell of {token_amount} {symbol} exceeds tracked lots by {remaining}")

                revenue = _dec(native_received)
                profit = revenue - total_cost
                profit_percentage = profit / total_cost * 100 if total_cost != 0 else ZERO

                record = TradeRecord(
                    id=self._new_id(ledger, TradeKind.SELL),
                    kind=TradeKind.SELL,
                    token_address=token_address,
                    token_symbol=symbol,
                    native_amount=revenue,
                    token_amount=_dec(token_amount),
                    reference_price=_dec(reference_price),
                    gas_cost=_dec(gas_cost),
                    tx_hash=tx_hash,
                    total_cost_basis=total_cost,
                    profit=profit,
                    profit_percentage=profit_percentage,
                    consumed_lots=consumed,
                )
                ledger.trades.append(record)
                self._apply_to_summary(ledger, profit)

                if not self.store.save(ledger):
                    logger.error(f"SELL {symbol} ({tx_hash}) executed but was not recorded in the ledger")
                    return None

            logger.info(f"Recorded SELL {record.id}: profit {profit} ({profit_percentage:.2f}%)")
            return SellOutcome(
                record_id=record.id,
                profit=profit,
                profit_percentage=profit_percentage,
                total_cost_basis=total_cost,
                revenue=revenue,
                consumed_lots=consumed,
            )
        except Exception as e:
            logger.error(f"Failed to record SELL for {token_address}: {e}")
            return None

    @staticmethod
    def _apply_to_summary(ledger: Ledger, profit: Decimal) -> None:
        summary = ledger.summary
        summary.total_trades = len(ledger.trades)
        if profit > 0:
            summary.total_profit += profit
        else:
            summary.total_loss += abs(profit)

        sells = ledger.sells()
        wins = sum(1 for s in sells if s.profit is not None and s.profit > 0)
        summary.win_rate = Decimal(wins) * 100 / Decimal(len(sells)) if sells else ZERO
        summary.last_updated = utcnow()

    def get_open_position(self, token_address: str) -> Optional[OpenPosition]:
        lots = open_lots(self.store.load(), token_address)
        if not lots:
            return None

        total_tokens = sum((lot.token_amount for lot in lots), ZERO)
        total_cost = sum((lot.native_amount for lot in lots), ZERO)
        avg_cost = total_cost / total_tokens if total_tokens > 0 else ZERO
        return OpenPosition(
            token_address=token_address.lower(),
            token_symbol=lots[0].token_symbol,
            total_tokens=total_tokens,
            total_cost=total_cost,
            avg_cost=avg_cost,
            lot_count=len(lots),
        )

    def get_statistics(self) -> TradingStatistics:
        ledger = self.store.load()
        summary = ledger.summary
        buy_count = sum(1 for t in ledger.trades if t.kind == TradeKind.BUY)
        sell_count = len(ledger.trades) - buy_count
        divisor = Decimal(max(sell_count, 1))

        return TradingStatistics(
            total_trades=len(ledger.trades),
            buy_count=buy_count,
            sell_count=sell_count,
            total_profit=summary.total_profit,
            total_loss=summary.total_loss,
            net_profit=summary.total_profit - summary.total_loss,
            win_rate=summary.win_rate,
            open_position_count=sum(1 for t in ledger.trades if t.is_holding),
            average_profit=summary.total_profit / divisor,
            average_loss=summary.total_loss / divisor,
            profit_loss_ratio=summary.total_profit / summary.total_loss if summary.total_loss > 0 else None,
        )

    def get_trade_history(self, limit: int = 10) -> List[TradeRecord]:
        trades = self.store.load().trades
        order = sorted(range(len(trades)), key=lambda i: (trades[i].timestamp, i), reverse=True)
        return [trades[i] for i in order[:limit]]

    def get_holding_tokens(self) -> List[str]:
        seen: List[str] = []
        for record in self.store.load().trades:
            if record.is_holding and record.token_address not in seen:
                seen.append(record.token_address)
        return seen
