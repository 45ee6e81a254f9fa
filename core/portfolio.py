"""
Portfolio Module
=================

Virtual two-asset portfolio (base asset and quote asset) that the
decision engine trades against.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from exchange_client.models import ExecutedTrade, PortfolioSnapshot, TradeDecision


logger = logging.getLogger(__name__)


class InsufficientBalance(Exception):
    """Trade size is not positive after applying balance constraints."""
    pass


@dataclass
class PortfolioStats:
    """Portfolio-level statistics."""
    total_trades: int = 0
    total_volume: float = 0.0  # Base units bought (and sold)
    total_notional: float = 0.0
    total_fees_paid: float = 0.0
    total_realized_profit: float = 0.0
    winning_trades: int = 0
    losing_trades: int = 0
    
    @property
    def win_rate(self) -> float:
        if self.winning_trades + self.losing_trades == 0:
            return 0.0
        return self.winning_trades / (self.winning_trades + self.losing_trades)


class Portfolio:
    """
    Base/quote balance tracking.
    
    Balances are only changed by apply_trade(), which applies both legs
    of an arbitrage together or not at all, and never leaves a balance
    negative.
    """
    
    def __init__(
        self,
        base_balance: float = 0.0,
        quote_balance: float = 0.0,
        starting_value: Optional[float] = None,
    ):
        if base_balance < 0 or quote_balance < 0:
            raise ValueError("Portfolio balances must be non-negative")
        
        self.base_balance = float(base_balance)
        self.quote_balance = float(quote_balance)
        self.starting_value = starting_value
        
        self.stats = PortfolioStats()
        self._trades: list[ExecutedTrade] = []
        self._listeners: list[Callable[[ExecutedTrade], None]] = []
        
        logger.info(
            f"Portfolio initialized | base={self.base_balance:.6f} | quote={self.quote_balance:.2f}"
        )
    
    @classmethod
    def from_starting_value(cls, starting_value: float, price: float) -> "Portfolio":
        """Split a quote-denominated starting value 50/50 into base and quote at ``price``."""
        if starting_value <= 0:
            raise ValueError("starting_value must be positive")
        if price <= 0:
            raise ValueError("price must be positive")
        
        half = starting_value / 2
        return cls(
            base_balance=half / price,
            quote_balance=half,
            starting_value=starting_value,
        )
    
    def on_trade(self, callback: Callable[[ExecutedTrade], None]) -> None:
        """Register a listener called after each successful trade."""
        self._listeners.append(callback)
    
    def max_trade_size(
        self,
        buy_price: float,
        fee_buy: float,
        max_fraction: float = 1.0,
    ) -> float:
        """
        Largest size (base units) the balances allow.
        
        Bounded by the quote balance on the buy leg, including its fee,
        and by the base balance on the sell leg; both scaled by
        ``max_fraction``.
        """
        if buy_price <= 0:
            return 0.0
        
        by_quote = self.quote_balance / (buy_price * (1 + fee_buy))
        by_base = self.base_balance
        size = min(by_quote, by_base) * max_fraction
        return max(size, 0.0)
    
    def apply_trade(self, decision: TradeDecision) -> ExecutedTrade:
        """
        Apply both legs of an arbitrage.
        
        Buy leg: debit size * buy_price * (1 + fee_buy) quote, credit size base.
        Sell leg: debit size base, credit size * sell_price * (1 - fee_sell) quote.
        
        Raises InsufficientBalance without touching balances when the size
        is not positive or a leg would overdraw a balance.
        """
        size = decision.size
        if size <= 0:
            raise InsufficientBalance(f"Trade size {size} is not positive")
        
        quote_spent = size * decision.buy_price * (1 + decision.fee_buy)
        quote_received = size * decision.sell_price * (1 - decision.fee_sell)
        
        # Tolerate float noise from sizing exactly to the balance
        eps = 1e-9
        if quote_spent > self.quote_balance * (1 + eps):
            raise InsufficientBalance(
                f"Need {quote_spent:.4f} quote, have {self.quote_balance:.4f}"
            )
        if size > self.base_balance * (1 + eps):
            raise InsufficientBalance(
                f"Need {size:.6f} base, have {self.base_balance:.6f}"
            )
        
        fees = size * decision.buy_price * decision.fee_buy + size * decision.sell_price * decision.fee_sell
        
        # Stage both legs, then commit together
        base = self.base_balance
        quote = self.quote_balance

        quote -= quote_spent
        base += size

        base -= size
        quote += quote_received

        self.base_balance = max(base, 0.0)
        self.quote_balance = max(quote, 0.0)
        
        trade = ExecutedTrade(
            trade_id=f"trade_{uuid.uuid4().hex[:12]}",
            decision=decision,
            quote_spent=quote_spent,
            quote_received=quote_received,
            fees_paid=fees,
        )
        self._record(trade)
        
        for listener in self._listeners:
            listener(trade)
        
        return trade
    
    def _record(self, trade: ExecutedTrade) -> None:
        self._trades.append(trade)
        self.stats.total_trades += 1
        self.stats.total_volume += trade.size
        self.stats.total_notional += trade.notional
        self.stats.total_fees_paid += trade.fees_paid
        self.stats.total_realized_profit += trade.realized_profit
        if trade.realized_profit > 0:
            self.stats.winning_trades += 1
        else:
            self.stats.losing_trades += 1
        
        logger.debug(
            f"Portfolio updated | base={self.base_balance:.6f} | quote={self.quote_balance:.2f} | "
            f"profit={trade.realized_profit:.4f}"
        )
    
    def value(self, price: float) -> float:
        """Mark-to-market value in quote units."""
        return self.base_balance * price + self.quote_balance
    
    def pnl_ratio(self, price: float) -> float:
        """P&L relative to the starting value (0.0 when unknown)."""
        if not self.starting_value:
            return 0.0
        return self.value(price) / self.starting_value - 1
    
    def snapshot(self, price: float) -> PortfolioSnapshot:
        return PortfolioSnapshot(
            base_balance=self.base_balance,
            quote_balance=self.quote_balance,
            mark_price=price,
            total_value=self.value(price),
            pnl_ratio=self.pnl_ratio(price),
        )
    
    def get_recent_trades(self, limit: int = 50) -> list[ExecutedTrade]:
        """Get recent trades."""
        return self._trades[-limit:]
    
    def get_summary(self, price: Optional[float] = None) -> dict:
        """Get portfolio summary."""
        summary = {
            "starting_value": self.starting_value,
            "base_balance": self.base_balance,
            "quote_balance": self.quote_balance,
            "total_trades": self.stats.total_trades,
            "win_rate": self.stats.win_rate,
            "total_volume": self.stats.total_volume,
            "fees_paid": self.stats.total_fees_paid,
            "realized_profit": self.stats.total_realized_profit,
        }
        if price is not None:
            summary["total_value"] = self.value(price)
            summary["pnl_ratio"] = self.pnl_ratio(price)
        return summary
