"""
Backtesting Module
===================

Runs the arbitrage engine against simulated two-venue order books.
Runs are reproducible: the same seed gives the same result.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from exchange_client.models import (
    EngineEvent,
    EventKind,
    OrderBookMessage,
    PriceLevel,
    Venue,
    VENUE_A,
    VENUE_B,
)
from core.arb_engine import ArbConfig, ArbEngine
from core.order_book_feedback import OrderBookFeedback
from core.quote_source import BookQuoteSource, OrderBookStore


logger = logging.getLogger(__name__)


@dataclass
class BacktestConfig:
    """Configuration for backtesting."""
    seed: int = 42
    ticks: int = 1000
    start_time: datetime = field(default_factory=lambda: datetime(2024, 1, 1))
    time_step_seconds: float = 1.0
    
    # Books are re-quoted every N ticks; in between they only change
    # through the bot's own impact (persistent mode)
    refresh_every_ticks: int = 3
    
    # Price dynamics
    initial_price: float = 2000.0
    price_volatility: float = 0.0005  # Per-refresh relative std-dev
    spread_range: tuple[float, float] = (0.0001, 0.0004)  # Relative to mid
    dislocation_probability: float = 0.1
    dislocation_magnitude: float = 0.002  # Relative venue B offset
    
    # Liquidity
    levels: int = 5
    level_step: float = 0.0002  # Relative gap between levels
    base_liquidity: float = 2.0  # Base units at the top level


@dataclass
class BacktestResult:
    """Results from a backtest run."""
    ticks: int
    trades: int
    skips: dict[str, int]
    initial_value: float
    final_value: float
    pnl_ratio: float
    fees_paid: float
    max_drawdown: float
    final_base: float
    final_quote: float
    
    def summary(self) -> str:
        """Get a formatted summary."""
        skips = ", ".join(f"{k}={v}" for k, v in sorted(self.skips.items())) or "none"
        return f"""
=== Backtest Results ===
Ticks: {self.ticks}
Trades: {self.trades}
Skips: {skips}

Value: {self.initial_value:.2f} -> {self.final_value:.2f} ({self.pnl_ratio * 100:.4f}%)
Fees Paid: {self.fees_paid:.4f}
Max Drawdown: {self.max_drawdown:.4%}
Final Balances: base={self.final_base:.6f} quote={self.final_quote:.2f}
"""


class SimulatedVenueBook:
    """Generates order book snapshots for one venue around a fair price."""
    
    def __init__(self, venue: Venue, config: BacktestConfig, rng: random.Random):
        self.venue = venue
        self.config = config
        self.rng = rng
    
    def snapshot(self, mid: float) -> OrderBookMessage:
        """Build a multi-level snapshot centred on ``mid``."""
        spread = mid * self.rng.uniform(*self.config.spread_range)
        best_bid = mid - spread / 2
        best_ask = mid + spread / 2
        step = mid * self.config.level_step
        
        bids = []
        asks = []
        for i in range(self.config.levels):
            liquidity_factor = 1.0 / (1 + i * 0.3)
            bid_size = self.config.base_liquidity * liquidity_factor * self.rng.uniform(0.5, 1.5)
            ask_size = self.config.base_liquidity * liquidity_factor * self.rng.uniform(0.5, 1.5)
            bids.append(PriceLevel(price=round(best_bid - i * step, 4), size=round(bid_size, 4)))
            asks.append(PriceLevel(price=round(best_ask + i * step, 4), size=round(ask_size, 4)))
        
        return OrderBookMessage(kind="snapshot", bids=bids, asks=asks)


class BacktestEngine:
    """
    Drives an ArbEngine tick by tick against simulated books.
    
    Books and quotes share a simulated clock, so staleness behaves the
    same way it does live.
    """
    
    def __init__(self, config: BacktestConfig, arb_config: ArbConfig):
        self.config = config
        self.arb_config = arb_config
        self.rng = random.Random(config.seed)
        
        self._now = config.start_time
        self._fair_price = config.initial_price
        self._books = {
            VENUE_A: SimulatedVenueBook(VENUE_A, config, self.rng),
            VENUE_B: SimulatedVenueBook(VENUE_B, config, self.rng),
        }
        
        if arb_config.persistent_trades:
            self.store: OrderBookStore = OrderBookFeedback()
            feedback: Optional[OrderBookFeedback] = self.store
        else:
            self.store = OrderBookStore()
            feedback = None
        
        quote_source = BookQuoteSource(
            self.store,
            staleness_threshold=arb_config.staleness_threshold_seconds,
            clock=self.clock,
        )
        self.engine = ArbEngine(arb_config, quote_source=quote_source, feedback=feedback)
        self.engine.on_event(self._record_event)
        
        self._value_history: list[float] = []
        
        logger.info(f"BacktestEngine initialized (seed={config.seed}, persistent={arb_config.persistent_trades})")
    
    def clock(self) -> datetime:
        return self._now
    
    def _refresh_books(self) -> None:
        """Random-walk the fair price and re-quote both venues."""
        self._fair_price *= 1 + self.rng.gauss(0, self.config.price_volatility)
        mid_a = self._fair_price
        mid_b = self._fair_price
        
        if self.rng.random() < self.config.dislocation_probability:
            offset = self._fair_price * self.config.dislocation_magnitude * self.rng.uniform(0.5, 1.0)
            mid_b += offset if self.rng.random() < 0.5 else -offset
        
        self.store.apply_message(VENUE_A, self._books[VENUE_A].snapshot(mid_a), self._now)
        self.store.apply_message(VENUE_B, self._books[VENUE_B].snapshot(mid_b), self._now)
    
    def _record_event(self, event: EngineEvent) -> None:
        if event.kind == EventKind.SNAPSHOT:
            return
        portfolio = self.engine.portfolio
        price = self.engine.mark_price
        if portfolio is not None and price is not None:
            self._value_history.append(portfolio.value(price))
    
    async def run(self) -> BacktestResult:
        """Run all ticks and collect the result."""
        for i in range(self.config.ticks):
            if i % max(self.config.refresh_every_ticks, 1) == 0:
                self._refresh_books()
            
            await self.engine.tick()
            self._now += timedelta(seconds=self.config.time_step_seconds)
            
            if (i + 1) % 500 == 0:
                logger.info(f"Backtest progress: {i + 1} ticks processed")
        
        return self.get_result()
    
    def get_result(self) -> BacktestResult:
        """Generate backtest results."""
        portfolio = self.engine.portfolio
        stats = self.engine.get_stats()
        
        if portfolio is None or self.engine.mark_price is None:
            initial = final = self.arb_config.starting_value
            return BacktestResult(
                ticks=stats.ticks,
                trades=0,
                skips=dict(stats.skips),
                initial_value=initial,
                final_value=final,
                pnl_ratio=0.0,
                fees_paid=0.0,
                max_drawdown=0.0,
                final_base=0.0,
                final_quote=0.0,
            )
        
        max_drawdown = 0.0
        peak = portfolio.starting_value or 0.0
        for value in self._value_history:
            peak = max(peak, value)
            if peak > 0:
                max_drawdown = max(max_drawdown, (peak - value) / peak)
        
        price = self.engine.mark_price
        return BacktestResult(
            ticks=stats.ticks,
            trades=stats.trades_executed,
            skips=dict(stats.skips),
            initial_value=portfolio.starting_value,
            final_value=portfolio.value(price),
            pnl_ratio=portfolio.pnl_ratio(price),
            fees_paid=portfolio.stats.total_fees_paid,
            max_drawdown=max_drawdown,
            final_base=portfolio.base_balance,
            final_quote=portfolio.quote_balance,
        )


async def run_backtest(config: BacktestConfig, arb_config: ArbConfig) -> BacktestResult:
    """
    Run a backtest with the given configuration.
    
    This is a high-level function that sets up and runs a complete backtest.
    """
    logger.info(f"Starting backtest for {config.ticks} ticks")
    engine = BacktestEngine(config, arb_config)
    result = await engine.run()
    logger.info("Backtest completed")
    return result
