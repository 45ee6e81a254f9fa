"""
Arbitrage Engine Module
========================

Per-tick decision loop for cross-venue arbitrage:
quote fetch -> evaluate -> size -> apply -> optional book feedback.

Ticks are strictly serialized; a tick (including any order book
mutation) completes before the next one starts.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from exchange_client.models import (
    EngineEvent,
    EventKind,
    ExecutedTrade,
    Quote,
    SkipReason,
    SpreadEvaluation,
    TradeDecision,
    TradeDirection,
)
from core.order_book_feedback import InsufficientDepth, OrderBookFeedback
from core.portfolio import InsufficientBalance, Portfolio
from core.quote_source import QuoteSource, StaleQuote
from core.spread_calculator import SpreadCalculator


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArbConfig:
    """Configuration for the arbitrage engine."""
    # Fees as ratios of notional (0.00015 == 0.015%); 0 disables
    fee_a: float = 0.0
    fee_b: float = 0.0
    
    # Used to build the portfolio on the first valid tick if none is given
    starting_value: float = 1000.0
    
    # Feed simulated trades back into the observed books
    persistent_trades: bool = False
    
    # Quote freshness
    staleness_threshold_seconds: float = 5.0
    quote_timeout_seconds: float = 2.0
    
    # Sizing
    max_trade_fraction: float = 1.0
    cap_to_top_of_book: bool = True
    min_net_profit_ratio: float = 0.0
    
    # Emit a portfolio snapshot every N ticks (0 disables)
    snapshot_every_ticks: int = 100


@dataclass
class ArbStats:
    """Statistics for the arbitrage engine."""
    ticks: int = 0
    opportunities_detected: int = 0
    trades_executed: int = 0
    depth_caps: int = 0
    skips: dict[str, int] = field(default_factory=dict)
    best_net_profit_ratio: float = 0.0
    last_trade_time: Optional[datetime] = None
    
    def record_skip(self, reason: SkipReason) -> None:
        self.skips[reason.value] = self.skips.get(reason.value, 0) + 1


class ArbEngine:
    """
    Cross-venue arbitrage decision engine.
    
    Owns the portfolio and, in persistent mode, drives the order book
    feedback adapter. Every tick yields exactly one TRADE or SKIP event;
    SNAPSHOT events are emitted periodically on top of those.
    """
    
    def __init__(
        self,
        config: ArbConfig,
        quote_source: Optional[QuoteSource] = None,
        portfolio: Optional[Portfolio] = None,
        feedback: Optional[OrderBookFeedback] = None,
        calculator: Optional[SpreadCalculator] = None,
    ):
        if config.persistent_trades and feedback is None:
            raise ValueError("persistent_trades requires an OrderBookFeedback adapter")
        
        self.config = config
        self.quote_source = quote_source
        self.portfolio = portfolio
        self.feedback = feedback if config.persistent_trades else None
        self.calculator = calculator or SpreadCalculator(config.min_net_profit_ratio)
        self.stats = ArbStats()
        
        self._listeners: list[Callable[[EngineEvent], None]] = []
        self._mark_price: Optional[float] = None
        
        logger.info(
            f"ArbEngine initialized | fee_a={config.fee_a} | fee_b={config.fee_b} | "
            f"persistent={config.persistent_trades} | max_fraction={config.max_trade_fraction}"
        )
    
    def on_event(self, callback: Callable[[EngineEvent], None]) -> None:
        """Register a listener for engine events."""
        self._listeners.append(callback)
    
    @property
    def mark_price(self) -> Optional[float]:
        """Latest venue A bid, used to value the base balance."""
        return self._mark_price
    
    async def tick(self) -> EngineEvent:
        """Fetch one quote per venue and run a tick on them."""
        if self.quote_source is None:
            raise RuntimeError("ArbEngine has no quote source")
        
        try:
            quote_a, quote_b = await self.quote_source.fetch_quotes(
                timeout=self.config.quote_timeout_seconds
            )
        except StaleQuote as e:
            self.stats.ticks += 1
            return self._skip(SkipReason.STALE_QUOTE, str(e))
        
        return self.process_quotes(quote_a, quote_b)
    
    async def run(
        self,
        stop_event: Optional[asyncio.Event] = None,
        interval: float = 0.0,
        max_ticks: Optional[int] = None,
    ) -> None:
        """
        Run ticks until stopped.
        
        The stop event is only checked between ticks.
        """
        stop_event = stop_event or asyncio.Event()
        ticks = 0
        while not stop_event.is_set():
            if max_ticks is not None and ticks >= max_ticks:
                break
            try:
                await self.tick()
            except Exception as e:
                logger.exception(f"Tick failed: {e}")
            ticks += 1
            
            if interval > 0:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(0)
        
        logger.info(f"ArbEngine stopped after {ticks} ticks")
    
    def process_quotes(self, quote_a: Optional[Quote], quote_b: Optional[Quote]) -> EngineEvent:
        """
        Run one tick on a pair of already-fetched quotes.
        
        Deterministic given the same quotes and state. Per-tick errors
        are turned into SKIP events; balances are never left half-updated.
        """
        self.stats.ticks += 1
        
        if quote_a is None or quote_b is None:
            missing = "A" if quote_a is None else "B"
            return self._skip(SkipReason.STALE_QUOTE, f"quote for venue {missing} unavailable")
        
        self._mark_price = quote_a.bid
        if self.portfolio is None:
            self.portfolio = Portfolio.from_starting_value(self.config.starting_value, quote_a.bid)
            logger.info(
                f"Portfolio initialized at price {quote_a.bid:.4f} | "
                f"base={self.portfolio.base_balance:.6f} | quote={self.portfolio.quote_balance:.2f}"
            )
        
        evaluation = self.calculator.evaluate(quote_a, self.config.fee_a, quote_b, self.config.fee_b)
        if not evaluation.is_profitable:
            event = self._skip(
                SkipReason.NO_OPPORTUNITY,
                f"net a->b={_fmt(evaluation.ratio_a_to_b)} b->a={_fmt(evaluation.ratio_b_to_a)}",
            )
            self._maybe_snapshot()
            return event
        
        self.stats.opportunities_detected += 1
        self.stats.best_net_profit_ratio = max(
            self.stats.best_net_profit_ratio, evaluation.net_profit_ratio
        )
        logger.info(
            f"Spread opportunity: {evaluation.direction.value} | "
            f"net={evaluation.net_profit_ratio:.6f} | "
            f"A bid/ask={quote_a.bid}/{quote_a.ask} | B bid/ask={quote_b.bid}/{quote_b.ask}"
        )
        
        decision = self.size_trade(evaluation, quote_a, quote_b)
        if decision.size <= 0:
            event = self._skip(SkipReason.INSUFFICIENT_BALANCE, "no tradeable size")
            self._maybe_snapshot()
            return event
        
        if self.feedback is not None:
            decision = self._fit_to_depth(decision)
            if decision is None:
                event = self._skip(SkipReason.INSUFFICIENT_DEPTH, "book cannot absorb trade")
                self._maybe_snapshot()
                return event
            
            decision = self._price_from_book(decision)
            if decision is None:
                event = self._skip(SkipReason.INSUFFICIENT_BALANCE, "no affordable size at walked prices")
                self._maybe_snapshot()
                return event
            if decision.expected_net_profit_ratio <= self.calculator.min_net_profit_ratio:
                event = self._skip(
                    SkipReason.NO_OPPORTUNITY,
                    f"net {decision.expected_net_profit_ratio:.6f} after walking the book",
                )
                self._maybe_snapshot()
                return event
        
        try:
            trade = self.portfolio.apply_trade(decision)
        except InsufficientBalance as e:
            event = self._skip(SkipReason.INSUFFICIENT_BALANCE, str(e))
            self._maybe_snapshot()
            return event
        
        if self.feedback is not None:
            # Depth was verified above and nothing else writes between
            self.feedback.apply_trade(decision)
        
        event = self._trade(trade)
        self._maybe_snapshot()
        return event
    
    def size_trade(
        self,
        evaluation: SpreadEvaluation,
        quote_a: Quote,
        quote_b: Quote,
    ) -> TradeDecision:
        """Turn a profitable evaluation into a sized decision."""
        if evaluation.direction == TradeDirection.BUY_A_SELL_B:
            buy_quote, sell_quote = quote_a, quote_b
            fee_buy, fee_sell = self.config.fee_a, self.config.fee_b
        else:
            buy_quote, sell_quote = quote_b, quote_a
            fee_buy, fee_sell = self.config.fee_b, self.config.fee_a
        
        size = self.portfolio.max_trade_size(
            buy_quote.ask,
            fee_buy,
            self.config.max_trade_fraction,
        )
        if self.config.cap_to_top_of_book:
            if buy_quote.ask_size is not None:
                size = min(size, buy_quote.ask_size)
            if sell_quote.bid_size is not None:
                size = min(size, sell_quote.bid_size)
        
        return TradeDecision(
            buy_venue=buy_quote.venue,
            sell_venue=sell_quote.venue,
            size=max(size, 0.0),
            buy_price=buy_quote.ask,
            sell_price=sell_quote.bid,
            fee_buy=fee_buy,
            fee_sell=fee_sell,
            expected_net_profit_ratio=evaluation.net_profit_ratio,
        )
    
    def _fit_to_depth(self, decision: TradeDecision) -> Optional[TradeDecision]:
        """Cap a decision to available book depth, retrying once."""
        try:
            self.feedback.ensure_depth(decision)
            return decision
        except InsufficientDepth as e:
            logger.info(f"Capping trade to available depth: {e}")
            capped = decision.with_size(min(decision.size, e.available))
        
        if capped.size <= 0:
            return None
        try:
            self.feedback.ensure_depth(capped)
        except InsufficientDepth as e:
            logger.warning(f"Trade still exceeds depth after cap: {e}")
            return None
        
        self.stats.depth_caps += 1
        return capped
    
    def _price_from_book(self, decision: TradeDecision) -> Optional[TradeDecision]:
        """
        Charge each leg at the VWAP of the levels it consumes.
        
        Deeper levels can make the buy leg dearer than the quoted ask, so
        the size is shrunk once to what the balances afford at that price.
        """
        priced = self.feedback.reprice(decision)
        affordable = self.portfolio.max_trade_size(
            priced.buy_price,
            priced.fee_buy,
            self.config.max_trade_fraction,
        )
        if affordable >= priced.size:
            return priced
        if affordable <= 0:
            return None
        return self.feedback.reprice(decision.with_size(affordable))
    
    def snapshot(self) -> Optional[EngineEvent]:
        """Emit a portfolio snapshot event at the current mark price."""
        if self.portfolio is None or self._mark_price is None:
            return None
        event = EngineEvent(
            kind=EventKind.SNAPSHOT,
            tick=self.stats.ticks,
            snapshot=self.portfolio.snapshot(self._mark_price),
        )
        self._emit(event)
        return event
    
    def _maybe_snapshot(self) -> None:
        every = self.config.snapshot_every_ticks
        if every and self.stats.ticks % every == 0:
            self.snapshot()
    
    def _skip(self, reason: SkipReason, detail: str = "") -> EngineEvent:
        self.stats.record_skip(reason)
        if reason == SkipReason.NO_OPPORTUNITY:
            logger.debug(f"Tick {self.stats.ticks} idle: {detail}")
        else:
            logger.info(f"Tick {self.stats.ticks} skipped ({reason.value}): {detail}")
        
        event = EngineEvent(kind=EventKind.SKIP, tick=self.stats.ticks, reason=reason, detail=detail)
        self._emit(event)
        return event
    
    def _trade(self, trade: ExecutedTrade) -> EngineEvent:
        self.stats.trades_executed += 1
        self.stats.last_trade_time = trade.timestamp
        
        decision = trade.decision
        logger.info(
            f"Trade executed: BUY {decision.size:.4f} on {decision.buy_venue.value} @ {decision.buy_price:.4f} | "
            f"SELL on {decision.sell_venue.value} @ {decision.sell_price:.4f} | "
            f"profit={trade.realized_profit:.4f}"
        )
        
        event = EngineEvent(
            kind=EventKind.TRADE,
            tick=self.stats.ticks,
            trade=trade,
            snapshot=self.portfolio.snapshot(self._mark_price),
        )
        self._emit(event)
        return event
    
    def _emit(self, event: EngineEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener error: {e}")
    
    def get_stats(self) -> ArbStats:
        """Get engine statistics."""
        return self.stats


def _fmt(ratio: Optional[float]) -> str:
    return "n/a" if ratio is None else f"{ratio:.6f}"
