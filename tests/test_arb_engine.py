"""
Tests for the Arbitrage Engine
"""

import asyncio
import pytest
from datetime import datetime, timedelta

from exchange_client.models import (
    BookSide,
    EventKind,
    OrderBook,
    OrderBookSide,
    PriceLevel,
    Quote,
    SkipReason,
    Venue,
)
from core.arb_engine import ArbConfig, ArbEngine
from core.order_book_feedback import OrderBookFeedback
from core.portfolio import Portfolio
from core.quote_source import BookQuoteSource, QuoteSource, ReplayQuoteSource


NOW = datetime(2024, 1, 1, 12, 0, 0)


def clock() -> datetime:
    return NOW


@pytest.fixture
def config() -> ArbConfig:
    """Zero-fee configuration."""
    return ArbConfig(starting_value=1000.0, snapshot_every_ticks=0)


@pytest.fixture
def engine(config: ArbConfig) -> ArbEngine:
    """Engine with a 5 base / 500 quote portfolio."""
    return ArbEngine(config=config, portfolio=Portfolio.from_starting_value(1000.0, 100.0))


def make_quote(
    venue: Venue,
    bid: float,
    ask: float,
    bid_size=None,
    ask_size=None,
    age: float = 0.0,
) -> Quote:
    """Helper to create a quote."""
    return Quote(
        venue=venue,
        bid=bid,
        ask=ask,
        bid_size=bid_size,
        ask_size=ask_size,
        timestamp=NOW - timedelta(seconds=age),
    )


def create_book(venue: Venue, bids: list, asks: list) -> OrderBook:
    """Helper to create an order book from (price, size) tuples."""
    return OrderBook(
        venue=venue,
        bids=OrderBookSide(levels=[PriceLevel(p, s) for p, s in bids]),
        asks=OrderBookSide(levels=[PriceLevel(p, s) for p, s in asks]),
        timestamp=NOW,
    )


class TestProcessQuotes:
    """Tests for single-tick decisions."""
    
    def test_profitable_spread_trades(self, engine: ArbEngine):
        """A 1% zero-fee spread buys on A and sells on B."""
        quote_a = make_quote(Venue.AEVO, 99.5, 100.0)
        quote_b = make_quote(Venue.DYDX, 101.0, 101.5)
        
        event = engine.process_quotes(quote_a, quote_b)
        
        assert event.kind == EventKind.TRADE
        assert event.trade.decision.buy_venue == Venue.AEVO
        assert event.trade.decision.sell_venue == Venue.DYDX
        assert event.trade.size == pytest.approx(5.0)
        assert engine.portfolio.quote_balance == pytest.approx(505.0)
        assert engine.portfolio.base_balance == pytest.approx(5.0)
    
    def test_unprofitable_spread_skips(self, engine: ArbEngine):
        """Fees larger than the spread produce a no-opportunity skip."""
        engine.config = ArbConfig(fee_a=0.0005, fee_b=0.0005, snapshot_every_ticks=0)
        quote_a = make_quote(Venue.AEVO, 99.95, 100.0)
        quote_b = make_quote(Venue.DYDX, 100.05, 100.1)
        
        event = engine.process_quotes(quote_a, quote_b)
        
        assert event.kind == EventKind.SKIP
        assert event.reason == SkipReason.NO_OPPORTUNITY
        assert engine.portfolio.stats.total_trades == 0
    
    def test_missing_quote_skips(self, engine: ArbEngine):
        event = engine.process_quotes(make_quote(Venue.AEVO, 99.5, 100.0), None)
        
        assert event.reason == SkipReason.STALE_QUOTE
        assert engine.stats.skips["stale_quote"] == 1
    
    def test_empty_balance_skips(self, config: ArbConfig):
        """No base to sell means nothing can be traded."""
        engine = ArbEngine(config=config, portfolio=Portfolio(base_balance=0.0, quote_balance=500.0))
        
        event = engine.process_quotes(
            make_quote(Venue.AEVO, 99.5, 100.0),
            make_quote(Venue.DYDX, 101.0, 101.5),
        )
        
        assert event.reason == SkipReason.INSUFFICIENT_BALANCE
    
    def test_top_of_book_cap(self, engine: ArbEngine):
        """Size is capped by the smaller top-of-book size."""
        event = engine.process_quotes(
            make_quote(Venue.AEVO, 99.5, 100.0, ask_size=3.0),
            make_quote(Venue.DYDX, 101.0, 101.5, bid_size=0.5),
        )
        
        assert event.trade.size == pytest.approx(0.5)
    
    def test_lazy_portfolio_at_venue_a_bid(self, config: ArbConfig):
        """Without a portfolio the first tick splits the starting value at A's bid."""
        engine = ArbEngine(config=config)
        
        engine.process_quotes(
            make_quote(Venue.AEVO, 100.0, 100.1),
            make_quote(Venue.DYDX, 100.0, 100.1),
        )
        
        assert engine.portfolio.base_balance == pytest.approx(5.0)
        assert engine.portfolio.quote_balance == pytest.approx(500.0)
    
    def test_deterministic(self, config: ArbConfig):
        """The same quotes against the same state yield the same outcome."""
        quotes = (make_quote(Venue.AEVO, 99.5, 100.0), make_quote(Venue.DYDX, 101.0, 101.5))
        first = ArbEngine(config=config, portfolio=Portfolio(5.0, 500.0))
        second = ArbEngine(config=config, portfolio=Portfolio(5.0, 500.0))
        
        a = first.process_quotes(*quotes)
        b = second.process_quotes(*quotes)
        
        assert a.trade.decision == b.trade.decision
        assert first.portfolio.quote_balance == second.portfolio.quote_balance
    
    def test_balances_never_negative(self, engine: ArbEngine):
        """Repeated full-size trades keep balances non-negative."""
        engine.config = ArbConfig(fee_a=0.001, fee_b=0.001, snapshot_every_ticks=0)
        for _ in range(20):
            engine.process_quotes(
                make_quote(Venue.AEVO, 99.5, 100.0),
                make_quote(Venue.DYDX, 101.0, 101.5),
            )
        
        assert engine.portfolio.base_balance >= 0
        assert engine.portfolio.quote_balance >= 0


class TestEvents:
    """Tests for emitted events."""
    
    def test_one_event_per_tick(self, engine: ArbEngine):
        events = []
        engine.on_event(events.append)
        
        engine.process_quotes(make_quote(Venue.AEVO, 99.5, 100.0), make_quote(Venue.DYDX, 101.0, 101.5))
        engine.process_quotes(make_quote(Venue.AEVO, 99.5, 100.0), make_quote(Venue.DYDX, 99.6, 100.2))
        
        assert [e.kind for e in events] == [EventKind.TRADE, EventKind.SKIP]
        assert [e.tick for e in events] == [1, 2]
    
    def test_trade_event_carries_snapshot(self, engine: ArbEngine):
        event = engine.process_quotes(
            make_quote(Venue.AEVO, 99.5, 100.0),
            make_quote(Venue.DYDX, 101.0, 101.5),
        )
        
        assert event.snapshot.mark_price == 99.5
        assert event.snapshot.quote_balance == pytest.approx(505.0)
    
    def test_periodic_snapshots(self):
        engine = ArbEngine(
            config=ArbConfig(snapshot_every_ticks=2),
            portfolio=Portfolio(5.0, 500.0, starting_value=1000.0),
        )
        events = []
        engine.on_event(events.append)
        
        for _ in range(4):
            engine.process_quotes(make_quote(Venue.AEVO, 100.0, 100.1), make_quote(Venue.DYDX, 100.0, 100.1))
        
        assert sum(1 for e in events if e.kind == EventKind.SNAPSHOT) == 2
    
    def test_listener_error_does_not_stop_engine(self, engine: ArbEngine):
        def broken(event):
            raise RuntimeError("boom")
        
        engine.on_event(broken)
        event = engine.process_quotes(
            make_quote(Venue.AEVO, 99.5, 100.0),
            make_quote(Venue.DYDX, 101.0, 101.5),
        )
        
        assert event.is_trade


class TestTick:
    """Tests for ticks driven by a quote source."""
    
    def test_stale_quote_skips_tick(self, config: ArbConfig):
        """A B quote older than the threshold skips the tick."""
        source = ReplayQuoteSource(
            [(make_quote(Venue.AEVO, 99.5, 100.0), make_quote(Venue.DYDX, 101.0, 101.5, age=10.0))],
            staleness_threshold=5.0,
            clock=clock,
        )
        engine = ArbEngine(config=config, quote_source=source, portfolio=Portfolio(5.0, 500.0))
        
        event = asyncio.run(engine.tick())
        
        assert event.reason == SkipReason.STALE_QUOTE
        assert engine.portfolio.stats.total_trades == 0
        assert engine.stats.ticks == 1
    
    def test_run_max_ticks(self, config: ArbConfig):
        pairs = [
            (make_quote(Venue.AEVO, 99.5, 100.0), make_quote(Venue.DYDX, 101.0, 101.5))
            for _ in range(3)
        ]
        source = ReplayQuoteSource(pairs, clock=clock)
        engine = ArbEngine(config=config, quote_source=source, portfolio=Portfolio(5.0, 500.0))
        
        asyncio.run(engine.run(max_ticks=3))
        
        assert engine.stats.ticks == 3
        assert engine.stats.trades_executed == 3
    
    def test_run_stops_on_event(self, config: ArbConfig):
        source = ReplayQuoteSource([], clock=clock)
        engine = ArbEngine(config=config, quote_source=source)
        stop = asyncio.Event()
        stop.set()
        
        asyncio.run(engine.run(stop_event=stop))
        
        assert engine.stats.ticks == 0
    
    def test_run_survives_failing_tick(self, config: ArbConfig):
        """An unexpected error inside a tick is logged and the loop carries on."""
        
        class BrokenSource(QuoteSource):
            def __init__(self):
                super().__init__(clock=clock)
                self.calls = 0
            
            async def get_quote(self, venue: Venue) -> Quote:
                self.calls += 1
                raise RuntimeError("feed exploded")
        
        source = BrokenSource()
        engine = ArbEngine(config=config, quote_source=source, portfolio=Portfolio(5.0, 500.0))
        
        asyncio.run(engine.run(max_ticks=2))
        
        assert source.calls >= 2
        assert engine.stats.trades_executed == 0


class TestPersistentTrades:
    """Tests for order book feedback mode."""
    
    @pytest.fixture
    def feedback(self) -> OrderBookFeedback:
        adapter = OrderBookFeedback()
        adapter.set_order_book(create_book(Venue.AEVO, [(99.9, 10.0)], [(100.0, 10.0)]))
        adapter.set_order_book(
            create_book(Venue.DYDX, [(101.0, 1.0), (100.9, 5.0)], [(101.2, 5.0)])
        )
        return adapter
    
    def test_requires_feedback(self):
        with pytest.raises(ValueError):
            ArbEngine(config=ArbConfig(persistent_trades=True))
    
    def test_next_tick_sees_impact(self, feedback: OrderBookFeedback):
        """Consuming B's top bid moves the next B quote to the next level."""
        config = ArbConfig(persistent_trades=True, snapshot_every_ticks=0)
        source = BookQuoteSource(feedback, clock=clock)
        engine = ArbEngine(config=config, quote_source=source, feedback=feedback)
        
        event = asyncio.run(engine.tick())
        quote_b = source.quote_for(Venue.DYDX)
        
        assert event.is_trade
        assert event.trade.size == pytest.approx(1.0)
        assert quote_b.bid == 100.9
        assert feedback.impacts_applied == 2
    
    def test_caps_to_depth(self, feedback: OrderBookFeedback):
        """Without the top-of-book cap the size is capped to total depth once."""
        config = ArbConfig(persistent_trades=True, cap_to_top_of_book=False, snapshot_every_ticks=0)
        portfolio = Portfolio(base_balance=50.0, quote_balance=5000.0)
        engine = ArbEngine(config=config, portfolio=portfolio, feedback=feedback)
        
        event = engine.process_quotes(
            feedback.get_order_book(Venue.AEVO).to_quote(),
            feedback.get_order_book(Venue.DYDX).to_quote(),
        )
        
        assert event.is_trade
        assert event.trade.size == pytest.approx(6.0)
        assert event.trade.decision.sell_price == pytest.approx(605.5 / 6)
        assert event.trade.realized_profit == pytest.approx(5.5)
        assert engine.stats.depth_caps == 1
        assert feedback.get_order_book(Venue.DYDX).bids.levels == []
    
    def test_walked_levels_priced_at_vwap(self):
        """Profit reflects the deeper levels actually consumed, not the top of book."""
        feedback = OrderBookFeedback()
        feedback.set_order_book(create_book(Venue.AEVO, [(99.9, 10.0)], [(100.0, 10.0)]))
        feedback.set_order_book(create_book(Venue.DYDX, [(101.0, 1.0), (100.1, 5.0)], [(101.2, 5.0)]))
        config = ArbConfig(persistent_trades=True, cap_to_top_of_book=False, snapshot_every_ticks=0)
        engine = ArbEngine(config=config, portfolio=Portfolio(50.0, 5000.0), feedback=feedback)
        
        event = engine.process_quotes(
            feedback.get_order_book(Venue.AEVO).to_quote(),
            feedback.get_order_book(Venue.DYDX).to_quote(),
        )
        
        assert event.trade.size == pytest.approx(6.0)
        assert event.trade.decision.sell_price == pytest.approx(100.25)
        assert event.trade.realized_profit == pytest.approx(1.5)
        assert engine.portfolio.quote_balance == pytest.approx(5001.5)
    
    def test_unprofitable_walk_skipped(self):
        """A book walk that turns the spread negative trades nothing."""
        feedback = OrderBookFeedback()
        feedback.set_order_book(create_book(Venue.AEVO, [(99.9, 10.0)], [(100.0, 10.0)]))
        feedback.set_order_book(create_book(Venue.DYDX, [(101.0, 1.0), (99.0, 5.0)], [(101.2, 5.0)]))
        config = ArbConfig(persistent_trades=True, cap_to_top_of_book=False, snapshot_every_ticks=0)
        engine = ArbEngine(config=config, portfolio=Portfolio(50.0, 5000.0), feedback=feedback)
        
        event = engine.process_quotes(
            feedback.get_order_book(Venue.AEVO).to_quote(),
            feedback.get_order_book(Venue.DYDX).to_quote(),
        )
        
        assert event.reason == SkipReason.NO_OPPORTUNITY
        assert engine.portfolio.quote_balance == pytest.approx(5000.0)
        assert feedback.available_depth(Venue.DYDX, BookSide.BID) == pytest.approx(6.0)
        assert feedback.impacts_applied == 0
    
    def test_walked_buy_leg_stays_affordable(self):
        """A dearer walked ask shrinks the size to what the quote balance covers."""
        feedback = OrderBookFeedback()
        feedback.set_order_book(create_book(Venue.AEVO, [(99.0, 10.0)], [(100.0, 1.0), (110.0, 10.0)]))
        feedback.set_order_book(create_book(Venue.DYDX, [(120.0, 20.0)], [(121.0, 5.0)]))
        config = ArbConfig(persistent_trades=True, cap_to_top_of_book=False, snapshot_every_ticks=0)
        engine = ArbEngine(config=config, portfolio=Portfolio(50.0, 505.0), feedback=feedback)
        
        event = engine.process_quotes(
            feedback.get_order_book(Venue.AEVO).to_quote(),
            feedback.get_order_book(Venue.DYDX).to_quote(),
        )
        
        assert event.is_trade
        assert event.trade.size < 5.05
        assert event.trade.decision.buy_price > 100.0
        assert event.trade.quote_spent <= 505.0 + 1e-6
        assert engine.portfolio.quote_balance >= 0
    
    def test_non_persistent_books_untouched(self, feedback: OrderBookFeedback):
        """With persistence off the same quotes trade again."""
        config = ArbConfig(persistent_trades=False, snapshot_every_ticks=0)
        source = BookQuoteSource(feedback, clock=clock)
        engine = ArbEngine(config=config, quote_source=source, feedback=feedback)
        
        asyncio.run(engine.run(max_ticks=2))
        
        assert engine.stats.trades_executed == 2
        assert feedback.impacts_applied == 0
        assert source.quote_for(Venue.DYDX).bid == 101.0
