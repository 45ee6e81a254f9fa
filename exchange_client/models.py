"""
Data Models for the Cross-Venue Arbitrage Bot
==============================================

Defines core data structures used throughout the trading system.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Venue(Enum):
    """Trading venue enumeration. AEVO is venue A, DYDX is venue B."""
    AEVO = "aevo"
    DYDX = "dydx"


VENUE_A = Venue.AEVO
VENUE_B = Venue.DYDX


class BookSide(Enum):
    """Side of an order book."""
    BID = "bid"
    ASK = "ask"


class TradeDirection(Enum):
    """Outcome of a spread evaluation."""
    BUY_A_SELL_B = "buy_a_sell_b"
    BUY_B_SELL_A = "buy_b_sell_a"
    NO_OPPORTUNITY = "no_opportunity"


class SkipReason(Enum):
    """Why a tick ended without a trade."""
    STALE_QUOTE = "stale_quote"
    NO_OPPORTUNITY = "no_opportunity"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    INSUFFICIENT_DEPTH = "insufficient_depth"


class EventKind(Enum):
    """Kind of event emitted by the decision engine."""
    TRADE = "trade"
    SKIP = "skip"
    SNAPSHOT = "snapshot"


@dataclass
class PriceLevel:
    """Single price level in an order book."""
    price: float
    size: float
    
    def __post_init__(self) -> None:
        self.price = float(self.price)
        self.size = float(self.size)


@dataclass
class OrderBookSide:
    """One side of an order book (bids or asks)."""
    levels: list[PriceLevel] = field(default_factory=list)
    
    @property
    def best_price(self) -> Optional[float]:
        """Get the best price on this side."""
        if not self.levels:
            return None
        return self.levels[0].price
    
    @property
    def best_size(self) -> Optional[float]:
        """Get the size at the best price."""
        if not self.levels:
            return None
        return self.levels[0].size
    
    def total_size(self, levels: Optional[int] = None) -> float:
        """Get total size in the top N levels (all levels when N is None)."""
        return sum(level.size for level in self.levels[:levels])
    
    def copy(self) -> "OrderBookSide":
        return OrderBookSide(levels=[PriceLevel(l.price, l.size) for l in self.levels])


@dataclass
class OrderBook:
    """
    Order book for one instrument on one venue.
    
    Bids are kept sorted best (highest) first, asks best (lowest) first.
    """
    venue: Venue
    symbol: str = ""
    bids: OrderBookSide = field(default_factory=OrderBookSide)
    asks: OrderBookSide = field(default_factory=OrderBookSide)
    timestamp: datetime = field(default_factory=datetime.utcnow)
    
    @property
    def best_bid(self) -> Optional[float]:
        return self.bids.best_price
    
    @property
    def best_ask(self) -> Optional[float]:
        return self.asks.best_price
    
    @property
    def best_bid_size(self) -> Optional[float]:
        return self.bids.best_size
    
    @property
    def best_ask_size(self) -> Optional[float]:
        return self.asks.best_size
    
    @property
    def spread(self) -> Optional[float]:
        """Calculate bid-ask spread."""
        if self.best_bid is None or self.best_ask is None:
            return None
        return self.best_ask - self.best_bid
    
    @property
    def mid_price(self) -> Optional[float]:
        """Calculate mid price."""
        if self.best_bid is None or self.best_ask is None:
            return None
        return (self.best_bid + self.best_ask) / 2
    
    def side(self, side: BookSide) -> OrderBookSide:
        return self.bids if side == BookSide.BID else self.asks
    
    def apply_snapshot(
        self,
        bids: list[PriceLevel],
        asks: list[PriceLevel],
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Replace both sides of the book."""
        self.bids = OrderBookSide(levels=_sorted_levels(bids, BookSide.BID))
        self.asks = OrderBookSide(levels=_sorted_levels(asks, BookSide.ASK))
        self.timestamp = timestamp or datetime.utcnow()
    
    def apply_update(
        self,
        side: BookSide,
        levels: list[PriceLevel],
        timestamp: Optional[datetime] = None,
    ) -> None:
        """
        Apply incremental level updates to one side.
        
        Each level replaces the size resting at its price; a size of
        zero (or less) removes the level.
        """
        by_price = {level.price: level for level in self.side(side).levels}
        for level in levels:
            if level.size <= 0:
                by_price.pop(level.price, None)
            else:
                by_price[level.price] = PriceLevel(level.price, level.size)
        
        book_side = OrderBookSide(levels=_sorted_levels(list(by_price.values()), side))
        if side == BookSide.BID:
            self.bids = book_side
        else:
            self.asks = book_side
        self.timestamp = timestamp or datetime.utcnow()
    
    def to_quote(self) -> Optional["Quote"]:
        """Build a top-of-book quote, or None if the book is unusable."""
        bid, ask = self.best_bid, self.best_ask
        if bid is None or ask is None or bid <= 0 or bid > ask:
            return None
        return Quote(
            venue=self.venue,
            bid=bid,
            ask=ask,
            bid_size=self.best_bid_size,
            ask_size=self.best_ask_size,
            timestamp=self.timestamp,
        )
    
    def copy(self) -> "OrderBook":
        return OrderBook(
            venue=self.venue,
            symbol=self.symbol,
            bids=self.bids.copy(),
            asks=self.asks.copy(),
            timestamp=self.timestamp,
        )


def _sorted_levels(levels: list[PriceLevel], side: BookSide) -> list[PriceLevel]:
    return sorted(
        (level for level in levels if level.size > 0),
        key=lambda level: level.price,
        reverse=(side == BookSide.BID),
    )


@dataclass(frozen=True)
class Quote:
    """Immutable top-of-book snapshot for one venue."""
    venue: Venue
    bid: float
    ask: float
    timestamp: datetime = field(default_factory=datetime.utcnow)
    bid_size: Optional[float] = None  # None when the venue did not report size
    ask_size: Optional[float] = None
    
    def __post_init__(self) -> None:
        if self.bid <= 0 or self.ask <= 0:
            raise ValueError(f"Quote prices must be positive: bid={self.bid} ask={self.ask}")
        if self.bid > self.ask:
            raise ValueError(f"Crossed quote: bid={self.bid} > ask={self.ask}")
    
    def age(self, now: Optional[datetime] = None) -> float:
        """Seconds elapsed since the quote was taken."""
        return ((now or datetime.utcnow()) - self.timestamp).total_seconds()


@dataclass(frozen=True)
class SpreadEvaluation:
    """Result of evaluating both trade directions for a pair of quotes."""
    direction: TradeDirection
    net_profit_ratio: float
    ratio_a_to_b: Optional[float] = None
    ratio_b_to_a: Optional[float] = None
    
    @property
    def is_profitable(self) -> bool:
        return self.direction != TradeDirection.NO_OPPORTUNITY


@dataclass(frozen=True)
class TradeDecision:
    """A sized trade the engine has decided to take."""
    buy_venue: Venue
    sell_venue: Venue
    size: float
    buy_price: float
    sell_price: float
    fee_buy: float = 0.0
    fee_sell: float = 0.0
    expected_net_profit_ratio: float = 0.0
    
    def with_size(self, size: float) -> "TradeDecision":
        return replace(self, size=size)
    
    def with_prices(self, buy_price: float, sell_price: float) -> "TradeDecision":
        """Same trade at new leg prices, with the expected ratio recomputed."""
        ratio = (sell_price - buy_price) / buy_price - (self.fee_buy + self.fee_sell)
        return replace(
            self,
            buy_price=buy_price,
            sell_price=sell_price,
            expected_net_profit_ratio=ratio,
        )


@dataclass
class ExecutedTrade:
    """A pair of offsetting legs applied to the portfolio."""
    trade_id: str
    decision: TradeDecision
    quote_spent: float  # Buy leg cost including fee
    quote_received: float  # Sell leg proceeds net of fee
    fees_paid: float
    timestamp: datetime = field(default_factory=datetime.utcnow)
    
    @property
    def size(self) -> float:
        return self.decision.size
    
    @property
    def realized_profit(self) -> float:
        return self.quote_received - self.quote_spent
    
    @property
    def notional(self) -> float:
        return self.decision.size * self.decision.buy_price


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Mark-to-market view of the portfolio."""
    base_balance: float
    quote_balance: float
    mark_price: float
    total_value: float
    pnl_ratio: float
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class EngineEvent:
    """Event emitted by the decision engine once per tick (plus snapshots)."""
    kind: EventKind
    tick: int
    reason: Optional[SkipReason] = None
    trade: Optional[ExecutedTrade] = None
    snapshot: Optional[PortfolioSnapshot] = None
    detail: str = ""
    timestamp: datetime = field(default_factory=datetime.utcnow)
    
    @property
    def is_trade(self) -> bool:
        return self.kind == EventKind.TRADE
    
    @property
    def is_skip(self) -> bool:
        return self.kind == EventKind.SKIP


@dataclass
class OrderBookMessage:
    """Normalized order book message from a venue feed."""
    kind: str  # "snapshot" or "update"
    bids: list[PriceLevel] = field(default_factory=list)
    asks: list[PriceLevel] = field(default_factory=list)
    raw: Optional[dict[str, Any]] = None
    
    @property
    def is_snapshot(self) -> bool:
        return self.kind == "snapshot"
    
    def apply_to(self, book: OrderBook, timestamp: Optional[datetime] = None) -> None:
        """Apply this message to an order book in place."""
        if self.is_snapshot:
            book.apply_snapshot(self.bids, self.asks, timestamp)
            return
        if self.bids:
            book.apply_update(BookSide.BID, self.bids, timestamp)
        if self.asks:
            book.apply_update(BookSide.ASK, self.asks, timestamp)
