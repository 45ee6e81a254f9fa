"""
Order Book Feedback Module
===========================

Owns the in-memory order books when persistent trades are enabled and
removes the liquidity consumed by simulated trades, so the next tick's
quotes include the bot's own market impact.
"""

import logging
from typing import Optional

from exchange_client.models import (
    BookSide,
    OrderBook,
    PriceLevel,
    TradeDecision,
    Venue,
)
from core.quote_source import OrderBookStore


logger = logging.getLogger(__name__)


class InsufficientDepth(Exception):
    """The book cannot absorb the requested size."""
    
    def __init__(self, venue: Venue, side: BookSide, requested: float, available: float):
        self.venue = venue
        self.side = side
        self.requested = requested
        self.available = available
        super().__init__(
            f"{venue.value} {side.value} depth {available:.6f} < requested {requested:.6f}"
        )


class OrderBookFeedback(OrderBookStore):
    """
    Order book state with market-impact feedback.
    
    Live feed messages are written through apply_message(); simulated
    trades are written through apply_impact(). Readers get books via
    get_order_book().
    """
    
    def __init__(self, symbols: Optional[dict[Venue, str]] = None):
        super().__init__(symbols)
        self.impacts_applied = 0
    
    def available_depth(self, venue: Venue, side: BookSide) -> float:
        """Total size resting on one side of a venue's book."""
        book = self._books.get(venue)
        if book is None:
            return 0.0
        return book.side(side).total_size()
    
    def ensure_depth(self, decision: TradeDecision) -> None:
        """
        Check both legs of a decision can be absorbed.
        
        The buy leg consumes asks on the buy venue, the sell leg consumes
        bids on the sell venue. Raises InsufficientDepth for the tighter
        leg; nothing is mutated.
        """
        legs = (
            (decision.buy_venue, BookSide.ASK),
            (decision.sell_venue, BookSide.BID),
        )
        shortest: Optional[InsufficientDepth] = None
        for venue, side in legs:
            available = self.available_depth(venue, side)
            if decision.size > available:
                error = InsufficientDepth(venue, side, decision.size, available)
                if shortest is None or available < shortest.available:
                    shortest = error
        if shortest is not None:
            raise shortest
    
    def fill_price(self, venue: Venue, side: BookSide, size: float) -> float:
        """
        Volume-weighted price of walking ``size`` through one side.
        
        Raises InsufficientDepth if the side holds less than ``size``.
        Nothing is mutated.
        """
        book = self._books.get(venue)
        available = book.side(side).total_size() if book else 0.0
        if book is None or size <= 0 or size > available:
            raise InsufficientDepth(venue, side, size, available)
        
        remaining = size
        notional = 0.0
        for level in book.side(side).levels:
            if remaining <= 0:
                break
            take = min(level.size, remaining)
            notional += take * level.price
            remaining -= take
        return notional / size
    
    def reprice(self, decision: TradeDecision) -> TradeDecision:
        """Price both legs of a decision at the levels they would consume."""
        self.ensure_depth(decision)
        return decision.with_prices(
            buy_price=self.fill_price(decision.buy_venue, BookSide.ASK, decision.size),
            sell_price=self.fill_price(decision.sell_venue, BookSide.BID, decision.size),
        )
    
    def apply_impact(self, venue: Venue, side: BookSide, size: float, price: float) -> OrderBook:
        """
        Remove ``size`` of liquidity from one side of a venue's book.
        
        Walks from the best level into deeper levels until the size is
        consumed. Raises InsufficientDepth, leaving the book untouched,
        if the side holds less than ``size`` in total.
        """
        book = self._books.get(venue)
        available = book.side(side).total_size() if book else 0.0
        if book is None or size > available:
            raise InsufficientDepth(venue, side, size, available)
        
        remaining = size
        levels: list[PriceLevel] = []
        for level in book.side(side).levels:
            if remaining <= 0:
                levels.append(PriceLevel(level.price, level.size))
                continue
            take = min(level.size, remaining)
            remaining -= take
            left = level.size - take
            if left > 1e-12:
                levels.append(PriceLevel(level.price, left))
        
        book.side(side).levels = levels
        self.impacts_applied += 1
        
        logger.debug(
            f"Impact applied | {venue.value} {side.value} size={size:.6f} @ {price:.4f} | "
            f"new best={book.side(side).best_price}"
        )
        return book
    
    def apply_trade(self, decision: TradeDecision) -> None:
        """Apply both legs of an executed trade."""
        self.ensure_depth(decision)
        self.apply_impact(decision.buy_venue, BookSide.ASK, decision.size, decision.buy_price)
        self.apply_impact(decision.sell_venue, BookSide.BID, decision.size, decision.sell_price)
