"""
Quote Source Module
====================

Top-of-book quotes for the two venues, with staleness checks and a
bounded concurrent fetch. Also holds the in-memory order book store
and the feed task that keeps it current.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from typing import Callable, Iterable, Optional

from exchange_client.api import BaseVenueClient
from exchange_client.models import (
    OrderBook,
    OrderBookMessage,
    Quote,
    Venue,
    VENUE_A,
    VENUE_B,
)


logger = logging.getLogger(__name__)


Clock = Callable[[], datetime]


class StaleQuote(Exception):
    """Quote is missing, unusable, or older than the staleness threshold."""
    
    def __init__(self, venue: Optional[Venue], reason: str, age: Optional[float] = None):
        self.venue = venue
        self.reason = reason
        self.age = age
        name = venue.value if venue else "quotes"
        super().__init__(f"{name}: {reason}")


class OrderBookStore:
    """In-memory order books keyed by venue."""
    
    def __init__(self, symbols: Optional[dict[Venue, str]] = None):
        self._books: dict[Venue, OrderBook] = {}
        for venue, symbol in (symbols or {}).items():
            self._books[venue] = OrderBook(venue=venue, symbol=symbol)
    
    @property
    def books(self) -> dict[Venue, OrderBook]:
        return self._books
    
    def get_order_book(self, venue: Venue) -> Optional[OrderBook]:
        return self._books.get(venue)
    
    def set_order_book(self, book: OrderBook) -> None:
        self._books[book.venue] = book
    
    def apply_message(
        self,
        venue: Venue,
        message: OrderBookMessage,
        timestamp: Optional[datetime] = None,
    ) -> OrderBook:
        """Apply a live feed message to the venue's book."""
        book = self._books.setdefault(venue, OrderBook(venue=venue))
        message.apply_to(book, timestamp)
        return book
    
    def has_data(self, venues: Iterable[Venue] = (VENUE_A, VENUE_B)) -> bool:
        """True once every venue has a two-sided book."""
        for venue in venues:
            book = self._books.get(venue)
            if book is None or book.best_bid is None or book.best_ask is None:
                return False
        return True


class QuoteSource(ABC):
    """Supplies one quote per venue per tick."""
    
    def __init__(self, staleness_threshold: float = 5.0, clock: Clock = datetime.utcnow):
        self.staleness_threshold = staleness_threshold
        self.clock = clock
    
    @abstractmethod
    async def get_quote(self, venue: Venue) -> Quote:
        """Return the current quote for a venue or raise StaleQuote."""
        pass
    
    def check_fresh(self, quote: Quote) -> Quote:
        """Raise StaleQuote if the quote is older than the threshold."""
        age = quote.age(self.clock())
        if age > self.staleness_threshold:
            raise StaleQuote(
                quote.venue,
                f"quote age {age:.3f}s exceeds {self.staleness_threshold:.3f}s",
                age=age,
            )
        return quote
    
    async def fetch_quotes(self, timeout: Optional[float] = None) -> tuple[Quote, Quote]:
        """
        Fetch quotes for venue A and venue B concurrently.
        
        Both fetches must finish before this returns. A timeout is
        reported as StaleQuote.
        """
        fetch = asyncio.gather(self.get_quote(VENUE_A), self.get_quote(VENUE_B))
        try:
            if timeout is None:
                quote_a, quote_b = await fetch
            else:
                quote_a, quote_b = await asyncio.wait_for(fetch, timeout=timeout)
        except asyncio.TimeoutError:
            raise StaleQuote(None, f"quote fetch timed out after {timeout}s")
        return quote_a, quote_b


class BookQuoteSource(QuoteSource):
    """
    Reads quotes from an order book store.
    
    In persistent mode the store is the feedback adapter, so quotes
    already include the impact of earlier simulated trades.
    """
    
    def __init__(
        self,
        store: OrderBookStore,
        staleness_threshold: float = 5.0,
        clock: Clock = datetime.utcnow,
    ):
        super().__init__(staleness_threshold, clock)
        self.store = store
    
    def quote_for(self, venue: Venue) -> Quote:
        book = self.store.get_order_book(venue)
        if book is None:
            raise StaleQuote(venue, "no order book")
        quote = book.to_quote()
        if quote is None:
            raise StaleQuote(venue, "order book is empty, one-sided or crossed")
        return self.check_fresh(quote)
    
    async def get_quote(self, venue: Venue) -> Quote:
        return self.quote_for(venue)


class PollingQuoteSource(QuoteSource):
    """Fetches a fresh REST snapshot from each venue on every tick."""
    
    def __init__(
        self,
        clients: dict[Venue, BaseVenueClient],
        staleness_threshold: float = 5.0,
        clock: Clock = datetime.utcnow,
        store: Optional[OrderBookStore] = None,
    ):
        super().__init__(staleness_threshold, clock)
        self.clients = clients
        self.store = store
    
    async def get_quote(self, venue: Venue) -> Quote:
        client = self.clients.get(venue)
        if client is None:
            raise StaleQuote(venue, "no client configured")
        try:
            book = await client.get_orderbook()
        except Exception as e:
            raise StaleQuote(venue, f"snapshot fetch failed: {e}") from e
        
        if self.store is not None:
            self.store.set_order_book(book)
        
        quote = book.to_quote()
        if quote is None:
            raise StaleQuote(venue, "order book is empty, one-sided or crossed")
        return self.check_fresh(quote)


class ReplayQuoteSource(QuoteSource):
    """
    Serves pre-recorded quotes, one per venue per fetch.
    
    A ``None`` entry stands for a missing quote. Staleness is checked
    against the injected clock like any other source.
    """
    
    def __init__(
        self,
        quotes: Iterable[tuple[Optional[Quote], Optional[Quote]]],
        staleness_threshold: float = 5.0,
        clock: Clock = datetime.utcnow,
    ):
        super().__init__(staleness_threshold, clock)
        self._queues: dict[Venue, deque] = {VENUE_A: deque(), VENUE_B: deque()}
        for quote_a, quote_b in quotes:
            self._queues[VENUE_A].append(quote_a)
            self._queues[VENUE_B].append(quote_b)
    
    @property
    def remaining(self) -> int:
        return min(len(q) for q in self._queues.values())
    
    async def get_quote(self, venue: Venue) -> Quote:
        queue = self._queues[venue]
        if not queue:
            raise StaleQuote(venue, "replay exhausted")
        quote = queue.popleft()
        if quote is None:
            raise StaleQuote(venue, "quote unavailable")
        return self.check_fresh(quote)


class OrderBookFeed:
    """
    Keeps a venue's book in the store current from a client stream.
    
    Stream errors are logged and the stream is reopened.
    """
    
    def __init__(
        self,
        client: BaseVenueClient,
        store: OrderBookStore,
        reconnect_delay: float = 1.0,
    ):
        self.client = client
        self.store = store
        self.reconnect_delay = reconnect_delay
        
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._update_count = 0
        self._last_update: Optional[datetime] = None
    
    async def start(self) -> None:
        if self._running:
            logger.warning(f"OrderBookFeed for {self.client.venue.value} already running")
            return
        self._running = True
        self._task = asyncio.create_task(
            self._run(),
            name=f"orderbook_feed_{self.client.venue.value}",
        )
        logger.info(f"OrderBookFeed started for {self.client.venue.value} {self.client.symbol}")
    
    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info(f"OrderBookFeed stopped for {self.client.venue.value}")
    
    async def _run(self) -> None:
        venue = self.client.venue
        while self._running:
            try:
                async for message in self.client.stream_orderbook():
                    if not self._running:
                        break
                    self.store.apply_message(venue, message)
                    self._update_count += 1
                    self._last_update = datetime.utcnow()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Order book stream error on {venue.value}: {e}")
            if self._running:
                await asyncio.sleep(self.reconnect_delay)
    
    @property
    def update_count(self) -> int:
        return self._update_count
    
    def get_staleness(self) -> Optional[float]:
        """Seconds since the last message, or None if none yet."""
        if self._last_update is None:
            return None
        return (datetime.utcnow() - self._last_update).total_seconds()
