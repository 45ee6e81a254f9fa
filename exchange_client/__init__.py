"""
Exchange Client Module
=======================

Provides the shared data models and order book connectivity for
the Aevo and dYdX venues.
"""

from exchange_client.models import (
    BookSide,
    EngineEvent,
    EventKind,
    ExecutedTrade,
    OrderBook,
    OrderBookMessage,
    OrderBookSide,
    PortfolioSnapshot,
    PriceLevel,
    Quote,
    SkipReason,
    SpreadEvaluation,
    TradeDecision,
    TradeDirection,
    Venue,
    VENUE_A,
    VENUE_B,
)
from exchange_client.api import (
    AevoClient,
    BaseVenueClient,
    DydxClient,
    create_client,
)

__all__ = [
    "AevoClient",
    "BaseVenueClient",
    "DydxClient",
    "create_client",
    "BookSide",
    "EngineEvent",
    "EventKind",
    "ExecutedTrade",
    "OrderBook",
    "OrderBookMessage",
    "OrderBookSide",
    "PortfolioSnapshot",
    "PriceLevel",
    "Quote",
    "SkipReason",
    "SpreadEvaluation",
    "TradeDecision",
    "TradeDirection",
    "Venue",
    "VENUE_A",
    "VENUE_B",
]
