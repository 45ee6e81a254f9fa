"""
Core Trading Engine Module
===========================

Contains the arbitrage decision-and-simulation components:
- SpreadCalculator: Fee-adjusted spread evaluation in both directions
- Portfolio: Virtual base/quote balances
- OrderBookFeedback: Market-impact feedback into observed books
- QuoteSource: Fresh top-of-book quotes per venue
- ArbEngine: Per-tick orchestration
"""

from core.spread_calculator import SpreadCalculator
from core.portfolio import InsufficientBalance, Portfolio
from core.quote_source import (
    BookQuoteSource,
    OrderBookFeed,
    OrderBookStore,
    PollingQuoteSource,
    QuoteSource,
    ReplayQuoteSource,
    StaleQuote,
)
from core.order_book_feedback import InsufficientDepth, OrderBookFeedback
from core.arb_engine import ArbConfig, ArbEngine

__all__ = [
    "SpreadCalculator",
    "Portfolio",
    "InsufficientBalance",
    "BookQuoteSource",
    "OrderBookFeed",
    "OrderBookStore",
    "PollingQuoteSource",
    "QuoteSource",
    "ReplayQuoteSource",
    "StaleQuote",
    "OrderBookFeedback",
    "InsufficientDepth",
    "ArbConfig",
    "ArbEngine",
]
