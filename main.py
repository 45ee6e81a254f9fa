#!/usr/bin/env python3
"""
Aevo / dYdX Arbitrage Bot
==========================

Main entry point for the trading bot.

Usage:
    python main.py                      # Simulate trades on live quotes
    python main.py --persistent         # Feed simulated trades back into the books
    python main.py --backtest           # Run a backtest on simulated books
    python main.py --config my.yaml     # Use custom config file
"""

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from datetime import datetime
from typing import Optional

from exchange_client import BaseVenueClient, Venue, create_client
from core.arb_engine import ArbConfig, ArbEngine
from core.order_book_feedback import OrderBookFeedback
from core.quote_source import (
    BookQuoteSource,
    OrderBookFeed,
    OrderBookStore,
    PollingQuoteSource,
    QuoteSource,
)
from utils.config_loader import BotConfig, ConfigurationError, load_config, validate_config
from utils.logging_utils import log_engine_event, performance_logger, setup_logging


logger = logging.getLogger(__name__)


def build_arb_config(config: BotConfig) -> ArbConfig:
    """Translate the loaded configuration into the engine's config."""
    trading = config.trading
    return ArbConfig(
        fee_a=config.aevo.fee,
        fee_b=config.dydx.fee,
        starting_value=trading.starting_value,
        persistent_trades=trading.persistent_trades,
        staleness_threshold_seconds=trading.staleness_threshold_seconds,
        quote_timeout_seconds=trading.quote_timeout_seconds,
        max_trade_fraction=trading.max_trade_fraction,
        cap_to_top_of_book=trading.cap_to_top_of_book,
        min_net_profit_ratio=trading.min_net_profit_ratio,
        snapshot_every_ticks=config.monitoring.snapshot_every_ticks,
    )


class TradingBot:
    """
    Main trading bot orchestrator.
    
    Wires venue clients, order book feeds, the quote source and the
    decision engine, and manages their lifecycle.
    """
    
    def __init__(self, config: BotConfig):
        self.config = config
        self._running = False
        self._stop_event = asyncio.Event()
        self._shutdown_event = asyncio.Event()
        
        # Components (initialized in start())
        self.clients: dict[Venue, BaseVenueClient] = {}
        self.feeds: list[OrderBookFeed] = []
        self.store: Optional[OrderBookStore] = None
        self.quote_source: Optional[QuoteSource] = None
        self.engine: Optional[ArbEngine] = None
        
        self._engine_task: Optional[asyncio.Task] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._stop_task: Optional[asyncio.Task] = None
        self._start_time: Optional[datetime] = None
    
    async def start(self) -> None:
        """Initialize and start all components."""
        trading = self.config.trading
        logger.info("=" * 60)
        logger.info("Aevo/dYdX Arbitrage Bot Starting")
        logger.info("=" * 60)
        logger.info(f"Aevo: {self.config.aevo.symbol} (fee {self.config.aevo.fee_pct}%)")
        logger.info(f"dYdX: {self.config.dydx.symbol} (fee {self.config.dydx.fee_pct}%)")
        logger.info(f"Starting value: {trading.starting_value} | Persistent trades: {trading.persistent_trades}")
        
        self._start_time = datetime.utcnow()
        self._running = True
        
        # Book state: the feedback adapter owns it in persistent mode
        if trading.persistent_trades:
            self.store = OrderBookFeedback(self.config.symbols)
        else:
            self.store = OrderBookStore(self.config.symbols)
        
        api = self.config.api
        for venue in (Venue.AEVO, Venue.DYDX):
            venue_config = self.config.venue(venue)
            urls = {}
            if venue_config.rest_url:
                urls["rest_url"] = venue_config.rest_url
            if venue_config.ws_url:
                urls["ws_url"] = venue_config.ws_url
            client = create_client(
                venue,
                venue_config.symbol,
                timeout=api.timeout_seconds,
                max_retries=api.max_retries,
                retry_delay=api.retry_delay_seconds,
                reconnect_delay=api.reconnect_delay_seconds,
                **urls,
            )
            await client.connect()
            self.clients[venue] = client
        
        if api.use_polling:
            self.quote_source = PollingQuoteSource(
                self.clients,
                staleness_threshold=trading.staleness_threshold_seconds,
                store=self.store,
            )
        else:
            self.quote_source = BookQuoteSource(
                self.store,
                staleness_threshold=trading.staleness_threshold_seconds,
            )
            for client in self.clients.values():
                feed = OrderBookFeed(client, self.store, reconnect_delay=api.reconnect_delay_seconds)
                await feed.start()
                self.feeds.append(feed)
            
            logger.info("Waiting for market data...")
            if not await self._wait_for_data(timeout=30.0):
                logger.warning("Timeout waiting for initial data, proceeding anyway")
        
        self.engine = ArbEngine(
            build_arb_config(self.config),
            quote_source=self.quote_source,
            feedback=self.store if trading.persistent_trades else None,
        )
        self.engine.on_event(log_engine_event)
        
        self._engine_task = asyncio.create_task(
            self.engine.run(self._stop_event, interval=trading.tick_interval_seconds),
            name="arb_engine",
        )
        self._monitor_task = asyncio.create_task(self._monitoring_loop(), name="monitoring")
        
        logger.info("Bot started successfully!")
        logger.info("-" * 60)
    
    async def _wait_for_data(self, timeout: float) -> bool:
        """Wait until both venues have a two-sided book."""
        start = datetime.utcnow()
        while (datetime.utcnow() - start).total_seconds() < timeout:
            if self.store.has_data():
                return True
            await asyncio.sleep(0.1)
        return False
    
    async def _monitoring_loop(self) -> None:
        """Periodic portfolio snapshots and statistics."""
        interval = self.config.monitoring.snapshot_interval
        
        while self._running:
            try:
                await asyncio.sleep(interval)
                
                stats = self.engine.get_stats()
                portfolio = self.engine.portfolio
                price = self.engine.mark_price
                if portfolio is not None and price is not None:
                    performance_logger.log_snapshot(portfolio.snapshot(price), stats.trades_executed)
                
                for venue, book in self.store.books.items():
                    if book.mid_price is not None:
                        logger.info(
                            f"Book | {venue.value} {book.symbol} | mid={book.mid_price:.4f} | "
                            f"spread={book.spread:.4f} | updated={book.timestamp:%H:%M:%S}"
                        )
                
                logger.info(
                    f"Stats | Ticks: {stats.ticks} | "
                    f"Opportunities: {stats.opportunities_detected} | "
                    f"Trades: {stats.trades_executed} | Skips: {stats.skips}"
                )
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Monitoring error: {e}")
    
    async def stop(self) -> None:
        """Stop all components gracefully."""
        if not self._running:
            self._shutdown_event.set()
            return
        
        logger.info("Shutting down...")
        self._running = False
        
        # The engine notices the stop event between ticks
        self._stop_event.set()
        if self._engine_task:
            try:
                await self._engine_task
            except Exception as e:
                logger.error(f"Engine task ended with error: {e}")
        
        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
        
        for feed in self.feeds:
            await feed.stop()
        
        for client in self.clients.values():
            await client.disconnect()
        
        if self.engine and self.engine.portfolio and self.engine.mark_price:
            summary = self.engine.portfolio.get_summary(self.engine.mark_price)
            stats = self.engine.get_stats()
            logger.info("=" * 60)
            logger.info("Final Portfolio Summary")
            logger.info("=" * 60)
            logger.info(f"Total Value: {summary['total_value']:.2f} (P&L {summary['pnl_ratio'] * 100:.4f}%)")
            logger.info(f"Base: {summary['base_balance']:.6f} | Quote: {summary['quote_balance']:.2f}")
            logger.info(f"Total Trades: {summary['total_trades']}")
            logger.info(f"Fees Paid: {summary['fees_paid']:.4f}")
            for trade in self.engine.portfolio.get_recent_trades(limit=5):
                logger.info(
                    f"Recent trade {trade.trade_id} | size={trade.size:.4f} | "
                    f"profit={trade.realized_profit:.4f}"
                )
            logger.info("-" * 60)
            logger.info(f"Ticks: {stats.ticks} | Opportunities: {stats.opportunities_detected}")
            logger.info(f"Skips: {stats.skips}")
        
        logger.info("=" * 60)
        logger.info("Bot stopped")
        
        self._shutdown_event.set()
    
    def request_stop(self) -> asyncio.Task:
        """Schedule stop() from a signal handler; repeated calls share one task."""
        if self._stop_task is None:
            self._stop_task = asyncio.create_task(self.stop(), name="shutdown")
        return self._stop_task
    
    async def wait_for_shutdown(self) -> None:
        """Wait for shutdown signal."""
        await self._shutdown_event.wait()


async def run_backtest(config: BotConfig, ticks: int, seed: int) -> None:
    """Run a backtest simulation."""
    from utils.backtest import BacktestConfig, run_backtest as _run_backtest
    
    logger.info("Starting backtest mode...")
    
    result = await _run_backtest(BacktestConfig(seed=seed, ticks=ticks), build_arb_config(config))
    print(result.summary())


def load_bot_config(args: argparse.Namespace) -> BotConfig:
    """Load the configuration and apply command-line overrides."""
    config = load_config(args.config, require_symbols=not args.backtest)
    if args.persistent:
        config = dataclasses.replace(
            config,
            trading=dataclasses.replace(config.trading, persistent_trades=True),
        )
        validate_config(config, require_symbols=not args.backtest)
    return config


def logging_options(config: BotConfig, verbose: bool = False) -> dict:
    """Keyword arguments for setup_logging(); -v only raises console verbosity."""
    options = config.logging
    return {
        "log_dir": options.log_dir,
        "console_level": "DEBUG" if verbose else options.console_level,
        "file_level": options.file_level,
        "main_log_file": options.main_log_file,
        "trades_log_file": options.trades_log_file,
        "opportunities_log_file": options.opportunities_log_file,
        "max_size_mb": options.max_log_size_mb,
        "backup_count": options.backup_count,
    }


async def main_async(args: argparse.Namespace, config: BotConfig) -> None:
    """Async main function."""
    if args.backtest:
        await run_backtest(config, ticks=args.backtest_ticks, seed=args.seed)
        return
    
    bot = TradingBot(config)
    
    loop = asyncio.get_running_loop()
    
    def signal_handler():
        logger.info("Received shutdown signal")
        bot.request_stop()
    
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass
    
    try:
        await bot.start()
        await bot.wait_for_shutdown()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        await bot.stop()
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        await bot.stop()
        sys.exit(1)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Aevo/dYdX Arbitrage Bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                    Simulate trades on live quotes
  python main.py --persistent       Simulated trades consume book liquidity
  python main.py --backtest         Run backtest simulation
  python main.py -c custom.yaml     Use custom config file
        """
    )
    
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )
    
    parser.add_argument(
        "--persistent",
        action="store_true",
        help="Feed simulated trades back into the observed order books"
    )
    
    parser.add_argument(
        "--backtest",
        action="store_true",
        help="Run backtest simulation"
    )
    
    parser.add_argument(
        "--backtest-ticks",
        type=int,
        default=1000,
        help="Number of simulated ticks (default: 1000)"
    )
    
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for the backtest (default: 42)"
    )
    
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )
    
    args = parser.parse_args()
    
    try:
        config = load_bot_config(args)
    except ConfigurationError as e:
        setup_logging(console_level="DEBUG" if args.verbose else "INFO")
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)
    
    setup_logging(**logging_options(config, verbose=args.verbose))
    
    try:
        asyncio.run(main_async(args, config))
    except KeyboardInterrupt:
        print("\nShutdown complete.")


if __name__ == "__main__":
    main()
