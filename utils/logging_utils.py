"""
Logging Utilities
==================

Configures structured logging for the arbitrage bot and provides the
reporting loggers that consume engine events.
"""

import io
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from exchange_client.models import EngineEvent, EventKind, ExecutedTrade, PortfolioSnapshot, SkipReason


# Custom log levels
TRADE = 25  # Between INFO and WARNING
OPPORTUNITY = 26


def setup_logging(
    log_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    main_log_file: str = "bot.log",
    trades_log_file: str = "trades.log",
    opportunities_log_file: str = "opportunities.log",
    max_size_mb: int = 50,
    backup_count: int = 5,
) -> None:
    """
    Set up logging for the arbitrage bot.
    
    Creates:
    - Console handler for key events
    - Main log file for all events
    - Trades log file for executed trades and skipped ticks
    - Opportunities log file for profitable spreads
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    
    logging.addLevelName(TRADE, "TRADE")
    logging.addLevelName(OPPORTUNITY, "OPPORTUNITY")
    
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()
    
    if sys.platform == "win32":
        sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")
        sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding="utf-8", errors="replace")
    
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, console_level.upper()))
    console_handler.setFormatter(ColoredFormatter(
        "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s",
        datefmt="%H:%M:%S"
    ))
    root_logger.addHandler(console_handler)
    
    main_handler = RotatingFileHandler(
        log_path / main_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
    )
    main_handler.setLevel(getattr(logging, file_level.upper()))
    main_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)-25s | %(funcName)-20s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    root_logger.addHandler(main_handler)
    
    for logger_name, file_name in (
        ("trades", trades_log_file),
        ("opportunities", opportunities_log_file),
    ):
        child = logging.getLogger(logger_name)
        child.handlers.clear()
        handler = RotatingFileHandler(
            log_path / file_name,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter("%(asctime)s | %(message)s"))
        child.addHandler(handler)
        child.propagate = True
    
    # Reduce noise from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    
    logging.info(f"Logging initialized | console={console_level} | file={file_level} | dir={log_dir}")


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to console output."""
    
    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
        "TRADE": "\033[34m",     # Blue
        "OPPORTUNITY": "\033[96m",  # Light cyan
    }
    RESET = "\033[0m"
    
    def format(self, record: logging.LogRecord) -> str:
        # Color a copy so file handlers keep the plain level name
        record = logging.makeLogRecord(record.__dict__)
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        return super().format(record)


class TradeLogger:
    """Specialized logger for trade events."""
    
    def __init__(self):
        self.logger = logging.getLogger("trades")
    
    def log_trade(self, trade: ExecutedTrade, snapshot: Optional[PortfolioSnapshot] = None) -> None:
        """Log both legs of an executed trade and the resulting portfolio."""
        decision = trade.decision
        self.logger.log(
            TRADE,
            f"TRADE | id={trade.trade_id} | "
            f"BUY {decision.size:.4f} on {decision.buy_venue.value} @ {decision.buy_price:.4f} | "
            f"SELL {decision.size:.4f} on {decision.sell_venue.value} @ {decision.sell_price:.4f} | "
            f"fees={trade.fees_paid:.4f} | profit={trade.realized_profit:.4f}"
        )
        if snapshot is not None:
            self.logger.log(
                TRADE,
                f"WALLET | base={snapshot.base_balance:.6f} | quote={snapshot.quote_balance:.4f} | "
                f"total={snapshot.total_value:.4f} | P&L={snapshot.pnl_ratio * 100:.4f}%"
            )
    
    def log_skip(self, reason: SkipReason, detail: str = "") -> None:
        """Log a skipped tick."""
        level = logging.DEBUG if reason == SkipReason.NO_OPPORTUNITY else logging.INFO
        self.logger.log(level, f"SKIP | reason={reason.value} | {detail}")


class OpportunityLogger:
    """Specialized logger for opportunity events."""
    
    def __init__(self):
        self.logger = logging.getLogger("opportunities")
    
    def log_spread_opportunity(
        self,
        direction: str,
        net_profit_ratio: float,
        buy_price: float,
        sell_price: float,
        size: float,
    ) -> None:
        """Log a profitable cross-venue spread."""
        self.logger.log(
            OPPORTUNITY,
            f"SPREAD | direction={direction} | net={net_profit_ratio:.6f} | "
            f"buy={buy_price:.4f} | sell={sell_price:.4f} | size={size:.4f}"
        )


class PerformanceLogger:
    """Logger for performance metrics."""
    
    def __init__(self):
        self.logger = logging.getLogger("performance")
    
    def log_snapshot(self, snapshot: PortfolioSnapshot, trades: int = 0) -> None:
        """Log a portfolio snapshot."""
        self.logger.info(
            f"SNAPSHOT | base={snapshot.base_balance:.6f} | quote={snapshot.quote_balance:.2f} | "
            f"price={snapshot.mark_price:.4f} | total={snapshot.total_value:.2f} | "
            f"P&L={snapshot.pnl_ratio * 100:.4f}% | trades={trades}"
        )


# Global instances
trade_logger = TradeLogger()
opportunity_logger = OpportunityLogger()
performance_logger = PerformanceLogger()


def log_engine_event(event: EngineEvent) -> None:
    """Engine event listener that routes events to the reporting loggers."""
    if event.kind == EventKind.TRADE and event.trade is not None:
        decision = event.trade.decision
        opportunity_logger.log_spread_opportunity(
            f"{decision.buy_venue.value}->{decision.sell_venue.value}",
            decision.expected_net_profit_ratio,
            decision.buy_price,
            decision.sell_price,
            decision.size,
        )
        trade_logger.log_trade(event.trade, event.snapshot)
    elif event.kind == EventKind.SKIP and event.reason is not None:
        trade_logger.log_skip(event.reason, event.detail)
    elif event.kind == EventKind.SNAPSHOT and event.snapshot is not None:
        performance_logger.log_snapshot(event.snapshot)
