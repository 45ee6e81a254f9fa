"""
Tests for bot wiring, startup options and event logging
"""

import argparse
import asyncio
import logging
import pytest
import yaml

from exchange_client.models import EngineEvent, EventKind, SkipReason, TradeDecision, Venue
from core.portfolio import Portfolio
from main import TradingBot, build_arb_config, load_bot_config, logging_options
from utils.config_loader import ConfigurationError, load_config
from utils.logging_utils import log_engine_event


BASE_ENV = {"AEVO_SYMBOL": "ETH-PERP", "DYDX_SYMBOL": "ETH-USD"}


def write_config(tmp_path, data: dict) -> str:
    """Write a YAML config with both venue symbols set."""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(dict({
        "aevo": {"symbol": "ETH-PERP"},
        "dydx": {"symbol": "ETH-USD"},
    }, **data)))
    return str(path)


def make_args(config: str, persistent: bool = False, backtest: bool = False) -> argparse.Namespace:
    return argparse.Namespace(config=config, persistent=persistent, backtest=backtest)


class TestBuildArbConfig:
    """Tests for translating loaded config into engine config."""
    
    def test_fee_percent_becomes_ratio(self):
        config = load_config(None, env=dict(
            BASE_ENV,
            AEVO_FEE="0.015",
            DYDX_FEE="0.05",
            PERSISTENT_TRADES="yes",
        ))
        
        arb_config = build_arb_config(config)
        
        assert arb_config.fee_a == pytest.approx(0.00015)
        assert arb_config.fee_b == pytest.approx(0.0005)
        assert arb_config.persistent_trades is True
        assert arb_config.starting_value == 1000.0


class TestLoadBotConfig:
    """Tests for command-line overrides on top of the config file."""
    
    def test_persistent_flag(self, tmp_path):
        config = load_bot_config(make_args(write_config(tmp_path, {}), persistent=True))
        
        assert config.trading.persistent_trades is True
    
    def test_persistent_flag_rejected_with_polling(self, tmp_path):
        """The override is validated like values from the file."""
        path = write_config(tmp_path, {"api": {"use_polling": True}})
        
        with pytest.raises(ConfigurationError, match="use_polling"):
            load_bot_config(make_args(path, persistent=True))
    
    def test_polling_alone_accepted(self, tmp_path):
        path = write_config(tmp_path, {"api": {"use_polling": True}})
        
        config = load_bot_config(make_args(path))
        
        assert config.api.use_polling is True


class TestLoggingOptions:
    """Tests for logging setup driven by the logging section."""
    
    @pytest.fixture
    def config(self, tmp_path):
        path = write_config(tmp_path, {"logging": {
            "console_level": "WARNING",
            "file_level": "INFO",
            "log_dir": str(tmp_path / "logs"),
            "trades_log_file": "fills.log",
            "max_log_size_mb": 10,
            "backup_count": 2,
        }})
        return load_bot_config(make_args(path))
    
    def test_values_from_config(self, config, tmp_path):
        options = logging_options(config)
        
        assert options["console_level"] == "WARNING"
        assert options["file_level"] == "INFO"
        assert options["log_dir"] == str(tmp_path / "logs")
        assert options["trades_log_file"] == "fills.log"
        assert options["main_log_file"] == "bot.log"
        assert options["max_size_mb"] == 10
        assert options["backup_count"] == 2
    
    def test_verbose_only_raises_console(self, config):
        options = logging_options(config, verbose=True)
        
        assert options["console_level"] == "DEBUG"
        assert options["file_level"] == "INFO"


class TestShutdown:
    """Tests for signal-driven shutdown."""
    
    def test_request_stop_is_shared(self):
        """Repeated signals reuse one stop task and shutdown completes."""
        config = load_config(None, env=BASE_ENV)
        
        async def scenario():
            bot = TradingBot(config)
            first = bot.request_stop()
            second = bot.request_stop()
            await asyncio.wait_for(bot.wait_for_shutdown(), timeout=1.0)
            return first, second
        
        first, second = asyncio.run(scenario())
        
        assert first is second
        assert first.done()
        assert first.exception() is None


class TestEventLogging:
    """Tests for routing engine events to the reporting loggers."""
    
    def test_trade_logged(self, caplog):
        caplog.set_level(logging.DEBUG)
        portfolio = Portfolio(5.0, 500.0, starting_value=1000.0)
        trade = portfolio.apply_trade(TradeDecision(
            buy_venue=Venue.DYDX,
            sell_venue=Venue.AEVO,
            size=1.0,
            buy_price=100.0,
            sell_price=101.0,
        ))
        
        log_engine_event(EngineEvent(
            kind=EventKind.TRADE,
            tick=1,
            trade=trade,
            snapshot=portfolio.snapshot(100.0),
        ))
        
        messages = [r.getMessage() for r in caplog.records if r.name == "trades"]
        assert any("BUY 1.0000 on dydx" in m for m in messages)
        assert any(m.startswith("WALLET") for m in messages)
    
    def test_skip_logged(self, caplog):
        caplog.set_level(logging.DEBUG)
        
        log_engine_event(EngineEvent(
            kind=EventKind.SKIP,
            tick=3,
            reason=SkipReason.STALE_QUOTE,
            detail="dydx: quote age 6.000s exceeds 5.000s",
        ))
        
        assert any("reason=stale_quote" in r.getMessage() for r in caplog.records)
