"""
Tests for the Backtesting Module
"""

import asyncio
import pytest

from core.arb_engine import ArbConfig
from utils.backtest import BacktestConfig, BacktestEngine, run_backtest


def run(config: BacktestConfig, arb_config: ArbConfig):
    return asyncio.run(run_backtest(config, arb_config))


@pytest.fixture
def backtest_config() -> BacktestConfig:
    """Short, dislocation-heavy run."""
    return BacktestConfig(seed=7, ticks=150, dislocation_probability=0.5)


class TestBacktest:
    """Tests for simulated runs."""
    
    def test_same_seed_same_result(self, backtest_config: BacktestConfig):
        arb_config = ArbConfig(fee_a=0.0002, fee_b=0.0002)
        
        first = run(backtest_config, arb_config)
        second = run(backtest_config, arb_config)
        
        assert first == second
    
    def test_every_tick_accounted_for(self, backtest_config: BacktestConfig):
        result = run(backtest_config, ArbConfig())
        
        assert result.ticks == 150
        assert result.trades + sum(result.skips.values()) == 150
    
    def test_trades_found(self, backtest_config: BacktestConfig):
        """Venue dislocations produce trades with zero fees."""
        result = run(backtest_config, ArbConfig())
        
        assert result.trades > 0
        assert result.final_value > 0
    
    @pytest.mark.parametrize("persistent", [False, True])
    def test_balances_non_negative(self, backtest_config: BacktestConfig, persistent: bool):
        result = run(backtest_config, ArbConfig(persistent_trades=persistent, fee_a=0.0001))
        
        assert result.final_base >= 0
        assert result.final_quote >= 0
    
    def test_persistent_mode_consumes_liquidity(self, backtest_config: BacktestConfig):
        """Persistent runs feed trades back into the books."""
        engine = BacktestEngine(backtest_config, ArbConfig(persistent_trades=True))
        
        result = asyncio.run(engine.run())
        
        assert engine.store.impacts_applied == 2 * result.trades
    
    def test_summary(self, backtest_config: BacktestConfig):
        result = run(backtest_config, ArbConfig())
        
        assert "Backtest Results" in result.summary()
