"""
Configuration Loader
=====================

Loads and validates configuration from a YAML file, with overrides
from environment variables (a local .env file is loaded first).
"""

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from exchange_client.models import Venue


class ConfigurationError(Exception):
    """Configuration error. Fatal at startup."""
    pass


@dataclass(frozen=True)
class VenueConfig:
    """Per-venue configuration."""
    symbol: str = ""
    fee_pct: float = 0.0  # Percent, e.g. 0.015 means 0.015%
    rest_url: str = ""
    ws_url: str = ""
    
    @property
    def fee(self) -> float:
        """Fee as a ratio of notional."""
        return self.fee_pct / 100


@dataclass(frozen=True)
class ApiConfig:
    """Connectivity configuration shared by the venue clients."""
    timeout_seconds: float = 10.0
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    reconnect_delay_seconds: float = 1.0
    use_polling: bool = False  # REST snapshots per tick instead of WebSocket


@dataclass(frozen=True)
class TradingConfig:
    """Trading configuration."""
    starting_value: float = 1000.0
    persistent_trades: bool = False
    staleness_threshold_seconds: float = 5.0
    quote_timeout_seconds: float = 2.0
    max_trade_fraction: float = 1.0
    cap_to_top_of_book: bool = True
    min_net_profit_ratio: float = 0.0
    tick_interval_seconds: float = 0.5


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""
    console_level: str = "INFO"
    file_level: str = "DEBUG"
    log_dir: str = "logs"
    main_log_file: str = "bot.log"
    trades_log_file: str = "trades.log"
    opportunities_log_file: str = "opportunities.log"
    max_log_size_mb: int = 50
    backup_count: int = 5


@dataclass(frozen=True)
class MonitoringConfig:
    """Monitoring configuration."""
    snapshot_interval: float = 60.0
    snapshot_every_ticks: int = 100


@dataclass(frozen=True)
class BotConfig:
    """Complete bot configuration."""
    aevo: VenueConfig = field(default_factory=VenueConfig)
    dydx: VenueConfig = field(default_factory=VenueConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    trading: TradingConfig = field(default_factory=TradingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    
    def venue(self, venue: Venue) -> VenueConfig:
        return self.aevo if venue == Venue.AEVO else self.dydx
    
    @property
    def symbols(self) -> dict[Venue, str]:
        return {Venue.AEVO: self.aevo.symbol, Venue.DYDX: self.dydx.symbol}


# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "AEVO_SYMBOL": ("aevo", "symbol"),
    "AEVO_FEE": ("aevo", "fee_pct"),
    "DYDX_SYMBOL": ("dydx", "symbol"),
    "DYDX_FEE": ("dydx", "fee_pct"),
    "STARTING_VALUE": ("trading", "starting_value"),
    "PERSISTENT_TRADES": ("trading", "persistent_trades"),
}


def load_config(
    config_path: Optional[str] = "config.yaml",
    env: Optional[dict[str, str]] = None,
    load_env_file: bool = True,
    require_symbols: bool = True,
) -> BotConfig:
    """
    Load configuration from a YAML file and the environment.
    
    Args:
        config_path: Path to the configuration file. A missing default
            ``config.yaml`` is tolerated so the bot can run from the
            environment alone; any other missing path is an error.
        env: Environment mapping (defaults to os.environ)
        load_env_file: Load a .env file into os.environ first
        require_symbols: Fail when a venue symbol is missing (backtests
            do not need them)
        
    Returns:
        BotConfig instance with loaded values
        
    Raises:
        ConfigurationError: If the config cannot be loaded or is invalid
    """
    if load_env_file and env is None:
        load_dotenv()
    env = os.environ if env is None else env
    
    raw_config: dict = {}
    if config_path:
        path = Path(config_path)
        if path.exists():
            try:
                with open(path, "r") as f:
                    raw_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in config file: {e}")
            if not isinstance(raw_config, dict):
                raise ConfigurationError("Config file must contain a mapping at the top level")
        elif config_path != "config.yaml":
            raise ConfigurationError(f"Configuration file not found: {config_path}")
    
    sections = {
        name: dict(raw_config.get(name) or {})
        for name in ("aevo", "dydx", "api", "trading", "logging", "monitoring")
    }
    _apply_env_overrides(sections, env)
    
    try:
        config = BotConfig(
            aevo=_build_dataclass(VenueConfig, sections["aevo"]),
            dydx=_build_dataclass(VenueConfig, sections["dydx"]),
            api=_build_dataclass(ApiConfig, sections["api"]),
            trading=_build_dataclass(TradingConfig, sections["trading"]),
            logging=_build_dataclass(LoggingConfig, sections["logging"]),
            monitoring=_build_dataclass(MonitoringConfig, sections["monitoring"]),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}")
    
    validate_config(config, require_symbols=require_symbols)
    return config


def _apply_env_overrides(sections: dict[str, dict], env) -> None:
    """Apply environment variable overrides to config sections."""
    for env_var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(env_var)
        if value not in (None, ""):
            sections[section][key] = value


def _coerce(value: Any, target: type) -> Any:
    """Coerce strings from YAML/env to the declared field type."""
    if target is bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if target is int:
        return int(value)
    if target is float:
        return float(value)
    if target is str:
        return str(value)
    return value


def _build_dataclass(cls, data: dict):
    """Build a dataclass from a dictionary, ignoring unknown keys."""
    fields = {f.name: f for f in dataclasses.fields(cls)}
    kwargs = {}
    for key, value in data.items():
        if key not in fields:
            continue
        target = fields[key].type
        if isinstance(target, str):
            target = {"bool": bool, "int": int, "float": float, "str": str}.get(target, object)
        try:
            kwargs[key] = _coerce(value, target)
        except (TypeError, ValueError) as e:
            raise ValueError(f"{cls.__name__}.{key}: {e}")
    return cls(**kwargs)


def validate_config(config: BotConfig, require_symbols: bool = True) -> None:
    """Validate configuration values."""
    errors = []
    
    for name, venue in (("aevo", config.aevo), ("dydx", config.dydx)):
        if require_symbols and not venue.symbol.strip():
            errors.append(f"{name}.symbol is required")
        if not 0 <= venue.fee < 1:
            errors.append(f"{name}.fee_pct must be in [0, 100)")
    
    trading = config.trading
    if trading.starting_value <= 0:
        errors.append("trading.starting_value must be positive")
    
    if trading.staleness_threshold_seconds <= 0:
        errors.append("trading.staleness_threshold_seconds must be positive")
    
    if trading.quote_timeout_seconds <= 0:
        errors.append("trading.quote_timeout_seconds must be positive")
    
    if not 0 < trading.max_trade_fraction <= 1:
        errors.append("trading.max_trade_fraction must be in (0, 1]")
    
    if trading.min_net_profit_ratio < 0:
        errors.append("trading.min_net_profit_ratio must be non-negative")
    
    if trading.tick_interval_seconds < 0:
        errors.append("trading.tick_interval_seconds must be non-negative")
    
    if config.api.max_retries < 1:
        errors.append("api.max_retries must be at least 1")
    
    # Polled REST snapshots replace the books wholesale, erasing simulated impact
    if config.api.use_polling and trading.persistent_trades:
        errors.append("api.use_polling cannot be combined with trading.persistent_trades")
    
    if errors:
        raise ConfigurationError(
            "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


def save_config(config: BotConfig, config_path: str = "config.yaml") -> None:
    """Save configuration to a YAML file."""
    data = dataclasses.asdict(config)
    with open(config_path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
