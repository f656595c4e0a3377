"""
Configuration management using Pydantic v2.

This module provides type-safe configuration management for the execution
and backtesting system. Configuration is loaded from environment variables
and validated on initialization.

Environment variables use double underscore for nesting:
    SIZING__KELLY_FRACTION=0.25
    RISK_LIMITS__MAX_DAILY_LOSS=100
    EXECUTION__FORCE_PAPER_MODE=true

Example:
    >>> from config.settings import load_settings
    >>> settings = load_settings()
    >>> print(settings.risk_limits.max_per_market)
"""

import logging
from typing import Literal

# Pydantic v2 imports
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from config.constants import DEFAULT_SEED, EXECUTION_MODES

logger = logging.getLogger(__name__)


class SizingConfig(BaseModel):
    """Position sizing configuration.

    Attributes:
        kelly_fraction: Fraction of full Kelly to stake (0.25 = quarter-Kelly)
        min_size: Sizes below this (USDC) are rejected
        max_size_per_trade: Hard per-trade ceiling (USDC)
        drawdown_start: Drawdown at which size starts fading
        drawdown_stop: Drawdown at which size reaches zero
        streak_free_losses: Consecutive losses tolerated before step-down
        streak_step: Size reduction per consecutive loss beyond the free ones
        target_volatility: Volatility level at which no reduction applies
        volatility_floor: Lowest volatility multiplier
        regime_baseline: Baseline win rate for regime scaling
        regime_floor: Lowest regime multiplier
    """

    kelly_fraction: float = Field(
        default=0.25, description="Fractional Kelly multiplier", gt=0, le=1.0
    )
    min_size: float = Field(default=1.0, description="Minimum viable size (USDC)", ge=0)
    max_size_per_trade: float = Field(
        default=100.0, description="Maximum size per trade (USDC)", gt=0
    )
    drawdown_start: float = Field(
        default=0.10, description="Drawdown where fading starts", ge=0, lt=1.0
    )
    drawdown_stop: float = Field(
        default=0.30, description="Drawdown where size reaches zero", gt=0, le=1.0
    )
    streak_free_losses: int = Field(
        default=2, description="Losses tolerated before step-down", ge=0
    )
    streak_step: float = Field(
        default=0.25, description="Reduction per extra consecutive loss", ge=0, le=1.0
    )
    target_volatility: float = Field(
        default=0.30, description="Volatility at which no reduction applies", gt=0
    )
    volatility_floor: float = Field(
        default=0.25, description="Lowest volatility multiplier", ge=0, le=1.0
    )
    regime_baseline: float = Field(
        default=0.5, description="Baseline win rate for regime scaling", gt=0, lt=1.0
    )
    regime_floor: float = Field(
        default=0.5, description="Lowest regime multiplier", ge=0, le=1.0
    )

    @model_validator(mode="after")
    def validate_drawdown_band(self) -> "SizingConfig":
        """Ensure the drawdown fade band is well formed."""
        if self.drawdown_stop <= self.drawdown_start:
            raise ValueError(
                f"drawdown_stop ({self.drawdown_stop}) must be > "
                f"drawdown_start ({self.drawdown_start})"
            )
        if self.min_size > self.max_size_per_trade:
            raise ValueError(
                f"min_size ({self.min_size}) must be <= "
                f"max_size_per_trade ({self.max_size_per_trade})"
            )
        return self


class RiskLimitsConfig(BaseModel):
    """Risk gate limits.

    Attributes:
        max_daily_loss: Trading halts once daily PnL reaches -max_daily_loss
        max_positions: Maximum number of open positions
        max_per_market: Maximum exposure per market (USDC)
        max_liquidity_fraction: Largest share of visible liquidity one order may take
        max_spread: Maximum tolerated spread
    """

    max_daily_loss: float = Field(
        default=100.0, description="Maximum daily loss before trading halts", gt=0
    )
    max_positions: int = Field(default=10, description="Maximum open positions", ge=1)
    max_per_market: float = Field(
        default=50.0, description="Maximum exposure per market", gt=0
    )
    max_liquidity_fraction: float = Field(
        default=0.1, description="Max order size as fraction of liquidity", gt=0, le=1.0
    )
    max_spread: float = Field(default=0.05, description="Maximum spread", gt=0, le=1.0)


class ExecutionConfig(BaseModel):
    """Staged execution controls.

    These settings configure the StagedExecutionController that owns the
    order lifecycle for paper, shadow and live modes.

    Attributes:
        default_mode: Initial mode of a fresh runtime risk state
        force_paper_mode: If True, every shadow/live request runs as paper
        trading_enabled: Master switch for live orders
        max_retry_attempts: Submit attempts for retryable venue errors
        retry_base_delay: Base delay in seconds for exponential backoff
        poll_interval: Seconds between order status polls
        fill_timeout: Seconds before a resting order is cancelled
        network_timeout: Timeout for each individual venue call
        max_slippage: Limit price tolerance over the best price
        fee_rate: Taker fee as fraction of filled size
        partial_fill_threshold: Fill fraction that makes a timed-out order usable
        failure_threshold: Consecutive live failures that trip the kill switch
        paper_price_band: Half-width of the simulated fill band around mid
    """

    default_mode: Literal["paper", "shadow", "live"] = Field(
        default=EXECUTION_MODES.PAPER.value, description="Initial runtime execution mode"
    )
    force_paper_mode: bool = Field(
        default=False, description="Downgrade every shadow/live request to paper"
    )
    trading_enabled: bool = Field(default=False, description="Allow live orders")
    max_retry_attempts: int = Field(
        default=3, description="Number of submit attempts", ge=1, le=10
    )
    retry_base_delay: float = Field(
        default=1.0, description="Base delay in seconds for exponential backoff", gt=0, le=30
    )
    poll_interval: float = Field(
        default=1.0, description="Order status poll interval (s)", gt=0, le=60
    )
    fill_timeout: float = Field(
        default=30.0, description="Order fill timeout (s)", gt=0, le=600
    )
    network_timeout: float = Field(
        default=10.0, description="Per-call venue timeout (s)", gt=0, le=120
    )
    max_slippage: float = Field(
        default=0.02, description="Limit price tolerance", ge=0, le=0.5
    )
    fee_rate: float = Field(default=0.002, description="Taker fee rate", ge=0, le=0.1)
    partial_fill_threshold: float = Field(
        default=0.5, description="Fill fraction accepted on timeout", gt=0, le=1.0
    )
    failure_threshold: int = Field(
        default=3, description="Consecutive failures before auto kill switch", ge=1, le=100
    )
    paper_price_band: float = Field(
        default=0.05, description="Simulated fill band around mid", ge=0, le=0.5
    )


class BacktestConfig(BaseModel):
    """Backtest and validation configuration.

    Attributes:
        initial_bankroll: Starting bankroll (USDC)
        slippage_enabled: Apply the illiquidity-aware slippage model
        fees_percent: Fee as a fraction of size
        train_test_split: Chronological train share for walk-forward validation
        monte_carlo_simulations: Number of resampling runs
        enable_validation: Run walk-forward validation
        enable_monte_carlo: Run Monte Carlo validation
        min_trades_for_validation: Trades required before validating
        min_edge: Candidates with a smaller edge are skipped
        fill_window: Ticks after the decision used for the VWAP fill
    """

    initial_bankroll: float = Field(default=1000.0, description="Starting bankroll", gt=0)
    slippage_enabled: bool = Field(default=True, description="Apply slippage model")
    fees_percent: float = Field(default=0.001, description="Fee fraction", ge=0, le=0.1)
    train_test_split: float = Field(
        default=0.7, description="Train share for walk-forward", gt=0, lt=1.0
    )
    monte_carlo_simulations: int = Field(
        default=1000, description="Monte Carlo runs", ge=10, le=100_000
    )
    enable_validation: bool = Field(default=True, description="Run walk-forward validation")
    enable_monte_carlo: bool = Field(default=True, description="Run Monte Carlo validation")
    min_trades_for_validation: int = Field(
        default=10, description="Trades required for validation", ge=1
    )
    min_edge: float = Field(default=0.02, description="Minimum candidate edge", ge=0, lt=1.0)
    fill_window: int = Field(default=10, description="Ticks used for the fill VWAP", ge=1)


class StorageConfig(BaseModel):
    """Filesystem locations for persisted state and reports."""

    risk_state_db: str = Field(
        default="data/risk_state.db", description="Runtime risk state database"
    )
    historical_db: str = Field(
        default="data/historical.db", description="Historical trades/markets database"
    )
    report_dir: str = Field(default="reports", description="Backtest report directory")


class Settings(BaseSettings):
    """
    Main application settings loaded from environment variables.

    Configuration is automatically loaded from .env file and environment
    variables. Use double underscore for nested configuration:
        SIZING__KELLY_FRACTION=0.25
        EXECUTION__TRADING_ENABLED=true

    Attributes:
        sizing: Position sizing configuration
        risk_limits: Risk gate limits
        execution: Staged execution controls
        backtest: Backtest and validation configuration
        storage: Database and report locations
        environment: Deployment environment (development/production)
        seed: Random seed for Monte Carlo reproducibility
        log_level: Root log level
        log_json: Emit JSON logs on the console
    """

    model_config = SettingsConfigDict(env_nested_delimiter="__", env_file=".env", extra="ignore")

    sizing: SizingConfig = Field(default_factory=SizingConfig)
    risk_limits: RiskLimitsConfig = Field(default_factory=RiskLimitsConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    environment: str = Field(default="development", description="Deployment environment")
    seed: int = Field(default=DEFAULT_SEED, description="Random seed for reproducibility")
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="JSON console logs")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise and validate the log level name."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_cross_limits(self) -> "Settings":
        """The per-trade ceiling must not exceed the per-market ceiling silently."""
        if self.sizing.max_size_per_trade > self.risk_limits.max_per_market:
            logger.debug(
                f"max_size_per_trade ({self.sizing.max_size_per_trade}) exceeds "
                f"max_per_market ({self.risk_limits.max_per_market}); "
                f"per-market cap will bind first"
            )
        return self

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"


def load_settings() -> Settings:
    """
    Load and validate settings from environment variables and .env file.

    Returns:
        Validated Settings instance

    Raises:
        ValidationError: If configuration is invalid

    Example:
        >>> settings = load_settings()
        >>> print(f"Default mode: {settings.execution.default_mode}")
    """
    try:
        settings = Settings()
        logger.info(f"Settings loaded successfully. Environment: {settings.environment}")
        logger.debug(
            f"Execution: default_mode={settings.execution.default_mode}, "
            f"force_paper={settings.execution.force_paper_mode}, "
            f"trading_enabled={settings.execution.trading_enabled}"
        )
        return settings
    except Exception as e:
        logger.error(f"Failed to load settings: {e}")
        raise
