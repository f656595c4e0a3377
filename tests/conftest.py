"""
Pytest configuration and fixtures.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config.settings import ExecutionConfig, RiskLimitsConfig
from execution.models import MarketQuality
from tests.helpers import FixedClock


@pytest.fixture(scope="session")
def project_path():
    """Return project root path."""
    return project_root


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def limits():
    return RiskLimitsConfig()


@pytest.fixture
def quality():
    return MarketQuality(liquidity=5000.0, spread=0.02, volatility_30d=0.2, days_to_expiry=10.0)


@pytest.fixture
def fast_config():
    """Live-enabled config with millisecond delays."""
    return ExecutionConfig(
        default_mode="live",
        trading_enabled=True,
        max_retry_attempts=3,
        retry_base_delay=0.001,
        poll_interval=0.001,
        fill_timeout=0.05,
        network_timeout=1.0,
    )


@pytest.fixture
def restore_root_logging():
    """setup_logging() replaces root handlers; put the originals back."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
