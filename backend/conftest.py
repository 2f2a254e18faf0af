import os

# Must be set before core.database / app are imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("APP_API_KEY", "test-key")
os.environ.setdefault("REFINEMENT_STORE", "sql")

import pytest

from core.ensemble import EnsembleState, MultiStrategyEnsemble
from core.performance_store import InMemoryPerformanceStore
from core.refinement import StrategyRefinementEngine
from core.risk_scorer import AdvancedRiskManager


@pytest.fixture
def risk_manager():
    return AdvancedRiskManager()


@pytest.fixture
def ensemble():
    return MultiStrategyEnsemble(EnsembleState())


@pytest.fixture
def memory_store():
    return InMemoryPerformanceStore()


@pytest.fixture
def refinement_engine(memory_store):
    return StrategyRefinementEngine(memory_store)


@pytest.fixture
def sofi_position():
    return {
        "symbol": "SOFI",
        "sector": "Financial",
        "currentValue": 10_000,
        "dte": 5,
        "unrealizedPnL": -900,
    }


@pytest.fixture
def high_iv_market():
    return {
        f"SYM{i}": {"price": 20 + i, "changePercent": 0, "impliedVolatility": 0.5,
                    "volume": 1_000_000, "avgVolume": 1_000_000}
        for i in range(10)
    }


@pytest.fixture
def strategy_candidates():
    return [
        {"strategy": "Iron Condor", "aiScore": 82, "symbol": "SPY"},
        {"strategy": "Long Straddle", "aiScore": 75, "symbol": "NVDA"},
        {"strategy": "Bull Call Spread", "aiScore": 68, "symbol": "AAPL"},
        {"strategy": "Cash Secured Put", "aiScore": 71, "symbol": "SOFI"},
        {"strategy": "Call Ratio Backspread", "aiScore": 64, "symbol": "TSLA"},
        {"strategy": "Short Straddle", "aiScore": 59, "symbol": "QQQ"},
        {"strategy": "Mystery Trade", "aiScore": 99, "symbol": "GME"},
    ]
