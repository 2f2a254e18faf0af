"""
Quantum Trading Suite Configuration
====================================
Single source of truth for the numeric rules used by the scoring engines:
  - Risk thresholds   (sector/strategy concentration, DTE, Greeks limits)
  - Ensemble rules    (weight clamps, rebalance drift, trade minimums)
  - Refinement rules  (sample sizes, learning rate, lookback window)
  - Default scan watchlist for the mock upstream agents

The constants are the dashboard's tuned values and are kept literally;
they are not derived from anything.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger("SuiteConfig")

# ── Default scan universe ────────────────────────────────────────────────────
WATCHLIST_SQUEEZE = ["GME", "AMC", "BBBY", "SOFI", "PLTR"]   # Squeeze candidates
WATCHLIST_MOMENTUM = ["NVDA", "TSLA", "AMD", "META", "COIN"] # High-beta momentum
WATCHLIST_CORE = ["AAPL", "MSFT", "SPY", "QQQ", "IWM"]       # Liquid anchors

DEFAULT_WATCHLIST = WATCHLIST_SQUEEZE + WATCHLIST_MOMENTUM + WATCHLIST_CORE


@dataclass
class RiskThresholds:
    max_sector_concentration: float = 0.35    # Max 35% in any sector
    max_single_position_size: float = 0.15    # Max 15% in a single position
    max_correlation: float = 0.70             # Pairs at/above this are flagged
    critical_dte: int = 7                     # Alert when DTE <= 7
    default_portfolio_value: float = 100_000
    max_loss_alert_pnl: float = -800          # Unrealized P&L alert floor


@dataclass
class EnsembleRules:
    min_weight: float = 0.05             # Minimum 5% allocation per group
    max_weight: float = 0.40             # Maximum 40% allocation per group
    rebalance_threshold: float = 0.15    # Signal when drift from base > 15%
    min_trades_for_weight: int = 3       # Trades before performance counts


@dataclass
class RefinementRules:
    min_sample_size: int = 10
    max_adjustment_percent: float = 0.20  # Max 20% parameter move per pass
    learning_rate: float = 0.1
    performance_lookback: int = 50        # Recent trades retained


@dataclass
class SuiteConfig:
    watchlist: List[str] = field(default_factory=lambda: list(DEFAULT_WATCHLIST))
    risk: RiskThresholds = field(default_factory=RiskThresholds)
    ensemble: EnsembleRules = field(default_factory=EnsembleRules)
    refinement: RefinementRules = field(default_factory=RefinementRules)

    # "sql" persists refinement metrics through core.database, "memory" keeps them in-process
    refinement_store: str = field(default_factory=lambda: os.getenv("REFINEMENT_STORE", "sql"))

    # Mock upstream agents
    scan_seed: int = 42
    max_scan_symbols: int = 25


# ── Singleton ────────────────────────────────────────────────────────────────
SUITE_CONFIG = SuiteConfig()


def get_config() -> SuiteConfig:
    return SUITE_CONFIG


def update_config(**kwargs) -> SuiteConfig:
    for k, v in kwargs.items():
        if hasattr(SUITE_CONFIG, k):
            setattr(SUITE_CONFIG, k, v)
    return SUITE_CONFIG


def apply_risk_config(risk_manager) -> None:
    """
    Patches an AdvancedRiskManager with the configured risk thresholds.
    Called once at startup against the module-level RISK_MANAGER singleton.
    """
    thresholds = get_config().risk

    risk_manager.MAX_SECTOR_CONCENTRATION   = thresholds.max_sector_concentration
    risk_manager.MAX_SINGLE_POSITION_SIZE   = thresholds.max_single_position_size
    risk_manager.MAX_CORRELATION            = thresholds.max_correlation
    risk_manager.CRITICAL_DTE               = thresholds.critical_dte
    risk_manager.DEFAULT_PORTFOLIO_VALUE    = thresholds.default_portfolio_value
    risk_manager.MAX_LOSS_ALERT_PNL         = thresholds.max_loss_alert_pnl

    logger.info(
        f"Risk config applied: max_sector={thresholds.max_sector_concentration*100:.0f}% "
        f"max_position={thresholds.max_single_position_size*100:.0f}% "
        f"critical_dte={thresholds.critical_dte}d"
    )
