"""
Market Regime Classifier
========================
Scores a batch of symbol snapshots against seven named regimes using
averaged metrics and fixed point awards:

  avg IV > 0.35            high_volatility +40
  avg IV < 0.20            low_volatility +40, volatility_expansion +30
  avg change > +1.5%       trending_bullish +35, momentum_breakout +25
  avg change < -1.5%       trending_bearish +35, momentum_breakout +20
  otherwise                range_bound +30
  >30% Holy Grail >= 60    volatility_expansion +25, momentum_breakout +20
  >40% volume > 1.5x avg   momentum_breakout +15, trending_bullish +10

The top score wins; ties go to the earlier regime in REGIMES.
"""
import logging
from typing import Any, Dict

from core.portfolio_state import DEFAULT_IMPLIED_VOLATILITY, MarketSnapshot, parse_market_data
from core.schemas import MarketMetrics, MarketRegime

logger = logging.getLogger("MarketRegimeClassifier")

REGIMES = (
    "low_volatility",
    "high_volatility",
    "trending_bullish",
    "trending_bearish",
    "range_bound",
    "volatility_expansion",
    "momentum_breakout",
)

HIGH_IV = 0.35
LOW_IV = 0.20
TREND_CHANGE_PCT = 1.5
HOLY_GRAIL_SETUP = 60
SQUEEZE_SHARE = 0.3
VOLUME_SURGE = 1.5
VOLUME_SHARE = 0.4


class MarketRegimeClassifier:

    def classify(self, market_data: Any) -> MarketRegime:
        snapshots: Dict[str, MarketSnapshot] = parse_market_data(market_data)
        scores = {regime: 0 for regime in REGIMES}
        count = len(snapshots)

        if count:
            avg_iv = sum(s.implied_volatility for s in snapshots.values()) / count
            avg_change = sum(s.change_percent for s in snapshots.values()) / count
        else:
            avg_iv = DEFAULT_IMPLIED_VOLATILITY
            avg_change = 0.0

        # ── Volatility ──────────────────────────────────────────────────
        if avg_iv > HIGH_IV:
            scores["high_volatility"] += 40
        elif avg_iv < LOW_IV:
            scores["low_volatility"] += 40
            scores["volatility_expansion"] += 30

        # ── Trend ───────────────────────────────────────────────────────
        if avg_change > TREND_CHANGE_PCT:
            scores["trending_bullish"] += 35
            scores["momentum_breakout"] += 25
        elif avg_change < -TREND_CHANGE_PCT:
            scores["trending_bearish"] += 35
            scores["momentum_breakout"] += 20
        else:
            scores["range_bound"] += 30

        # ── Squeeze context ─────────────────────────────────────────────
        squeeze_count = sum(1 for s in snapshots.values() if s.holy_grail >= HOLY_GRAIL_SETUP)
        if squeeze_count > count * SQUEEZE_SHARE:
            scores["volatility_expansion"] += 25
            scores["momentum_breakout"] += 20

        # ── Volume ──────────────────────────────────────────────────────
        high_volume_count = sum(
            1 for s in snapshots.values() if s.volume > s.reference_volume * VOLUME_SURGE
        )
        if high_volume_count > count * VOLUME_SHARE:
            scores["momentum_breakout"] += 15
            scores["trending_bullish"] += 10

        primary = REGIMES[0]
        for regime in REGIMES:
            if scores[regime] > scores[primary]:
                primary = regime

        result = MarketRegime(
            primary    = primary,
            confidence = min(100, scores[primary]),
            scores     = scores,
            market_metrics = MarketMetrics(
                avg_iv            = avg_iv,
                avg_change        = avg_change,
                squeeze_count     = squeeze_count,
                high_volume_count = high_volume_count,
            ),
        )
        logger.info(f"Market regime: {primary} (confidence {result.confidence}%) "
                    f"over {count} symbols")
        return result
