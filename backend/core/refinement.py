"""
Strategy Refinement Engine
==========================
Learns from closed trades:
  - Per-strategy win/loss/return counters and a rolling window of recent trades
  - Per-threshold effectiveness (squeeze, holyGrail, aiScore, probability)
  - Optimized thresholds: best 5-point bucket midpoint, approached with a
    learning rate and a capped step
  - Weight recommendations from recent vs. overall win rate

Metrics are a plain JSON-compatible dict so any PerformanceStore can persist
them. A failed save is logged and the in-memory metrics stay authoritative.
"""
import copy
import logging
import math
import threading
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from core.exceptions import StoreError
from core.performance_store import InMemoryPerformanceStore, PerformanceStore
from core.portfolio_state import TradeOutcome, to_float
from core.risk_config import RefinementRules, get_config

logger = logging.getLogger("StrategyRefinement")

THRESHOLD_DEFAULTS = {
    "squeeze":     50,
    "holyGrail":   40,
    "aiScore":     60,
    "probability": 60,
}

BUCKET_SIZE = 5
MIN_BUCKET_SAMPLES = 3
RECENT_WINDOW = 20
MIN_REGIME_SAMPLES = 5


def default_metrics() -> Dict[str, Any]:
    return {
        "strategyPerformance": {},
        "parameterOptimization": {},
        "marketRegimeEffectiveness": {},
        "mlModelAccuracy": {},
        "thresholdOptimization": {
            name: {"current": value, "optimal": value, "performance": []}
            for name, value in THRESHOLD_DEFAULTS.items()
        },
    }


def _now() -> str:
    return datetime.utcnow().isoformat()


class StrategyRefinementEngine:

    def __init__(self, store: Optional[PerformanceStore] = None,
                 rules: Optional[RefinementRules] = None):
        self.store = store or InMemoryPerformanceStore()
        self.rules = rules or get_config().refinement
        self.lock = threading.RLock()
        self.performance_metrics = default_metrics()
        self.load_performance_data()

    # ── Persistence ──────────────────────────────────────────────────────────

    def load_performance_data(self) -> None:
        try:
            saved = self.store.load()
        except StoreError as e:
            logger.error(f"Could not load refinement data, starting fresh: {e}")
            return
        if not saved:
            logger.info("No existing strategy refinement data, starting fresh")
            return
        with self.lock:
            self.performance_metrics = {**default_metrics(), **saved}
        logger.info(f"Strategy refinement data loaded: {self.total_trades()} trades")

    def save_performance_data(self) -> bool:
        try:
            self.store.save(self.performance_metrics)
            return True
        except StoreError as e:
            logger.error(f"Failed to save strategy refinement data: {e}")
            return False

    def export_metrics(self) -> Dict[str, Any]:
        with self.lock:
            return copy.deepcopy(self.performance_metrics)

    # ── Recording ────────────────────────────────────────────────────────────

    def record_trade_outcome(self, trade: Any) -> Dict[str, Any]:
        """Folds one closed trade into the metrics; returns that strategy's updated counters."""
        if isinstance(trade, TradeOutcome):
            outcome = trade
        else:
            outcome = TradeOutcome.model_validate(dict(trade) if isinstance(trade, Mapping) else {})

        with self.lock:
            strategies = self.performance_metrics["strategyPerformance"]
            metrics = strategies.setdefault(outcome.strategy, {
                "totalTrades": 0,
                "wins": 0,
                "losses": 0,
                "totalReturn": 0.0,
                "avgDaysHeld": 0.0,
                "recentPerformance": [],
                "parameterEffectiveness": {},
            })

            metrics["totalTrades"] += 1
            metrics["totalReturn"] += outcome.actual_return
            if outcome.outcome == "win":
                metrics["wins"] += 1
            elif outcome.outcome == "loss":
                metrics["losses"] += 1

            n = metrics["totalTrades"]
            metrics["avgDaysHeld"] = (metrics["avgDaysHeld"] * (n - 1) + outcome.days_held) / n

            accuracy = None
            if outcome.expected_return:
                accuracy = abs((outcome.actual_return - outcome.expected_return) / outcome.expected_return)

            metrics["recentPerformance"].append({
                "timestamp": _now(),
                "outcome": outcome.outcome,
                "actualReturn": outcome.actual_return,
                "expectedReturn": outcome.expected_return,
                "accuracy": accuracy,
                "exitReason": outcome.exit_reason,
                "originalParameters": outcome.original_parameters,
                "marketConditions": outcome.market_conditions,
            })
            lookback = self.rules.performance_lookback
            metrics["recentPerformance"] = metrics["recentPerformance"][-lookback:]

            self.record_parameter_effectiveness(outcome.original_parameters, outcome.outcome,
                                                outcome.actual_return)
            self.save_performance_data()
            snapshot = copy.deepcopy(metrics)

        logger.info(f"Trade outcome recorded: {outcome.strategy} {outcome.outcome} "
                    f"({outcome.actual_return:.2f}%)")
        return snapshot

    def record_parameter_effectiveness(self, parameters: Dict[str, Any], outcome: str,
                                       actual_return: float) -> None:
        thresholds = self.performance_metrics["thresholdOptimization"]
        with self.lock:
            for key in THRESHOLD_DEFAULTS:
                if parameters.get(key) is None or key not in thresholds:
                    continue
                value = to_float(parameters[key], None)
                if value is None:
                    continue
                history = thresholds[key]["performance"]
                history.append({
                    "value": value,
                    "outcome": outcome,
                    "actualReturn": actual_return,
                    "timestamp": _now(),
                })
                thresholds[key]["performance"] = history[-self.rules.performance_lookback:]

    # ── Threshold optimization ───────────────────────────────────────────────

    def calculate_optimal_threshold(self, records: List[Dict[str, Any]]) -> Optional[float]:
        """Midpoint of the best-scoring 5-point bucket, or None without enough samples."""
        if len(records) < self.rules.min_sample_size:
            return None

        buckets: Dict[int, Dict[str, float]] = {}
        for record in records:
            start = int(math.floor(to_float(record.get("value"), 0.0) / BUCKET_SIZE) * BUCKET_SIZE)
            bucket = buckets.setdefault(start, {"wins": 0, "total": 0, "totalReturn": 0.0})
            bucket["total"] += 1
            bucket["totalReturn"] += to_float(record.get("actualReturn"), 0.0)
            if record.get("outcome") == "win":
                bucket["wins"] += 1

        best_start, best_score = None, -math.inf
        for start, data in buckets.items():
            if data["total"] < MIN_BUCKET_SAMPLES:
                continue
            win_rate = data["wins"] / data["total"]
            avg_return = data["totalReturn"] / data["total"]
            score = win_rate * 0.6 + (avg_return + 100) / 200 * 0.4
            if score > best_score:
                best_start, best_score = start, score

        return best_start + BUCKET_SIZE / 2 if best_start is not None else None

    def get_optimized_parameters(self, current_parameters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        optimized = dict(current_parameters or {})
        with self.lock:
            for name, data in self.performance_metrics["thresholdOptimization"].items():
                if len(data["performance"]) < self.rules.min_sample_size:
                    continue
                optimal = self.calculate_optimal_threshold(data["performance"])
                if optimal is None:
                    continue

                current = data["current"]
                step = (optimal - current) * self.rules.learning_rate
                max_change = current * self.rules.max_adjustment_percent
                step = max(-max_change, min(max_change, step))
                new_value = int(math.floor(current + step + 0.5))

                data["optimal"] = new_value
                optimized[name] = new_value
                logger.info(f"Threshold {name}: {current} -> {new_value} (optimal {optimal:.1f})")
        return optimized

    # ── Strategy analysis ────────────────────────────────────────────────────

    @staticmethod
    def calculate_recent_win_rate(recent: List[Dict[str, Any]]) -> float:
        if not recent:
            return 0.0
        window = recent[-RECENT_WINDOW:]
        return sum(1 for t in window if t.get("outcome") == "win") / len(window)

    def get_strategy_recommendations(self) -> List[Dict[str, Any]]:
        recommendations = []
        with self.lock:
            for strategy, metrics in self.performance_metrics["strategyPerformance"].items():
                total = metrics["totalTrades"]
                if total < self.rules.min_sample_size:
                    continue
                win_rate = metrics["wins"] / total
                avg_return = metrics["totalReturn"] / total
                recent_win_rate = self.calculate_recent_win_rate(metrics["recentPerformance"])

                recommendation, confidence = "MAINTAIN", 0.5
                if recent_win_rate > win_rate + 0.1 and recent_win_rate > 0.6:
                    recommendation, confidence = "INCREASE_WEIGHT", min(0.9, recent_win_rate)
                elif recent_win_rate < win_rate - 0.1 and recent_win_rate < 0.4:
                    recommendation, confidence = "DECREASE_WEIGHT", min(0.9, 1 - recent_win_rate)

                recommendations.append({
                    "strategy": strategy,
                    "recommendation": recommendation,
                    "confidence": confidence,
                    "metrics": {
                        "totalTrades": total,
                        "overallWinRate": win_rate,
                        "recentWinRate": recent_win_rate,
                        "avgReturn": avg_return,
                        "avgDaysHeld": metrics["avgDaysHeld"],
                    },
                })
        return sorted(recommendations, key=lambda r: r["confidence"], reverse=True)

    def get_market_regime_analysis(self) -> Dict[str, List[Dict[str, Any]]]:
        """Win rate per strategy within each regime tagged on recent trades (>= 5 samples)."""
        tallies: Dict[str, Dict[str, Dict[str, int]]] = {}
        with self.lock:
            for strategy, metrics in self.performance_metrics["strategyPerformance"].items():
                for trade in metrics["recentPerformance"]:
                    regime = (trade.get("marketConditions") or {}).get("regime") or "unknown"
                    tally = tallies.setdefault(regime, {}).setdefault(strategy, {"wins": 0, "total": 0})
                    tally["total"] += 1
                    if trade.get("outcome") == "win":
                        tally["wins"] += 1

        analysis = {}
        for regime, strategies in tallies.items():
            rows = [
                {"strategy": s, "winRate": d["wins"] / d["total"], "sampleSize": d["total"]}
                for s, d in strategies.items()
                if d["total"] >= MIN_REGIME_SAMPLES
            ]
            analysis[regime] = sorted(rows, key=lambda r: r["winRate"], reverse=True)
        return analysis

    def total_trades(self) -> int:
        return sum(m["totalTrades"] for m in self.performance_metrics["strategyPerformance"].values())

    def calculate_overall_win_rate(self) -> float:
        with self.lock:
            strategies = self.performance_metrics["strategyPerformance"].values()
            wins = sum(m["wins"] for m in strategies)
            total = sum(m["totalTrades"] for m in strategies)
        return wins / total if total else 0.0

    def assess_data_quality(self) -> Dict[str, Any]:
        with self.lock:
            total = self.total_trades()
            return {
                "totalTrades": total,
                "sufficientData": total >= self.rules.min_sample_size * 5,
                "strategyCoverage": len(self.performance_metrics["strategyPerformance"]),
                "parameterSamples": [
                    len(p["performance"]) for p in self.performance_metrics["thresholdOptimization"].values()
                ],
                "confidenceLevel": "high" if total >= 50 else "medium" if total >= 20 else "low",
            }

    @staticmethod
    def calculate_optimal_strategy_weights(recommendations: List[Dict[str, Any]]) -> Dict[str, float]:
        weights = {}
        for rec in recommendations:
            if rec["recommendation"] == "INCREASE_WEIGHT":
                weights[rec["strategy"]] = min(1.5, 1 + rec["confidence"] * 0.5)
            elif rec["recommendation"] == "DECREASE_WEIGHT":
                weights[rec["strategy"]] = max(0.5, 1 - rec["confidence"] * 0.5)
            else:
                weights[rec["strategy"]] = 1.0
        return weights

    def recommend_universe_size(self) -> str:
        if self.total_trades() < 20:
            return "balanced"
        win_rate = self.calculate_overall_win_rate()
        if win_rate > 0.65:
            return "aggressive"
        if win_rate < 0.45:
            return "conservative"
        return "balanced"

    # ── Outputs ──────────────────────────────────────────────────────────────

    def apply_refinements(self, current_config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        current_config = dict(current_config or {})
        optimized = self.get_optimized_parameters(current_config)
        recommendations = self.get_strategy_recommendations()

        refined = {
            **current_config,
            **optimized,
            "strategyWeights": self.calculate_optimal_strategy_weights(recommendations),
            "universeSize": self.recommend_universe_size(),
            "refinementMetadata": {
                "appliedAt": _now(),
                "confidence": self.assess_data_quality()["confidenceLevel"],
                "totalTrades": self.total_trades(),
            },
        }
        logger.info(f"Refinements applied: universe={refined['universeSize']} "
                    f"weights={len(refined['strategyWeights'])} strategies")
        return refined

    def generate_refinement_report(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "timestamp": _now(),
                "optimizedParameters": copy.deepcopy(self.performance_metrics["thresholdOptimization"]),
                "strategyRecommendations": self.get_strategy_recommendations(),
                "marketRegimeAnalysis": self.get_market_regime_analysis(),
                "totalTrades": self.total_trades(),
                "overallWinRate": self.calculate_overall_win_rate(),
                "dataQuality": self.assess_data_quality(),
            }
