"""
Multi-Strategy Ensemble
=======================
Dynamic weighting across six strategy groups, then portfolio-level selection
of the caller's candidate strategies.

Pipeline per call:
  1. Classify the market regime
  2. Reweight every group: base x performance x regime x risk, clamp, renormalize
  3. Place each candidate into at most one group; keep the top ceil(weight*10)
     per group by aiScore and tag them with an ensembleScore
  4. Sort by ensembleScore and cap every group at ceil(N / 6 * 1.5) picks
  5. Attach portfolioAllocation and a diversification note

Group weights and performance counters live in an EnsembleState that the
caller owns; every read-modify-write happens under its lock.
"""
import logging
import math
import threading
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from core.market_regime import MarketRegimeClassifier
from core.portfolio_state import PortfolioContext, StrategyCandidate, to_float
from core.risk_config import EnsembleRules, get_config
from core.schemas import EnsemblePortfolioMetrics, EnsembleResult, MarketRegime, RebalanceSignal
from core.strategy_groups import GroupId, StrategyGroup, build_strategy_groups, group_members, resolve_group

logger = logging.getLogger("MultiStrategyEnsemble")

# Regime bonus per tagged market condition: (regime score keys, threshold, bonus)
REGIME_BONUSES = {
    "low_iv":            (("low_volatility",), 20, 0.20),
    "high_iv":           (("high_volatility",), 20, 0.20),
    "trending_market":   (("trending_bullish", "trending_bearish"), 20, 0.15),
    "squeeze_setup":     (("volatility_expansion",), 15, 0.25),
    "momentum_breakout": (("momentum_breakout",), 20, 0.30),
    "sideways_market":   (("range_bound",), 25, 0.20),
}

MIN_REGIME_MULTIPLIER = 0.5
MAX_REGIME_MULTIPLIER = 1.5


def _round(value: float, ndigits: int) -> float:
    quantum = Decimal(1).scaleb(-ndigits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


class EnsembleState:
    """Process-lifetime group weights, performance counters and last portfolio metrics."""

    def __init__(self):
        self.lock = threading.RLock()
        self.groups: Dict[GroupId, StrategyGroup] = build_strategy_groups()
        self.portfolio_metrics = EnsemblePortfolioMetrics()

    def reset(self) -> None:
        with self.lock:
            self.groups = build_strategy_groups()
            self.portfolio_metrics = EnsemblePortfolioMetrics()


class MultiStrategyEnsemble:

    def __init__(self, state: Optional[EnsembleState] = None,
                 rules: Optional[EnsembleRules] = None,
                 classifier: Optional[MarketRegimeClassifier] = None):
        self.state = state or EnsembleState()
        self.rules = rules or get_config().ensemble
        self.classifier = classifier or MarketRegimeClassifier()

    # ── Entry point ──────────────────────────────────────────────────────────

    def generate_ensemble_recommendations(
        self,
        market_data: Any,
        available_strategies: Any,
        portfolio_context: Any = None,
    ) -> EnsembleResult:
        count = len(available_strategies) if isinstance(available_strategies, (list, tuple)) else 0
        logger.info(f"Ensemble run: {count} candidate strategies, "
                    f"{len(market_data) if isinstance(market_data, dict) else 0} market data points")
        try:
            regime = self.classifier.classify(market_data)
            candidates = [StrategyCandidate.coerce(s) for s in (available_strategies or [])]
            context = PortfolioContext.coerce(portfolio_context)

            with self.state.lock:
                self.update_dynamic_weights(regime, context)
                weighted = self.generate_weighted_recommendations(candidates, regime)
                optimized = self.apply_portfolio_optimization(weighted)
                self.state.portfolio_metrics = self.calculate_portfolio_metrics(optimized)

                result = EnsembleResult(
                    recommendations   = optimized,
                    ensemble_weights  = self.get_current_weights(),
                    market_regime     = regime,
                    portfolio_metrics = self.state.portfolio_metrics,
                    rebalance_signals = self.check_rebalance_signals(),
                )
            logger.info(f"Ensemble produced {len(optimized)} recommendations "
                        f"(regime {regime.primary})")
            return result
        except Exception as e:
            logger.error(f"Ensemble engine error, returning candidates unmodified: {e}")
            return EnsembleResult(
                recommendations   = list(available_strategies) if isinstance(available_strategies, (list, tuple)) else [],
                ensemble_weights  = self.get_current_weights(),
                market_regime     = MarketRegime.unknown(),
                portfolio_metrics = self.state.portfolio_metrics,
                rebalance_signals = [],
                error             = str(e),
            )

    # ── Weighting ────────────────────────────────────────────────────────────

    def update_dynamic_weights(self, regime: MarketRegime, context: PortfolioContext) -> Dict[GroupId, float]:
        """
        Recomputes every group's current weight from its base weight.
        Returns the clamped weights as they were before renormalization.
        """
        with self.state.lock:
            active_names = [t.strategy_key or t.strategy or t.strategy_name for t in context.active_trades]
            active_counts = group_members(active_names, self.state.groups)
            total_active = len(context.active_trades)

            clamped = {}
            for gid, group in self.state.groups.items():
                perf = self.calculate_performance_multiplier(group)
                reg = self.calculate_regime_multiplier(group, regime)
                risk = self.calculate_risk_multiplier(active_counts[gid], total_active)

                weight = group.base_weight * perf * reg * risk
                weight = max(self.rules.min_weight, min(self.rules.max_weight, weight))
                clamped[gid] = weight
                logger.debug(f"  {group.name}: {weight*100:.1f}% "
                             f"(perf {perf:.2f}, regime {reg:.2f}, risk {risk:.2f})")

            total = sum(clamped.values())
            for gid, group in self.state.groups.items():
                group.current_weight = clamped[gid] / total
            return clamped

    def calculate_performance_multiplier(self, group: StrategyGroup) -> float:
        perf = group.performance
        if perf.total_trades < self.rules.min_trades_for_weight:
            return 1.0
        normalized_return = (perf.avg_return + 100) / 200
        score = perf.win_rate * 0.5 + normalized_return * 0.5
        return 0.7 + score * 0.6

    @staticmethod
    def calculate_regime_multiplier(group: StrategyGroup, regime: MarketRegime) -> float:
        scores = regime.scores
        multiplier = 1.0
        for condition in group.market_conditions:
            rule = REGIME_BONUSES.get(condition)
            if rule is None:
                continue
            keys, threshold, bonus = rule
            if any(scores.get(k, 0) > threshold for k in keys):
                multiplier += bonus
        return max(MIN_REGIME_MULTIPLIER, min(MAX_REGIME_MULTIPLIER, multiplier))

    @staticmethod
    def calculate_risk_multiplier(active_in_group: int, total_active: int) -> float:
        if total_active == 0:
            return 1.0
        ratio = active_in_group / total_active
        if ratio > 0.4:
            return 0.6
        if ratio > 0.25:
            return 0.8
        return 1.0

    @staticmethod
    def assess_regime_alignment(group: StrategyGroup, regime: MarketRegime) -> float:
        """Mean regime score / 100 over the group's conditions; unmapped conditions add 0."""
        scores = regime.scores
        alignment = 0.0
        for condition in group.market_conditions:
            rule = REGIME_BONUSES.get(condition)
            if rule is not None:
                alignment += max(scores.get(k, 0) for k in rule[0]) / 100
        return alignment / len(group.market_conditions)

    # ── Selection ────────────────────────────────────────────────────────────

    def generate_weighted_recommendations(self, candidates: List[StrategyCandidate],
                                          regime: MarketRegime) -> List[Dict[str, Any]]:
        by_group: Dict[GroupId, List[StrategyCandidate]] = {gid: [] for gid in self.state.groups}
        for candidate in candidates:
            group = resolve_group(candidate.name, self.state.groups, explicit=candidate.group)
            if group is not None:
                by_group[group.group_id].append(candidate)
            else:
                logger.debug(f"No ensemble group for strategy '{candidate.name}'")

        recommendations = []
        for gid, group in self.state.groups.items():
            members = by_group[gid]
            if not members:
                continue
            target = max(1, math.ceil(group.current_weight * 10))
            selected = sorted(members, key=lambda c: c.ai_score or 0, reverse=True)[:target]

            for rank, candidate in enumerate(selected, start=1):
                rec = candidate.to_payload()
                rec.update({
                    "ensembleGroup":   group.name,
                    "ensembleGroupId": group.group_id.value,
                    "ensembleWeight":  group.current_weight,
                    "groupRank":       rank,
                    "totalInGroup":    len(selected),
                    "ensembleScore":   self.calculate_ensemble_score(candidate, group, regime),
                })
                recommendations.append(rec)
        return recommendations

    def calculate_ensemble_score(self, candidate: StrategyCandidate, group: StrategyGroup,
                                 regime: MarketRegime) -> int:
        score = candidate.ai_score or 50
        score += group.current_weight * 30
        score += self.assess_regime_alignment(group, regime) * 20
        if group.performance.total_trades > 0:
            score += (group.performance.win_rate - 0.5) * 40
        return int(_round(max(0, min(100, score)), 0))

    def apply_portfolio_optimization(self, recommendations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ranked = sorted(recommendations, key=lambda r: r.get("ensembleScore", 0), reverse=True)

        # Diversification cap
        max_per_group = math.ceil(len(ranked) / len(self.state.groups) * 1.5)
        counts: Dict[str, int] = {}
        diversified = []
        for rec in ranked:
            group = rec["ensembleGroup"]
            counts[group] = counts.get(group, 0) + 1
            if counts[group] <= max_per_group:
                diversified.append(rec)

        total = len(diversified)
        for rec in diversified:
            rec["portfolioAllocation"] = self.calculate_portfolio_allocation(rec, total)
            rec["diversificationNote"] = (
                f"{rec['ensembleGroup']} strategy ({rec['ensembleWeight']*100:.1f}% ensemble weight)"
                f" - Rank #{rec['groupRank']} in group"
            )
        return diversified

    @staticmethod
    def calculate_portfolio_allocation(rec: Dict[str, Any], total: int) -> float:
        """Fraction of the portfolio: (1/N) x ensembleWeight x ensembleScore/100."""
        base = 1 / total
        weight = to_float(rec.get("ensembleWeight"), 0.2) or 0.2
        score = to_float(rec.get("ensembleScore"), 50)
        return _round(base * weight * score / 100, 4)

    def calculate_portfolio_metrics(self, recommendations: List[Dict[str, Any]]) -> EnsemblePortfolioMetrics:
        if not recommendations:
            return EnsemblePortfolioMetrics()
        distribution: Dict[str, int] = {}
        for rec in recommendations:
            distribution[rec["ensembleGroup"]] = distribution.get(rec["ensembleGroup"], 0) + 1

        total = len(recommendations)
        largest = max(distribution.values())
        return EnsemblePortfolioMetrics(
            total_allocated       = total,
            diversification_score = int(_round(len(distribution) / len(self.state.groups)
                                               * (1 - largest / total) * 100, 0)),
            risk_concentration    = int(_round(largest / total * 100, 0)),
        )

    # ── State queries / mutation ─────────────────────────────────────────────

    def check_rebalance_signals(self) -> List[RebalanceSignal]:
        signals = []
        with self.state.lock:
            for group in self.state.groups.values():
                drift = abs(group.current_weight - group.base_weight)
                if drift > self.rules.rebalance_threshold:
                    signals.append(RebalanceSignal(
                        strategy       = group.name,
                        drift          = _round(drift * 100, 1),
                        current_weight = _round(group.current_weight * 100, 1),
                        base_weight    = _round(group.base_weight * 100, 1),
                        action         = "REDUCE" if group.current_weight > group.base_weight else "INCREASE",
                    ))
        return signals

    def record_strategy_performance(self, strategy_key: str, is_win: bool, return_percent: float) -> bool:
        """Credits a closed trade to its owning group. Returns False for unknown strategies."""
        with self.state.lock:
            group = resolve_group(strategy_key, self.state.groups)
            if group is None:
                logger.warning(f"No ensemble group owns strategy '{strategy_key}', performance ignored")
                return False
            if is_win:
                group.performance.wins += 1
            else:
                group.performance.losses += 1
            group.performance.total_return += to_float(return_percent, 0.0)

        logger.info(f"Performance recorded: {group.name} {'WIN' if is_win else 'LOSS'} "
                    f"({to_float(return_percent, 0.0):.2f}%)")
        return True

    def get_current_weights(self) -> Dict[str, Dict[str, Any]]:
        with self.state.lock:
            return {
                group.name: {
                    "current":     _round(group.current_weight * 100, 1),
                    "base":        _round(group.base_weight * 100, 1),
                    "performance": group.performance.to_dict(),
                }
                for group in self.state.groups.values()
            }

    def reset_weights(self) -> None:
        """Current weights back to base; performance counters are kept."""
        with self.state.lock:
            for group in self.state.groups.values():
                group.current_weight = group.base_weight
        logger.info("Ensemble weights reset to base allocation")

    def calculate_overall_win_rate(self) -> float:
        """Win rate across all groups, as a percent."""
        with self.state.lock:
            wins = sum(g.performance.wins for g in self.state.groups.values())
            trades = sum(g.performance.total_trades for g in self.state.groups.values())
        return _round(wins / trades * 100, 1) if trades else 0.0

    def get_ensemble_summary(self) -> Dict[str, Any]:
        with self.state.lock:
            return {
                "strategies":             len(self.state.groups),
                "totalTrades":            sum(g.performance.total_trades for g in self.state.groups.values()),
                "overallWinRate":         self.calculate_overall_win_rate(),
                "diversificationScore":   self.state.portfolio_metrics.diversification_score,
                "activeRebalanceSignals": len(self.check_rebalance_signals()),
            }
