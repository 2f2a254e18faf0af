import threading

import pytest

from core.ensemble import EnsembleState, MultiStrategyEnsemble
from core.market_regime import MarketRegimeClassifier
from core.portfolio_state import PortfolioContext
from core.risk_config import EnsembleRules
from core.schemas import MarketRegime
from core.strategy_groups import GroupId, build_strategy_groups, resolve_group


def _weights(ensemble):
    return {gid: g.current_weight for gid, g in ensemble.state.groups.items()}


# --- Group resolution ---

@pytest.mark.parametrize("name, expected", [
    ("Iron Condor", GroupId.RANGE_BOUND_INCOME),
    ("Short Straddle", GroupId.VOLATILITY_CONTRACTION),
    ("Long Straddle", GroupId.VOLATILITY_EXPANSION),
    ("Iron Butterfly", GroupId.VOLATILITY_EXPANSION),
    ("Bull Call Spread", GroupId.DIRECTIONAL_MOMENTUM),
    ("Bear Put Spread", GroupId.DIRECTIONAL_MOMENTUM),
    ("Cash Secured Put", GroupId.HIGH_PROBABILITY_INCOME),
    ("Call Ratio Backspread", GroupId.ADAPTIVE_MOMENTUM),
    ("Protective Collar", GroupId.HIGH_PROBABILITY_INCOME),
])
def test_resolve_group(name, expected):
    assert resolve_group(name, build_strategy_groups()).group_id == expected


def test_unmatched_and_explicit_groups():
    groups = build_strategy_groups()
    assert resolve_group("Mystery Trade", groups) is None
    assert resolve_group("", groups) is None
    assert resolve_group("Iron Condor", groups, explicit="adaptiveMomentum").group_id == GroupId.ADAPTIVE_MOMENTUM
    assert resolve_group("Iron Condor", groups, explicit="bogus").group_id == GroupId.RANGE_BOUND_INCOME


# --- Weighting ---

def test_weights_sum_to_one_and_respect_clamps(ensemble, high_iv_market):
    regime = MarketRegimeClassifier().classify(high_iv_market)
    clamped = ensemble.update_dynamic_weights(regime, PortfolioContext())

    assert sum(_weights(ensemble).values()) == pytest.approx(1.0, abs=1e-9)
    assert all(0.05 <= w <= 0.40 for w in clamped.values())
    total = sum(clamped.values())
    for gid, weight in _weights(ensemble).items():
        assert weight == pytest.approx(clamped[gid] / total)


def test_iron_condor_wins_raise_range_bound_weight():
    baseline = MultiStrategyEnsemble(EnsembleState())
    baseline.generate_ensemble_recommendations({}, [], {})
    base_weight = baseline.state.groups[GroupId.RANGE_BOUND_INCOME].current_weight

    ensemble = MultiStrategyEnsemble(EnsembleState())
    for _ in range(3):
        assert ensemble.record_strategy_performance("Iron Condor", True, 12.5)
    group = ensemble.state.groups[GroupId.RANGE_BOUND_INCOME]
    assert ensemble.calculate_performance_multiplier(group) == pytest.approx(1.16875)

    ensemble.generate_ensemble_recommendations({}, [], {})
    assert group.current_weight > base_weight


def test_performance_ignored_below_minimum_trades(ensemble):
    ensemble.record_strategy_performance("Iron Condor", False, -50)
    group = ensemble.state.groups[GroupId.RANGE_BOUND_INCOME]
    assert ensemble.calculate_performance_multiplier(group) == 1.0


def test_unknown_strategy_performance_is_ignored(ensemble):
    assert ensemble.record_strategy_performance("Mystery Trade", True, 10) is False
    assert ensemble.get_ensemble_summary()["totalTrades"] == 0


def test_risk_multiplier_thresholds():
    assert MultiStrategyEnsemble.calculate_risk_multiplier(0, 0) == 1.0
    assert MultiStrategyEnsemble.calculate_risk_multiplier(5, 10) == 0.6
    assert MultiStrategyEnsemble.calculate_risk_multiplier(3, 10) == 0.8
    assert MultiStrategyEnsemble.calculate_risk_multiplier(2, 10) == 1.0


def test_concentrated_active_trades_shrink_group(ensemble):
    context = {"activeTrades": [{"symbol": "SPY", "strategy": "Iron Condor"}] * 4}
    clamped = ensemble.update_dynamic_weights(MarketRegime.unknown(), PortfolioContext.coerce(context))
    assert clamped[GroupId.RANGE_BOUND_INCOME] == pytest.approx(0.25 * 0.6)


def test_regime_multiplier_adds_condition_bonuses(ensemble):
    group = ensemble.state.groups[GroupId.DIRECTIONAL_MOMENTUM]
    regime = MarketRegime(primary="momentum_breakout",
                          scores={"trending_bullish": 90, "momentum_breakout": 90})
    assert ensemble.calculate_regime_multiplier(group, regime) == pytest.approx(1.45)


# --- Recommendations ---

def test_recommendations_from_mixed_candidates(ensemble, strategy_candidates):
    result = ensemble.generate_ensemble_recommendations({}, strategy_candidates, {"activeTrades": []})
    recs = result.recommendations

    assert result.error is None
    assert result.market_regime.primary == "range_bound"
    assert len(recs) == 6
    assert "Mystery Trade" not in {r["strategy"] for r in recs}

    scores = [r["ensembleScore"] for r in recs]
    assert scores == sorted(scores, reverse=True)
    assert all(isinstance(s, int) and 0 <= s <= 100 for s in scores)

    condor = next(r for r in recs if r["strategy"] == "Iron Condor")
    assert condor["ensembleGroup"] == "Range-Bound Income"
    assert condor["ensembleScore"] == 93
    assert condor["symbol"] == "SPY"
    assert condor["portfolioAllocation"] == pytest.approx(1 / 6 * condor["ensembleWeight"] * 0.93, abs=1e-4)
    assert "Rank #1 in group" in condor["diversificationNote"]

    assert result.portfolio_metrics.total_allocated == 6
    assert result.portfolio_metrics.risk_concentration == 17


def test_group_target_and_diversification_cap(ensemble):
    candidates = [{"strategy": "Iron Condor", "aiScore": s} for s in range(50, 62)]
    recs = ensemble.generate_ensemble_recommendations({}, candidates, None).recommendations

    # ceil(0.2857 * 10) = 3 picks, then capped at ceil(3 / 6 * 1.5) = 1
    assert len(recs) == 1
    assert recs[0]["aiScore"] == 61


def test_missing_ai_score_defaults_to_fifty(ensemble):
    recs = ensemble.generate_ensemble_recommendations({}, [{"strategyKey": "collar"}], None).recommendations
    assert recs[0]["ensembleGroup"] == "High-Probability Income"
    assert 50 <= recs[0]["ensembleScore"] <= 60


def test_empty_candidates_give_empty_metrics(ensemble):
    result = ensemble.generate_ensemble_recommendations({}, [], None)
    assert result.recommendations == []
    assert result.portfolio_metrics.total_allocated == 0
    assert result.portfolio_metrics.diversification_score == 0


def test_internal_error_returns_candidates_unmodified(ensemble, strategy_candidates, monkeypatch):
    def boom(market_data):
        raise RuntimeError("bad market data shape")
    monkeypatch.setattr(ensemble.classifier, "classify", boom)

    result = ensemble.generate_ensemble_recommendations({}, strategy_candidates, None)
    assert result.recommendations == strategy_candidates
    assert result.market_regime.primary == "unknown"
    assert result.market_regime.confidence == 0
    assert result.rebalance_signals == []
    assert "bad market data shape" in result.error


# --- State queries ---

def test_rebalance_signal_on_drift():
    ensemble = MultiStrategyEnsemble(EnsembleState(), rules=EnsembleRules(rebalance_threshold=0.01))
    result = ensemble.generate_ensemble_recommendations({}, [], None)

    assert [s.strategy for s in result.rebalance_signals] == ["Range-Bound Income"]
    signal = result.rebalance_signals[0]
    assert signal.action == "REDUCE"
    assert signal.base_weight == 25.0
    assert signal.current_weight == 28.6


def test_current_weights_reset_and_summary(ensemble):
    for win in (True, True, True, False):
        ensemble.record_strategy_performance("Iron Condor", win, 10)
    ensemble.generate_ensemble_recommendations({}, [], None)

    weights = ensemble.get_current_weights()
    assert set(weights) == {g.name for g in ensemble.state.groups.values()}
    assert weights["Range-Bound Income"]["performance"] == {"wins": 3, "losses": 1, "totalReturn": 40.0}

    ensemble.reset_weights()
    assert ensemble.get_current_weights()["Range-Bound Income"]["current"] == 25.0

    summary = ensemble.get_ensemble_summary()
    assert summary["strategies"] == 6
    assert summary["totalTrades"] == 4
    assert summary["overallWinRate"] == 75.0
    assert summary["activeRebalanceSignals"] == 0


def test_concurrent_performance_recording_loses_no_updates(ensemble):
    def worker():
        for _ in range(50):
            ensemble.record_strategy_performance("Iron Condor", True, 1.0)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    perf = ensemble.state.groups[GroupId.RANGE_BOUND_INCOME].performance
    assert perf.wins == 200
    assert perf.total_return == pytest.approx(200.0)
