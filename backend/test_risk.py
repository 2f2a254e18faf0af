import json
from datetime import date, timedelta

import pytest

from core.exceptions import UnknownActionError
from core.concentration import compute_concentration
from core.greeks import compute_greeks
from core.portfolio_state import Position, calculate_dte, parse_positions
from core.risk_config import apply_risk_config, update_config, RiskThresholds
from core.schemas import RiskAssessment, RiskLevel


def _assessment_without_timestamp(assessment):
    data = assessment.model_dump(mode="json", by_alias=True)
    data.pop("timestamp")
    return data


# --- Empty and degraded input ---

def test_empty_portfolio_is_no_risk(risk_manager):
    result = risk_manager.assess_portfolio_risk([])
    assert result.risk_level == RiskLevel.NONE
    assert result.overall_risk_score == 0
    assert result.alerts == []
    assert result.recommendations == []
    assert result.error is None


def test_malformed_positions_are_defaulted(risk_manager):
    result = risk_manager.assess_portfolio_risk([{"currentValue": "abc", "dte": None}, "junk"])
    assert result.error is None
    assert {p.symbol for p in result.position_risks} == {"Unknown"}


def test_internal_fault_yields_degraded_assessment(risk_manager, monkeypatch, sofi_position):
    def boom(*args, **kwargs):
        raise RuntimeError("greeks offline")
    monkeypatch.setattr("core.risk_scorer.compute_greeks", boom)

    result = risk_manager.assess_portfolio_risk([sofi_position])
    assert result.risk_level == RiskLevel.NONE
    assert result.overall_risk_score == 0
    assert "greeks offline" in result.error


# --- Position scoring ---

def test_sofi_expiring_near_max_loss(risk_manager, sofi_position):
    result = risk_manager.assess_portfolio_risk([sofi_position], portfolio_value=100_000)
    position = result.position_risks[0]

    assert "CRITICAL_TIME_DECAY" in position.risk_factors
    assert "APPROACHING_MAX_LOSS" in position.risk_factors
    assert "OVERSIZED_POSITION" not in position.risk_factors
    assert position.risk_score >= 65


def test_oversized_position_flagged(risk_manager):
    risk = risk_manager.analyze_position_risk(
        Position(symbol="TSLA", current_value=20_000, stated_dte=40), portfolio_value=100_000)
    assert risk.risk_factors == ["OVERSIZED_POSITION"]
    assert risk.risk_score == 25


def test_max_loss_alert_uses_fixed_pnl_floor(risk_manager):
    deep = risk_manager.analyze_position_risk(
        Position.coerce({"symbol": "GME", "currentValue": 1_000, "dte": 40,
                         "unrealizedPnL": -900, "maxLoss": -5_000}))
    shallow = risk_manager.analyze_position_risk(
        Position.coerce({"symbol": "AMC", "currentValue": 1_000, "dte": 40,
                         "unrealizedPnL": -300, "maxLoss": -200}))
    assert deep.risk_factors == ["APPROACHING_MAX_LOSS"]
    assert deep.risk_score == 35
    assert shallow.risk_factors == []
    assert shallow.risk_score == 0


def test_implied_volatility_does_not_add_position_risk(risk_manager):
    result = risk_manager.assess_portfolio_risk(
        [{"symbol": "GME", "currentValue": 1_000, "dte": 40}],
        market_data={"GME": {"impliedVolatility": 0.9}})
    assert result.position_risks[0].risk_factors == []
    assert result.position_risks[0].risk_score == 0


def test_expiration_date_wins_over_dte_hint():
    expiry = (date.today() + timedelta(days=60)).isoformat()
    pos = Position.coerce({"symbol": "AAPL", "expirationDate": expiry, "dte": 3})
    assert pos.dte in (59, 60)
    assert Position.coerce({"symbol": "AAPL"}).dte == 30
    assert calculate_dte(date.today() - timedelta(days=5)) == 0


# --- Portfolio scoring ---

def test_overall_score_and_alerts(risk_manager, sofi_position):
    result = risk_manager.assess_portfolio_risk([sofi_position])
    # 40 (single sector) + 10 (one critical) + 65 * 0.3 = 69.5 -> 70
    assert result.overall_risk_score == 70
    assert result.risk_level == RiskLevel.HIGH
    assert {a.type for a in result.alerts} == {"SECTOR_CONCENTRATION", "EXPIRATION_WARNING"}
    assert [r.action for r in result.recommendations] == ["HEDGE_EXPOSURE"]


def test_idempotent_assessment(risk_manager, sofi_position):
    positions = [sofi_position, {"symbol": "AAPL", "sector": "Technology", "currentValue": 5_000}]
    first = risk_manager.assess_portfolio_risk(positions)
    second = risk_manager.assess_portfolio_risk(positions)
    assert _assessment_without_timestamp(first) == _assessment_without_timestamp(second)


def test_growing_largest_sector_never_lowers_share_or_score(risk_manager):
    previous_pct, previous_score = -1.0, -1
    for value in (2_000, 5_000, 10_000, 50_000):
        positions = [
            {"symbol": "JPM", "sector": "Financial", "currentValue": value, "dte": 40},
            {"symbol": "AAPL", "sector": "Technology", "currentValue": 1_000, "dte": 40},
            {"symbol": "XOM", "sector": "Energy", "currentValue": 1_000, "dte": 40},
        ]
        result = risk_manager.assess_portfolio_risk(positions)
        pct = result.concentration_risks.by_sector["Financial"].percentage
        assert pct >= previous_pct
        assert result.overall_risk_score >= previous_score
        previous_pct, previous_score = pct, result.overall_risk_score


def test_assessment_json_round_trip(risk_manager, sofi_position):
    original = risk_manager.assess_portfolio_risk(
        [sofi_position, {"symbol": "NVDA", "sector": "Technology", "strategyName": "Long Call",
                         "currentValue": 7_500}])
    restored = RiskAssessment.model_validate(json.loads(original.model_dump_json(by_alias=True)))
    assert restored.model_dump() == original.model_dump()


def test_correlated_pairs_in_same_sector(risk_manager):
    positions = [
        {"symbol": "AAPL", "sector": "Technology", "strategyName": "Iron Condor", "currentValue": 1_000, "dte": 10},
        {"symbol": "MSFT", "sector": "Technology", "strategyName": "Iron Condor", "currentValue": 1_000, "dte": 12},
    ]
    report = risk_manager.assess_portfolio_risk(positions).correlation_risks
    assert len(report.high_correlation_pairs) == 1
    assert report.high_correlation_pairs[0].estimated_correlation == 0.9
    assert report.high_correlation_pairs[0].risk_level == RiskLevel.HIGH


# --- Concentration and Greeks ---

def test_concentration_shares_and_largest_positions():
    positions = parse_positions([
        {"symbol": f"S{i}", "sector": "Technology" if i < 4 else "Energy",
         "strategyName": "Iron Condor", "currentValue": (i + 1) * 1_000}
        for i in range(7)
    ] + [{"symbol": "SHORT", "sector": "Energy", "positionSize": -7_000}])
    report = compute_concentration(positions)

    # |values| sum to 28k + 7k
    assert report.by_sector["Technology"].percentage == pytest.approx(10_000 / 35_000)
    assert report.by_sector["Energy"].positions == 4
    assert report.by_strategy["Unknown"].value == 7_000
    assert len(report.largest_positions) == 5
    assert [p.value for p in report.largest_positions][:2] == [7_000, 7_000]
    assert report.largest_positions[-1].value == 4_000


def test_zero_total_value_gives_empty_concentration():
    report = compute_concentration(parse_positions([{"symbol": "A"}, {"symbol": "B", "currentValue": 0}]))
    assert report.by_sector == {}
    assert report.by_strategy == {}
    assert report.by_symbol == {}
    assert report.largest_positions == []


def test_greeks_linear_proxy():
    greeks = compute_greeks(parse_positions([
        {"symbol": "NVDA", "strategyName": "Long Call", "currentValue": 1_000, "dte": 10},
        {"symbol": "SPY", "strategyName": "Bear Put Spread", "currentValue": 2_000, "dte": 0},
        {"symbol": "IWM", "strategyName": "Iron Condor", "currentValue": 5_000, "dte": 10},
    ]))
    assert greeks.total_delta == pytest.approx(1_000 * 0.5 - 2_000 * 0.5)
    assert greeks.total_gamma == pytest.approx(3_000 * 0.02)
    # Expired positions divide by one day
    assert greeks.total_theta == pytest.approx(-1_000 * 0.05 / 10 - 2_000 * 0.05 / 1)
    assert greeks.total_vega == pytest.approx(3_000 * 0.1)
    assert greeks.net_exposure == pytest.approx(500)
    assert greeks.delta_hedge_ratio == pytest.approx(500 / 3)


def test_greeks_ignore_non_option_strategies():
    greeks = compute_greeks(parse_positions([
        {"symbol": "IWM", "strategyName": "Iron Condor", "currentValue": 5_000},
        {"symbol": "AAPL", "currentValue": 5_000},
    ]))
    assert greeks.total_delta == 0
    assert greeks.total_vega == 0
    assert greeks.delta_hedge_ratio == 0

# --- Sizing, heat map, dispatcher ---

def test_kelly_is_capped_at_quarter_of_portfolio(risk_manager):
    assert risk_manager.calculate_kelly_criterion(0.9, 300, 100, 100_000) == pytest.approx(25_000)
    assert risk_manager.calculate_kelly_criterion(0.3, 100, 100, 100_000) == 0.0


def test_volatility_sizing_clamps(risk_manager):
    assert risk_manager.calculate_volatility_based_size(1_000, 0.01) == pytest.approx(2_000)
    assert risk_manager.calculate_volatility_based_size(1_000, 5.0) == pytest.approx(250)


def test_heat_map_time_buckets(risk_manager):
    heat_map = risk_manager.generate_portfolio_heat_map([
        {"symbol": "A", "currentValue": 100, "dte": 3},
        {"symbol": "B", "currentValue": 100, "dte": 7},
        {"symbol": "C", "currentValue": 100, "dte": 30},
        {"symbol": "D", "currentValue": 100, "dte": 90},
    ])
    buckets = heat_map.time_to_expiration
    assert buckets["Critical"].count == 2
    assert buckets["Critical"].avg_dte == 5
    assert set(buckets) == {"Critical", "Medium", "Long"}


def test_dispatcher_rejects_unknown_action(risk_manager):
    with pytest.raises(UnknownActionError) as exc:
        risk_manager.dispatch_action("deleteEverything", {})
    assert "assessPortfolioRisk" in str(exc.value)


def test_dispatcher_live_alerts(risk_manager, sofi_position):
    result = risk_manager.dispatch_action("getLiveAlerts", {"positions": [sofi_position]})
    assert result["riskLevel"] == "HIGH"
    assert len(result["alerts"]) == 2


def test_apply_risk_config_overrides_thresholds(risk_manager):
    try:
        update_config(risk=RiskThresholds(critical_dte=3))
        apply_risk_config(risk_manager)
        assert risk_manager.CRITICAL_DTE == 3
        risk = risk_manager.analyze_position_risk(Position(symbol="X", current_value=10, stated_dte=5))
        assert "CRITICAL_TIME_DECAY" not in risk.risk_factors
    finally:
        update_config(risk=RiskThresholds())
