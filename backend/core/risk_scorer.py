"""
Advanced Portfolio Risk Manager
===============================
Scores an options portfolio on a 0-100 scale and explains the score.

Score components (weights are literal and capped individually):
  - Sector concentration   up to 40  (max sector share / 35% limit)
  - Time decay             up to 30  (10 per position inside 7 DTE)
  - Position-level risk    up to 30  (30% of the mean position risk score)

Supporting analyses reported alongside the score:
  - Concentration by sector / strategy / symbol
  - Linear Greeks proxy
  - Expiration calendar and weekly theta
  - Same-sector correlation pairs and a diversification score
  - Kelly / volatility position sizing and a portfolio heat map
"""
import logging
import math
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional

from core.alerts import generate_recommendations, generate_risk_alerts
from core.concentration import compute_concentration
from core.exceptions import UnknownActionError
from core.greeks import THETA_COEFFICIENT, compute_greeks
from core.portfolio_state import (
    Position, parse_positions, to_float,
)
from core.schemas import (
    CalendarEntry, ConcentrationReport, CorrelationPair, CorrelationReport,
    CriticalPosition, HeatMap, HeatMapCell, PositionRisk, PositionSizeResult,
    RiskAssessment, RiskLevel, TimeBucketCell, TimeDecayReport,
)

logger = logging.getLogger("RiskManager")

RISK_ACTIONS = ("assessPortfolioRisk", "calculatePositionSize", "generateHeatMap", "getLiveAlerts")


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


class AdvancedRiskManager:
    """
    Stateless portfolio risk scorer.
    Thresholds are class attributes so apply_risk_config() can override them.
    """

    # ── Configurable class attributes (overridden by apply_risk_config) ──
    MAX_SECTOR_CONCENTRATION   = 0.35
    MAX_SINGLE_POSITION_SIZE   = 0.15
    MAX_CORRELATION            = 0.70
    CRITICAL_DTE               = 7
    DEFAULT_PORTFOLIO_VALUE    = 100_000
    MAX_LOSS_ALERT_PNL         = -800

    # Score weights
    CONCENTRATION_WEIGHT = 40
    TIME_WEIGHT          = 30
    TIME_POINTS_EACH     = 10
    POSITION_WEIGHT      = 30
    POSITION_FACTOR      = 0.3

    def assess_portfolio_risk(
        self,
        positions:       Any,
        market_data:     Optional[Mapping] = None,
        portfolio_value: Optional[float] = None,
    ) -> RiskAssessment:
        """
        Full risk pass. Never raises: malformed input is defaulted and an
        unexpected fault yields a degraded assessment with `error` set.
        market_data is part of the dashboard contract; no scoring rule reads it.
        """
        try:
            parsed = parse_positions(positions)
            if not parsed:
                return RiskAssessment(risk_level=RiskLevel.NONE, overall_risk_score=0)

            total = self._portfolio_value(portfolio_value)

            concentration = compute_concentration(parsed)
            greeks        = compute_greeks(parsed)
            position_risks = [self.analyze_position_risk(p, total) for p in parsed]
            time_risks    = self.calculate_time_decay_risks(parsed)
            correlation   = self.calculate_correlation_risks(parsed)

            score = self.calculate_overall_risk_score(concentration, time_risks, position_risks)
            level = self.determine_risk_level(score)

            assessment = RiskAssessment(
                overall_risk_score  = score,
                risk_level          = level,
                concentration_risks = concentration,
                greek_risks         = greeks,
                position_risks      = position_risks,
                time_risks          = time_risks,
                correlation_risks   = correlation,
                alerts = generate_risk_alerts(
                    concentration, time_risks,
                    max_sector_concentration=self.MAX_SECTOR_CONCENTRATION,
                    critical_dte=self.CRITICAL_DTE,
                ),
                recommendations = generate_recommendations(score),
            )
            logger.info(f"Portfolio risk assessment complete: {level.value} ({score}/100) "
                        f"across {len(parsed)} positions")
            return assessment

        except Exception as e:
            logger.error(f"Unexpected risk assessment error: {e}")
            return RiskAssessment(risk_level=RiskLevel.NONE, overall_risk_score=0, error=str(e))

    # ── Per-position analysis ───────────────────────────────────────────────

    def analyze_position_risk(
        self,
        position:        Position,
        portfolio_value: Optional[float] = None,
    ) -> PositionRisk:
        position = Position.coerce(position)
        total = self._portfolio_value(portfolio_value)
        dte = position.dte
        value = position.abs_value

        risk = PositionRisk(
            symbol   = position.symbol,
            strategy = position.strategy_name or position.strategy,
        )
        score = 0

        # Time decay
        if dte <= self.CRITICAL_DTE:
            risk.risk_factors.append("CRITICAL_TIME_DECAY")
            risk.alerts.append(f"{position.symbol}: {dte} days to expiration")
            score += 30

        # Position size
        share = value / total
        if share > self.MAX_SINGLE_POSITION_SIZE:
            risk.risk_factors.append("OVERSIZED_POSITION")
            risk.alerts.append(f"{position.symbol}: {share*100:.1f}% of portfolio")
            score += 25

        # Unrealized P&L past the alert floor
        if position.unrealized_pnl < self.MAX_LOSS_ALERT_PNL:
            risk.risk_factors.append("APPROACHING_MAX_LOSS")
            risk.alerts.append(f"{position.symbol}: Near maximum loss threshold")
            score += 35

        risk.risk_score = min(100, score)
        return risk

    # ── Portfolio-level analyses ────────────────────────────────────────────

    def calculate_time_decay_risks(self, positions: List[Position]) -> TimeDecayReport:
        report = TimeDecayReport()
        if not positions:
            return report

        total_dte = 0
        total_theta = 0.0
        today = date.today()

        for pos in positions:
            dte = pos.dte
            value = pos.abs_value
            estimated_theta = -value * THETA_COEFFICIENT / max(dte, 1)
            total_dte += dte
            total_theta += estimated_theta

            if dte <= self.CRITICAL_DTE:
                report.critical_positions.append(CriticalPosition(
                    symbol          = pos.symbol,
                    strategy        = pos.strategy,
                    dte             = dte,
                    estimated_theta = estimated_theta,
                    risk_level      = RiskLevel.CRITICAL if dte <= 3 else RiskLevel.HIGH,
                ))

            expiry = pos.expiration_date or (today + timedelta(days=dte))
            report.expiration_calendar.setdefault(expiry.isoformat(), []).append(
                CalendarEntry(symbol=pos.symbol, strategy=pos.strategy, value=value)
            )

        report.average_dte = total_dte / len(positions)
        report.weekly_theta_decay = total_theta * 7
        return report

    def calculate_correlation_risks(self, positions: List[Position]) -> CorrelationReport:
        """Estimated correlation from shared sector, strategy and expiry window."""
        report = CorrelationReport()

        sectors: Dict[str, List[Position]] = {}
        for pos in positions:
            sectors.setdefault(pos.sector, []).append(pos)

        for members in sectors.values():
            for i in range(len(members)):
                for j in range(i + 1, len(members)):
                    first, second = members[i], members[j]
                    correlation = 0.6
                    if first.strategy_label == second.strategy_label:
                        correlation += 0.2
                    if abs(first.dte - second.dte) < 7:
                        correlation += 0.1
                    correlation = round(correlation, 2)

                    if correlation >= self.MAX_CORRELATION:
                        report.high_correlation_pairs.append(CorrelationPair(
                            position1             = first.symbol,
                            position2             = second.symbol,
                            estimated_correlation = correlation,
                            risk_level            = RiskLevel.HIGH if correlation > 0.8 else RiskLevel.MEDIUM,
                        ))

        strategy_types = len({p.strategy_label for p in positions})
        report.diversification_score = min(100, len(sectors) * 15 + strategy_types * 10)
        return report

    # ── Scoring ─────────────────────────────────────────────────────────────

    def calculate_overall_risk_score(
        self,
        concentration:  ConcentrationReport,
        time_risks:     TimeDecayReport,
        position_risks: List[PositionRisk],
    ) -> int:
        score = 0.0

        score += min(
            self.CONCENTRATION_WEIGHT,
            concentration.max_sector_percentage / self.MAX_SECTOR_CONCENTRATION * self.CONCENTRATION_WEIGHT,
        )
        score += min(self.TIME_WEIGHT, len(time_risks.critical_positions) * self.TIME_POINTS_EACH)

        avg_position_risk = sum(r.risk_score for r in position_risks) / max(1, len(position_risks))
        score += min(self.POSITION_WEIGHT, avg_position_risk * self.POSITION_FACTOR)

        return _round_half_up(min(100, score))

    @staticmethod
    def determine_risk_level(risk_score: float) -> RiskLevel:
        if risk_score >= 80:
            return RiskLevel.CRITICAL
        if risk_score >= 60:
            return RiskLevel.HIGH
        if risk_score >= 40:
            return RiskLevel.MEDIUM
        if risk_score >= 20:
            return RiskLevel.LOW
        return RiskLevel.MINIMAL

    # ── Position sizing ─────────────────────────────────────────────────────

    @staticmethod
    def calculate_kelly_criterion(win_rate: float, avg_win: float, avg_loss: float,
                                  portfolio_value: float) -> float:
        """Kelly f = (b*p - q) / b with b = |avgWin/avgLoss|, capped to [0, 25%]."""
        if avg_loss == 0 or win_rate <= 0 or win_rate >= 1:
            return 0.0
        odds = abs(avg_win / avg_loss)
        if odds == 0:
            return 0.0
        loss_rate = 1 - win_rate
        kelly_fraction = (odds * win_rate - loss_rate) / odds
        capped = max(0.0, min(0.25, kelly_fraction))
        return capped * portfolio_value

    @staticmethod
    def calculate_volatility_based_size(base_size: float, implied_volatility: float,
                                        target_volatility: float = 0.25) -> float:
        vol_adjustment = target_volatility / max(implied_volatility, 0.1)
        return base_size * max(0.25, min(2.0, vol_adjustment))

    def calculate_position_size(
        self,
        win_rate:           Any,
        avg_win:            Any,
        avg_loss:           Any,
        portfolio_value:    Any = None,
        implied_volatility: Any = 0.25,
    ) -> PositionSizeResult:
        total = self._portfolio_value(portfolio_value)
        win_rate = to_float(win_rate, 0.0)
        avg_win = to_float(avg_win, 0.0)
        avg_loss = to_float(avg_loss, 0.0)
        iv = to_float(implied_volatility, 0.25)

        kelly = self.calculate_kelly_criterion(win_rate, avg_win, avg_loss, total)
        vol_adjusted = self.calculate_volatility_based_size(kelly, iv)
        recommended = vol_adjusted or kelly
        kelly_pct = kelly / total * 100

        if kelly_pct > 20:
            level = RiskLevel.HIGH
        elif kelly_pct > 10:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW

        return PositionSizeResult(
            kelly_optimal       = kelly,
            volatility_adjusted = vol_adjusted,
            optimal_size        = recommended,
            kelly_percentage    = kelly_pct,
            max_loss            = recommended * (avg_loss or 0.05),
            risk_level          = level,
            risk_percentage     = round(recommended / total * 100, 2),
        )

    # ── Heat map ────────────────────────────────────────────────────────────

    def generate_portfolio_heat_map(self, positions: Any,
                                    portfolio_value: Optional[float] = None) -> HeatMap:
        heat_map = HeatMap()
        dte_sums: Dict[str, int] = {}

        for pos in parse_positions(positions):
            value = pos.abs_value
            dte = pos.dte
            position_score = self.analyze_position_risk(pos, portfolio_value=portfolio_value).risk_score

            for cells, key in ((heat_map.sectors, pos.sector), (heat_map.strategies, pos.strategy_label)):
                cell = cells.setdefault(key, HeatMapCell())
                cell.value += value
                cell.count += 1
                cell.risk_score = max(cell.risk_score, position_score)

            if dte <= 7:
                bucket = "Critical"
            elif dte <= 21:
                bucket = "Short"
            elif dte <= 45:
                bucket = "Medium"
            else:
                bucket = "Long"
            cell = heat_map.time_to_expiration.setdefault(bucket, TimeBucketCell())
            cell.value += value
            cell.count += 1
            dte_sums[bucket] = dte_sums.get(bucket, 0) + dte
            cell.avg_dte = dte_sums[bucket] / cell.count

        return heat_map

    # ── Action dispatcher ───────────────────────────────────────────────────

    def dispatch_action(self, action: str, request: Mapping) -> Dict[str, Any]:
        """Routes a dashboard action to the matching analysis (JSON-ready output)."""
        positions = request.get("positions") or []
        market_data = request.get("marketData") or {}
        portfolio_value = request.get("portfolioValue")

        if action == "assessPortfolioRisk":
            assessment = self.assess_portfolio_risk(positions, market_data, portfolio_value)
            return {"riskAssessment": assessment.model_dump(mode="json", by_alias=True)}

        if action == "calculatePositionSize":
            sizing = self.calculate_position_size(
                request.get("winRate"),
                request.get("avgWin"),
                request.get("avgLoss"),
                portfolio_value,
                request.get("impliedVolatility", 0.25),
            )
            return {"positionSize": sizing.model_dump(mode="json", by_alias=True)}

        if action == "generateHeatMap":
            heat_map = self.generate_portfolio_heat_map(positions, portfolio_value)
            return {"heatMap": heat_map.model_dump(mode="json", by_alias=True)}

        if action == "getLiveAlerts":
            assessment = self.assess_portfolio_risk(positions, market_data, portfolio_value)
            dumped = assessment.model_dump(mode="json", by_alias=True)
            return {
                "alerts":          dumped["alerts"],
                "recommendations": dumped["recommendations"],
                "riskLevel":       dumped["riskLevel"],
            }

        raise UnknownActionError(action, RISK_ACTIONS)

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _portfolio_value(self, portfolio_value: Any) -> float:
        value = to_float(portfolio_value, 0.0)
        return value if value > 0 else float(self.DEFAULT_PORTFOLIO_VALUE)
