"""
Portfolio Risk Alerts
=====================
Threshold-triggered alerts and score-driven recommendations:
  - Sector concentration above the configured limit (one alert per sector)
  - Positions inside the critical expiration window (one alert in total)
  - REDUCE_RISK / HEDGE_EXPOSURE / INCREASE_EXPOSURE from the overall score
"""
import logging
from typing import List

from core.schemas import (
    ConcentrationReport, RiskAlert, RiskLevel, RiskRecommendation, TimeDecayReport,
)

logger = logging.getLogger("AlertSystem")


def generate_risk_alerts(
    concentration: ConcentrationReport,
    time_risks: TimeDecayReport,
    max_sector_concentration: float = 0.35,
    critical_dte: int = 7,
) -> List[RiskAlert]:
    alerts = []

    # ── Concentration alerts ────────────────────────────────────────────
    for sector, bucket in concentration.by_sector.items():
        if bucket.percentage > max_sector_concentration:
            alerts.append(RiskAlert(
                type           = "SECTOR_CONCENTRATION",
                level          = RiskLevel.HIGH,
                message        = f"High sector concentration: {bucket.percentage*100:.1f}% in {sector}",
                recommendation = "Consider diversifying across sectors",
            ))

    # ── Expiration window ───────────────────────────────────────────────
    expiring = len(time_risks.critical_positions)
    if expiring > 0:
        alerts.append(RiskAlert(
            type           = "EXPIRATION_WARNING",
            level          = RiskLevel.HIGH,
            message        = f"{expiring} positions expiring within {critical_dte} days",
            recommendation = "Plan exit strategy or roll positions",
        ))

    for a in alerts:
        logger.warning(f"ALERT [{a.level.value}] {a.type}: {a.message}")
    return alerts


def generate_recommendations(risk_score: int) -> List[RiskRecommendation]:
    """Scores between 30 and 60 (inclusive) produce no recommendation."""
    if risk_score > 80:
        return [RiskRecommendation(
            priority = RiskLevel.HIGH,
            action   = "REDUCE_RISK",
            message  = "Portfolio risk is critically high - consider closing highest-risk positions",
            impact   = "Protect capital from major losses",
        )]
    if risk_score > 60:
        return [RiskRecommendation(
            priority = RiskLevel.MEDIUM,
            action   = "HEDGE_EXPOSURE",
            message  = "Consider adding hedge positions to reduce directional risk",
            impact   = "Lower portfolio volatility",
        )]
    if risk_score < 30:
        return [RiskRecommendation(
            priority = RiskLevel.LOW,
            action   = "INCREASE_EXPOSURE",
            message  = "Portfolio risk is low - consider adding selective positions",
            impact   = "Potentially increase returns",
        )]
    return []
