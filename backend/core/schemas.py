"""
Output schemas for the risk and ensemble engines.
All models serialize with camelCase keys (model_dump(by_alias=True)).
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RiskLevel(str, Enum):
    NONE     = "NONE"
    MINIMAL  = "MINIMAL"
    LOW      = "LOW"
    MEDIUM   = "MEDIUM"
    HIGH     = "HIGH"
    CRITICAL = "CRITICAL"


# ── Concentration ────────────────────────────────────────────────────────────

class ConcentrationBucket(CamelModel):
    value: float = 0.0
    percentage: float = 0.0
    positions: int = 0

class SymbolConcentration(CamelModel):
    value: float = 0.0
    percentage: float = 0.0

class LargestPosition(CamelModel):
    symbol: str
    strategy: Optional[str] = None
    value: float
    percentage: float

class ConcentrationReport(CamelModel):
    by_sector: Dict[str, ConcentrationBucket] = Field(default_factory=dict)
    by_strategy: Dict[str, ConcentrationBucket] = Field(default_factory=dict)
    by_symbol: Dict[str, SymbolConcentration] = Field(default_factory=dict)
    largest_positions: List[LargestPosition] = Field(default_factory=list)

    @property
    def max_sector_percentage(self) -> float:
        return max((b.percentage for b in self.by_sector.values()), default=0.0)


# ── Greeks ───────────────────────────────────────────────────────────────────

class GreekExposure(CamelModel):
    total_delta: float = 0.0
    total_gamma: float = 0.0
    total_theta: float = 0.0
    total_vega: float = 0.0
    net_exposure: float = 0.0
    delta_hedge_ratio: float = 0.0


# ── Position / time / correlation ────────────────────────────────────────────

class PositionRisk(CamelModel):
    symbol: str
    strategy: Optional[str] = None
    risk_score: int = 0
    risk_factors: List[str] = Field(default_factory=list)
    alerts: List[str] = Field(default_factory=list)

class CriticalPosition(CamelModel):
    symbol: str
    strategy: Optional[str] = None
    dte: int
    estimated_theta: float
    risk_level: RiskLevel

class CalendarEntry(CamelModel):
    symbol: str
    strategy: Optional[str] = None
    value: float

class TimeDecayReport(CamelModel):
    critical_positions: List[CriticalPosition] = Field(default_factory=list)
    weekly_theta_decay: float = 0.0
    average_dte: float = Field(0.0, alias="averageDTE")
    expiration_calendar: Dict[str, List[CalendarEntry]] = Field(default_factory=dict)

class CorrelationPair(CamelModel):
    position1: str
    position2: str
    estimated_correlation: float
    risk_level: RiskLevel

class CorrelationReport(CamelModel):
    high_correlation_pairs: List[CorrelationPair] = Field(default_factory=list)
    diversification_score: int = 0


# ── Alerts & recommendations ─────────────────────────────────────────────────

class RiskAlert(CamelModel):
    type: str            # SECTOR_CONCENTRATION | EXPIRATION_WARNING
    level: RiskLevel
    message: str
    recommendation: str

class RiskRecommendation(CamelModel):
    priority: RiskLevel
    action: str          # REDUCE_RISK | HEDGE_EXPOSURE | INCREASE_EXPOSURE
    message: str
    impact: str


# ── Assessment ───────────────────────────────────────────────────────────────

class RiskAssessment(CamelModel):
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    overall_risk_score: int = 0
    risk_level: RiskLevel = RiskLevel.NONE
    concentration_risks: ConcentrationReport = Field(default_factory=ConcentrationReport)
    greek_risks: GreekExposure = Field(default_factory=GreekExposure)
    position_risks: List[PositionRisk] = Field(default_factory=list)
    time_risks: TimeDecayReport = Field(default_factory=TimeDecayReport)
    correlation_risks: CorrelationReport = Field(default_factory=CorrelationReport)
    alerts: List[RiskAlert] = Field(default_factory=list)
    recommendations: List[RiskRecommendation] = Field(default_factory=list)
    error: Optional[str] = None


# ── Sizing & heat map ────────────────────────────────────────────────────────

class PositionSizeResult(CamelModel):
    kelly_optimal: float
    volatility_adjusted: float
    optimal_size: float
    kelly_percentage: float
    max_loss: float
    risk_level: RiskLevel
    risk_percentage: float

class HeatMapCell(CamelModel):
    value: float = 0.0
    count: int = 0
    risk_score: int = 0

class TimeBucketCell(CamelModel):
    value: float = 0.0
    count: int = 0
    avg_dte: float = Field(0.0, alias="avgDTE")

class HeatMap(CamelModel):
    sectors: Dict[str, HeatMapCell] = Field(default_factory=dict)
    strategies: Dict[str, HeatMapCell] = Field(default_factory=dict)
    time_to_expiration: Dict[str, TimeBucketCell] = Field(default_factory=dict)


# ── Market regime ────────────────────────────────────────────────────────────

class MarketMetrics(CamelModel):
    avg_iv: float = Field(0.0, alias="avgIV")
    avg_change: float = 0.0
    squeeze_count: int = 0
    high_volume_count: int = 0

class MarketRegime(CamelModel):
    primary: str
    confidence: float = 0.0
    scores: Dict[str, float] = Field(default_factory=dict)
    market_metrics: MarketMetrics = Field(default_factory=MarketMetrics)

    @classmethod
    def unknown(cls) -> "MarketRegime":
        return cls(primary="unknown", confidence=0)


# ── Ensemble ─────────────────────────────────────────────────────────────────

class RebalanceSignal(CamelModel):
    strategy: str
    drift: float           # percentage points
    current_weight: float  # percent
    base_weight: float     # percent
    action: str            # REDUCE | INCREASE

class EnsemblePortfolioMetrics(CamelModel):
    total_allocated: int = 0
    diversification_score: int = 0
    risk_concentration: int = 0

class EnsembleResult(CamelModel):
    recommendations: List[Any] = Field(default_factory=list)
    ensemble_weights: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    market_regime: MarketRegime
    portfolio_metrics: EnsemblePortfolioMetrics = Field(default_factory=EnsemblePortfolioMetrics)
    rebalance_signals: List[RebalanceSignal] = Field(default_factory=list)
    error: Optional[str] = None
