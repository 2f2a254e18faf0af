"""
Boundary Records
================
Positions, market snapshots and strategy candidates arrive from the dashboard
as loosely shaped JSON. They are validated once here; every missing or
malformed field falls back to a documented default instead of raising, so the
scoring engines downstream can trust the shapes they receive.
"""
import math
from datetime import date, datetime, time
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


DEFAULT_DTE = 30
DEFAULT_IMPLIED_VOLATILITY = 0.25


def to_float(value: Any, default: float) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def _to_optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(result) or math.isinf(result) else result


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def calculate_dte(expiration_date: Optional[date], now: Optional[datetime] = None) -> int:
    """Whole days until expiration (rounded up), floored at 0. Missing date -> 30."""
    if expiration_date is None:
        return DEFAULT_DTE
    now = now or datetime.now()
    expiry = datetime.combine(expiration_date, time.min)
    days = math.ceil((expiry - now).total_seconds() / 86400)
    return max(0, days)


class BoundaryModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class Position(BoundaryModel):
    """A held or candidate options trade."""
    symbol: str = "Unknown"
    sector: str = "Unknown"
    strategy_name: Optional[str] = None
    strategy: Optional[str] = None
    strategy_key: Optional[str] = None
    current_value: Optional[float] = None
    position_size: Optional[float] = None
    expiration_date: Optional[date] = None
    unrealized_pnl: float = Field(0.0, alias="unrealizedPnL")
    stated_dte: Optional[int] = Field(None, alias="dte")

    @field_validator("symbol", "sector", mode="before")
    @classmethod
    def _label_or_unknown(cls, v):
        return str(v) if v not in (None, "") else "Unknown"

    @field_validator("strategy_name", "strategy", "strategy_key", mode="before")
    @classmethod
    def _optional_label(cls, v):
        return str(v) if v not in (None, "") else None

    @field_validator("current_value", "position_size", mode="before")
    @classmethod
    def _optional_number(cls, v):
        return _to_optional_float(v)

    @field_validator("unrealized_pnl", mode="before")
    @classmethod
    def _pnl(cls, v):
        return to_float(v, 0.0)

    @field_validator("expiration_date", mode="before")
    @classmethod
    def _expiration(cls, v):
        return _parse_date(v)

    @field_validator("stated_dte", mode="before")
    @classmethod
    def _dte_hint(cls, v):
        parsed = _to_optional_float(v)
        return None if parsed is None else int(parsed)

    @property
    def value(self) -> float:
        """Signed notional: currentValue, else positionSize, else 0."""
        return self.current_value or self.position_size or 0.0

    @property
    def abs_value(self) -> float:
        return abs(self.value)

    @property
    def strategy_label(self) -> str:
        return self.strategy_name or self.strategy or "Unknown"

    @property
    def dte(self) -> int:
        # Recomputed on every access so a stored value can never go stale.
        if self.expiration_date is not None:
            return calculate_dte(self.expiration_date)
        if self.stated_dte is not None:
            return max(0, self.stated_dte)
        return DEFAULT_DTE

    @classmethod
    def coerce(cls, raw: Any) -> "Position":
        if isinstance(raw, Position):
            return raw
        if isinstance(raw, Mapping):
            return cls.model_validate(dict(raw))
        return cls()


class MarketSnapshot(BoundaryModel):
    """Per-symbol market data supplied by the upstream provider."""
    price: float = 0.0
    change_percent: float = 0.0
    implied_volatility: float = DEFAULT_IMPLIED_VOLATILITY
    volume: float = 0.0
    avg_volume: Optional[float] = None
    holy_grail: float = 0.0
    squeeze: float = 0.0

    @field_validator("price", "change_percent", "volume", "holy_grail", "squeeze", mode="before")
    @classmethod
    def _number(cls, v):
        return to_float(v, 0.0)

    @field_validator("implied_volatility", mode="before")
    @classmethod
    def _iv(cls, v):
        # Zero IV is treated as missing.
        return to_float(v, 0.0) or DEFAULT_IMPLIED_VOLATILITY

    @field_validator("avg_volume", mode="before")
    @classmethod
    def _avg_volume(cls, v):
        return _to_optional_float(v)

    @property
    def reference_volume(self) -> float:
        return self.avg_volume or self.volume

    @classmethod
    def coerce(cls, raw: Any) -> "MarketSnapshot":
        if isinstance(raw, MarketSnapshot):
            return raw
        if isinstance(raw, Mapping):
            return cls.model_validate(dict(raw))
        return cls()


class StrategyCandidate(BoundaryModel):
    """A candidate options strategy produced by the strategy analyzer."""
    strategy: Optional[str] = None
    strategy_key: Optional[str] = None
    ai_score: Optional[float] = None
    group: Optional[str] = None     # Explicit ensemble group id, wins over name matching

    @field_validator("strategy", "strategy_key", "group", mode="before")
    @classmethod
    def _optional_label(cls, v):
        return str(v) if v not in (None, "") else None

    @field_validator("ai_score", mode="before")
    @classmethod
    def _score(cls, v):
        return _to_optional_float(v)

    @property
    def name(self) -> str:
        return self.strategy or self.strategy_key or ""

    def to_payload(self) -> Dict[str, Any]:
        """The candidate as the caller sent it (camelCase keys)."""
        return self.model_dump(by_alias=True, exclude_unset=True)

    @classmethod
    def coerce(cls, raw: Any) -> "StrategyCandidate":
        if isinstance(raw, StrategyCandidate):
            return raw
        if isinstance(raw, Mapping):
            return cls.model_validate(dict(raw))
        return cls()


class PortfolioContext(BoundaryModel):
    active_trades: List[Position] = Field(default_factory=list)

    @field_validator("active_trades", mode="before")
    @classmethod
    def _trades(cls, v):
        if not isinstance(v, (list, tuple)):
            return []
        return [Position.coerce(t) for t in v]

    @classmethod
    def coerce(cls, raw: Any) -> "PortfolioContext":
        if isinstance(raw, PortfolioContext):
            return raw
        if isinstance(raw, Mapping):
            return cls.model_validate(dict(raw))
        return cls()


class TradeOutcome(BoundaryModel):
    """A closed trade reported back for strategy refinement."""
    symbol: str = "Unknown"
    strategy: str = "Unknown"
    entry_price: float = 0.0
    exit_price: float = 0.0
    outcome: str = "breakeven"          # win | loss | breakeven
    actual_return: float = 0.0
    expected_return: float = 0.0
    max_loss: float = 0.0
    days_held: float = 0.0
    exit_reason: str = "manual"         # profit_target | stop_loss | time_decay | manual
    original_parameters: Dict[str, Any] = Field(default_factory=dict)
    market_conditions: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("symbol", "strategy", mode="before")
    @classmethod
    def _label(cls, v):
        return str(v) if v not in (None, "") else "Unknown"

    @field_validator("exit_reason", mode="before")
    @classmethod
    def _exit_reason(cls, v):
        return v if isinstance(v, str) and v.strip() else "manual"

    @field_validator("outcome", mode="before")
    @classmethod
    def _outcome(cls, v):
        text = str(v or "").strip().lower()
        return text if text in ("win", "loss", "breakeven") else "breakeven"

    @field_validator("entry_price", "exit_price", "actual_return", "expected_return",
                     "max_loss", "days_held", mode="before")
    @classmethod
    def _number(cls, v):
        return to_float(v, 0.0)

    @field_validator("original_parameters", "market_conditions", mode="before")
    @classmethod
    def _mapping(cls, v):
        return dict(v) if isinstance(v, Mapping) else {}


def parse_positions(raw: Any) -> List[Position]:
    if not isinstance(raw, (list, tuple)):
        return []
    return [Position.coerce(p) for p in raw]


def parse_market_data(raw: Any) -> Dict[str, MarketSnapshot]:
    if not isinstance(raw, Mapping):
        return {}
    return {str(symbol): MarketSnapshot.coerce(snap) for symbol, snap in raw.items()}
