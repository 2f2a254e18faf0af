"""
Strategy Group Catalog
======================
The six ensemble groups, their base allocations and the alias table used to
place a strategy name into exactly one group.

An alias is a set of tokens; a name matches an alias when every token occurs
in the lowercased, whitespace-free name. When several aliases match, the most
specific one wins (longest token, then longest total), and ties go to the
group listed first.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class GroupId(str, Enum):
    VOLATILITY_EXPANSION    = "volatilityExpansion"
    RANGE_BOUND_INCOME      = "rangeBoundIncome"
    DIRECTIONAL_MOMENTUM    = "directionalMomentum"
    HIGH_PROBABILITY_INCOME = "highProbabilityIncome"
    VOLATILITY_CONTRACTION  = "volatilityContraction"
    ADAPTIVE_MOMENTUM       = "adaptiveMomentum"


@dataclass
class GroupPerformance:
    wins: int = 0
    losses: int = 0
    total_return: float = 0.0

    @property
    def total_trades(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float:
        return self.wins / self.total_trades if self.total_trades else 0.0

    @property
    def avg_return(self) -> float:
        return self.total_return / self.total_trades if self.total_trades else 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"wins": self.wins, "losses": self.losses, "totalReturn": self.total_return}


@dataclass
class StrategyGroup:
    group_id: GroupId
    name: str
    aliases: Tuple[Tuple[str, ...], ...]
    base_weight: float
    market_conditions: Tuple[str, ...]
    risk_profile: str
    current_weight: float = 0.0
    performance: GroupPerformance = field(default_factory=GroupPerformance)

    def __post_init__(self):
        if not self.current_weight:
            self.current_weight = self.base_weight


def build_strategy_groups() -> Dict[GroupId, StrategyGroup]:
    """Fresh catalog with base weights and zeroed performance, in fixed order."""
    groups = [
        StrategyGroup(
            group_id          = GroupId.VOLATILITY_EXPANSION,
            name              = "Volatility Expansion",
            aliases           = (("straddle",), ("strangle",), ("ironbutterfly",)),
            base_weight       = 0.20,
            market_conditions = ("low_iv", "squeeze_setup", "earnings_approach"),
            risk_profile      = "moderate-aggressive",
        ),
        StrategyGroup(
            group_id          = GroupId.RANGE_BOUND_INCOME,
            name              = "Range-Bound Income",
            aliases           = (("ironcondor",), ("condor",), ("shortstrangle",),
                                 ("coveredcall",), ("covered",)),
            base_weight       = 0.25,
            market_conditions = ("high_iv", "low_volatility", "sideways_market"),
            risk_profile      = "moderate",
        ),
        StrategyGroup(
            group_id          = GroupId.DIRECTIONAL_MOMENTUM,
            name              = "Directional Momentum",
            aliases           = (("call", "spread"), ("put", "spread"), ("calendar",)),
            base_weight       = 0.20,
            market_conditions = ("trending_market", "momentum_breakout", "squeeze_release"),
            risk_profile      = "moderate",
        ),
        StrategyGroup(
            group_id          = GroupId.HIGH_PROBABILITY_INCOME,
            name              = "High-Probability Income",
            aliases           = (("cashsecuredput",), ("secured",), ("coveredcall",), ("collar",)),
            base_weight       = 0.15,
            market_conditions = ("stable_market", "dividend_season", "low_beta"),
            risk_profile      = "conservative",
        ),
        StrategyGroup(
            group_id          = GroupId.VOLATILITY_CONTRACTION,
            name              = "Volatility Contraction",
            aliases           = (("shortstraddle",), ("ironcondor",), ("butterfly",)),
            base_weight       = 0.10,
            market_conditions = ("high_iv", "iv_crush_expected", "post_earnings"),
            risk_profile      = "aggressive",
        ),
        StrategyGroup(
            group_id          = GroupId.ADAPTIVE_MOMENTUM,
            name              = "Adaptive Momentum",
            aliases           = (("ratio",), ("backspread",), ("diagonal",)),
            base_weight       = 0.10,
            market_conditions = ("volatile_market", "uncertain_direction", "gamma_squeeze"),
            risk_profile      = "aggressive",
        ),
    ]
    return {g.group_id: g for g in groups}


def _normalize(name: str) -> str:
    return "".join((name or "").lower().split())


def _specificity(tokens: Tuple[str, ...]) -> Tuple[int, int]:
    return max(len(t) for t in tokens), sum(len(t) for t in tokens)


def parse_group_id(value: Optional[str]) -> Optional[GroupId]:
    if not value:
        return None
    try:
        return GroupId(value)
    except ValueError:
        return None


def resolve_group(
    name: Optional[str],
    groups: Dict[GroupId, StrategyGroup],
    explicit: Optional[str] = None,
) -> Optional[StrategyGroup]:
    """
    Owning group for a strategy name, or None when no alias matches.
    A valid explicit group id short-circuits name matching.
    """
    explicit_id = parse_group_id(explicit)
    if explicit_id is not None and explicit_id in groups:
        return groups[explicit_id]

    normalized = _normalize(name)
    if not normalized:
        return None

    best: Optional[StrategyGroup] = None
    best_rank = (0, 0)
    for group in groups.values():
        for tokens in group.aliases:
            if all(t in normalized for t in tokens):
                rank = _specificity(tokens)
                if rank > best_rank:
                    best, best_rank = group, rank
    return best


def group_members(names: List[Optional[str]], groups: Dict[GroupId, StrategyGroup]) -> Dict[GroupId, int]:
    """Count of names resolving to each group."""
    counts = {gid: 0 for gid in groups}
    for name in names:
        group = resolve_group(name, groups)
        if group is not None:
            counts[group.group_id] += 1
    return counts
