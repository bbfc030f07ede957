"""Risk policies for position sizing and trade throttling."""

from perp_backtest.risk.manager import RiskManager, build_policy
from perp_backtest.risk.models import (
    RecommendationAction,
    RiskConfig,
    RiskMode,
    RiskStats,
    SizingResult,
    TradeCandidate,
    TradeRecommendation,
)
from perp_backtest.risk.policy import FixedFractionPolicy, RiskPolicy

__all__ = [
    "FixedFractionPolicy",
    "RecommendationAction",
    "RiskConfig",
    "RiskManager",
    "RiskMode",
    "RiskPolicy",
    "RiskStats",
    "SizingResult",
    "TradeCandidate",
    "TradeRecommendation",
    "build_policy",
]
