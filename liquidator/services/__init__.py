"""Service modules"""
from .monitor import Monitor
from .orchestrator import ExecutionOrchestrator
from .position_tracker import PositionTracker
from .price_aggregator import PriceAggregator
from .profit_calculator import ProfitCalculator
from .ranker import Ranker
from .strategies import StrategySelector, analyze_emode

__all__ = [
    "Monitor",
    "ExecutionOrchestrator",
    "PositionTracker",
    "PriceAggregator",
    "ProfitCalculator",
    "Ranker",
    "StrategySelector",
    "analyze_emode",
]
