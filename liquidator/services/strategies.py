"""Strategy policies: named boost functions composed into a ``Ranker``.

baseline            priority unchanged
oracle_discrepancy  priority x (1 + (debt% + collateral%) / 100) when either
                    leg's oracle deviates beyond the threshold
emode               flat multiplier for positions in an E-Mode category
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable

from ..config import KNOWN_STRATEGIES, StrategyConfig
from ..errors import ConfigurationError
from ..models import EModeCategory, Position, ProfitEstimate, category_name
from .price_aggregator import PriceAggregator
from .ranker import Boost, Ranker

logger = logging.getLogger(__name__)


def baseline_boost(estimate: ProfitEstimate) -> ProfitEstimate:
    return estimate


def oracle_discrepancy_boost(aggregator: PriceAggregator) -> Boost:
    def boost(estimate: ProfitEstimate) -> ProfitEstimate:
        debt = estimate.debt_asset.asset
        collateral = estimate.collateral_asset.asset
        if not (aggregator.has_discrepancy(debt) or aggregator.has_discrepancy(collateral)):
            return estimate
        total = (aggregator.discrepancy(debt) or 0.0) + (aggregator.discrepancy(collateral) or 0.0)
        return replace(estimate, priority=estimate.priority * (1 + total / 100))

    return boost


def emode_boost(multiplier: float) -> Boost:
    def boost(estimate: ProfitEstimate) -> ProfitEstimate:
        if estimate.position.emode_category == 0:
            return estimate
        return replace(estimate, priority=estimate.priority * multiplier)

    return boost


class StrategySelector:
    """Builds rankers from strategy names."""

    def __init__(self, aggregator: PriceAggregator, config: StrategyConfig) -> None:
        self._aggregator = aggregator
        self._config = config

    def boost(self, name: str) -> Boost:
        if name == "baseline":
            return baseline_boost
        if name == "oracle_discrepancy":
            return oracle_discrepancy_boost(self._aggregator)
        if name == "emode":
            return emode_boost(self._config.emode_multiplier)
        raise ConfigurationError(
            f"Unknown strategy {name!r}; expected one of {', '.join(KNOWN_STRATEGIES)}"
        )

    def ranker(self, names: Iterable[str] | None = None) -> Ranker:
        """Ranker applying the named policies in order (configured set by default)."""
        names = list(self._config.enabled if names is None else names)
        return Ranker([self.boost(n) for n in names])


# ---------------------------------------------------------------------------
# E-Mode analysis
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EModeAsset:
    asset: str
    symbol: str
    is_collateral: bool
    discrepancy_pct: float | None
    flagged: bool


@dataclass(frozen=True)
class EModeAnalysis:
    address: str
    category: EModeCategory
    category_name: str
    health_factor: float
    assets: tuple[EModeAsset, ...]

    @property
    def has_opportunity(self) -> bool:
        return any(a.flagged for a in self.assets)


async def analyze_emode(position: Position, aggregator: PriceAggregator) -> EModeAnalysis | None:
    """Per-asset oracle deviation for a position in E-Mode.

    Returns None for positions outside E-Mode.
    """
    if position.emode_category == 0:
        return None

    exposures = position.collateral_assets + position.debt_assets
    if exposures:
        await aggregator.quotes([e.asset for e in exposures])

    assets = tuple(
        EModeAsset(
            asset=e.asset,
            symbol=e.symbol,
            is_collateral=e.is_collateral,
            discrepancy_pct=aggregator.discrepancy(e.asset),
            flagged=aggregator.has_discrepancy(e.asset),
        )
        for e in exposures
    )
    category = position.emode
    analysis = EModeAnalysis(
        address=position.address,
        category=category,
        category_name=category_name(category),
        health_factor=position.health_factor_ratio,
        assets=assets,
    )
    if analysis.has_opportunity:
        logger.info(
            "E-Mode %s position %s has oracle deviation on %d asset(s)",
            analysis.category_name, position.address,
            sum(1 for a in assets if a.flagged),
        )
    return analysis
