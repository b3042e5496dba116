"""Opportunity ranking: boosts applied in order, then one stable sort."""
from __future__ import annotations

from typing import Callable, Iterable, Sequence

from ..models import ProfitEstimate

Boost = Callable[[ProfitEstimate], ProfitEstimate]


class Ranker:
    """Orders estimates by boosted priority, highest first.

    Ties keep their input order.
    """

    def __init__(self, boosts: Sequence[Boost] = ()) -> None:
        self.boosts = list(boosts)

    def apply(self, estimate: ProfitEstimate) -> ProfitEstimate:
        for boost in self.boosts:
            estimate = boost(estimate)
        return estimate

    def rank(self, estimates: Iterable[ProfitEstimate]) -> list[ProfitEstimate]:
        boosted = [self.apply(e) for e in estimates]
        return sorted(boosted, key=lambda e: e.priority, reverse=True)
