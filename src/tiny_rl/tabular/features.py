"""
Feature mappers: discretize a cell's goal distance into a few bands.

The state-value learner stores one value per (row, col, band) instead of one
per distance level, so cells that share a distance band share what they learn
about "how far the next goal is".
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Iterable, Protocol

if TYPE_CHECKING:
    from tiny_rl.tabular.gridworld import GridworldEnv


class FeatureMapper(Protocol):
    """Anything with `num_features` and `index` can drive a ValueTable."""

    def num_features(self, rows: int, cols: int) -> int:
        ...

    def index(self, env: GridworldEnv | None, row: int, col: int) -> int:
        ...


class DistanceBands3Mapper:
    """
    Three fixed bands over the distance d to the nearest goal:
    d <= 1 -> 0, d <= 3 -> 1, otherwise 2.
    """

    def num_features(self, rows: int, cols: int) -> int:
        return 3

    def index(self, env: GridworldEnv | None, row: int, col: int) -> int:
        if env is None:
            return 0
        distance = env.potential(row, col)
        if distance <= 1:
            return 0
        if distance <= 3:
            return 1
        return 2


class DistanceBandsMapper:
    """
    Bands defined by an ascending list of thresholds.

    A cell falls in the first band whose threshold is >= its distance, or in
    the last band (index len(thresholds)) when no threshold matches.

    :param thresholds: Band upper limits. Sorted on construction.
        :type thresholds: Iterable[float]
    """

    def __init__(self, thresholds: Iterable[float]):
        self.thresholds = tuple(sorted(float(t) for t in thresholds))

    def num_features(self, rows: int, cols: int) -> int:
        return len(self.thresholds) + 1

    def index(self, env: GridworldEnv | None, row: int, col: int) -> int:
        if env is None:
            return 0
        distance = env.potential(row, col)
        for i, limit in enumerate(self.thresholds):
            if distance <= limit:
                return i
        return len(self.thresholds)


def make_feature_mapper(thresholds: Iterable[float] | None = None) -> FeatureMapper:
    """
    Build the mapper for a (possibly empty) threshold list.

    :param thresholds: Custom thresholds, non-finite entries are dropped.
        :type thresholds: Iterable[float] | None

    :return: DistanceBandsMapper for a non-empty list, DistanceBands3Mapper otherwise.
        :rtype: FeatureMapper
    """
    if thresholds is None:
        return DistanceBands3Mapper()
    clean = [float(t) for t in thresholds if math.isfinite(float(t))]
    if not clean:
        return DistanceBands3Mapper()
    return DistanceBandsMapper(clean)
