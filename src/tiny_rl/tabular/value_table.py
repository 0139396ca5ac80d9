from __future__ import annotations

from typing import Sequence

import numpy as np

from tiny_rl.tabular.features import DistanceBands3Mapper, FeatureMapper


class ValueTable:
    """
    Tabular state-value function V[row, col, band].

    The band dimension is folded into the rows of a 2-D array of shape
    (rows * n_features, cols): cell (row, band) lives at flat row
    row * n_features + band. Row, band and column indices are clamped, so a
    lookup never fails.

    Used by the Monte Carlo learner in state-value mode: V is updated from
    complete-episode returns, and the policy scores the four successor cells.

    :param rows: Number of grid rows.
        :type rows: int
    :param cols: Number of grid columns.
        :type cols: int
    :param alpha: Step size for the updates.
        :type alpha: float
    :param mapper: Feature mapper deciding the band count.
        :type mapper: FeatureMapper | None
    """

    def __init__(self, rows: int, cols: int, alpha: float = 0.1, mapper: FeatureMapper | None = None):
        self.rows = max(1, int(rows))
        self.cols = max(1, int(cols))
        self.alpha = float(alpha)
        self.mapper = mapper if mapper is not None else DistanceBands3Mapper()

        features = int(self.mapper.num_features(self.rows, self.cols))
        self.features = max(1, features)
        self.data = np.zeros(shape=(self.rows * self.features, self.cols), dtype=np.float64)

    @property
    def band_rows(self) -> int:
        return int(self.data.shape[0])

    def flat_index(self, row: int, band: int) -> int:
        row = min(max(int(row), 0), self.rows - 1)
        band = min(max(int(band), 0), self.features - 1)
        return row * self.features + band

    def _col(self, col: int) -> int:
        return min(max(int(col), 0), self.cols - 1)

    def get(self, row: int, col: int, band: int) -> float:
        return float(self.data[self.flat_index(row, band), self._col(col)])

    def add(self, row: int, col: int, band: int, delta: float) -> None:
        self.data[self.flat_index(row, band), self._col(col)] += delta

    def update_returns(
        self,
        trace: Sequence[tuple[int, int, int]],
        rewards: Sequence[float],
        gamma: float,
    ) -> None:
        """
        First-visit Monte Carlo update from one episode.

        Scanning backwards, G <- r_t + gamma * G, and the cell visited at t is
        moved toward G the first time it is seen in the backward scan.

        :param trace: (row, col, band) of the cell reached at each step.
            :type trace: Sequence[tuple[int, int, int]]
        :param rewards: Reward of each step (same length as trace).
            :type rewards: Sequence[float]
        :param gamma: Discount factor.
            :type gamma: float
        """
        if not trace or len(trace) != len(rewards):
            return

        seen: set[tuple[int, int]] = set()
        G = 0.0
        for t in range(len(rewards) - 1, -1, -1):
            G = rewards[t] + gamma * G
            row, col, band = trace[t]
            key = (self.flat_index(row, band), self._col(col))
            if key in seen:
                continue
            seen.add(key)
            current = self.data[key]
            self.data[key] = current + self.alpha * (G - current)

    def clone_data(self) -> np.ndarray:
        """
        Project V onto the grid by taking, per cell, the max over bands.

        :return: Array of shape (rows, cols).
            :rtype: np.ndarray
        """
        stacked = self.data.reshape(self.rows, self.features, self.cols)
        return stacked.max(axis=1)
