from __future__ import annotations

from typing import Sequence

import numpy as np

from tiny_rl.tabular.features import DistanceBands3Mapper, FeatureMapper
from tiny_rl.tabular.gridworld import N_ACTIONS, GridworldEnv
from tiny_rl.tabular.q_table import QTable
from tiny_rl.tabular.value_table import ValueTable


def pick_least_visited(candidates: Sequence[int], visits: Sequence[int], rng: np.random.Generator) -> int:
    """
    Break a tie between equally scored actions.

    Prefer the candidates with the fewest recorded visits, then pick uniformly
    among whatever is still tied.

    :param candidates: Tied action indices.
        :type candidates: Sequence[int]
    :param visits: Visit count of each candidate (same order).
        :type visits: Sequence[int]
    :param rng: Random generator.
        :type rng: np.random.Generator

    :return: Chosen action (0 when there are no candidates).
        :rtype: int
    """
    if len(candidates) == 0:
        return 0
    counts = np.asarray(visits, dtype=np.int64)
    least = counts.min()
    options = [a for a, n in zip(candidates, counts) if n == least]
    return int(rng.choice(options))


class EpsilonGreedyPolicy:
    """
    ε-greedy action selection over either store.

    - Q mode (a QTable is given): greedy over the four actions of the current
      cell, visits are counted per (row, col, action) of the current cell.
    - Value mode (only a ValueTable): greedy over the value of the four
      successor cells at their distance band, visits are counted per
      successor cell.

    Exact ties go to the least visited candidate, then to a uniform choice.
    Visit counts live in dense arrays indexed by (row, col[, action]).

    :param rng: Random generator (exploration and tie-breaking).
        :type rng: np.random.Generator
    :param rows: Number of grid rows.
        :type rows: int
    :param cols: Number of grid columns.
        :type cols: int
    :param epsilon: Exploration probability, clamped to [0, 1].
        :type epsilon: float
    :param qvalues: Action-value store (Q mode).
        :type qvalues: QTable | None
    :param values: State-value store (value mode, used when qvalues is None).
        :type values: ValueTable | None
    :param mapper: Band mapper for value mode (defaults to the store's mapper).
        :type mapper: FeatureMapper | None
    """

    def __init__(
        self,
        rng: np.random.Generator,
        rows: int,
        cols: int,
        epsilon: float = 0.1,
        qvalues: QTable | None = None,
        values: ValueTable | None = None,
        mapper: FeatureMapper | None = None,
    ):
        self.rng = rng
        self.qvalues = qvalues
        self.values = values
        if mapper is None:
            mapper = values.mapper if values is not None else DistanceBands3Mapper()
        self.mapper = mapper

        self.epsilon = 0.0
        self.set_epsilon(epsilon)

        self.q_visits = np.zeros(shape=(rows, cols, N_ACTIONS), dtype=np.int64)
        self.state_visits = np.zeros(shape=(rows, cols), dtype=np.int64)

    def set_epsilon(self, value: float) -> None:
        self.epsilon = min(max(float(value), 0.0), 1.0)

    def reset_visits(self) -> None:
        self.q_visits.fill(0)
        self.state_visits.fill(0)

    def act(self, env: GridworldEnv) -> int:
        """
        Choose an action for the agent's current cell and record the visit.

        :param env: Environment (read-only here).
            :type env: GridworldEnv

        :return: Action index.
            :rtype: int
        """
        if self.rng.random() < self.epsilon:
            chosen = int(self.rng.integers(low=0, high=N_ACTIONS))
        elif self.qvalues is not None:
            chosen = self.greedy_q_action(env)
        else:
            chosen = self.greedy_value_action(env)
        self.record_visit(env, chosen)
        return chosen

    def greedy_q_action(self, env: GridworldEnv) -> int:
        row, col = env.curr_row, env.curr_col
        scores = np.array([self.qvalues.get(row, col, a) for a in range(N_ACTIONS)], dtype=np.float64)
        best = np.flatnonzero(scores == np.max(scores))
        visits = [self.q_visits[row, col, a] for a in best]
        return pick_least_visited(best.tolist(), visits, self.rng)

    def _successor_scores(self, env: GridworldEnv) -> tuple[np.ndarray, list[tuple[int, int]]]:
        scores = np.zeros(N_ACTIONS, dtype=np.float64)
        successors = []
        for action in range(N_ACTIONS):
            row, col = env.next_position(action)
            band = self.mapper.index(env, row, col)
            scores[action] = self.values.get(row, col, band) if self.values is not None else 0.0
            successors.append((row, col))
        return scores, successors

    def greedy_value_action(self, env: GridworldEnv) -> int:
        scores, successors = self._successor_scores(env)
        best = np.flatnonzero(scores == np.max(scores))
        visits = [self.state_visits[successors[a]] for a in best]
        return pick_least_visited(best.tolist(), visits, self.rng)

    def softmax_action(self, env: GridworldEnv, temperature: float) -> int:
        """
        Sample a successor in proportion to exp(V / temperature).

        Falls back to greedy selection when the temperature is not positive,
        when there is no value store, or when the weights sum to zero.

        :param env: Environment.
            :type env: GridworldEnv
        :param temperature: Softmax temperature.
            :type temperature: float

        :return: Action index.
            :rtype: int
        """
        if self.values is None or temperature <= 0:
            chosen = self.greedy_value_action(env)
            self.record_visit(env, chosen)
            return chosen

        scores, _ = self._successor_scores(env)
        scores = scores / temperature
        weights = np.exp(scores - np.max(scores))  # shift by the max so exp never overflows
        total = float(np.sum(weights))
        if total == 0.0 or not np.isfinite(total):
            chosen = self.greedy_value_action(env)
        else:
            chosen = int(self.rng.choice(N_ACTIONS, p=weights / total))
        self.record_visit(env, chosen)
        return chosen

    def record_visit(self, env: GridworldEnv, action: int) -> None:
        if self.qvalues is not None:
            self.q_visits[env.curr_row, env.curr_col, action] += 1
            return
        row, col = env.next_position(action)
        self.state_visits[row, col] += 1
