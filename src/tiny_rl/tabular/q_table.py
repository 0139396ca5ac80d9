from __future__ import annotations

from typing import Sequence

import numpy as np

from tiny_rl.tabular.gridworld import N_ACTIONS


class QTable:
    """
    Tabular action-value function Q[row, col, action].

    Shared by the three control algorithms:
        - Q-learning: Q(s,a) <- Q(s,a) + alpha * [r + gamma * max_a' Q(s',a') - Q(s,a)]
        - SARSA:      Q(s,a) <- Q(s,a) + alpha * [r + gamma * Q(s',a') - Q(s,a)]
        - Monte Carlo control: first-visit update toward the discounted return (update_returns)

    The TD targets are computed by the trainer, the table only stores values.

    :param rows: Number of grid rows.
        :type rows: int
    :param cols: Number of grid columns.
        :type cols: int
    :param n_actions: Number of actions.
        :type n_actions: int
    """

    def __init__(self, rows: int, cols: int, n_actions: int = N_ACTIONS):
        self.rows = max(1, int(rows))
        self.cols = max(1, int(cols))
        self.n_actions = max(1, int(n_actions))
        self.Q = np.zeros(shape=(self.rows, self.cols, self.n_actions), dtype=np.float64)

    def _index(self, row: int, col: int, action: int) -> tuple[int, int, int]:
        return (
            min(max(int(row), 0), self.rows - 1),
            min(max(int(col), 0), self.cols - 1),
            min(max(int(action), 0), self.n_actions - 1),
        )

    def get(self, row: int, col: int, action: int) -> float:
        return float(self.Q[self._index(row, col, action)])

    def set(self, row: int, col: int, action: int, value: float) -> None:
        self.Q[self._index(row, col, action)] = value

    def max_value(self, row: int, col: int) -> float:
        r, c, _ = self._index(row, col, 0)
        return float(np.max(self.Q[r, c]))

    def state_values(self) -> np.ndarray:
        """
        :return: max_a Q(row, col, a) for every cell, shape (rows, cols).
            :rtype: np.ndarray
        """
        return self.Q.max(axis=2)

    def update_returns(
        self,
        states: Sequence[tuple[int, int]],
        actions: Sequence[int],
        rewards: Sequence[float],
        alpha: float,
        gamma: float,
    ) -> None:
        """
        First-visit Monte Carlo control update from one episode.

        Scanning the episode from the end:
            G <- r_t + gamma * G
            Q(s_t,a_t) <- Q(s_t,a_t) + alpha * (G - Q(s_t,a_t))
        only the first time (s_t, a_t) is met in the backward scan, i.e. the
        latest occurrence in time. Mismatched buffers are ignored.

        :param states: (row, col) at each step.
            :type states: Sequence[tuple[int, int]]
        :param actions: Action taken at each step.
            :type actions: Sequence[int]
        :param rewards: Reward received at each step.
            :type rewards: Sequence[float]
        :param alpha: Step size.
            :type alpha: float
        :param gamma: Discount factor.
            :type gamma: float
        """
        if not rewards or len(states) != len(actions) or len(actions) != len(rewards):
            return

        seen: set[tuple[int, int, int]] = set()
        G = 0.0
        for t in range(len(rewards) - 1, -1, -1):
            G = rewards[t] + gamma * G
            row, col = states[t]
            key = self._index(row, col, actions[t])
            if key in seen:
                continue
            seen.add(key)
            current = self.Q[key]
            self.Q[key] = current + alpha * (G - current)
