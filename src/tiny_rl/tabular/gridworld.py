from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

import numpy as np

UP = 0
RIGHT = 1
DOWN = 2
LEFT = 3
N_ACTIONS = 4

ACTION_NAMES = {
    UP: "up",
    RIGHT: "right",
    DOWN: "down",
    LEFT: "left",
}

TIMEOUT_PENALTY_MULTIPLIER = 5.0


@dataclass(frozen=True)
class Position:
    """
    A grid cell.

    :param row: Row index.
        :type row: int
    :param col: Column index.
        :type col: int
    """
    row: int
    col: int


@dataclass(frozen=True)
class Goal:
    """
    A collectible target.

    :param row: Row index.
        :type row: int
    :param col: Column index.
        :type col: int
    :param reward: Reward paid when the agent steps on the goal (non-zero).
        :type reward: float
    """
    row: int
    col: int
    reward: float


class TileKind(Enum):
    EMPTY = "empty"
    WALL = "wall"
    SLIP = "slip"


@dataclass(frozen=True)
class Tile:
    kind: TileKind = TileKind.EMPTY
    slip_prob: float = 0.0


EMPTY_TILE = Tile()


def default_max_steps(rows: int, cols: int, override: int = 0) -> int:
    """
    Per-episode step budget.

    The default budget is 2.5 steps per cell, never less than rows + cols.
    A positive override replaces it. The result is floored at 10.

    :param rows: Number of rows.
        :type rows: int
    :param cols: Number of columns.
        :type cols: int
    :param override: Explicit budget (0 keeps the default).
        :type override: int

    :return: Step budget.
        :rtype: int
    """
    budget = max(rows * cols * 5 // 2, rows + cols)
    if override > 0:
        budget = int(override)
    return max(budget, 10)


class GridworldEnv:
    """
    Bounded 2-D gridworld with walls, slip tiles and multiple collectible goals.

    The agent starts in the bottom-left corner (rows-1, 0).

    Actions:
    - 0: up
    - 1: right
    - 2: down
    - 3: left

    Dynamics of one step:
    - a slip tile under the *current* cell replaces the action with a uniformly
      random one with probability `slip_prob` (always when slip_prob >= 1)
    - the destination is clamped to the grid, and walls keep the agent in place
    - every step costs `step_penalty`, stepping on a live goal pays its reward
      and removes it from the live set for the rest of the episode
    - the episode ends when every goal is collected (success) or when the step
      budget runs out (timeout, with an extra `step_penalty * 5` penalty)

    :param rows: Number of rows (values <= 0 become 1).
        :type rows: int
    :param cols: Number of columns (values <= 0 become 1).
        :type cols: int
    :param goals: Goal template restored on every reset.
        :type goals: Iterable[Goal]
    :param step_penalty: Cost of a single step (non-negative).
        :type step_penalty: float
    :param max_steps: Step budget override (0 uses default_max_steps).
        :type max_steps: int
    :param rng: Random generator used by slip tiles. Without one, slip tiles behave like empty tiles.
        :type rng: np.random.Generator | None
    """

    def __init__(
        self,
        rows: int,
        cols: int,
        goals: Iterable[Goal] = (),
        step_penalty: float = 0.0,
        max_steps: int = 0,
        rng: np.random.Generator | None = None,
    ):
        self.rows = max(1, int(rows))
        self.cols = max(1, int(cols))
        self.n_actions = N_ACTIONS
        self.max_steps = default_max_steps(self.rows, self.cols, int(max_steps))

        self.start_row = self.rows - 1
        self.start_col = 0
        self.curr_row = self.start_row
        self.curr_col = self.start_col
        self.steps_taken = 0

        self._initial_goals: tuple[Goal, ...] = tuple(goals)
        self._goals: list[Goal] = list(self._initial_goals)
        self.step_penalty = max(0.0, float(step_penalty))
        self.tiles: dict[Position, Tile] = {}
        self.rng = rng

    @property
    def position(self) -> Position:
        return Position(self.curr_row, self.curr_col)

    @property
    def goals(self) -> tuple[Goal, ...]:
        """Live goals (shrinks as goals are collected)."""
        return tuple(self._goals)

    @property
    def initial_goals(self) -> tuple[Goal, ...]:
        """Goal template restored on reset()."""
        return self._initial_goals

    @property
    def all_goals_collected(self) -> bool:
        return len(self._goals) == 0

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.rows and 0 <= col < self.cols

    def reset(self) -> Position:
        """
        Restore start position, step counter and live goals.

        :return: Start position.
            :rtype: Position
        """
        self.curr_row = self.start_row
        self.curr_col = self.start_col
        self.steps_taken = 0
        self._goals = list(self._initial_goals)
        return self.position

    def set_goals(self, goals: Iterable[Goal]) -> None:
        self._initial_goals = tuple(goals)
        self._goals = list(self._initial_goals)

    def set_step_penalty(self, penalty: float) -> None:
        self.step_penalty = max(0.0, float(penalty))

    def set_position(self, row: int, col: int) -> None:
        self.curr_row = min(max(int(row), 0), self.rows - 1)
        self.curr_col = min(max(int(col), 0), self.cols - 1)

    def set_wall(self, row: int, col: int) -> None:
        if not self.in_bounds(row, col):
            return
        self.tiles[Position(row, col)] = Tile(kind=TileKind.WALL)

    def set_slip_tile(self, row: int, col: int, probability: float) -> None:
        if not self.in_bounds(row, col):
            return
        probability = min(max(float(probability), 0.0), 1.0)
        self.tiles[Position(row, col)] = Tile(kind=TileKind.SLIP, slip_prob=probability)

    def tile_at(self, row: int, col: int) -> Tile:
        return self.tiles.get(Position(row, col), EMPTY_TILE)

    def wall_positions(self) -> list[Position]:
        return [pos for pos, tile in self.tiles.items() if tile.kind is TileKind.WALL]

    def slip_tiles(self) -> list[tuple[Position, float]]:
        return [(pos, tile.slip_prob) for pos, tile in self.tiles.items() if tile.kind is TileKind.SLIP]

    def next_position(self, action: int) -> tuple[int, int]:
        """
        Destination of `action` from the current cell, clamped to the grid.

        Walls and slip tiles are not taken into account here, this is the
        "intended" successor used by the value-based policy.

        :param action: Action index in {0,1,2,3}.
            :type action: int

        :return: (row, col) of the destination.
            :rtype: tuple[int, int]
        """
        row, col = self.curr_row, self.curr_col
        if action == UP:
            row -= 1
        elif action == RIGHT:
            col += 1
        elif action == DOWN:
            row += 1
        elif action == LEFT:
            col -= 1
        row = min(max(row, 0), self.rows - 1)
        col = min(max(col, 0), self.cols - 1)
        return row, col

    def resolve_action(self, action: int) -> int:
        tile = self.tile_at(self.curr_row, self.curr_col)
        if tile.kind is not TileKind.SLIP or self.rng is None:
            return action
        if tile.slip_prob <= 0.0:
            return action
        if tile.slip_prob >= 1.0:
            return int(self.rng.integers(low=0, high=N_ACTIONS))
        if self.rng.random() < tile.slip_prob:
            return int(self.rng.integers(low=0, high=N_ACTIONS))
        return action

    def step(self, action: int) -> tuple[float, bool]:
        """
        Apply one action.

        A step requested after the budget is exhausted is a no-op that
        returns (0.0, True).

        :param action: Action index in {0,1,2,3}.
            :type action: int

        :return: (reward, done)
            :rtype: tuple[float, bool]
        """
        if self.steps_taken >= self.max_steps:
            return 0.0, True

        actual = self.resolve_action(int(action))
        row, col = self.next_position(actual)
        if self.tile_at(row, col).kind is TileKind.WALL:
            row, col = self.curr_row, self.curr_col

        self.curr_row = row
        self.curr_col = col
        self.steps_taken += 1

        reward = -self.step_penalty
        collected = False
        for i, goal in enumerate(self._goals):
            if goal.row == row and goal.col == col:
                reward += goal.reward
                del self._goals[i]
                collected = True
                break

        if collected and not self._goals:
            return reward, True

        if self.steps_taken >= self.max_steps:
            # timeout only, a successful last step is never penalised
            reward -= self.step_penalty * TIMEOUT_PENALTY_MULTIPLIER
            return reward, True

        return reward, False

    def potential(self, row: int, col: int) -> float:
        """
        Manhattan distance from (row, col) to the nearest live goal.

        :return: Distance, or 0.0 when no goals remain.
            :rtype: float
        """
        if not self._goals:
            return 0.0
        best = self.rows + self.cols
        for goal in self._goals:
            best = min(best, abs(goal.row - row) + abs(goal.col - col))
        return float(best)
