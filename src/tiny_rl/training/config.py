"""
Training configuration.

`TrainerConfig` holds every hyperparameter of a run. Out-of-range values are
never an error: `sanitized()` clamps or replaces them with defaults, so the
training loop only ever sees a valid configuration.
"""

from __future__ import annotations

import math
import warnings
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Iterable, Mapping

import numpy as np

from tiny_rl.tabular.gridworld import Goal, Position

ALGORITHM_MONTE_CARLO = "montecarlo"
ALGORITHM_Q_LEARNING = "q-learning"
ALGORITHM_SARSA = "sarsa"
ALGORITHMS = (ALGORITHM_MONTE_CARLO, ALGORITHM_Q_LEARNING, ALGORITHM_SARSA)

_ALGORITHM_ALIASES = {
    "mc": ALGORITHM_MONTE_CARLO,
    "monte-carlo": ALGORITHM_MONTE_CARLO,
    "monte_carlo": ALGORITHM_MONTE_CARLO,
    "qlearning": ALGORITHM_Q_LEARNING,
    "q_learning": ALGORITHM_Q_LEARNING,
}

EXPLORATION_EPSILON_GREEDY = "epsilon-greedy"
EXPLORATION_SOFTMAX = "softmax"

# canonical 4x4 board: 3 + 3 steps from the start corner to the far corner
REFERENCE_PATH_LENGTH = 6.0


@dataclass(frozen=True)
class SlipSpec:
    row: int
    col: int
    probability: float


@dataclass(frozen=True)
class TrainerConfig:
    """
    Hyperparameters of a training run.

    :param episodes: Number of episodes (<= 0 gives an empty snapshot stream).
        :type episodes: int
    :param seed: RNG seed (0 means 1).
        :type seed: int
    :param epsilon: Initial exploration probability.
        :type epsilon: float
    :param epsilon_min: Floor for the decayed epsilon.
        :type epsilon_min: float
    :param epsilon_decay: Per-episode multiplier (0 disables decay).
        :type epsilon_decay: float
    :param alpha: Learning rate.
        :type alpha: float
    :param gamma: Discount factor.
        :type gamma: float
    :param lam: Eligibility-trace decay. Validated but not used by any algorithm.
        :type lam: float
    :param rows: Grid rows.
        :type rows: int
    :param cols: Grid columns.
        :type cols: int
    :param step_delay_ms: Pause after each step, in milliseconds.
        :type step_delay_ms: int
    :param max_steps: Step budget per episode (0 uses the grid-size default).
        :type max_steps: int
    :param algorithm: "montecarlo", "q-learning" or "sarsa".
        :type algorithm: str
    :param goals: Manual goal layout.
        :type goals: tuple[Goal, ...]
    :param goal_count: Number of auto-placed goals (0 keeps the manual layout).
        :type goal_count: int
    :param goal_interval: Reshuffle auto-placed goals every this many episodes (0 never).
        :type goal_interval: int
    :param step_penalty: Per-step penalty before board-size scaling.
        :type step_penalty: float
    :param warmup_episodes: Monte Carlo episodes that use warmup_step_penalty.
        :type warmup_episodes: int
    :param warmup_step_penalty: Step penalty during warmup (0 disables the override).
        :type warmup_step_penalty: float
    :param random_start: Start every episode in a uniformly random cell.
        :type random_start: bool
    :param dump_trajectory: Print the first Monte Carlo episode trajectory.
        :type dump_trajectory: bool
    :param trace: Print a visit heatmap after every episode.
        :type trace: bool
    :param walls: Wall cells.
        :type walls: tuple[Position, ...]
    :param slips: Slip tiles.
        :type slips: tuple[SlipSpec, ...]
    :param state_values: Monte Carlo over the state-value store instead of the action-value store.
        :type state_values: bool
    :param exploration: "epsilon-greedy" or "softmax" (softmax only applies with state_values).
        :type exploration: str
    :param softmax_temperature: Initial softmax temperature.
        :type softmax_temperature: float
    :param softmax_min_temperature: Temperature reached at the end of the step budget.
        :type softmax_min_temperature: float
    :param feature_thresholds: Custom distance bands for the state-value store (empty = 3 fixed bands).
        :type feature_thresholds: tuple[float, ...]
    """

    episodes: int = 1
    seed: int = 0
    epsilon: float = 0.5
    epsilon_min: float = 0.05
    epsilon_decay: float = 0.998
    alpha: float = 0.2
    gamma: float = 0.9
    lam: float = 0.9
    rows: int = 4
    cols: int = 4
    step_delay_ms: int = 0
    max_steps: int = 0
    algorithm: str = ALGORITHM_MONTE_CARLO
    goals: tuple[Goal, ...] = ()
    goal_count: int = 0
    goal_interval: int = 20
    step_penalty: float = 0.02
    warmup_episodes: int = 0
    warmup_step_penalty: float = 0.0
    random_start: bool = False
    dump_trajectory: bool = False
    trace: bool = False
    walls: tuple[Position, ...] = ()
    slips: tuple[SlipSpec, ...] = ()
    state_values: bool = False
    exploration: str = EXPLORATION_EPSILON_GREEDY
    softmax_temperature: float = 1.0
    softmax_min_temperature: float = 0.1
    feature_thresholds: tuple[float, ...] = field(default=())

    def sanitized(self) -> TrainerConfig:
        """
        Return a copy with every field clamped or defaulted.

        Goal placement and step-penalty scaling are not applied here, they
        depend on the run and are done by the Trainer.

        :return: Sanitized configuration.
            :rtype: TrainerConfig
        """
        rows = int(self.rows) if int(self.rows) > 0 else 4
        cols = int(self.cols) if int(self.cols) > 0 else 4

        algorithm = normalize_algorithm(self.algorithm)

        # NaN fails every range check below, so it is replaced first
        epsilon = _finite_or(self.epsilon, 0.1)
        if epsilon <= 0 or epsilon > 1:
            epsilon = 0.1
        epsilon_min = _finite_or(self.epsilon_min, 0.0)
        if epsilon_min < 0 or epsilon_min > epsilon:
            epsilon_min = 0.0
        epsilon_decay = min(max(_finite_or(self.epsilon_decay, 0.998), 0.0), 1.0)

        alpha = _finite_or(self.alpha, 0.2)
        if alpha <= 0 or alpha > 1:
            alpha = 0.2
        gamma = _finite_or(self.gamma, 0.9)
        if gamma <= 0 or gamma > 1:
            gamma = 0.9
        lam = _finite_or(self.lam, 0.9)
        if lam < 0 or lam > 1:
            lam = 0.9

        softmax_temperature = _finite_or(self.softmax_temperature, 1.0)
        if softmax_temperature <= 0:
            softmax_temperature = 1.0
        softmax_min_temperature = _finite_or(self.softmax_min_temperature, 0.0)
        softmax_min_temperature = min(max(softmax_min_temperature, 0.0), softmax_temperature)

        exploration = str(self.exploration).strip().lower()
        if exploration not in (EXPLORATION_EPSILON_GREEDY, EXPLORATION_SOFTMAX):
            exploration = EXPLORATION_EPSILON_GREEDY

        thresholds = tuple(sorted(float(t) for t in self.feature_thresholds if math.isfinite(float(t))))

        walls = tuple(
            Position(int(w.row), int(w.col)) for w in self.walls
            if 0 <= int(w.row) < rows and 0 <= int(w.col) < cols
        )
        slips = tuple(
            SlipSpec(int(s.row), int(s.col), min(max(_finite_or(s.probability, 0.0), 0.0), 1.0))
            for s in self.slips
            if 0 <= int(s.row) < rows and 0 <= int(s.col) < cols
        )

        return replace(
            self,
            episodes=int(self.episodes),
            seed=int(self.seed),
            epsilon=epsilon,
            epsilon_min=epsilon_min,
            epsilon_decay=epsilon_decay,
            alpha=alpha,
            gamma=gamma,
            lam=lam,
            rows=rows,
            cols=cols,
            step_delay_ms=max(0, int(self.step_delay_ms)),
            max_steps=max(0, int(self.max_steps)),
            algorithm=algorithm,
            goals=tuple(sanitize_goals(self.goals, rows, cols)),
            goal_count=max(0, int(self.goal_count)),
            goal_interval=max(0, int(self.goal_interval)),
            step_penalty=max(0.0, _finite_or(self.step_penalty, 0.0)),
            warmup_episodes=max(0, int(self.warmup_episodes)),
            warmup_step_penalty=max(0.0, _finite_or(self.warmup_step_penalty, 0.0)),
            random_start=bool(self.random_start),
            dump_trajectory=bool(self.dump_trajectory),
            trace=bool(self.trace),
            walls=walls,
            slips=slips,
            state_values=bool(self.state_values) and algorithm == ALGORITHM_MONTE_CARLO,
            exploration=exploration,
            softmax_temperature=softmax_temperature,
            softmax_min_temperature=softmax_min_temperature,
            feature_thresholds=thresholds,
        )

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-able mapping (goals, walls and slips become lists of dicts)."""
        data = asdict(self)
        for key in ("goals", "walls", "slips", "feature_thresholds"):
            data[key] = list(data[key])
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TrainerConfig:
        """
        Build a config from a plain mapping, e.g. decoded JSON.

        Unknown keys are ignored. Goals, walls and slips may be given as
        mappings or as (row, col[, value]) sequences.

        :param data: Source mapping.
            :type data: Mapping[str, Any]

        :return: Unsanitized configuration.
            :rtype: TrainerConfig
        """
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if "goals" in kwargs:
            kwargs["goals"] = tuple(_coerce(Goal, g, ("row", "col", "reward")) for g in kwargs["goals"] or ())
        if "walls" in kwargs:
            kwargs["walls"] = tuple(_coerce(Position, w, ("row", "col")) for w in kwargs["walls"] or ())
        if "slips" in kwargs:
            kwargs["slips"] = tuple(
                _coerce(SlipSpec, s, ("row", "col", "probability")) for s in kwargs["slips"] or ()
            )
        if "feature_thresholds" in kwargs:
            kwargs["feature_thresholds"] = tuple(float(t) for t in kwargs["feature_thresholds"] or ())
        return cls(**kwargs)


def _finite_or(value, default: float) -> float:
    value = float(value)
    return value if math.isfinite(value) else default


def _coerce(kind, value, names: tuple[str, ...]):
    if isinstance(value, kind):
        return value
    if isinstance(value, Mapping):
        return kind(**{n: value[n] for n in names})
    return kind(*value)


def normalize_algorithm(name: str | None) -> str:
    """
    Canonical algorithm name. Unknown names fall back to Monte Carlo.

    :param name: User-provided name.
        :type name: str | None

    :return: One of ALGORITHMS.
        :rtype: str
    """
    if not name:
        return ALGORITHM_MONTE_CARLO
    key = str(name).strip().lower()
    key = _ALGORITHM_ALIASES.get(key, key)
    if key not in ALGORITHMS:
        warnings.warn(message=f"Unknown algorithm {name!r}, falling back to {ALGORITHM_MONTE_CARLO!r}.",
                      category=RuntimeWarning)
        return ALGORITHM_MONTE_CARLO
    return key


def default_goal_reward(rows: int, cols: int) -> float:
    return max(1.0, (rows + cols - 2) / 2.5)


def scaled_step_penalty(rows: int, cols: int, base: float) -> float:
    """
    Rescale the per-step penalty to the board size.

    The shortest start-to-corner path (rows + cols - 2) is compared to the
    6-step path of the 4x4 reference board, and the scale factor is clamped to
    [0.5, 3] so tiny and huge boards stay reasonable.

    :param rows: Grid rows.
        :type rows: int
    :param cols: Grid columns.
        :type cols: int
    :param base: Configured penalty.
        :type base: float

    :return: Effective penalty (0 if base <= 0).
        :rtype: float
    """
    if base <= 0:
        return 0.0
    path_len = max(1.0, float(rows + cols - 2))
    scale = min(max(path_len / REFERENCE_PATH_LENGTH, 0.5), 3.0)
    return base / scale


def sanitize_goals(goals: Iterable[Goal], rows: int, cols: int) -> list[Goal]:
    """Drop zero-reward, non-finite and out-of-bounds goals."""
    result = []
    for g in goals:
        if g.reward == 0 or not math.isfinite(float(g.reward)):
            continue
        if not (0 <= g.row < rows and 0 <= g.col < cols):
            continue
        result.append(Goal(row=int(g.row), col=int(g.col), reward=float(g.reward)))
    return result


def auto_place_goals(rows: int, cols: int, count: int) -> list[Goal]:
    """
    Spread `count` goals evenly over the cells in row-major order.

    Every goal pays default_goal_reward(rows, cols). A non-positive count
    gives the single default goal in the top-right corner.

    :param rows: Grid rows.
        :type rows: int
    :param cols: Grid columns.
        :type cols: int
    :param count: Number of goals (capped at rows * cols).
        :type count: int

    :return: Goals in row-major order.
        :rtype: list[Goal]
    """
    if rows <= 0 or cols <= 0:
        return []
    reward = default_goal_reward(rows, cols)
    if count <= 0:
        return [Goal(row=0, col=cols - 1, reward=reward)]

    total = rows * cols
    count = min(count, total)
    interval = max(1, total // count)
    cells = list(range(0, total, interval))[:count]
    return [Goal(row=i // cols, col=i % cols, reward=reward) for i in cells]


def random_goal_layout(
    rows: int,
    cols: int,
    count: int,
    rng: np.random.Generator,
    previous: Iterable[Goal] = (),
    avoid: tuple[int, int] | None = None,
) -> list[Goal]:
    """
    Draw `count` distinct random goal cells.

    The `avoid` cell (usually the start cell) is excluded whenever enough other
    cells exist. If another layout is possible, the result always differs from
    `previous`.

    :param rows: Grid rows.
        :type rows: int
    :param cols: Grid columns.
        :type cols: int
    :param count: Number of goals.
        :type count: int
    :param rng: Random generator of the run.
        :type rng: np.random.Generator
    :param previous: Layout being replaced.
        :type previous: Iterable[Goal]
    :param avoid: Cell to keep free, as (row, col).
        :type avoid: tuple[int, int] | None

    :return: Goals in row-major order.
        :rtype: list[Goal]
    """
    if count <= 0:
        return auto_place_goals(rows, cols, count)

    total = rows * cols
    cells = np.arange(total)
    if avoid is not None and total - 1 >= count:
        cells = cells[cells != avoid[0] * cols + avoid[1]]
    count = min(count, cells.size)

    reward = default_goal_reward(rows, cols)
    previous_cells = {g.row * cols + g.col for g in previous}
    can_differ = math.comb(int(cells.size), count) > 1

    while True:
        chosen = np.sort(rng.choice(cells, size=count, replace=False))
        if not can_differ or set(chosen.tolist()) != previous_cells:
            break
    return [Goal(row=int(i) // cols, col=int(i) % cols, reward=reward) for i in chosen]
