"""
Training loop for Monte Carlo control, Q-learning and SARSA on the gridworld.

The Trainer is a single sequential producer of Snapshots:

- `iter_snapshots()` is the loop itself, a generator. The consumer pulls one
  snapshot at a time, so a slow consumer naturally slows training down.
- `run()` moves the same loop to a background thread and hands snapshots over
  through a one-slot queue, for callers that want to cancel from elsewhere.

Cancellation is cooperative: a CancellationToken is polled at every episode
and step boundary and around the optional per-step delay. A cancelled run
ends with exactly one "cancelled" snapshot, a completed run with exactly one
"done" snapshot. Table updates already applied are kept.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, replace
from typing import Any, Generator, Iterator

import numpy as np

from tiny_rl.common.seeding import make_rng
from tiny_rl.tabular.features import make_feature_mapper
from tiny_rl.tabular.gridworld import ACTION_NAMES, Goal, GridworldEnv, Position
from tiny_rl.tabular.policy import EpsilonGreedyPolicy
from tiny_rl.tabular.q_table import QTable
from tiny_rl.tabular.value_table import ValueTable
from tiny_rl.training.config import (
    ALGORITHM_MONTE_CARLO,
    ALGORITHM_Q_LEARNING,
    ALGORITHM_SARSA,
    EXPLORATION_SOFTMAX,
    TrainerConfig,
    auto_place_goals,
    random_goal_layout,
    scaled_step_penalty,
)

STATUS_RUNNING = "running"
STATUS_EPISODE_COMPLETE = "episode_complete"
STATUS_DONE = "done"
STATUS_CANCELLED = "cancelled"

# potential-based shaping: bonus per unit of distance gained toward the nearest goal
DISTANCE_REWARD_SCALE = 0.1


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable progress record emitted by the Trainer.

    :param step: Cumulative step counter over the whole run.
        :type step: int
    :param episode: Episode index (1-based).
        :type episode: int
    :param episode_steps: Steps taken so far in this episode.
        :type episode_steps: int
    :param episode_reward: Reward collected so far in this episode (shaping included).
        :type episode_reward: float
    :param reward: Reward of the last step.
        :type reward: float
    :param position: Agent position.
        :type position: Position
    :param value_map: Read-only (rows, cols) projection of the active store.
        :type value_map: np.ndarray
    :param goals: Live goals.
        :type goals: tuple[Goal, ...]
    :param success_count: Episodes that collected every goal.
        :type success_count: int
    :param episodes_completed: Episodes finished so far.
        :type episodes_completed: int
    :param total_reward: Reward summed over completed episodes.
        :type total_reward: float
    :param total_steps: Steps summed over completed episodes.
        :type total_steps: int
    :param config: Effective configuration (current epsilon and goal layout, scaled step penalty).
        :type config: TrainerConfig
    :param status: One of "running", "episode_complete", "done", "cancelled".
        :type status: str
    """
    step: int
    episode: int
    episode_steps: int
    episode_reward: float
    reward: float
    position: Position
    value_map: np.ndarray
    goals: tuple[Goal, ...]
    success_count: int
    episodes_completed: int
    total_reward: float
    total_steps: int
    config: TrainerConfig
    status: str

    def to_dict(self) -> dict[str, Any]:
        """camelCase JSON-able payload, the shape UI bridges forward."""
        return {
            "step": self.step,
            "episode": self.episode,
            "episodeSteps": self.episode_steps,
            "episodeReward": self.episode_reward,
            "reward": self.reward,
            "position": {"row": self.position.row, "col": self.position.col},
            "valueMap": self.value_map.tolist(),
            "goals": [{"row": g.row, "col": g.col, "reward": g.reward} for g in self.goals],
            "successCount": self.success_count,
            "episodesCompleted": self.episodes_completed,
            "totalReward": self.total_reward,
            "totalSteps": self.total_steps,
            "config": self.config.to_dict(),
            "status": self.status,
        }


class CancellationToken:
    """Thread-safe cancel flag. `wait()` doubles as a cancellable sleep."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`, return True as soon as the token is cancelled."""
        return self._event.wait(seconds)


_END = object()


class SnapshotStream:
    """
    Snapshots of a Trainer running in a background thread.

    Iterate to receive snapshots in order. The producer blocks until the
    previous snapshot has been taken (one-slot queue). An exception raised by
    the producer is re-raised to the consumer once the stream is drained.

    :param producer: Snapshot iterator to drive (Trainer.iter_snapshots).
        :type producer: Iterator[Snapshot]
    :param token: Token shared with the producer.
        :type token: CancellationToken
    """

    def __init__(self, producer: Iterator[Snapshot], token: CancellationToken):
        self.token = token
        self._producer = producer
        self._queue: queue.Queue = queue.Queue(maxsize=1)
        self._error: BaseException | None = None
        self._finished = False
        self._thread = threading.Thread(target=self._pump, name="tiny-rl-trainer", daemon=True)
        self._thread.start()

    def _pump(self) -> None:
        try:
            for snapshot in self._producer:
                self._queue.put(snapshot)
        except BaseException as e:
            self._error = e
        finally:
            self._queue.put(_END)

    def __iter__(self) -> Iterator[Snapshot]:
        while not self._finished:
            item = self._queue.get()
            if item is _END:
                self._finished = True
                self._thread.join()
                if self._error is not None:
                    raise self._error
                return
            yield item

    def cancel(self) -> None:
        self.token.cancel()

    def close(self) -> None:
        """Cancel, discard pending snapshots and wait for the producer to stop."""
        self.cancel()
        for _ in self:
            pass

    def __enter__(self) -> SnapshotStream:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class Trainer:
    """
    Runs episodes on a GridworldEnv and updates the active store.

    The store depends on the configuration:
    - QTable for Q-learning, SARSA and Monte Carlo control (default)
    - ValueTable for Monte Carlo with `state_values=True`

    Every random draw of a run comes from one generator seeded with the config
    seed, so a run is reproducible for a fixed configuration.

    :param config: Training configuration (sanitized on construction).
        :type config: TrainerConfig
    """

    def __init__(self, config: TrainerConfig):
        cfg = config.sanitized()
        rows, cols = cfg.rows, cfg.cols

        if cfg.goal_count > 0:
            goals = auto_place_goals(rows, cols, cfg.goal_count)
        elif cfg.goals:
            goals = list(cfg.goals)
        else:
            goals = auto_place_goals(rows, cols, 0)

        self.base_step_penalty = scaled_step_penalty(rows, cols, cfg.step_penalty)
        self.config = replace(cfg, goals=tuple(goals), step_penalty=self.base_step_penalty)
        self.epsilon = cfg.epsilon

        self.rng = make_rng(cfg.seed)
        self.env = GridworldEnv(
            rows=rows,
            cols=cols,
            goals=goals,
            step_penalty=self.base_step_penalty,
            max_steps=cfg.max_steps,
            rng=self.rng,
        )
        for wall in cfg.walls:
            self.env.set_wall(wall.row, wall.col)
        for slip in cfg.slips:
            self.env.set_slip_tile(slip.row, slip.col, slip.probability)

        mapper = make_feature_mapper(cfg.feature_thresholds)
        self.values: ValueTable | None = None
        self.qvalues: QTable | None = None
        if cfg.state_values:
            self.values = ValueTable(rows, cols, alpha=cfg.alpha, mapper=mapper)
        else:
            self.qvalues = QTable(rows, cols)
        self.mapper = mapper
        self.policy = EpsilonGreedyPolicy(
            self.rng, rows, cols, epsilon=cfg.epsilon, qvalues=self.qvalues, values=self.values, mapper=mapper
        )

        self.step = 0
        self.success_count = 0
        self.episodes_completed = 0
        self.total_reward = 0.0
        self.total_steps = 0
        self._trajectory_dumped = False

    def run(self, token: CancellationToken | None = None) -> SnapshotStream:
        """
        Start training in a background thread.

        :param token: Cancellation token (a fresh one is created if omitted).
            :type token: CancellationToken | None

        :return: Stream of snapshots, cancellable through stream.cancel().
            :rtype: SnapshotStream
        """
        token = token if token is not None else CancellationToken()
        return SnapshotStream(self.iter_snapshots(token), token)

    def iter_snapshots(self, token: CancellationToken | None = None) -> Iterator[Snapshot]:
        """
        Run training in the caller's thread, yielding snapshots in step order.

        :param token: Cancellation token polled at every boundary.
            :type token: CancellationToken | None

        :return: Snapshot iterator. Empty when episodes <= 0.
            :rtype: Iterator[Snapshot]
        """
        token = token if token is not None else CancellationToken()
        cfg = self.config
        if cfg.episodes <= 0:
            return

        for episode in range(1, cfg.episodes + 1):
            if token.cancelled:
                yield self._snapshot(STATUS_CANCELLED, episode)
                return
            self.policy.set_epsilon(self.epsilon)

            cancelled = yield from self._run_episode(episode, token)
            if cancelled:
                return

            if cfg.epsilon_decay > 0:
                self.epsilon = max(cfg.epsilon_min, self.epsilon * cfg.epsilon_decay)
                self.config = replace(self.config, epsilon=self.epsilon)

        yield self._snapshot(STATUS_DONE, cfg.episodes)

    def _run_episode(self, episode: int, token: CancellationToken) -> Generator[Snapshot, None, bool]:
        cfg = self.config
        env = self.env
        algorithm = cfg.algorithm
        monte_carlo = algorithm == ALGORITHM_MONTE_CARLO

        if monte_carlo:
            self.apply_warmup_penalty(episode)
            self.policy.reset_visits()
        if cfg.goal_count > 0 and cfg.goal_interval > 0:
            if episode == 1 or (episode - 1) % cfg.goal_interval == 0:
                self.reshuffle_goals()

        env.reset()
        if cfg.random_start:
            env.set_position(int(self.rng.integers(env.rows)), int(self.rng.integers(env.cols)))

        state = (env.curr_row, env.curr_col)
        action = self._select_action(0)

        mc_states: list[tuple[int, int]] = []
        mc_actions: list[int] = []
        mc_rewards: list[float] = []
        value_trace: list[tuple[int, int, int]] = []
        if monte_carlo:
            mc_states.append(state)
            mc_actions.append(action)

        visits = np.zeros(shape=(env.rows, env.cols), dtype=np.int64)
        visits[state] += 1
        steps = 0
        episode_reward = 0.0
        last_reward = 0.0
        goal_reached = False
        delay = cfg.step_delay_ms / 1000.0

        while True:
            if token.cancelled:
                yield self._snapshot(STATUS_CANCELLED, episode, steps, episode_reward, last_reward)
                return True

            prev_distance = env.potential(*state)
            base_reward, done = env.step(action)
            next_state = (env.curr_row, env.curr_col)
            new_distance = env.potential(*next_state)
            reward = base_reward + DISTANCE_REWARD_SCALE * (prev_distance - new_distance)
            if done and env.all_goals_collected:
                goal_reached = True

            episode_reward += reward
            steps += 1
            self.step += 1
            last_reward = reward

            next_action = 0
            if algorithm == ALGORITHM_Q_LEARNING:
                self.update_q_learning(state, action, reward, next_state, done)
            elif algorithm == ALGORITHM_SARSA:
                if not done:
                    next_action = self._select_action(steps)
                self.update_sarsa(state, action, reward, next_state, next_action, done)
            else:
                mc_rewards.append(reward)
                if self.values is not None:
                    value_trace.append((*next_state, self.mapper.index(env, *next_state)))
                if not done:
                    next_action = self._select_action(steps)
                    mc_states.append(next_state)
                    mc_actions.append(next_action)

            visits[next_state] += 1
            yield self._snapshot(STATUS_RUNNING, episode, steps, episode_reward, reward)

            if token.cancelled or (delay > 0 and token.wait(delay)):
                yield self._snapshot(STATUS_CANCELLED, episode, steps, episode_reward, reward)
                return True

            if done:
                break
            state = next_state
            if algorithm == ALGORITHM_Q_LEARNING:
                action = self._select_action(steps)
            else:
                action = next_action

        if goal_reached:
            self.success_count += 1
        if monte_carlo:
            self.update_monte_carlo(mc_states, mc_actions, mc_rewards, value_trace)
            if cfg.dump_trajectory and not self._trajectory_dumped:
                self._trajectory_dumped = True
                print(format_trajectory(episode, mc_states, mc_actions, mc_rewards))

        self.total_reward += episode_reward
        self.total_steps += steps
        self.episodes_completed += 1
        if cfg.trace:
            print(format_visit_heatmap(episode, visits))

        yield self._snapshot(STATUS_EPISODE_COMPLETE, episode, steps, episode_reward, last_reward)
        return False

    def _select_action(self, steps: int) -> int:
        cfg = self.config
        if self.values is not None and cfg.exploration == EXPLORATION_SOFTMAX:
            return self.policy.softmax_action(self.env, self.softmax_temperature(steps))
        return self.policy.act(self.env)

    def softmax_temperature(self, steps: int) -> float:
        """
        Temperature annealed linearly from softmax_temperature down to
        softmax_min_temperature over the step budget.
        """
        cfg = self.config
        frac = min(1.0, steps / self.env.max_steps)
        return cfg.softmax_temperature - frac * (cfg.softmax_temperature - cfg.softmax_min_temperature)

    def apply_warmup_penalty(self, episode: int) -> None:
        cfg = self.config
        penalty = self.base_step_penalty
        if cfg.warmup_episodes > 0 and episode <= cfg.warmup_episodes and cfg.warmup_step_penalty > 0:
            penalty = cfg.warmup_step_penalty
        self.env.set_step_penalty(penalty)

    def reshuffle_goals(self) -> None:
        cfg = self.config
        env = self.env
        avoid = None if cfg.random_start else (env.start_row, env.start_col)
        goals = random_goal_layout(
            env.rows, env.cols, cfg.goal_count, self.rng, previous=env.initial_goals, avoid=avoid
        )
        env.set_goals(goals)
        self.config = replace(self.config, goals=tuple(goals))

    def update_q_learning(
        self,
        state: tuple[int, int],
        action: int,
        reward: float,
        next_state: tuple[int, int],
        done: bool,
    ) -> None:
        """
        Q(s,a) <- Q(s,a) + alpha * [r + gamma * max_a' Q(s',a') - Q(s,a)]

        No bootstrap when the episode has ended.
        """
        cfg = self.config
        target = reward
        if not done:
            target += cfg.gamma * self.qvalues.max_value(*next_state)
        current = self.qvalues.get(*state, action)
        self.qvalues.set(*state, action, current + cfg.alpha * (target - current))

    def update_sarsa(
        self,
        state: tuple[int, int],
        action: int,
        reward: float,
        next_state: tuple[int, int],
        next_action: int,
        done: bool,
    ) -> None:
        """
        Q(s,a) <- Q(s,a) + alpha * [r + gamma * Q(s',a') - Q(s,a)]

        a' is the action the policy already committed to; no bootstrap when done.
        """
        cfg = self.config
        target = reward
        if not done:
            target += cfg.gamma * self.qvalues.get(*next_state, next_action)
        current = self.qvalues.get(*state, action)
        self.qvalues.set(*state, action, current + cfg.alpha * (target - current))

    def update_monte_carlo(
        self,
        states: list[tuple[int, int]],
        actions: list[int],
        rewards: list[float],
        value_trace: list[tuple[int, int, int]],
    ) -> None:
        cfg = self.config
        if self.values is not None:
            self.values.update_returns(value_trace, rewards, cfg.gamma)
        else:
            self.qvalues.update_returns(states, actions, rewards, cfg.alpha, cfg.gamma)

    def value_map(self) -> np.ndarray:
        if self.values is not None:
            data = self.values.clone_data()
        else:
            data = self.qvalues.state_values()
        data.flags.writeable = False
        return data

    def _snapshot(
        self,
        status: str,
        episode: int,
        episode_steps: int = 0,
        episode_reward: float = 0.0,
        reward: float = 0.0,
    ) -> Snapshot:
        return Snapshot(
            step=self.step,
            episode=episode,
            episode_steps=episode_steps,
            episode_reward=episode_reward,
            reward=reward,
            position=self.env.position,
            value_map=self.value_map(),
            goals=self.env.goals,
            success_count=self.success_count,
            episodes_completed=self.episodes_completed,
            total_reward=self.total_reward,
            total_steps=self.total_steps,
            config=self.config,
            status=status,
        )


def format_visit_heatmap(episode: int, visits: np.ndarray) -> str:
    """
    Visit counts of one episode as a grid, "." for unvisited cells.

    :param episode: Episode index.
        :type episode: int
    :param visits: Counts, shape (rows, cols).
        :type visits: np.ndarray

    :return: Multi-line string.
        :rtype: str
    """
    lines = [f"visit heatmap (episode {episode})"]
    for row in visits:
        lines.append(" ".join("  ." if n == 0 else f"{int(n):3d}" for n in row))
    return "\n".join(lines)


def format_trajectory(
    episode: int,
    states: list[tuple[int, int]],
    actions: list[int],
    rewards: list[float],
) -> str:
    lines = [f"trajectory (episode {episode})"]
    for t, ((row, col), action, reward) in enumerate(zip(states, actions, rewards)):
        lines.append(f"{t:4d}: ({row},{col}) {ACTION_NAMES[action]:>5s} reward={reward:+.3f}")
    return "\n".join(lines)
