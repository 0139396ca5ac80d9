"""
Compare Monte Carlo control, Q-learning and SARSA on the same gridworld.

This script is meant to be run from the repo root, after installing the package:

    pip install -e .
    python examples/01_gridworld/train_compare.py --rows 5 --cols 5 --goal-count 2

Each algorithm is trained over several seeds with the same configuration and
the per-episode reward, episode length and success rate are averaged.

It saves plots in:
    assets/plots/
"""

from __future__ import annotations
import argparse
from dataclasses import dataclass, replace
from pathlib import Path
import numpy as np
from tiny_rl import Trainer, TrainerConfig
from tiny_rl.common.plotting import save_curves
from tiny_rl.training import STATUS_EPISODE_COMPLETE
from tiny_rl.training.config import ALGORITHMS


@dataclass
class Curve:
    """
    Averaged learning curves of one algorithm.

    :param reward: Average episode reward. Shape: (episodes,).
        :type reward: np.ndarray
    :param steps: Average episode length. Shape: (episodes,).
        :type steps: np.ndarray
    :param success: Fraction of runs that collected every goal. Shape: (episodes,).
        :type success: np.ndarray
    """
    reward: np.ndarray
    steps: np.ndarray
    success: np.ndarray


def train_once(cfg: TrainerConfig) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Run one training session in the foreground.

    :param cfg: Configuration of the run.
        :type cfg: TrainerConfig

    :return: (episode rewards, episode lengths, success flags), each of shape (episodes,).
        :rtype: tuple[np.ndarray, np.ndarray, np.ndarray]
    """
    rewards, steps, success = [], [], []
    last_success = 0
    for snapshot in Trainer(cfg).iter_snapshots():
        if snapshot.status != STATUS_EPISODE_COMPLETE:
            continue
        rewards.append(snapshot.episode_reward)
        steps.append(snapshot.episode_steps)
        success.append(float(snapshot.success_count > last_success))
        last_success = snapshot.success_count
    return np.asarray(rewards), np.asarray(steps, dtype=np.float64), np.asarray(success)


def run_experiment(*, base: TrainerConfig, runs: int, seed: int) -> dict[str, Curve]:
    """
    Train every algorithm `runs` times and average the curves.

    :param base: Shared configuration (algorithm and seed are overridden).
        :type base: TrainerConfig
    :param runs: Number of seeds per algorithm.
        :type runs: int
    :param seed: Master seed, run i uses seed + i.
        :type seed: int

    :return: Curves keyed by algorithm name.
        :rtype: dict[str, Curve]
    """
    results: dict[str, Curve] = {}
    for algorithm in ALGORITHMS:
        reward_sum = np.zeros(base.episodes, dtype=np.float64)
        steps_sum = np.zeros(base.episodes, dtype=np.float64)
        success_sum = np.zeros(base.episodes, dtype=np.float64)
        for i in range(runs):
            cfg = replace(base, algorithm=algorithm, seed=seed + i + 1)
            rewards, steps, success = train_once(cfg)
            reward_sum += rewards
            steps_sum += steps
            success_sum += success
        results[algorithm] = Curve(
            reward=reward_sum / runs,
            steps=steps_sum / runs,
            success=success_sum / runs,
        )
        print(f"{algorithm:>10s}: final success rate {results[algorithm].success[-10:].mean():.2f}")
    return results


def parse_args() -> argparse.Namespace:
    """
    Parse CLI arguments.

    :return: Parsed arguments namespace.
        :rtype: argparse.Namespace
    """
    parser = argparse.ArgumentParser(description="Compare Monte Carlo, Q-learning and SARSA on a gridworld.")
    parser.add_argument("--episodes", type=int, default=300, help="Episodes per run.")
    parser.add_argument("--runs", type=int, default=5, help="Number of seeds to average.")
    parser.add_argument("--rows", type=int, default=5, help="Grid rows.")
    parser.add_argument("--cols", type=int, default=5, help="Grid columns.")
    parser.add_argument("--goal-count", type=int, default=1, help="Auto-placed goals.")
    parser.add_argument(
        "--goal-interval",
        type=int,
        default=0,
        help="Episodes between goal reshuffles (0 = fixed).",
    )
    parser.add_argument("--epsilon", type=float, default=0.5, help="Initial exploration rate.")
    parser.add_argument("--epsilon-decay", type=float, default=0.99, help="Per-episode epsilon decay.")
    parser.add_argument("--alpha", type=float, default=0.2, help="Learning rate.")
    parser.add_argument("--gamma", type=float, default=0.9, help="Discount factor.")
    parser.add_argument("--seed", type=int, default=0, help="Master seed.")
    parser.add_argument(
        "--smooth",
        type=int,
        default=10,
        help="Moving average window for plots (1 = no smoothing).",
    )
    return parser.parse_args()


def main():
    """
    Run the comparison and save plots to assets/plots/.

    :return: None.
        :rtype: None
    """
    args = parse_args()

    base = TrainerConfig(
        episodes=args.episodes,
        rows=args.rows,
        cols=args.cols,
        goal_count=args.goal_count,
        goal_interval=args.goal_interval,
        epsilon=args.epsilon,
        epsilon_decay=args.epsilon_decay,
        alpha=args.alpha,
        gamma=args.gamma,
    )
    results = run_experiment(base=base, runs=args.runs, seed=args.seed)

    out_dir = Path("assets/plots")
    out_dir.mkdir(parents=True, exist_ok=True)

    plots = [
        ("reward", "Gridworld: episode reward", "Average episode reward", "gridworld_reward.png"),
        ("steps", "Gridworld: episode length", "Average steps", "gridworld_steps.png"),
        ("success", "Gridworld: success rate", "Fraction of successful runs", "gridworld_success.png"),
    ]
    for attr, title, ylabel, filename in plots:
        save_curves(
            {label: getattr(curve, attr) for label, curve in results.items()},
            title=title,
            ylabel=ylabel,
            out_path=out_dir / filename,
            smooth_window=args.smooth,
        )

    print("Saved plots in:")
    print(f"  {out_dir.resolve()}")
    for *_, filename in plots:
        print(f"  - {filename}")


if __name__ == "__main__":
    main()
