"""
Command-line entry point.

    tiny-rl train --episodes 200 --algorithm q-learning --rows 5 --cols 5 --goal-count 2

Prints one line per episode and a final summary. Optional outputs:
    --metrics-csv PATH      per-episode metrics
    --run-json PATH         effective config + summary
    --snapshots-jsonl PATH  every snapshot as a JSON line (UI bridge format)
    --plot-out PATH         learning curve (episode reward and steps)
    --value-map-out PATH    heatmap of the final value map
    --profile-out PATH      cProfile stats of the training loop

Ctrl-C cancels the run cleanly: the trainer emits its cancelled snapshot and
the files written so far are kept.
"""

from __future__ import annotations

import argparse
import cProfile
import sys
from contextlib import ExitStack
from pathlib import Path
from typing import Iterable, Sequence

from tiny_rl.common.export import (
    MetricsCSVWriter,
    format_value_map,
    snapshot_to_json_line,
    summarize_run,
    write_run_json,
)
from tiny_rl.common.plotting import save_learning_curves, save_value_map
from tiny_rl.tabular.gridworld import Goal, Position
from tiny_rl.training.config import ALGORITHMS, SlipSpec, TrainerConfig, scaled_step_penalty
from tiny_rl.training.trainer import (
    STATUS_CANCELLED,
    STATUS_DONE,
    STATUS_EPISODE_COMPLETE,
    CancellationToken,
    Snapshot,
    Trainer,
)


def _split(value: str, n: int, what: str, fmt: str) -> list[str]:
    parts = [p.strip() for p in value.split(",")]
    if len(parts) != n:
        raise argparse.ArgumentTypeError(f"{what} must be in {fmt} format")
    return parts


def parse_goal(value: str) -> Goal:
    row, col, reward = _split(value, 3, "goal", "row,col,reward")
    try:
        return Goal(row=int(row), col=int(col), reward=float(reward))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid goal {value!r}: {e}") from e


def parse_wall(value: str) -> Position:
    row, col = _split(value, 2, "wall", "row,col")
    try:
        return Position(row=int(row), col=int(col))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid wall {value!r}: {e}") from e


def parse_slip(value: str) -> SlipSpec:
    row, col, prob = _split(value, 3, "slip", "row,col,probability")
    try:
        return SlipSpec(row=int(row), col=int(col), probability=min(max(float(prob), 0.0), 1.0))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid slip {value!r}: {e}") from e


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tiny-rl", description="Tabular RL on a gridworld.")
    sub = p.add_subparsers(dest="command", required=True)

    t = sub.add_parser("train", help="Train an agent and report per-episode progress.")
    t.add_argument("--episodes", type=int, default=1, help="Number of training episodes.")
    t.add_argument("--seed", type=int, default=0, help="Deterministic seed (0 uses the default).")
    t.add_argument("--epsilon", type=float, default=0.5, help="Exploration rate (0-1).")
    t.add_argument("--epsilon-min", type=float, default=0.05, help="Minimum exploration rate.")
    t.add_argument("--epsilon-decay", type=float, default=0.998, help="Per-episode decay multiplier.")
    t.add_argument("--alpha", type=float, default=0.2, help="Learning rate (0-1).")
    t.add_argument("--gamma", type=float, default=0.9, help="Discount factor (0-1).")
    t.add_argument(
        "--lambda",
        dest="lam",
        type=float,
        default=0.9,
        help="Eligibility trace decay (0-1), reserved.",
    )
    t.add_argument("--rows", type=int, default=4, help="Grid rows.")
    t.add_argument("--cols", type=int, default=4, help="Grid columns.")
    t.add_argument("--step-delay", type=int, default=0, help="Per-step delay in milliseconds.")
    t.add_argument("--max-steps", type=int, default=0, help="Maximum steps per episode (0 uses the default).")
    t.add_argument("--algorithm", default=ALGORITHMS[0], choices=ALGORITHMS, help="Training algorithm.")
    t.add_argument(
        "--goal",
        dest="goals",
        type=parse_goal,
        action="append",
        default=[],
        help="Goal as row,col,reward (repeatable).",
    )
    t.add_argument("--step-penalty", type=float, default=0.02, help="Per-step penalty (non-negative).")
    t.add_argument("--random-start", action="store_true", help="Randomize the start cell every episode.")
    t.add_argument(
        "--dump-trajectory",
        action="store_true",
        help="Print the first Monte Carlo episode trajectory.",
    )
    t.add_argument("--trace", action="store_true", help="Print a visit heatmap after every episode.")
    t.add_argument(
        "--goal-count",
        type=int,
        default=0,
        help="Number of auto-placed goals (0 keeps manual goals).",
    )
    t.add_argument(
        "--goal-interval",
        type=int,
        default=20,
        help="Episodes between goal reshuffles (0 keeps the layout).",
    )
    t.add_argument(
        "--wall",
        dest="walls",
        type=parse_wall,
        action="append",
        default=[],
        help="Wall tile at row,col (repeatable).",
    )
    t.add_argument(
        "--slip",
        dest="slips",
        type=parse_slip,
        action="append",
        default=[],
        help="Slip tile as row,col,probability (repeatable).",
    )
    t.add_argument(
        "--state-values",
        action="store_true",
        help="Monte Carlo over state values with distance bands.",
    )
    t.add_argument(
        "--exploration",
        default="epsilon-greedy",
        choices=("epsilon-greedy", "softmax"),
        help="Action selection for --state-values.",
    )
    t.add_argument("--softmax-temp", type=float, default=1.0, help="Initial softmax temperature.")
    t.add_argument(
        "--softmax-min-temp",
        type=float,
        default=0.1,
        help="Softmax temperature at the end of the step budget.",
    )
    t.add_argument(
        "--feature-threshold",
        dest="feature_thresholds",
        type=float,
        action="append",
        default=[],
        help="Distance band threshold for --state-values (repeatable).",
    )
    t.add_argument(
        "--warmup-episodes",
        type=int,
        default=0,
        help="Episodes using the warmup step penalty (0 disables).",
    )
    t.add_argument(
        "--warmup-step-penalty",
        type=float,
        default=0.0,
        help="Step penalty during warmup episodes.",
    )
    t.add_argument("--metrics-csv", type=str, default="", help="Write per-episode metrics to this CSV file.")
    t.add_argument("--run-json", type=str, default="", help="Write the run summary to this JSON file.")
    t.add_argument(
        "--snapshots-jsonl",
        type=str,
        default="",
        help="Write every snapshot to this JSON-lines file.",
    )
    t.add_argument("--plot-out", type=str, default="", help="Save a learning-curve plot to this image file.")
    t.add_argument("--smooth", type=int, default=10, help="Smoothing window for --plot-out.")
    t.add_argument(
        "--value-map-out",
        type=str,
        default="",
        help="Save the final value map as a heatmap image.",
    )
    t.add_argument(
        "--profile-out",
        type=str,
        default="",
        help="Write cProfile stats of the training loop here.",
    )
    t.add_argument("--quiet", action="store_true", help="Only print the summary.")
    return p


def validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """
    Reject out-of-range values up front.

    The Trainer would silently clamp them, but on the command line a typo
    should be reported rather than replaced by a default.
    """
    checks = [
        (args.episodes <= 0, f"episodes must be positive (got {args.episodes})"),
        (not 0 < args.epsilon <= 1, f"epsilon must be in (0, 1] (got {args.epsilon:.2f})"),
        (
            not 0 <= args.epsilon_min <= args.epsilon,
            f"epsilon-min must be between 0 and epsilon (got {args.epsilon_min:.2f})",
        ),
        (args.epsilon_decay < 0, f"epsilon-decay must be non-negative (got {args.epsilon_decay:.2f})"),
        (not 0 < args.alpha <= 1, f"alpha must be in (0, 1] (got {args.alpha:.2f})"),
        (not 0 < args.gamma <= 1, f"gamma must be in (0, 1] (got {args.gamma:.2f})"),
        (not 0 <= args.lam <= 1, f"lambda must be between 0 and 1 (got {args.lam:.2f})"),
        (args.rows <= 0, f"rows must be positive (got {args.rows})"),
        (args.cols <= 0, f"cols must be positive (got {args.cols})"),
        (args.step_delay < 0, f"step-delay must be non-negative (got {args.step_delay})"),
        (args.max_steps < 0, f"max-steps must be non-negative (got {args.max_steps})"),
        (args.step_penalty < 0, f"step-penalty must be non-negative (got {args.step_penalty:.4f})"),
        (args.goal_count < 0, f"goal-count must be non-negative (got {args.goal_count})"),
        (args.goal_interval < 0, f"goal-interval must be non-negative (got {args.goal_interval})"),
        (args.softmax_temp <= 0, f"softmax-temp must be positive (got {args.softmax_temp:.2f})"),
        (
            args.softmax_min_temp < 0,
            f"softmax-min-temp must be non-negative (got {args.softmax_min_temp:.2f})",
        ),
        (args.softmax_min_temp > args.softmax_temp, "softmax-min-temp must be <= softmax-temp"),
        (args.warmup_episodes < 0, f"warmup-episodes must be non-negative (got {args.warmup_episodes})"),
        (
            args.warmup_step_penalty < 0,
            f"warmup-step-penalty must be non-negative (got {args.warmup_step_penalty:.4f})",
        ),
        (
            args.state_values and args.algorithm != ALGORITHMS[0],
            "--state-values requires --algorithm montecarlo",
        ),
    ]
    for failed, message in checks:
        if failed:
            parser.error(message)


def config_from_args(args: argparse.Namespace) -> TrainerConfig:
    return TrainerConfig(
        episodes=args.episodes,
        seed=args.seed,
        epsilon=args.epsilon,
        epsilon_min=args.epsilon_min,
        epsilon_decay=args.epsilon_decay,
        alpha=args.alpha,
        gamma=args.gamma,
        lam=args.lam,
        rows=args.rows,
        cols=args.cols,
        step_delay_ms=args.step_delay,
        max_steps=args.max_steps,
        algorithm=args.algorithm,
        goals=tuple(args.goals),
        goal_count=args.goal_count,
        goal_interval=args.goal_interval,
        step_penalty=args.step_penalty,
        warmup_episodes=args.warmup_episodes,
        warmup_step_penalty=args.warmup_step_penalty,
        random_start=args.random_start,
        dump_trajectory=args.dump_trajectory,
        trace=args.trace,
        walls=tuple(args.walls),
        slips=tuple(args.slips),
        state_values=args.state_values,
        exploration=args.exploration,
        softmax_temperature=args.softmax_temp,
        softmax_min_temperature=args.softmax_min_temp,
        feature_thresholds=tuple(args.feature_thresholds),
    )


def consume(
    snapshots: Iterable[Snapshot],
    *,
    metrics: MetricsCSVWriter | None = None,
    jsonl=None,
    quiet: bool = False,
) -> tuple[Snapshot | None, list[float], list[int]]:
    """
    Drain a snapshot stream, reporting and exporting as it goes.

    :return: (last snapshot, episode rewards, episode lengths)
        :rtype: tuple[Snapshot | None, list[float], list[int]]
    """
    last = None
    rewards: list[float] = []
    lengths: list[int] = []
    for snapshot in snapshots:
        last = snapshot
        if jsonl is not None:
            jsonl.write(snapshot_to_json_line(snapshot) + "\n")
        if snapshot.status == STATUS_EPISODE_COMPLETE:
            rewards.append(snapshot.episode_reward)
            lengths.append(snapshot.episode_steps)
            if metrics is not None:
                metrics.write(snapshot)
            if not quiet:
                print(
                    f"episode {snapshot.episode}: reward={snapshot.episode_reward:.2f} "
                    f"steps={snapshot.episode_steps}"
                )
        elif snapshot.status == STATUS_CANCELLED:
            print("training cancelled")
    return last, rewards, lengths


def run_train(args: argparse.Namespace) -> int:
    cfg = config_from_args(args)
    effective_penalty = scaled_step_penalty(cfg.rows, cfg.cols, cfg.step_penalty)
    print(
        f"train config => episodes={cfg.episodes} seed={cfg.seed} algorithm={cfg.algorithm} "
        f"epsilon={cfg.epsilon:.2f} epsilonMin={cfg.epsilon_min:.2f} epsilonDecay={cfg.epsilon_decay:.3f} "
        f"alpha={cfg.alpha:.2f} gamma={cfg.gamma:.2f} lambda={cfg.lam:.2f} rows={cfg.rows} cols={cfg.cols} "
        f"stepDelayMs={cfg.step_delay_ms} maxSteps={cfg.max_steps} stepPenalty={cfg.step_penalty:.3f} "
        f"effectiveStepPenalty={effective_penalty:.3f} warmupEpisodes={cfg.warmup_episodes} "
        f"warmupPenalty={cfg.warmup_step_penalty:.3f} goalCount={cfg.goal_count} "
        f"goalInterval={cfg.goal_interval} "
        f"randomStart={cfg.random_start} stateValues={cfg.state_values} exploration={cfg.exploration}"
    )

    trainer = Trainer(cfg)
    token = CancellationToken()

    with ExitStack() as stack:
        metrics = None
        if args.metrics_csv:
            Path(args.metrics_csv).parent.mkdir(parents=True, exist_ok=True)
            f = stack.enter_context(open(args.metrics_csv, "w", newline="", encoding="utf-8"))
            metrics = MetricsCSVWriter(f)
        jsonl = None
        if args.snapshots_jsonl:
            Path(args.snapshots_jsonl).parent.mkdir(parents=True, exist_ok=True)
            jsonl = stack.enter_context(open(args.snapshots_jsonl, "w", encoding="utf-8"))

        if args.profile_out:
            # cProfile only sees the calling thread, so train in the foreground
            profiler = cProfile.Profile()
            profiler.enable()
            try:
                last, rewards, lengths = consume(
                    trainer.iter_snapshots(token),
                    metrics=metrics,
                    jsonl=jsonl,
                    quiet=args.quiet,
                )
            finally:
                profiler.disable()
                profiler.dump_stats(args.profile_out)
        else:
            stream = stack.enter_context(trainer.run(token))
            try:
                last, rewards, lengths = consume(stream, metrics=metrics, jsonl=jsonl, quiet=args.quiet)
            except KeyboardInterrupt:
                stream.cancel()
                last, rewards, lengths = consume(stream, metrics=metrics, jsonl=jsonl, quiet=args.quiet)

    if last is None:
        return 0
    if last.status == STATUS_CANCELLED:
        return 130

    summary = summarize_run(last, cfg.episodes)
    print(f"summary: avg_reward={summary.avg_reward:.2f} avg_steps={summary.avg_steps:.2f} "
          f"success_rate={summary.success_rate:.2f}")
    print("value table:")
    print(format_value_map(last))

    if args.run_json and last.status == STATUS_DONE:
        write_run_json(args.run_json, last, cfg.episodes)
    title = f"{cfg.algorithm} on {cfg.rows}x{cfg.cols} gridworld"
    if args.plot_out and rewards:
        save_learning_curves(rewards=rewards, lengths=lengths, title=title, out_path=args.plot_out,
                             smooth_window=args.smooth)
    if args.value_map_out:
        save_value_map(last.value_map, title=title, out_path=args.value_map_out,
                       goals=last.config.goals, walls=last.config.walls)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "train":
        validate_args(parser, args)
        return run_train(args)
    parser.error(f"unknown command {args.command!r}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
