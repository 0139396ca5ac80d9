"""
Export helpers for a finished (or running) training run.

- per-episode metrics as CSV rows (one row per episode_complete snapshot)
- a JSON run summary: effective config + average reward/steps and success rate
- snapshots as JSON lines, the format UI bridges consume
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any

from tiny_rl.training.trainer import STATUS_EPISODE_COMPLETE, Snapshot

METRICS_HEADER = (
    "episode",
    "steps",
    "episode_reward",
    "success",
    "epsilon",
    "alpha",
    "gamma",
    "rows",
    "cols",
    "step_penalty",
    "algorithm",
    "seed",
    "goal_count",
    "goal_interval",
)


class MetricsCSVWriter:
    """
    Write one CSV row per completed episode.

    The success column is 1 when the success counter moved since the previous
    completed episode. Rows are flushed as they are written so a cancelled run
    still leaves a readable file.

    :param stream: Open text stream (newline="" recommended).
        :type stream: IO[str]
    """

    def __init__(self, stream: IO[str]):
        self.stream = stream
        self.writer = csv.writer(stream)
        self.writer.writerow(METRICS_HEADER)
        self.stream.flush()
        self._last_success_count = 0
        self.rows_written = 0

    def write(self, snapshot: Snapshot) -> bool:
        """
        Record `snapshot` if it closes an episode.

        :param snapshot: Any snapshot from the stream.
            :type snapshot: Snapshot

        :return: True if a row was written.
            :rtype: bool
        """
        if snapshot.status != STATUS_EPISODE_COMPLETE:
            return False

        success = 1 if snapshot.success_count > self._last_success_count else 0
        self._last_success_count = snapshot.success_count
        cfg = snapshot.config
        self.writer.writerow([
            snapshot.episode,
            snapshot.episode_steps,
            f"{snapshot.episode_reward:.4f}",
            success,
            f"{cfg.epsilon:.6f}",
            f"{cfg.alpha:.6f}",
            f"{cfg.gamma:.6f}",
            cfg.rows,
            cfg.cols,
            f"{cfg.step_penalty:.6f}",
            cfg.algorithm,
            cfg.seed,
            cfg.goal_count,
            cfg.goal_interval,
        ])
        self.stream.flush()
        self.rows_written += 1
        return True


@dataclass(frozen=True)
class RunSummary:
    avg_reward: float
    avg_steps: float
    success_rate: float


def summarize_run(snapshot: Snapshot, episodes: int | None = None) -> RunSummary:
    """
    Averages over a run, from its last snapshot.

    :param snapshot: Final (done) or latest snapshot.
        :type snapshot: Snapshot
    :param episodes: Denominator. Defaults to the episodes completed.
        :type episodes: int | None

    :return: Average reward, average steps and success rate.
        :rtype: RunSummary
    """
    n = snapshot.episodes_completed if episodes is None else episodes
    if n <= 0:
        return RunSummary(avg_reward=0.0, avg_steps=0.0, success_rate=0.0)
    return RunSummary(
        avg_reward=snapshot.total_reward / n,
        avg_steps=snapshot.total_steps / n,
        success_rate=snapshot.success_count / n,
    )


def run_summary_payload(snapshot: Snapshot, episodes: int | None = None) -> dict[str, Any]:
    summary = summarize_run(snapshot, episodes)
    return {
        "config": snapshot.config.to_dict(),
        "summary": {
            "avg_reward": summary.avg_reward,
            "avg_steps": summary.avg_steps,
            "success_rate": summary.success_rate,
        },
    }


def write_run_json(path: str | Path, snapshot: Snapshot, episodes: int | None = None) -> Path:
    """
    Write the run summary as indented JSON.

    :param path: Output file (parent directories are created).
        :type path: str | Path
    :param snapshot: Final snapshot of the run.
        :type snapshot: Snapshot
    :param episodes: Denominator for the averages.
        :type episodes: int | None

    :return: Path written.
        :rtype: Path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(run_summary_payload(snapshot, episodes), f, indent=2)
        f.write("\n")
    return path


def snapshot_to_json_line(snapshot: Snapshot) -> str:
    return json.dumps(snapshot.to_dict(), separators=(",", ":"))


def format_value_map(snapshot: Snapshot) -> str:
    """
    Value map as a grid string, for example:

      0.12   0.35   0.71   0.00
     -0.02   0.18   0.40   0.77
     ...
    """
    lines = []
    for row in snapshot.value_map:
        lines.append(" ".join(f"{v:6.2f}" for v in row))
    return "\n".join(lines)
