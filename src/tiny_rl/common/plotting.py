from __future__ import annotations
from pathlib import Path
from typing import Iterable, Mapping
import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np

from tiny_rl.tabular.gridworld import Goal, Position


def moving_average(x: np.ndarray, window: int) -> np.ndarray:
    """
    Trailing moving average, same length as `x` (the first values average over what is available).

    :param x: 1D array to smooth.
        :type x: np.ndarray
    :param window: Window size. 1 or less returns x unchanged.
        :type window: int

    :return: Smoothed array.
        :rtype: np.ndarray
    """
    if window <= 1 or x.size == 0:
        return x

    x_pad = np.pad(x, (window - 1, 0), mode="edge")
    return np.convolve(x_pad, np.ones(window, dtype=np.float64) / window, mode="valid")


def _episode_axis(n: int) -> np.ndarray:
    return np.arange(1, n + 1)


def _prepare(out_path: str | Path) -> Path:
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    return out_path


def save_learning_curves(
    *,
    rewards: Iterable[float],
    lengths: Iterable[int],
    title: str,
    out_path: str | Path,
    smooth_window: int = 1,
) -> Path:
    """
    Save episode reward (top) and episode length (bottom) of one run.

    Raw values are drawn faintly, the moving average on top.

    :param rewards: Reward of each completed episode.
        :type rewards: Iterable[float]
    :param lengths: Steps of each completed episode.
        :type lengths: Iterable[int]
    :param title: Figure title.
        :type title: str
    :param out_path: Image file to write (parent directories are created).
        :type out_path: str | Path
    :param smooth_window: Moving average window.
        :type smooth_window: int

    :return: Path written.
        :rtype: Path
    """
    out_path = _prepare(out_path)
    series = [
        ("episode reward", np.asarray(list(rewards), dtype=np.float64)),
        ("episode steps", np.asarray(list(lengths), dtype=np.float64)),
    ]

    fig, axes = plt.subplots(nrows=2, ncols=1, sharex=True, figsize=(7, 6))
    for ax, (label, y) in zip(axes, series):
        x = _episode_axis(y.size)
        ax.plot(x, y, alpha=0.3, linewidth=1)
        ax.plot(x, moving_average(y, smooth_window), label=f"{label} (avg {smooth_window})")
        ax.set_ylabel(label)
        ax.grid(True)
        ax.legend()
    axes[-1].set_xlabel("episode")
    fig.suptitle(title)
    fig.tight_layout()
    fig.savefig(out_path)
    plt.close(fig)
    return out_path


def save_curves(
    curves: Mapping[str, np.ndarray],
    *,
    title: str,
    ylabel: str,
    out_path: str | Path,
    smooth_window: int = 1,
) -> Path:
    """
    Save one smoothed per-episode curve per label (e.g. one per algorithm).

    :param curves: Label -> 1D array over episodes.
        :type curves: Mapping[str, np.ndarray]
    :param title: Plot title.
        :type title: str
    :param ylabel: y-axis label.
        :type ylabel: str
    :param out_path: Image file to write.
        :type out_path: str | Path
    :param smooth_window: Moving average window.
        :type smooth_window: int

    :return: Path written.
        :rtype: Path
    """
    out_path = _prepare(out_path)

    fig, ax = plt.subplots()
    for label, y in curves.items():
        y = moving_average(np.asarray(y, dtype=np.float64), smooth_window)
        ax.plot(_episode_axis(y.size), y, label=label)
    ax.set_title(title)
    ax.set_xlabel("episode")
    ax.set_ylabel(ylabel)
    ax.grid(True)
    ax.legend()
    fig.tight_layout()
    fig.savefig(out_path)
    plt.close(fig)
    return out_path


def save_value_map(
    values: np.ndarray,
    *,
    title: str,
    out_path: str | Path,
    goals: Iterable[Goal] = (),
    walls: Iterable[Position] = (),
) -> Path:
    """
    Save the (rows, cols) value projection as an annotated heatmap.

    Goal cells are marked "G", walls "#"; every other cell shows its value.

    :param values: Value map, shape (rows, cols).
        :type values: np.ndarray
    :param title: Plot title.
        :type title: str
    :param out_path: Image file to write.
        :type out_path: str | Path
    :param goals: Goal cells to mark.
        :type goals: Iterable[Goal]
    :param walls: Wall cells to mark.
        :type walls: Iterable[Position]

    :return: Path written.
        :rtype: Path
    """
    out_path = _prepare(out_path)
    values = np.asarray(values, dtype=np.float64)
    rows, cols = values.shape

    marks: dict[tuple[int, int], str] = {(w.row, w.col): "#" for w in walls}
    marks.update({(g.row, g.col): "G" for g in goals})

    fig, ax = plt.subplots(figsize=(1 + 0.8 * cols, 1 + 0.8 * rows))
    image = ax.imshow(values, cmap="viridis")
    fig.colorbar(image, ax=ax)
    for r in range(rows):
        for c in range(cols):
            text = marks.get((r, c), f"{values[r, c]:.2f}")
            ax.text(c, r, text, ha="center", va="center", color="white", fontsize=8)
    ax.set_xticks(range(cols))
    ax.set_yticks(range(rows))
    ax.set_title(title)
    fig.tight_layout()
    fig.savefig(out_path)
    plt.close(fig)
    return out_path
