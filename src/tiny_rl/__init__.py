"""
Tabular reinforcement learning on a small gridworld.

Includes:
- a gridworld with walls, slip tiles and multiple collectible goals
- tabular state-value / action-value stores and an ε-greedy policy
- a Trainer for Monte Carlo control, Q-learning and SARSA that streams Snapshots
"""

from .training import CancellationToken, Snapshot, SnapshotStream, Trainer, TrainerConfig

__all__ = [
    "CancellationToken",
    "Snapshot",
    "SnapshotStream",
    "Trainer",
    "TrainerConfig",
]
