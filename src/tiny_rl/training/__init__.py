"""
Training: configuration and the snapshot-streaming Trainer.
"""

from .config import TrainerConfig, SlipSpec, scaled_step_penalty
from .trainer import (
    STATUS_CANCELLED,
    STATUS_DONE,
    STATUS_EPISODE_COMPLETE,
    STATUS_RUNNING,
    CancellationToken,
    Snapshot,
    SnapshotStream,
    Trainer,
)

__all__ = [
    "TrainerConfig",
    "SlipSpec",
    "scaled_step_penalty",
    "STATUS_CANCELLED",
    "STATUS_DONE",
    "STATUS_EPISODE_COMPLETE",
    "STATUS_RUNNING",
    "CancellationToken",
    "Snapshot",
    "SnapshotStream",
    "Trainer",
]
