from __future__ import annotations
import numpy as np


def normalize_seed(seed: int) -> int:
    """
    Map a user seed to the seed actually used for training.

    0 means "use the default" and becomes 1, so that seed=0 and seed=1 give
    the same (non-degenerate) generator state.

    :param seed: User-provided seed.
        :type seed: int

    :return: Effective seed.
        :rtype: int
    """
    seed = int(seed)
    return 1 if seed == 0 else seed


def make_rng(seed: int) -> np.random.Generator:
    """
    Create the single generator a training run draws from.

    Every random decision of a run (exploration, tie-breaking, slip tiles,
    random starts, goal reshuffles) goes through this generator, which is what
    makes a run reproducible for a fixed seed.

    :param seed: User-provided seed (0 is normalized to 1).
        :type seed: int

    :return: Seeded NumPy generator.
        :rtype: np.random.Generator
    """
    return np.random.default_rng(abs(normalize_seed(seed)))

