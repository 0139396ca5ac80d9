import math

import numpy as np

from tiny_rl.tabular import DistanceBands3Mapper, DistanceBandsMapper, Goal, GridworldEnv, QTable, ValueTable
from tiny_rl.tabular.features import make_feature_mapper


def _env() -> GridworldEnv:
    return GridworldEnv(rows=4, cols=4, goals=[Goal(0, 3, 1.0)])


def test_three_band_mapper() -> None:
    """
    Distance d to the goal maps to bands: d <= 1 -> 0, d <= 3 -> 1, else 2.
    """
    env = _env()
    mapper = DistanceBands3Mapper()
    assert mapper.num_features(4, 4) == 3
    assert mapper.index(env, 0, 2) == 0
    assert mapper.index(env, 2, 2) == 1
    assert mapper.index(env, 3, 3) == 1
    assert mapper.index(env, 3, 0) == 2
    assert mapper.index(None, 3, 0) == 0


def test_threshold_mapper() -> None:
    """
    Custom thresholds are sorted, and a cell goes to the first threshold >= its distance.
    """
    env = _env()
    mapper = DistanceBandsMapper([3, 1])
    assert mapper.thresholds == (1.0, 3.0)
    assert mapper.num_features(4, 4) == 3
    assert mapper.index(env, 0, 3) == 0
    assert mapper.index(env, 1, 3) == 0
    assert mapper.index(env, 2, 3) == 1
    assert mapper.index(env, 3, 0) == 2


def test_make_feature_mapper_picks_implementation() -> None:
    assert isinstance(make_feature_mapper(None), DistanceBands3Mapper)
    assert isinstance(make_feature_mapper([]), DistanceBands3Mapper)
    assert isinstance(make_feature_mapper([math.nan]), DistanceBands3Mapper)
    assert isinstance(make_feature_mapper([2.0]), DistanceBandsMapper)


def test_value_table_layout_and_clamping() -> None:
    """
    Bands are folded into rows, and out-of-range indices are clamped instead of failing.
    """
    table = ValueTable(rows=2, cols=3, alpha=0.5)
    assert table.data.shape == (6, 3)
    assert table.band_rows == 6

    table.add(-1, 5, 9, 1.5)  # -> row 0, col 2, band 2
    assert table.get(0, 2, 2) == 1.5
    assert table.flat_index(0, 2) == 2
    assert table.flat_index(7, 0) == 3


def test_value_table_projection_takes_max_over_bands() -> None:
    table = ValueTable(rows=2, cols=3)
    table.add(1, 2, 0, 2.0)
    table.add(1, 2, 2, 3.0)
    table.add(0, 0, 1, -1.0)

    projected = table.clone_data()
    assert projected.shape == (2, 3)
    assert projected[1, 2] == 3.0
    assert projected[0, 0] == 0.0  # max(0, -1, 0)


def test_value_table_first_visit_returns() -> None:
    """
    Backward scan: G <- r + gamma * G, only the latest visit of a cell is updated.

        t=2: G = 2               -> V(0,0,0) = 0.5 * 2 = 1.0
        t=1: G = 0 + 0.5 * 2 = 1 -> V(0,1,0) = 0.5
        t=0: (0,0,0) already seen, skipped
    """
    table = ValueTable(rows=2, cols=2, alpha=0.5)
    table.update_returns([(0, 0, 0), (0, 1, 0), (0, 0, 0)], [1.0, 0.0, 2.0], gamma=0.5)
    assert np.isclose(table.get(0, 0, 0), 1.0)
    assert np.isclose(table.get(0, 1, 0), 0.5)

    before = table.data.copy()
    table.update_returns([(1, 1, 0)], [1.0, 2.0], gamma=0.5)  # mismatched lengths
    assert np.array_equal(table.data, before)


def test_q_table_access_and_projection() -> None:
    q = QTable(rows=2, cols=2)
    assert q.Q.shape == (2, 2, 4)

    q.set(1, 0, 2, 3.0)
    q.set(1, 0, 1, -1.0)
    assert q.get(1, 0, 2) == 3.0
    assert q.max_value(1, 0) == 3.0
    assert q.get(9, -3, 7) == q.get(1, 0, 3)

    values = q.state_values()
    assert values.shape == (2, 2)
    assert values[1, 0] == 3.0
    assert values[0, 0] == 0.0


def test_q_table_first_visit_returns() -> None:
    """
    Same backward scan as the value table, keyed by (row, col, action).
    """
    q = QTable(rows=1, cols=2)
    q.update_returns([(0, 0), (0, 1), (0, 0)], [1, 1, 1], [1.0, 0.0, 2.0], alpha=0.5, gamma=0.5)
    assert np.isclose(q.get(0, 0, 1), 1.0)
    assert np.isclose(q.get(0, 1, 1), 0.5)

    q2 = QTable(rows=1, cols=2)
    q2.update_returns([(0, 0), (0, 1), (0, 0)], [2, 1, 1], [1.0, 0.0, 2.0], alpha=0.5, gamma=0.5)
    assert np.isclose(q2.get(0, 0, 2), 0.75)  # t=0 is a different pair: G = 1 + 0.5 * 1
