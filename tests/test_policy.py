import numpy as np

from tiny_rl.tabular import EpsilonGreedyPolicy, Goal, GridworldEnv, QTable, ValueTable
from tiny_rl.tabular.gridworld import DOWN, RIGHT, UP
from tiny_rl.tabular.policy import pick_least_visited


def _env() -> GridworldEnv:
    env = GridworldEnv(rows=4, cols=4, goals=[Goal(0, 3, 1.0)])
    env.reset()
    return env


def test_pick_least_visited_prefers_fewest_visits() -> None:
    rng = np.random.default_rng(0)
    assert pick_least_visited([0, 1, 2], [5, 0, 2], rng) == 1
    for _ in range(20):
        assert pick_least_visited([0, 1, 2], [3, 1, 1], rng) in {1, 2}
    assert pick_least_visited([], [], rng) == 0


def test_greedy_q_action_and_visit_count() -> None:
    """
    With epsilon=0 the policy picks the best action at the current cell and counts the visit there.
    """
    env = _env()
    q = QTable(4, 4)
    q.set(3, 0, RIGHT, 1.0)
    policy = EpsilonGreedyPolicy(np.random.default_rng(0), 4, 4, epsilon=0.0, qvalues=q)

    assert policy.act(env) == RIGHT
    assert policy.q_visits[3, 0, RIGHT] == 1
    assert policy.q_visits.sum() == 1


def test_q_ties_go_to_least_visited_action() -> None:
    env = _env()
    policy = EpsilonGreedyPolicy(np.random.default_rng(0), 4, 4, epsilon=0.0, qvalues=QTable(4, 4))
    policy.q_visits[3, 0, :] = [2, 2, 0, 2]
    assert policy.act(env) == DOWN

    policy.reset_visits()
    assert policy.q_visits.sum() == 0
    assert policy.state_visits.sum() == 0


def test_greedy_value_action_scores_successors() -> None:
    """
    In value mode the policy looks at V of the successor cell at its distance band.
    From (3,0) the cell above, (2,0), is 5 steps from the goal -> band 2.
    """
    env = _env()
    values = ValueTable(4, 4)
    values.add(2, 0, 2, 1.0)
    policy = EpsilonGreedyPolicy(np.random.default_rng(0), 4, 4, epsilon=0.0, values=values)

    assert policy.act(env) == UP
    assert policy.state_visits[2, 0] == 1


def test_epsilon_one_explores_all_actions() -> None:
    env = _env()
    q = QTable(4, 4)
    q.set(3, 0, RIGHT, 10.0)
    policy = EpsilonGreedyPolicy(np.random.default_rng(1), 4, 4, epsilon=1.0, qvalues=q)
    chosen = {policy.act(env) for _ in range(200)}
    assert chosen == {0, 1, 2, 3}


def test_set_epsilon_is_clamped() -> None:
    policy = EpsilonGreedyPolicy(np.random.default_rng(0), 2, 2, epsilon=3.0, qvalues=QTable(2, 2))
    assert policy.epsilon == 1.0
    policy.set_epsilon(-0.5)
    assert policy.epsilon == 0.0


def test_softmax_prefers_high_value_successor() -> None:
    env = _env()
    values = ValueTable(4, 4)
    values.add(2, 0, 2, 100.0)
    policy = EpsilonGreedyPolicy(np.random.default_rng(0), 4, 4, epsilon=0.0, values=values)

    for _ in range(10):
        assert policy.softmax_action(env, temperature=1.0) == UP
    assert policy.state_visits[2, 0] == 10


def test_softmax_falls_back_to_greedy() -> None:
    """
    A non-positive temperature or a missing value store means greedy selection.
    """
    env = _env()
    values = ValueTable(4, 4)
    values.add(2, 0, 2, 0.5)
    policy = EpsilonGreedyPolicy(np.random.default_rng(0), 4, 4, epsilon=0.0, values=values)
    assert policy.softmax_action(env, temperature=0.0) == UP

    no_store = EpsilonGreedyPolicy(np.random.default_rng(0), 4, 4, epsilon=0.0, qvalues=QTable(4, 4))
    assert no_store.softmax_action(env, temperature=1.0) in {0, 1, 2, 3}
