import threading

import numpy as np
import pytest

from tiny_rl import CancellationToken, Trainer, TrainerConfig
from tiny_rl.tabular.gridworld import Goal, Position
from tiny_rl.training import STATUS_CANCELLED, STATUS_DONE, STATUS_EPISODE_COMPLETE, STATUS_RUNNING, SlipSpec


def _scenario_config(algorithm: str) -> TrainerConfig:
    return TrainerConfig(
        episodes=50,
        seed=7,
        algorithm=algorithm,
        rows=4,
        cols=4,
        goals=(Goal(0, 3, 1.0),),
        epsilon=0.5,
        epsilon_min=0.05,
        epsilon_decay=0.998,
        alpha=0.2,
        gamma=0.9,
        step_penalty=0.02,
    )


def _statuses(snapshots) -> list[str]:
    return [s.status for s in snapshots]


@pytest.mark.parametrize("algorithm", ["montecarlo", "q-learning", "sarsa"])
def test_small_grid_runs_to_completion(algorithm: str) -> None:
    """
    50 episodes on the 4x4 board complete, and at least one of them collects the goal.
    """
    trainer = Trainer(_scenario_config(algorithm))
    snapshots = list(trainer.iter_snapshots())

    last = snapshots[-1]
    assert last.status == STATUS_DONE
    assert last.episodes_completed == 50
    assert last.success_count >= 1
    assert _statuses(snapshots).count(STATUS_DONE) == 1
    assert _statuses(snapshots).count(STATUS_EPISODE_COMPLETE) == 50


def test_snapshot_counters_are_consistent() -> None:
    trainer = Trainer(_scenario_config("q-learning"))
    snapshots = list(trainer.iter_snapshots())
    last = snapshots[-1]

    steps = [s.step for s in snapshots]
    assert steps == sorted(steps)
    assert _statuses(snapshots).count(STATUS_RUNNING) == last.total_steps == last.step

    completed = [s for s in snapshots if s.status == STATUS_EPISODE_COMPLETE]
    assert [s.episode for s in completed] == list(range(1, 51))
    assert np.isclose(sum(s.episode_reward for s in completed), last.total_reward)
    assert sum(s.episode_steps for s in completed) == last.total_steps


def test_goal_layout_is_reshuffled_on_interval() -> None:
    """
    With auto-placed goals, episodes 1, 6 and 11 each get a new layout different from the previous one.
    """
    cfg = TrainerConfig(
        episodes=12, seed=3, rows=5, cols=5, goal_count=3, goal_interval=5, algorithm="q-learning"
    )
    trainer = Trainer(cfg)
    layouts = [trainer.config.goals]

    by_episode = {}
    for s in trainer.iter_snapshots():
        if s.status == STATUS_EPISODE_COMPLETE:
            by_episode[s.episode] = s.config.goals

    for episode in (1, 6, 11):
        layouts.append(by_episode[episode])
    for prev, curr in zip(layouts, layouts[1:]):
        assert len(curr) == 3
        assert set(curr) != set(prev)

    # no reshuffle between interval boundaries
    assert by_episode[2] == by_episode[1]
    assert by_episode[5] == by_episode[1]
    assert by_episode[7] == by_episode[6]


def test_wall_in_front_of_agent() -> None:
    """
    A wall directly above the start cell: stepping into it keeps the position and costs a step.
    """
    cfg = TrainerConfig(episodes=1, walls=(Position(2, 0),), goals=(Goal(0, 3, 1.0),))
    trainer = Trainer(cfg)
    env = trainer.env
    env.reset()

    penalty = trainer.base_step_penalty
    reward, done = env.step(0)
    assert env.position == Position(3, 0)
    assert env.steps_taken == 1
    assert np.isclose(reward, -penalty)
    assert not done


def test_cancel_mid_episode_gives_exactly_one_cancelled_snapshot() -> None:
    cfg = TrainerConfig(episodes=5, seed=1)
    trainer = Trainer(cfg)
    token = CancellationToken()

    snapshots = []
    for s in trainer.iter_snapshots(token):
        snapshots.append(s)
        if len(snapshots) == 3:
            token.cancel()

    statuses = _statuses(snapshots)
    assert statuses.count(STATUS_CANCELLED) == 1
    assert statuses[-1] == STATUS_CANCELLED
    assert STATUS_DONE not in statuses
    assert len(snapshots) == 4


def test_cancel_before_start() -> None:
    token = CancellationToken()
    token.cancel()
    snapshots = list(Trainer(TrainerConfig(episodes=3)).iter_snapshots(token))
    assert _statuses(snapshots) == [STATUS_CANCELLED]
    assert snapshots[0].episode == 1


def test_cancel_interrupts_step_delay() -> None:
    """
    A cancel arriving during the per-step pause ends the run without waiting out the whole schedule.
    """
    cfg = TrainerConfig(episodes=100, step_delay_ms=20)
    trainer = Trainer(cfg)
    token = CancellationToken()
    timer = threading.Timer(0.2, token.cancel)
    timer.start()
    try:
        snapshots = list(trainer.iter_snapshots(token))
    finally:
        timer.cancel()

    statuses = _statuses(snapshots)
    assert statuses[-1] == STATUS_CANCELLED
    assert statuses.count(STATUS_CANCELLED) == 1
    assert STATUS_DONE not in statuses


def test_background_stream_cancel() -> None:
    trainer = Trainer(TrainerConfig(episodes=20, seed=5))
    stream = trainer.run()

    snapshots = []
    for s in stream:
        snapshots.append(s)
        if len(snapshots) == 2:
            stream.cancel()

    statuses = _statuses(snapshots)
    assert statuses.count(STATUS_CANCELLED) == 1
    assert statuses[-1] == STATUS_CANCELLED
    assert STATUS_DONE not in statuses


def test_background_stream_matches_foreground_run() -> None:
    cfg = TrainerConfig(episodes=5, seed=11, algorithm="sarsa")
    foreground = list(Trainer(cfg).iter_snapshots())
    with Trainer(cfg).run() as stream:
        background = list(stream)

    def key(s):
        return s.step, s.position, s.status

    assert [key(s) for s in background] == [key(s) for s in foreground]


def test_background_stream_reraises_producer_error() -> None:
    trainer = Trainer(TrainerConfig(episodes=2, algorithm="q-learning"))

    def broken(*args, **kwargs):
        raise RuntimeError("boom")

    trainer.update_q_learning = broken
    with pytest.raises(RuntimeError, match="boom"):
        list(trainer.run())


def test_no_episodes_gives_empty_stream() -> None:
    assert list(Trainer(TrainerConfig(episodes=0)).iter_snapshots()) == []
    assert list(Trainer(TrainerConfig(episodes=-3)).run()) == []


def test_same_config_same_run() -> None:
    """
    Every random draw (exploration, slips, random starts, goal reshuffles) comes from the seeded generator.
    """
    cfg = TrainerConfig(
        episodes=15,
        seed=42,
        rows=5,
        cols=5,
        goal_count=2,
        goal_interval=4,
        random_start=True,
        slips=(SlipSpec(2, 2, 0.5), SlipSpec(1, 3, 0.3)),
        walls=(Position(3, 3),),
    )

    def trajectory(trainer):
        out = []
        for s in trainer.iter_snapshots():
            out.append((s.step, s.episode, s.episode_steps, s.episode_reward, s.position, s.goals, s.status))
        return out, trainer.value_map()

    first, first_values = trajectory(Trainer(cfg))
    second, second_values = trajectory(Trainer(cfg))
    assert first == second
    assert np.array_equal(first_values, second_values)


def test_positions_stay_on_the_board() -> None:
    cfg = TrainerConfig(episodes=10, seed=9, rows=3, cols=6, random_start=True, slips=(SlipSpec(1, 1, 1.0),))
    for s in Trainer(cfg).iter_snapshots():
        assert 0 <= s.position.row < 3
        assert 0 <= s.position.col < 6
        assert s.value_map.shape == (3, 6)


def test_success_means_every_goal_collected() -> None:
    cfg = TrainerConfig(episodes=30, seed=2, goals=(Goal(0, 3, 1.0), Goal(1, 1, 1.0)))
    previous = 0
    for s in Trainer(cfg).iter_snapshots():
        if s.status != STATUS_EPISODE_COMPLETE:
            continue
        gained = s.success_count - previous
        assert gained == (1 if len(s.goals) == 0 else 0)
        previous = s.success_count


def test_goals_only_shrink_within_an_episode() -> None:
    template = (Goal(0, 3, 1.0), Goal(1, 1, 1.0), Goal(2, 2, 1.0))
    cfg = TrainerConfig(episodes=20, seed=4, goals=template, algorithm="q-learning")

    sizes: dict[int, list[int]] = {}
    for s in Trainer(cfg).iter_snapshots():
        if s.status == STATUS_RUNNING:
            assert set(s.goals) <= set(template)
            sizes.setdefault(s.episode, []).append(len(s.goals))

    for episode_sizes in sizes.values():
        assert episode_sizes == sorted(episode_sizes, reverse=True)
        assert episode_sizes[0] >= len(template) - 1


def test_epsilon_decays_to_its_floor() -> None:
    cfg = TrainerConfig(episodes=30, epsilon=0.5, epsilon_min=0.05, epsilon_decay=0.9)
    trainer = Trainer(cfg)
    eps = [s.config.epsilon for s in trainer.iter_snapshots() if s.status == STATUS_EPISODE_COMPLETE]

    assert eps[0] == 0.5
    assert all(a >= b for a, b in zip(eps, eps[1:]))
    assert min(eps) >= 0.05
    assert eps[-1] == 0.05


def test_no_decay_keeps_epsilon() -> None:
    trainer = Trainer(TrainerConfig(episodes=5, epsilon=0.3, epsilon_decay=0.0))
    list(trainer.iter_snapshots())
    assert trainer.epsilon == 0.3
    assert trainer.policy.epsilon == 0.3


def test_effective_config_reports_scaled_penalty_and_goals() -> None:
    trainer = Trainer(TrainerConfig(rows=10, cols=10, step_penalty=0.3))
    assert np.isclose(trainer.config.step_penalty, 0.1)
    assert np.isclose(trainer.env.step_penalty, 0.1)
    assert trainer.config.goals == (Goal(0, 9, 7.2),)


def test_warmup_penalty_is_applied_raw() -> None:
    cfg = TrainerConfig(rows=10, cols=10, step_penalty=0.3, warmup_episodes=2, warmup_step_penalty=0.5)
    trainer = Trainer(cfg)
    trainer.apply_warmup_penalty(1)
    assert trainer.env.step_penalty == 0.5
    trainer.apply_warmup_penalty(2)
    assert trainer.env.step_penalty == 0.5
    trainer.apply_warmup_penalty(3)
    assert np.isclose(trainer.env.step_penalty, 0.1)


def test_state_value_mode_with_softmax() -> None:
    cfg = TrainerConfig(
        episodes=20, seed=3, state_values=True, exploration="softmax", feature_thresholds=(1.0, 3.0)
    )
    trainer = Trainer(cfg)
    assert trainer.qvalues is None
    assert trainer.values is not None

    snapshots = list(trainer.iter_snapshots())
    assert snapshots[-1].status == STATUS_DONE
    assert snapshots[-1].value_map.shape == (4, 4)
    assert np.any(trainer.values.data != 0)


def test_softmax_temperature_anneals_over_step_budget() -> None:
    cfg = TrainerConfig(
        state_values=True, exploration="softmax", softmax_temperature=2.0, softmax_min_temperature=0.5
    )
    trainer = Trainer(cfg)
    budget = trainer.env.max_steps
    assert trainer.softmax_temperature(0) == 2.0
    assert np.isclose(trainer.softmax_temperature(budget // 2), 2.0 - 1.5 * (budget // 2) / budget)
    assert trainer.softmax_temperature(budget) == 0.5
    assert trainer.softmax_temperature(budget * 3) == 0.5


def test_value_map_is_read_only() -> None:
    trainer = Trainer(TrainerConfig(episodes=2))
    snapshot = next(iter(trainer.iter_snapshots()))
    with pytest.raises(ValueError):
        snapshot.value_map[0, 0] = 1.0


def test_trace_and_dump_print_to_stdout(capsys) -> None:
    cfg = TrainerConfig(episodes=2, trace=True, dump_trajectory=True)
    list(Trainer(cfg).iter_snapshots())
    out = capsys.readouterr().out
    assert out.count("trajectory (episode 1)") == 1
    assert "visit heatmap (episode 1)" in out
    assert "visit heatmap (episode 2)" in out
