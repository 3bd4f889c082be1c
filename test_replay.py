import numpy as np

from zapzap.replay import PrioritizedReplayBuffer, Transition


def _transition(decision_type, action=0, reward=0.0):
    rng = np.random.default_rng(decision_type * 1000 + action)
    return Transition(
        state=rng.random(45, dtype=np.float32),
        action=action,
        reward=reward,
        next_state=rng.random(45, dtype=np.float32),
        done=False,
        decision_type=decision_type,
    )


def _buffer(per_type=50, capacity=1000, types=(0, 1, 2, 3)):
    buf = PrioritizedReplayBuffer(capacity, seed=0)
    for dt in types:
        buf.push_many(_transition(dt, action=i % 2) for i in range(per_type))
    return buf


def test_sample_returns_requested_type():
    buf = _buffer()
    assert len(buf) == 200
    batch = buf.sample(16, 2)
    assert batch is not None and len(batch) == 16
    assert batch.states.shape == (16, 45) and batch.states.dtype == np.float32
    assert batch.actions.dtype == np.int64
    assert all(buf.data[i].decision_type == 2 for i in batch.indices)


def test_uniform_priorities_give_unit_weights():
    batch = _buffer().sample(16, 0)
    assert np.all(batch.weights == 1.0), "equal priorities weigh every sample at 1"


def test_weights_never_exceed_one():
    buf = _buffer()
    batch = buf.sample(32, 3)
    td = np.linspace(0.0, 5.0, len(batch))
    buf.update_priorities(batch.indices, td)
    assert buf.max_priority == 5.0 + buf.epsilon
    for dt in range(4):
        b = buf.sample(16, dt)
        assert b is not None
        assert np.all(b.weights <= 1.0) and np.all(b.weights > 0.0)


def test_lowest_priority_samples_weigh_one():
    buf = _buffer(per_type=10, types=(1,))
    buf.update_priorities([3], [5.0])
    batch = buf.sample(8, 1)
    assert any(i != 3 for i in batch.indices)
    for i, w in zip(batch.indices, batch.weights):
        if i == 3:
            assert w < 1.0, "frequently drawn samples are down-weighted"
        else:
            assert np.isclose(w, 1.0), "the least likely sample keeps the full weight"


def test_updated_priority_matches_td_error():
    buf = _buffer(per_type=10, types=(1,))
    buf.update_priorities([3], [0.49])
    expected = (0.49 + buf.epsilon) ** buf.alpha
    assert np.isclose(buf.tree.get_priority(3), expected)


def test_short_or_rare_returns_none():
    buf = _buffer(per_type=100, types=(2,))
    assert buf.sample(8, 0) is None, "no HandSize transitions to draw"
    assert _buffer(per_type=3).sample(64, 2) is None, "buffer smaller than the batch"
    assert buf.sample(0, 2) is None


def test_counts_and_clear():
    buf = _buffer(per_type=5, types=(0, 2, 2))
    assert buf.count_by_decision_type() == {0: 5, 2: 10}
    buf.clear()
    assert len(buf) == 0 and buf.count_by_decision_type() == {}


def test_capacity_wraps():
    buf = PrioritizedReplayBuffer(8, seed=1)
    for i in range(20):
        buf.push(_transition(0, action=i))
    assert len(buf) == 8
    assert sorted(t.action for t in buf.data) == list(range(12, 20)), "oldest entries are replaced"
