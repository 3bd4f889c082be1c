import numpy as np
import pytest
import torch

from zapzap.config import TrainingConfig
from zapzap.network import ACTION_DIMS, DecisionType, FlatQNetwork
from zapzap.replay import Transition
from zapzap.trainer import SharedWeights, Trainer


def _config(**overrides):
    cfg = TrainingConfig(buffer_capacity=2000, batch_size=16, min_batch_size=8,
                         target_update_freq=2, num_workers=1)
    for k, v in overrides.items():
        setattr(cfg, k, v)
    return cfg


def _fill(trainer, per_type=200, seed=0):
    rng = np.random.default_rng(seed)
    transitions = []
    for dt in DecisionType:
        for _ in range(per_type):
            transitions.append(Transition(
                state=rng.random(45, dtype=np.float32),
                action=int(rng.integers(ACTION_DIMS[dt])),
                reward=float(rng.choice([1.0, -0.25])),
                next_state=rng.random(45, dtype=np.float32),
                done=bool(rng.random() < 0.3),
                decision_type=int(dt),
            ))
    trainer.add_transitions(transitions)


def _params_equal(a, b):
    return all(torch.equal(x, y) for x, y in zip(a.parameters(), b.parameters()))


def test_adaptive_batch_size():
    trainer = Trainer(_config(batch_size=64), seed=0)
    assert trainer.batch_size_for(DecisionType.PLAY_TYPE) == 64
    assert trainer.batch_size_for(DecisionType.DRAW_SOURCE) == 64
    assert trainer.batch_size_for(DecisionType.HAND_SIZE) == 16
    small = Trainer(_config(batch_size=16), seed=0)
    assert small.batch_size_for(DecisionType.ZAPZAP) == 8, "floor of min_batch_size"


def test_empty_buffer_skips_training():
    trainer = Trainer(_config(), seed=0)
    assert trainer.train_step(DecisionType.PLAY_TYPE) is None
    assert trainer.train_iteration() is None
    assert trainer.state.steps == 0


def test_train_step_updates_online_and_syncs_target():
    trainer = Trainer(_config(), seed=0)
    _fill(trainer)
    before = trainer.online.export_flat_weights()

    loss = trainer.train_step(DecisionType.PLAY_TYPE)
    assert loss is not None and np.isfinite(loss)
    assert trainer.state.steps == 1
    assert not np.allclose(before, trainer.online.export_flat_weights()), "weights should move"
    assert not _params_equal(trainer.online, trainer.target), "target lags until the sync step"

    trainer.train_step(DecisionType.DRAW_SOURCE)
    assert trainer.state.steps == 2
    assert _params_equal(trainer.online, trainer.target), "hard sync every target_update_freq steps"


def test_soft_update_moves_target_partway():
    trainer = Trainer(_config(soft_update=True, tau=0.5), seed=1)
    _fill(trainer)
    target_before = [p.clone() for p in trainer.target.parameters()]
    trainer.train_step(DecisionType.PLAY_TYPE)
    moved = any(not torch.equal(a, b) for a, b in zip(target_before, trainer.target.parameters()))
    assert moved, "soft update should change the target"
    assert not _params_equal(trainer.online, trainer.target)


def test_train_iteration_covers_every_type():
    trainer = Trainer(_config(target_update_freq=1000), seed=2)
    _fill(trainer)
    loss = trainer.train_iteration()
    assert loss is not None
    assert trainer.state.steps == 4, "one step per decision type"
    assert trainer.state.avg_loss > 0.0


def test_priorities_follow_td_errors():
    trainer = Trainer(_config(), seed=3)
    _fill(trainer)
    before = trainer.buffer.tree.total()
    trainer.train_step(DecisionType.PLAY_TYPE)
    assert trainer.buffer.tree.total() != before


def test_export_is_an_atomic_copy():
    trainer = Trainer(_config(), seed=4)
    version = trainer.shared.version
    exported = trainer.export_weights()
    assert trainer.shared.version == version + 1
    snap = trainer.shared.snapshot()
    assert np.array_equal(snap, exported)
    exported[:] = 0.0
    assert not np.array_equal(snap, exported), "the published copy is independent"
    with pytest.raises(ValueError):
        snap[0] = 1.0

    flat = FlatQNetwork.from_flat_weights(snap)
    x = np.random.default_rng(0).random(45, dtype=np.float32)
    assert np.allclose(flat.predict(x, DecisionType.ZAPZAP), trainer.online.predict(x, DecisionType.ZAPZAP),
                       atol=1e-4)


def test_shared_weights():
    shared = SharedWeights()
    assert shared.snapshot() is None and shared.version == 0
    src = np.arange(5, dtype=np.float32)
    shared.publish(src)
    src[0] = 99.0
    assert shared.snapshot()[0] == 0.0


def test_stop_flag():
    trainer = Trainer(_config(), seed=5)
    _fill(trainer)
    assert not trainer.should_stop()
    trainer.request_stop()
    assert trainer.should_stop()
    assert trainer.train_iteration() is None, "no steps after a stop request"


def test_game_bookkeeping():
    trainer = Trainer(_config(epsilon_decay_steps=10), seed=6)
    for won in (True, False, False, True):
        trainer.record_game(won, 1.0 if won else -0.25)
    assert trainer.state.games_played == 4
    assert trainer.state.win_rate == 0.5
    assert trainer.state.avg_reward == pytest.approx(0.375)
    trainer.update_schedules()
    assert trainer.state.epsilon == pytest.approx(trainer.config.epsilon_at(4))
    assert trainer.buffer.beta == pytest.approx(trainer.config.beta_at(4))


def test_save_and_load(tmp_path):
    trainer = Trainer(_config(), seed=7)
    _fill(trainer)
    trainer.train_iteration()
    trainer.record_game(True, 1.0)
    path = str(tmp_path / "ckpt.pt")
    trainer.save(path)

    restored = Trainer.from_checkpoint(path, seed=99)
    assert restored.config == trainer.config
    assert restored.state.steps == trainer.state.steps
    assert restored.state.games_played == 1
    assert np.array_equal(restored.online.export_flat_weights(), trainer.online.export_flat_weights())
    assert np.array_equal(restored.shared.snapshot(), trainer.online.export_flat_weights())

    weights_path = str(tmp_path / "weights.npy")
    trainer.save_weights(weights_path)
    assert (tmp_path / "weights.npy.json").exists()
