import logging

import numpy as np
import torch

from zapzap.features import FEATURE_DIM
from zapzap.network import (
    ACTION_DIMS,
    DecisionType,
    DuelingQNetwork,
    FlatQNetwork,
    flat_weight_count,
    layer_shapes,
    make_network,
)


def test_parameter_count():
    assert flat_weight_count() == 25105
    torch_net = DuelingQNetwork()
    n = sum(p.numel() for p in torch_net.parameters())
    assert n == 25105, f"torch module has {n} parameters"
    assert FlatQNetwork().weights.size == 25105
    assert layer_shapes()[0] == (128, FEATURE_DIM), "weights are stored [out, in]"


def test_backends_agree():
    torch.manual_seed(0)
    torch_net = DuelingQNetwork()
    flat = FlatQNetwork.from_flat_weights(torch_net.export_flat_weights())
    rng = np.random.default_rng(1)
    for _ in range(20):
        x = rng.random(FEATURE_DIM, dtype=np.float32)
        for dt in DecisionType:
            a = torch_net.predict(x, dt)
            b = flat.predict(x, dt).copy()
            assert a.shape == (ACTION_DIMS[dt],)
            assert np.allclose(a, b, atol=1e-4), f"{dt.name}: {a} vs {b}"


def test_weight_round_trip():
    flat = FlatQNetwork(seed=3)
    torch_net = DuelingQNetwork()
    torch_net.import_flat_weights(flat.export_flat_weights())
    back = torch_net.export_flat_weights()
    assert np.allclose(back, flat.weights, atol=1e-5)

    other = FlatQNetwork()
    other.import_flat_weights(back)
    assert np.allclose(other.weights, flat.weights, atol=1e-5)


def test_dueling_aggregation():
    torch.manual_seed(4)
    net = DuelingQNetwork()
    x = torch.rand(5, FEATURE_DIM)
    h = net.shared(x)
    v = net.value(h)
    a = net.heads[int(DecisionType.PLAY_TYPE)](h)
    q = net(x, DecisionType.PLAY_TYPE)
    assert q.shape == (5, 5)
    assert torch.allclose(q.mean(dim=1, keepdim=True), v, atol=1e-5), "mean Q equals V"
    assert torch.allclose(q - v, a - a.mean(dim=1, keepdim=True), atol=1e-5)


def test_size_mismatch_warns_and_fills(caplog):
    flat = FlatQNetwork()
    with caplog.at_level(logging.WARNING, logger="zapzap.network"):
        flat.import_flat_weights(np.ones(100, dtype=np.float32))
    assert "expected 25105" in caplog.text
    assert flat.weights[:100].sum() == 100 and flat.weights[100:].sum() == 0

    caplog.clear()
    with caplog.at_level(logging.WARNING, logger="zapzap.network"):
        flat.import_flat_weights(np.ones(30000, dtype=np.float32))
    assert "truncating" in caplog.text
    assert flat.weights.sum() == 25105


def test_action_selection():
    flat = FlatQNetwork()  # all zeros: every action ties
    x = np.zeros(FEATURE_DIM, dtype=np.float32)
    assert flat.greedy_action(x, DecisionType.HAND_SIZE) == 0, "ties go to the first action"
    rng = np.random.default_rng(0)
    seen = {flat.epsilon_greedy_action(x, DecisionType.HAND_SIZE, 1.0, rng) for _ in range(200)}
    assert seen <= set(range(7)) and len(seen) > 1, "epsilon 1 explores"


def test_make_network():
    assert isinstance(make_network("torch", seed=1), DuelingQNetwork)
    flat = make_network("flat", seed=1)
    assert isinstance(flat, FlatQNetwork) and np.any(flat.weights != 0)
    try:
        make_network("onnx")
    except ValueError:
        pass
    else:
        raise AssertionError("unknown backend should raise")
