# zapzap/network.py
"""
Dueling Q-network with two interchangeable backends.

DuelingQNetwork is the torch module the trainer optimizes. FlatQNetwork is a
numpy copy that runs inference out of one flat float32 vector with
preallocated activation buffers; self-play workers use it. Both lay their
parameters out the same way, so export_flat_weights() of one can be fed to
import_flat_weights() of the other:

    shared1 W, b   (input -> hidden)
    shared2 W, b   (hidden -> value_hidden)
    value1  W, b   (value_hidden -> advantage_hidden)
    value2  W, b   (advantage_hidden -> 1)
    for HandSize, ZapZap, PlayType, DrawSource:
        head1 W, b (value_hidden -> advantage_hidden)
        head2 W, b (advantage_hidden -> action_dim)

Every W is stored [out, in] row-major, the nn.Linear convention.
Q(s, a) = V(s) + A(s, a) - mean_b A(s, b), per decision type.
"""
from __future__ import annotations

import logging
from enum import IntEnum
from typing import List, Optional, Tuple

import numpy as np
import torch
import torch.nn as nn

from zapzap.features import FEATURE_DIM

logger = logging.getLogger(__name__)


class DecisionType(IntEnum):
    HAND_SIZE = 0
    ZAPZAP = 1
    PLAY_TYPE = 2
    DRAW_SOURCE = 3


ACTION_DIMS: Tuple[int, ...] = (7, 2, 5, 2)
MAX_ACTIONS = max(ACTION_DIMS)

HIDDEN_DIM = 128
VALUE_HIDDEN = 64
ADVANTAGE_HIDDEN = 32


def layer_shapes(input_dim: int = FEATURE_DIM, hidden_dim: int = HIDDEN_DIM,
                 value_hidden: int = VALUE_HIDDEN,
                 advantage_hidden: int = ADVANTAGE_HIDDEN) -> List[Tuple[int, int]]:
    """(out, in) of every dense layer, in flat-weight order."""
    shapes = [
        (hidden_dim, input_dim),
        (value_hidden, hidden_dim),
        (advantage_hidden, value_hidden),
        (1, advantage_hidden),
    ]
    for dim in ACTION_DIMS:
        shapes.append((advantage_hidden, value_hidden))
        shapes.append((dim, advantage_hidden))
    return shapes


def flat_weight_count(**dims) -> int:
    return sum(o * i + o for o, i in layer_shapes(**dims))


def fit_flat_weights(weights, expected: int, who: str) -> np.ndarray:
    """Truncate or zero-fill `weights` to `expected` values, warning when they differ."""
    vec = np.asarray(weights, dtype=np.float32).ravel()
    if vec.size == expected:
        return vec
    logger.warning(
        "%s: got %d weights, expected %d; %s. Predictions are no longer those of the exported model.",
        who, vec.size, expected,
        "truncating" if vec.size > expected else "zero-filling the remainder",
    )
    out = np.zeros(expected, dtype=np.float32)
    n = min(expected, vec.size)
    out[:n] = vec[:n]
    return out


class QNetworkBase:
    """Action selection shared by both backends. Subclasses provide predict()."""

    def predict(self, features: np.ndarray, decision_type: DecisionType) -> np.ndarray:
        raise NotImplementedError

    def greedy_action(self, features: np.ndarray, decision_type: DecisionType) -> int:
        # np.argmax returns the first index on ties
        return int(np.argmax(self.predict(features, decision_type)))

    def epsilon_greedy_action(self, features: np.ndarray, decision_type: DecisionType,
                              epsilon: float, rng: np.random.Generator) -> int:
        if rng.random() < epsilon:
            return int(rng.integers(ACTION_DIMS[decision_type]))
        return self.greedy_action(features, decision_type)


# =============================================================================
# TRAINABLE (torch)
# =============================================================================

class DuelingQNetwork(nn.Module, QNetworkBase):
    def __init__(self, input_dim: int = FEATURE_DIM, hidden_dim: int = HIDDEN_DIM,
                 value_hidden: int = VALUE_HIDDEN, advantage_hidden: int = ADVANTAGE_HIDDEN):
        super().__init__()
        self.dims = dict(input_dim=input_dim, hidden_dim=hidden_dim,
                         value_hidden=value_hidden, advantage_hidden=advantage_hidden)
        self.shared = nn.Sequential(
            nn.Linear(input_dim, hidden_dim),
            nn.ReLU(),
            nn.Linear(hidden_dim, value_hidden),
            nn.ReLU(),
        )
        self.value = nn.Sequential(
            nn.Linear(value_hidden, advantage_hidden),
            nn.ReLU(),
            nn.Linear(advantage_hidden, 1),
        )
        self.heads = nn.ModuleList([
            nn.Sequential(
                nn.Linear(value_hidden, advantage_hidden),
                nn.ReLU(),
                nn.Linear(advantage_hidden, dim),
            )
            for dim in ACTION_DIMS
        ])

    def forward(self, x: torch.Tensor, decision_type: DecisionType) -> torch.Tensor:
        h = self.shared(x)
        v = self.value(h)
        a = self.heads[int(decision_type)](h)
        return v + a - a.mean(dim=-1, keepdim=True)

    def linear_layers(self) -> List[nn.Linear]:
        layers = [self.shared[0], self.shared[2], self.value[0], self.value[2]]
        for head in self.heads:
            layers.extend([head[0], head[2]])
        return layers

    def predict(self, features: np.ndarray, decision_type: DecisionType) -> np.ndarray:
        x = torch.as_tensor(np.asarray(features, dtype=np.float32))
        with torch.no_grad():
            q = self.forward(x, decision_type)
        return q.numpy()

    def export_flat_weights(self) -> np.ndarray:
        chunks = []
        with torch.no_grad():
            for layer in self.linear_layers():
                chunks.append(layer.weight.detach().cpu().reshape(-1))
                chunks.append(layer.bias.detach().cpu().reshape(-1))
        return torch.cat(chunks).numpy().astype(np.float32)

    def import_flat_weights(self, weights) -> None:
        vec = fit_flat_weights(weights, flat_weight_count(**self.dims), "DuelingQNetwork")
        offset = 0
        with torch.no_grad():
            for layer in self.linear_layers():
                for param in (layer.weight, layer.bias):
                    n = param.numel()
                    chunk = torch.from_numpy(vec[offset:offset + n].copy()).view_as(param)
                    param.copy_(chunk)
                    offset += n


# =============================================================================
# INFERENCE (numpy, flat buffer)
# =============================================================================

class FlatQNetwork(QNetworkBase):
    """
    Inference copy of DuelingQNetwork. All parameters live in `self.weights`;
    the per-layer matrices are views into it, so an import is a single
    in-place copy. predict() writes into preallocated buffers and returns
    the buffer of the requested head, which the next call overwrites.
    """

    def __init__(self, input_dim: int = FEATURE_DIM, hidden_dim: int = HIDDEN_DIM,
                 value_hidden: int = VALUE_HIDDEN, advantage_hidden: int = ADVANTAGE_HIDDEN,
                 seed: Optional[int] = None):
        self.dims = dict(input_dim=input_dim, hidden_dim=hidden_dim,
                         value_hidden=value_hidden, advantage_hidden=advantage_hidden)
        self.weights = np.zeros(flat_weight_count(**self.dims), dtype=np.float32)

        self._layers: List[Tuple[np.ndarray, np.ndarray]] = []
        offset = 0
        for out_dim, in_dim in layer_shapes(**self.dims):
            w = self.weights[offset:offset + out_dim * in_dim].reshape(out_dim, in_dim)
            offset += out_dim * in_dim
            b = self.weights[offset:offset + out_dim]
            offset += out_dim
            self._layers.append((w, b))

        self._h1 = np.zeros(hidden_dim, dtype=np.float32)
        self._h2 = np.zeros(value_hidden, dtype=np.float32)
        self._hv = np.zeros(advantage_hidden, dtype=np.float32)
        self._v = np.zeros(1, dtype=np.float32)
        self._ha = np.zeros(advantage_hidden, dtype=np.float32)
        self._q = [np.zeros(dim, dtype=np.float32) for dim in ACTION_DIMS]

        if seed is not None:
            self.randomize(seed)

    def randomize(self, seed: int):
        """He-style uniform init, zero biases."""
        rng = np.random.default_rng(seed)
        for w, b in self._layers:
            scale = np.sqrt(2.0 / w.shape[1])
            w[...] = rng.uniform(-1.0, 1.0, size=w.shape).astype(np.float32) * scale
            b[...] = 0.0

    @staticmethod
    def _dense(w: np.ndarray, b: np.ndarray, x: np.ndarray, out: np.ndarray, relu: bool):
        np.matmul(w, x, out=out)
        out += b
        if relu:
            np.maximum(out, 0.0, out=out)

    def predict(self, features: np.ndarray, decision_type: DecisionType) -> np.ndarray:
        x = np.ascontiguousarray(features, dtype=np.float32)
        dt = int(decision_type)
        layers = self._layers
        self._dense(*layers[0], x, self._h1, relu=True)
        self._dense(*layers[1], self._h1, self._h2, relu=True)
        self._dense(*layers[2], self._h2, self._hv, relu=True)
        self._dense(*layers[3], self._hv, self._v, relu=False)
        q = self._q[dt]
        self._dense(*layers[4 + 2 * dt], self._h2, self._ha, relu=True)
        self._dense(*layers[5 + 2 * dt], self._ha, q, relu=False)
        q -= q.mean()
        q += self._v[0]
        return q

    def export_flat_weights(self) -> np.ndarray:
        return self.weights.copy()

    def import_flat_weights(self, weights) -> None:
        self.weights[:] = fit_flat_weights(weights, self.weights.size, "FlatQNetwork")

    @classmethod
    def from_flat_weights(cls, weights, **dims) -> "FlatQNetwork":
        net = cls(**dims)
        net.import_flat_weights(weights)
        return net


def make_network(backend: str = "torch", seed: Optional[int] = None, **dims) -> QNetworkBase:
    if backend == "torch":
        if seed is not None:
            torch.manual_seed(seed)
        return DuelingQNetwork(**dims)
    if backend == "flat":
        return FlatQNetwork(seed=seed, **dims)
    raise ValueError(f"Unknown network backend: {backend}")
