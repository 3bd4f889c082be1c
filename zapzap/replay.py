# zapzap/replay.py
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import numpy as np

from zapzap.sum_tree import SumTree


@dataclass
class Transition:
    state: np.ndarray
    action: int
    reward: float
    next_state: np.ndarray
    done: bool
    decision_type: int


@dataclass
class SampledBatch:
    states: np.ndarray        # [B, 45] float32
    actions: np.ndarray       # [B] int64
    rewards: np.ndarray       # [B] float32
    next_states: np.ndarray   # [B, 45] float32
    dones: np.ndarray         # [B] float32
    weights: np.ndarray       # [B] float32 importance-sampling weights
    indices: List[int]

    def __len__(self):
        return len(self.indices)


class PrioritizedReplayBuffer:
    """
    Circular prioritized replay over a SumTree, queried one decision type
    at a time.

    New transitions enter at the largest priority seen so far. sample()
    draws uniformly over the priority mass and rejects transitions of other
    decision types, giving up after batch_size * 20 draws; it returns None
    rather than a short batch. All methods take the buffer lock, so
    simulation workers and the trainer can share one instance.
    """

    def __init__(self, capacity: int, alpha: float = 0.6, beta: float = 0.4,
                 epsilon: float = 0.01, seed: Optional[int] = None):
        self.capacity = capacity
        self.alpha = alpha
        self.beta = beta
        self.epsilon = epsilon
        self.max_priority = 1.0
        self.tree = SumTree(capacity)
        self.data: List[Optional[Transition]] = [None] * capacity
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self.tree)

    def push(self, transition: Transition):
        with self._lock:
            self._push(transition)

    def push_many(self, transitions: Iterable[Transition]):
        with self._lock:
            for t in transitions:
                self._push(t)

    def _push(self, transition: Transition):
        idx = self.tree.add(self.max_priority ** self.alpha)
        self.data[idx] = transition

    def sample(self, batch_size: int, decision_type: int) -> Optional[SampledBatch]:
        with self._lock:
            size = len(self.tree)
            if size < batch_size or batch_size <= 0:
                return None
            total = self.tree.total()
            if total <= 0.0:
                return None

            chosen: List[int] = []
            priorities: List[float] = []
            for _ in range(batch_size * 20):
                idx, priority = self.tree.get(self._rng.uniform(0.0, total))
                t = self.data[idx]
                if t is None or t.decision_type != decision_type or priority <= 0.0:
                    continue
                chosen.append(idx)
                priorities.append(priority)
                if len(chosen) == batch_size:
                    break
            if len(chosen) < batch_size:
                return None

            min_priority = self.tree.min_priority()
            max_weight = (size * (min_priority / total)) ** (-self.beta)
            weights = np.empty(batch_size, dtype=np.float32)
            for i, p in enumerate(priorities):
                w = (size * (p / total)) ** (-self.beta)
                weights[i] = min(w / max_weight, 1.0)

            items = [self.data[i] for i in chosen]
        return SampledBatch(
            states=np.stack([t.state for t in items]).astype(np.float32),
            actions=np.array([t.action for t in items], dtype=np.int64),
            rewards=np.array([t.reward for t in items], dtype=np.float32),
            next_states=np.stack([t.next_state for t in items]).astype(np.float32),
            dones=np.array([1.0 if t.done else 0.0 for t in items], dtype=np.float32),
            weights=weights,
            indices=chosen,
        )

    def update_priorities(self, indices: Iterable[int], td_errors: Iterable[float]):
        with self._lock:
            for idx, err in zip(indices, td_errors):
                raw = abs(float(err)) + self.epsilon
                self.tree.update(idx, raw ** self.alpha)
                self.max_priority = max(self.max_priority, raw)

    def set_beta(self, beta: float):
        self.beta = min(max(beta, 0.0), 1.0)

    def count_by_decision_type(self) -> Dict[int, int]:
        with self._lock:
            counts: Dict[int, int] = {}
            for t in self.data[:len(self.tree)]:
                if t is not None:
                    counts[t.decision_type] = counts.get(t.decision_type, 0) + 1
            return counts

    def clear(self):
        with self._lock:
            self.tree = SumTree(self.capacity)
            self.data = [None] * self.capacity
            self.max_priority = 1.0
