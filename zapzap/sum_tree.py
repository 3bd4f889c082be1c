# zapzap/sum_tree.py
from __future__ import annotations

import math
from typing import Tuple

import numpy as np


class SumTree:
    """
    Binary sum tree for priority-based sampling.

    `2 * capacity - 1` nodes in heap layout: the last `capacity` nodes are
    leaves, one per replay slot, and every internal node holds the sum of
    its two children, so the root is the total priority mass.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.tree = np.zeros(2 * capacity - 1, dtype=np.float64)
        self.write = 0
        self.n_entries = 0

    def __len__(self) -> int:
        return self.n_entries

    def _propagate(self, idx: int, change: float):
        while idx != 0:
            idx = (idx - 1) // 2
            self.tree[idx] += change

    def total(self) -> float:
        return float(self.tree[0])

    def add(self, priority: float) -> int:
        """Write `priority` at the circular write pointer; returns the slot used."""
        data_idx = self.write
        self.update(data_idx, priority)
        self.write = (self.write + 1) % self.capacity
        self.n_entries = min(self.n_entries + 1, self.capacity)
        return data_idx

    def update(self, data_idx: int, priority: float):
        if not 0 <= data_idx < self.capacity:
            raise IndexError(f"slot {data_idx} out of range for capacity {self.capacity}")
        if priority < 0 or not math.isfinite(priority):
            raise ValueError(f"priority must be finite and non-negative, got {priority}")
        idx = data_idx + self.capacity - 1
        change = priority - self.tree[idx]
        self.tree[idx] = priority
        self._propagate(idx, change)

    def get(self, value: float) -> Tuple[int, float]:
        """Slot whose cumulative priority range contains `value`, and its priority."""
        idx = 0
        last = len(self.tree)
        while True:
            left = 2 * idx + 1
            if left >= last:
                break
            right = left + 1
            left_sum = self.tree[left]
            # Never descend into an empty subtree while the other side has mass
            if (value <= left_sum and left_sum > 0.0) or self.tree[right] <= 0.0:
                idx = left
            else:
                value -= left_sum
                idx = right
        return idx - self.capacity + 1, float(self.tree[idx])

    def get_priority(self, data_idx: int) -> float:
        return float(self.tree[data_idx + self.capacity - 1])

    def min_priority(self) -> float:
        """Smallest positive priority among populated leaves, 0.0 when empty."""
        leaves = self.tree[self.capacity - 1:self.capacity - 1 + self.n_entries]
        positive = leaves[leaves > 0]
        if positive.size == 0:
            return 0.0
        return float(positive.min())
