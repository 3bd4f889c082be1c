# zapzap/collector.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

import numpy as np

from zapzap.replay import Transition


@dataclass
class PendingDecision:
    features: np.ndarray
    action: int
    decision_type: int


class TransitionCollector:
    """
    Buffers one player's decisions until the game outcome is known, then
    turns them into transitions with the outcome discounted backwards.
    """

    def __init__(self, discount: float = 0.99):
        self.discount = discount
        self.pending: Dict[int, List[PendingDecision]] = {}
        self.transitions: List[Transition] = []

    def record(self, player: int, features: np.ndarray, action: int, decision_type: int):
        self.pending.setdefault(player, []).append(
            PendingDecision(np.asarray(features, dtype=np.float32).copy(), int(action), int(decision_type))
        )

    def decisions(self, player: int) -> int:
        return len(self.pending.get(player, []))

    def finalize(self, player: int, reward: float, final_features: np.ndarray) -> List[Transition]:
        """
        Decision i of n gets reward * discount**(n-1-i). Its next state is the
        following decision's features, or `final_features` for the last one,
        which is also the only one marked done.
        """
        decisions = self.pending.pop(player, [])
        n = len(decisions)
        final = np.asarray(final_features, dtype=np.float32)
        out = []
        for i, d in enumerate(decisions):
            last = i == n - 1
            out.append(Transition(
                state=d.features,
                action=d.action,
                reward=float(reward * self.discount ** (n - 1 - i)),
                next_state=final.copy() if last else decisions[i + 1].features,
                done=last,
                decision_type=d.decision_type,
            ))
        self.transitions.extend(out)
        return out

    def drain(self) -> List[Transition]:
        out, self.transitions = self.transitions, []
        return out
