# zapzap/env.py
from __future__ import annotations

from typing import List, Optional, Sequence

import gymnasium as gym
import numpy as np
from gymnasium import spaces

from zapzap.engine import GameEngine
from zapzap.features import FEATURE_DIM, extract_features, extract_hand_size_features
from zapzap.network import ACTION_DIMS, MAX_ACTIONS, DecisionType
from zapzap.policy import DRAW_PLAYED, get_bot

AGENT = 0
INVALID_ACTION_PENALTY = -0.1


class ZapZapEnv(gym.Env):
    """
    Single-agent view of a ZapZap match.
    - seat 0 is controlled, every other seat is a heuristic bot
    - one step per decision; info["decision_type"] says which head the
      action is for and info["action_mask"] which indices it accepts
    - rewards: win_reward / loss_reward when the match ends for seat 0
      (elimination counts as a loss), invalid actions cost a little and
      are replaced by action 0
    """

    metadata = {"render_modes": []}

    def __init__(self, opponents: Sequence[str] = ("hard", "hard", "hard"),
                 max_rounds: int = 100, max_turns: int = 1000,
                 win_reward: float = 1.0, loss_reward: float = -0.25):
        super().__init__()
        self.opponents = list(opponents)
        self.max_rounds = max_rounds
        self.max_turns = max_turns
        self.win_reward = win_reward
        self.loss_reward = loss_reward

        self.action_space = spaces.Discrete(MAX_ACTIONS)
        self.observation_space = spaces.Box(
            low=-1e9, high=1e9, shape=(FEATURE_DIM,), dtype=np.float32
        )

        self.engine: Optional[GameEngine] = None
        self.decision_type: Optional[DecisionType] = None
        self.done = False
        self.truncated = False

    def reset(self, seed: Optional[int] = None, options: Optional[dict] = None):
        super().reset(seed=seed)
        base = int(self.np_random.integers(2**31 - 1)) if seed is None else seed
        bots = [get_bot(name, seed=base + i + 1) for i, name in enumerate(self.opponents)]
        self.engine = GameEngine([None] + bots, seed=base,
                                 max_rounds=self.max_rounds, max_turns=self.max_turns)
        self.done = False
        self.truncated = False
        self._advance()
        return self._obs(), self._info()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _advance(self):
        """Let the bots play until seat 0 has a decision or the match is over."""
        engine = self.engine
        s = engine.state
        while True:
            if s.is_eliminated(AGENT):
                self.done = True
                break
            pending = engine.pending_decision()
            if pending is None:
                if engine.is_game_over():
                    self.done = True
                    break
                if s.round_number >= self.max_rounds:
                    self.truncated = True
                    break
                engine.end_round()
                continue
            if engine.turns_this_round >= self.max_turns:
                engine.abort_round()
                continue
            player, dt = pending
            if player == AGENT:
                self.decision_type = dt
                return
            engine.step()
        self.decision_type = None

    def _obs(self) -> np.ndarray:
        s = self.engine.state
        if self.decision_type == DecisionType.HAND_SIZE:
            return extract_hand_size_features(s.active_player_count(), s.is_golden_score, s.scores[AGENT])
        return extract_features(s, AGENT)

    def action_mask(self) -> np.ndarray:
        mask = np.zeros((MAX_ACTIONS,), dtype=np.int8)
        dt = self.decision_type
        if dt is None:
            return mask
        mask[:ACTION_DIMS[dt]] = 1
        if dt == DecisionType.DRAW_SOURCE and not self.engine.state.last_cards_played:
            mask[DRAW_PLAYED] = 0
        return mask

    def _info(self) -> dict:
        info = {
            "action_mask": self.action_mask(),
            "decision_type": None if self.decision_type is None else int(self.decision_type),
        }
        if self.done or self.truncated:
            info["winner"] = self.engine.winner()
            info["scores"] = list(self.engine.state.scores)
            info["rounds"] = self.engine.state.round_number
        return info

    def _final_reward(self) -> float:
        if not self.done:
            return 0.0
        return self.win_reward if self.engine.winner() == AGENT else self.loss_reward

    # =========================================================================
    # STEP
    # =========================================================================

    def step(self, action_idx: int):
        if self.done or self.truncated:
            return self._obs(), 0.0, self.done, self.truncated, self._info()

        reward = 0.0
        action = int(action_idx)
        if not 0 <= action < MAX_ACTIONS or self.action_mask()[action] == 0:
            reward += INVALID_ACTION_PENALTY
            action = 0

        self.engine.apply_action(AGENT, self.decision_type, action)
        self._advance()
        reward += self._final_reward()
        return self._obs(), float(reward), self.done, self.truncated, self._info()

    def legal_actions(self) -> List[int]:
        return [int(i) for i in np.flatnonzero(self.action_mask())]
