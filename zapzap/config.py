# zapzap/config.py
from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict


def _cpu_count() -> int:
    return os.cpu_count() or 1


@dataclass
class TrainingConfig:
    # Network
    input_dim: int = 45
    hidden_dim: int = 128
    value_hidden: int = 64
    advantage_hidden: int = 32

    # Optimisation
    learning_rate: float = 5e-4
    gamma: float = 0.99
    tau: float = 0.005
    soft_update: bool = False
    batch_size: int = 64
    min_batch_size: int = 8
    grad_clip: float = 1.0

    # Prioritized replay
    buffer_capacity: int = 1_000_000
    per_alpha: float = 0.6
    per_beta_start: float = 0.4
    per_beta_end: float = 1.0
    per_epsilon: float = 0.01

    # Exploration (schedules run on games played)
    epsilon_start: float = 1.0
    epsilon_end: float = 0.01
    epsilon_decay_steps: int = 100_000

    # Self-play
    player_count: int = 4
    games_per_batch: int = 100
    train_interval: int = 10
    target_update_freq: int = 1000
    save_interval: int = 10_000
    num_workers: int = field(default_factory=_cpu_count)
    bot_ratio: float = 0.25
    max_rounds: int = 100
    max_turns: int = 1000

    # Rewards
    win_reward: float = 1.0
    loss_reward: float = -0.25
    reward_discount: float = 0.99

    @classmethod
    def fast(cls) -> "TrainingConfig":
        return cls(
            buffer_capacity=100_000,
            games_per_batch=50,
            train_interval=5,
            epsilon_decay_steps=50_000,
            save_interval=5_000,
        )

    @classmethod
    def production(cls) -> "TrainingConfig":
        return cls(
            buffer_capacity=2_000_000,
            games_per_batch=200,
            train_interval=20,
            epsilon_decay_steps=200_000,
            save_interval=25_000,
        )

    def epsilon_at(self, games: int) -> float:
        ratio = min(games / max(self.epsilon_decay_steps, 1), 1.0)
        return self.epsilon_start + (self.epsilon_end - self.epsilon_start) * ratio

    def beta_at(self, games: int) -> float:
        ratio = min(games / max(self.epsilon_decay_steps, 1), 1.0)
        return self.per_beta_start + (self.per_beta_end - self.per_beta_start) * ratio

    def train_iterations_per_batch(self) -> int:
        # One training iteration per `train_interval` simulated games
        return max(1, self.games_per_batch // max(self.train_interval, 1))

    def network_dims(self) -> Dict[str, int]:
        return dict(input_dim=self.input_dim, hidden_dim=self.hidden_dim,
                    value_hidden=self.value_hidden, advantage_hidden=self.advantage_hidden)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrainingConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown TrainingConfig fields: {sorted(unknown)}")
        return cls(**data)
