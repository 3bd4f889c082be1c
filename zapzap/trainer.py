# zapzap/trainer.py
"""
Prioritized Double-DQN trainer.

One train_iteration() runs a train_step() per decision type. Each step
samples a batch of that type from the replay buffer, regresses Q(s, a)
onto r + gamma * Q_target(s', argmax_a' Q_online(s', a')) with an
importance-weighted MSE, and writes |TD error| back as the new priority.

Self-play workers never touch the torch module: they read the flat vector
published through SharedWeights by export_weights().
"""
from __future__ import annotations

import copy
import logging
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Optional

import numpy as np
import torch
import torch.nn as nn

from zapzap import model_io
from zapzap.config import TrainingConfig
from zapzap.network import DecisionType, DuelingQNetwork
from zapzap.replay import PrioritizedReplayBuffer, Transition

logger = logging.getLogger(__name__)


@dataclass
class TrainingState:
    games_played: int = 0
    steps: int = 0
    epsilon: float = 1.0
    avg_loss: float = 0.0
    avg_reward: float = 0.0
    win_rate: float = 0.0
    games_per_second: float = 0.0
    is_training: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)


class SharedWeights:
    """Latest exported flat weights. publish() swaps in a full copy under the lock."""

    def __init__(self, weights: Optional[np.ndarray] = None):
        self._lock = threading.Lock()
        self._weights: Optional[np.ndarray] = None
        self.version = 0
        if weights is not None:
            self.publish(weights)

    def publish(self, weights: np.ndarray):
        vec = np.array(weights, dtype=np.float32, copy=True).ravel()
        vec.setflags(write=False)
        with self._lock:
            self._weights = vec
            self.version += 1

    def snapshot(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._weights


class Trainer:
    def __init__(self, config: Optional[TrainingConfig] = None, seed: Optional[int] = None,
                 device: str = "cpu"):
        self.config = config or TrainingConfig()
        cfg = self.config
        if seed is not None:
            torch.manual_seed(seed)
        self.device = torch.device(device)

        self.online = DuelingQNetwork(**cfg.network_dims()).to(self.device)
        self.target = copy.deepcopy(self.online)
        self.target.eval()
        for p in self.target.parameters():
            p.requires_grad_(False)
        self.optimizer = torch.optim.Adam(self.online.parameters(), lr=cfg.learning_rate)

        self.buffer = PrioritizedReplayBuffer(
            cfg.buffer_capacity, alpha=cfg.per_alpha, beta=cfg.per_beta_start,
            epsilon=cfg.per_epsilon, seed=seed,
        )
        self.shared = SharedWeights()
        self.state = TrainingState(epsilon=cfg.epsilon_start)

        self.recent_losses = deque(maxlen=100)
        self.recent_rewards = deque(maxlen=100)
        self.recent_wins = deque(maxlen=100)
        self._stop = threading.Event()
        self._started_at = time.time()

        self.export_weights()

    # =========================================================================
    # TRAINING
    # =========================================================================

    def batch_size_for(self, decision_type: DecisionType) -> int:
        cfg = self.config
        if decision_type in (DecisionType.PLAY_TYPE, DecisionType.DRAW_SOURCE):
            return cfg.batch_size
        # HandSize and ZapZap decisions are a small share of the buffer
        return max(cfg.batch_size // 4, cfg.min_batch_size)

    def train_step(self, decision_type: DecisionType) -> Optional[float]:
        """One gradient step on `decision_type`; None when the buffer cannot fill a batch."""
        cfg = self.config
        batch = self.buffer.sample(self.batch_size_for(decision_type), int(decision_type))
        if batch is None:
            return None

        states = torch.as_tensor(batch.states, device=self.device)
        actions = torch.as_tensor(batch.actions, device=self.device)
        rewards = torch.as_tensor(batch.rewards, device=self.device)
        next_states = torch.as_tensor(batch.next_states, device=self.device)
        dones = torch.as_tensor(batch.dones, device=self.device)
        weights = torch.as_tensor(batch.weights, device=self.device)

        self.online.train()
        q = self.online(states, decision_type).gather(1, actions.unsqueeze(1)).squeeze(1)
        with torch.no_grad():
            next_actions = self.online(next_states, decision_type).argmax(dim=1, keepdim=True)
            next_q = self.target(next_states, decision_type).gather(1, next_actions).squeeze(1)
            targets = rewards + cfg.gamma * (1.0 - dones) * next_q

        td = targets - q
        loss = (weights * td.pow(2)).mean()

        self.optimizer.zero_grad()
        loss.backward()
        nn.utils.clip_grad_norm_(self.online.parameters(), cfg.grad_clip)
        self.optimizer.step()

        self.buffer.update_priorities(batch.indices, td.detach().abs().cpu().numpy())

        self.state.steps += 1
        if cfg.soft_update:
            self.soft_update(cfg.tau)
        elif self.state.steps % cfg.target_update_freq == 0:
            self.sync_target()

        value = float(loss.item())
        self.recent_losses.append(value)
        self.state.avg_loss = float(np.mean(self.recent_losses))
        return value

    def train_iteration(self) -> Optional[float]:
        """A train_step for every decision type. Returns the mean loss of the steps that ran."""
        losses = []
        for dt in DecisionType:
            if self.should_stop():
                break
            loss = self.train_step(dt)
            if loss is not None:
                losses.append(loss)
        if not losses:
            return None
        return float(np.mean(losses))

    def sync_target(self):
        self.target.load_state_dict(self.online.state_dict())

    def soft_update(self, tau: float):
        with torch.no_grad():
            for t, o in zip(self.target.parameters(), self.online.parameters()):
                t.mul_(1.0 - tau).add_(o, alpha=tau)

    # =========================================================================
    # DATA AND BOOKKEEPING
    # =========================================================================

    def add_transitions(self, transitions: Iterable[Transition]):
        self.buffer.push_many(transitions)

    def record_game(self, won: bool, reward: float):
        self.state.games_played += 1
        self.recent_wins.append(1.0 if won else 0.0)
        self.recent_rewards.append(reward)
        self.state.win_rate = float(np.mean(self.recent_wins))
        self.state.avg_reward = float(np.mean(self.recent_rewards))
        elapsed = max(time.time() - self._started_at, 1e-9)
        self.state.games_per_second = self.state.games_played / elapsed

    def update_schedules(self):
        games = self.state.games_played
        self.state.epsilon = self.config.epsilon_at(games)
        self.buffer.set_beta(self.config.beta_at(games))

    def export_weights(self) -> np.ndarray:
        weights = self.online.export_flat_weights()
        self.shared.publish(weights)
        return weights

    def request_stop(self):
        self._stop.set()

    def should_stop(self) -> bool:
        return self._stop.is_set()

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def metadata(self) -> Dict:
        s = self.state
        return model_io.build_metadata(
            self.config.network_dims(), training_steps=s.steps, games_played=s.games_played,
            final_epsilon=s.epsilon, avg_loss=s.avg_loss, win_rate=s.win_rate,
        )

    def save_weights(self, path: str):
        model_io.save_weights(path, self.online.export_flat_weights(), self.metadata())

    def save(self, path: str):
        model_io.save_checkpoint(
            path, self.online.state_dict(),
            target_state_dict=self.target.state_dict(),
            optimizer=self.optimizer.state_dict(),
            training_state=self.state.to_dict(),
            config=self.config.to_dict(),
        )
        logger.info("Saved checkpoint to %s (step %d)", path, self.state.steps)

    def load(self, path: str):
        ckpt = model_io.load_checkpoint(path)
        self.online.load_state_dict(ckpt["state_dict"])
        if "target_state_dict" in ckpt:
            self.target.load_state_dict(ckpt["target_state_dict"])
        else:
            self.sync_target()
        if "optimizer" in ckpt:
            self.optimizer.load_state_dict(ckpt["optimizer"])
        if "training_state" in ckpt:
            self.state = TrainingState(**ckpt["training_state"])
            self.state.is_training = False
        self.export_weights()
        logger.info("Loaded checkpoint %s (step %d)", path, self.state.steps)

    @classmethod
    def from_checkpoint(cls, path: str, **kwargs) -> "Trainer":
        ckpt = model_io.load_checkpoint(path)
        config = TrainingConfig.from_dict(ckpt["config"]) if "config" in ckpt else None
        trainer = cls(config, **kwargs)
        trainer.load(path)
        return trainer
