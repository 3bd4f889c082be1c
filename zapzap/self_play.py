# zapzap/self_play.py
"""
Self-play data generation.

play_game_worker() plays one whole game in a worker process: every seat
that is not a heuristic bot runs the exported weights through a
FlatQNetwork, and those seats' decisions come back as transitions.
run_self_play() fans batches of games out over a spawn-context pool,
feeds the results to a Trainer, trains, re-exports the weights and saves
periodically until the game budget is spent or a stop is requested.
"""
from __future__ import annotations

import logging
import multiprocessing as mp
import os
import random
from typing import Any, Dict, List, Optional

import numpy as np
import torch
from tqdm import tqdm

from zapzap.collector import TransitionCollector
from zapzap.engine import GameEngine
from zapzap.features import extract_features
from zapzap.network import FlatQNetwork
from zapzap.policy import BOTS, DecisionPolicy, TrainedPolicy, get_bot
from zapzap.trainer import Trainer, TrainingState

logger = logging.getLogger(__name__)


def should_print():
    return os.environ.get('ZAPZAP_QUIET') != '1'


def seat_policies(weights: np.ndarray, dims: Dict[str, int], player_count: int, epsilon: float,
                  bot_ratio: float, seed: int) -> List[DecisionPolicy]:
    """Seat 0 is always the network; every other seat is a random bot with probability bot_ratio."""
    rng = random.Random(seed)
    bot_names = sorted(BOTS)
    policies: List[DecisionPolicy] = []
    for seat in range(player_count):
        if seat > 0 and rng.random() < bot_ratio:
            policies.append(get_bot(rng.choice(bot_names), seed=seed * 31 + seat))
        else:
            net = FlatQNetwork.from_flat_weights(weights, **dims)
            policies.append(TrainedPolicy(net, epsilon=epsilon, seed=seed * 31 + seat))
    return policies


def play_game_worker(args) -> Dict[str, Any]:
    """
    Play one game and collect the network seats' transitions.
    Runs in a pool process; arguments come as one tuple so it can be mapped.
    """
    (weights, dims, player_count, seed, epsilon, bot_ratio,
     max_rounds, max_turns, win_reward, loss_reward, discount) = args

    # Preventing CPU oversubscription
    torch.set_num_threads(1)

    policies = seat_policies(weights, dims, player_count, epsilon, bot_ratio, seed)
    learners = [i for i, p in enumerate(policies) if isinstance(p, TrainedPolicy)]
    collector = TransitionCollector(discount=discount)
    engine = GameEngine(policies, seed=seed, max_rounds=max_rounds, max_turns=max_turns,
                        collector=collector, record_players=learners)
    result = engine.run_game()

    rewards = []
    for seat in learners:
        reward = win_reward if result.winner == seat else loss_reward
        rewards.append(reward)
        collector.finalize(seat, reward, extract_features(engine.state, seat))

    return {
        "transitions": collector.drain(),
        "winner": result.winner,
        "won": result.winner in learners,
        "reward": float(np.mean(rewards)) if rewards else 0.0,
        "rounds": result.total_rounds,
        "hit_round_cap": result.hit_round_cap,
        "learners": learners,
    }


def _game_args(trainer: Trainer, count: int, first_seed: int) -> List[tuple]:
    cfg = trainer.config
    weights = trainer.shared.snapshot()
    return [
        (weights, cfg.network_dims(), cfg.player_count, first_seed + i, trainer.state.epsilon,
         cfg.bot_ratio, cfg.max_rounds, cfg.max_turns, cfg.win_reward, cfg.loss_reward,
         cfg.reward_discount)
        for i in range(count)
    ]


def run_self_play(trainer: Trainer, total_games: int, num_workers: Optional[int] = None,
                  out_dir: str = "checkpoints", seed: int = 0, verbose: bool = True) -> TrainingState:
    cfg = trainer.config
    num_workers = cfg.num_workers if num_workers is None else num_workers
    os.makedirs(out_dir, exist_ok=True)

    pool = mp.get_context('spawn').Pool(num_workers) if num_workers > 1 else None
    if pool and verbose and should_print():
        print(f"Started self-play pool with {num_workers} workers")

    state = trainer.state
    state.is_training = True
    start_games = state.games_played
    next_save = start_games + cfg.save_interval
    pbar = tqdm(total=total_games, desc="Self-play", ncols=120, disable=not (verbose and should_print()))

    try:
        while state.games_played - start_games < total_games and not trainer.should_stop():
            count = min(cfg.games_per_batch, total_games - (state.games_played - start_games))
            trainer.update_schedules()
            args = _game_args(trainer, count, seed + state.games_played)
            if pool:
                results = pool.map(play_game_worker, args)
            else:
                results = [play_game_worker(a) for a in args]

            for r in results:
                trainer.add_transitions(r["transitions"])
                trainer.record_game(r["won"], r["reward"])
            capped = sum(1 for r in results if r["hit_round_cap"])
            if capped:
                logger.info("%d of %d games hit the round cap", capped, len(results))

            if len(trainer.buffer) >= cfg.batch_size * 10:
                for _ in range(cfg.train_iterations_per_batch()):
                    if trainer.should_stop():
                        break
                    trainer.train_iteration()
            trainer.export_weights()

            if state.games_played >= next_save:
                trainer.save(os.path.join(out_dir, f"checkpoint_g{state.games_played}.pt"))
                trainer.save_weights(os.path.join(out_dir, "latest_weights.npy"))
                next_save += cfg.save_interval

            pbar.update(len(results))
            pbar.set_postfix({
                "win": f"{state.win_rate:.0%}",
                "loss": f"{state.avg_loss:.4f}",
                "eps": f"{state.epsilon:.3f}",
                "buf": len(trainer.buffer),
                "gps": f"{state.games_per_second:.1f}",
            })
    finally:
        pbar.close()
        if pool:
            pool.close()
            pool.join()
        state.is_training = False

    trainer.save(os.path.join(out_dir, "final.pt"))
    trainer.save_weights(os.path.join(out_dir, "final_weights.npy"))
    if verbose and should_print():
        print(f"Played {state.games_played} games, {state.steps} training steps, "
              f"win rate {state.win_rate:.1%}, avg loss {state.avg_loss:.4f}")
    return state
