#!/usr/bin/env python3
"""
Train the ZapZap dueling Q-network by self-play.

    python train_zapzap.py --preset fast --games 20000 --workers 8
    python train_zapzap.py --resume checkpoints/final.pt --games 50000

Set ZAPZAP_QUIET=1 to silence console output.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import signal

from zapzap.config import TrainingConfig
from zapzap.self_play import run_self_play, should_print
from zapzap.trainer import Trainer

PRESETS = {
    "default": TrainingConfig,
    "fast": TrainingConfig.fast,
    "production": TrainingConfig.production,
}


def build_config(args) -> TrainingConfig:
    if args.config:
        with open(args.config) as f:
            config = TrainingConfig.from_dict(json.load(f))
    else:
        config = PRESETS[args.preset]()
    overrides = {
        "batch_size": args.batch_size,
        "learning_rate": args.lr,
        "player_count": args.players,
        "bot_ratio": args.bot_ratio,
        "games_per_batch": args.games_per_batch,
        "num_workers": args.workers,
        "soft_update": True if args.soft_update else None,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)
    return config


def main():
    parser = argparse.ArgumentParser(description='ZapZap self-play Double-DQN training')
    parser.add_argument('--preset', choices=sorted(PRESETS), default='default')
    parser.add_argument('--config', type=str, default=None, help='JSON file with TrainingConfig fields')
    parser.add_argument('--games', type=int, default=10000, help='Games to simulate')
    parser.add_argument('--workers', type=int, default=None, help='Self-play processes (default: cpu count)')
    parser.add_argument('--batch_size', type=int, default=None)
    parser.add_argument('--lr', type=float, default=None)
    parser.add_argument('--players', type=int, default=None, help='Seats per game (2-8)')
    parser.add_argument('--bot_ratio', type=float, default=None,
                        help='Probability that a non-agent seat is a heuristic bot')
    parser.add_argument('--games_per_batch', type=int, default=None)
    parser.add_argument('--soft_update', action='store_true', help='Polyak-average the target network')
    parser.add_argument('--out', type=str, default='checkpoints')
    parser.add_argument('--resume', type=str, default=None, help='Checkpoint to continue from')
    parser.add_argument('--seed', type=int, default=0)
    parser.add_argument('--verbose', action='store_true')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = build_config(args)
    trainer = Trainer(config, seed=args.seed)
    if args.resume:
        trainer.load(args.resume)

    # Ctrl-C finishes the current batch, then saves
    def _on_sigint(signum, frame):
        if should_print():
            print("\nStop requested, finishing the current batch...")
        trainer.request_stop()
    signal.signal(signal.SIGINT, _on_sigint)

    os.makedirs(args.out, exist_ok=True)
    with open(os.path.join(args.out, "config.json"), "w") as f:
        json.dump(config.to_dict(), f, indent=2)

    if should_print():
        print("=" * 60)
        print(f"ZapZap training: {args.games} games, {config.player_count} players, "
              f"{config.num_workers} workers")
        print("=" * 60)

    run_self_play(trainer, args.games, num_workers=config.num_workers, out_dir=args.out, seed=args.seed)


if __name__ == "__main__":
    main()
