#!/usr/bin/env python3
"""
Win rates of bots (and optionally a trained model) over seeded games.

    python evaluate_bots.py --seats hard tuned random random --games 500
    python evaluate_bots.py --seats model hard hard hard --weights checkpoints/final_weights.npy

Seating rotates every game so no seat keeps the first move.
"""
from __future__ import annotations

import argparse
import logging
from collections import Counter
from typing import Dict, List, Optional

from tqdm import tqdm

from zapzap.engine import run_game
from zapzap.model_io import load_weights, network_dims
from zapzap.network import FlatQNetwork
from zapzap.policy import BOTS, DecisionPolicy, TrainedPolicy, get_bot
from zapzap.self_play import should_print

MODEL = "model"


def make_policy(name: str, seed: int, weights=None, dims=None) -> DecisionPolicy:
    if name == MODEL:
        if weights is None:
            raise ValueError("seat 'model' needs --weights")
        return TrainedPolicy(FlatQNetwork.from_flat_weights(weights, **dims), epsilon=0.0, seed=seed)
    return get_bot(name, seed=seed)


def evaluate(seats: List[str], games: int, seed: int = 0, weights_path: Optional[str] = None,
             max_rounds: int = 100, progress: bool = True) -> Dict[str, float]:
    """Fraction of games won by each distinct seat label."""
    weights, dims = None, None
    if weights_path:
        weights, meta = load_weights(weights_path)
        dims = network_dims(meta)

    wins: Counter = Counter()
    appearances: Counter = Counter(seats)
    capped = 0
    n = len(seats)
    for g in tqdm(range(games), desc="Evaluating", ncols=100, disable=not progress):
        shift = g % n
        order = seats[shift:] + seats[:shift]
        policies = [make_policy(name, seed + g * n + i, weights, dims) for i, name in enumerate(order)]
        result = run_game(policies, seed=seed + g, max_rounds=max_rounds)
        if result.hit_round_cap:
            capped += 1
        if result.winner is not None:
            wins[order[result.winner]] += 1
    if capped:
        logging.getLogger(__name__).warning("%d of %d games hit the round cap", capped, games)

    # A label seated twice has twice the chances; report per seat
    return {name: wins[name] / (games * appearances[name]) for name in appearances}


def main():
    parser = argparse.ArgumentParser(description='Evaluate ZapZap bots against each other')
    parser.add_argument('--seats', nargs='+', default=['hard', 'tuned', 'random', 'random'],
                        help=f"Seat labels: {', '.join(sorted(BOTS))} or '{MODEL}'")
    parser.add_argument('--games', type=int, default=200)
    parser.add_argument('--weights', type=str, default=None, help='Weight artifact for model seats')
    parser.add_argument('--max_rounds', type=int, default=100)
    parser.add_argument('--seed', type=int, default=0)
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING)
    for name in args.seats:
        if name != MODEL and name not in BOTS:
            parser.error(f"unknown seat {name}")
    if not 2 <= len(args.seats) <= 8:
        parser.error("need between 2 and 8 seats")

    rates = evaluate(args.seats, args.games, seed=args.seed, weights_path=args.weights,
                     max_rounds=args.max_rounds, progress=should_print())
    if should_print():
        print(f"\nWin rate per seat over {args.games} games:")
        for name, rate in sorted(rates.items(), key=lambda kv: -kv[1]):
            print(f"  {name:<8} {rate:6.1%}")
        print(f"  (uniform baseline {1 / len(args.seats):.1%})")


if __name__ == "__main__":
    main()
