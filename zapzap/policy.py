# zapzap/policy.py
"""
Decision policies.

The engine asks a policy four kinds of question: how many cards to deal,
which combination to play, whether to call ZapZap and where to draw from.
Heuristic bots answer them directly; TrainedPolicy answers them with a
Q-network, mapping each head's action index onto a concrete move.

Bots:
- "random": seeded random legal moves (baseline)
- "hard": minimizes the remaining hand value, ZapZaps earlier as rounds go on
- "tuned": keep-score driven play with every threshold in TunedBotParams
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from zapzap import cards as cr
from zapzap.features import extract_features, extract_hand_size_features
from zapzap.network import DecisionType, QNetworkBase
from zapzap.state import GameState

MIN_HAND_SIZE = 4
MAX_HAND_SIZE_NORMAL = 7
MAX_HAND_SIZE_GOLDEN = 10

PLAY_TYPES = ["optimal", "single_high", "multi_high", "avoid_joker", "use_joker_combo"]

DRAW_DECK = 0
DRAW_PLAYED = 1


class DecisionPolicy:
    """
    Base class for everything that can sit at a table.

    select_draw_source returns None to draw from the deck, or the id of the
    card to take from the previous player's played cards. A policy that
    learns sets `last_decision` to (features, action_index) after each call
    so the engine can record it.
    """

    name = "policy"

    def __init__(self):
        self.last_decision: Optional[Tuple[np.ndarray, int]] = None

    def select_hand_size(self, state: GameState, player: int) -> int:
        raise NotImplementedError

    def select_play(self, state: GameState, player: int) -> List[int]:
        raise NotImplementedError

    def should_call_zapzap(self, state: GameState, player: int) -> bool:
        raise NotImplementedError

    def select_draw_source(self, state: GameState, player: int) -> Optional[int]:
        raise NotImplementedError


# =============================================================================
# PLAY-TYPE AND DRAW-SOURCE MAPPING
# =============================================================================

def _optimal_key(hand: List[int]) -> Callable[[List[int]], int]:
    def key(play: List[int]) -> int:
        return -cr.hand_value(cr.remaining_after(hand, play)) + len(play) // 2
    return key


def _best(plays: List[List[int]], key) -> Optional[List[int]]:
    # max() keeps the first of equal keys
    if not plays:
        return None
    return max(plays, key=key)


def play_for_type(hand: List[int], play_type: int) -> List[int]:
    """
    Concrete combination for a PlayType action:
    0 optimal          lowest remaining hand value
    1 single_high      highest single card
    2 multi_high       highest-points multi-card play
    3 avoid_joker      optimal among plays without jokers
    4 use_joker_combo  largest multi-card play that spends a joker
    Each falls back to the optimal play when it has no candidate.
    """
    plays = cr.find_all_valid_plays(hand)
    if not plays:
        return []
    optimal = _best(plays, _optimal_key(hand))
    if play_type == 1:
        singles = [p for p in plays if len(p) == 1]
        return _best(singles, cr.hand_value) or optimal
    if play_type == 2:
        multi = [p for p in plays if len(p) > 1]
        return _best(multi, cr.hand_value) or optimal
    if play_type == 3:
        no_joker = [p for p in plays if not any(cr.is_joker(c) for c in p)]
        return _best(no_joker, _optimal_key(hand)) or optimal
    if play_type == 4:
        with_joker = [p for p in plays if len(p) > 1 and any(cr.is_joker(c) for c in p)]
        return _best(with_joker, lambda p: (len(p), cr.hand_value(p))) or optimal
    return optimal


def best_played_card(last_cards_played: List[int]) -> Optional[int]:
    """The card worth taking from the played pile: jokers first, then lowest points."""
    if not last_cards_played:
        return None
    return min(last_cards_played, key=lambda c: (cr.points(c), c))


def draw_for_source(state: GameState, source: int) -> Optional[int]:
    if source == DRAW_PLAYED:
        return best_played_card(state.last_cards_played)
    return None


def min_opponent_hand_size(state: GameState, player: int) -> int:
    sizes = [len(state.hands[p]) for p in state.active_players() if p != player]
    return min(sizes, default=cr.DECK_SIZE)


# =============================================================================
# HEURISTIC BOTS
# =============================================================================

class RandomBot(DecisionPolicy):
    name = "random"

    def __init__(self, seed: Optional[int] = None):
        super().__init__()
        self.rng = random.Random(seed)

    def select_hand_size(self, state, player):
        return self.rng.randint(MIN_HAND_SIZE, MAX_HAND_SIZE_NORMAL)

    def select_play(self, state, player):
        return list(self.rng.choice(cr.find_all_valid_plays(state.hands[player])))

    def should_call_zapzap(self, state, player):
        return cr.can_zapzap(state.hands[player])

    def select_draw_source(self, state, player):
        if state.last_cards_played and self.rng.random() < 0.5:
            return self.rng.choice(state.last_cards_played)
        return None


class HardBot(DecisionPolicy):
    """Plays to leave the lowest hand value; ZapZap threshold loosens with the round number."""

    name = "hard"

    def __init__(self, seed: Optional[int] = None):
        super().__init__()
        self.rng = random.Random(seed)

    def select_hand_size(self, state, player):
        if state.is_golden_score:
            return MIN_HAND_SIZE + self.rng.randrange(3)
        return MIN_HAND_SIZE + self.rng.randrange(2)

    def select_play(self, state, player):
        return play_for_type(state.hands[player], 0)

    def should_call_zapzap(self, state, player):
        value = cr.hand_value(state.hands[player])
        if value > cr.ZAPZAP_THRESHOLD:
            return False
        if value <= 2:
            return True
        if state.round_number <= 2:
            return False
        if state.round_number <= 4:
            return value <= 3
        return value <= 4

    @staticmethod
    def card_value(card: int, hand: List[int]) -> int:
        """How much `card` would improve `hand`: new combos, low points, set building."""
        before = sum(1 for p in cr.find_all_valid_plays(hand) if len(p) > 1)
        after = sum(1 for p in cr.find_all_valid_plays(hand + [card]) if len(p) > 1 and card in p)
        score = (after - before) * 10 + 10 - cr.points(card)
        if not cr.is_joker(card):
            same = sum(1 for c in hand if not cr.is_joker(c) and cr.rank(c) == cr.rank(card))
            score += same * 5
        return score

    def select_draw_source(self, state, player):
        hand = state.hands[player]
        best_card, best_score = None, 5
        for card in state.last_cards_played:
            score = self.card_value(card, hand)
            if score > best_score:
                best_card, best_score = card, score
        return best_card


@dataclass
class TunedBotParams:
    """Every knob of TunedBot. Pass a tuned instance to the constructor."""
    joker_keep_score: int = 705
    existing_pair_bonus: int = 68
    good_pair_chance: float = 0.05
    good_pair_chance_bonus: int = 30
    low_pair_chance_bonus: int = 12
    dead_rank_penalty: int = 26
    sequence_part_bonus: int = 33
    value_score_weight: int = 15
    combo_play_threshold: int = 150
    defensive_threshold: int = 3
    low_card_points: int = 3
    zapzap_safe_value_threshold: int = 1
    zapzap_moderate_hand_size: int = 4
    zapzap_moderate_value_threshold: int = 5
    zapzap_risky_hand_size: int = 2
    zapzap_risky_value_threshold: int = 2
    hand_size: int = 4
    golden_hand_size: int = 4


class TunedBot(DecisionPolicy):
    name = "tuned"

    def __init__(self, params: Optional[TunedBotParams] = None, seed: Optional[int] = None):
        super().__init__()
        self.params = params or TunedBotParams()
        self.rng = random.Random(seed)

    def keep_score(self, card: int, hand: List[int], state: GameState, player: int) -> int:
        """Higher means more worth keeping. High points count against a card."""
        p = self.params
        if cr.is_joker(card):
            return p.joker_keep_score
        r, s = cr.rank(card), cr.suit(card)
        score = 0
        same = sum(1 for c in hand if c != card and not cr.is_joker(c) and cr.rank(c) == r)
        score += same * p.existing_pair_bonus
        if state.is_rank_dead(r, player):
            score -= p.dead_rank_penalty
        elif state.draw_probability(r, player) >= p.good_pair_chance:
            score += p.good_pair_chance_bonus
        else:
            score += p.low_pair_chance_bonus
        if any(not cr.is_joker(c) and cr.suit(c) == s and 0 < abs(cr.rank(c) - r) <= 2 for c in hand):
            score += p.sequence_part_bonus
        return score - cr.points(card) * p.value_score_weight

    def select_hand_size(self, state, player):
        return self.params.golden_hand_size if state.is_golden_score else self.params.hand_size

    def select_play(self, state, player):
        hand = state.hands[player]
        plays = cr.find_all_valid_plays(hand)
        if min_opponent_hand_size(state, player) <= self.params.defensive_threshold:
            return cr.find_max_point_play(hand)
        multi = [p for p in plays if len(p) > 1 and not any(cr.is_joker(c) for c in p)]
        best_multi = _best(multi, cr.hand_value)
        if best_multi and cr.hand_value(best_multi) * self.params.value_score_weight >= self.params.combo_play_threshold:
            return best_multi
        singles = [p for p in plays if len(p) == 1]
        return min(singles, key=lambda p: self.keep_score(p[0], hand, state, player))

    def should_call_zapzap(self, state, player):
        p = self.params
        value = cr.hand_value(state.hands[player])
        if value > cr.ZAPZAP_THRESHOLD:
            return False
        if value <= p.zapzap_safe_value_threshold:
            return True
        others = [o for o in state.active_players() if o != player]
        # Known cards alone already put every opponent above us
        if others and all(state.estimate_min_hand_value(o) > value for o in others):
            return True
        closest = min_opponent_hand_size(state, player)
        if closest >= p.zapzap_moderate_hand_size:
            return value <= p.zapzap_moderate_value_threshold
        if closest <= p.zapzap_risky_hand_size:
            return value <= p.zapzap_risky_value_threshold
        return value <= (p.zapzap_moderate_value_threshold + p.zapzap_risky_value_threshold) // 2

    def select_draw_source(self, state, player):
        hand = state.hands[player]
        wanted = [
            c for c in state.last_cards_played
            if cr.is_joker(c)
            or cr.points(c) <= self.params.low_card_points
            or cr.would_complete_sequence(hand, c)
            or cr.would_complete_pair(hand, c)
        ]
        return best_played_card(wanted)


# =============================================================================
# TRAINED POLICY
# =============================================================================

class TrainedPolicy(DecisionPolicy):
    """
    Q-network policy with epsilon-greedy exploration. Works with either
    network backend; self-play uses FlatQNetwork.
    """

    name = "trained"

    def __init__(self, network: QNetworkBase, epsilon: float = 0.0, seed: Optional[int] = None):
        super().__init__()
        self.network = network
        self.epsilon = epsilon
        self.rng = np.random.default_rng(seed)

    def _act(self, features: np.ndarray, decision_type: DecisionType) -> int:
        action = self.network.epsilon_greedy_action(features, decision_type, self.epsilon, self.rng)
        self.last_decision = (features, action)
        return action

    def select_hand_size(self, state, player):
        f = extract_hand_size_features(state.active_player_count(), state.is_golden_score, state.scores[player])
        return MIN_HAND_SIZE + self._act(f, DecisionType.HAND_SIZE)

    def select_play(self, state, player):
        action = self._act(extract_features(state, player), DecisionType.PLAY_TYPE)
        return play_for_type(state.hands[player], action)

    def should_call_zapzap(self, state, player):
        return self._act(extract_features(state, player), DecisionType.ZAPZAP) == 1

    def select_draw_source(self, state, player):
        action = self._act(extract_features(state, player), DecisionType.DRAW_SOURCE)
        return draw_for_source(state, action)


BOTS: Dict[str, Callable[..., DecisionPolicy]] = {
    "random": RandomBot,
    "hard": HardBot,
    "tuned": TunedBot,
}


def get_bot(name: str, seed: Optional[int] = None) -> DecisionPolicy:
    if name not in BOTS:
        raise ValueError(f"Unknown bot: {name}. Choose from {sorted(BOTS)}")
    return BOTS[name](seed=seed)
