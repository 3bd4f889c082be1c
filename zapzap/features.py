# zapzap/features.py
from __future__ import annotations

from typing import List

import numpy as np

from zapzap import cards as cr
from zapzap.state import GameState

FEATURE_DIM = 45

FEATURE_NAMES = [
    # Hand (10)
    "hand_value", "hand_size", "jokers", "has_pairs", "has_sequences",
    "can_zapzap", "multi_card_plays", "high_cards", "low_cards", "best_play_size",
    # Game (10)
    "round", "deck_size", "last_played_size", "active_players", "golden_score",
    "early_game", "mid_game", "late_game", "last_played_has_joker", "last_played_has_low",
    # Scoring (8)
    "my_score", "min_opp_score", "max_opp_score", "avg_opp_score", "score_gap",
    "score_risk", "elimination_risk", "elimination_proximity",
    # Opponents (10)
    "min_opp_hand", "avg_opp_hand", "opp_close_to_zapzap", "opp_close_to_win",
    "keep_jokers", "zapzap_threats", "elimination_threats", "dangerous_next",
    "score_leader", "score_trailer",
    # Position (5)
    "position", "relative_position", "is_first", "is_last", "position_bucket",
    # Hand quality (2)
    "suit_concentration", "rank_spread",
]
assert len(FEATURE_NAMES) == FEATURE_DIM


def _score_risk(score: float) -> float:
    if score > 80:
        return 1.0
    if score > 60:
        return 0.5
    return 0.0


def _elimination_risk(score: float) -> float:
    # 0 / 1 / 2 levels scaled into [0, 1]
    if score > 90:
        return 1.0
    if score > 75:
        return 0.5
    return 0.0


def suit_concentration(hand: List[int]) -> float:
    if not hand:
        return 0.0
    counts = [0] * cr.NUM_SUITS
    for c in hand:
        if not cr.is_joker(c):
            counts[cr.suit(c)] += 1
    return max(counts) / len(hand)


def rank_spread(hand: List[int]) -> float:
    ranks = [cr.rank(c) for c in hand if not cr.is_joker(c)]
    if len(ranks) <= 1:
        return 0.0
    return (max(ranks) - min(ranks)) / 12.0


def extract_features(state: GameState, player: int) -> np.ndarray:
    """
    45 normalized features describing the game from `player`'s seat.
    Opponents are the other non-eliminated players; every opponent
    aggregate falls back to 0 when there are none.
    """
    hand = state.hands[player]
    value = cr.hand_value(hand)
    plays = cr.find_all_valid_plays(hand)
    multi = sum(1 for p in plays if len(p) > 1)
    best_play = max((len(p) for p in plays), default=1)
    jokers = sum(1 for c in hand if cr.is_joker(c))
    high = sum(1 for c in hand if not cr.is_joker(c) and cr.rank(c) >= 9)
    low = sum(1 for c in hand if not cr.is_joker(c) and cr.rank(c) < 4)

    opponents = [p for p in state.active_players() if p != player]
    opp_scores = [state.scores[p] for p in opponents]
    opp_hands = [len(state.hands[p]) for p in opponents]

    my_score = float(state.scores[player])
    min_opp_score = min(opp_scores, default=0)
    max_opp_score = max(opp_scores, default=0)
    avg_opp_score = sum(opp_scores) / len(opp_scores) if opp_scores else 0.0
    min_opp_hand = min(opp_hands, default=0)
    avg_opp_hand = sum(opp_hands) / len(opp_hands) if opp_hands else 0.0

    active_players = state.active_players()
    active = len(active_players)
    # Order among the players still in; an eliminated seat counts as last
    seat_rank = active_players.index(player) if player in active_players else max(active - 1, 0)
    rnd = state.round_number
    last = state.last_cards_played

    next_player = state.next_active(player)
    dangerous_next = next_player != player and len(state.hands[next_player]) <= 3

    position = float(player)
    last_seat = state.player_count - 1
    if player == 0:
        bucket = 0.0
    elif player == last_seat:
        bucket = 2.0
    else:
        bucket = 1.0

    f = np.array([
        min(value / 100.0, 1.0),
        min(len(hand) / 10.0, 1.0),
        min(jokers / 2.0, 1.0),
        1.0 if cr.find_same_rank_plays(hand) else 0.0,
        1.0 if cr.find_sequence_plays(hand) else 0.0,
        1.0 if value <= cr.ZAPZAP_THRESHOLD else 0.0,
        min(multi / 10.0, 1.0),
        min(high / 5.0, 1.0),
        min(low / 5.0, 1.0),
        min(best_play / 5.0, 1.0),

        min(rnd / 10.0, 1.0),
        min(len(state.deck) / 54.0, 1.0),
        min(len(last) / 5.0, 1.0),
        min(active / 4.0, 1.0),
        1.0 if state.is_golden_score else 0.0,
        1.0 if rnd <= 2 else 0.0,
        1.0 if 2 < rnd <= 5 else 0.0,
        1.0 if rnd > 5 else 0.0,
        1.0 if any(cr.is_joker(c) for c in last) else 0.0,
        1.0 if any(not cr.is_joker(c) and cr.rank(c) < 4 for c in last) else 0.0,

        min(my_score / 100.0, 1.0),
        min(min_opp_score / 100.0, 1.0),
        min(max_opp_score / 100.0, 1.0),
        min(avg_opp_score / 100.0, 1.0),
        float(np.clip((min_opp_score - my_score) / 50.0, -1.0, 1.0)),
        _score_risk(my_score),
        _elimination_risk(my_score),
        max(0.0, (100.0 - my_score) / 100.0),

        min(min_opp_hand / 10.0, 1.0),
        min(avg_opp_hand / 10.0, 1.0),
        1.0 if opponents and min_opp_hand <= 3 else 0.0,
        1.0 if opponents and min_opp_hand <= 2 else 0.0,
        1.0 if min_opp_hand > 3 and not state.is_golden_score else 0.0,
        min(sum(1 for s in opp_hands if s <= 3), 3) / 3.0,
        min(sum(1 for s in opp_scores if s > 85), 3) / 3.0,
        1.0 if dangerous_next else 0.0,
        1.0 if all(s >= my_score for s in opp_scores) else 0.0,
        1.0 if all(s <= my_score for s in opp_scores) else 0.0,

        min(position / 3.0, 1.0),
        seat_rank / (active - 1) if active > 1 else 0.0,
        1.0 if player == 0 else 0.0,
        1.0 if player == last_seat else 0.0,
        bucket / 2.0,

        suit_concentration(hand),
        rank_spread(hand),
    ], dtype=np.float32)
    return f


def extract_hand_size_features(active_players: int, is_golden_score: bool, my_score: int) -> np.ndarray:
    """
    Features for the hand-size choice, made before any card is dealt.
    Hand, position and opponent-threat fields are zero; opponents are
    assumed to hold the default hand and to share our score.
    """
    score = float(my_score)
    default_hand = 10.0 if is_golden_score else 7.0
    f = np.zeros(FEATURE_DIM, dtype=np.float32)
    f[9] = 0.2  # best_play_size of a single card
    f[10] = 0.1
    f[11] = 1.0
    f[13] = min(active_players / 4.0, 1.0)
    f[14] = 1.0 if is_golden_score else 0.0
    f[15] = 1.0
    f[20:24] = min(score / 100.0, 1.0)
    f[25] = _score_risk(score)
    f[26] = _elimination_risk(score)
    f[27] = max(0.0, (100.0 - score) / 100.0)
    f[28] = default_hand / 10.0
    f[29] = default_hand / 10.0
    return f
