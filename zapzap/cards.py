# zapzap/cards.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

# 52 natural cards (suit * 13 + rank) followed by two jokers.
DECK_SIZE = 54
JOKER_START = 52
NUM_RANKS = 13
NUM_SUITS = 4

# Returned by rank()/suit() for jokers.
NO_RANK = 255
NO_SUIT = 255

ZAPZAP_THRESHOLD = 5
JOKER_PENALTY = 25

RANK_LABELS = ["A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K"]
SUIT_LABELS = ["S", "H", "C", "D"]  # spades, hearts, clubs, diamonds


def is_joker(card: int) -> bool:
    return card >= JOKER_START


def rank(card: int) -> int:
    if is_joker(card):
        return NO_RANK
    return card % NUM_RANKS


def suit(card: int) -> int:
    if is_joker(card):
        return NO_SUIT
    return card // NUM_RANKS


def points(card: int) -> int:
    """Point value used for ZapZap eligibility: rank + 1, jokers are worth 0."""
    if is_joker(card):
        return 0
    return card % NUM_RANKS + 1


def hand_value(hand: Iterable[int]) -> int:
    return sum(points(c) for c in hand)


def hand_score(hand: Iterable[int], is_lowest: bool) -> int:
    """
    Points a hand costs its holder at the end of a round.
    Jokers are free for the round's lowest hand and cost 25 otherwise.
    """
    total = 0
    for c in hand:
        if is_joker(c):
            total += 0 if is_lowest else JOKER_PENALTY
        else:
            total += points(c)
    return total


def can_zapzap(hand: Iterable[int]) -> bool:
    return hand_value(hand) <= ZAPZAP_THRESHOLD


def is_valid_card(card: int) -> bool:
    return isinstance(card, int) and not isinstance(card, bool) and 0 <= card < DECK_SIZE


# =============================================================================
# VALIDITY
# =============================================================================

def is_valid_same_rank(cards: Sequence[int]) -> bool:
    if len(cards) < 2:
        return False
    ranks = {rank(c) for c in cards if not is_joker(c)}
    # All jokers is a valid set
    return len(ranks) <= 1


def is_valid_sequence(cards: Sequence[int]) -> bool:
    if len(cards) < 3:
        return False
    naturals = [c for c in cards if not is_joker(c)]
    jokers = len(cards) - len(naturals)
    if not naturals:
        return True
    if len({suit(c) for c in naturals}) != 1:
        return False
    ranks = sorted(rank(c) for c in naturals)
    gaps = 0
    for prev, cur in zip(ranks, ranks[1:]):
        if cur == prev:
            return False
        gaps += cur - prev - 1
    if gaps > jokers:
        return False
    # The run plus the spare jokers still has to fit between A and K
    return len(cards) <= NUM_RANKS


def is_valid_play(cards: Sequence[int]) -> bool:
    if len(cards) == 0:
        return False
    if len(set(cards)) != len(cards):
        return False
    if len(cards) == 1:
        return True
    return is_valid_same_rank(cards) or is_valid_sequence(cards)


# =============================================================================
# ENUMERATION
# =============================================================================

def _jokers(hand: Sequence[int]) -> List[int]:
    return [c for c in hand if is_joker(c)]


def find_same_rank_plays(hand: Sequence[int]) -> List[List[int]]:
    """
    Every same-rank combination the hand can make.

    A rank held two or more times is emitted as the pure group and then
    extended with 1..min(jokers, 4 - group size) jokers. A rank held once is
    paired with 1..jokers jokers. Two jokers on their own are also a pair.
    """
    if len(hand) < 2:
        return []
    jokers = _jokers(hand)
    buckets: List[List[int]] = [[] for _ in range(NUM_RANKS)]
    for c in hand:
        if not is_joker(c):
            buckets[rank(c)].append(c)

    plays: List[List[int]] = []
    for bucket in buckets:
        if len(bucket) >= 2:
            plays.append(list(bucket))
            for j in range(1, min(len(jokers), 4 - len(bucket)) + 1):
                plays.append(bucket + jokers[:j])
        elif len(bucket) == 1 and jokers:
            for j in range(1, len(jokers) + 1):
                plays.append(bucket + jokers[:j])
    if len(jokers) >= 2:
        plays.append(list(jokers))
    return plays


def _gap_count(run: Sequence[int]) -> int:
    return sum(rank(b) - rank(a) - 1 for a, b in zip(run, run[1:]))


def find_sequence_plays(hand: Sequence[int]) -> List[List[int]]:
    """
    Every same-suit run the hand can make, jokers filling the holes.

    Each contiguous window of a suit's sorted cards is tried. Windows of
    three or more naturals consume exactly as many jokers as they have gaps.
    A window of two naturals is completed to three cards by jokers when
    enough are held (5S 7S + joker, or 5S 6S + joker).
    """
    if len(hand) < 3:
        return []
    jokers = _jokers(hand)
    plays: List[List[int]] = []
    for s in range(NUM_SUITS):
        suited = sorted((c for c in hand if not is_joker(c) and suit(c) == s), key=rank)
        if len(suited) + len(jokers) < 3:
            continue
        for start in range(len(suited)):
            for end in range(start + 2, len(suited) + 1):
                window = suited[start:end]
                gaps = _gap_count(window)
                if len(window) >= 3:
                    needed = gaps
                else:
                    needed = max(gaps, 1)
                if needed <= len(jokers):
                    plays.append(window + jokers[:needed])
    return plays


def find_all_valid_plays(hand: Sequence[int]) -> List[List[int]]:
    """Singles first, then same-rank sets, then sequences. No duplicates."""
    plays: List[List[int]] = [[c] for c in hand]
    seen = {frozenset(p) for p in plays}
    for play in find_same_rank_plays(hand) + find_sequence_plays(hand):
        key = frozenset(play)
        if key in seen:
            continue
        seen.add(key)
        plays.append(play)
    return plays


def find_max_point_play(hand: Sequence[int]) -> Optional[List[int]]:
    best: Optional[List[int]] = None
    best_points = -1
    for play in find_all_valid_plays(hand):
        value = hand_value(play)
        if value > best_points:
            best, best_points = play, value
    return best


# =============================================================================
# HELPERS FOR POLICIES
# =============================================================================

def remaining_after(hand: Sequence[int], play: Sequence[int]) -> List[int]:
    played = set(play)
    return [c for c in hand if c not in played]


def would_complete_pair(hand: Sequence[int], card: int) -> bool:
    if is_joker(card):
        return False
    return any(not is_joker(c) and rank(c) == rank(card) for c in hand)


def would_complete_sequence(hand: Sequence[int], card: int) -> bool:
    """True if `card` and two natural cards of the hand form a gapless run."""
    if is_joker(card):
        return False
    r, s = rank(card), suit(card)
    held = {rank(c) for c in hand if not is_joker(c) and suit(c) == s}
    for lo in (r - 2, r - 1, r):
        window = {lo, lo + 1, lo + 2}
        if lo < 0 or lo + 2 >= NUM_RANKS:
            continue
        if window - {r} <= held:
            return True
    return False


def card_label(card: int) -> str:
    if is_joker(card):
        return f"JOKER{card - JOKER_START + 1}"
    return RANK_LABELS[rank(card)] + SUIT_LABELS[suit(card)]


_LABEL_TO_CARD: Dict[str, int] = {card_label(c): c for c in range(DECK_SIZE)}


def parse_card(label: str) -> int:
    """Inverse of card_label: "5S" -> 4, "10H" -> 22, "JOKER1" -> 52."""
    key = label.strip().upper()
    if key == "JOKER":
        key = "JOKER1"
    if key not in _LABEL_TO_CARD:
        raise ValueError(f"Unknown card label: {label!r}")
    return _LABEL_TO_CARD[key]


def parse_hand(text: str) -> List[int]:
    return [parse_card(tok) for tok in text.split()]


def format_hand(hand: Iterable[int]) -> str:
    return " ".join(card_label(c) for c in hand)
