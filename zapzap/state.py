# zapzap/state.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from zapzap import cards as cr

MAX_PLAYERS = 8
MAX_HAND_SIZE = 10
ELIMINATION_SCORE = 100

# Taken-card masks hold one bit per card id in a 64-bit integer.
MAX_TRACKABLE_CARD = 63
assert cr.DECK_SIZE - 1 <= MAX_TRACKABLE_CARD, "card ids no longer fit the 64-bit tracker masks"


class GameAction(str, Enum):
    SELECT_HAND_SIZE = "selectHandSize"
    DRAW = "draw"
    PLAY = "play"
    ZAPZAP = "zapzap"
    FINISHED = "finished"


# LastAction.action_type values
ACTION_NONE = 0
ACTION_DRAW = 1
ACTION_PLAY = 2
ACTION_ZAPZAP = 3


class SnapshotError(ValueError):
    """Raised when a persisted game state cannot be turned back into a GameState."""


@dataclass
class LastAction:
    action_type: int = ACTION_NONE
    player_index: int = 0
    was_counteracted: bool = False
    caller_hand_points: int = 0


@dataclass
class CardTracker:
    """
    Cards each player is known to hold because they took them from the
    played pile and have not played them back since. Used by policies for
    inference only, never for legality.
    """
    taken_cards: List[int] = field(default_factory=lambda: [0] * MAX_PLAYERS)
    taken_count: List[int] = field(default_factory=lambda: [0] * MAX_PLAYERS)

    def track_taken(self, player: int, card: int):
        bit = 1 << card
        if not self.taken_cards[player] & bit:
            self.taken_cards[player] |= bit
            self.taken_count[player] += 1

    def track_played(self, player: int, played: List[int]):
        for card in played:
            bit = 1 << card
            if self.taken_cards[player] & bit:
                self.taken_cards[player] &= ~bit
                self.taken_count[player] -= 1

    def has_taken(self, player: int, card: int) -> bool:
        return bool(self.taken_cards[player] & (1 << card))

    def known_cards(self, player: int) -> List[int]:
        mask = self.taken_cards[player]
        return [c for c in range(cr.DECK_SIZE) if mask & (1 << c)]

    def reset(self):
        self.taken_cards = [0] * MAX_PLAYERS
        self.taken_count = [0] * MAX_PLAYERS


@dataclass
class GameState:
    player_count: int = 4
    deck: List[int] = field(default_factory=list)
    hands: List[List[int]] = field(default_factory=list)
    last_cards_played: List[int] = field(default_factory=list)
    cards_played: List[int] = field(default_factory=list)
    discard_pile: List[int] = field(default_factory=list)
    scores: List[int] = field(default_factory=list)
    round_scores: List[int] = field(default_factory=list)
    current_turn: int = 0
    current_action: GameAction = GameAction.SELECT_HAND_SIZE
    round_number: int = 1
    starting_player: int = 0
    is_golden_score: bool = False
    eliminated_mask: int = 0
    last_action: LastAction = field(default_factory=LastAction)
    card_tracker: CardTracker = field(default_factory=CardTracker)

    def __post_init__(self):
        if not 2 <= self.player_count <= MAX_PLAYERS:
            raise ValueError(f"player_count must be in [2, {MAX_PLAYERS}], got {self.player_count}")
        if not self.hands:
            self.hands = [[] for _ in range(self.player_count)]
        if not self.scores:
            self.scores = [0] * self.player_count
        if not self.round_scores:
            self.round_scores = [0] * self.player_count

    # --- players -----------------------------------------------------------

    def is_eliminated(self, player: int) -> bool:
        return bool(self.eliminated_mask & (1 << player))

    def eliminate_player(self, player: int):
        self.eliminated_mask |= 1 << player

    def active_players(self) -> List[int]:
        return [p for p in range(self.player_count) if not self.is_eliminated(p)]

    def active_player_count(self) -> int:
        return len(self.active_players())

    def next_active(self, player: int) -> int:
        for offset in range(1, self.player_count + 1):
            nxt = (player + offset) % self.player_count
            if not self.is_eliminated(nxt):
                return nxt
        return player

    def advance_turn(self):
        self.current_turn = self.next_active(self.current_turn)

    def total_cards(self) -> int:
        return (
            len(self.deck)
            + sum(len(h) for h in self.hands)
            + len(self.last_cards_played)
            + len(self.cards_played)
            + len(self.discard_pile)
        )

    # --- card counting -----------------------------------------------------

    def _visible_cards(self, player: Optional[int] = None) -> List[int]:
        visible = self.discard_pile + self.last_cards_played + self.cards_played
        if player is not None:
            visible = visible + self.hands[player]
        return visible

    def count_visible_rank(self, r: int, player: Optional[int] = None) -> int:
        """Cards of rank `r` a player can see. Rank 13 stands for jokers."""
        if r == cr.NUM_RANKS:
            return sum(1 for c in self._visible_cards(player) if cr.is_joker(c))
        return sum(1 for c in self._visible_cards(player) if cr.rank(c) == r)

    def count_drawable_rank(self, r: int, player: Optional[int] = None) -> int:
        total = 2 if r == cr.NUM_RANKS else cr.NUM_SUITS
        return max(0, total - self.count_visible_rank(r, player))

    def draw_probability(self, r: int, player: Optional[int] = None) -> float:
        """Chance that the next deck card has rank `r`, from the player's point of view."""
        unseen = cr.DECK_SIZE - len(self._visible_cards(player))
        if unseen <= 0:
            return 0.0
        return self.count_drawable_rank(r, player) / unseen

    def is_rank_dead(self, r: int, player: Optional[int] = None) -> bool:
        return self.count_drawable_rank(r, player) == 0

    def estimate_min_hand_value(self, player: int) -> int:
        """Lower bound on a hand's value from the cards it is known to hold."""
        return cr.hand_value(self.card_tracker.known_cards(player))

    # --- invariants --------------------------------------------------------

    def check_invariants(self):
        total = self.total_cards()
        if total and total != cr.DECK_SIZE:
            raise AssertionError(f"card count is {total}, expected {cr.DECK_SIZE}")
        for p in range(self.player_count):
            over = self.scores[p] > ELIMINATION_SCORE
            if over != self.is_eliminated(p):
                raise AssertionError(f"player {p} score {self.scores[p]} disagrees with eliminated mask")
        if self.active_players() and self.is_eliminated(self.current_turn):
            raise AssertionError(f"current_turn {self.current_turn} points at an eliminated player")

    # --- snapshot ----------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "playerCount": self.player_count,
            "deck": list(self.deck),
            "hands": {str(i): list(h) for i, h in enumerate(self.hands)},
            "lastCardsPlayed": list(self.last_cards_played),
            "cardsPlayed": list(self.cards_played),
            "discardPile": list(self.discard_pile),
            "scores": list(self.scores),
            "roundScores": list(self.round_scores),
            "currentTurn": self.current_turn,
            "currentAction": self.current_action.value,
            "roundNumber": self.round_number,
            "startingPlayer": self.starting_player,
            "isGoldenScore": self.is_golden_score,
            "eliminatedMask": self.eliminated_mask,
            "lastAction": None if self.last_action.action_type == ACTION_NONE else {
                "type": self.last_action.action_type,
                "playerIndex": self.last_action.player_index,
                "wasCounteracted": self.last_action.was_counteracted,
                "callerHandPoints": self.last_action.caller_hand_points,
            },
            "takenCards": list(self.card_tracker.taken_cards[:self.player_count]),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameState":
        if not isinstance(data, dict):
            raise SnapshotError(f"snapshot must be an object, got {type(data).__name__}")
        try:
            n = _int(data["playerCount"], "playerCount")
            if not 2 <= n <= MAX_PLAYERS:
                raise SnapshotError(f"playerCount out of range: {n}")
            raw_hands = data["hands"]
            if not isinstance(raw_hands, dict):
                raise SnapshotError("hands must be an object keyed by player index")
            hands = [_cards(raw_hands.get(str(i), []), f"hands[{i}]") for i in range(n)]
            extra = set(raw_hands) - {str(i) for i in range(n)}
            if extra:
                raise SnapshotError(f"hands has unknown player keys: {sorted(extra)}")
            try:
                action = GameAction(data["currentAction"])
            except ValueError:
                raise SnapshotError(f"unknown currentAction: {data['currentAction']!r}") from None

            raw_last = data.get("lastAction")
            if raw_last is None:
                last_action = LastAction()
            elif isinstance(raw_last, dict):
                last_action = LastAction(
                    action_type=_int(raw_last["type"], "lastAction.type"),
                    player_index=_int(raw_last["playerIndex"], "lastAction.playerIndex"),
                    was_counteracted=_bool(raw_last.get("wasCounteracted", False), "lastAction.wasCounteracted"),
                    caller_hand_points=_int(raw_last.get("callerHandPoints", 0), "lastAction.callerHandPoints"),
                )
            else:
                raise SnapshotError("lastAction must be an object or null")

            tracker = CardTracker()
            taken = data.get("takenCards", [])
            if not isinstance(taken, list) or len(taken) > n:
                raise SnapshotError("takenCards must be a list with one mask per player")
            for i, mask in enumerate(taken):
                mask = _int(mask, f"takenCards[{i}]")
                if mask < 0 or mask >= 1 << cr.DECK_SIZE:
                    raise SnapshotError(f"takenCards[{i}] is not a valid card mask")
                tracker.taken_cards[i] = mask
                tracker.taken_count[i] = bin(mask).count("1")

            state = cls(
                player_count=n,
                deck=_cards(data["deck"], "deck"),
                hands=hands,
                last_cards_played=_cards(data["lastCardsPlayed"], "lastCardsPlayed"),
                cards_played=_cards(data["cardsPlayed"], "cardsPlayed"),
                discard_pile=_cards(data.get("discardPile", []), "discardPile"),
                scores=_ints(data["scores"], "scores", n),
                round_scores=_ints(data.get("roundScores", [0] * n), "roundScores", n),
                current_turn=_int(data["currentTurn"], "currentTurn"),
                current_action=action,
                round_number=_int(data["roundNumber"], "roundNumber"),
                starting_player=_int(data.get("startingPlayer", 0), "startingPlayer"),
                is_golden_score=_bool(data["isGoldenScore"], "isGoldenScore"),
                eliminated_mask=_int(data["eliminatedMask"], "eliminatedMask"),
                last_action=last_action,
                card_tracker=tracker,
            )
        except KeyError as e:
            raise SnapshotError(f"snapshot is missing key {e.args[0]!r}") from None

        if not 0 <= state.current_turn < n or not 0 <= state.starting_player < n:
            raise SnapshotError("currentTurn/startingPlayer out of range")
        if state.eliminated_mask < 0 or state.eliminated_mask >= 1 << n:
            raise SnapshotError(f"eliminatedMask out of range: {state.eliminated_mask}")
        all_cards = (
            state.deck + [c for h in state.hands for c in h]
            + state.last_cards_played + state.cards_played + state.discard_pile
        )
        if len(all_cards) != len(set(all_cards)):
            raise SnapshotError("snapshot holds the same card twice")
        if all_cards and len(all_cards) != cr.DECK_SIZE:
            raise SnapshotError(f"snapshot holds {len(all_cards)} cards, expected {cr.DECK_SIZE}")
        try:
            state.check_invariants()
        except AssertionError as e:
            raise SnapshotError(f"snapshot breaks a game invariant: {e}") from e
        return state

    @classmethod
    def from_json(cls, text: str) -> "GameState":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise SnapshotError(f"snapshot is not valid JSON: {e}") from e
        return cls.from_dict(data)


def _int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise SnapshotError(f"{name} must be an integer, got {value!r}")
    return value


def _bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise SnapshotError(f"{name} must be true or false, got {value!r}")
    return value


def _ints(values: Any, name: str, n: int) -> List[int]:
    if not isinstance(values, list) or len(values) != n:
        raise SnapshotError(f"{name} must be a list of {n} integers")
    return [_int(v, f"{name}[{i}]") for i, v in enumerate(values)]


def _cards(values: Any, name: str) -> List[int]:
    if not isinstance(values, list):
        raise SnapshotError(f"{name} must be a list of card ids")
    out = []
    for v in values:
        if not cr.is_valid_card(v):
            raise SnapshotError(f"{name} contains an invalid card id: {v!r}")
        out.append(v)
    return out
