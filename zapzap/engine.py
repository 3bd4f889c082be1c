# zapzap/engine.py
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from zapzap import cards as cr
from zapzap.collector import TransitionCollector
from zapzap.features import extract_features, extract_hand_size_features
from zapzap.network import ACTION_DIMS, DecisionType
from zapzap.policy import (
    DRAW_DECK,
    DRAW_PLAYED,
    MAX_HAND_SIZE_GOLDEN,
    MAX_HAND_SIZE_NORMAL,
    MIN_HAND_SIZE,
    DecisionPolicy,
    draw_for_source,
    play_for_type,
)
from zapzap.state import (
    ACTION_DRAW,
    ACTION_PLAY,
    ACTION_ZAPZAP,
    ELIMINATION_SCORE,
    GameAction,
    GameState,
    LastAction,
)

logger = logging.getLogger(__name__)

COUNTERACT_PENALTY = 5


class IllegalActionError(ValueError):
    """A move that the current phase, player or hand does not allow. The state is left untouched."""


@dataclass
class RoundOutcome:
    caller: int
    counteracted: bool
    round_scores: List[int]
    lowest_players: List[int]


@dataclass
class GameResult:
    winner: Optional[int]
    total_rounds: int
    final_scores: List[int]
    was_golden_score: bool
    player_count: int
    hit_round_cap: bool = False


def clamp_hand_size(size: int, golden: bool) -> int:
    upper = MAX_HAND_SIZE_GOLDEN if golden else MAX_HAND_SIZE_NORMAL
    return max(MIN_HAND_SIZE, min(upper, int(size)))


class GameEngine:
    """
    Drives one match through SelectHandSize -> Play -> Draw ... -> ZapZap
    -> Finished, round after round.

    The move methods (select_hand_size, play, draw, call_zapzap,
    decline_zapzap, end_round) can be called directly, e.g. by ZapZapEnv;
    step() and run_game() ask the seated policies instead. Seats listed in
    `record_players` have their decisions written to `collector`.
    """

    def __init__(self, policies: Sequence[Optional[DecisionPolicy]], seed: Optional[int] = None,
                 max_rounds: int = 100, max_turns: int = 1000,
                 collector: Optional[TransitionCollector] = None,
                 record_players: Optional[Iterable[int]] = None):
        self.policies = list(policies)
        self.rng = random.Random(seed)
        self.state = GameState(player_count=len(self.policies))
        self.max_rounds = max_rounds
        self.max_turns = max_turns
        self.collector = collector
        self.record_players: Set[int] = set(record_players or [])
        self.turns_this_round = 0
        self.last_outcome: Optional[RoundOutcome] = None
        self._zapzap_offered = False

    # =========================================================================
    # MOVES
    # =========================================================================

    def _require(self, phase: GameAction, player: int):
        s = self.state
        if s.current_action != phase:
            raise IllegalActionError(f"{phase.value} is not allowed during {s.current_action.value}")
        expected = s.starting_player if phase == GameAction.SELECT_HAND_SIZE else s.current_turn
        if player != expected:
            raise IllegalActionError(f"player {player} cannot act, it is player {expected}'s turn")

    def select_hand_size(self, player: int, size: int) -> int:
        """Deal a fresh shuffled deck; returns the hand size actually used."""
        self._require(GameAction.SELECT_HAND_SIZE, player)
        s = self.state
        size = clamp_hand_size(size, s.is_golden_score)
        # Eight players cannot all get seven cards and leave a starter card
        size = min(size, (cr.DECK_SIZE - 1) // s.active_player_count())

        deck = list(range(cr.DECK_SIZE))
        self.rng.shuffle(deck)
        s.hands = [[] for _ in range(s.player_count)]
        for _ in range(size):
            for p in s.active_players():
                s.hands[p].append(deck.pop())
        s.last_cards_played = [deck.pop()]
        s.cards_played = []
        s.discard_pile = []
        s.deck = deck
        s.round_scores = [0] * s.player_count
        s.card_tracker.reset()
        s.current_turn = player
        s.current_action = GameAction.PLAY
        self.turns_this_round = 0
        self._zapzap_offered = False
        self.last_outcome = None
        return size

    def play(self, player: int, played: Sequence[int]):
        self._require(GameAction.PLAY, player)
        s = self.state
        played = list(played)
        hand = s.hands[player]
        if not played:
            raise IllegalActionError("must play at least one card")
        missing = [c for c in played if c not in hand]
        if missing:
            raise IllegalActionError(f"cards not in hand: {cr.format_hand(missing)}")
        if not cr.is_valid_play(played):
            raise IllegalActionError(f"not a valid combination: {cr.format_hand(played)}")

        s.card_tracker.track_played(player, played)
        s.hands[player] = cr.remaining_after(hand, played)
        # The round's first play keeps the flipped starter card on top
        if s.cards_played:
            s.discard_pile.extend(s.last_cards_played)
            s.last_cards_played = s.cards_played
        s.cards_played = played
        s.current_action = GameAction.DRAW
        s.last_action = LastAction(ACTION_PLAY, player)

    def draw(self, player: int, card: Optional[int] = None) -> Optional[int]:
        """
        Draw from the deck (card=None) or take `card` from the previous
        player's cards, then pass the turn. Returns the card drawn, or None
        when the deck and discard are both empty and the draw is skipped.
        """
        self._require(GameAction.DRAW, player)
        s = self.state
        if card is not None:
            if card not in s.last_cards_played:
                raise IllegalActionError(f"{cr.card_label(card)} is not among the last cards played")
            s.last_cards_played.remove(card)
            s.card_tracker.track_taken(player, card)
            drawn: Optional[int] = card
        else:
            if not s.deck and s.discard_pile:
                s.deck = s.discard_pile
                s.discard_pile = []
                self.rng.shuffle(s.deck)
            drawn = s.deck.pop() if s.deck else None
            if drawn is None:
                logger.debug("Deck and discard empty, player %d skips the draw", player)
        if drawn is not None:
            s.hands[player].append(drawn)
        s.last_action = LastAction(ACTION_DRAW, player)
        self._end_turn()
        return drawn

    def _end_turn(self):
        s = self.state
        s.advance_turn()
        s.current_action = GameAction.PLAY
        self.turns_this_round += 1
        self._zapzap_offered = False

    def decline_zapzap(self, player: int):
        self._require(GameAction.PLAY, player)
        self._zapzap_offered = True

    def call_zapzap(self, player: int) -> RoundOutcome:
        self._require(GameAction.PLAY, player)
        s = self.state
        if not cr.can_zapzap(s.hands[player]):
            raise IllegalActionError(
                f"hand value {cr.hand_value(s.hands[player])} is above {cr.ZAPZAP_THRESHOLD}"
            )
        active = s.active_players()
        others = [p for p in active if p != player]
        base = {p: cr.hand_value(s.hands[p]) for p in active}
        caller_value = base[player]
        # Ties go against the caller
        counteracted = any(base[p] <= caller_value for p in others)

        round_scores = [0] * s.player_count
        if counteracted:
            lowest_value = min(base[p] for p in others)
            lowest = [p for p in others if base[p] == lowest_value]
            round_scores[player] = cr.hand_score(s.hands[player], False) + (len(active) - 1) * COUNTERACT_PENALTY
        else:
            lowest = [player]
        for p in others:
            if p not in lowest:
                round_scores[p] = cr.hand_score(s.hands[p], False)

        s.round_scores = round_scores
        for p in active:
            s.scores[p] += round_scores[p]
            if s.scores[p] > ELIMINATION_SCORE:
                s.eliminate_player(p)
        if s.is_eliminated(s.current_turn):
            s.advance_turn()
        s.current_action = GameAction.FINISHED
        s.last_action = LastAction(ACTION_ZAPZAP, player, counteracted, caller_value)

        outcome = RoundOutcome(player, counteracted, list(round_scores), lowest)
        self.last_outcome = outcome
        logger.debug("Round %d: player %d called ZapZap at %d, counteracted=%s, scores %s",
                     s.round_number, player, caller_value, counteracted, s.scores)
        return outcome

    def abort_round(self):
        """End a round that hit the turn cap without scoring it."""
        logger.warning("Round %d hit the %d-turn cap, ending it unscored", self.state.round_number, self.max_turns)
        self.state.round_scores = [0] * self.state.player_count
        self.state.current_action = GameAction.FINISHED

    def end_round(self):
        s = self.state
        if s.current_action != GameAction.FINISHED:
            raise IllegalActionError(f"cannot end the round during {s.current_action.value}")
        if s.active_player_count() == 2:
            s.is_golden_score = True
        s.starting_player = s.next_active(s.starting_player) if s.active_player_count() > 1 \
            else s.active_players()[0]
        s.current_turn = s.starting_player
        s.round_number += 1
        s.current_action = GameAction.SELECT_HAND_SIZE

    # =========================================================================
    # GAME FLOW
    # =========================================================================

    def is_game_over(self) -> bool:
        s = self.state
        if s.active_player_count() <= 1:
            return True
        # A round that was played in Golden Score decides the match
        if s.current_action == GameAction.FINISHED and s.is_golden_score:
            active = s.active_players()
            return len({s.round_scores[p] for p in active}) > 1
        return False

    def winner(self) -> Optional[int]:
        s = self.state
        active = s.active_players()
        if not active:
            return None
        if len(active) == 1:
            return active[0]
        if s.current_action == GameAction.FINISHED and s.is_golden_score:
            return min(active, key=lambda p: (s.round_scores[p], p))
        return min(active, key=lambda p: (s.scores[p], p))

    def pending_decision(self) -> Optional[Tuple[int, DecisionType]]:
        """Whose decision comes next and of which type; None once the round is finished."""
        s = self.state
        if s.current_action == GameAction.SELECT_HAND_SIZE:
            return s.starting_player, DecisionType.HAND_SIZE
        if s.current_action == GameAction.PLAY:
            if not self._zapzap_offered and cr.can_zapzap(s.hands[s.current_turn]):
                return s.current_turn, DecisionType.ZAPZAP
            return s.current_turn, DecisionType.PLAY_TYPE
        if s.current_action == GameAction.DRAW:
            return s.current_turn, DecisionType.DRAW_SOURCE
        return None

    def apply_action(self, player: int, decision_type: DecisionType, action: int):
        """Carry out a decision given as a Q-network action index."""
        if not 0 <= action < ACTION_DIMS[decision_type]:
            raise IllegalActionError(f"action {action} out of range for {decision_type.name}")
        s = self.state
        if decision_type == DecisionType.HAND_SIZE:
            self.select_hand_size(player, MIN_HAND_SIZE + action)
        elif decision_type == DecisionType.ZAPZAP:
            if action == 1:
                self.call_zapzap(player)
            else:
                self.decline_zapzap(player)
        elif decision_type == DecisionType.PLAY_TYPE:
            if not s.hands[player]:
                self.call_zapzap(player)
            else:
                self.play(player, play_for_type(s.hands[player], action))
        else:
            self.draw(player, draw_for_source(s, action))

    def _recording(self, player: int) -> bool:
        return self.collector is not None and player in self.record_players

    def _record(self, player: int, decision_type: DecisionType, policy: DecisionPolicy,
                features: Optional[np.ndarray], derived_action: Optional[int]):
        if not self._recording(player):
            return
        if policy.last_decision is not None:
            features, action = policy.last_decision
        else:
            action = derived_action
        if features is None or action is None:
            return
        self.collector.record(player, features, action, int(decision_type))

    def _ask(self, policy: DecisionPolicy, method: Callable, player: int):
        policy.last_decision = None
        return method(self.state, player)

    def step(self):
        """Let the policy whose turn it is make one decision."""
        pending = self.pending_decision()
        if pending is None:
            raise IllegalActionError("round is finished, call end_round()")
        player, dt = pending
        policy = self.policies[player]
        if policy is None:
            raise RuntimeError(f"seat {player} has no policy to step")
        s = self.state
        recording = self._recording(player)

        if dt == DecisionType.HAND_SIZE:
            features = extract_hand_size_features(
                s.active_player_count(), s.is_golden_score, s.scores[player]) if recording else None
            size = self._ask(policy, policy.select_hand_size, player)
            size = self.select_hand_size(player, size)
            # Record the hand size actually dealt
            if policy.last_decision is not None:
                policy.last_decision = (policy.last_decision[0], size - MIN_HAND_SIZE)
            self._record(player, dt, policy, features, size - MIN_HAND_SIZE)

        elif dt == DecisionType.ZAPZAP:
            features = extract_features(s, player) if recording else None
            call = bool(self._ask(policy, policy.should_call_zapzap, player))
            self._record(player, dt, policy, features, int(call))
            if call:
                self.call_zapzap(player)
            else:
                self.decline_zapzap(player)

        elif dt == DecisionType.PLAY_TYPE:
            if not s.hands[player]:
                self.call_zapzap(player)
                return
            played = self._ask(policy, policy.select_play, player)
            self._record(player, dt, policy, None, None)
            try:
                self.play(player, played or [])
            except IllegalActionError as e:
                logger.warning("%s returned an illegal play (%s), playing first card", policy.name, e)
                self.play(player, [s.hands[player][0]])

        else:
            if not s.last_cards_played:
                self.draw(player)
                return
            features = extract_features(s, player) if recording else None
            card = self._ask(policy, policy.select_draw_source, player)
            if card is not None and card not in s.last_cards_played:
                logger.warning("%s asked for a card that is not available, drawing from deck", policy.name)
                card = None
            self._record(player, dt, policy, features, DRAW_DECK if card is None else DRAW_PLAYED)
            self.draw(player, card)

    def play_round(self):
        while self.state.current_action != GameAction.FINISHED:
            if self.turns_this_round >= self.max_turns:
                self.abort_round()
                break
            self.step()

    def run_game(self) -> GameResult:
        hit_cap = False
        while True:
            self.play_round()
            if self.is_game_over():
                break
            if self.state.round_number >= self.max_rounds:
                hit_cap = True
                break
            self.end_round()
        return self.result(hit_cap)

    def result(self, hit_round_cap: bool = False) -> GameResult:
        s = self.state
        return GameResult(
            winner=self.winner(),
            total_rounds=s.round_number,
            final_scores=list(s.scores),
            was_golden_score=s.is_golden_score,
            player_count=s.player_count,
            hit_round_cap=hit_round_cap,
        )


def run_game(policies: Sequence[DecisionPolicy], seed: Optional[int] = None, **kwargs) -> GameResult:
    return GameEngine(policies, seed=seed, **kwargs).run_game()
