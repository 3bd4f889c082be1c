import pytest

from zapzap import cards as cr
from zapzap.engine import GameEngine
from zapzap.network import DecisionType, FlatQNetwork
from zapzap.policy import (
    BOTS,
    MAX_HAND_SIZE_NORMAL,
    MIN_HAND_SIZE,
    HardBot,
    TrainedPolicy,
    TunedBot,
    TunedBotParams,
    best_played_card,
    get_bot,
    play_for_type,
)
from zapzap.state import GameAction, GameState


def test_play_types():
    hand = cr.parse_hand("KS KH 3D 4D 5D JOKER1")
    for t in range(5):
        play = play_for_type(hand, t)
        assert cr.is_valid_play(play) and set(play) <= set(hand), f"type {t} gave {play}"
    optimal = play_for_type(hand, 0)
    assert cr.hand_value(cr.remaining_after(hand, optimal)) == min(
        cr.hand_value(cr.remaining_after(hand, p)) for p in cr.find_all_valid_plays(hand)
    )
    assert play_for_type(hand, 1) == [cr.parse_card("KS")], "highest single, first on ties"
    assert not any(cr.is_joker(c) for c in play_for_type(hand, 3))
    joker_play = play_for_type(hand, 4)
    assert 52 in joker_play and len(joker_play) > 1
    assert play_for_type([], 0) == []


def test_play_type_falls_back_to_optimal():
    hand = cr.parse_hand("9S")
    assert play_for_type(hand, 2) == [cr.parse_card("9S")], "no multi-card play available"
    assert play_for_type(hand, 4) == [cr.parse_card("9S")]


def test_best_played_card():
    assert best_played_card(cr.parse_hand("3S JOKER2 AH")) == 53, "jokers first"
    assert best_played_card(cr.parse_hand("3S AH")) == cr.parse_card("AH")
    assert best_played_card([]) is None


def test_registry():
    assert set(BOTS) == {"random", "hard", "tuned"}
    assert isinstance(get_bot("hard", seed=1), HardBot)
    with pytest.raises(ValueError):
        get_bot("perfect")


def test_bots_give_legal_answers():
    for name in BOTS:
        engine = GameEngine([get_bot(name, seed=i) for i in range(3)], seed=8)
        s = engine.state
        bot = engine.policies[0]
        size = bot.select_hand_size(s, 0)
        assert MIN_HAND_SIZE <= size <= MAX_HAND_SIZE_NORMAL
        engine.select_hand_size(0, size)
        play = bot.select_play(s, 0)
        assert cr.is_valid_play(play) and set(play) <= set(s.hands[0]), f"{name} played {play}"
        engine.play(0, play)
        card = bot.select_draw_source(s, 0)
        assert card is None or card in s.last_cards_played


def test_hard_bot_zapzap_threshold_loosens():
    s = GameState(player_count=2)
    s.hands = [cr.parse_hand("AS 3H"), cr.parse_hand("KD")]
    bot = HardBot(seed=0)
    s.round_number = 1
    assert not bot.should_call_zapzap(s, 0), "4 points is too risky early"
    s.round_number = 6
    assert bot.should_call_zapzap(s, 0)
    s.hands[0] = cr.parse_hand("AS AH")
    s.round_number = 1
    assert bot.should_call_zapzap(s, 0), "2 points is always safe"


def test_tuned_bot_uses_its_params():
    s = GameState(player_count=2)
    s.hands = [cr.parse_hand("2S 2H"), cr.parse_hand("KD QD JD 10D 9D")]
    cautious = TunedBot(TunedBotParams(zapzap_moderate_value_threshold=3))
    bold = TunedBot(TunedBotParams(zapzap_moderate_value_threshold=5))
    assert not cautious.should_call_zapzap(s, 0)
    assert bold.should_call_zapzap(s, 0)
    assert TunedBot().keep_score(52, s.hands[0], s, 0) == TunedBotParams().joker_keep_score


def test_tuned_bot_calls_when_known_cards_beat_everyone():
    s = GameState(player_count=3)
    s.hands = [cr.parse_hand("2S 2H"), cr.parse_hand("KD 5C"), cr.parse_hand("QH 6C JOKER1")]
    cautious = TunedBot(TunedBotParams(zapzap_moderate_value_threshold=3))
    assert not cautious.should_call_zapzap(s, 0), "nothing is known about the opponents"
    s.card_tracker.track_taken(1, cr.parse_card("5C"))
    assert not cautious.should_call_zapzap(s, 0), "one opponent is still unknown"
    s.card_tracker.track_taken(2, cr.parse_card("6C"))
    assert cautious.should_call_zapzap(s, 0), "both opponents took cards worth more than our 4"


def test_tuned_keep_score_follows_draw_chances():
    s = GameState(player_count=2)
    s.hands = [cr.parse_hand("7C 9S"), []]
    bot = TunedBot(TunedBotParams(value_score_weight=0, sequence_part_bonus=0))
    p = bot.params
    assert bot.keep_score(cr.parse_card("7C"), s.hands[0], s, 0) == p.good_pair_chance_bonus
    s.discard_pile = cr.parse_hand("7S 7H")
    assert bot.keep_score(cr.parse_card("7C"), s.hands[0], s, 0) == p.low_pair_chance_bonus, \
        "one seven left among 50 unseen"
    s.discard_pile.append(cr.parse_card("7D"))
    assert bot.keep_score(cr.parse_card("7C"), s.hands[0], s, 0) == -p.dead_rank_penalty


def test_trained_policy_records_decisions():
    engine = GameEngine([TrainedPolicy(FlatQNetwork(seed=1), seed=0), HardBot(seed=1)], seed=0)
    s = engine.state
    policy = engine.policies[0]
    size = policy.select_hand_size(s, 0)
    features, action = policy.last_decision
    assert size == MIN_HAND_SIZE + action and features.shape == (45,)
    engine.select_hand_size(0, size)
    assert s.current_action == GameAction.PLAY
    play = policy.select_play(s, 0)
    assert cr.is_valid_play(play)
    assert 0 <= policy.last_decision[1] < 5
    greedy = policy.network.greedy_action(policy.last_decision[0], DecisionType.PLAY_TYPE)
    assert policy.last_decision[1] == greedy, "epsilon 0 is greedy"
