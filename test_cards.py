import random

import pytest

from zapzap import cards as cr


def test_decoders():
    assert cr.rank(0) == 0 and cr.suit(0) == 0, "card 0 is the ace of spades"
    assert cr.rank(22) == 9 and cr.suit(22) == 1, "card 22 is the ten of hearts"
    assert cr.rank(52) == cr.NO_RANK and cr.suit(53) == cr.NO_SUIT, "jokers have no rank or suit"
    assert cr.points(12) == 13, "a king is worth 13"
    assert cr.points(52) == 0, "jokers are worth 0 for eligibility"
    assert cr.card_label(22) == "10H"
    assert cr.parse_card("5s") == 4
    assert cr.parse_card("JOKER") == 52
    assert cr.parse_hand("AS 2S JOKER2") == [0, 1, 53]
    with pytest.raises(ValueError):
        cr.parse_card("11S")


def test_hand_score_joker_penalty():
    hand = cr.parse_hand("AS JOKER1")
    assert cr.hand_value(hand) == 1
    assert cr.hand_score(hand, is_lowest=True) == 1, "jokers are free for the lowest hand"
    assert cr.hand_score(hand, is_lowest=False) == 26, "jokers cost 25 otherwise"
    assert cr.can_zapzap(cr.parse_hand("2S 3H")), "5 points is eligible"
    assert not cr.can_zapzap(cr.parse_hand("2S 4H")), "6 points is not"


def test_validity_predicates():
    assert cr.is_valid_play([7]), "any single card is a play"
    assert not cr.is_valid_play([]), "empty play"
    assert not cr.is_valid_play([4, 4]), "the same card twice"
    assert cr.is_valid_same_rank(cr.parse_hand("7S 7H JOKER1"))
    assert cr.is_valid_same_rank([52, 53]), "two jokers form a pair"
    assert not cr.is_valid_same_rank(cr.parse_hand("7S 8S"))
    assert cr.is_valid_sequence(cr.parse_hand("AS 2S 3S"))
    assert cr.is_valid_sequence(cr.parse_hand("5S 7S JOKER1")), "joker fills the hole"
    assert not cr.is_valid_sequence(cr.parse_hand("5S 7S 9S")), "two holes, no jokers"
    assert not cr.is_valid_sequence(cr.parse_hand("5S 6H 7S")), "mixed suits"
    assert not cr.is_valid_sequence(cr.parse_hand("5S 6S")), "too short"


def test_single_sequence_ace_to_three():
    hand = cr.parse_hand("AS 2S 3S")
    sequences = cr.find_sequence_plays(hand)
    assert len(sequences) == 1, f"expected one sequence, got {sequences}"
    assert sorted(sequences[0]) == hand
    plays = cr.find_all_valid_plays(hand)
    assert len(plays) == 4, "three singles and the run"


def test_joker_completes_gapped_sequence():
    hand = cr.parse_hand("5S 7S JOKER1")
    sequences = cr.find_sequence_plays(hand)
    assert [4, 6, 52] in sequences, f"5S 7S JOKER should be a run, got {sequences}"
    assert all(cr.is_valid_sequence(s) for s in sequences)


def test_same_rank_with_jokers():
    hand = cr.parse_hand("AS AH AC JOKER1")
    groups = cr.find_same_rank_plays(hand)
    assert [0, 13, 26] in groups
    assert [0, 13, 26, 52] in groups, "three of a kind plus a joker"
    assert len(groups) == 2, f"unexpected groups {groups}"

    lone = cr.find_same_rank_plays(cr.parse_hand("9D JOKER1 JOKER2"))
    assert [47, 52] in lone and [47, 52, 53] in lone
    assert [52, 53] in lone, "the jokers alone"


def test_all_plays_are_valid_and_include_singles():
    rng = random.Random(7)
    for _ in range(300):
        hand = rng.sample(range(cr.DECK_SIZE), rng.randint(1, 10))
        plays = cr.find_all_valid_plays(hand)
        for c in hand:
            assert [c] in plays, f"single {cr.card_label(c)} missing from {cr.format_hand(hand)}"
        keys = [frozenset(p) for p in plays]
        assert len(keys) == len(set(keys)), f"duplicate plays for {cr.format_hand(hand)}"
        for p in plays:
            assert cr.is_valid_play(p), f"invalid play {cr.format_hand(p)} from {cr.format_hand(hand)}"
            assert set(p) <= set(hand)


def test_max_point_play_and_helpers():
    hand = cr.parse_hand("KS KH AS")
    assert sorted(cr.find_max_point_play(hand)) == [12, 25], "the kings are worth 26"
    assert cr.find_max_point_play([]) is None
    assert cr.remaining_after(hand, [12, 25]) == [0]
    assert cr.would_complete_pair(cr.parse_hand("AH"), cr.parse_card("AS"))
    assert not cr.would_complete_pair(cr.parse_hand("AH"), 52)
    assert cr.would_complete_sequence(cr.parse_hand("2S 3S"), cr.parse_card("AS"))
    assert not cr.would_complete_sequence(cr.parse_hand("2S 3H"), cr.parse_card("AS"))
