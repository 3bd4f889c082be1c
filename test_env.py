import numpy as np

from zapzap.env import INVALID_ACTION_PENALTY, ZapZapEnv
from zapzap.network import DecisionType


def _play_out(env, max_steps=20000):
    total, steps = 0.0, 0
    done = truncated = False
    info = {}
    while not (done or truncated) and steps < max_steps:
        action = int(np.flatnonzero(info.get("action_mask", env.action_mask()))[0])
        _, reward, done, truncated, info = env.step(action)
        total += reward
        steps += 1
    return total, done, truncated, info


def test_reset():
    env = ZapZapEnv(opponents=["hard", "random"], max_rounds=10)
    obs, info = env.reset(seed=0)
    assert obs.shape == env.observation_space.shape and obs.dtype == np.float32
    assert info["decision_type"] == int(DecisionType.HAND_SIZE), "seat 0 opens the first round"
    assert info["action_mask"].tolist() == [1] * 7
    assert env.action_space.n == 7
    assert env.legal_actions() == list(range(7))


def test_action_mask_follows_decision_type():
    env = ZapZapEnv(opponents=["hard"], max_rounds=5)
    _, info = env.reset(seed=3)
    _, _, _, _, info = env.step(0)  # four cards
    dt = info["decision_type"]
    mask = info["action_mask"]
    if dt == int(DecisionType.ZAPZAP):
        assert mask.tolist() == [1, 1, 0, 0, 0, 0, 0]
    elif dt == int(DecisionType.PLAY_TYPE):
        assert mask.tolist() == [1, 1, 1, 1, 1, 0, 0]


def test_full_game_ends_with_outcome_reward():
    env = ZapZapEnv(opponents=["hard", "tuned"], max_rounds=20)
    env.reset(seed=1)
    total, done, truncated, info = _play_out(env)
    assert done or truncated, "the match should end within the round cap"
    assert "winner" in info and "scores" in info
    if done:
        expected = env.win_reward if info["winner"] == 0 else env.loss_reward
        assert np.isclose(total, expected)
    assert env.legal_actions() == [], "no decision is pending once the match is over"
    _, reward, d, t, _ = env.step(0)
    assert reward == 0.0 and (d or t), "stepping a finished match is a no-op"


def test_invalid_action_is_penalized():
    env = ZapZapEnv(opponents=["hard"], max_rounds=5)
    env.reset(seed=2)
    while env.decision_type != DecisionType.DRAW_SOURCE:
        assert not (env.done or env.truncated), "seat 0 should reach a draw decision"
        env.step(env.legal_actions()[0])
    assert env.legal_actions() in ([0], [0, 1])
    _, reward, done, _, _ = env.step(5)  # DrawSource has two actions
    final = 0.0
    if done:
        final = env.win_reward if env.engine.winner() == 0 else env.loss_reward
    assert np.isclose(reward, INVALID_ACTION_PENALTY + final)


def test_seeded_resets_repeat():
    a, b = ZapZapEnv(opponents=["random", "hard"]), ZapZapEnv(opponents=["random", "hard"])
    oa, _ = a.reset(seed=7)
    ob, _ = b.reset(seed=7)
    assert np.array_equal(oa, ob)
    for _ in range(30):
        if a.done or a.truncated:
            break
        action = int(np.flatnonzero(a.action_mask())[0])
        ra = a.step(action)
        rb = b.step(action)
        assert np.array_equal(ra[0], rb[0]) and ra[1:4] == rb[1:4]
