import math

import pytest
from hypothesis import given, strategies as st

from jukegame.game.rules import (
    DEFAULT_PLAYER_GRAVITY, G_MAX, G_MIN, InfluenceZone, artist_shortfall,
    classify_gravity, exploration_phase, hard_convergence_active, normalize_gravities,
    should_fetch_target_related, should_inject_target
)


gravities = st.floats(min_value=G_MIN, max_value=G_MAX, allow_nan=False)


def test_influence_endpoints():
    assert classify_gravity(0.15).influence_percent == 0
    assert classify_gravity(0.70).influence_percent == 100


@given(gravities, gravities)
def test_influence_is_monotonic(a, b):
    low, high = sorted((a, b))
    assert classify_gravity(low).influence_percent <= classify_gravity(high).influence_percent


@pytest.mark.parametrize("gravity", [0.15, 0.19])
def test_desperation_zone(gravity):
    assert classify_gravity(gravity).zone is InfluenceZone.DESPERATION


@pytest.mark.parametrize("gravity", [0.26, 0.30, 0.42])
def test_dead_zone(gravity):
    assert classify_gravity(gravity).zone is InfluenceZone.DEAD_ZONE


def test_good_influence_zone():
    assert classify_gravity(0.51).zone is InfluenceZone.GOOD_INFLUENCE


@pytest.mark.parametrize("gravity", [0.60, 0.70])
def test_high_influence_zone(gravity):
    assert classify_gravity(gravity).zone is InfluenceZone.HIGH_INFLUENCE


def test_target_fetch_disabled_only_in_dead_zone():
    assert should_fetch_target_related(InfluenceZone.DESPERATION)
    assert not should_fetch_target_related(InfluenceZone.DEAD_ZONE)
    assert should_fetch_target_related(InfluenceZone.GOOD_INFLUENCE)
    assert should_fetch_target_related(InfluenceZone.HIGH_INFLUENCE)


@pytest.mark.parametrize("gravity,round_number", [(0.60, 1), (0.30, 10), (0.65, 5)])
def test_injection_triggers(gravity, round_number):
    assert should_inject_target(gravity, round_number)


@pytest.mark.parametrize("gravity,round_number", [(0.58, 9), (0.30, 9)])
def test_injection_does_not_trigger(gravity, round_number):
    assert not should_inject_target(gravity, round_number)


@pytest.mark.parametrize("round_number,level", [
    (0, "low"), (1, "high"), (2, "high"),
    (3, "medium"), (5, "medium"),
    (6, "low"), (10, "low"), (42, "low"),
])
def test_exploration_phase(round_number, level):
    assert exploration_phase(round_number).level == level


@given(st.integers(min_value=0, max_value=10_000))
def test_exploration_phase_defined_for_any_round(round_number):
    phase = exploration_phase(round_number)
    assert phase.drift_magnitude in (0.2, 0.5, 0.8)


def test_hard_convergence():
    assert not hard_convergence_active(9)
    assert hard_convergence_active(10)
    assert hard_convergence_active(11)


def test_normalize_gravities_fills_and_clamps():
    result = normalize_gravities({"player1": math.nan, "player2": 0.9, "player3": 0.01})
    assert result == {"player1": DEFAULT_PLAYER_GRAVITY, "player2": G_MAX, "player3": G_MIN}
    assert normalize_gravities(None) == {"player1": 0.32, "player2": 0.32}


def test_artist_shortfall():
    assert artist_shortfall(30 + 20 + 1) == 49
    assert artist_shortfall(100) == 0
    assert artist_shortfall(140) == 0
