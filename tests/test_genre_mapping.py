import pytest

from jukegame.maintenance.genre_mapping import (
    map_external_genre, normalize_genre, rank_external_genres
)


@pytest.mark.parametrize("raw,label", [
    ("rock", "Rock"),
    ("Hip Hop", "Hip-Hop"),
    ("R&B", "R&B"),
    ("contemporary r&b", "R&B"),
    ("indie rock", "Indie"),
    ("bedroom pop", "Pop"),
    ("britpop", "Pop"),
    ("garage rock revival", "Rock"),
    ("Shoegaze", "Shoegaze"),
    ("  Shoegaze ,  noise", "Shoegaze"),
])
def test_map_external_genre(raw, label):
    assert map_external_genre(raw) == label


@pytest.mark.parametrize("raw", ["", "   ", "a{color:red}", "x" * 40])
def test_unusable_names_are_dropped(raw):
    assert map_external_genre(raw) is None


def test_normalize_genre_takes_first_entry():
    assert normalize_genre("  dream   pop / shoegaze") == "dream pop"
    assert normalize_genre("folk & country") == "folk"


def test_rank_sums_votes_per_label():
    votes = [
        {"name": "indie rock", "count": 3},
        {"name": "indie", "count": 2},
        {"name": "electronic", "count": 4},
        {"name": "synth-pop", "count": 1},
        {"name": "a{color:red}", "count": 50},
    ]

    assert rank_external_genres(votes) == ["Indie", "Electronic", "Pop"]
    assert rank_external_genres(votes, limit=1) == ["Indie"]
