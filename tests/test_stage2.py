import random

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from jukegame.game.stage2 import CandidateTrackAssembler, Stage2Request
from jukegame.maintenance.healing import SelfHealingQueue
from jukegame.models.config_models import PipelineConfig

from conftest import TOKEN, cid, make_profile, make_track


ARTISTS = [cid(i, "p") for i in range(10)]


def top_tracks_for(index):
    return [make_track(cid(index * 10 + j, "k"), ARTISTS[index]) for j in range(3)]


@pytest.fixture
def healing(lazy_queue):
    return SelfHealingQueue(lazy_queue)


@pytest.fixture
def assembler(catalog, store, lazy_queue, healing):
    for i in range(len(ARTISTS)):
        catalog.top_tracks[ARTISTS[i]] = top_tracks_for(i)
        store.upsert_track_details(top_tracks_for(i))
    store.upsert_track_details(make_track(cid(i, "e"), cid(i % 40, "q")) for i in range(150))
    return CandidateTrackAssembler(
        catalog, store, lazy_queue, healing,
        settings=PipelineConfig(max_top_track_fetches=10),
        rng=random.Random(3),
    )


def seed_ids(result, source=None):
    return [s["track"]["id"] for s in result["seeds"] if source is None or s["source"] == source]


def test_pool_is_topped_up_to_minimum(assembler):
    request = Stage2Request(artist_ids=ARTISTS, played_track_ids=[cid(0, "k")])
    result = assembler.assemble(request, TOKEN)

    assert result["debug"]["organicCount"] == 10
    assert result["debug"]["topUpCount"] == 90
    assert len(result["seeds"]) == 100
    assert len(set(seed_ids(result))) == 100


def test_top_up_avoids_exclusions_and_organic_tracks(assembler):
    excluded = {cid(0, "k"), cid(1, "e"), cid(2, "e")}
    request = Stage2Request(artist_ids=ARTISTS, played_track_ids=sorted(excluded - {cid(2, "e")}),
                            current_track_id=cid(2, "e"))
    result = assembler.assemble(request, TOKEN)

    organic = set(seed_ids(result, "top-track"))
    embedding = set(seed_ids(result, "embedding"))
    assert not organic & excluded
    assert not embedding & excluded
    assert not embedding & organic


@settings(max_examples=20, deadline=None,
          suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(st.sets(st.integers(min_value=0, max_value=149), max_size=60))
def test_top_up_never_returns_excluded_tracks(assembler, excluded_indexes):
    excluded = [cid(i, "e") for i in excluded_indexes]
    result = assembler.assemble(Stage2Request(artist_ids=ARTISTS, played_track_ids=excluded), TOKEN)

    ids = seed_ids(result)
    assert len(ids) == len(set(ids))
    assert not set(ids) & set(excluded)


def test_one_seed_per_artist_from_top_tracks(assembler):
    result = assembler.assemble(Stage2Request(artist_ids=ARTISTS[:3]), TOKEN)
    organic = [s for s in result["seeds"] if s["source"] == "top-track"]

    assert [s["seedArtistId"] for s in organic] == ARTISTS[:3]
    for seed in organic:
        allowed = {t.id for t in top_tracks_for(ARTISTS.index(seed["seedArtistId"]))}
        assert seed["track"]["id"] in allowed


def test_shared_top_track_is_used_once(catalog, store, lazy_queue):
    shared = make_track(cid(1, "k"), cid(1, "p"))
    catalog.top_tracks = {cid(1, "p"): [shared], cid(2, "p"): [shared]}
    assembler = CandidateTrackAssembler(catalog, store, lazy_queue,
                                        settings=PipelineConfig(min_candidate_pool=1))

    result = assembler.assemble(Stage2Request(artist_ids=[cid(1, "p"), cid(2, "p")]), TOKEN)
    assert seed_ids(result) == [cid(1, "k")]


def test_artist_with_only_excluded_tracks_contributes_nothing(catalog, store, lazy_queue):
    catalog.top_tracks = {cid(1, "p"): [make_track(cid(1, "k"), cid(1, "p"))]}
    assembler = CandidateTrackAssembler(catalog, store, lazy_queue,
                                        settings=PipelineConfig(min_candidate_pool=1))

    result = assembler.assemble(
        Stage2Request(artist_ids=[cid(1, "p")], current_track_id=cid(1, "k")), TOKEN
    )
    assert result["seeds"] == []
    assert result["debug"]["organicCount"] == 0


def test_unplayable_tracks_are_healed_not_cached(catalog, store, lazy_queue, healing):
    artist = cid(1, "p")
    good, bad = make_track(cid(1, "k"), artist), make_track(cid(2, "k"), artist, playable=False)
    catalog.top_tracks = {artist: [bad, good]}
    assembler = CandidateTrackAssembler(catalog, store, lazy_queue, healing,
                                        settings=PipelineConfig(min_candidate_pool=1))

    result = assembler.assemble(Stage2Request(artist_ids=[artist]), TOKEN)

    assert seed_ids(result) == [good.id]
    assert healing.get_status()["actions"][0]["entityId"] == bad.id

    queued = {row["dedupe_key"]: row["payload"] for row in store.list_lazy_updates()}
    assert [t["id"] for t in queued[f"track_details:{artist}"]["tracks"]] == [good.id]
    assert queued[f"artist_top_tracks:{artist}"] == {"track_ids": [good.id]}


def test_cached_top_tracks_skip_the_catalog(catalog, store, lazy_queue):
    artist = cid(1, "p")
    store.upsert_track_details([make_track(cid(1, "k"), artist)])
    store.upsert_top_tracks(artist, [cid(1, "k")])
    assembler = CandidateTrackAssembler(catalog, store, lazy_queue,
                                        settings=PipelineConfig(min_candidate_pool=1))

    result = assembler.assemble(Stage2Request(artist_ids=[artist]), TOKEN)
    assert seed_ids(result) == [cid(1, "k")]
    assert catalog.called("get_top_tracks_many") == []


def test_top_track_fetches_are_bounded(catalog, store, lazy_queue):
    assembler = CandidateTrackAssembler(catalog, store, lazy_queue,
                                        settings=PipelineConfig(max_top_track_fetches=5))
    assembler.assemble(Stage2Request(artist_ids=ARTISTS), TOKEN)

    [(fetched,)] = catalog.called("get_top_tracks_many")
    assert list(fetched) == ARTISTS[:5]


def test_supplied_profiles_are_reused(assembler, catalog):
    profile = make_profile(ARTISTS[0], genres=["krautrock"])
    catalog.artists[ARTISTS[1]] = make_profile(ARTISTS[1], genres=["post-punk"])

    result = assembler.assemble(
        Stage2Request(artist_ids=ARTISTS[:2], profiles={ARTISTS[0]: profile}), TOKEN
    )

    assert result["profiles"][ARTISTS[0]]["genres"] == ["krautrock"]
    assert result["profiles"][ARTISTS[1]]["genres"] == ["post-punk"]
    assert catalog.called("get_artists") == [((ARTISTS[1],),)]


def test_non_catalog_artist_ids_are_dropped(assembler, catalog):
    result = assembler.assemble(Stage2Request(artist_ids=["not-a-catalog-id", ARTISTS[0]]), TOKEN)

    assert catalog.called("get_top_tracks_many") == [((ARTISTS[0],),)]
    assert result["debug"]["organicCount"] == 1
