import pytest

from jukegame.errors import UpstreamUnavailable, ValidationError
from jukegame.game.stage1 import CandidateArtistResolver, Stage1Request
from jukegame.models.statistics import ApiStatisticsTracker

from conftest import TOKEN, cid, make_profile, make_track


SEED = cid(1, "s")
TARGET = cid(1, "x")
TRACK = cid(1, "t")


def related(prefix, count):
    return [{"id": cid(i, prefix), "name": f"{prefix}{i}"} for i in range(count)]


@pytest.fixture
def resolver(catalog, store, lazy_queue):
    catalog.tracks[TRACK] = make_track(TRACK, SEED, artist_name="Seed")
    catalog.artists[TARGET] = make_profile(TARGET, genres=["synthpop"], name="Target")
    catalog.related[SEED] = related("r", 30)
    catalog.related[TARGET] = related("g", 25)
    store.upsert_artist_profiles(make_profile(cid(i, "z")) for i in range(80))
    return CandidateArtistResolver(catalog, store, lazy_queue)


def make_request(gravity=0.32, round_number=3, target=True, track_id=TRACK):
    return Stage1Request.model_validate({
        "roundNumber": round_number,
        "playerTargets": {"player1": {"id": TARGET, "name": "Target"}} if target else {},
        "playbackState": {"item": {"id": track_id}},
        "currentPlayerId": "player1",
        "playerGravities": {"player1": gravity},
    })


def test_high_influence_seeds_target_and_injects(resolver, catalog):
    result = resolver.resolve(make_request(gravity=0.65, round_number=5), TOKEN)
    pool = result["debug"]["candidatePool"]

    assert catalog.called("get_related_artists_many") == [((SEED, TARGET),)]
    assert pool["seedArtists"] == 30
    assert pool["targetArtists"] == 20
    assert pool["targetInjected"] is True
    assert TARGET in result["relatedArtistIds"]
    assert result["debug"]["zone"]["zone"] == "HighInfluence"


def test_random_top_up_fills_the_shortfall(resolver):
    result = resolver.resolve(make_request(gravity=0.65, round_number=5), TOKEN)
    pool = result["debug"]["candidatePool"]

    assert pool["randomArtists"] == 49
    assert pool["totalUnique"] == 100
    assert len(set(result["relatedArtistIds"])) == len(result["relatedArtistIds"]) == 100
    assert SEED not in result["relatedArtistIds"]


def test_dead_zone_skips_target_fetch(resolver, catalog):
    result = resolver.resolve(make_request(gravity=0.30, round_number=3), TOKEN)
    pool = result["debug"]["candidatePool"]

    assert catalog.called("get_related_artists_many") == [((SEED,),)]
    assert pool["targetArtists"] == 0
    assert pool["targetInjected"] is False
    assert TARGET not in result["relatedArtistIds"]


def test_dead_zone_still_injects_at_round_limit(resolver, catalog):
    result = resolver.resolve(make_request(gravity=0.30, round_number=10), TOKEN)

    assert catalog.called("get_related_artists_many") == [((SEED,),)]
    assert result["debug"]["candidatePool"]["targetInjected"] is True
    assert TARGET in result["relatedArtistIds"]
    assert result["hardConvergenceActive"] is True


def test_target_related_failure_degrades_to_seed_only(resolver, catalog, store):
    catalog.failures[TARGET] = UpstreamUnavailable("Catalog returned HTTP 503", status_code=503)
    result = resolver.resolve(make_request(gravity=0.51, round_number=2), TOKEN)

    assert result["targetProfiles"]["player1"] is None
    assert result["debug"]["candidatePool"]["seedArtists"] == 30
    assert result["debug"]["candidatePool"]["targetArtists"] == 0

    refresh = [row for row in store.list_lazy_updates() if row["catalog_id"] == TARGET
               and row["payload"].get("needs_refresh")]
    assert refresh and refresh[0]["payload"]["reason"] == "related_artists_fetch_failed"


def test_unresolvable_target_is_null(resolver, catalog):
    request = Stage1Request.model_validate({
        "roundNumber": 1,
        "playerTargets": {"player2": {"name": "Nobody Known"}},
        "playbackState": {"item": {"id": TRACK}},
    })
    result = resolver.resolve(request, TOKEN)

    assert result["targetProfiles"] == {"player1": None, "player2": None}
    assert result["debug"]["candidatePool"]["targetArtists"] == 0


def test_response_shape(resolver):
    result = resolver.resolve(make_request(gravity=0.32, round_number=1, target=False), TOKEN)

    assert result["seedArtistId"] == SEED
    assert result["seedArtistName"] == "Seed"
    assert result["currentTrack"]["id"] == TRACK
    assert result["updatedGravities"] == {"player1": 0.32, "player2": 0.32}
    assert result["explorationPhase"]["level"] == "high"
    assert result["ogDrift"] == 0.2
    assert result["hardConvergenceActive"] is False


def test_current_track_from_store_skips_catalog(resolver, catalog, store):
    store.upsert_track_details([make_track(TRACK, SEED, artist_name="Seed")])
    stats = ApiStatisticsTracker()
    resolver.resolve(make_request(target=False), TOKEN, stats)

    assert catalog.called("get_track") == []
    assert stats.get_statistics()["trackDetailsCached"] == 1


def test_fetched_track_is_queued_for_write_back(resolver, store):
    resolver.resolve(make_request(target=False), TOKEN)
    keys = {row["dedupe_key"] for row in store.list_lazy_updates()}
    assert f"track_details:{TRACK}" in keys


def test_missing_playback_state_is_rejected(resolver):
    request = Stage1Request.model_validate({"roundNumber": 1})
    with pytest.raises(ValidationError):
        resolver.resolve(request, TOKEN)


def test_non_catalog_seed_is_rejected(resolver, catalog):
    catalog.tracks[TRACK] = make_track(TRACK, "3f2b9c1e-uuid-shaped")
    with pytest.raises(ValidationError):
        resolver.resolve(make_request(target=False), TOKEN)


def test_unknown_track_propagates_not_found(resolver):
    with pytest.raises(UpstreamUnavailable) as excinfo:
        resolver.resolve(make_request(target=False, track_id=cid(404, "t")), TOKEN)
    assert excinfo.value.not_found


def test_rejected_request_queues_nothing(resolver, catalog, store):
    request = Stage1Request.model_validate({
        "roundNumber": 1,
        "playerTargets": {"player1": {"id": TARGET, "name": "Target"}},
        "playbackState": None,
    })
    with pytest.raises(ValidationError):
        resolver.resolve(request, TOKEN)

    assert catalog.called("get_artist") == []
    assert store.count_lazy_updates()["pending"] == 0


def test_non_catalog_seed_queues_nothing(resolver, catalog, store):
    catalog.tracks[TRACK] = make_track(TRACK, "3f2b9c1e-uuid-shaped")
    with pytest.raises(ValidationError):
        resolver.resolve(make_request(), TOKEN)

    assert catalog.called("get_artist") == []
    assert store.count_lazy_updates()["pending"] == 0
