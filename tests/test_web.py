import pytest

from jukegame.errors import UpstreamUnavailable

from conftest import TOKEN, cid, make_profile, make_track


AUTH = {"Authorization": f"Bearer {TOKEN}"}
SEED = cid(1, "s")
TRACK = cid(1, "t")


@pytest.fixture
def round_catalog(catalog, store):
    catalog.tracks[TRACK] = make_track(TRACK, SEED, artist_name="Seed")
    catalog.related[SEED] = [{"id": cid(i, "r"), "name": f"r{i}"} for i in range(5)]
    catalog.top_tracks[cid(1, "r")] = [make_track(cid(1, "k"), cid(1, "r"))]
    store.upsert_artist_profiles(make_profile(cid(i, "z")) for i in range(10))
    return catalog


STAGE1_BODY = {
    "roundNumber": 2,
    "playerTargets": {"player1": None, "player2": None},
    "playbackState": {"item": {"id": TRACK}},
    "currentPlayerId": "player1",
    "playerGravities": {"player1": 0.4, "player2": 0.5},
}


def test_stage1_requires_bearer_token(client):
    response = client.post("/round/stage1-init", json=STAGE1_BODY)
    assert response.status_code == 401


def test_stage1_rejects_missing_playback(client, round_catalog):
    body = {k: v for k, v in STAGE1_BODY.items() if k != "playbackState"}
    response = client.post("/round/stage1-init", json=body, headers=AUTH)
    assert response.status_code == 400


def test_stage1_rejects_bad_body(client):
    response = client.post("/round/stage1-init", json={"roundNumber": "soon"}, headers=AUTH)
    assert response.status_code == 400
    assert response.get_json()["details"]


def test_stage1_unknown_track_is_404(client, round_catalog):
    body = dict(STAGE1_BODY, playbackState={"item": {"id": cid(404, "t")}})
    response = client.post("/round/stage1-init", json=body, headers=AUTH)
    assert response.status_code == 404


def test_stage1_catalog_outage_is_500(client, round_catalog):
    round_catalog.failures[TRACK] = UpstreamUnavailable("Circuit breaker spotify is OPEN")
    response = client.post("/round/stage1-init", json=STAGE1_BODY, headers=AUTH)
    assert response.status_code == 500


def test_stage1_success(client, round_catalog):
    response = client.post("/round/stage1-init", json=STAGE1_BODY, headers=AUTH)

    assert response.status_code == 200
    data = response.get_json()
    assert data["seedArtistId"] == SEED
    assert len(data["relatedArtistIds"]) == 15
    assert data["debug"]["candidatePool"]["randomArtists"] == 10


def test_stage2_requires_bearer_token(client):
    response = client.post("/round/stage2-candidates", json={"artistIds": [cid(1, "r")]})
    assert response.status_code == 401


def test_stage2_requires_artist_id_list(client):
    response = client.post("/round/stage2-candidates", json={"artistIds": "abc"}, headers=AUTH)
    assert response.status_code == 400


def test_stage2_success(client, round_catalog):
    response = client.post(
        "/round/stage2-candidates",
        json={"artistIds": [cid(1, "r")], "playedTrackIds": []},
        headers=AUTH,
    )

    assert response.status_code == 200
    data = response.get_json()
    assert data["seeds"][0]["track"]["id"] == cid(1, "k")
    assert data["seeds"][0]["source"] == "top-track"
    assert data["debug"]["organicCount"] == 1


@pytest.mark.parametrize("method", ["get", "post"])
def test_tick_always_answers(client, method):
    response = getattr(client, method)("/maintenance/tick")

    assert response.status_code == 200
    data = response.get_json()
    for key in ("processed", "failed", "remaining", "durationMs", "genreBackfill", "healing"):
        assert key in data


def test_tick_reports_unexpected_errors_in_payload(client, services, monkeypatch):
    def broken_tick(token=None):
        raise RuntimeError("store exploded")

    monkeypatch.setattr(services.scheduler, "tick", broken_tick)
    response = client.post("/maintenance/tick", json={"token": TOKEN})

    assert response.status_code == 200
    assert response.get_json()["errors"] == ["store exploded"]


def test_tick_passes_body_token(client, services, monkeypatch):
    seen = []

    def recording_tick(token=None):
        seen.append(token)
        return {"processed": 0}

    monkeypatch.setattr(services.scheduler, "tick", recording_tick)
    client.post("/maintenance/tick", json={"token": "body-token"}, headers=AUTH)
    client.get("/maintenance/tick", headers=AUTH)
    client.get("/maintenance/tick")

    assert seen == ["body-token", TOKEN, None]


def test_health_and_stats(client):
    health = client.get("/api/health").get_json()
    assert health["status"] == "healthy"
    assert health["services"]["store"]["healthy"] is True
    assert health["services"]["queues"]["lazy_updates"]["processing"] == 0
    assert health["services"]["queues"]["healing"] == 0

    stats = client.get("/api/stats").get_json()
    assert stats["lazy_updates"]["pending"] == 0
    assert stats["healing"]["queueLength"] == 0
