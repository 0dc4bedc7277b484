import random

import pytest

from jukegame.errors import UpstreamUnavailable
from jukegame.maintenance.lazy_updates import LazyUpdateQueue
from jukegame.models.catalog import AlbumInfo, ArtistProfile, ArtistRef, TrackDetails
from jukegame.models.config_models import JukeGameConfig
from jukegame.models.tracker import TickTracker
from jukegame.services import GameServices
from jukegame.storage.cache import CatalogCache
from jukegame.web.app import create_app


TOKEN = "test-token"


def cid(n, prefix="a"):
    """Catalog-shaped 22-character id."""
    return f"{prefix}{n:021d}"


def make_track(track_id, artist_id, name=None, playable=True, artist_name=None, genre=None):
    return TrackDetails(
        id=track_id,
        name=name or f"Track {track_id[-4:]}",
        artists=[ArtistRef(id=artist_id, name=artist_name or f"Artist {artist_id[-4:]}")],
        album=AlbumInfo(name="Album", release_date="2020-01-01"),
        popularity=50,
        duration_ms=180000,
        is_playable=playable,
        genre=genre,
    )


def make_profile(artist_id, genres=("indie",), popularity=40, followers=1000, name=None):
    return ArtistProfile(
        spotify_id=artist_id,
        name=name or f"Artist {artist_id[-4:]}",
        genres=list(genres),
        popularity=popularity,
        follower_count=followers,
    )


class FakeCatalog:
    """In-memory stand-in for SpotifyCatalogClient."""

    def __init__(self):
        self.tracks = {}
        self.artists = {}
        self.related = {}
        self.top_tracks = {}
        self.failures = {}
        self.calls = []

    def _maybe_fail(self, key):
        if key in self.failures:
            raise self.failures[key]

    def get_track(self, track_id, token, stats=None):
        self.calls.append(("get_track", track_id))
        self._maybe_fail(track_id)
        if track_id not in self.tracks:
            raise UpstreamUnavailable("Catalog returned HTTP 404", status_code=404)
        return self.tracks[track_id]

    def get_artist(self, artist_id, token, stats=None):
        self.calls.append(("get_artist", artist_id))
        self._maybe_fail(artist_id)
        if artist_id not in self.artists:
            raise UpstreamUnavailable("Catalog returned HTTP 404", status_code=404)
        return self.artists[artist_id]

    def get_artists(self, artist_ids, token, stats=None):
        self.calls.append(("get_artists", tuple(artist_ids)))
        return [self.artists[a] for a in artist_ids if a in self.artists]

    def search_artist(self, name, token, stats=None):
        self.calls.append(("search_artist", name))
        for profile in self.artists.values():
            if profile.name.lower() == name.lower():
                return profile
        return None

    def get_related_artists(self, artist_id, token, stats=None):
        self.calls.append(("get_related_artists", artist_id))
        self._maybe_fail(artist_id)
        return self.related.get(artist_id, [])

    def get_related_artists_many(self, artist_ids, token, stats=None):
        self.calls.append(("get_related_artists_many", tuple(artist_ids)))
        return {
            a: self.failures[a] if a in self.failures else self.related.get(a, [])
            for a in artist_ids
        }

    def get_top_tracks_many(self, artist_ids, token, stats=None):
        self.calls.append(("get_top_tracks_many", tuple(artist_ids)))
        return {
            a: self.failures[a] if a in self.failures else self.top_tracks.get(a, [])
            for a in artist_ids
        }

    def called(self, name):
        return [tuple(args) for call, *args in self.calls if call == name]


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self.ok = status_code < 400
        self._payload = payload if payload is not None else {}

    def json(self):
        return self._payload


class FakeSession:
    """Replays canned responses (or raises canned exceptions) in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append((url, params, headers))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def store(tmp_path):
    return CatalogCache(tmp_path / "cache.db")


@pytest.fixture
def lazy_queue(store):
    return LazyUpdateQueue(store)


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def config():
    return JukeGameConfig()


@pytest.fixture
def services(tmp_path, store, catalog, config):
    svc = GameServices(config, store, catalog, tracker=TickTracker(tmp_path), rng=random.Random(7))
    yield svc
    svc.shutdown()


@pytest.fixture
def client(services):
    app = create_app(services, {"TESTING": True})
    return app.test_client()
