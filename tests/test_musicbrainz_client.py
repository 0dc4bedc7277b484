import requests

from jukegame.api.musicbrainz import MusicBrainzClient

from conftest import FakeResponse, FakeSession


SEARCH = {"artists": [{"id": "mb-2", "name": "Bonobos"}, {"id": "mb-1", "name": "Bonobo"}]}


def make_client(*responses):
    return MusicBrainzClient("jukegame-tests/1.0", base_url="https://mb.test/ws/2/",
                             session=FakeSession(*responses))


def test_exact_match_genres_are_mapped_and_ranked():
    client = make_client(
        FakeResponse(200, SEARCH),
        FakeResponse(200, {"genres": [{"name": "downtempo", "count": 5},
                                      {"name": "electronic", "count": 9}]}),
    )

    assert client.get_artist_genres("bonobo") == ["Electronic", "downtempo"]

    search, lookup = client.session.requests
    assert search[1]["query"] == "artist:bonobo"
    assert search[2]["User-Agent"] == "jukegame-tests/1.0"
    assert lookup[0] == "https://mb.test/ws/2/artist/mb-1"
    assert lookup[1] == {"inc": "genres", "fmt": "json"}


def test_no_exact_match_stops_after_search():
    client = make_client(FakeResponse(200, SEARCH))

    assert client.get_artist_genres("Bono") == []
    assert len(client.session.requests) == 1


def test_errors_yield_no_genres():
    assert make_client(FakeResponse(503)).get_artist_genres("Bonobo") == []
    assert make_client(requests.ConnectionError("reset")).get_artist_genres("Bonobo") == []
    assert make_client(FakeResponse(200, SEARCH), FakeResponse(404)).get_artist_genres("Bonobo") == []
