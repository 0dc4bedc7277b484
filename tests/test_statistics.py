import pytest

from jukegame.models.statistics import ApiStatisticsTracker, categorize_api_call


@pytest.mark.parametrize("path,operation", [
    ("/artists/abc/top-tracks?market=US", "top_tracks"),
    ("/artists/abc/related-artists", "related_artists"),
    ("/artists?ids=a%2Cb", "artist_profiles"),
    ("/artists/abc", "artist_profiles"),
    ("/search?q=Muse&type=artist&limit=1", "artist_searches"),
    ("/tracks/abc?market=US", "track_details"),
    ("/tracks?ids=a%2Cb", "track_details"),
    ("/me/player", None),
])
def test_categorize_api_call(path, operation):
    assert categorize_api_call(path) == operation


def test_statistics_use_camel_case_keys():
    stats = ApiStatisticsTracker()
    stats.record_request("top_tracks", 10)
    stats.record_cache_hit("top_tracks", count=4)
    stats.record_from_catalog("top_tracks", 6)
    stats.record_api_call("top_tracks", 12.5)

    result = stats.get_statistics()
    assert result["topTracksRequested"] == 10
    assert result["topTracksCached"] == 4
    assert result["topTracksFromCatalog"] == 6
    assert result["topTracksApiCalls"] == 1
    assert result["totalApiCalls"] == 1
    assert result["totalCacheHits"] == 4
    assert result["cacheHitRate"] == pytest.approx(0.4)


def test_cache_hit_rate_is_capped():
    stats = ApiStatisticsTracker()
    stats.record_request("artist_profiles", 1)
    stats.record_cache_hit("artist_profiles", count=3)
    assert stats.get_statistics()["cacheHitRate"] == 1.0


def test_cache_hit_rate_without_requests():
    assert ApiStatisticsTracker().get_statistics()["cacheHitRate"] == 0.0


def test_unknown_operation_rejected():
    with pytest.raises(ValueError):
        ApiStatisticsTracker().record_request("playlists")


def test_validate_statistics_flags_drift_beyond_tolerance():
    stats = ApiStatisticsTracker()
    stats.record_request("related_artists", 20)
    stats.record_from_catalog("related_artists", 2)

    report = stats.validate_statistics(tolerance=5)
    assert not report["isValid"]
    assert report["errors"][0].startswith("related_artists")

    stats.record_from_catalog("related_artists", 14)
    assert stats.validate_statistics(tolerance=5)["isValid"]


def test_performance_diagnostics_and_reset():
    stats = ApiStatisticsTracker()
    stats.record_api_call("track_details", 30.0)
    stats.record_api_call("track_details", 80.0)
    stats.record_db_query("get_track", 1.5)

    diagnostics = stats.get_performance_diagnostics()
    assert diagnostics["totalApiTimeMs"] == 110.0
    assert diagnostics["slowestApiCall"]["durationMs"] == 80.0
    assert diagnostics["slowestDbQuery"]["operation"] == "get_track"

    stats.reset()
    assert stats.get_statistics()["totalApiCalls"] == 0
    assert stats.get_performance_diagnostics()["slowestApiCall"] is None
