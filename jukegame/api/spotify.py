"""Spotify Web API client for catalog lookups"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlencode

import aiohttp
import requests

from jukegame.errors import UpstreamUnavailable
from jukegame.models.catalog import (
    ArtistProfile, TrackDetails, artist_profile_from_catalog, is_catalog_id
)
from jukegame.models.statistics import ApiStatisticsTracker, categorize_api_call
from jukegame.monitoring.circuit_breaker import CircuitBreaker
from jukegame.monitoring.metrics import record_api_call
from jukegame.utils.batch import BatchProcessor
from jukegame.utils.retry import retry_with_backoff


logger = logging.getLogger(__name__)


FanOutResult = Dict[str, Union[Any, Exception]]


def is_transient(error: Exception) -> bool:
    """Connection errors, rate limits and 5xx responses are worth retrying."""
    if not isinstance(error, UpstreamUnavailable):
        return False
    return error.status_code is None or error.status_code == 429 or error.status_code >= 500


class SpotifyCatalogClient:
    """Catalog client with retry, circuit breaking and async fan-out."""

    BASE_URL = "https://api.spotify.com/v1"
    ARTIST_BATCH_SIZE = 50  # Max ids per /artists request

    def __init__(
        self,
        base_url: str = BASE_URL,
        market: str = "US",
        timeout: float = 4.0,
        breaker: Optional[CircuitBreaker] = None,
        concurrency: int = 5,
        max_retries: int = 1,
    ):
        """Initialize catalog client.

        Args:
            base_url: API root
            market: Market used for playability and top tracks
            timeout: Per-request timeout in seconds
            breaker: Shared circuit breaker (one is created if omitted)
            concurrency: Max in-flight requests during fan-out
            max_retries: Retries for transient failures on single calls
        """
        self.base_url = base_url.rstrip("/")
        self.market = market
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker("spotify", is_failure=is_transient)
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.session = requests.Session()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _record(self, path: str, params: Optional[dict], status: str, started: float,
                stats: Optional[ApiStatisticsTracker]) -> None:
        full_path = f"{path}?{urlencode(params)}" if params else path
        operation = categorize_api_call(full_path)
        duration = time.monotonic() - started
        record_api_call(operation or "other", status, duration)
        if stats is not None and operation:
            stats.record_api_call(operation, duration * 1000)

    def _request(self, path: str, token: str, params: Optional[dict] = None,
                 stats: Optional[ApiStatisticsTracker] = None) -> Dict[str, Any]:
        """Make a catalog GET request with retry logic.

        Args:
            path: API path, e.g. "/artists/{id}"
            token: Bearer token
            params: Query parameters
            stats: Optional per-invocation statistics sink

        Returns:
            Decoded JSON response

        Raises:
            UpstreamUnavailable: On network errors, non-2xx responses or an open circuit
        """
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {token}"}

        @retry_with_backoff(max_retries=self.max_retries,
                            exceptions=(UpstreamUnavailable,), retry_if=is_transient)
        def make_request():
            started = time.monotonic()
            try:
                r = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
            except requests.RequestException as e:
                self._record(path, params, "error", started, stats)
                raise UpstreamUnavailable(f"Catalog request to {path} failed: {e}") from e

            self._record(path, params, "success" if r.ok else f"http_{r.status_code}", started, stats)
            if not r.ok:
                raise UpstreamUnavailable(
                    f"Catalog returned HTTP {r.status_code} for {path}", status_code=r.status_code
                )
            try:
                return r.json()
            except ValueError as e:
                raise UpstreamUnavailable(f"Catalog returned invalid JSON for {path}") from e

        return self.breaker.call(make_request)

    async def _request_async(self, session: aiohttp.ClientSession, path: str, token: str,
                             params: Optional[dict] = None,
                             stats: Optional[ApiStatisticsTracker] = None) -> Dict[str, Any]:
        """Async GET used during fan-out. No retries: the caller degrades instead."""
        self.breaker.before_call()
        started = time.monotonic()
        try:
            async with session.get(
                f"{self.base_url}{path}",
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                status = response.status
                self._record(path, params, "success" if status < 400 else f"http_{status}",
                             started, stats)
                if status >= 400:
                    raise UpstreamUnavailable(
                        f"Catalog returned HTTP {status} for {path}", status_code=status
                    )
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._record(path, params, "error", started, stats)
            self.breaker.on_failure()
            raise UpstreamUnavailable(f"Catalog request to {path} failed: {e}") from e
        except UpstreamUnavailable as e:
            if is_transient(e):
                self.breaker.on_failure()
            else:
                self.breaker.on_success()
            raise

        self.breaker.on_success()
        return data

    def _fan_out(self, ids: List[str], fetch: Callable, token: str,
                 stats: Optional[ApiStatisticsTracker]) -> FanOutResult:
        async def run():
            async with aiohttp.ClientSession() as session:
                processor = BatchProcessor(concurrency=self.concurrency)
                return await processor.process_keyed(ids, fetch, session, token, stats)

        return asyncio.run(run())

    @staticmethod
    def _check_id(value: str, what: str) -> None:
        if not is_catalog_id(value):
            raise ValueError(f"Refusing to send non-catalog {what} id {value!r} to the catalog")

    # ------------------------------------------------------------------
    # Single lookups
    # ------------------------------------------------------------------

    def get_track(self, track_id: str, token: str,
                  stats: Optional[ApiStatisticsTracker] = None) -> TrackDetails:
        self._check_id(track_id, "track")
        data = self._request(f"/tracks/{track_id}", token, {"market": self.market}, stats)
        return TrackDetails.model_validate(data)

    def get_artist(self, artist_id: str, token: str,
                   stats: Optional[ApiStatisticsTracker] = None) -> ArtistProfile:
        self._check_id(artist_id, "artist")
        data = self._request(f"/artists/{artist_id}", token, stats=stats)
        return artist_profile_from_catalog(data)

    def get_artists(self, artist_ids: List[str], token: str,
                    stats: Optional[ApiStatisticsTracker] = None) -> List[ArtistProfile]:
        """Batch-fetch artist profiles, ARTIST_BATCH_SIZE ids per request."""
        ids = [a for a in dict.fromkeys(artist_ids) if is_catalog_id(a)]
        profiles = []
        for i in range(0, len(ids), self.ARTIST_BATCH_SIZE):
            chunk = ids[i:i + self.ARTIST_BATCH_SIZE]
            data = self._request("/artists", token, {"ids": ",".join(chunk)}, stats)
            profiles.extend(
                artist_profile_from_catalog(a) for a in data.get("artists") or [] if a
            )
        return profiles

    def search_artist(self, name: str, token: str,
                      stats: Optional[ApiStatisticsTracker] = None) -> Optional[ArtistProfile]:
        """Best catalog match for an artist name, or None."""
        data = self._request("/search", token, {"q": name, "type": "artist", "limit": 1}, stats)
        items = (data.get("artists") or {}).get("items") or []
        return artist_profile_from_catalog(items[0]) if items else None

    def get_related_artists(self, artist_id: str, token: str,
                            stats: Optional[ApiStatisticsTracker] = None) -> List[Dict[str, Any]]:
        self._check_id(artist_id, "artist")
        data = self._request(f"/artists/{artist_id}/related-artists", token, stats=stats)
        return data.get("artists") or []

    def get_artist_top_tracks(self, artist_id: str, token: str,
                              stats: Optional[ApiStatisticsTracker] = None) -> List[TrackDetails]:
        self._check_id(artist_id, "artist")
        data = self._request(f"/artists/{artist_id}/top-tracks", token,
                             {"market": self.market}, stats)
        return [TrackDetails.model_validate(t) for t in data.get("tracks") or [] if t]

    # ------------------------------------------------------------------
    # Concurrent lookups
    # ------------------------------------------------------------------

    async def _related_artists_async(self, artist_id, session, token, stats):
        data = await self._request_async(session, f"/artists/{artist_id}/related-artists",
                                         token, stats=stats)
        return data.get("artists") or []

    async def _top_tracks_async(self, artist_id, session, token, stats):
        data = await self._request_async(session, f"/artists/{artist_id}/top-tracks",
                                         token, {"market": self.market}, stats)
        return [TrackDetails.model_validate(t) for t in data.get("tracks") or [] if t]

    def get_related_artists_many(self, artist_ids: List[str], token: str,
                                 stats: Optional[ApiStatisticsTracker] = None) -> FanOutResult:
        """Fetch related artists for several artists in parallel.

        Returns:
            {artist_id: list of related artist dicts, or the exception raised}
        """
        for artist_id in artist_ids:
            self._check_id(artist_id, "artist")
        return self._fan_out(list(dict.fromkeys(artist_ids)), self._related_artists_async,
                             token, stats)

    def get_top_tracks_many(self, artist_ids: List[str], token: str,
                            stats: Optional[ApiStatisticsTracker] = None) -> FanOutResult:
        """Fetch top tracks for several artists in parallel.

        Returns:
            {artist_id: list of TrackDetails, or the exception raised}
        """
        for artist_id in artist_ids:
            self._check_id(artist_id, "artist")
        return self._fan_out(list(dict.fromkeys(artist_ids)), self._top_tracks_async,
                             token, stats)
