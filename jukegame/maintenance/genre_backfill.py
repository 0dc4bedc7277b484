"""Incremental genre backfill for cached tracks"""

import logging
import threading
import time
from collections import Counter
from typing import Callable, Dict, List, Optional, Set

from jukegame.errors import PersistenceError, UpstreamUnavailable
from jukegame.models.catalog import ArtistProfile, TrackDetails, is_catalog_id
from jukegame.monitoring.metrics import record_genre_backfill
from jukegame.storage.cache import CatalogCache
from jukegame.utils.deadline import Deadline


logger = logging.getLogger(__name__)


COMPLETION_TTL_SECONDS = 300
RELATED_ARTISTS_SAMPLED = 20
RELATED_GENRE_LIMIT = 3

# Returned for tracks skipped because they were handled recently
SKIPPED = object()

COUNTERS = (
    "trackAttempts",
    "trackSuccesses",
    "trackFailures",
    "artistAttempts",
    "artistSuccesses",
    "artistFailures",
)


class BackfillMetrics:
    """Process-lifetime counters; only ever incremented."""

    def __init__(self):
        self._counts = dict.fromkeys(COUNTERS, 0)
        self._lock = threading.Lock()

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[name] += amount

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    @staticmethod
    def delta(before: Dict[str, int], after: Dict[str, int]) -> Dict[str, int]:
        return {name: after[name] - before[name] for name in COUNTERS}


class RateLimited(Exception):
    """Catalog asked us to back off; stop the current batch."""


class CompletionCache:
    """Ids backfilled recently or in flight, so they are not redone.

    Successful backfills are remembered for `ttl_seconds`; an id being
    worked on by another tick is skipped until that tick finishes.
    """

    def __init__(self, ttl_seconds: float = COMPLETION_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._completed: Dict[str, float] = {}
        self._in_flight: Set[str] = set()
        self._lock = threading.Lock()

    def begin(self, key: str) -> bool:
        """Reserve `key`; False when it completed recently or is in flight."""
        with self._lock:
            finished_at = self._completed.get(key)
            if finished_at is not None:
                if self._clock() - finished_at < self.ttl_seconds:
                    return False
                del self._completed[key]
            if key in self._in_flight:
                return False
            self._in_flight.add(key)
            return True

    def finish(self, key: str, succeeded: bool) -> None:
        with self._lock:
            self._in_flight.discard(key)
            if succeeded:
                self._completed[key] = self._clock()


class GenreBackfillCrawler:
    """Fills in missing track and artist genres.

    Artist genres come from, in order: the stored profile, the catalog
    artist, the genres most common among related artists, and MusicBrainz.
    """

    def __init__(self, store: CatalogCache, catalog=None, metrics: Optional[BackfillMetrics] = None,
                 musicbrainz=None, completions: Optional[CompletionCache] = None):
        self.store = store
        self.catalog = catalog
        self.metrics = metrics or BackfillMetrics()
        self.musicbrainz = musicbrainz
        self.completions = completions or CompletionCache()

    def process_genre_backfill_batch(self, count: int, token: Optional[str] = None,
                                     deadline: Optional[Deadline] = None) -> int:
        """Try to resolve genres for up to `count` tracks missing one.

        Args:
            count: Max tracks to sample
            token: Catalog token; without it the catalog steps are skipped
            deadline: Checked before each track

        Returns:
            Number of tracks processed (attempted)
        """
        tracks = self.store.sample_tracks_missing_genre(count)
        if not tracks:
            return 0

        before = self.metrics.snapshot()
        processed = 0
        for track in tracks:
            if deadline is not None and deadline.expired():
                logger.info("Genre backfill stopped at deadline after %d tracks", processed)
                break
            try:
                if self.backfill_track_genre(track, token) is not SKIPPED:
                    processed += 1
            except RateLimited:
                logger.warning("Genre backfill rate limited; stopping batch")
                break

        delta = BackfillMetrics.delta(before, self.metrics.snapshot())
        record_genre_backfill(delta["trackSuccesses"], delta["trackFailures"])
        return processed

    def backfill_track_genre(self, track: TrackDetails, token: Optional[str] = None):
        """Resolve and store the genre of one track.

        Returns:
            The genre written, None, or SKIPPED when the track was handled recently
        """
        key = f"track:{track.id}"
        if not self.completions.begin(key):
            return SKIPPED

        genre = None
        try:
            genre = self._backfill_track_genre(track, token)
        finally:
            self.completions.finish(key, genre is not None)
        return genre

    def _backfill_track_genre(self, track: TrackDetails, token: Optional[str]) -> Optional[str]:
        self.metrics.increment("trackAttempts")
        artist = track.primary_artist
        try:
            genres = self.store.find_artist_genres(
                artist.id if artist else None, artist.name if artist else None
            )
            if not genres and artist and is_catalog_id(artist.id) and (token or self.musicbrainz):
                genres = self.backfill_artist_genres(artist.id, artist.name, token)

            if not genres:
                self.metrics.increment("trackFailures")
                return None

            if self.store.set_track_genre_if_missing(track.id, genres[0]):
                self.metrics.increment("trackSuccesses")
                logger.debug("Backfilled genre %r for track %s", genres[0], track.id)
                return genres[0]
            # Someone else filled it first
            return None
        except PersistenceError as e:
            self.metrics.increment("trackFailures")
            logger.warning("Genre backfill for track %s failed: %s", track.id, e)
            return None

    def backfill_artist_genres(self, artist_id: str, artist_name: str = "",
                               token: Optional[str] = None) -> List[str]:
        """Find genres for an artist and persist what was learned.

        Args:
            artist_id: Catalog artist id
            artist_name: Name used for the MusicBrainz lookup
            token: Catalog token for the catalog and related-artist steps

        Returns:
            Genres found (possibly empty)

        Raises:
            RateLimited: If the catalog responded with 429
        """
        key = f"artist:{artist_id}"
        if not self.completions.begin(key):
            logger.debug("Skipping genre backfill for %s; done recently", artist_id)
            return []

        genres: List[str] = []
        try:
            genres = self._backfill_artist_genres(artist_id, artist_name, token)
        finally:
            self.completions.finish(key, bool(genres))
        return genres

    def _backfill_artist_genres(self, artist_id: str, artist_name: str,
                                token: Optional[str]) -> List[str]:
        stored = self.store.get_artist_profile(artist_id, fresh_only=False)
        if (stored is not None and stored.genres and stored.popularity is not None
                and stored.follower_count is not None):
            return stored.genres

        self.metrics.increment("artistAttempts")
        fetched: Optional[ArtistProfile] = None
        genres: List[str] = []

        if token and self.catalog is not None:
            fetched = self._fetch_catalog_artist(artist_id, token)
            if fetched is not None:
                genres = list(fetched.genres)
                artist_name = fetched.name or artist_name
            if not genres:
                genres = self.genres_from_related_artists(artist_id, token)
                if genres:
                    logger.info("Using related-artist genres for %s: %s", artist_id, genres)

        if not genres and self.musicbrainz is not None and artist_name:
            genres = self.musicbrainz.get_artist_genres(artist_name)
            if genres:
                logger.info("Using MusicBrainz genres for %r: %s", artist_name, genres)

        final = genres or (stored.genres if stored is not None else [])
        if final or fetched is not None:
            self.store.upsert_artist_profile(ArtistProfile(
                spotify_id=artist_id,
                name=artist_name or (stored.name if stored is not None else ""),
                genres=final,
                popularity=fetched.popularity if fetched is not None else None,
                follower_count=fetched.follower_count if fetched is not None else None,
            ))

        if genres:
            self.metrics.increment("artistSuccesses")
        else:
            self.metrics.increment("artistFailures")
            logger.info("No genres found for artist %s (%r)", artist_id, artist_name)
        return genres

    def _fetch_catalog_artist(self, artist_id: str, token: str) -> Optional[ArtistProfile]:
        try:
            return self.catalog.get_artist(artist_id, token)
        except UpstreamUnavailable as e:
            if e.rate_limited:
                raise RateLimited() from e
            logger.warning("Could not fetch artist %s for genre backfill: %s", artist_id, e)
            return None

    def genres_from_related_artists(self, artist_id: str, token: str,
                                    limit: int = RELATED_GENRE_LIMIT) -> List[str]:
        """Most common genres among an artist's related artists.

        Related artists without genres in the response are looked up in the
        store.

        Raises:
            RateLimited: If the catalog responded with 429
        """
        try:
            related = self.catalog.get_related_artists(artist_id, token)[:RELATED_ARTISTS_SAMPLED]
        except UpstreamUnavailable as e:
            if e.rate_limited:
                raise RateLimited() from e
            logger.warning("Related-artist genre fallback failed for %s: %s", artist_id, e)
            return []

        votes: Counter = Counter()
        missing = []
        for entry in related:
            if entry.get("genres"):
                votes.update(entry["genres"])
            elif is_catalog_id(entry.get("id")):
                missing.append(entry["id"])

        if missing:
            try:
                for profile in self.store.get_artist_profiles(missing, fresh_only=False).values():
                    votes.update(profile.genres)
            except PersistenceError as e:
                logger.warning("Could not read related artist genres: %s", e)

        return [genre for genre, _ in votes.most_common(limit)]
