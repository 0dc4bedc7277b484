"""SQLite cache for catalog metadata and the lazy-update queue"""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from jukegame.errors import PersistenceError
from jukegame.models.catalog import (
    AlbumInfo, ArtistProfile, ArtistRef, TrackDetails, is_catalog_id
)


logger = logging.getLogger(__name__)


# Constants
CACHE_TTL_DAYS = 100
TOP_TRACKS_KEPT = 10
LAZY_STATUSES = ("pending", "processing", "completed", "failed")

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS artists (
        spotify_artist_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        genres TEXT,
        popularity INTEGER,
        follower_count INTEGER,
        cached_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_artists_name ON artists(name COLLATE NOCASE)",
    """
    CREATE TABLE IF NOT EXISTS tracks (
        spotify_track_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        artist_id TEXT,
        artist_name TEXT,
        album_name TEXT,
        release_date TEXT,
        popularity INTEGER,
        duration_ms INTEGER,
        explicit INTEGER NOT NULL DEFAULT 0,
        genre TEXT,
        is_playable INTEGER NOT NULL DEFAULT 1,
        unavailable_since TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tracks_genre_missing ON tracks(genre) WHERE genre IS NULL",
    """
    CREATE TABLE IF NOT EXISTS artist_top_tracks (
        spotify_artist_id TEXT NOT NULL,
        spotify_track_id TEXT NOT NULL,
        rank INTEGER NOT NULL CHECK (rank BETWEEN 1 AND 10),
        cached_at TEXT NOT NULL,
        PRIMARY KEY (spotify_artist_id, rank)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS lazy_updates (
        id TEXT PRIMARY KEY,
        dedupe_key TEXT NOT NULL UNIQUE,
        type TEXT NOT NULL,
        catalog_id TEXT NOT NULL,
        payload TEXT NOT NULL DEFAULT '{}',
        status TEXT NOT NULL DEFAULT 'pending',
        attempts INTEGER NOT NULL DEFAULT 0,
        generation INTEGER NOT NULL DEFAULT 0,
        error_message TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_lazy_status ON lazy_updates(status, updated_at)",
)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _cutoff(**delta) -> str:
    return (datetime.now(timezone.utc) - timedelta(**delta)).isoformat()


class CatalogCache:
    """SQLite store for artists, tracks, top tracks and lazy updates.

    Every write is an upsert keyed by a catalog id or a queue dedupe key,
    so concurrent ticks and requests can interleave safely.
    """

    def __init__(self, db_path: Path, ttl_days: int = CACHE_TTL_DAYS):
        """Initialize catalog cache.

        Args:
            db_path: Path to SQLite database file
            ttl_days: Age after which cached artist/top-track rows count as stale
        """
        self.db_path = db_path
        self.ttl_days = ttl_days
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection; commit on success and wrap sqlite errors."""
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=5.0)
            conn.row_factory = sqlite3.Row
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise PersistenceError(f"Store operation failed: {e}") from e
        finally:
            if conn is not None:
                conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._connect() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(lazy_updates)")}
            if "generation" not in columns:
                conn.execute("ALTER TABLE lazy_updates ADD COLUMN generation INTEGER NOT NULL DEFAULT 0")

    def ping(self) -> bool:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()
        return True

    # ------------------------------------------------------------------
    # Artists
    # ------------------------------------------------------------------

    def upsert_artist_profiles(self, profiles: Iterable[ArtistProfile]) -> int:
        """Insert or update artist profiles.

        Known popularity/follower counts are never overwritten with NULL.

        Args:
            profiles: Profiles to store

        Returns:
            Number of rows written
        """
        now = utc_now()
        rows = [
            (p.spotify_id, p.name, json.dumps(p.genres), p.popularity, p.follower_count, now)
            for p in profiles
            if is_catalog_id(p.spotify_id)
        ]
        if not rows:
            return 0

        with self._connect() as conn:
            conn.executemany(
                """INSERT INTO artists
                   (spotify_artist_id, name, genres, popularity, follower_count, cached_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(spotify_artist_id) DO UPDATE SET
                       name = CASE WHEN excluded.name != '' THEN excluded.name ELSE artists.name END,
                       genres = excluded.genres,
                       popularity = COALESCE(excluded.popularity, artists.popularity),
                       follower_count = COALESCE(excluded.follower_count, artists.follower_count),
                       cached_at = excluded.cached_at""",
                rows
            )
        return len(rows)

    def upsert_artist_profile(self, profile: ArtistProfile) -> None:
        self.upsert_artist_profiles([profile])

    def get_artist_profiles(self, artist_ids: Iterable[str],
                            fresh_only: bool = True) -> Dict[str, ArtistProfile]:
        """Fetch stored artist profiles by catalog id.

        Args:
            artist_ids: Ids to look up
            fresh_only: Skip rows older than the cache TTL

        Returns:
            Mapping of id to profile for the ids found
        """
        ids = [a for a in dict.fromkeys(artist_ids) if is_catalog_id(a)]
        if not ids:
            return {}

        query = """SELECT * FROM artists
                   WHERE spotify_artist_id IN (SELECT value FROM json_each(?))"""
        params: List[Any] = [json.dumps(ids)]
        if fresh_only:
            query += " AND cached_at >= ?"
            params.append(_cutoff(days=self.ttl_days))

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return {row["spotify_artist_id"]: self._row_to_profile(row) for row in rows}

    def get_artist_profile(self, artist_id: str, fresh_only: bool = True) -> Optional[ArtistProfile]:
        return self.get_artist_profiles([artist_id], fresh_only).get(artist_id)

    def find_artist_genres(self, artist_id: Optional[str] = None,
                           name: Optional[str] = None) -> List[str]:
        """Look up stored genres for an artist, by id first and then by name."""
        with self._connect() as conn:
            row = None
            if artist_id:
                row = conn.execute(
                    "SELECT genres FROM artists WHERE spotify_artist_id = ?", (artist_id,)
                ).fetchone()
            if (row is None or not self._decode_genres(row["genres"])) and name:
                row = conn.execute(
                    """SELECT genres FROM artists
                       WHERE name = ? COLLATE NOCASE AND genres IS NOT NULL AND genres != '[]'
                       LIMIT 1""",
                    (name,)
                ).fetchone()
        return self._decode_genres(row["genres"]) if row else []

    def sample_random_artists(self, limit: int, exclude_ids: Iterable[str] = ()) -> List[ArtistProfile]:
        """Draw random stored artists that have genres and a catalog-shaped id.

        Args:
            limit: Maximum number of artists
            exclude_ids: Ids that must not be returned

        Returns:
            Up to `limit` profiles
        """
        if limit <= 0:
            return []
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM artists
                   WHERE genres IS NOT NULL AND genres != '[]'
                     AND instr(spotify_artist_id, '-') = 0
                     AND spotify_artist_id NOT IN (SELECT value FROM json_each(?))
                   ORDER BY RANDOM()
                   LIMIT ?""",
                (json.dumps(sorted(set(exclude_ids))), limit)
            ).fetchall()
        profiles = [self._row_to_profile(row) for row in rows]
        return [p for p in profiles if is_catalog_id(p.spotify_id)]

    # ------------------------------------------------------------------
    # Tracks
    # ------------------------------------------------------------------

    def upsert_track_details(self, tracks: Iterable[TrackDetails]) -> int:
        """Insert or update track rows. A stored genre survives a NULL update."""
        now = utc_now()
        rows = []
        for t in tracks:
            if not is_catalog_id(t.id):
                continue
            artist = t.primary_artist
            rows.append((
                t.id, t.name,
                artist.id if artist else None,
                artist.name if artist else None,
                t.album.name if t.album else None,
                t.album.release_date if t.album else None,
                t.popularity, t.duration_ms, int(t.explicit), t.genre,
                int(t.is_playable), None if t.is_playable else now, now,
            ))
        if not rows:
            return 0

        with self._connect() as conn:
            conn.executemany(
                """INSERT INTO tracks
                   (spotify_track_id, name, artist_id, artist_name, album_name, release_date,
                    popularity, duration_ms, explicit, genre, is_playable, unavailable_since,
                    updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(spotify_track_id) DO UPDATE SET
                       name = excluded.name,
                       artist_id = COALESCE(excluded.artist_id, tracks.artist_id),
                       artist_name = COALESCE(excluded.artist_name, tracks.artist_name),
                       album_name = COALESCE(excluded.album_name, tracks.album_name),
                       release_date = COALESCE(excluded.release_date, tracks.release_date),
                       popularity = COALESCE(excluded.popularity, tracks.popularity),
                       duration_ms = COALESCE(excluded.duration_ms, tracks.duration_ms),
                       explicit = excluded.explicit,
                       genre = COALESCE(excluded.genre, tracks.genre),
                       is_playable = excluded.is_playable,
                       unavailable_since = CASE WHEN excluded.is_playable = 1 THEN NULL
                           ELSE COALESCE(tracks.unavailable_since, excluded.unavailable_since) END,
                       updated_at = excluded.updated_at""",
                rows
            )
        return len(rows)

    def get_track(self, track_id: str) -> Optional[TrackDetails]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM tracks WHERE spotify_track_id = ?", (track_id,)
            ).fetchone()
        return self._row_to_track(row) if row else None

    def mark_track_unplayable(self, track_id: str, since: Optional[str] = None) -> bool:
        """Flag a stored track as unplayable.

        Returns:
            True if a row was updated
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """UPDATE tracks
                   SET is_playable = 0,
                       unavailable_since = COALESCE(unavailable_since, ?),
                       updated_at = ?
                   WHERE spotify_track_id = ?""",
                (since or utc_now(), utc_now(), track_id)
            )
            return cursor.rowcount > 0

    def sample_random_tracks(self, limit: int, exclude_ids: Iterable[str] = ()) -> List[TrackDetails]:
        """Draw playable tracks uniformly at random, skipping excluded ids.

        Args:
            limit: Maximum number of tracks
            exclude_ids: Track ids that must not be returned

        Returns:
            Up to `limit` tracks
        """
        if limit <= 0:
            return []
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM tracks
                   WHERE is_playable = 1
                     AND spotify_track_id NOT IN (SELECT value FROM json_each(?))
                   ORDER BY RANDOM()
                   LIMIT ?""",
                (json.dumps(sorted(set(exclude_ids))), limit)
            ).fetchall()
        return [self._row_to_track(row) for row in rows if is_catalog_id(row["spotify_track_id"])]

    def sample_tracks_missing_genre(self, limit: int) -> List[TrackDetails]:
        if limit <= 0:
            return []
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM tracks
                   WHERE genre IS NULL AND is_playable = 1
                   ORDER BY RANDOM()
                   LIMIT ?""",
                (limit,)
            ).fetchall()
        return [self._row_to_track(row) for row in rows]

    def set_track_genre_if_missing(self, track_id: str, genre: str) -> bool:
        """Atomically set a track's genre only if it is still NULL.

        Returns:
            True if this call wrote the genre
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE tracks SET genre = ?, updated_at = ? WHERE spotify_track_id = ? AND genre IS NULL",
                (genre, utc_now(), track_id)
            )
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Top tracks
    # ------------------------------------------------------------------

    def upsert_top_tracks(self, artist_id: str, track_ids: List[str]) -> int:
        """Replace an artist's ranked top tracks (first 10 kept)."""
        ranked = [t for t in dict.fromkeys(track_ids) if is_catalog_id(t)][:TOP_TRACKS_KEPT]
        if not is_catalog_id(artist_id) or not ranked:
            return 0

        now = utc_now()
        with self._connect() as conn:
            conn.execute("DELETE FROM artist_top_tracks WHERE spotify_artist_id = ?", (artist_id,))
            conn.executemany(
                """INSERT INTO artist_top_tracks (spotify_artist_id, spotify_track_id, rank, cached_at)
                   VALUES (?, ?, ?, ?)""",
                [(artist_id, track_id, rank, now) for rank, track_id in enumerate(ranked, start=1)]
            )
        return len(ranked)

    def get_top_tracks_many(self, artist_ids: Iterable[str]) -> Dict[str, List[TrackDetails]]:
        """Fetch fresh cached top tracks, ordered by rank, for several artists.

        Artists without fresh rows (or whose track rows are missing) are absent
        from the result.
        """
        ids = [a for a in dict.fromkeys(artist_ids) if is_catalog_id(a)]
        if not ids:
            return {}

        with self._connect() as conn:
            rows = conn.execute(
                """SELECT att.spotify_artist_id AS top_artist_id, t.*
                   FROM artist_top_tracks att
                   JOIN tracks t ON t.spotify_track_id = att.spotify_track_id
                   WHERE att.spotify_artist_id IN (SELECT value FROM json_each(?))
                     AND att.cached_at >= ?
                   ORDER BY att.spotify_artist_id, att.rank""",
                (json.dumps(ids), _cutoff(days=self.ttl_days))
            ).fetchall()

        result: Dict[str, List[TrackDetails]] = {}
        for row in rows:
            result.setdefault(row["top_artist_id"], []).append(self._row_to_track(row))
        return result

    # ------------------------------------------------------------------
    # Lazy update queue
    # ------------------------------------------------------------------

    def enqueue_lazy_update(self, update_type: str, catalog_id: str,
                            payload: Optional[Dict[str, Any]] = None) -> str:
        """Upsert a queue item keyed by type:catalog_id, resetting it to pending.

        Re-enqueueing bumps the item generation, so a tick still holding the
        previous claim cannot mark the newer payload as done.

        Returns:
            Dedupe key of the item
        """
        dedupe_key = f"{update_type}:{catalog_id}"
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO lazy_updates
                   (id, dedupe_key, type, catalog_id, payload, status, attempts, error_message, updated_at)
                   VALUES (?, ?, ?, ?, ?, 'pending', 0, NULL, ?)
                   ON CONFLICT(dedupe_key) DO UPDATE SET
                       payload = excluded.payload,
                       status = 'pending',
                       attempts = 0,
                       generation = lazy_updates.generation + 1,
                       error_message = NULL,
                       updated_at = excluded.updated_at""",
                (str(uuid.uuid4()), dedupe_key, update_type, catalog_id,
                 json.dumps(payload or {}), utc_now())
            )
        return dedupe_key

    def claim_lazy_updates(self, limit: int) -> List[Dict[str, Any]]:
        """Atomically move up to `limit` oldest pending items to processing.

        Returns:
            Claimed items (as dicts with decoded payload)
        """
        if limit <= 0:
            return []
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            rows = conn.execute(
                """SELECT * FROM lazy_updates
                   WHERE status = 'pending'
                   ORDER BY updated_at ASC
                   LIMIT ?""",
                (limit,)
            ).fetchall()
            now = utc_now()
            conn.executemany(
                "UPDATE lazy_updates SET status = 'processing', updated_at = ? WHERE id = ?",
                [(now, row["id"]) for row in rows]
            )
        return [self._row_to_lazy_update(row, status="processing") for row in rows]

    def mark_lazy_update(self, item_id: str, status: str, attempts: int,
                         error_message: Optional[str] = None,
                         generation: Optional[int] = None) -> bool:
        """Record the outcome of a claimed item.

        Args:
            item_id: Queue item id
            status: New status
            attempts: Attempt count to store
            error_message: Failure detail, truncated to 500 characters
            generation: Generation seen at claim time. When given, only a row
                still processing that generation is updated.

        Returns:
            False if the item was re-enqueued since it was claimed
        """
        if status not in LAZY_STATUSES:
            raise ValueError(f"Invalid lazy update status: {status}")
        query = """UPDATE lazy_updates
                   SET status = ?, attempts = ?, error_message = ?, updated_at = ?
                   WHERE id = ?"""
        params: tuple = (status, attempts, error_message[:500] if error_message else None,
                         utc_now(), item_id)
        if generation is not None:
            query += " AND status = 'processing' AND generation = ?"
            params += (generation,)
        with self._connect() as conn:
            return conn.execute(query, params).rowcount > 0

    def requeue_lazy_updates(self, item_ids: Iterable[str]) -> int:
        """Return processing items to pending without touching attempts."""
        ids = list(item_ids)
        if not ids:
            return 0
        with self._connect() as conn:
            cursor = conn.execute(
                """UPDATE lazy_updates SET status = 'pending', updated_at = ?
                   WHERE status = 'processing' AND id IN (SELECT value FROM json_each(?))""",
                (utc_now(), json.dumps(ids))
            )
            return cursor.rowcount

    def requeue_stale_processing(self, max_age_seconds: int) -> int:
        """Return items stuck in processing for longer than max_age_seconds to pending."""
        with self._connect() as conn:
            cursor = conn.execute(
                """UPDATE lazy_updates SET status = 'pending', updated_at = ?
                   WHERE status = 'processing' AND updated_at < ?""",
                (utc_now(), _cutoff(seconds=max_age_seconds))
            )
            return cursor.rowcount

    def get_lazy_update(self, item_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM lazy_updates WHERE id = ?", (item_id,)).fetchone()
        return self._row_to_lazy_update(row) if row else None

    def list_lazy_updates(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query = "SELECT * FROM lazy_updates"
        params: tuple = ()
        if status:
            query += " WHERE status = ?"
            params = (status,)
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY updated_at ASC", params).fetchall()
        return [self._row_to_lazy_update(row) for row in rows]

    def count_lazy_updates(self) -> Dict[str, int]:
        counts = dict.fromkeys(LAZY_STATUSES, 0)
        with self._connect() as conn:
            for row in conn.execute("SELECT status, COUNT(*) AS n FROM lazy_updates GROUP BY status"):
                counts[row["status"]] = row["n"]
        return counts

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _decode_genres(raw: Optional[str]) -> List[str]:
        if not raw:
            return []
        try:
            genres = json.loads(raw)
        except ValueError:
            logger.warning("Discarding malformed genres value: %r", raw[:100])
            return []
        return [g for g in genres if isinstance(g, str)] if isinstance(genres, list) else []

    def _row_to_profile(self, row: sqlite3.Row) -> ArtistProfile:
        return ArtistProfile(
            spotify_id=row["spotify_artist_id"],
            name=row["name"],
            genres=self._decode_genres(row["genres"]),
            popularity=row["popularity"],
            follower_count=row["follower_count"],
        )

    @staticmethod
    def _row_to_track(row: sqlite3.Row) -> TrackDetails:
        artists = []
        if row["artist_id"] or row["artist_name"]:
            artists.append(ArtistRef(id=row["artist_id"], name=row["artist_name"] or ""))
        album = None
        if row["album_name"] or row["release_date"]:
            album = AlbumInfo(name=row["album_name"] or "", release_date=row["release_date"])
        return TrackDetails(
            id=row["spotify_track_id"],
            name=row["name"],
            artists=artists,
            album=album,
            popularity=row["popularity"],
            duration_ms=row["duration_ms"],
            explicit=bool(row["explicit"]),
            is_playable=bool(row["is_playable"]),
            uri=f"spotify:track:{row['spotify_track_id']}",
            genre=row["genre"],
        )

    @staticmethod
    def _row_to_lazy_update(row: sqlite3.Row, status: Optional[str] = None) -> Dict[str, Any]:
        try:
            payload = json.loads(row["payload"] or "{}")
        except ValueError:
            payload = {}
        return {
            "id": row["id"],
            "dedupe_key": row["dedupe_key"],
            "type": row["type"],
            "catalog_id": row["catalog_id"],
            "payload": payload,
            "status": status or row["status"],
            "attempts": row["attempts"],
            "generation": row["generation"],
            "error_message": row["error_message"],
            "updated_at": row["updated_at"],
        }
