"""Lazy cache write-back queue

The live pipeline never writes fetched catalog data straight into the
store; it enqueues it here and the maintenance tick applies it later.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from jukegame.errors import PersistenceError
from jukegame.models.catalog import ArtistProfile, TrackDetails, is_catalog_id
from jukegame.storage.cache import CatalogCache, utc_now


logger = logging.getLogger(__name__)


ARTIST_PROFILE = "artist_profile"
ARTIST_TOP_TRACKS = "artist_top_tracks"
TRACK_DETAILS = "track_details"
TRACK_UNAVAILABLE = "track_unavailable"

UPDATE_TYPES = (ARTIST_PROFILE, ARTIST_TOP_TRACKS, TRACK_DETAILS, TRACK_UNAVAILABLE)


class LazyUpdateQueue:
    """Typed facade over the store's lazy_updates table."""

    def __init__(self, store: CatalogCache):
        self.store = store

    def enqueue(self, update_type: str, catalog_id: str,
                payload: Optional[Dict[str, Any]] = None) -> bool:
        """Queue a write-back. Failures are logged, never raised.

        Args:
            update_type: One of UPDATE_TYPES
            catalog_id: Catalog id the update refers to
            payload: JSON-serialisable data for the tick

        Returns:
            True if the item was queued
        """
        if update_type not in UPDATE_TYPES:
            raise ValueError(f"Unknown lazy update type: {update_type}")
        if not is_catalog_id(catalog_id):
            logger.warning("Refusing to queue %s for non-catalog id %r", update_type, catalog_id)
            return False

        try:
            self.store.enqueue_lazy_update(update_type, catalog_id, payload)
            return True
        except PersistenceError as e:
            logger.warning("Could not queue %s for %s: %s", update_type, catalog_id, e)
            return False

    def enqueue_artist_profile(self, profile: ArtistProfile) -> bool:
        return self.enqueue(ARTIST_PROFILE, profile.spotify_id,
                            profile.model_dump(mode="json"))

    def enqueue_artist_refresh(self, artist_id: str, reason: str) -> bool:
        return self.enqueue(ARTIST_PROFILE, artist_id, {"needs_refresh": True, "reason": reason})

    def enqueue_top_tracks(self, artist_id: str, tracks: List[TrackDetails]) -> bool:
        return self.enqueue(ARTIST_TOP_TRACKS, artist_id, {"track_ids": [t.id for t in tracks]})

    def enqueue_track_details(self, artist_id: str, tracks: List[TrackDetails]) -> bool:
        if not tracks:
            return False
        return self.enqueue(TRACK_DETAILS, artist_id,
                            {"tracks": [t.model_dump(mode="json") for t in tracks]})

    def enqueue_track_unavailable(self, track_id: str, since: Optional[str] = None) -> bool:
        return self.enqueue(TRACK_UNAVAILABLE, track_id,
                            {"is_playable": False, "unavailable_since": since or utc_now()})

    def claim(self, limit: int) -> List[Dict[str, Any]]:
        return self.store.claim_lazy_updates(limit)

    def mark_result(self, item_id: str, status: str, attempts: int,
                    error_message: Optional[str] = None,
                    generation: Optional[int] = None) -> bool:
        return self.store.mark_lazy_update(item_id, status, attempts, error_message, generation)

    def requeue(self, item_ids: Iterable[str]) -> int:
        return self.store.requeue_lazy_updates(item_ids)

    def requeue_stale(self, max_age_seconds: int) -> int:
        count = self.store.requeue_stale_processing(max_age_seconds)
        if count:
            logger.warning("Requeued %d lazy updates stuck in processing", count)
        return count

    def counts(self) -> Dict[str, int]:
        return self.store.count_lazy_updates()


def is_refresh_request(payload: Dict[str, Any]) -> bool:
    return bool(payload.get("needs_refresh")) and not payload.get("name")


def extract_artist_profile(catalog_id: str, payload: Dict[str, Any]) -> ArtistProfile:
    """Rebuild an ArtistProfile from a queued payload.

    Raises:
        ValueError: If the payload does not describe the queued artist
    """
    data = dict(payload)
    data.setdefault("spotify_id", catalog_id)
    if data["spotify_id"] != catalog_id:
        raise ValueError(f"Payload artist {data['spotify_id']} does not match {catalog_id}")
    return ArtistProfile.model_validate(data)


def extract_track_ids(payload: Dict[str, Any]) -> List[str]:
    track_ids = payload.get("track_ids") or []
    if not isinstance(track_ids, list):
        return []
    return [t for t in track_ids if is_catalog_id(t)]


def extract_track_details(payload: Dict[str, Any]) -> List[TrackDetails]:
    """Parse queued track dicts, dropping entries without a valid id."""
    tracks = []
    for raw in payload.get("tracks") or []:
        if not isinstance(raw, dict) or not is_catalog_id(raw.get("id")):
            continue
        try:
            tracks.append(TrackDetails.model_validate(raw))
        except PydanticValidationError as e:
            logger.warning("Skipping malformed queued track %s: %s", raw.get("id"), e.error_count())
    return tracks
