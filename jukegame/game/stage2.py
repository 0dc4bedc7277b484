"""Stage 2: turn candidate artists into a playable track pool"""

import logging
import random
import time
from typing import Any, Dict, List, Optional, Set

from pydantic import Field, StrictStr

from jukegame.errors import PersistenceError, UpstreamUnavailable
from jukegame.game.rules import artist_shortfall
from jukegame.maintenance.healing import HealingAction, SelfHealingQueue
from jukegame.maintenance.lazy_updates import LazyUpdateQueue
from jukegame.models.catalog import ArtistProfile, CamelModel, CandidateSeed, TrackDetails, is_catalog_id
from jukegame.models.config_models import PipelineConfig
from jukegame.models.statistics import ApiStatisticsTracker
from jukegame.monitoring.metrics import record_candidate_pool
from jukegame.storage.cache import CatalogCache


logger = logging.getLogger(__name__)


class Stage2Request(CamelModel):
    artist_ids: List[StrictStr]
    played_track_ids: List[StrictStr] = Field(default_factory=list)
    current_track_id: Optional[StrictStr] = None
    profiles: Dict[str, ArtistProfile] = Field(default_factory=dict)

    @property
    def exclusion_set(self) -> Set[str]:
        excluded = set(self.played_track_ids)
        if self.current_track_id:
            excluded.add(self.current_track_id)
        return excluded


class CandidateTrackAssembler:
    """Stage 2 of the round pipeline."""

    def __init__(self, catalog, store: CatalogCache, lazy_updates: LazyUpdateQueue,
                 healing: Optional[SelfHealingQueue] = None,
                 settings: Optional[PipelineConfig] = None,
                 rng: Optional[random.Random] = None):
        self.catalog = catalog
        self.store = store
        self.lazy_updates = lazy_updates
        self.healing = healing
        self.settings = settings or PipelineConfig()
        self.rng = rng or random.Random()

    def assemble(self, request: Stage2Request, token: str,
                 stats: Optional[ApiStatisticsTracker] = None) -> Dict[str, Any]:
        """Build the candidate pool for a round.

        Args:
            request: Parsed request body
            token: Catalog bearer token
            stats: Statistics sink for this invocation

        Returns:
            {seeds, profiles, debug}
        """
        started = time.monotonic()
        stats = stats or ApiStatisticsTracker()

        artist_ids = [a for a in dict.fromkeys(request.artist_ids) if is_catalog_id(a)]
        if len(artist_ids) < len(set(request.artist_ids)):
            logger.warning("Dropped %d non-catalog artist ids",
                           len(set(request.artist_ids)) - len(artist_ids))
        excluded = request.exclusion_set

        top_tracks = self.fetch_top_tracks(artist_ids, token, stats)
        seeds = self.select_seeds(artist_ids, top_tracks, excluded)
        profiles = self.enrich_profiles(seeds, request.profiles, token, stats)

        organic = len(seeds)
        topped_up = self.top_up(seeds, excluded)
        if topped_up:
            profiles.update(self._stored_profiles(topped_up, profiles))
        seeds = seeds + topped_up

        record_candidate_pool(organic, len(topped_up))
        elapsed_ms = round((time.monotonic() - started) * 1000)
        logger.info("Stage 2: %d organic + %d top-up candidates from %d artists (%dms)",
                    organic, len(topped_up), len(artist_ids), elapsed_ms)

        return {
            "seeds": [seed.to_json() for seed in seeds],
            "profiles": {aid: profile.to_json() for aid, profile in profiles.items()},
            "debug": {
                "executionTime": elapsed_ms,
                "stats": stats.get_statistics(),
                "organicCount": organic,
                "topUpCount": len(topped_up),
                "poolSize": len(seeds),
            },
        }

    def fetch_top_tracks(self, artist_ids: List[str], token: str,
                         stats: ApiStatisticsTracker) -> Dict[str, List[TrackDetails]]:
        """Cached top tracks first; fetch a bounded number of missing artists."""
        if not artist_ids:
            return {}
        stats.record_request("top_tracks", len(artist_ids))

        try:
            top_tracks = self.store.get_top_tracks_many(artist_ids)
        except PersistenceError as e:
            logger.warning("Top-track cache read failed: %s", e)
            top_tracks = {}
        if top_tracks:
            stats.record_cache_hit("top_tracks", "db", len(top_tracks))

        missing = [a for a in artist_ids if a not in top_tracks]
        to_fetch = missing[:self.settings.max_top_track_fetches]
        if not to_fetch:
            return top_tracks

        results = self.catalog.get_top_tracks_many(to_fetch, token, stats)
        for artist_id, value in results.items():
            if isinstance(value, Exception):
                logger.warning("Top tracks for %s unavailable: %s", artist_id, value)
                continue
            stats.record_from_catalog("top_tracks", 1)
            top_tracks[artist_id] = value
            self._queue_write_back(artist_id, value)
        return top_tracks

    def _queue_write_back(self, artist_id: str, tracks: List[TrackDetails]) -> None:
        playable = [t for t in tracks if t.is_playable and is_catalog_id(t.id)]
        if playable:
            self.lazy_updates.enqueue_track_details(artist_id, playable)
            self.lazy_updates.enqueue_top_tracks(artist_id, playable)

        if self.healing is None:
            return
        for track in tracks:
            if not track.is_playable and is_catalog_id(track.id):
                self.healing.enqueue(HealingAction(
                    type="track_details",
                    entity_id=track.id,
                    entity_name=track.name,
                    error="Catalog reports track as unplayable",
                ))

    def select_seeds(self, artist_ids: List[str], top_tracks: Dict[str, List[TrackDetails]],
                     excluded: Set[str]) -> List[CandidateSeed]:
        """Pick one random playable top track per artist, never repeating a track."""
        selected: Set[str] = set()
        seeds = []
        for artist_id in artist_ids:
            options = [
                t for t in (top_tracks.get(artist_id) or [])[:self.settings.top_tracks_pick_from]
                if t.is_playable and is_catalog_id(t.id)
                and t.id not in excluded and t.id not in selected
            ]
            if not options:
                continue
            choice = self.rng.choice(options)
            selected.add(choice.id)
            seeds.append(CandidateSeed(track=choice, source="top-track", seed_artist_id=artist_id))
        return seeds

    def enrich_profiles(self, seeds: List[CandidateSeed], existing: Dict[str, ArtistProfile],
                        token: str, stats: ApiStatisticsTracker) -> Dict[str, ArtistProfile]:
        """Profiles for every seed's primary artist: reuse, then store, then catalog."""
        profiles = {aid: p for aid, p in (existing or {}).items() if is_catalog_id(aid)}
        needed = [a for a in dict.fromkeys(self._artist_ids(seeds)) if a not in profiles]
        if not needed:
            return profiles

        stats.record_request("artist_profiles", len(needed))
        stored = self._stored_profiles(seeds, profiles)
        if stored:
            stats.record_cache_hit("artist_profiles", "db", len(stored))
            profiles.update(stored)

        missing = [a for a in needed if a not in profiles]
        if not missing:
            return profiles

        try:
            fetched = self.catalog.get_artists(missing, token, stats)
        except UpstreamUnavailable as e:
            logger.warning("Artist profile enrichment degraded: %s", e)
            return profiles

        stats.record_from_catalog("artist_profiles", len(fetched))
        for profile in fetched:
            profiles[profile.spotify_id] = profile
            self.lazy_updates.enqueue_artist_profile(profile)
        return profiles

    def _stored_profiles(self, seeds: List[CandidateSeed],
                         known: Dict[str, ArtistProfile]) -> Dict[str, ArtistProfile]:
        wanted = [a for a in self._artist_ids(seeds) if a not in known]
        if not wanted:
            return {}
        try:
            return self.store.get_artist_profiles(wanted)
        except PersistenceError as e:
            logger.warning("Artist profile cache read failed: %s", e)
            return {}

    @staticmethod
    def _artist_ids(seeds: List[CandidateSeed]) -> List[str]:
        ids = []
        for seed in seeds:
            artist = seed.track.primary_artist
            if artist is not None and is_catalog_id(artist.id):
                ids.append(artist.id)
        return ids

    def top_up(self, seeds: List[CandidateSeed], excluded: Set[str]) -> List[CandidateSeed]:
        """Random stored tracks to lift the pool to the minimum size."""
        needed = artist_shortfall(len(seeds), self.settings.min_candidate_pool)
        if not needed:
            return []

        present = {seed.track.id for seed in seeds}
        try:
            tracks = self.store.sample_random_tracks(needed, exclude_ids=present | excluded)
        except PersistenceError as e:
            logger.error("❌ Candidate pool top-up failed: %s", e)
            return []

        topped_up = []
        for track in tracks:
            if track.id in present or track.id in excluded:
                continue
            present.add(track.id)
            artist = track.primary_artist
            topped_up.append(CandidateSeed(
                track=track,
                source="embedding",
                seed_artist_id=artist.id if artist and artist.id else "",
            ))

        if len(topped_up) < needed:
            logger.warning("Candidate pool below minimum: %d of %d",
                           len(seeds) + len(topped_up), self.settings.min_candidate_pool)
        return topped_up[:needed]
