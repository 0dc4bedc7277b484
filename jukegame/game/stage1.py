"""Stage 1: resolve the round's candidate artists

Given the playing track and the active player's target, decide which
related-artist sources to query and return a deduplicated artist-id set.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import Field

from jukegame.errors import PersistenceError, UpstreamUnavailable, ValidationError
from jukegame.game.rules import (
    DEFAULT_PLAYER_GRAVITY, PLAYER_IDS, InfluenceReading, artist_shortfall,
    classify_gravity, exploration_phase, hard_convergence_active, normalize_gravities,
    should_fetch_target_related, should_inject_target
)
from jukegame.maintenance.lazy_updates import LazyUpdateQueue
from jukegame.models.catalog import (
    ArtistProfile, ArtistRef, CamelModel, TargetArtist, TargetProfile, TrackDetails,
    is_catalog_id
)
from jukegame.models.config_models import PipelineConfig
from jukegame.models.statistics import ApiStatisticsTracker
from jukegame.storage.cache import CatalogCache


logger = logging.getLogger(__name__)


class PlaybackItem(CamelModel):
    id: Optional[str] = None


class PlaybackState(CamelModel):
    item: Optional[PlaybackItem] = None


class Stage1Request(CamelModel):
    round_number: int = Field(..., ge=0)
    player_targets: Dict[str, Optional[TargetArtist]] = Field(default_factory=dict)
    playback_state: Optional[PlaybackState] = None
    current_player_id: str = "player1"
    player_gravities: Dict[str, float] = Field(default_factory=dict)

    @property
    def current_track_id(self) -> Optional[str]:
        if self.playback_state and self.playback_state.item:
            return self.playback_state.item.id
        return None


class CandidateArtists:
    """Ordered, id-keyed candidate artist set with source counts"""

    def __init__(self):
        self.artists: Dict[str, str] = {}
        self.seed_count = 0
        self.target_count = 0
        self.random_count = 0
        self.target_injected = False

    def add(self, artist_id: str, name: str) -> bool:
        if not is_catalog_id(artist_id) or artist_id in self.artists:
            return False
        self.artists[artist_id] = name
        return True

    @property
    def ids(self) -> List[str]:
        return list(self.artists)

    def diagnostics(self) -> Dict[str, Any]:
        return {
            "totalUnique": len(self.artists),
            "seedArtists": self.seed_count,
            "targetArtists": self.target_count,
            "randomArtists": self.random_count,
            "targetInjected": self.target_injected,
        }


class CandidateArtistResolver:
    """Stage 1 of the round pipeline."""

    def __init__(self, catalog, store: CatalogCache, lazy_updates: LazyUpdateQueue,
                 settings: Optional[PipelineConfig] = None):
        self.catalog = catalog
        self.store = store
        self.lazy_updates = lazy_updates
        self.settings = settings or PipelineConfig()

    def resolve(self, request: Stage1Request, token: str,
                stats: Optional[ApiStatisticsTracker] = None) -> Dict[str, Any]:
        """Run Stage 1 for one round.

        Args:
            request: Parsed request body
            token: Catalog bearer token
            stats: Statistics sink for this invocation

        Returns:
            JSON-ready Stage 1 response

        Raises:
            ValidationError: No current track, no primary artist or a non-catalog id
            UpstreamUnavailable: The current track could not be resolved
        """
        started = time.monotonic()
        stats = stats or ApiStatisticsTracker()

        # Every 400 is raised before anything is queued
        track_id = request.current_track_id
        if not track_id:
            raise ValidationError("No current track found in playback state")
        if not is_catalog_id(track_id):
            raise ValidationError(f"Current track id {track_id!r} is not a catalog id")

        current_track = self.fetch_current_track(track_id, token, stats)
        seed = current_track.primary_artist

        targets = self.ensure_targets(request.player_targets)
        target_profiles = self.resolve_target_profiles(targets, token, stats)

        gravities = normalize_gravities(request.player_gravities)
        gravity = gravities.get(request.current_player_id, DEFAULT_PLAYER_GRAVITY)
        reading = classify_gravity(gravity)

        target_ref = self._target_ref(targets.get(request.current_player_id),
                                      target_profiles.get(request.current_player_id))

        candidates = self.build_candidates(
            seed, target_ref, reading, gravity, request.round_number, token, stats
        )

        phase = exploration_phase(request.round_number)
        elapsed_ms = round((time.monotonic() - started) * 1000)
        logger.info(
            "Stage 1 round %d: seed=%s zone=%s candidates=%d (%dms)",
            request.round_number, seed.name, reading.zone.value,
            len(candidates.artists), elapsed_ms
        )

        return {
            "targetProfiles": {
                pid: profile.to_json() if profile else None
                for pid, profile in target_profiles.items()
            },
            "seedArtistId": seed.id,
            "seedArtistName": seed.name,
            "currentTrack": current_track.to_json(),
            "relatedArtistIds": candidates.ids,
            "updatedGravities": gravities,
            "explorationPhase": phase.to_json(),
            "hardConvergenceActive": hard_convergence_active(request.round_number),
            "ogDrift": phase.drift_magnitude,
            "debug": {
                "executionTime": elapsed_ms,
                "stats": stats.get_statistics(),
                "candidatePool": candidates.diagnostics(),
                "zone": {
                    "influencePercent": round(reading.influence_percent, 2),
                    "zone": reading.zone.value,
                },
            },
        }

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    @staticmethod
    def ensure_targets(targets: Dict[str, Optional[TargetArtist]]) -> Dict[str, Optional[TargetArtist]]:
        ensured = {pid: None for pid in PLAYER_IDS}
        ensured.update(targets or {})
        return ensured

    def resolve_target_profiles(self, targets: Dict[str, Optional[TargetArtist]], token: str,
                                stats: ApiStatisticsTracker) -> Dict[str, Optional[TargetProfile]]:
        """Resolve every player's target artist; failures yield None."""
        profiles: Dict[str, Optional[TargetProfile]] = {}
        for player_id, target in targets.items():
            if target is None or not (target.id or target.name):
                profiles[player_id] = None
                continue
            try:
                profile = self.lookup_artist_profile(target, token, stats)
            except (UpstreamUnavailable, PersistenceError) as e:
                logger.warning("Could not resolve target %r for %s: %s", target.name, player_id, e)
                profile = None
            profiles[player_id] = TargetProfile.from_profile(target, profile) if profile else None
        return profiles

    def lookup_artist_profile(self, target: TargetArtist, token: str,
                              stats: ApiStatisticsTracker) -> Optional[ArtistProfile]:
        """Store first, then catalog by id, then catalog search by name."""
        if target.id and is_catalog_id(target.id):
            stats.record_request("artist_profiles")
            cached = self.store.get_artist_profile(target.id)
            if cached is not None:
                stats.record_cache_hit("artist_profiles", "db")
                return cached
            profile = self.catalog.get_artist(target.id, token, stats)
            stats.record_from_catalog("artist_profiles", 1)
            self.lazy_updates.enqueue_artist_profile(profile)
            return profile

        if target.id:
            logger.warning("Target id %r is not a catalog id; searching by name", target.id)
        if not target.name:
            return None

        stats.record_request("artist_searches")
        profile = self.catalog.search_artist(target.name, token, stats)
        if profile is not None:
            stats.record_from_catalog("artist_searches", 1)
            self.lazy_updates.enqueue_artist_profile(profile)
        return profile

    @staticmethod
    def _target_ref(target: Optional[TargetArtist],
                    profile: Optional[TargetProfile]) -> Optional[ArtistRef]:
        if profile is not None and profile.spotify_id:
            return ArtistRef(id=profile.spotify_id, name=profile.artist.name)
        if target is not None and target.id:
            if is_catalog_id(target.id):
                return ArtistRef(id=target.id, name=target.name)
            logger.warning("Skipping target seeding: %r is not a catalog id", target.id)
        return None

    # ------------------------------------------------------------------
    # Current track
    # ------------------------------------------------------------------

    def fetch_current_track(self, track_id: str, token: str,
                            stats: ApiStatisticsTracker) -> TrackDetails:
        stats.record_request("track_details")
        try:
            cached = self.store.get_track(track_id)
        except PersistenceError as e:
            logger.warning("Track cache lookup failed for %s: %s", track_id, e)
            cached = None
        if cached is not None and cached.primary_artist and cached.primary_artist.id:
            stats.record_cache_hit("track_details", "db")
            self.check_seed_artist(cached)
            return cached

        track = self.catalog.get_track(track_id, token, stats)
        stats.record_from_catalog("track_details", 1)
        self.check_seed_artist(track)
        self.lazy_updates.enqueue_track_details(track_id, [track])
        return track

    @staticmethod
    def check_seed_artist(track: TrackDetails) -> None:
        seed = track.primary_artist
        if seed is None or not seed.id:
            raise ValidationError("Current track has no primary artist")
        if not is_catalog_id(seed.id):
            raise ValidationError(f"Seed artist id {seed.id!r} is not a catalog id")

    # ------------------------------------------------------------------
    # Candidate artists
    # ------------------------------------------------------------------

    def build_candidates(self, seed: ArtistRef, target: Optional[ArtistRef],
                         reading: InfluenceReading, gravity: float, round_number: int,
                         token: str, stats: ApiStatisticsTracker) -> CandidateArtists:
        """Union seed-related, target-related, injected and random artists."""
        candidates = CandidateArtists()

        fetch_target = (
            target is not None
            and target.id != seed.id
            and should_fetch_target_related(reading.zone)
        )
        if target is not None and not fetch_target:
            logger.debug("Target-related fetch skipped (zone=%s)", reading.zone.value)

        sources = [seed.id] + ([target.id] if fetch_target else [])
        stats.record_request("related_artists", len(sources))
        results = self.catalog.get_related_artists_many(sources, token, stats)

        for artist in self._related(results, seed.id, self.settings.max_related_to_seed, stats):
            if candidates.add(artist["id"], artist.get("name", "")):
                candidates.seed_count += 1

        if fetch_target:
            for artist in self._related(results, target.id, self.settings.max_related_to_target, stats):
                if candidates.add(artist["id"], artist.get("name", "")):
                    candidates.target_count += 1

        if target is not None and should_inject_target(gravity, round_number):
            candidates.target_injected = candidates.add(target.id, target.name)

        shortfall = artist_shortfall(len(candidates.artists), self.settings.min_candidate_artists)
        if shortfall:
            candidates.random_count = self._top_up_random(candidates, seed.id, shortfall)

        return candidates

    def _related(self, results: Dict[str, Any], artist_id: str, limit: int,
                 stats: ApiStatisticsTracker) -> List[Dict[str, Any]]:
        value = results.get(artist_id)
        if isinstance(value, Exception) or value is None:
            logger.warning("Related artists for %s unavailable: %s", artist_id, value)
            self.lazy_updates.enqueue_artist_refresh(artist_id, "related_artists_fetch_failed")
            return []
        stats.record_from_catalog("related_artists", 1)
        return [a for a in value if isinstance(a, dict) and a.get("id")][:limit]

    def _top_up_random(self, candidates: CandidateArtists, seed_id: str, needed: int) -> int:
        try:
            randoms = self.store.sample_random_artists(
                needed, exclude_ids=set(candidates.artists) | {seed_id}
            )
        except PersistenceError as e:
            logger.warning("Random artist top-up failed: %s", e)
            return 0

        added = sum(1 for profile in randoms if candidates.add(profile.spotify_id, profile.name))
        if added < needed:
            logger.info("Random artist top-up short: wanted %d, got %d", needed, added)
        return added
