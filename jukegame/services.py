"""Process-scoped service container

Everything with a lifetime longer than one request (store, catalog client,
circuit breaker, healing queue, backfill metrics) is created here once and
passed explicitly to the web app and the CLI.
"""

import logging
import random
from pathlib import Path
from typing import Optional

from jukegame.api.musicbrainz import MusicBrainzClient
from jukegame.api.spotify import SpotifyCatalogClient, is_transient
from jukegame.game.stage1 import CandidateArtistResolver
from jukegame.game.stage2 import CandidateTrackAssembler
from jukegame.maintenance.genre_backfill import BackfillMetrics, GenreBackfillCrawler
from jukegame.maintenance.healing import HealingDispatcher, SelfHealingQueue
from jukegame.maintenance.lazy_updates import LazyUpdateQueue
from jukegame.models.config_models import JukeGameConfig
from jukegame.models.tracker import TickTracker
from jukegame.monitoring.circuit_breaker import CircuitBreaker
from jukegame.scheduler.tick import MaintenanceScheduler
from jukegame.storage.cache import CatalogCache


logger = logging.getLogger(__name__)


class GameServices:
    """Wires the round pipeline and maintenance components together."""

    def __init__(
        self,
        config: JukeGameConfig,
        store: CatalogCache,
        catalog,
        tracker: Optional[TickTracker] = None,
        rng: Optional[random.Random] = None,
        breaker: Optional[CircuitBreaker] = None,
        musicbrainz=None,
    ):
        self.config = config
        self.store = store
        self.catalog = catalog
        self.breaker = breaker or getattr(catalog, "breaker", None)
        self.tracker = tracker

        self.lazy_updates = LazyUpdateQueue(store)
        self.healing_queue = SelfHealingQueue(self.lazy_updates)
        self.healing_dispatcher = HealingDispatcher(self.healing_queue)
        self.backfill_metrics = BackfillMetrics()
        self.crawler = GenreBackfillCrawler(
            store, catalog, self.backfill_metrics, musicbrainz=musicbrainz
        )

        self.resolver = CandidateArtistResolver(
            catalog, store, self.lazy_updates, config.pipeline
        )
        self.assembler = CandidateTrackAssembler(
            catalog, store, self.lazy_updates, self.healing_queue, config.pipeline, rng
        )
        self.scheduler = MaintenanceScheduler(
            store,
            self.lazy_updates,
            self.crawler,
            healing=self.healing_dispatcher,
            catalog=catalog,
            settings=config.maintenance,
            service_token=lambda: config.spotify.service_token,
            tracker=tracker,
        )

    def shutdown(self) -> None:
        self.healing_dispatcher.shutdown()


def build_services(config: JukeGameConfig, data_dir: Path) -> GameServices:
    """Create the production service graph.

    Args:
        config: Validated configuration
        data_dir: Directory for the SQLite cache and tick tracker file

    Returns:
        GameServices
    """
    db_path = config.store.db_path or data_dir / "jukegame_cache.db"
    store = CatalogCache(db_path, ttl_days=config.store.cache_ttl_days)
    logger.info("✓ Catalog cache at %s", db_path)

    breaker = CircuitBreaker(
        "spotify",
        failure_threshold=config.monitoring.circuit_breaker_threshold,
        timeout=config.monitoring.circuit_breaker_timeout,
        is_failure=is_transient,
    )
    catalog = SpotifyCatalogClient(
        base_url=config.spotify.api_url,
        market=config.spotify.market,
        timeout=config.spotify.timeout,
        breaker=breaker,
        concurrency=config.pipeline.catalog_concurrency,
        max_retries=config.spotify.max_retries,
    )

    musicbrainz = None
    if config.musicbrainz.enabled:
        musicbrainz = MusicBrainzClient(
            config.musicbrainz.user_agent,
            base_url=config.musicbrainz.api_url,
            timeout=config.musicbrainz.timeout,
            session=catalog.session,
        )

    return GameServices(config, store, catalog, tracker=TickTracker(data_dir),
                        breaker=breaker, musicbrainz=musicbrainz)
