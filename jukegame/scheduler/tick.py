"""Deadline-bound maintenance tick

One call drains a bounded slice of three queues: lazy cache write-backs,
genre backfill and self-healing. The clock is checked before every unit of
work so a tick overruns its budget by at most one in-flight call.
"""

import concurrent.futures
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from jukegame.errors import PersistenceError, UpstreamUnavailable, ValidationError
from jukegame.maintenance import lazy_updates as lazy
from jukegame.maintenance.genre_backfill import BackfillMetrics, GenreBackfillCrawler
from jukegame.maintenance.healing import HealingDispatcher
from jukegame.maintenance.lazy_updates import LazyUpdateQueue
from jukegame.models.catalog import is_catalog_id
from jukegame.models.config_models import MaintenanceConfig
from jukegame.models.tracker import TickTracker
from jukegame.monitoring.metrics import record_tick
from jukegame.storage.cache import CatalogCache
from jukegame.utils.deadline import Deadline


logger = logging.getLogger(__name__)


EMPTY_HEALING = {"processed": 0, "succeeded": 0, "failed": 0}


class MaintenanceScheduler:
    """Runs maintenance ticks against the persistent cache."""

    def __init__(
        self,
        store: CatalogCache,
        lazy_updates: LazyUpdateQueue,
        crawler: GenreBackfillCrawler,
        healing: Optional[HealingDispatcher] = None,
        catalog=None,
        settings: Optional[MaintenanceConfig] = None,
        service_token: Optional[Callable[[], Optional[str]]] = None,
        tracker: Optional[TickTracker] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.lazy_updates = lazy_updates
        self.crawler = crawler
        self.healing = healing
        self.catalog = catalog
        self.settings = settings or MaintenanceConfig()
        self.service_token = service_token
        self.tracker = tracker
        self.clock = clock

    def tick(self, token: Optional[str] = None) -> Dict[str, Any]:
        """Run one maintenance pass.

        Args:
            token: Catalog token for steps that call the catalog; falls back to
                the configured service token

        Returns:
            {processed, failed, remaining, durationMs, genreBackfill,
             genreBackfillDetail, healing, requeued, errors}
        """
        deadline = Deadline(self.settings.deadline_ms, self.clock)
        if token is None and self.service_token is not None:
            token = self.service_token()
        errors: List[str] = []

        try:
            self.lazy_updates.requeue_stale(self.settings.stale_processing_seconds)
        except PersistenceError as e:
            errors.append(f"stale requeue: {e}")

        try:
            claimed = self.lazy_updates.claim(self.settings.batch_limit)
        except PersistenceError as e:
            logger.error("❌ Could not claim lazy updates: %s", e)
            errors.append(f"claim: {e}")
            claimed = []

        counts = self._drain_lazy_updates(claimed, token, deadline, errors)

        backfilled, backfill_delta = 0, {"updated": 0, "failed": 0}
        if deadline.has_at_least(self.settings.backfill_min_remaining_ms):
            backfilled, backfill_delta = self._run_backfill(token, deadline, errors)

        healing = dict(EMPTY_HEALING)
        if token and self.healing is not None and deadline.has_at_least(self.settings.healing_min_remaining_ms):
            healing = self._run_healing(token, deadline, errors)

        result = {
            "processed": counts["processed"],
            "failed": counts["failed"],
            "remaining": max(len(claimed) - counts["processed"] - counts["failed"], 0),
            "requeued": counts["requeued"],
            "durationMs": round(deadline.elapsed_ms()),
            "genreBackfill": backfilled,
            "genreBackfillDetail": backfill_delta,
            "healing": healing,
            "errors": errors,
        }

        logger.info(
            "Tick: %d processed, %d failed, %d remaining, %d backfilled in %dms",
            result["processed"], result["failed"], result["remaining"],
            backfilled, result["durationMs"]
        )
        record_tick(result, result["durationMs"] / 1000.0)
        if self.tracker is not None:
            self.tracker.save(result)
        return result

    # ------------------------------------------------------------------
    # Lazy updates
    # ------------------------------------------------------------------

    def _drain_lazy_updates(self, claimed: List[Dict[str, Any]], token: Optional[str],
                            deadline: Deadline, errors: List[str]) -> Dict[str, int]:
        counts = {"processed": 0, "failed": 0, "requeued": 0}
        attempted = set()

        for item in claimed:
            if deadline.expired():
                logger.info("Tick deadline reached; deferring %d items",
                            len(claimed) - len(attempted))
                break
            attempted.add(item["id"])
            outcome = self._process_item(item, token, errors)
            counts[outcome] += 1

        skipped = [item["id"] for item in claimed if item["id"] not in attempted]
        if skipped:
            try:
                self.lazy_updates.requeue(skipped)
            except PersistenceError as e:
                # Left in processing; the next tick's stale sweep recovers them
                logger.error("❌ Could not requeue %d deferred items: %s", len(skipped), e)
                errors.append(f"requeue: {e}")

        return counts

    def _process_item(self, item: Dict[str, Any], token: Optional[str], errors: List[str]) -> str:
        attempts = item["attempts"] + 1
        try:
            self.apply_update(item, token)
        except (PersistenceError, UpstreamUnavailable) as e:
            if attempts >= self.settings.max_attempts:
                logger.warning("Lazy update %s failed permanently: %s", item["dedupe_key"], e)
                return self._mark(item, "failed", attempts, str(e), errors, outcome="failed")
            logger.info("Lazy update %s deferred (attempt %d): %s", item["dedupe_key"], attempts, e)
            return self._mark(item, "pending", attempts, str(e), errors, outcome="requeued")
        except Exception as e:
            logger.warning("Lazy update %s failed: %s", item["dedupe_key"], e)
            return self._mark(item, "failed", attempts, str(e), errors, outcome="failed")

        return self._mark(item, "completed", attempts, None, errors, outcome="processed")

    def _mark(self, item, status, attempts, error_message, errors, outcome) -> str:
        try:
            recorded = self.lazy_updates.mark_result(
                item["id"], status, attempts, error_message, item.get("generation")
            )
        except PersistenceError as e:
            logger.error("❌ Could not record %s for %s: %s", status, item["dedupe_key"], e)
            errors.append(f"mark {item['dedupe_key']}: {e}")
            return outcome
        if not recorded:
            # Re-enqueued mid-tick: the newer payload stays pending
            logger.info("Lazy update %s was re-enqueued while processing", item["dedupe_key"])
            return "requeued"
        return outcome

    def apply_update(self, item: Dict[str, Any], token: Optional[str]) -> None:
        """Write one queued update into the store.

        Raises:
            ValidationError: If the item is malformed
            PersistenceError: If the store write fails
            UpstreamUnavailable: If a needed catalog refresh cannot be made
        """
        update_type, catalog_id, payload = item["type"], item["catalog_id"], item["payload"]
        if not is_catalog_id(catalog_id):
            raise ValidationError(f"Queued id {catalog_id!r} is not a catalog id")

        if update_type == lazy.ARTIST_PROFILE:
            if lazy.is_refresh_request(payload):
                if not token or self.catalog is None:
                    raise UpstreamUnavailable("Artist refresh needs a catalog token")
                profile = self.catalog.get_artist(catalog_id, token)
            else:
                profile = lazy.extract_artist_profile(catalog_id, payload)
            self.store.upsert_artist_profile(profile)

        elif update_type == lazy.ARTIST_TOP_TRACKS:
            track_ids = lazy.extract_track_ids(payload)
            if track_ids:
                self.store.upsert_top_tracks(catalog_id, track_ids)

        elif update_type == lazy.TRACK_DETAILS:
            tracks = lazy.extract_track_details(payload)
            if tracks:
                self.store.upsert_track_details(tracks)

        elif update_type == lazy.TRACK_UNAVAILABLE:
            self.store.mark_track_unplayable(catalog_id, payload.get("unavailable_since"))

        else:
            raise ValidationError(f"Unknown lazy update type: {update_type}")

    # ------------------------------------------------------------------
    # Backfill and healing
    # ------------------------------------------------------------------

    def _run_backfill(self, token, deadline, errors):
        before = self.crawler.metrics.snapshot()
        try:
            count = self.crawler.process_genre_backfill_batch(
                self.settings.backfill_batch_size, token, deadline
            )
        except PersistenceError as e:
            logger.error("❌ Genre backfill failed: %s", e)
            errors.append(f"genre backfill: {e}")
            count = 0
        delta = BackfillMetrics.delta(before, self.crawler.metrics.snapshot())
        return count, {"updated": delta["trackSuccesses"], "failed": delta["trackFailures"]}

    def _run_healing(self, token, deadline, errors):
        future = self.healing.dispatch(token, self.settings.healing_batch_size)
        try:
            report = future.result(timeout=deadline.remaining_ms() / 1000.0)
        except concurrent.futures.TimeoutError:
            logger.info("Healing pass still running at deadline; continuing in background")
            return {**EMPTY_HEALING, "deferred": True}
        except Exception as e:
            logger.error("❌ Healing pass failed: %s", e)
            errors.append(f"healing: {e}")
            return dict(EMPTY_HEALING)
        return {k: report[k] for k in ("processed", "succeeded", "failed")}
