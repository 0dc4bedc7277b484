"""Self-healing queue for catalog data found to be wrong during a round"""

import asyncio
import concurrent.futures
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from jukegame.maintenance.lazy_updates import LazyUpdateQueue
from jukegame.monitoring.metrics import record_healing


logger = logging.getLogger(__name__)


HealingType = Literal["artist_profile", "related_artists", "target_artist", "track_details"]


class HealingAction(BaseModel):
    type: HealingType
    entity_id: str
    entity_name: Optional[str] = None
    error: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> tuple:
        return (self.type, self.entity_id)


class SelfHealingQueue:
    """In-memory, process-scoped queue of corrective actions.

    Actions are deduplicated on (type, entity_id) and removed once
    dispatched, whatever the outcome.
    """

    def __init__(self, lazy_updates: LazyUpdateQueue):
        self.lazy_updates = lazy_updates
        self._actions: List[HealingAction] = []
        self._lock = threading.Lock()

    def enqueue(self, action: HealingAction) -> bool:
        """Queue an action unless one with the same (type, entity_id) is waiting.

        Returns:
            True if the action was added
        """
        with self._lock:
            if any(a.key == action.key for a in self._actions):
                return False
            self._actions.append(action)

        logger.info("Queued healing action %s for %s", action.type, action.entity_id)
        return True

    def _take(self, limit: int) -> List[HealingAction]:
        with self._lock:
            taken = self._actions[:limit]
            del self._actions[:limit]
        return taken

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            actions = list(self._actions)
        return {
            "queueLength": len(actions),
            "actions": [
                {"type": a.type, "entityId": a.entity_id, "entityName": a.entity_name,
                 "error": a.error, "timestamp": a.timestamp.isoformat()}
                for a in actions
            ],
        }

    async def process_healing_queue(self, token: str, limit: int = 2) -> Dict[str, Any]:
        """Dispatch up to `limit` queued actions.

        Args:
            token: Catalog bearer token
            limit: Max actions to handle in this call

        Returns:
            {processed, succeeded, failed, results}
        """
        actions = self._take(limit)
        results = []

        for action in actions:
            try:
                resolution = await self._heal(action, token)
                results.append({"type": action.type, "entityId": action.entity_id,
                                "success": True, "resolution": resolution})
            except Exception as e:
                logger.warning("Healing %s for %s failed: %s", action.type, action.entity_id, e)
                results.append({"type": action.type, "entityId": action.entity_id,
                                "success": False, "error": str(e)})

        succeeded = sum(1 for r in results if r["success"])
        report = {
            "processed": len(results),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
            "results": results,
        }
        record_healing(report["succeeded"], report["failed"])
        if results:
            logger.info("Healing pass: %d succeeded, %d failed", report["succeeded"], report["failed"])
        return report

    async def _heal(self, action: HealingAction, token: str) -> str:
        if action.type == "track_details":
            queued = await asyncio.to_thread(
                self.lazy_updates.enqueue_track_unavailable,
                action.entity_id,
                action.timestamp.isoformat(),
            )
            if not queued:
                raise RuntimeError("could not queue track_unavailable update")
            return "Marked track as unplayable"

        raise ValueError(f"Healing not implemented for {action.type}")


class HealingDispatcher:
    """Runs healing passes on a background event loop.

    `dispatch` returns a concurrent.futures.Future: callers that must not
    block attach a callback, callers with time left wait on `result()`.
    """

    def __init__(self, queue: SelfHealingQueue):
        self.queue = queue
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _ensure_started(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None or self._loop.is_closed():
                loop = asyncio.new_event_loop()
                self._thread = threading.Thread(
                    target=loop.run_forever, name="healing-dispatcher", daemon=True
                )
                self._thread.start()
                self._loop = loop
            return self._loop

    def dispatch(self, token: str, limit: int = 2) -> "concurrent.futures.Future[Dict[str, Any]]":
        loop = self._ensure_started()
        return asyncio.run_coroutine_threadsafe(
            self.queue.process_healing_queue(token, limit), loop
        )

    def shutdown(self, timeout: float = 2.0) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout)
        loop.close()


def log_healing_outcome(future: "concurrent.futures.Future[Dict[str, Any]]") -> None:
    """Done-callback for fire-and-forget dispatches."""
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error("Background healing pass failed: %s", error)
        return
    report = future.result()
    if report["processed"]:
        logger.info("Background healing: %d/%d succeeded", report["succeeded"], report["processed"])
