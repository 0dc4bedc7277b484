"""Health and statistics reporting for the jukegame web app"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from jukegame.errors import PersistenceError

logger = logging.getLogger(__name__)


def write_health_status(data_dir: Path, status: str, message: str = "") -> None:
    """Write health status for monitoring.

    Args:
        data_dir: Data directory where health.json should be written
        status: Status string (e.g., 'running', 'scheduled')
        message: Optional message
    """
    health_file = data_dir / "health.json"
    try:
        with open(health_file, 'w') as f:
            json.dump({
                "status": status,
                "message": message,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "pid": os.getpid()
            }, f, indent=2)
    except OSError as e:
        logger.warning("Could not write health status: %s", e)


def check_store(services) -> Dict[str, Any]:
    """Check that the SQLite cache answers queries."""
    try:
        services.store.ping()
        return {"status": "healthy", "message": "Connected", "healthy": True}
    except PersistenceError as e:
        logger.error("Store health check failed: %s", e)
        return {"status": "error", "message": str(e), "healthy": False}


def check_catalog(services) -> Dict[str, Any]:
    """Report the catalog circuit breaker state (no network call)."""
    if services.breaker is None:
        return {"status": "configured", "message": "No circuit breaker", "healthy": True}

    snapshot = services.breaker.snapshot()
    healthy = snapshot["state"] != "open"
    return {
        "status": "healthy" if healthy else "degraded",
        "message": f"Circuit {snapshot['state']}",
        "healthy": healthy,
        "failure_count": snapshot["failure_count"],
    }


def check_queues(services) -> Dict[str, Any]:
    """Lazy-update counts by status and the healing queue depth."""
    try:
        lazy_counts = services.lazy_updates.counts()
    except PersistenceError as e:
        return {"status": "error", "message": str(e), "healthy": False}
    return {
        "status": "healthy",
        "message": f"{lazy_counts['pending']} lazy updates pending",
        "healthy": True,
        "lazy_updates": lazy_counts,
        "healing": len(services.healing_queue),
    }


def get_all_services(services) -> Dict[str, Dict[str, Any]]:
    return {
        "store": check_store(services),
        "catalog": check_catalog(services),
        "queues": check_queues(services),
    }


def get_system_stats(services) -> Dict[str, Any]:
    """Queue depths, backfill counters and the last tick result."""
    try:
        lazy_counts = services.lazy_updates.counts()
    except PersistenceError as e:
        logger.warning("Could not count lazy updates: %s", e)
        lazy_counts = None

    last_tick = services.tracker.load() if services.tracker is not None else None
    return {
        "lazy_updates": lazy_counts,
        "healing": services.healing_queue.get_status(),
        "genre_backfill": services.backfill_metrics.snapshot(),
        "last_tick": last_tick,
    }
