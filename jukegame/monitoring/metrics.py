"""Prometheus metrics for monitoring jukegame"""

import logging
from typing import Dict, Optional

from prometheus_client import Counter, Histogram, Gauge, start_http_server


logger = logging.getLogger(__name__)


# Metrics instances (initialized once)
_metrics_initialized = False
_metrics_server_started = False

# Counters
api_calls_total = None
tick_items_total = None
healing_actions_total = None
genre_backfill_total = None

# Histograms
api_latency_seconds = None
candidate_pool_size = None
tick_duration_seconds = None

# Gauges
last_tick_timestamp = None
lazy_updates_remaining = None


def init_metrics() -> None:
    """Initialize Prometheus metrics.

    This should be called once at application startup. Until it runs, the
    record_* helpers are no-ops.
    """
    global _metrics_initialized
    global api_calls_total, tick_items_total, healing_actions_total, genre_backfill_total
    global api_latency_seconds, candidate_pool_size, tick_duration_seconds
    global last_tick_timestamp, lazy_updates_remaining

    if _metrics_initialized:
        return

    logger.info("Initializing Prometheus metrics")

    api_calls_total = Counter(
        'jukegame_api_calls_total',
        'Total number of catalog API calls',
        ['service', 'status']
    )

    tick_items_total = Counter(
        'jukegame_tick_items_total',
        'Lazy update items handled by maintenance ticks',
        ['outcome']
    )

    healing_actions_total = Counter(
        'jukegame_healing_actions_total',
        'Self-healing actions dispatched',
        ['outcome']
    )

    genre_backfill_total = Counter(
        'jukegame_genre_backfill_total',
        'Track genre backfill results',
        ['outcome']
    )

    api_latency_seconds = Histogram(
        'jukegame_api_latency_seconds',
        'Catalog API call latency in seconds',
        ['service'],
        buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
    )

    candidate_pool_size = Histogram(
        'jukegame_candidate_pool_size',
        'Stage 2 candidate pool size by source',
        ['source'],
        buckets=(0, 10, 25, 50, 75, 100, 150, 200)
    )

    tick_duration_seconds = Histogram(
        'jukegame_tick_duration_seconds',
        'Maintenance tick wall-clock duration',
        buckets=(0.1, 0.5, 1.0, 2.0, 3.0, 4.0, 4.5, 5.0, 10.0)
    )

    last_tick_timestamp = Gauge(
        'jukegame_last_tick_timestamp',
        'Timestamp of the last maintenance tick'
    )

    lazy_updates_remaining = Gauge(
        'jukegame_lazy_updates_remaining',
        'Claimed lazy updates left unfinished by the last tick'
    )

    _metrics_initialized = True
    logger.info("Prometheus metrics initialized")


def start_metrics_server(port: int = 9090) -> bool:
    """Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default: 9090)

    Returns:
        True if server started successfully
    """
    global _metrics_server_started

    if _metrics_server_started:
        logger.warning("Metrics server already started")
        return True

    try:
        start_http_server(port)
        _metrics_server_started = True
        logger.info("Prometheus metrics server started on port %d", port)
        return True
    except OSError as e:
        logger.error("Failed to start metrics server: %s", e)
        return False


def setup_metrics(enabled: bool = True, port: int = 9090) -> bool:
    """Setup and optionally start metrics server.

    Args:
        enabled: Whether to start the metrics server
        port: Port for metrics server

    Returns:
        True if setup succeeded
    """
    if not enabled:
        logger.info("Metrics collection disabled")
        return False

    init_metrics()
    return start_metrics_server(port)


def record_api_call(service: str, status: str, duration: Optional[float] = None) -> None:
    """Record API call.

    Args:
        service: Operation name (top_tracks, related_artists, ...)
        status: Status of call (success, error, http_<code>)
        duration: Optional duration in seconds
    """
    if api_calls_total:
        api_calls_total.labels(service=service, status=status).inc()

    if duration is not None and api_latency_seconds:
        api_latency_seconds.labels(service=service).observe(duration)


def record_candidate_pool(organic: int, topped_up: int) -> None:
    if candidate_pool_size:
        candidate_pool_size.labels(source="top-track").observe(organic)
        candidate_pool_size.labels(source="embedding").observe(topped_up)


def record_tick(result: Dict, duration: float) -> None:
    """Record a maintenance tick result.

    Args:
        result: Tick response payload
        duration: Tick duration in seconds
    """
    import time
    if tick_items_total:
        tick_items_total.labels(outcome="processed").inc(result.get("processed", 0))
        tick_items_total.labels(outcome="failed").inc(result.get("failed", 0))
        tick_items_total.labels(outcome="requeued").inc(result.get("requeued", 0))
    if tick_duration_seconds:
        tick_duration_seconds.observe(duration)
    if last_tick_timestamp:
        last_tick_timestamp.set(time.time())
    if lazy_updates_remaining:
        lazy_updates_remaining.set(result.get("remaining", 0))


def record_healing(succeeded: int, failed: int) -> None:
    if healing_actions_total:
        healing_actions_total.labels(outcome="succeeded").inc(succeeded)
        healing_actions_total.labels(outcome="failed").inc(failed)


def record_genre_backfill(updated: int, failed: int) -> None:
    if genre_backfill_total:
        genre_backfill_total.labels(outcome="updated").inc(updated)
        genre_backfill_total.labels(outcome="failed").inc(failed)
