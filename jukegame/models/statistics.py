"""Per-invocation catalog API statistics"""

import logging
import re
from collections import Counter
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


OPERATIONS = (
    "top_tracks",
    "track_details",
    "related_artists",
    "artist_profiles",
    "artist_searches",
)
COUNTER_KINDS = ("requested", "cached", "from_catalog", "api_calls")

# Ordered: the first matching pattern wins
_PATH_PATTERNS = (
    (re.compile(r"/top-tracks"), "top_tracks"),
    (re.compile(r"/related-artists"), "related_artists"),
    (re.compile(r"/artists\?ids="), "artist_profiles"),
    (re.compile(r"/artists/[^/?]+(\?|$)"), "artist_profiles"),
    (re.compile(r"/search\?(.*&)?type=artist"), "artist_searches"),
    (re.compile(r"/tracks\?ids="), "track_details"),
    (re.compile(r"/tracks/[^/?]+(\?|$)"), "track_details"),
)


def _camel(*parts: str) -> str:
    words = "_".join(parts).split("_")
    return words[0] + "".join(w.title() for w in words[1:])


def categorize_api_call(path: str) -> Optional[str]:
    """Map a catalog URL path to the operation it counts towards.

    Args:
        path: Request path including query string, e.g. "/artists/abc/top-tracks"

    Returns:
        Operation name or None if the path is not tracked
    """
    for pattern, operation in _PATH_PATTERNS:
        if pattern.search(path):
            return operation
    return None


class ApiStatisticsTracker:
    """Counts catalog requests, cache hits and API calls for one invocation.

    Observability only: nothing reads these counters to make decisions.
    """

    def __init__(self):
        self._counts: Counter = Counter()
        self._cache_levels: Counter = Counter()
        self._api_calls: List[Dict[str, Any]] = []
        self._db_queries: List[Dict[str, Any]] = []

    @staticmethod
    def _check(operation: str) -> None:
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation type: {operation}")

    def record_request(self, operation: str, count: int = 1) -> None:
        self._check(operation)
        self._counts[(operation, "requested")] += count

    def record_cache_hit(self, operation: str, level: str = "db", count: int = 1) -> None:
        self._check(operation)
        self._counts[(operation, "cached")] += count
        self._cache_levels[level] += count

    def record_from_catalog(self, operation: str, count: int) -> None:
        self._check(operation)
        self._counts[(operation, "from_catalog")] += count

    def record_api_call(self, operation: str, duration_ms: float = 0.0) -> None:
        self._check(operation)
        self._counts[(operation, "api_calls")] += 1
        if duration_ms > 0:
            self._api_calls.append({"operation": operation, "durationMs": round(duration_ms, 2)})

    def record_db_query(self, operation: str, duration_ms: float) -> None:
        self._db_queries.append({"operation": operation, "durationMs": round(duration_ms, 2)})

    def get_statistics(self) -> Dict[str, Any]:
        """Aggregate counters into a JSON-ready dict with camelCase keys."""
        stats: Dict[str, Any] = {}
        for operation in OPERATIONS:
            for kind in COUNTER_KINDS:
                stats[_camel(operation, kind)] = self._counts[(operation, kind)]

        total_requests = sum(self._counts[(op, "requested")] for op in OPERATIONS)
        total_cached = sum(self._counts[(op, "cached")] for op in OPERATIONS)
        total_api_calls = sum(self._counts[(op, "api_calls")] for op in OPERATIONS)

        hit_rate = total_cached / total_requests if total_requests else 0.0
        stats["cacheHitRate"] = min(1.0, hit_rate)
        stats["totalApiCalls"] = total_api_calls
        stats["totalCacheHits"] = total_cached
        return stats

    def get_performance_diagnostics(self) -> Dict[str, Any]:
        return {
            "apiCalls": list(self._api_calls),
            "dbQueries": list(self._db_queries),
            "cacheLevels": dict(self._cache_levels),
            "totalApiTimeMs": round(sum(c["durationMs"] for c in self._api_calls), 2),
            "totalDbTimeMs": round(sum(q["durationMs"] for q in self._db_queries), 2),
            "slowestApiCall": max(self._api_calls, key=lambda c: c["durationMs"], default=None),
            "slowestDbQuery": max(self._db_queries, key=lambda q: q["durationMs"], default=None),
        }

    def validate_statistics(self, tolerance: int = 5) -> Dict[str, Any]:
        """Check that requested == cached + from_catalog per operation, within tolerance."""
        errors = []
        for operation in OPERATIONS:
            requested = self._counts[(operation, "requested")]
            cached = self._counts[(operation, "cached")]
            from_catalog = self._counts[(operation, "from_catalog")]
            expected = requested - cached
            if abs(from_catalog - expected) > tolerance:
                errors.append(
                    f"{operation}: requested={requested}, cached={cached}, "
                    f"from_catalog={from_catalog}, expected_from_catalog={expected}"
                )
        return {"isValid": not errors, "errors": errors}

    def reset(self) -> None:
        self._counts.clear()
        self._cache_levels.clear()
        self._api_calls.clear()
        self._db_queries.clear()
