"""MusicBrainz client used as a last-resort genre source"""

import logging
import time
from typing import List, Optional

import requests

from jukegame.maintenance.genre_mapping import rank_external_genres
from jukegame.monitoring.metrics import record_api_call


logger = logging.getLogger(__name__)


class MusicBrainzClient:
    """Looks up artist genres on MusicBrainz by exact artist name."""

    BASE_URL = "https://musicbrainz.org/ws/2"

    def __init__(self, user_agent: str, base_url: str = BASE_URL, timeout: float = 3.0,
                 session: Optional[requests.Session] = None):
        """Initialize MusicBrainz client.

        Args:
            user_agent: Identifying User-Agent; MusicBrainz rejects anonymous clients
            base_url: Web service root
            timeout: Per-request timeout in seconds
            session: Shared requests session (one is created if omitted)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {"User-Agent": user_agent, "Accept": "application/json"}

    def _request(self, path: str, params: dict) -> Optional[dict]:
        """GET a JSON document once; errors are logged and yield None."""
        started = time.monotonic()
        try:
            r = self.session.get(f"{self.base_url}{path}", params={**params, "fmt": "json"},
                                 headers=self.headers, timeout=self.timeout)
        except requests.RequestException as e:
            record_api_call("musicbrainz", "error", time.monotonic() - started)
            logger.warning("MusicBrainz request to %s failed: %s", path, str(e)[:200])
            return None

        record_api_call("musicbrainz", "success" if r.ok else f"http_{r.status_code}",
                        time.monotonic() - started)
        if not r.ok:
            logger.warning("MusicBrainz returned HTTP %d for %s", r.status_code, path)
            return None
        try:
            return r.json()
        except ValueError:
            logger.warning("MusicBrainz returned invalid JSON for %s", path)
            return None

    def find_artist_id(self, name: str) -> Optional[str]:
        """MusicBrainz id of the artist whose name matches exactly (case-insensitive)."""
        data = self._request("/artist/", {"query": f"artist:{name}"})
        candidates = (data or {}).get("artists") or []
        for artist in candidates:
            if str(artist.get("name", "")).lower() == name.lower():
                return artist.get("id")

        if candidates:
            logger.debug("No exact MusicBrainz match for %r (saw %s)", name,
                         ", ".join(str(a.get("name")) for a in candidates[:5]))
        return None

    def get_artist_genres(self, name: str, limit: int = 3) -> List[str]:
        """Top genres for an artist, mapped to catalog labels.

        Args:
            name: Artist name, matched exactly
            limit: Max genres to return

        Returns:
            Genre labels ordered by MusicBrainz vote count; empty when unknown
        """
        mbid = self.find_artist_id(name)
        if not mbid:
            return []

        data = self._request(f"/artist/{mbid}", {"inc": "genres"})
        raw = (data or {}).get("genres") or []
        genres = rank_external_genres(raw, limit)
        if raw and not genres:
            logger.info("MusicBrainz genres for %r could not be mapped: %s", name,
                        ", ".join(str(g.get("name")) for g in raw))
        return genres
