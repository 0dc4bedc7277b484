"""Persistence of the most recent maintenance tick result"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


class TickTracker:
    """Keeps the last tick outcome on disk so /api/stats can report it."""

    def __init__(self, data_dir: Path):
        """Initialize tick tracker.

        Args:
            data_dir: Data directory for tracker file
        """
        self.data_dir = data_dir
        self.tracker_file = data_dir / "jukegame_last_tick.json"
        self.tick_count = 0

    def save(self, result: Dict[str, Any]) -> None:
        """Save a tick result.

        Args:
            result: Tick response payload
        """
        self.tick_count += 1
        data = {
            "last_tick_timestamp": datetime.now(timezone.utc).isoformat(),
            "ticks_this_process": self.tick_count,
            "result": result,
        }
        try:
            with open(self.tracker_file, 'w') as f:
                json.dump(data, f, indent=2, default=str)
        except OSError as e:
            logger.error("Error saving tick tracking data: %s", e)

    def load(self) -> Optional[Dict[str, Any]]:
        """Load the last tick result.

        Returns:
            Tracking data dict or None if not found
        """
        if not self.tracker_file.exists():
            return None
        try:
            with open(self.tracker_file, 'r') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Error loading tick tracking data: %s", e)
            return None
