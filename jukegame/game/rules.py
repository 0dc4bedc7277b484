"""Game rules: gravity zones, injection policy and exploration phases"""

import logging
import math
from enum import Enum
from typing import Dict, NamedTuple, Optional

from jukegame.models.catalog import ExplorationPhase


logger = logging.getLogger(__name__)


# Gravity domain
G_MIN = 0.15
G_MAX = 0.70
DEFAULT_PLAYER_GRAVITY = 0.32

# Round and pool sizing
MAX_ROUND_TURNS = 10
MIN_CANDIDATE_POOL = 100
MIN_UNIQUE_ARTISTS = 100
MAX_RELATED_TO_SEED = 50
MAX_RELATED_TO_TARGET = 20
TOP_TRACKS_PICK_FROM = 10

PLAYER_IDS = ("player1", "player2")

# Influence thresholds (percent)
DESPERATION_CEILING = 20.0
DEAD_ZONE_CEILING = 50.0
HIGH_INFLUENCE_FLOOR = 80.0

EXPLORATION_PHASES = (
    ExplorationPhase(level="high", drift_magnitude=0.2, round_range_applicable=(1, 2)),
    ExplorationPhase(level="medium", drift_magnitude=0.5, round_range_applicable=(3, 5)),
    ExplorationPhase(level="low", drift_magnitude=0.8, round_range_applicable=(6, 10)),
)


class InfluenceZone(Enum):
    """Behavioral zones derived from influence percentage"""
    DESPERATION = "Desperation"
    DEAD_ZONE = "DeadZone"
    GOOD_INFLUENCE = "GoodInfluence"
    HIGH_INFLUENCE = "HighInfluence"


class InfluenceReading(NamedTuple):
    influence_percent: float
    zone: InfluenceZone


def influence_percent(gravity: float) -> float:
    """Rescale gravity to a 0-100 influence metric."""
    return ((gravity - G_MIN) / (G_MAX - G_MIN)) * 100


def classify_gravity(gravity: float) -> InfluenceReading:
    """Map a gravity scalar to its influence percentage and zone.

    Args:
        gravity: Player gravity, nominally within [G_MIN, G_MAX]

    Returns:
        InfluenceReading with the percentage and the zone
    """
    percent = influence_percent(gravity)

    if percent < DESPERATION_CEILING:
        zone = InfluenceZone.DESPERATION
    elif percent <= DEAD_ZONE_CEILING:
        zone = InfluenceZone.DEAD_ZONE
    elif percent >= HIGH_INFLUENCE_FLOOR:
        zone = InfluenceZone.HIGH_INFLUENCE
    else:
        zone = InfluenceZone.GOOD_INFLUENCE

    return InfluenceReading(percent, zone)


def should_fetch_target_related(zone: InfluenceZone) -> bool:
    """Target-seeded fetching is disabled only inside the dead zone."""
    return zone is not InfluenceZone.DEAD_ZONE


def should_inject_target(gravity: float, round_number: int) -> bool:
    """Whether the target artist is forced into the candidate set.

    Args:
        gravity: Active player's gravity
        round_number: Current round (1-based)

    Returns:
        True at high influence or once the round limit is reached
    """
    if round_number >= MAX_ROUND_TURNS:
        return True
    return classify_gravity(gravity).zone is InfluenceZone.HIGH_INFLUENCE


def clamp_gravity(value: float) -> float:
    return min(G_MAX, max(G_MIN, value))


def normalize_gravities(gravities: Optional[Dict[str, float]]) -> Dict[str, float]:
    """Fill in missing players and clamp every gravity into range.

    Args:
        gravities: Incoming gravity map keyed by player id (may be None)

    Returns:
        Gravity map covering every known player
    """
    gravities = dict(gravities or {})
    normalized = {}

    for player_id in set(PLAYER_IDS) | set(gravities):
        value = gravities.get(player_id)
        if value is None or not math.isfinite(value):
            value = DEFAULT_PLAYER_GRAVITY
        normalized[player_id] = clamp_gravity(value)

    return dict(sorted(normalized.items()))


def exploration_phase(round_number: int) -> ExplorationPhase:
    """Map a round number to its exploration phase.

    Any round outside the listed ranges, round 0 included, uses the last phase.
    """
    for phase in EXPLORATION_PHASES:
        start, end = phase.round_range_applicable
        if start <= round_number <= end:
            return phase
    return EXPLORATION_PHASES[-1]


def hard_convergence_active(round_number: int) -> bool:
    return round_number >= MAX_ROUND_TURNS


def artist_shortfall(count: int, floor: int = MIN_UNIQUE_ARTISTS) -> int:
    """Number of extra candidates needed to reach a floor."""
    return max(0, floor - count)
