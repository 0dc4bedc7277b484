"""Configuration management for jukegame"""

import logging
import os
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from jukegame.utils.secrets import load_secret
from jukegame.models.config_models import (
    JukeGameConfig, SpotifyConfig, StoreConfig, PipelineConfig,
    MaintenanceConfig, MonitoringConfig, WebConfig, LoggingConfig
)


logger = logging.getLogger(__name__)


def _env_bool(key: str, default: str = "false") -> bool:
    return os.getenv(key, default).lower() in ("true", "1", "yes", "on")


def _env_int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def load_config_from_env() -> Dict:
    """Load configuration from environment variables.

    Returns:
        Nested configuration dictionary, one key per config section
    """
    logger.info("Loading configuration from environment variables...")

    schedule = os.getenv("TICK_SCHEDULE", "").strip()
    if schedule.lower() in ("", "manual", "false", "no", "off", "disabled"):
        schedule = None

    config = {
        "spotify": {
            "api_url": os.getenv("SPOTIFY_API_URL", "https://api.spotify.com/v1"),
            "market": os.getenv("SPOTIFY_MARKET", "US"),
            "timeout": float(os.getenv("SPOTIFY_TIMEOUT", "4")),
            "max_retries": _env_int("SPOTIFY_MAX_RETRIES", 1),
            "service_token": load_secret("SPOTIFY_SERVICE_TOKEN"),
        },
        "musicbrainz": {
            "enabled": _env_bool("MUSICBRAINZ_ENABLED", "true"),
            "api_url": os.getenv("MUSICBRAINZ_API_URL", "https://musicbrainz.org/ws/2"),
            "user_agent": os.getenv("MUSICBRAINZ_USER_AGENT", "jukegame/1.0.0"),
        },
        "store": {
            "db_path": os.getenv("JUKEGAME_DB_PATH"),
            "cache_ttl_days": _env_int("CACHE_TTL_DAYS", 100),
        },
        "pipeline": {
            "min_candidate_pool": _env_int("MIN_CANDIDATE_POOL", 100),
            "min_candidate_artists": _env_int("MIN_CANDIDATE_ARTISTS", 100),
            "max_related_to_seed": _env_int("MAX_RELATED_TO_SEED", 50),
            "max_related_to_target": _env_int("MAX_RELATED_TO_TARGET", 20),
            "top_tracks_pick_from": _env_int("TOP_TRACKS_PICK_FROM", 10),
            "max_top_track_fetches": _env_int("MAX_TOP_TRACK_FETCHES", 5),
            "request_budget_ms": _env_int("REQUEST_BUDGET_MS", 10000),
            "catalog_concurrency": _env_int("CATALOG_CONCURRENCY", 5),
        },
        "maintenance": {
            "deadline_ms": _env_int("TICK_DEADLINE_MS", 4500),
            "batch_limit": _env_int("TICK_BATCH_LIMIT", 3),
            "backfill_batch_size": _env_int("GENRE_BACKFILL_BATCH_SIZE", 5),
            "healing_batch_size": _env_int("HEALING_BATCH_SIZE", 2),
            "max_attempts": _env_int("LAZY_UPDATE_MAX_ATTEMPTS", 5),
            "stale_processing_seconds": _env_int("STALE_PROCESSING_SECONDS", 300),
            "schedule": schedule,
        },
        "monitoring": {
            "metrics_enabled": _env_bool("METRICS_ENABLED", "true"),
            "metrics_port": _env_int("METRICS_PORT", 9090),
            "circuit_breaker_threshold": _env_int("CIRCUIT_BREAKER_THRESHOLD", 5),
            "circuit_breaker_timeout": _env_int("CIRCUIT_BREAKER_TIMEOUT", 60),
        },
        "web": {
            "host": os.getenv("WEB_HOST", "0.0.0.0"),
            "port": _env_int("WEB_PORT", 5000),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "format": os.getenv("LOG_FORMAT", "text"),
            "file": os.getenv("LOG_FILE"),
        },
    }

    return config


def validate_config(config: Dict) -> Optional[JukeGameConfig]:
    """Validate configuration using Pydantic models.

    Args:
        config: Configuration dictionary

    Returns:
        Validated JukeGameConfig or None if validation fails
    """
    try:
        validated_config = JukeGameConfig(
            spotify=SpotifyConfig(**config.get("spotify", {})),
            store=StoreConfig(**config.get("store", {})),
            pipeline=PipelineConfig(**config.get("pipeline", {})),
            maintenance=MaintenanceConfig(**config.get("maintenance", {})),
            monitoring=MonitoringConfig(**config.get("monitoring", {})),
            web=WebConfig(**config.get("web", {})),
            logging=LoggingConfig(**config.get("logging", {})),
        )

        logger.info("✓ Configuration validation passed")
        return validated_config

    except PydanticValidationError as e:
        logger.error("Configuration validation failed: %s", e)
        return None


def get_data_dir() -> Path:
    """Get data directory path.

    Returns:
        Path to data directory
    """
    data_dir = Path(os.getenv("JUKEGAME_DATA_DIR", Path.cwd()))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir
