"""Pydantic models for configuration validation"""

import logging
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator


logger = logging.getLogger(__name__)


class SpotifyConfig(BaseModel):
    """Catalog API configuration"""
    api_url: str = Field("https://api.spotify.com/v1", description="Catalog API root")
    market: str = Field("US", min_length=2, max_length=2)
    timeout: float = Field(4.0, gt=0, le=30)
    max_retries: int = Field(1, ge=0, le=5)
    service_token: Optional[str] = Field(None, description="Token used by ticks when none is supplied")

    @field_validator('api_url')
    @classmethod
    def validate_url(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError('URL must start with http:// or https://')
        return v.rstrip('/')

    @field_validator('market')
    @classmethod
    def validate_market(cls, v):
        return v.upper()


class MusicBrainzConfig(BaseModel):
    """MusicBrainz genre fallback configuration"""
    enabled: bool = True
    api_url: str = Field("https://musicbrainz.org/ws/2", description="Web service root")
    user_agent: str = Field("jukegame/1.0.0", min_length=1, description="Identifying User-Agent")
    timeout: float = Field(3.0, gt=0, le=30)

    @field_validator('api_url')
    @classmethod
    def validate_url(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError('URL must start with http:// or https://')
        return v.rstrip('/')


class StoreConfig(BaseModel):
    """Persistent cache configuration"""
    db_path: Optional[Path] = Field(None, description="SQLite file; defaults to the data dir")
    cache_ttl_days: int = Field(100, ge=1)


class PipelineConfig(BaseModel):
    """Round pipeline sizing"""
    min_candidate_pool: int = Field(100, ge=1)
    min_candidate_artists: int = Field(100, ge=1)
    max_related_to_seed: int = Field(50, ge=1)
    max_related_to_target: int = Field(20, ge=0)
    top_tracks_pick_from: int = Field(10, ge=1, le=10)
    max_top_track_fetches: int = Field(5, ge=0)
    request_budget_ms: int = Field(10000, ge=1000)
    healing_min_remaining_ms: int = Field(1000, ge=0)
    healing_batch_size: int = Field(2, ge=1)
    catalog_concurrency: int = Field(5, ge=1, le=20)


class MaintenanceConfig(BaseModel):
    """Maintenance tick configuration"""
    deadline_ms: int = Field(4500, ge=100)
    batch_limit: int = Field(3, ge=1, le=100)
    backfill_batch_size: int = Field(5, ge=0, le=50)
    backfill_min_remaining_ms: int = Field(1000, ge=0)
    healing_batch_size: int = Field(2, ge=1)
    healing_min_remaining_ms: int = Field(500, ge=0)
    max_attempts: int = Field(5, ge=1)
    stale_processing_seconds: int = Field(300, ge=10)
    schedule: Optional[str] = Field(None, description="Cron expression for `jukegame tick --schedule`")

    @field_validator('schedule')
    @classmethod
    def validate_cron(cls, v):
        if v:
            # Basic cron validation - should have 5 fields
            parts = v.split()
            if len(parts) != 5:
                raise ValueError('Cron expression must have 5 fields')
        return v

    @model_validator(mode='after')
    def validate_thresholds(self):
        if self.healing_min_remaining_ms > self.backfill_min_remaining_ms:
            logger.warning("Healing threshold is above the backfill threshold; "
                           "healing will rarely run after a backfill")
        if self.backfill_min_remaining_ms >= self.deadline_ms:
            raise ValueError('backfill_min_remaining_ms must be below deadline_ms')
        return self


class MonitoringConfig(BaseModel):
    """Monitoring configuration"""
    metrics_enabled: bool = Field(True, description="Enable Prometheus metrics")
    metrics_port: int = Field(9090, ge=1024, le=65535)
    circuit_breaker_threshold: int = Field(5, ge=1)
    circuit_breaker_timeout: int = Field(60, ge=5)


class WebConfig(BaseModel):
    """HTTP server configuration"""
    host: str = Field("0.0.0.0")
    port: int = Field(5000, ge=1024, le=65535)


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = Field("INFO", description="Log level")
    format: str = Field("text", description="Log format (text or json)")
    file: Optional[Path] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        allowed = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in allowed:
            raise ValueError(f'Log level must be one of: {", ".join(allowed)}')
        return v.upper()

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        if v.lower() not in ['text', 'json']:
            raise ValueError('Log format must be "text" or "json"')
        return v.lower()


class JukeGameConfig(BaseModel):
    """Main jukegame configuration"""
    spotify: SpotifyConfig = Field(default_factory=SpotifyConfig)
    musicbrainz: MusicBrainzConfig = Field(default_factory=MusicBrainzConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    web: WebConfig = Field(default_factory=WebConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode='after')
    def validate_config(self):
        """Validate overall configuration"""
        if not self.spotify.service_token:
            logger.warning("No SPOTIFY_SERVICE_TOKEN set; ticks without a token skip "
                           "catalog refreshes and healing")
        if self.pipeline.max_related_to_seed + self.pipeline.max_related_to_target > self.pipeline.min_candidate_artists * 2:
            logger.warning("Related-artist limits far exceed the candidate artist floor")
        return self
