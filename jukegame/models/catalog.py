"""Pydantic models for catalog entities and round payloads"""

import logging
import re
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


logger = logging.getLogger(__name__)


CATALOG_ID_PATTERN = re.compile(r"[0-9A-Za-z]{1,22}")


def is_catalog_id(value: Any) -> bool:
    """Check that a value has the catalog's identifier shape.

    Catalog ids are short base62 tokens; store surrogate keys (uuids)
    contain separators and must never reach the catalog client.
    """
    return isinstance(value, str) and CATALOG_ID_PATTERN.fullmatch(value) is not None


class CamelModel(BaseModel):
    """Base model that reads snake_case or camelCase and writes camelCase"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ArtistRef(CamelModel):
    id: Optional[str] = None
    name: str = ""


class AlbumInfo(CamelModel):
    id: Optional[str] = None
    name: str = ""
    release_date: Optional[str] = None
    images: List[Dict[str, Any]] = Field(default_factory=list)


class TrackDetails(CamelModel):
    """Track as returned by the catalog or rebuilt from the store"""
    id: str
    name: str = ""
    artists: List[ArtistRef] = Field(default_factory=list)
    album: Optional[AlbumInfo] = None
    popularity: Optional[int] = None
    duration_ms: Optional[int] = None
    explicit: bool = False
    is_playable: bool = True
    uri: Optional[str] = None
    genre: Optional[str] = None

    @field_validator("is_playable", mode="before")
    @classmethod
    def default_playable(cls, v):
        # The catalog omits is_playable when no market is given
        return True if v is None else v

    @property
    def primary_artist(self) -> Optional[ArtistRef]:
        return self.artists[0] if self.artists else None


class ArtistProfile(CamelModel):
    spotify_id: str
    name: str
    genres: List[str] = Field(default_factory=list)
    popularity: Optional[int] = None
    follower_count: Optional[int] = None


class TargetArtist(CamelModel):
    id: Optional[str] = None
    name: str = ""


class TargetProfile(CamelModel):
    artist: TargetArtist
    spotify_id: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    popularity: Optional[int] = None
    follower_count: Optional[int] = None

    @classmethod
    def from_profile(cls, target: TargetArtist, profile: ArtistProfile) -> "TargetProfile":
        return cls(
            artist=TargetArtist(id=profile.spotify_id, name=profile.name or target.name),
            spotify_id=profile.spotify_id,
            genres=profile.genres,
            popularity=profile.popularity,
            follower_count=profile.follower_count,
        )


class CandidateSeed(CamelModel):
    track: TrackDetails
    source: Literal["top-track", "embedding"]
    seed_artist_id: str = ""


class ExplorationPhase(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    level: Literal["high", "medium", "low"]
    drift_magnitude: float
    round_range_applicable: Tuple[int, int]


def artist_profile_from_catalog(data: Dict[str, Any]) -> ArtistProfile:
    """Build an ArtistProfile from a raw catalog artist object.

    Args:
        data: Catalog artist JSON (id, name, genres, popularity, followers)

    Returns:
        ArtistProfile
    """
    followers = data.get("followers") or {}
    return ArtistProfile(
        spotify_id=data["id"],
        name=data.get("name") or "",
        genres=data.get("genres") or [],
        popularity=data.get("popularity"),
        follower_count=followers.get("total"),
    )
