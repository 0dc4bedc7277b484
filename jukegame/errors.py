"""Error taxonomy shared by the round pipeline and the maintenance tick"""

from typing import Optional


class JukeGameError(Exception):
    """Base class for all jukegame errors"""


class ValidationError(JukeGameError):
    """Malformed input; surfaced to the caller as HTTP 400 with no side effects"""


class AuthenticationError(JukeGameError):
    """Missing or malformed bearer token (HTTP 401)"""


class UpstreamUnavailable(JukeGameError):
    """A catalog API call failed.

    Attributes:
        status_code: HTTP status returned by the catalog, if any
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def not_found(self) -> bool:
        return self.status_code == 404

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class PersistenceError(JukeGameError):
    """A store read or write failed"""
