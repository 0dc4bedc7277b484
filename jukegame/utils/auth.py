"""Bearer token handling for the round endpoints"""

from typing import Optional

from jukegame.errors import AuthenticationError


def parse_bearer_token(header_value: Optional[str]) -> Optional[str]:
    """Extract the token from an Authorization header value.

    Args:
        header_value: Raw header, e.g. "Bearer abc123"

    Returns:
        Token string or None if the header is absent or malformed
    """
    if not header_value:
        return None

    scheme, _, token = header_value.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_bearer_token(header_value: Optional[str]) -> str:
    """Like parse_bearer_token but raises AuthenticationError when missing."""
    token = parse_bearer_token(header_value)
    if token is None:
        raise AuthenticationError("Missing or invalid Authorization header")
    return token
