"""Map free-form genre names onto the catalog's broad genre labels"""

import re
from typing import Dict, Iterable, List, Optional


# Exact names (lowercase) to catalog labels
GENRE_MAPPINGS: Dict[str, str] = {
    "rock": "Rock",
    "pop": "Pop",
    "hip hop": "Hip-Hop",
    "hip-hop": "Hip-Hop",
    "r&b": "R&B",
    "rhythm and blues": "R&B",
    "country": "Country",
    "jazz": "Jazz",
    "blues": "Blues",
    "electronic": "Electronic",
    "dance": "Dance",
    "folk": "Folk",
    "indie": "Indie",
    "alternative": "Alternative",
    "metal": "Metal",
    "punk": "Punk",
    "reggae": "Reggae",
    "soul": "Soul",
    "funk": "Funk",
    "disco": "Disco",
    "classical": "Classical",
    "latin": "Latin",
    "world": "World",
    "gospel": "Gospel",
    "christian": "Christian",
    "new age": "New Age",
    "ambient": "Ambient",
    "techno": "Techno",
    "house": "House",
    "trance": "Trance",
    "dubstep": "Dubstep",
    "trap": "Hip-Hop",
    "edm": "Electronic",
}

# Sub-genre fragments to parent labels, checked before GENRE_MAPPINGS
COMPOUND_GENRE_MAPPINGS: Dict[str, str] = {
    "bedroom pop": "Pop",
    "bedroom": "Pop",
    "arena rock": "Rock",
    "arena": "Rock",
    "pop rock": "Pop",
    "pop rap": "Hip-Hop",
    "pop punk": "Punk",
    "alternative rock": "Alternative",
    "indie rock": "Indie",
    "indie pop": "Pop",
    "electronic dance": "EDM",
    "deep house": "House",
    "tropical house": "House",
    "tropical": "House",
    "deep": "House",
    "contemporary r&b": "R&B",
    "contemporary": "R&B",
    "neo-psychedelia": "Alternative",
    "neo psychedelia": "Alternative",
    "psychedelia": "Alternative",
    "psychedelic": "Alternative",
    "indie": "Indie",
    "post-punk": "Punk",
    "post punk": "Punk",
    "new wave": "Alternative",
    "synth-pop": "Pop",
    "synth pop": "Pop",
    "art rock": "Rock",
    "progressive rock": "Rock",
    "prog rock": "Rock",
}

_SEPARATORS = re.compile(r"[,/&]")
MAX_UNMAPPED_LENGTH = 30


def normalize_genre(genre: str) -> str:
    """First entry of a separated genre list, whitespace collapsed."""
    return " ".join(_SEPARATORS.split(genre.strip())[0].split())


def map_external_genre(genre: str) -> Optional[str]:
    """Translate a genre from an outside source into a catalog label.

    Matching order: whole name, compound fragments, the normalized first
    entry, then partial containment. Unmatched names are kept as written
    unless they look like markup or are too long to be a genre.

    Args:
        genre: Genre name as returned by the source

    Returns:
        Catalog label, the cleaned name, or None
    """
    whole = " ".join(genre.split()).lower()
    if whole in GENRE_MAPPINGS:
        return GENRE_MAPPINGS[whole]

    normalized = normalize_genre(genre).lower()
    if not normalized:
        return None

    for fragment, label in COMPOUND_GENRE_MAPPINGS.items():
        if fragment in normalized:
            return label

    if normalized in GENRE_MAPPINGS:
        return GENRE_MAPPINGS[normalized]

    for name, label in GENRE_MAPPINGS.items():
        if name in normalized or normalized in name:
            return label

    cleaned = normalize_genre(genre)
    if any(c in cleaned for c in ".:{") or len(cleaned) > MAX_UNMAPPED_LENGTH:
        return None
    return cleaned


def rank_external_genres(genres: Iterable[Dict], limit: int = 3) -> List[str]:
    """Map `{name, count}` genre votes and return the top labels.

    Labels are deduplicated case-insensitively and ordered by summed vote
    count; ties keep first-seen order.
    """
    labels: Dict[str, str] = {}
    votes: Dict[str, int] = {}
    for entry in genres:
        mapped = map_external_genre(str(entry.get("name") or ""))
        if not mapped:
            continue
        key = mapped.lower()
        labels.setdefault(key, mapped)
        votes[key] = votes.get(key, 0) + int(entry.get("count") or 0)

    ranked = sorted(labels, key=lambda key: -votes[key])
    return [labels[key] for key in ranked[:limit]]
