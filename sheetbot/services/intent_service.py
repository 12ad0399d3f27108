import re
from typing import Iterable, Optional

AFFIRMATIVE_EXACT = {
    "si",
    "sí",
    "sii",
    "yes",
}

AFFIRMATIVE_MARKERS = [
    "claro",
    "por supuesto",
]


def normalize_for_matching(text: str) -> str:
    """Casefold, collapse whitespace and trim edge punctuation."""
    if not text:
        return ""

    normalized = text.strip().casefold()
    normalized = re.sub(r"\s+", " ", normalized)
    # "¡Sí!" -> "sí", "¿hola?" -> "hola"
    normalized = re.sub(r"^[^\w]+|[^\w]+$", "", normalized)
    return normalized


def is_affirmative(normalized: str) -> bool:
    if not normalized:
        return False
    if normalized in AFFIRMATIVE_EXACT:
        return True
    return any(marker in normalized for marker in AFFIRMATIVE_MARKERS)


def detect_asset_request(normalized: str, keys: Iterable[str], marker: str = "brochure") -> Optional[str]:
    """Return the first catalog key named together with the request marker."""
    if not normalized or marker.casefold() not in normalized:
        return None
    for key in keys:
        if key and key in normalized:
            return key
    return None
