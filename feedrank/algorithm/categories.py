"""
Fixed content-category set shared by post tag vectors and user interest
vectors. The set is closed: vectors are always keyed by exactly these names.
"""
from typing import Mapping, Optional

CONTENT_CATEGORIES: tuple[str, ...] = (
    "dance",
    "music",
    "comedy",
    "fashion",
    "beauty",
    "fitness",
    "food",
    "travel",
    "tech",
    "gaming",
    "education",
    "news",
    "sports",
    "art",
    "pets",
    "lifestyle",
    "motivation",
    "business",
    "entertainment",
    "other",
)

NEUTRAL_INTEREST = 0.5

InterestVector = dict[str, float]


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def neutral_vector() -> InterestVector:
    return {category: NEUTRAL_INTEREST for category in CONTENT_CATEGORIES}


def normalize_vector(raw: Optional[Mapping[str, float]]) -> InterestVector:
    """Project a stored mapping onto the category set, clamped to [0, 1]."""
    raw = raw or {}
    return {
        category: clamp(float(raw.get(category, NEUTRAL_INTEREST)))
        for category in CONTENT_CATEGORIES
    }
