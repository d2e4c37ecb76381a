"""
Content tagger: derives a post's category vector from hashtags and caption
keywords with fixed dictionaries.

  hashtag match  → +0.3 per mapped category
  keyword match  → +0.2 per mapped category (substring of the caption)

Each category is capped at 1.0. Posts with no signal are tagged `other`.
"""
import logging
import re
from typing import Iterable

from feedrank.algorithm.categories import CONTENT_CATEGORIES
from feedrank.clock import Clock, utcnow
from feedrank.store import Store

logger = logging.getLogger(__name__)

HASHTAG_PATTERN = re.compile(r"#\w+")
HASHTAG_WEIGHT = 0.3
KEYWORD_WEIGHT = 0.2

HASHTAG_CATEGORIES: dict[str, tuple[str, ...]] = {
    "#dance": ("dance", "entertainment"),
    "#dancing": ("dance", "entertainment"),
    "#music": ("music", "entertainment"),
    "#song": ("music",),
    "#funny": ("comedy", "entertainment"),
    "#comedy": ("comedy", "entertainment"),
    "#lol": ("comedy",),
    "#fashion": ("fashion", "lifestyle"),
    "#style": ("fashion", "lifestyle"),
    "#ootd": ("fashion",),
    "#beauty": ("beauty", "lifestyle"),
    "#makeup": ("beauty",),
    "#skincare": ("beauty",),
    "#fitness": ("fitness", "lifestyle"),
    "#gym": ("fitness",),
    "#workout": ("fitness",),
    "#food": ("food", "lifestyle"),
    "#cooking": ("food",),
    "#recipe": ("food",),
    "#travel": ("travel", "lifestyle"),
    "#vacation": ("travel",),
    "#tech": ("tech",),
    "#technology": ("tech",),
    "#gaming": ("gaming", "entertainment"),
    "#game": ("gaming",),
    "#education": ("education",),
    "#learn": ("education",),
    "#news": ("news",),
    "#sports": ("sports",),
    "#art": ("art",),
    "#artist": ("art",),
    "#pets": ("pets",),
    "#dog": ("pets",),
    "#cat": ("pets",),
    "#motivation": ("motivation", "lifestyle"),
    "#business": ("business",),
    "#entrepreneur": ("business",),
}

KEYWORD_CATEGORIES: dict[str, tuple[str, ...]] = {
    "dance": ("dance",),
    "music": ("music",),
    "funny": ("comedy",),
    "fashion": ("fashion",),
    "beauty": ("beauty",),
    "fitness": ("fitness",),
    "food": ("food",),
    "travel": ("travel",),
    "tech": ("tech",),
    "game": ("gaming",),
    "learn": ("education",),
    "news": ("news",),
    "sport": ("sports",),
    "art": ("art",),
    "pet": ("pets",),
    "motivation": ("motivation",),
    "business": ("business",),
}


def extract_hashtags(content: str, hashtags: Iterable[str] = ()) -> list[str]:
    """Union of explicit and caption hashtags, lower-cased and de-duplicated."""
    found = {tag.lower() for tag in HASHTAG_PATTERN.findall(content or "")}
    found.update(tag.lower() for tag in hashtags)
    return sorted(found)


def compute_tags(content: str, hashtags: Iterable[str]) -> dict[str, float]:
    tags = {category: 0.0 for category in CONTENT_CATEGORIES}

    for hashtag in hashtags:
        for category in HASHTAG_CATEGORIES.get(hashtag, ()):
            tags[category] = min(1.0, tags[category] + HASHTAG_WEIGHT)

    content_lower = (content or "").lower()
    for keyword, categories in KEYWORD_CATEGORIES.items():
        if keyword in content_lower:
            for category in categories:
                tags[category] = min(1.0, tags[category] + KEYWORD_WEIGHT)

    if not any(score > 0 for score in tags.values()):
        tags["other"] = 1.0
    return tags


class ContentTagger:
    def __init__(self, store: Store, clock: Clock = utcnow) -> None:
        self.store = store
        self.clock = clock

    async def auto_tag(self, post_id: str, content: str, hashtags: Iterable[str] = ()) -> None:
        """
        Tag a post and upsert its content vector. Never raises: an untagged
        post simply contributes no interest signal at ranking time.
        """
        try:
            all_hashtags = extract_hashtags(content, hashtags)
            tags = compute_tags(content, all_hashtags)
            await self.store.upsert_content_vector(post_id, tags, all_hashtags, self.clock())
            logger.debug("Auto-tagged post %s: %s", post_id, tags)
        except Exception as exc:
            logger.error("Failed to auto-tag post %s: %s", post_id, exc)
