"""
Per-user merchant cache.

Entries are keyed by a digest of the full transaction description, never
by the merchant name the oracle extracted: two transfers to different
beneficiaries through the same bank share most of their text and must
not inherit each other's category.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import structlog
from rapidfuzz.distance import Levenshtein

logger = structlog.get_logger(__name__)

MAX_KEY_LENGTH = 60
UNKNOWN_KEY = "unknown"


def _rolling_hash(text: str) -> int:
    """32-bit signed string hash (acc * 31 + code unit, wrapping)."""
    data = text.encode("utf-16-le")
    acc = 0
    for i in range(0, len(data), 2):
        code = data[i] | (data[i + 1] << 8)
        acc = ((acc << 5) - acc + code) & 0xFFFFFFFF
    return acc - (1 << 32) if acc & 0x80000000 else acc


def merchant_key(description: Optional[str]) -> str:
    """
    Stable cache key for a description: up to three significant words for
    readability, then the hex hash of the whole text. The hash is never
    truncated away.
    """
    if not description:
        return UNKNOWN_KEY

    digest = format(abs(_rolling_hash(description)), "x")

    words = re.sub(r"[^\w\s]", " ", description.upper()).split()
    significant = [w for w in words if len(w) > 2 and not w.isdigit()][:3]
    prefix = "_".join(significant)[: MAX_KEY_LENGTH - len(digest) - 1]

    return f"{prefix}_{digest}".lower()


def merchant_similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Similarity in [0, 1] between two merchant strings.

    1.0 for equal normalised text, 0.8..1.0 when one contains the other,
    otherwise a 60/40 blend of normalised Levenshtein and token Jaccard.
    """
    if not a or not b:
        return 0.0

    s1 = a.lower().strip()
    s2 = b.lower().strip()
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 1.0

    shorter, longer = sorted((len(s1), len(s2)))
    if s1 in s2 or s2 in s1:
        return 0.8 + 0.2 * (shorter / longer)

    edit_score = 1.0 - Levenshtein.distance(s1, s2) / longer

    tokens1 = set(s1.split())
    tokens2 = set(s2.split())
    union = tokens1 | tokens2
    jaccard = len(tokens1 & tokens2) / len(union) if union else 0.0

    return 0.6 * edit_score + 0.4 * jaccard


@dataclass
class CacheEntry:
    category: str
    subcategory: str = "Unknown"
    merchant_name: str = "Unknown"
    merchant_type: str = "Unknown"
    confidence: float = 0.0
    usage_count: int = 1
    last_used: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MerchantCache:
    """
    In-memory view of one user's cache for the duration of a run.

    Tracks which keys were written or hit so the store only writes back
    what changed.
    """

    def __init__(self, entries: Optional[dict[str, CacheEntry]] = None):
        self._entries: dict[str, CacheEntry] = dict(entries or {})
        self._dirty: set[str] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        return list(self._entries)

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Read an entry without counting it as a use."""
        return self._entries.get(key)

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is not None:
            entry.usage_count += 1
            entry.last_used = datetime.now(timezone.utc)
            self._dirty.add(key)
        return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        existing = self._entries.get(key)
        if existing is not None:
            entry.usage_count = existing.usage_count + 1
        self._entries[key] = entry
        self._dirty.add(key)

    def find_similar(self, key: str, threshold: float = 0.75) -> Optional[tuple[str, CacheEntry, float]]:
        """Best-scoring entry at or above threshold, or None."""
        best: Optional[tuple[str, CacheEntry, float]] = None
        for candidate, entry in self._entries.items():
            score = merchant_similarity(key, candidate)
            if score >= threshold and (best is None or score > best[2]):
                best = (candidate, entry, score)
        return best

    def dirty_items(self) -> list[tuple[str, CacheEntry]]:
        return [(k, self._entries[k]) for k in sorted(self._dirty)]

    def clear_dirty(self) -> None:
        self._dirty.clear()
