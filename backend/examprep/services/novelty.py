from __future__ import annotations

import re
import unicodedata
from difflib import SequenceMatcher
from typing import Iterable, List, Optional, Tuple

from examprep.core.config import settings


def normalize_stem(text: str) -> str:
    s = unicodedata.normalize("NFKC", str(text or "")).strip().lower()
    # "Question 3:", "Q3)", "3." prefixes carry no content
    s = re.sub(r"^\s*(?:(?:question|q)\s*)?\d+\s*[:.)-]\s+", "", s, flags=re.IGNORECASE)
    s = re.sub(r"[^\w\s]", " ", s)
    s = re.sub(r"\s+", " ", s)
    return s.strip()


def similarity(a: str, b: str) -> float:
    return float(SequenceMatcher(None, a, b).ratio())


def best_match(stem: str, history: Iterable[str]) -> Tuple[float, str]:
    """Highest similarity of ``stem`` against already-normalised history stems."""
    best_score = 0.0
    best = ""
    for old in history:
        if not old:
            continue
        if old == stem:
            return 1.0, old
        score = similarity(stem, old)
        if score > best_score:
            best_score = score
            best = old
    return best_score, best


class StemDeduplicator:
    """Accumulates normalised question stems and rejects near-duplicates.

    Seeded with the texts a generation pass must not repeat; every accepted
    candidate is added so later candidates in the same pass are checked against it.
    """

    def __init__(self, existing_texts: Iterable[str] = (), threshold: Optional[float] = None):
        self.threshold = float(threshold if threshold is not None else settings.DUPLICATE_SIMILARITY_THRESHOLD)
        self._stems: List[str] = []
        for t in existing_texts:
            self.add(t)

    def add(self, text: str) -> None:
        stem = normalize_stem(text)
        if stem:
            self._stems.append(stem)

    def is_duplicate(self, text: str) -> bool:
        stem = normalize_stem(text)
        if not stem:
            return True
        score, _ = best_match(stem, self._stems)
        return score >= self.threshold

    def accept(self, text: str) -> bool:
        """Add ``text`` unless it duplicates a known stem. Returns whether it was added."""
        if self.is_duplicate(text):
            return False
        self.add(text)
        return True
