"""
Duplicate detection for import candidates.

Candidates are matched against a window of recent records, by exact content
hash when the window carries hashes and by a fuzzy date/amount/description
comparison otherwise. The detector errs towards missing a duplicate rather
than flagging a distinct transaction.
"""

import hashlib
import re
from datetime import date
from typing import Iterable, List, Optional, Set

from .models import ExistingRecord, ImportCandidate

AMOUNT_TOLERANCE = 0.01
SIMILARITY_THRESHOLD = 0.8

_WHITESPACE = re.compile(r"\s+")


def normalize_description(text: str) -> str:
    return _WHITESPACE.sub(" ", (text or "").lower()).strip()


def content_hash(account_id: str, day: date, amount: float, description: str) -> str:
    """Stable sha256 over account, date, amount and normalized description."""
    key = "|".join(
        [
            account_id or "",
            day.isoformat(),
            f"{amount:.2f}",
            normalize_description(description),
        ]
    )
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def candidate_hash(account_id: str, candidate: ImportCandidate) -> str:
    return content_hash(account_id, candidate.date, candidate.amount, candidate.description)


def jaccard_similarity(a: str, b: str) -> float:
    """Word-set overlap |A & B| / |A | B| of two lowercased strings."""
    left = normalize_description(a)
    right = normalize_description(b)
    if left == right:
        return 1.0
    words_a = set(left.split())
    words_b = set(right.split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def similar_descriptions(a: str, b: str, threshold: float = SIMILARITY_THRESHOLD) -> bool:
    return jaccard_similarity(a, b) >= threshold


def is_fuzzy_match(candidate: ImportCandidate, record: ExistingRecord) -> bool:
    if record.date != candidate.date:
        return False
    # Compare in whole cents
    if abs(round(record.amount * 100) - round(candidate.amount * 100)) >= AMOUNT_TOLERANCE * 100:
        return False
    existing_text = record.description or record.note or ""
    return similar_descriptions(existing_text, candidate.description)


class DuplicateDetector:
    """
    Compares candidates with a fixed window of existing records.

    The hash index is built once per window, so each candidate check on the
    hashed path is a set lookup.
    """

    def __init__(self, account_id: str, existing: Iterable[ExistingRecord]):
        self.account_id = account_id
        self.existing: List[ExistingRecord] = list(existing)
        self.hashes: Set[str] = {r.content_hash for r in self.existing if r.content_hash}

    def is_duplicate(self, candidate: ImportCandidate) -> bool:
        if self.hashes:
            key = candidate.content_hash or candidate_hash(self.account_id, candidate)
            return key in self.hashes
        return any(is_fuzzy_match(candidate, record) for record in self.existing)

    def find_duplicates(self, candidates: Iterable[ImportCandidate]) -> List[ImportCandidate]:
        return [c for c in candidates if self.is_duplicate(c)]


def find_duplicates(
    candidates: Iterable[ImportCandidate],
    existing: Iterable[ExistingRecord],
    account_id: Optional[str] = "",
) -> List[ImportCandidate]:
    """Return the subset of ``candidates`` considered duplicates of ``existing``."""
    return DuplicateDetector(account_id or "", existing).find_duplicates(candidates)
