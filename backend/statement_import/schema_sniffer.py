"""Column mapping suggestions from decoded headers."""

import hashlib
from typing import Dict, List, Optional

from .models import PartialColumnMapping

# Priority-ordered search terms per semantic field
FIELD_TERMS: Dict[str, List[str]] = {
    "date": ["date", "transaction date", "posted date", "trans date", "post date"],
    "description": ["description", "memo", "details", "transaction", "merchant", "payee"],
    "amount": ["amount", "debit", "credit", "value", "total", "$"],
    "type": ["type", "transaction type", "debit/credit", "dr/cr"],
    "category": ["category", "merchant category", "classification"],
    "note": ["note", "memo", "reference", "check number"],
}


def find_best_column(headers: List[str], terms: List[str]) -> Optional[str]:
    """Return the first header whose lowercase form contains a term, trying terms in order."""
    normalized = [h.lower().strip() for h in headers]
    for term in terms:
        for header, lowered in zip(headers, normalized):
            if term in lowered:
                return header
    return None


def suggest(headers: List[str]) -> PartialColumnMapping:
    """
    Propose a column mapping for the given headers.

    The result is advisory only; fields without a matching header are left
    unset.
    """
    return PartialColumnMapping(
        **{field: find_best_column(headers, terms) for field, terms in FIELD_TERMS.items()}
    )


def column_signature(headers: List[str]) -> str:
    """Order-insensitive fingerprint of a header set, used to key saved presets."""
    key = "|".join(sorted(h.lower().strip() for h in headers))
    return hashlib.sha1(key.encode("utf-8")).hexdigest()
