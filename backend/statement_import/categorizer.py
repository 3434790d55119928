"""Keyword rule table mapping transaction text to a budget category."""

import re
from typing import List, Tuple

DEFAULT_CATEGORY = "Other"

# Order matters: the first matching rule wins
CATEGORY_RULES: List[Tuple[re.Pattern, str]] = [
    (
        re.compile(
            r"restaurant|cafe|starbucks|mcdonald|food|dining|grocery|supermarket|walmart"
        ),
        "Food",
    ),
    (re.compile(r"gas|fuel|uber|lyft|taxi|parking|metro|bus|train"), "Transportation"),
    (re.compile(r"amazon|target|mall|store|retail|purchase"), "Shopping"),
    (re.compile(r"electric|water|internet|phone|utility|bill|payment|service"), "Bills"),
    (re.compile(r"movie|theater|netflix|spotify|game|entertainment"), "Entertainment"),
    (re.compile(r"pharmacy|hospital|doctor|medical|health|cvs"), "Health"),
]

CATEGORIES: List[str] = [category for _, category in CATEGORY_RULES] + [DEFAULT_CATEGORY]


def categorize(text: str) -> str:
    """Return the category of the first rule whose keywords occur in ``text``."""
    lowered = (text or "").lower()
    for pattern, category in CATEGORY_RULES:
        if pattern.search(lowered):
            return category
    return DEFAULT_CATEGORY
