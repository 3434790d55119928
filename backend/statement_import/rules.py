"""
Account rules applied to parsed rows.

A rule matches on the description or note of a candidate, either by a
case-insensitive substring or by a case-insensitive regular expression.
The first enabled rule that matches sets the category and adds its tags.
"""

import logging
import re
from typing import Iterable, Optional

from .models import ImportCandidate, ImportRule

logger = logging.getLogger(__name__)

MAX_TAGS = 20


def rule_matches(rule: ImportRule, candidate: ImportCandidate) -> bool:
    text = getattr(candidate, rule.when.field) or ""
    if rule.when.type == "contains":
        return rule.when.value.lower() in text.lower()
    try:
        return re.search(rule.when.value, text, re.IGNORECASE) is not None
    except re.error as e:
        logger.warning("Rule %r has an invalid pattern %r: %s", rule.name, rule.when.value, e)
        return False


def first_match(
    candidate: ImportCandidate, rules: Iterable[ImportRule]
) -> Optional[ImportRule]:
    for rule in rules:
        if rule.enabled and rule_matches(rule, candidate):
            return rule
    return None


def apply_rules(candidate: ImportCandidate, rules: Iterable[ImportRule]) -> ImportCandidate:
    """
    Apply the first matching rule to the candidate in place.

    ``rules`` must already be in evaluation order. Tags are merged with the
    candidate's existing tags, keeping first-seen order and at most MAX_TAGS.
    """
    rule = first_match(candidate, rules)
    if rule is None:
        return candidate
    if rule.action.category:
        candidate.category = rule.action.category
    if rule.action.tags:
        merged = dict.fromkeys(tag for tag in candidate.tags + rule.action.tags if tag)
        candidate.tags = list(merged)[:MAX_TAGS]
    return candidate
