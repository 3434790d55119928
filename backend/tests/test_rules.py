"""Tests for applying account rules to candidates."""
from datetime import date

import pytest

from statement_import.models import (
    ImportCandidate,
    ImportRule,
    RuleAction,
    RuleCondition,
    TransactionKind,
)
from statement_import.rules import MAX_TAGS, apply_rules, first_match, rule_matches


def make_candidate(description="AMAZON MKTPLACE PMTS", note=None, tags=None):
    return ImportCandidate(
        date=date(2024, 1, 15),
        description=description,
        amount=19.99,
        kind=TransactionKind.EXPENSE,
        category="Shopping",
        note=note,
        tags=tags or [],
    )


def make_rule(value, type="contains", field="description", category=None, tags=None, **extra):
    return ImportRule(
        name=extra.pop("name", value),
        when=RuleCondition(field=field, type=type, value=value),
        action=RuleAction(category=category, tags=tags or []),
        **extra,
    )


class TestRuleMatches:
    def test_contains_ignores_case(self):
        assert rule_matches(make_rule("amazon"), make_candidate()) is True
        assert rule_matches(make_rule("walmart"), make_candidate()) is False

    def test_regex_ignores_case(self):
        assert rule_matches(make_rule(r"^amazon\s+mkt", type="regex"), make_candidate()) is True
        assert rule_matches(make_rule(r"pmts$", type="regex"), make_candidate()) is True
        assert rule_matches(make_rule(r"^mktplace", type="regex"), make_candidate()) is False

    def test_invalid_regex_never_matches(self):
        assert rule_matches(make_rule("amazon(", type="regex"), make_candidate()) is False

    def test_note_field(self):
        candidate = make_candidate(note="Birthday gift for Sam")

        assert rule_matches(make_rule("gift", field="note"), candidate) is True
        assert rule_matches(make_rule("amazon", field="note"), candidate) is False

    def test_missing_note_does_not_match(self):
        assert rule_matches(make_rule("gift", field="note"), make_candidate()) is False


class TestApplyRules:
    def test_first_enabled_match_wins(self):
        rules = [
            make_rule("amazon", category="Entertainment", enabled=False, name="disabled"),
            make_rule("amazon", category="Shopping", tags=["online"], name="first"),
            make_rule("mktplace", category="Other", name="second"),
        ]

        assert first_match(make_candidate(), rules).name == "first"
        candidate = apply_rules(make_candidate(), rules)
        assert candidate.category == "Shopping"
        assert candidate.tags == ["online"]

    def test_no_match_leaves_candidate_unchanged(self):
        candidate = apply_rules(make_candidate(), [make_rule("walmart", category="Food")])

        assert candidate.category == "Shopping"
        assert candidate.tags == []

    def test_rule_without_category_keeps_category(self):
        candidate = apply_rules(make_candidate(), [make_rule("amazon", tags=["online"])])

        assert candidate.category == "Shopping"
        assert candidate.tags == ["online"]

    def test_tags_are_merged_without_duplicates(self):
        candidate = apply_rules(
            make_candidate(tags=["household", "online"]),
            [make_rule("amazon", tags=["online", "prime", ""])],
        )

        assert candidate.tags == ["household", "online", "prime"]

    def test_tags_are_capped(self):
        existing = [f"t{i}" for i in range(15)]
        candidate = apply_rules(
            make_candidate(tags=existing),
            [make_rule("amazon", tags=[f"r{i}" for i in range(10)])],
        )

        assert len(candidate.tags) == MAX_TAGS
        assert candidate.tags[:15] == existing

    @pytest.mark.parametrize("value", ["", None])
    def test_blank_condition_is_rejected(self, value):
        with pytest.raises(ValueError):
            RuleCondition(value=value)
