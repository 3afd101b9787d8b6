"""Tests for tag-based contact classification."""

from __future__ import annotations

import pytest

from src.dialer_sync.config import Settings
from src.dialer_sync.sync.classifier import DEFAULT_RULES, TagRules, classify, normalize_tags
from src.dialer_sync.sync.schemas import Classification


class TestPriority:
    """Active client > generic customer > cold lead > excluded."""

    @pytest.mark.parametrize(
        "tags",
        [
            ["ACA Active 2025"],
            ["aca active 2026", "cold lead"],
            ["cold lead", "customer", "ACA Active 2025"],
            ["prospect", "won", "  aca active 2026  "],
        ],
    )
    def test_active_marker_always_wins(self, tags):
        assert classify(tags) == Classification.ACTIVE_CLIENT

    def test_customer_beats_cold(self):
        assert classify(["cold lead", "Customer"]) == Classification.GENERIC_CUSTOMER

    @pytest.mark.parametrize("tag", ["customer", "Past Client", "deal won", "purchased plan"])
    def test_customer_family_substrings(self, tag):
        assert classify([tag]) == Classification.GENERIC_CUSTOMER

    @pytest.mark.parametrize("tag", ["cold lead", "COLD", "cold-import", "new lead", "prospect 2024"])
    def test_cold_family(self, tag):
        assert classify([tag]) == Classification.COLD_LEAD

    def test_active_family_is_exact_match_only(self):
        # "aca active 2024" is not in the active set and contains no family fragment
        assert classify(["aca active 2024"]) == Classification.EXCLUDED


class TestExcluded:
    @pytest.mark.parametrize("tags", [[], None, ["newsletter"], ["vip", "facebook"], ["", "  "]])
    def test_unrecognized_tags_are_excluded(self, tags):
        assert classify(tags) == Classification.EXCLUDED

    def test_customer_flag_excludes_cold_lead(self):
        assert classify(["cold lead"], is_customer=True) == Classification.EXCLUDED

    def test_customer_flag_excludes_generic_customer(self):
        assert classify(["customer"], is_customer=True) == Classification.EXCLUDED

    def test_customer_flag_does_not_block_promotion(self):
        assert classify(["ACA Active 2025"], is_customer=True) == Classification.ACTIVE_CLIENT


class TestRuleTables:
    def test_exact_rules_run_before_substring_rules(self):
        names = [rule.name for rule in DEFAULT_RULES.ordered()]
        assert names == ["active_client", "customer_family", "cold_family"]

    def test_custom_rules(self):
        rules = TagRules.build(
            active_tags=["member"],
            customer_substrings=["paid"],
            cold_substrings=["lead"],
        )
        assert classify(["Member", "lead"], rules) == Classification.ACTIVE_CLIENT
        assert classify(["paid lead"], rules) == Classification.GENERIC_CUSTOMER
        assert classify(["warm lead"], rules) == Classification.COLD_LEAD
        assert classify(["cold"], rules) == Classification.EXCLUDED

    def test_rules_from_settings(self):
        settings = Settings(
            ACTIVE_CLIENT_TAGS="Gold 2027",
            CUSTOMER_TAG_SUBSTRINGS="buyer",
            COLD_TAG_SUBSTRINGS="stale",
        )
        rules = TagRules.from_settings(settings)
        assert classify(["gold 2027"], rules) == Classification.ACTIVE_CLIENT
        assert classify(["repeat buyer"], rules) == Classification.GENERIC_CUSTOMER
        assert classify(["stale"], rules) == Classification.COLD_LEAD
        assert classify(["aca active 2025"], rules) == Classification.EXCLUDED


def test_normalize_tags():
    assert normalize_tags([" Cold Lead ", "", "VIP"]) == ["cold lead", "vip"]
    assert normalize_tags(None) == []
