"""Tests for the enrichment trust merger and the typed field sets."""

import pytest

from roundgraph.enrichment.trust import (
    CompanyFields,
    InvestorArticleFields,
    InvestorWebsiteFields,
    field_values,
    merge_field_sets,
)
from roundgraph.graph.write_policy import FieldValue


# =============================================================================
# Primary / secondary merge
# =============================================================================
class TestMergeFieldSets:

    def test_primary_wins_regardless_of_confidence(self):
        website = InvestorWebsiteFields(
            type="vc",
            aum=500_000_000,
            field_confidence={"type": 0.4, "aum": 0.9},
        )
        articles = InvestorArticleFields(
            type="cvc",
            stage_focus=["Seed", "Series A"],
            field_confidence={"type": 0.95, "stage_focus": 0.9},
        )

        merged = merge_field_sets(website, articles, secondary_cap=0.6)

        assert merged["type"] == FieldValue("vc", 0.4)
        assert merged["aum"] == FieldValue(500_000_000, 0.9)
        # Secondary fills the gap, capped
        assert merged["stageFocus"] == FieldValue(["Seed", "Series A"], 0.6)

    def test_secondary_alone(self):
        articles = InvestorArticleFields(sector_focus=["Fintech"], field_confidence={"sector_focus": 0.3})
        merged = merge_field_sets(None, articles, secondary_cap=0.6)
        assert merged == {"sectorFocus": FieldValue(["Fintech"], 0.3)}

    def test_nothing_to_merge(self):
        assert merge_field_sets(None, None) == {}

    def test_articles_cannot_carry_firm_facts(self):
        for name in ("aum", "founded_year", "website", "linkedin_url"):
            assert name not in InvestorArticleFields.model_fields
            assert name in InvestorWebsiteFields.model_fields


# =============================================================================
# Field set validation
# =============================================================================
class TestFieldSets:

    def test_confidences_clamped(self):
        fields = CompanyFields(description="Solar logistics", field_confidence={"description": 3, "country": -1})
        assert fields.confidence("description") == 1.0
        assert fields.confidence("country") == 0.0
        assert fields.confidence("website") == 0.0

    def test_invalid_values_dropped(self):
        fields = CompanyFields(
            website="https://www.linkedin.com/company/sunbird",
            linkedin_url="https://sunbird.io",
            founded_year=1700,
            employee_range="12",
            status="Zombie",
        )
        assert fields.filled() == []

    def test_valid_values_kept(self):
        fields = CompanyFields(
            website="https://sunbird.io",
            linkedin_url="https://www.linkedin.com/company/sunbird",
            founded_year=2019,
            employee_range="11-50",
            status="Active",
        )
        assert fields.status == "active"
        assert sorted(fields.filled()) == ["employee_range", "founded_year", "linkedin_url", "status", "website"]

    def test_investor_lists_cleaned(self):
        fields = InvestorArticleFields(stage_focus="Seed", geo_focus=[" ", "DACH"], type="VC")
        assert fields.stage_focus == ["Seed"]
        assert fields.geo_focus == ["DACH"]
        assert fields.type == "vc"

    def test_unknown_investor_type_dropped(self):
        assert InvestorArticleFields(type="crypto whale").type is None

    def test_field_values(self):
        fields = CompanyFields(
            country="Germany",
            location="Berlin",
            field_confidence={"country": 0.9, "location": 0.8},
        )
        values = field_values(fields, cap=0.5, skip=("location",))
        assert values == {"country": FieldValue("Germany", 0.5)}

    @pytest.mark.parametrize("bad", [None, "n/a", [0.5]])
    def test_malformed_confidence_map(self, bad):
        assert CompanyFields(field_confidence=bad).field_confidence == {}
