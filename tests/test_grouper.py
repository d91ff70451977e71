"""Tests for round grouping: pairwise similarity and single-link clustering."""

from datetime import datetime, timedelta

import pytest

from roundgraph.analyst.grouper import (
    amount_similarity,
    clean_name,
    group,
    name_similarity,
    similarity,
    sort_rounds,
)
from roundgraph.analyst.schemas import ArticleRef, FundingExtraction, FundingStage, GroupCandidate

BASE = datetime(2024, 5, 2, 9, 0)


def candidate(
    company,
    url,
    days=0,
    amount_usd=None,
    stage=None,
    confidence=0.9,
    investors=(),
    lead=None,
    country=None,
    ingested_at=None,
):
    return GroupCandidate(
        extraction=FundingExtraction(
            company_name=company,
            amount_usd=amount_usd,
            stage=stage,
            investors=list(investors),
            lead_investor=lead,
            country=country,
            confidence=confidence,
        ),
        source=ArticleRef(url=url, title=f"{company} funding"),
        seen_at=BASE + timedelta(days=days),
        ingested_at=ingested_at,
    )


# =============================================================================
# Signals
# =============================================================================
class TestSimilaritySignals:

    def test_clean_name_strips_headline_noise(self):
        assert clean_name("London's Sunbird raises $12M") == "sunbird"
        assert clean_name("Meet Acme Robotics") == "acme robotics"

    def test_name_tiers(self):
        assert name_similarity("N26 GmbH", "N26") == pytest.approx(0.40)
        assert name_similarity("Sunbird", "Sunbird Solar") == pytest.approx(0.35)
        assert name_similarity("Sunbird", "Moonfish") == 0.0

    def test_amount_tiers(self):
        assert amount_similarity(100, 90) == pytest.approx(0.15)
        assert amount_similarity(100, 65) == pytest.approx(0.15 * 0.15 / 0.30)
        assert amount_similarity(100, 40) == 0.0
        assert amount_similarity(None, 40) == 0.0

    def test_similarity_is_capped(self):
        a = candidate("Sunbird", "https://a.com/1", amount_usd=12e6, stage=FundingStage.SERIES_A,
                      investors=["Acme Ventures"], lead="Acme Ventures", country="Germany")
        b = candidate("Sunbird", "https://b.com/1", amount_usd=12e6, stage=FundingStage.SERIES_A,
                      investors=["Acme Ventures"], lead="Acme Ventures", country="Germany")
        assert similarity(a, b) == pytest.approx(1.0)


# =============================================================================
# Clustering
# =============================================================================
class TestGroup:

    def test_same_round_different_wording(self):
        """N26 announcement seen twice: one with stage, one with legal suffix."""
        first = candidate("N26", "https://techcrunch.com/n26", days=0, amount_usd=108e6, confidence=0.9)
        second = candidate("N26 GmbH", "https://sifted.eu/n26", days=1, amount_usd=108e6,
                           stage=FundingStage.SERIES_E_PLUS, confidence=0.95)

        rounds = group([second, first])

        assert len(rounds) == 1
        r = rounds[0]
        assert r.source_count == 2
        assert r.best_company_name == "N26"
        assert r.stage == FundingStage.SERIES_E_PLUS
        assert r.max_confidence == 0.95
        assert r.key == "n26::unknown::2024-05-02"
        assert r.first_seen == BASE
        assert r.last_seen == BASE + timedelta(days=1)

    def test_single_link_is_transitive(self):
        # A~B and B~C merge; A and C are 20 days apart and never compared
        a = candidate("Sunbird", "https://a.com/1", days=0, amount_usd=12e6, stage=FundingStage.SERIES_A)
        b = candidate("Sunbird", "https://b.com/1", days=10, amount_usd=12e6, stage=FundingStage.SERIES_A)
        c = candidate("Sunbird", "https://c.com/1", days=20, amount_usd=12e6, stage=FundingStage.SERIES_A)

        rounds = group([a, b, c])

        assert len(rounds) == 1
        assert rounds[0].source_count == 3

    def test_unrelated_companies_stay_apart(self):
        rounds = group([
            candidate("Sunbird", "https://a.com/1", amount_usd=12e6),
            candidate("Moonfish", "https://b.com/1", amount_usd=12e6),
        ])
        assert len(rounds) == 2

    def test_duplicate_urls_count_once(self):
        rounds = group([
            candidate("Sunbird", "https://a.com/1", amount_usd=12e6, confidence=0.6),
            candidate("Sunbird", "https://a.com/1", days=1, amount_usd=12e6, confidence=0.8),
        ])
        assert len(rounds) == 1
        assert rounds[0].source_count == 1
        assert rounds[0].sources[0].confidence == 0.8

    def test_low_confidence_name_not_preferred(self):
        rounds = group([
            candidate("Sunbird Solar", "https://a.com/1", amount_usd=12e6, confidence=0.9),
            candidate("Sunbird", "https://b.com/1", amount_usd=12e6, confidence=0.3),
        ])
        assert len(rounds) == 1
        assert rounds[0].best_company_name == "Sunbird Solar"

    def test_amount_comes_from_top_member_only(self):
        rounds = group([
            candidate("Sunbird", "https://a.com/1", stage=FundingStage.SERIES_A, confidence=0.95),
            candidate("Sunbird", "https://b.com/1", amount_usd=99e6, stage=FundingStage.SERIES_A,
                      confidence=0.5, country="Germany"),
        ])
        assert len(rounds) == 1
        assert rounds[0].amount_usd is None
        # Other attributes still fall back to lower-confidence members
        assert rounds[0].country == "Germany"

    def test_investors_merged_by_normalized_name(self):
        rounds = group([
            candidate("Sunbird", "https://a.com/1", amount_usd=12e6, investors=["Acme Ventures"]),
            candidate("Sunbird", "https://b.com/1", amount_usd=12e6, investors=["Acme", "Northwind"]),
        ])
        assert rounds[0].all_investors == ["Acme Ventures", "Northwind"]

    def test_ingested_at_is_latest(self):
        later = BASE + timedelta(days=3)
        rounds = group([
            candidate("Sunbird", "https://a.com/1", amount_usd=12e6, ingested_at=BASE),
            candidate("Sunbird", "https://b.com/1", amount_usd=12e6, ingested_at=later),
        ])
        assert rounds[0].ingested_at == later

    def test_empty_input(self):
        assert group([]) == []


class TestSortRounds:

    def test_sort_by_amount(self):
        rounds = group([
            candidate("Sunbird", "https://a.com/1", amount_usd=12e6),
            candidate("Moonfish", "https://b.com/1", amount_usd=50e6),
            candidate("Quill", "https://c.com/1"),
        ])
        ordered = sort_rounds(rounds, "amount", descending=True)
        assert [r.best_company_name for r in ordered] == ["Moonfish", "Sunbird", "Quill"]

    def test_unknown_key_falls_back_to_last_seen(self):
        rounds = group([
            candidate("Sunbird", "https://a.com/1", days=0),
            candidate("Moonfish", "https://b.com/1", days=5),
        ])
        ordered = sort_rounds(rounds, "bogus", descending=True)
        assert ordered[0].best_company_name == "Moonfish"
