"""
Tests for the import guard write path and batch maintenance.
"""

from uuid import uuid4

import pytest

from registry.import_guard import ImportGuard, ImportCandidate
from registry.models import AliasType, TAG_BDS, TAG_DEFENSE
from registry.repositories import CompanyRepository, EvidenceRepository


@pytest.fixture
def guard(session, config):
    return ImportGuard(session, config)


class TestValidateImport:
    """Tests for candidate validation messages."""

    def test_missing_name(self, guard):
        result = guard.validate_import(ImportCandidate(name="  "))
        assert result.is_valid is False
        assert result.errors == ["Company name is too short or missing"]

    def test_suggests_reference_ticker(self, guard):
        result = guard.validate_import(ImportCandidate(name="Alphabet Inc"))
        assert result.is_valid is True
        assert result.suggested_ticker == "GOOGL"
        assert "No ticker provided. Suggested: GOOGL" in result.warnings

    def test_similar_companies_are_warnings(self, guard, make_company):
        make_company("Apple Inc", "AAPL")
        result = guard.validate_import(ImportCandidate(name="Apple Computer", ticker="AAPL"))

        assert result.is_valid is False
        assert result.errors == ["Ticker AAPL is already assigned to Apple Inc"]
        assert "Similar companies found: Apple Inc" in result.warnings
        assert "Consider using existing tickers: Apple Inc (AAPL)" in result.warnings

    def test_reference_mismatch_suggests(self, guard):
        result = guard.validate_import(ImportCandidate(name="Alphabet Inc", ticker="GOOG2"))
        assert result.is_valid is False
        assert result.suggested_ticker == "GOOGL"
        assert "Suggested ticker: GOOGL" in result.warnings

    def test_long_country_warns(self, guard):
        result = guard.validate_import(ImportCandidate(name="Obscure Widgets", country="X" * 60))
        assert result.is_valid is True
        assert "Country name seems unusually long" in result.warnings


class TestCreateSafely:
    """Tests for creating companies through the guard."""

    def test_creates_with_suggested_ticker(self, session, guard):
        outcome = guard.create_safely(ImportCandidate(name=" Alphabet Inc ", sector="Technology"))

        assert outcome.success is True
        company = CompanyRepository(session).get_by_id(outcome.company_id)
        assert company.name == "Alphabet Inc"
        assert company.ticker == "GOOGL"
        assert company.normalized_name == "alphabetinc"

    def test_held_suggestion_is_dropped(self, session, guard, make_company):
        make_company("Google LLC", "GOOGL")

        outcome = guard.create_safely(ImportCandidate(name="Alphabet Inc"))

        assert outcome.success is True
        assert CompanyRepository(session).get_by_id(outcome.company_id).ticker is None
        assert any("already assigned to Google LLC" in w for w in outcome.warnings)

    def test_rejected_candidate_writes_nothing(self, session, guard, make_company):
        make_company("Apple Inc", "AAPL")

        outcome = guard.create_safely(ImportCandidate(name="Apple Computer", ticker="AAPL"))

        assert outcome.success is False
        assert outcome.company_id is None
        assert CompanyRepository(session).count_active() == 1


    def test_blank_ticker_is_not_stored(self, session, guard):
        outcome = guard.create_safely(ImportCandidate(name="Obscure Widgets", ticker=""))

        assert outcome.success is True
        assert CompanyRepository(session).get_by_id(outcome.company_id).ticker is None

    def test_blank_ticker_gets_reference_suggestion(self, session, guard):
        outcome = guard.create_safely(ImportCandidate(name="Alphabet Inc", ticker=" "))

        assert outcome.success is True
        assert CompanyRepository(session).get_by_id(outcome.company_id).ticker == "GOOGL"


class TestUpdateSafely:
    """Tests for guarded updates."""

    def test_unknown_company(self, guard):
        outcome = guard.update_safely(uuid4(), {"sector": "Energy"})
        assert outcome.success is False
        assert outcome.errors == ["Company not found"]

    def test_ticker_collision(self, guard, make_company):
        make_company("Apple Inc", "AAPL")
        orchard = make_company("Orchard Fruit")

        outcome = guard.update_safely(orchard.id, {"ticker": "AAPL"})

        assert outcome.success is False
        assert outcome.errors == ["Ticker AAPL is already assigned to Apple Inc"]
        assert orchard.ticker is None

    def test_rename_renormalizes(self, session, guard, make_company):
        company = make_company("Obscure Widgets")

        outcome = guard.update_safely(company.id, {"name": "Obscure Gadgets", "colour": "red"})

        assert outcome.success is True
        assert outcome.warnings == ["Ignored unknown fields: colour"]
        assert company.normalized_name == "obscuregadgets"

    def test_unchanged_ticker_skips_validation(self, guard, make_company):
        company = make_company("Alphabet Inc", "GOOG2")
        outcome = guard.update_safely(company.id, {"ticker": "GOOG2", "sector": "Technology"})
        assert outcome.success is True
        assert company.sector == "Technology"

    def test_reactivation_blocked_by_active_holder(self, guard, make_company):
        retired = make_company("Obscure Widgets", "OBWX", active=False)
        make_company("Other Gadgets", "OBWX")

        outcome = guard.update_safely(retired.id, {"active": True})

        assert outcome.success is False
        assert outcome.errors == ["Ticker OBWX is already assigned to Other Gadgets"]
        assert retired.active is False

    def test_blank_ticker_clears_identifier(self, session, guard, make_company):
        company = make_company("Obscure Widgets", "OBWX")

        outcome = guard.update_safely(company.id, {"ticker": "  "})

        assert outcome.success is True
        assert company.ticker is None
        repo = CompanyRepository(session)
        assert repo.count_with_ticker() == 0
        assert repo.list_active(has_ticker=True) == []


class TestQualityReport:
    def test_counts(self, guard, make_company):
        make_company("Apple Inc", "AAPL")
        make_company("Mystery Widgets")
        make_company("MYSTERY WIDGETS")

        report = guard.build_quality_report()

        assert report.total_companies == 3
        assert report.companies_with_ticker == 1
        assert report.ticker_coverage == 33.33
        assert report.potential_duplicates == 1
        assert report.validation_issues == 0

    def test_empty_registry(self, guard):
        report = guard.build_quality_report()
        assert report.total_companies == 0
        assert report.ticker_coverage == 0.0


class TestBackfill:
    """Tests for reference ticker backfill."""

    def test_assigns_known_names(self, guard, make_company):
        alphabet = make_company("Alphabet Inc")
        make_company("Mystery Widgets")

        summary = guard.backfill_tickers()

        assert summary.examined == 2
        assert summary.assigned == 1
        assert summary.skipped == 1
        assert summary.assignments == {"Alphabet Inc": "GOOGL"}
        assert alphabet.ticker == "GOOGL"

    def test_dry_run_writes_nothing(self, guard, make_company):
        alphabet = make_company("Alphabet Inc")

        summary = guard.backfill_tickers(dry_run=True)

        assert summary.assignments == {"Alphabet Inc": "GOOGL"}
        assert summary.assigned == 0
        assert alphabet.ticker is None

    def test_collision_recorded_as_failure(self, guard, make_company):
        make_company("Alphabet Inc")
        make_company("Google LLC", "GOOGL")

        summary = guard.backfill_tickers()

        assert summary.assigned == 0
        assert summary.failures == {"Alphabet Inc": ["Ticker GOOGL is already assigned to Google LLC"]}


class TestMergeCompanies:
    """Tests for folding a duplicate company into a survivor."""

    def test_moves_records_and_drops_duplicates(self, session, guard, make_company, add_evidence, add_financials):
        survivor = make_company("Microsoft Corporation", "MSFT")
        duplicate = make_company("Microsoft Corp")
        add_evidence(survivor, TAG_DEFENSE, "Army headset contract")
        add_evidence(duplicate, TAG_DEFENSE, "army headset CONTRACT")
        add_evidence(duplicate, TAG_BDS, "Cloud services to settlements")
        add_financials(duplicate, total_assets=100.0)

        result = guard.merge_companies(survivor.id, duplicate.id)

        assert result.success is True
        assert result.moved_evidence == 1
        assert result.dropped_evidence == 1
        assert result.moved_financials == 1
        assert result.added_aliases == 1

        repo = CompanyRepository(session)
        assert repo.get_by_id(duplicate.id, include_inactive=True) is None
        assert len(EvidenceRepository(session).list_for_company(survivor.id)) == 2
        assert [(a.alias, a.alias_type) for a in survivor.aliases] == [
            ("Microsoft Corp", AliasType.PREVIOUS_NAME)
        ]

    def test_ticker_handed_to_survivor_without_one(self, session, guard, make_company):
        survivor = make_company("Microsoft Corp")
        duplicate = make_company("Microsoft Corporation", "MSFT")

        result = guard.merge_companies(survivor.id, duplicate.id)

        assert result.success is True
        assert result.errors == []
        assert survivor.ticker == "MSFT"
        assert CompanyRepository(session).find_by_alias("MSFT").id == survivor.id

    def test_merge_into_itself(self, guard, make_company):
        company = make_company("Microsoft Corp")
        result = guard.merge_companies(company.id, company.id)
        assert result.success is False
        assert result.errors == ["Cannot merge a company into itself"]

    def test_unknown_company(self, guard, make_company):
        company = make_company("Microsoft Corp")
        result = guard.merge_companies(company.id, uuid4())
        assert result.errors == ["Company not found"]
