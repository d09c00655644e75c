"""
Tests for the compliance screening service and its pure screens.
"""

from types import SimpleNamespace

import pytest

from api.models import ScreenRequest, ScreenResponse
from registry.models import (
    BdsCategory,
    CategoryStatus,
    ConfidenceLevel,
    Financials,
    FinalVerdict,
    TAG_BDS,
    TAG_DEFENSE,
    TAG_SHARIAH,
    TAG_SURVEILLANCE,
)
from registry.repositories import ScreenResultRepository, SourceRepository
from registry.screening_service import (
    ScreeningFilters,
    ScreeningRequestError,
    ScreeningService,
    aggregate_verdict,
    confidence_for,
    keyword_screen,
    new_audit_id,
    ratio_screen,
)

HEALTHY_BALANCE_SHEET = dict(
    total_assets=100.0,
    debt=20.0,
    cash_securities=10.0,
    short_term_investments=5.0,
    receivables=10.0,
    market_cap=100.0,
)


@pytest.fixture
def service(session, config):
    return ScreeningService(session, config)


@pytest.fixture
def apple(make_company, add_financials):
    company = make_company("Apple Inc", "AAPL", sector="Technology", industry="Consumer Electronics")
    add_financials(company, **HEALTHY_BALANCE_SHEET)
    return company


@pytest.fixture
def lockheed(make_company, add_evidence):
    company = make_company("Lockheed Martin", "LMT", sector="Industrials")
    add_evidence(company, TAG_DEFENSE, "F-35 prime contractor")
    return company


class TestKeywordScreen:
    """Tests for the Shariah business activity keyword screen."""

    def test_one_hit_per_category(self):
        hits = keyword_screen("Brewer of beer and wine; casino resorts")
        assert [(h.category, h.keyword) for h in hits] == [("alcohol", "beer"), ("gambling", "casino")]

    def test_clean_text(self):
        assert keyword_screen("Technology Consumer Electronics") == []
        assert keyword_screen(None) == []

    def test_non_alcoholic_suppresses_alcohol(self):
        hits = keyword_screen("Consumer Defensive Beverages - Non-Alcoholic")
        assert len(hits) == 1
        assert hits[0].category == "alcohol"
        assert hits[0].suppressed_by == "non_alcoholic"

    def test_health_insurance_suppressed(self):
        hits = keyword_screen("Healthcare Health Insurance Plans")
        assert hits[0].suppressed_by == "health_insurance"

    def test_plain_insurance_not_suppressed(self):
        hits = keyword_screen("Financial Insurance - Life")
        assert {h.category: h.suppressed_by for h in hits}["insurance"] is None

    def test_scoped_exclusion_only_covers_its_category(self):
        hits = keyword_screen("Beverages - Non-Alcoholic with casino partnerships")
        by_category = {h.category: h.suppressed_by for h in hits}
        assert by_category == {"alcohol": "non_alcoholic", "gambling": None}

    def test_unscoped_exclusion_covers_everything(self):
        hits = keyword_screen("Beverages - Non-Alcoholic with casino partnerships", scoped_exclusions=False)
        assert all(h.suppressed_by == "non_alcoholic" for h in hits)

    def test_cybersecurity_suppresses_defense(self):
        hits = keyword_screen("Cybersecurity software for defense agencies")
        assert hits[0].category == "defense"
        assert hits[0].suppressed_by == "defense_technology"


class TestRatioScreen:
    """Tests for the three Shariah balance sheet ratios."""

    def test_healthy_balance_sheet(self):
        checks = ratio_screen(Financials(**HEALTHY_BALANCE_SHEET), 0.40, 0.50, 0.49)
        assert [c.value for c in checks] == [0.2, 0.15, 0.1]
        assert all(c.passed for c in checks)

    def test_ratio_at_limit_passes(self):
        checks = ratio_screen(Financials(total_assets=100.0, debt=40.0), 0.40, 0.50, 0.49)
        assert checks[0].passed is True

    def test_debt_over_limit(self):
        checks = ratio_screen(Financials(total_assets=100.0, debt=50.0), 0.40, 0.50, 0.49)
        assert checks[0].passed is False
        assert checks[0].describe() == "Shariah: debt ratio 50.0% exceeds 40.0% limit"

    def test_no_financials_is_missing_data(self):
        checks = ratio_screen(None, 0.40, 0.50, 0.49)
        assert all(c.missing_data for c in checks)
        assert checks[1].describe() == "Shariah: cash ratio missing data"

    def test_zero_denominator_is_missing_data(self):
        checks = ratio_screen(Financials(total_assets=0.0, debt=10.0, market_cap=None, receivables=5.0),
                              0.40, 0.50, 0.49)
        assert checks[0].missing_data is True
        assert checks[2].missing_data is True

    def test_cash_ratio_with_only_short_term_investments(self):
        checks = ratio_screen(Financials(total_assets=200.0, short_term_investments=50.0), 0.40, 0.50, 0.49)
        assert checks[1].value == 0.25

    def test_unknown_debt_is_missing_not_zero(self):
        checks = ratio_screen(Financials(total_assets=100.0), 0.40, 0.50, 0.49)
        assert checks[0].missing_data is True
        assert checks[0].to_dict()["passed"] is False


class TestAggregation:
    def test_excluded_beats_review(self):
        verdict = aggregate_verdict([CategoryStatus.PASS, CategoryStatus.REVIEW, CategoryStatus.EXCLUDED])
        assert verdict == FinalVerdict.EXCLUDED

    def test_review_beats_pass(self):
        assert aggregate_verdict([CategoryStatus.PASS, CategoryStatus.REVIEW]) == FinalVerdict.REVIEW

    def test_nothing_enabled_passes(self):
        assert aggregate_verdict([]) == FinalVerdict.PASS

    @pytest.mark.parametrize("count,expected", [
        (0, ConfidenceLevel.LOW),
        (1, ConfidenceLevel.MEDIUM),
        (2, ConfidenceLevel.MEDIUM),
        (3, ConfidenceLevel.HIGH),
        (12, ConfidenceLevel.HIGH),
    ])
    def test_confidence_levels(self, count, expected):
        assert confidence_for(count) == expected

    def test_audit_id_format(self):
        audit_id = new_audit_id()
        assert audit_id.startswith("aud_")
        assert len(audit_id) == 36
        assert audit_id != new_audit_id()


class TestScreenSymbols:
    """Tests for database-backed screening."""

    def test_clean_company_passes_with_low_confidence(self, service, apple):
        response = service.screen_symbols(["AAPL"], ScreeningFilters(defense=True, shariah=True))

        row = response.rows[0]
        assert row.company == "Apple Inc"
        assert row.final_verdict == FinalVerdict.PASS
        assert row.reasons == ["No exclusion criteria met"]
        assert row.confidence == ConfidenceLevel.LOW
        assert row.statuses == {"bds": None, "defense": "pass", "surveillance": None, "shariah": "pass"}
        assert response.warnings == []

    def test_clean_company_passes_every_category(self, service, apple):
        filters = ScreeningFilters(bds=True, defense=True, surveillance=True, shariah=True)

        row = service.screen_symbols(["AAPL"], filters).rows[0]

        assert row.final_verdict == FinalVerdict.PASS
        assert row.confidence == ConfidenceLevel.LOW
        assert row.statuses == {
            "bds": {"overall": "pass", "categories": []},
            "defense": "pass",
            "surveillance": "pass",
            "shariah": "pass",
        }

    def test_defense_evidence_excludes(self, service, lockheed):
        row = service.screen_symbols(["LMT"], ScreeningFilters(defense=True)).rows[0]

        assert row.final_verdict == FinalVerdict.EXCLUDED
        assert row.statuses["defense"] == "excluded"
        assert row.reasons == ["Defense: F-35 prime contractor"]
        assert row.confidence == ConfidenceLevel.MEDIUM
        assert row.sources == [{"label": "American Friends Service Committee", "url": "https://afsc.org/investigate"}]

    def test_disabled_category_is_ignored(self, service, lockheed):
        row = service.screen_symbols(["LMT"], ScreeningFilters(surveillance=True)).rows[0]
        assert row.final_verdict == FinalVerdict.PASS
        assert row.statuses["defense"] is None
        assert row.statuses["surveillance"] == "pass"

    def test_evidence_without_notes_cites_source(self, service, make_company, add_evidence):
        company = make_company("Palantir Technologies", "PLTR")
        add_evidence(company, TAG_SURVEILLANCE)

        row = service.screen_symbols(["PLTR"], ScreeningFilters(surveillance=True)).rows[0]

        assert row.reasons == ["Surveillance: listed by American Friends Service Committee"]
        assert row.confidence == ConfidenceLevel.LOW

    def test_three_notes_give_high_confidence(self, service, lockheed, add_evidence):
        add_evidence(lockheed, TAG_DEFENSE, "Missile systems")
        add_evidence(lockheed, TAG_DEFENSE, "Arms exports")

        row = service.screen_symbols(["LMT"], ScreeningFilters(defense=True)).rows[0]

        assert row.confidence == ConfidenceLevel.HIGH
        assert len(row.sources) == 1

    def test_unknown_symbol_needs_review(self, service):
        response = service.screen_symbols(["zzzz"], ScreeningFilters(defense=True, shariah=True))

        row = response.rows[0]
        assert row.symbol == "ZZZZ"
        assert row.company is None
        assert row.final_verdict == FinalVerdict.REVIEW
        assert row.confidence == ConfidenceLevel.LOW
        assert row.reasons == ["Company not found in registry: ZZZZ"]
        assert row.statuses == {"bds": None, "defense": "review", "surveillance": None, "shariah": "review"}
        assert response.warnings == ["1 symbol(s) not found in registry: ZZZZ"]

    def test_unknown_symbol_verdict_configurable(self, session, config):
        config.screening.unknown_symbol_verdict = "PASS"
        row = ScreeningService(session, config).screen_symbols(["ZZZZ"], ScreeningFilters(defense=True)).rows[0]
        assert row.final_verdict == FinalVerdict.PASS
        assert row.statuses["defense"] == "pass"

    def test_symbols_deduplicated_and_normalized(self, service, apple):
        response = service.screen_symbols(["aapl", " AAPL ", "AAPL", ""], ScreeningFilters(defense=True))
        assert [row.symbol for row in response.rows] == ["AAPL"]

    def test_resolves_by_name_prefix(self, service, apple):
        row = service.screen_symbols(["apple"], ScreeningFilters(defense=True)).rows[0]
        assert row.company == "Apple Inc"

    def test_unknown_ticker_is_not_matched_by_name_prefix(self, service, make_company, add_evidence):
        valero = make_company("Valero Energy", "VLO")
        add_evidence(valero, TAG_DEFENSE, "Fuel supply contracts")

        response = service.screen_symbols(["V"], ScreeningFilters(defense=True))

        row = response.rows[0]
        assert row.company is None
        assert row.final_verdict == FinalVerdict.REVIEW
        assert row.confidence == ConfidenceLevel.LOW
        assert response.warnings == ["1 symbol(s) not found in registry: V"]

    def test_missing_filters_rejected(self, service):
        with pytest.raises(ScreeningRequestError):
            service.screen_symbols(["AAPL"], None)
        with pytest.raises(ScreeningRequestError):
            service.screen(SimpleNamespace(symbols=["AAPL"], filters=None))

    def test_browse_mode_lists_flagged_companies(self, service, apple, lockheed):
        response = service.screen_symbols([], ScreeningFilters(defense=True))
        assert [row.symbol for row in response.rows] == ["LMT"]

    def test_browse_mode_without_categories_is_empty(self, service, lockheed):
        assert service.screen_symbols([], ScreeningFilters()).rows == []

    def test_browse_mode_ignores_shariah_evidence(self, service, make_company, add_evidence):
        company = make_company("Harbor Lending", "HBLX")
        add_evidence(company, TAG_SHARIAH, "Interest-based lending")

        assert service.screen_symbols([], ScreeningFilters(shariah=True)).rows == []


class TestBdsScreening:
    """Tests for BDS sub-category reporting."""

    @pytest.fixture
    def caterpillar(self, make_company, add_evidence):
        company = make_company("Caterpillar", "CAT")
        add_evidence(company, TAG_BDS, "D9 bulldozers", bds_category=BdsCategory.ISRAELI_CONSTRUCTION_OCCUPIED_LAND)
        add_evidence(company, TAG_BDS)
        return company

    def test_sub_categories(self, service, caterpillar):
        row = service.screen_symbols(["CAT"], ScreeningFilters(bds=True)).rows[0]

        assert row.final_verdict == FinalVerdict.EXCLUDED
        assert row.statuses["bds"] == {
            "overall": "excluded",
            "categories": [
                {"category": "israeli_construction_occupied_land", "status": "excluded",
                 "evidence": ["D9 bulldozers"]},
                {"category": "other_bds_activities", "status": "excluded", "evidence": []},
            ],
        }
        assert row.reasons == [
            "BDS - israeli construction occupied land: D9 bulldozers",
            "BDS - other bds activities: 1 evidence record(s)",
        ]
        assert row.confidence == ConfidenceLevel.MEDIUM

    def test_category_filter_limits_evidence(self, service, caterpillar):
        filters = ScreeningFilters(bds=True, bds_categories=[BdsCategory.SETTLEMENT_ENTERPRISE])
        row = service.screen_symbols(["CAT"], filters).rows[0]
        assert row.statuses["bds"] == {"overall": "pass", "categories": []}
        assert row.final_verdict == FinalVerdict.PASS

    def test_uncategorized_evidence_counts_as_other(self, service, caterpillar):
        filters = ScreeningFilters(bds=True, bds_categories=[BdsCategory.OTHER_BDS_ACTIVITIES])
        row = service.screen_symbols(["CAT"], filters).rows[0]
        assert [c["category"] for c in row.statuses["bds"]["categories"]] == ["other_bds_activities"]


class TestShariahScreening:
    """Tests for the Shariah category against stored financials."""

    def test_high_debt_excludes(self, service, make_company, add_financials):
        company = make_company("Leveraged Widgets", "LVWX", sector="Industrials")
        add_financials(company, **{**HEALTHY_BALANCE_SHEET, "debt": 50.0})

        row = service.screen_symbols(["LVWX"], ScreeningFilters(shariah=True)).rows[0]

        assert row.statuses["shariah"] == "excluded"
        assert row.reasons == ["Shariah: debt ratio 50.0% exceeds 40.0% limit"]
        assert row.confidence == ConfidenceLevel.MEDIUM

    def test_missing_financials_excludes(self, service, make_company):
        make_company("Unlisted Widgets", "ULWX", sector="Industrials")

        row = service.screen_symbols(["ULWX"], ScreeningFilters(shariah=True)).rows[0]

        assert row.final_verdict == FinalVerdict.EXCLUDED
        assert len(row.reasons) == 3
        assert all(reason.endswith("missing data") for reason in row.reasons)
        assert row.confidence == ConfidenceLevel.LOW

    def test_forbidden_activity(self, service, make_company, add_financials):
        company = make_company("Riverside Resorts", "RVRX", sector="Consumer Cyclical",
                               industry="Resorts & Casinos")
        add_financials(company, **HEALTHY_BALANCE_SHEET)

        row = service.screen_symbols(["RVRX"], ScreeningFilters(shariah=True)).rows[0]

        assert row.final_verdict == FinalVerdict.EXCLUDED
        assert row.reasons == ["Shariah: forbidden business activity (gambling: 'casino')"]

    def test_soft_drinks_pass(self, service, make_company, add_financials):
        company = make_company("Fizz Beverages", "FIZZ", sector="Consumer Defensive",
                               industry="Beverages - Non-Alcoholic")
        add_financials(company, **HEALTHY_BALANCE_SHEET)

        row = service.screen_symbols(["FIZZ"], ScreeningFilters(shariah=True)).rows[0]
        assert row.final_verdict == FinalVerdict.PASS

    def test_latest_period_used(self, service, make_company, add_financials):
        company = make_company("Leveraged Widgets", "LVWX")
        add_financials(company, period="2023-Q4", **{**HEALTHY_BALANCE_SHEET, "debt": 90.0})
        add_financials(company, period="2024-Q4", **HEALTHY_BALANCE_SHEET)

        row = service.screen_symbols(["LVWX"], ScreeningFilters(shariah=True)).rows[0]
        assert row.statuses["shariah"] == "pass"

    def test_financials_source_cited(self, session, service, make_company, add_financials):
        fmp, _ = SourceRepository(session).get_or_create(
            domain="financialmodelingprep.com",
            title="Financial Modeling Prep",
            url="https://financialmodelingprep.com/financial-statements/LVWX"
        )
        company = make_company("Leveraged Widgets", "LVWX")
        add_financials(company, source_id=fmp.id, **HEALTHY_BALANCE_SHEET)

        row = service.screen_symbols(["LVWX"], ScreeningFilters(shariah=True)).rows[0]
        assert row.sources == [{"label": "Financial Modeling Prep", "url": fmp.url}]


class TestScreenRequest:
    """Tests for the request entry point and the response contract."""

    def test_screen_request(self, service, lockheed, apple):
        request = ScreenRequest(symbols=["LMT", "AAPL", "NOPE"], filters={"defense": True, "bds": {"enabled": True}})

        response = service.screen(request)

        verdicts = {row.symbol: row.final_verdict for row in response.rows}
        assert verdicts == {"LMT": FinalVerdict.EXCLUDED, "AAPL": FinalVerdict.PASS, "NOPE": FinalVerdict.REVIEW}

    def test_response_matches_schema(self, service, lockheed, apple):
        response = service.screen_symbols(
            ["LMT", "AAPL", "NOPE"],
            ScreeningFilters(bds=True, defense=True, surveillance=True, shariah=True)
        )

        parsed = ScreenResponse.model_validate(response.to_dict())

        assert len(parsed.rows) == 3
        assert parsed.rows[0].statuses.defense == CategoryStatus.EXCLUDED

    def test_audits_persisted_when_enabled(self, session, config, lockheed):
        config.screening.persist_audits = True
        row = ScreeningService(session, config).screen_symbols(["LMT"], ScreeningFilters(defense=True)).rows[0]

        stored = ScreenResultRepository(session).get_by_audit_id(row.audit_id)
        assert stored is not None
        assert stored.company_id == lockheed.id
        assert stored.final_verdict == FinalVerdict.EXCLUDED
        assert stored.reasons == ["Defense: F-35 prime contractor"]

    def test_audits_not_persisted_by_default(self, session, service, lockheed):
        row = service.screen_symbols(["LMT"], ScreeningFilters(defense=True)).rows[0]
        assert ScreenResultRepository(session).get_by_audit_id(row.audit_id) is None
