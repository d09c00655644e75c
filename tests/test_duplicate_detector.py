"""
Unit tests for company and evidence duplicate detection.
"""

import pytest

from registry.duplicate_detector import DuplicateDetector, EvidenceKey, is_potential_duplicate
from registry.models import TAG_BDS, TAG_DEFENSE
from registry.repositories import EvidenceRepository


NAMES = [
    "Microsoft Corporation",
    "Microsoft Corp",
    "Acme Holdings Inc",
    "Acme Group",
    "Abc Inc",
    "Abc Corp",
    "Tesla",
    "Pineapple Farms",
    "",
]


class TestIsPotentialDuplicate:
    """Tests for the name heuristic."""

    @pytest.mark.parametrize("name", NAMES)
    def test_reflexive(self, name):
        assert is_potential_duplicate(name, name) is True

    @pytest.mark.parametrize("a", NAMES)
    @pytest.mark.parametrize("b", NAMES)
    def test_symmetric(self, a, b):
        assert is_potential_duplicate(a, b) == is_potential_duplicate(b, a)

    def test_containment(self):
        assert is_potential_duplicate("Microsoft Corporation", "Microsoft Corp") is True
        assert is_potential_duplicate("Tesla Inc", "Tesla") is True

    def test_suffix_stripping(self):
        assert is_potential_duplicate("Acme Holdings Inc", "Acme Group") is True

    def test_short_stripped_names_do_not_match(self):
        assert is_potential_duplicate("Abc Inc", "Abc Corp") is False

    def test_unrelated_names(self):
        assert is_potential_duplicate("Apple Inc", "Pineapple Farms") is False

    def test_punctuation_and_case_ignored(self):
        assert is_potential_duplicate("Coca-Cola Co.", "COCA COLA CO") is True


class TestCompanyDuplicates:
    """Tests for registry-level company duplicate reporting."""

    def test_find_similar_companies(self, session, make_company):
        make_company("Lockheed Martin")
        make_company("Martin Marietta Materials")
        make_company("Apple Inc")

        similar = DuplicateDetector(session).find_similar_companies("Lockheed Martin Corp")
        assert [c.name for c in similar] == ["Lockheed Martin", "Martin Marietta Materials"]

    def test_find_similar_excludes_company(self, session, make_company):
        lockheed = make_company("Lockheed Martin")
        similar = DuplicateDetector(session).find_similar_companies(
            "Lockheed Martin", exclude_company_id=lockheed.id
        )
        assert similar == []

    def test_similar_limit(self, session, make_company):
        for i in range(7):
            make_company(f"Widget Maker {i}")
        assert len(DuplicateDetector(session).find_similar_companies("Widget")) == 5

    def test_candidate_pairs_carry_counts(self, session, make_company, add_evidence):
        first = make_company("Microsoft Corporation", "MSFT")
        make_company("Microsoft Corp")
        make_company("Apple Inc", "AAPL")
        add_evidence(first, TAG_DEFENSE, "Pentagon cloud contract")

        pairs = DuplicateDetector(session).find_duplicate_company_candidates()

        assert len(pairs) == 1
        counts = {pairs[0].first.name: pairs[0].first, pairs[0].second.name: pairs[0].second}
        assert counts["Microsoft Corporation"].evidence_count == 1
        assert counts["Microsoft Corp"].evidence_count == 0
        assert pairs[0].to_dict()["first"]["name"] in counts

    def test_count_duplicate_names(self, session, make_company):
        make_company("Meta Platforms")
        make_company("META PLATFORMS")
        make_company("Apple Inc")
        assert DuplicateDetector(session).count_duplicate_names() == 1

    def test_inactive_companies_not_counted(self, session, make_company):
        make_company("Meta Platforms")
        make_company("Meta Platforms", active=False)
        assert DuplicateDetector(session).count_duplicate_names() == 0


class TestEvidenceDuplicates:
    """Tests for duplicate evidence grouping and purging."""

    @pytest.fixture
    def company(self, make_company, add_evidence):
        company = make_company("Caterpillar", "CAT")
        add_evidence(company, TAG_BDS, "Supplies bulldozers")
        add_evidence(company, TAG_BDS, "  supplies   BULLDOZERS ")
        add_evidence(company, TAG_DEFENSE, "Supplies bulldozers")
        add_evidence(company, TAG_BDS, "Operates in settlements")
        return company

    def test_groups_by_tag_and_normalized_notes(self, session, company):
        groups = DuplicateDetector(session).find_duplicate_evidence(company.id)

        assert len(groups) == 1
        group = groups[0]
        assert group.key == EvidenceKey(TAG_BDS, "supplies bulldozers")
        assert group.keep.notes == "Supplies bulldozers"
        assert [e.notes for e in group.removable] == ["  supplies   BULLDOZERS "]

    def test_purge_is_idempotent(self, session, company):
        detector = DuplicateDetector(session)

        assert detector.purge_duplicate_evidence(company.id) == 1
        assert detector.purge_duplicate_evidence(company.id) == 0
        assert len(EvidenceRepository(session).list_for_company(company.id)) == 3

    def test_purge_keeps_earliest(self, session, company):
        DuplicateDetector(session).purge_duplicate_evidence(company.id)
        notes = [e.notes for e in EvidenceRepository(session).list_for_company(company.id)]
        assert "Supplies bulldozers" in notes
        assert "  supplies   BULLDOZERS " not in notes

    def test_dry_run_deletes_nothing(self, session, company):
        assert DuplicateDetector(session).purge_duplicate_evidence(company.id, dry_run=True) == 1
        assert len(EvidenceRepository(session).list_for_company(company.id)) == 4

    def test_sweep(self, session, company, make_company, add_evidence):
        other = make_company("Lockheed Martin", "LMT")
        add_evidence(other, TAG_DEFENSE, "Arms producer")
        add_evidence(other, TAG_DEFENSE, "arms producer")
        add_evidence(other, TAG_DEFENSE, "ARMS PRODUCER")

        summary = DuplicateDetector(session).sweep_duplicate_evidence()

        assert summary.companies_processed == 2
        assert summary.companies_with_duplicates == 2
        assert summary.deleted == 3
        assert summary.details == {"Caterpillar": 1, "Lockheed Martin": 2}

        assert DuplicateDetector(session).sweep_duplicate_evidence().deleted == 0
