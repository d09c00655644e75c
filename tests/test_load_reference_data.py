"""
Tests for the reference data loader.
"""

from load_reference_data import (
    SAMPLE_COMPANIES,
    load_sample_companies,
    load_sources,
    load_tags,
)
from registry.models import TAG_BDS, TAG_DEFENSE, TAG_SHARIAH, TAG_SURVEILLANCE
from registry.repositories import CompanyRepository, EvidenceRepository


class TestLoader:
    def test_tags_and_sources(self, session):
        tags = load_tags(session)
        sources = load_sources(session)

        assert set(tags) == {TAG_BDS, TAG_DEFENSE, TAG_SURVEILLANCE, TAG_SHARIAH}
        assert sources[TAG_DEFENSE].domain == "sipri.org"

    def test_rerun_is_safe(self, session):
        first = load_tags(session)
        assert load_tags(session)[TAG_BDS].id == first[TAG_BDS].id

    def test_sample_companies(self, session, config):
        tags = load_tags(session)
        sources = load_sources(session)

        created = load_sample_companies(session, config, tags, sources)

        assert len(created) == len(SAMPLE_COMPANIES)
        repo = CompanyRepository(session)
        caterpillar = repo.find_by_ticker("CAT")
        evidence = EvidenceRepository(session).list_for_company(caterpillar.id)
        assert [e.tag.name for e in evidence] == [TAG_BDS]
        assert evidence[0].source.domain == "afsc.org"

        assert load_sample_companies(session, config, tags, sources) == []
        assert repo.count_active() == len(SAMPLE_COMPANIES)
