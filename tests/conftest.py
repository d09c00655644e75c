"""
Shared fixtures for the EthicCheck test suite.

Uses an in-memory SQLite database with savepoints enabled so nested
transactions and the partial unique ticker index behave as they do on
PostgreSQL.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from registry.connection import create_memory_engine, create_test_provider
from registry.models import (
    Base,
    EvidenceStrength,
    TAG_BDS,
    TAG_DEFENSE,
    TAG_SURVEILLANCE,
    TAG_SHARIAH,
)
from registry.repositories import (
    CompanyRepository,
    EvidenceRepository,
    FinancialsRepository,
    SourceRepository,
    TagRepository,
)

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def db_provider():
    """Database provider over a fresh in-memory SQLite database."""
    provider = create_test_provider(engine=create_memory_engine())
    provider.init()
    provider.create_tables()
    yield provider
    Base.metadata.drop_all(provider.engine)
    provider.close()


@pytest.fixture
def session(db_provider):
    """A session that is rolled back after each test."""
    session = db_provider.session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def config(tmp_path):
    """ConfigManager with defaults only."""
    return ConfigManager(str(tmp_path / "missing.yaml"))


@pytest.fixture
def tags(session):
    """The four reference tags, keyed by name."""
    repo = TagRepository(session)
    return {name: repo.get_or_create(name)[0] for name in (TAG_BDS, TAG_DEFENSE, TAG_SURVEILLANCE, TAG_SHARIAH)}


@pytest.fixture
def source(session):
    source, _ = SourceRepository(session).get_or_create(
        domain="afsc.org",
        title="American Friends Service Committee",
        url="https://afsc.org/investigate",
        publisher="AFSC"
    )
    return source


@pytest.fixture
def make_company(session):
    """Factory creating an active company straight through the repository."""
    repo = CompanyRepository(session)

    def _make(name, ticker=None, **fields):
        return repo.create({"name": name, "ticker": ticker, **fields})

    return _make


@pytest.fixture
def add_evidence(session, tags, source):
    """Factory attaching evidence with strictly increasing creation times."""
    repo = EvidenceRepository(session)
    counter = {"n": 0}

    def _add(company, tag_name, notes=None, bds_category=None, strength=EvidenceStrength.MEDIUM, evidence_source=None):
        counter["n"] += 1
        return repo.create(
            company_id=company.id,
            tag=tags[tag_name],
            source=evidence_source or source,
            notes=notes,
            strength=strength,
            bds_category=bds_category,
            created_at=BASE_TIME + timedelta(minutes=counter["n"])
        )

    return _add


@pytest.fixture
def add_financials(session):
    repo = FinancialsRepository(session)

    def _add(company, period="2024-Q4", **values):
        return repo.create(company.id, {"period": period, **values})

    return _add
