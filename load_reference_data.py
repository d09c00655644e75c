#!/usr/bin/env python3
"""
Reference Data Loading Script for EthicCheck

Loads reference data into the registry:
- Compliance tags (BDS, DEFENSE, SURVEILLANCE, SHARIAH)
- Evidence sources (AFSC, SIPRI, EFF Atlas of Surveillance)
- Sample companies with evidence (optional, for development)

Safe to run repeatedly.

Usage:
    python load_reference_data.py [--with-samples] [--create-tables]
"""

import sys
import argparse
import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from config_manager import ConfigManager, ConfigurationError, setup_logging
from registry.connection import DatabaseSettings, init_db, close_db
from registry.import_guard import ImportGuard, ImportCandidate
from registry.models import (
    BdsCategory,
    EvidenceStrength,
    Source,
    Tag,
    TAG_BDS,
    TAG_DEFENSE,
    TAG_SURVEILLANCE,
    TAG_SHARIAH,
)
from registry.repositories import (
    CompanyRepository,
    EvidenceRepository,
    SourceRepository,
    StorageError,
    TagRepository,
)

logger = logging.getLogger(__name__)

TAGS = {
    TAG_BDS: "Involvement in the occupation of Palestinian territory",
    TAG_DEFENSE: "Weapons manufacturing and military contracting",
    TAG_SURVEILLANCE: "Supply of surveillance technology to law enforcement",
    TAG_SHARIAH: "Islamic finance compliance",
}

SOURCES = [
    {
        "key": TAG_BDS,
        "domain": "afsc.org",
        "title": "American Friends Service Committee",
        "url": "https://afsc.org/investigate",
        "publisher": "AFSC",
    },
    {
        "key": TAG_DEFENSE,
        "domain": "sipri.org",
        "title": "SIPRI Arms Industry Database",
        "url": "https://www.sipri.org/databases/armsindustry",
        "publisher": "Stockholm International Peace Research Institute",
    },
    {
        "key": TAG_SURVEILLANCE,
        "domain": "atlasofsurveillance.org",
        "title": "EFF Atlas of Surveillance",
        "url": "https://atlasofsurveillance.org",
        "publisher": "Electronic Frontier Foundation",
    },
]

SAMPLE_COMPANIES = [
    {
        "candidate": ImportCandidate(
            name="Lockheed Martin", ticker="LMT", country="United States",
            sector="Industrials", industry="Aerospace & Defense"
        ),
        "evidence": [
            (TAG_DEFENSE, "Largest arms producer by revenue", EvidenceStrength.HIGH, None),
        ],
    },
    {
        "candidate": ImportCandidate(
            name="Caterpillar", ticker="CAT", country="United States",
            sector="Industrials", industry="Farm & Heavy Construction Machinery"
        ),
        "evidence": [
            (TAG_BDS, "Bulldozers used in home demolitions", EvidenceStrength.HIGH,
             BdsCategory.ISRAELI_CONSTRUCTION_OCCUPIED_LAND),
        ],
    },
    {
        "candidate": ImportCandidate(
            name="Palantir Technologies", ticker="PLTR", country="United States",
            sector="Technology", industry="Software - Infrastructure"
        ),
        "evidence": [
            (TAG_SURVEILLANCE, "Predictive policing software contracts", EvidenceStrength.MEDIUM, None),
        ],
    },
    {
        "candidate": ImportCandidate(
            name="Apple", ticker="AAPL", country="United States",
            sector="Technology", industry="Consumer Electronics"
        ),
        "evidence": [],
    },
]


def load_tags(session) -> Dict[str, Tag]:
    """Load compliance tags."""
    repo = TagRepository(session)
    tags = {}
    for name, description in TAGS.items():
        tag, created = repo.get_or_create(name, description)
        tags[name] = tag
        logger.info(f"{'Created' if created else 'Tag already exists'}: {name}")
    return tags


def load_sources(session) -> Dict[str, Source]:
    """Load evidence sources, keyed by the tag they back."""
    repo = SourceRepository(session)
    sources = {}
    for data in SOURCES:
        source, created = repo.get_or_create(
            domain=data["domain"],
            title=data["title"],
            url=data["url"],
            publisher=data["publisher"]
        )
        sources[data["key"]] = source
        logger.info(f"{'Created' if created else 'Source already exists'}: {data['title']}")
    return sources


def load_sample_companies(session, config, tags: Dict[str, Tag], sources: Dict[str, Source]) -> List[str]:
    """Load sample companies through the import guard."""
    guard = ImportGuard(session, config)
    companies = CompanyRepository(session)
    evidence_repo = EvidenceRepository(session)
    created = []

    for sample in SAMPLE_COMPANIES:
        candidate = sample["candidate"]
        if companies.find_by_ticker(candidate.ticker):
            logger.info(f"Sample company already exists: {candidate.name}")
            continue

        outcome = guard.create_safely(candidate)
        if not outcome.success:
            logger.warning(f"Sample company rejected: {candidate.name}: {outcome.errors}")
            continue

        for tag_name, notes, strength, bds_category in sample["evidence"]:
            evidence_repo.create(
                company_id=outcome.company_id,
                tag=tags[tag_name],
                source=sources[tag_name],
                notes=notes,
                strength=strength,
                bds_category=bds_category
            )
        created.append(candidate.name)
        logger.info(f"Created sample company: {candidate.name}")

    return created


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Load reference data into the EthicCheck registry")
    parser.add_argument("--with-samples", action="store_true", help="Include sample companies for development")
    parser.add_argument("--create-tables", action="store_true", help="Create tables before loading")
    parser.add_argument("--config", "-c", default=None, help="Path to config.yaml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args(argv)

    try:
        config = ConfigManager(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config, verbose=args.verbose)

    logger.info("=" * 50)
    logger.info("EthicCheck Reference Data Loading")
    logger.info("=" * 50)

    try:
        db = init_db(DatabaseSettings.from_config(config), echo=config.database.echo)
        if args.create_tables:
            db.create_tables()

        with db.session_scope() as session:
            logger.info("[1/3] Loading tags...")
            tags = load_tags(session)

            logger.info("[2/3] Loading sources...")
            sources = load_sources(session)

            if args.with_samples:
                logger.info("[3/3] Loading sample companies...")
                created = load_sample_companies(session, config, tags, sources)
                logger.info(f"Sample companies created: {len(created)}")
            else:
                logger.info("[3/3] Skipping sample companies (use --with-samples to include)")

        logger.info("Reference data loading complete!")
        return 0
    except (StorageError, SQLAlchemyError) as e:
        logger.error(f"Error loading reference data: {e}")
        return 1
    finally:
        close_db()


if __name__ == "__main__":
    sys.exit(main())
