"""
Duplicate detection for companies and evidence.

Surfaces near-duplicate companies (by normalized name) and duplicate
evidence records (same tag and normalized notes) so an operator or a
merge workflow can resolve them. Company duplicates are only reported.
Evidence duplicates can be purged explicitly: the earliest record of a
group is kept and the rest are deleted, so a second purge is a no-op.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from registry.models import Company, Evidence, normalize_name, normalize_notes, name_words
from registry.repositories import CompanyRepository, EvidenceRepository

logger = logging.getLogger(__name__)

# Trailing tokens ignored when comparing company names
CORPORATE_SUFFIXES = frozenset({
    'corp', 'corporation', 'inc', 'incorporated', 'llc', 'ltd', 'limited',
    'co', 'company', 'plc', 'sa', 'ag', 'nv', 'holdings', 'group',
})

# Stripped names must be longer than this to count as a match
MIN_STRIPPED_LENGTH = 3


class EvidenceKey(NamedTuple):
    """Grouping key for duplicate evidence"""
    tag_name: str
    normalized_notes: str


@dataclass
class EvidenceDuplicateGroup:
    """Evidence records sharing a key; everything after the first is removable"""
    key: EvidenceKey
    members: List[Evidence]

    @property
    def keep(self) -> Evidence:
        return self.members[0]

    @property
    def removable(self) -> List[Evidence]:
        return self.members[1:]


@dataclass
class CompanyCandidate:
    """One side of a potential duplicate pair"""
    company_id: UUID
    name: str
    ticker: Optional[str]
    evidence_count: int
    alias_count: int

    def to_dict(self) -> Dict:
        return {
            "company_id": str(self.company_id),
            "name": self.name,
            "ticker": self.ticker,
            "evidence_count": self.evidence_count,
            "alias_count": self.alias_count,
        }


@dataclass
class DuplicateCompanyPair:
    first: CompanyCandidate
    second: CompanyCandidate

    def to_dict(self) -> Dict:
        return {"first": self.first.to_dict(), "second": self.second.to_dict()}


@dataclass
class EvidenceSweepSummary:
    """Result of a registry-wide duplicate evidence purge"""
    companies_processed: int = 0
    companies_with_duplicates: int = 0
    deleted: int = 0
    dry_run: bool = False
    details: Dict[str, int] = field(default_factory=dict)


def _stripped_name(name: str) -> str:
    tokens = re.findall(r'[a-z0-9]+', (name or '').lower())
    while tokens and tokens[-1] in CORPORATE_SUFFIXES:
        tokens.pop()
    return ''.join(tokens)


def is_potential_duplicate(name_a: str, name_b: str) -> bool:
    """
    Conservative, explainable duplicate heuristic. Reflexive and symmetric.

    True if the normalized names are equal, if one contains the other,
    or if both are equal once trailing corporate suffixes are removed
    and the remainder is longer than three characters.
    """
    clean_a = normalize_name(name_a)
    clean_b = normalize_name(name_b)

    if clean_a == clean_b:
        return True

    if clean_a and clean_b and (clean_a in clean_b or clean_b in clean_a):
        return True

    stripped_a = _stripped_name(name_a)
    stripped_b = _stripped_name(name_b)
    return stripped_a == stripped_b and len(stripped_a) > MIN_STRIPPED_LENGTH


class DuplicateDetector:
    """Finds duplicate companies and evidence through the repositories."""

    def __init__(self, session: Session, config=None):
        self.session = session
        self._company_repo = CompanyRepository(session)
        self._evidence_repo = EvidenceRepository(session)
        self._similar_limit = 5

        if config and hasattr(config, 'identifiers'):
            self._similar_limit = config.identifiers.similar_limit

    # ============================================
    # COMPANIES
    # ============================================

    def find_similar_companies(
        self,
        name: str,
        exclude_company_id: Optional[UUID] = None
    ) -> List[Company]:
        """Active companies sharing a word longer than two letters with the name."""
        return self._company_repo.search_by_words(
            name_words(name),
            limit=self._similar_limit,
            exclude_id=exclude_company_id
        )

    def find_duplicate_company_candidates(self) -> List[DuplicateCompanyPair]:
        """
        Pairs of active companies that look like duplicates, with the
        evidence and alias counts an operator needs to pick a survivor.
        """
        companies = self._company_repo.list_active()
        pairs: List[DuplicateCompanyPair] = []

        for i, first in enumerate(companies):
            for second in companies[i + 1:]:
                if is_potential_duplicate(first.name, second.name):
                    pairs.append(DuplicateCompanyPair(
                        first=self._candidate(first),
                        second=self._candidate(second)
                    ))

        logger.info(f"Found {len(pairs)} potential duplicate company pairs")
        return pairs

    def _candidate(self, company: Company) -> CompanyCandidate:
        return CompanyCandidate(
            company_id=company.id,
            name=company.name,
            ticker=company.ticker,
            evidence_count=len(self._evidence_repo.list_for_company(company.id)),
            alias_count=len(company.aliases)
        )

    def count_duplicate_names(self) -> int:
        """Normalized names held by more than one active company."""
        return len(self._company_repo.duplicate_name_groups())

    def count_duplicate_ticker_assignments(self) -> int:
        """Tickers held by more than one active company."""
        return len(self._company_repo.duplicate_ticker_groups())

    def duplicate_tickers(self) -> List[str]:
        return [ticker for ticker, _ in self._company_repo.duplicate_ticker_groups()]

    # ============================================
    # EVIDENCE
    # ============================================

    def find_duplicate_evidence(self, company_id: UUID) -> List[EvidenceDuplicateGroup]:
        """
        Group a company's evidence by (tag, normalized notes).

        Returns groups with more than one member, members in insertion order.
        """
        groups: Dict[EvidenceKey, List[Evidence]] = {}
        for evidence in self._evidence_repo.list_for_company(company_id):
            key = EvidenceKey(evidence.tag.name, normalize_notes(evidence.notes))
            groups.setdefault(key, []).append(evidence)

        return [
            EvidenceDuplicateGroup(key=key, members=members)
            for key, members in groups.items()
            if len(members) > 1
        ]

    def purge_duplicate_evidence(self, company_id: UUID, dry_run: bool = False) -> int:
        """
        Delete every removable member of each duplicate group.

        Returns:
            Number of records deleted (or that would be, on a dry run)
        """
        removable = [
            evidence
            for group in self.find_duplicate_evidence(company_id)
            for evidence in group.removable
        ]

        if dry_run:
            return len(removable)

        for evidence in removable:
            self._evidence_repo.delete(evidence.id)

        if removable:
            logger.info(f"Deleted {len(removable)} duplicate evidence records for company {company_id}")
        return len(removable)

    def sweep_duplicate_evidence(self, dry_run: bool = False) -> EvidenceSweepSummary:
        """Purge duplicate evidence across all active companies."""
        summary = EvidenceSweepSummary(dry_run=dry_run)

        for company in self._company_repo.list_active():
            summary.companies_processed += 1
            deleted = self.purge_duplicate_evidence(company.id, dry_run=dry_run)
            if deleted:
                summary.companies_with_duplicates += 1
                summary.deleted += deleted
                summary.details[company.name] = deleted

        logger.info(
            f"Evidence sweep: {summary.companies_processed} companies, "
            f"{summary.companies_with_duplicates} with duplicates, "
            f"{summary.deleted} records {'removable' if dry_run else 'deleted'}"
        )
        return summary
