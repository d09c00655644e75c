"""
Ticker validation for the company registry.

Decides whether a proposed (company name, ticker) pair is acceptable,
suggests corrections from a curated reference table, and audits the
tickers already stored.

Usage:
    table = TickerReferenceTable.from_config(config)
    validator = IdentifierValidator(session, table)
    result = validator.validate_assignment("Alphabet Inc", "GOOG2")
    # result.is_valid is False, result.suggested_ticker == "GOOGL"
"""

import logging
import re
from dataclasses import dataclass, field, asdict
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from config_manager import IdentifierConfig
from registry.models import normalize_name, name_words
from registry.repositories import CompanyRepository

logger = logging.getLogger(__name__)

TICKER_PATTERN = re.compile(r'^[A-Z0-9.\-]+$')

# Confidence attached to each outcome
CONFIDENCE_COLLISION = 0.9
CONFIDENCE_REFERENCE_MISMATCH = 0.8
CONFIDENCE_FORMAT = 0.7
CONFIDENCE_SIMILAR_NAMES = 0.6
CONFIDENCE_VALID = 0.9

SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"


@dataclass
class TickerValidationResult:
    """Outcome of validating one name/ticker pair"""
    is_valid: bool
    confidence: float
    reason: str
    suggested_ticker: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class ValidationIssue:
    """A stored ticker that fails validation"""
    company_id: UUID
    company_name: str
    ticker: str
    issue: str
    severity: str
    suggested_ticker: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "company_id": str(self.company_id),
            "company_name": self.company_name,
            "ticker": self.ticker,
            "issue": self.issue,
            "severity": self.severity,
            "suggested_ticker": self.suggested_ticker,
        }


@dataclass
class ValidationReport:
    """Registry-wide ticker audit"""
    total_companies: int
    companies_with_ticker: int
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def high_severity_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == SEVERITY_HIGH)

    def to_dict(self) -> Dict:
        return {
            "total_companies": self.total_companies,
            "companies_with_ticker": self.companies_with_ticker,
            "issues": [issue.to_dict() for issue in self.issues],
            "high_severity_count": self.high_severity_count,
        }


class TickerReferenceTable:
    """
    Curated company name -> canonical ticker lookup.

    Keys are normalized like company names. A name matches a key when
    either contains the other; an exact match wins over containment.
    Exclusions veto a key when the name also carries an unrelated
    qualifier (a hospitality company is not the "target" retailer).
    """

    def __init__(
        self,
        entries: Mapping[str, str],
        exclusions: Optional[Mapping[str, Iterable[str]]] = None
    ):
        self._entries: List[Tuple[str, str]] = []
        for key, ticker in entries.items():
            normalized = normalize_name(key)
            if normalized:
                self._entries.append((normalized, ticker))

        self._exclusions: Dict[str, List[str]] = {}
        for key, words in (exclusions or {}).items():
            self._exclusions[normalize_name(key)] = [normalize_name(w) for w in words if normalize_name(w)]

    @classmethod
    def from_config(cls, config=None) -> 'TickerReferenceTable':
        """Build from a ConfigManager, or the curated defaults when None."""
        if config is not None and hasattr(config, 'identifiers'):
            return cls(config.identifiers.reference_tickers, config.identifiers.key_exclusions)

        defaults = IdentifierConfig()
        return cls(defaults.reference_tickers, defaults.key_exclusions)

    def __len__(self) -> int:
        return len(self._entries)

    def _vetoed(self, key: str, normalized_name: str) -> bool:
        return any(word in normalized_name for word in self._exclusions.get(key, ()))

    def lookup(self, normalized_name: str) -> Optional[str]:
        """Canonical ticker for an already-normalized name, if any."""
        if not normalized_name:
            return None

        for key, ticker in self._entries:
            if key == normalized_name and not self._vetoed(key, normalized_name):
                return ticker

        for key, ticker in self._entries:
            if self._vetoed(key, normalized_name):
                continue
            if key in normalized_name or normalized_name in key:
                return ticker

        return None


class IdentifierValidator:
    """
    Validates ticker assignments against the registry and the reference table.

    All operations are reads. Storage failures propagate as StorageError.
    """

    def __init__(
        self,
        session: Session,
        reference_table: Optional[TickerReferenceTable] = None,
        config=None
    ):
        """
        Args:
            session: SQLAlchemy database session
            reference_table: Curated name -> ticker table
            config: Optional ConfigManager instance
        """
        self.session = session
        self._company_repo = CompanyRepository(session)
        self._max_length = 10
        self._similar_limit = 5

        if config:
            self._apply_config(config)

        self.reference_table = reference_table or TickerReferenceTable.from_config(config)

    def _apply_config(self, config) -> None:
        """Apply configuration settings."""
        if hasattr(config, 'identifiers'):
            self._max_length = config.identifiers.max_length
            self._similar_limit = config.identifiers.similar_limit

    def check_format(self, ticker: Optional[str]) -> bool:
        """Length 1..max_length, upper-case letters, digits, dots and dashes."""
        if not ticker or len(ticker) > self._max_length:
            return False
        return bool(TICKER_PATTERN.match(ticker))

    def auto_assign(self, name: str) -> Optional[str]:
        """Canonical ticker for a company name, or None."""
        return self.reference_table.lookup(normalize_name(name))

    def validate_assignment(
        self,
        name: str,
        ticker: str,
        exclude_company_id: Optional[UUID] = None
    ) -> TickerValidationResult:
        """
        Validate a proposed ticker for a company name.

        Checks run in order and stop at the first failure: collision with
        another active company, reference table mismatch, format, similar
        company names.

        Args:
            name: Company name
            ticker: Proposed ticker
            exclude_company_id: The company being updated, ignored by the
                collision and similarity checks

        Returns:
            TickerValidationResult
        """
        holder = self._company_repo.find_by_ticker(ticker, exclude_id=exclude_company_id)
        if holder is not None:
            return TickerValidationResult(
                is_valid=False,
                confidence=CONFIDENCE_COLLISION,
                reason=f"Ticker {ticker} is already assigned to {holder.name}"
            )

        expected = self.auto_assign(name)
        if expected and expected != ticker:
            return TickerValidationResult(
                is_valid=False,
                confidence=CONFIDENCE_REFERENCE_MISMATCH,
                reason=f"Expected ticker for {name} is {expected}, not {ticker}",
                suggested_ticker=expected
            )

        if not self.check_format(ticker):
            return TickerValidationResult(
                is_valid=False,
                confidence=CONFIDENCE_FORMAT,
                reason=f"Invalid ticker format: {ticker}"
            )

        similar = self._company_repo.search_by_words(
            name_words(name),
            limit=self._similar_limit,
            exclude_id=exclude_company_id
        )
        if similar:
            names = ", ".join(company.name for company in similar)
            return TickerValidationResult(
                is_valid=False,
                confidence=CONFIDENCE_SIMILAR_NAMES,
                reason=f"Similar companies found: {names}"
            )

        return TickerValidationResult(
            is_valid=True,
            confidence=CONFIDENCE_VALID,
            reason="Ticker validation passed"
        )

    def build_report(self) -> ValidationReport:
        """
        Audit every active company holding a ticker.

        Flags format failures (high) and tickers differing from the
        reference suggestion (medium). Companies without a ticker are
        counted but never flagged.
        """
        total = self._company_repo.count_active()
        companies = self._company_repo.list_active(has_ticker=True)
        issues: List[ValidationIssue] = []

        for company in companies:
            if not self.check_format(company.ticker):
                issues.append(ValidationIssue(
                    company_id=company.id,
                    company_name=company.name,
                    ticker=company.ticker,
                    issue=f"Invalid ticker format: {company.ticker}",
                    severity=SEVERITY_HIGH
                ))

            suggested = self.auto_assign(company.name)
            if suggested and suggested != company.ticker:
                issues.append(ValidationIssue(
                    company_id=company.id,
                    company_name=company.name,
                    ticker=company.ticker,
                    issue=f"Ticker mismatch: expected {suggested}",
                    severity=SEVERITY_MEDIUM,
                    suggested_ticker=suggested
                ))

        logger.info(
            f"Ticker audit: {len(companies)}/{total} companies with tickers, "
            f"{len(issues)} issues"
        )
        return ValidationReport(
            total_companies=total,
            companies_with_ticker=len(companies),
            issues=issues
        )
