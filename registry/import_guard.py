"""
Import Guard for the EthicCheck company registry.

Every new or updated company record passes through here. Validation
problems come back as structured errors and warnings, never as
exceptions; only storage failures (StorageError) propagate. Ticker
uniqueness among active companies is finally enforced by the partial
unique index, so two concurrent imports of the same ticker cannot both
succeed.

Usage:
    with db_provider.session_scope() as session:
        guard = ImportGuard(session, config)
        outcome = guard.create_safely(ImportCandidate(name="Alphabet Inc", ticker="GOOGL"))
        if not outcome.success:
            print(outcome.errors)
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from registry.duplicate_detector import DuplicateDetector, EvidenceKey
from registry.identifier_validator import IdentifierValidator, TickerReferenceTable
from registry.models import AliasType, normalize_notes
from registry.repositories import (
    CompanyRepository,
    EvidenceRepository,
    DuplicateEntityError,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('name', 'ticker', 'country', 'sector', 'industry', 'description', 'active')


def clean_ticker(ticker: Optional[str]) -> Optional[str]:
    """Strip a ticker; blank means no ticker."""
    if ticker is None:
        return None
    return ticker.strip() or None


@dataclass
class ImportCandidate:
    """A company record proposed by an import or collector"""
    name: Optional[str]
    ticker: Optional[str] = None
    country: Optional[str] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    description: Optional[str] = None


@dataclass
class ImportValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suggested_ticker: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ImportOutcome:
    success: bool
    company_id: Optional[UUID] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class UpdateOutcome:
    success: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class DataQualityReport:
    """Registry quality summary consumed by the registry monitor"""
    total_companies: int
    companies_with_ticker: int
    ticker_coverage: float
    potential_duplicates: int
    validation_issues: int
    high_severity_issues: int
    issues: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BackfillSummary:
    examined: int = 0
    assigned: int = 0
    skipped: int = 0
    dry_run: bool = False
    assignments: Dict[str, str] = field(default_factory=dict)
    failures: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class MergeResult:
    success: bool
    survivor_id: Optional[UUID] = None
    moved_evidence: int = 0
    dropped_evidence: int = 0
    added_aliases: int = 0
    moved_financials: int = 0
    errors: List[str] = field(default_factory=list)


class ImportGuard:
    """
    Single write-path gate for company records.

    Composes the identifier validator and the duplicate detector. Writes
    are flushed, not committed; the caller owns the transaction.
    """

    def __init__(
        self,
        session: Session,
        config=None,
        validator: Optional[IdentifierValidator] = None,
        detector: Optional[DuplicateDetector] = None,
        reference_table: Optional[TickerReferenceTable] = None
    ):
        self.session = session
        self.config = config
        self._company_repo = CompanyRepository(session)
        self._evidence_repo = EvidenceRepository(session)
        self.validator = validator or IdentifierValidator(session, reference_table, config)
        self.detector = detector or DuplicateDetector(session, config)

        self._name_min_length = 2
        self._country_max_length = 50

        if config and hasattr(config, 'import_guard'):
            self._name_min_length = config.import_guard.name_min_length
            self._country_max_length = config.import_guard.country_max_length

    def _name_error(self, name: Optional[str]) -> Optional[str]:
        if not name or len(name.strip()) < self._name_min_length:
            return "Company name is too short or missing"
        return None

    def validate_import(
        self,
        candidate: ImportCandidate,
        exclude_company_id: Optional[UUID] = None
    ) -> ImportValidationResult:
        """
        Validate a candidate record. Every rule runs so all issues surface at once.
        """
        errors: List[str] = []
        warnings: List[str] = []
        suggested: Optional[str] = None
        name = (candidate.name or '').strip()
        ticker = clean_ticker(candidate.ticker)

        name_error = self._name_error(candidate.name)
        if name_error:
            errors.append(name_error)

        similar = self.detector.find_similar_companies(name, exclude_company_id=exclude_company_id)
        if similar:
            warnings.append(f"Similar companies found: {', '.join(c.name for c in similar)}")
            with_ticker = [c for c in similar if c.ticker]
            if with_ticker:
                warnings.append(
                    "Consider using existing tickers: "
                    + ", ".join(f"{c.name} ({c.ticker})" for c in with_ticker)
                )

        if ticker:
            result = self.validator.validate_assignment(
                name, ticker, exclude_company_id=exclude_company_id
            )
            if not result.is_valid:
                errors.append(result.reason)
                if result.suggested_ticker:
                    suggested = result.suggested_ticker
                    warnings.append(f"Suggested ticker: {suggested}")
        else:
            auto = self.validator.auto_assign(name) if name else None
            if auto:
                suggested = auto
                warnings.append(f"No ticker provided. Suggested: {auto}")

        if candidate.country and len(candidate.country) > self._country_max_length:
            warnings.append("Country name seems unusually long")

        return ImportValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            suggested_ticker=suggested
        )

    def create_safely(self, candidate: ImportCandidate) -> ImportOutcome:
        """
        Validate and persist a new company.

        Uses the supplied ticker, or the guard's own suggestion when none
        was given and nobody else holds it.
        """
        validation = self.validate_import(candidate)
        if not validation.is_valid:
            logger.info(f"Import rejected for '{candidate.name}': {validation.errors}")
            return ImportOutcome(
                success=False,
                errors=validation.errors,
                warnings=validation.warnings
            )

        warnings = list(validation.warnings)
        supplied = clean_ticker(candidate.ticker)
        ticker = supplied or validation.suggested_ticker

        if not supplied and ticker:
            holder = self._company_repo.find_by_ticker(ticker)
            if holder is not None:
                warnings.append(
                    f"Suggested ticker {ticker} is already assigned to {holder.name}; "
                    f"created without a ticker"
                )
                ticker = None

        try:
            company = self._company_repo.create({
                'name': candidate.name.strip(),
                'ticker': ticker,
                'country': candidate.country,
                'sector': candidate.sector,
                'industry': candidate.industry,
                'description': candidate.description,
            })
        except DuplicateEntityError:
            return ImportOutcome(
                success=False,
                errors=[f"Ticker {ticker} is already assigned to another active company"],
                warnings=warnings
            )

        logger.info(f"Created company {company.name} ({company.ticker or 'no ticker'})")
        return ImportOutcome(success=True, company_id=company.id, warnings=warnings)

    def update_safely(self, company_id: UUID, updates: Dict[str, Any]) -> UpdateOutcome:
        """
        Apply updates to an existing company.

        A changed ticker is validated against the new name/ticker pair
        before anything is written.
        """
        company = self._company_repo.get_by_id(company_id, include_inactive=True)
        if company is None:
            return UpdateOutcome(success=False, errors=["Company not found"])

        warnings: List[str] = []
        unknown = [key for key in updates if key not in UPDATABLE_FIELDS]
        if unknown:
            warnings.append(f"Ignored unknown fields: {', '.join(sorted(unknown))}")
        changes = {key: value for key, value in updates.items() if key in UPDATABLE_FIELDS}

        if 'name' in changes:
            name_error = self._name_error(changes['name'])
            if name_error:
                return UpdateOutcome(success=False, errors=[name_error], warnings=warnings)
            changes['name'] = changes['name'].strip()

        if 'ticker' in changes:
            changes['ticker'] = clean_ticker(changes['ticker'])

        new_ticker = changes.get('ticker')
        if new_ticker and new_ticker != company.ticker:
            result = self.validator.validate_assignment(
                changes.get('name') or company.name,
                new_ticker,
                exclude_company_id=company.id
            )
            if not result.is_valid:
                if result.suggested_ticker:
                    warnings.append(f"Suggested ticker: {result.suggested_ticker}")
                return UpdateOutcome(success=False, errors=[result.reason], warnings=warnings)

        if changes.get('active') is True and not company.active:
            ticker = changes.get('ticker', company.ticker)
            if ticker:
                holder = self._company_repo.find_by_ticker(ticker, exclude_id=company.id)
                if holder is not None:
                    return UpdateOutcome(
                        success=False,
                        errors=[f"Ticker {ticker} is already assigned to {holder.name}"],
                        warnings=warnings
                    )

        try:
            self._company_repo.update(company.id, changes)
        except DuplicateEntityError:
            return UpdateOutcome(
                success=False,
                errors=[f"Ticker {changes.get('ticker')} is already assigned to another active company"],
                warnings=warnings
            )

        return UpdateOutcome(success=True, warnings=warnings)

    def build_quality_report(self) -> DataQualityReport:
        """Compose the ticker audit and duplicate counts into one summary."""
        report = self.validator.build_report()
        duplicates = self.detector.count_duplicate_names()

        coverage = 0.0
        if report.total_companies:
            coverage = round(report.companies_with_ticker / report.total_companies * 100, 2)

        return DataQualityReport(
            total_companies=report.total_companies,
            companies_with_ticker=report.companies_with_ticker,
            ticker_coverage=coverage,
            potential_duplicates=duplicates,
            validation_issues=len(report.issues),
            high_severity_issues=report.high_severity_count,
            issues=[issue.to_dict() for issue in report.issues]
        )

    # ============================================
    # BATCH MAINTENANCE
    # ============================================

    def backfill_tickers(self, dry_run: bool = False) -> BackfillSummary:
        """Assign reference tickers to active companies that have none."""
        summary = BackfillSummary(dry_run=dry_run)

        for company in self._company_repo.list_active(has_ticker=False):
            summary.examined += 1
            suggestion = self.validator.auto_assign(company.name)
            if not suggestion:
                summary.skipped += 1
                continue

            if dry_run:
                summary.assignments[company.name] = suggestion
                continue

            outcome = self.update_safely(company.id, {'ticker': suggestion})
            if outcome.success:
                summary.assigned += 1
                summary.assignments[company.name] = suggestion
            else:
                summary.failures[company.name] = outcome.errors

        logger.info(
            f"Ticker backfill: {summary.examined} examined, {summary.assigned} assigned, "
            f"{summary.skipped} without suggestion, {len(summary.failures)} rejected"
        )
        return summary

    def merge_companies(self, survivor_id: UUID, duplicate_id: UUID) -> MergeResult:
        """
        Fold a duplicate company into the survivor and delete the duplicate.

        Evidence, aliases and financials move over; evidence that would
        duplicate a survivor record is dropped. The duplicate's name and
        ticker are kept as aliases, and its ticker passes to a survivor
        that has none.
        """
        if survivor_id == duplicate_id:
            return MergeResult(success=False, errors=["Cannot merge a company into itself"])

        survivor = self._company_repo.get_by_id(survivor_id, include_inactive=True)
        duplicate = self._company_repo.get_by_id(duplicate_id, include_inactive=True)
        if survivor is None or duplicate is None:
            return MergeResult(success=False, errors=["Company not found"])

        result = MergeResult(success=True, survivor_id=survivor.id)

        survivor_keys = {
            EvidenceKey(ev.tag.name, normalize_notes(ev.notes))
            for ev in self._evidence_repo.list_for_company(survivor.id)
        }
        for evidence in self._evidence_repo.list_for_company(duplicate.id):
            key = EvidenceKey(evidence.tag.name, normalize_notes(evidence.notes))
            if key in survivor_keys:
                self._evidence_repo.delete(evidence.id)
                result.dropped_evidence += 1
            else:
                evidence.company_id = survivor.id
                survivor_keys.add(key)
                result.moved_evidence += 1

        for financials in list(duplicate.financials):
            financials.company_id = survivor.id
            result.moved_financials += 1

        aliases = [(alias.alias, alias.alias_type) for alias in duplicate.aliases]
        if duplicate.name.lower() != survivor.name.lower():
            aliases.append((duplicate.name, AliasType.PREVIOUS_NAME))
        handover_ticker = None
        if duplicate.ticker and duplicate.ticker != survivor.ticker:
            aliases.append((duplicate.ticker, AliasType.PRIOR_TICKER))
            if not survivor.ticker:
                handover_ticker = duplicate.ticker

        before = len(survivor.aliases)
        for value, alias_type in aliases:
            self._company_repo.add_alias(survivor, value, alias_type)
        result.added_aliases = len(survivor.aliases) - before

        self.session.flush()
        self.session.expire(duplicate)
        self.session.expire(survivor, ['evidence', 'financials'])
        self._company_repo.delete(duplicate.id)

        if handover_ticker:
            try:
                self._company_repo.update(survivor.id, {'ticker': handover_ticker})
            except DuplicateEntityError:
                result.errors.append(f"Ticker {handover_ticker} could not be moved to {survivor.name}")

        logger.info(
            f"Merged {duplicate_id} into {survivor.name}: {result.moved_evidence} evidence moved, "
            f"{result.dropped_evidence} dropped, {result.moved_financials} financials moved"
        )
        return result
