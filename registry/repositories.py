"""
Repository Pattern for EthicCheck Registry Operations

Provides the data-access interface consumed by the identifier validator,
duplicate detector, import guard, screening engine and registry monitor.
Every query is timed, and driver-level failures surface as StorageError
so callers can tell an unavailable database from a validation failure.
"""

import logging
from functools import wraps
from typing import List, Optional, Dict, Any, Tuple, Iterable, Callable
from uuid import UUID
from datetime import datetime

from sqlalchemy import select, func, and_, or_, exists
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, OperationalError, InterfaceError

from registry.models import (
    Company,
    CompanyAlias,
    Tag,
    Source,
    Evidence,
    Financials,
    ScreenResult,
    AliasType,
    BdsCategory,
    EvidenceStrength,
    normalize_name,
)
from registry.monitoring import query_timer

logger = logging.getLogger(__name__)

# Shorter symbols look like tickers and never fall back to a name prefix
MIN_NAME_PREFIX_LENGTH = 4


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class EntityNotFoundError(RepositoryError):
    """Raised when an entity is not found."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when a write violates a uniqueness constraint."""
    pass


class StorageError(RepositoryError):
    """Raised when the database is unreachable or fails at the driver level."""
    pass


def storage_operation(operation: str) -> Callable:
    """
    Time a repository method and translate driver failures.

    Args:
        operation: Metric label for the query
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                with query_timer(operation):
                    return func(*args, **kwargs)
            except (OperationalError, InterfaceError) as e:
                logger.error(f"Storage failure in {operation}: {e}")
                raise StorageError(f"{operation} failed: {e}") from e
        return wrapper
    return decorator


# ============================================
# COMPANY REPOSITORY
# ============================================

class CompanyRepository:
    """Repository for company and alias operations."""

    def __init__(self, session: Session):
        self.session = session

    @storage_operation("company.create")
    def create(self, company_data: Dict[str, Any]) -> Company:
        """
        Create a new company.

        Runs inside a savepoint so a uniqueness violation leaves the
        caller's transaction usable.

        Args:
            company_data: Dictionary containing company fields

        Returns:
            Created Company instance

        Raises:
            DuplicateEntityError: If the ticker is held by another active company
        """
        data = dict(company_data)
        data['normalized_name'] = normalize_name(data.get('name', ''))
        company = Company(**data)

        try:
            with self.session.begin_nested():
                self.session.add(company)
        except IntegrityError as e:
            raise DuplicateEntityError(f"Company already exists: {e.orig}") from e

        logger.debug(f"Created company: {company.id} ({company.name})")
        return company

    @storage_operation("company.get_by_id")
    def get_by_id(self, company_id: UUID, include_inactive: bool = False) -> Optional[Company]:
        """
        Get company by ID.

        Args:
            company_id: UUID of the company
            include_inactive: If True, include soft-deleted companies

        Returns:
            Company or None
        """
        query = select(Company).where(Company.id == company_id)
        if not include_inactive:
            query = query.where(Company.active.is_(True))
        return self.session.execute(query).scalar_one_or_none()

    @storage_operation("company.find_by_ticker")
    def find_by_ticker(self, ticker: str, exclude_id: Optional[UUID] = None) -> Optional[Company]:
        """Get the active company holding a ticker."""
        query = select(Company).where(
            and_(Company.ticker == ticker, Company.active.is_(True))
        )
        if exclude_id is not None:
            query = query.where(Company.id != exclude_id)
        return self.session.execute(query.limit(1)).scalar_one_or_none()

    @storage_operation("company.find_by_alias")
    def find_by_alias(
        self,
        value: str,
        alias_types: Iterable[AliasType] = (AliasType.TICKER, AliasType.PRIOR_TICKER)
    ) -> Optional[Company]:
        """Get the active company owning an alias of the given types."""
        query = select(Company).join(CompanyAlias).where(
            and_(
                func.upper(CompanyAlias.alias) == value.upper(),
                CompanyAlias.alias_type.in_(list(alias_types)),
                Company.active.is_(True)
            )
        ).order_by(Company.name).limit(1)
        return self.session.execute(query).scalars().first()

    @storage_operation("company.find_by_name")
    def find_by_name(self, name: str) -> Optional[Company]:
        """Case-insensitive exact name lookup among active companies."""
        query = select(Company).where(
            and_(func.lower(Company.name) == name.lower(), Company.active.is_(True))
        ).order_by(Company.created_at).limit(1)
        return self.session.execute(query).scalars().first()

    @storage_operation("company.find_by_name_prefix")
    def find_by_name_prefix(self, prefix: str) -> Optional[Company]:
        """First active company whose name starts with the prefix."""
        query = select(Company).where(
            and_(
                Company.name.istartswith(prefix, autoescape=True),
                Company.active.is_(True)
            )
        ).order_by(Company.name).limit(1)
        return self.session.execute(query).scalars().first()

    def resolve_symbol(self, symbol: str) -> Optional[Company]:
        """
        Resolve a screening symbol to an active company.

        Tries, in order: ticker, ticker alias, exact name, name prefix.
        The prefix match only applies to symbols of MIN_NAME_PREFIX_LENGTH
        characters or more.
        """
        symbol = symbol.strip()
        if not symbol:
            return None

        company = (
            self.find_by_ticker(symbol.upper())
            or self.find_by_alias(symbol)
            or self.find_by_name(symbol)
        )
        if company is None and len(symbol) >= MIN_NAME_PREFIX_LENGTH:
            company = self.find_by_name_prefix(symbol)
        return company

    @storage_operation("company.list_active")
    def list_active(self, has_ticker: Optional[bool] = None) -> List[Company]:
        """
        List active companies ordered by name.

        Args:
            has_ticker: True for companies with a ticker, False for those
                without, None for all
        """
        query = select(Company).where(Company.active.is_(True))
        if has_ticker is True:
            query = query.where(Company.ticker.is_not(None))
        elif has_ticker is False:
            query = query.where(Company.ticker.is_(None))
        return list(self.session.execute(query.order_by(Company.name)).scalars().all())

    @storage_operation("company.search_by_words")
    def search_by_words(
        self,
        words: List[str],
        limit: int = 5,
        exclude_id: Optional[UUID] = None
    ) -> List[Company]:
        """
        Active companies whose name contains any of the words (case-insensitive).
        """
        if not words:
            return []

        query = select(Company).where(
            and_(
                Company.active.is_(True),
                or_(*[Company.name.icontains(word, autoescape=True) for word in words])
            )
        )
        if exclude_id is not None:
            query = query.where(Company.id != exclude_id)

        query = query.order_by(Company.name).limit(limit)
        return list(self.session.execute(query).scalars().all())

    @storage_operation("company.list_flagged")
    def list_flagged(self, tag_names: List[str]) -> List[Company]:
        """Active companies with at least one evidence record under the tags."""
        if not tag_names:
            return []

        has_evidence = exists().where(
            and_(
                Evidence.company_id == Company.id,
                Evidence.tag_id == Tag.id,
                Tag.name.in_(tag_names)
            )
        )
        query = select(Company).where(
            and_(Company.active.is_(True), has_evidence)
        ).order_by(Company.name)
        return list(self.session.execute(query).scalars().all())

    @storage_operation("company.update")
    def update(self, company_id: UUID, updates: Dict[str, Any]) -> Company:
        """
        Update a company.

        Args:
            company_id: UUID of company to update
            updates: Dictionary of fields to update

        Returns:
            Updated company

        Raises:
            EntityNotFoundError: If company not found
            DuplicateEntityError: If the update collides with another active ticker
        """
        company = self.get_by_id(company_id, include_inactive=True)
        if not company:
            raise EntityNotFoundError(f"Company not found: {company_id}")

        if 'name' in updates:
            updates = {**updates, 'normalized_name': normalize_name(updates['name'])}

        try:
            with self.session.begin_nested():
                for key, value in updates.items():
                    if hasattr(company, key):
                        setattr(company, key, value)
        except IntegrityError as e:
            raise DuplicateEntityError(f"Company update rejected: {e.orig}") from e

        return company

    @storage_operation("company.soft_delete")
    def soft_delete(self, company_id: UUID) -> bool:
        """
        Deactivate a company.

        Returns:
            True if deactivated, False if not found
        """
        company = self.get_by_id(company_id)
        if not company:
            return False

        company.active = False
        self.session.flush()
        return True

    @storage_operation("company.delete")
    def delete(self, company_id: UUID) -> None:
        """
        Physically remove a company with its aliases, evidence and financials.

        Only merges use this; everything else deactivates.
        """
        company = self.get_by_id(company_id, include_inactive=True)
        if not company:
            raise EntityNotFoundError(f"Company not found: {company_id}")
        self.session.delete(company)
        self.session.flush()

    @storage_operation("company.add_alias")
    def add_alias(self, company: Company, alias: str, alias_type: AliasType) -> CompanyAlias:
        """Attach an alias unless the company already has it."""
        for existing in company.aliases:
            if existing.alias.lower() == alias.lower() and existing.alias_type == alias_type:
                return existing

        record = CompanyAlias(
            alias=alias,
            normalized_alias=normalize_name(alias),
            alias_type=alias_type
        )
        company.aliases.append(record)
        self.session.flush()
        return record

    @storage_operation("company.count_active")
    def count_active(self) -> int:
        """Number of active companies."""
        query = select(func.count(Company.id)).where(Company.active.is_(True))
        return self.session.execute(query).scalar_one()

    @storage_operation("company.count_with_ticker")
    def count_with_ticker(self) -> int:
        """Number of active companies holding a ticker."""
        query = select(func.count(Company.id)).where(
            and_(Company.active.is_(True), Company.ticker.is_not(None))
        )
        return self.session.execute(query).scalar_one()

    @storage_operation("company.duplicate_name_groups")
    def duplicate_name_groups(self) -> List[Tuple[str, int]]:
        """Normalized names shared by more than one active company."""
        query = select(
            Company.normalized_name,
            func.count(Company.id)
        ).where(
            Company.active.is_(True)
        ).group_by(
            Company.normalized_name
        ).having(
            func.count(Company.id) > 1
        ).order_by(Company.normalized_name)

        return [(row[0], row[1]) for row in self.session.execute(query)]

    @storage_operation("company.duplicate_ticker_groups")
    def duplicate_ticker_groups(self) -> List[Tuple[str, int]]:
        """Tickers held by more than one active company."""
        query = select(
            Company.ticker,
            func.count(Company.id)
        ).where(
            and_(Company.active.is_(True), Company.ticker.is_not(None))
        ).group_by(
            Company.ticker
        ).having(
            func.count(Company.id) > 1
        ).order_by(Company.ticker)

        return [(row[0], row[1]) for row in self.session.execute(query)]


# ============================================
# EVIDENCE REPOSITORY
# ============================================

class EvidenceRepository:
    """Repository for evidence records."""

    def __init__(self, session: Session):
        self.session = session

    @storage_operation("evidence.create")
    def create(
        self,
        company_id: UUID,
        tag: Tag,
        source: Source,
        notes: Optional[str] = None,
        strength: EvidenceStrength = EvidenceStrength.MEDIUM,
        bds_category: Optional[BdsCategory] = None,
        observed_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None
    ) -> Evidence:
        """Create an evidence record for a company."""
        evidence = Evidence(
            company_id=company_id,
            tag=tag,
            source=source,
            notes=notes,
            strength=strength,
            bds_category=bds_category,
        )
        if observed_at is not None:
            evidence.observed_at = observed_at
        if created_at is not None:
            evidence.created_at = created_at

        self.session.add(evidence)
        self.session.flush()
        return evidence

    @storage_operation("evidence.list_for_company")
    def list_for_company(self, company_id: UUID) -> List[Evidence]:
        """Evidence of a company in insertion order."""
        query = select(Evidence).where(
            Evidence.company_id == company_id
        ).order_by(Evidence.created_at, Evidence.observed_at)
        return list(self.session.execute(query).scalars().unique().all())

    @storage_operation("evidence.delete")
    def delete(self, evidence_id: UUID) -> None:
        """Delete one evidence record."""
        evidence = self.session.get(Evidence, evidence_id)
        if evidence is None:
            raise EntityNotFoundError(f"Evidence not found: {evidence_id}")
        if evidence.company is not None and evidence in evidence.company.evidence:
            evidence.company.evidence.remove(evidence)
        self.session.delete(evidence)
        self.session.flush()


# ============================================
# FINANCIALS REPOSITORY
# ============================================

class FinancialsRepository:
    """Repository for financial snapshots."""

    def __init__(self, session: Session):
        self.session = session

    @storage_operation("financials.latest")
    def latest_for_company(self, company_id: UUID) -> Optional[Financials]:
        """Most recent snapshot by period, then creation time."""
        query = select(Financials).where(
            Financials.company_id == company_id
        ).order_by(
            Financials.period.desc(),
            Financials.created_at.desc()
        ).limit(1)
        return self.session.execute(query).scalars().first()

    @storage_operation("financials.exists_for_period")
    def exists_for_period(self, company_id: UUID, period: str) -> bool:
        """Whether a snapshot for the period is already stored."""
        query = select(func.count(Financials.id)).where(
            and_(Financials.company_id == company_id, Financials.period == period)
        )
        return self.session.execute(query).scalar_one() > 0

    @storage_operation("financials.create")
    def create(self, company_id: UUID, data: Dict[str, Any]) -> Financials:
        """Store a snapshot for a company."""
        financials = Financials(company_id=company_id, **data)
        self.session.add(financials)
        self.session.flush()
        return financials


# ============================================
# REFERENCE DATA REPOSITORIES
# ============================================

class TagRepository:
    """Repository for compliance tags."""

    def __init__(self, session: Session):
        self.session = session

    @storage_operation("tag.get_by_name")
    def get_by_name(self, name: str) -> Optional[Tag]:
        return self.session.execute(
            select(Tag).where(Tag.name == name)
        ).scalar_one_or_none()

    def get_or_create(self, name: str, description: Optional[str] = None) -> Tuple[Tag, bool]:
        """
        Returns:
            Tuple of (tag, created)
        """
        tag = self.get_by_name(name)
        if tag:
            return tag, False

        tag = Tag(name=name, description=description)
        self.session.add(tag)
        self.session.flush()
        return tag, True


class SourceRepository:
    """Repository for citations."""

    def __init__(self, session: Session):
        self.session = session

    @storage_operation("source.get_by_url")
    def get_by_url(self, url: str) -> Optional[Source]:
        return self.session.execute(
            select(Source).where(Source.url == url).limit(1)
        ).scalars().first()

    def get_or_create(
        self,
        domain: str,
        title: str,
        url: str,
        publisher: Optional[str] = None
    ) -> Tuple[Source, bool]:
        """
        Sources are immutable, so an existing URL is returned untouched.

        Returns:
            Tuple of (source, created)
        """
        source = self.get_by_url(url)
        if source:
            return source, False

        source = Source(domain=domain, title=title, url=url, publisher=publisher)
        self.session.add(source)
        self.session.flush()
        return source, True


# ============================================
# SCREEN RESULT REPOSITORY
# ============================================

class ScreenResultRepository:
    """Repository for the screening audit trail."""

    def __init__(self, session: Session):
        self.session = session

    @storage_operation("screen_result.record")
    def record(
        self,
        audit_id: str,
        symbol: str,
        final_verdict,
        confidence,
        statuses: Dict[str, Any],
        reasons: List[str],
        company_id: Optional[UUID] = None
    ) -> ScreenResult:
        """Persist one screening decision."""
        result = ScreenResult(
            audit_id=audit_id,
            symbol=symbol,
            company_id=company_id,
            final_verdict=final_verdict,
            confidence=confidence,
            statuses=statuses,
            reasons=reasons
        )
        self.session.add(result)
        self.session.flush()
        return result

    @storage_operation("screen_result.get_by_audit_id")
    def get_by_audit_id(self, audit_id: str) -> Optional[ScreenResult]:
        return self.session.execute(
            select(ScreenResult).where(ScreenResult.audit_id == audit_id)
        ).scalar_one_or_none()
