"""
SQLAlchemy ORM Models for the EthicCheck Company Registry

This module defines the registry schema used by the screening engine,
the import guard and the registry monitor:
- UUID primary keys for distributed imports
- Timestamps for all records (created_at, updated_at)
- Soft delete for companies via the active flag
- Partial unique index so a ticker belongs to at most one active company
- Cascading ownership of aliases, evidence and financials

Tables:
1. companies - Core identity record for a publicly traded company
2. company_aliases - Alternate names and identifiers (many-to-one)
3. tags - Compliance categories (BDS, DEFENSE, SURVEILLANCE, SHARIAH)
4. sources - Citations backing evidence
5. evidence - Tagged, sourced facts about a company
6. financials - Periodic balance sheet snapshots
7. screen_results - Audit trail of screening decisions
"""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Float, Boolean, DateTime, Text, ForeignKey, Index, Enum, JSON, Uuid, text
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# ENUMS
# ============================================

class EvidenceStrength(str, PyEnum):
    """Strength of an evidence record"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class AliasType(str, PyEnum):
    """Type of company alias"""
    TICKER = "TICKER"
    PRIOR_TICKER = "PRIOR_TICKER"
    BRAND = "BRAND"
    LEGAL_NAME = "LEGAL_NAME"
    PREVIOUS_NAME = "PREVIOUS_NAME"
    OTHER = "OTHER"


class BdsCategory(str, PyEnum):
    """Sub-categories of the BDS tag"""
    ECONOMIC_EXPLOITATION = "economic_exploitation"
    EXPLOITATION_OCCUPIED_RESOURCES = "exploitation_occupied_resources"
    SETTLEMENT_ENTERPRISE = "settlement_enterprise"
    ISRAELI_CONSTRUCTION_OCCUPIED_LAND = "israeli_construction_occupied_land"
    SERVICES_TO_SETTLEMENTS = "services_to_settlements"
    OTHER_BDS_ACTIVITIES = "other_bds_activities"  # fallback


class CategoryStatus(str, PyEnum):
    """Per-category screening status"""
    PASS = "pass"
    REVIEW = "review"
    EXCLUDED = "excluded"


class FinalVerdict(str, PyEnum):
    """Aggregated screening verdict"""
    PASS = "PASS"
    REVIEW = "REVIEW"
    EXCLUDED = "EXCLUDED"


class ConfidenceLevel(str, PyEnum):
    """Confidence label derived from supporting evidence volume"""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


# Reference tag names
TAG_BDS = "BDS"
TAG_DEFENSE = "DEFENSE"
TAG_SURVEILLANCE = "SURVEILLANCE"
TAG_SHARIAH = "SHARIAH"


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False
    )


# ============================================
# COMPANY MODELS
# ============================================

class Company(Base, TimestampMixin):
    """
    Identity record for a publicly traded company.

    Soft deleted by clearing the active flag. Only merges physically
    remove a company, taking its aliases, evidence and financials along.
    """
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Display name
    name: Mapped[str] = mapped_column(String(500), nullable=False, index=True)

    # Lower-cased alphanumerics only, see normalize_name()
    normalized_name: Mapped[str] = mapped_column(String(500), nullable=False, index=True)

    # Market identifier; unique among active companies
    ticker: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)

    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sector: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    industry: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    # Relationships
    aliases: Mapped[List["CompanyAlias"]] = relationship(
        "CompanyAlias",
        back_populates="company",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    evidence: Mapped[List["Evidence"]] = relationship(
        "Evidence",
        back_populates="company",
        cascade="all, delete-orphan",
        order_by="Evidence.created_at"
    )
    financials: Mapped[List["Financials"]] = relationship(
        "Financials",
        back_populates="company",
        cascade="all, delete-orphan",
        order_by="Financials.period.desc()"
    )

    __table_args__ = (
        Index(
            'uq_companies_active_ticker',
            'ticker',
            unique=True,
            postgresql_where=text('active = true AND ticker IS NOT NULL'),
            sqlite_where=text('active = 1 AND ticker IS NOT NULL')
        ),
        Index('ix_companies_active_name', 'active', 'normalized_name'),
    )

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, name='{self.name}', ticker={self.ticker})>"


class CompanyAlias(Base, TimestampMixin):
    """
    Alternate names and identifiers for a company.

    Widens lookup during screening (ticker aliases) and duplicate audits.
    """
    __tablename__ = "company_aliases"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    alias: Mapped[str] = mapped_column(String(500), nullable=False)
    normalized_alias: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    alias_type: Mapped[AliasType] = mapped_column(
        Enum(AliasType),
        nullable=False,
        default=AliasType.OTHER
    )

    company: Mapped["Company"] = relationship("Company", back_populates="aliases")

    __table_args__ = (
        Index('ix_company_alias_type_value', 'alias_type', 'alias'),
    )

    def __repr__(self) -> str:
        return f"<CompanyAlias(company_id={self.company_id}, alias='{self.alias}', type={self.alias_type})>"


# ============================================
# REFERENCE DATA MODELS
# ============================================

class Tag(Base, TimestampMixin):
    """Named compliance category. Static reference data."""
    __tablename__ = "tags"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Tag(name='{self.name}')>"


class Source(Base, TimestampMixin):
    """Citation backing one or more evidence records. Immutable once created."""
    __tablename__ = "sources"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    domain: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    url: Mapped[str] = mapped_column(String(1000), nullable=False)
    publisher: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Source(domain='{self.domain}', title='{self.title}')>"


# ============================================
# EVIDENCE AND FINANCIALS
# ============================================

class Evidence(Base, TimestampMixin):
    """
    One observed fact linking a company to a tag, backed by one source.

    For a given company no two records may share the same
    (tag, normalized notes) pair; see DuplicateDetector.
    """
    __tablename__ = "evidence"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    tag_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tags.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    source_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sources.id", ondelete="RESTRICT"),
        nullable=False
    )

    strength: Mapped[EvidenceStrength] = mapped_column(
        Enum(EvidenceStrength),
        nullable=False,
        default=EvidenceStrength.MEDIUM
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Only meaningful for the BDS tag
    bds_category: Mapped[Optional[BdsCategory]] = mapped_column(
        Enum(BdsCategory),
        nullable=True
    )

    observed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )

    company: Mapped["Company"] = relationship("Company", back_populates="evidence")
    tag: Mapped["Tag"] = relationship("Tag", lazy="joined")
    source: Mapped["Source"] = relationship("Source", lazy="joined")

    __table_args__ = (
        Index('ix_evidence_company_tag', 'company_id', 'tag_id'),
    )

    def __repr__(self) -> str:
        return f"<Evidence(company_id={self.company_id}, tag_id={self.tag_id}, strength={self.strength})>"


class Financials(Base, TimestampMixin):
    """Periodic balance sheet snapshot. Screening uses only the latest."""
    __tablename__ = "financials"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    source_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sources.id", ondelete="SET NULL"),
        nullable=True
    )

    # Reporting period label, e.g. 2024-Q4
    period: Mapped[str] = mapped_column(String(20), nullable=False)

    market_cap: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_assets: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    debt: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    cash_securities: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    short_term_investments: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    receivables: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    company: Mapped["Company"] = relationship("Company", back_populates="financials")
    source: Mapped[Optional["Source"]] = relationship("Source", lazy="joined")

    __table_args__ = (
        Index('ix_financials_company_period', 'company_id', 'period'),
    )

    def __repr__(self) -> str:
        return f"<Financials(company_id={self.company_id}, period='{self.period}')>"


# ============================================
# AUDIT MODELS
# ============================================

class ScreenResult(Base):
    """
    Persisted record of one screening decision, keyed by audit id.

    Stores verdict, reasons and confidence for traceability. The
    company reference survives merges as NULL.
    """
    __tablename__ = "screen_results"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    audit_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    symbol: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    final_verdict: Mapped[FinalVerdict] = mapped_column(Enum(FinalVerdict), nullable=False)
    confidence: Mapped[ConfidenceLevel] = mapped_column(Enum(ConfidenceLevel), nullable=False)
    statuses: Mapped[dict] = mapped_column(JSONType, nullable=False)
    reasons: Mapped[list] = mapped_column(JSONType, nullable=False)
    as_of: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index('ix_screen_results_symbol_date', 'symbol', 'as_of'),
    )

    def __repr__(self) -> str:
        return f"<ScreenResult(audit_id='{self.audit_id}', symbol='{self.symbol}', verdict={self.final_verdict})>"


# ============================================
# HELPER FUNCTIONS
# ============================================

def normalize_name(name: Optional[str]) -> str:
    """
    Normalize a company name for comparison.

    Lower-cases and strips every non-alphanumeric character, so
    "Coca-Cola Co." becomes "cocacolaco".

    Args:
        name: The name to normalize (can be None)

    Returns:
        Normalized name string, or empty string if name is None/empty
    """
    if not name:
        return ""
    return re.sub(r'[^a-z0-9]', '', name.lower())


def normalize_notes(notes: Optional[str]) -> str:
    """
    Normalize evidence notes for duplicate grouping.

    Case-folds and collapses whitespace; punctuation is kept since it
    can change meaning in free text.
    """
    if not notes:
        return ""
    return re.sub(r'\s+', ' ', notes.casefold()).strip()


def name_words(name: Optional[str], min_length: int = 3) -> List[str]:
    """
    Split a company name into lower-cased words of at least min_length.

    Punctuation at word edges is dropped, so "Alphabet, Inc." yields
    ["alphabet", "inc"].
    """
    if not name:
        return []
    words = []
    for raw in name.lower().split():
        word = re.sub(r'^[^a-z0-9]+|[^a-z0-9]+$', '', raw)
        if len(word) >= min_length and word not in words:
            words.append(word)
    return words
