"""
Compliance Screening Service for EthicCheck

Turns a company's persisted evidence and financial snapshots into
per-category verdicts and an aggregated final verdict. The service only
reads; every call recomputes from the current registry state.

Categories:
- BDS: excluded iff at least one BDS evidence record (optionally limited
  to requested sub-categories), carrying the observed sub-categories
- Defense / Surveillance: excluded iff at least one evidence record
  under the tag
- Shariah: sector/industry/description keyword screen plus three
  balance sheet ratios from the latest financials

Usage:
    with db_provider.session_scope() as session:
        service = ScreeningService(session, config)
        response = service.screen(ScreenRequest(symbols=["AAPL"], filters={"defense": True}))
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from registry.models import (
    Company,
    Evidence,
    Financials,
    BdsCategory,
    CategoryStatus,
    FinalVerdict,
    ConfidenceLevel,
    TAG_BDS,
    TAG_DEFENSE,
    TAG_SURVEILLANCE,
)
from registry.repositories import (
    CompanyRepository,
    EvidenceRepository,
    FinancialsRepository,
    ScreenResultRepository,
)

logger = logging.getLogger(__name__)


class ScreeningRequestError(ValueError):
    """The request as a whole is malformed (e.g. no filter object)."""
    pass


# ============================================
# SHARIAH KEYWORD TABLES
# ============================================

FORBIDDEN_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    'banking': ('bank', 'banking', 'financial services', 'capital markets',
                'diversified financial', 'mortgage'),
    'insurance': ('insurance', 'reinsurance', 'life insurance', 'property insurance'),
    'alcohol': ('alcohol', 'alcoholic', 'beer', 'wine', 'spirits', 'liquor',
                'brewer', 'distillery', 'brewery'),
    'tobacco': ('tobacco', 'cigarette', 'smoking'),
    'gambling': ('casino', 'gambling', 'lottery', 'betting', 'poker'),
    'adult_content': ('adult entertainment', 'pornography', 'adult content'),
    'defense': ('defense', 'weapons', 'firearms', 'military', 'aerospace defense'),
    'pork': ('pork', 'bacon', 'ham', 'swine'),
}


@dataclass(frozen=True)
class ContextExclusion:
    """Phrases indicating a compliant reading of a forbidden keyword"""
    name: str
    phrases: Tuple[str, ...]
    suppresses: Tuple[str, ...]


CONTEXT_EXCLUSIONS: Tuple[ContextExclusion, ...] = (
    ContextExclusion('non_alcoholic',
                     ('non-alcoholic', 'soft drinks', 'beverages - non-alcoholic'),
                     ('alcohol',)),
    ContextExclusion('vehicle_insurance',
                     ('vehicle insurance services', 'auto insurance services'),
                     ('insurance',)),
    ContextExclusion('health_insurance',
                     ('health insurance', 'medical insurance'),
                     ('insurance',)),
    ContextExclusion('defense_technology',
                     ('defense technology', 'cybersecurity', 'information security'),
                     ('defense',)),
)


# ============================================
# RESULT TYPES
# ============================================

@dataclass
class ScreeningFilters:
    """Which categories are screened, with BDS sub-category selection"""
    bds: bool = False
    bds_categories: List[BdsCategory] = field(default_factory=list)
    defense: bool = False
    surveillance: bool = False
    shariah: bool = False

    @classmethod
    def from_request(cls, filters) -> 'ScreeningFilters':
        """Build from the api.models.ScreeningFilters schema."""
        bds = filters.bds
        return cls(
            bds=bool(bds and bds.enabled),
            bds_categories=list(bds.categories or []) if bds else [],
            defense=bool(filters.defense),
            surveillance=bool(filters.surveillance),
            shariah=bool(filters.shariah),
        )

    def flagged_tags(self) -> List[str]:
        """
        Evidence tags that make a company show up in browse mode.

        Shariah verdicts come from business text and financials, not
        evidence, so that filter never flags anyone here.
        """
        tags = []
        if self.bds:
            tags.append(TAG_BDS)
        if self.defense:
            tags.append(TAG_DEFENSE)
        if self.surveillance:
            tags.append(TAG_SURVEILLANCE)
        return tags


@dataclass
class KeywordHit:
    category: str
    keyword: str
    suppressed_by: Optional[str] = None


@dataclass
class RatioCheck:
    """One Shariah balance sheet ratio against its ceiling"""
    name: str
    limit: float
    value: Optional[float] = None

    @property
    def missing_data(self) -> bool:
        return self.value is None

    @property
    def passed(self) -> bool:
        return self.value is not None and self.value <= self.limit

    def describe(self) -> str:
        if self.missing_data:
            return f"Shariah: {self.name} missing data"
        return f"Shariah: {self.name} {self.value:.1%} exceeds {self.limit:.1%} limit"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": round(self.value, 4) if self.value is not None else None,
            "limit": self.limit,
            "passed": self.passed,
            "missing_data": self.missing_data,
        }


@dataclass
class CategoryOutcome:
    """Verdict of one category for one company"""
    status: CategoryStatus
    reasons: List[str] = field(default_factory=list)
    supporting: List[str] = field(default_factory=list)
    evidence: List[Evidence] = field(default_factory=list)
    sub_categories: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ScreeningRow:
    """One screened symbol"""
    symbol: str
    company: Optional[str]
    statuses: Dict[str, Any]
    final_verdict: FinalVerdict
    reasons: List[str]
    confidence: ConfidenceLevel
    as_of_row: str
    sources: List[Dict[str, str]]
    audit_id: str
    company_id: Optional[uuid.UUID] = None
    found: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "company": self.company,
            "statuses": self.statuses,
            "final_verdict": self.final_verdict.value,
            "reasons": self.reasons,
            "confidence": self.confidence.value,
            "as_of_row": self.as_of_row,
            "sources": self.sources,
            "audit_id": self.audit_id,
        }


@dataclass
class ScreeningResponse:
    request_id: str
    as_of: str
    rows: List[ScreeningRow] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "as_of": self.as_of,
            "rows": [row.to_dict() for row in self.rows],
            "warnings": self.warnings,
        }


# ============================================
# PURE SCREENS
# ============================================

def keyword_screen(text: str, scoped_exclusions: bool = True) -> List[KeywordHit]:
    """
    Find forbidden-activity keywords in lower-cased business text.

    Returns one hit per category. A hit is suppressed by a matching
    context exclusion: only for its mapped categories when scoped, for
    every category otherwise.
    """
    text = (text or '').lower()
    matched_exclusions = [
        exclusion for exclusion in CONTEXT_EXCLUSIONS
        if any(phrase in text for phrase in exclusion.phrases)
    ]

    hits = []
    for category, keywords in FORBIDDEN_KEYWORDS.items():
        keyword = next((k for k in keywords if k in text), None)
        if keyword is None:
            continue

        hit = KeywordHit(category=category, keyword=keyword)
        for exclusion in matched_exclusions:
            if not scoped_exclusions or category in exclusion.suppresses:
                hit.suppressed_by = exclusion.name
                break
        hits.append(hit)

    return hits


def _ratio(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    if numerator is None or not denominator:
        return None
    return numerator / denominator


def ratio_screen(
    financials: Optional[Financials],
    debt_limit: float,
    cash_limit: float,
    receivables_limit: float
) -> List[RatioCheck]:
    """
    Debt / total assets, (cash + short-term investments) / total assets,
    receivables / market cap. Unknown inputs leave the ratio missing.
    """
    debt = cash = receivables = None
    if financials is not None:
        debt = _ratio(financials.debt, financials.total_assets)
        if financials.cash_securities is not None or financials.short_term_investments is not None:
            liquid = (financials.cash_securities or 0.0) + (financials.short_term_investments or 0.0)
            cash = _ratio(liquid, financials.total_assets)
        receivables = _ratio(financials.receivables, financials.market_cap)

    return [
        RatioCheck('debt ratio', debt_limit, debt),
        RatioCheck('cash ratio', cash_limit, cash),
        RatioCheck('receivables ratio', receivables_limit, receivables),
    ]


def aggregate_verdict(statuses: List[CategoryStatus]) -> FinalVerdict:
    """EXCLUDED beats REVIEW beats PASS across enabled categories."""
    if CategoryStatus.EXCLUDED in statuses:
        return FinalVerdict.EXCLUDED
    if CategoryStatus.REVIEW in statuses:
        return FinalVerdict.REVIEW
    return FinalVerdict.PASS


def confidence_for(supporting_count: int) -> ConfidenceLevel:
    """0 specific items is low, 1-2 medium, 3 or more high."""
    if supporting_count >= 3:
        return ConfidenceLevel.HIGH
    if supporting_count >= 1:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def new_audit_id() -> str:
    return f"aud_{uuid.uuid4().hex}"


# ============================================
# SCREENING SERVICE
# ============================================

class ScreeningService:
    """
    Database-backed compliance screening.

    Unknown symbols yield a low-confidence row instead of an error.
    Storage failures propagate as StorageError.
    """

    def __init__(self, session: Session, config: Optional[Any] = None):
        """
        Initialize the screening service.

        Args:
            session: SQLAlchemy database session
            config: Optional ConfigManager instance
        """
        self.session = session
        self.config = config
        self._company_repo = CompanyRepository(session)
        self._evidence_repo = EvidenceRepository(session)
        self._financials_repo = FinancialsRepository(session)
        self._audit_repo = ScreenResultRepository(session)

        # Defaults (can be overridden by config)
        self._debt_limit = 0.40
        self._cash_limit = 0.50
        self._receivables_limit = 0.49
        self._scoped_exclusions = True
        self._unknown_verdict = FinalVerdict.REVIEW
        self._persist_audits = False

        if config:
            self._apply_config(config)

    def _apply_config(self, config) -> None:
        """Apply configuration settings."""
        if hasattr(config, 'screening'):
            self._debt_limit = config.screening.debt_ratio_max
            self._cash_limit = config.screening.cash_ratio_max
            self._receivables_limit = config.screening.receivables_ratio_max
            self._scoped_exclusions = config.screening.scoped_exclusions
            self._unknown_verdict = FinalVerdict(config.screening.unknown_symbol_verdict)
            self._persist_audits = config.screening.persist_audits

    def screen(self, request) -> ScreeningResponse:
        """
        Screen an api.models.ScreenRequest.

        Raises:
            ScreeningRequestError: If the request carries no filter object
        """
        if request is None or getattr(request, 'filters', None) is None:
            raise ScreeningRequestError("Screening request requires a filters object")
        return self.screen_symbols(request.symbols, ScreeningFilters.from_request(request.filters))

    def screen_symbols(
        self,
        symbols: List[str],
        filters: Optional[ScreeningFilters]
    ) -> ScreeningResponse:
        """
        Screen symbols; an empty list screens every flagged company.

        Args:
            symbols: Tickers, aliases or company names
            filters: Enabled categories

        Returns:
            ScreeningResponse with one row per distinct symbol
        """
        if filters is None:
            raise ScreeningRequestError("Screening request requires a filters object")

        response = ScreeningResponse(
            request_id=str(uuid.uuid4()),
            as_of=datetime.now(timezone.utc).isoformat()
        )

        if not symbols:
            companies = self._company_repo.list_flagged(filters.flagged_tags())
            logger.info(f"Browse mode: {len(companies)} flagged companies")
            for company in companies:
                response.rows.append(self._screen_company(company.ticker or company.name, company, filters))
            return response

        not_found = []
        seen = set()
        for raw in symbols:
            symbol = raw.strip().upper()
            if not symbol or symbol in seen:
                continue
            seen.add(symbol)

            company = self._company_repo.resolve_symbol(symbol)
            if company is None:
                logger.info(f"Company not found for symbol: {symbol}")
                not_found.append(symbol)
                response.rows.append(self._not_found_row(symbol, filters))
            else:
                response.rows.append(self._screen_company(symbol, company, filters))

        if not_found:
            response.warnings.append(f"{len(not_found)} symbol(s) not found in registry: {', '.join(not_found)}")

        return response

    # ============================================
    # PER-COMPANY SCREENING
    # ============================================

    def _screen_company(self, symbol: str, company: Company, filters: ScreeningFilters) -> ScreeningRow:
        evidence_by_tag: Dict[str, List[Evidence]] = {}
        for evidence in self._evidence_repo.list_for_company(company.id):
            evidence_by_tag.setdefault(evidence.tag.name, []).append(evidence)

        outcomes: Dict[str, CategoryOutcome] = {}
        if filters.bds:
            outcomes['bds'] = self._screen_bds(evidence_by_tag.get(TAG_BDS, []), filters.bds_categories)
        if filters.defense:
            outcomes['defense'] = self._screen_tagged(evidence_by_tag.get(TAG_DEFENSE, []), "Defense")
        if filters.surveillance:
            outcomes['surveillance'] = self._screen_tagged(
                evidence_by_tag.get(TAG_SURVEILLANCE, []), "Surveillance"
            )

        financials = None
        if filters.shariah:
            financials = self._financials_repo.latest_for_company(company.id)
            outcomes['shariah'] = self._screen_shariah(company, financials)

        reasons: List[str] = []
        supporting = 0
        sources: Dict[str, Dict[str, str]] = {}
        for outcome in outcomes.values():
            reasons.extend(outcome.reasons)
            supporting += len(outcome.supporting)
            for evidence in outcome.evidence:
                if evidence.source and evidence.source.url not in sources:
                    sources[evidence.source.url] = {"label": evidence.source.title, "url": evidence.source.url}
        if financials is not None and financials.source and financials.source.url not in sources:
            sources[financials.source.url] = {"label": financials.source.title, "url": financials.source.url}

        final_verdict = aggregate_verdict([o.status for o in outcomes.values()])
        if not reasons:
            reasons.append("No exclusion criteria met")

        row = ScreeningRow(
            symbol=symbol,
            company=company.name,
            company_id=company.id,
            statuses=self._statuses(outcomes),
            final_verdict=final_verdict,
            reasons=reasons,
            confidence=confidence_for(supporting),
            as_of_row=(company.updated_at or datetime.now(timezone.utc)).date().isoformat(),
            sources=list(sources.values()),
            audit_id=new_audit_id()
        )
        self._record(row)
        return row

    def _screen_bds(self, evidence: List[Evidence], requested: List[BdsCategory]) -> CategoryOutcome:
        if requested:
            requested_set = set(requested)
            evidence = [
                e for e in evidence
                if (e.bds_category or BdsCategory.OTHER_BDS_ACTIVITIES) in requested_set
            ]

        if not evidence:
            return CategoryOutcome(status=CategoryStatus.PASS)

        grouped: Dict[BdsCategory, List[Evidence]] = {}
        for e in evidence:
            grouped.setdefault(e.bds_category or BdsCategory.OTHER_BDS_ACTIVITIES, []).append(e)

        outcome = CategoryOutcome(status=CategoryStatus.EXCLUDED, evidence=evidence)
        for category, items in grouped.items():
            notes = [e.notes for e in items if e.notes]
            outcome.sub_categories.append({
                "category": category.value,
                "status": CategoryStatus.EXCLUDED.value,
                "evidence": notes,
            })
            outcome.supporting.extend(notes)
            label = category.value.replace('_', ' ')
            if notes:
                outcome.reasons.extend(f"BDS - {label}: {note}" for note in notes)
            else:
                outcome.reasons.append(f"BDS - {label}: {len(items)} evidence record(s)")
        return outcome

    def _screen_tagged(self, evidence: List[Evidence], label: str) -> CategoryOutcome:
        if not evidence:
            return CategoryOutcome(status=CategoryStatus.PASS)

        outcome = CategoryOutcome(status=CategoryStatus.EXCLUDED, evidence=evidence)
        for e in evidence:
            if e.notes:
                outcome.supporting.append(e.notes)
                outcome.reasons.append(f"{label}: {e.notes}")
            else:
                outcome.reasons.append(f"{label}: listed by {e.source.title}")
        return outcome

    def _screen_shariah(self, company: Company, financials: Optional[Financials]) -> CategoryOutcome:
        text = " ".join(part for part in (company.sector, company.industry, company.description) if part)
        hits = [h for h in keyword_screen(text, self._scoped_exclusions) if h.suppressed_by is None]
        ratios = ratio_screen(financials, self._debt_limit, self._cash_limit, self._receivables_limit)
        failing = [r for r in ratios if not r.passed]

        outcome = CategoryOutcome(
            status=CategoryStatus.PASS if not hits and not failing else CategoryStatus.EXCLUDED
        )
        for hit in hits:
            message = f"Shariah: forbidden business activity ({hit.category.replace('_', ' ')}: '{hit.keyword}')"
            outcome.reasons.append(message)
            outcome.supporting.append(message)
        for ratio in failing:
            outcome.reasons.append(ratio.describe())
            if not ratio.missing_data:
                outcome.supporting.append(ratio.describe())
        return outcome

    def _statuses(self, outcomes: Dict[str, CategoryOutcome]) -> Dict[str, Any]:
        bds = outcomes.get('bds')
        statuses: Dict[str, Any] = {
            "bds": {"overall": bds.status.value, "categories": bds.sub_categories} if bds else None
        }
        for name in ('defense', 'surveillance', 'shariah'):
            outcome = outcomes.get(name)
            statuses[name] = outcome.status.value if outcome else None
        return statuses

    def _not_found_row(self, symbol: str, filters: ScreeningFilters) -> ScreeningRow:
        status = CategoryStatus.REVIEW if self._unknown_verdict == FinalVerdict.REVIEW else CategoryStatus.PASS
        statuses = {
            "bds": {"overall": status.value, "categories": []} if filters.bds else None,
            "defense": status.value if filters.defense else None,
            "surveillance": status.value if filters.surveillance else None,
            "shariah": status.value if filters.shariah else None,
        }
        row = ScreeningRow(
            symbol=symbol,
            company=None,
            statuses=statuses,
            final_verdict=self._unknown_verdict,
            reasons=[f"Company not found in registry: {symbol}"],
            confidence=ConfidenceLevel.LOW,
            as_of_row=datetime.now(timezone.utc).date().isoformat(),
            sources=[],
            audit_id=new_audit_id(),
            found=False
        )
        self._record(row)
        return row

    def _record(self, row: ScreeningRow) -> None:
        if not self._persist_audits:
            return
        self._audit_repo.record(
            audit_id=row.audit_id,
            symbol=row.symbol,
            company_id=row.company_id,
            final_verdict=row.final_verdict,
            confidence=row.confidence,
            statuses=row.statuses,
            reasons=row.reasons
        )
