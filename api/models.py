"""
Pydantic request/response schemas for the EthicCheck screening contract

Validates screening requests at the edge and documents the response
produced by registry.screening_service.ScreeningResponse.to_dict().
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from registry.models import BdsCategory, CategoryStatus, ConfidenceLevel, FinalVerdict


class BdsFilter(BaseModel):
    """BDS category options."""
    enabled: bool = Field(default=False, description="Screen for BDS involvement")
    categories: List[BdsCategory] = Field(
        default_factory=list,
        description="Limit to these sub-categories (empty = all)"
    )


class ScreeningFilters(BaseModel):
    """Which categories are screened."""
    bds: Optional[BdsFilter] = Field(default=None, description="BDS options")
    defense: bool = Field(default=False, description="Screen for defense contractors")
    surveillance: bool = Field(default=False, description="Screen for surveillance suppliers")
    shariah: bool = Field(default=False, description="Screen for Shariah compliance")


class ScreenRequest(BaseModel):
    """Request schema for a screening call.

    An empty symbol list browses every company flagged under the
    enabled categories. The filters object is required.
    """
    symbols: List[str] = Field(
        default_factory=list,
        max_length=500,
        description="Tickers, aliases or company names"
    )
    filters: ScreeningFilters = Field(..., description="Enabled categories")

    @field_validator('symbols')
    @classmethod
    def strip_symbols(cls, v: List[str]) -> List[str]:
        """Drop blank entries and surrounding whitespace."""
        return [s.strip() for s in v if s and s.strip()]


class BdsSubCategoryStatus(BaseModel):
    category: BdsCategory
    status: CategoryStatus
    evidence: List[str] = Field(default_factory=list, description="Evidence notes")


class BdsStatus(BaseModel):
    overall: CategoryStatus
    categories: List[BdsSubCategoryStatus] = Field(default_factory=list)


class CategoryStatuses(BaseModel):
    """Per-category status; null when the category was not requested."""
    bds: Optional[BdsStatus] = None
    defense: Optional[CategoryStatus] = None
    surveillance: Optional[CategoryStatus] = None
    shariah: Optional[CategoryStatus] = None


class SourceCitation(BaseModel):
    label: str
    url: str


class ScreenRow(BaseModel):
    """One screened symbol."""
    symbol: str = Field(..., description="Requested symbol")
    company: Optional[str] = Field(default=None, description="Resolved company name")
    statuses: CategoryStatuses
    final_verdict: FinalVerdict = Field(..., description="PASS, REVIEW or EXCLUDED")
    reasons: List[str] = Field(default_factory=list)
    confidence: ConfidenceLevel = Field(..., description="Low, Medium or High")
    as_of_row: str = Field(..., description="Date the company record was last updated")
    sources: List[SourceCitation] = Field(default_factory=list)
    audit_id: str = Field(..., pattern=r'^aud_[0-9a-f]{32}$', description="Opaque audit identifier")


class ScreenResponse(BaseModel):
    """Response schema for a screening call."""
    request_id: str = Field(..., description="Unique request identifier (UUID)")
    as_of: str = Field(..., description="Screening timestamp (ISO 8601)")
    rows: List[ScreenRow] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list, description="Unresolved symbols")
