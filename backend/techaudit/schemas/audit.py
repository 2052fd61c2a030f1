"""
Input and output contract of a technical audit.
"""
from datetime import datetime
from typing import Any, Literal

from pydantic import ConfigDict, Field

from techaudit.config import settings
from techaudit.schemas.common import BaseSchema


class AuditOptions(BaseSchema):
    """Per-audit switches; unknown keys are ignored."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, extra="ignore")

    force_refresh: bool = False
    include_page_speed: bool = True
    include_mobile_analysis: bool = True
    include_security_analysis: bool = True
    include_sitemap_analysis: bool = True
    include_canonical_analysis: bool = True
    include_structured_data: bool = True
    max_urls_to_analyze: int = Field(default=settings.SITEMAP_MAX_URLS, ge=1, le=50000)
    max_accessibility_tests: int = Field(default=settings.ACCESSIBILITY_MAX_TESTS, ge=0, le=500)


class AuditRequest(BaseSchema):
    url: str = Field(..., max_length=2048)
    html: str = ""
    dom_summary: dict[str, Any] = Field(default_factory=dict)
    options: AuditOptions = Field(default_factory=AuditOptions)


class RecommendationSchema(BaseSchema):
    type: Literal["error", "warning", "info"]
    severity: Literal["error", "warning", "info"]
    category: str = ""
    message: str
    impact: Literal["high", "medium", "low"]
    fix: str = ""


class ServiceError(BaseSchema):
    service: str
    message: str


class AuditReportResponse(BaseSchema):
    url: str
    analyzed_at: datetime
    technical_score: int = Field(..., ge=0, le=100)
    page_speed: dict[str, Any] | None = None
    mobile_optimization: dict[str, Any] | None = None
    security: dict[str, Any] | None = None
    sitemap_analysis: dict[str, Any] | None = None
    canonical_urls: dict[str, Any] | None = None
    structured_data: dict[str, Any] | None = None
    recommendations: list[RecommendationSchema] = Field(default_factory=list)
    errors: list[ServiceError] = Field(default_factory=list)
