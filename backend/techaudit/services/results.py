"""
Result records shared by every analyzer and the orchestrator.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Impact(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_RANK = {Severity.ERROR: 0, Severity.WARNING: 1, Severity.INFO: 2}
IMPACT_RANK = {Impact.HIGH: 0, Impact.MEDIUM: 1, Impact.LOW: 2}


@dataclass
class Recommendation:
    """One remediation item; analyzer-agnostic so lists can be merged."""
    severity: Severity
    message: str
    impact: Impact
    fix: str
    category: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.severity.value,
            "severity": self.severity.value,
            "category": self.category,
            "message": self.message,
            "impact": self.impact.value,
            "fix": self.fix,
        }


def sort_recommendations(recommendations: list[Recommendation]) -> list[Recommendation]:
    """Errors first, then warnings, then info; ties broken by impact."""
    return sorted(
        recommendations,
        key=lambda r: (SEVERITY_RANK[r.severity], IMPACT_RANK[r.impact]),
    )


@dataclass
class AnalyzerResult:
    """
    Uniform analyzer output.

    `score` is always an int in 0..100; an analyzer that could not run
    reports 0 and explains why in `errors`. Analyzer-specific data lives in
    `findings`.
    """
    score: int = 0
    findings: dict[str, Any] = field(default_factory=dict)
    recommendations: list[Recommendation] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    # False when the analyzer produced no score signal at all
    scored: bool = True

    def __post_init__(self):
        self.score = clamp_score(self.score)

    @classmethod
    def failed(cls, message: str) -> "AnalyzerResult":
        return cls(score=0, errors=[message], scored=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalyzerResult":
        """Rebuild a result serialized with to_dict (cache entries)."""
        findings = dict(data)
        score = findings.pop("score", 0)
        errors = findings.pop("errors", [])
        recommendations = [
            Recommendation(
                severity=Severity(item["severity"]),
                message=item["message"],
                impact=Impact(item["impact"]),
                fix=item.get("fix", ""),
                category=item.get("category", ""),
            )
            for item in findings.pop("recommendations", [])
        ]
        return cls(score=score, findings=findings, recommendations=recommendations, errors=errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.findings,
            "score": self.score,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "errors": list(self.errors),
        }


def clamp_score(value: float) -> int:
    return int(max(0, min(100, round(value))))


@dataclass(frozen=True)
class AuditTarget:
    """What the caller hands to the pipeline: the fetched page and options."""
    url: str
    html: str = ""
    dom_summary: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuditReport:
    url: str
    analyzed_at: datetime
    technical_score: int
    page_speed: AnalyzerResult | None = None
    mobile_optimization: AnalyzerResult | None = None
    security: AnalyzerResult | None = None
    sitemap_analysis: AnalyzerResult | None = None
    canonical_urls: AnalyzerResult | None = None
    structured_data: AnalyzerResult | None = None
    recommendations: list[Recommendation] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)

    SLOTS = (
        "page_speed",
        "mobile_optimization",
        "security",
        "sitemap_analysis",
        "canonical_urls",
        "structured_data",
    )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "url": self.url,
            "analyzed_at": self.analyzed_at.isoformat(),
            "technical_score": self.technical_score,
        }
        for slot in self.SLOTS:
            result = getattr(self, slot)
            data[slot] = result.to_dict() if result is not None else None
        data["recommendations"] = [r.to_dict() for r in self.recommendations]
        data["errors"] = [dict(e) for e in self.errors]
        return data


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
