"""
Canonical URL analysis.

Covers the canonical link tag itself, the structure of the page URL, the
page's own redirect chain and duplicate-content indicators.
"""
import logging
from typing import Any
from urllib.parse import urljoin, urlparse

from techaudit.config import settings
from techaudit.core.exceptions import RECOVERABLE_ERRORS
from techaudit.core.url_safety import is_absolute_url, is_safe_url
from techaudit.integrations.http import Fetcher
from techaudit.services.document import PageDocument
from techaudit.services.redirects import RedirectChain, walk_redirect_chain
from techaudit.services.results import AnalyzerResult, Impact, Recommendation, Severity
from techaudit.services.url_structure import (
    analyze_url_structure,
    duplicate_content_signals,
    parameter_analysis,
)

logger = logging.getLogger(__name__)

# Canonical tag (40)
PRESENCE_POINTS = 20
ISSUE_FREE_POINTS = 20
PARTIAL_ISSUE_POINTS = 10
SELF_REFERENCE_BONUS = 10
# URL structure (30)
SEO_FRIENDLY_POINTS = 15
READABILITY_POINTS_MAX = 15
# Redirects of the page URL (20)
REDIRECT_POINTS = {0: 20, 1: 15}
SHORT_CHAIN_POINTS = 10
SHORT_CHAIN_MAX = 3
# Duplication risk (10)
RISK_POINTS = {"low": 10, "medium": 5, "high": 0}

LONG_URL_LENGTH = 100
LONG_CHAIN_WARNING = 3


def normalize_for_comparison(url: str) -> str:
    return url.strip().lower().rstrip("/")


class CanonicalAnalyzer:
    """Canonical tag, URL structure and duplicate-content analysis."""

    def __init__(self, fetcher: Fetcher, timeout: float | None = None, max_redirects: int | None = None):
        self.fetcher = fetcher
        self.timeout = timeout or settings.CANONICAL_TIMEOUT
        self.max_redirects = max_redirects or settings.MAX_REDIRECTS

    async def analyze(
        self,
        url: str,
        html: str,
        options: dict[str, Any] | None = None,
        document: PageDocument | None = None,
    ) -> AnalyzerResult:
        document = PageDocument.ensure(html, document)
        errors: list[str] = []

        canonical = await self._analyze_canonical(url, document, errors)
        structure = analyze_url_structure(url)
        parameters = parameter_analysis(url)
        duplicate = duplicate_content_signals(
            url, document.text, document.title, document.meta_description
        )

        chain = await walk_redirect_chain(self.fetcher, url, timeout=self.timeout, max_hops=self.max_redirects)
        if chain.error:
            errors.append(f"Redirect check failed: {chain.error}")

        score = self._calculate_score(canonical, structure, chain, parameters["duplication_risk"])
        logger.info(f"Canonical analysis for {url} scored {score}")

        return AnalyzerResult(
            score=score,
            findings={
                "canonical_analysis": canonical,
                "url_structure": structure,
                "duplicate_content": duplicate,
                "redirect_analysis": chain.to_dict(),
                "parameter_analysis": parameters,
                "canonical_score": score,
            },
            recommendations=self._recommendations(canonical, structure, chain, parameters),
            errors=errors,
        )

    async def _analyze_canonical(self, url: str, document: PageDocument, errors: list[str]) -> dict[str, Any]:
        links = document.links_with_rel("canonical")
        hrefs = [(link.get("href") or "").strip() for link in links]
        issues: list[str] = []

        analysis: dict[str, Any] = {
            "has_canonical": bool(links),
            "canonical_url": None,
            "is_self_referencing": False,
            "multiple_canonicals": len(links) > 1,
            "all_canonical_urls": hrefs,
            "canonical_issues": issues,
            "http_equiv_canonical": document.meta_content(http_equiv="canonical"),
            "relative_canonical": False,
            "is_valid_url": False,
            "canonical_accessible": None,
            "canonical_status_code": None,
            "protocol_mismatch": False,
            "domain_mismatch": False,
        }

        if analysis["http_equiv_canonical"]:
            issues.append("Canonical declared with a non-standard http-equiv meta tag")

        if not links:
            return analysis

        if analysis["multiple_canonicals"]:
            issues.append(f"Multiple canonical tags found ({len(links)})")

        raw = hrefs[0]
        if not raw:
            issues.append("Canonical tag has an empty href")
            return analysis

        page = urlparse(url)
        if not urlparse(raw).scheme:
            analysis["relative_canonical"] = True
            if not raw.startswith("/"):
                issues.append("Canonical URL is relative; use an absolute URL")
        resolved = urljoin(f"{page.scheme}://{page.netloc}/", raw)

        if not is_absolute_url(resolved):
            issues.append("Canonical URL is not a valid absolute URL")
            return analysis

        analysis["is_valid_url"] = True
        analysis["canonical_url"] = resolved
        analysis["is_self_referencing"] = normalize_for_comparison(resolved) == normalize_for_comparison(url)

        target = urlparse(resolved)
        if page.scheme == "https" and target.scheme == "http":
            analysis["protocol_mismatch"] = True
            issues.append("Canonical URL uses HTTP on an HTTPS page")
        if (page.hostname or "").lower() != (target.hostname or "").lower():
            analysis["domain_mismatch"] = True
            issues.append(f"Canonical URL points to a different domain ({target.hostname})")

        if not is_safe_url(resolved):
            analysis["canonical_accessible"] = False
            issues.append("Canonical URL points to a blocked address")
            return analysis

        try:
            response = await self.fetcher.exists(resolved, timeout=self.timeout)
        except RECOVERABLE_ERRORS as e:
            analysis["canonical_accessible"] = False
            issues.append("Canonical URL could not be reached")
            errors.append(f"Canonical probe failed: {e}")
            return analysis

        analysis["canonical_status_code"] = response.status_code
        analysis["canonical_accessible"] = response.is_success
        if not response.is_success:
            issues.append(f"Canonical URL returns HTTP {response.status_code}")

        return analysis

    def _calculate_score(
        self,
        canonical: dict[str, Any],
        structure: dict[str, Any],
        chain: RedirectChain,
        risk: str,
    ) -> int:
        score = 0.0

        if canonical["has_canonical"]:
            score += PRESENCE_POINTS
            score += ISSUE_FREE_POINTS if not canonical["canonical_issues"] else PARTIAL_ISSUE_POINTS
            if canonical["is_self_referencing"]:
                score += SELF_REFERENCE_BONUS

        if structure["seo_friendly"]:
            score += SEO_FRIENDLY_POINTS
        score += min(READABILITY_POINTS_MAX, structure["readability_score"] * 0.15)

        if chain.hops and not chain.max_redirects_reached and not chain.loop_detected:
            count = chain.redirect_count
            if count in REDIRECT_POINTS:
                score += REDIRECT_POINTS[count]
            elif count <= SHORT_CHAIN_MAX:
                score += SHORT_CHAIN_POINTS

        score += RISK_POINTS[risk]
        return round(min(100, score))

    def _recommendations(
        self,
        canonical: dict[str, Any],
        structure: dict[str, Any],
        chain: RedirectChain,
        parameters: dict[str, Any],
    ) -> list[Recommendation]:
        recs = []

        if not canonical["has_canonical"]:
            recs.append(Recommendation(
                Severity.WARNING,
                "Missing canonical tag",
                Impact.MEDIUM,
                'Add <link rel="canonical" href="..."> pointing to the preferred URL',
                category="canonical",
            ))
        elif canonical["multiple_canonicals"]:
            recs.append(Recommendation(
                Severity.ERROR,
                "Multiple canonical tags found",
                Impact.HIGH,
                "Keep exactly one canonical link tag per page",
                category="canonical",
            ))

        for issue in canonical["canonical_issues"]:
            if issue.startswith("Multiple canonical tags"):
                continue
            recs.append(Recommendation(
                Severity.WARNING,
                f"Canonical issue: {issue}",
                Impact.MEDIUM,
                "Point the canonical tag at an absolute, reachable URL on this site",
                category="canonical",
            ))

        if structure["url_length"] > LONG_URL_LENGTH:
            recs.append(Recommendation(
                Severity.INFO,
                "URL is quite long",
                Impact.LOW,
                "Shorten the URL to under 100 characters",
                category="canonical",
            ))
        if not structure["seo_friendly"]:
            recs.append(Recommendation(
                Severity.INFO,
                "URL structure could be more SEO-friendly",
                Impact.LOW,
                "Use lowercase, hyphen-separated words and avoid ID parameters",
                category="canonical",
            ))
        if structure["contains_uppercase"]:
            recs.append(Recommendation(
                Severity.WARNING,
                "URL contains uppercase letters",
                Impact.MEDIUM,
                "Use lowercase URLs and redirect uppercase variants",
                category="canonical",
            ))

        if chain.max_redirects_reached or chain.loop_detected:
            recs.append(Recommendation(
                Severity.ERROR,
                "Redirect chain is too long",
                Impact.HIGH,
                "Break the redirect loop and point links directly at the final URL",
                category="canonical",
            ))
        elif chain.redirect_count > LONG_CHAIN_WARNING:
            recs.append(Recommendation(
                Severity.WARNING,
                "Multiple redirects in chain",
                Impact.MEDIUM,
                "Redirect straight to the final URL in a single hop",
                category="canonical",
            ))

        risk = parameters["duplication_risk"]
        if risk == "high":
            recs.append(Recommendation(
                Severity.WARNING,
                "High duplicate content risk from URL parameters",
                Impact.HIGH,
                "Strip session and tracking parameters or canonicalize to the clean URL",
                category="canonical",
            ))
        elif risk == "medium":
            recs.append(Recommendation(
                Severity.INFO,
                "Moderate duplicate content risk from URL parameters",
                Impact.MEDIUM,
                "Make sure parameterized URLs declare the clean URL as canonical",
                category="canonical",
            ))

        return recs
