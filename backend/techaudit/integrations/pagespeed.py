"""
Google PageSpeed Insights API client.

Provides Core Web Vitals, lab metrics and optimization opportunities for a
URL. A missing API key or a failed call is reported as {"success": False}
so callers can fall back to heuristics.
"""
import logging
from typing import Any

import httpx

from techaudit.config import settings

logger = logging.getLogger(__name__)


# Core Web Vitals thresholds (milliseconds or ratio)
CWV_THRESHOLDS = {
    "lcp": {"good": 2500, "needs_improvement": 4000},
    "fid": {"good": 100, "needs_improvement": 300},
    "cls": {"good": 0.1, "needs_improvement": 0.25},
    "fcp": {"good": 1800, "needs_improvement": 3000},
}


def rate_metric(metric: str, value: float | None) -> str:
    """Rate a Core Web Vital as good / needs_improvement / poor."""
    if value is None:
        return "unknown"
    thresholds = CWV_THRESHOLDS[metric]
    if value <= thresholds["good"]:
        return "good"
    if value <= thresholds["needs_improvement"]:
        return "needs_improvement"
    return "poor"


class PageSpeedClient:
    """HTTP client for Google PageSpeed Insights API."""

    BASE_URL = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"

    OPPORTUNITY_IDS = [
        "render-blocking-resources",
        "unused-css-rules",
        "unused-javascript",
        "modern-image-formats",
        "offscreen-images",
        "unminified-css",
        "unminified-javascript",
        "efficient-animated-content",
        "uses-optimized-images",
        "uses-responsive-images",
        "uses-text-compression",
        "server-response-time",
        "redirects",
        "uses-rel-preconnect",
        "uses-rel-preload",
        "font-display",
        "lcp-lazy-loaded",
    ]

    DIAGNOSTIC_IDS = [
        "largest-contentful-paint-element",
        "layout-shift-elements",
        "long-tasks",
        "mainthread-work-breakdown",
        "bootup-time",
        "dom-size",
        "network-requests",
        "resource-summary",
        "third-party-summary",
        "critical-request-chains",
    ]

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.PAGESPEED_API_KEY
        self.timeout = timeout or settings.PAGESPEED_TIMEOUT
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def analyze(self, url: str, strategy: str = "mobile") -> dict[str, Any]:
        """
        Analyze a URL with PageSpeed Insights.

        Args:
            url: The URL to analyze
            strategy: 'mobile' or 'desktop'

        Returns:
            Parsed analysis results with score, metrics, and opportunities
        """
        if not self.api_key:
            logger.warning("PageSpeed API key not configured")
            return {
                "success": False,
                "error": "PageSpeed API key not configured",
                "url": url,
                "strategy": strategy,
            }

        params = [
            ("url", url),
            ("strategy", strategy),
            ("key", self.api_key),
            ("category", "performance"),
        ]

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                logger.info(f"[PSI] Analyzing {url} ({strategy})")
                response = await client.get(self.BASE_URL, params=params)
                response.raise_for_status()
                data = response.json()

            return self._parse_response(data, url, strategy)

        except httpx.TimeoutException:
            logger.error(f"[PSI] Timeout analyzing {url}")
            return {
                "success": False,
                "error": "Request timeout",
                "url": url,
                "strategy": strategy,
            }
        except httpx.HTTPStatusError as e:
            error_msg = f"HTTP {e.response.status_code}"
            if e.response.status_code == 429:
                error_msg = "Rate limit exceeded"
            elif e.response.status_code == 400:
                error_msg = "Invalid URL or request"
            logger.error(f"[PSI] Error analyzing {url}: {error_msg}")
            return {
                "success": False,
                "error": error_msg,
                "url": url,
                "strategy": strategy,
            }
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[PSI] Unexpected error analyzing {url}: {e}")
            return {
                "success": False,
                "error": str(e),
                "url": url,
                "strategy": strategy,
            }

    def _parse_response(self, data: dict, url: str, strategy: str) -> dict[str, Any]:
        """Parse PSI API response into structured format."""
        lighthouse = data.get("lighthouseResult", {})
        loading_experience = data.get("loadingExperience", {})

        performance = lighthouse.get("categories", {}).get("performance", {})
        score = performance.get("score")
        performance_score = int(round(score * 100)) if score is not None else None

        audits = lighthouse.get("audits", {})

        return {
            "success": True,
            "url": url,
            "strategy": strategy,
            "performance_score": performance_score,
            "metrics": self._extract_metrics(audits),
            "field_data": self._extract_field_data(loading_experience),
            "opportunities": self._extract_opportunities(audits),
            "diagnostics": self._extract_diagnostics(audits),
        }

    def _extract_metrics(self, audits: dict) -> dict[str, Any]:
        """Extract lab metrics from audits."""
        audit_map = {
            "largest-contentful-paint": "lcp_ms",
            "first-contentful-paint": "fcp_ms",
            "total-blocking-time": "tbt_ms",
            "max-potential-fid": "max_potential_fid_ms",
            "server-response-time": "ttfb_ms",
            "speed-index": "speed_index_ms",
            "interactive": "tti_ms",
        }
        metrics = {}
        for audit_id, name in audit_map.items():
            value = audits.get(audit_id, {}).get("numericValue")
            if value is not None:
                metrics[name] = int(value)

        cls = audits.get("cumulative-layout-shift", {}).get("numericValue")
        if cls is not None:
            metrics["cls"] = round(cls, 3)

        return metrics

    def _extract_field_data(self, loading_experience: dict) -> dict[str, Any]:
        """Extract Chrome User Experience Report (CrUX) field data."""
        if not loading_experience or not loading_experience.get("metrics"):
            return {}

        field_metrics = loading_experience.get("metrics", {})
        field_data = {}

        metric_map = {
            "LARGEST_CONTENTFUL_PAINT_MS": "lcp_ms",
            "FIRST_INPUT_DELAY_MS": "fid_ms",
            "CUMULATIVE_LAYOUT_SHIFT_SCORE": "cls",
            "FIRST_CONTENTFUL_PAINT_MS": "fcp_ms",
            "INTERACTION_TO_NEXT_PAINT": "inp_ms",
        }

        for psi_name, our_name in metric_map.items():
            metric = field_metrics.get(psi_name, {})
            if metric.get("percentile") is not None:
                value = metric["percentile"]
                if our_name == "cls":
                    value = value / 100  # PSI returns CLS * 100
                field_data[our_name] = value
                if metric.get("category"):
                    field_data[f"{our_name}_category"] = metric["category"]

        if loading_experience.get("overall_category"):
            field_data["overall_category"] = loading_experience["overall_category"]

        return field_data

    def _extract_opportunities(self, audits: dict) -> list[dict[str, Any]]:
        """Extract optimization opportunities from audits."""
        opportunities = []

        for audit_id in self.OPPORTUNITY_IDS:
            audit = audits.get(audit_id, {})

            # Only include if there's a potential saving
            if audit.get("score") is not None and audit["score"] < 1:
                details = audit.get("details", {})
                savings_ms = details.get("overallSavingsMs") or 0
                savings_bytes = details.get("overallSavingsBytes") or 0

                opportunities.append({
                    "id": audit_id,
                    "title": audit.get("title", audit_id),
                    "description": audit.get("description", ""),
                    "score": audit["score"],
                    "savings_ms": int(savings_ms),
                    "savings_bytes": int(savings_bytes),
                    "display_value": audit.get("displayValue", ""),
                })

        opportunities.sort(key=lambda x: (x["savings_ms"], x["savings_bytes"]), reverse=True)
        return opportunities

    def _extract_diagnostics(self, audits: dict) -> dict[str, Any]:
        """Extract diagnostic information from audits."""
        diagnostics = {}

        for audit_id in self.DIAGNOSTIC_IDS:
            audit = audits.get(audit_id, {})
            if audit:
                diagnostics[audit_id] = {
                    "title": audit.get("title", ""),
                    "display_value": audit.get("displayValue", ""),
                    "score": audit.get("score"),
                }

        return diagnostics
