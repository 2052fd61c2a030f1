"""
Performance signal analysis.

Core Web Vitals come from PageSpeed Insights when an API key is configured;
otherwise (or when the API fails) a static heuristic estimate is returned.
Mobile friendliness is scored separately from the page markup.
"""
import asyncio
import logging
import re
from typing import Any
from urllib.parse import urlparse

from techaudit.config import settings
from techaudit.integrations.cache import AnalysisCache, NullCache
from techaudit.integrations.pagespeed import PageSpeedClient, rate_metric
from techaudit.services.document import PageDocument
from techaudit.services.results import AnalyzerResult, Impact, Recommendation, Severity

logger = logging.getLogger(__name__)

STRATEGIES = ("mobile", "desktop")

# Heuristic fallback
FALLBACK_BASELINE = 50
FALLBACK_NO_HTTPS_PENALTY = 10
FALLBACK_CDN_BONUS = 5
FALLBACK_LONG_URL_PENALTY = 5
FALLBACK_MAX_URL_LENGTH = 2048
CDN_HOST_INDICATORS = ["cdn", "cache", "static", "assets", "media", "img"]

POOR_SCORE = 50
NEEDS_IMPROVEMENT_SCORE = 70
LOW_OPPORTUNITY_SCORE = 0.5

# name, lab metric key, field metric key, unit
VITALS = [
    ("lcp", "lcp_ms", "lcp_ms", "ms"),
    ("cls", "cls", "cls", ""),
    ("fcp", "fcp_ms", "fcp_ms", "ms"),
    ("fid", "max_potential_fid_ms", "fid_ms", "ms"),
]
VITAL_NAMES = {
    "lcp": "Largest Contentful Paint",
    "cls": "Cumulative Layout Shift",
    "fcp": "First Contentful Paint",
    "fid": "First Input Delay",
}

# Mobile friendliness (sums to 100)
VIEWPORT_POINTS = 25
DEVICE_WIDTH_POINTS = 10
MEDIA_QUERY_POINTS = 15
RESPONSIVE_IMAGE_POINTS = 10
READABLE_TEXT_POINTS = 15
NO_HORIZONTAL_SCROLL_POINTS = 15
NO_PLUGINS_POINTS = 10
MOBILE_FRIENDLY_THRESHOLD = 70
RESPONSIVE_IMAGE_RATIO = 50
MIN_FONT_SIZE_PX = 12
MAX_FIXED_WIDTH_PX = 1000

MEDIA_QUERY_RE = re.compile(r"@media[^{]*\{", re.IGNORECASE)
BREAKPOINT_RE = re.compile(r"(?:min|max)-width\s*:\s*(\d+)px", re.IGNORECASE)
FLEX_GRID_RE = re.compile(r"display\s*:\s*(?:inline-)?(?:flex|grid)", re.IGNORECASE)
FONT_SIZE_RE = re.compile(r"font-size\s*:\s*(\d+(?:\.\d+)?)px", re.IGNORECASE)
FIXED_WIDTH_RE = re.compile(r"(?<![-\w])width\s*:\s*(\d+)px", re.IGNORECASE)


def parse_viewport(content: str) -> dict[str, str]:
    values = {}
    for part in re.split(r"[,;]", content):
        key, _, value = part.partition("=")
        if key.strip():
            values[key.strip().lower()] = value.strip().lower()
    return values


class PerformanceSignalAnalyzer:
    """Page speed (Core Web Vitals) and mobile friendliness."""

    def __init__(
        self,
        pagespeed_client: PageSpeedClient | None = None,
        cache: AnalysisCache | None = None,
    ):
        self.pagespeed = pagespeed_client or PageSpeedClient()
        self.cache = cache or NullCache()

    # ===== Page speed =====

    async def analyze(
        self,
        url: str,
        html: str = "",
        dom_summary: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        document: PageDocument | None = None,
    ) -> AnalyzerResult:
        options = options or {}
        document = PageDocument.ensure(html, document)
        cache_key = self.cache.make_key("pagespeed", url, {"strategies": list(STRATEGIES)})

        if not options.get("force_refresh"):
            cached = await self.cache.get(cache_key)
            if cached:
                return AnalyzerResult.from_dict(cached)

        errors: list[str] = []
        findings = None
        if self.pagespeed.configured:
            mobile, desktop = await asyncio.gather(
                self.pagespeed.analyze(url, "mobile"),
                self.pagespeed.analyze(url, "desktop"),
            )
            if mobile.get("success") or desktop.get("success"):
                findings = self._from_api(mobile, desktop)
            else:
                errors.append(f"PageSpeed API unavailable: {mobile.get('error') or desktop.get('error')}")

        from_api = findings is not None
        if not from_api:
            findings = self._fallback(url)
        findings["static_signals"] = self._static_signals(document, dom_summary or {})

        score = findings["performance_score"]
        result = AnalyzerResult(
            score=score,
            findings=findings,
            recommendations=self._speed_recommendations(findings),
            errors=errors,
        )
        logger.info(f"Performance analysis for {url} scored {result.score} (api={from_api})")

        if from_api:
            await self.cache.set(cache_key, result.to_dict(), settings.PAGESPEED_CACHE_TTL_MINUTES * 60)
        return result

    def _from_api(self, mobile: dict[str, Any], desktop: dict[str, Any]) -> dict[str, Any]:
        primary = mobile if mobile.get("success") else desktop
        lab = primary.get("metrics", {})
        field = primary.get("field_data", {})

        vitals = {}
        for name, lab_key, field_key, unit in VITALS:
            value, source = lab.get(lab_key), "lab"
            if field.get(field_key) is not None:
                value, source = field[field_key], "field"
            if value is None:
                continue
            vitals[name] = {
                "value": value,
                "unit": unit,
                "rating": rate_metric(name, value),
                "source": source,
                "category": field.get(f"{field_key}_category") if source == "field" else None,
            }

        score = primary.get("performance_score")
        return {
            "api_available": True,
            "fallback_analysis": False,
            "performance_score": score if score is not None else 0,
            "mobile_score": mobile.get("performance_score") if mobile.get("success") else None,
            "desktop_score": desktop.get("performance_score") if desktop.get("success") else None,
            "core_web_vitals": vitals,
            "lab_data": lab,
            "field_data": field,
            "opportunities": primary.get("opportunities", []),
            "diagnostics": primary.get("diagnostics", {}),
        }

    def _fallback(self, url: str) -> dict[str, Any]:
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        checks = {
            "https": parsed.scheme == "https",
            "possible_cdn": any(indicator in host for indicator in CDN_HOST_INDICATORS),
            "url_length_ok": len(url) < FALLBACK_MAX_URL_LENGTH,
        }

        score = FALLBACK_BASELINE
        if not checks["https"]:
            score -= FALLBACK_NO_HTTPS_PENALTY
        if checks["possible_cdn"]:
            score += FALLBACK_CDN_BONUS
        if not checks["url_length_ok"]:
            score -= FALLBACK_LONG_URL_PENALTY

        return {
            "api_available": False,
            "fallback_analysis": True,
            "fallback_checks": checks,
            "performance_score": max(0, min(100, score)),
            "mobile_score": None,
            "desktop_score": None,
            "core_web_vitals": {},
            "lab_data": {},
            "field_data": {},
            "opportunities": [],
            "diagnostics": {},
        }

    def _static_signals(self, document: PageDocument, dom_summary: dict[str, Any]) -> dict[str, Any]:
        head = document.soup.find("head")
        blocking = 0
        if head is not None:
            blocking = sum(
                1 for s in head.find_all("script", src=True)
                if not s.has_attr("async") and not s.has_attr("defer")
            )
        return {
            "html_bytes": len(document.html.encode("utf-8")),
            "scripts_count": dom_summary.get("scripts_count", len(document.find_all("script", src=True))),
            "stylesheets_count": dom_summary.get("stylesheets_count", len(document.links_with_rel("stylesheet"))),
            "images_count": dom_summary.get("images_count", len(document.find_all("img"))),
            "render_blocking_scripts": blocking,
        }

    def _speed_recommendations(self, findings: dict[str, Any]) -> list[Recommendation]:
        recs = []
        score = findings["performance_score"]

        if score < POOR_SCORE:
            recs.append(Recommendation(
                Severity.ERROR,
                "Poor page speed performance",
                Impact.HIGH,
                "Reduce render-blocking resources, compress images and enable caching",
                category="performance",
            ))
        elif score < NEEDS_IMPROVEMENT_SCORE:
            recs.append(Recommendation(
                Severity.WARNING,
                "Page speed needs improvement",
                Impact.MEDIUM,
                "Work through the listed optimization opportunities",
                category="performance",
            ))

        for name, vital in findings["core_web_vitals"].items():
            if vital["rating"] == "poor":
                recs.append(Recommendation(
                    Severity.WARNING,
                    f"Poor {VITAL_NAMES[name]} ({vital['value']}{vital['unit']})",
                    Impact.HIGH,
                    f"Bring {name.upper()} under the 'good' threshold",
                    category="performance",
                ))

        for opportunity in findings["opportunities"]:
            if opportunity["score"] < LOW_OPPORTUNITY_SCORE:
                recs.append(Recommendation(
                    Severity.INFO,
                    f"Optimization opportunity: {opportunity['title']}",
                    Impact.MEDIUM,
                    opportunity.get("display_value") or opportunity.get("description", ""),
                    category="performance",
                ))

        if findings["fallback_analysis"]:
            recs.append(Recommendation(
                Severity.INFO,
                "Performance score estimated without PageSpeed data",
                Impact.LOW,
                "Configure PAGESPEED_API_KEY for measured Core Web Vitals",
                category="performance",
            ))

        return recs

    # ===== Mobile =====

    async def analyze_mobile(
        self,
        url: str,
        html: str = "",
        options: dict[str, Any] | None = None,
        document: PageDocument | None = None,
    ) -> AnalyzerResult:
        document = PageDocument.ensure(html, document)
        viewport = self._viewport_configuration(document)
        responsive = self._responsive_design(document)
        usability = self._mobile_usability(document)

        score = 0
        if viewport["has_viewport_meta"]:
            score += VIEWPORT_POINTS
            if viewport["width_device_width"]:
                score += DEVICE_WIDTH_POINTS
        if responsive["media_queries"]:
            score += MEDIA_QUERY_POINTS
        if responsive["responsive_images"]["percentage"] > RESPONSIVE_IMAGE_RATIO:
            score += RESPONSIVE_IMAGE_POINTS
        if usability["readable_text"]:
            score += READABLE_TEXT_POINTS
        if usability["no_horizontal_scroll"]:
            score += NO_HORIZONTAL_SCROLL_POINTS
        if usability["no_plugins"]:
            score += NO_PLUGINS_POINTS

        logger.info(f"Mobile analysis for {url} scored {score}")
        return AnalyzerResult(
            score=score,
            findings={
                "viewport_configuration": viewport,
                "responsive_design": responsive,
                "mobile_usability": usability,
                "mobile_score": score,
                "mobile_friendly": score >= MOBILE_FRIENDLY_THRESHOLD,
            },
            recommendations=self._mobile_recommendations(viewport, responsive, usability),
        )

    def _viewport_configuration(self, document: PageDocument) -> dict[str, Any]:
        content = document.meta_content(name="viewport")
        if content is None:
            return {
                "has_viewport_meta": False,
                "viewport_content": None,
                "width_device_width": False,
                "initial_scale_set": False,
                "user_scalable": True,
                "viewport_score": 0,
            }

        values = parse_viewport(content)
        device_width = values.get("width") == "device-width"
        initial_scale = values.get("initial-scale") in ("1", "1.0")
        user_scalable = values.get("user-scalable", "yes") not in ("no", "0")
        no_max_scale = "maximum-scale" not in values

        return {
            "has_viewport_meta": True,
            "viewport_content": content,
            "width_device_width": device_width,
            "initial_scale_set": initial_scale,
            "user_scalable": user_scalable,
            "viewport_score": (
                (40 if device_width else 0)
                + (30 if initial_scale else 0)
                + (20 if user_scalable else 0)
                + (10 if no_max_scale else 0)
            ),
        }

    def _responsive_design(self, document: PageDocument) -> dict[str, Any]:
        css = document.style_text()
        media_queries = len(MEDIA_QUERY_RE.findall(css))
        media_queries += sum(1 for link in document.links_with_rel("stylesheet") if "(" in (link.get("media") or ""))

        images = document.find_all("img")
        responsive = sum(
            1 for img in images
            if img.has_attr("srcset") or img.has_attr("sizes") or (img.parent is not None and img.parent.name == "picture")
        )

        return {
            "media_queries": media_queries,
            "breakpoints": sorted({int(px) for px in BREAKPOINT_RE.findall(css)}),
            "flexible_grids": bool(FLEX_GRID_RE.search(css)),
            "responsive_images": {
                "total": len(images),
                "responsive": responsive,
                "percentage": round(responsive / len(images) * 100, 1) if images else 0,
            },
        }

    def _mobile_usability(self, document: PageDocument) -> dict[str, Any]:
        css = document.style_text()
        small_fonts = [float(size) for size in FONT_SIZE_RE.findall(css) if float(size) < MIN_FONT_SIZE_PX]
        wide_elements = [int(px) for px in FIXED_WIDTH_RE.findall(css) if int(px) >= MAX_FIXED_WIDTH_PX]
        plugins = len(document.find_all(["object", "embed", "applet"]))

        return {
            "tap_targets": len(document.find_all(["a", "button"])),
            "small_font_declarations": len(small_fonts),
            "readable_text": not small_fonts,
            "fixed_width_declarations": len(wide_elements),
            "no_horizontal_scroll": not wide_elements,
            "plugins": plugins,
            "no_plugins": plugins == 0,
        }

    def _mobile_recommendations(
        self,
        viewport: dict[str, Any],
        responsive: dict[str, Any],
        usability: dict[str, Any],
    ) -> list[Recommendation]:
        recs = []

        if not viewport["has_viewport_meta"]:
            recs.append(Recommendation(
                Severity.ERROR,
                "Missing viewport meta tag",
                Impact.HIGH,
                'Add <meta name="viewport" content="width=device-width, initial-scale=1">',
                category="mobile",
            ))
        elif not viewport["width_device_width"]:
            recs.append(Recommendation(
                Severity.WARNING,
                "Viewport not set to device width",
                Impact.MEDIUM,
                "Set width=device-width in the viewport meta tag",
                category="mobile",
            ))
        if viewport["has_viewport_meta"] and not viewport["user_scalable"]:
            recs.append(Recommendation(
                Severity.INFO,
                "Viewport disables user scaling",
                Impact.LOW,
                "Remove user-scalable=no so visitors can zoom",
                category="mobile",
            ))

        if not responsive["media_queries"]:
            recs.append(Recommendation(
                Severity.WARNING,
                "No media queries detected",
                Impact.MEDIUM,
                "Use CSS media queries to adapt the layout to small screens",
                category="mobile",
            ))

        images = responsive["responsive_images"]
        if images["total"] and images["percentage"] <= RESPONSIVE_IMAGE_RATIO:
            recs.append(Recommendation(
                Severity.INFO,
                "Few responsive images detected",
                Impact.LOW,
                "Serve images with srcset/sizes or <picture>",
                category="mobile",
            ))

        if not usability["readable_text"]:
            recs.append(Recommendation(
                Severity.INFO,
                "Text may be too small on mobile devices",
                Impact.LOW,
                f"Use font sizes of at least {MIN_FONT_SIZE_PX}px",
                category="mobile",
            ))
        if not usability["no_plugins"]:
            recs.append(Recommendation(
                Severity.WARNING,
                "Page uses browser plugins",
                Impact.MEDIUM,
                "Replace <object>/<embed> content with native HTML",
                category="mobile",
            ))

        return recs
