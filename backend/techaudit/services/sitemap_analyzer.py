"""
Robots.txt and XML sitemap analysis.

Fetches robots.txt, discovers sitemaps (robots references first, then a
fixed list of conventional paths), parses each sitemap, samples its URLs
for live accessibility and scores the site's crawlability.
"""
import asyncio
import logging
import zlib
from collections import Counter
from typing import Any
from urllib.parse import urlparse

from techaudit.config import settings
from techaudit.core.exceptions import RECOVERABLE_ERRORS
from techaudit.core.url_safety import is_safe_url
from techaudit.integrations.cache import AnalysisCache, NullCache
from techaudit.integrations.http import Fetcher
from techaudit.services.results import (
    AnalyzerResult,
    Impact,
    Recommendation,
    Severity,
    SystemClock,
)
from techaudit.services.robots import parse_robots_txt
from techaudit.services.sitemap_parser import (
    SitemapSizeError,
    child_to_dict,
    decompress,
    is_gzip,
    parse_sitemap_xml,
)

logger = logging.getLogger(__name__)

CONVENTIONAL_SITEMAP_PATHS = ["/sitemap.xml", "/sitemap_index.xml", "/sitemaps.xml", "/sitemap1.xml"]
SITEMAP_URL_LIMIT = 50000
MAX_INACCESSIBLE_SAMPLE = 10

# Score weights (sum to 100)
ROBOTS_ACCESSIBLE_POINTS = 20
ROBOTS_SITEMAP_BONUS = 10
SITEMAP_FOUND_POINTS = 20
SITEMAP_REACHABLE_POINTS = 20
URL_ACCESSIBILITY_POINTS = 25
QUALITY_POINTS_PER_SIGNAL = 5
QUALITY_POINTS_MAX = 15


class RobotsSitemapAnalyzer:
    """Crawlability analysis from robots.txt and XML sitemaps."""

    def __init__(
        self,
        fetcher: Fetcher,
        cache: AnalysisCache | None = None,
        clock=None,
        timeout: float | None = None,
        probe_timeout: float | None = None,
        accessibility_timeout: float | None = None,
    ):
        self.fetcher = fetcher
        self.cache = cache or NullCache()
        self.clock = clock or SystemClock()
        self.timeout = timeout or settings.SITEMAP_TIMEOUT
        self.probe_timeout = probe_timeout or settings.SITEMAP_PROBE_TIMEOUT
        self.accessibility_timeout = accessibility_timeout or settings.ACCESSIBILITY_TIMEOUT

    async def analyze(self, url: str, options: dict[str, Any] | None = None) -> AnalyzerResult:
        options = options or {}
        parsed = urlparse(url)
        base_url = f"{parsed.scheme}://{parsed.netloc}"
        max_urls = options.get("max_urls_to_analyze") or settings.SITEMAP_MAX_URLS
        max_tests = options.get("max_accessibility_tests")
        if max_tests is None:
            max_tests = settings.ACCESSIBILITY_MAX_TESTS

        cache_key = self.cache.make_key(
            "sitemap", base_url, {"max_urls": max_urls, "max_tests": max_tests}
        )
        if not options.get("force_refresh"):
            cached = await self.cache.get(cache_key)
            if cached:
                return AnalyzerResult.from_dict(cached)

        logger.info(f"Analyzing robots.txt and sitemaps for {base_url}")
        errors: list[str] = []

        robots = await self._analyze_robots(base_url, errors)
        sitemap_urls = await self._discover_sitemaps(base_url, robots["sitemaps"], errors)
        sitemaps = await asyncio.gather(
            *(self._analyze_sitemap(sitemap_url, max_urls, errors) for sitemap_url in sitemap_urls)
        )
        url_accessibility = await self._test_url_accessibility(list(sitemaps), max_tests)

        accessibility = self._accessibility_summary(robots, list(sitemaps), url_accessibility)
        score = self._calculate_score(robots, list(sitemaps), url_accessibility)

        result = AnalyzerResult(
            score=score,
            findings={
                "robots_txt": robots,
                "sitemaps": list(sitemaps),
                "discovered_sitemaps": sitemap_urls,
                "url_accessibility": url_accessibility,
                "accessibility": accessibility,
                "sitemap_score": score,
            },
            recommendations=self._recommendations(robots, list(sitemaps), url_accessibility),
            errors=errors,
        )
        logger.info(f"Sitemap analysis for {base_url} scored {result.score}")

        if not errors:
            await self.cache.set(cache_key, result.to_dict(), settings.SITEMAP_CACHE_TTL_MINUTES * 60)
        return result

    # ===== robots.txt =====

    async def _analyze_robots(self, base_url: str, errors: list[str]) -> dict[str, Any]:
        robots_url = f"{base_url}/robots.txt"
        result: dict[str, Any] = {
            "url": robots_url,
            "accessible": False,
            "status_code": None,
            "content": "",
            "size": 0,
            **parse_robots_txt("").to_dict(),
        }

        try:
            response = await self.fetcher.get(robots_url, timeout=self.timeout)
        except RECOVERABLE_ERRORS as e:
            errors.append(f"robots.txt could not be fetched: {e}")
            return result

        result["status_code"] = response.status_code
        if not response.is_success:
            return result

        content = response.text
        result.update({
            "accessible": True,
            "content": content,
            "size": len(response.content),
            **parse_robots_txt(content).to_dict(),
        })
        return result

    # ===== Discovery =====

    async def _discover_sitemaps(self, base_url: str, robots_sitemaps: list[str], errors: list[str]) -> list[str]:
        discovered = []
        for sitemap_url in robots_sitemaps:
            if not is_safe_url(sitemap_url):
                errors.append(f"Blocked unsafe sitemap URL {sitemap_url}")
                continue
            if sitemap_url not in discovered:
                discovered.append(sitemap_url)

        if discovered:
            return discovered

        candidates = [f"{base_url}{path}" for path in CONVENTIONAL_SITEMAP_PATHS]
        found = await asyncio.gather(*(self._probe_sitemap(c) for c in candidates))
        return [c for c, ok in zip(candidates, found) if ok and c not in discovered]

    async def _probe_sitemap(self, url: str) -> bool:
        try:
            response = await self.fetcher.exists(url, timeout=self.probe_timeout)
        except RECOVERABLE_ERRORS:
            return False
        content_type = response.content_type.lower()
        return response.is_success and ("xml" in content_type or "text" in content_type)

    # ===== Sitemaps =====

    async def _analyze_sitemap(self, url: str, max_urls: int, errors: list[str]) -> dict[str, Any]:
        result: dict[str, Any] = {
            "url": url,
            "accessible": False,
            "status_code": None,
            "content_type": "",
            "size": 0,
            "type": "unknown",
            "urls": [],
            "child_sitemaps": [],
            "compression": None,
            "validation": {"valid_xml": False, "errors": [], "warnings": []},
            "statistics": {},
            "max_urls_reached": False,
            "max_size_reached": False,
        }

        try:
            response = await self.fetcher.get(url, timeout=self.timeout, max_bytes=settings.SITEMAP_MAX_BYTES)
        except RECOVERABLE_ERRORS as e:
            errors.append(f"Sitemap {url} could not be fetched: {e}")
            return result

        result["status_code"] = response.status_code
        result["content_type"] = response.content_type
        if not response.is_success:
            errors.append(f"Sitemap {url} returned HTTP {response.status_code}")
            return result

        result["accessible"] = True
        content = response.content
        result["size"] = len(content)

        # httpx has already undone a gzip Content-Encoding; .xml.gz bodies still carry the magic bytes
        if "gzip" in response.header("content-encoding").lower():
            result["compression"] = "gzip"
        if is_gzip(content):
            result["compression"] = "gzip"
            try:
                content = decompress(content, settings.SITEMAP_MAX_DECOMPRESSED_BYTES)
            except SitemapSizeError as e:
                result["validation"]["errors"].append(str(e))
                result["max_size_reached"] = True
                errors.append(f"Sitemap {url}: {e}")
                return result
            except zlib.error as e:
                result["validation"]["errors"].append(f"Invalid gzip data: {e}")
                errors.append(f"Sitemap {url}: invalid gzip data")
                return result

        parsed = parse_sitemap_xml(content, max_urls=max_urls, now=self.clock.now())
        if response.truncated:
            parsed.validation.errors.insert(0, f"Sitemap exceeds {settings.SITEMAP_MAX_BYTES} bytes and was truncated")
            result["max_size_reached"] = True
        if not parsed.validation.valid_xml:
            errors.append(f"Sitemap {url}: invalid XML")

        result.update({
            "type": parsed.type,
            "urls": parsed.urls,
            "child_sitemaps": [child_to_dict(c) for c in parsed.child_sitemaps],
            "validation": {
                "valid_xml": parsed.validation.valid_xml,
                "errors": parsed.validation.errors,
                "warnings": parsed.validation.warnings,
            },
            "statistics": parsed.statistics,
            "max_urls_reached": parsed.max_urls_reached,
        })
        return result

    # ===== URL accessibility =====

    async def _probe_status(self, url: str) -> int | None:
        try:
            response = await self.fetcher.exists(url, timeout=self.accessibility_timeout)
        except RECOVERABLE_ERRORS:
            return None
        return response.status_code

    async def _test_url_accessibility(self, sitemaps: list[dict[str, Any]], max_tests: int) -> dict[str, Any]:
        sample: list[str] = []
        for sitemap in sitemaps:
            for page_url in sitemap["urls"]:
                if len(sample) >= max_tests:
                    break
                if page_url not in sample and is_safe_url(page_url):
                    sample.append(page_url)

        statuses = await asyncio.gather(*(self._probe_status(u) for u in sample))

        distribution = Counter()
        accessible = 0
        inaccessible = []
        for page_url, status in zip(sample, statuses):
            distribution[str(status) if status is not None else "error"] += 1
            if status is not None and 200 <= status < 300:
                accessible += 1
            else:
                inaccessible.append({"url": page_url, "status_code": status})

        tested = len(sample)
        return {
            "tested": tested,
            "accessible": accessible,
            "inaccessible": tested - accessible,
            "accessibility_rate": round(accessible / tested * 100, 2) if tested else 0,
            "status_code_distribution": dict(distribution),
            "sample_inaccessible": inaccessible[:MAX_INACCESSIBLE_SAMPLE],
        }

    # ===== Scoring =====

    def _accessibility_summary(
        self,
        robots: dict[str, Any],
        sitemaps: list[dict[str, Any]],
        url_accessibility: dict[str, Any],
    ) -> dict[str, Any]:
        reachable = [s for s in sitemaps if s["accessible"]]
        summary = {
            "robots_txt_accessible": robots["accessible"],
            "robots_txt_has_sitemap": bool(robots["sitemaps"]),
            "total_sitemaps_found": len(sitemaps),
            "total_sitemap_indexes": sum(1 for s in sitemaps if s["type"] == "sitemap_index"),
            "sitemaps_accessible": len(reachable),
            "total_urls_in_sitemaps": sum(s["statistics"].get("total_urls", 0) for s in reachable),
        }
        score = 25 if robots["accessible"] else 0
        if reachable:
            score += 35
        if url_accessibility["tested"]:
            score += 40 * url_accessibility["accessible"] / url_accessibility["tested"]
        summary["accessibility_score"] = round(score)
        return summary

    def _calculate_score(
        self,
        robots: dict[str, Any],
        sitemaps: list[dict[str, Any]],
        url_accessibility: dict[str, Any],
    ) -> int:
        score = 0.0

        if robots["accessible"]:
            score += ROBOTS_ACCESSIBLE_POINTS
            if robots["sitemaps"]:
                score += ROBOTS_SITEMAP_BONUS

        if sitemaps:
            score += SITEMAP_FOUND_POINTS
            reachable = sum(1 for s in sitemaps if s["accessible"])
            score += SITEMAP_REACHABLE_POINTS * reachable / len(sitemaps)

        if url_accessibility["tested"]:
            score += URL_ACCESSIBILITY_POINTS * url_accessibility["accessible"] / url_accessibility["tested"]

        quality = 0
        for sitemap in sitemaps:
            if not sitemap["accessible"]:
                continue
            stats = sitemap["statistics"]
            if stats.get("with_lastmod"):
                quality += QUALITY_POINTS_PER_SIGNAL
            if stats.get("recent_updates"):
                quality += QUALITY_POINTS_PER_SIGNAL
            if sitemap["validation"]["valid_xml"] and not sitemap["validation"]["errors"]:
                quality += QUALITY_POINTS_PER_SIGNAL
        score += min(quality, QUALITY_POINTS_MAX)

        return round(min(100, score))

    # ===== Recommendations =====

    def _recommendations(
        self,
        robots: dict[str, Any],
        sitemaps: list[dict[str, Any]],
        url_accessibility: dict[str, Any],
    ) -> list[Recommendation]:
        recs = []

        if not robots["accessible"]:
            recs.append(Recommendation(
                Severity.ERROR,
                "robots.txt file not accessible",
                Impact.HIGH,
                "Create a robots.txt file at the site root that returns HTTP 200",
                category="sitemap",
            ))
        else:
            if not robots["sitemaps"]:
                recs.append(Recommendation(
                    Severity.WARNING,
                    "No sitemap reference in robots.txt",
                    Impact.MEDIUM,
                    "Add a 'Sitemap: https://.../sitemap.xml' line to robots.txt",
                    category="sitemap",
                ))
            if robots["syntax_errors"]:
                recs.append(Recommendation(
                    Severity.WARNING,
                    "Syntax errors found in robots.txt",
                    Impact.MEDIUM,
                    "Fix the reported lines: " + "; ".join(robots["syntax_errors"][:5]),
                    category="sitemap",
                ))

        if not sitemaps:
            recs.append(Recommendation(
                Severity.ERROR,
                "No XML sitemap found",
                Impact.HIGH,
                "Publish an XML sitemap and reference it from robots.txt",
                category="sitemap",
            ))
        else:
            unreachable = [s for s in sitemaps if not s["accessible"]]
            if unreachable:
                recs.append(Recommendation(
                    Severity.WARNING,
                    f"{len(unreachable)} sitemap(s) not accessible",
                    Impact.MEDIUM,
                    "Make sure every sitemap URL returns HTTP 200",
                    category="sitemap",
                ))
            if any(s["accessible"] and s["validation"]["errors"] for s in sitemaps):
                recs.append(Recommendation(
                    Severity.WARNING,
                    "XML validation errors in sitemap",
                    Impact.MEDIUM,
                    "Fix malformed XML and invalid <loc> entries in the sitemap",
                    category="sitemap",
                ))
            if any(s["statistics"].get("total_urls", 0) > SITEMAP_URL_LIMIT for s in sitemaps):
                recs.append(Recommendation(
                    Severity.INFO,
                    "Sitemap contains more than 50,000 URLs",
                    Impact.LOW,
                    "Split the sitemap and list the parts in a sitemap index",
                    category="sitemap",
                ))

        if url_accessibility["inaccessible"]:
            pct = round(url_accessibility["inaccessible"] / url_accessibility["tested"] * 100)
            recs.append(Recommendation(
                Severity.WARNING,
                f"{pct}% of tested URLs are inaccessible",
                Impact.MEDIUM,
                "Remove broken or redirecting URLs from the sitemap",
                category="sitemap",
            ))

        return recs
