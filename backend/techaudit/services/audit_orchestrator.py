"""
Technical audit orchestration.

Runs the enabled analyzers concurrently, isolates their failures, and merges
their results into one AuditReport with a weighted overall score.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from techaudit.config import settings
from techaudit.core.url_safety import validate_url
from techaudit.integrations.cache import AnalysisCache
from techaudit.integrations.http import Fetcher
from techaudit.integrations.pagespeed import PageSpeedClient
from techaudit.integrations.tls import CertificateInspector
from techaudit.schemas.audit import AuditOptions, AuditReportResponse, AuditRequest
from techaudit.services.canonical_analyzer import CanonicalAnalyzer
from techaudit.services.document import PageDocument
from techaudit.services.performance_analyzer import PerformanceSignalAnalyzer
from techaudit.services.results import (
    AnalyzerResult,
    AuditReport,
    AuditTarget,
    Impact,
    Recommendation,
    Severity,
    SystemClock,
    sort_recommendations,
)
from techaudit.services.security_analyzer import TransportSecurityAnalyzer
from techaudit.services.sitemap_analyzer import RobotsSitemapAnalyzer
from techaudit.services.structured_data import StructuredDataAnalyzer

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    "page_speed": 25,
    "security": 20,
    "mobile_optimization": 20,
    "structured_data": 15,
    "canonical_urls": 10,
    "sitemap_analysis": 10,
}

SLOT_OPTIONS = {
    "page_speed": "include_page_speed",
    "mobile_optimization": "include_mobile_analysis",
    "security": "include_security_analysis",
    "sitemap_analysis": "include_sitemap_analysis",
    "canonical_urls": "include_canonical_analysis",
    "structured_data": "include_structured_data",
}

SERVICE_LABELS = {
    "page_speed": "Page speed",
    "mobile_optimization": "Mobile optimization",
    "security": "Security",
    "sitemap_analysis": "Sitemap",
    "canonical_urls": "Canonical URL",
    "structured_data": "Structured data",
}

NEEDS_IMPROVEMENT_SCORE = 70


def weighted_score(results: dict[str, AnalyzerResult | None], weights: dict[str, float]) -> int:
    """Weighted mean over the slots that produced a score; 0 when none did."""
    total_weight = 0.0
    total = 0.0
    for slot, result in results.items():
        if result is None or not result.scored:
            continue
        weight = weights.get(slot, 0)
        total_weight += weight
        total += weight * result.score
    if not total_weight:
        return 0
    return round(total / total_weight)


class AuditOrchestrator:
    """Runs one technical audit per `run` call."""

    def __init__(
        self,
        fetcher: Fetcher | None = None,
        cache: AnalysisCache | None = None,
        clock=None,
        pagespeed_client: PageSpeedClient | None = None,
        cert_inspector: CertificateInspector | None = None,
        analyzers: dict[str, Any] | None = None,
        weights: dict[str, float] | None = None,
        timeout: float | None = None,
    ):
        self.fetcher = fetcher
        self.cache = cache or AnalysisCache()
        self.clock = clock or SystemClock()
        self.pagespeed_client = pagespeed_client
        self.cert_inspector = cert_inspector
        self.analyzer_overrides = analyzers or {}
        self.weights = {**DEFAULT_WEIGHTS, **(weights or {})}
        self.timeout = timeout or settings.AUDIT_TIMEOUT

    async def close(self):
        await self.cache.close()

    @asynccontextmanager
    async def _fetcher_scope(self):
        if self.fetcher is not None:
            yield self.fetcher
            return
        # One client per audit so cancelling the audit tears down its connections
        fetcher = Fetcher()
        try:
            yield fetcher
        finally:
            await fetcher.close()

    def _build_analyzers(self, fetcher: Fetcher) -> dict[str, Any]:
        analyzers = {
            "sitemap": RobotsSitemapAnalyzer(fetcher, cache=self.cache, clock=self.clock),
            "canonical": CanonicalAnalyzer(fetcher),
            "security": TransportSecurityAnalyzer(fetcher, cert_inspector=self.cert_inspector, clock=self.clock),
            "performance": PerformanceSignalAnalyzer(pagespeed_client=self.pagespeed_client, cache=self.cache),
            "structured_data": StructuredDataAnalyzer(),
        }
        analyzers.update(self.analyzer_overrides)
        return analyzers

    async def run_request(self, request: AuditRequest) -> AuditReport:
        return await self.run(request.url, request.html, request.dom_summary, request.options)

    async def run(
        self,
        url: str,
        html: str = "",
        dom_summary: dict[str, Any] | None = None,
        options: AuditOptions | dict[str, Any] | None = None,
    ) -> AuditReport:
        """
        Run a technical audit.

        Raises:
            UrlValidationError: the URL is not acceptable; no analyzer runs
            pydantic.ValidationError: options are malformed
        """
        url = validate_url(url)
        if not isinstance(options, AuditOptions):
            options = AuditOptions.model_validate(options or {})
        target = AuditTarget(url=url, html=html or "", dom_summary=dom_summary or {}, options=options.model_dump())

        logger.info(f"Starting technical audit for {url}")
        document = PageDocument(target.html)

        async with self._fetcher_scope() as fetcher:
            analyzers = self._build_analyzers(fetcher)
            jobs = self._jobs(target, document, analyzers)
            results = await self._run_jobs(jobs)

        report = self._aggregate(target, results)
        logger.info(
            f"Technical audit for {url} finished: score {report.technical_score}, "
            f"{len(report.recommendations)} recommendations, {len(report.errors)} errors"
        )
        return report

    def _jobs(self, target: AuditTarget, document: PageDocument, analyzers: dict[str, Any]) -> dict[str, Any]:
        url, html, opts = target.url, target.html, target.options
        factories = {
            "page_speed": lambda: analyzers["performance"].analyze(
                url, html, target.dom_summary, opts, document=document
            ),
            "mobile_optimization": lambda: analyzers["performance"].analyze_mobile(url, html, opts, document=document),
            "security": lambda: analyzers["security"].analyze(url, html, opts, document=document),
            "sitemap_analysis": lambda: analyzers["sitemap"].analyze(url, opts),
            "canonical_urls": lambda: analyzers["canonical"].analyze(url, html, opts, document=document),
            "structured_data": lambda: analyzers["structured_data"].analyze(html, opts, document=document),
        }
        return {slot: factory for slot, factory in factories.items() if opts.get(SLOT_OPTIONS[slot], True)}

    async def _isolated(self, slot: str, factory) -> AnalyzerResult:
        label = SERVICE_LABELS[slot]
        try:
            return await factory()
        except Exception as e:
            logger.error(f"{label} analysis failed: {e}", exc_info=True)
            return AnalyzerResult.failed(f"{label} analysis failed: {e}")

    async def _run_jobs(self, jobs: dict[str, Any]) -> dict[str, AnalyzerResult | None]:
        tasks = {slot: asyncio.create_task(self._isolated(slot, factory)) for slot, factory in jobs.items()}
        try:
            if tasks:
                await asyncio.wait(tasks.values(), timeout=self.timeout)
        finally:
            pending = [task for task in tasks.values() if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        results: dict[str, AnalyzerResult | None] = {slot: None for slot in SLOT_OPTIONS}
        for slot, task in tasks.items():
            if task.cancelled():
                logger.warning(f"{SERVICE_LABELS[slot]} analysis cancelled after {self.timeout}s")
                results[slot] = AnalyzerResult.failed(
                    f"{SERVICE_LABELS[slot]} analysis timed out after {self.timeout}s"
                )
            else:
                results[slot] = task.result()
        return results

    def _aggregate(self, target: AuditTarget, results: dict[str, AnalyzerResult | None]) -> AuditReport:
        technical_score = weighted_score(results, self.weights)

        recommendations: list[Recommendation] = []
        errors: list[dict[str, str]] = []
        for slot, result in results.items():
            if result is None:
                continue
            recommendations.extend(result.recommendations)
            errors.extend({"service": slot, "message": message} for message in result.errors)

        if any(r is not None and r.scored for r in results.values()) and technical_score < NEEDS_IMPROVEMENT_SCORE:
            recommendations.append(Recommendation(
                Severity.WARNING,
                "Technical SEO score needs improvement",
                Impact.HIGH,
                "Address the error-level recommendations first, then the warnings",
                category="technical",
            ))

        return AuditReport(
            url=target.url,
            analyzed_at=self.clock.now(),
            technical_score=technical_score,
            recommendations=sort_recommendations(recommendations),
            errors=errors,
            **results,
        )


async def run_technical_audit(
    url: str,
    html: str = "",
    dom_summary: dict[str, Any] | None = None,
    options: dict[str, Any] | None = None,
    **orchestrator_kwargs,
) -> dict[str, Any]:
    """
    Run an audit and return the JSON-ready report.

    Raises:
        UrlValidationError: if the URL fails validation
    """
    orchestrator = AuditOrchestrator(**orchestrator_kwargs)
    try:
        report = await orchestrator.run(url, html, dom_summary, options)
    finally:
        await orchestrator.close()
    return AuditReportResponse.model_validate(report.to_dict()).model_dump(mode="json")
