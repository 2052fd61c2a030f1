"""
Tests for audit orchestration and the end-to-end pipeline.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pydantic
import pytest

from techaudit.core.exceptions import UrlValidationError
from techaudit.integrations.cache import NullCache
from techaudit.integrations.pagespeed import PageSpeedClient
from techaudit.services.audit_orchestrator import (
    DEFAULT_WEIGHTS,
    AuditOrchestrator,
    run_technical_audit,
    weighted_score,
)
from techaudit.services.results import AnalyzerResult, Impact, Recommendation, Severity
from tests.fixtures.fakes import FakeInspector, make_cert
from tests.fixtures.sample_pages import SAMPLE_ROBOTS_TXT, SAMPLE_URLSET_XML, WELL_FORMED_PAGE_HTML

SCORES = {
    "page_speed": 80,
    "mobile_optimization": 60,
    "security": 90,
    "sitemap_analysis": 50,
    "canonical_urls": 70,
    "structured_data": 100,
}


def fake_analyzers(scores=SCORES, **overrides):
    """Analyzer stand-ins returning fixed results, keyed like the orchestrator's analyzers."""
    def result(slot):
        return overrides.get(slot, AsyncMock(return_value=AnalyzerResult(score=scores[slot])))

    performance = MagicMock()
    performance.analyze = result("page_speed")
    performance.analyze_mobile = result("mobile_optimization")
    security = MagicMock()
    security.analyze = result("security")
    sitemap = MagicMock()
    sitemap.analyze = result("sitemap_analysis")
    canonical = MagicMock()
    canonical.analyze = result("canonical_urls")
    structured = MagicMock()
    structured.analyze = result("structured_data")
    return {
        "performance": performance,
        "security": security,
        "sitemap": sitemap,
        "canonical": canonical,
        "structured_data": structured,
    }


@pytest.fixture
def orchestrator_factory(make_fetcher, fixed_clock):
    def _make(analyzers, **kwargs):
        return AuditOrchestrator(
            fetcher=make_fetcher({}),
            cache=NullCache(),
            clock=fixed_clock,
            analyzers=analyzers,
            **kwargs,
        )
    return _make


class TestWeightedScore:
    """Tests for weighted_score."""

    def test_all_slots(self):
        results = {slot: AnalyzerResult(score=score) for slot, score in SCORES.items()}
        assert weighted_score(results, DEFAULT_WEIGHTS) == 77

    def test_renormalizes_over_scored_slots(self):
        results = {
            "page_speed": AnalyzerResult(score=100),
            "security": AnalyzerResult.failed("boom"),
            "structured_data": None,
        }
        assert weighted_score(results, DEFAULT_WEIGHTS) == 100

    def test_nothing_scored(self):
        assert weighted_score({"security": AnalyzerResult.failed("boom")}, DEFAULT_WEIGHTS) == 0


class TestAuditOrchestrator:
    """Tests for AuditOrchestrator.run."""

    @pytest.mark.asyncio
    async def test_invalid_url_runs_nothing(self, orchestrator_factory):
        analyzers = fake_analyzers()
        orchestrator = orchestrator_factory(analyzers)

        with pytest.raises(UrlValidationError):
            await orchestrator.run("http://localhost/admin")

        analyzers["security"].analyze.assert_not_called()
        analyzers["performance"].analyze.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_options_rejected(self, orchestrator_factory):
        orchestrator = orchestrator_factory(fake_analyzers())
        with pytest.raises(pydantic.ValidationError):
            await orchestrator.run("https://example.com", options={"max_urls_to_analyze": 0})

    @pytest.mark.asyncio
    async def test_merges_all_slots(self, orchestrator_factory, fixed_clock):
        report = await orchestrator_factory(fake_analyzers()).run("https://example.com", "<html></html>")

        assert report.url == "https://example.com"
        assert report.analyzed_at == fixed_clock.now()
        assert report.technical_score == 77
        assert report.security.score == 90
        assert report.errors == []

    @pytest.mark.asyncio
    async def test_failing_analyzer_is_isolated(self, orchestrator_factory):
        analyzers = fake_analyzers(security=AsyncMock(side_effect=RuntimeError("boom")))
        report = await orchestrator_factory(analyzers).run("https://example.com")

        assert report.security.score == 0
        assert report.security.scored is False
        assert report.errors == [{"service": "security", "message": "Security analysis failed: boom"}]
        assert report.technical_score == 74
        assert report.structured_data.score == 100

    @pytest.mark.asyncio
    async def test_disabled_slots_are_skipped(self, orchestrator_factory):
        analyzers = fake_analyzers()
        report = await orchestrator_factory(analyzers).run(
            "https://example.com",
            options={"include_page_speed": False, "include_sitemap_analysis": False},
        )

        assert report.page_speed is None
        assert report.sitemap_analysis is None
        analyzers["performance"].analyze.assert_not_called()
        analyzers["sitemap"].analyze.assert_not_called()
        assert report.mobile_optimization.score == 60

    @pytest.mark.asyncio
    async def test_slow_analyzer_times_out(self, orchestrator_factory):
        async def slow(*args, **kwargs):
            await asyncio.sleep(10)

        analyzers = fake_analyzers(sitemap_analysis=slow)
        report = await orchestrator_factory(analyzers, timeout=0.1).run("https://example.com")

        assert report.sitemap_analysis.scored is False
        assert report.errors == [
            {"service": "sitemap_analysis", "message": "Sitemap analysis timed out after 0.1s"}
        ]
        assert report.page_speed.score == 80

    @pytest.mark.asyncio
    async def test_recommendations_sorted_and_low_score_flagged(self, orchestrator_factory):
        low = {slot: 30 for slot in SCORES}
        info = Recommendation(Severity.INFO, "info item", Impact.LOW, "fix")
        error = Recommendation(Severity.ERROR, "error item", Impact.HIGH, "fix")
        analyzers = fake_analyzers(
            low,
            security=AsyncMock(return_value=AnalyzerResult(score=30, recommendations=[info])),
            canonical_urls=AsyncMock(return_value=AnalyzerResult(score=30, recommendations=[error])),
        )
        report = await orchestrator_factory(analyzers).run("https://example.com")

        assert [r.message for r in report.recommendations] == [
            "error item",
            "Technical SEO score needs improvement",
            "info item",
        ]

    @pytest.mark.asyncio
    async def test_all_failed_reports_zero_without_advice(self, orchestrator_factory):
        failing = AsyncMock(side_effect=ValueError("bad"))
        analyzers = fake_analyzers(**{slot: failing for slot in SCORES})
        report = await orchestrator_factory(analyzers).run("https://example.com")

        assert report.technical_score == 0
        assert report.recommendations == []
        assert len(report.errors) == 6

    @pytest.mark.asyncio
    async def test_shares_one_parsed_document(self, orchestrator_factory):
        analyzers = fake_analyzers()
        await orchestrator_factory(analyzers).run("https://example.com", WELL_FORMED_PAGE_HTML)

        documents = {
            id(analyzers["security"].analyze.call_args.kwargs["document"]),
            id(analyzers["canonical"].analyze.call_args.kwargs["document"]),
            id(analyzers["structured_data"].analyze.call_args.kwargs["document"]),
        }
        assert len(documents) == 1


class TestEndToEnd:
    """Full pipeline against a mocked site."""

    def site_routes(self):
        return {
            "https://example.com/robots.txt": (200, {"content-type": "text/plain"}, SAMPLE_ROBOTS_TXT.encode()),
            "https://example.com/sitemap.xml": (200, {"content-type": "application/xml"}, SAMPLE_URLSET_XML),
            "https://example.com/page": (200, {"content-type": "text/html"}, WELL_FORMED_PAGE_HTML.encode()),
            "https://example.com": 200,
            "https://example.com/about": 200,
            "https://example.com/contact": 200,
            "HEAD http://example.com/page": (301, {"Location": "https://example.com/page"}, b""),
        }

    @pytest.mark.asyncio
    async def test_well_configured_page(self, make_fetcher, fixed_clock):
        report = await run_technical_audit(
            "https://example.com/page",
            WELL_FORMED_PAGE_HTML,
            fetcher=make_fetcher(self.site_routes()),
            cache=NullCache(),
            clock=fixed_clock,
            pagespeed_client=PageSpeedClient(api_key=""),
            cert_inspector=FakeInspector(make_cert(fixed_clock.now())),
        )

        assert report["url"] == "https://example.com/page"
        assert report["analyzed_at"].startswith("2026-01-10")
        assert report["canonical_urls"]["score"] >= 70
        assert report["canonical_urls"]["canonical_analysis"]["is_self_referencing"] is True
        assert report["structured_data"]["total_count"] == 1
        assert report["security"]["https_analysis"]["force_https"] is True
        assert report["sitemap_analysis"]["url_accessibility"]["accessible"] == 3
        assert report["mobile_optimization"]["mobile_friendly"] is True
        assert report["page_speed"]["fallback_analysis"] is True
        assert 0 <= report["technical_score"] <= 100
        assert report["errors"] == []
        severities = [r["severity"] for r in report["recommendations"]]
        assert severities == sorted(severities, key=["error", "warning", "info"].index)

    @pytest.mark.asyncio
    async def test_unreachable_site(self, make_fetcher, fixed_clock):
        report = await run_technical_audit(
            "http://example.com/",
            "",
            fetcher=make_fetcher({}),
            cache=NullCache(),
            clock=fixed_clock,
            pagespeed_client=PageSpeedClient(api_key=""),
            cert_inspector=FakeInspector(),
        )

        messages = [r["message"] for r in report["recommendations"]]
        assert "robots.txt file not accessible" in messages
        assert "No XML sitemap found" in messages
        assert "Site not served over HTTPS" in messages
        assert "No structured data found" in messages
        assert report["technical_score"] < 70
        assert "Technical SEO score needs improvement" in messages

    @pytest.mark.asyncio
    async def test_invalid_url_raises(self):
        with pytest.raises(UrlValidationError):
            await run_technical_audit("ftp://example.com/", cache=NullCache())
