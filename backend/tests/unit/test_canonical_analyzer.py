"""
Tests for canonical URL analysis.
"""
import pytest

from techaudit.services.canonical_analyzer import CanonicalAnalyzer
from tests.fixtures.sample_pages import BARE_PAGE_HTML, WELL_FORMED_PAGE_HTML


def _page(head: str) -> str:
    return f"<html><head><title>T</title>{head}</head><body><p>x</p></body></html>"


def _messages(result):
    return [r.message for r in result.recommendations]


class TestCanonicalAnalyzer:
    """Tests for CanonicalAnalyzer.analyze."""

    @pytest.mark.asyncio
    async def test_self_referencing_canonical_scores_high(self, make_fetcher):
        fetcher = make_fetcher({"https://example.com/page": 200})
        result = await CanonicalAnalyzer(fetcher).analyze("https://example.com/page", WELL_FORMED_PAGE_HTML)

        canonical = result.findings["canonical_analysis"]
        assert canonical["has_canonical"] is True
        assert canonical["is_self_referencing"] is True
        assert canonical["canonical_accessible"] is True
        assert canonical["canonical_issues"] == []
        assert result.findings["redirect_analysis"]["redirect_count"] == 0
        assert result.score >= 70
        assert result.findings["canonical_score"] == result.score

    @pytest.mark.asyncio
    async def test_missing_canonical(self, make_fetcher):
        fetcher = make_fetcher({"https://example.com/page": 200})
        result = await CanonicalAnalyzer(fetcher).analyze("https://example.com/page", BARE_PAGE_HTML)

        assert result.findings["canonical_analysis"]["has_canonical"] is False
        assert "Missing canonical tag" in _messages(result)

    @pytest.mark.asyncio
    async def test_multiple_canonicals(self, make_fetcher):
        html = _page(
            '<link rel="canonical" href="https://example.com/a">'
            '<link rel="canonical" href="https://example.com/b">'
        )
        fetcher = make_fetcher({"https://example.com/a": 200, "https://example.com/page": 200})
        result = await CanonicalAnalyzer(fetcher).analyze("https://example.com/page", html)

        canonical = result.findings["canonical_analysis"]
        assert canonical["multiple_canonicals"] is True
        assert canonical["canonical_url"] == "https://example.com/a"
        assert "Multiple canonical tags found" in _messages(result)
        assert result.recommendations[0].severity.value == "error"

    @pytest.mark.asyncio
    async def test_root_relative_canonical_is_resolved_without_issue(self, make_fetcher):
        fetcher = make_fetcher({"https://example.com/page": 200})
        result = await CanonicalAnalyzer(fetcher).analyze(
            "https://example.com/page", _page('<link rel="canonical" href="/page">')
        )

        canonical = result.findings["canonical_analysis"]
        assert canonical["relative_canonical"] is True
        assert canonical["canonical_url"] == "https://example.com/page"
        assert canonical["is_self_referencing"] is True
        assert canonical["canonical_issues"] == []

    @pytest.mark.asyncio
    async def test_path_relative_canonical_is_an_issue(self, make_fetcher):
        fetcher = make_fetcher({"https://example.com/page": 200})
        result = await CanonicalAnalyzer(fetcher).analyze(
            "https://example.com/page", _page('<link rel="canonical" href="page">')
        )

        canonical = result.findings["canonical_analysis"]
        assert canonical["relative_canonical"] is True
        assert canonical["canonical_url"] == "https://example.com/page"
        assert any("relative" in issue for issue in canonical["canonical_issues"])

    @pytest.mark.asyncio
    async def test_malformed_canonical_host_degrades(self, make_fetcher):
        fetcher = make_fetcher({"https://example.com/page": 200})
        result = await CanonicalAnalyzer(fetcher).analyze(
            "https://example.com/page", _page('<link rel="canonical" href="https://xn--zz.com/page">')
        )

        canonical = result.findings["canonical_analysis"]
        assert canonical["canonical_accessible"] is False
        assert "Canonical URL could not be reached" in canonical["canonical_issues"]
        assert any(e.startswith("Canonical probe failed") for e in result.errors)

    @pytest.mark.asyncio
    async def test_protocol_and_domain_mismatch(self, make_fetcher):
        fetcher = make_fetcher({"http://other.com/page": 200, "https://example.com/page": 200})
        result = await CanonicalAnalyzer(fetcher).analyze(
            "https://example.com/page", _page('<link rel="canonical" href="http://other.com/page">')
        )

        canonical = result.findings["canonical_analysis"]
        assert canonical["protocol_mismatch"] is True
        assert canonical["domain_mismatch"] is True
        assert canonical["is_self_referencing"] is False

    @pytest.mark.asyncio
    async def test_broken_canonical_target(self, make_fetcher):
        fetcher = make_fetcher({"https://example.com/page": 200, "https://example.com/gone": 404})
        result = await CanonicalAnalyzer(fetcher).analyze(
            "https://example.com/page", _page('<link rel="canonical" href="https://example.com/gone">')
        )

        canonical = result.findings["canonical_analysis"]
        assert canonical["canonical_accessible"] is False
        assert canonical["canonical_status_code"] == 404
        assert "Canonical URL returns HTTP 404" in canonical["canonical_issues"]

    @pytest.mark.asyncio
    async def test_blocked_canonical_is_not_probed(self, make_fetcher):
        def fail(request):
            raise AssertionError("blocked canonical must not be requested")

        fetcher = make_fetcher({"https://example.com/page": 200, "http://192.168.0.1/page": fail})
        result = await CanonicalAnalyzer(fetcher).analyze(
            "https://example.com/page", _page('<link rel="canonical" href="http://192.168.0.1/page">')
        )

        assert result.findings["canonical_analysis"]["canonical_accessible"] is False

    @pytest.mark.asyncio
    async def test_page_redirect_loop_is_reported(self, make_fetcher):
        fetcher = make_fetcher({
            "https://example.com/page": (301, {"Location": "https://example.com/page"}, b""),
        })
        result = await CanonicalAnalyzer(fetcher).analyze("https://example.com/page", WELL_FORMED_PAGE_HTML)

        assert result.findings["redirect_analysis"]["loop_detected"] is True
        assert "Redirect chain is too long" in _messages(result)

    @pytest.mark.asyncio
    async def test_session_parameters_raise_duplication_risk(self, make_fetcher):
        url = "https://example.com/page?sessionid=abc"
        fetcher = make_fetcher({url: 200})
        result = await CanonicalAnalyzer(fetcher).analyze(url, BARE_PAGE_HTML)

        assert result.findings["parameter_analysis"]["duplication_risk"] == "high"
        assert "High duplicate content risk from URL parameters" in _messages(result)
