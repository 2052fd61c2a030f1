"""
Tests for the robots.txt / sitemap analyzer.
"""
import gzip
import json

import httpx
import pytest

from techaudit.integrations.cache import AnalysisCache
from techaudit.services.sitemap_analyzer import RobotsSitemapAnalyzer
from tests.fixtures.sample_pages import SAMPLE_ROBOTS_TXT, SAMPLE_URLSET_XML

XML = {"content-type": "application/xml"}
TEXT = {"content-type": "text/plain"}


def _messages(result):
    return [r.message for r in result.recommendations]


class TestRobotsSitemapAnalyzer:
    """Tests for RobotsSitemapAnalyzer.analyze."""

    @pytest.mark.asyncio
    async def test_full_crawlability_report(self, make_fetcher, fixed_clock):
        """robots.txt references a sitemap whose URLs are probed."""
        fetcher = make_fetcher({
            "https://example.com/robots.txt": (200, TEXT, SAMPLE_ROBOTS_TXT.encode()),
            "https://example.com/sitemap.xml": (200, XML, SAMPLE_URLSET_XML),
            "HEAD https://example.com/": 200,
            "HEAD https://example.com/about": 200,
            "HEAD https://example.com/contact": 404,
        })
        analyzer = RobotsSitemapAnalyzer(fetcher, clock=fixed_clock)

        result = await analyzer.analyze("https://example.com/page")

        robots = result.findings["robots_txt"]
        assert robots["accessible"] is True
        assert robots["sitemaps"] == ["https://example.com/sitemap.xml"]
        assert result.findings["discovered_sitemaps"] == ["https://example.com/sitemap.xml"]

        sitemap = result.findings["sitemaps"][0]
        assert sitemap["type"] == "urlset"
        assert sitemap["statistics"]["total_urls"] == 3

        access = result.findings["url_accessibility"]
        assert access["tested"] == 3
        assert access["accessible"] == 2
        assert access["sample_inaccessible"] == [{"url": "https://example.com/contact", "status_code": 404}]
        assert access["status_code_distribution"] == {"200": 2, "404": 1}
        # 25 robots + 35 sitemap reachable + 40 * 2/3 sampled URLs
        assert result.findings["accessibility"]["accessibility_score"] == 87

        assert result.score >= 90
        assert result.findings["sitemap_score"] == result.score
        assert "33% of tested URLs are inaccessible" in _messages(result)
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_robots_only_scores_low(self, make_fetcher, fixed_clock):
        """robots.txt without sitemap, and no sitemap at conventional paths."""
        fetcher = make_fetcher({
            "https://example.com/robots.txt": (200, TEXT, b"User-agent: *\nDisallow: /admin/\n"),
        })
        result = await RobotsSitemapAnalyzer(fetcher, clock=fixed_clock).analyze("https://example.com/")

        assert result.score <= 20
        assert result.findings["sitemaps"] == []
        messages = _messages(result)
        assert "No sitemap reference in robots.txt" in messages
        assert "No XML sitemap found" in messages

    @pytest.mark.asyncio
    async def test_missing_robots_and_sitemap(self, make_fetcher, fixed_clock):
        fetcher = make_fetcher({})
        result = await RobotsSitemapAnalyzer(fetcher, clock=fixed_clock).analyze("https://example.com/")

        assert result.score == 0
        assert result.findings["robots_txt"]["status_code"] == 404
        messages = _messages(result)
        assert messages[:2] == ["robots.txt file not accessible", "No XML sitemap found"]
        assert all(r.severity.value == "error" for r in result.recommendations[:2])

    @pytest.mark.asyncio
    async def test_discovers_conventional_path(self, make_fetcher, fixed_clock):
        fetcher = make_fetcher({
            "https://example.com/robots.txt": (200, TEXT, b"User-agent: *\nAllow: /\n"),
            "https://example.com/sitemap_index.xml": (200, XML, SAMPLE_URLSET_XML),
        })
        result = await RobotsSitemapAnalyzer(fetcher, clock=fixed_clock).analyze(
            "https://example.com/", {"max_accessibility_tests": 0}
        )

        assert result.findings["discovered_sitemaps"] == ["https://example.com/sitemap_index.xml"]
        assert result.findings["url_accessibility"]["tested"] == 0

    @pytest.mark.asyncio
    async def test_gzip_sitemap(self, make_fetcher, fixed_clock):
        fetcher = make_fetcher({
            "https://example.com/robots.txt": (
                200, TEXT, b"Sitemap: https://example.com/sitemap.xml.gz\n"
            ),
            "https://example.com/sitemap.xml.gz": (
                200, {"content-type": "application/x-gzip"}, gzip.compress(SAMPLE_URLSET_XML)
            ),
        })
        result = await RobotsSitemapAnalyzer(fetcher, clock=fixed_clock).analyze(
            "https://example.com/", {"max_accessibility_tests": 0}
        )

        sitemap = result.findings["sitemaps"][0]
        assert sitemap["compression"] == "gzip"
        assert sitemap["type"] == "urlset"
        assert len(sitemap["urls"]) == 3

    @pytest.mark.asyncio
    async def test_unreachable_sitemap_is_reported(self, make_fetcher, fixed_clock):
        fetcher = make_fetcher({
            "https://example.com/robots.txt": (200, TEXT, b"Sitemap: https://example.com/gone.xml\n"),
            "https://example.com/gone.xml": 500,
        })
        result = await RobotsSitemapAnalyzer(fetcher, clock=fixed_clock).analyze("https://example.com/")

        assert result.findings["sitemaps"][0]["accessible"] is False
        assert "1 sitemap(s) not accessible" in _messages(result)
        assert result.errors == ["Sitemap https://example.com/gone.xml returned HTTP 500"]

    @pytest.mark.asyncio
    async def test_unsafe_robots_sitemap_is_not_fetched(self, make_fetcher, fixed_clock):
        requested = []

        def internal(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200)

        fetcher = make_fetcher({
            "https://example.com/robots.txt": (200, TEXT, b"Sitemap: http://169.254.169.254/sitemap.xml\n"),
            "http://169.254.169.254/sitemap.xml": internal,
        })
        result = await RobotsSitemapAnalyzer(fetcher, clock=fixed_clock).analyze("https://example.com/")

        assert requested == []
        assert any("Blocked unsafe sitemap URL" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_malformed_sitemap_host_does_not_abort_others(self, make_fetcher, fixed_clock):
        robots = (
            b"Sitemap: https://xn--zz.com/sitemap.xml\n"
            b"Sitemap: https://example.com/sitemap.xml\n"
        )
        fetcher = make_fetcher({
            "https://example.com/robots.txt": (200, TEXT, robots),
            "https://example.com/sitemap.xml": (200, XML, SAMPLE_URLSET_XML),
        }, default_status=200)
        result = await RobotsSitemapAnalyzer(fetcher, clock=fixed_clock).analyze("https://example.com/")

        by_url = {s["url"]: s for s in result.findings["sitemaps"]}
        assert by_url["https://xn--zz.com/sitemap.xml"]["accessible"] is False
        assert by_url["https://example.com/sitemap.xml"]["accessible"] is True
        assert by_url["https://example.com/sitemap.xml"]["statistics"]["total_urls"] == 3
        assert any(e.startswith("Sitemap https://xn--zz.com/sitemap.xml could not be fetched") for e in result.errors)

    @pytest.mark.asyncio
    async def test_connection_failure_is_recovered(self, make_fetcher, fixed_clock):
        fetcher = make_fetcher({
            "https://example.com/robots.txt": httpx.ConnectError("connection refused"),
        })
        result = await RobotsSitemapAnalyzer(fetcher, clock=fixed_clock).analyze("https://example.com/")

        assert result.findings["robots_txt"]["accessible"] is False
        assert result.errors[0].startswith("robots.txt could not be fetched")


class TestSitemapCaching:
    """Tests for cache-aside behavior."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_network(self, make_fetcher, fixed_clock, mock_redis):
        cached = {"score": 77, "robots_txt": {"accessible": True}, "recommendations": [], "errors": []}
        mock_redis.get.return_value = json.dumps(cached)
        cache = AnalysisCache(redis_url="redis://test", enabled=True)
        cache._redis = mock_redis

        def fail(request):
            raise AssertionError("network must not be used on a cache hit")

        fetcher = make_fetcher({"https://example.com/robots.txt": fail})
        result = await RobotsSitemapAnalyzer(fetcher, cache=cache, clock=fixed_clock).analyze("https://example.com/")

        assert result.score == 77
        assert result.findings["robots_txt"] == {"accessible": True}

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_read_and_writes(self, make_fetcher, fixed_clock, mock_redis):
        cache = AnalysisCache(redis_url="redis://test", enabled=True)
        cache._redis = mock_redis
        fetcher = make_fetcher({
            "https://example.com/robots.txt": (200, TEXT, b"User-agent: *\n"),
        })

        await RobotsSitemapAnalyzer(fetcher, cache=cache, clock=fixed_clock).analyze(
            "https://example.com/", {"force_refresh": True}
        )

        mock_redis.get.assert_not_called()
        mock_redis.set.assert_called_once()
        assert mock_redis.set.call_args.kwargs["ex"] == 120 * 60
