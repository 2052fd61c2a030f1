"""
Sample pages and documents for testing.
"""

# Well-configured page: self-referencing canonical, viewport, responsive CSS
WELL_FORMED_PAGE_HTML = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>Example Page - Technical Audit Fixture</title>
    <meta name="description" content="A well configured page used to exercise the audit pipeline.">
    <link rel="canonical" href="https://example.com/page">
    <link rel="stylesheet" href="https://cdn.example-static.net/site.css">
    <style>
        .grid { display: grid; }
        @media (max-width: 768px) { .grid { display: block; } }
        @media (min-width: 1024px) { .grid { gap: 2rem; } }
    </style>
    <script type="application/ld+json">
    {
        "@context": "https://schema.org",
        "@type": "Organization",
        "name": "Example Inc",
        "url": "https://example.com"
    }
    </script>
</head>
<body>
    <h1>Example Page</h1>
    <p>Content for the technical audit.</p>
    <img src="/hero.jpg" srcset="/hero-480.jpg 480w, /hero-960.jpg 960w" sizes="100vw" alt="Hero">
    <a href="/about">About</a>
</body>
</html>
"""

# HTTPS page referencing insecure sub-resources
MIXED_CONTENT_PAGE_HTML = """
<!DOCTYPE html>
<html>
<head>
    <title>Mixed Content</title>
    <link rel="stylesheet" href="http://insecure-cdn.com/style.css">
    <script src="http://insecure-cdn.com/script.js"></script>
</head>
<body>
    <img src="http://example.com/image.jpg">
    <a href="http://example.com/old-page">Old page</a>
</body>
</html>
"""

# Page without any of the signals the analyzers look for
BARE_PAGE_HTML = """
<!DOCTYPE html>
<html>
<head><title>Bare</title></head>
<body><p>Nothing to see here.</p><img src="/a.jpg"><img src="/b.jpg"></body>
</html>
"""

# JSON-LD: valid, broken, valid-with-missing-required
MIXED_JSON_LD_PAGE_HTML = """
<html>
<head>
    <script type="application/ld+json">
    {"@context": "https://schema.org", "@type": "Article", "headline": "Hello", "author": "Jane"}
    </script>
    <script type="application/ld+json">
    {"@context": "https://schema.org", "@type": "Product", "name": }
    </script>
    <script type="application/ld+json">
    {"@context": "https://schema.org", "@type": "LocalBusiness", "name": "Shop"}
    </script>
</head>
<body>
    <div itemscope itemtype="https://schema.org/Event"><span>Launch</span></div>
</body>
</html>
"""

SAMPLE_ROBOTS_TXT = """
# robots.txt for example.com
User-agent: *
Allow: /
Disallow: /admin/
Disallow: /private/
Crawl-delay: 5

User-agent: BadBot
Disallow: /

Sitemap: https://example.com/sitemap.xml
"""

SAMPLE_URLSET_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
    <url>
        <loc>https://example.com/</loc>
        <lastmod>2026-01-05</lastmod>
        <changefreq>daily</changefreq>
        <priority>1.0</priority>
    </url>
    <url>
        <loc>https://example.com/about</loc>
        <lastmod>2025-06-01</lastmod>
        <changefreq>monthly</changefreq>
        <priority>0.8</priority>
    </url>
    <url>
        <loc>https://example.com/contact</loc>
        <changefreq>sometimes</changefreq>
        <priority>1.5</priority>
    </url>
</urlset>
"""

SAMPLE_SITEMAP_INDEX_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
    <sitemap>
        <loc>https://example.com/sitemap-posts.xml</loc>
        <lastmod>2026-01-01</lastmod>
    </sitemap>
    <sitemap>
        <loc>https://example.com/sitemap-pages.xml</loc>
    </sitemap>
    <sitemap>
        <loc>http://127.0.0.1/internal.xml</loc>
    </sitemap>
</sitemapindex>
"""


def psi_response(score: float = 0.92, lcp: float = 1800, cls: float = 0.05, field: bool = False) -> dict:
    """Minimal PageSpeed Insights v5 payload."""
    data = {
        "lighthouseResult": {
            "categories": {"performance": {"score": score}},
            "audits": {
                "largest-contentful-paint": {"numericValue": lcp},
                "cumulative-layout-shift": {"numericValue": cls},
                "first-contentful-paint": {"numericValue": 1200},
                "total-blocking-time": {"numericValue": 150},
                "max-potential-fid": {"numericValue": 90},
                "speed-index": {"numericValue": 2100},
                "interactive": {"numericValue": 3000},
                "render-blocking-resources": {
                    "score": 0.3,
                    "title": "Eliminate render-blocking resources",
                    "displayValue": "Potential savings of 450 ms",
                    "details": {"overallSavingsMs": 450},
                },
                "uses-text-compression": {"score": 1, "title": "Enable text compression"},
                "dom-size": {"score": 0.9, "title": "Avoids an excessive DOM size", "displayValue": "512 elements"},
            },
        },
    }
    if field:
        data["loadingExperience"] = {
            "overall_category": "AVERAGE",
            "metrics": {
                "LARGEST_CONTENTFUL_PAINT_MS": {"percentile": 4500, "category": "SLOW"},
                "CUMULATIVE_LAYOUT_SHIFT_SCORE": {"percentile": 8, "category": "FAST"},
                "FIRST_INPUT_DELAY_MS": {"percentile": 20, "category": "FAST"},
            },
        }
    return data


# Every security header set to a value that earns full points
HARDENED_HEADERS = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "Content-Security-Policy": "default-src 'self'; script-src 'self' cdn.example.com",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), camera=()",
}
