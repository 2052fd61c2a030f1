"""
Transport security analysis.

HTTPS usage and enforcement, TLS certificate health, security response
headers, mixed content, third-party resource inventory and CSP strength.
"""
import logging
from typing import Any
from urllib.parse import urljoin, urlparse

from techaudit.config import settings
from techaudit.core.exceptions import RECOVERABLE_ERRORS
from techaudit.integrations.http import Fetcher
from techaudit.integrations.tls import CertificateInspector
from techaudit.services.document import PageDocument
from techaudit.services.results import (
    AnalyzerResult,
    Impact,
    Recommendation,
    Severity,
    SystemClock,
)
from techaudit.services.security_headers import (
    CSP,
    HSTS,
    PERMISSIONS_POLICY,
    REFERRER_POLICY,
    X_CONTENT_TYPE_OPTIONS,
    X_FRAME_OPTIONS,
    X_XSS_PROTECTION,
    SecurityHeaderSet,
    analyze_csp,
)

logger = logging.getLogger(__name__)

# Score weights
HTTPS_POINTS = 40
FORCED_HTTPS_BONUS = 5
CERTIFICATE_POINTS = 25
CERT_EXPIRED_PENALTY = 10
CERT_SELF_SIGNED_PENALTY = 5
CERT_EXPIRING_PENALTY = 5
HEADERS_WEIGHT = 0.2
MIXED_CONTENT_POINTS = 10
EXTERNAL_DOMAIN_POINTS = 5
DOMAINS_PER_PENALTY_POINT = 5

PERMANENT_REDIRECTS = {301, 308}

HIGH_RISK_INDICATORS = ["ads", "tracker", "analytics"]
CDN_INDICATORS = ["cdn", "cloudfront", "fastly", "cloudflare"]
SOCIAL_INDICATORS = ["facebook.com", "twitter.com", "instagram.com", "youtube.com"]

MISSING_HEADER_RECOMMENDATIONS = {
    HSTS: (Severity.WARNING, Impact.MEDIUM, "Send Strict-Transport-Security: max-age=31536000; includeSubDomains"),
    CSP: (Severity.INFO, Impact.MEDIUM, "Define a Content-Security-Policy that restricts script and style sources"),
    X_FRAME_OPTIONS: (Severity.INFO, Impact.LOW, "Send X-Frame-Options: SAMEORIGIN to prevent clickjacking"),
    X_CONTENT_TYPE_OPTIONS: (Severity.INFO, Impact.LOW, "Send X-Content-Type-Options: nosniff"),
    X_XSS_PROTECTION: (Severity.INFO, Impact.LOW, "Send X-XSS-Protection: 1; mode=block for legacy browsers"),
    REFERRER_POLICY: (Severity.INFO, Impact.LOW, "Send Referrer-Policy: strict-origin-when-cross-origin"),
    PERMISSIONS_POLICY: (Severity.INFO, Impact.LOW, "Send a Permissions-Policy that disables unused browser features"),
}


def _swap_scheme(url: str, scheme: str) -> str:
    parsed = urlparse(url)
    netloc = parsed.hostname if parsed.port else parsed.netloc
    return parsed._replace(scheme=scheme, netloc=netloc).geturl()


def _bare_host(host: str) -> str:
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


class TransportSecurityAnalyzer:
    """HTTPS, certificate and header-based security scoring."""

    def __init__(
        self,
        fetcher: Fetcher,
        cert_inspector: CertificateInspector | None = None,
        clock=None,
        timeout: float | None = None,
    ):
        self.fetcher = fetcher
        self.cert_inspector = cert_inspector or CertificateInspector()
        self.clock = clock or SystemClock()
        self.timeout = timeout or settings.SECURITY_TIMEOUT

    async def analyze(
        self,
        url: str,
        html: str,
        options: dict[str, Any] | None = None,
        document: PageDocument | None = None,
    ) -> AnalyzerResult:
        document = PageDocument.ensure(html, document)
        errors: list[str] = []
        parsed = urlparse(url)
        is_https = parsed.scheme == "https"

        https_analysis = await self._analyze_https(url, errors)
        certificate = await self._analyze_certificate(parsed, errors) if is_https else {"has_ssl": False}
        headers = await self._fetch_headers(url, errors)

        csp_header = headers[CSP].raw_value
        if csp_header:
            csp = analyze_csp(csp_header, source="header")
        else:
            csp = analyze_csp(document.meta_content(http_equiv="content-security-policy"), source="meta")

        mixed_content = self._analyze_mixed_content(document, is_https)
        external = self._analyze_external_resources(document, url)

        score = self._calculate_score(https_analysis, certificate, headers, mixed_content, external)
        logger.info(f"Security analysis for {url} scored {score}")

        return AnalyzerResult(
            score=score,
            findings={
                "https_analysis": https_analysis,
                "ssl_certificate": certificate,
                "security_headers": headers.to_dict(),
                "mixed_content": mixed_content,
                "external_resources": external,
                "content_security_policy": csp,
                "security_score": score,
            },
            recommendations=self._recommendations(https_analysis, certificate, headers, mixed_content, csp),
            errors=errors,
        )

    # ===== HTTPS =====

    async def _analyze_https(self, url: str, errors: list[str]) -> dict[str, Any]:
        parsed = urlparse(url)
        is_https = parsed.scheme == "https"
        result: dict[str, Any] = {
            "is_https": is_https,
            "scheme": parsed.scheme,
            "port": parsed.port or (443 if is_https else 80),
            "redirect_analysis": None,
            "force_https": False,
            "https_available": True if is_https else None,
        }

        if is_https:
            http_url = _swap_scheme(url, "http")
            try:
                response = await self.fetcher.head(http_url, timeout=self.timeout, follow_redirects=False)
            except RECOVERABLE_ERRORS as e:
                errors.append(f"HTTP to HTTPS redirect check failed: {e}")
                return result

            location = response.header("location")
            redirects_to_https = response.is_redirect and location.lower().startswith("https://")
            permanent = response.status_code in PERMANENT_REDIRECTS
            result["redirect_analysis"] = {
                "status_code": response.status_code,
                "location": location or None,
                "redirects_to_https": redirects_to_https,
                "is_permanent_redirect": permanent,
            }
            result["force_https"] = redirects_to_https and permanent
        else:
            https_url = _swap_scheme(url, "https")
            try:
                response = await self.fetcher.exists(https_url, timeout=self.timeout)
                result["https_available"] = response.is_success
            except RECOVERABLE_ERRORS as e:
                logger.debug(f"HTTPS variant {https_url} not reachable: {e}")
                result["https_available"] = False

        return result

    # ===== Certificate =====

    async def _analyze_certificate(self, parsed, errors: list[str]) -> dict[str, Any]:
        host = parsed.hostname
        port = parsed.port or 443
        try:
            info = await self.cert_inspector.inspect(host, port)
        except RECOVERABLE_ERRORS as e:
            errors.append(f"SSL certificate check failed: {e}")
            return {"has_ssl": False, "error": str(e)}

        now = self.clock.now()
        days = info.days_until_expiry(now)
        return {
            "has_ssl": True,
            **info.to_dict(),
            "days_until_expiry": days,
            "is_expired": info.is_expired(now),
            "expires_soon": not info.is_expired(now) and days < settings.CERT_EXPIRY_WARNING_DAYS,
        }

    # ===== Headers =====

    async def _fetch_headers(self, url: str, errors: list[str]) -> SecurityHeaderSet:
        try:
            response = await self.fetcher.request(
                "GET", url, timeout=self.timeout, follow_redirects=True, read_body=False
            )
        except RECOVERABLE_ERRORS as e:
            errors.append(f"Security header check failed: {e}")
            return SecurityHeaderSet()
        return SecurityHeaderSet(response.headers)

    # ===== Markup =====

    def _analyze_mixed_content(self, document: PageDocument, is_https: bool) -> dict[str, Any]:
        result = {
            "http_images": [],
            "http_scripts": [],
            "http_stylesheets": [],
            "http_links": [],
            "total_issues": 0,
        }
        if not is_https:
            return result

        def insecure(value: str | None) -> bool:
            return bool(value) and value.strip().lower().startswith("http://")

        result["http_images"] = [t["src"] for t in document.find_all("img", src=True) if insecure(t["src"])]
        result["http_scripts"] = [t["src"] for t in document.find_all("script", src=True) if insecure(t["src"])]
        result["http_stylesheets"] = [
            link["href"] for link in document.links_with_rel("stylesheet") if insecure(link.get("href"))
        ]
        result["http_links"] = [t["href"] for t in document.find_all("a", href=True) if insecure(t["href"])]
        # Anchors do not trigger mixed-content blocking
        result["total_issues"] = (
            len(result["http_images"]) + len(result["http_scripts"]) + len(result["http_stylesheets"])
        )
        return result

    def _analyze_external_resources(self, document: PageDocument, url: str) -> dict[str, Any]:
        page_host = _bare_host(urlparse(url).hostname or "")
        resources: dict[str, list[str]] = {"scripts": [], "stylesheets": [], "images": [], "iframes": []}
        domains: list[str] = []

        candidates = [
            ("scripts", [t.get("src") for t in document.find_all("script", src=True)]),
            ("stylesheets", [t.get("href") for t in document.links_with_rel("stylesheet")]),
            ("images", [t.get("src") for t in document.find_all("img", src=True)]),
            ("iframes", [t.get("src") for t in document.find_all("iframe", src=True)]),
        ]
        for kind, values in candidates:
            for value in values:
                if not value:
                    continue
                absolute = urljoin(url, value.strip())
                host = urlparse(absolute).hostname
                if not host or _bare_host(host) == page_host:
                    continue
                resources[kind].append(absolute)
                if host.lower() not in domains:
                    domains.append(host.lower())

        def matching(indicators: list[str]) -> list[str]:
            return [d for d in domains if any(i in d for i in indicators)]

        return {
            **resources,
            "domains": domains,
            "security_analysis": {
                "total_external_domains": len(domains),
                "cdn_domains": matching(CDN_INDICATORS),
                "high_risk_domains": matching(HIGH_RISK_INDICATORS),
                "social_media_domains": matching(SOCIAL_INDICATORS),
            },
        }

    # ===== Scoring =====

    def _calculate_score(
        self,
        https_analysis: dict[str, Any],
        certificate: dict[str, Any],
        headers: SecurityHeaderSet,
        mixed_content: dict[str, Any],
        external: dict[str, Any],
    ) -> int:
        score = 0.0

        if https_analysis["is_https"]:
            score += HTTPS_POINTS
            if https_analysis["force_https"]:
                score += FORCED_HTTPS_BONUS

        if certificate.get("has_ssl"):
            cert_points = CERTIFICATE_POINTS
            if certificate["is_expired"]:
                cert_points -= CERT_EXPIRED_PENALTY
            if certificate["is_self_signed"]:
                cert_points -= CERT_SELF_SIGNED_PENALTY
            if certificate["expires_soon"]:
                cert_points -= CERT_EXPIRING_PENALTY
            score += max(0, cert_points)

        score += headers.security_score * HEADERS_WEIGHT
        score += max(0, MIXED_CONTENT_POINTS - mixed_content["total_issues"])
        score += max(0, EXTERNAL_DOMAIN_POINTS - len(external["domains"]) // DOMAINS_PER_PENALTY_POINT)

        return round(min(100, score))

    # ===== Recommendations =====

    def _recommendations(
        self,
        https_analysis: dict[str, Any],
        certificate: dict[str, Any],
        headers: SecurityHeaderSet,
        mixed_content: dict[str, Any],
        csp: dict[str, Any],
    ) -> list[Recommendation]:
        recs = []

        if not https_analysis["is_https"]:
            recs.append(Recommendation(
                Severity.ERROR,
                "Site not served over HTTPS",
                Impact.HIGH,
                "Install a TLS certificate and serve every page over HTTPS",
                category="security",
            ))
        elif https_analysis["redirect_analysis"] and not https_analysis["force_https"]:
            recs.append(Recommendation(
                Severity.WARNING,
                "HTTP requests not redirected to HTTPS",
                Impact.MEDIUM,
                "Redirect all HTTP traffic to HTTPS with a 301",
                category="security",
            ))

        if certificate.get("has_ssl"):
            if certificate["is_expired"]:
                recs.append(Recommendation(
                    Severity.ERROR,
                    "SSL certificate has expired",
                    Impact.HIGH,
                    "Renew the SSL certificate immediately",
                    category="security",
                ))
            elif certificate["expires_soon"]:
                recs.append(Recommendation(
                    Severity.WARNING,
                    f"SSL certificate expires soon ({certificate['days_until_expiry']} days)",
                    Impact.MEDIUM,
                    "Renew the certificate or enable automatic renewal",
                    category="security",
                ))
            if certificate["is_self_signed"]:
                recs.append(Recommendation(
                    Severity.WARNING,
                    "Using self-signed SSL certificate",
                    Impact.MEDIUM,
                    "Use a certificate issued by a trusted certificate authority",
                    category="security",
                ))

        for name in headers.missing_headers:
            severity, impact, fix = MISSING_HEADER_RECOMMENDATIONS[name]
            recs.append(Recommendation(severity, f"Missing {name} header", impact, fix, category="security"))

        if mixed_content["total_issues"]:
            recs.append(Recommendation(
                Severity.WARNING,
                f"{mixed_content['total_issues']} mixed content issues found",
                Impact.MEDIUM,
                "Load every image, script and stylesheet over HTTPS",
                category="security",
            ))

        if csp["has_csp"] and (csp["allows_unsafe_inline"] or csp["allows_unsafe_eval"]):
            recs.append(Recommendation(
                Severity.WARNING,
                "Content-Security-Policy allows unsafe-inline or unsafe-eval",
                Impact.MEDIUM,
                "Replace inline code with nonces or hashes and drop 'unsafe-eval'",
                category="security",
            ))

        return recs
