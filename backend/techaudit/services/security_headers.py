"""
Security response header parsing and scoring.
"""
from dataclasses import dataclass, field
from typing import Any

HSTS = "Strict-Transport-Security"
CSP = "Content-Security-Policy"
X_FRAME_OPTIONS = "X-Frame-Options"
X_CONTENT_TYPE_OPTIONS = "X-Content-Type-Options"
X_XSS_PROTECTION = "X-XSS-Protection"
REFERRER_POLICY = "Referrer-Policy"
PERMISSIONS_POLICY = "Permissions-Policy"

# Points per header, summing to 100
HEADER_POINTS = {
    HSTS: 25,
    CSP: 20,
    X_FRAME_OPTIONS: 15,
    X_CONTENT_TYPE_OPTIONS: 15,
    X_XSS_PROTECTION: 10,
    REFERRER_POLICY: 10,
    PERMISSIONS_POLICY: 5,
}

RESTRICTIVE_REFERRER_POLICIES = {
    "no-referrer",
    "same-origin",
    "strict-origin",
    "strict-origin-when-cross-origin",
}

# CSP effectiveness points, summing to 100
CSP_POINTS = {
    "default-src": 30,
    "script-src": 25,
    "style-src": 15,
    "no_unsafe_inline": 20,
    "no_unsafe_eval": 10,
}


@dataclass
class HeaderStatus:
    present: bool = False
    raw_value: str | None = None
    parsed_attributes: dict[str, Any] = field(default_factory=dict)


def parse_hsts(value: str) -> dict[str, Any]:
    max_age = None
    include_subdomains = False
    preload = False
    for part in value.split(";"):
        part = part.strip()
        lowered = part.lower()
        if lowered.startswith("max-age"):
            _, _, raw = part.partition("=")
            raw = raw.strip().strip('"')
            if raw.isdigit():
                max_age = int(raw)
        elif lowered == "includesubdomains":
            include_subdomains = True
        elif lowered == "preload":
            preload = True
    return {"max_age": max_age, "include_subdomains": include_subdomains, "preload": preload}


def parse_csp(value: str) -> dict[str, list[str]]:
    directives: dict[str, list[str]] = {}
    for part in value.split(";"):
        tokens = part.strip().split()
        if not tokens:
            continue
        name = tokens[0].lower()
        # First occurrence wins, as browsers do
        if name not in directives:
            directives[name] = tokens[1:]
    return directives


def _parse_header(name: str, value: str) -> dict[str, Any]:
    lowered = value.strip().lower()
    if name == HSTS:
        return parse_hsts(value)
    if name == CSP:
        return {"directives": parse_csp(value)}
    if name == X_FRAME_OPTIONS:
        return {"value": value.strip().upper(), "blocks_framing": lowered in ("deny", "sameorigin")}
    if name == X_CONTENT_TYPE_OPTIONS:
        return {"nosniff": lowered == "nosniff"}
    if name == X_XSS_PROTECTION:
        return {"enabled": lowered.startswith("1"), "mode_block": "mode=block" in lowered}
    if name == REFERRER_POLICY:
        # Browsers apply the last policy they understand
        policies = [p.strip() for p in lowered.split(",") if p.strip()]
        policy = policies[-1] if policies else ""
        return {"policy": policy, "restrictive": policy in RESTRICTIVE_REFERRER_POLICIES}
    if name == PERMISSIONS_POLICY:
        features = [p.strip().split("=", 1)[0] for p in value.split(",") if p.strip()]
        return {"features": features}
    return {}


class SecurityHeaderSet:
    """The fixed set of security headers read from one response."""

    def __init__(self, headers: dict[str, str] | None = None):
        lowered = {k.lower(): v for k, v in (headers or {}).items()}
        self.headers: dict[str, HeaderStatus] = {}
        for name in HEADER_POINTS:
            value = lowered.get(name.lower())
            if value is None:
                self.headers[name] = HeaderStatus()
            else:
                self.headers[name] = HeaderStatus(
                    present=True,
                    raw_value=value,
                    parsed_attributes=_parse_header(name, value),
                )

    def __getitem__(self, name: str) -> HeaderStatus:
        return self.headers[name]

    def is_present(self, name: str) -> bool:
        return self.headers[name].present

    def _earns_points(self, name: str) -> bool:
        status = self.headers[name]
        if not status.present:
            return False
        attrs = status.parsed_attributes
        if name == X_CONTENT_TYPE_OPTIONS:
            return attrs["nosniff"]
        if name == X_XSS_PROTECTION:
            return attrs["enabled"]
        if name == REFERRER_POLICY:
            return attrs["restrictive"]
        return True

    @property
    def security_score(self) -> int:
        return sum(points for name, points in HEADER_POINTS.items() if self._earns_points(name))

    @property
    def missing_headers(self) -> list[str]:
        return [name for name, status in self.headers.items() if not status.present]

    def to_dict(self) -> dict[str, Any]:
        return {
            "headers": {
                name: {
                    "present": status.present,
                    "value": status.raw_value,
                    **status.parsed_attributes,
                }
                for name, status in self.headers.items()
            },
            "missing_headers": self.missing_headers,
            "security_score": self.security_score,
        }


def analyze_csp(policy: str | None, source: str | None = None) -> dict[str, Any]:
    """Score how much protection a Content-Security-Policy actually gives."""
    if not policy:
        return {
            "has_csp": False,
            "source": None,
            "directives": {},
            "allows_unsafe_inline": False,
            "allows_unsafe_eval": False,
            "effectiveness_score": 0,
        }

    directives = parse_csp(policy)
    sources = [token.lower() for values in directives.values() for token in values]
    unsafe_inline = "'unsafe-inline'" in sources
    unsafe_eval = "'unsafe-eval'" in sources

    score = 0
    for directive in ("default-src", "script-src", "style-src"):
        if directive in directives:
            score += CSP_POINTS[directive]
    if not unsafe_inline:
        score += CSP_POINTS["no_unsafe_inline"]
    if not unsafe_eval:
        score += CSP_POINTS["no_unsafe_eval"]

    return {
        "has_csp": True,
        "source": source,
        "directives": directives,
        "has_default_src": "default-src" in directives,
        "has_script_src": "script-src" in directives,
        "has_style_src": "style-src" in directives,
        "allows_unsafe_inline": unsafe_inline,
        "allows_unsafe_eval": unsafe_eval,
        "effectiveness_score": score,
    }
