"""
URL structure and duplicate-content signals.
"""
import hashlib
import re
from typing import Any
from urllib.parse import parse_qsl, urlparse, urlunparse

SPECIAL_CHARS_RE = re.compile(r"[^a-zA-Z0-9\-._~:/?#\[\]@!$&'()*+,;=%]")
SEO_WORD_RE = re.compile(r"/[a-z0-9-]+")

SEO_PARAMETERS = {"page", "sort", "filter", "category", "search", "q"}
TRACKING_PARAMETERS = {"gclid", "fbclid", "msclkid", "dclid"}
SESSION_PARAMETERS = {"sid", "session", "sessionid", "phpsessid", "jsessionid", "token", "csrf", "csrf_token", "timestamp"}
SOCIAL_PARAMETERS = {"ref", "share", "igshid", "fb_ref", "fb_source"}
IDENTIFIER_PARAMETERS = {"id", "pid"}

LONG_URL = 75
VERY_LONG_URL = 100
DEEP_PATH = 3
VERY_DEEP_PATH = 5


def _path_segments(path: str) -> list[str]:
    return [s for s in path.split("/") if s]


def _query_keys(query: str) -> list[str]:
    return [key for key, _ in parse_qsl(query, keep_blank_values=True)]


def _is_identifier(key: str) -> bool:
    key = key.lower()
    return key in IDENTIFIER_PARAMETERS or key.endswith("_id")


def readability_score(url: str) -> int:
    parsed = urlparse(url)
    depth = len(_path_segments(parsed.path))
    params = len(_query_keys(parsed.query))

    score = 100
    if len(url) > VERY_LONG_URL:
        score -= 20
    elif len(url) > LONG_URL:
        score -= 10

    if depth > VERY_DEEP_PATH:
        score -= 20
    elif depth > DEEP_PATH:
        score -= 10

    if SPECIAL_CHARS_RE.search(url):
        score -= 15

    score -= min(15, params * 3)

    if "-" in parsed.path:
        score += 10

    return max(0, min(100, score))


def is_seo_friendly(url: str) -> bool:
    parsed = urlparse(url)
    if any(c.isupper() for c in parsed.path):
        return False
    if any(_is_identifier(key) for key in _query_keys(parsed.query)):
        return False
    return bool(SEO_WORD_RE.search(parsed.path))


def analyze_url_structure(url: str) -> dict[str, Any]:
    parsed = urlparse(url)
    segments = _path_segments(parsed.path)
    keys = _query_keys(parsed.query)
    path_and_query = parsed.path + (f"?{parsed.query}" if parsed.query else "")

    return {
        "url_length": len(url),
        "path_segments": segments,
        "path_depth": len(segments),
        "has_query_parameters": bool(keys),
        "query_parameters": keys,
        "parameter_count": len(keys),
        "has_fragment": bool(parsed.fragment),
        "fragment": parsed.fragment or None,
        "contains_uppercase": any(c.isupper() for c in path_and_query),
        "contains_spaces": " " in url or "%20" in url,
        "contains_special_chars": bool(SPECIAL_CHARS_RE.search(url)),
        "seo_friendly": is_seo_friendly(url),
        "readability_score": readability_score(url),
    }


# ===== Duplicate content =====

def url_variations(url: str) -> dict[str, str]:
    """Alternate spellings of a URL that commonly resolve to the same page."""
    parsed = urlparse(url)
    host = parsed.netloc
    path = parsed.path or "/"

    if path.endswith("/") and path != "/":
        with_slash, without_slash = path, path.rstrip("/")
    elif path == "/":
        with_slash, without_slash = "/", ""
    else:
        with_slash, without_slash = path + "/", path

    bare_host = host[4:] if host.startswith("www.") else host

    def build(scheme=parsed.scheme, netloc=host, new_path=path):
        return urlunparse((scheme, netloc, new_path, parsed.params, parsed.query, ""))

    return {
        "with_trailing_slash": build(new_path=with_slash),
        "without_trailing_slash": build(new_path=without_slash),
        "with_www": build(netloc=f"www.{bare_host}"),
        "without_www": build(netloc=bare_host),
        "http_version": build(scheme="http"),
        "https_version": build(scheme="https"),
        "lowercase": build(netloc=host.lower(), new_path=path.lower()),
    }


def categorize_parameter(key: str) -> str:
    key = key.lower()
    if key.startswith("utm_") or key in TRACKING_PARAMETERS:
        return "tracking"
    if key in SESSION_PARAMETERS or "session" in key or "csrf" in key:
        return "session"
    if key in SEO_PARAMETERS:
        return "seo"
    if key in SOCIAL_PARAMETERS:
        return "social"
    return "other"


def parameter_analysis(url: str) -> dict[str, Any]:
    keys = _query_keys(urlparse(url).query)
    buckets: dict[str, list[str]] = {"seo": [], "tracking": [], "session": [], "social": [], "other": []}
    for key in keys:
        buckets[categorize_parameter(key)].append(key)

    if buckets["session"] or len(buckets["tracking"]) > 3:
        risk = "high"
    elif len(keys) > 5 or buckets["tracking"]:
        risk = "medium"
    else:
        risk = "low"

    return {
        "total_parameters": len(keys),
        "seo_parameters": buckets["seo"],
        "tracking_parameters": buckets["tracking"],
        "session_parameters": buckets["session"],
        "social_parameters": buckets["social"],
        "other_parameters": buckets["other"],
        "duplication_risk": risk,
    }


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def duplicate_content_signals(url: str, text: str, title: str, meta_description: str) -> dict[str, Any]:
    return {
        "content_hash": _md5(text),
        "title_hash": _md5(title) if title else None,
        "meta_description_hash": _md5(meta_description) if meta_description else None,
        "url_variations": url_variations(url),
        "parameter_variations": parameter_analysis(url),
    }
