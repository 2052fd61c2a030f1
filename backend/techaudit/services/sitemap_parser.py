"""
XML sitemap parsing and validation.

Handles both <urlset> and <sitemapindex> documents, optionally gzip
compressed. Parsing is bounded: decompression stops at a byte limit and only
the first `max_urls` entries are kept in detail (all are counted).
"""
import logging
import zlib
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from dateutil import parser as date_parser
from lxml import etree

from techaudit.core.url_safety import is_absolute_url, is_safe_url

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
VALID_CHANGEFREQ = {"always", "hourly", "daily", "weekly", "monthly", "yearly", "never"}
RECENT_UPDATE_DAYS = 30


class SitemapSizeError(ValueError):
    """Decompressed sitemap exceeds the configured byte limit."""


@dataclass
class SitemapEntry:
    loc: str
    lastmod: str | None = None
    changefreq: str | None = None
    priority: str | None = None


@dataclass
class ChildSitemap:
    loc: str
    lastmod: str | None = None
    safe: bool = True


@dataclass
class UrlSet:
    entries: list[SitemapEntry] = field(default_factory=list)
    total_urls: int = 0
    type: str = "urlset"


@dataclass
class SitemapIndex:
    children: list[ChildSitemap] = field(default_factory=list)
    type: str = "sitemap_index"


@dataclass
class SitemapValidation:
    valid_xml: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class ParsedSitemap:
    node: UrlSet | SitemapIndex | None
    validation: SitemapValidation
    statistics: dict[str, Any] = field(default_factory=dict)
    max_urls_reached: bool = False

    @property
    def type(self) -> str:
        return self.node.type if self.node is not None else "unknown"

    @property
    def urls(self) -> list[str]:
        if isinstance(self.node, UrlSet):
            return [e.loc for e in self.node.entries]
        return []

    @property
    def child_sitemaps(self) -> list[ChildSitemap]:
        if isinstance(self.node, SitemapIndex):
            return list(self.node.children)
        return []


# ===== Decompression =====

def is_gzip(content: bytes) -> bool:
    return content[:2] == GZIP_MAGIC


def decompress(content: bytes, max_bytes: int) -> bytes:
    """
    Inflate gzip content, refusing to produce more than max_bytes.

    Raises:
        SitemapSizeError: output would exceed max_bytes
        zlib.error: content is not valid gzip
    """
    inflater = zlib.decompressobj(16 + zlib.MAX_WBITS)
    data = inflater.decompress(content, max_bytes + 1)
    if len(data) > max_bytes or inflater.unconsumed_tail:
        raise SitemapSizeError(f"Decompressed sitemap exceeds {max_bytes} bytes")
    return data


# ===== XML =====

def _make_parser(recover: bool) -> etree.XMLParser:
    return etree.XMLParser(
        recover=recover,
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        huge_tree=False,
    )


def _localname(element) -> str:
    if not isinstance(element.tag, str):
        return ""
    return etree.QName(element).localname.lower()


def _child_text(element, name: str) -> str | None:
    for child in element:
        if _localname(child) == name:
            text = (child.text or "").strip()
            return text or None
    return None


def _parse_date(value: str) -> datetime:
    parsed = date_parser.isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_sitemap_xml(content: bytes, max_urls: int = 1000, now: datetime | None = None) -> ParsedSitemap:
    validation = SitemapValidation()

    try:
        root = etree.fromstring(content, parser=_make_parser(recover=False))
    except etree.XMLSyntaxError as e:
        validation.valid_xml = False
        validation.errors.append(f"Invalid XML: {e}")
        # Salvage whatever entries a recovering parse can still read
        try:
            root = etree.fromstring(content, parser=_make_parser(recover=True))
        except etree.XMLSyntaxError:
            root = None

    if root is None:
        return ParsedSitemap(node=None, validation=validation)

    root_name = _localname(root)
    if root_name == "sitemapindex":
        node = _parse_index(root, validation)
        max_reached = False
    elif root_name == "urlset":
        node, max_reached = _parse_urlset(root, validation, max_urls)
    else:
        validation.errors.append(f"Unknown root element <{root_name}>")
        return ParsedSitemap(node=None, validation=validation)

    return ParsedSitemap(
        node=node,
        validation=validation,
        statistics=compute_statistics(node, now or datetime.now(timezone.utc)),
        max_urls_reached=max_reached,
    )


def _parse_index(root, validation: SitemapValidation) -> SitemapIndex:
    index = SitemapIndex()
    for position, element in enumerate((e for e in root if _localname(e) == "sitemap"), start=1):
        loc = _child_text(element, "loc")
        if not is_absolute_url(loc):
            validation.errors.append(f"Sitemap {position}: Invalid or missing loc")
            continue
        safe = is_safe_url(loc)
        if not safe:
            validation.errors.append(f"Sitemap {position}: Blocked sitemap target {loc}")
        index.children.append(ChildSitemap(loc=loc, lastmod=_child_text(element, "lastmod"), safe=safe))
    return index


def _parse_urlset(root, validation: SitemapValidation, max_urls: int) -> tuple[UrlSet, bool]:
    urlset = UrlSet()
    for element in root:
        if _localname(element) != "url":
            continue
        urlset.total_urls += 1
        if len(urlset.entries) >= max_urls:
            continue

        position = urlset.total_urls
        entry = SitemapEntry(
            loc=_child_text(element, "loc") or "",
            lastmod=_child_text(element, "lastmod"),
            changefreq=_child_text(element, "changefreq"),
            priority=_child_text(element, "priority"),
        )
        if not is_absolute_url(entry.loc):
            validation.errors.append(f"URL {position}: Invalid or missing loc")
            continue
        _validate_entry(entry, position, validation)
        urlset.entries.append(entry)

    return urlset, urlset.total_urls > max_urls


def _validate_entry(entry: SitemapEntry, position: int, validation: SitemapValidation):
    if entry.changefreq and entry.changefreq.lower() not in VALID_CHANGEFREQ:
        validation.warnings.append(f"URL {position}: Invalid changefreq '{entry.changefreq}'")

    if entry.priority is not None:
        try:
            priority = float(entry.priority)
        except ValueError:
            priority = -1.0
        if not 0.0 <= priority <= 1.0:
            validation.warnings.append(f"URL {position}: Priority '{entry.priority}' must be between 0.0 and 1.0")

    if entry.lastmod:
        try:
            _parse_date(entry.lastmod)
        except (ValueError, OverflowError):
            validation.warnings.append(f"URL {position}: Invalid lastmod date '{entry.lastmod}'")


# ===== Statistics =====

def compute_statistics(node: UrlSet | SitemapIndex, now: datetime) -> dict[str, Any]:
    if isinstance(node, SitemapIndex):
        return {
            "total_child_sitemaps": len(node.children),
            "with_lastmod": sum(1 for c in node.children if c.lastmod),
        }

    changefreq = Counter()
    priority = Counter()
    with_lastmod = 0
    recent = 0
    cutoff = now - timedelta(days=RECENT_UPDATE_DAYS)

    for entry in node.entries:
        if entry.changefreq:
            changefreq[entry.changefreq.lower()] += 1
        if entry.priority is not None:
            priority[entry.priority] += 1
        if entry.lastmod:
            with_lastmod += 1
            try:
                if _parse_date(entry.lastmod) >= cutoff:
                    recent += 1
            except (ValueError, OverflowError):
                continue  # reported as a validation warning

    return {
        "total_urls": node.total_urls,
        "with_lastmod": with_lastmod,
        "with_changefreq": sum(changefreq.values()),
        "with_priority": sum(priority.values()),
        "changefreq_distribution": dict(sorted(changefreq.items())),
        "priority_distribution": dict(sorted(priority.items())),
        "recent_updates": recent,
    }


def child_to_dict(child: ChildSitemap) -> dict[str, Any]:
    return asdict(child)
