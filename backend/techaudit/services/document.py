"""
Parsed page shared by the analyzers of one audit.

The HTML is parsed once with BeautifulSoup (lxml) and analyzers query this
object instead of re-parsing or regex-scraping the markup.
"""
from bs4 import BeautifulSoup, Tag


def _is_ld_json(value: str | None) -> bool:
    return bool(value) and value.strip().lower() == "application/ld+json"


class PageDocument:
    def __init__(self, html: str | None):
        self.html = html or ""
        self.soup = BeautifulSoup(self.html, "lxml")
        self._text: str | None = None

    @classmethod
    def ensure(cls, html: str | None, document: "PageDocument | None" = None) -> "PageDocument":
        return document if document is not None else cls(html)

    def find_all(self, *args, **kwargs) -> list[Tag]:
        return self.soup.find_all(*args, **kwargs)

    def links_with_rel(self, rel: str) -> list[Tag]:
        rel = rel.lower()
        links = []
        for tag in self.soup.find_all("link"):
            values = tag.get("rel") or []
            if isinstance(values, str):
                values = values.split()
            if rel in (v.lower() for v in values):
                links.append(tag)
        return links

    def meta_tags(self, *, name: str | None = None, http_equiv: str | None = None) -> list[Tag]:
        found = []
        for tag in self.soup.find_all("meta"):
            if name and (tag.get("name") or "").strip().lower() == name.lower():
                found.append(tag)
            elif http_equiv and (tag.get("http-equiv") or "").strip().lower() == http_equiv.lower():
                found.append(tag)
        return found

    def meta_content(self, *, name: str | None = None, http_equiv: str | None = None) -> str | None:
        tags = self.meta_tags(name=name, http_equiv=http_equiv)
        if not tags:
            return None
        return (tags[0].get("content") or "").strip()

    @property
    def title(self) -> str:
        tag = self.soup.find("title")
        return tag.get_text(strip=True) if tag else ""

    @property
    def meta_description(self) -> str:
        return self.meta_content(name="description") or ""

    @property
    def text(self) -> str:
        """Visible text with markup stripped."""
        if self._text is None:
            self._text = self.soup.get_text(" ", strip=True)
        return self._text

    def json_ld_blocks(self) -> list[str]:
        return [
            script.string or script.get_text()
            for script in self.soup.find_all("script")
            if _is_ld_json(script.get("type"))
        ]

    def item_types(self) -> list[str]:
        """itemtype values of every itemscope element that declares one."""
        return [
            tag.get("itemtype").strip()
            for tag in self.soup.find_all(attrs={"itemscope": True})
            if tag.get("itemtype")
        ]

    def style_text(self) -> str:
        return "\n".join(style.get_text() for style in self.soup.find_all("style"))
