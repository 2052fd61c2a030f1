"""
Outbound HTTP for analyzers.

A thin wrapper over httpx.AsyncClient that adds what every analyzer needs:
an SSRF guard on every hop, manual redirect following so each Location is
checked, a shared concurrency limit and a hard cap on body size.
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from urllib.parse import urljoin

import httpx

from techaudit.config import settings
from techaudit.core.exceptions import FetchError, UnsafeUrlError
from techaudit.core.url_safety import check_url

logger = logging.getLogger(__name__)

REDIRECT_STATUS_CODES = {301, 302, 303, 307, 308}

_CHARSET_RE = re.compile(r"charset=([\w\-]+)", re.IGNORECASE)


@dataclass
class FetchResponse:
    """Transport-neutral response handed to analyzers."""
    url: str
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes = b""
    truncated: bool = False

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_redirect(self) -> bool:
        return self.status_code in REDIRECT_STATUS_CODES

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    @property
    def content_type(self) -> str:
        return self.header("content-type")

    @property
    def text(self) -> str:
        match = _CHARSET_RE.search(self.content_type)
        encoding = match.group(1) if match else "utf-8"
        try:
            return self.content.decode(encoding, errors="replace")
        except LookupError:
            return self.content.decode("utf-8", errors="replace")


class Fetcher:
    """Async HTTP fetcher shared by the analyzers of one audit."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        max_concurrency: int | None = None,
        max_bytes: int | None = None,
        max_redirects: int | None = None,
        user_agent: str | None = None,
        guard: bool = True,
    ):
        self._client = client
        self._owns_client = client is None
        self.max_bytes = max_bytes or settings.MAX_RESPONSE_BYTES
        self.max_redirects = max_redirects if max_redirects is not None else settings.MAX_REDIRECTS
        self.user_agent = user_agent or settings.USER_AGENT
        self.guard = guard
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.HTTP_MAX_CONCURRENCY)

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the underlying httpx client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=False,
                headers={"User-Agent": self.user_agent},
            )
        return self._client

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def _check(self, url: str):
        if not self.guard:
            return
        reason = check_url(url)
        if reason:
            raise UnsafeUrlError(url, reason)

    async def request(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        follow_redirects: bool = False,
        read_body: bool = True,
        max_bytes: int | None = None,
    ) -> FetchResponse:
        """
        Issue a request.

        Redirects are followed hop by hop (never by httpx itself) so that
        every Location is validated before it is requested.

        Raises:
            UnsafeUrlError: the URL or a redirect target is blocked
            FetchError: timeout, connection or protocol failure
        """
        client = await self.get_client()
        limit = max_bytes or self.max_bytes
        current = url

        async with self._semaphore:
            for _ in range(self.max_redirects + 1):
                self._check(current)
                try:
                    async with client.stream(method, current, timeout=timeout) as response:
                        location = response.headers.get("location")
                        if follow_redirects and response.status_code in REDIRECT_STATUS_CODES and location:
                            current = urljoin(current, location)
                            continue

                        content, truncated = b"", False
                        if read_body and method != "HEAD":
                            content, truncated = await self._read_body(response, limit)
                        if truncated:
                            logger.warning(f"[HTTP] Body of {current} truncated at {limit} bytes")

                        return FetchResponse(
                            url=current,
                            status_code=response.status_code,
                            headers={k.lower(): v for k, v in response.headers.items()},
                            content=content,
                            truncated=truncated,
                        )
                except httpx.TimeoutException:
                    logger.warning(f"[HTTP] Timeout on {method} {current}")
                    raise FetchError(current, "Request timeout")
                except httpx.HTTPError as e:
                    logger.warning(f"[HTTP] {method} {current} failed: {e}")
                    raise FetchError(current, f"Request failed: {e}")
                except (httpx.InvalidURL, ValueError) as e:
                    # Malformed hosts (bad IDNA labels, control characters) surface here
                    logger.warning(f"[HTTP] Invalid URL {current!r}: {e}")
                    raise FetchError(current, f"Invalid URL: {e}")

        raise FetchError(url, f"Exceeded {self.max_redirects} redirects")

    async def _read_body(self, response: httpx.Response, limit: int) -> tuple[bytes, bool]:
        chunks = []
        size = 0
        async for chunk in response.aiter_bytes():
            remaining = limit - size
            if len(chunk) > remaining:
                chunks.append(chunk[:remaining])
                return b"".join(chunks), True
            chunks.append(chunk)
            size += len(chunk)
        return b"".join(chunks), False

    async def get(
        self,
        url: str,
        timeout: float,
        follow_redirects: bool = True,
        max_bytes: int | None = None,
    ) -> FetchResponse:
        return await self.request(
            "GET", url, timeout=timeout, follow_redirects=follow_redirects, max_bytes=max_bytes
        )

    async def head(self, url: str, timeout: float, follow_redirects: bool = True) -> FetchResponse:
        return await self.request("HEAD", url, timeout=timeout, follow_redirects=follow_redirects)

    async def exists(self, url: str, timeout: float) -> FetchResponse:
        """
        Lightweight existence check: HEAD, falling back to a GET without a
        body when the server rejects HEAD.
        """
        response = await self.head(url, timeout=timeout)
        if response.status_code in (405, 501):
            response = await self.request(
                "GET", url, timeout=timeout, follow_redirects=True, read_body=False
            )
        return response
