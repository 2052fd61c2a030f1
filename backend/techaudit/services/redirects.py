"""
Redirect chain walking.

Requests are issued one hop at a time with redirects disabled so that each
Location can be checked before it is followed.
"""
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin

from techaudit.config import settings
from techaudit.core.exceptions import RECOVERABLE_ERRORS
from techaudit.core.url_safety import is_safe_url
from techaudit.integrations.http import REDIRECT_STATUS_CODES, Fetcher

logger = logging.getLogger(__name__)

REDIRECT_TYPES = {
    301: "Permanent",
    302: "Temporary (Found)",
    303: "See Other",
    307: "Temporary",
    308: "Permanent (Preserve Method)",
}


@dataclass
class RedirectHop:
    url: str
    status_code: int
    redirect_type: str | None = None


@dataclass
class RedirectChain:
    start_url: str
    hops: list[RedirectHop] = field(default_factory=list)
    final_url: str | None = None
    loop_detected: bool = False
    max_redirects_reached: bool = False
    blocked_unsafe_target: str | None = None
    error: str | None = None

    @property
    def redirect_count(self) -> int:
        return sum(1 for hop in self.hops if hop.redirect_type)

    @property
    def has_redirects(self) -> bool:
        return self.redirect_count > 0

    @property
    def redirect_types(self) -> list[str]:
        return sorted({hop.redirect_type for hop in self.hops if hop.redirect_type})

    def to_dict(self) -> dict[str, Any]:
        return {
            "redirect_chain": [
                {"url": h.url, "status_code": h.status_code, "redirect_type": h.redirect_type}
                for h in self.hops
            ],
            "final_url": self.final_url,
            "redirect_count": self.redirect_count,
            "has_redirects": self.has_redirects,
            "redirect_types": self.redirect_types,
            "loop_detected": self.loop_detected,
            "max_redirects_reached": self.max_redirects_reached,
            "blocked_unsafe_target": self.blocked_unsafe_target,
            "error": self.error,
        }


async def walk_redirect_chain(
    fetcher: Fetcher,
    url: str,
    timeout: float,
    max_hops: int | None = None,
) -> RedirectChain:
    """
    Follow redirects from `url` one hop at a time.

    Stops at the first non-redirect response, a repeated URL, an unsafe
    Location, a transport failure or after `max_hops` requests.
    """
    max_hops = max_hops or settings.MAX_REDIRECTS
    chain = RedirectChain(start_url=url)
    visited = set()
    current = url

    for _ in range(max_hops):
        try:
            response = await fetcher.head(current, timeout=timeout, follow_redirects=False)
            if response.status_code in (405, 501):
                response = await fetcher.request(
                    "GET", current, timeout=timeout, follow_redirects=False, read_body=False
                )
        except RECOVERABLE_ERRORS as e:
            chain.error = str(e)
            return chain

        visited.add(current)
        location = response.header("location")
        is_redirect = response.status_code in REDIRECT_STATUS_CODES and location
        chain.hops.append(RedirectHop(
            url=current,
            status_code=response.status_code,
            redirect_type=REDIRECT_TYPES.get(response.status_code) if is_redirect else None,
        ))

        if not is_redirect:
            chain.final_url = current
            return chain

        target = urljoin(current, location)
        if not is_safe_url(target):
            logger.warning(f"Refusing to follow redirect from {current} to unsafe target {target}")
            chain.blocked_unsafe_target = target
            return chain
        if target in visited:
            chain.loop_detected = True
            return chain
        current = target

    chain.max_redirects_reached = True
    return chain
