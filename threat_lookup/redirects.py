"""Short-link expansion.

Links on known shortener hosts are followed hop by hop (without letting
urllib follow redirects itself) so the classifier sees the real target.
The walk is bounded to `MAX_HOPS` requests and stops at the first response
that is not a redirect or carries no `Location` header.
"""

from __future__ import annotations

import http.client
import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.error import HTTPError
from urllib.parse import urljoin, urlsplit
from urllib.request import HTTPRedirectHandler, Request, build_opener

logger = logging.getLogger(__name__)

MAX_HOPS = 4
DEFAULT_TIMEOUT = 10

SHORTENER_HOSTS = frozenset(
    {
        "bit.ly",
        "tinyurl.com",
        "t.co",
        "goo.gl",
        "rebrand.ly",
        "shorturl.at",
        "surl.li",
        "clck.ru",
        "goo.su",
    }
)

# Some shorteners serve an interstitial page to non-browser agents.
USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:98.0) Gecko/20100101 Firefox/98.0"


class RedirectError(Exception):
    """A hop could not be fetched (DNS, connect, TLS, timeout...)."""


@dataclass(frozen=True)
class RedirectStep:
    url: str
    status: int
    location: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "status": self.status, "location": self.location}


class _NoRedirect(HTTPRedirectHandler):
    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: ANN001
        return None


_opener = build_opener(_NoRedirect)


def _open(req: Request, timeout: float):
    return _opener.open(req, timeout=timeout)


def is_shortener(host: Optional[str]) -> bool:
    return bool(host) and host.lower().rstrip(".") in SHORTENER_HOSTS  # type: ignore[union-attr]


def _fetch_redirect(url: str, *, timeout: float) -> tuple[int, Optional[str]]:
    """Return (status, location) for a single GET without following redirects."""

    req = Request(url, method="GET", headers={"User-Agent": USER_AGENT})
    try:
        resp = _open(req, timeout)
    except HTTPError as e:
        # 3xx surfaces here because _NoRedirect refuses to follow.
        try:
            return int(e.code), e.headers.get("Location") if e.headers is not None else None
        finally:
            e.close()
    except (OSError, ValueError, http.client.HTTPException) as e:
        raise RedirectError(f"{url}: {e}") from e

    try:
        status = getattr(resp, "status", None) or 200
        return int(status), resp.headers.get("Location")
    finally:
        resp.close()


def follow_redirects(
    url: str, *, timeout: float = DEFAULT_TIMEOUT, max_hops: int = MAX_HOPS
) -> tuple[str, list[RedirectStep]]:
    """Walk the redirect chain starting at `url`.

    Returns (final_url, chain). Raises RedirectError when a hop fails.
    """
    chain: list[RedirectStep] = []
    current = url

    for _ in range(max(0, max_hops)):
        status, location = _fetch_redirect(current, timeout=timeout)
        chain.append(RedirectStep(url=current, status=status, location=location))

        if not location or status < 300 or status >= 400:
            break

        current = urljoin(current, location)

    return current, chain


def resolve_short_link(url: str, *, timeout: float = DEFAULT_TIMEOUT, max_hops: int = MAX_HOPS) -> str:
    """Expand `url` when it points at a known shortener, else return it as is.

    Network failures fall back to the original URL.
    """
    host = urlsplit(url).hostname
    if not is_shortener(host):
        return url

    logger.debug("host is a known short-link service: %s", host)
    try:
        final_url, chain = follow_redirects(url, timeout=timeout, max_hops=max_hops)
    except RedirectError as e:
        logger.debug("short link expansion failed, using original: %s", e)
        return url

    logger.debug("short link %s expanded to %s in %d hop(s)", url, final_url, len(chain))
    return final_url
