"""Indicator classification and normalization.

Turns raw user input into an `Indicator(type, value)`:

- `8.8.8.8`, `8.8.8.8:443`, `[2001:db8::1]:8443` -> ip
- `ya.ru`, `https://ya.ru/`, `ya.ru:8080` -> domain
- `https://evil.example.com:8080/a?b#c` -> url `evil.example.com/a?b#c`

Links on known shortener hosts are expanded first (see `redirects.py`).

Normalized values classify to themselves, so a stored value can always be
fed back through `classify_indicator`.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from typing import Callable, Optional
from urllib.parse import SplitResult, urlsplit

from .errors import InvalidInput
from .models import Indicator, IndicatorType
from .redirects import DEFAULT_TIMEOUT, RedirectError, is_shortener, resolve_short_link

logger = logging.getLogger(__name__)

Resolver = Callable[..., str]

_DOMAIN_RE = re.compile(r"^([A-Za-z0-9-]{1,63}\.)+[A-Za-z]{2,}$")
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


def is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def is_valid_domain(value: str) -> bool:
    return bool(_DOMAIN_RE.match(value))


def _host_of_host_port(raw: str) -> Optional[str]:
    """`host` for a `host:port` string with a numeric port, else None."""
    host, sep, port = raw.rpartition(":")
    if not sep or not (port.isascii() and port.isdigit()):
        return None
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host or None


def _parse_url(raw: str) -> Optional[SplitResult]:
    """Split `raw` as a URL; None when it is not one.

    Accepts `scheme://host...`, and scheme-less `host/...`, `host?...`,
    `host#...` or `domain:port` whose host is an IP or a valid domain (the
    shape of our own normalized URL values).
    """
    if _SCHEME_RE.match(raw):
        try:
            parts = urlsplit(raw)
        except ValueError:
            return None
        if parts.scheme and parts.netloc and parts.hostname:
            return parts
        return None

    host_port = _host_of_host_port(raw)
    if not any(c in raw for c in "/?#") and not (host_port and is_valid_domain(host_port)):
        return None

    try:
        parts = urlsplit("http://" + raw)
    except ValueError:
        return None
    host = parts.hostname
    if host and (is_ip(host) or is_valid_domain(host)):
        return parts
    return None


def _from_url_parts(parts: SplitResult, raw: str) -> tuple[IndicatorType, str]:
    # hostname drops scheme, userinfo, port and IPv6 brackets (and lowercases).
    host = parts.hostname or ""

    path = parts.path if parts.path not in ("", "/") else ""
    if parts.query:
        path += "?" + parts.query
    if parts.fragment:
        path += "#" + parts.fragment

    host_is_ip = is_ip(host)
    if not host_is_ip and not is_valid_domain(host):
        raise InvalidInput(raw)

    if not path:
        return ("ip", host) if host_is_ip else ("domain", host)

    if ":" in host:
        host = f"[{host}]"
    return "url", host + path


def classify_indicator(
    value: str,
    *,
    resolver: Optional[Resolver] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Indicator:
    """Classify user input as ip, domain or url and normalize it.

    `resolver(url, timeout=...)` expands short links; it defaults to
    `resolve_short_link` and is only consulted for known shortener hosts.
    Raises InvalidInput when nothing matches.
    """
    raw = value.strip()
    if not raw:
        raise InvalidInput(value)

    if is_ip(raw):
        return Indicator(type="ip", value=raw, input=value)

    host = _host_of_host_port(raw)
    if host and is_ip(host):
        return Indicator(type="ip", value=host, input=value)

    parts = _parse_url(raw)
    if parts is not None:
        if is_shortener(parts.hostname):
            parts = _expand(parts, raw, resolver or resolve_short_link, timeout)
        itype, normalized = _from_url_parts(parts, raw)
        return Indicator(type=itype, value=normalized, input=value)

    if is_valid_domain(raw):
        return Indicator(type="domain", value=raw, input=value)

    raise InvalidInput(value)


def _expand(parts: SplitResult, raw: str, resolver: Resolver, timeout: float) -> SplitResult:
    """Resolve a short link; any failure keeps the pre-redirect parts."""
    url = raw if _SCHEME_RE.match(raw) else "http://" + raw
    try:
        final_url = resolver(url, timeout=timeout)
    except RedirectError as e:
        logger.debug("short link expansion failed for %s: %s", url, e)
        return parts

    if not final_url or final_url == url:
        return parts

    try:
        final = urlsplit(final_url)
    except ValueError:
        return parts
    host = final.hostname
    if not host or not (is_ip(host) or is_valid_domain(host)):
        return parts
    return final
