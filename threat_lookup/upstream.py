"""Upstream threat-intelligence API client.

GET {base}/search/{ip|url|domain}?request={value} with an `x-api-key` header.
The JSON verdict document is returned as is; its top-level `Zone` is one of
Red, Orange, Yellow, Green, Grey.

Calls are made once: no retries, so a degraded upstream is not hammered.
"""

from __future__ import annotations

import http.client
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

from .errors import UpstreamClientError, UpstreamUnexpected
from .models import Indicator

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://opentip.kaspersky.com/api/v1"
DEFAULT_TIMEOUT = 15

_API_PATHS = {
    "ip": "/search/ip",
    "url": "/search/url",
    "domain": "/search/domain",
}


def api_path(indicator_type: str) -> str:
    try:
        return _API_PATHS[indicator_type]
    except KeyError:
        raise ValueError(f"Unsupported indicator type: {indicator_type}") from None


def build_search_url(base_url: str, indicator: Indicator) -> str:
    query = urllib.parse.urlencode({"request": indicator.value})
    return f"{base_url.rstrip('/')}{api_path(indicator.type)}?{query}"


@dataclass(frozen=True)
class ThreatIntelClient:
    api_key: str
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT

    def search(self, indicator: Indicator) -> dict[str, Any]:
        """Fetch the verdict document for `indicator`.

        Raises UpstreamClientError for 400/401/403/404 and UpstreamUnexpected
        for any other status, transport failure or undecodable body.
        """
        full_url = build_search_url(self.base_url, indicator)

        req = urllib.request.Request(full_url)
        req.add_header("x-api-key", self.api_key)
        req.add_header("Accept", "application/json")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                status = int(getattr(response, "status", 200) or 200)
                body = response.read()
        except urllib.error.HTTPError as e:
            e.close()
            raise self._status_error(e.code, indicator) from e
        except (OSError, http.client.HTTPException) as e:
            logger.error("upstream request failed for %s:%s: %s", indicator.type, indicator.value, e)
            raise UpstreamUnexpected(f"Failed to send request to upstream API: {e}") from e

        if status != 200:
            raise self._status_error(status, indicator)

        try:
            doc = json.loads(body.decode("utf-8"))
        except ValueError as e:
            raise UpstreamUnexpected(f"Failed to parse upstream response: {e}", status=status) from e
        if not isinstance(doc, dict):
            raise UpstreamUnexpected("Upstream response is not a JSON object", status=status)

        logger.info("upstream verdict for %s:%s: %s", indicator.type, indicator.value, doc.get("Zone"))
        return doc

    @staticmethod
    def _status_error(status: int, indicator: Indicator) -> Exception:
        if UpstreamClientError.handles(status):
            logger.warning("upstream answered %d for %s:%s", status, indicator.type, indicator.value)
            return UpstreamClientError(status, indicator.value)
        logger.error("upstream returned unexpected status %d for %s:%s", status, indicator.type, indicator.value)
        return UpstreamUnexpected("Upstream API returned unexpected error", status=status)
