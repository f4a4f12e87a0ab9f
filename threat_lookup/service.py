"""Lookup orchestration.

    classify -> fast cache -> durable store -> upstream API -> write-back

Read-path storage failures degrade to the next tier; write-back failures are
logged and swallowed because the caller already has a valid verdict.
Classification and upstream errors always propagate.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Collection, Iterable, Optional, Union

from .cache import FastCache
from .errors import CacheUnavailable, GatewayError, NoIndicatorsFound, StoreUnavailable
from .extract import extract_indicators
from .models import Indicator, LookupResult, verdict_zone
from .normalize import Resolver, classify_indicator
from .redirects import DEFAULT_TIMEOUT
from .store import ScanStore
from .upstream import ThreatIntelClient

logger = logging.getLogger(__name__)


def _decode(payload: str, source: str, indicator: Indicator) -> Optional[dict[str, Any]]:
    try:
        doc = json.loads(payload)
    except ValueError:
        doc = None
    if not isinstance(doc, dict):
        logger.warning("undecodable %s payload for %s:%s, ignoring", source, indicator.type, indicator.value)
        return None
    return doc


class LookupService:
    """Coordinates the classifier, both cache tiers and the upstream API.

    `persist_zones` limits which verdict zones are written to the durable
    store (None stores everything). The fast cache is written regardless.
    """

    def __init__(
        self,
        cache: FastCache,
        store: ScanStore,
        client: ThreatIntelClient,
        *,
        resolver: Optional[Resolver] = None,
        redirect_timeout: float = DEFAULT_TIMEOUT,
        persist_zones: Optional[Collection[str]] = None,
        ocr: Optional[Callable[[bytes], str]] = None,
    ):
        self.cache = cache
        self.store = store
        self.client = client
        self.resolver = resolver
        self.redirect_timeout = redirect_timeout
        self.persist_zones = frozenset(persist_zones) if persist_zones else None
        self.ocr = ocr

    def classify(self, raw_input: str) -> Indicator:
        return classify_indicator(raw_input, resolver=self.resolver, timeout=self.redirect_timeout)

    def lookup(self, raw_input: str, user_id: Optional[int] = None) -> LookupResult:
        indicator = self.classify(raw_input)
        logger.info("lookup %s:%s (user=%s)", indicator.type, indicator.value, user_id)

        cached = self._from_cache(indicator)
        if cached is not None:
            self._touch(indicator)
            self._record_user_stat(user_id, indicator, cached)
            return LookupResult(indicator=indicator, verdict=cached, outcome="cached")

        stored = self._from_store(indicator)
        if stored is not None:
            doc, payload = stored
            self._cache_set(indicator, payload)
            self._record_user_stat(user_id, indicator, doc)
            return LookupResult(indicator=indicator, verdict=doc, outcome="stored")

        doc = self.client.search(indicator)
        payload = json.dumps(doc, ensure_ascii=False)
        self._write_back(indicator, doc, payload)
        self._record_user_stat(user_id, indicator, doc)
        return LookupResult(indicator=indicator, verdict=doc, outcome="fresh")

    def lookup_text(
        self,
        text: Union[str, Iterable[str]],
        user_id: Optional[int] = None,
        *,
        max_workers: int = 4,
    ) -> dict[str, LookupResult]:
        """Look up every URL found in `text`, keyed by candidate.

        Candidates that fail (unclassifiable, upstream errors) are skipped.
        Raises NoIndicatorsFound when no candidate produced a verdict.
        """
        candidates = extract_indicators(text)

        results: dict[str, LookupResult] = {}
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(candidates)))) as executor:
            futures = {c: executor.submit(self.lookup, c, user_id) for c in candidates}
            for candidate, future in futures.items():
                try:
                    results[candidate] = future.result()
                except GatewayError as e:
                    logger.warning("failed to process IOC %s: %s (%s)", candidate, e, e.kind.value)

        if not results:
            raise NoIndicatorsFound("No IOCs were processed successfully")
        logger.info("processed %d of %d IOCs", len(results), len(candidates))
        return results

    def lookup_screenshot(self, image: bytes, user_id: Optional[int] = None) -> dict[str, LookupResult]:
        if self.ocr is None:
            raise NoIndicatorsFound("OCR is not configured")
        return self.lookup_text(self.ocr(image), user_id)

    def _from_cache(self, indicator: Indicator) -> Optional[dict[str, Any]]:
        try:
            payload = self.cache.get(indicator.type, indicator.value)
        except CacheUnavailable as e:
            logger.warning("fast cache read failed, falling through: %s", e)
            return None
        if payload is None:
            logger.info("cache miss for %s:%s", indicator.type, indicator.value)
            return None
        logger.info("cache hit for %s:%s", indicator.type, indicator.value)
        return _decode(payload, "cached", indicator)

    def _from_store(self, indicator: Indicator) -> Optional[tuple[dict[str, Any], str]]:
        try:
            payload = self.store.get(indicator.type, indicator.value)
        except StoreUnavailable as e:
            # The upstream API is still able to answer.
            logger.warning("durable store read failed, falling through: %s", e)
            return None
        if payload is None:
            return None
        doc = _decode(payload, "stored", indicator)
        if doc is None:
            return None
        logger.info("store hit for %s:%s", indicator.type, indicator.value)
        return doc, payload

    def _touch(self, indicator: Indicator) -> None:
        try:
            self.store.touch(indicator.type, indicator.value)
        except StoreUnavailable as e:
            logger.warning("can't update access count: %s", e)

    def _cache_set(self, indicator: Indicator, payload: str) -> None:
        try:
            self.cache.set(indicator.type, indicator.value, payload)
        except CacheUnavailable as e:
            logger.warning("cache is not updated: %s", e)

    def _write_back(self, indicator: Indicator, doc: dict[str, Any], payload: str) -> None:
        zone = verdict_zone(doc)
        if self.persist_zones is not None and zone not in self.persist_zones:
            logger.info("not persisting %s verdict for %s:%s", zone, indicator.type, indicator.value)
        else:
            try:
                self.store.put(indicator.type, indicator.value, payload)
            except StoreUnavailable as e:
                logger.warning("error saving response: %s", e)

        self._cache_set(indicator, payload)

    def _record_user_stat(self, user_id: Optional[int], indicator: Indicator, doc: dict[str, Any]) -> None:
        if user_id is None:
            return
        try:
            self.store.record_user_stat(user_id, indicator.type, indicator.value, verdict_zone(doc))
        except StoreUnavailable as e:
            logger.warning("can't update user stats: %s", e)
