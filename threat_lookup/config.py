"""Runtime settings and wiring.

Settings come from the environment. A `.env` file (current dir, then home
dir) is loaded first, so local runs need no exported variables.
"""

from __future__ import annotations

import functools
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .cache import CACHE_TTL_SECONDS, FastCache, MemoryCache, RedisCache, parse_ttl
from .models import ZONES
from .ocr import recognize_text
from .redirects import DEFAULT_TIMEOUT as REDIRECT_TIMEOUT
from .service import LookupService
from .store import MAX_RECORDS, PostgresScanStore, ScanStore, SqliteScanStore, default_db_path
from .upstream import DEFAULT_BASE_URL, DEFAULT_TIMEOUT, ThreatIntelClient

ENV_PREFIX = "THREAT_LOOKUP_"


def load_env_files() -> Optional[Path]:
    for env_path in [Path(".env"), Path.home() / ".env", Path.home() / ".threat-lookup.env"]:
        if env_path.exists():
            load_dotenv(env_path)
            return env_path
    return None


def _parse_zones(raw: str) -> Optional[frozenset[str]]:
    zones = frozenset(z.strip().capitalize() for z in raw.split(",") if z.strip())
    if not zones:
        return None
    unknown = zones - set(ZONES)
    if unknown:
        raise ValueError(f"Unknown zone(s) in {ENV_PREFIX}PERSIST_ZONES: {', '.join(sorted(unknown))}")
    return zones


@dataclass(frozen=True)
class Settings:
    api_key: str = ""
    api_base: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    redirect_timeout: float = REDIRECT_TIMEOUT

    # Unset -> in-process MemoryCache.
    redis_url: Optional[str] = None
    cache_ttl_seconds: int = CACHE_TTL_SECONDS

    # postgresql://... or sqlite:///path; unset -> sqlite under ~/.cache.
    database_url: Optional[str] = None
    max_records: int = MAX_RECORDS

    # None -> persist every zone.
    persist_zones: Optional[frozenset[str]] = None

    ocr_iam_token: str = ""
    ocr_folder_id: str = ""

    log_level: str = "INFO"
    log_format: str = "text"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        def get(name: str, default: str = "") -> str:
            return env.get(ENV_PREFIX + name, default).strip()

        return cls(
            api_key=get("API_KEY"),
            api_base=get("API_BASE") or DEFAULT_BASE_URL,
            timeout=float(get("TIMEOUT") or DEFAULT_TIMEOUT),
            redirect_timeout=float(get("REDIRECT_TIMEOUT") or REDIRECT_TIMEOUT),
            redis_url=get("REDIS_URL") or None,
            cache_ttl_seconds=parse_ttl(get("CACHE_TTL") or "24h"),
            database_url=get("DATABASE_URL") or None,
            max_records=int(get("MAX_RECORDS") or MAX_RECORDS),
            persist_zones=_parse_zones(get("PERSIST_ZONES")),
            ocr_iam_token=get("OCR_IAM_TOKEN"),
            ocr_folder_id=get("OCR_FOLDER_ID"),
            log_level=get("LOG_LEVEL") or "INFO",
            log_format=get("LOG_FORMAT") or "text",
            log_file=get("LOG_FILE") or None,
        )


def build_store(settings: Settings) -> ScanStore:
    url = settings.database_url
    if url and url.startswith(("postgres://", "postgresql://")):
        return PostgresScanStore.from_dsn(url, max_records=settings.max_records)

    if url and not url.startswith("sqlite:///"):
        raise ValueError(f"Unsupported database URL: {url}")

    path = url[len("sqlite:///"):] if url else default_db_path()
    store = SqliteScanStore(path, max_records=settings.max_records)
    store.init_schema()
    return store


def build_cache(settings: Settings) -> FastCache:
    if settings.redis_url:
        return RedisCache.from_url(settings.redis_url, ttl_seconds=settings.cache_ttl_seconds)
    return MemoryCache(ttl_seconds=settings.cache_ttl_seconds)


def build_service(settings: Settings) -> LookupService:
    ocr = None
    if settings.ocr_iam_token:
        ocr = functools.partial(
            recognize_text,
            iam_token=settings.ocr_iam_token,
            folder_id=settings.ocr_folder_id,
            timeout=settings.timeout,
        )

    return LookupService(
        build_cache(settings),
        build_store(settings),
        ThreatIntelClient(api_key=settings.api_key, base_url=settings.api_base, timeout=settings.timeout),
        redirect_timeout=settings.redirect_timeout,
        persist_zones=settings.persist_zones,
        ocr=ocr,
    )
