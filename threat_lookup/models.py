"""Models for threat-lookup.

Plain dataclasses and literals; the verdict document itself stays an opaque
JSON-serializable dict owned by the upstream service.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Literal

IndicatorType = Literal["ip", "domain", "url"]
Zone = Literal["Red", "Orange", "Yellow", "Green", "Grey"]

# Terminal states of a successful lookup.
# - cached: answered by the fast cache
# - stored: answered by the durable store (fast cache backfilled)
# - fresh:  answered by the upstream API (both tiers written back)
Outcome = Literal["cached", "stored", "fresh"]

ZONES: tuple[str, ...] = ("Red", "Orange", "Yellow", "Green", "Grey")


@dataclass(frozen=True)
class Indicator:
    """Classified, normalized indicator."""

    type: IndicatorType

    # Normalized value used for cache keys, store rows and upstream requests.
    # - ip: bare address literal (no port)
    # - domain: host name
    # - url: host + path[?query][#fragment], no scheme, no port
    value: str

    # What the user submitted, before trimming/normalization.
    input: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LookupResult:
    indicator: Indicator
    verdict: dict[str, Any]
    outcome: Outcome

    @property
    def zone(self) -> str:
        return verdict_zone(self.verdict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "indicator": self.indicator.to_dict(),
            "outcome": self.outcome,
            "zone": self.zone,
            "verdict": self.verdict,
        }


def verdict_zone(verdict: dict[str, Any]) -> str:
    """Top-level `Zone` of a verdict document; unknown values read as Grey."""
    zone = verdict.get("Zone") if isinstance(verdict, dict) else None
    if isinstance(zone, str) and zone in ZONES:
        return zone
    return "Grey"
