"""Threat lookup gateway - indicator classification and two-tier verdict cache."""

from .errors import ErrorKind, GatewayError
from .extract import extract_indicators
from .models import Indicator, LookupResult
from .normalize import classify_indicator
from .service import LookupService

__version__ = "1.0.0"
__all__ = [
    "classify_indicator",
    "extract_indicators",
    "Indicator",
    "LookupResult",
    "LookupService",
    "ErrorKind",
    "GatewayError",
]
