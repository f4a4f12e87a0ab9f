"""Screenshot text recognition.

Uses the Yandex Cloud Vision OCR `recognizeText` endpoint. Only the recognized
text is returned; indicator extraction happens in `extract.py`.
"""

from __future__ import annotations

import base64
import json
import logging
import urllib.error
import urllib.request
from typing import Any

from .errors import OcrFailed, PayloadTooLarge
from .extract import text_from_ocr_response

logger = logging.getLogger(__name__)

OCR_URL = "https://ocr.api.cloud.yandex.net/ocr/v1/recognizeText"

MB = 1 << 20
MAX_UPLOAD_SIZE = 256 * MB


def build_payload(image: bytes, *, mime_type: str = "application/octet-stream") -> dict[str, Any]:
    return {
        "mimeType": mime_type,
        "languageCodes": ["*"],
        "content": base64.b64encode(image).decode("ascii"),
    }


def recognize_text(
    image: bytes,
    *,
    iam_token: str,
    folder_id: str,
    mime_type: str = "application/octet-stream",
    timeout: float = 30,
    url: str = OCR_URL,
) -> str:
    """OCR `image` and return the recognized text (possibly empty).

    Raises PayloadTooLarge before any request for oversized uploads and
    OcrFailed on transport, HTTP or decoding errors.
    """
    if len(image) > MAX_UPLOAD_SIZE:
        raise PayloadTooLarge(len(image), MAX_UPLOAD_SIZE)
    if not iam_token:
        raise OcrFailed("OCR IAM token is not configured")

    body = json.dumps(build_payload(image, mime_type=mime_type)).encode("utf-8")
    req = urllib.request.Request(url, data=body, method="POST")
    req.add_header("Authorization", f"Bearer {iam_token}")
    req.add_header("Content-Type", "application/json")
    req.add_header("x-folder-id", folder_id)
    req.add_header("x-data-logging-enabled", "true")

    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            doc = json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        raise OcrFailed(f"OCR HTTP {e.code}: {e.reason}", {"status": e.code}) from e
    except (OSError, ValueError) as e:
        raise OcrFailed(f"OCR request failed: {e}") from e

    text = text_from_ocr_response(doc)
    logger.debug("OCR recognized %d characters", len(text))
    return text
