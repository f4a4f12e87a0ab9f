"""
Threat Lookup Web API
FastAPI adapter over the lookup service
"""

import sys
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, File, Header, Query, UploadFile
from fastapi.responses import JSONResponse

# Add parent to path for threat_lookup imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from threat_lookup import __version__
from threat_lookup.config import Settings, build_service, load_env_files
from threat_lookup.errors import GatewayError, PayloadTooLarge
from threat_lookup.logging_config import configure_logging
from threat_lookup.ocr import MAX_UPLOAD_SIZE
from threat_lookup.service import LookupService

app = FastAPI(
    title="Threat Lookup Gateway",
    description="IP/domain/URL reputation lookups behind a two-tier cache",
    version=__version__,
)


@lru_cache(maxsize=1)
def get_service() -> LookupService:
    load_env_files()
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_format, settings.log_file)
    return build_service(settings)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request, exc: GatewayError):
    return JSONResponse(status_code=exc.status_code, content={"Message": exc.public_message})


@app.get("/api/health")
def health():
    """Health check endpoint"""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/api/scan/uri")
def scan_uri(
    request: str = Query(..., min_length=1, description="IP, domain or URL to check"),
    user_id: Optional[int] = Header(None, alias="X-User-Id"),
    service: LookupService = Depends(get_service),
):
    """Verdict document for a single indicator.

    X-User-Id is set by the authenticating proxy for signed-in users.
    """
    result = service.lookup(request, user_id)
    return JSONResponse(content=result.verdict, headers={"X-Lookup-Outcome": result.outcome})


@app.post("/api/scan/screen")
def scan_screen(
    file: UploadFile = File(...),
    user_id: Optional[int] = Header(None, alias="X-User-Id"),
    service: LookupService = Depends(get_service),
):
    """Verdicts for every URL recognized in an uploaded screenshot."""
    content = file.file.read(MAX_UPLOAD_SIZE + 1)
    if len(content) > MAX_UPLOAD_SIZE:
        raise PayloadTooLarge(len(content), MAX_UPLOAD_SIZE)

    results = service.lookup_screenshot(content, user_id)
    return {candidate: r.verdict for candidate, r in results.items()}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
