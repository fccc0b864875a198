import json
import logging

from fastapi import HTTPException, Request

from ..threats import scan_payload

logger = logging.getLogger(__name__)

SCANNED_METHODS = ("POST", "PUT", "PATCH")
SENSITIVE_PREFIXES = ("/api/habits", "/api/mood", "/api/coaching")


async def block_malicious_content(request: Request):
    if request.method not in SCANNED_METHODS:
        return

    body = await request.body()
    if not body:
        return

    try:
        payload = json.loads(body)
    except ValueError:
        # left to request validation
        return

    threat = scan_payload(payload)
    if threat:
        client_host = request.client.host if request.client else "unknown"
        logger.warning(f"[SECURITY BLOCK] {threat.name} detected on {request.url.path} from {client_host}")
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Security Violation",
                "message": f"Request blocked due to {threat.name}",
                "code": threat.code,
            }
        )


async def log_data_access(request: Request, call_next):
    if request.url.path.startswith(SENSITIVE_PREFIXES):
        client_host = request.client.host if request.client else "unknown"
        logger.info(f"[DATA ACCESS] {request.method} {request.url.path} | host: {client_host}")
    return await call_next(request)
