from __future__ import annotations
import hmac
import logging
from typing import Optional
from fastapi import Header, HTTPException
from app.core.config import settings

log = logging.getLogger(__name__)


def _check_bearer(authorization: Optional[str], expected: Optional[str], caller: str) -> None:
    if not expected or not authorization or not hmac.compare_digest(authorization, f"Bearer {expected}"):
        log.warning("Rejected %s request: invalid or missing token", caller, extra={"job_id": "-", "stage": "-"})
        raise HTTPException(status_code=401, detail=f"Unauthorized - Invalid {caller} token")


def require_worker_token(authorization: Optional[str] = Header(None)) -> None:
    _check_bearer(authorization, settings.worker_auth_token, "worker")


def require_orchestrator_token(authorization: Optional[str] = Header(None)) -> None:
    _check_bearer(authorization, settings.orchestrator_auth_token or settings.preview_auth_token, "orchestrator")
