"""Scheduler authentication and request throttling for the HTTP surface."""

import os
import secrets
import logging

from fastapi import HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer()

# Shared by every router; sync passes are expensive, so /sync/run is capped per client
limiter = Limiter(key_func=get_remote_address)


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(bearer_scheme)) -> str:
    """Accept the request only if it carries the configured API_KEY.

    A valid key may act on any organization id it passes; membership is
    the calling application's concern.
    """
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        logger.error("API_KEY is not set, refusing all sync and reconciliation requests")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not secrets.compare_digest(credentials.credentials, expected_key):
        logger.warning("Rejected request with an invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials
