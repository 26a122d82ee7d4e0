"""
Per-connection authentication headers.
"""

from __future__ import annotations

from uuid import uuid4

from config import AsrConfig
from spec import (
    HEADER_ACCESS_KEY,
    HEADER_APP_KEY,
    HEADER_CONNECT_ID,
    HEADER_RESOURCE_ID,
)


def build_auth_headers(config: AsrConfig) -> dict[str, str]:
    """
    Fresh header set for one connection attempt.

    X-Api-Connect-Id is a new uuid4 on every call, so retries never reuse
    a request id. Raises ConfigurationError for an unknown model version.
    """
    return {
        HEADER_RESOURCE_ID: config.resource_id,
        HEADER_CONNECT_ID: str(uuid4()),
        HEADER_ACCESS_KEY: config.credentials.access_key,
        HEADER_APP_KEY: config.credentials.app_key,
    }
