"""DNIT electronic-invoicing configuration checks."""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse

from loguru import logger

from carwash.domain.records import SafeDnitConfig
from carwash.repositories.base import IStorage


def _problem(endpoint_url: str, auth_token: Optional[str]) -> Optional[str]:
    parsed = urlparse(endpoint_url or "")
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return "invalid endpoint URL"
    if not auth_token:
        return "missing auth token"
    return None


def check_dnit_connection(storage: IStorage) -> Optional[SafeDnitConfig]:
    """Validate the stored configuration and record the result; no request is sent."""
    config = storage.get_dnit_config()
    if config is None:
        logger.info("No DNIT configuration to check")
        return None
    error = _problem(config.endpoint_url, config.auth_token)
    if error:
        logger.warning("DNIT configuration check failed: {}", error)
    updated = storage.record_dnit_connection_test(config.id, error is None, error)
    return SafeDnitConfig.from_config(updated) if updated else None
