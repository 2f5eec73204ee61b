"""
Blob Storage Gateway.

Uploads happen client-side against pre-signed URLs, so the only server-side
call is deleting a blob once its Document or Photo row is gone.

Deletes are best-effort and run from the outbox worker after the row
deletion has committed, so a failure is logged and reported as False,
never raised; the worker keeps the outbox row for retry.
Without STORAGE_API_URL the gateway is log-only (dev/test mode).

Testability: pass a mock `session` to StorageGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging

import requests
from flask import current_app

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10


class StorageGateway:
    """Blob storage client.

    Usage:
        from permitdesk.integrations.storage import storage_gateway
        storage_gateway.delete(document.file_url)
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("STORAGE_API_URL"))

    def delete(self, file_url: str) -> bool:
        """
        Delete the blob behind *file_url*.

        Returns:
            True when the blob was deleted (or in log-only mode), False on
            any failure.
        """
        if not file_url:
            return False

        if not self.is_configured():
            logger.info("Storage delete (dev mode): %s", file_url)
            return True

        cfg = current_app.config
        headers = {}
        if cfg.get("STORAGE_API_TOKEN"):
            headers["Authorization"] = f"Bearer {cfg['STORAGE_API_TOKEN']}"

        try:
            resp = self.session.delete(
                cfg["STORAGE_API_URL"].rstrip("/") + "/objects",
                params={"url": file_url},
                headers=headers,
                timeout=cfg.get("STORAGE_TIMEOUT", _DEFAULT_TIMEOUT),
            )
        except requests.RequestException as exc:
            logger.warning("Storage delete failed for %s: %s", file_url, exc)
            return False

        # Already gone counts as deleted
        if resp.status_code == 404 or resp.ok:
            return True

        logger.warning(
            "Storage delete failed for %s: HTTP %s", file_url, resp.status_code,
        )
        return False


# Module-level singleton
storage_gateway = StorageGateway()
