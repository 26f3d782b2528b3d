"""Qonto Business API client.

Only the paginated list endpoints (clients, client invoices, supplier
invoices), attachment resolution and the organization check are consumed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from finsync.config import QontoConfig
from finsync.errors import DocumentDownloadError, ExternalAPIError
from finsync.pipeline.types import Page, PageMeta

logger = logging.getLogger(__name__)

ATTACHMENT_URL_TTL = timedelta(minutes=30)


@dataclass
class AttachmentLink:
    """Time-limited signed URL to an attachment."""

    url: str
    expires_at: datetime


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class QontoClient:
    """Async client for the Qonto Business API."""

    def __init__(
        self,
        login: str,
        secret_key: str,
        base_url: str = "https://thirdparty.qonto.com/v2",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"{login}:{secret_key}",
                "Content-Type": "application/json",
            },
        )
        # Signed attachment URLs carry their own credentials
        self.download_client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_config(
        cls, config: QontoConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> QontoClient:
        """Build a client from configuration.

        Raises:
            ConfigurationError: If QONTO_API_KEY is missing or malformed
        """
        login, secret_key = config.require_credentials()
        return cls(
            login,
            secret_key,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = await self.client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise ExternalAPIError(
                f"Qonto API error: {exc.response.status_code} {exc.response.reason_phrase}",
                status_code=exc.response.status_code,
                body=exc.response.text,
            ) from exc
        except httpx.RequestError as exc:
            raise ExternalAPIError(f"Qonto API request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalAPIError(f"Qonto API returned invalid JSON for {path}") from exc

    async def _list(self, path: str, key: str, page: int, per_page: int) -> Page:
        data = await self._get(path, params={"page": page, "per_page": per_page})
        items = data.get(key) or []
        return Page(items=list(items), meta=PageMeta.from_dict(data.get("meta"), page))

    async def list_clients(self, page: int = 1, per_page: int = 100) -> Page:
        return await self._list("/clients", "clients", page, per_page)

    async def list_client_invoices(self, page: int = 1, per_page: int = 100) -> Page:
        return await self._list("/client_invoices", "client_invoices", page, per_page)

    async def list_supplier_invoices(self, page: int = 1, per_page: int = 100) -> Page:
        return await self._list("/supplier_invoices", "supplier_invoices", page, per_page)

    async def get_attachment_url(self, attachment_id: str) -> AttachmentLink:
        """Resolve an attachment id to a signed URL.

        Raises:
            ExternalAPIError: If the attachment cannot be resolved
        """
        data = await self._get(f"/attachments/{attachment_id}")
        attachment = data.get("attachment") or {}
        url = attachment.get("url")
        if not url:
            raise ExternalAPIError(f"Qonto attachment {attachment_id} has no URL")

        expires_at = _parse_timestamp(attachment.get("expires_at"))
        if expires_at is None:
            expires_at = datetime.now(timezone.utc) + ATTACHMENT_URL_TTL

        return AttachmentLink(url=url, expires_at=expires_at)

    async def download_document(self, url: str) -> bytes:
        """Download a signed attachment URL.

        Raises:
            DocumentDownloadError: On non-2xx or transport failure
        """
        try:
            response = await self.download_client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DocumentDownloadError(
                f"Document download failed: {exc.response.status_code}",
                status_code=exc.response.status_code,
                body=exc.response.text[:500],
            ) from exc
        except httpx.RequestError as exc:
            raise DocumentDownloadError(f"Document download failed: {exc}") from exc
        return response.content

    async def get_organization(self) -> dict[str, Any]:
        data = await self._get("/organizations")
        return data.get("organization") or {}

    async def test_connection(self) -> dict[str, Any]:
        """Check the configured credentials against the API."""
        try:
            organization = await self.get_organization()
        except ExternalAPIError as exc:
            logger.warning("Qonto connection test failed: %s", exc)
            return {"success": False, "error": str(exc)}
        return {"success": True, "organization": organization}

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
        await self.download_client.aclose()

    async def __aenter__(self) -> QontoClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
