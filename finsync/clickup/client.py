"""ClickUp API client.

Folders of the configured space are the project list the classifier matches
against. ClickUp returns every folder of a space in one response, so
``list_folders`` answers as a single page for the paginator.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from finsync.config import ClickUpConfig
from finsync.errors import ExternalAPIError
from finsync.pipeline.types import Page, PageMeta

logger = logging.getLogger(__name__)


class ClickUpClient:
    """Async client for the ClickUp v2 API."""

    def __init__(
        self,
        api_token: str,
        space_id: str,
        base_url: str = "https://api.clickup.com/api/v2",
        include_archived: bool = True,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.space_id = space_id
        self.include_archived = include_archived
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Authorization": api_token, "Content-Type": "application/json"},
        )

    @classmethod
    def from_config(
        cls, config: ClickUpConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> ClickUpClient:
        """Build a client from configuration.

        Raises:
            ConfigurationError: If CLICKUP_API_TOKEN or CLICKUP_SPACE_ID is missing
        """
        api_token, space_id = config.require_credentials()
        return cls(
            api_token,
            space_id,
            base_url=config.base_url,
            include_archived=config.include_archived,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = await self.client.get(path, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise ExternalAPIError(
                f"ClickUp API error: {exc.response.status_code} {exc.response.reason_phrase}",
                status_code=exc.response.status_code,
                body=exc.response.text,
            ) from exc
        except httpx.RequestError as exc:
            raise ExternalAPIError(f"ClickUp API request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalAPIError(f"ClickUp API returned invalid JSON for {path}") from exc
        if not isinstance(data, dict):
            raise ExternalAPIError(f"ClickUp API returned an unexpected body for {path}")
        return data

    async def get_folders(self, archived: bool = False) -> list[dict[str, Any]]:
        data = await self._get(
            f"/space/{self.space_id}/folder", params={"archived": str(archived).lower()}
        )
        return list(data.get("folders") or [])

    async def list_folders(self, page: int = 1, per_page: int = 100) -> Page:
        """All folders of the space, archived ones included when configured.

        ``page`` and ``per_page`` are accepted for the paginator and ignored.
        """
        folders = await self.get_folders(archived=False)
        if self.include_archived:
            seen = {str(folder.get("id")) for folder in folders}
            for folder in await self.get_folders(archived=True):
                if str(folder.get("id")) not in seen:
                    folders.append(folder)

        logger.debug("ClickUp space %s has %d folders", self.space_id, len(folders))
        return Page(
            items=folders,
            meta=PageMeta(current_page=page, total_pages=1, total_count=len(folders)),
        )

    async def test_connection(self) -> dict[str, Any]:
        """Check the configured token against the API."""
        try:
            data = await self._get("/user")
        except ExternalAPIError as exc:
            logger.warning("ClickUp connection test failed: %s", exc)
            return {"success": False, "error": str(exc)}
        return {"success": True, "user": data.get("user")}

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> ClickUpClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
