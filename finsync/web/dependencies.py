"""Shared dependencies for finsync web routes.

Usage:
    from fastapi import Depends
    from finsync.web.dependencies import get_services

    @router.post("/sync")
    async def sync(services: Services = Depends(get_services)):
        ...
"""

from __future__ import annotations

from finsync.core.services import Services, build_services

# Global singleton for the web process
_services: Services | None = None


def get_services() -> Services:
    """Get the process-wide services, building them on first use.

    The web process must hold exactly one model call queue, so every route
    depends on this instead of constructing clients itself.
    """
    global _services
    if _services is None:
        _services = build_services()
    return _services


async def close_services() -> None:
    global _services
    if _services is not None:
        await _services.close()
        _services = None
