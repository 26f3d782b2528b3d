"""Startup validation for finsync.

Fail fast and loud when the database is unreachable or credentials are
missing, instead of discovering it on the first sync or classification.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from finsync.config import AppConfig, get_config
from finsync.db.models import ProjectModel
from finsync.errors import ConfigurationError

logger = logging.getLogger(__name__)


class StartupValidationError(Exception):
    """Raised when startup validation fails."""
    pass


def validate_credentials(config: AppConfig | None = None) -> None:
    """Check Qonto and model credentials.

    Raises:
        StartupValidationError: If either credential is missing or malformed
    """
    config = config or get_config()
    problems = []
    try:
        config.qonto.require_credentials()
        logger.info("✓ Qonto credentials present")
    except ConfigurationError as e:
        problems.append(str(e))
    try:
        config.vision.require_api_key()
        logger.info("✓ Model API key present")
    except ConfigurationError as e:
        problems.append(str(e))
    try:
        config.clickup.require_credentials()
        logger.info("✓ ClickUp credentials present")
    except ConfigurationError as e:
        # Optional: projects can be created locally instead
        logger.warning("⚠ %s", e)

    if problems:
        raise StartupValidationError("; ".join(problems))


async def validate_database_connection(session: AsyncSession) -> int:
    """Validate database connection and schema.

    Returns:
        Number of candidate projects

    Raises:
        StartupValidationError: If the database or schema is unusable
    """
    try:
        project_count = await session.scalar(select(func.count()).select_from(ProjectModel))
    except Exception as e:
        raise StartupValidationError(
            f"Database connection failed: {e}. "
            "Check DATABASE_URL and run 'finsync init'."
        ) from e

    logger.info("✓ Database connection OK (%d projects)", project_count)
    if project_count == 0:
        logger.warning(
            "⚠ No projects found. Run 'finsync sync --scope projects' or every classified "
            "invoice will end up 'no-match'."
        )
    return project_count


async def run_all_validations(session: AsyncSession, config: AppConfig | None = None) -> None:
    """Run every startup check.

    Raises:
        StartupValidationError: On the first failing check
    """
    logger.info("Running startup validation...")
    await validate_database_connection(session)
    validate_credentials(config)
    logger.info("✓ All startup validations passed")
