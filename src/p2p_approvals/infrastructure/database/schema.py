"""Startup verification of the database schema against the ORM models."""

import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

from p2p_approvals.core.exceptions import ConfigurationError
from p2p_approvals.models import Base

logger = logging.getLogger(__name__)


def find_schema_mismatches(connection: Connection) -> list[str]:
    """List tables and columns the models expect but the database lacks.

    Args:
        connection: Synchronous connection (use via run_sync)

    Returns:
        Human-readable mismatch descriptions, empty when the schema matches
    """
    inspector = inspect(connection)
    existing_tables = set(inspector.get_table_names())
    problems: list[str] = []

    for table in Base.metadata.sorted_tables:
        if table.name not in existing_tables:
            problems.append(f"missing table {table.name}")
            continue
        existing_columns = {col["name"] for col in inspector.get_columns(table.name)}
        for column in table.columns:
            if column.name not in existing_columns:
                problems.append(f"missing column {table.name}.{column.name}")

    return problems


async def verify_schema(engine: AsyncEngine) -> None:
    """Fail fast when the database schema does not match the models.

    Args:
        engine: Async engine to inspect

    Raises:
        ConfigurationError: If any table or column is missing
    """
    async with engine.connect() as conn:
        problems = await conn.run_sync(find_schema_mismatches)

    if problems:
        logger.error(f"Database schema mismatch: {', '.join(problems)}")
        raise ConfigurationError(
            "Database schema does not match the application models: "
            + "; ".join(problems),
            problems=problems,
        )
    logger.info("Database schema verified")
