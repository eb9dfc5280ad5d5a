"""Alembic environment for the Pin-a-Tree schema.

The database URL comes from application settings unless overridden on
the command line (``alembic -x db_url=sqlite+aiosqlite:///./dev.db
upgrade head``). Online migrations reuse ``build_engine`` so SQLite
connections get the same foreign-key pragma the application uses.
"""

import asyncio
from logging.config import fileConfig
from typing import Any, Dict

from alembic import context
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.pool import NullPool

from app.core.config import settings
from app.models.base import Base
from app.services.database import build_engine

# Registers the users and trees tables on Base.metadata
from app.models.tree import Tree  # noqa: F401
from app.models.user import User  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def database_url() -> str:
    return context.get_x_argument(as_dictionary=True).get(
        "db_url", settings.SQLALCHEMY_DATABASE_URI
    )


def configure_options(url: str) -> Dict[str, Any]:
    # SQLite cannot ALTER most constraints in place
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": make_url(url).get_backend_name() == "sqlite",
    }


def run_migrations_offline() -> None:
    """Emit the migration SQL to stdout instead of executing it."""
    url = database_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **configure_options(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def apply_migrations(connection: Connection, url: str) -> None:
    context.configure(connection=connection, **configure_options(url))

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    url = database_url()
    engine = build_engine(url, poolclass=NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(apply_migrations, url)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
