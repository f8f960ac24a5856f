"""Alembic environment for the sickness case schema.

Migrations run against ``settings.DATABASE_URL`` and compare against the
tables registered on ``app.db.Base`` by ``app.models``. Invoke ``alembic``
from ``salus/api`` so the ``app`` package resolves.
"""

from __future__ import annotations

import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from app.config import settings
from app.db import Base
from app.logging_utils import install_log_sanitizer, sanitize
import app.models  # noqa: F401  registers tables on Base.metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)
    # fileConfig replaces root handlers; re-attach the URL/key mask.
    install_log_sanitizer()

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata

# Row-level-security policies and the append-only trigger are managed by
# hand in the revisions; autogenerate only diffs tables and columns.
_CONFIGURE_KWARGS = dict(
    target_metadata=target_metadata,
    compare_type=True,
    compare_server_default=True,
    transaction_per_migration=True,
)


def run_migrations_offline() -> None:
    """Emit SQL for the pending revisions without connecting."""
    url = settings.DATABASE_URL
    logger.info("Generating offline migration SQL for %s", sanitize(url))
    context.configure(url=url, literal_binds=True, **_CONFIGURE_KWARGS)

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = settings.DATABASE_URL
    logger.info("Migrating %s", sanitize(url))
    engine = create_engine(url, poolclass=pool.NullPool)

    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **_CONFIGURE_KWARGS)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
