"""
Alembic environment for the SportBot query store.

The target database is the one the app itself uses:
  - Config.DATABASE_URL when set (PostgreSQL)
  - otherwise the SQLite file at db.QUERIES_DB
`alembic -x db=path/to/queries.db upgrade head` migrates another SQLite file.

Migrations are raw op.* calls, so there is no MetaData to autogenerate from.
"""

import os
import sys
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config  # noqa: E402
from db import QUERIES_DB  # noqa: E402

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = None


def resolve_url() -> str:
    sqlite_override = context.get_x_argument(as_dictionary=True).get('db')
    if sqlite_override:
        return f"sqlite:///{sqlite_override}"
    if Config.DATABASE_URL:
        # SQLAlchemy 2.x only accepts the postgresql:// scheme
        return Config.DATABASE_URL.replace("postgres://", "postgresql://", 1)
    return f"sqlite:///{QUERIES_DB}"


config.set_main_option("sqlalchemy.url", resolve_url())


def run_migrations_offline() -> None:
    """Emit the query store DDL as SQL instead of applying it."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            # SQLite needs batch mode for ALTER TABLE
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
