"""Alembic environment; the database URL comes from `Settings`, not alembic.ini."""

from alembic import context
from sqlalchemy import engine_from_config, pool

from simbridge.common.config import Settings
from simbridge.common.db import Base
from simbridge.services.esim import models as esim_models  # noqa: F401
from simbridge.services.orders import models as order_models  # noqa: F401
from simbridge.services.otp import models as otp_models  # noqa: F401
from simbridge.services.sync import models as sync_models  # noqa: F401

config = context.config
config.set_main_option("sqlalchemy.url", Settings().database_url)
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
