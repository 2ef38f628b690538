from __future__ import annotations
from logging.config import fileConfig
import os, sys

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

# Make backend/ importable when alembic runs from the repo root
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from shopadmin.config.settings import load_settings  # noqa: E402
from shopadmin.models.authz import Base  # noqa: E402
import shopadmin.models.product  # noqa: E402,F401
import shopadmin.models.order  # noqa: E402,F401
import shopadmin.models.notification  # noqa: E402,F401
import shopadmin.models.audit  # noqa: E402,F401

load_dotenv()

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Same DATABASE_URL resolution as create_app()
DATABASE_URL = load_settings()['DATABASE_URL']
config.set_main_option('sqlalchemy.url', DATABASE_URL)

target_metadata = Base.metadata
# SQLite cannot ALTER constraints in place; batch mode rebuilds the table instead
RENDER_AS_BATCH = DATABASE_URL.startswith('sqlite')


def run_migrations_offline():
    context.configure(
        url=DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        render_as_batch=RENDER_AS_BATCH,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = engine_from_config(
        config.get_section(config.config_ini_section) or {'sqlalchemy.url': DATABASE_URL},
        prefix='sqlalchemy.',
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=RENDER_AS_BATCH,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
