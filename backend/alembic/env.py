from logging.config import fileConfig
from sqlalchemy import pool, create_engine
from alembic import context
import sys
from pathlib import Path

# Menambahkan path backend agar bisa import database.py dan models.py
sys.path.append(str(Path(__file__).resolve().parent.parent))

from database import Base, sync_database_url
import models  # noqa: F401  (registrasi tabel ke Base.metadata)

config = context.config

if config.config_file_name is not None and config.get_section("loggers"):
    # Hanya jika ini punya section logging sendiri; logger aplikasi tetap hidup
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def get_url() -> str:
    # main.run_migrations() mengisi sqlalchemy.url; fallback ke DATABASE_URL
    return config.get_main_option("sqlalchemy.url") or sync_database_url()


def run_migrations_offline() -> None:
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True  # PENTING UNTUK SQLITE
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    # Alembic butuh koneksi sinkron, engine dibuat manual dari URL sync
    connectable = create_engine(
        get_url(),
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True  # PENTING AGAR BISA TAMBAH KOLOM DI SQLITE
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
