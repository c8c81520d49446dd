import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base

load_dotenv(Path(__file__).resolve().parent / ".env")

# ===============================
# BASE DIR (SELALU Path)
# ===============================
if os.getenv("DATA_DIR"):
    BASE_DIR = Path(os.getenv("DATA_DIR"))
elif getattr(sys, "frozen", False):
    # MODE EXE (PyInstaller)
    BASE_DIR = Path(os.getenv("LOCALAPPDATA", Path.home())) / "BudgetControl"
else:
    # MODE DEVELOPMENT
    BASE_DIR = Path(__file__).resolve().parent

BASE_DIR.mkdir(parents=True, exist_ok=True)

# ===============================
# DATABASE URL
# ===============================
DB_PATH = BASE_DIR / "budget_control.db"
DATABASE_URL = os.getenv("DATABASE_URL") or f"sqlite+aiosqlite:///{DB_PATH.as_posix()}"


def sync_database_url(url: str = DATABASE_URL) -> str:
    """URL sinkron untuk alembic (driver async diganti driver biasa)."""
    return (
        str(url)
        .replace("sqlite+aiosqlite://", "sqlite://")
        .replace("postgresql+asyncpg://", "postgresql://")
    )


# ===============================
# SQLALCHEMY ENGINE
# ===============================
engine = create_async_engine(
    DATABASE_URL,
    echo=os.getenv("PYTHON_ENV") == "development",
    future=True,
)

# ===============================
# SESSION
# ===============================
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()

# ===============================
# DEPENDENCY
# ===============================
async def get_db():
    async with AsyncSessionLocal() as session:
        yield session
