import os
import sys
import tempfile
from datetime import datetime

# Direktori data & DB terpisah sebelum modul backend di-import
_DATA_DIR = tempfile.mkdtemp(prefix="budget-control-test-")
os.environ["DATA_DIR"] = _DATA_DIR
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DATA_DIR}/default.db"
os.environ["RUN_MIGRATIONS"] = "0"
os.environ.setdefault("PYTHON_ENV", "test")

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

import models  # noqa: F401
from database import Base, get_db
from ledger import current_quarter
from main import app


@pytest.fixture
def session_factory(tmp_path):
    db_path = (tmp_path / "test.db").as_posix()
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    # NullPool: TestClient menjalankan tiap request di event loop sendiri
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def now():
    return datetime.now()


@pytest.fixture
def today(now):
    return now.strftime("%Y-%m-%d")


@pytest.fixture
def period(now):
    """(year, quarter) yang dipakai imprest fund saat dibuka."""
    return now.year, current_quarter(now)


def create_gl(client, code="51341002", description="BODP BBM Genset"):
    res = client.post("/api/gl-account", json={"code": code, "description": description})
    assert res.status_code == 200, res.text
    return res.json()["data"]["id"]


def create_card(client, saldo=5_000_000, nomor_kartu="4111-0001"):
    res = client.post("/api/imprest-fund-card", json={
        "nomor_kartu": nomor_kartu, "user": "Budi", "pic": "Sari", "saldo": saldo,
    })
    assert res.status_code == 201, res.text
    return res.json()["data"]["id"]


def allocate(client, gl_id, year, quarter, regional_code="TREG-1", amount=1_000_000):
    res = client.post("/api/budget", json={"gl_account_id": gl_id, "year": year, "rkap": amount * 4})
    assert res.status_code == 200, res.text
    budget_id = res.json()["data"]["id"]
    res = client.post("/api/budget/allocation", json={"allocations": [{
        "budget_id": budget_id, "regional_code": regional_code,
        "quarter": quarter, "amount": amount,
    }]})
    assert res.status_code == 200, res.text
    return budget_id


def card_saldo(client, card_id):
    res = client.get(f"/api/imprest-fund-card/{card_id}")
    assert res.status_code == 200, res.text
    return res.json()["data"]["saldo"]
