"""Tests untuk master data (GL, regional, vendor), karyawan & cash, PIC anggaran, profil user, dan seed."""
import asyncio

import pytest
from sqlalchemy import select

from models import GlAccount, Regional, User
from seed import seed_database, ADMIN_EMAIL, ADMIN_PASSWORD, GL_ACCOUNTS, REGIONALS
from utils import pwd_context
from conftest import create_gl


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "siap"


# ==================== master data ====================

class TestGlAccount:

    def test_soft_delete(self, client):
        gl_id = create_gl(client)
        assert client.delete(f"/api/gl-account/{gl_id}").status_code == 200

        assert client.get("/api/gl-account").json()["data"] == []
        inactive = client.get("/api/gl-account", params={"include_inactive": True}).json()["data"]
        assert inactive[0]["id"] == gl_id
        assert inactive[0]["is_active"] is False

    def test_duplicate_code(self, client):
        create_gl(client)
        res = client.post("/api/gl-account", json={"code": "51341002", "description": "Lain"})
        assert res.status_code == 400
        assert res.json() == {"status": "error", "detail": "Kode GL 51341002 sudah ada"}

    def test_required_fields(self, client):
        assert client.post("/api/gl-account", json={"code": "1"}).status_code == 400

    def test_update(self, client):
        gl_id = create_gl(client)
        res = client.put(f"/api/gl-account/{gl_id}", json={"description": "BBM Genset STO"})
        assert res.json()["data"]["description"] == "BBM Genset STO"
        assert res.json()["data"]["code"] == "51341002"

    def test_not_found(self, client):
        assert client.delete("/api/gl-account/999").status_code == 404


class TestRegionalVendor:

    def test_regional_crud(self, client):
        res = client.post("/api/regional", json={"code": "TREG-1", "name": "Regional 1"})
        regional_id = res.json()["data"]["id"]
        client.put(f"/api/regional/{regional_id}", json={"name": "Regional Satu"})
        client.delete(f"/api/regional/{regional_id}")
        data = client.get("/api/regional", params={"include_inactive": True}).json()["data"]
        assert (data[0]["name"], data[0]["is_active"]) == ("Regional Satu", False)

    def test_vendor_crud(self, client):
        res = client.post("/api/vendor", json={"name": "CV Maju", "phone": "0812"})
        assert res.status_code == 200, res.text
        vendor_id = res.json()["data"]["id"]
        client.delete(f"/api/vendor/{vendor_id}")
        assert client.get("/api/vendor").json()["data"] == []

    def test_vendor_name_required(self, client):
        assert client.post("/api/vendor", json={"phone": "0812"}).status_code == 400


# ==================== karyawan & cash ====================

class TestKaryawanCash:

    @pytest.fixture
    def karyawan_id(self, client):
        res = client.post("/api/karyawan", json={"nama": "Dewi", "nik": "920001", "jabatan": "Staff"})
        assert res.status_code == 200, res.text
        return res.json()["data"]["id"]

    def test_duplicate_nik(self, client, karyawan_id):
        res = client.post("/api/karyawan", json={"nama": "Lain", "nik": "920001"})
        assert res.status_code == 400

    def test_saldo_recomputed_from_history(self, client, karyawan_id):
        for tipe, jumlah in (("masuk", 500_000), ("keluar", 120_000), ("masuk", 20_000)):
            res = client.post("/api/cash", json={
                "karyawan_id": karyawan_id, "tanggal": "2025-03-01", "tipe": tipe, "jumlah": jumlah,
            })
            assert res.status_code == 201, res.text

        data = client.get(f"/api/karyawan/{karyawan_id}/saldo").json()["data"]
        assert data == {"karyawan_id": karyawan_id, "masuk": 520_000, "keluar": 120_000, "saldo": 400_000}

    def test_cash_update_and_delete(self, client, karyawan_id):
        res = client.post("/api/cash", json={
            "karyawan_id": karyawan_id, "tanggal": "2025-03-01", "tipe": "masuk", "jumlah": 1_000,
        })
        cash = res.json()["data"]
        assert cash["karyawan"]["nama"] == "Dewi"

        res = client.put(f"/api/cash/{cash['id']}", json={"jumlah": 2_500, "keterangan": "koreksi"})
        assert res.json()["data"]["jumlah"] == 2_500
        assert res.json()["data"]["keterangan"] == "koreksi"

        assert client.delete(f"/api/cash/{cash['id']}").status_code == 200
        assert client.get(f"/api/cash/{cash['id']}").status_code == 404

    @pytest.mark.parametrize("payload", [
        {"tipe": "transfer", "jumlah": 10},
        {"tipe": "masuk", "jumlah": -5},
        {"tipe": "masuk"},
    ])
    def test_cash_validation(self, client, karyawan_id, payload):
        res = client.post("/api/cash", json={"karyawan_id": karyawan_id, "tanggal": "2025-03-01", **payload})
        assert res.status_code == 400

    def test_cash_unknown_karyawan(self, client):
        res = client.post("/api/cash", json={"karyawan_id": 999, "tanggal": "2025-03-01", "tipe": "masuk", "jumlah": 1})
        assert res.status_code == 404


class TestPicAnggaran:

    def test_create_filter_delete(self, client):
        client.post("/api/pic-anggaran", json={"unit": "Regional 1", "year": 2025, "nama_pemegang_imprest": "Budi"})
        client.post("/api/pic-anggaran", json={"unit": "Regional 2", "year": 2026})

        data = client.get("/api/pic-anggaran", params={"year": 2025}).json()["data"]
        assert [p["unit"] for p in data] == ["Regional 1"]

        assert client.delete(f"/api/pic-anggaran/{data[0]['id']}").status_code == 200
        assert client.get("/api/pic-anggaran", params={"year": 2025}).json()["data"] == []


# ==================== seed & profil ====================

def _seed(session_factory):
    async def run():
        async with session_factory() as db:
            await seed_database(db)
    asyncio.run(run())


def _get_user(session_factory, email):
    async def run():
        async with session_factory() as db:
            result = await db.execute(select(User).where(User.email == email))
            return result.scalar_one_or_none()
    return asyncio.run(run())


class TestSeed:

    def test_seed_is_idempotent(self, session_factory):
        _seed(session_factory)
        _seed(session_factory)

        async def count():
            async with session_factory() as db:
                gls = (await db.execute(select(GlAccount))).scalars().all()
                regs = (await db.execute(select(Regional))).scalars().all()
                users = (await db.execute(select(User))).scalars().all()
                return len(gls), len(regs), len(users)

        assert asyncio.run(count()) == (len(GL_ACCOUNTS), len(REGIONALS), 1)
        admin = _get_user(session_factory, ADMIN_EMAIL)
        assert pwd_context.verify(ADMIN_PASSWORD, admin.password)


class TestUserProfile:

    def test_requires_session_email(self, client):
        assert client.get("/api/user/profile").status_code == 401

    def test_get_and_update(self, client, session_factory):
        _seed(session_factory)
        headers = {"X-User-Email": ADMIN_EMAIL}

        res = client.get("/api/user/profile", headers=headers)
        assert res.status_code == 200
        assert res.json()["data"]["name"] == "Administrator"
        assert "password" not in res.json()["data"]

        res = client.put("/api/user/profile", headers=headers, json={"name": "Admin KKA", "password": "rahasia1"})
        assert res.status_code == 200, res.text
        assert res.json()["data"]["name"] == "Admin KKA"

        admin = _get_user(session_factory, ADMIN_EMAIL)
        assert pwd_context.verify("rahasia1", admin.password)

    def test_unknown_user(self, client):
        res = client.get("/api/user/profile", headers={"X-User-Email": "siapa@kka.com"})
        assert res.status_code == 404
