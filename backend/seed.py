"""Isi data awal: user admin, GL account, dan regional. Aman dijalankan berulang."""
import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import engine, AsyncSessionLocal, Base
from models import User, GlAccount, Regional
from utils import pwd_context

logger = logging.getLogger(__name__)

ADMIN_EMAIL = "admin@kka.com"
ADMIN_PASSWORD = "admin123"

GL_ACCOUNTS = [
    ("51341002", "BODP BBM Genset", "Pembelian BBM CADA"),
    ("51341001", "BODP Catu Daya",
     "Pemeliharaan Catu Daya Lokasi STO & Non-STO (Relokasi, Re-engginering, dan Regrouping)"),
    ("51344001", "BODP Alat Perbaikan Instalasi/Perangkat",
     "Perbaikan Alker Catu Daya IM dan Sertifikasi Kalibrasi"),
    ("51506002", "Printing and copy", "Pembayaran Sewa FC dan Lain-lain"),
    ("51346003", "O&M office equipment", "Perbaikan Sarana Kerja dan Pembelian Sarker"),
    ("51335006", "O&M of fiber optic and submarine cable", "Perbaikan Modul DWDM"),
    ("51346002", "BODP PC (Stand Alone) & Printer", "Perbaikan FC, Printer dan Lain-lain"),
    ("51512005", "Meeting expenses", "Support meeting expenses"),
    ("51351001", "Domestic travelling for O&M", "SPPD Rapat, Rekonsiliasi, Bantek dan Lain-lain"),
    ("51501001", "Domestic travelling for general administration",
     "SPPD Rapat, BC, dan Administrasi Lainnya"),
]

REGIONALS = [(f"TREG-{n}", f"Regional {n}") for n in range(1, 8)]


async def seed_database(db: AsyncSession):
    existing = await db.execute(select(User).where(User.email == ADMIN_EMAIL))
    if not existing.scalar_one_or_none():
        db.add(User(
            email=ADMIN_EMAIL,
            password=pwd_context.hash(ADMIN_PASSWORD),
            name="Administrator",
            role="admin",
        ))

    for code, description, keterangan in GL_ACCOUNTS:
        result = await db.execute(select(GlAccount).where(GlAccount.code == code))
        gl = result.scalar_one_or_none()
        if gl is None:
            gl = GlAccount(code=code)
            db.add(gl)
        gl.description = description
        gl.keterangan = keterangan

    for code, name in REGIONALS:
        result = await db.execute(select(Regional).where(Regional.code == code))
        regional = result.scalar_one_or_none()
        if regional is None:
            regional = Regional(code=code)
            db.add(regional)
        regional.name = name

    await db.commit()
    logger.info(f"Seed selesai: {len(GL_ACCOUNTS)} GL account, {len(REGIONALS)} regional")


async def main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as db:
        await seed_database(db)
    await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    asyncio.run(main())
