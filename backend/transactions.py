import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ValidationError, NotFoundError
from imprest import (
    DATE_FIELDS, derived_task_flags, derive_status_on_create, derive_status_on_update,
    record_fields, sync_fund_from_transaction,
)
from ledger import (
    JENIS_PAJAK, JENIS_PENGADAAN, calculate_ppn, calculate_ppn_on_update, get_remaining,
)
from models import GlAccount, Transaction, Vendor, FINANCE_FIELDS
from utils import parse_tanggal

logger = logging.getLogger(__name__)

PLAIN_FIELDS = (
    "gl_account_id", "quarter", "regional_code", "kegiatan", "regional_pengguna",
    "keterangan", "jenis_pengadaan", "vendor_id", "jenis_pajak",
)


async def get_transaction(db: AsyncSession, transaction_id: int) -> Transaction:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .execution_options(populate_existing=True)
    )
    trx = result.scalar_one_or_none()
    if not trx:
        raise NotFoundError("Transaksi tidak ditemukan")
    return trx


async def _validate_references(db: AsyncSession, data: dict):
    if data.get("quarter") is not None and data["quarter"] not in (1, 2, 3, 4):
        raise ValidationError("Kuartal harus 1-4")
    if data.get("jenis_pajak") and data["jenis_pajak"] not in JENIS_PAJAK:
        raise ValidationError(f"Jenis pajak tidak valid: {data['jenis_pajak']}")
    if data.get("jenis_pengadaan") and data["jenis_pengadaan"] not in JENIS_PENGADAAN:
        raise ValidationError(f"Jenis pengadaan tidak valid: {data['jenis_pengadaan']}")
    if data.get("gl_account_id") and not await db.get(GlAccount, data["gl_account_id"]):
        raise NotFoundError("GL account tidak ditemukan")
    if data.get("vendor_id") and not await db.get(Vendor, data["vendor_id"]):
        raise NotFoundError("Vendor tidak ditemukan")


def _apply_fields(trx: Transaction, data: dict):
    for name in PLAIN_FIELDS:
        if name in data:
            setattr(trx, name, data[name] if data[name] != "" else None)
    if "tanggal_kwitansi" in data:
        trx.tanggal_kwitansi = parse_tanggal(data["tanggal_kwitansi"], "tanggal kwitansi")
    for name in FINANCE_FIELDS:
        if name in data:
            value = data[name]
            if name in DATE_FIELDS:
                value = parse_tanggal(value, name)
            setattr(trx, name, value)
    for name in ("task_transfer_vendor", "task_terima_berkas"):
        if name in data:
            setattr(trx, name, bool(data[name]))
    for name, value in derived_task_flags(record_fields(trx)).items():
        setattr(trx, name, value)


async def create_transaction(db: AsyncSession, data: dict, year: int) -> Transaction:
    for name in ("gl_account_id", "quarter", "regional_code"):
        if not data.get(name):
            raise ValidationError(f"Field {name} wajib diisi")
    nilai_kwitansi = float(data.get("nilai_kwitansi") or 0)
    if nilai_kwitansi <= 0:
        raise ValidationError("Nilai kwitansi harus lebih dari 0")
    await _validate_references(db, data)

    trx = Transaction(
        year=data.get("year") or year,
        task_pengajuan=True,
        task_transfer_vendor=False,
        task_terima_berkas=False,
    )
    _apply_fields(trx, data)
    trx.nilai_kwitansi = nilai_kwitansi
    trx.nilai_tanpa_ppn, trx.nilai_ppn = calculate_ppn(nilai_kwitansi, trx.jenis_pajak)
    trx.status = derive_status_on_create(record_fields(trx)).value

    db.add(trx)
    await db.flush()
    logger.info(f"Transaksi {trx.id} dibuat GL={trx.gl_account_id} nilai={nilai_kwitansi} status={trx.status}")
    return trx


async def update_transaction(db: AsyncSession, transaction_id: int, data: dict) -> Transaction:
    trx = await get_transaction(db, transaction_id)
    await _validate_references(db, data)

    _apply_fields(trx, data)
    if "nilai_kwitansi" in data or "jenis_pajak" in data:
        if "nilai_kwitansi" in data:
            nilai = data["nilai_kwitansi"]
        elif trx.jenis_pajak == "PPN11":
            # PPN11 jalur update memakai nilai sebelum pajak
            nilai = trx.nilai_tanpa_ppn
        else:
            nilai = trx.nilai_kwitansi
        trx.nilai_kwitansi, trx.nilai_tanpa_ppn, trx.nilai_ppn = calculate_ppn_on_update(
            nilai, trx.jenis_pajak
        )
    trx.status = derive_status_on_update(record_fields(trx)).value
    await db.flush()

    await sync_fund_from_transaction(db, trx)
    logger.info(f"Transaksi {trx.id} diupdate status={trx.status}")
    return trx


async def delete_transaction(db: AsyncSession, transaction_id: int):
    trx = await get_transaction(db, transaction_id)
    await db.delete(trx)
    await db.flush()


async def remaining_warning(db: AsyncSession, trx: Transaction) -> Optional[str]:
    """Pesan peringatan jika transaksi membuat sisa anggaran minus."""
    rem = await get_remaining(db, trx.gl_account_id, trx.regional_code, trx.quarter, trx.year)
    if rem["remaining"] < 0:
        return f"Sisa anggaran Q{trx.quarter} {trx.regional_code} minus {abs(rem['remaining']):,.0f}"
    return None
