"""
Imprest fund: siklus pengajuan dana kartu (draft -> open -> proses -> close),
sinkronisasi ke transaksi, dan mutasi saldo kartu.

Semua fungsi di sini hanya flush; commit/rollback dilakukan sekali oleh
handler sehingga satu operasi tersimpan utuh atau tidak sama sekali.
"""
import logging
from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from errors import ValidationError, NotFoundError, ConflictError
from ledger import current_quarter, get_remaining
from models import (
    ImprestFund, ImprestFundCard, ImprestItem, Transaction, GlAccount,
    TASK_FIELDS, FINANCE_FIELDS,
)
from utils import parse_tanggal

logger = logging.getLogger(__name__)


class FundStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    PROSES = "proses"
    CLOSE = "close"


class TransactionStatus(str, Enum):
    OPEN = "Open"
    PROSES = "Proses"
    CLOSE = "Close"


DEFAULT_REGIONAL_CODE = "HO"
DEFAULT_REGIONAL_PENGGUNA = "Head Office"
TOP_UP_KEGIATAN = "Top Up"

# Field yang wajib terisi sebelum transaksi boleh berstatus Close
CLOSE_REQUIRED_FIELDS = (
    "gl_account_id", "quarter", "regional_code", "kegiatan", "regional_pengguna",
    "tanggal_kwitansi", "jenis_pajak", "jenis_pengadaan", "vendor_id",
    "no_tiket_mydx", "tgl_serah_finance", "pic_finance", "no_hp_finance",
    "tgl_transfer_vendor", "nilai_transfer",
)

DATE_FIELDS = ("tgl_serah_finance", "tgl_transfer_vendor")


# ===============================
# FUNGSI MURNI STATUS
# ===============================
def derived_task_flags(fields: Mapping) -> dict:
    return {
        "task_upload_mydx": bool(fields.get("no_tiket_mydx")),
        "task_serah_finance": bool(fields.get("tgl_serah_finance")),
        "task_vendor_dibayar": bool(fields.get("tgl_transfer_vendor")),
    }


def derive_status_on_create(fields: Mapping) -> TransactionStatus:
    if fields.get("tgl_transfer_vendor"):
        return TransactionStatus.CLOSE
    if fields.get("no_tiket_mydx") or fields.get("tgl_serah_finance"):
        return TransactionStatus.PROSES
    return TransactionStatus.OPEN


def derive_status_on_update(fields: Mapping) -> TransactionStatus:
    """Close hanya jika semua field lengkap dan keenam task selesai; selain itu Proses."""
    complete = all(fields.get(name) for name in CLOSE_REQUIRED_FIELDS)
    complete = complete and (fields.get("nilai_tanpa_ppn") or 0) > 0
    tasks_done = all(fields.get(name) for name in TASK_FIELDS)
    if complete and tasks_done:
        return TransactionStatus.CLOSE
    return TransactionStatus.PROSES


def fund_to_transaction_status(status: str) -> TransactionStatus:
    if status == FundStatus.CLOSE:
        return TransactionStatus.CLOSE
    if status == FundStatus.PROSES:
        return TransactionStatus.PROSES
    return TransactionStatus.OPEN


def transaction_to_fund_status(status: str) -> FundStatus:
    if status == TransactionStatus.CLOSE:
        return FundStatus.CLOSE
    if status == TransactionStatus.PROSES:
        return FundStatus.PROSES
    return FundStatus.OPEN


def record_fields(obj) -> dict:
    return {c.key: getattr(obj, c.key) for c in obj.__table__.columns}


def copy_finance(source, target):
    """Salin informasi finance + task dari source ke target (fund <-> transaksi)."""
    for name in FINANCE_FIELDS + TASK_FIELDS:
        setattr(target, name, getattr(source, name))


def _validate_status(status: str) -> FundStatus:
    try:
        return FundStatus(status)
    except ValueError:
        raise ValidationError(f"Status tidak valid: {status}")


def _build_items(items) -> list:
    if not isinstance(items, list) or not items:
        raise ValidationError("Item imprest fund wajib diisi")
    result = []
    for idx, item in enumerate(items, start=1):
        if not item.get("gl_account_id"):
            raise ValidationError(f"GL account item ke-{idx} wajib diisi")
        jumlah = float(item.get("jumlah") or 0)
        if jumlah <= 0:
            raise ValidationError(f"Jumlah item ke-{idx} harus lebih dari 0")
        tanggal = parse_tanggal(item.get("tanggal"), "tanggal item")
        if tanggal is None:
            raise ValidationError(f"Tanggal item ke-{idx} wajib diisi")
        result.append(ImprestItem(
            tanggal=tanggal,
            uraian=item.get("uraian") or "",
            gl_account_id=item["gl_account_id"],
            area_pengguna=item.get("area_pengguna") or None,
            jumlah=jumlah,
        ))
    return result


async def _ensure_gl_accounts(db: AsyncSession, items):
    ids = {item.gl_account_id for item in items}
    result = await db.execute(select(GlAccount.id).where(GlAccount.id.in_(ids)))
    found = set(result.scalars().all())
    missing = ids - found
    if missing:
        raise NotFoundError(f"GL account tidak ditemukan: {sorted(missing)}")


# ===============================
# KARTU & SALDO
# ===============================
async def get_card(db: AsyncSession, card_id: int, for_update: bool = False) -> ImprestFundCard:
    stmt = select(ImprestFundCard).where(ImprestFundCard.id == card_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    card = result.scalar_one_or_none()
    if not card:
        raise NotFoundError("Imprest Fund Card tidak ditemukan")
    return card


async def adjust_saldo(db: AsyncSession, card_id: int, delta: float, reason: str) -> ImprestFundCard:
    card = await get_card(db, card_id, for_update=True)
    before = card.saldo or 0
    card.saldo = before + delta
    try:
        await db.flush()
    except StaleDataError:
        raise ConflictError(
            f"Saldo kartu {card.nomor_kartu} sedang diubah proses lain, silakan ulangi"
        )
    logger.info(f"[SALDO] kartu={card_id} {reason}: {before} -> {card.saldo} (delta {delta})")
    return card


# ===============================
# ALOKASI
# ===============================
async def check_allocation(
    db: AsyncSession, regional_code: str, items, year: int, quarter: int
):
    """Semua grup GL harus punya sisa alokasi cukup; dicek seluruhnya sebelum ada perubahan."""
    totals = defaultdict(float)
    for item in items:
        totals[item.gl_account_id] += item.jumlah or 0

    for gl_account_id, total in totals.items():
        rem = await get_remaining(db, gl_account_id, regional_code, quarter, year)
        if not rem["allocated"]:
            raise ConflictError(
                f"Alokasi anggaran GL {gl_account_id} regional {regional_code} "
                f"Q{quarter} {year} tidak ditemukan"
            )
        if rem["remaining"] < total:
            raise ConflictError(
                f"Sisa anggaran GL {gl_account_id} regional {regional_code} Q{quarter} {year} "
                f"tidak cukup: sisa {rem['remaining']}, dibutuhkan {total}"
            )


# ===============================
# OPERASI FUND
# ===============================
async def get_fund(db: AsyncSession, fund_id: int) -> ImprestFund:
    result = await db.execute(
        select(ImprestFund)
        .where(ImprestFund.id == fund_id)
        .execution_options(populate_existing=True)
    )
    fund = result.scalar_one_or_none()
    if not fund:
        raise NotFoundError("Imprest fund tidak ditemukan")
    return fund


async def _create_fund_transactions(db: AsyncSession, fund: ImprestFund, now: datetime):
    year = now.year
    quarter = current_quarter(now)
    for item in fund.items:
        trx = Transaction(
            gl_account_id=item.gl_account_id,
            quarter=quarter,
            regional_code=fund.regional_code or DEFAULT_REGIONAL_CODE,
            kegiatan=item.uraian,
            regional_pengguna=item.area_pengguna or fund.regional_code or DEFAULT_REGIONAL_PENGGUNA,
            year=year,
            tanggal_kwitansi=item.tanggal,
            nilai_kwitansi=item.jumlah,
            nilai_tanpa_ppn=item.jumlah,
            nilai_ppn=0,
            status=TransactionStatus.OPEN.value,
            imprest_fund_id=fund.id,
            jenis_pengadaan="InpresFund",
        )
        copy_finance(fund, trx)
        db.add(trx)
    await db.flush()


async def _open_fund(db: AsyncSession, fund: ImprestFund, now: datetime):
    await _create_fund_transactions(db, fund, now)
    if fund.imprest_fund_card_id:
        await adjust_saldo(db, fund.imprest_fund_card_id, -(fund.total_amount or 0),
                           f"open imprest fund {fund.id}")


async def create_fund(db: AsyncSession, data: dict, now: Optional[datetime] = None) -> ImprestFund:
    now = now or datetime.now()
    kelompok_kegiatan = data.get("kelompok_kegiatan")
    if not kelompok_kegiatan:
        raise ValidationError("Kelompok kegiatan dan items wajib diisi")
    items = _build_items(data.get("items"))
    status = _validate_status(data.get("status") or FundStatus.DRAFT.value)
    if status not in (FundStatus.DRAFT, FundStatus.OPEN):
        raise ValidationError("Imprest fund baru hanya boleh berstatus draft atau open")

    await _ensure_gl_accounts(db, items)
    card_id = data.get("imprest_fund_card_id")
    if card_id:
        card = await get_card(db, card_id)
        if not card.is_active:
            raise ValidationError(f"Kartu {card.nomor_kartu} tidak aktif")

    regional_code = data.get("regional_code") or None
    if status == FundStatus.OPEN:
        if not regional_code:
            raise ValidationError("Regional wajib diisi sebelum imprest fund dibuka")
        await check_allocation(db, regional_code, items, now.year, current_quarter(now))

    fund = ImprestFund(
        kelompok_kegiatan=kelompok_kegiatan,
        regional_code=regional_code,
        imprest_fund_card_id=card_id or None,
        status=status.value,
        total_amount=sum(item.jumlah for item in items),
        debit=0,
        keterangan=data.get("keterangan"),
        items=items,
    )
    _apply_finance(fund, data)
    db.add(fund)
    await db.flush()

    if status == FundStatus.OPEN:
        await _open_fund(db, fund, now)

    logger.info(f"Imprest fund {fund.id} dibuat status={fund.status} total={fund.total_amount}")
    return fund


def _apply_finance(fund: ImprestFund, data: dict):
    for name in FINANCE_FIELDS:
        if name in data:
            value = data[name]
            if name in DATE_FIELDS:
                value = parse_tanggal(value, name)
            setattr(fund, name, value)
    for name in ("task_pengajuan", "task_transfer_vendor", "task_terima_berkas"):
        if name in data and data[name] is not None:
            setattr(fund, name, bool(data[name]))
    for name, value in derived_task_flags(record_fields(fund)).items():
        setattr(fund, name, value)


async def update_fund(
    db: AsyncSession, fund_id: int, data: dict, now: Optional[datetime] = None
) -> ImprestFund:
    now = now or datetime.now()
    fund = await get_fund(db, fund_id)
    previous_status = _validate_status(fund.status)
    new_status = _validate_status(data.get("status") or fund.status)

    if previous_status != FundStatus.DRAFT and new_status == FundStatus.DRAFT:
        raise ValidationError("Imprest fund yang sudah dibuka tidak dapat dikembalikan ke draft")

    if data.get("items") is not None:
        if previous_status != FundStatus.DRAFT:
            raise ValidationError("Item hanya dapat diubah selama imprest fund masih draft")
        items = _build_items(data["items"])
        await _ensure_gl_accounts(db, items)
        # delete-orphan menghapus item lama
        fund.items = items
        fund.total_amount = sum(item.jumlah for item in items)

    if data.get("kelompok_kegiatan"):
        fund.kelompok_kegiatan = data["kelompok_kegiatan"]
    for name in ("regional_code", "keterangan", "debit"):
        if name in data:
            setattr(fund, name, data[name])
    if "imprest_fund_card_id" in data and data["imprest_fund_card_id"] != fund.imprest_fund_card_id:
        if data["imprest_fund_card_id"]:
            await get_card(db, data["imprest_fund_card_id"])
        fund.imprest_fund_card_id = data["imprest_fund_card_id"] or None

    if new_status != FundStatus.DRAFT and not fund.regional_code:
        raise ValidationError("Regional wajib diisi sebelum imprest fund dibuka")

    _apply_finance(fund, data)
    fund.status = new_status.value
    await db.flush()

    if previous_status == FundStatus.DRAFT and new_status == FundStatus.OPEN:
        await db.execute(delete(Transaction).where(Transaction.imprest_fund_id == fund.id))
        await _open_fund(db, fund, now)
    elif new_status != FundStatus.DRAFT:
        values = {name: getattr(fund, name) for name in FINANCE_FIELDS + TASK_FIELDS}
        values["status"] = fund_to_transaction_status(new_status).value
        await db.execute(
            update(Transaction)
            .where(Transaction.imprest_fund_id == fund.id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        if (
            fund.imprest_fund_card_id
            and previous_status != FundStatus.CLOSE
            and new_status == FundStatus.CLOSE
            and fund.nilai_transfer
        ):
            await adjust_saldo(db, fund.imprest_fund_card_id, fund.nilai_transfer,
                               f"close imprest fund {fund.id}")

    logger.info(f"Imprest fund {fund.id} diupdate {previous_status.value} -> {new_status.value}")
    return fund


async def delete_fund(db: AsyncSession, fund_id: int):
    fund = await get_fund(db, fund_id)

    if fund.imprest_fund_card_id and fund.status != FundStatus.DRAFT.value:
        amount_to_return = (fund.total_amount or 0) - (fund.nilai_transfer or 0)
        if amount_to_return > 0:
            await adjust_saldo(db, fund.imprest_fund_card_id, amount_to_return,
                               f"hapus imprest fund {fund.id}")

    await db.execute(delete(Transaction).where(Transaction.imprest_fund_id == fund.id))
    await db.delete(fund)
    await db.flush()
    logger.info(f"Imprest fund {fund_id} dihapus beserta transaksinya")


async def top_up(db: AsyncSession, card_id: int, debit: float, keterangan: Optional[str] = None) -> ImprestFund:
    if not card_id or not debit or debit <= 0:
        raise ValidationError("Imprest Fund Card dan nilai top up yang valid wajib diisi")
    card = await get_card(db, card_id)

    fund = ImprestFund(
        kelompok_kegiatan=TOP_UP_KEGIATAN,
        status=FundStatus.CLOSE.value,
        total_amount=0,
        debit=debit,
        keterangan=keterangan or f"Top Up dari {card.user} - {card.nomor_kartu}",
        imprest_fund_card_id=card_id,
        **{name: True for name in TASK_FIELDS},
    )
    db.add(fund)
    await db.flush()
    await adjust_saldo(db, card_id, debit, f"top up {fund.id}")
    return fund


async def sync_fund_from_transaction(db: AsyncSession, trx: Transaction):
    """Arah balik: data finance transaksi ditulis ke imprest fund induknya."""
    if not trx.imprest_fund_id:
        return
    fund = await db.get(ImprestFund, trx.imprest_fund_id)
    if fund is None:
        logger.warning(f"Transaksi {trx.id} menunjuk imprest fund {trx.imprest_fund_id} yang tidak ada")
        return
    copy_finance(trx, fund)
    fund.status = transaction_to_fund_status(trx.status).value
    await db.flush()
