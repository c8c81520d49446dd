"""
Allocation ledger: budget per GL account/tahun, pembagian kuartal/bulan/regional,
dan perhitungan sisa anggaran berdasarkan transaksi.

Semua fungsi pembagian bersifat deterministik: bagian terakhir menyerap sisa
pembulatan sehingga jumlah bagian selalu sama persis dengan total.
"""
import logging
import math
from datetime import datetime
from calendar import monthrange
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ValidationError
from models import Budget, GlAccount, RegionalAllocation, Transaction

logger = logging.getLogger(__name__)

QUARTER_FIELDS = ("q1_amount", "q2_amount", "q3_amount", "q4_amount")
MONTH_FIELDS = (
    "jan_amount", "feb_amount", "mar_amount",
    "apr_amount", "may_amount", "jun_amount",
    "jul_amount", "aug_amount", "sep_amount",
    "oct_amount", "nov_amount", "dec_amount",
)

JENIS_PAJAK = ("TanpaPPN", "PPN11", "PPNJasa2", "PPNInklaring1.1")
JENIS_PENGADAAN = ("PadiUMKM", "InpresFund", "Nopes", "Lainnya")


# ===============================
# PERHITUNGAN NILAI
# ===============================
def calculate_total_amount(rkap: float, release_percent: float) -> int:
    return math.floor((rkap or 0) * (release_percent or 0) / 100)


def calculate_ppn(nilai_kwitansi: float, jenis_pajak: Optional[str]) -> Tuple[float, float]:
    """Jalur create: nilai kwitansi dianggap SUDAH termasuk pajak.

    Mengembalikan (nilai_tanpa_ppn, nilai_ppn).
    """
    nilai = float(nilai_kwitansi or 0)
    if jenis_pajak == "PPN11":
        tanpa_ppn = nilai / 1.11
        return tanpa_ppn, nilai - tanpa_ppn
    if jenis_pajak == "PPNJasa2":
        ppn = nilai * 0.02
        return nilai - ppn, ppn
    if jenis_pajak == "PPNInklaring1.1":
        ppn = nilai * 0.011
        return nilai - ppn, ppn
    return nilai, 0.0


def calculate_ppn_on_update(nilai: float, jenis_pajak: Optional[str]) -> Tuple[float, float, float]:
    """Jalur update: untuk PPN11 input dianggap BELUM termasuk pajak.

    Mengembalikan (nilai_kwitansi, nilai_tanpa_ppn, nilai_ppn). Jenis pajak
    lain dihitung sama seperti jalur create.
    """
    nilai = float(nilai or 0)
    if jenis_pajak == "PPN11":
        ppn = nilai * 0.11
        return nilai + ppn, nilai, ppn
    tanpa_ppn, ppn = calculate_ppn(nilai, jenis_pajak)
    return nilai, tanpa_ppn, ppn


# ===============================
# KUARTAL & TANGGAL
# ===============================
def current_quarter(now: Optional[datetime] = None) -> int:
    now = now or datetime.now()
    return math.ceil(now.month / 3)


def quarter_date_range(quarter: int, year: int) -> Tuple[datetime, datetime]:
    if quarter not in (1, 2, 3, 4):
        raise ValidationError(f"Kuartal harus 1-4, bukan {quarter}")
    start_month = (quarter - 1) * 3 + 1
    end_month = start_month + 2
    last_day = monthrange(year, end_month)[1]
    start = datetime(year, start_month, 1, 0, 0, 0)
    end = datetime(year, end_month, last_day, 23, 59, 59, 999000)
    return start, end


# ===============================
# AUTO SPLIT
# ===============================
def split_evenly(total: float, parts: int) -> List[float]:
    if parts <= 0:
        raise ValidationError("Jumlah bagian harus lebih dari 0")
    per_part = math.floor(total / parts)
    result = [per_part] * (parts - 1)
    result.append(total - per_part * (parts - 1))
    return result


def auto_split_quarters(total_amount: float) -> Dict[str, float]:
    return dict(zip(QUARTER_FIELDS, split_evenly(total_amount, 4)))


def auto_split_months(total_amount: float) -> Dict[str, float]:
    return dict(zip(MONTH_FIELDS, split_evenly(total_amount, 12)))


def months_from_quarters(quarters: Sequence[float]) -> Dict[str, float]:
    months = []
    for q_amount in quarters:
        months.extend(split_evenly(q_amount or 0, 3))
    return dict(zip(MONTH_FIELDS, months))


def quarters_from_months(months: Sequence[float]) -> Dict[str, float]:
    months = [m or 0 for m in months]
    return {
        field: sum(months[i * 3:i * 3 + 3])
        for i, field in enumerate(QUARTER_FIELDS)
    }


def auto_split_regional(q_amount: float, regional_codes: Sequence[str]) -> List[dict]:
    """Bagi rata nilai kuartal ke semua regional; regional terakhir menyerap sisa."""
    if not regional_codes:
        raise ValidationError("Tidak ada regional untuk dialokasikan")
    amounts = split_evenly(q_amount or 0, len(regional_codes))
    pcts = split_percentage(100, len(regional_codes))
    return [
        {"regional_code": code, "amount": amount, "percentage": pct}
        for code, amount, pct in zip(regional_codes, amounts, pcts)
    ]


def split_percentage(total_pct: float, parts: int) -> List[float]:
    """Persentase dibulatkan 2 desimal; bagian terakhir = total - bagian lain."""
    per_part = round(total_pct / parts, 2)
    result = [per_part] * (parts - 1)
    result.append(round(total_pct - per_part * (parts - 1), 2))
    return result


def apply_percentages(
    q_amount: float,
    regional_codes: Sequence[str],
    percentages: Dict[str, float],
) -> List[dict]:
    """
    Alokasi berdasarkan persentase.

    Regional dengan persentase 0/kosong mendapat sisa (100 - terisi) dibagi rata,
    slot kosong terakhir menyerap sisa pembulatan persentase.
    Nominal regional diturunkan dari persentase (floor), regional terakhir
    mendapat sisa nominal agar total sama dengan nilai kuartal.
    """
    if not regional_codes:
        raise ValidationError("Tidak ada regional untuk dialokasikan")

    pcts = {code: float(percentages.get(code) or 0) for code in regional_codes}
    filled = sum(p for p in pcts.values() if p > 0)
    if round(filled, 2) > 100:
        raise ValidationError(f"Total persentase {filled:g}% melebihi 100%")
    empty = [code for code, p in pcts.items() if p <= 0]

    remaining_pct = 100 - filled
    if empty and remaining_pct > 0:
        for code, pct in zip(empty, split_percentage(remaining_pct, len(empty))):
            pcts[code] = pct

    q_amount = q_amount or 0
    result = []
    allocated = 0
    for idx, code in enumerate(regional_codes):
        if idx < len(regional_codes) - 1:
            amount = math.floor(q_amount * pcts[code] / 100)
            allocated += amount
        else:
            amount = q_amount - allocated
        result.append({"regional_code": code, "amount": amount, "percentage": pcts[code]})
    return result


# ===============================
# BUDGET (DB)
# ===============================
async def get_budget(db: AsyncSession, gl_account_id: int, year: int) -> Optional[Budget]:
    result = await db.execute(
        select(Budget).where(Budget.gl_account_id == gl_account_id, Budget.year == year)
    )
    return result.scalar_one_or_none()


async def upsert_budget(db: AsyncSession, gl_account_id: int, year: int, values: dict) -> Budget:
    """Insert/update budget unik per (gl_account_id, year). Commit oleh pemanggil."""
    budget = await get_budget(db, gl_account_id, year)
    if budget is None:
        budget = Budget(gl_account_id=gl_account_id, year=year, rkap=0, release_percent=100)
        db.add(budget)
    for key, value in values.items():
        if value is not None and key != "total_amount":
            setattr(budget, key, value)

    # Tanpa RKAP, total dianggap RKAP dengan release 100%
    if not budget.rkap and values.get("total_amount"):
        budget.rkap = values["total_amount"]
        budget.release_percent = 100
    budget.total_amount = calculate_total_amount(budget.rkap, budget.release_percent)
    await db.flush()
    return budget


async def upsert_allocations(db: AsyncSession, rows: List[dict]) -> List[RegionalAllocation]:
    saved = []
    for row in rows:
        result = await db.execute(
            select(RegionalAllocation).where(
                RegionalAllocation.budget_id == row["budget_id"],
                RegionalAllocation.regional_code == row["regional_code"],
                RegionalAllocation.quarter == row["quarter"],
            )
        )
        alloc = result.scalar_one_or_none()
        if alloc is None:
            alloc = RegionalAllocation(
                budget_id=row["budget_id"],
                regional_code=row["regional_code"],
                quarter=row["quarter"],
            )
            db.add(alloc)
        alloc.amount = row.get("amount") or 0
        alloc.percentage = row.get("percentage") or 0
        saved.append(alloc)
    await db.flush()
    return saved


# ===============================
# SISA ANGGARAN
# ===============================
async def calculate_used(
    db: AsyncSession, gl_account_id: int, regional_code: str, quarter: int, year: int
) -> float:
    """
    Realisasi satu kuartal.

    Transaksi biasa dihitung menurut tanggal kwitansi. Transaksi hasil imprest
    fund dibebankan ke kuartal saat fund dibuka (kolom quarter), apa pun
    tanggal itemnya.
    """
    start, end = quarter_date_range(quarter, year)
    stmt = select(func.sum(Transaction.nilai_kwitansi)).where(
        and_(
            Transaction.gl_account_id == gl_account_id,
            Transaction.regional_code == regional_code,
            Transaction.year == year,
            or_(
                and_(
                    Transaction.imprest_fund_id.is_(None),
                    Transaction.tanggal_kwitansi >= start,
                    Transaction.tanggal_kwitansi <= end,
                ),
                and_(
                    Transaction.imprest_fund_id.isnot(None),
                    Transaction.quarter == quarter,
                ),
            ),
        )
    )
    result = await db.execute(stmt)
    return float(result.scalar() or 0.0)


async def get_remaining(
    db: AsyncSession, gl_account_id: int, regional_code: str, quarter: int, year: int
) -> dict:
    """allocated - used; boleh negatif (ditampilkan sebagai peringatan, bukan error)."""
    budget = await get_budget(db, gl_account_id, year)
    if budget is None:
        return {"allocated": 0, "used": 0, "remaining": 0}

    allocation = next(
        (a for a in budget.allocations if a.regional_code == regional_code and a.quarter == quarter),
        None,
    )
    allocated = allocation.amount if allocation else 0
    used = await calculate_used(db, gl_account_id, regional_code, quarter, year)
    return {"allocated": allocated, "used": used, "remaining": allocated - used}


# ===============================
# IMPORT EXCEL
# ===============================
def _to_number(value, default: float = 0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        return default


async def import_budget_rows(db: AsyncSession, rows: List[dict], year: int) -> dict:
    """
    Upsert budget dari baris spreadsheet.

    Baris gagal (GL tidak ditemukan / error DB) dicatat di `errors` tanpa
    menghentikan baris lain; tiap baris di-commit sendiri.
    """
    results = {"success": 0, "failed": 0, "errors": []}

    for row in rows:
        gl_code = str(row.get("Kode GL") or "").strip()
        try:
            gl_result = await db.execute(select(GlAccount).where(GlAccount.code == gl_code))
            gl_account = gl_result.scalar_one_or_none()
            if not gl_account:
                results["failed"] += 1
                results["errors"].append(f"GL Account {gl_code} tidak ditemukan")
                continue

            rkap = _to_number(row.get("Nilai RKAP"))
            release_percent = _to_number(row.get("Release (%)")) or 100

            await upsert_budget(db, gl_account.id, year, {
                "rkap": rkap,
                "release_percent": release_percent,
                "q1_amount": _to_number(row.get("Q1")),
                "q2_amount": _to_number(row.get("Q2")),
                "q3_amount": _to_number(row.get("Q3")),
                "q4_amount": _to_number(row.get("Q4")),
            })
            await db.commit()
            results["success"] += 1
        except Exception as e:
            await db.rollback()
            logger.error(f"Import budget baris {row} gagal: {e}")
            results["failed"] += 1
            results["errors"].append(f"Error pada baris: {row}")

    logger.info(f"Import budget {year}: {results['success']} sukses, {results['failed']} gagal")
    return results
