import os
import sys
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from alembic.config import Config
from alembic import command
from dotenv import load_dotenv
from fastapi import (
    FastAPI, APIRouter, UploadFile, File,
    HTTPException, Depends, Form, Header, Query
)
from fastapi.responses import StreamingResponse
from fastapi.staticfiles import StaticFiles
from io import BytesIO
from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.cors import CORSMiddleware

import imprest
import ledger
import transactions
from database import engine, get_db, Base, BASE_DIR, sync_database_url
from errors import (
    ValidationError, NotFoundError, ConflictError, register_error_handlers, unit_of_work
)
from models import (
    User, GlAccount, Regional, Budget, RegionalAllocation, ImprestFundCard,
    ImprestFund, Transaction, Vendor, Karyawan, Cash, PicAnggaran,
)
from spreadsheet import (
    build_budget_template, read_budget_rows, TEMPLATE_FILENAME, XLSX_MEDIA_TYPE
)
from storage import AttachmentStore
from utils import parse_tanggal, model_to_dict, pwd_context

_migrated = False

# ===============================
# ENV & MODE
# ===============================
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / ".env")

IS_DEV = os.getenv("PYTHON_ENV") == "development"

# ===============================
# LOGGING (SATU KALI SAJA)
# ===============================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, LOG_LEVEL, logging.INFO)

logging.basicConfig(
    level=log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

# Matikan log SQLAlchemy di production
if not IS_DEV:
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.dialects").setLevel(logging.WARNING)

log_file = BASE_DIR / "app.log"

file_handler = logging.FileHandler(log_file, encoding="utf-8")
file_handler.setLevel(log_level)
formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
file_handler.setFormatter(formatter)

# Root logger (aplikasi & library) + uvicorn (request HTTP & startup)
logging.getLogger().addHandler(file_handler)
for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    logging.getLogger(name).addHandler(file_handler)

logger.info(f"Log file aktif di: {log_file}")


def run_migrations():
    global _migrated
    if _migrated:
        logger.info("Migration sudah pernah dijalankan, skip.")
        return
    _migrated = True

    if os.getenv("RUN_MIGRATIONS", "1") == "0":
        logger.info("RUN_MIGRATIONS=0, migrasi dilewati.")
        return

    logger.info("Menjalankan auto migration...")

    # Jika berjalan sebagai .exe (PyInstaller) file alembic ada di _MEIPASS
    if getattr(sys, "frozen", False):
        base_path = Path(sys._MEIPASS)
    else:
        base_path = Path(__file__).parent

    alembic_ini = base_path / "alembic.ini"
    alembic_dir = base_path / "alembic"

    if not alembic_ini.exists() or not alembic_dir.exists():
        logger.warning("File atau folder Alembic tidak ditemukan. Melewati migrasi.")
        return

    cfg = Config(str(alembic_ini))
    cfg.set_main_option("script_location", str(alembic_dir))
    cfg.set_main_option("sqlalchemy.url", sync_database_url())
    command.upgrade(cfg, "head")
    logger.info("Auto migration selesai dengan sukses.")


# ===============================
# FASTAPI APP (with lifespan)
# ===============================
@asynccontextmanager
async def lifespan(app):
    logger.info("Inisialisasi database...")
    try:
        run_migrations()
    except Exception as e:
        # Startup tetap jalan; create_all di bawah melengkapi tabel yang belum ada
        logger.exception("run_migrations gagal: %s", e)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database siap")
    yield


app = FastAPI(title="Budget Control", lifespan=lifespan)
register_error_handlers(app)


# ===============================
# HEALTH CHECK
# ===============================
@app.get("/health")
async def health_check():
    return {
        "status": "siap",
        "waktu": datetime.now(timezone.utc)
    }

# ===============================
# CORS
# ===============================
if IS_DEV:
    cors_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost",
        "http://127.0.0.1",
    ]
else:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger.info(f"CORS allow_origins={cors_origins}")

# ===============================
# DIRECTORIES (PAKAI BASE_DIR DARI database.py)
# ===============================
UPLOAD_DIR = BASE_DIR / "uploads"
UPLOAD_TRANSACTION_DIR = UPLOAD_DIR / "transactions"
UPLOAD_TRANSACTION_DIR.mkdir(parents=True, exist_ok=True)

attachment_store = AttachmentStore(UPLOAD_TRANSACTION_DIR)

app.mount(
    "/uploads",
    StaticFiles(directory=str(UPLOAD_DIR)),
    name="uploads"
)

api_router = APIRouter(prefix="/api")


# ===============================
# PYDANTIC MODELS
# ===============================
class GlAccountRequest(BaseModel):
    code: Optional[str] = None
    description: Optional[str] = None
    keterangan: Optional[str] = None
    is_active: Optional[bool] = None


class RegionalRequest(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    is_active: Optional[bool] = None


class VendorRequest(BaseModel):
    name: Optional[str] = None
    alamat: Optional[str] = None
    pic: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    is_active: Optional[bool] = None


class KaryawanRequest(BaseModel):
    nama: Optional[str] = None
    nik: Optional[str] = None
    jabatan: Optional[str] = None
    nomor_hp: Optional[str] = None
    is_active: Optional[bool] = None


class CashRequest(BaseModel):
    karyawan_id: Optional[int] = None
    tanggal: Optional[str] = None
    tipe: Optional[str] = None
    jumlah: Optional[float] = None
    keterangan: Optional[str] = None


class PicAnggaranRequest(BaseModel):
    unit: str
    nama_pemegang_imprest: Optional[str] = ""
    nik_pemegang_imprest: Optional[str] = ""
    nama_penanggung_jawab: Optional[str] = ""
    nik_penanggung_jawab: Optional[str] = ""
    year: int


class CardCreateRequest(BaseModel):
    nomor_kartu: Optional[str] = None
    user: Optional[str] = None
    pic: Optional[str] = None
    saldo: float = 0


class CardUpdateRequest(BaseModel):
    nomor_kartu: Optional[str] = None
    user: Optional[str] = None
    pic: Optional[str] = None
    is_active: Optional[bool] = None


class BudgetRequest(BaseModel):
    gl_account_id: Optional[int] = None
    year: Optional[int] = None
    rkap: Optional[float] = None
    release_percent: Optional[float] = None
    total_amount: Optional[float] = None
    q1_amount: Optional[float] = None
    q2_amount: Optional[float] = None
    q3_amount: Optional[float] = None
    q4_amount: Optional[float] = None
    jan_amount: Optional[float] = None
    feb_amount: Optional[float] = None
    mar_amount: Optional[float] = None
    apr_amount: Optional[float] = None
    may_amount: Optional[float] = None
    jun_amount: Optional[float] = None
    jul_amount: Optional[float] = None
    aug_amount: Optional[float] = None
    sep_amount: Optional[float] = None
    oct_amount: Optional[float] = None
    nov_amount: Optional[float] = None
    dec_amount: Optional[float] = None


class AutoSplitRequest(BaseModel):
    # kuartal | bulan | bulan_dari_kuartal | kuartal_dari_bulan
    mode: str = "kuartal"


class AllocationItem(BaseModel):
    budget_id: int
    regional_code: str
    quarter: int
    amount: float = 0
    percentage: Optional[float] = 0


class AllocationBulkRequest(BaseModel):
    allocations: List[AllocationItem]


class RegionalSplitRequest(BaseModel):
    quarter: int
    mode: str = "rata"  # rata | persen
    percentages: Dict[str, float] = {}


class TransactionRequest(BaseModel):
    gl_account_id: Optional[int] = None
    quarter: Optional[int] = None
    regional_code: Optional[str] = None
    kegiatan: Optional[str] = None
    regional_pengguna: Optional[str] = None
    year: Optional[int] = None
    tanggal_kwitansi: Optional[str] = None
    nilai_kwitansi: Optional[float] = None
    jenis_pajak: Optional[str] = None
    keterangan: Optional[str] = None
    jenis_pengadaan: Optional[str] = None
    vendor_id: Optional[int] = None
    no_tiket_mydx: Optional[str] = None
    tgl_serah_finance: Optional[str] = None
    pic_finance: Optional[str] = None
    no_hp_finance: Optional[str] = None
    tgl_transfer_vendor: Optional[str] = None
    nilai_transfer: Optional[float] = None
    task_transfer_vendor: Optional[bool] = None
    task_terima_berkas: Optional[bool] = None


class ImprestItemRequest(BaseModel):
    tanggal: str
    uraian: str = ""
    gl_account_id: int
    area_pengguna: Optional[str] = None
    jumlah: float


class ImprestFundRequest(BaseModel):
    kelompok_kegiatan: Optional[str] = None
    regional_code: Optional[str] = None
    imprest_fund_card_id: Optional[int] = None
    items: Optional[List[ImprestItemRequest]] = None
    status: Optional[str] = None
    keterangan: Optional[str] = None
    debit: Optional[float] = None
    no_tiket_mydx: Optional[str] = None
    tgl_serah_finance: Optional[str] = None
    pic_finance: Optional[str] = None
    no_hp_finance: Optional[str] = None
    tgl_transfer_vendor: Optional[str] = None
    nilai_transfer: Optional[float] = None
    task_pengajuan: Optional[bool] = None
    task_transfer_vendor: Optional[bool] = None
    task_terima_berkas: Optional[bool] = None


class TopUpRequest(BaseModel):
    imprest_fund_card_id: Optional[int] = None
    debit: Optional[float] = None
    keterangan: Optional[str] = None


class ProfileRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    avatar: Optional[str] = None
    password: Optional[str] = None


# ===============================
# SERIALIZER
# ===============================
def serialize_budget(budget: Budget) -> dict:
    data = model_to_dict(budget)
    data["gl_account"] = model_to_dict(budget.gl_account)
    data["allocations"] = [
        model_to_dict(a) for a in sorted(budget.allocations, key=lambda a: (a.quarter, a.regional_code))
    ]
    return data


def serialize_transaction(trx: Transaction) -> dict:
    data = model_to_dict(trx)
    data["gl_account"] = model_to_dict(trx.gl_account)
    data["vendor"] = model_to_dict(trx.vendor)
    return data


def serialize_card(card: ImprestFundCard) -> dict:
    data = model_to_dict(card)
    data.pop("version", None)
    return data


def serialize_fund(fund: ImprestFund, fund_transactions=None) -> dict:
    data = model_to_dict(fund)
    data["imprest_fund_card"] = serialize_card(fund.imprest_fund_card) if fund.imprest_fund_card else None
    data["items"] = []
    for item in fund.items:
        item_data = model_to_dict(item)
        item_data["gl_account"] = model_to_dict(item.gl_account)
        data["items"].append(item_data)
    if fund_transactions is not None:
        data["transactions"] = [serialize_transaction(t) for t in fund_transactions]
    return data


def serialize_cash(cash: Cash) -> dict:
    data = model_to_dict(cash)
    k = cash.karyawan
    data["karyawan"] = {"id": k.id, "nama": k.nama, "nik": k.nik, "jabatan": k.jabatan} if k else None
    return data


async def _fund_transactions(db: AsyncSession, fund_ids) -> dict:
    grouped = defaultdict(list)
    if not fund_ids:
        return grouped
    result = await db.execute(
        select(Transaction)
        .where(Transaction.imprest_fund_id.in_(fund_ids))
        .order_by(Transaction.id)
        .execution_options(populate_existing=True)
    )
    for trx in result.scalars().all():
        grouped[trx.imprest_fund_id].append(trx)
    return grouped


async def _get_or_404(db: AsyncSession, model, id: int, label: str):
    obj = await db.get(model, id)
    if not obj:
        raise NotFoundError(f"{label} tidak ditemukan")
    return obj


# ===============================
# USER PROFILE
# ===============================
async def get_session_email(x_user_email: Optional[str] = Header(None)) -> str:
    """Session sudah divalidasi di upstream; yang dibawa ke sini hanya email user."""
    if not x_user_email:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_email


def serialize_user(user: User) -> dict:
    return {"id": user.id, "name": user.name, "email": user.email, "role": user.role, "avatar": user.avatar}


@api_router.get("/user/profile")
async def get_profile(email: str = Depends(get_session_email), db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundError("User tidak ditemukan")
    return {"status": "success", "data": serialize_user(user)}


@api_router.put("/user/profile")
async def update_profile(
    request: ProfileRequest,
    email: str = Depends(get_session_email),
    db: AsyncSession = Depends(get_db)
):
    async with unit_of_work(db, "update profil"):
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        if not user:
            raise NotFoundError("User tidak ditemukan")

        if request.name:
            user.name = request.name
        if request.role:
            user.role = request.role
        if request.avatar:
            user.avatar = request.avatar
        if request.password:
            user.password = pwd_context.hash(request.password)
        if request.email and request.email != email:
            existing = await db.execute(select(User).where(User.email == request.email))
            if existing.scalar_one_or_none():
                raise ValidationError("Email sudah digunakan")
            user.email = request.email

    return {"status": "success", "data": serialize_user(user)}


# ===============================
# MASTER: GL ACCOUNT, REGIONAL, VENDOR
# ===============================
@api_router.get("/gl-account")
async def get_gl_accounts(include_inactive: bool = False, db: AsyncSession = Depends(get_db)):
    stmt = select(GlAccount).order_by(GlAccount.code)
    if not include_inactive:
        stmt = stmt.where(GlAccount.is_active.is_(True))
    result = await db.execute(stmt)
    return {"status": "success", "data": [model_to_dict(g) for g in result.scalars().all()]}


@api_router.post("/gl-account")
async def create_gl_account(request: GlAccountRequest, db: AsyncSession = Depends(get_db)):
    if not request.code or not request.description:
        raise ValidationError("Kode dan deskripsi GL account wajib diisi")
    async with unit_of_work(db, "menyimpan GL account"):
        existing = await db.execute(select(GlAccount).where(GlAccount.code == request.code))
        if existing.scalar_one_or_none():
            raise ValidationError(f"Kode GL {request.code} sudah ada")
        gl = GlAccount(code=request.code, description=request.description, keterangan=request.keterangan or "")
        db.add(gl)
    return {"status": "success", "data": model_to_dict(gl)}


@api_router.put("/gl-account/{id}")
async def update_gl_account(id: int, request: GlAccountRequest, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "update GL account"):
        gl = await _get_or_404(db, GlAccount, id, "GL account")
        if request.code and request.code != gl.code:
            existing = await db.execute(select(GlAccount).where(GlAccount.code == request.code))
            if existing.scalar_one_or_none():
                raise ValidationError(f"Kode GL {request.code} sudah ada")
        for key, value in request.model_dump(exclude_unset=True).items():
            setattr(gl, key, value)
    return {"status": "success", "data": model_to_dict(gl)}


@api_router.delete("/gl-account/{id}")
async def delete_gl_account(id: int, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "menonaktifkan GL account"):
        gl = await _get_or_404(db, GlAccount, id, "GL account")
        gl.is_active = False
    return {"status": "success", "message": "GL account dinonaktifkan"}


@api_router.get("/regional")
async def get_regionals(include_inactive: bool = False, db: AsyncSession = Depends(get_db)):
    stmt = select(Regional).order_by(Regional.code)
    if not include_inactive:
        stmt = stmt.where(Regional.is_active.is_(True))
    result = await db.execute(stmt)
    return {"status": "success", "data": [model_to_dict(r) for r in result.scalars().all()]}


@api_router.post("/regional")
async def create_regional(request: RegionalRequest, db: AsyncSession = Depends(get_db)):
    if not request.code or not request.name:
        raise ValidationError("Kode dan nama regional wajib diisi")
    async with unit_of_work(db, "menyimpan regional"):
        existing = await db.execute(select(Regional).where(Regional.code == request.code))
        if existing.scalar_one_or_none():
            raise ValidationError(f"Kode regional {request.code} sudah ada")
        regional = Regional(code=request.code, name=request.name)
        db.add(regional)
    return {"status": "success", "data": model_to_dict(regional)}


@api_router.put("/regional/{id}")
async def update_regional(id: int, request: RegionalRequest, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "update regional"):
        regional = await _get_or_404(db, Regional, id, "Regional")
        for key, value in request.model_dump(exclude_unset=True).items():
            setattr(regional, key, value)
    return {"status": "success", "data": model_to_dict(regional)}


@api_router.delete("/regional/{id}")
async def delete_regional(id: int, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "menonaktifkan regional"):
        regional = await _get_or_404(db, Regional, id, "Regional")
        regional.is_active = False
    return {"status": "success", "message": "Regional dinonaktifkan"}


@api_router.get("/vendor")
async def get_vendors(include_inactive: bool = False, db: AsyncSession = Depends(get_db)):
    stmt = select(Vendor).order_by(Vendor.name)
    if not include_inactive:
        stmt = stmt.where(Vendor.is_active.is_(True))
    result = await db.execute(stmt)
    return {"status": "success", "data": [model_to_dict(v) for v in result.scalars().all()]}


@api_router.post("/vendor")
async def create_vendor(request: VendorRequest, db: AsyncSession = Depends(get_db)):
    if not request.name:
        raise ValidationError("Nama vendor wajib diisi")
    async with unit_of_work(db, "menyimpan vendor"):
        vendor = Vendor(**request.model_dump(exclude_unset=True, exclude={"is_active"}))
        db.add(vendor)
    return {"status": "success", "data": model_to_dict(vendor)}


@api_router.put("/vendor/{id}")
async def update_vendor(id: int, request: VendorRequest, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "update vendor"):
        vendor = await _get_or_404(db, Vendor, id, "Vendor")
        for key, value in request.model_dump(exclude_unset=True).items():
            setattr(vendor, key, value)
    return {"status": "success", "data": model_to_dict(vendor)}


@api_router.delete("/vendor/{id}")
async def delete_vendor(id: int, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "menonaktifkan vendor"):
        vendor = await _get_or_404(db, Vendor, id, "Vendor")
        vendor.is_active = False
    return {"status": "success", "message": "Vendor dinonaktifkan"}


# ===============================
# KARYAWAN & CASH
# ===============================
@api_router.get("/karyawan")
async def get_karyawan(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Karyawan).order_by(Karyawan.nama))
    return {"status": "success", "data": [model_to_dict(k) for k in result.scalars().all()]}


@api_router.post("/karyawan")
async def create_karyawan(request: KaryawanRequest, db: AsyncSession = Depends(get_db)):
    if not request.nama or not request.nik:
        raise ValidationError("Nama dan NIK wajib diisi")
    async with unit_of_work(db, "menyimpan karyawan"):
        existing = await db.execute(select(Karyawan).where(Karyawan.nik == request.nik))
        if existing.scalar_one_or_none():
            raise ValidationError("NIK sudah terdaftar")
        karyawan = Karyawan(**request.model_dump(exclude_unset=True, exclude={"is_active"}))
        db.add(karyawan)
    return {"status": "success", "data": model_to_dict(karyawan)}


@api_router.put("/karyawan/{id}")
async def update_karyawan(id: int, request: KaryawanRequest, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "update karyawan"):
        karyawan = await _get_or_404(db, Karyawan, id, "Karyawan")
        if request.nik and request.nik != karyawan.nik:
            existing = await db.execute(select(Karyawan).where(Karyawan.nik == request.nik))
            if existing.scalar_one_or_none():
                raise ValidationError("NIK sudah terdaftar")
        for key, value in request.model_dump(exclude_unset=True).items():
            setattr(karyawan, key, value)
    return {"status": "success", "data": model_to_dict(karyawan)}


@api_router.delete("/karyawan/{id}")
async def delete_karyawan(id: int, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "menghapus karyawan"):
        karyawan = await _get_or_404(db, Karyawan, id, "Karyawan")
        await db.delete(karyawan)
    return {"status": "success", "message": "Karyawan berhasil dihapus"}


@api_router.get("/karyawan/{id}/saldo")
async def get_saldo_karyawan(id: int, db: AsyncSession = Depends(get_db)):
    """Saldo kas karyawan dihitung ulang dari seluruh riwayat (tidak disimpan)."""
    await _get_or_404(db, Karyawan, id, "Karyawan")
    result = await db.execute(select(Cash).where(Cash.karyawan_id == id))
    masuk = keluar = 0.0
    for cash in result.scalars().all():
        if cash.tipe == "masuk":
            masuk += cash.jumlah or 0
        else:
            keluar += cash.jumlah or 0
    return {
        "status": "success",
        "data": {"karyawan_id": id, "masuk": masuk, "keluar": keluar, "saldo": masuk - keluar}
    }


def _validate_tipe(tipe: Optional[str]):
    if tipe and tipe not in ("masuk", "keluar"):
        raise ValidationError("Tipe harus masuk atau keluar")


@api_router.get("/cash")
async def get_cash_list(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Cash).order_by(Cash.tanggal.desc()))
    return {"status": "success", "data": [serialize_cash(c) for c in result.scalars().all()]}


@api_router.get("/cash/{id}")
async def get_cash(id: int, db: AsyncSession = Depends(get_db)):
    cash = await _get_or_404(db, Cash, id, "Cash record")
    return {"status": "success", "data": serialize_cash(cash)}


@api_router.post("/cash", status_code=201)
async def create_cash(request: CashRequest, db: AsyncSession = Depends(get_db)):
    if not request.karyawan_id or not request.tanggal or not request.tipe or not request.jumlah:
        raise ValidationError("Karyawan, tanggal, tipe, dan jumlah harus diisi")
    _validate_tipe(request.tipe)
    if request.jumlah <= 0:
        raise ValidationError("Jumlah harus lebih dari 0")
    async with unit_of_work(db, "menyimpan cash"):
        await _get_or_404(db, Karyawan, request.karyawan_id, "Karyawan")
        cash = Cash(
            karyawan_id=request.karyawan_id,
            tanggal=parse_tanggal(request.tanggal),
            tipe=request.tipe,
            jumlah=request.jumlah,
            keterangan=request.keterangan or None,
        )
        db.add(cash)
    cash = await db.get(Cash, cash.id, populate_existing=True)
    return {"status": "success", "data": serialize_cash(cash)}


@api_router.put("/cash/{id}")
async def update_cash(id: int, request: CashRequest, db: AsyncSession = Depends(get_db)):
    _validate_tipe(request.tipe)
    async with unit_of_work(db, "update cash"):
        cash = await _get_or_404(db, Cash, id, "Cash record")
        if request.karyawan_id:
            await _get_or_404(db, Karyawan, request.karyawan_id, "Karyawan")
            cash.karyawan_id = request.karyawan_id
        if request.tanggal:
            cash.tanggal = parse_tanggal(request.tanggal)
        if request.tipe:
            cash.tipe = request.tipe
        if request.jumlah is not None:
            cash.jumlah = request.jumlah
        if "keterangan" in request.model_fields_set:
            cash.keterangan = request.keterangan
    cash = await db.get(Cash, id, populate_existing=True)
    return {"status": "success", "data": serialize_cash(cash)}


@api_router.delete("/cash/{id}")
async def delete_cash(id: int, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "menghapus cash"):
        cash = await _get_or_404(db, Cash, id, "Cash record")
        await db.delete(cash)
    return {"status": "success", "message": "Cash record berhasil dihapus"}


# ===============================
# PIC ANGGARAN
# ===============================
@api_router.get("/pic-anggaran")
async def get_pic_anggaran(year: Optional[int] = None, db: AsyncSession = Depends(get_db)):
    stmt = select(PicAnggaran).order_by(PicAnggaran.created_at.desc())
    if year:
        stmt = stmt.where(PicAnggaran.year == year)
    result = await db.execute(stmt)
    return {"status": "success", "data": [model_to_dict(p) for p in result.scalars().all()]}


@api_router.post("/pic-anggaran")
async def create_pic_anggaran(request: PicAnggaranRequest, db: AsyncSession = Depends(get_db)):
    if not request.unit:
        raise ValidationError("Unit wajib diisi")
    async with unit_of_work(db, "menyimpan PIC anggaran"):
        pic = PicAnggaran(**request.model_dump())
        db.add(pic)
    return {"status": "success", "data": model_to_dict(pic)}


@api_router.delete("/pic-anggaran/{id}")
async def delete_pic_anggaran(id: int, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "menghapus PIC anggaran"):
        pic = await _get_or_404(db, PicAnggaran, id, "PIC anggaran")
        await db.delete(pic)
    return {"status": "success", "message": "PIC anggaran berhasil dihapus"}


# ===============================
# IMPREST FUND CARD
# ===============================
@api_router.get("/imprest-fund-card")
async def get_cards(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(ImprestFundCard).order_by(ImprestFundCard.created_at.desc()))
    return {"status": "success", "data": [serialize_card(c) for c in result.scalars().all()]}


@api_router.get("/imprest-fund-card/{id}")
async def get_card(id: int, db: AsyncSession = Depends(get_db)):
    card = await imprest.get_card(db, id)
    return {"status": "success", "data": serialize_card(card)}


@api_router.post("/imprest-fund-card", status_code=201)
async def create_card(request: CardCreateRequest, db: AsyncSession = Depends(get_db)):
    if not request.nomor_kartu or not request.user or not request.pic:
        raise ValidationError("Nomor Kartu, User, dan PIC wajib diisi")
    if request.saldo < 0:
        raise ValidationError("Saldo awal tidak boleh minus")
    async with unit_of_work(db, "menyimpan kartu"):
        existing = await db.execute(
            select(ImprestFundCard).where(ImprestFundCard.nomor_kartu == request.nomor_kartu)
        )
        if existing.scalar_one_or_none():
            raise ConflictError("Nomor Kartu sudah ada")
        card = ImprestFundCard(
            nomor_kartu=request.nomor_kartu,
            user=request.user,
            pic=request.pic,
            saldo=request.saldo or 0,
        )
        db.add(card)
    return {"status": "success", "data": serialize_card(card)}


@api_router.put("/imprest-fund-card/{id}")
async def update_card(id: int, request: CardUpdateRequest, db: AsyncSession = Depends(get_db)):
    """Saldo tidak bisa diubah di sini; hanya lewat top up dan siklus imprest fund."""
    async with unit_of_work(db, "update kartu"):
        card = await imprest.get_card(db, id)
        if request.nomor_kartu and request.nomor_kartu != card.nomor_kartu:
            existing = await db.execute(
                select(ImprestFundCard).where(
                    ImprestFundCard.nomor_kartu == request.nomor_kartu,
                    ImprestFundCard.id != id,
                )
            )
            if existing.scalar_one_or_none():
                raise ConflictError("Nomor Kartu sudah ada")
        for key, value in request.model_dump(exclude_unset=True, exclude_none=True).items():
            setattr(card, key, value)
    return {"status": "success", "data": serialize_card(card)}


@api_router.delete("/imprest-fund-card/{id}")
async def delete_card(id: int, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "menonaktifkan kartu"):
        card = await imprest.get_card(db, id)
        card.is_active = False
    return {"status": "success", "message": "Kartu dinonaktifkan"}


# ===============================
# BUDGET & ALOKASI
# ===============================
@api_router.get("/budget/template")
async def download_budget_template(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(GlAccount).where(GlAccount.is_active.is_(True)).order_by(GlAccount.code)
    )
    content = build_budget_template(result.scalars().all())
    return StreamingResponse(
        BytesIO(content),
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="{TEMPLATE_FILENAME}"',
            "Access-Control-Expose-Headers": "Content-Disposition"
        }
    )


@api_router.post("/budget/import")
async def import_budget(
    file: UploadFile = File(...),
    year: Optional[int] = Form(None),
    db: AsyncSession = Depends(get_db)
):
    content = await file.read()
    if not content:
        raise ValidationError("File tidak ditemukan")
    rows = read_budget_rows(content)
    results = await ledger.import_budget_rows(db, rows, year or datetime.now().year)
    return {"status": "success", "data": results}


@api_router.get("/budget/allocation")
async def get_allocations(budget_id: int, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(RegionalAllocation)
        .where(RegionalAllocation.budget_id == budget_id)
        .order_by(RegionalAllocation.quarter, RegionalAllocation.regional_code)
    )
    return {"status": "success", "data": [model_to_dict(a) for a in result.scalars().all()]}


@api_router.post("/budget/allocation")
async def save_allocations(request: AllocationBulkRequest, db: AsyncSession = Depends(get_db)):
    rows = [a.model_dump() for a in request.allocations]
    for row in rows:
        if row["quarter"] not in (1, 2, 3, 4):
            raise ValidationError("Kuartal harus 1-4")
        if row["amount"] < 0:
            raise ValidationError("Nilai alokasi tidak boleh minus")
    async with unit_of_work(db, "menyimpan alokasi"):
        for budget_id in {row["budget_id"] for row in rows}:
            await _get_or_404(db, Budget, budget_id, "Budget")
        saved = await ledger.upsert_allocations(db, rows)
    return {"status": "success", "data": [model_to_dict(a) for a in saved]}


@api_router.get("/budget")
async def get_budgets(year: Optional[int] = None, db: AsyncSession = Depends(get_db)):
    year = year or datetime.now().year
    result = await db.execute(
        select(Budget).where(Budget.year == year).order_by(Budget.id)
        .execution_options(populate_existing=True)
    )
    return {"status": "success", "data": [serialize_budget(b) for b in result.scalars().all()]}


def _validate_budget_values(values: dict):
    if (values.get("rkap") or 0) < 0:
        raise ValidationError("Nilai RKAP tidak boleh minus")
    release = values.get("release_percent")
    if release is not None and not 0 <= release <= 100:
        raise ValidationError("Release (%) harus di antara 0 dan 100")


async def _reload_budget(db: AsyncSession, budget_id: int) -> Budget:
    result = await db.execute(
        select(Budget).where(Budget.id == budget_id).execution_options(populate_existing=True)
    )
    budget = result.scalar_one_or_none()
    if not budget:
        raise NotFoundError("Budget tidak ditemukan")
    return budget


@api_router.post("/budget")
async def save_budget(request: BudgetRequest, db: AsyncSession = Depends(get_db)):
    """Upsert budget per (GL account, tahun)."""
    if not request.gl_account_id or not request.year:
        raise ValidationError("GL account dan tahun wajib diisi")
    values = request.model_dump(exclude_unset=True, exclude={"gl_account_id", "year"})
    _validate_budget_values(values)
    async with unit_of_work(db, "menyimpan budget"):
        await _get_or_404(db, GlAccount, request.gl_account_id, "GL account")
        budget = await ledger.upsert_budget(db, request.gl_account_id, request.year, values)
    budget = await _reload_budget(db, budget.id)
    return {"status": "success", "data": serialize_budget(budget)}


@api_router.put("/budget/{id}")
async def update_budget(id: int, request: BudgetRequest, db: AsyncSession = Depends(get_db)):
    values = request.model_dump(exclude_unset=True, exclude={"gl_account_id", "year"})
    _validate_budget_values(values)
    async with unit_of_work(db, "update budget"):
        budget = await _get_or_404(db, Budget, id, "Budget")
        await ledger.upsert_budget(db, budget.gl_account_id, budget.year, values)
    budget = await _reload_budget(db, id)
    return {"status": "success", "data": serialize_budget(budget)}


@api_router.delete("/budget/{id}")
async def delete_budget(id: int, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "menghapus budget"):
        budget = await _reload_budget(db, id)
        # allocations ikut terhapus (cascade delete-orphan)
        await db.delete(budget)
    return {"status": "success", "message": "Budget dan alokasinya berhasil dihapus"}


@api_router.post("/budget/{id}/auto-split")
async def auto_split_budget(id: int, request: AutoSplitRequest, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "membagi budget"):
        budget = await _reload_budget(db, id)
        quarters = [getattr(budget, f) or 0 for f in ledger.QUARTER_FIELDS]
        months = [getattr(budget, f) or 0 for f in ledger.MONTH_FIELDS]

        if request.mode == "kuartal":
            values = ledger.auto_split_quarters(budget.total_amount or 0)
        elif request.mode == "bulan":
            values = ledger.auto_split_months(budget.total_amount or 0)
        elif request.mode == "bulan_dari_kuartal":
            values = ledger.months_from_quarters(quarters)
        elif request.mode == "kuartal_dari_bulan":
            values = ledger.quarters_from_months(months)
        else:
            raise ValidationError(f"Mode split tidak dikenal: {request.mode}")

        for key, value in values.items():
            setattr(budget, key, value)
    budget = await _reload_budget(db, id)
    return {"status": "success", "data": serialize_budget(budget)}


@api_router.post("/budget/{id}/allocation/auto-split")
async def auto_split_regional(id: int, request: RegionalSplitRequest, db: AsyncSession = Depends(get_db)):
    if request.quarter not in (1, 2, 3, 4):
        raise ValidationError("Kuartal harus 1-4")
    async with unit_of_work(db, "membagi alokasi regional"):
        budget = await _reload_budget(db, id)
        result = await db.execute(
            select(Regional.code).where(Regional.is_active.is_(True)).order_by(Regional.code)
        )
        codes = result.scalars().all()
        q_amount = getattr(budget, f"q{request.quarter}_amount") or 0

        if request.mode == "rata":
            rows = ledger.auto_split_regional(q_amount, codes)
        elif request.mode == "persen":
            rows = ledger.apply_percentages(q_amount, codes, request.percentages)
        else:
            raise ValidationError(f"Mode alokasi tidak dikenal: {request.mode}")

        for row in rows:
            row["budget_id"] = id
            row["quarter"] = request.quarter
        saved = await ledger.upsert_allocations(db, rows)
    return {"status": "success", "data": [model_to_dict(a) for a in saved]}


# ===============================
# TRANSAKSI
# ===============================
@api_router.get("/transaction/remaining")
async def get_remaining_budget(
    gl_account_id: Optional[int] = None,
    regional_code: Optional[str] = None,
    quarter: int = 1,
    year: Optional[int] = None,
    db: AsyncSession = Depends(get_db)
):
    if not gl_account_id or not regional_code:
        return {"status": "success", "data": {"allocated": 0, "used": 0, "remaining": 0}}
    data = await ledger.get_remaining(db, gl_account_id, regional_code, quarter, year or datetime.now().year)
    if data["remaining"] < 0:
        data["warning"] = "Sisa anggaran minus"
    return {"status": "success", "data": data}


@api_router.get("/transaction")
async def get_transactions(
    year: Optional[int] = None,
    gl_account_id: Optional[int] = None,
    quarter: Optional[int] = None,
    regional_code: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    stmt = select(Transaction).where(Transaction.year == (year or datetime.now().year))
    if gl_account_id:
        stmt = stmt.where(Transaction.gl_account_id == gl_account_id)
    if quarter:
        stmt = stmt.where(Transaction.quarter == quarter)
    if regional_code:
        stmt = stmt.where(Transaction.regional_code == regional_code)
    result = await db.execute(stmt.order_by(Transaction.created_at.desc(), Transaction.id.desc()))
    return {"status": "success", "data": [serialize_transaction(t) for t in result.scalars().all()]}


@api_router.post("/transaction")
async def create_transaction(request: TransactionRequest, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "menyimpan transaksi"):
        trx = await transactions.create_transaction(
            db, request.model_dump(exclude_unset=True), datetime.now().year
        )
        warning = await transactions.remaining_warning(db, trx)
    trx = await transactions.get_transaction(db, trx.id)
    response = {"status": "success", "data": serialize_transaction(trx)}
    if warning:
        response["warning"] = warning
    return response


@api_router.put("/transaction/{id}")
async def update_transaction(id: int, request: TransactionRequest, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "update transaksi"):
        await transactions.update_transaction(db, id, request.model_dump(exclude_unset=True))
    trx = await transactions.get_transaction(db, id)
    return {"status": "success", "data": serialize_transaction(trx)}


@api_router.delete("/transaction/{id}")
async def delete_transaction(id: int, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "menghapus transaksi"):
        await transactions.delete_transaction(db, id)
    return {"status": "success", "message": "Transaksi berhasil dihapus"}


@api_router.get("/transaction/{id}/files")
async def list_transaction_files(id: int):
    return {"status": "success", "data": attachment_store.list(id)}


@api_router.post("/transaction/{id}/files")
async def upload_transaction_file(
    id: int,
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db)
):
    await transactions.get_transaction(db, id)
    content = await file.read()
    info = attachment_store.save(id, file.filename, content)
    logger.info(f"Lampiran {info['file_name']} disimpan untuk transaksi {id}")
    return {"status": "success", "data": info}


@api_router.delete("/transaction/{id}/files")
async def delete_transaction_file(id: int, file_id: str = Query(...)):
    attachment_store.delete(id, file_id)
    return {"status": "success", "message": "File berhasil dihapus"}


# ===============================
# IMPREST FUND
# ===============================
@api_router.get("/imprest-fund")
async def get_imprest_funds(status: Optional[str] = None, db: AsyncSession = Depends(get_db)):
    stmt = select(ImprestFund).order_by(ImprestFund.created_at.desc(), ImprestFund.id.desc())
    if status:
        stmt = stmt.where(ImprestFund.status == status)
    result = await db.execute(stmt.execution_options(populate_existing=True))
    funds = result.scalars().all()
    grouped = await _fund_transactions(db, [f.id for f in funds])
    return {
        "status": "success",
        "data": [serialize_fund(f, grouped.get(f.id, [])) for f in funds]
    }


async def _fund_response(db: AsyncSession, fund_id: int) -> dict:
    fund = await imprest.get_fund(db, fund_id)
    grouped = await _fund_transactions(db, [fund.id])
    return serialize_fund(fund, grouped.get(fund.id, []))


@api_router.get("/imprest-fund/{id}")
async def get_imprest_fund(id: int, db: AsyncSession = Depends(get_db)):
    return {"status": "success", "data": await _fund_response(db, id)}


@api_router.post("/imprest-fund")
async def create_imprest_fund(request: ImprestFundRequest, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "membuat imprest fund"):
        fund = await imprest.create_fund(db, request.model_dump(exclude_unset=True))
    return {"status": "success", "data": await _fund_response(db, fund.id)}


@api_router.post("/imprest-fund/topup")
async def top_up_imprest_fund(request: TopUpRequest, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "top up kartu"):
        fund = await imprest.top_up(db, request.imprest_fund_card_id, request.debit, request.keterangan)
    return {"status": "success", "data": await _fund_response(db, fund.id)}


@api_router.put("/imprest-fund/{id}")
async def update_imprest_fund(id: int, request: ImprestFundRequest, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "update imprest fund"):
        await imprest.update_fund(db, id, request.model_dump(exclude_unset=True))
    return {"status": "success", "data": await _fund_response(db, id)}


@api_router.delete("/imprest-fund/{id}")
async def delete_imprest_fund(id: int, db: AsyncSession = Depends(get_db)):
    async with unit_of_work(db, "menghapus imprest fund"):
        await imprest.delete_fund(db, id)
    return {"status": "success", "message": "Imprest fund dan transaksi terkait berhasil dihapus"}


# ===============================
# DASHBOARD
# ===============================
@api_router.get("/dashboard/ringkasan")
async def get_dashboard_summary(year: Optional[int] = None, db: AsyncSession = Depends(get_db)):
    """Anggaran vs realisasi per GL account untuk satu tahun."""
    year = year or datetime.now().year
    budgets = (await db.execute(select(Budget).where(Budget.year == year))).scalars().all()
    used_rows = await db.execute(
        select(Transaction.gl_account_id, func.sum(Transaction.nilai_kwitansi))
        .where(Transaction.year == year)
        .group_by(Transaction.gl_account_id)
    )
    used_by_gl = {gl_id: float(total or 0) for gl_id, total in used_rows.all()}

    rows = []
    for budget in budgets:
        used = used_by_gl.get(budget.gl_account_id, 0.0)
        rows.append({
            "gl_account_id": budget.gl_account_id,
            "gl_code": budget.gl_account.code if budget.gl_account else None,
            "description": budget.gl_account.description if budget.gl_account else None,
            "total_amount": budget.total_amount or 0,
            "used": used,
            "remaining": (budget.total_amount or 0) - used,
        })
    rows.sort(key=lambda r: r["gl_code"] or "")

    total_budget = sum(r["total_amount"] for r in rows)
    total_used = sum(used_by_gl.values())
    return {
        "status": "success",
        "data": {
            "year": year,
            "items": rows,
            "total_budget": total_budget,
            "total_used": total_used,
            "total_remaining": total_budget - total_used,
        }
    }


# Include router in app (harus di akhir setelah semua routes didefinisikan)
app.include_router(api_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000, log_config=None)
