from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Boolean, Text,
    ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from database import Base
from datetime import datetime


TASK_FIELDS = (
    "task_pengajuan",
    "task_transfer_vendor",
    "task_terima_berkas",
    "task_upload_mydx",
    "task_serah_finance",
    "task_vendor_dibayar",
)

FINANCE_FIELDS = (
    "no_tiket_mydx",
    "tgl_serah_finance",
    "pic_finance",
    "no_hp_finance",
    "tgl_transfer_vendor",
    "nilai_transfer",
)


class FinanceMixin:
    """Kolom informasi finance + checklist task, dipakai ImprestFund dan Transaction."""

    no_tiket_mydx = Column(String, nullable=True)
    tgl_serah_finance = Column(DateTime, nullable=True)
    pic_finance = Column(String, nullable=True)
    no_hp_finance = Column(String, nullable=True)
    tgl_transfer_vendor = Column(DateTime, nullable=True)
    nilai_transfer = Column(Float, nullable=True)

    task_pengajuan = Column(Boolean, default=False, nullable=False)
    task_transfer_vendor = Column(Boolean, default=False, nullable=False)
    task_terima_berkas = Column(Boolean, default=False, nullable=False)
    task_upload_mydx = Column(Boolean, default=False, nullable=False)
    task_serah_finance = Column(Boolean, default=False, nullable=False)
    task_vendor_dibayar = Column(Boolean, default=False, nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False)
    password = Column(String, nullable=False)
    name = Column(String, default="")
    role = Column(String, default="user")
    avatar = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class GlAccount(Base):
    __tablename__ = "gl_account"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, nullable=False)
    description = Column(String, nullable=False, default="")
    keterangan = Column(Text, default="")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Regional(Base):
    __tablename__ = "regional"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False, default="")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Budget(Base):
    __tablename__ = "budget"
    __table_args__ = (UniqueConstraint("gl_account_id", "year", name="uq_budget_gl_year"),)

    id = Column(Integer, primary_key=True, index=True)
    gl_account_id = Column(Integer, ForeignKey("gl_account.id"), nullable=False)
    year = Column(Integer, nullable=False)
    rkap = Column(Float, default=0)
    release_percent = Column(Float, default=100)
    total_amount = Column(Float, default=0)

    q1_amount = Column(Float, default=0)
    q2_amount = Column(Float, default=0)
    q3_amount = Column(Float, default=0)
    q4_amount = Column(Float, default=0)

    jan_amount = Column(Float, default=0)
    feb_amount = Column(Float, default=0)
    mar_amount = Column(Float, default=0)
    apr_amount = Column(Float, default=0)
    may_amount = Column(Float, default=0)
    jun_amount = Column(Float, default=0)
    jul_amount = Column(Float, default=0)
    aug_amount = Column(Float, default=0)
    sep_amount = Column(Float, default=0)
    oct_amount = Column(Float, default=0)
    nov_amount = Column(Float, default=0)
    dec_amount = Column(Float, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    gl_account = relationship("GlAccount", lazy="selectin")
    allocations = relationship(
        "RegionalAllocation",
        back_populates="budget",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class RegionalAllocation(Base):
    __tablename__ = "regional_allocation"
    __table_args__ = (
        UniqueConstraint("budget_id", "regional_code", "quarter", name="uq_allocation_budget_regional_quarter"),
    )

    id = Column(Integer, primary_key=True, index=True)
    budget_id = Column(Integer, ForeignKey("budget.id", ondelete="CASCADE"), nullable=False)
    regional_code = Column(String, nullable=False)
    quarter = Column(Integer, nullable=False)
    amount = Column(Float, default=0)
    percentage = Column(Float, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    budget = relationship("Budget", back_populates="allocations")


class ImprestFundCard(Base):
    __tablename__ = "imprest_fund_card"

    id = Column(Integer, primary_key=True, index=True)
    nomor_kartu = Column(String, unique=True, nullable=False)
    user = Column(String, nullable=False)
    pic = Column(String, nullable=False)
    saldo = Column(Float, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # UPDATE saldo selalu "WHERE version = ?"; penulis yang kalah dapat StaleDataError
    __mapper_args__ = {"version_id_col": version}


class ImprestFund(FinanceMixin, Base):
    __tablename__ = "imprest_fund"

    id = Column(Integer, primary_key=True, index=True)
    kelompok_kegiatan = Column(String, nullable=False)
    regional_code = Column(String, nullable=True)
    imprest_fund_card_id = Column(Integer, ForeignKey("imprest_fund_card.id"), nullable=True)
    status = Column(String, default="draft", nullable=False)
    total_amount = Column(Float, default=0)
    debit = Column(Float, default=0)
    keterangan = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    imprest_fund_card = relationship("ImprestFundCard", lazy="selectin")
    items = relationship(
        "ImprestItem",
        back_populates="imprest_fund",
        cascade="all, delete-orphan",
        order_by="ImprestItem.id",
        lazy="selectin",
    )


class ImprestItem(Base):
    __tablename__ = "imprest_item"

    id = Column(Integer, primary_key=True, index=True)
    imprest_fund_id = Column(Integer, ForeignKey("imprest_fund.id", ondelete="CASCADE"), nullable=False)
    tanggal = Column(DateTime, nullable=False)
    uraian = Column(String, nullable=False, default="")
    gl_account_id = Column(Integer, ForeignKey("gl_account.id"), nullable=False)
    area_pengguna = Column(String, nullable=True)
    jumlah = Column(Float, default=0)

    imprest_fund = relationship("ImprestFund", back_populates="items")
    gl_account = relationship("GlAccount", lazy="selectin")


class Vendor(Base):
    __tablename__ = "vendor"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    alamat = Column(String, default="")
    pic = Column(String, default="")
    phone = Column(String, default="")
    email = Column(String, default="")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Transaction(FinanceMixin, Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    gl_account_id = Column(Integer, ForeignKey("gl_account.id"), nullable=False)
    quarter = Column(Integer, nullable=False)
    regional_code = Column(String, nullable=False)
    kegiatan = Column(String, default="")
    regional_pengguna = Column(String, default="")
    year = Column(Integer, nullable=False)
    tanggal_kwitansi = Column(DateTime, nullable=True)
    nilai_kwitansi = Column(Float, default=0)
    jenis_pajak = Column(String, nullable=True)
    nilai_tanpa_ppn = Column(Float, default=0)
    nilai_ppn = Column(Float, default=0)
    keterangan = Column(Text, nullable=True)
    jenis_pengadaan = Column(String, nullable=True)
    vendor_id = Column(Integer, ForeignKey("vendor.id"), nullable=True)
    status = Column(String, default="Open", nullable=False)
    imprest_fund_id = Column(Integer, ForeignKey("imprest_fund.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    gl_account = relationship("GlAccount", lazy="selectin")
    vendor = relationship("Vendor", lazy="selectin")


class Karyawan(Base):
    __tablename__ = "karyawan"

    id = Column(Integer, primary_key=True, index=True)
    nama = Column(String, nullable=False)
    nik = Column(String, unique=True, nullable=False)
    jabatan = Column(String, default="")
    nomor_hp = Column(String, default="")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Cash(Base):
    __tablename__ = "cash"

    id = Column(Integer, primary_key=True, index=True)
    karyawan_id = Column(Integer, ForeignKey("karyawan.id", ondelete="CASCADE"), nullable=False)
    tanggal = Column(DateTime, nullable=False)
    tipe = Column(String, nullable=False, comment="masuk / keluar")
    jumlah = Column(Float, default=0)
    keterangan = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    karyawan = relationship("Karyawan", lazy="selectin")


class PicAnggaran(Base):
    __tablename__ = "pic_anggaran"

    id = Column(Integer, primary_key=True, index=True)
    unit = Column(String, nullable=False)
    nama_pemegang_imprest = Column(String, default="")
    nik_pemegang_imprest = Column(String, default="")
    nama_penanggung_jawab = Column(String, default="")
    nik_penanggung_jawab = Column(String, default="")
    year = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
