"""skema awal budget control

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2026-10-19 09:12:44.120311

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    ]


def _finance_columns():
    return [
        sa.Column("no_tiket_mydx", sa.String(), nullable=True),
        sa.Column("tgl_serah_finance", sa.DateTime(), nullable=True),
        sa.Column("pic_finance", sa.String(), nullable=True),
        sa.Column("no_hp_finance", sa.String(), nullable=True),
        sa.Column("tgl_transfer_vendor", sa.DateTime(), nullable=True),
        sa.Column("nilai_transfer", sa.Float(), nullable=True),
        sa.Column("task_pengajuan", sa.Boolean(), nullable=False),
        sa.Column("task_transfer_vendor", sa.Boolean(), nullable=False),
        sa.Column("task_terima_berkas", sa.Boolean(), nullable=False),
        sa.Column("task_upload_mydx", sa.Boolean(), nullable=False),
        sa.Column("task_serah_finance", sa.Boolean(), nullable=False),
        sa.Column("task_vendor_dibayar", sa.Boolean(), nullable=False),
    ]


def upgrade():
    # Database lama yang dibuat create_all tanpa alembic: tabel yang sudah ada dilewati
    existing = set(sa.inspect(op.get_bind()).get_table_names())

    def create(name, *columns):
        if name in existing:
            return
        op.create_table(name, *columns)
        op.create_index(f"ix_{name}_id", name, ["id"])

    create(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("password", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=True),
        sa.Column("avatar", sa.String(), nullable=True),
        *_timestamps(),
    )
    create(
        "gl_account",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("keterangan", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    create(
        "regional",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    create(
        "budget",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("gl_account_id", sa.Integer(), sa.ForeignKey("gl_account.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("rkap", sa.Float(), nullable=True),
        sa.Column("release_percent", sa.Float(), nullable=True),
        sa.Column("total_amount", sa.Float(), nullable=True),
        *[sa.Column(f"q{q}_amount", sa.Float(), nullable=True) for q in range(1, 5)],
        *[
            sa.Column(f"{m}_amount", sa.Float(), nullable=True)
            for m in ("jan", "feb", "mar", "apr", "may", "jun",
                      "jul", "aug", "sep", "oct", "nov", "dec")
        ],
        *_timestamps(),
        sa.UniqueConstraint("gl_account_id", "year", name="uq_budget_gl_year"),
    )
    create(
        "regional_allocation",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("budget_id", sa.Integer(), sa.ForeignKey("budget.id", ondelete="CASCADE"), nullable=False),
        sa.Column("regional_code", sa.String(), nullable=False),
        sa.Column("quarter", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=True),
        sa.Column("percentage", sa.Float(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("budget_id", "regional_code", "quarter",
                            name="uq_allocation_budget_regional_quarter"),
    )
    create(
        "imprest_fund_card",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("nomor_kartu", sa.String(), nullable=False, unique=True),
        sa.Column("user", sa.String(), nullable=False),
        sa.Column("pic", sa.String(), nullable=False),
        sa.Column("saldo", sa.Float(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    create(
        "imprest_fund",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("kelompok_kegiatan", sa.String(), nullable=False),
        sa.Column("regional_code", sa.String(), nullable=True),
        sa.Column("imprest_fund_card_id", sa.Integer(), sa.ForeignKey("imprest_fund_card.id"), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("total_amount", sa.Float(), nullable=True),
        sa.Column("debit", sa.Float(), nullable=True),
        sa.Column("keterangan", sa.Text(), nullable=True),
        *_finance_columns(),
        *_timestamps(),
    )
    create(
        "imprest_item",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("imprest_fund_id", sa.Integer(),
                  sa.ForeignKey("imprest_fund.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tanggal", sa.DateTime(), nullable=False),
        sa.Column("uraian", sa.String(), nullable=False),
        sa.Column("gl_account_id", sa.Integer(), sa.ForeignKey("gl_account.id"), nullable=False),
        sa.Column("area_pengguna", sa.String(), nullable=True),
        sa.Column("jumlah", sa.Float(), nullable=True),
    )
    create(
        "vendor",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("alamat", sa.String(), nullable=True),
        sa.Column("pic", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    create(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("gl_account_id", sa.Integer(), sa.ForeignKey("gl_account.id"), nullable=False),
        sa.Column("quarter", sa.Integer(), nullable=False),
        sa.Column("regional_code", sa.String(), nullable=False),
        sa.Column("kegiatan", sa.String(), nullable=True),
        sa.Column("regional_pengguna", sa.String(), nullable=True),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("tanggal_kwitansi", sa.DateTime(), nullable=True),
        sa.Column("nilai_kwitansi", sa.Float(), nullable=True),
        sa.Column("jenis_pajak", sa.String(), nullable=True),
        sa.Column("nilai_tanpa_ppn", sa.Float(), nullable=True),
        sa.Column("nilai_ppn", sa.Float(), nullable=True),
        sa.Column("keterangan", sa.Text(), nullable=True),
        sa.Column("jenis_pengadaan", sa.String(), nullable=True),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendor.id"), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("imprest_fund_id", sa.Integer(), sa.ForeignKey("imprest_fund.id"), nullable=True),
        *_finance_columns(),
        *_timestamps(),
    )
    if "transactions" not in existing:
        op.create_index("ix_transactions_imprest_fund_id", "transactions", ["imprest_fund_id"])
    create(
        "karyawan",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("nama", sa.String(), nullable=False),
        sa.Column("nik", sa.String(), nullable=False, unique=True),
        sa.Column("jabatan", sa.String(), nullable=True),
        sa.Column("nomor_hp", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    create(
        "cash",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("karyawan_id", sa.Integer(), sa.ForeignKey("karyawan.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tanggal", sa.DateTime(), nullable=False),
        sa.Column("tipe", sa.String(), nullable=False, comment="masuk / keluar"),
        sa.Column("jumlah", sa.Float(), nullable=True),
        sa.Column("keterangan", sa.Text(), nullable=True),
        *_timestamps(),
    )
    create(
        "pic_anggaran",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("unit", sa.String(), nullable=False),
        sa.Column("nama_pemegang_imprest", sa.String(), nullable=True),
        sa.Column("nik_pemegang_imprest", sa.String(), nullable=True),
        sa.Column("nama_penanggung_jawab", sa.String(), nullable=True),
        sa.Column("nik_penanggung_jawab", sa.String(), nullable=True),
        sa.Column("year", sa.Integer(), nullable=False),
        *_timestamps(),
    )


def downgrade():
    for name in (
        "pic_anggaran", "cash", "karyawan", "transactions", "vendor", "imprest_item",
        "imprest_fund", "imprest_fund_card", "regional_allocation", "budget",
        "regional", "gl_account", "users",
    ):
        op.drop_table(name)
