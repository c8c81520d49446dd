"""Tests untuk endpoint budget, alokasi regional, template/import Excel, dan dashboard."""
import io

import openpyxl
import pytest

from spreadsheet import TEMPLATE_COLUMNS, TEMPLATE_SHEET, XLSX_MEDIA_TYPE, read_budget_rows
from errors import ValidationError
from conftest import create_gl

YEAR = 2025


def _save_budget(client, **values):
    res = client.post("/api/budget", json={"year": YEAR, **values})
    assert res.status_code == 200, res.text
    return res.json()["data"]


def _workbook(rows):
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append([name for name, _ in TEMPLATE_COLUMNS])
    for row in rows:
        ws.append(row)
    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


@pytest.fixture
def regionals(client):
    for n in (1, 2, 3):
        res = client.post("/api/regional", json={"code": f"TREG-{n}", "name": f"Regional {n}"})
        assert res.status_code == 200, res.text


# ==================== upsert ====================

class TestBudgetUpsert:

    def test_total_from_rkap_and_release(self, client):
        gl_id = create_gl(client)
        budget = _save_budget(client, gl_account_id=gl_id, rkap=1_000_000, release_percent=80)
        assert budget["total_amount"] == 800_000
        assert budget["gl_account"]["code"] == "51341002"

    def test_upsert_same_gl_year(self, client):
        gl_id = create_gl(client)
        first = _save_budget(client, gl_account_id=gl_id, rkap=1_000_000, release_percent=100)
        second = _save_budget(client, gl_account_id=gl_id, release_percent=50)
        assert first["id"] == second["id"]
        assert second["total_amount"] == 500_000
        assert len(client.get("/api/budget", params={"year": YEAR}).json()["data"]) == 1

    def test_total_without_rkap(self, client):
        gl_id = create_gl(client)
        budget = _save_budget(client, gl_account_id=gl_id, total_amount=750_000)
        assert budget["rkap"] == 750_000
        assert budget["release_percent"] == 100
        assert budget["total_amount"] == 750_000

    def test_update_by_id(self, client):
        gl_id = create_gl(client)
        budget = _save_budget(client, gl_account_id=gl_id, rkap=1_000_001, release_percent=100)
        res = client.put(f"/api/budget/{budget['id']}", json={"release_percent": 33})
        assert res.json()["data"]["total_amount"] == 330_000

    @pytest.mark.parametrize("values", [{"release_percent": 120}, {"rkap": -1}])
    def test_invalid_values(self, client, values):
        gl_id = create_gl(client)
        res = client.post("/api/budget", json={"gl_account_id": gl_id, "year": YEAR, **values})
        assert res.status_code == 400

    def test_unknown_gl(self, client):
        res = client.post("/api/budget", json={"gl_account_id": 999, "year": YEAR, "rkap": 1})
        assert res.status_code == 404


# ==================== auto split ====================

class TestAutoSplit:

    def test_quarters_800k(self, client):
        gl_id = create_gl(client)
        budget = _save_budget(client, gl_account_id=gl_id, rkap=1_000_000, release_percent=80)
        res = client.post(f"/api/budget/{budget['id']}/auto-split", json={"mode": "kuartal"})
        data = res.json()["data"]
        assert [data[f"q{q}_amount"] for q in range(1, 5)] == [200_000] * 4

    def test_months_from_quarters(self, client):
        gl_id = create_gl(client)
        budget = _save_budget(client, gl_account_id=gl_id, rkap=1_200, q1_amount=300, q2_amount=301)
        res = client.post(f"/api/budget/{budget['id']}/auto-split", json={"mode": "bulan_dari_kuartal"})
        data = res.json()["data"]
        assert (data["jan_amount"], data["feb_amount"], data["mar_amount"]) == (100, 100, 100)
        assert data["jun_amount"] == 101

    def test_unknown_mode(self, client):
        gl_id = create_gl(client)
        budget = _save_budget(client, gl_account_id=gl_id, rkap=1)
        res = client.post(f"/api/budget/{budget['id']}/auto-split", json={"mode": "harian"})
        assert res.status_code == 400


# ==================== alokasi regional ====================

class TestRegionalAllocation:

    def test_even_split_33_33_34(self, client, regionals):
        gl_id = create_gl(client)
        budget = _save_budget(client, gl_account_id=gl_id, rkap=400, q1_amount=100)
        res = client.post(f"/api/budget/{budget['id']}/allocation/auto-split", json={"quarter": 1, "mode": "rata"})
        assert res.status_code == 200, res.text
        rows = res.json()["data"]
        assert [(r["regional_code"], r["amount"]) for r in rows] == [
            ("TREG-1", 33), ("TREG-2", 33), ("TREG-3", 34),
        ]

    def test_percentages_sum_to_100(self, client, regionals):
        gl_id = create_gl(client)
        budget = _save_budget(client, gl_account_id=gl_id, rkap=4_000, q2_amount=1_000)
        res = client.post(f"/api/budget/{budget['id']}/allocation/auto-split", json={
            "quarter": 2, "mode": "persen", "percentages": {"TREG-1": 50},
        })
        rows = res.json()["data"]
        assert sum(r["percentage"] for r in rows) == pytest.approx(100, abs=0.01)
        assert sum(r["amount"] for r in rows) == 1_000

    def test_inactive_regional_excluded(self, client, regionals):
        regional_id = client.get("/api/regional").json()["data"][2]["id"]
        client.delete(f"/api/regional/{regional_id}")
        gl_id = create_gl(client)
        budget = _save_budget(client, gl_account_id=gl_id, rkap=400, q1_amount=100)
        rows = client.post(f"/api/budget/{budget['id']}/allocation/auto-split", json={"quarter": 1}).json()["data"]
        assert [r["amount"] for r in rows] == [50, 50]

    def test_manual_allocation_upsert(self, client):
        gl_id = create_gl(client)
        budget = _save_budget(client, gl_account_id=gl_id, rkap=1_000)
        row = {"budget_id": budget["id"], "regional_code": "TREG-1", "quarter": 1, "amount": 100}
        client.post("/api/budget/allocation", json={"allocations": [row]})
        client.post("/api/budget/allocation", json={"allocations": [{**row, "amount": 250}]})
        data = client.get("/api/budget/allocation", params={"budget_id": budget["id"]}).json()["data"]
        assert [(a["regional_code"], a["amount"]) for a in data] == [("TREG-1", 250)]

    def test_delete_budget_removes_allocations(self, client):
        gl_id = create_gl(client)
        budget = _save_budget(client, gl_account_id=gl_id, rkap=1_000)
        client.post("/api/budget/allocation", json={"allocations": [
            {"budget_id": budget["id"], "regional_code": "TREG-1", "quarter": 1, "amount": 100},
        ]})
        assert client.delete(f"/api/budget/{budget['id']}").status_code == 200
        assert client.get("/api/budget/allocation", params={"budget_id": budget["id"]}).json()["data"] == []


# ==================== template & import ====================

class TestTemplateImport:

    def test_template(self, client):
        create_gl(client)
        create_gl(client, code="51506002", description="Printing and copy")
        res = client.get("/api/budget/template")
        assert res.status_code == 200
        assert res.headers["content-type"] == XLSX_MEDIA_TYPE
        assert "template_anggaran.xlsx" in res.headers["content-disposition"]

        ws = openpyxl.load_workbook(io.BytesIO(res.content)).active
        assert ws.title == TEMPLATE_SHEET
        rows = list(ws.iter_rows(values_only=True))
        assert rows[0][0] == "Kode GL"
        assert [r[0] for r in rows[1:]] == ["51341002", "51506002"]
        assert ws.column_dimensions["B"].width == 40

    def test_import_unknown_gl_does_not_abort(self, client):
        create_gl(client)
        content = _workbook([
            ["99999999", "Tidak ada", 5_000, 100, 0, 0, 0, 0],
            ["51341002", "BODP BBM Genset", 1_000_000, 80, 200_000, 200_000, 200_000, 200_000],
        ])
        res = client.post(
            "/api/budget/import",
            files={"file": ("anggaran.xlsx", content, XLSX_MEDIA_TYPE)},
            data={"year": str(YEAR)},
        )
        assert res.status_code == 200, res.text
        result = res.json()["data"]
        assert result["success"] == 1
        assert result["failed"] == 1
        assert "GL Account 99999999 tidak ditemukan" in result["errors"]

        budgets = client.get("/api/budget", params={"year": YEAR}).json()["data"]
        assert budgets[0]["total_amount"] == 800_000
        assert budgets[0]["q4_amount"] == 200_000

    def test_import_release_defaults_to_100(self, client):
        create_gl(client)
        content = _workbook([["51341002", "", 300_000, None, 0, 0, 0, 0]])
        client.post("/api/budget/import", files={"file": ("a.xlsx", content, XLSX_MEDIA_TYPE)}, data={"year": str(YEAR)})
        budget = client.get("/api/budget", params={"year": YEAR}).json()["data"][0]
        assert budget["release_percent"] == 100
        assert budget["total_amount"] == 300_000

    def test_import_invalid_file(self, client):
        res = client.post("/api/budget/import", files={"file": ("a.xlsx", b"bukan excel", XLSX_MEDIA_TYPE)})
        assert res.status_code == 400

    def test_read_rows_skips_empty(self):
        content = _workbook([["51341002", "x", 1, 100, 0, 0, 0, 0], [None] * 8])
        rows = read_budget_rows(content)
        assert len(rows) == 1
        assert rows[0]["Kode GL"] == "51341002"

    def test_read_rows_invalid(self):
        with pytest.raises(ValidationError):
            read_budget_rows(b"\x00\x01")


# ==================== dashboard ====================

class TestDashboard:

    def test_summary(self, client):
        gl_id = create_gl(client)
        _save_budget(client, gl_account_id=gl_id, rkap=1_000_000, release_percent=80)
        client.post("/api/transaction", json={
            "gl_account_id": gl_id, "quarter": 1, "regional_code": "TREG-1", "year": YEAR,
            "tanggal_kwitansi": "2025-01-15", "nilai_kwitansi": 100_000,
        })
        data = client.get("/api/dashboard/ringkasan", params={"year": YEAR}).json()["data"]
        assert data["total_budget"] == 800_000
        assert data["total_used"] == 100_000
        assert data["total_remaining"] == 700_000
        assert data["items"][0]["gl_code"] == "51341002"
