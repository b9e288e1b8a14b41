from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

from mortgage_strategy import api


LOANS = [
    {"id": "A", "loan_type": "commercial", "balance": 1200000, "annual_rate": 3.85, "remaining_months": 300},
    {"id": "B", "loan_type": "provident", "balance": 600000, "annual_rate": 2.85, "remaining_months": 300,
     "method": "equal_principal"},
]


@pytest.fixture
def client():
    return TestClient(api.app)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_simulate_allocates_to_highest_rate(client):
    resp = client.post(
        "/v1/portfolio/strategy:simulate",
        json={"loans": LOANS, "repay_amount": 400000, "strategy": "shorten_term"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["strategy"] == "shorten_term"
    assert body["months_saved"] == 0
    assert body["total_saved"] > 0
    outcomes = {loan["id"]: loan for loan in body["loans"]}
    assert outcomes["A"]["allocated"] == 400000
    assert outcomes["A"]["balance"] == 800000
    assert outcomes["A"]["remaining_months"] < 300
    assert outcomes["B"]["allocated"] == 0
    assert outcomes["B"]["remaining_months"] == 300


def test_simulate_rejects_unknown_strategy(client):
    resp = client.post(
        "/v1/portfolio/strategy:simulate",
        json={"loans": LOANS, "repay_amount": 1000, "strategy": "refinance"},
    )
    assert resp.status_code == 422


def test_simulate_rejects_duplicate_ids(client):
    resp = client.post(
        "/v1/portfolio/strategy:simulate",
        json={"loans": [LOANS[0], LOANS[0]], "repay_amount": 1000, "strategy": "reduce_payment"},
    )
    assert resp.status_code == 422


def test_simulate_rejects_negative_balance(client):
    loan = dict(LOANS[0], balance=-1)
    resp = client.post(
        "/v1/portfolio/strategy:simulate",
        json={"loans": [loan], "repay_amount": 1000, "strategy": "reduce_payment"},
    )
    assert resp.status_code == 422


def test_compare_from_cash_and_buffer(client):
    resp = client.post(
        "/v1/portfolio/strategy:compare",
        json={"loans": LOANS, "cash_on_hand": 500000, "safety_buffer": 100000},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["repay_amount"] == 400000
    assert body["baseline"]["total_saved"] == 0
    assert body["shorten_term"]["total_saved"] > body["reduce_payment"]["total_saved"] > 0


def test_compare_requires_an_amount(client):
    resp = client.post("/v1/portfolio/strategy:compare", json={"loans": LOANS})
    assert resp.status_code == 422


def test_opportunity(client):
    resp = client.post("/v1/portfolio/opportunity", json={"loans": LOANS, "investment_yield": 2.8})
    assert resp.status_code == 200
    body = resp.json()
    assert body["verdict"] == "repay"
    assert body["weighted_rate"] == pytest.approx((3.85 * 1200000 + 2.85 * 600000) / 1800000)


def test_schedule(client):
    resp = client.post("/v1/loans/schedule", json={"loan": LOANS[1], "horizon_months": 24})
    assert resp.status_code == 200
    body = resp.json()
    assert body["loan_id"] == "B"
    assert len(body["rows"]) == 24
    assert body["rows"][0]["principal"] == 2000


def test_schedule_over_row_limit(client, monkeypatch):
    monkeypatch.setattr(api, "MAX_SCHEDULE_ROWS", 12)
    resp = client.post("/v1/loans/schedule", json={"loan": LOANS[0], "horizon_months": 24})
    assert resp.status_code == 413


def test_export_schedule_xlsx(client):
    resp = client.post("/v1/loans/schedule:export-xlsx", json={"loan": LOANS[0], "horizon_months": 36})
    assert resp.status_code == 200
    horizon_interest = float(resp.headers["x-horizon-interest"])
    assert 0 < horizon_interest < float(resp.headers["x-total-remaining-interest"])
    wb = load_workbook(BytesIO(resp.content))
    assert wb["Schedule"].max_row == 37
    assert [row[0] for row in wb["ByYear"].iter_rows(min_row=2, values_only=True)] == [1, 2, 3]


def test_export_pdf(client):
    resp = client.post(
        "/v1/portfolio/strategy:export-pdf",
        json={"loans": LOANS, "repay_amount": 400000, "investment_yield": 2.8},
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.content.startswith(b"%PDF")
    assert float(resp.headers["x-savings-shorten"]) > float(resp.headers["x-savings-reduce"])


def test_api_key_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(api, "API_KEY", "secret")
    payload = {"loans": LOANS, "repay_amount": 0, "strategy": "reduce_payment"}
    assert client.post("/v1/portfolio/strategy:simulate", json=payload).status_code == 401
    resp = client.post("/v1/portfolio/strategy:simulate", json=payload, headers={"x-api-key": "secret"})
    assert resp.status_code == 200


def test_simulate_accepts_tiny_rate(client):
    loan = {"id": "T", "balance": 100000, "annual_rate": 1e-15, "remaining_months": 120}
    for strategy in ("shorten_term", "reduce_payment"):
        resp = client.post(
            "/v1/portfolio/strategy:simulate",
            json={"loans": [loan], "repay_amount": 50000, "strategy": strategy},
        )
        assert resp.status_code == 200
        assert resp.json()["monthly_payment"] > 0
