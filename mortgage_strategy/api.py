from __future__ import annotations

import logging
import os
from io import BytesIO
from typing import Dict, List, Optional, Sequence
from urllib.parse import quote

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator, model_validator
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from mortgage_strategy.calculator import (
    Loan,
    RecurringPayment,
    ScheduleRow,
    amortization_schedule,
    interest_by_year,
    monthly_payment,
    normalize_frequency,
    normalize_loan_type,
    normalize_method,
    total_remaining_interest,
)
from mortgage_strategy.opportunity import (
    DEFAULT_PROJECTION_PRINCIPAL,
    DEFAULT_PROJECTION_YEARS,
    analyze_opportunity,
    repay_amount_from_cash,
)
from mortgage_strategy.report import generate_pdf
from mortgage_strategy.simulator import SimulationResult, compare_strategies, normalize_strategy, simulate


logger = logging.getLogger(__name__)

API_KEY = os.getenv("API_KEY")

DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
EXPORT_RATE_LIMIT = os.getenv("RATE_LIMIT_EXPORT", "15/minute")
MAX_TERM_MONTHS = int(os.getenv("MAX_TERM_MONTHS", "600"))
MAX_PRINCIPAL = float(os.getenv("MAX_PRINCIPAL", "30000000"))
MAX_ANNUAL_RATE = float(os.getenv("MAX_ANNUAL_RATE", "30"))
MAX_LOANS = int(os.getenv("MAX_LOANS", "20"))
MAX_SCHEDULE_ROWS = int(os.getenv("MAX_SCHEDULE_ROWS", "600"))
MAX_EXPORT_BYTES = int(os.getenv("MAX_EXPORT_BYTES", str(6 * 1024 * 1024)))
DEFAULT_SCHEDULE_HORIZON = int(os.getenv("DEFAULT_SCHEDULE_HORIZON", "60"))


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return get_remote_address(request)


limiter = Limiter(key_func=_client_ip, default_limits=[DEFAULT_RATE_LIMIT])

app = FastAPI(
    title="提前还款策略模拟",
    description="多笔房贷的提前还款策略对比：缩短年限 vs 减少月供，以及还贷 vs 理财。",
    version="0.1.0",
)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


def require_api_key(request: Request):
    if not API_KEY:
        return
    provided = request.headers.get("x-api-key")
    if not provided or provided != API_KEY:
        logger.warning("rejected request to %s: invalid or missing api key", request.url.path)
        raise HTTPException(status_code=401, detail="invalid or missing api key")


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("rate limit exceeded for %s on %s", _client_ip(request), request.url.path)
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


class RecurringPaymentModel(BaseModel):
    amount: float = Field(0, ge=0, le=MAX_PRINCIPAL, description="每次追加还款金额（元）")
    frequency: str = Field("monthly", description="追加频率：weekly / bi_weekly / monthly")
    enabled: bool = Field(False, description="是否启用")

    @field_validator("frequency")
    @classmethod
    def _validate_frequency(cls, value: str) -> str:
        return normalize_frequency(value)


class LoanModel(BaseModel):
    id: str = Field(..., min_length=1, max_length=64, description="贷款唯一标识")
    loan_type: str = Field("commercial", description="贷款类型：commercial(商贷) / provident(公积金)")
    balance: float = Field(..., ge=0, le=MAX_PRINCIPAL, description="剩余本金（元）；0 表示已还清")
    annual_rate: float = Field(..., ge=0, le=MAX_ANNUAL_RATE, description="年利率百分比，例如 3.85")
    remaining_months: int = Field(..., ge=0, le=MAX_TERM_MONTHS, description="剩余期数（月）；0 表示已还清")
    method: str = Field("equal_payment", description="还款方式：equal_payment(等额本息) / equal_principal(等额本金)")
    recurring: Optional[RecurringPaymentModel] = Field(None, description="可选：定投追加还款设置（仅保存，不参与模拟）")

    @field_validator("method")
    @classmethod
    def _validate_method(cls, value: str) -> str:
        return normalize_method(value)

    @field_validator("loan_type")
    @classmethod
    def _validate_loan_type(cls, value: str) -> str:
        return normalize_loan_type(value)

    def to_loan(self) -> Loan:
        recurring = None
        if self.recurring is not None:
            recurring = RecurringPayment(
                amount=self.recurring.amount,
                frequency=self.recurring.frequency,
                enabled=self.recurring.enabled,
            )
        return Loan(
            id=self.id,
            loan_type=self.loan_type,
            balance=self.balance,
            annual_rate=self.annual_rate,
            remaining_months=self.remaining_months,
            method=self.method,
            recurring=recurring,
        )


class PortfolioRequest(BaseModel):
    loans: List[LoanModel] = Field(..., min_length=1, max_length=MAX_LOANS, description="贷款组合")

    @field_validator("loans")
    @classmethod
    def _validate_unique_ids(cls, value: List[LoanModel]) -> List[LoanModel]:
        ids = [loan.id for loan in value]
        if len(set(ids)) != len(ids):
            raise ValueError("loan ids must be unique")
        return value


class SimulateRequest(PortfolioRequest):
    repay_amount: float = Field(..., ge=0, le=MAX_PRINCIPAL * MAX_LOANS, description="本次提前还款金额（元）")
    strategy: str = Field(..., description="策略：shorten_term(缩短年限) / reduce_payment(减少月供)")

    @field_validator("strategy")
    @classmethod
    def _validate_strategy(cls, value: str) -> str:
        return normalize_strategy(value)


class CompareRequest(PortfolioRequest):
    # 二选一：直接给 repay_amount，或给 cash_on_hand + safety_buffer
    repay_amount: Optional[float] = Field(None, ge=0, le=MAX_PRINCIPAL * MAX_LOANS, description="本次提前还款金额（元）")
    cash_on_hand: Optional[float] = Field(None, ge=0, description="手头可用现金（元）")
    safety_buffer: float = Field(0, ge=0, description="保留的安全垫（元）")

    @model_validator(mode="after")
    def _validate_amount_source(self) -> "CompareRequest":
        if self.repay_amount is None and self.cash_on_hand is None:
            raise ValueError("either repay_amount or cash_on_hand is required")
        return self

    def resolved_repay_amount(self) -> float:
        if self.repay_amount is not None:
            return self.repay_amount
        return repay_amount_from_cash(self.cash_on_hand, self.safety_buffer)


class ExportReportRequest(CompareRequest):
    investment_yield: Optional[float] = Field(None, ge=0, le=MAX_ANNUAL_RATE, description="可选：理财年化收益率百分比")


class OpportunityRequest(PortfolioRequest):
    investment_yield: float = Field(..., ge=0, le=MAX_ANNUAL_RATE, description="理财年化收益率百分比，例如 2.8")
    projection_principal: float = Field(DEFAULT_PROJECTION_PRINCIPAL, gt=0, le=MAX_PRINCIPAL, description="利差估算本金（元）")
    projection_years: int = Field(DEFAULT_PROJECTION_YEARS, gt=0, le=50, description="利差估算年限")


class ScheduleRequest(BaseModel):
    loan: LoanModel
    horizon_months: int = Field(DEFAULT_SCHEDULE_HORIZON, gt=0, description="展示期数，默认前 5 年")


class LoanOutcome(BaseModel):
    id: str
    allocated: float
    balance: float
    remaining_months: int
    monthly_payment: float
    remaining_interest: float


class SimulateResponse(BaseModel):
    strategy: str
    total_interest: float
    monthly_payment: float
    total_saved: float
    months_saved: int
    baseline_interest: float
    baseline_monthly_payment: float
    loans: List[LoanOutcome]


class CompareResponse(BaseModel):
    repay_amount: float
    baseline: SimulateResponse
    shorten_term: SimulateResponse
    reduce_payment: SimulateResponse


class OpportunityResponse(BaseModel):
    weighted_rate: float
    investment_yield: float
    rate_diff: float
    verdict: str
    projected_difference: float
    projection_principal: float
    projection_years: int


class ScheduleRowModel(BaseModel):
    month_index: int
    payment: float
    principal: float
    interest: float
    balance: float


class ScheduleResponse(BaseModel):
    loan_id: str
    monthly_payment: float
    remaining_interest: float
    rows: List[ScheduleRowModel]


def _to_response(result: SimulationResult) -> SimulateResponse:
    return SimulateResponse(
        strategy=result.strategy,
        total_interest=float(result.total_interest),
        monthly_payment=float(result.monthly_payment),
        total_saved=float(result.total_saved),
        months_saved=result.months_saved,
        baseline_interest=float(result.baseline_interest),
        baseline_monthly_payment=float(result.baseline_monthly_payment),
        loans=[
            LoanOutcome(
                id=loan.id,
                allocated=float(result.allocation.get(loan.id, 0.0)),
                balance=float(loan.balance),
                remaining_months=loan.remaining_months,
                monthly_payment=float(monthly_payment(loan)),
                remaining_interest=float(total_remaining_interest(loan)),
            )
            for loan in result.adjusted_loans
        ],
    )


def _to_loans(models: Sequence[LoanModel]) -> List[Loan]:
    try:
        return [m.to_loan() for m in models]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/health", tags=["health"])
@limiter.exempt
def health() -> dict:
    return {"status": "ok"}


@app.post(
    "/v1/portfolio/strategy:simulate",
    tags=["strategy"],
    responses={400: {"description": "Invalid loan or repayment parameters"}},
)
@limiter.limit(DEFAULT_RATE_LIMIT)
def simulate_strategy(request: Request, body: SimulateRequest, _=Depends(require_api_key)) -> SimulateResponse:
    loans = _to_loans(body.loans)
    try:
        result = simulate(loans, body.repay_amount, body.strategy)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _to_response(result)


@app.post(
    "/v1/portfolio/strategy:compare",
    tags=["strategy"],
    responses={400: {"description": "Invalid loan or repayment parameters"}},
)
@limiter.limit(DEFAULT_RATE_LIMIT)
def compare_strategy(request: Request, body: CompareRequest, _=Depends(require_api_key)) -> CompareResponse:
    loans = _to_loans(body.loans)
    comparison = compare_strategies(loans, body.resolved_repay_amount())
    return CompareResponse(
        repay_amount=float(comparison.repay_amount),
        baseline=_to_response(comparison.baseline),
        shorten_term=_to_response(comparison.shorten_term),
        reduce_payment=_to_response(comparison.reduce_payment),
    )


@app.post(
    "/v1/portfolio/opportunity",
    tags=["strategy"],
    responses={400: {"description": "Invalid loan parameters"}},
)
@limiter.limit(DEFAULT_RATE_LIMIT)
def opportunity(request: Request, body: OpportunityRequest, _=Depends(require_api_key)) -> OpportunityResponse:
    loans = _to_loans(body.loans)
    analysis = analyze_opportunity(
        loans,
        body.investment_yield,
        principal=body.projection_principal,
        years=body.projection_years,
    )
    return OpportunityResponse(
        weighted_rate=analysis.weighted_rate,
        investment_yield=analysis.investment_yield,
        rate_diff=analysis.rate_diff,
        verdict=analysis.verdict,
        projected_difference=analysis.projected_difference,
        projection_principal=analysis.principal,
        projection_years=analysis.years,
    )


@app.post(
    "/v1/loans/schedule",
    tags=["loan"],
    responses={400: {"description": "Invalid loan parameters"}},
)
@limiter.limit(DEFAULT_RATE_LIMIT)
def loan_schedule(request: Request, body: ScheduleRequest, _=Depends(require_api_key)) -> ScheduleResponse:
    loan = _to_loans([body.loan])[0]
    _ensure_row_limit(min(body.horizon_months, loan.remaining_months), "schedule")
    rows = amortization_schedule(loan, body.horizon_months)
    return ScheduleResponse(
        loan_id=loan.id,
        monthly_payment=float(monthly_payment(loan)),
        remaining_interest=float(total_remaining_interest(loan)),
        rows=[
            ScheduleRowModel(
                month_index=row.month_index,
                payment=round(row.payment, 2),
                principal=round(row.principal, 2),
                interest=round(row.interest, 2),
                balance=round(row.balance, 2),
            )
            for row in rows
        ],
    )


@app.post(
    "/v1/loans/schedule:export-xlsx",
    tags=["loan"],
    responses={400: {"description": "Invalid loan parameters"}},
)
@limiter.limit(EXPORT_RATE_LIMIT)
def export_schedule(request: Request, body: ScheduleRequest, _=Depends(require_api_key)):
    """导出单笔贷款的还款计划 Excel（明细 + 按年度利息汇总）。"""
    loan = _to_loans([body.loan])[0]
    _ensure_row_limit(min(body.horizon_months, loan.remaining_months), "schedule")
    rows = list(amortization_schedule(loan, body.horizon_months))
    yearly = interest_by_year(rows)

    xlsx_bytes = _schedule_to_xlsx(rows, yearly)
    _ensure_export_size(len(xlsx_bytes))
    logger.info("exported schedule for loan %s (%d rows)", loan.id, len(rows))

    return StreamingResponse(
        BytesIO(xlsx_bytes),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={
            "Content-Disposition": "attachment; filename=schedule.xlsx; "
            f"filename*=UTF-8''{quote('还款计划.xlsx')}",
            "X-Horizon-Interest": f"{float(sum(yearly.values())):.2f}",
            "X-Total-Remaining-Interest": f"{total_remaining_interest(loan):.2f}",
        },
    )


@app.post(
    "/v1/portfolio/strategy:export-pdf",
    tags=["strategy"],
    responses={400: {"description": "Invalid loan or repayment parameters"}},
)
@limiter.limit(EXPORT_RATE_LIMIT)
def export_report(request: Request, body: ExportReportRequest, _=Depends(require_api_key)):
    """导出提前还款策略对比 PDF 报告。"""
    loans = _to_loans(body.loans)
    comparison = compare_strategies(loans, body.resolved_repay_amount())
    pdf_bytes = generate_pdf(loans=loans, comparison=comparison, investment_yield=body.investment_yield)
    _ensure_export_size(len(pdf_bytes))
    logger.info("exported strategy report for %d loans", len(loans))

    return StreamingResponse(
        BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={
            "Content-Disposition": "attachment; filename=strategy_report.pdf; "
            f"filename*=UTF-8''{quote('提前还款策略报告.pdf')}",
            "X-Savings-Shorten": f"{float(comparison.shorten_term.total_saved):.2f}",
            "X-Savings-Reduce": f"{float(comparison.reduce_payment.total_saved):.2f}",
        },
    )


def _schedule_to_xlsx(schedule: List[ScheduleRow], yearly: Dict[int, float]) -> bytes:
    """将还款计划导出为 Excel（xlsx），返回二进制。"""
    wb = Workbook()
    ws = wb.active
    ws.title = "Schedule"

    headers = ["期数", "月供", "本金", "利息", "余额", "利息占比"]
    ws.append(headers)

    header_font = Font(bold=True, name="Arial", size=11, color="FFFFFF")
    body_font = Font(name="Arial", size=10)
    header_fill = PatternFill("solid", fgColor="0F172A")
    alt_fill = PatternFill("solid", fgColor="F8FAFC")
    border = Border(bottom=Side(style="thin", color="E2E8F0"))
    align_right = Alignment(horizontal="right")
    align_center = Alignment(horizontal="center")

    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = align_center

    for idx, row in enumerate(schedule, start=2):
        ratio = (row.interest / row.payment) if row.payment else 0.0
        ws.append([
            row.month_index,
            round(row.payment, 2),
            round(row.principal, 2),
            round(row.interest, 2),
            round(row.balance, 2),
            f"{ratio*100:.2f}%",
        ])
        for col_idx in range(1, 7):
            cell = ws.cell(row=idx, column=col_idx)
            cell.font = body_font
            cell.alignment = align_right if col_idx > 1 else align_center
            if idx % 2 == 0:
                cell.fill = alt_fill
            cell.border = border

    widths = [8, 14, 14, 14, 16, 12]
    for i, w in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = w

    # 按贷款年度汇总利息
    ws_year = wb.create_sheet("ByYear")
    ws_year.append(["年度", "利息"])
    for cell in ws_year[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = align_center
    for year, interest in sorted(yearly.items()):
        ws_year.append([year, round(interest, 2)])
    ws_year.column_dimensions["A"].width = 8
    ws_year.column_dimensions["B"].width = 16

    buf = BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf.getvalue()


def _ensure_row_limit(rows: int, label: str) -> None:
    if rows > MAX_SCHEDULE_ROWS:
        raise HTTPException(status_code=413, detail=f"{label} too large, exceeds {MAX_SCHEDULE_ROWS} rows limit")


def _ensure_export_size(size_bytes: int) -> None:
    if size_bytes > MAX_EXPORT_BYTES:
        raise HTTPException(status_code=413, detail="export file too large")
