import logging
import os
from io import BytesIO
from typing import List, Optional
import zipfile
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

from debtfree_agent.calculator import (
    FinanceProfile,
    LoanAccount,
    LoanKind,
    MonthlyRecord,
    PrepaymentStrategy,
    normalize_strategy,
)
from debtfree_agent.report import generate_pdf
from debtfree_agent.simulator import SimulationResult, compare_strategies, find_critical_point, simulate


logger = logging.getLogger(__name__)

API_KEY = os.getenv("API_KEY")

DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
EXPORT_RATE_LIMIT = os.getenv("RATE_LIMIT_EXPORT", "15/minute")
MAX_LOANS = int(os.getenv("MAX_LOANS", "5"))
MAX_TERM_YEARS = int(os.getenv("MAX_TERM_YEARS", "50"))
MAX_PRINCIPAL = float(os.getenv("MAX_PRINCIPAL", "30000000"))
MAX_ANNUAL_RATE = float(os.getenv("MAX_ANNUAL_RATE", "30"))
MAX_SCHEDULE_ROWS = int(os.getenv("MAX_SCHEDULE_ROWS", "2000"))
MAX_EXPORT_BYTES = int(os.getenv("MAX_EXPORT_BYTES", str(6 * 1024 * 1024)))


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
    title="Debt-Free Agent",
    description="家庭多笔房贷 + 存款提前还款的逐月模拟。",
    version="0.1.0",
)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


def require_api_key(request: Request):
    if not API_KEY:
        return
    provided = request.headers.get("x-api-key")
    if not provided or provided != API_KEY:
        raise HTTPException(status_code=401, detail="invalid or missing api key")


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


class LoanItem(BaseModel):
    kind: LoanKind = Field(..., description="贷款类型：housing_fund(公积金) / commercial(商贷)")
    principal: float = Field(..., gt=0, le=MAX_PRINCIPAL, description="贷款本金（元）")
    annual_rate: float = Field(..., ge=0, le=MAX_ANNUAL_RATE, description="年利率百分比，例如 4.5")
    term_years: int = Field(..., gt=0, le=MAX_TERM_YEARS, description="贷款年限（年）")


class HouseholdRequest(BaseModel):
    loans: List[LoanItem] = Field(..., description="贷款列表，顺序会影响提前还款的分摊顺序")

    # 家庭收支
    monthly_income: float = Field(..., ge=0, description="月收入（元）")
    monthly_expense: float = Field(..., ge=0, description="月支出（元，不含月供）")
    initial_savings: float = Field(0, description="初始存款（元）")

    # 提前还款策略
    prepayment_threshold: float = Field(..., ge=0, description="存款达到该金额时考虑提前还款（元）")
    prepayment_strategy: str = Field("shorten_term", description="shorten_term(缩短年限) / reduce_payment(减少月供)")

    include_records: bool = Field(True, description="是否在响应中返回逐月明细")

    @field_validator("prepayment_strategy")
    @classmethod
    def _validate_strategy(cls, value: str) -> str:
        return normalize_strategy(value).value

    @model_validator(mode="after")
    def _validate_loans(self) -> "HouseholdRequest":
        if not self.loans:
            raise ValueError("at least one loan is required")
        if len(self.loans) > MAX_LOANS:
            raise ValueError(f"at most {MAX_LOANS} loans are supported")
        return self

    def to_domain(self):
        loans = [
            LoanAccount(kind=item.kind, principal=item.principal, annual_rate=item.annual_rate, term_years=item.term_years)
            for item in self.loans
        ]
        profile = FinanceProfile(
            monthly_income=self.monthly_income,
            monthly_expense=self.monthly_expense,
            initial_savings=self.initial_savings,
            prepayment_threshold=self.prepayment_threshold,
            prepayment_strategy=PrepaymentStrategy(self.prepayment_strategy),
        )
        return loans, profile


class MonthlyRecordOut(BaseModel):
    month: int
    principal_paid: float
    interest_paid: float
    total_payment: float
    remaining_loan_balance: float
    monthly_balance: float
    total_savings: float
    is_prepayment: bool
    prepayment_amount: float
    current_monthly_installment: float


class SimulateResponse(BaseModel):
    outcome: str
    months_to_payoff: Optional[int]
    simulated_months: int
    total_interest: float
    total_prepayment: float
    prepayment_count: int
    initial_monthly_installment: float
    final_monthly_installment: float
    final_savings: float
    critical_month: Optional[int]
    records: List[MonthlyRecordOut] = []


class StrategySummary(BaseModel):
    outcome: str
    months: int
    total_interest: float
    prepayment_count: int


class CompareResponse(BaseModel):
    baseline: StrategySummary
    shorten_term: StrategySummary
    reduce_payment: StrategySummary
    savings_shorten_interest: float
    savings_reduce_payment_interest: float
    months_saved_shorten: int
    months_saved_reduce: int


@app.get("/health", tags=["health"])
@limiter.exempt
def health() -> dict:
    return {"status": "ok"}


@app.post(
    "/v1/households/payoff:simulate",
    tags=["payoff"],
    responses={400: {"description": "Invalid loan or household parameters"}},
)
@limiter.limit(DEFAULT_RATE_LIMIT)
def simulate_payoff(request: Request, body: HouseholdRequest, _=Depends(require_api_key)) -> SimulateResponse:
    try:
        loans, profile = body.to_domain()
        result = simulate(loans, profile)
    except ValueError as e:
        logger.info("rejected simulate request: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    critical_month, _ = find_critical_point(result.records)
    last = result.records[-1] if result.records else None
    return SimulateResponse(
        outcome=result.outcome.value,
        months_to_payoff=result.months if result.paid_off else None,
        simulated_months=result.months,
        total_interest=float(result.total_interest),
        total_prepayment=float(result.total_prepayment),
        prepayment_count=result.prepayment_count,
        initial_monthly_installment=float(result.initial_monthly_installment),
        final_monthly_installment=float(last.current_monthly_installment) if last else 0.0,
        final_savings=float(result.final_savings),
        critical_month=critical_month,
        records=[_record_out(r) for r in result.records] if body.include_records else [],
    )


@app.post(
    "/v1/households/payoff:compare",
    tags=["payoff"],
    responses={400: {"description": "Invalid loan or household parameters"}},
)
@limiter.limit(DEFAULT_RATE_LIMIT)
def compare_payoff(request: Request, body: HouseholdRequest, _=Depends(require_api_key)) -> CompareResponse:
    try:
        loans, profile = body.to_domain()
        comparison = compare_strategies(loans, profile)
    except ValueError as e:
        logger.info("rejected compare request: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    return CompareResponse(
        baseline=_summary(comparison.baseline),
        shorten_term=_summary(comparison.shorten_term),
        reduce_payment=_summary(comparison.reduce_payment),
        savings_shorten_interest=float(comparison.savings_shorten),
        savings_reduce_payment_interest=float(comparison.savings_reduce),
        months_saved_shorten=comparison.months_saved_shorten,
        months_saved_reduce=comparison.months_saved_reduce,
    )


@app.post(
    "/v1/households/payoff:export-zip",
    tags=["payoff"],
    responses={400: {"description": "Invalid loan or household parameters"}},
)
@limiter.limit(EXPORT_RATE_LIMIT)
def export_zip(request: Request, body: HouseholdRequest, _=Depends(require_api_key)):
    """导出还款明细 ZIP（不提前还款/缩短年限/减少月供，各一份 Excel，外加 PDF 报告）。"""
    try:
        loans, profile = body.to_domain()
        comparison = compare_strategies(loans, profile)
    except ValueError as e:
        logger.info("rejected export request: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    _ensure_row_limit(comparison.baseline.months, "baseline_schedule")
    _ensure_row_limit(comparison.shorten_term.months, "shorten_schedule")
    _ensure_row_limit(comparison.reduce_payment.months, "reduce_schedule")

    pdf_bytes = generate_pdf(comparison=comparison, loans=loans, profile=profile)

    zip_buf = BytesIO()
    with zipfile.ZipFile(zip_buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("不提前还款-月度明细.xlsx", _records_to_xlsx(comparison.baseline.records, loans))
        zf.writestr("提前还款-缩短年限-月度明细.xlsx", _records_to_xlsx(comparison.shorten_term.records, loans))
        zf.writestr("提前还款-减少月供-月度明细.xlsx", _records_to_xlsx(comparison.reduce_payment.records, loans))
        zf.writestr("还贷模拟报告.pdf", pdf_bytes)
    zip_bytes = zip_buf.getvalue()
    _ensure_export_size(len(zip_bytes))

    return StreamingResponse(
        BytesIO(zip_bytes),
        media_type="application/zip",
        headers={
            "Content-Disposition": "attachment; filename=payoff_report.zip; "
            f"filename*=UTF-8''{quote('还贷模拟报告.zip')}",
            "X-Savings-Reduce": f"{float(comparison.savings_reduce):.2f}",
            "X-Savings-Shorten": f"{float(comparison.savings_shorten):.2f}",
        },
    )


def _record_out(record: MonthlyRecord) -> MonthlyRecordOut:
    return MonthlyRecordOut(
        month=record.month,
        principal_paid=round(record.principal_paid, 2),
        interest_paid=round(record.interest_paid, 2),
        total_payment=round(record.total_payment, 2),
        remaining_loan_balance=round(record.remaining_loan_balance, 2),
        monthly_balance=round(record.monthly_balance, 2),
        total_savings=round(record.total_savings, 2),
        is_prepayment=record.is_prepayment,
        prepayment_amount=round(record.prepayment_amount, 2),
        current_monthly_installment=round(record.current_monthly_installment, 2),
    )


def _summary(result: SimulationResult) -> StrategySummary:
    return StrategySummary(
        outcome=result.outcome.value,
        months=result.months,
        total_interest=float(result.total_interest),
        prepayment_count=result.prepayment_count,
    )


def _records_to_xlsx(records: List[MonthlyRecord], loans: List[LoanAccount]) -> bytes:
    """逐月记录导出为 Excel：合计列在前，之后每笔贷款一组列（公积金绿色、商贷蓝色）。"""
    wb = Workbook()
    ws = wb.active
    ws.title = "Schedule"

    headers = ["月份", "还款总额", "本金", "利息", "剩余本金", "月结余", "存款", "提前还款", "月供合计"]
    group_fills = []
    for idx, loan in enumerate(loans, start=1):
        prefix = f"{'公积金' if loan.kind is LoanKind.HOUSING_FUND else '商贷'}#{idx}"
        headers += [f"{prefix}本金", f"{prefix}利息", f"{prefix}余额", f"{prefix}月供"]
        group_fills.append(loan.kind)
    ws.append(headers)

    header_font = Font(bold=True, name="Arial", size=11, color="FFFFFF")
    body_font = Font(name="Arial", size=10)
    header_fill_base = PatternFill("solid", fgColor="0F172A")
    header_fills = {
        LoanKind.COMMERCIAL: PatternFill("solid", fgColor="1D4ED8"),
        LoanKind.HOUSING_FUND: PatternFill("solid", fgColor="047857"),
    }
    body_fills = {
        LoanKind.COMMERCIAL: PatternFill("solid", fgColor="EFF6FF"),
        LoanKind.HOUSING_FUND: PatternFill("solid", fgColor="ECFDF3"),
    }
    prepay_fill = PatternFill("solid", fgColor="FEF3C7")
    alt_fill = PatternFill("solid", fgColor="F8FAFC")
    border = Border(bottom=Side(style="thin", color="E2E8F0"))
    align_right = Alignment(horizontal="right")
    align_center = Alignment(horizontal="center")

    base_cols = 9
    loan_kind_by_col = {}
    for n, kind in enumerate(group_fills):
        for offset in range(4):
            loan_kind_by_col[base_cols + n * 4 + offset + 1] = kind

    for idx, cell in enumerate(ws[1], start=1):
        cell.font = header_font
        cell.fill = header_fills[loan_kind_by_col[idx]] if idx in loan_kind_by_col else header_fill_base
        cell.alignment = align_center

    for row_idx, record in enumerate(records, start=2):
        values = [
            record.month,
            round(record.total_payment, 2),
            round(record.principal_paid, 2),
            round(record.interest_paid, 2),
            round(record.remaining_loan_balance, 2),
            round(record.monthly_balance, 2),
            round(record.total_savings, 2),
            round(record.prepayment_amount, 2),
            round(record.current_monthly_installment, 2),
        ]
        for loan_row in record.loans:
            values += [
                round(loan_row.principal, 2),
                round(loan_row.interest, 2),
                round(loan_row.balance, 2),
                round(loan_row.installment, 2),
            ]
        ws.append(values)

        for col_idx in range(1, len(values) + 1):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.font = body_font
            cell.alignment = align_right if col_idx > 1 else align_center
            if col_idx in loan_kind_by_col:
                cell.fill = body_fills[loan_kind_by_col[col_idx]]
            elif record.is_prepayment:
                cell.fill = prepay_fill
            elif row_idx % 2 == 0:
                cell.fill = alt_fill
            cell.border = border

    for i in range(1, len(headers) + 1):
        ws.column_dimensions[get_column_letter(i)].width = 8 if i == 1 else 14

    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _ensure_row_limit(rows: int, label: str) -> None:
    if rows > MAX_SCHEDULE_ROWS:
        raise HTTPException(status_code=413, detail=f"{label} too large, exceeds {MAX_SCHEDULE_ROWS} rows limit")


def _ensure_export_size(size_bytes: int) -> None:
    if size_bytes > MAX_EXPORT_BYTES:
        raise HTTPException(status_code=413, detail="export file too large")
