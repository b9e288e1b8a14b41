from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Optional
import math


# 还款方式常量：等额本息 / 等额本金
METHOD_EQUAL_PAYMENT = "equal_payment"
METHOD_EQUAL_PRINCIPAL = "equal_principal"

# 贷款类型：商业贷款 / 公积金贷款（仅用于展示，不影响计算）
LOAN_COMMERCIAL = "commercial"
LOAN_PROVIDENT = "provident"

# 定投还款频率
FREQUENCY_WEEKLY = "weekly"
FREQUENCY_BI_WEEKLY = "bi_weekly"
FREQUENCY_MONTHLY = "monthly"

DEFAULT_SCHEDULE_HORIZON = 60


def normalize_method(method: str) -> str:
    # 统一并校验还款方式输入，支持一些别名。
    if not method:
        raise ValueError("repayment method is required")
    normalized = method.strip().lower()
    if normalized in ("annuity", "equal_payment", "equal_installment"):
        return METHOD_EQUAL_PAYMENT
    if normalized in ("equal_principal", "principal"):
        return METHOD_EQUAL_PRINCIPAL
    raise ValueError(f"unsupported repayment method: {method}")


def normalize_loan_type(loan_type: str) -> str:
    if not loan_type:
        raise ValueError("loan type is required")
    normalized = loan_type.strip().lower()
    if normalized in ("commercial", "business"):
        return LOAN_COMMERCIAL
    if normalized in ("provident", "provident_fund", "fund"):
        return LOAN_PROVIDENT
    raise ValueError(f"unsupported loan type: {loan_type}")


def normalize_frequency(frequency: str) -> str:
    normalized = (frequency or "").strip().lower().replace("-", "_")
    if normalized in (FREQUENCY_WEEKLY, FREQUENCY_BI_WEEKLY, FREQUENCY_MONTHLY):
        return normalized
    raise ValueError(f"unsupported recurring frequency: {frequency}")


@dataclass(frozen=True)
class RecurringPayment:
    """定投式追加还款设置。

    字段说明：
        amount: 每次追加金额（单位：元）。
        frequency: 追加频率（weekly / bi_weekly / monthly）。
        enabled: 是否启用。

    该设置只随贷款数据一起保存，模拟引擎不会读取它。
    """

    amount: float = 0.0
    frequency: str = FREQUENCY_MONTHLY
    enabled: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "frequency", normalize_frequency(self.frequency))


@dataclass(frozen=True)
class Loan:
    """单笔贷款的当前状态。

    字段说明：
        id: 贷款唯一标识。
        loan_type: 贷款类型（commercial 商贷 / provident 公积金），仅用于展示。
        balance: 剩余本金（单位：元）。
        annual_rate: 年利率（百分比），例如 3.85 表示 3.85%。
        remaining_months: 剩余期数（月）。0 表示已还清。
        method: 还款方式（equal_payment 等额本息 / equal_principal 等额本金）。
        recurring: 可选的定投追加还款设置。

    数值字段在构造时不做校验：界面上填到一半的数据也要能算出结果，
    不合法的数值在计算时按“无有效贷款”处理。
    """

    id: str
    balance: float
    annual_rate: float
    remaining_months: int
    method: str = METHOD_EQUAL_PAYMENT
    loan_type: str = LOAN_COMMERCIAL
    recurring: Optional[RecurringPayment] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", normalize_method(self.method))
        object.__setattr__(self, "loan_type", normalize_loan_type(self.loan_type))


@dataclass
class ScheduleRow:
    """单期（月）还款计划明细。

    字段说明：
        month_index: 期数序号（从 1 开始）。
        payment: 本期还款额（单位：元）。
        principal: 本期归还本金（单位：元）。
        interest: 本期支付利息（单位：元）。
        balance: 本期还款后剩余本金余额（单位：元）。
    """

    month_index: int
    payment: float
    principal: float
    interest: float
    balance: float


def monthly_rate(annual_rate: float) -> float:
    # 年利率百分比 -> 月利率小数。例如 3.6% => 0.003
    return annual_rate / 100.0 / 12.0


def annuity_payment(principal: float, rate: float, months: int) -> float:
    if months <= 0:
        return 0.0
    if rate == 0:
        return principal / months
    # P*r / (1 - (1+r)^-n)：用 log1p/expm1 计算，极小利率不会除零，超长期限不会溢出
    discount = -math.expm1(-months * math.log1p(rate))
    if discount == 0:
        return principal / months
    return principal * rate / discount


def is_active(loan: Loan) -> bool:
    """贷款是否仍在还款中：余额、利率有限且为正/非负，剩余期数为正。"""
    if not math.isfinite(loan.balance) or loan.balance <= 0:
        return False
    if not math.isfinite(loan.annual_rate) or loan.annual_rate < 0:
        return False
    return math.isfinite(loan.remaining_months) and loan.remaining_months > 0


def monthly_payment(loan: Loan) -> float:
    """下一期月供。已还清或数据不完整的贷款返回 0。"""
    if not is_active(loan):
        return 0.0

    rate = monthly_rate(loan.annual_rate)
    months = loan.remaining_months

    if loan.method == METHOD_EQUAL_PRINCIPAL:
        # 等额本金：固定本金 + 当前余额的利息
        return loan.balance / months + loan.balance * rate
    return annuity_payment(loan.balance, rate, months)


def total_remaining_interest(loan: Loan) -> float:
    """剩余总利息。"""
    if not is_active(loan):
        return 0.0

    rate = monthly_rate(loan.annual_rate)
    months = loan.remaining_months

    if loan.method == METHOD_EQUAL_PRINCIPAL:
        # 余额线性递减，各期利息构成等差数列：(n+1) * B * r / 2
        return (months + 1) * loan.balance * rate / 2
    # 浮点误差可能给出极小的负数，利息不小于 0
    return max(0.0, monthly_payment(loan) * months - loan.balance)


class AmortizationSchedule:
    """一笔贷款前若干期的还款计划（惰性生成，可重复迭代）。

    条目数为 min(horizon_months, remaining_months)。等额本息每期按
    “当前余额 + 剩余期数”重新计算月供；等额本金的每期本金在开始时按
    原余额 / 原剩余期数一次算定。
    """

    def __init__(self, loan: Loan, horizon_months: int = DEFAULT_SCHEDULE_HORIZON):
        self.loan = loan
        self.horizon_months = horizon_months

    def __len__(self) -> int:
        if not is_active(self.loan) or self.horizon_months <= 0:
            return 0
        return int(min(self.horizon_months, self.loan.remaining_months))

    def __iter__(self) -> Iterator[ScheduleRow]:
        points = len(self)
        if points == 0:
            return

        loan = self.loan
        rate = monthly_rate(loan.annual_rate)
        balance = loan.balance
        fixed_principal = loan.balance / loan.remaining_months

        for i in range(1, points + 1):
            interest = balance * rate
            if loan.method == METHOD_EQUAL_PRINCIPAL:
                principal = min(fixed_principal, balance)
                payment = principal + interest
            else:
                payment = annuity_payment(balance, rate, loan.remaining_months - i + 1)
                principal = payment - interest
            balance -= principal
            yield ScheduleRow(i, payment, principal, interest, balance)


def amortization_schedule(loan: Loan, horizon_months: int = DEFAULT_SCHEDULE_HORIZON) -> AmortizationSchedule:
    return AmortizationSchedule(loan, horizon_months)


def interest_by_year(schedule: Iterable[ScheduleRow]) -> Dict[int, float]:
    # 按“贷款年度”汇总利息（第1年=1~12期，第2年=13~24期 ...）。
    totals: Dict[int, float] = {}
    for row in schedule:
        year = (row.month_index - 1) // 12 + 1
        totals[year] = totals.get(year, 0.0) + row.interest
    return totals
