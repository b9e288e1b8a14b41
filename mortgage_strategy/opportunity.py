from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence
import math

from mortgage_strategy.calculator import Loan, is_active


VERDICT_REPAY = "repay"
VERDICT_HOLD = "hold"

# 机会成本演示：假设 50 万本金、10 年，展示利差的量级
DEFAULT_PROJECTION_PRINCIPAL = 500000.0
DEFAULT_PROJECTION_YEARS = 10


@dataclass(frozen=True)
class OpportunityAnalysis:
    """“还贷 vs 理财”机会成本对比。

    字段说明：
        weighted_rate: 按剩余本金加权的贷款年利率（百分比）。
        investment_yield: 理财年化收益率（百分比）。
        rate_diff: weighted_rate - investment_yield。
        verdict: repay（贷款成本更高，建议还贷）/ hold（理财收益不低于贷款成本）。
        projected_difference: principal * rate_diff% * years，单利估算的利差金额。
    """

    weighted_rate: float
    investment_yield: float
    rate_diff: float
    verdict: str
    projected_difference: float
    principal: float
    years: int


def repay_amount_from_cash(cash_on_hand: float, safety_buffer: float) -> float:
    # 可用于提前还款的金额 = 手头现金 - 安全垫，不小于 0
    return max(0.0, cash_on_hand - safety_buffer)


def weighted_rate(loans: Sequence[Loan]) -> float:
    active = [loan for loan in loans if is_active(loan)]
    total_balance = sum(loan.balance for loan in active)
    if total_balance <= 0:
        return 0.0
    return sum(loan.annual_rate * loan.balance for loan in active) / total_balance


def analyze_opportunity(
    loans: Sequence[Loan],
    investment_yield: float,
    principal: float = DEFAULT_PROJECTION_PRINCIPAL,
    years: int = DEFAULT_PROJECTION_YEARS,
) -> OpportunityAnalysis:
    loan_rate = weighted_rate(loans)
    yield_pct = investment_yield if math.isfinite(investment_yield) else 0.0
    rate_diff = loan_rate - yield_pct
    return OpportunityAnalysis(
        weighted_rate=loan_rate,
        investment_yield=yield_pct,
        rate_diff=rate_diff,
        verdict=VERDICT_REPAY if rate_diff > 0 else VERDICT_HOLD,
        projected_difference=principal * (rate_diff / 100.0) * years,
        principal=principal,
        years=years,
    )


def invest_future_value(principal: float, annual_rate_pct: float, years: int) -> float:
    """理财收益（按年复利近似）。"""
    if years <= 0:
        return principal
    r = annual_rate_pct / 100.0
    return principal * ((1.0 + r) ** years)
