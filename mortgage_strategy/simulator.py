from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, List, Sequence
import logging
import math

from mortgage_strategy.allocator import allocate, group_by_id
from mortgage_strategy.calculator import (
    METHOD_EQUAL_PRINCIPAL,
    Loan,
    is_active,
    monthly_payment,
    monthly_rate,
    total_remaining_interest,
)


logger = logging.getLogger(__name__)

# 提前还款策略：缩短年限（月供不变）/ 减少月供（期限不变）
STRATEGY_SHORTEN_TERM = "shorten_term"
STRATEGY_REDUCE_PAYMENT = "reduce_payment"


def normalize_strategy(strategy: str) -> str:
    if not strategy:
        raise ValueError("repayment strategy is required")
    normalized = strategy.strip().lower()
    if normalized in ("shorten_term", "shorten", "term"):
        return STRATEGY_SHORTEN_TERM
    if normalized in ("reduce_payment", "reduce", "payment", "installment"):
        return STRATEGY_REDUCE_PAYMENT
    raise ValueError(f"unsupported repayment strategy: {strategy}")


@dataclass(frozen=True)
class SimulationResult:
    """一次提前还款模拟的组合层面汇总。

    字段说明：
        strategy: 使用的策略（shorten_term / reduce_payment）。
        total_interest: 提前还款后全部贷款的剩余总利息。
        monthly_payment: 提前还款后全部贷款的下一期月供合计。
        total_saved: 相比不提前还款节省的利息，不小于 0。
        months_saved: 组合层面不汇总期数，固定为 0。
        baseline_interest: 不提前还款时的剩余总利息。
        baseline_monthly_payment: 不提前还款时的月供合计。
        allocation: 每笔贷款分到的提前还款金额。
        adjusted_loans: 提前还款后的（虚拟）贷款，顺序与输入一致。
    """

    strategy: str
    total_interest: float
    monthly_payment: float
    total_saved: float
    months_saved: int
    baseline_interest: float
    baseline_monthly_payment: float
    allocation: Dict[str, float]
    adjusted_loans: List[Loan]


@dataclass(frozen=True)
class StrategyComparison:
    """基准 + 两种提前还款方案，便于并排展示。"""

    repay_amount: float
    baseline: SimulationResult
    shorten_term: SimulationResult
    reduce_payment: SimulationResult


def _shortened_months(loan: Loan, new_balance: float) -> int:
    # 缩短年限：保持原月供（等额本息）或原每期本金（等额本金），倒推剩余期数。
    if loan.method == METHOD_EQUAL_PRINCIPAL:
        original_principal_part = loan.balance / loan.remaining_months
        months = math.ceil(new_balance / original_principal_part)
        return min(months, loan.remaining_months)

    rate = monthly_rate(loan.annual_rate)
    target_payment = monthly_payment(loan)

    if rate == 0:
        months = math.ceil(new_balance / target_payment)
        return min(months, loan.remaining_months)

    interest_only = new_balance * rate
    if target_payment <= interest_only:
        # 原月供连利息都覆盖不了，无法倒推，保持原期数
        logger.debug("loan %s: payment %.2f cannot amortize balance %.2f, keeping term", loan.id, target_payment, new_balance)
        return loan.remaining_months

    months = -math.log1p(-new_balance * rate / target_payment) / math.log1p(rate)
    return min(math.ceil(months), loan.remaining_months)


def _apply_repayment(loan: Loan, amount: float, strategy: str) -> Loan:
    # 只生成新的虚拟贷款，不修改调用方的数据
    if amount <= 0 or not math.isfinite(loan.balance):
        return loan

    new_balance = max(0.0, loan.balance - amount)
    if new_balance == 0:
        return replace(loan, balance=0.0, remaining_months=0)
    if strategy == STRATEGY_REDUCE_PAYMENT or not is_active(loan):
        return replace(loan, balance=new_balance)
    return replace(loan, balance=new_balance, remaining_months=_shortened_months(loan, new_balance))


def simulate(loans: Sequence[Loan], repay_amount: float, strategy: str) -> SimulationResult:
    """模拟一笔提前还款在整个贷款组合上的效果。

    流程：
    1) 计算不提前还款时的剩余总利息与月供合计（基准）
    2) 按利率从高到低分配提前还款金额
    3) 对每笔贷款生成还款后的虚拟贷款，按策略调整期数
    4) 重新汇总利息与月供，节省利息最少为 0
    """
    strategy = normalize_strategy(strategy)

    baseline_interest = sum(total_remaining_interest(loan) for loan in loans)
    baseline_payment = sum(monthly_payment(loan) for loan in loans)

    shares = allocate(loans, repay_amount)
    adjusted = [_apply_repayment(loan, share, strategy) for loan, share in zip(loans, shares)]

    interest_after = sum(total_remaining_interest(loan) for loan in adjusted)
    payment_after = sum(monthly_payment(loan) for loan in adjusted)

    return SimulationResult(
        strategy=strategy,
        total_interest=interest_after,
        monthly_payment=payment_after,
        total_saved=max(0.0, baseline_interest - interest_after),
        months_saved=0,
        baseline_interest=baseline_interest,
        baseline_monthly_payment=baseline_payment,
        allocation=group_by_id(loans, shares),
        adjusted_loans=adjusted,
    )


def compare_strategies(loans: Sequence[Loan], repay_amount: float) -> StrategyComparison:
    return StrategyComparison(
        repay_amount=repay_amount,
        baseline=simulate(loans, 0.0, STRATEGY_SHORTEN_TERM),
        shorten_term=simulate(loans, repay_amount, STRATEGY_SHORTEN_TERM),
        reduce_payment=simulate(loans, repay_amount, STRATEGY_REDUCE_PAYMENT),
    )
