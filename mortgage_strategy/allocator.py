from __future__ import annotations

from typing import Dict, List, Sequence
import math

from mortgage_strategy.calculator import Loan


def _usable_balance(loan: Loan) -> float:
    if not math.isfinite(loan.balance) or loan.balance <= 0:
        return 0.0
    return loan.balance


def allocate(loans: Sequence[Loan], amount: float) -> List[float]:
    """按位置返回每笔贷款分到的提前还款金额，与输入一一对应。"""
    shares = [0.0] * len(loans)
    if not math.isfinite(amount) or amount <= 0:
        return shares

    # sorted 是稳定排序；非有限利率排到最后
    ordered = sorted(
        range(len(loans)),
        key=lambda i: loans[i].annual_rate if math.isfinite(loans[i].annual_rate) else -math.inf,
        reverse=True,
    )

    remaining = amount
    for i in ordered:
        if remaining <= 0:
            break
        pay = min(remaining, _usable_balance(loans[i]))
        shares[i] = pay
        remaining -= pay
    return shares


def group_by_id(loans: Sequence[Loan], shares: Sequence[float]) -> Dict[str, float]:
    allocation: Dict[str, float] = {}
    for loan, share in zip(loans, shares):
        allocation[loan.id] = allocation.get(loan.id, 0.0) + share
    return allocation


def distribute(loans: Sequence[Loan], amount: float) -> Dict[str, float]:
    """“狙击”模式：把一笔提前还款优先分配给利率最高的贷款。

    按年利率从高到低依次分配（利率相同保持原顺序），每笔贷款最多分到
    其剩余本金，直到金额或贷款用完。返回 {贷款 id: 分配金额}，
    顺序与输入一致，未分到钱的贷款为 0。超出总余额的部分不分配。

    贷款 id 应当唯一；若有重复 id，同一 id 下的金额合并为一项，
    合计仍不超过 amount。需要逐笔金额时用 allocate。
    """
    return group_by_id(loans, allocate(loans, amount))
