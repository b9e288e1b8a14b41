"""房贷提前还款策略模拟 Python 包。

常用导入：
    from mortgage_strategy import Loan, simulate, compare_strategies

调试运行：
    python -m mortgage_strategy

该调试入口会：
1) 对一组示例组合贷跑两种提前还款策略
2) 生成一份示例 PDF 到 output/ 目录
"""

from .allocator import allocate, distribute
from .calculator import (
    AmortizationSchedule,
    Loan,
    RecurringPayment,
    ScheduleRow,
    amortization_schedule,
    monthly_payment,
    total_remaining_interest,
)
from .opportunity import OpportunityAnalysis, analyze_opportunity, repay_amount_from_cash, weighted_rate
from .simulator import (
    STRATEGY_REDUCE_PAYMENT,
    STRATEGY_SHORTEN_TERM,
    SimulationResult,
    StrategyComparison,
    compare_strategies,
    simulate,
)

__all__ = [
    "AmortizationSchedule",
    "Loan",
    "OpportunityAnalysis",
    "RecurringPayment",
    "STRATEGY_REDUCE_PAYMENT",
    "STRATEGY_SHORTEN_TERM",
    "ScheduleRow",
    "SimulationResult",
    "StrategyComparison",
    "allocate",
    "amortization_schedule",
    "analyze_opportunity",
    "compare_strategies",
    "distribute",
    "monthly_payment",
    "repay_amount_from_cash",
    "simulate",
    "total_remaining_interest",
    "weighted_rate",
]
