from __future__ import annotations

import logging
import os

from mortgage_strategy.calculator import LOAN_COMMERCIAL, LOAN_PROVIDENT, Loan
from mortgage_strategy.opportunity import repay_amount_from_cash
from mortgage_strategy.report import generate_pdf
from mortgage_strategy.simulator import compare_strategies


def main() -> None:
    logging.basicConfig(level=logging.INFO)

    # 示例：商贷 120 万 + 公积金 60 万，手头 50 万，保留 10 万安全垫
    loans = [
        Loan(id="commercial", loan_type=LOAN_COMMERCIAL, balance=1200000, annual_rate=3.85, remaining_months=300),
        Loan(id="provident", loan_type=LOAN_PROVIDENT, balance=600000, annual_rate=2.85, remaining_months=300,
             method="equal_principal"),
    ]
    comparison = compare_strategies(loans, repay_amount_from_cash(500000, 100000))

    for label, result in (
        ("baseline", comparison.baseline),
        ("shorten_term", comparison.shorten_term),
        ("reduce_payment", comparison.reduce_payment),
    ):
        print(
            f"{label:>15}: interest={result.total_interest:,.2f} "
            f"monthly={result.monthly_payment:,.2f} saved={result.total_saved:,.2f}"
        )

    os.makedirs("output", exist_ok=True)
    path = os.path.join("output", "strategy_report.pdf")
    with open(path, "wb") as f:
        f.write(generate_pdf(loans=loans, comparison=comparison, investment_yield=2.8))
    print(f"PDF written to {path}")


if __name__ == "__main__":
    main()
