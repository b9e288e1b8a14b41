import math
import random

import pytest

from mortgage_strategy.calculator import (
    METHOD_EQUAL_PAYMENT,
    METHOD_EQUAL_PRINCIPAL,
    Loan,
    monthly_payment,
    total_remaining_interest,
)
from mortgage_strategy.simulator import (
    STRATEGY_REDUCE_PAYMENT,
    STRATEGY_SHORTEN_TERM,
    compare_strategies,
    normalize_strategy,
    simulate,
)


STRATEGIES = [STRATEGY_SHORTEN_TERM, STRATEGY_REDUCE_PAYMENT]


def _random_portfolio(rng):
    loans = []
    for i in range(rng.randint(1, 5)):
        loans.append(
            Loan(
                id=f"loan-{i}",
                balance=round(rng.uniform(1000, 3000000), 2),
                annual_rate=round(rng.uniform(0, 8), 2),
                remaining_months=rng.randint(1, 480),
                method=rng.choice([METHOD_EQUAL_PAYMENT, METHOD_EQUAL_PRINCIPAL]),
                loan_type=rng.choice(["commercial", "provident"]),
            )
        )
    return loans


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_zero_repayment_reproduces_baseline(portfolio, strategy):
    result = simulate(portfolio, 0, strategy)
    assert result.total_saved == 0
    assert result.monthly_payment == result.baseline_monthly_payment
    assert result.total_interest == result.baseline_interest
    assert result.monthly_payment == sum(monthly_payment(l) for l in portfolio)
    assert result.adjusted_loans == portfolio


def test_reduce_payment_keeps_terms(portfolio):
    result = simulate(portfolio, 400000, STRATEGY_REDUCE_PAYMENT)
    for before, after in zip(portfolio, result.adjusted_loans):
        assert after.remaining_months == before.remaining_months
    assert result.adjusted_loans[0].balance == 800000
    assert result.monthly_payment < result.baseline_monthly_payment
    assert result.total_saved > 0


def test_reduce_payment_zeroes_term_of_repaid_loan(portfolio):
    result = simulate(portfolio, 1500000, STRATEGY_REDUCE_PAYMENT)
    repaid, partial = result.adjusted_loans
    assert repaid.balance == 0 and repaid.remaining_months == 0
    assert partial.remaining_months == 300
    assert partial.balance == 300000


def test_shorten_term_equal_payment_keeps_payment(commercial_loan):
    result = simulate([commercial_loan], 400000, STRATEGY_SHORTEN_TERM)
    after = result.adjusted_loans[0]
    assert 0 < after.remaining_months < commercial_loan.remaining_months
    # 期数向上取整，新月供不会高于原月供
    assert monthly_payment(after) <= monthly_payment(commercial_loan) + 1e-6
    # 少一期则月供必须高于原月供
    shorter = Loan(id="A", balance=800000, annual_rate=3.85, remaining_months=after.remaining_months - 1)
    assert monthly_payment(shorter) > monthly_payment(commercial_loan)


def test_shorten_term_equal_principal_keeps_principal_part():
    loan = Loan(id="p", balance=600000, annual_rate=2.85, remaining_months=300, method=METHOD_EQUAL_PRINCIPAL)
    result = simulate([loan], 300000, STRATEGY_SHORTEN_TERM)
    after = result.adjusted_loans[0]
    assert after.remaining_months == 150
    assert after.balance / after.remaining_months == pytest.approx(2000)


def test_shorten_term_zero_rate_uses_linear_inversion():
    loan = Loan(id="z", balance=120000, annual_rate=0, remaining_months=120)
    result = simulate([loan], 60000, STRATEGY_SHORTEN_TERM)
    assert result.adjusted_loans[0].remaining_months == 60
    assert result.total_interest == pytest.approx(0)
    assert result.total_saved == pytest.approx(0)


def test_shorten_term_saves_more_than_reduce_payment(portfolio):
    comparison = compare_strategies(portfolio, 400000)
    assert comparison.shorten_term.total_saved > comparison.reduce_payment.total_saved > 0
    assert comparison.reduce_payment.monthly_payment < comparison.shorten_term.monthly_payment
    assert comparison.baseline.total_saved == 0
    assert comparison.baseline.total_interest == comparison.shorten_term.baseline_interest


def test_full_repayment_clears_everything(portfolio):
    for strategy in STRATEGIES:
        result = simulate(portfolio, 10000000, strategy)
        assert result.total_interest == 0
        assert result.monthly_payment == 0
        assert result.total_saved == pytest.approx(result.baseline_interest)
        assert all(l.balance == 0 and l.remaining_months == 0 for l in result.adjusted_loans)


def test_months_saved_is_not_aggregated(portfolio):
    assert simulate(portfolio, 400000, STRATEGY_SHORTEN_TERM).months_saved == 0


def test_caller_loans_are_not_modified(portfolio):
    snapshot = list(portfolio)
    simulate(portfolio, 400000, STRATEGY_SHORTEN_TERM)
    assert portfolio == snapshot


def test_degenerate_loans_contribute_nothing():
    loans = [
        Loan(id="nan-rate", balance=100000, annual_rate=float("nan"), remaining_months=120),
        Loan(id="no-term", balance=100000, annual_rate=3.0, remaining_months=0),
        Loan(id="paid", balance=0, annual_rate=3.0, remaining_months=0),
        Loan(id="endless", balance=100000, annual_rate=3.0, remaining_months=float("inf")),
        Loan(id="endless-free", balance=100000, annual_rate=0, remaining_months=float("inf")),
    ]
    for strategy in STRATEGIES:
        result = simulate(loans, 50000, strategy)
        assert result.total_interest == 0
        assert result.monthly_payment == 0
        assert result.total_saved == 0


def test_unknown_strategy_is_rejected(portfolio):
    with pytest.raises(ValueError):
        simulate(portfolio, 1000, "refinance")


def test_normalize_strategy_aliases():
    assert normalize_strategy("SHORTEN_TERM") == STRATEGY_SHORTEN_TERM
    assert normalize_strategy(" reduce ") == STRATEGY_REDUCE_PAYMENT


@pytest.mark.parametrize("seed", range(25))
def test_randomized_portfolio_invariants(seed):
    rng = random.Random(seed)
    loans = _random_portfolio(rng)
    total_balance = sum(l.balance for l in loans)
    amount = rng.uniform(0, total_balance)

    for strategy in STRATEGIES:
        result = simulate(loans, amount, strategy)
        assert result.total_saved >= 0
        assert math.isfinite(result.total_interest)
        assert sum(result.allocation.values()) <= amount + 1e-6
        for before, after in zip(loans, result.adjusted_loans):
            assert result.allocation[before.id] <= before.balance
            if strategy == STRATEGY_REDUCE_PAYMENT:
                assert after.remaining_months in (before.remaining_months, 0)
                if after.remaining_months == 0:
                    assert after.balance == 0
            elif after.balance > 0:
                assert after.remaining_months <= before.remaining_months
            assert total_remaining_interest(after) <= total_remaining_interest(before) + 1e-6


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_endless_term_loan_is_inactive_even_when_repaid(strategy):
    loan = Loan(id="endless", balance=100000, annual_rate=0, remaining_months=float("inf"))
    result = simulate([loan], 1000, strategy)
    assert result.total_interest == 0
    assert result.monthly_payment == 0
    assert result.total_saved == 0
    assert result.adjusted_loans[0].balance == 99000


def test_shorten_term_with_tiny_rate_stays_finite():
    loan = Loan(id="t", balance=120000, annual_rate=1e-15, remaining_months=120)
    result = simulate([loan], 60000, STRATEGY_SHORTEN_TERM)
    assert 60 <= result.adjusted_loans[0].remaining_months <= 61
    assert math.isfinite(result.total_interest)
    assert math.isfinite(result.monthly_payment)


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_duplicate_ids_never_pay_out_more_than_the_lump_sum(strategy):
    loans = [
        Loan(id="dup", balance=100000, annual_rate=4.0, remaining_months=120),
        Loan(id="dup", balance=100000, annual_rate=3.0, remaining_months=120),
    ]
    result = simulate(loans, 30000, strategy)
    reduction = sum(before.balance - after.balance for before, after in zip(loans, result.adjusted_loans))
    assert reduction == pytest.approx(30000)
    assert result.adjusted_loans[0].balance == 70000
    assert result.adjusted_loans[1].balance == 100000
    assert result.allocation == {"dup": 30000}
