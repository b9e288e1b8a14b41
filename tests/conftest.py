import pytest

from mortgage_strategy.calculator import Loan


@pytest.fixture
def commercial_loan():
    return Loan(id="A", loan_type="commercial", balance=1200000, annual_rate=3.85, remaining_months=300)


@pytest.fixture
def provident_loan():
    return Loan(id="B", loan_type="provident", balance=600000, annual_rate=2.85, remaining_months=300)


@pytest.fixture
def portfolio(commercial_loan, provident_loan):
    return [commercial_loan, provident_loan]
