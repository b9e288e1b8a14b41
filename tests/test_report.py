from mortgage_strategy.report import _score_label, generate_pdf
from mortgage_strategy.simulator import compare_strategies


def test_generate_pdf_returns_pdf_bytes(portfolio):
    comparison = compare_strategies(portfolio, 400000)
    pdf = generate_pdf(loans=portfolio, comparison=comparison, investment_yield=2.8)
    assert pdf.startswith(b"%PDF")


def test_generate_pdf_without_investment_yield(portfolio):
    comparison = compare_strategies(portfolio, 0)
    pdf = generate_pdf(loans=portfolio, comparison=comparison)
    assert pdf.startswith(b"%PDF")


def test_score_label_thresholds():
    assert _score_label(0, 0).startswith("谨慎")
    assert _score_label(60000, 100000) == "建议执行（省钱效率极高）"
    assert _score_label(25000, 100000) == "建议执行（省钱效率较高）"
    assert _score_label(15000, 100000) == "可考虑（收益一般）"
    assert _score_label(1000, 100000).startswith("谨慎")
