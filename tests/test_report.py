"""Tests for the PDF report and Excel export helpers."""

from __future__ import annotations

from io import BytesIO

from openpyxl import load_workbook

from debtfree_agent.api import _records_to_xlsx
from debtfree_agent.calculator import PrepaymentStrategy, compute_fixed_installment
from debtfree_agent.report import critical_point_tip, generate_pdf
from debtfree_agent.simulator import compare_strategies
from tests.conftest import make_profile


def _installment(loans):
    return sum(compute_fixed_installment(l.principal, l.annual_rate, l.term_months) for l in loans)


def test_generate_pdf_returns_pdf_bytes(combined_loans):
    profile = make_profile(6_000, _installment(combined_loans), threshold=100_000)
    comparison = compare_strategies(combined_loans, profile)
    pdf = generate_pdf(comparison=comparison, loans=combined_loans, profile=profile)
    assert pdf.startswith(b"%PDF")


def test_generate_pdf_without_prepayments(single_loan):
    profile = make_profile(-1, _installment(single_loan), threshold=1e12, strategy=PrepaymentStrategy.REDUCE_PAYMENT)
    comparison = compare_strategies(single_loan, profile)
    assert comparison.reduce_payment.prepayment_count == 0
    assert generate_pdf(comparison=comparison, loans=single_loan, profile=profile).startswith(b"%PDF")


def test_records_to_xlsx_has_per_loan_columns(combined_loans):
    profile = make_profile(6_000, _installment(combined_loans), threshold=100_000)
    records = compare_strategies(combined_loans, profile).shorten_term.records

    wb = load_workbook(BytesIO(_records_to_xlsx(records, combined_loans)))
    ws = wb.active
    headers = [c.value for c in ws[1]]
    assert headers[0] == "月份"
    assert len(headers) == 9 + 4 * len(combined_loans)
    assert headers[9].startswith("公积金#1")
    assert headers[13].startswith("商贷#2")
    assert ws.max_row == len(records) + 1
    assert ws.cell(row=2, column=1).value == 1


def test_critical_point_tip_follows_reason():
    by_principal = critical_point_tip(176, "monthly_interest_below_principal")
    assert "第176个月（约第15年第8个月）" in by_principal
    assert "每月利息低于归还本金" in by_principal

    by_ratio = critical_point_tip(300, "remaining_interest_below_10_percent")
    assert "剩余总利息占剩余还款不足 10%" in by_ratio
    assert "每月利息低于归还本金" not in by_ratio
