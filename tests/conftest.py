"""Shared fixtures for the payoff simulator tests."""

from __future__ import annotations

import pytest

from debtfree_agent.calculator import (
    FinanceProfile,
    LoanAccount,
    LoanKind,
    PrepaymentStrategy,
    compute_fixed_installment,
)

# 1,000,000 / 4.5% / 30 years
SCENARIO_INSTALLMENT = compute_fixed_installment(1_000_000, 4.5, 360)


@pytest.fixture
def single_loan():
    return [LoanAccount(kind=LoanKind.COMMERCIAL, principal=1_000_000, annual_rate=4.5, term_years=30)]


@pytest.fixture
def combined_loans():
    """Housing-fund + commercial combination loan."""
    return [
        LoanAccount(kind=LoanKind.HOUSING_FUND, principal=600_000, annual_rate=3.1, term_years=30),
        LoanAccount(kind=LoanKind.COMMERCIAL, principal=1_400_000, annual_rate=4.2, term_years=25),
    ]


def make_profile(
    surplus: float,
    installment: float,
    *,
    threshold: float = 50_000,
    initial_savings: float = 0,
    strategy: PrepaymentStrategy = PrepaymentStrategy.SHORTEN_TERM,
) -> FinanceProfile:
    """Profile whose monthly balance equals ``surplus`` while the installment stays unchanged."""
    income = 30_000.0
    return FinanceProfile(
        monthly_income=income,
        monthly_expense=income - surplus - installment,
        initial_savings=initial_savings,
        prepayment_threshold=threshold,
        prepayment_strategy=strategy,
    )
