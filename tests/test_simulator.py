"""Tests for the month-by-month payoff simulation.

Covers the schedule-level properties of the engine:
- principal conservation per loan
- non-increasing outstanding balance
- plain amortization when prepayment never triggers
- full payoff from savings, unit-rounded partial prepayments
- SHORTEN_TERM vs REDUCE_PAYMENT behaviour
- month cap and non-convergence outcomes
"""

from __future__ import annotations

from itertools import islice

import pytest

from debtfree_agent import calculator
from debtfree_agent.calculator import (
    FinanceProfile,
    LoanAccount,
    LoanKind,
    LoanValidationError,
    PrepaymentStrategy,
    compute_fixed_installment,
    monthly_rate,
    recompute_installment,
)
from debtfree_agent.simulator import (
    Outcome,
    aggregate_interest_by_year,
    compare_strategies,
    find_critical_point,
    iter_schedule,
    simulate,
    simulate_schedule,
)
from tests.conftest import SCENARIO_INSTALLMENT, make_profile


def _combined_installment(loans):
    return sum(compute_fixed_installment(l.principal, l.annual_rate, l.term_months) for l in loans)


class TestNoPrepaymentBaseline:
    def test_matches_standard_amortization_table(self, single_loan):
        profile = make_profile(-1, SCENARIO_INSTALLMENT, threshold=1e12)
        records = simulate_schedule(single_loan, profile)

        assert len(records) == 360
        assert not any(r.is_prepayment for r in records)

        rate = monthly_rate(4.5)
        balance = 1_000_000.0
        for record in records[:-1]:
            interest = balance * rate
            principal = SCENARIO_INSTALLMENT - interest
            balance -= principal
            assert record.interest_paid == pytest.approx(interest)
            assert record.principal_paid == pytest.approx(principal)
            assert record.remaining_loan_balance == pytest.approx(balance)

        assert records[-1].remaining_loan_balance == 0
        assert records[0].interest_paid == pytest.approx(3750.0)
        assert records[0].principal_paid == pytest.approx(1316.85, abs=0.01)

    def test_monthly_balance_and_savings(self, single_loan):
        profile = make_profile(-1, SCENARIO_INSTALLMENT, threshold=1e12)
        records = simulate_schedule(single_loan, profile)
        assert records[0].monthly_balance == pytest.approx(-1.0)
        assert records[11].total_savings == pytest.approx(-12.0)
        assert records[0].current_monthly_installment == pytest.approx(SCENARIO_INSTALLMENT)

    def test_allow_prepayment_false_disables_policy(self, single_loan):
        profile = make_profile(8_000, SCENARIO_INSTALLMENT, threshold=0)
        result = simulate(single_loan, profile, allow_prepayment=False)
        assert result.months == 360
        assert result.prepayment_count == 0


class TestScenario:
    def test_savings_accumulate_then_prepay(self, single_loan):
        profile = make_profile(8_000, SCENARIO_INSTALLMENT, threshold=50_000)
        result = simulate(single_loan, profile)
        records = result.records

        assert not any(r.is_prepayment for r in records[:6])
        assert records[5].total_savings == pytest.approx(48_000)

        seventh = records[6]
        assert seventh.is_prepayment
        assert seventh.prepayment_amount == 50_000
        assert seventh.total_savings == pytest.approx(6_000)

        assert result.outcome is Outcome.PAID_OFF
        assert result.months < 360

    def test_total_payment_includes_prepayment(self, single_loan):
        profile = make_profile(8_000, SCENARIO_INSTALLMENT, threshold=50_000)
        seventh = simulate_schedule(single_loan, profile)[6]
        assert seventh.total_payment == pytest.approx(seventh.principal_paid + seventh.interest_paid)
        assert seventh.principal_paid == pytest.approx(
            SCENARIO_INSTALLMENT - seventh.interest_paid + 50_000
        )


class TestInvariants:
    @pytest.mark.parametrize("strategy", list(PrepaymentStrategy))
    def test_principal_conserved_per_loan(self, combined_loans, strategy):
        profile = make_profile(
            6_000, _combined_installment(combined_loans), threshold=100_000, strategy=strategy
        )
        result = simulate(combined_loans, profile)
        assert result.paid_off

        for idx, loan in enumerate(combined_loans):
            paid = sum(r.loans[idx].principal for r in result.records)
            assert paid == pytest.approx(loan.principal, abs=0.01)
        assert result.total_principal == pytest.approx(2_000_000, abs=0.01)

    @pytest.mark.parametrize("strategy", list(PrepaymentStrategy))
    def test_remaining_balance_non_increasing(self, combined_loans, strategy):
        profile = make_profile(
            6_000, _combined_installment(combined_loans), threshold=100_000, strategy=strategy
        )
        records = simulate_schedule(combined_loans, profile)
        balances = [r.remaining_loan_balance for r in records]
        assert all(later <= earlier for earlier, later in zip(balances, balances[1:]))
        assert balances[-1] == 0
        assert all(row.balance >= 0 for r in records for row in r.loans)

    def test_unreconciled_rounding_debits_applied_amount(self):
        # 三笔相同贷款，10000 按比例分摊为 3333 × 3，实际只还 9999
        loans = [
            LoanAccount(kind=LoanKind.COMMERCIAL, principal=300_000, annual_rate=4.5, term_years=30)
            for _ in range(3)
        ]
        profile = make_profile(3_000, _combined_installment(loans), threshold=10_000)
        result = simulate(loans, profile, reconcile_rounding=False)
        assert result.paid_off

        partial = [r for r in result.records if r.is_prepayment and r.remaining_loan_balance > 0]
        assert partial
        assert any(r.prepayment_amount % calculator.PREPAYMENT_UNIT for r in partial)

        savings = 0.0
        for record in result.records:
            assert record.prepayment_amount == pytest.approx(sum(row.prepayment for row in record.loans))
            savings += record.monthly_balance - record.prepayment_amount
            assert record.total_savings == pytest.approx(savings)

        for idx, loan in enumerate(loans):
            paid = sum(r.loans[idx].principal for r in result.records)
            assert paid == pytest.approx(loan.principal, abs=0.01)

        reconciled = simulate(loans, profile)
        assert all(
            r.prepayment_amount % calculator.PREPAYMENT_UNIT == 0
            for r in reconciled.records
            if r.is_prepayment and r.remaining_loan_balance > 0
        )

    def test_partial_prepayments_are_unit_multiples(self, combined_loans):
        profile = make_profile(6_000, _combined_installment(combined_loans), threshold=100_000)
        records = simulate_schedule(combined_loans, profile)
        partial = [r for r in records if r.is_prepayment and r.remaining_loan_balance > 0]
        assert partial
        for record in partial:
            assert record.prepayment_amount % 10_000 == 0
            assert sum(row.prepayment for row in record.loans) == record.prepayment_amount

    def test_no_prepayment_below_unit(self, single_loan):
        profile = make_profile(3_000, SCENARIO_INSTALLMENT, threshold=0)
        records = simulate_schedule(single_loan, profile)
        assert not any(r.is_prepayment for r in records[:3])
        assert records[3].prepayment_amount == 10_000
        assert records[3].total_savings == pytest.approx(2_000)

    def test_deterministic(self, combined_loans):
        profile = make_profile(6_000, _combined_installment(combined_loans), threshold=100_000)
        assert simulate_schedule(combined_loans, profile) == simulate_schedule(combined_loans, profile)


class TestFullPayoff:
    def test_savings_clear_all_debt_in_one_month(self):
        loans = [LoanAccount(kind=LoanKind.HOUSING_FUND, principal=100_000, annual_rate=3.0, term_years=10)]
        installment = compute_fixed_installment(100_000, 3.0, 120)
        profile = make_profile(1_000, installment, threshold=1e12, initial_savings=200_000)

        result = simulate(loans, profile)
        assert result.outcome is Outcome.PAID_OFF
        assert result.months == 1

        record = result.records[0]
        regular_principal = installment - 250.0
        assert record.is_prepayment
        assert record.prepayment_amount == pytest.approx(100_000 - regular_principal)
        assert record.remaining_loan_balance == 0
        assert record.principal_paid == pytest.approx(100_000)
        assert record.total_savings == pytest.approx(201_000 - (100_000 - regular_principal))
        assert record.current_monthly_installment == 0


class TestStrategies:
    def test_reduce_payment_keeps_original_term(self, single_loan):
        profile = FinanceProfile(
            monthly_income=0,
            monthly_expense=0,
            initial_savings=105_000,
            prepayment_threshold=90_000,
            prepayment_strategy=PrepaymentStrategy.REDUCE_PAYMENT,
        )
        result = simulate(single_loan, profile)
        assert result.paid_off
        assert result.months == 360
        assert result.prepayment_count == 1

        first = result.records[0]
        assert first.prepayment_amount == 90_000
        assert first.current_monthly_installment == pytest.approx(
            recompute_installment(first.remaining_loan_balance, monthly_rate(4.5), 359)
        )
        assert first.current_monthly_installment < SCENARIO_INSTALLMENT

    def test_shorten_term_pays_off_early_with_same_installment(self, single_loan):
        profile = FinanceProfile(
            monthly_income=0,
            monthly_expense=0,
            initial_savings=105_000,
            prepayment_threshold=90_000,
            prepayment_strategy=PrepaymentStrategy.SHORTEN_TERM,
        )
        result = simulate(single_loan, profile)
        assert result.paid_off
        assert result.months < 360
        assert result.records[0].current_monthly_installment == pytest.approx(SCENARIO_INSTALLMENT)

    def test_strategies_diverge(self, combined_loans):
        installment = _combined_installment(combined_loans)
        shorten = simulate(combined_loans, make_profile(6_000, installment, threshold=100_000))
        reduce = simulate(
            combined_loans,
            make_profile(6_000, installment, threshold=100_000, strategy=PrepaymentStrategy.REDUCE_PAYMENT),
        )
        shorten_path = [r.current_monthly_installment for r in shorten.records]
        reduce_path = [r.current_monthly_installment for r in reduce.records]
        assert shorten.months != reduce.months or shorten_path != reduce_path

        first = next(i for i, r in enumerate(reduce.records) if r.is_prepayment)
        assert reduce_path[first] < installment
        assert shorten_path[first] == pytest.approx(installment)


class TestTermination:
    def test_month_cap_is_reported(self):
        loans = [LoanAccount(kind=LoanKind.COMMERCIAL, principal=1_000_000, annual_rate=4.5, term_years=100)]
        installment = compute_fixed_installment(1_000_000, 4.5, 1200)
        result = simulate(loans, make_profile(-100, installment, threshold=1e12))
        assert result.outcome is Outcome.MONTH_CAP_REACHED
        assert result.months == 1000
        assert not result.paid_off
        assert result.records[-1].remaining_loan_balance > 0

    def test_custom_month_cap(self, single_loan):
        result = simulate(single_loan, make_profile(-1, SCENARIO_INSTALLMENT, threshold=1e12), max_months=24)
        assert result.outcome is Outcome.MONTH_CAP_REACHED
        assert result.months == 24

    def test_installment_below_interest_is_non_convergent(self, single_loan, monkeypatch):
        monkeypatch.setattr(calculator, "compute_fixed_installment", lambda *args: 0.0)
        profile = FinanceProfile(
            monthly_income=5_000,
            monthly_expense=5_000,
            initial_savings=0,
            prepayment_threshold=50_000,
            prepayment_strategy=PrepaymentStrategy.SHORTEN_TERM,
        )
        result = simulate(single_loan, profile)
        assert result.outcome is Outcome.NON_CONVERGENT
        assert result.months == 1

    def test_invalid_input_rejected_before_simulation(self, single_loan):
        with pytest.raises(LoanValidationError):
            simulate([], make_profile(0, 0))

    def test_nan_principal_is_rejected_not_paid_off(self):
        loans = [LoanAccount(kind=LoanKind.COMMERCIAL, principal=float("nan"), annual_rate=4.5, term_years=30)]
        with pytest.raises(LoanValidationError, match="principal"):
            simulate(loans, make_profile(8_000, SCENARIO_INSTALLMENT))


class TestStreaming:
    def test_iter_schedule_is_lazy(self, single_loan):
        profile = make_profile(8_000, SCENARIO_INSTALLMENT)
        first_three = list(islice(iter_schedule(single_loan, profile), 3))
        assert [r.month for r in first_three] == [1, 2, 3]

    def test_generator_returns_outcome(self, single_loan):
        schedule = iter_schedule(single_loan, make_profile(8_000, SCENARIO_INSTALLMENT))
        with pytest.raises(StopIteration) as stop:
            while True:
                next(schedule)
        assert stop.value.value is Outcome.PAID_OFF


class TestComparison:
    def test_compare_strategies(self, single_loan):
        comparison = compare_strategies(single_loan, make_profile(8_000, SCENARIO_INSTALLMENT))
        assert comparison.baseline.months == 360
        assert comparison.baseline.prepayment_count == 0
        assert comparison.months_saved_shorten > 0
        assert comparison.savings_shorten > 0
        assert comparison.savings_reduce > 0
        assert comparison.savings_shorten == pytest.approx(
            comparison.baseline.total_interest - comparison.shorten_term.total_interest
        )

    def test_interest_by_year(self, single_loan):
        records = simulate_schedule(single_loan, make_profile(-1, SCENARIO_INSTALLMENT, threshold=1e12))
        by_year = aggregate_interest_by_year(records)
        assert sorted(by_year) == list(range(1, 31))
        assert by_year[1] == pytest.approx(sum(r.interest_paid for r in records[:12]))
        assert by_year[1] > by_year[30]

    def test_critical_point(self, single_loan):
        records = simulate_schedule(single_loan, make_profile(-1, SCENARIO_INSTALLMENT, threshold=1e12))
        month, reason = find_critical_point(records)
        assert reason == "monthly_interest_below_principal"
        assert records[month - 1].interest_paid < records[month - 1].principal_paid
        assert records[month - 2].interest_paid >= records[month - 2].principal_paid

    def test_critical_point_ignores_prepaid_principal(self, single_loan):
        records = simulate(single_loan, make_profile(8_000, SCENARIO_INSTALLMENT, threshold=50_000)).records
        first_prepayment = next(r.month for r in records if r.is_prepayment)
        month, reason = find_critical_point(records)

        assert reason == "monthly_interest_below_principal"
        assert month > first_prepayment
        row = records[month - 1]
        assert row.interest_paid < row.principal_paid - row.prepayment_amount
        assert all(r.interest_paid >= r.principal_paid - r.prepayment_amount for r in records[: month - 1])

        baseline = simulate_schedule(single_loan, make_profile(-1, SCENARIO_INSTALLMENT, threshold=1e12))
        baseline_month, _ = find_critical_point(baseline)
        assert month < baseline_month

    def test_critical_point_empty(self):
        assert find_critical_point([]) == (None, None)
