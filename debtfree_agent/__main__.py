import logging

from debtfree_agent.calculator import FinanceProfile, LoanAccount, LoanKind, PrepaymentStrategy, compute_fixed_installment
from debtfree_agent.simulator import compare_strategies


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    loans = [LoanAccount(kind=LoanKind.COMMERCIAL, principal=1_000_000, annual_rate=4.5, term_years=30)]
    installment = compute_fixed_installment(1_000_000, 4.5, 360)
    profile = FinanceProfile(
        monthly_income=20_000,
        monthly_expense=20_000 - 8_000 - installment,
        initial_savings=0,
        prepayment_threshold=50_000,
        prepayment_strategy=PrepaymentStrategy.SHORTEN_TERM,
    )
    comparison = compare_strategies(loans, profile)

    for label, result in (
        ("baseline", comparison.baseline),
        ("shorten_term", comparison.shorten_term),
        ("reduce_payment", comparison.reduce_payment),
    ):
        print(f"{label:<15} {result.outcome.value:<18} months={result.months:<4} interest={result.total_interest:,.2f}")
    print(f"savings: shorten={comparison.savings_shorten:,.2f} reduce={comparison.savings_reduce:,.2f}")


if __name__ == "__main__":
    main()
