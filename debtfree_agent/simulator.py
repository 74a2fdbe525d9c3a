from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Generator, List, Optional, Sequence, Tuple
import logging

from .calculator import (
    MAX_SIMULATION_MONTHS,
    SETTLE_TOLERANCE,
    FinanceProfile,
    LoanAccount,
    LoanMonthRow,
    LoanState,
    MonthlyRecord,
    PrepaymentStrategy,
    validate_inputs,
)
from .policy import NO_PREPAYMENT, apply_prepayment, evaluate_prepayment


logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """模拟结束原因。"""

    PAID_OFF = "paid_off"
    # 到达 1000 个月上限仍未还清
    MONTH_CAP_REACHED = "month_cap_reached"
    # 余额不再下降且存款不再增长，继续模拟也无法还清
    NON_CONVERGENT = "non_convergent"


@dataclass
class SimulationResult:
    """一次模拟的结果。

    字段说明：
        records: 每月记录（从第 1 个月开始）。
        outcome: 结束原因，只有 PAID_OFF 表示真正还清。
        months: 模拟月数（= len(records)）。
        total_interest / total_principal / total_prepayment: 全程合计。
        final_savings: 最后一个月结束时的存款。
        initial_monthly_installment: 第 1 个月的月供合计。
    """

    records: List[MonthlyRecord]
    outcome: Outcome
    months: int
    total_interest: float
    total_principal: float
    total_prepayment: float
    prepayment_count: int
    final_savings: float
    initial_monthly_installment: float

    @property
    def paid_off(self) -> bool:
        return self.outcome is Outcome.PAID_OFF


@dataclass
class StrategyComparison:
    """基准（不提前还款） vs 缩短年限 vs 减少月供。"""

    baseline: SimulationResult
    shorten_term: SimulationResult
    reduce_payment: SimulationResult
    savings_shorten: float
    savings_reduce: float
    months_saved_shorten: int
    months_saved_reduce: int


def _pay_installments(states: Sequence[LoanState], strategy: PrepaymentStrategy) -> Tuple[List[float], List[float], float]:
    # 正常月供：利息按本月还款前余额计算，本金 = min(月供 - 利息, 余额)
    principals = [0.0] * len(states)
    interests = [0.0] * len(states)
    scheduled = 0.0
    for i, state in enumerate(states):
        if not state.active:
            continue
        scheduled += state.monthly_installment
        interest = state.remaining_balance * state.periodic_rate
        principal = min(state.monthly_installment - interest, state.remaining_balance)
        # 浮点残余并入本月本金，避免多出一期
        if 0 < state.remaining_balance - principal < SETTLE_TOLERANCE:
            principal = state.remaining_balance
        state.remaining_balance -= principal
        if state.remaining_balance <= 0:
            state.remaining_balance = 0.0
            state.monthly_installment = 0.0
        if strategy is PrepaymentStrategy.REDUCE_PAYMENT:
            state.remaining_months -= 1
        principals[i] = principal
        interests[i] = interest
    return principals, interests, scheduled


def iter_schedule(
    loans: Sequence[LoanAccount],
    profile: FinanceProfile,
    *,
    max_months: int = MAX_SIMULATION_MONTHS,
    allow_prepayment: bool = True,
    reconcile_rounding: bool = True,
) -> Generator[MonthlyRecord, None, Outcome]:
    """逐月生成还款记录，生成器的返回值为结束原因（Outcome）。

    allow_prepayment=False 时完全不提前还款，用于生成基准方案。
    """
    validate_inputs(loans, profile)

    states = [LoanState.from_account(loan) for loan in loans]
    strategy = profile.prepayment_strategy
    savings = float(profile.initial_savings)

    month = 1
    while sum(s.remaining_balance for s in states) > 0:
        if month > max_months:
            return Outcome.MONTH_CAP_REACHED

        balance_before = sum(s.remaining_balance for s in states)
        principals, interests, scheduled = _pay_installments(states, strategy)

        monthly_balance = profile.monthly_income - profile.monthly_expense - scheduled
        savings += monthly_balance

        outstanding = sum(s.remaining_balance for s in states)
        decision = NO_PREPAYMENT
        if allow_prepayment:
            decision = evaluate_prepayment(savings, profile.prepayment_threshold, outstanding)
        prepaid = apply_prepayment(states, decision, strategy, reconcile=reconcile_rounding)
        prepayment_amount = sum(prepaid)
        if prepayment_amount > 0:
            savings -= prepayment_amount
            logger.debug(
                "month %d: prepaid %.2f (full_payoff=%s), savings left %.2f",
                month,
                prepayment_amount,
                decision.full_payoff,
                savings,
            )

        rows = [
            LoanMonthRow(
                index=i + 1,
                kind=state.account.kind,
                principal=principals[i] + prepaid[i],
                interest=interests[i],
                prepayment=prepaid[i],
                balance=state.remaining_balance,
                installment=state.monthly_installment,
            )
            for i, state in enumerate(states)
        ]
        principal_paid = sum(principals) + prepayment_amount
        interest_paid = sum(interests)
        remaining = sum(s.remaining_balance for s in states)

        yield MonthlyRecord(
            month=month,
            principal_paid=principal_paid,
            interest_paid=interest_paid,
            total_payment=principal_paid + interest_paid,
            remaining_loan_balance=remaining,
            monthly_balance=monthly_balance,
            total_savings=savings,
            is_prepayment=prepayment_amount > 0,
            prepayment_amount=prepayment_amount,
            current_monthly_installment=sum(s.monthly_installment for s in states),
            loans=rows,
        )

        # 余额没有下降、存款也不会增长：以后每个月都一样，直接判定无法还清
        if remaining > 0 and prepayment_amount == 0 and remaining >= balance_before and monthly_balance <= 0:
            return Outcome.NON_CONVERGENT
        month += 1

    return Outcome.PAID_OFF


def simulate(
    loans: Sequence[LoanAccount],
    profile: FinanceProfile,
    *,
    max_months: int = MAX_SIMULATION_MONTHS,
    allow_prepayment: bool = True,
    reconcile_rounding: bool = True,
) -> SimulationResult:
    # 主流程：跑完整个生成器，收集记录与结束原因，再汇总
    records: List[MonthlyRecord] = []
    schedule = iter_schedule(
        loans,
        profile,
        max_months=max_months,
        allow_prepayment=allow_prepayment,
        reconcile_rounding=reconcile_rounding,
    )
    while True:
        try:
            records.append(next(schedule))
        except StopIteration as stop:
            outcome = stop.value
            break

    if outcome is not Outcome.PAID_OFF:
        logger.warning(
            "simulation stopped after %d months without payoff (%s), remaining balance %.2f",
            len(records),
            outcome.value,
            records[-1].remaining_loan_balance if records else 0.0,
        )

    return SimulationResult(
        records=records,
        outcome=outcome,
        months=len(records),
        total_interest=sum(r.interest_paid for r in records),
        total_principal=sum(r.principal_paid for r in records),
        total_prepayment=sum(r.prepayment_amount for r in records),
        prepayment_count=sum(1 for r in records if r.is_prepayment),
        final_savings=records[-1].total_savings if records else float(profile.initial_savings),
        initial_monthly_installment=_initial_installment(loans),
    )


def _initial_installment(loans: Sequence[LoanAccount]) -> float:
    return sum(LoanState.from_account(loan).monthly_installment for loan in loans)


def simulate_schedule(loans: Sequence[LoanAccount], profile: FinanceProfile) -> List[MonthlyRecord]:
    """按月生成完整还款计划（列表形式）。"""
    return list(iter_schedule(loans, profile))


def compare_strategies(loans: Sequence[LoanAccount], profile: FinanceProfile) -> StrategyComparison:
    # 同一家庭：基准方案（不提前还款） + 两种提前还款策略
    baseline = simulate(loans, profile, allow_prepayment=False)
    shorten = simulate(loans, _with_strategy(profile, PrepaymentStrategy.SHORTEN_TERM))
    reduce = simulate(loans, _with_strategy(profile, PrepaymentStrategy.REDUCE_PAYMENT))
    return StrategyComparison(
        baseline=baseline,
        shorten_term=shorten,
        reduce_payment=reduce,
        savings_shorten=baseline.total_interest - shorten.total_interest,
        savings_reduce=baseline.total_interest - reduce.total_interest,
        months_saved_shorten=baseline.months - shorten.months,
        months_saved_reduce=baseline.months - reduce.months,
    )


def _with_strategy(profile: FinanceProfile, strategy: PrepaymentStrategy) -> FinanceProfile:
    return FinanceProfile(
        monthly_income=profile.monthly_income,
        monthly_expense=profile.monthly_expense,
        initial_savings=profile.initial_savings,
        prepayment_threshold=profile.prepayment_threshold,
        prepayment_strategy=strategy,
    )


def aggregate_interest_by_year(records: List[MonthlyRecord]) -> Dict[int, float]:
    # 按“模拟年度”汇总利息（第1年=1~12月，第2年=13~24月 ...）。
    totals: Dict[int, float] = {}
    for row in records:
        year = (row.month - 1) // 12 + 1
        totals[year] = totals.get(year, 0.0) + row.interest_paid
    return totals


def find_critical_point(records: List[MonthlyRecord]) -> Tuple[Optional[int], Optional[str]]:
    # 临界点（只看正常月供，提前还款的本金不计入）：
    # 1) 单月利息 < 单月正常本金（说明已进入“本金还款期”）
    # 2) 或者剩余总利息 / 剩余正常还款 < 10%（说明后续利息占比极低）
    if not records:
        return None, None

    suffix_interest = [0.0] * (len(records) + 1)
    suffix_payment = [0.0] * (len(records) + 1)
    for i in range(len(records) - 1, -1, -1):
        suffix_interest[i] = suffix_interest[i + 1] + records[i].interest_paid
        suffix_payment[i] = suffix_payment[i + 1] + records[i].total_payment - records[i].prepayment_amount

    for i, row in enumerate(records):
        regular_principal = row.principal_paid - row.prepayment_amount
        if row.interest_paid < regular_principal:
            return row.month, "monthly_interest_below_principal"
        remaining_ratio = suffix_interest[i] / suffix_payment[i] if suffix_payment[i] else 0.0
        if remaining_ratio < 0.10:
            return row.month, "remaining_interest_below_10_percent"
    return None, None
