"""提前还款决策：是否触发、金额多少、如何分摊到各笔贷款。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence
import math

from .calculator import PREPAYMENT_UNIT, LoanState, PrepaymentStrategy, recompute_installment


@dataclass
class PrepaymentDecision:
    """单月提前还款决策结果。

    字段说明：
        triggered: 是否满足触发条件（存款 >= 阈值 或 存款足以还清全部贷款）。
        amount: 计划提前还款金额；0 表示本月不还。
        full_payoff: 是否一次性结清全部贷款。
    """

    triggered: bool
    amount: float
    full_payoff: bool

    @property
    def fires(self) -> bool:
        return self.amount > 0


NO_PREPAYMENT = PrepaymentDecision(triggered=False, amount=0.0, full_payoff=False)


def evaluate_prepayment(savings: float, threshold: float, outstanding: float) -> PrepaymentDecision:
    # 规则（按顺序）：
    # 1) 存款足以覆盖全部剩余本金 => 全额结清，不取整
    # 2) 可用金额 >= 1 万 => 向下取整到 1 万的整数倍
    # 3) 否则本月不提前还款
    if outstanding <= 0:
        return NO_PREPAYMENT
    if savings < threshold and savings < outstanding:
        return NO_PREPAYMENT

    candidate = min(savings, outstanding)
    if candidate >= outstanding:
        return PrepaymentDecision(triggered=True, amount=outstanding, full_payoff=True)
    if candidate >= PREPAYMENT_UNIT:
        amount = math.floor(candidate / PREPAYMENT_UNIT) * PREPAYMENT_UNIT
        return PrepaymentDecision(triggered=True, amount=float(amount), full_payoff=False)
    return PrepaymentDecision(triggered=True, amount=0.0, full_payoff=False)


def allocate_prepayment(balances: Sequence[float], amount: float, reconcile: bool = True) -> List[float]:
    """按剩余本金占比把提前还款金额分摊到各笔贷款。

    每笔分摊额四舍五入到元，且不超过该笔贷款的剩余本金。
    reconcile=True 时，取整产生的差额计入剩余本金最大的那笔贷款，使各笔之和等于 amount；
    reconcile=False 时保留差额（各笔之和可能与 amount 相差几元）。
    """
    total = sum(b for b in balances if b > 0)
    shares = [0.0] * len(balances)
    if total <= 0 or amount <= 0:
        return shares

    for i, balance in enumerate(balances):
        if balance <= 0:
            continue
        shares[i] = min(float(round(amount * balance / total)), balance)

    if reconcile:
        largest = max(range(len(balances)), key=lambda i: balances[i])
        remainder = amount - sum(shares)
        shares[largest] = min(max(shares[largest] + remainder, 0.0), balances[largest])
    return shares


def apply_prepayment(
    states: Sequence[LoanState],
    decision: PrepaymentDecision,
    strategy: PrepaymentStrategy,
    reconcile: bool = True,
) -> List[float]:
    """执行提前还款，返回各笔贷款实际冲减的本金（顺序与 states 一致）。

    全额结清时所有余额直接清零；否则按占比分摊，再按策略决定是否重算月供。
    """
    if not decision.fires:
        return [0.0] * len(states)

    if decision.full_payoff:
        applied = [s.remaining_balance if s.active else 0.0 for s in states]
        for state in states:
            state.remaining_balance = 0.0
            state.monthly_installment = 0.0
        return applied

    applied = allocate_prepayment([s.remaining_balance for s in states], decision.amount, reconcile=reconcile)
    for state, share in zip(states, applied):
        if share <= 0:
            continue
        state.remaining_balance = max(state.remaining_balance - share, 0.0)
        if not state.active:
            state.monthly_installment = 0.0
        elif strategy is PrepaymentStrategy.REDUCE_PAYMENT:
            # 期限不变：按新余额 + 剩余期数重新摊还
            state.monthly_installment = recompute_installment(
                state.remaining_balance, state.periodic_rate, state.remaining_months
            )
    return applied
