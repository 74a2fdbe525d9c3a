from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence
import math


# 模拟上限：超过 1000 个月仍未还清则强制停止
MAX_SIMULATION_MONTHS = 1000
# 部分提前还款的最小单位（元），金额向下取整到该单位的整数倍
PREPAYMENT_UNIT = 10_000
# 正常还款后残余本金低于该值（半分钱）视为已还清
SETTLE_TOLERANCE = 0.005


class LoanKind(str, Enum):
    """贷款类型：公积金贷款 / 商业贷款（仅用于展示，不影响计算）。"""

    HOUSING_FUND = "housing_fund"
    COMMERCIAL = "commercial"


class PrepaymentStrategy(str, Enum):
    """提前还款策略：缩短年限（月供不变） / 减少月供（期限不变）。"""

    SHORTEN_TERM = "shorten_term"
    REDUCE_PAYMENT = "reduce_payment"


class LoanValidationError(ValueError):
    """输入参数不合法（在模拟开始前抛出）。"""


@dataclass(frozen=True)
class LoanAccount:
    """单笔贷款输入。

    字段说明：
        kind: 贷款类型（公积金 / 商贷）。
        principal: 贷款本金（单位：元）。
        annual_rate: 年利率（百分比），例如 4.5 表示 4.5%。
        term_years: 贷款年限（年）。
    """

    kind: LoanKind
    principal: float
    annual_rate: float
    term_years: int

    @property
    def term_months(self) -> int:
        return self.term_years * 12


@dataclass(frozen=True)
class FinanceProfile:
    """家庭收支与提前还款策略。

    字段说明：
        monthly_income / monthly_expense: 月收入 / 月支出（元）。
        initial_savings: 初始存款（元）。
        prepayment_threshold: 存款达到该金额时考虑提前还款。
        prepayment_strategy: 提前还款后的处理方式。
    """

    monthly_income: float
    monthly_expense: float
    initial_savings: float
    prepayment_threshold: float
    prepayment_strategy: PrepaymentStrategy = PrepaymentStrategy.SHORTEN_TERM


@dataclass
class LoanState:
    """单次模拟内部使用的贷款运行状态，每次模拟重新创建。"""

    account: LoanAccount
    periodic_rate: float
    remaining_balance: float
    monthly_installment: float
    remaining_months: int

    @classmethod
    def from_account(cls, account: LoanAccount) -> "LoanState":
        return cls(
            account=account,
            periodic_rate=monthly_rate(account.annual_rate),
            remaining_balance=float(account.principal),
            monthly_installment=compute_fixed_installment(
                account.principal, account.annual_rate, account.term_months
            ),
            remaining_months=account.term_months,
        )

    @property
    def active(self) -> bool:
        return self.remaining_balance > 0


@dataclass
class LoanMonthRow:
    """单笔贷款在某个月的明细。

    principal 包含本月分摊到该笔贷款的提前还款本金；prepayment 单独列出该部分。
    """

    index: int
    kind: LoanKind
    principal: float
    interest: float
    prepayment: float
    balance: float
    installment: float


@dataclass
class MonthlyRecord:
    """单月（全部贷款汇总）还款记录。

    字段说明：
        month: 月序号（从 1 开始）。
        principal_paid / interest_paid / total_payment: 本月所有贷款合计的本金 / 利息 / 还款总额，本金含提前还款。
        remaining_loan_balance: 本月结束后全部贷款剩余本金。
        monthly_balance: 月结余 = 收入 - 支出 - 本月月供（提前还款前）。
        total_savings: 本月结束后的存款。
        is_prepayment / prepayment_amount: 本月是否提前还款及金额。
        current_monthly_installment: 本月结束后所有贷款的月供合计（减少月供策略下会下降）。
        loans: 各笔贷款的明细，顺序与输入一致。
    """

    month: int
    principal_paid: float
    interest_paid: float
    total_payment: float
    remaining_loan_balance: float
    monthly_balance: float
    total_savings: float
    is_prepayment: bool
    prepayment_amount: float
    current_monthly_installment: float
    loans: List[LoanMonthRow] = field(default_factory=list)


def monthly_rate(annual_rate: float) -> float:
    # 年利率百分比 -> 月利率小数。例如 3.6% => 0.003
    return annual_rate / 12.0 / 100.0


def recompute_installment(remaining_balance: float, periodic_rate: float, remaining_months: int) -> float:
    if remaining_balance <= 0 or remaining_months <= 0:
        return 0.0
    if periodic_rate == 0:
        return remaining_balance / remaining_months
    factor = math.pow(1 + periodic_rate, remaining_months)
    return remaining_balance * periodic_rate * factor / (factor - 1)


def compute_fixed_installment(principal: float, annual_rate: float, term_months: int) -> float:
    # 等额本息月供；利率为 0 时退化为 本金 / 期数
    if term_months < 1:
        raise ValueError("term_months must be at least 1")
    if principal < 0:
        raise ValueError("principal cannot be negative")
    return recompute_installment(principal, monthly_rate(annual_rate), term_months)


def validate_inputs(loans: Sequence[LoanAccount], profile: FinanceProfile) -> None:
    # 模拟开始前统一校验，任何一项不合法都直接抛出
    if not loans:
        raise LoanValidationError("at least one loan is required")
    for idx, loan in enumerate(loans, start=1):
        if not isinstance(loan.kind, LoanKind):
            raise LoanValidationError(f"loan #{idx}: unsupported loan kind: {loan.kind}")
        # NaN 与任何数比较都为 False，必须先排除非有限值
        if not math.isfinite(loan.principal) or loan.principal <= 0:
            raise LoanValidationError(f"loan #{idx}: principal must be a finite number greater than 0")
        if isinstance(loan.term_years, bool) or not isinstance(loan.term_years, int) or loan.term_years <= 0:
            raise LoanValidationError(f"loan #{idx}: term_years must be an integer greater than 0")
        if not math.isfinite(loan.annual_rate) or loan.annual_rate < 0:
            raise LoanValidationError(f"loan #{idx}: annual_rate must be a finite, non-negative number")
    for name in ("monthly_income", "monthly_expense", "initial_savings", "prepayment_threshold"):
        if not math.isfinite(getattr(profile, name)):
            raise LoanValidationError(f"{name} must be a finite number")
    if profile.prepayment_threshold < 0:
        raise LoanValidationError("prepayment_threshold cannot be negative")
    if not isinstance(profile.prepayment_strategy, PrepaymentStrategy):
        raise LoanValidationError(f"unsupported prepayment strategy: {profile.prepayment_strategy}")


def normalize_strategy(strategy: str) -> PrepaymentStrategy:
    # 统一并校验策略输入，支持一些别名。
    if not strategy:
        raise ValueError("prepayment strategy is required")
    normalized = strategy.strip().lower()
    if normalized in ("shorten_term", "shorten", "term"):
        return PrepaymentStrategy.SHORTEN_TERM
    if normalized in ("reduce_payment", "reduce", "payment"):
        return PrepaymentStrategy.REDUCE_PAYMENT
    raise ValueError(f"unsupported prepayment strategy: {strategy}")
