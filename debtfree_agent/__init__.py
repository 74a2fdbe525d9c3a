"""Debt-Free Agent（家庭多笔贷款 + 存款提前还款模拟）Python 包。

常用导入：
    from debtfree_agent import LoanAccount, FinanceProfile, simulate

调试运行：
    python -m debtfree_agent

该调试入口会跑一组示例（100 万 / 4.5% / 30 年，月结余约 8000），
并打印三种方案的对比结果。
"""

from .calculator import (
    FinanceProfile,
    LoanAccount,
    LoanKind,
    LoanValidationError,
    MonthlyRecord,
    PrepaymentStrategy,
    compute_fixed_installment,
    recompute_installment,
)
from .simulator import Outcome, SimulationResult, StrategyComparison, compare_strategies, simulate, simulate_schedule

__all__ = [
    "FinanceProfile",
    "LoanAccount",
    "LoanKind",
    "LoanValidationError",
    "MonthlyRecord",
    "Outcome",
    "PrepaymentStrategy",
    "SimulationResult",
    "StrategyComparison",
    "compare_strategies",
    "compute_fixed_installment",
    "recompute_installment",
    "simulate",
    "simulate_schedule",
]
