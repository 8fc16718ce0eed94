"""
可行性检查模块

- 调度优化前的问题可行性预检查（初始水位、终端水位带是否可达）
- 线性松弛求解后的求解器结果检查
"""

from enum import Enum
from typing import Any, Dict, Optional

import numpy as np


class FeasibilityStatus(Enum):
    """可行性状态"""
    FEASIBLE = "feasible"  # 可行
    INFEASIBLE = "infeasible"  # 不可行
    UNKNOWN = "unknown"  # 未知


class FeasibilityResult:
    """可行性检查结果"""

    def __init__(
        self,
        status: FeasibilityStatus,
        message: str = "",
        details: Optional[Dict[str, Any]] = None
    ):
        self.status = status
        self.message = message
        self.details = details or {}

    @property
    def is_feasible(self) -> bool:
        """是否可行"""
        return self.status == FeasibilityStatus.FEASIBLE

    def __repr__(self):
        return f"FeasibilityResult(status={self.status.value}, message='{self.message}')"


def check_schedule_feasibility(problem) -> FeasibilityResult:
    """
    预先检查调度问题的基本可行性（不执行DP）

    以连续泵站开度 [0, 1] 估计终端水位可达区间（忽略逐时水位约束），
    区间与终端水位带不相交时问题必然不可行。

    Args:
        problem: OptimizationProblem

    Returns:
        FeasibilityResult，不可行时 details["constraint"] 指明无法满足的约束
    """
    lower, upper = problem.min_level, problem.max_level
    initial = problem.initial_level

    if not lower <= initial <= upper:
        return FeasibilityResult(
            FeasibilityStatus.INFEASIBLE,
            f"初始水位 {initial} 不在水位约束 [{lower}, {upper}] 之内",
            {"constraint": "initial_level", "initial_level": initial, "bounds": (lower, upper)},
        )

    band_low, band_high = problem.terminal_band
    if band_high < lower or band_low > upper:
        return FeasibilityResult(
            FeasibilityStatus.INFEASIBLE,
            f"终端水位带 [{band_low}, {band_high}] 与水位约束 [{lower}, {upper}] 不相交",
            {"constraint": "terminal_band", "terminal_band": (band_low, band_high)},
        )

    net = problem.net_inflow_series()
    scale = problem.step_seconds / problem.surface_area
    highest = initial + float(np.sum(net)) * scale
    lowest = initial + float(np.sum(net - problem.capacity)) * scale
    if highest < band_low or lowest > band_high:
        return FeasibilityResult(
            FeasibilityStatus.INFEASIBLE,
            f"终端水位可达区间 [{lowest:.3f}, {highest:.3f}] 与终端水位带 "
            f"[{band_low}, {band_high}] 不相交",
            {
                "constraint": "terminal_band",
                "reachable": (lowest, highest),
                "terminal_band": (band_low, band_high),
            },
        )

    return FeasibilityResult(FeasibilityStatus.FEASIBLE, "调度问题基本检查通过")


def check_solver_results(results, model) -> FeasibilityResult:
    """
    检查求解器结果的可行性

    Args:
        results: Pyomo求解器结果
        model: Pyomo模型

    Returns:
        FeasibilityResult: 可行性检查结果
    """
    from pyomo.opt import SolverStatus, TerminationCondition

    if not hasattr(results, 'solver'):
        return FeasibilityResult(
            FeasibilityStatus.UNKNOWN,
            "无法获取求解器状态"
        )

    termination = results.solver.termination_condition
    solver_status = results.solver.status
    details = {"termination": str(termination), "status": str(solver_status)}

    if termination == TerminationCondition.optimal:
        return FeasibilityResult(FeasibilityStatus.FEASIBLE, "求解器返回最优解", details)

    if termination in (
        TerminationCondition.infeasible,
        TerminationCondition.infeasibleOrUnbounded,
    ):
        return FeasibilityResult(
            FeasibilityStatus.INFEASIBLE,
            f"求解器判定问题不可行: {termination}",
            details,
        )

    if termination in (
        TerminationCondition.maxTimeLimit,
        TerminationCondition.maxIterations,
    ):
        if solver_status in (SolverStatus.ok, SolverStatus.warning):
            return FeasibilityResult(
                FeasibilityStatus.FEASIBLE,
                f"求解器在限制条件下终止但找到可行解: {termination}",
                details,
            )
        return FeasibilityResult(
            FeasibilityStatus.UNKNOWN,
            f"求解器在限制条件下终止，未找到可行解: {termination}",
            details,
        )

    return FeasibilityResult(
        FeasibilityStatus.UNKNOWN,
        f"未知的求解器终止条件: {termination}",
        details,
    )


__all__ = [
    'FeasibilityStatus',
    'FeasibilityResult',
    'check_schedule_feasibility',
    'check_solver_results',
]
