"""
泵站调度问题的线性松弛（Pyomo）

将泵站开度放宽为连续变量 f[h] ∈ [0, 1]，水位按线性水量平衡递推：

    level[h+1] = level[h] + (net[h] - f[h]·capacity)·dt / A

目标为 Σ price[h]·energy(1)·f[h]。水位转移落在区间网格上时，松弛问题的最优值
是DP调度电费的下界，可用来评估开度离散化带来的损失。
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Any

from pyomo.environ import (
    ConcreteModel,
    Constraint,
    NonNegativeReals,
    Objective,
    RangeSet,
    Var,
    minimize,
    value,
)

from .exceptions import InfeasibleScheduleError, SolverError
from .feasibility import FeasibilityResult, FeasibilityStatus, check_solver_results
from .models import price_values
from .optimizer import OptimizationProblem
from .utils import SolverManager


@dataclass(frozen=True)
class RelaxationResult:
    """线性松弛求解结果"""

    lower_bound: float  # 松弛问题最优电费（€）
    fractions: List[float]
    levels: List[float]  # 含初始水位，长度为 hours + 1
    feasibility: FeasibilityResult


def build_schedule_relaxation(problem: OptimizationProblem) -> ConcreteModel:
    """
    构建调度问题的线性松弛模型

    Args:
        problem: 调度问题

    Returns:
        Pyomo ConcreteModel，变量 model.fraction[h]、model.level[h]
    """
    hours = problem.hours
    prices = price_values(problem.prices)
    net = problem.net_inflow_series()
    full_energy = problem.energy_mwh(1.0)
    max_fraction = max(float(f) for f in problem.pump_fractions)
    scale = problem.step_seconds / problem.surface_area

    model = ConcreteModel(name="pump_schedule_relaxation")
    model.H = RangeSet(0, hours - 1)
    model.L = RangeSet(0, hours)

    model.fraction = Var(model.H, domain=NonNegativeReals, bounds=(0.0, max_fraction))
    model.level = Var(model.L, bounds=(problem.min_level, problem.max_level))

    model.level[0].fix(problem.initial_level)

    def balance_rule(m, h):
        return m.level[h + 1] == m.level[h] + (float(net[h]) - m.fraction[h] * problem.capacity) * scale

    model.balance = Constraint(model.H, rule=balance_rule)

    model.terminal = Constraint(
        expr=(problem.terminal_min, model.level[hours], problem.terminal_max)
    )

    model.obj = Objective(
        expr=sum(prices[h] * full_energy * model.fraction[h] for h in model.H),
        sense=minimize,
    )
    return model


def solve_schedule_relaxation(
    problem: OptimizationProblem,
    solver_name: Optional[str] = None,
    solver_options: Optional[Dict[str, Any]] = None,
    tee: bool = False,
    solver_timeout: Optional[float] = None,
) -> RelaxationResult:
    """
    求解调度问题的线性松弛

    Args:
        problem: 调度问题
        solver_name: 求解器名称（缺省为 RELAXATION_DEFAULTS.default_solver）
        solver_options: 求解器选项
        tee: 是否显示求解器输出
        solver_timeout: 求解时间上限（秒，缺省为 RELAXATION_DEFAULTS.solver_timeout）

    Returns:
        RelaxationResult

    Raises:
        SolverError: 求解器不可用或求解失败
        InfeasibleScheduleError: 松弛问题不可行（原问题必然不可行）
    """
    model = build_schedule_relaxation(problem)
    manager = SolverManager(solver_name, solver_options, solver_timeout=solver_timeout)
    results = manager.solve(model, tee=tee, raise_on_infeasible=False, load_solutions=False)

    feasibility = check_solver_results(results, model)
    if feasibility.status == FeasibilityStatus.INFEASIBLE:
        raise InfeasibleScheduleError(
            feasibility.message,
            constraint="relaxation",
            details=feasibility.details,
        )
    if not feasibility.is_feasible:
        raise SolverError(f"求解失败: {feasibility.message}\n详细信息: {feasibility.details}")

    model.solutions.load_from(results)
    return RelaxationResult(
        lower_bound=float(value(model.obj)),
        fractions=[float(value(model.fraction[h])) for h in model.H],
        levels=[float(value(model.level[h])) for h in model.L],
        feasibility=feasibility,
    )


__all__ = [
    'RelaxationResult',
    'build_schedule_relaxation',
    'solve_schedule_relaxation',
]
