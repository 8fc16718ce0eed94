"""
测试调度问题的线性松弛（Pyomo）
"""
import sys
from datetime import datetime, timezone
from pathlib import Path
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from pyomo.environ import Constraint, Var

from peilbeheer.defaults import RELAXATION_DEFAULTS, update_defaults
from peilbeheer.exceptions import InfeasibleScheduleError, SolverError
from peilbeheer.optimizer import OptimizationProblem, ScheduleOptimizer
from peilbeheer.relaxation import build_schedule_relaxation, solve_schedule_relaxation
from peilbeheer.utils import SolverManager, hourly_price_points

START = datetime(2024, 6, 1, tzinfo=timezone.utc)
FULL_ENERGY = 1000.0 * 9.81 * 2.0 / 0.7 / 1e6

solver_available = pytest.mark.skipif(
    not SolverManager.is_available(), reason="默认求解器不可用"
)


def _problem(**kwargs):
    params = dict(
        surface_area=3600.0,
        initial_level=3.0,
        min_level=0.0,
        max_level=4.0,
        prices=hourly_price_points(START, [10.0, 100.0, 10.0, 100.0]),
        capacity=1.0,
        terminal_min=0.9,
        terminal_max=1.1,
        n_buckets=9,
        pump_fractions=(0.0, 0.5, 1.0),
    )
    params.update(kwargs)
    return OptimizationProblem(**params)


class TestModelStructure:
    """测试模型结构"""

    def test_build(self):
        """测试模型构建"""
        model = build_schedule_relaxation(_problem())

        assert len(list(model.H)) == 4
        assert len(list(model.L)) == 5
        assert model.level[0].fixed
        assert model.level[0].value == 3.0
        assert len(model.balance) == 4
        assert isinstance(model.fraction, Var)
        assert isinstance(model.terminal, Constraint)

    def test_fraction_bounds(self):
        """开度上限取最大离散开度"""
        model = build_schedule_relaxation(_problem(pump_fractions=(0.0, 0.5)))
        assert model.fraction[0].ub == 0.5
        assert model.level[1].lb == 0.0
        assert model.level[1].ub == 4.0


@solver_available
class TestSolve:
    """测试求解（需要求解器）"""

    def test_lower_bound(self):
        """松弛最优值不高于DP调度电费"""
        problem = _problem()
        relaxed = solve_schedule_relaxation(problem)
        schedule = ScheduleOptimizer().optimize(problem)

        # 连续开度只需降到终端水位带上限 1.1 m
        assert relaxed.lower_bound == pytest.approx(19.0 * FULL_ENERGY, rel=1e-6)
        assert relaxed.lower_bound <= schedule.total_cost + 1e-9
        assert relaxed.fractions[1] == pytest.approx(0.0, abs=1e-7)
        assert relaxed.fractions[3] == pytest.approx(0.0, abs=1e-7)
        assert relaxed.levels[0] == 3.0
        assert relaxed.feasibility.is_feasible

    def test_infeasible(self):
        """终端水位带不可达"""
        with pytest.raises(InfeasibleScheduleError) as excinfo:
            solve_schedule_relaxation(_problem(capacity=0.1))
        assert excinfo.value.constraint == "relaxation"


def test_unknown_solver():
    """不存在的求解器"""
    with pytest.raises(SolverError, match="不可用"):
        solve_schedule_relaxation(_problem(), solver_name="no_such_solver_xyz")


class _RecordingSolver:
    """记录 solve 调用参数的求解器替身"""

    def __init__(self):
        self.calls = []

    def available(self, exception_flag=False):
        return True

    def solve(self, model, **kwargs):
        self.calls.append(kwargs)
        return "results"


def test_solver_timeout(monkeypatch):
    """求解时间上限传给求解器，缺省值在构造时读取"""
    solver = _RecordingSolver()
    monkeypatch.setattr("peilbeheer.utils.SolverFactory", lambda name: solver)

    original = RELAXATION_DEFAULTS.solver_timeout
    try:
        update_defaults("relaxation", solver_timeout=42)
        assert SolverManager().solve(None, raise_on_infeasible=False) == "results"
    finally:
        update_defaults("relaxation", solver_timeout=original)
    SolverManager(solver_timeout=5).solve(None, raise_on_infeasible=False)

    assert [call["timelimit"] for call in solver.calls] == [42, 5]
    assert solver.calls[0]["load_solutions"] is True


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
