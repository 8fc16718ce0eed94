"""
通用工具模块

提供边界输入序列生成、电价序列构建、求解器管理等通用功能。
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from pyomo.environ import SolverFactory

from .defaults import RELAXATION_DEFAULTS
from .exceptions import InvalidParameterError, SolverError
from .feasibility import check_solver_results
from .models import EnergyPricePoint


class TimeSeriesGenerator:
    """边界输入时间序列生成器（降雨 mm/h、入流 m³/s 等）"""

    @staticmethod
    def constant(value: float, num_periods: int) -> List[float]:
        """生成常数序列"""
        return [value] * num_periods

    @staticmethod
    def sinusoidal(
        base: float,
        amplitude: float,
        num_periods: int,
        frequency: float = 1.0,
        phase: float = 0.0,
        noise_std: float = 0.0,
        seed: Optional[int] = None,
    ) -> List[float]:
        """
        生成正弦曲线序列（例如日内电价或潮汐水位）

        Args:
            base: 基础值
            amplitude: 振幅
            num_periods: 周期数量
            frequency: 频率（周期数）
            phase: 相位
            noise_std: 噪声标准差
            seed: 随机种子

        Returns:
            正弦曲线值列表
        """
        rng = np.random.default_rng(seed)
        i = np.arange(num_periods)
        values = base + amplitude * np.sin(2 * np.pi * frequency * i / num_periods + phase)
        if noise_std > 0:
            values = values + rng.normal(0.0, noise_std, num_periods)
        return values.tolist()

    @staticmethod
    def step_change(
        initial_value: float,
        final_value: float,
        num_periods: int,
        change_start: int,
        change_duration: Optional[int] = None
    ) -> List[float]:
        """
        生成阶跃变化序列（例如一场持续 change_duration 小时的降雨）

        Args:
            initial_value: 初始值
            final_value: 变化后的值
            num_periods: 总周期数
            change_start: 变化开始时刻
            change_duration: 变化持续时间（None表示永久变化）

        Returns:
            阶跃变化值列表
        """
        values = [initial_value] * num_periods
        end = num_periods if change_duration is None else min(change_start + change_duration, num_periods)
        for i in range(change_start, end):
            values[i] = final_value
        return values

    @staticmethod
    def piecewise(values_list: Sequence[float], durations: Sequence[int]) -> List[float]:
        """生成分段常数序列"""
        if len(values_list) != len(durations):
            raise InvalidParameterError("values_list和durations长度必须相同")

        result = []
        for value, duration in zip(values_list, durations):
            result.extend([value] * duration)
        return result


def hourly_price_points(start_time: datetime, prices: Sequence[float]) -> List[EnergyPricePoint]:
    """
    由起始时刻和逐时电价（€/MWh）构建 EnergyPricePoint 序列

    Args:
        start_time: 第一个小时的开始时刻（UTC）
        prices: 电价列表

    Returns:
        EnergyPricePoint 列表
    """
    return [
        EnergyPricePoint(hour_start=start_time + timedelta(hours=i), price_eur_per_mwh=float(p))
        for i, p in enumerate(prices)
    ]


class SolverManager:
    """求解器管理器"""

    def __init__(
        self,
        solver_name: Optional[str] = None,
        solver_options: Optional[Dict[str, Any]] = None,
        check_feasibility: bool = True,
        solver_timeout: Optional[float] = None,
    ):
        """
        初始化求解器管理器

        Args:
            solver_name: 求解器名称（None使用默认）
            solver_options: 求解器选项
            check_feasibility: 是否检查可行性
            solver_timeout: 求解时间上限（秒，None使用 RELAXATION_DEFAULTS.solver_timeout）

        Raises:
            SolverError: 求解器不可用
        """
        self.solver_name = solver_name or RELAXATION_DEFAULTS.default_solver
        self.solver_options = solver_options or dict(RELAXATION_DEFAULTS.solver_options)
        self.check_feasibility = check_feasibility
        self.solver_timeout = (
            RELAXATION_DEFAULTS.solver_timeout if solver_timeout is None else solver_timeout
        )

        self.solver = SolverFactory(self.solver_name)
        if not self.solver.available(exception_flag=False):
            raise SolverError(f"求解器 {self.solver_name} 不可用")

    @staticmethod
    def is_available(solver_name: Optional[str] = None) -> bool:
        """检查求解器是否可用（不抛出异常）"""
        name = solver_name or RELAXATION_DEFAULTS.default_solver
        return bool(SolverFactory(name).available(exception_flag=False))

    def solve(
        self,
        model,
        tee: bool = False,
        raise_on_infeasible: bool = True,
        load_solutions: bool = True,
    ) -> Any:
        """
        求解模型

        Args:
            model: Pyomo模型
            tee: 是否显示求解器输出
            raise_on_infeasible: 不可行时是否抛出异常
            load_solutions: 是否自动载入解（不可行问题应传 False，由调用方检查后载入）

        Returns:
            求解结果

        Raises:
            SolverError: 求解失败或不可行
        """
        try:
            results = self.solver.solve(
                model,
                tee=tee,
                options=self.solver_options,
                load_solutions=load_solutions,
                timelimit=self.solver_timeout,
            )
        except Exception as e:
            raise SolverError(f"求解过程发生错误: {str(e)}") from e

        if self.check_feasibility and raise_on_infeasible:
            feasibility_result = check_solver_results(results, model)
            if not feasibility_result.is_feasible:
                raise SolverError(
                    f"求解失败: {feasibility_result.message}\n"
                    f"详细信息: {feasibility_result.details}"
                )

        return results


__all__ = [
    'TimeSeriesGenerator',
    'hourly_price_points',
    'SolverManager',
]
