"""
泵站调度动态规划优化

单个 Peilgebied，按小时电价最小化泵站电费：
- 状态 (小时, 水位区间)，水位区间在 [min_level, max_level] 上等距离散；
- 动作为泵站开度（pump_fractions），转移通过 WaterBalanceModel 推算一小时后的水位；
- 转移代价 = 电价 × 该开度一小时的耗电量（MWh），越出水位约束的转移代价为 +∞；
- 代价相等时优先耗电更少的动作，其次优先编号更小的前驱区间，保证结果可复现。
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from .cancellation import CancellationToken, Cancelled, is_cancelled
from .defaults import OPTIMIZER_DEFAULTS
from .exceptions import InfeasibleScheduleError, InvalidParameterError
from .feasibility import check_schedule_feasibility
from .models import (
    EnergyPricePoint,
    Peilgebied,
    PumpSchedule,
    PumpScheduleEntry,
    ensure_finite,
    price_values,
)
from .waterbalance import WaterBalanceModel, mm_per_hour_to_m3s


def pump_power_kw(
    flow_m3s: float,
    head_m: float,
    efficiency: Optional[float] = None,
) -> float:
    """
    泵站功率 P = ρ·g·Q·H / η（kW），效率缺省取 OPTIMIZER_DEFAULTS.efficiency

    Raises:
        InvalidParameterError: 效率不在 (0, 1] 之间
    """
    if efficiency is None:
        efficiency = OPTIMIZER_DEFAULTS.efficiency
    if not 0 < efficiency <= 1:
        raise InvalidParameterError(f"泵站效率 {efficiency} 必须在 (0, 1] 之间")
    rho = OPTIMIZER_DEFAULTS.water_density
    g = OPTIMIZER_DEFAULTS.gravity
    return rho * g * flow_m3s * head_m / efficiency / 1000.0


def _optional_series(name: str, values: Optional[Sequence[float]], hours: int) -> np.ndarray:
    if values is None:
        return np.zeros(hours)
    if len(values) > hours:
        raise InvalidParameterError(
            f"{name} 长度 {len(values)} 超过电价序列长度 {hours}"
        )
    series = np.zeros(hours)
    for i, value in enumerate(values):
        series[i] = ensure_finite(name, value)
    return series


@dataclass
class OptimizationProblem:
    """
    单区泵站调度问题

    - surface_area: 水面面积（m²）
    - initial_level: 初始水位（m NAP）
    - min_level / max_level: 逐时硬约束
    - prices: 小时电价序列，决定优化时长
    - capacity: 泵站额定流量（m³/s）
    - terminal_min / terminal_max: 终端水位带，缺省等于硬约束
    - target_level: 目标水位，基准调度用，缺省等于初始水位
    - net_inflow_m3s / rain_mm_per_hour / evaporation_mm_per_hour: 小时边界输入，不足部分补0
    - bottom_level: 蓄量为零时的水位，缺省取足够低的参考面，使转移不被蓄量截断
    - lift_head / efficiency / n_buckets / pump_fractions / step_seconds:
      缺省在构造时从 OPTIMIZER_DEFAULTS 读取
    """

    surface_area: float
    initial_level: float
    min_level: float
    max_level: float
    prices: Sequence[EnergyPricePoint]
    capacity: float
    terminal_min: Optional[float] = None
    terminal_max: Optional[float] = None
    target_level: Optional[float] = None
    net_inflow_m3s: Optional[Sequence[float]] = None
    rain_mm_per_hour: Optional[Sequence[float]] = None
    evaporation_mm_per_hour: Optional[Sequence[float]] = None
    catchment_area: Optional[float] = None
    lift_head: Optional[float] = None
    efficiency: Optional[float] = None
    n_buckets: Optional[int] = None
    pump_fractions: Optional[Sequence[float]] = None
    bottom_level: Optional[float] = None
    step_seconds: Optional[float] = None

    def __post_init__(self):
        for name in ("lift_head", "efficiency", "n_buckets", "pump_fractions", "step_seconds"):
            if getattr(self, name) is None:
                setattr(self, name, getattr(OPTIMIZER_DEFAULTS, name))
        for name in ("surface_area", "initial_level", "min_level", "max_level",
                     "capacity", "lift_head", "step_seconds"):
            setattr(self, name, ensure_finite(name, getattr(self, name)))
        if self.surface_area <= 0:
            raise InvalidParameterError(f"面积 {self.surface_area} 必须大于0")
        if self.capacity < 0:
            raise InvalidParameterError(f"泵站容量 {self.capacity} 不能为负")
        if self.lift_head < 0:
            raise InvalidParameterError(f"扬程 {self.lift_head} 不能为负")
        if self.step_seconds <= 0:
            raise InvalidParameterError(f"时间步长 {self.step_seconds} 必须大于0")
        if not 0 < self.efficiency <= 1:
            raise InvalidParameterError(f"泵站效率 {self.efficiency} 必须在 (0, 1] 之间")
        if self.min_level >= self.max_level:
            raise InvalidParameterError(
                f"水位下限 {self.min_level} 必须小于上限 {self.max_level}"
            )
        if len(self.prices) == 0:
            raise InvalidParameterError("电价序列不能为空")
        if int(self.n_buckets) < 2:
            raise InvalidParameterError(f"水位区间数 {self.n_buckets} 至少为2")
        self.n_buckets = int(self.n_buckets)
        if len(self.pump_fractions) == 0:
            raise InvalidParameterError("泵站开度列表不能为空")
        for fraction in self.pump_fractions:
            if not 0 <= ensure_finite("pump_fraction", fraction) <= 1:
                raise InvalidParameterError(f"泵站开度 {fraction} 必须在 [0, 1] 之间")
        if self.catchment_area is not None and self.catchment_area <= 0:
            raise InvalidParameterError(f"降雨换算面积 {self.catchment_area} 必须大于0")
        if self.terminal_min is None:
            self.terminal_min = self.min_level
        if self.terminal_max is None:
            self.terminal_max = self.max_level
        if self.terminal_min > self.terminal_max:
            raise InvalidParameterError(
                f"终端水位带下限 {self.terminal_min} 大于上限 {self.terminal_max}"
            )
        if self.target_level is None:
            self.target_level = self.initial_level
        # 提前校验序列长度与数值
        self.net_inflow_series()

    @property
    def hours(self) -> int:
        return len(self.prices)

    @property
    def terminal_band(self) -> Tuple[float, float]:
        return self.terminal_min, self.terminal_max

    def net_inflow_series(self) -> np.ndarray:
        """逐时净入流（不含泵站，m³/s）= 外部入流 + 降雨 - 蒸发"""
        hours = self.hours
        catchment = self.catchment_area or self.surface_area
        inflow = _optional_series("net_inflow_m3s", self.net_inflow_m3s, hours)
        rain = _optional_series("rain_mm_per_hour", self.rain_mm_per_hour, hours)
        evaporation = _optional_series("evaporation_mm_per_hour", self.evaporation_mm_per_hour, hours)
        return inflow + mm_per_hour_to_m3s(rain, catchment) - mm_per_hour_to_m3s(evaporation, catchment)

    def energy_mwh(self, fraction: float) -> float:
        """开度 fraction 运行一个时间步的耗电量（MWh）"""
        power = pump_power_kw(fraction * self.capacity, self.lift_head, self.efficiency)
        return power * self.step_seconds / 3600.0 / 1000.0

    def as_area(self) -> Peilgebied:
        """构建用于水位推算的 Peilgebied"""
        bottom = self.bottom_level
        if bottom is None:
            net = self.net_inflow_series()
            worst_drop = (self.capacity + max(0.0, -float(net.min()))) * self.step_seconds / self.surface_area
            bottom = self.min_level - worst_drop - 1.0
        return Peilgebied(
            code="optimization",
            surface_area=self.surface_area,
            current_level=self.initial_level,
            bottom_level=bottom,
        )


ScheduleOutcome = Union[PumpSchedule, Cancelled]


class ScheduleOptimizer:
    """泵站调度动态规划优化器（无状态，DP表仅存在于单次 optimize 调用内）"""

    def __init__(self, balance_model: Optional[WaterBalanceModel] = None):
        self.balance_model = balance_model or WaterBalanceModel()

    def optimize(
        self,
        problem: OptimizationProblem,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ScheduleOutcome:
        """
        求解最小电费调度方案

        Args:
            problem: 调度问题
            cancel_token: 取消标志，在DP各行之间检查

        Returns:
            PumpSchedule，或被取消时返回 Cancelled

        Raises:
            InfeasibleScheduleError: 没有路径到达终端水位带
        """
        feasibility = check_schedule_feasibility(problem)
        if not feasibility.is_feasible:
            raise InfeasibleScheduleError(
                feasibility.message,
                constraint=feasibility.details.get("constraint", "unknown"),
                details=feasibility.details,
            )

        hours = problem.hours
        n = problem.n_buckets
        area = problem.as_area()
        grid = np.linspace(problem.min_level, problem.max_level, n)
        bucket_size = grid[1] - grid[0]
        tolerance = bucket_size * 1e-6
        prices = np.array(price_values(problem.prices), dtype=float)
        net = problem.net_inflow_series()

        fractions = [float(f) for f in problem.pump_fractions]
        energy = np.array([problem.energy_mwh(f) for f in fractions])
        # 同代价时按耗电量、开度顺序尝试动作
        order = sorted(range(len(fractions)), key=lambda a: (energy[a], fractions[a]))

        cost = np.full((hours + 1, n), np.inf)
        action = np.full((hours + 1, n), -1, dtype=int)
        predecessor = np.full((hours + 1, n), -1, dtype=int)
        # 每个状态保存到达它的连续水位，转移从该水位推算，避免取整丢失小入流
        level = np.full((hours + 1, n), np.nan)
        start = self._bucket(problem.initial_level, problem.min_level, bucket_size, n)
        cost[0, start] = 0.0
        level[0, start] = problem.initial_level

        for h in range(hours):
            if is_cancelled(cancel_token):
                return Cancelled("optimization", h)

            for b in np.flatnonzero(np.isfinite(cost[h])):
                for a in order:
                    outflow = fractions[a] * problem.capacity
                    next_level = self.balance_model.project_level(
                        area, level[h, b], net[h] - outflow, problem.step_seconds
                    )
                    if next_level < problem.min_level - tolerance or next_level > problem.max_level + tolerance:
                        continue
                    target = self._bucket(next_level, problem.min_level, bucket_size, n)
                    candidate = cost[h, b] + prices[h] * energy[a]
                    if self._better(candidate, a, b, cost[h + 1, target],
                                    action[h + 1, target], predecessor[h + 1, target], energy):
                        cost[h + 1, target] = candidate
                        action[h + 1, target] = a
                        predecessor[h + 1, target] = b
                        level[h + 1, target] = next_level

            if not np.isfinite(cost[h + 1]).any():
                raise InfeasibleScheduleError(
                    f"第 {h} 小时后没有满足水位约束 [{problem.min_level}, {problem.max_level}] 的状态",
                    constraint="level_bounds",
                    details={"hour": h, "bounds": (problem.min_level, problem.max_level)},
                )

        band_low, band_high = problem.terminal_band
        reached = np.isfinite(cost[hours])
        in_band = np.zeros(n, dtype=bool)
        in_band[reached] = (
            (level[hours, reached] >= band_low - tolerance)
            & (level[hours, reached] <= band_high + tolerance)
        )
        terminal = np.where(in_band, cost[hours], np.inf)
        if not np.isfinite(terminal).any():
            raise InfeasibleScheduleError(
                f"没有调度方案能使终端水位到达 [{band_low}, {band_high}]",
                constraint="terminal_band",
                details={"terminal_band": (band_low, band_high)},
            )

        best_cost = terminal.min()
        slack = OPTIMIZER_DEFAULTS.cost_tolerance * max(1.0, abs(best_cost))
        best = int(np.flatnonzero(terminal <= best_cost + slack)[0])

        buckets = [best]
        actions: List[int] = []
        for h in range(hours, 0, -1):
            actions.append(int(action[h, buckets[-1]]))
            buckets.append(int(predecessor[h, buckets[-1]]))
        actions.reverse()
        buckets.reverse()

        # 回溯路径上的连续水位即按所选开度逐时推算的水位
        entries = tuple(
            PumpScheduleEntry(
                hour_start=problem.prices[h].hour_start,
                pump_fraction=fractions[actions[h]],
                expected_cost=float(prices[h] * energy[actions[h]]),
                expected_level=float(level[h + 1, buckets[h + 1]]),
            )
            for h in range(hours)
        )
        return PumpSchedule(entries=entries, capacity=problem.capacity)

    @staticmethod
    def _bucket(level: float, lowest: float, size: float, n: int) -> int:
        return int(min(max(round((level - lowest) / size), 0), n - 1))

    @staticmethod
    def _better(candidate, a, b, current, current_action, current_pred, energy) -> bool:
        if math.isinf(current):
            return True
        slack = OPTIMIZER_DEFAULTS.cost_tolerance * max(1.0, abs(current))
        if candidate < current - slack:
            return True
        if candidate > current + slack:
            return False
        if energy[a] != energy[current_action]:
            return energy[a] < energy[current_action]
        return b < current_pred


def naive_schedule(problem: OptimizationProblem, threshold: float = 0.001) -> PumpSchedule:
    """
    基准调度：水位高于目标水位（或本小时不抽水将高于目标水位）时满负荷运行

    不考虑电价，也不受水位区间离散化影响。
    """
    model = WaterBalanceModel()
    area = problem.as_area()
    net = problem.net_inflow_series()
    level = problem.initial_level
    target = problem.target_level

    entries = []
    for h, price in enumerate(problem.prices):
        without_pump = model.project_level(area, level, net[h], problem.step_seconds)
        fraction = 1.0 if level > target + threshold or without_pump > target + threshold else 0.0
        level = model.project_level(
            area, level, net[h] - fraction * problem.capacity, problem.step_seconds
        )
        entries.append(
            PumpScheduleEntry(
                hour_start=price.hour_start,
                pump_fraction=fraction,
                expected_cost=price.price_eur_per_mwh * problem.energy_mwh(fraction),
                expected_level=level,
            )
        )
    return PumpSchedule(entries=tuple(entries), capacity=problem.capacity)


@dataclass(frozen=True)
class ScheduleReplay:
    """
    调度回放结果

    - levels: 各小时末水位（m NAP）
    - cost: Σ 电价 × 耗电量（€）
    - max_deviation_cm: 各子步起始水位（含初始水位）相对目标水位的最大偏差（cm）
    - lowest_level / highest_level: 回放过程中的最低/最高水位
    """

    fractions: Tuple[float, ...]
    levels: Tuple[float, ...]
    cost: float
    max_deviation_cm: float
    lowest_level: float
    highest_level: float

    def within_bounds(self, low: float, high: float, tolerance: float = 1e-9) -> bool:
        return self.lowest_level >= low - tolerance and self.highest_level <= high + tolerance


def replay_schedule(
    problem: OptimizationProblem,
    schedule: Union[PumpSchedule, Sequence[float]],
    substeps: int = 60,
    balance_model: Optional[WaterBalanceModel] = None,
) -> ScheduleReplay:
    """
    按逐时开度用 WaterBalanceModel 重新推算水位，每小时分 substeps 个子步

    Args:
        problem: 调度问题
        schedule: PumpSchedule 或逐时开度序列，长度必须等于电价序列
        substeps: 每小时子步数（缺省逐分钟）
        balance_model: 水量平衡模型

    Returns:
        ScheduleReplay

    Raises:
        InvalidParameterError: 开度序列长度不符或子步数小于1
    """
    if isinstance(schedule, PumpSchedule):
        fractions = schedule.fractions
    else:
        fractions = tuple(ensure_finite("pump_fraction", f) for f in schedule)
    if len(fractions) != problem.hours:
        raise InvalidParameterError(
            f"开度序列长度 {len(fractions)} 与电价序列长度 {problem.hours} 不一致"
        )
    if int(substeps) < 1:
        raise InvalidParameterError(f"子步数 {substeps} 至少为1")
    substeps = int(substeps)

    model = balance_model or WaterBalanceModel()
    area = problem.as_area()
    net = problem.net_inflow_series()
    prices = price_values(problem.prices)
    dt = problem.step_seconds / substeps

    level = problem.initial_level
    lowest = highest = level
    deviation = 0.0
    cost = 0.0
    hourly = []
    for h, fraction in enumerate(fractions):
        cost += prices[h] * problem.energy_mwh(fraction)
        for _ in range(substeps):
            deviation = max(deviation, abs(level - problem.target_level))
            level = model.project_level(area, level, net[h] - fraction * problem.capacity, dt)
            lowest = min(lowest, level)
            highest = max(highest, level)
        hourly.append(level)

    return ScheduleReplay(
        fractions=tuple(fractions),
        levels=tuple(hourly),
        cost=cost,
        max_deviation_cm=deviation * 100.0,
        lowest_level=lowest,
        highest_level=highest,
    )


@dataclass(frozen=True)
class ScheduleComparison:
    """优化调度与基准调度的比较（电费与水位偏差均由同一回放得出）"""

    optimized: PumpSchedule
    naive: PumpSchedule
    optimized_cost: float
    naive_cost: float
    savings_eur: float
    savings_percent: float
    optimized_max_deviation_cm: float
    naive_max_deviation_cm: float
    optimized_replay: ScheduleReplay
    naive_replay: ScheduleReplay


def compare_with_naive(
    problem: OptimizationProblem,
    optimizer: Optional[ScheduleOptimizer] = None,
    substeps: int = 60,
) -> ScheduleComparison:
    """
    运行优化，并将优化调度与基准调度通过 WaterBalanceModel 回放后比较

    Raises:
        InfeasibleScheduleError: 优化问题不可行
    """
    optimizer = optimizer or ScheduleOptimizer()
    optimized = optimizer.optimize(problem)
    naive = naive_schedule(problem)

    optimized_replay = replay_schedule(problem, optimized, substeps, optimizer.balance_model)
    naive_replay = replay_schedule(problem, naive, substeps, optimizer.balance_model)
    savings = naive_replay.cost - optimized_replay.cost
    percent = savings / abs(naive_replay.cost) * 100.0 if naive_replay.cost != 0 else 0.0
    return ScheduleComparison(
        optimized=optimized,
        naive=naive,
        optimized_cost=optimized_replay.cost,
        naive_cost=naive_replay.cost,
        savings_eur=savings,
        savings_percent=percent,
        optimized_max_deviation_cm=optimized_replay.max_deviation_cm,
        naive_max_deviation_cm=naive_replay.max_deviation_cm,
        optimized_replay=optimized_replay,
        naive_replay=naive_replay,
    )


__all__ = [
    'pump_power_kw',
    'OptimizationProblem',
    'ScheduleOutcome',
    'ScheduleOptimizer',
    'naive_schedule',
    'ScheduleReplay',
    'replay_schedule',
    'ScheduleComparison',
    'compare_with_naive',
]
