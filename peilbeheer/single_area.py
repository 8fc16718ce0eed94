"""
单个 Peilgebied 的降雨事件仿真

- simulate_single_area: 恒定强度降雨 + 雨后排水期的时间序列，可选PID智能控制
- find_minimum_capacity: 逐步增加泵站流量，寻找使 drooglegging 不超限的最小流量
"""

import math
from dataclasses import dataclass, replace
from typing import List, Optional

from .defaults import SIMULATION_DEFAULTS
from .drooglegging import calculate_drooglegging, find_max_level
from .exceptions import InvalidParameterError
from .models import Peilgebied, ensure_finite
from .pid import PidController, PidParams
from .waterbalance import WaterBalanceModel, mm_per_hour_to_m3s


@dataclass
class SingleAreaParams:
    """单区降雨事件参数（时长单位为分钟，与现场运维习惯一致）"""

    start_level: float
    target_level: float
    ground_level: float
    surface_area: float
    rain_intensity_mm_per_hour: float
    rain_duration_minutes: float
    after_rain_minutes: float = 0.0
    pump_capacity_m3s: float = 0.0
    margin_cm: Optional[float] = None  # 缺省取 SIMULATION_DEFAULTS.default_margin（换算为 cm）
    evaporation_mm_per_hour: float = 0.0
    infiltration_mm_per_hour: float = 0.0
    dt_seconds: Optional[float] = None  # 缺省取 SIMULATION_DEFAULTS.dt_seconds
    smart_control: bool = False
    pid_params: Optional[PidParams] = None
    bottom_level: Optional[float] = None  # 缺省为 min(起始水位, 目标水位) - 1 m

    def __post_init__(self):
        if self.margin_cm is None:
            self.margin_cm = SIMULATION_DEFAULTS.default_margin * 100.0
        if self.dt_seconds is None:
            self.dt_seconds = SIMULATION_DEFAULTS.dt_seconds
        for name in ("start_level", "target_level", "ground_level", "surface_area",
                     "rain_intensity_mm_per_hour", "rain_duration_minutes",
                     "after_rain_minutes", "pump_capacity_m3s", "margin_cm",
                     "evaporation_mm_per_hour", "infiltration_mm_per_hour", "dt_seconds"):
            ensure_finite(name, getattr(self, name))
        if self.surface_area <= 0:
            raise InvalidParameterError(f"面积 {self.surface_area} 必须大于0")
        if self.dt_seconds <= 0:
            raise InvalidParameterError(f"时间步长 {self.dt_seconds} 必须大于0")
        for name in ("rain_intensity_mm_per_hour", "rain_duration_minutes", "after_rain_minutes",
                     "pump_capacity_m3s", "evaporation_mm_per_hour", "infiltration_mm_per_hour"):
            if getattr(self, name) < 0:
                raise InvalidParameterError(f"{name} {getattr(self, name)} 不能为负")


@dataclass(frozen=True)
class SingleAreaStep:
    """单区仿真时间步（水位为步初值）"""

    time_minutes: float
    level: float
    inflow_m3s: float
    outflow_m3s: float
    loss_m3s: float
    is_raining: bool
    pump_on: bool


@dataclass(frozen=True)
class MinimumCapacityResult:
    """最小泵站流量搜索结果"""

    capacity: Optional[float]
    max_exceedance_cm: float
    success: bool
    message: Optional[str]
    steps: List[SingleAreaStep]


def simulate_single_area(params: SingleAreaParams) -> List[SingleAreaStep]:
    """
    单区降雨事件仿真

    smart_control=True 时泵站流量 = 容量 × PID输出（排水方向），
    否则泵站以额定流量持续运行。控制量按步初水位计算，在同一步生效。
    """
    bottom = params.bottom_level
    if bottom is None:
        bottom = min(params.start_level, params.target_level) - 1.0
    area = Peilgebied(
        code="single_area",
        surface_area=params.surface_area,
        target_level_summer=params.target_level,
        current_level=params.start_level,
        bottom_level=bottom,
        ground_level=params.ground_level,
    )
    model = WaterBalanceModel()
    pid = None
    if params.smart_control and params.pump_capacity_m3s > 0:
        pid = PidController(replace(params.pid_params or PidParams(), direct_acting=True))

    dt = params.dt_seconds
    rain_seconds = params.rain_duration_minutes * 60.0
    total_seconds = rain_seconds + params.after_rain_minutes * 60.0
    n_steps = int(math.floor(total_seconds / dt + 1e-9)) + 1
    loss = mm_per_hour_to_m3s(
        params.evaporation_mm_per_hour + params.infiltration_mm_per_hour, params.surface_area
    )

    level = params.start_level
    volume = area.current_storage_volume
    steps = []
    for k in range(n_steps):
        t = k * dt
        raining = t < rain_seconds
        inflow = mm_per_hour_to_m3s(params.rain_intensity_mm_per_hour, params.surface_area) if raining else 0.0

        outflow = params.pump_capacity_m3s
        if pid is not None:
            outflow = params.pump_capacity_m3s * pid.step(params.target_level, level, dt)

        steps.append(
            SingleAreaStep(
                time_minutes=t / 60.0,
                level=level,
                inflow_m3s=inflow,
                outflow_m3s=outflow,
                loss_m3s=loss,
                is_raining=raining,
                pump_on=outflow > SIMULATION_DEFAULTS.pump_active_threshold,
            )
        )

        result = model.step(area, 0.0, outflow, inflow, loss, dt, current_volume=volume)
        level, volume = result.level, result.volume

    return steps


def max_level(steps: List[SingleAreaStep]):
    """返回 (最高水位, 分钟)，空序列返回 None"""
    return find_max_level([s.level for s in steps], [s.time_minutes for s in steps])


def _max_exceedance(params: SingleAreaParams, steps: List[SingleAreaStep]) -> float:
    worst = 0.0
    for step in steps:
        result = calculate_drooglegging(
            params.ground_level, step.level, params.target_level, params.margin_cm
        )
        if result.exceedance > 0:
            worst = max(worst, result.exceedance)
    return worst


def find_minimum_capacity(
    params: SingleAreaParams,
    step_m3s: float = 0.1,
    max_capacity_m3s: float = 100.0,
) -> MinimumCapacityResult:
    """
    寻找使整个事件中 drooglegging 不超限的最小泵站流量

    从降雨入流的 80% 起按 step_m3s 递增，泵站以额定流量运行（不使用PID）。

    Returns:
        MinimumCapacityResult；max_capacity_m3s 内无解时 success=False，
        max_exceedance_cm 为最后一次尝试的最大超限量
    """
    if step_m3s <= 0:
        raise InvalidParameterError(f"搜索步长 {step_m3s} 必须大于0")

    estimate = mm_per_hour_to_m3s(params.rain_intensity_mm_per_hour, params.surface_area)
    start = max(estimate * 0.8, 0.0)

    last_exceedance = 0.0
    i = 0
    while start + i * step_m3s <= max_capacity_m3s:
        capacity = start + i * step_m3s
        trial = replace(params, pump_capacity_m3s=capacity, smart_control=False)
        steps = simulate_single_area(trial)
        exceedance = _max_exceedance(params, steps)
        if exceedance == 0.0:
            return MinimumCapacityResult(
                capacity=capacity,
                max_exceedance_cm=0.0,
                success=True,
                message=None,
                steps=steps,
            )
        last_exceedance = exceedance
        i += 1

    steps = simulate_single_area(
        replace(params, pump_capacity_m3s=max_capacity_m3s, smart_control=False)
    )
    return MinimumCapacityResult(
        capacity=None,
        max_exceedance_cm=last_exceedance * 100.0,
        success=False,
        message=f"在 {max_capacity_m3s} m³/s 内未找到满足要求的泵站流量",
        steps=steps,
    )


__all__ = [
    'SingleAreaParams',
    'SingleAreaStep',
    'MinimumCapacityResult',
    'simulate_single_area',
    'max_level',
    'find_minimum_capacity',
]
