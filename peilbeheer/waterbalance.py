"""
Peilgebied 水量平衡模型

单步蓄量更新：ΔV = (入流 + 降雨 - 出流 - 蒸发) × dt，
蓄量不能为负（被截断的水量以 deficit 返回），水位由蓄量推算。
"""

from typing import NamedTuple, Optional

from .exceptions import InvalidParameterError
from .models import Peilgebied, ensure_finite


class WaterBalanceResult(NamedTuple):
    """单步水量平衡结果"""

    level: float
    volume: float
    deficit: float  # 因蓄量截断而未能取出的水量（m³）


def mm_per_hour_to_m3s(mm_per_hour: float, area_m2: float) -> float:
    """
    将 mm/h 换算为 m³/s

    Args:
        mm_per_hour: 降雨或蒸发强度（mm/h）
        area_m2: 换算面积（m²）

    Returns:
        流量（m³/s）
    """
    return (mm_per_hour / 1000.0) * area_m2 / 3600.0


class WaterBalanceModel:
    """无状态的水量平衡计算器，调用方负责更新 Peilgebied 状态"""

    def step(
        self,
        area: Peilgebied,
        inflow_m3s: float,
        outflow_m3s: float,
        precipitation_m3s: float,
        evaporation_m3s: float,
        dt_seconds: float,
        current_volume: Optional[float] = None,
    ) -> WaterBalanceResult:
        """
        计算一个时间步后的水位与蓄量

        Args:
            area: Peilgebied（只读）
            inflow_m3s: 入流（m³/s）
            outflow_m3s: 出流（m³/s）
            precipitation_m3s: 降雨入流（m³/s）
            evaporation_m3s: 蒸发损失（m³/s）
            dt_seconds: 时间步长（秒）
            current_volume: 起始蓄量，缺省使用 area.current_storage_volume

        Returns:
            WaterBalanceResult(level, volume, deficit)

        Raises:
            InvalidParameterError: 面积或时间步长非正，或输入非有限数值
        """
        if area.surface_area <= 0:
            raise InvalidParameterError(
                f"Peilgebied '{area.code}' 的面积 {area.surface_area} 必须大于0"
            )
        dt = ensure_finite("dt_seconds", dt_seconds)
        if dt <= 0:
            raise InvalidParameterError(f"时间步长 {dt_seconds} 必须大于0")

        inflow = ensure_finite("inflow_m3s", inflow_m3s)
        outflow = ensure_finite("outflow_m3s", outflow_m3s)
        precipitation = ensure_finite("precipitation_m3s", precipitation_m3s)
        evaporation = ensure_finite("evaporation_m3s", evaporation_m3s)
        if current_volume is None:
            current_volume = area.current_storage_volume
        volume = ensure_finite("current_volume", current_volume)

        delta = (inflow + precipitation - outflow - evaporation) * dt
        new_volume = volume + delta
        deficit = 0.0
        if new_volume < 0.0:
            # 出流超过可用蓄量，截断为0
            deficit = -new_volume
            new_volume = 0.0

        return WaterBalanceResult(area.level_at(new_volume), new_volume, deficit)

    def project_level(
        self,
        area: Peilgebied,
        level: float,
        net_inflow_m3s: float,
        dt_seconds: float,
    ) -> float:
        """从给定水位出发，按净入流推算 dt 后的水位（用于调度优化）"""
        start_volume = area.volume_at(level)
        result = self.step(
            area,
            inflow_m3s=max(net_inflow_m3s, 0.0),
            outflow_m3s=max(-net_inflow_m3s, 0.0),
            precipitation_m3s=0.0,
            evaporation_m3s=0.0,
            dt_seconds=dt_seconds,
            current_volume=start_volume,
        )
        return result.level


__all__ = [
    'WaterBalanceResult',
    'WaterBalanceModel',
    'mm_per_hour_to_m3s',
]
