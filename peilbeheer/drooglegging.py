"""
Drooglegging（排水深度）计算：地面高程与水位之间的垂直距离
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .models import ensure_finite


def drooglegging(ground_level: float, water_level: float) -> float:
    """
    计算 drooglegging = ground_level - water_level

    负值表示淹没（水位高于地面）。

    Raises:
        InvalidParameterError: 输入非有限数值
    """
    ground = ensure_finite("ground_level", ground_level)
    water = ensure_finite("water_level", water_level)
    return ground - water


@dataclass(frozen=True)
class DroogleggingResult:
    """drooglegging及其相对允许值的超限量"""

    drooglegging: float
    target_drooglegging: float
    minimum_drooglegging: float
    exceedance: float  # >0 表示排水深度不足
    exceedance_cm: float

    @property
    def is_exceeded(self) -> bool:
        return self.exceedance > 0


def calculate_drooglegging(
    ground_level: float,
    water_level: float,
    target_level: float,
    margin_cm: float,
) -> DroogleggingResult:
    """
    计算 drooglegging 与超限量

    Args:
        ground_level: 地面高程（m NAP）
        water_level: 实际水位（m NAP）
        target_level: 目标水位（m NAP）
        margin_cm: 允许偏差（cm）
    """
    actual = drooglegging(ground_level, water_level)
    target = drooglegging(ground_level, target_level)
    minimum = target - ensure_finite("margin_cm", margin_cm) / 100.0
    exceedance = minimum - actual
    return DroogleggingResult(
        drooglegging=actual,
        target_drooglegging=target,
        minimum_drooglegging=minimum,
        exceedance=exceedance,
        exceedance_cm=exceedance * 100.0,
    )


def find_max_level(
    levels: Sequence[float],
    times: Optional[Sequence[float]] = None,
) -> Optional[Tuple[float, float]]:
    """返回 (最高水位, 对应时刻)，空序列返回 None；并列时取最早时刻"""
    if len(levels) == 0:
        return None
    if times is None:
        times = range(len(levels))
    best_index = 0
    for index, level in enumerate(levels):
        if level > levels[best_index]:
            best_index = index
    return levels[best_index], times[best_index]


__all__ = [
    'drooglegging',
    'DroogleggingResult',
    'calculate_drooglegging',
    'find_max_level',
]
