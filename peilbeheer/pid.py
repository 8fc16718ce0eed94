"""
PID控制器模块

根据水位偏差计算泵站流量设定值：
- 条件积分抗饱和（输出已饱和且误差方向会加深饱和时不累积积分）
- 输出限幅到 [output_min, output_max]，限幅事件记录在 PidState 中
- reset() 在每次仿真开始时清零状态，避免跨运行泄漏
"""

import math
from dataclasses import dataclass
from typing import Optional

from .defaults import PID_DEFAULTS
from .exceptions import InvalidParameterError
from .models import ensure_finite


@dataclass
class PidParams:
    """
    PID参数

    direct_acting=True 时误差取 measured - setpoint（排水泵站：水位高于目标时加大输出），
    否则取 setpoint - measured（补水泵站）。未给出的增益与限幅在构造时取 PID_DEFAULTS。
    """

    kp: Optional[float] = None
    ki: Optional[float] = None
    kd: Optional[float] = None
    output_min: Optional[float] = None
    output_max: Optional[float] = None
    direct_acting: bool = False

    def __post_init__(self):
        for name in ("kp", "ki", "kd", "output_min", "output_max"):
            if getattr(self, name) is None:
                setattr(self, name, getattr(PID_DEFAULTS, name))
            ensure_finite(name, getattr(self, name))
        if self.output_min > self.output_max:
            raise InvalidParameterError(
                f"PID 输出下限 {self.output_min} 大于上限 {self.output_max}"
            )


@dataclass
class PidState:
    """PID状态（每个控制器实例独占）"""

    integral: float = 0.0
    previous_error: float = 0.0
    last_output: float = 0.0
    saturated: bool = False
    clamp_count: int = 0


class PidController:
    """水位PID控制器"""

    def __init__(self, params: Optional[PidParams] = None, name: str = "PID"):
        self.params = params or PidParams()
        self.name = name
        self.state = PidState()

    def set_output_limits(self, output_min: float, output_max: float):
        """更新输出限幅（例如协调控制下可用泵站容量变化时）"""
        if output_min > output_max:
            raise InvalidParameterError(
                f"PID 输出下限 {output_min} 大于上限 {output_max}"
            )
        self.params.output_min = output_min
        self.params.output_max = output_max

    def reset(self):
        """重置控制器"""
        self.state = PidState()

    def step(self, setpoint: float, measured_level: float, dt: float) -> float:
        """
        计算控制输出

        Args:
            setpoint: 目标水位（m）
            measured_level: 测量水位（m）
            dt: 时间步长（秒），极小的 dt 会使微分项放大

        Returns:
            限幅后的控制输出

        Raises:
            InvalidParameterError: dt 为0或负，或输入非有限数值
        """
        setpoint = ensure_finite("setpoint", setpoint)
        measured_level = ensure_finite("measured_level", measured_level)
        dt = ensure_finite("dt", dt)
        if dt <= 0:
            raise InvalidParameterError(f"PID 时间步长 {dt} 必须大于0")

        p = self.params
        if p.direct_acting:
            error = measured_level - setpoint
        else:
            error = setpoint - measured_level

        proportional = p.kp * error
        derivative = p.kd * (error - self.state.previous_error) / dt

        candidate_integral = self.state.integral + error * dt
        unclamped = proportional + p.ki * candidate_integral + derivative

        # 抗积分饱和：输出饱和且误差会加深饱和时，保持积分不变
        pushes_up = p.ki * error > 0
        pushes_down = p.ki * error < 0
        if (unclamped > p.output_max and pushes_up) or (unclamped < p.output_min and pushes_down):
            unclamped = proportional + p.ki * self.state.integral + derivative
        else:
            self.state.integral = candidate_integral

        if not math.isfinite(unclamped):
            raise InvalidParameterError(f"PID '{self.name}' 输出非有限数值")

        output = min(max(unclamped, p.output_min), p.output_max)
        self.state.saturated = output != unclamped
        if self.state.saturated:
            self.state.clamp_count += 1

        self.state.previous_error = error
        self.state.last_output = output
        return output


__all__ = ['PidParams', 'PidState', 'PidController']
