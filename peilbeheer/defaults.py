"""
默认配置参数管理模块

此模块集中管理所有默认参数，避免硬编码。
所有默认值都可以通过运行时参数覆盖。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple


@dataclass
class SimulationDefaults:
    """网络仿真默认参数"""

    dt_seconds: float = 60.0  # 时间步长（秒）
    horizon_hours: float = 24.0  # 仿真时长（小时）
    boundary_interval_seconds: float = 3600.0  # 边界输入时间序列分辨率（秒）
    default_margin: float = 0.20  # 目标水位允许偏差（m）
    balance_factor: float = 0.5  # BALANCED策略的分配系数
    pump_active_threshold: float = 0.001  # 判定泵站运行的最小流量（m³/s）


@dataclass
class PIDDefaults:
    """PID控制器默认参数"""

    kp: float = 5.0  # 比例增益
    ki: float = 0.05  # 积分增益
    kd: float = 20.0  # 微分增益
    output_min: float = 0.0  # 输出下限
    output_max: float = 1.0  # 输出上限


@dataclass
class OptimizerDefaults:
    """泵站调度DP优化默认参数"""

    n_buckets: int = 201  # 水位离散区间数
    pump_fractions: Tuple[float, ...] = (0.0, 0.05, 0.10, 0.25, 0.40, 0.50, 0.75, 0.90, 1.0)
    step_seconds: float = 3600.0  # DP时间步（一小时）
    lift_head: float = 2.0  # 扬程（m）
    efficiency: float = 0.70  # 泵站效率
    water_density: float = 1000.0  # 水密度（kg/m³）
    gravity: float = 9.81  # 重力加速度（m/s²）
    cost_tolerance: float = 1e-9  # 成本比较容差（相对）


@dataclass
class RelaxationDefaults:
    """线性松弛（Pyomo）默认参数"""

    default_solver: str = "appsi_highs"  # 默认求解器
    solver_timeout: int = 300  # 求解器超时时间（秒）
    solver_options: Dict[str, Any] = field(default_factory=dict)  # 求解器选项


@dataclass
class ControlEvaluationDefaults:
    """控制性能评价默认参数"""

    # 稳态判定
    settling_threshold: float = 0.02  # 稳态阈值（m）
    settling_window: int = 10  # 稳态判定窗口

    # 性能权重
    tracking_weight: float = 0.6  # 跟踪性能权重
    smoothness_weight: float = 0.4  # 平滑度权重

    # 归一化阈值
    normalization_threshold_error: float = 0.05  # 误差归一化阈值（m）
    normalization_threshold_change: float = 0.5  # 流量变化率归一化阈值（m³/s）


@dataclass
class ExportDefaults:
    """导出默认参数"""

    decimals: int = 3  # 小数位数
    csv_separator: str = ","  # CSV分隔符
    csv_header: bool = True  # 是否写入表头


# 全局默认配置实例
SIMULATION_DEFAULTS = SimulationDefaults()
PID_DEFAULTS = PIDDefaults()
OPTIMIZER_DEFAULTS = OptimizerDefaults()
RELAXATION_DEFAULTS = RelaxationDefaults()
CONTROL_EVALUATION_DEFAULTS = ControlEvaluationDefaults()
EXPORT_DEFAULTS = ExportDefaults()


def _category_map() -> Dict[str, Any]:
    return {
        'simulation': SIMULATION_DEFAULTS,
        'pid': PID_DEFAULTS,
        'optimizer': OPTIMIZER_DEFAULTS,
        'relaxation': RELAXATION_DEFAULTS,
        'control_evaluation': CONTROL_EVALUATION_DEFAULTS,
        'export': EXPORT_DEFAULTS,
    }


def get_default(category: str, param: str, default=None):
    """
    获取默认参数值

    Args:
        category: 参数类别 (simulation, pid, optimizer, relaxation, control_evaluation, export)
        param: 参数名称
        default: 如果未找到返回的默认值

    Returns:
        参数值
    """
    config = _category_map().get(category)
    if config is None:
        return default

    return getattr(config, param, default)


def update_defaults(category: str, **kwargs):
    """
    更新默认参数

    Args:
        category: 参数类别
        **kwargs: 要更新的参数
    """
    config = _category_map().get(category)
    if config is None:
        raise ValueError(f"Unknown category: {category}")

    for key, value in kwargs.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            raise ValueError(f"Unknown parameter {key} in category {category}")


__all__ = [
    'SimulationDefaults',
    'PIDDefaults',
    'OptimizerDefaults',
    'RelaxationDefaults',
    'ControlEvaluationDefaults',
    'ExportDefaults',
    'SIMULATION_DEFAULTS',
    'PID_DEFAULTS',
    'OPTIMIZER_DEFAULTS',
    'RELAXATION_DEFAULTS',
    'CONTROL_EVALUATION_DEFAULTS',
    'EXPORT_DEFAULTS',
    'get_default',
    'update_defaults',
]
