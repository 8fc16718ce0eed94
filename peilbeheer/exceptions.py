"""
自定义异常类：用于peilbeheer仿真与优化引擎的错误处理
"""

from typing import Any, Dict, List, Optional


class PeilbeheerError(Exception):
    """peilbeheer引擎基础异常类"""

    pass


class InvalidParameterError(PeilbeheerError):
    """参数错误（非正面积、非正时间步长、非有限数值等）"""

    pass


class ConfigurationError(InvalidParameterError):
    """配置错误"""

    pass


class TopologyError(InvalidParameterError):
    """拓扑结构错误（引用不存在的Peilgebied、重复ID、起终点相同）"""

    pass


class CyclicConstraintError(PeilbeheerError):
    """Keerklep（止回阀）构成单向环路"""

    def __init__(self, message: str, cycle: Optional[List[str]] = None):
        super().__init__(message)
        self.cycle = list(cycle or [])


class SimulationDivergedError(PeilbeheerError):
    """仿真数值发散（NaN/∞）"""

    def __init__(self, message: str, step_index: int, area_code: str):
        super().__init__(message)
        self.step_index = step_index
        self.area_code = area_code


class InfeasibleScheduleError(PeilbeheerError):
    """没有满足水位约束的泵站调度方案"""

    def __init__(
        self,
        message: str,
        constraint: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.constraint = constraint
        self.details = details or {}


class SolverError(PeilbeheerError):
    """求解器错误"""

    pass
