"""
Peilbeheer（水位管理）仿真与优化引擎
"""

# 异常
from .exceptions import (
    PeilbeheerError,
    InvalidParameterError,
    ConfigurationError,
    TopologyError,
    CyclicConstraintError,
    SimulationDivergedError,
    InfeasibleScheduleError,
    SolverError,
)

# 默认配置
from .defaults import (
    SIMULATION_DEFAULTS,
    PID_DEFAULTS,
    OPTIMIZER_DEFAULTS,
    RELAXATION_DEFAULTS,
    CONTROL_EVALUATION_DEFAULTS,
    EXPORT_DEFAULTS,
    get_default,
    update_defaults,
)

# 数据模型
from .models import (
    Season,
    Peilgebied,
    Gemaal,
    Overstort,
    Keerklep,
    OpenVerbinding,
    Connection,
    SimulationStep,
    EnergyPricePoint,
    PumpScheduleEntry,
    PumpSchedule,
)
from .cancellation import CancellationToken, Cancelled
from .waterbalance import WaterBalanceModel, WaterBalanceResult, mm_per_hour_to_m3s
from .pid import PidParams, PidState, PidController
from .drooglegging import (
    drooglegging,
    DroogleggingResult,
    calculate_drooglegging,
    find_max_level,
)

# 网络与仿真
from .validation import validate_network_config
from .topology import NetworkTopology
from .simulator import (
    BoundaryInputs,
    ControlStrategy,
    ControlLoop,
    control_loops_from_config,
    SimulationResult,
    NetworkSimulator,
)
from .single_area import (
    SingleAreaParams,
    SingleAreaStep,
    MinimumCapacityResult,
    simulate_single_area,
    find_minimum_capacity,
)

# 调度优化
from .feasibility import (
    FeasibilityStatus,
    FeasibilityResult,
    check_schedule_feasibility,
    check_solver_results,
)
from .optimizer import (
    pump_power_kw,
    OptimizationProblem,
    ScheduleOptimizer,
    naive_schedule,
    ScheduleReplay,
    replay_schedule,
    ScheduleComparison,
    compare_with_naive,
)
from .relaxation import RelaxationResult, build_schedule_relaxation, solve_schedule_relaxation

# 情景、评价与导出
from .scenario import (
    RainScenarioType,
    RainScenario,
    constant_rain_scenario,
    Scenario,
    ScenarioResult,
    run_scenario,
    run_scenarios,
    compare_scenarios,
)
from .evaluation import LevelControlEvaluator, area_statistics
from .export import (
    schedule_to_dataframe,
    simulation_to_csv,
    edge_flows_to_csv,
    schedule_to_csv,
    simulation_to_json,
    schedule_to_json,
)
from .utils import TimeSeriesGenerator, hourly_price_points, SolverManager

__all__ = [
    # 异常
    "PeilbeheerError",
    "InvalidParameterError",
    "ConfigurationError",
    "TopologyError",
    "CyclicConstraintError",
    "SimulationDivergedError",
    "InfeasibleScheduleError",
    "SolverError",
    # 默认配置
    "SIMULATION_DEFAULTS",
    "PID_DEFAULTS",
    "OPTIMIZER_DEFAULTS",
    "RELAXATION_DEFAULTS",
    "CONTROL_EVALUATION_DEFAULTS",
    "EXPORT_DEFAULTS",
    "get_default",
    "update_defaults",
    # 数据模型
    "Season",
    "Peilgebied",
    "Gemaal",
    "Overstort",
    "Keerklep",
    "OpenVerbinding",
    "Connection",
    "SimulationStep",
    "EnergyPricePoint",
    "PumpScheduleEntry",
    "PumpSchedule",
    "CancellationToken",
    "Cancelled",
    "WaterBalanceModel",
    "WaterBalanceResult",
    "mm_per_hour_to_m3s",
    "PidParams",
    "PidState",
    "PidController",
    "drooglegging",
    "DroogleggingResult",
    "calculate_drooglegging",
    "find_max_level",
    # 网络与仿真
    "validate_network_config",
    "NetworkTopology",
    "BoundaryInputs",
    "ControlStrategy",
    "ControlLoop",
    "control_loops_from_config",
    "SimulationResult",
    "NetworkSimulator",
    "SingleAreaParams",
    "SingleAreaStep",
    "MinimumCapacityResult",
    "simulate_single_area",
    "find_minimum_capacity",
    # 调度优化
    "FeasibilityStatus",
    "FeasibilityResult",
    "check_schedule_feasibility",
    "check_solver_results",
    "pump_power_kw",
    "OptimizationProblem",
    "ScheduleOptimizer",
    "naive_schedule",
    "ScheduleReplay",
    "replay_schedule",
    "ScheduleComparison",
    "compare_with_naive",
    "RelaxationResult",
    "build_schedule_relaxation",
    "solve_schedule_relaxation",
    # 情景、评价与导出
    "RainScenarioType",
    "RainScenario",
    "constant_rain_scenario",
    "Scenario",
    "ScenarioResult",
    "run_scenario",
    "run_scenarios",
    "compare_scenarios",
    "LevelControlEvaluator",
    "area_statistics",
    "schedule_to_dataframe",
    "simulation_to_csv",
    "edge_flows_to_csv",
    "schedule_to_csv",
    "simulation_to_json",
    "schedule_to_json",
    # 工具
    "TimeSeriesGenerator",
    "hourly_price_points",
    "SolverManager",
]
