"""
降雨情景管理与批量运行

情景只存在于内存中（不做持久化与版本管理）；run_scenarios 可接受任意
concurrent.futures.Executor 并行运行互相独立的情景。
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from concurrent.futures import Executor
from typing import Dict, List, Optional, Sequence, Union

import pandas as pd

from .cancellation import CancellationToken, Cancelled
from .defaults import SIMULATION_DEFAULTS
from .evaluation import area_statistics
from .exceptions import InvalidParameterError, TopologyError
from .simulator import (
    BoundaryInputs,
    ControlLoop,
    ControlStrategy,
    NetworkSimulator,
    SimulationResult,
)
from .topology import NetworkTopology


class RainScenarioType(Enum):
    """降雨情景类型"""
    HISTORICAL = "historical"  # 历史数据
    DESIGN = "design"  # 设计暴雨
    SYNTHETIC = "synthetic"  # 合成序列
    CONSTANT = "constant"  # 恒定强度


@dataclass
class RainScenario:
    """逐时降雨（mm/h，按 Peilgebied）"""

    rain_mm_per_hour: Dict[str, List[float]] = field(default_factory=dict)
    scenario_type: RainScenarioType = RainScenarioType.SYNTHETIC


def constant_rain_scenario(
    area_codes: Sequence[str],
    mm_per_hour: float,
    duration_hours: int,
) -> RainScenario:
    """所有 Peilgebied 恒定降雨强度"""
    return RainScenario(
        rain_mm_per_hour={code: [mm_per_hour] * duration_hours for code in area_codes},
        scenario_type=RainScenarioType.CONSTANT,
    )


@dataclass
class Scenario:
    """
    仿真情景

    control_loops 为 None 时，为每个有受控出流泵站的 Peilgebied 按 strategy 创建控制回路。
    duration_hours / dt_seconds / balance_factor 缺省在构造时取 SIMULATION_DEFAULTS。
    """

    id: str
    topology: NetworkTopology
    rain: RainScenario = field(default_factory=RainScenario)
    duration_hours: Optional[int] = None
    dt_seconds: Optional[float] = None
    strategy: ControlStrategy = ControlStrategy.PID
    balance_factor: Optional[float] = None
    control_loops: Optional[List[ControlLoop]] = None
    evaporation_mm_per_hour: Dict[str, List[float]] = field(default_factory=dict)
    start_time: Optional[datetime] = None
    name: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.duration_hours is None:
            self.duration_hours = int(SIMULATION_DEFAULTS.horizon_hours)
        if self.dt_seconds is None:
            self.dt_seconds = SIMULATION_DEFAULTS.dt_seconds
        if self.balance_factor is None:
            self.balance_factor = SIMULATION_DEFAULTS.balance_factor

    def validate(self):
        """
        检查情景与拓扑是否一致

        Raises:
            InvalidParameterError: 时长无效或降雨序列长于仿真时长
            TopologyError: 降雨数据引用不存在的 Peilgebied
        """
        if self.duration_hours <= 0:
            raise InvalidParameterError(f"情景 '{self.id}' 的时长 {self.duration_hours} 必须大于0")
        codes = set(self.topology.area_codes)
        for code, values in self.rain.rain_mm_per_hour.items():
            if code not in codes:
                raise TopologyError(f"情景 '{self.id}' 的降雨数据引用了不存在的 Peilgebied: {code}")
            if len(values) > self.duration_hours:
                raise InvalidParameterError(
                    f"情景 '{self.id}' 的降雨数据（{len(values)} 小时）长于仿真时长（{self.duration_hours} 小时）"
                )

    def with_id(self, new_id: str) -> "Scenario":
        """复制情景并指定新的 id"""
        return dataclasses.replace(self, id=new_id, tags=list(self.tags))

    def boundary_inputs(self) -> BoundaryInputs:
        return BoundaryInputs(
            precipitation_mm_per_hour=self.rain.rain_mm_per_hour,
            evaporation_mm_per_hour=self.evaporation_mm_per_hour,
        )

    def resolved_control_loops(self) -> List[ControlLoop]:
        if self.control_loops is not None:
            return list(self.control_loops)
        return [
            ControlLoop(area=code, strategy=self.strategy, balance_factor=self.balance_factor)
            for code in self.topology.area_codes
            if self.topology.controllable_gemalen(code)
        ]


@dataclass(frozen=True)
class ScenarioResult:
    """情景运行结果"""

    scenario: Scenario
    result: SimulationResult
    executed_at: datetime


ScenarioOutcome = Union[ScenarioResult, Cancelled]


def run_scenario(
    scenario: Scenario,
    simulator: Optional[NetworkSimulator] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> ScenarioOutcome:
    """运行单个情景，被取消时返回 Cancelled"""
    scenario.validate()
    simulator = simulator or NetworkSimulator()
    outcome = simulator.run(
        scenario.topology,
        scenario.duration_hours * 3600.0,
        scenario.dt_seconds,
        scenario.boundary_inputs(),
        control_loops=scenario.resolved_control_loops(),
        start_time=scenario.start_time,
        cancel_token=cancel_token,
    )
    if isinstance(outcome, Cancelled):
        return outcome
    return ScenarioResult(
        scenario=scenario,
        result=outcome,
        executed_at=datetime.now(timezone.utc),
    )


def run_scenarios(
    scenarios: Sequence[Scenario],
    executor: Optional[Executor] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> List[ScenarioOutcome]:
    """
    批量运行情景，结果顺序与输入一致

    Args:
        scenarios: 情景列表
        executor: 任意 concurrent.futures.Executor；None 时顺序运行
        cancel_token: 所有情景共享的取消标志

    Returns:
        ScenarioResult 或 Cancelled 列表
    """
    for scenario in scenarios:
        scenario.validate()

    if executor is None:
        return [run_scenario(s, cancel_token=cancel_token) for s in scenarios]

    futures = [executor.submit(run_scenario, s, None, cancel_token) for s in scenarios]
    return [future.result() for future in futures]


def compare_scenarios(results: Sequence[ScenarioResult]) -> pd.DataFrame:
    """
    情景对比表，每行一个 (情景, Peilgebied)

    列为 scenario 与 evaluation.area_statistics 的各项统计。
    """
    frames = []
    for item in results:
        stats = area_statistics(item.result, item.scenario.topology)
        stats.insert(0, "scenario", item.scenario.id)
        frames.append(stats)
    if not frames:
        return pd.DataFrame(columns=["scenario", "area"])
    return pd.concat(frames, ignore_index=True)


__all__ = [
    'RainScenarioType',
    'RainScenario',
    'constant_rain_scenario',
    'Scenario',
    'ScenarioResult',
    'ScenarioOutcome',
    'run_scenario',
    'run_scenarios',
    'compare_scenarios',
]
