"""
多 Peilgebied 网络仿真

每个时间步依次执行：
1. 按当前水位与当前设定值计算全部连接流量，并按各区可用蓄量限制出流（保证质量守恒）；
2. 汇总各区的连接流量与边界输入；
3. 对各区执行 WaterBalanceModel；
4. 控制回路读取新水位，计算下一步生效的泵站设定值（一步控制延迟，初始设定值为0）；
5. 追加 SimulationStep。

仿真状态（水位、蓄量、控制器状态）仅存在于单次 run 调用内，拓扑不被修改。
"""

import dataclasses
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from .cancellation import CancellationToken, Cancelled, is_cancelled
from .defaults import SIMULATION_DEFAULTS
from .exceptions import InvalidParameterError, SimulationDivergedError, TopologyError
from .models import Gemaal, Peilgebied, PumpSchedule, Season, SimulationStep, ensure_finite
from .pid import PidController, PidParams
from .topology import DIRECTIONS, NetworkTopology
from .waterbalance import WaterBalanceModel, mm_per_hour_to_m3s


@dataclass
class BoundaryInputs:
    """
    边界输入时间序列（按 interval_seconds 分段常数，超出序列末尾取0）

    - precipitation_mm_per_hour: {code: 降雨强度序列（mm/h）}
    - evaporation_mm_per_hour: {code: 蒸发强度序列（mm/h）}
    - inflow_m3s: {code: 外部入流序列（m³/s，负值表示取水）}
    """

    precipitation_mm_per_hour: Dict[str, Sequence[float]] = field(default_factory=dict)
    evaporation_mm_per_hour: Dict[str, Sequence[float]] = field(default_factory=dict)
    inflow_m3s: Dict[str, Sequence[float]] = field(default_factory=dict)
    interval_seconds: Optional[float] = None  # 缺省取 SIMULATION_DEFAULTS.boundary_interval_seconds

    def __post_init__(self):
        if self.interval_seconds is None:
            self.interval_seconds = SIMULATION_DEFAULTS.boundary_interval_seconds
        if ensure_finite("interval_seconds", self.interval_seconds) <= 0:
            raise InvalidParameterError(
                f"边界输入时间间隔 {self.interval_seconds} 必须大于0"
            )
        for label, series_map, non_negative in (
            ("降雨", self.precipitation_mm_per_hour, True),
            ("蒸发", self.evaporation_mm_per_hour, True),
            ("外部入流", self.inflow_m3s, False),
        ):
            for code, values in series_map.items():
                for value in values:
                    number = ensure_finite(f"{label} '{code}'", value)
                    if non_negative and number < 0:
                        raise InvalidParameterError(f"{label} '{code}' 的值 {value} 不能为负")

    def area_codes(self) -> set:
        return (
            set(self.precipitation_mm_per_hour)
            | set(self.evaporation_mm_per_hour)
            | set(self.inflow_m3s)
        )

    def _value(self, series_map: Mapping[str, Sequence[float]], code: str, time_seconds: float) -> float:
        values = series_map.get(code)
        if not values:
            return 0.0
        index = int(time_seconds // self.interval_seconds)
        if index >= len(values):
            return 0.0
        return float(values[index])

    def precipitation(self, code: str, time_seconds: float) -> float:
        return self._value(self.precipitation_mm_per_hour, code, time_seconds)

    def evaporation(self, code: str, time_seconds: float) -> float:
        return self._value(self.evaporation_mm_per_hour, code, time_seconds)

    def inflow(self, code: str, time_seconds: float) -> float:
        return self._value(self.inflow_m3s, code, time_seconds)


class ControlStrategy(Enum):
    """控制策略"""
    PID = "pid"  # PID调节
    ON_OFF = "on_off"  # 超过目标水位时满负荷运行
    BALANCED = "balanced"  # 偏差比例流量与观测入流按分配系数加权


@dataclass
class ControlLoop:
    """
    单个 Peilgebied 的协调控制回路

    回路的输出为该区全部受控泵站的总流量（m³/s），按各泵站容量比例分配。
    direction="outgoing" 表示排水泵站（水位高于目标时加大流量），
    "incoming" 表示补水泵站。
    """

    area: str
    setpoint: Optional[float] = None  # 缺省取该区目标水位
    strategy: ControlStrategy = ControlStrategy.PID
    pid_params: Optional[PidParams] = None
    balance_factor: Optional[float] = None  # 缺省取 SIMULATION_DEFAULTS.balance_factor
    direction: str = "outgoing"
    season: Season = Season.SUMMER

    def __post_init__(self):
        if isinstance(self.strategy, str):
            self.strategy = ControlStrategy(self.strategy)
        if isinstance(self.season, str):
            self.season = Season(self.season)
        if self.balance_factor is None:
            self.balance_factor = SIMULATION_DEFAULTS.balance_factor
        if self.direction not in DIRECTIONS:
            raise InvalidParameterError(
                f"控制回路 '{self.area}' 的方向 '{self.direction}' 无效"
            )
        if not 0 <= self.balance_factor <= 1:
            raise InvalidParameterError(
                f"控制回路 '{self.area}' 的 balance_factor {self.balance_factor} 必须在 [0, 1] 之间"
            )
        if self.setpoint is not None:
            ensure_finite(f"控制回路 '{self.area}' setpoint", self.setpoint)


def control_loops_from_config(config: Dict[str, Any]) -> List[ControlLoop]:
    """由 dict 配置中的 controls 构建控制回路"""
    loops = []
    for spec in config.get("controls", []):
        pid = spec.get("pid")
        loops.append(
            ControlLoop(
                area=spec["area"],
                setpoint=spec.get("setpoint"),
                strategy=ControlStrategy(spec.get("strategy", "pid")),
                pid_params=PidParams(**pid) if pid else None,
                balance_factor=spec.get("balance_factor"),
                direction=spec.get("direction", "outgoing"),
                season=Season(spec.get("season", Season.SUMMER.value)),
            )
        )
    return loops


@dataclass(frozen=True)
class SimulationResult:
    """仿真结果：按时间顺序排列的 SimulationStep（不可变，可重复遍历）"""

    steps: Tuple[SimulationStep, ...]
    area_codes: Tuple[str, ...]
    initial_levels: Dict[str, float]
    initial_volumes: Dict[str, float]
    dt_seconds: float
    start_time: Optional[datetime] = None

    def __iter__(self):
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def __getitem__(self, index: int) -> SimulationStep:
        return self.steps[index]

    @property
    def final_levels(self) -> Dict[str, float]:
        if not self.steps:
            return dict(self.initial_levels)
        return dict(self.steps[-1].levels)

    def total_volume(self, index: int = -1) -> float:
        """第 index 步末全部 Peilgebied 的总蓄量"""
        if not self.steps:
            return sum(self.initial_volumes.values())
        return sum(self.steps[index].volumes.values())

    def level_series(self, code: str) -> pd.Series:
        """单个 Peilgebied 的水位序列（含 t=0 初始水位）"""
        if code not in self.initial_levels:
            raise TopologyError(f"Peilgebied '{code}' 不存在")
        times = [0.0] + [step.time_seconds for step in self.steps]
        values = [self.initial_levels[code]] + [step.levels[code] for step in self.steps]
        return pd.Series(values, index=pd.Index(times, name="time_seconds"), name=code)

    def to_dataframe(self) -> pd.DataFrame:
        """
        转换为长表 DataFrame，每行一个 (时间步, Peilgebied)

        列: step, time_seconds, timestamp, area, level, volume, inflow, outflow,
            controller_output, saturated, deficit
        """
        rows = []
        for step in self.steps:
            for code in self.area_codes:
                rows.append({
                    "step": step.index,
                    "time_seconds": step.time_seconds,
                    "timestamp": step.timestamp,
                    "area": code,
                    "level": step.levels[code],
                    "volume": step.volumes[code],
                    "inflow": step.inflows[code],
                    "outflow": step.outflows[code],
                    "controller_output": step.controller_outputs.get(code),
                    "saturated": code in step.saturated,
                    "deficit": step.deficits.get(code, 0.0),
                })
        columns = [
            "step", "time_seconds", "timestamp", "area", "level", "volume",
            "inflow", "outflow", "controller_output", "saturated", "deficit",
        ]
        return pd.DataFrame(rows, columns=columns)

    def edge_flow_dataframe(self) -> pd.DataFrame:
        """连接流量宽表，索引为 time_seconds，每列一个连接"""
        records = [dict(step.edge_flows) for step in self.steps]
        times = [step.time_seconds for step in self.steps]
        return pd.DataFrame(records, index=pd.Index(times, name="time_seconds"))


SimulationOutcome = Union[SimulationResult, Cancelled]


@dataclass
class _LoopRuntime:
    loop: ControlLoop
    setpoint: float
    gemalen: List[Gemaal]
    pid: PidController


class NetworkSimulator:
    """Peilgebied 网络时间步进仿真器（无状态，可并行调用 run）"""

    def __init__(self, balance_model: Optional[WaterBalanceModel] = None):
        self.balance_model = balance_model or WaterBalanceModel()

    def run(
        self,
        topology: NetworkTopology,
        horizon_seconds: float,
        dt_seconds: float,
        boundary_inputs: Optional[BoundaryInputs] = None,
        *,
        control_loops: Optional[Sequence[ControlLoop]] = None,
        schedules: Optional[Mapping[str, PumpSchedule]] = None,
        start_time: Optional[datetime] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SimulationOutcome:
        """
        运行网络仿真

        Args:
            topology: 网络拓扑（只读）
            horizon_seconds: 仿真时长（秒），步数为 ceil(horizon / dt)
            dt_seconds: 时间步长（秒）
            boundary_inputs: 边界输入（降雨、蒸发、外部入流）
            control_loops: 控制回路；None 时为每个有受控出流泵站的 Peilgebied 自动创建 PID 回路，
                空列表表示不控制（未受控泵站按 fixed_flow 或额定容量运行）
            schedules: {gemaal_id: PumpSchedule}，调度开度 × 容量覆盖控制器输出
            start_time: 仿真起始时刻，用于时间戳与调度查询
            cancel_token: 取消标志，在时间步之间检查

        Returns:
            SimulationResult，或被取消时返回 Cancelled

        Raises:
            InvalidParameterError: 时长或步长无效，或控制配置无效
            TopologyError: 控制回路、调度或边界输入引用不存在的对象
            SimulationDivergedError: 水位或蓄量出现非有限数值
        """
        horizon = ensure_finite("horizon_seconds", horizon_seconds)
        dt = ensure_finite("dt_seconds", dt_seconds)
        if horizon <= 0:
            raise InvalidParameterError(f"仿真时长 {horizon_seconds} 必须大于0")
        if dt <= 0:
            raise InvalidParameterError(f"时间步长 {dt_seconds} 必须大于0")

        boundary = boundary_inputs or BoundaryInputs()
        for code in boundary.area_codes():
            topology.index_of(code)
        schedules = dict(schedules or {})
        for gemaal_id in schedules:
            conn = topology.connection(gemaal_id)
            if not isinstance(conn, Gemaal) or not conn.controllable:
                raise InvalidParameterError(f"调度只能用于受控 Gemaal，'{gemaal_id}' 不符合")

        runtimes = self._prepare_loops(topology, control_loops, schedules)

        codes = topology.area_codes
        areas = {code: topology.area(code) for code in codes}
        levels = {code: areas[code].current_level for code in codes}
        volumes = {code: areas[code].current_storage_volume for code in codes}
        initial_levels = dict(levels)
        initial_volumes = dict(volumes)

        # 受控泵站设定值（一步延迟，初始为0）
        setpoints: Dict[str, float] = {
            g.id: 0.0 for runtime in runtimes for g in runtime.gemalen
        }

        n_steps = int(math.ceil(horizon / dt))
        steps: List[SimulationStep] = []
        for k in range(n_steps):
            if is_cancelled(cancel_token):
                return Cancelled("simulation", k)

            t_start = k * dt
            t_end = (k + 1) * dt

            # 1. 连接流量
            edge_flows = self._resolve_flows(
                topology, levels, setpoints, schedules, t_start, start_time, k
            )

            # 边界输入（m³/s）
            precipitation = {}
            evaporation = {}
            external = {}
            for code in codes:
                catchment = areas[code].effective_catchment
                precipitation[code] = mm_per_hour_to_m3s(boundary.precipitation(code, t_start), catchment)
                evaporation[code] = mm_per_hour_to_m3s(boundary.evaporation(code, t_start), catchment)
                external[code] = boundary.inflow(code, t_start)

            self._limit_to_available(
                topology, areas, volumes, edge_flows, precipitation, evaporation, external, dt
            )

            # 2. 汇总
            inflows = {code: max(external[code], 0.0) for code in codes}
            outflows = {code: max(-external[code], 0.0) for code in codes}
            for conn in topology.connections:
                flow = edge_flows[conn.id]
                if flow >= 0:
                    outflows[conn.from_area] += flow
                    inflows[conn.to_area] += flow
                else:
                    outflows[conn.to_area] -= flow
                    inflows[conn.from_area] -= flow

            # 3. 水量平衡
            deficits = {}
            for code in codes:
                result = self.balance_model.step(
                    areas[code],
                    inflows[code],
                    outflows[code],
                    precipitation[code],
                    evaporation[code],
                    dt,
                    current_volume=volumes[code],
                )
                if not (math.isfinite(result.level) and math.isfinite(result.volume)):
                    raise SimulationDivergedError(
                        f"Peilgebied '{code}' 在第 {k} 步出现非有限水位或蓄量",
                        step_index=k,
                        area_code=code,
                    )
                levels[code] = result.level
                volumes[code] = result.volume
                if result.deficit > 0:
                    deficits[code] = result.deficit

            # 4. 控制（下一步生效）
            controller_outputs = {}
            saturated = set()
            for runtime in runtimes:
                total, clamped = self._control_output(
                    topology, runtime, levels, inflows, outflows, precipitation, evaporation, dt
                )
                allocation = topology.allocate_setpoint(total, runtime.gemalen, levels)
                setpoints.update(allocation)
                # 同一区的排水与补水回路输出累加
                controller_outputs[runtime.loop.area] = (
                    controller_outputs.get(runtime.loop.area, 0.0) + sum(allocation.values())
                )
                if clamped:
                    saturated.add(runtime.loop.area)

            # 5. 记录
            steps.append(
                SimulationStep(
                    index=k,
                    time_seconds=t_end,
                    levels=dict(levels),
                    volumes=dict(volumes),
                    inflows=inflows,
                    outflows=outflows,
                    edge_flows=edge_flows,
                    controller_outputs=controller_outputs,
                    saturated=frozenset(saturated),
                    deficits=deficits,
                    timestamp=start_time + timedelta(seconds=t_end) if start_time else None,
                )
            )

        return SimulationResult(
            steps=tuple(steps),
            area_codes=tuple(codes),
            initial_levels=initial_levels,
            initial_volumes=initial_volumes,
            dt_seconds=dt,
            start_time=start_time,
        )

    def _prepare_loops(
        self,
        topology: NetworkTopology,
        control_loops: Optional[Sequence[ControlLoop]],
        schedules: Mapping[str, PumpSchedule],
    ) -> List[_LoopRuntime]:
        """为本次运行创建控制器（每次运行均为全新状态）"""
        if control_loops is None:
            control_loops = [
                ControlLoop(area=code)
                for code in topology.area_codes
                if any(g.id not in schedules for g in topology.controllable_gemalen(code))
            ]

        runtimes = []
        seen = set()
        claimed: Dict[str, str] = {}
        for loop in control_loops:
            area = topology.area(loop.area)
            key = (loop.area, loop.direction)
            if key in seen:
                raise InvalidParameterError(
                    f"Peilgebied '{loop.area}' 的 {loop.direction} 方向定义了多个控制回路"
                )
            seen.add(key)

            gemalen = [
                g for g in topology.controllable_gemalen(loop.area, loop.direction)
                if g.id not in schedules
            ]
            for g in gemalen:
                if g.id in claimed:
                    raise InvalidParameterError(
                        f"Gemaal '{g.id}' 同时被 '{claimed[g.id]}' 与 '{loop.area}' 的控制回路控制"
                    )
                claimed[g.id] = loop.area

            params = dataclasses.replace(
                loop.pid_params or PidParams(),
                direct_acting=loop.direction == "outgoing",
            )
            setpoint = loop.setpoint if loop.setpoint is not None else area.target_level(loop.season)
            runtimes.append(
                _LoopRuntime(
                    loop=loop,
                    setpoint=setpoint,
                    gemalen=gemalen,
                    pid=PidController(params, name=f"PID-{loop.area}"),
                )
            )
        return runtimes

    def _resolve_flows(
        self,
        topology: NetworkTopology,
        levels: Mapping[str, float],
        setpoints: Mapping[str, float],
        schedules: Mapping[str, PumpSchedule],
        t_start: float,
        start_time: Optional[datetime],
        step_index: int,
    ) -> Dict[str, float]:
        flows = {}
        for conn in topology.connections:
            setpoint = setpoints.get(conn.id)
            schedule = schedules.get(conn.id)
            if schedule is not None:
                if start_time is not None:
                    fraction = schedule.fraction_at(start_time + timedelta(seconds=t_start))
                else:
                    fraction = schedule.fraction_for_offset(t_start)
                setpoint = fraction * topology.gemaal_capacity(conn, levels)
            try:
                flow = topology.resolve_edge_flow(conn, levels, setpoint)
            except OverflowError as e:
                raise SimulationDivergedError(
                    f"连接 '{conn.id}' 在第 {step_index} 步流量溢出",
                    step_index=step_index,
                    area_code=conn.from_area,
                ) from e
            if not math.isfinite(flow):
                raise SimulationDivergedError(
                    f"连接 '{conn.id}' 在第 {step_index} 步流量非有限",
                    step_index=step_index,
                    area_code=conn.from_area,
                )
            flows[conn.id] = flow
        return flows

    def _limit_to_available(
        self,
        topology: NetworkTopology,
        areas: Mapping[str, Peilgebied],
        volumes: Mapping[str, float],
        edge_flows: Dict[str, float],
        precipitation: Dict[str, float],
        evaporation: Dict[str, float],
        external: Dict[str, float],
        dt: float,
    ):
        """
        按可用蓄量缩放各区出流

        可用量只计本区蓄量与本区边界来水，不计其他区的来水，
        因此各区缩放系数互相独立，一次遍历即可；连接流量整体缩放，质量守恒。
        固定水位区视为无限水源，不限制。
        """
        demand = {code: evaporation[code] + max(-external[code], 0.0) for code in volumes}
        for conn in topology.connections:
            flow = edge_flows[conn.id]
            source = conn.from_area if flow >= 0 else conn.to_area
            demand[source] += abs(flow)

        factors = {}
        for code, required in demand.items():
            if areas[code].fixed_level is not None or required <= 0:
                continue
            supply = volumes[code] / dt + precipitation[code] + max(external[code], 0.0)
            if required > supply:
                factors[code] = max(supply, 0.0) / required

        if not factors:
            return

        for conn in topology.connections:
            flow = edge_flows[conn.id]
            source = conn.from_area if flow >= 0 else conn.to_area
            if source in factors:
                edge_flows[conn.id] = flow * factors[source]
        for code, factor in factors.items():
            evaporation[code] *= factor
            if external[code] < 0:
                external[code] *= factor

    def _control_output(
        self,
        topology: NetworkTopology,
        runtime: _LoopRuntime,
        levels: Mapping[str, float],
        inflows: Mapping[str, float],
        outflows: Mapping[str, float],
        precipitation: Mapping[str, float],
        evaporation: Mapping[str, float],
        dt: float,
    ) -> Tuple[float, bool]:
        """计算控制回路的总流量设定值，返回 (流量, 是否限幅)"""
        loop = runtime.loop
        level = levels[loop.area]
        capacity = sum(topology.gemaal_capacity(g, levels) for g in runtime.gemalen)
        draining = loop.direction == "outgoing"

        if loop.strategy == ControlStrategy.PID:
            fraction = runtime.pid.step(runtime.setpoint, level, dt)
            return fraction * capacity, runtime.pid.state.saturated

        if loop.strategy == ControlStrategy.ON_OFF:
            on = level > runtime.setpoint if draining else level < runtime.setpoint
            return (capacity if on else 0.0), False

        if loop.strategy == ControlStrategy.BALANCED:
            deviation = level - runtime.setpoint if draining else runtime.setpoint - level
            if deviation <= 0:
                return 0.0, False
            margin = topology.area(loop.area).margin
            ratio = min(deviation / margin, 1.0) if margin > 0 else 1.0
            if draining:
                observed = inflows[loop.area] + precipitation[loop.area]
            else:
                observed = outflows[loop.area] + evaporation[loop.area]
            raw = capacity * ratio * loop.balance_factor + observed * (1.0 - loop.balance_factor)
            return min(raw, capacity), raw > capacity

        raise TypeError(f"未知的控制策略: {loop.strategy}")


__all__ = [
    'BoundaryInputs',
    'ControlStrategy',
    'ControlLoop',
    'control_loops_from_config',
    'SimulationResult',
    'SimulationOutcome',
    'NetworkSimulator',
]
