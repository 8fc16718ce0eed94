"""
peilbeheer数据模型

- Peilgebied: 水位管理区（节点）
- Gemaal / Overstort / Keerklep / OpenVerbinding: 连接类型（边），
  以 Union 形式组成带标签的和类型，由 NetworkTopology 穷举分派
- SimulationStep: 单个仿真时刻的记录
- EnergyPricePoint / PumpSchedule: 电价序列与优化后的泵站调度
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterator, Mapping, Optional, Sequence, Tuple, Union

from .defaults import OPTIMIZER_DEFAULTS, SIMULATION_DEFAULTS
from .exceptions import InvalidParameterError


def ensure_finite(name: str, value: float) -> float:
    """检查数值有限，否则抛出 InvalidParameterError"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidParameterError(f"{name} 不是有效数字: {value!r}")
    if not math.isfinite(number):
        raise InvalidParameterError(f"{name} 必须是有限数值: {value!r}")
    return number


class Season(Enum):
    """目标水位季节"""
    SUMMER = "summer"
    WINTER = "winter"


@dataclass
class Peilgebied:
    """
    水位管理区（Peilgebied）。

    - code: 全局唯一标识；
    - surface_area: 蓄水水面面积（m²，> 0）；
    - target_level_summer / target_level_winter: 夏季/冬季目标水位（m NAP）；
    - fixed_level: 固定水位（刚性水位区，例如外海），设置后报告水位恒为该值，
      current_level 只能缺省或等于 fixed_level；
    - current_level: 当前水位（m NAP），非固定水位区不得低于 bottom_level；
    - current_storage_volume: 当前蓄量（m³），缺省时由 current_level 推算；
    - bottom_level: 蓄量为零时对应的水位，level = bottom_level + volume / surface_area；
    - ground_level: 地面高程（maaiveld），用于计算 drooglegging；
    - margin: 目标水位上下允许偏差（m），缺省取 SIMULATION_DEFAULTS.default_margin；
    - catchment_area: 降雨/蒸发换算面积（m²），缺省为 surface_area。
    """

    code: str
    surface_area: float
    target_level_summer: float = 0.0
    target_level_winter: float = 0.0
    fixed_level: Optional[float] = None
    current_level: Optional[float] = None
    current_storage_volume: Optional[float] = None
    bottom_level: float = 0.0
    ground_level: Optional[float] = None
    margin: Optional[float] = None
    catchment_area: Optional[float] = None
    name: Optional[str] = None

    def __post_init__(self):
        self.surface_area = ensure_finite(f"Peilgebied '{self.code}' surface_area", self.surface_area)
        if self.surface_area <= 0:
            raise InvalidParameterError(
                f"Peilgebied '{self.code}' 的面积 {self.surface_area} 必须大于0"
            )
        self.bottom_level = ensure_finite(f"Peilgebied '{self.code}' bottom_level", self.bottom_level)
        if self.margin is None:
            self.margin = SIMULATION_DEFAULTS.default_margin
        self.margin = ensure_finite(f"Peilgebied '{self.code}' margin", self.margin)
        if self.margin < 0:
            raise InvalidParameterError(f"Peilgebied '{self.code}' 的 margin 不能为负")
        if self.catchment_area is not None and self.catchment_area <= 0:
            raise InvalidParameterError(
                f"Peilgebied '{self.code}' 的 catchment_area 必须大于0"
            )

        if self.fixed_level is not None:
            self.fixed_level = ensure_finite(f"Peilgebied '{self.code}' fixed_level", self.fixed_level)
            if self.current_level is not None and not math.isclose(
                float(self.current_level), self.fixed_level, abs_tol=1e-9
            ):
                raise InvalidParameterError(
                    f"Peilgebied '{self.code}' 的 current_level {self.current_level} "
                    f"与固定水位 {self.fixed_level} 不一致"
                )
            self.current_level = self.fixed_level
        elif self.current_level is None:
            if self.current_storage_volume is not None:
                self.current_level = self.level_at(self.current_storage_volume)
            else:
                self.current_level = self.target_level_summer
        self.current_level = ensure_finite(f"Peilgebied '{self.code}' current_level", self.current_level)
        if self.fixed_level is None and self.current_level < self.bottom_level:
            raise InvalidParameterError(
                f"Peilgebied '{self.code}' 的水位 {self.current_level} 低于 bottom_level {self.bottom_level}"
            )

        if self.current_storage_volume is None:
            self.current_storage_volume = self.volume_at(self.current_level)
        self.current_storage_volume = ensure_finite(
            f"Peilgebied '{self.code}' current_storage_volume", self.current_storage_volume
        )
        if self.current_storage_volume < 0:
            raise InvalidParameterError(
                f"Peilgebied '{self.code}' 的蓄量 {self.current_storage_volume} 不能为负"
            )

    @property
    def effective_catchment(self) -> float:
        return self.catchment_area if self.catchment_area is not None else self.surface_area

    def target_level(self, season: Season = Season.SUMMER) -> float:
        """目标水位（固定水位区返回固定水位）"""
        if self.fixed_level is not None:
            return self.fixed_level
        if season == Season.WINTER:
            return self.target_level_winter
        return self.target_level_summer

    def min_level(self, season: Season = Season.SUMMER) -> float:
        return self.target_level(season) - self.margin

    def max_level(self, season: Season = Season.SUMMER) -> float:
        return self.target_level(season) + self.margin

    def is_level_valid(self, level: float, season: Season = Season.SUMMER) -> bool:
        """水位是否在允许范围内"""
        return self.min_level(season) <= level <= self.max_level(season)

    def volume_at(self, level: float) -> float:
        """水位对应蓄量（低于 bottom_level 时为0）"""
        return max(0.0, (level - self.bottom_level) * self.surface_area)

    def level_at(self, volume: float) -> float:
        """蓄量对应水位"""
        if self.fixed_level is not None:
            return self.fixed_level
        return self.bottom_level + volume / self.surface_area


def _check_endpoints(kind: str, conn_id: str, from_area: str, to_area: str):
    if from_area == to_area:
        raise InvalidParameterError(
            f"{kind} '{conn_id}' 的起点和终点相同: {from_area}"
        )


def _check_non_negative(kind: str, conn_id: str, name: str, value: Optional[float]):
    if value is None:
        return
    number = ensure_finite(f"{kind} '{conn_id}' {name}", value)
    if number < 0:
        raise InvalidParameterError(f"{kind} '{conn_id}' 的 {name} {value} 不能为负")


@dataclass(frozen=True)
class Gemaal:
    """
    泵站（Gemaal）：主动、可控的单向连接。

    capacity_curve = ([扬程断点], [容量])，扬程定义为 level(to) - level(from)，
    在断点之间线性插值，超出范围取端点值。
    """

    id: str
    from_area: str
    to_area: str
    capacity: float
    capacity_curve: Optional[Tuple[Tuple[float, ...], Tuple[float, ...]]] = None
    controllable: bool = True
    fixed_flow: Optional[float] = None
    lift_head: Optional[float] = None
    efficiency: Optional[float] = None

    def __post_init__(self):
        _check_endpoints("Gemaal", self.id, self.from_area, self.to_area)
        if self.lift_head is None:
            object.__setattr__(self, "lift_head", OPTIMIZER_DEFAULTS.lift_head)
        if self.efficiency is None:
            object.__setattr__(self, "efficiency", OPTIMIZER_DEFAULTS.efficiency)
        _check_non_negative("Gemaal", self.id, "capacity", self.capacity)
        _check_non_negative("Gemaal", self.id, "fixed_flow", self.fixed_flow)
        _check_non_negative("Gemaal", self.id, "lift_head", self.lift_head)
        if not 0 < self.efficiency <= 1:
            raise InvalidParameterError(
                f"Gemaal '{self.id}' 的效率 {self.efficiency} 必须在 (0, 1] 之间"
            )
        if self.capacity_curve is not None:
            heads, capacities = self.capacity_curve
            if len(heads) < 2 or len(heads) != len(capacities):
                raise InvalidParameterError(
                    f"Gemaal '{self.id}' 的 capacity_curve 至少需要2个断点且长度一致"
                )
            if any(b <= a for a, b in zip(heads, heads[1:])):
                raise InvalidParameterError(
                    f"Gemaal '{self.id}' 的 capacity_curve 断点必须严格递增"
                )
            for value in capacities:
                _check_non_negative("Gemaal", self.id, "capacity_curve", value)
            object.__setattr__(
                self,
                "capacity_curve",
                (tuple(float(h) for h in heads), tuple(float(c) for c in capacities)),
            )


@dataclass(frozen=True)
class Overstort:
    """溢流堰（Overstort）：上游水位超过堰顶后被动出流"""

    id: str
    from_area: str
    to_area: str
    crest_level: float
    discharge_coefficient: float = 1.0
    capacity: Optional[float] = None

    def __post_init__(self):
        _check_endpoints("Overstort", self.id, self.from_area, self.to_area)
        ensure_finite(f"Overstort '{self.id}' crest_level", self.crest_level)
        _check_non_negative("Overstort", self.id, "discharge_coefficient", self.discharge_coefficient)
        _check_non_negative("Overstort", self.id, "capacity", self.capacity)


@dataclass(frozen=True)
class Keerklep:
    """止回阀（Keerklep）：只允许 from -> to 方向流动"""

    id: str
    from_area: str
    to_area: str
    conductance: float
    capacity: Optional[float] = None

    def __post_init__(self):
        _check_endpoints("Keerklep", self.id, self.from_area, self.to_area)
        _check_non_negative("Keerklep", self.id, "conductance", self.conductance)
        _check_non_negative("Keerklep", self.id, "capacity", self.capacity)


@dataclass(frozen=True)
class OpenVerbinding:
    """开放连接（OpenVerbinding）：按水头差双向流动，正值表示 from -> to"""

    id: str
    from_area: str
    to_area: str
    conductance: float
    capacity: Optional[float] = None

    def __post_init__(self):
        _check_endpoints("OpenVerbinding", self.id, self.from_area, self.to_area)
        _check_non_negative("OpenVerbinding", self.id, "conductance", self.conductance)
        _check_non_negative("OpenVerbinding", self.id, "capacity", self.capacity)


Connection = Union[Gemaal, Overstort, Keerklep, OpenVerbinding]

CONNECTION_KINDS: Dict[type, str] = {
    Gemaal: "gemaal",
    Overstort: "overstort",
    Keerklep: "keerklep",
    OpenVerbinding: "open_verbinding",
}


def connection_kind(connection: Connection) -> str:
    """连接类型名称"""
    try:
        return CONNECTION_KINDS[type(connection)]
    except KeyError:
        raise TypeError(f"未知的连接类型: {type(connection).__name__}")


@dataclass(frozen=True)
class SimulationStep:
    """
    单个仿真时刻记录（只追加，不可变）。

    各映射字段在构造时复制并包装为只读视图，写入会抛出 TypeError。
    inflows/outflows 为各 Peilgebied 的总入流/出流（m³/s，含边界输入），
    edge_flows 为各连接流量（正值 from -> to），controller_outputs 为各受控
    Peilgebied 按本步末水位计算、下一步生效的控制输出（m³/s），saturated 为本步输出被限幅的区域，
    deficits 为因蓄量不能为负而未能取出的水量（m³）。
    """

    index: int
    time_seconds: float
    levels: Mapping[str, float]
    volumes: Mapping[str, float]
    inflows: Mapping[str, float]
    outflows: Mapping[str, float]
    edge_flows: Mapping[str, float]
    controller_outputs: Mapping[str, float] = field(default_factory=dict)
    saturated: FrozenSet[str] = frozenset()
    deficits: Mapping[str, float] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    _MAPPING_FIELDS = ("levels", "volumes", "inflows", "outflows",
                       "edge_flows", "controller_outputs", "deficits")

    def __post_init__(self):
        for name in self._MAPPING_FIELDS:
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))
        object.__setattr__(self, "saturated", frozenset(self.saturated))

    # MappingProxyType 不能直接 pickle
    def __getstate__(self):
        state = dict(self.__dict__)
        for name in self._MAPPING_FIELDS:
            state[name] = dict(state[name])
        return state

    def __setstate__(self, state):
        for name, value in state.items():
            object.__setattr__(self, name, value)
        self.__post_init__()


@dataclass(frozen=True)
class EnergyPricePoint:
    """小时电价（€/MWh，可为负）"""

    hour_start: datetime
    price_eur_per_mwh: float

    def __post_init__(self):
        ensure_finite("price_eur_per_mwh", self.price_eur_per_mwh)


@dataclass(frozen=True)
class PumpScheduleEntry:
    """调度方案中的一个小时"""

    hour_start: datetime
    pump_fraction: float
    expected_cost: float
    expected_level: float


@dataclass(frozen=True)
class PumpSchedule:
    """优化后的泵站调度方案（不可变）"""

    entries: Tuple[PumpScheduleEntry, ...]
    capacity: float = 0.0

    def __iter__(self) -> Iterator[PumpScheduleEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> PumpScheduleEntry:
        return self.entries[index]

    @property
    def total_cost(self) -> float:
        return sum(entry.expected_cost for entry in self.entries)

    @property
    def fractions(self) -> Tuple[float, ...]:
        return tuple(entry.pump_fraction for entry in self.entries)

    def fraction_at(self, moment: datetime) -> float:
        """返回 moment 所在小时的泵站开度，方案范围外返回0"""
        for entry in self.entries:
            delta = (moment - entry.hour_start).total_seconds()
            if 0 <= delta < 3600:
                return entry.pump_fraction
        return 0.0

    def fraction_for_offset(self, seconds: float) -> float:
        """按距方案开始的秒数查询开度"""
        if not self.entries or seconds < 0:
            return 0.0
        index = int(seconds // 3600)
        if index >= len(self.entries):
            return 0.0
        return self.entries[index].pump_fraction


def price_values(prices: Sequence[EnergyPricePoint]) -> Tuple[float, ...]:
    return tuple(p.price_eur_per_mwh for p in prices)


__all__ = [
    'ensure_finite',
    'Season',
    'Peilgebied',
    'Gemaal',
    'Overstort',
    'Keerklep',
    'OpenVerbinding',
    'Connection',
    'CONNECTION_KINDS',
    'connection_kind',
    'SimulationStep',
    'EnergyPricePoint',
    'PumpScheduleEntry',
    'PumpSchedule',
    'price_values',
]
