"""
peilbeheer网络配置的数据结构定义。

基于 TypedDict 约束 Peilgebied、连接与控制回路，
dict 配置经 validate_network_config 校验后由 NetworkTopology.from_config 构建。
"""

from typing import Dict, List, Literal, Tuple, TypedDict


class AreaSpec(TypedDict, total=False):
    """
    Peilgebied 定义。

    - code: 全局唯一标识；
    - surface_area: 水面面积（m²）；
    - target_level_summer / target_level_winter: 目标水位（m NAP）；
    - fixed_level: 固定水位（外海、boezem 等刚性水位区）；
    - current_level / current_storage_volume: 初始状态，二者择一；
    - bottom_level: 蓄量为零时的水位；
    - ground_level: 地面高程（maaiveld）；
    - margin: 目标水位允许偏差（m）；
    - catchment_area: 降雨换算面积（m²）。
    """

    code: str
    name: str
    surface_area: float
    target_level_summer: float
    target_level_winter: float
    fixed_level: float
    current_level: float
    current_storage_volume: float
    bottom_level: float
    ground_level: float
    margin: float
    catchment_area: float


class ConnectionAttrSpec(TypedDict, total=False):
    """
    连接属性配置（按类型取用）。

    - capacity: 流量上限（m³/s）；
    - capacity_curve: 泵站扬程-容量曲线（扬程断点, 容量）；
    - controllable / fixed_flow: 泵站是否受控及非受控时的固定流量；
    - lift_head / efficiency: 泵站扬程与效率，用于能耗计算；
    - crest_level / discharge_coefficient: 溢流堰堰顶高程与流量系数；
    - conductance: 止回阀与开放连接的导水系数（m²/s）。
    """

    capacity: float
    capacity_curve: Tuple[List[float], List[float]]
    controllable: bool
    fixed_flow: float
    lift_head: float
    efficiency: float
    crest_level: float
    discharge_coefficient: float
    conductance: float


class ConnectionSpec(TypedDict, total=False):
    """连接定义"""

    id: str
    kind: Literal["gemaal", "overstort", "keerklep", "open_verbinding"]
    from_area: str
    to_area: str
    attributes: ConnectionAttrSpec


class PidSpec(TypedDict, total=False):
    kp: float
    ki: float
    kd: float


class ControlSpec(TypedDict, total=False):
    """
    控制回路定义。

    - area: 受控 Peilgebied；
    - strategy: 控制策略；
    - setpoint: 目标水位，缺省取该区夏季目标水位；
    - pid: PID增益；
    - balance_factor: BALANCED 策略的分配系数；
    - direction: "outgoing"（排水，缺省）或 "incoming"（补水），同一区每个方向至多一个回路；
    - season: 未给出 setpoint 时取哪个季节的目标水位，缺省 "summer"。
    """

    area: str
    strategy: Literal["pid", "on_off", "balanced"]
    setpoint: float
    pid: PidSpec
    balance_factor: float
    direction: Literal["outgoing", "incoming"]
    season: Literal["summer", "winter"]


class NetworkConfig(TypedDict, total=False):
    """网络配置"""

    name: str
    areas: List[AreaSpec]
    connections: List[ConnectionSpec]
    controls: List[ControlSpec]
    metadata: Dict[str, str]


AREA_FIELDS = frozenset(AreaSpec.__annotations__)

CONNECTION_ATTRIBUTES: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    # kind: (必需属性, 可选属性)
    "gemaal": (
        ("capacity",),
        ("capacity_curve", "controllable", "fixed_flow", "lift_head", "efficiency"),
    ),
    "overstort": (("crest_level",), ("discharge_coefficient", "capacity")),
    "keerklep": (("conductance",), ("capacity",)),
    "open_verbinding": (("conductance",), ("capacity",)),
}

CONTROL_STRATEGIES = ("pid", "on_off", "balanced")
CONTROL_DIRECTIONS = ("outgoing", "incoming")
SEASONS = ("summer", "winter")


__all__ = [
    'AreaSpec',
    'ConnectionAttrSpec',
    'ConnectionSpec',
    'PidSpec',
    'ControlSpec',
    'NetworkConfig',
    'AREA_FIELDS',
    'CONNECTION_ATTRIBUTES',
    'CONTROL_STRATEGIES',
    'CONTROL_DIRECTIONS',
    'SEASONS',
]
