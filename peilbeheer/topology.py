"""
Peilgebied网络拓扑

以数组（arena）+ 索引映射保存 Peilgebied 与连接：
- areas / connections 为有序列表，code/id 通过字典映射到下标；
- 连接以 from_area / to_area 的 code 引用 Peilgebied，不持有对象引用；
- 构建时完成重复ID、悬空引用与 Keerklep 环路检查，拓扑之后只读。
"""

import warnings
from collections import deque
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from .exceptions import CyclicConstraintError, InvalidParameterError, TopologyError
from .models import (
    Connection,
    Gemaal,
    Keerklep,
    OpenVerbinding,
    Overstort,
    Peilgebied,
    connection_kind,
)
from .schema import AREA_FIELDS, CONNECTION_ATTRIBUTES, CONTROL_DIRECTIONS
from .validation import validate_network_config

DIRECTIONS = CONTROL_DIRECTIONS


class NetworkTopology:
    """Peilgebied 与连接组成的有向网络"""

    def __init__(
        self,
        areas: Sequence[Peilgebied],
        connections: Iterable[Connection] = (),
        name: Optional[str] = None,
    ):
        """
        Args:
            areas: Peilgebied 列表
            connections: 连接列表
            name: 网络名称

        Raises:
            TopologyError: code/id 重复或连接引用不存在的 Peilgebied
            CyclicConstraintError: Keerklep 构成有向环
            TypeError: 未知的连接类型
        """
        self.name = name
        self.areas: List[Peilgebied] = list(areas)
        self.connections: List[Connection] = list(connections)

        self._area_index: Dict[str, int] = {}
        for idx, area in enumerate(self.areas):
            if area.code in self._area_index:
                raise TopologyError(f"Peilgebied code 重复: {area.code}")
            self._area_index[area.code] = idx

        self._connection_index: Dict[str, int] = {}
        self._outgoing: List[List[int]] = [[] for _ in self.areas]
        self._incoming: List[List[int]] = [[] for _ in self.areas]
        for idx, conn in enumerate(self.connections):
            kind = connection_kind(conn)
            if conn.id in self._connection_index:
                raise TopologyError(f"连接ID重复: {conn.id}")
            if conn.from_area not in self._area_index:
                raise TopologyError(f"{kind} '{conn.id}' 的起点 '{conn.from_area}' 不存在")
            if conn.to_area not in self._area_index:
                raise TopologyError(f"{kind} '{conn.id}' 的终点 '{conn.to_area}' 不存在")
            self._connection_index[conn.id] = idx
            self._outgoing[self._area_index[conn.from_area]].append(idx)
            self._incoming[self._area_index[conn.to_area]].append(idx)

        cycle = self._find_keerklep_cycle()
        if cycle is not None:
            raise CyclicConstraintError(
                f"Keerklep 构成环路: {' -> '.join(cycle)}", cycle=cycle
            )

        isolated = [
            area.code
            for idx, area in enumerate(self.areas)
            if not self._outgoing[idx] and not self._incoming[idx]
        ]
        if isolated and self.connections:
            warnings.warn(
                f"检测到孤立 Peilgebied（未连接任何连接）: {', '.join(isolated)}"
            )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "NetworkTopology":
        """
        由 dict 配置构建拓扑

        Args:
            config: 网络配置（见 schema.NetworkConfig）

        Returns:
            NetworkTopology
        """
        validate_network_config(config)

        areas = [
            Peilgebied(**{k: v for k, v in area.items() if k in AREA_FIELDS})
            for area in config["areas"]
        ]
        connections = [
            _connection_from_spec(spec) for spec in config.get("connections", [])
        ]
        return cls(areas, connections, name=config.get("name"))

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    @property
    def area_codes(self) -> List[str]:
        return [area.code for area in self.areas]

    def index_of(self, code: str) -> int:
        try:
            return self._area_index[code]
        except KeyError:
            raise TopologyError(f"Peilgebied '{code}' 不存在")

    def area(self, code: str) -> Peilgebied:
        return self.areas[self.index_of(code)]

    def connection(self, conn_id: str) -> Connection:
        try:
            return self.connections[self._connection_index[conn_id]]
        except KeyError:
            raise TopologyError(f"连接 '{conn_id}' 不存在")

    def outgoing(self, code: str) -> List[Connection]:
        return [self.connections[i] for i in self._outgoing[self.index_of(code)]]

    def incoming(self, code: str) -> List[Connection]:
        return [self.connections[i] for i in self._incoming[self.index_of(code)]]

    def is_connected(self) -> bool:
        """忽略方向后网络是否连通"""
        if not self.areas:
            return True
        seen = {0}
        queue = deque([0])
        while queue:
            idx = queue.popleft()
            for conn_idx in self._outgoing[idx] + self._incoming[idx]:
                conn = self.connections[conn_idx]
                for code in (conn.from_area, conn.to_area):
                    neighbour = self._area_index[code]
                    if neighbour not in seen:
                        seen.add(neighbour)
                        queue.append(neighbour)
        return len(seen) == len(self.areas)

    def _find_keerklep_cycle(self) -> Optional[List[str]]:
        """在仅由 Keerklep 组成的有向子图中查找环路，返回环路路径"""
        graph: Dict[str, List[str]] = {area.code: [] for area in self.areas}
        for conn in self.connections:
            if isinstance(conn, Keerklep):
                graph[conn.from_area].append(conn.to_area)

        white, grey, black = 0, 1, 2
        color = dict.fromkeys(graph, white)
        for start in graph:
            if color[start] != white:
                continue
            color[start] = grey
            path = [start]
            stack = [iter(graph[start])]
            while stack:
                child = next(stack[-1], None)
                if child is None:
                    color[path.pop()] = black
                    stack.pop()
                elif color[child] == grey:
                    return path[path.index(child):] + [child]
                elif color[child] == white:
                    color[child] = grey
                    path.append(child)
                    stack.append(iter(graph[child]))
        return None

    # ------------------------------------------------------------------
    # 连接流量
    # ------------------------------------------------------------------

    def gemaal_capacity(self, gemaal: Gemaal, levels: Optional[Mapping[str, float]] = None) -> float:
        """
        泵站当前容量

        有 capacity_curve 时按扬程 level(to) - level(from) 线性插值，
        否则（或未提供水位时）返回额定容量。
        """
        if gemaal.capacity_curve is None or levels is None:
            return gemaal.capacity
        heads, capacities = gemaal.capacity_curve
        head = levels[gemaal.to_area] - levels[gemaal.from_area]
        return float(np.interp(head, heads, capacities))

    def resolve_edge_flow(
        self,
        edge: Connection,
        levels: Mapping[str, float],
        setpoint: Optional[float] = None,
    ) -> float:
        """
        计算连接流量（m³/s，正值表示 from -> to）

        Args:
            edge: 连接
            levels: 各 Peilgebied 当前水位
            setpoint: 受控泵站的流量设定值；None 表示未受控

        Returns:
            连接流量

        Raises:
            TypeError: 未知的连接类型
        """
        h_from = levels[edge.from_area]
        h_to = levels[edge.to_area]

        if isinstance(edge, Gemaal):
            capacity = self.gemaal_capacity(edge, levels)
            if setpoint is not None and edge.controllable:
                flow = setpoint
            elif edge.fixed_flow is not None:
                flow = edge.fixed_flow
            else:
                flow = capacity
            return min(max(flow, 0.0), capacity)

        if isinstance(edge, Overstort):
            if h_from <= edge.crest_level:
                return 0.0
            head = h_from - max(edge.crest_level, h_to)
            if head <= 0:
                return 0.0
            flow = edge.discharge_coefficient * head ** 1.5
            if edge.capacity is not None:
                flow = min(flow, edge.capacity)
            return flow

        if isinstance(edge, Keerklep):
            flow = edge.conductance * (h_from - h_to)
            if flow <= 0:
                return 0.0
            if edge.capacity is not None:
                flow = min(flow, edge.capacity)
            return flow

        if isinstance(edge, OpenVerbinding):
            flow = edge.conductance * (h_from - h_to)
            if edge.capacity is not None:
                flow = min(max(flow, -edge.capacity), edge.capacity)
            return flow

        raise TypeError(f"未知的连接类型: {type(edge).__name__}")

    # ------------------------------------------------------------------
    # 协调控制
    # ------------------------------------------------------------------

    def controllable_gemalen(self, code: str, direction: str = "outgoing") -> List[Gemaal]:
        """Peilgebied 的受控泵站（outgoing: 排水，incoming: 补水）"""
        if direction == "outgoing":
            candidates = self.outgoing(code)
        elif direction == "incoming":
            candidates = self.incoming(code)
        else:
            raise InvalidParameterError(
                f"方向 '{direction}' 无效。有效方向: {', '.join(DIRECTIONS)}"
            )
        return [c for c in candidates if isinstance(c, Gemaal) and c.controllable]

    def controllable_capacity(
        self,
        code: str,
        direction: str = "outgoing",
        levels: Optional[Mapping[str, float]] = None,
    ) -> float:
        """Peilgebied 受控泵站的总容量"""
        return sum(
            self.gemaal_capacity(g, levels) for g in self.controllable_gemalen(code, direction)
        )

    def allocate_setpoint(
        self,
        total: float,
        gemalen: Sequence[Gemaal],
        levels: Optional[Mapping[str, float]] = None,
    ) -> Dict[str, float]:
        """
        将总流量设定值按各泵站容量比例分配

        Args:
            total: 总流量（m³/s），截断到 [0, 总容量]
            gemalen: 参与分配的泵站
            levels: 当前水位（用于容量曲线）

        Returns:
            {gemaal_id: 分配流量}
        """
        capacities = [self.gemaal_capacity(g, levels) for g in gemalen]
        total_capacity = sum(capacities)
        if total_capacity <= 0:
            return {g.id: 0.0 for g in gemalen}
        total = min(max(total, 0.0), total_capacity)
        return {
            g.id: total * capacity / total_capacity
            for g, capacity in zip(gemalen, capacities)
        }


def _connection_from_spec(spec: Dict[str, Any]) -> Connection:
    """由连接配置构建连接对象"""
    kind = spec["kind"]
    required, optional = CONNECTION_ATTRIBUTES[kind]
    known = set(required) | set(optional)
    attrs = {k: v for k, v in spec.get("attributes", {}).items() if k in known}
    common = dict(id=spec["id"], from_area=spec["from_area"], to_area=spec["to_area"])

    if kind == "gemaal":
        curve = attrs.pop("capacity_curve", None)
        if curve is not None:
            attrs["capacity_curve"] = (tuple(curve[0]), tuple(curve[1]))
        return Gemaal(**common, **attrs)
    if kind == "overstort":
        return Overstort(**common, **attrs)
    if kind == "keerklep":
        return Keerklep(**common, **attrs)
    if kind == "open_verbinding":
        return OpenVerbinding(**common, **attrs)
    raise TypeError(f"未知的连接类型: {kind}")


__all__ = ['NetworkTopology', 'DIRECTIONS']
