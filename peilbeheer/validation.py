"""
配置验证模块：验证 peilbeheer 网络配置的完整性和正确性
"""
import math
import warnings
from typing import Any, Dict, Set, Tuple

from .exceptions import ConfigurationError, InvalidParameterError, TopologyError
from .schema import (
    AREA_FIELDS,
    CONNECTION_ATTRIBUTES,
    CONTROL_DIRECTIONS,
    CONTROL_STRATEGIES,
    SEASONS,
)


def validate_network_config(config: Dict[str, Any]) -> None:
    """
    验证网络配置的完整性和正确性

    Args:
        config: 网络配置字典（见 schema.NetworkConfig）

    Raises:
        ConfigurationError: 配置缺失或格式错误
        InvalidParameterError: 参数取值无效
        TopologyError: 拓扑错误（重复ID、引用不存在的 Peilgebied）
    """
    _validate_basic_structure(config)
    _validate_areas(config)
    _validate_connections(config)
    _validate_controls(config)


def _number(value: Any, what: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidParameterError(f"{what} 的值 '{value}' 不是有效数字")
    if not math.isfinite(number):
        raise InvalidParameterError(f"{what} 的值 '{value}' 必须是有限数值")
    return number


def _validate_basic_structure(config: Dict[str, Any]) -> None:
    """验证基本结构"""
    if not isinstance(config, dict):
        raise ConfigurationError("网络配置必须是字典类型")

    if "areas" not in config:
        raise ConfigurationError("配置缺少必需字段: areas")

    if not isinstance(config.get("areas"), list):
        raise ConfigurationError("'areas' 必须是列表类型")

    for key in ("connections", "controls"):
        if key in config and not isinstance(config[key], list):
            raise ConfigurationError(f"'{key}' 必须是列表类型")


def _validate_areas(config: Dict[str, Any]) -> None:
    """验证 Peilgebied 配置"""
    areas = config["areas"]
    if len(areas) == 0:
        raise InvalidParameterError("网络至少需要一个 Peilgebied")

    codes: Set[str] = set()
    for idx, area in enumerate(areas):
        if not isinstance(area, dict):
            raise ConfigurationError(f"Peilgebied #{idx} 必须是字典类型")
        if "code" not in area:
            raise ConfigurationError(f"Peilgebied #{idx} 缺少 'code' 字段")
        code = area["code"]
        if code in codes:
            raise TopologyError(f"Peilgebied code 重复: {code}")
        codes.add(code)

        if "surface_area" not in area:
            raise ConfigurationError(f"Peilgebied '{code}' 缺少 'surface_area' 字段")
        if _number(area["surface_area"], f"Peilgebied '{code}' surface_area") <= 0:
            raise InvalidParameterError(
                f"Peilgebied '{code}' 的面积 {area['surface_area']} 必须大于0"
            )

        unknown = set(area) - AREA_FIELDS
        if unknown:
            warnings.warn(
                f"Peilgebied '{code}' 包含未知字段: {', '.join(sorted(unknown))}"
            )

        margin = area.get("margin")
        if margin is not None and _number(margin, f"Peilgebied '{code}' margin") < 0:
            raise InvalidParameterError(f"Peilgebied '{code}' 的 margin 不能为负")


def _validate_connections(config: Dict[str, Any]) -> None:
    """验证连接配置"""
    connections = config.get("connections", [])
    codes = {area["code"] for area in config["areas"]}

    ids: Set[str] = set()
    for idx, conn in enumerate(connections):
        if not isinstance(conn, dict):
            raise ConfigurationError(f"连接 #{idx} 必须是字典类型")
        if "id" not in conn:
            raise ConfigurationError(f"连接 #{idx} 缺少 'id' 字段")

        conn_id = conn["id"]
        if conn_id in ids:
            raise TopologyError(f"连接ID重复: {conn_id}")
        ids.add(conn_id)

        kind = conn.get("kind")
        if kind not in CONNECTION_ATTRIBUTES:
            raise ConfigurationError(
                f"连接 '{conn_id}' 的类型 '{kind}' 无效。"
                f"有效类型: {', '.join(sorted(CONNECTION_ATTRIBUTES))}"
            )

        for key in ("from_area", "to_area"):
            if key not in conn:
                raise ConfigurationError(f"连接 '{conn_id}' 缺少 '{key}' 字段")
        if conn["from_area"] not in codes:
            raise TopologyError(f"连接 '{conn_id}' 的起点 '{conn['from_area']}' 不存在")
        if conn["to_area"] not in codes:
            raise TopologyError(f"连接 '{conn_id}' 的终点 '{conn['to_area']}' 不存在")
        if conn["from_area"] == conn["to_area"]:
            raise TopologyError(f"连接 '{conn_id}' 的起点和终点相同: {conn['from_area']}")

        attributes = conn.get("attributes", {})
        if not isinstance(attributes, dict):
            raise ConfigurationError(f"连接 '{conn_id}' 的 attributes 必须是字典")

        required, optional = CONNECTION_ATTRIBUTES[kind]
        missing = [name for name in required if name not in attributes]
        if missing:
            raise ConfigurationError(
                f"连接 '{conn_id}' ({kind}) 缺少属性: {', '.join(missing)}"
            )
        unknown = set(attributes) - set(required) - set(optional)
        if unknown:
            warnings.warn(
                f"连接 '{conn_id}' ({kind}) 包含未知属性: {', '.join(sorted(unknown))}"
            )

        for name in ("capacity", "conductance", "discharge_coefficient", "fixed_flow"):
            value = attributes.get(name)
            if value is not None and _number(value, f"连接 '{conn_id}' {name}") < 0:
                raise InvalidParameterError(
                    f"连接 '{conn_id}' 的 {name} {value} 不能为负"
                )

        curve = attributes.get("capacity_curve")
        if curve is not None:
            if not isinstance(curve, (list, tuple)) or len(curve) != 2:
                raise InvalidParameterError(
                    f"连接 '{conn_id}' 的 capacity_curve 必须是长度为2的元组"
                )
            heads, capacities = curve
            if len(heads) < 2 or len(heads) != len(capacities):
                raise InvalidParameterError(
                    f"连接 '{conn_id}' 的 capacity_curve 至少需要2个断点且长度一致"
                )


def _validate_controls(config: Dict[str, Any]) -> None:
    """验证控制回路配置"""
    controls = config.get("controls", [])
    codes = {area["code"] for area in config["areas"]}

    seen: Set[Tuple[str, str]] = set()
    for idx, control in enumerate(controls):
        if not isinstance(control, dict):
            raise ConfigurationError(f"控制回路 #{idx} 必须是字典类型")
        area = control.get("area")
        if area is None:
            raise ConfigurationError(f"控制回路 #{idx} 缺少 'area' 字段")
        if area not in codes:
            raise TopologyError(f"控制回路 #{idx} 的 Peilgebied '{area}' 不存在")

        direction = control.get("direction", "outgoing")
        if direction not in CONTROL_DIRECTIONS:
            raise ConfigurationError(
                f"控制回路 '{area}' 的方向 '{direction}' 无效。"
                f"有效方向: {', '.join(CONTROL_DIRECTIONS)}"
            )
        if (area, direction) in seen:
            raise ConfigurationError(f"Peilgebied '{area}' 的 {direction} 方向定义了多个控制回路")
        seen.add((area, direction))

        season = control.get("season", "summer")
        if season not in SEASONS:
            raise ConfigurationError(
                f"控制回路 '{area}' 的季节 '{season}' 无效。有效季节: {', '.join(SEASONS)}"
            )

        strategy = control.get("strategy", "pid")
        if strategy not in CONTROL_STRATEGIES:
            raise ConfigurationError(
                f"控制回路 '{area}' 的策略 '{strategy}' 无效。"
                f"有效策略: {', '.join(CONTROL_STRATEGIES)}"
            )

        pid = control.get("pid", {})
        if not isinstance(pid, dict):
            raise ConfigurationError(f"控制回路 '{area}' 的 pid 必须是字典")
        for gain in ("kp", "ki", "kd"):
            if gain in pid:
                _number(pid[gain], f"控制回路 '{area}' {gain}")

        factor = control.get("balance_factor")
        if factor is not None:
            factor = _number(factor, f"控制回路 '{area}' balance_factor")
            if not 0 <= factor <= 1:
                raise InvalidParameterError(
                    f"控制回路 '{area}' 的 balance_factor {factor} 必须在 [0, 1] 之间"
                )


__all__ = ['validate_network_config']
