"""
结果导出：仿真结果与泵站调度导出为 CSV / JSON（基于 pandas）
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

import pandas as pd

from .defaults import EXPORT_DEFAULTS
from .evaluation import area_statistics
from .models import PumpSchedule

PathLike = Union[str, Path]


def schedule_to_dataframe(schedule: PumpSchedule) -> pd.DataFrame:
    """泵站调度转换为 DataFrame（每行一个小时）"""
    rows = [
        {
            "hour_start": entry.hour_start,
            "pump_fraction": entry.pump_fraction,
            "flow_m3s": entry.pump_fraction * schedule.capacity,
            "expected_cost": entry.expected_cost,
            "expected_level": entry.expected_level,
        }
        for entry in schedule
    ]
    columns = ["hour_start", "pump_fraction", "flow_m3s", "expected_cost", "expected_level"]
    return pd.DataFrame(rows, columns=columns)


def _write_csv(df: pd.DataFrame, path: Optional[PathLike], decimals: Optional[int], index: bool) -> str:
    decimals = EXPORT_DEFAULTS.decimals if decimals is None else decimals
    # 只对数值列取整，时间戳等列原样输出
    numeric = df.select_dtypes(include="number").columns
    text = df.round({column: decimals for column in numeric}).to_csv(
        sep=EXPORT_DEFAULTS.csv_separator,
        header=EXPORT_DEFAULTS.csv_header,
        index=index,
    )
    if path is not None:
        Path(path).write_text(text, encoding="utf-8")
    return text


def simulation_to_csv(result, path: Optional[PathLike] = None, decimals: Optional[int] = None) -> str:
    """
    仿真结果（长表，每行一个时间步 × Peilgebied）导出为 CSV

    Args:
        result: SimulationResult
        path: 输出文件，None 时只返回文本
        decimals: 小数位数，缺省 EXPORT_DEFAULTS.decimals

    Returns:
        CSV 文本
    """
    return _write_csv(result.to_dataframe(), path, decimals, index=False)


def edge_flows_to_csv(result, path: Optional[PathLike] = None, decimals: Optional[int] = None) -> str:
    """连接流量宽表导出为 CSV（首列 time_seconds）"""
    return _write_csv(result.edge_flow_dataframe(), path, decimals, index=True)


def schedule_to_csv(schedule: PumpSchedule, path: Optional[PathLike] = None, decimals: Optional[int] = None) -> str:
    """泵站调度导出为 CSV"""
    return _write_csv(schedule_to_dataframe(schedule), path, decimals, index=False)


def _records(df: pd.DataFrame) -> Any:
    return json.loads(df.to_json(orient="records", date_format="iso"))


def simulation_to_json(
    result,
    path: Optional[PathLike] = None,
    topology=None,
    include_statistics: bool = True,
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    """
    仿真结果导出为 JSON

    结构: {"metadata": {...}, "statistics": [...], "steps": [...], "edge_flows": [...]}

    Args:
        result: SimulationResult
        path: 输出文件，None 时只返回文本
        topology: 提供时统计中包含 drooglegging 超限
        include_statistics: 是否包含各 Peilgebied 统计
        metadata: 附加元数据

    Returns:
        JSON 文本
    """
    payload: Dict[str, Any] = {
        "metadata": {
            "dt_seconds": result.dt_seconds,
            "n_steps": len(result),
            "areas": list(result.area_codes),
            "start_time": result.start_time.isoformat() if result.start_time else None,
            **(metadata or {}),
        },
    }
    if include_statistics:
        payload["statistics"] = _records(area_statistics(result, topology))
    payload["steps"] = _records(result.to_dataframe())
    payload["edge_flows"] = _records(result.edge_flow_dataframe().reset_index())

    text = json.dumps(payload, ensure_ascii=False, indent=2)
    if path is not None:
        Path(path).write_text(text, encoding="utf-8")
    return text


def schedule_to_json(schedule: PumpSchedule, path: Optional[PathLike] = None) -> str:
    """泵站调度导出为 JSON（含总电费）"""
    payload = {
        "capacity_m3s": schedule.capacity,
        "total_cost": schedule.total_cost,
        "entries": _records(schedule_to_dataframe(schedule)),
    }
    text = json.dumps(payload, ensure_ascii=False, indent=2)
    if path is not None:
        Path(path).write_text(text, encoding="utf-8")
    return text


__all__ = [
    'schedule_to_dataframe',
    'simulation_to_csv',
    'edge_flows_to_csv',
    'schedule_to_csv',
    'simulation_to_json',
    'schedule_to_json',
]
