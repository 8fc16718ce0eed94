"""
控制效果评价模块

提供仿真结果的控制性能指标，包括：
- 水位跟踪指标（IAE, ISE, ITAE, MAE, RMSE, 峰值偏差等）
- 泵站控制输出平滑度指标（TV, 变化率等）
- 稳态指标与综合性能评分
- 各 Peilgebied 统计汇总（含 drooglegging 超限）
"""

from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .defaults import CONTROL_EVALUATION_DEFAULTS
from .drooglegging import calculate_drooglegging, find_max_level
from .exceptions import InvalidParameterError


class LevelControlEvaluator:
    """水位控制性能评价器"""

    def __init__(self, setpoints: Dict[str, float]):
        """
        Args:
            setpoints: {Peilgebied code: 目标水位}
        """
        self.setpoints = dict(setpoints)

    def evaluate_tracking(self, result) -> Dict[str, Dict[str, float]]:
        """
        计算水位跟踪指标

        Args:
            result: SimulationResult

        Returns:
            {area_code: {metric: value}}
        """
        results = {}
        for code, target in self.setpoints.items():
            series = result.level_series(code)
            time = series.index.to_numpy(dtype=float)
            error = series.to_numpy(dtype=float) - target
            dt = np.diff(time)
            dt = np.append(dt, dt[-1] if len(dt) > 0 else 1.0)

            metrics = {}
            metrics['IAE'] = float(np.sum(np.abs(error) * dt))
            metrics['ISE'] = float(np.sum(error ** 2 * dt))
            metrics['ITAE'] = float(np.sum(time * np.abs(error) * dt))
            metrics['MAE'] = float(np.mean(np.abs(error)))
            metrics['RMSE'] = float(np.sqrt(np.mean(error ** 2)))
            metrics['max_abs_error'] = float(np.max(np.abs(error)))
            metrics['max_positive_dev'] = float(np.max(error))
            metrics['max_negative_dev'] = float(np.min(error))
            metrics['std'] = float(np.std(error))
            # 超调量 / 下冲量
            metrics['overshoot'] = max(float(np.max(error)), 0.0)
            metrics['undershoot'] = max(-float(np.min(error)), 0.0)

            results[code] = metrics
        return results

    def evaluate_control_smoothness(self, result) -> Dict[str, Dict[str, float]]:
        """
        评估控制输出（m³/s）的平滑度

        Returns:
            {area_code: {metric: value}}，没有控制输出的区域不列出
        """
        results = {}
        for code in self.setpoints:
            control = np.array(
                [step.controller_outputs[code] for step in result if code in step.controller_outputs],
                dtype=float,
            )
            if len(control) == 0:
                continue
            changes = np.diff(control)
            metrics = {}
            metrics['TV'] = float(np.sum(np.abs(changes)))
            metrics['avg_change_rate'] = float(np.mean(np.abs(changes))) if len(changes) else 0.0
            metrics['max_change_rate'] = float(np.max(np.abs(changes))) if len(changes) else 0.0
            metrics['direction_changes'] = int(np.sum(np.abs(np.diff(np.sign(changes))) > 0))
            metrics['control_energy'] = float(np.sum(control ** 2 * result.dt_seconds))
            metrics['range'] = float(np.max(control) - np.min(control))
            results[code] = metrics
        return results

    def evaluate_settling(
        self,
        result,
        code: str,
        settling_threshold: Optional[float] = None,
        settling_window: Optional[int] = None,
    ) -> Dict[str, float]:
        """
        评估调节时间和稳态性能

        Args:
            result: SimulationResult
            code: Peilgebied code
            settling_threshold: 稳态误差带（m，绝对值），缺省取 CONTROL_EVALUATION_DEFAULTS
            settling_window: 计算稳态误差的末尾样本数，缺省取 CONTROL_EVALUATION_DEFAULTS

        Returns:
            settling_time（秒）、steady_state_error（m）、time_in_band_ratio
        """
        if settling_threshold is None:
            settling_threshold = CONTROL_EVALUATION_DEFAULTS.settling_threshold
        if settling_window is None:
            settling_window = CONTROL_EVALUATION_DEFAULTS.settling_window
        if int(settling_window) < 1:
            raise InvalidParameterError(f"稳态窗口 {settling_window} 至少为1")
        settling_window = int(settling_window)

        series = result.level_series(code)
        values = series.to_numpy(dtype=float)
        time = series.index.to_numpy(dtype=float)
        error = np.abs(values - self.setpoints[code])

        # 调节时间：最后一次离开误差带之后的时刻
        in_band = error <= settling_threshold
        if np.any(~in_band):
            last_out = int(np.flatnonzero(~in_band)[-1])
            settling_time = time[last_out + 1] if last_out + 1 < len(time) else np.inf
        else:
            settling_time = time[0]

        # 稳态误差：最后 settling_window 个样本的平均误差
        steady_state_error = float(np.mean(error[-settling_window:]))

        return {
            'settling_time': float(settling_time),
            'steady_state_error': steady_state_error,
            'time_in_band_ratio': float(np.sum(in_band) / len(in_band)),
        }

    def overall_score(
        self,
        tracking: Dict[str, Dict[str, float]],
        smoothness: Dict[str, Dict[str, float]],
        weights: Optional[Dict[str, float]] = None,
    ) -> Dict[str, float]:
        """
        计算综合性能评分（0-100）

        MAE 达到 normalization_threshold_error 时跟踪分为0，
        平均变化率以 normalization_threshold_change 归一化。
        """
        if weights is None:
            weights = {
                "tracking": CONTROL_EVALUATION_DEFAULTS.tracking_weight,
                "smoothness": CONTROL_EVALUATION_DEFAULTS.smoothness_weight,
            }

        mae_values = [m['MAE'] for m in tracking.values() if 'MAE' in m]
        mean_mae = float(np.mean(mae_values)) if mae_values else 0.0

        rate_values = [m['avg_change_rate'] for m in smoothness.values() if 'avg_change_rate' in m]
        mean_rate = float(np.mean(rate_values)) if rate_values else 0.0

        tracking_score = max(
            0.0, 100.0 * (1 - mean_mae / CONTROL_EVALUATION_DEFAULTS.normalization_threshold_error)
        )
        smoothness_score = max(
            0.0, 100.0 * (1 - mean_rate / CONTROL_EVALUATION_DEFAULTS.normalization_threshold_change)
        )
        score = weights["tracking"] * tracking_score + weights["smoothness"] * smoothness_score

        return {
            "score": score,
            "tracking_score": tracking_score,
            "smoothness_score": smoothness_score,
            "mean_mae": mean_mae,
            "mean_change_rate": mean_rate,
        }


def area_statistics(result, topology=None) -> pd.DataFrame:
    """
    各 Peilgebied 的统计汇总

    Args:
        result: SimulationResult
        topology: 提供时按 ground_level / 目标水位 / margin 计算 drooglegging 最大超限

    Returns:
        DataFrame，每行一个 Peilgebied
    """
    rows: List[dict] = []
    dt = result.dt_seconds
    for code in result.area_codes:
        series = result.level_series(code)
        peak_level, peak_time = find_max_level(series.tolist(), series.index.tolist())
        row = {
            "area": code,
            "min_level": float(series.min()),
            "max_level": float(peak_level),
            "max_level_time": float(peak_time),
            "mean_level": float(series.mean()),
            "final_level": float(series.iloc[-1]),
            "total_inflow_m3": sum(step.inflows[code] for step in result) * dt,
            "total_outflow_m3": sum(step.outflows[code] for step in result) * dt,
            "total_deficit_m3": sum(step.deficits.get(code, 0.0) for step in result),
            "saturated_steps": sum(1 for step in result if code in step.saturated),
        }
        if topology is not None:
            area = topology.area(code)
            exceedance_cm = None
            if area.ground_level is not None:
                result_at_peak = calculate_drooglegging(
                    area.ground_level, row["max_level"], area.target_level(), area.margin * 100.0
                )
                exceedance_cm = max(result_at_peak.exceedance_cm, 0.0)
            row["max_exceedance_cm"] = exceedance_cm
        rows.append(row)
    return pd.DataFrame(rows)


__all__ = ['LevelControlEvaluator', 'area_statistics']
