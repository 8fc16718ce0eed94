"""
测试控制效果评价与结果导出
"""
import json
import sys
import warnings
from datetime import datetime, timezone
from pathlib import Path
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from peilbeheer.defaults import CONTROL_EVALUATION_DEFAULTS, update_defaults
from peilbeheer.evaluation import LevelControlEvaluator, area_statistics
from peilbeheer.exceptions import InvalidParameterError
from peilbeheer.export import (
    edge_flows_to_csv,
    schedule_to_csv,
    schedule_to_dataframe,
    schedule_to_json,
    simulation_to_csv,
    simulation_to_json,
)
from peilbeheer.models import Gemaal, Peilgebied, PumpSchedule, PumpScheduleEntry
from peilbeheer.simulator import BoundaryInputs, NetworkSimulator
from peilbeheer.topology import NetworkTopology

START = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def topology():
    return NetworkTopology(
        [
            Peilgebied(code="P", surface_area=10000.0, target_level_summer=0.0,
                       current_level=0.1, bottom_level=-2.0, ground_level=0.5),
            Peilgebied(code="Z", surface_area=1e6, fixed_level=1.0),
        ],
        [Gemaal(id="G", from_area="P", to_area="Z", capacity=0.5)],
    )


@pytest.fixture
def result(topology):
    boundary = BoundaryInputs(precipitation_mm_per_hour={"P": [20.0]})
    return NetworkSimulator().run(topology, 7200.0, 60.0, boundary, start_time=START)


class TestLevelControlEvaluator:
    """测试控制性能指标"""

    def test_constant_level(self):
        """水位恒等于目标时误差指标为0"""
        topology = NetworkTopology([Peilgebied(code="A", surface_area=100.0, current_level=0.5)])
        flat = NetworkSimulator().run(topology, 600.0, 60.0)
        metrics = LevelControlEvaluator({"A": 0.5}).evaluate_tracking(flat)["A"]

        assert metrics["IAE"] == 0.0
        assert metrics["MAE"] == 0.0
        assert metrics["overshoot"] == 0.0

    def test_tracking(self, result):
        metrics = LevelControlEvaluator({"P": 0.0}).evaluate_tracking(result)["P"]

        assert metrics["max_positive_dev"] == pytest.approx(0.1, abs=0.01)
        assert metrics["overshoot"] > 0
        assert metrics["RMSE"] >= metrics["MAE"]
        assert metrics["ISE"] >= 0

    def test_smoothness(self, result):
        smoothness = LevelControlEvaluator({"P": 0.0, "Z": 1.0}).evaluate_control_smoothness(result)

        assert "Z" not in smoothness
        assert smoothness["P"]["TV"] >= 0
        assert smoothness["P"]["range"] <= 0.5

    def test_settling(self, result):
        evaluator = LevelControlEvaluator({"P": 0.0})
        settling = evaluator.evaluate_settling(result, "P", settling_threshold=0.05)

        assert settling["settling_time"] > 0
        assert 0.0 <= settling["time_in_band_ratio"] <= 1.0

    def test_never_settles(self):
        """始终在误差带之外时调节时间为无穷"""
        topology = NetworkTopology([Peilgebied(code="A", surface_area=100.0, current_level=1.0)])
        flat = NetworkSimulator().run(topology, 600.0, 60.0)
        settling = LevelControlEvaluator({"A": 0.0}).evaluate_settling(flat, "A")
        assert settling["settling_time"] == float("inf")
        assert settling["time_in_band_ratio"] == 0.0

    def test_steady_state_window(self):
        """稳态误差取最后 settling_window 个样本的平均值"""
        topology = NetworkTopology([Peilgebied(code="A", surface_area=100.0, current_level=0.0)])
        # 每步水位上升 1 cm：0.00, 0.01, ..., 0.10
        boundary = BoundaryInputs(inflow_m3s={"A": [1.0 / 60.0]})
        rising = NetworkSimulator().run(topology, 600.0, 60.0, boundary)
        evaluator = LevelControlEvaluator({"A": 0.0})

        assert evaluator.evaluate_settling(rising, "A", settling_window=2)["steady_state_error"] == (
            pytest.approx(0.095)
        )
        assert evaluator.evaluate_settling(rising, "A", settling_window=100)["steady_state_error"] == (
            pytest.approx(0.05)
        )
        assert evaluator.evaluate_settling(rising, "A")["steady_state_error"] == pytest.approx(0.055)

        original = CONTROL_EVALUATION_DEFAULTS.settling_window
        try:
            update_defaults("control_evaluation", settling_window=2)
            assert evaluator.evaluate_settling(rising, "A")["steady_state_error"] == pytest.approx(0.095)
        finally:
            update_defaults("control_evaluation", settling_window=original)

        with pytest.raises(InvalidParameterError, match="稳态窗口"):
            evaluator.evaluate_settling(rising, "A", settling_window=0)

    def test_overall_score(self, result):
        evaluator = LevelControlEvaluator({"P": 0.0})
        score = evaluator.overall_score(
            evaluator.evaluate_tracking(result),
            evaluator.evaluate_control_smoothness(result),
        )
        assert 0.0 <= score["score"] <= 100.0
        assert set(score) == {
            "score", "tracking_score", "smoothness_score", "mean_mae", "mean_change_rate",
        }


class TestAreaStatistics:
    """测试区域统计"""

    def test_statistics(self, result, topology):
        stats = area_statistics(result, topology).set_index("area")

        assert stats.loc["P", "max_level"] >= stats.loc["P", "final_level"]
        assert stats.loc["P", "total_outflow_m3"] > 0
        assert stats.loc["Z", "total_inflow_m3"] == pytest.approx(stats.loc["P", "total_outflow_m3"])
        # 最高水位 0.1 m 低于目标 + margin，不超限
        assert stats.loc["P", "max_exceedance_cm"] == 0.0
        assert pd.isna(stats.loc["Z", "max_exceedance_cm"])

    def test_without_topology(self, result):
        stats = area_statistics(result)
        assert "max_exceedance_cm" not in stats.columns


def _schedule():
    entries = (
        PumpScheduleEntry(START, 1.0, 0.28, 2.0),
        PumpScheduleEntry(START.replace(hour=1), 0.0, 0.0, 2.0),
    )
    return PumpSchedule(entries=entries, capacity=2.0)


class TestExport:
    """测试导出"""

    def test_simulation_csv(self, result, tmp_path):
        path = tmp_path / "sim.csv"
        text = simulation_to_csv(result, path)

        assert path.read_text(encoding="utf-8") == text
        header = text.splitlines()[0]
        assert header.startswith("step,time_seconds,timestamp,area,level")
        assert len(text.splitlines()) == 1 + 120 * 2

    def test_edge_flow_csv(self, result):
        text = edge_flows_to_csv(result, decimals=2)
        assert text.splitlines()[0] == "time_seconds,G"

    def test_simulation_json(self, result, tmp_path):
        path = tmp_path / "sim.json"
        payload = json.loads(simulation_to_json(result, path, metadata={"run": "test"}))

        assert payload["metadata"]["n_steps"] == 120
        assert payload["metadata"]["run"] == "test"
        assert payload["metadata"]["start_time"].startswith("2024-06-01")
        assert len(payload["steps"]) == 240
        assert {row["area"] for row in payload["statistics"]} == {"P", "Z"}
        assert payload["edge_flows"][0]["time_seconds"] == 60.0
        assert json.loads(path.read_text(encoding="utf-8")) == payload

    def test_json_without_statistics(self, result):
        payload = json.loads(simulation_to_json(result, include_statistics=False))
        assert "statistics" not in payload

    def test_schedule_dataframe(self):
        df = schedule_to_dataframe(_schedule())
        assert list(df.columns) == [
            "hour_start", "pump_fraction", "flow_m3s", "expected_cost", "expected_level",
        ]
        assert list(df["flow_m3s"]) == [2.0, 0.0]

    def test_schedule_csv_and_json(self):
        text = schedule_to_csv(_schedule())
        assert len(text.splitlines()) == 3

        payload = json.loads(schedule_to_json(_schedule()))
        assert payload["total_cost"] == pytest.approx(0.28)
        assert payload["capacity_m3s"] == 2.0
        assert [e["pump_fraction"] for e in payload["entries"]] == [1.0, 0.0]

    def test_csv_rounds_numeric_columns_only(self):
        """时间戳列原样输出且不产生警告，数值列按小数位数取整"""
        entries = (PumpScheduleEntry(START, 0.3333333, 0.123456, -0.412345),)
        schedule = PumpSchedule(entries=entries, capacity=1.0)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            text = schedule_to_csv(schedule, decimals=2)

        row = text.splitlines()[1].split(",")
        assert row[0].startswith("2024-06-01 00:00:00")
        assert row[1:] == ["0.33", "0.33", "0.12", "-0.41"]


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
