"""
测试网络仿真：质量守恒、控制延迟、控制策略、调度与异常
"""
import pickle
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from peilbeheer.cancellation import CancellationToken, Cancelled
from peilbeheer.exceptions import (
    InvalidParameterError,
    SimulationDivergedError,
    TopologyError,
)
from peilbeheer.models import (
    Gemaal,
    Keerklep,
    OpenVerbinding,
    Overstort,
    Peilgebied,
    PumpSchedule,
    PumpScheduleEntry,
    Season,
    SimulationStep,
)
from peilbeheer.simulator import (
    BoundaryInputs,
    ControlLoop,
    ControlStrategy,
    NetworkSimulator,
    control_loops_from_config,
)
from peilbeheer.topology import NetworkTopology
from peilbeheer.waterbalance import WaterBalanceModel, WaterBalanceResult


def _polder_topology(level=0.5, capacity=1.0):
    """polder P 通过受控泵站排向固定水位的外海 Z"""
    return NetworkTopology(
        [
            Peilgebied(code="P", surface_area=10000.0, target_level_summer=0.0,
                       current_level=level, bottom_level=-2.0),
            Peilgebied(code="Z", surface_area=1e6, fixed_level=1.0),
        ],
        [Gemaal(id="G", from_area="P", to_area="Z", capacity=capacity)],
    )


class TestSingleArea:
    """测试单区仿真"""

    def test_constant_inflow(self):
        """1000 m² 区域，1 m³/s 入流一小时后水位 3.6 m"""
        topology = NetworkTopology([Peilgebied(code="A", surface_area=1000.0, current_level=0.0)])
        boundary = BoundaryInputs(inflow_m3s={"A": [1.0]})
        result = NetworkSimulator().run(topology, 3600.0, 3600.0, boundary)

        assert len(result) == 1
        assert result[0].volumes["A"] == pytest.approx(3600.0)
        assert result[0].levels["A"] == pytest.approx(3.6)
        assert result[0].time_seconds == 3600.0

    def test_step_count(self):
        """步数为 ceil(horizon / dt)"""
        topology = NetworkTopology([Peilgebied(code="A", surface_area=1000.0)])
        result = NetworkSimulator().run(topology, 150.0, 60.0)
        assert len(result) == 3

    def test_precipitation(self):
        """降雨按 catchment_area 换算"""
        topology = NetworkTopology(
            [Peilgebied(code="A", surface_area=1000.0, current_level=0.0, catchment_area=2000.0)]
        )
        boundary = BoundaryInputs(precipitation_mm_per_hour={"A": [10.0]})
        result = NetworkSimulator().run(topology, 3600.0, 600.0, boundary)
        # 10 mm × 2000 m² = 20 m³
        assert result.final_levels["A"] == pytest.approx(0.02)

    def test_invalid_horizon_and_step(self):
        topology = NetworkTopology([Peilgebied(code="A", surface_area=1000.0)])
        with pytest.raises(InvalidParameterError, match="必须大于0"):
            NetworkSimulator().run(topology, 0.0, 60.0)
        with pytest.raises(InvalidParameterError, match="必须大于0"):
            NetworkSimulator().run(topology, 3600.0, 0.0)

    def test_unknown_boundary_area(self):
        topology = NetworkTopology([Peilgebied(code="A", surface_area=1000.0)])
        boundary = BoundaryInputs(inflow_m3s={"X": [1.0]})
        with pytest.raises(TopologyError):
            NetworkSimulator().run(topology, 3600.0, 60.0, boundary)

    def test_negative_precipitation(self):
        with pytest.raises(InvalidParameterError, match="不能为负"):
            BoundaryInputs(precipitation_mm_per_hour={"A": [-1.0]})


class TestMassConservation:
    """测试质量守恒"""

    def test_open_verbinding(self):
        """封闭网络总蓄量不变，水位趋于一致"""
        topology = NetworkTopology(
            [
                Peilgebied(code="A", surface_area=1000.0, current_level=2.0),
                Peilgebied(code="B", surface_area=1000.0, current_level=1.0),
            ],
            [OpenVerbinding(id="v", from_area="A", to_area="B", conductance=0.5)],
        )
        result = NetworkSimulator().run(topology, 7200.0, 60.0)

        assert sum(result.initial_volumes.values()) == pytest.approx(3000.0)
        for step in result:
            assert sum(step.volumes.values()) == pytest.approx(3000.0)
        assert result.total_volume() == pytest.approx(3000.0)
        assert result.final_levels["A"] == pytest.approx(1.5, abs=0.01)
        assert result.final_levels["B"] == pytest.approx(1.5, abs=0.01)

    def test_keerklep_and_gemaal_loop(self):
        """Keerklep 与受控泵站组成的封闭环路"""
        topology = NetworkTopology(
            [
                Peilgebied(code="A", surface_area=2000.0, current_level=1.0, target_level_summer=1.0),
                Peilgebied(code="B", surface_area=1000.0, current_level=0.8, target_level_summer=0.5),
            ],
            [
                Keerklep(id="k", from_area="A", to_area="B", conductance=0.2),
                Gemaal(id="g", from_area="B", to_area="A", capacity=0.5),
            ],
        )
        result = NetworkSimulator().run(topology, 7200.0, 60.0)

        total = sum(result.initial_volumes.values())
        for step in result:
            assert sum(step.volumes.values()) == pytest.approx(total)
            assert step.edge_flows["k"] >= 0.0

    def test_outflow_limited_by_storage(self):
        """泵站出流不超过可用蓄量，蓄量不为负"""
        topology = NetworkTopology(
            [
                Peilgebied(code="A", surface_area=1000.0, current_level=1.0),
                Peilgebied(code="B", surface_area=100.0, current_level=0.1),
            ],
            [Gemaal(id="g", from_area="B", to_area="A", capacity=1.0)],
        )
        # 不控制：泵站按额定容量运行
        result = NetworkSimulator().run(topology, 600.0, 60.0, control_loops=[])

        first = result[0]
        assert first.edge_flows["g"] == pytest.approx(10.0 / 60.0)
        assert first.volumes["B"] == pytest.approx(0.0, abs=1e-9)
        for step in result:
            assert step.volumes["B"] >= 0.0
            assert sum(step.volumes.values()) == pytest.approx(1010.0)


class TestControl:
    """测试控制回路"""

    def test_one_step_delay(self):
        """控制输出在下一步生效，初始设定值为0"""
        topology = _polder_topology()
        result = NetworkSimulator().run(topology, 3600.0, 60.0)

        assert result[0].edge_flows["G"] == 0.0
        assert result[0].controller_outputs["P"] == pytest.approx(1.0)
        assert "P" in result[0].saturated
        assert result[1].edge_flows["G"] == pytest.approx(1.0)
        assert result.final_levels["P"] < 0.5

    def test_topology_not_mutated(self):
        """仿真不修改拓扑，重复运行结果一致"""
        topology = _polder_topology()
        simulator = NetworkSimulator()
        first = simulator.run(topology, 1800.0, 60.0)
        second = simulator.run(topology, 1800.0, 60.0)

        assert topology.area("P").current_level == 0.5
        assert first.final_levels == second.final_levels
        assert [s.controller_outputs for s in first] == [s.controller_outputs for s in second]

    def test_fixed_level_area(self):
        """固定水位区水位不变"""
        result = NetworkSimulator().run(_polder_topology(), 1800.0, 60.0)
        assert all(step.levels["Z"] == 1.0 for step in result)

    def test_on_off(self):
        """ON_OFF：水位高于目标时满负荷"""
        loops = [ControlLoop(area="P", strategy="on_off")]
        result = NetworkSimulator().run(_polder_topology(capacity=0.5), 600.0, 60.0, control_loops=loops)

        assert result[0].controller_outputs["P"] == pytest.approx(0.5)
        assert result[1].edge_flows["G"] == pytest.approx(0.5)

    def test_on_off_below_target(self):
        loops = [ControlLoop(area="P", strategy=ControlStrategy.ON_OFF)]
        result = NetworkSimulator().run(_polder_topology(level=-0.1), 600.0, 60.0, control_loops=loops)
        assert all(step.controller_outputs["P"] == 0.0 for step in result)

    def test_balanced(self):
        """BALANCED：偏差比例流量与观测入流加权"""
        loops = [ControlLoop(area="P", strategy="balanced", balance_factor=0.5)]
        result = NetworkSimulator().run(_polder_topology(level=0.1), 120.0, 60.0, control_loops=loops)

        # 偏差 0.1 / margin 0.2 = 0.5，无入流：1.0 × 0.5 × 0.5
        assert result[0].controller_outputs["P"] == pytest.approx(0.25)

    def test_custom_setpoint(self):
        """自定义目标水位高于当前水位时不排水"""
        loops = [ControlLoop(area="P", setpoint=1.0)]
        result = NetworkSimulator().run(_polder_topology(), 600.0, 60.0, control_loops=loops)
        assert all(step.edge_flows["G"] == 0.0 for step in result)

    def test_incoming_direction(self):
        """补水回路：水位低于目标时从外海引水"""
        topology = NetworkTopology(
            [
                Peilgebied(code="P", surface_area=10000.0, target_level_summer=0.0,
                           current_level=-0.3, bottom_level=-2.0),
                Peilgebied(code="Z", surface_area=1e6, fixed_level=1.0),
            ],
            [Gemaal(id="inlaat", from_area="Z", to_area="P", capacity=0.5)],
        )
        loops = [ControlLoop(area="P", direction="incoming")]
        result = NetworkSimulator().run(topology, 1800.0, 60.0, control_loops=loops)

        assert result[1].edge_flows["inlaat"] > 0
        assert result.final_levels["P"] > -0.3

    def test_duplicate_loops(self):
        loops = [ControlLoop(area="P"), ControlLoop(area="P")]
        with pytest.raises(InvalidParameterError, match="多个控制回路"):
            NetworkSimulator().run(_polder_topology(), 600.0, 60.0, control_loops=loops)

    def test_loop_validation(self):
        with pytest.raises(InvalidParameterError, match="方向"):
            ControlLoop(area="P", direction="up")
        with pytest.raises(InvalidParameterError, match=r"\[0, 1\]"):
            ControlLoop(area="P", balance_factor=2.0)

    def test_loops_from_config(self):
        loops = control_loops_from_config(
            {"controls": [{"area": "P", "strategy": "balanced", "pid": {"kp": 1.0}}]}
        )
        assert loops[0].strategy == ControlStrategy.BALANCED
        assert loops[0].pid_params.kp == 1.0

    def test_loops_from_config_direction_and_season(self):
        """配置中的 direction 与 season 传递到控制回路"""
        topology = NetworkTopology(
            [
                Peilgebied(code="P", surface_area=10000.0, target_level_summer=0.0,
                           target_level_winter=-0.5, current_level=-0.3, bottom_level=-2.0),
                Peilgebied(code="Z", surface_area=1e6, fixed_level=1.0),
            ],
            [
                Gemaal(id="G", from_area="P", to_area="Z", capacity=1.0),
                Gemaal(id="inlaat", from_area="Z", to_area="P", capacity=0.5),
            ],
        )

        def run(season):
            loops = control_loops_from_config(
                {
                    "controls": [
                        {"area": "P", "strategy": "on_off", "season": season},
                        {"area": "P", "strategy": "on_off", "direction": "incoming", "season": season},
                    ]
                }
            )
            assert [loop.direction for loop in loops] == ["outgoing", "incoming"]
            assert all(loop.season == Season(season) for loop in loops)
            return NetworkSimulator().run(topology, 120.0, 60.0, control_loops=loops)

        # 冬季目标 -0.5：水位偏高，排水
        winter = run("winter")
        assert winter[1].edge_flows["G"] == pytest.approx(1.0)
        assert winter[1].edge_flows["inlaat"] == 0.0
        assert winter[0].controller_outputs["P"] == pytest.approx(1.0)

        # 夏季目标 0.0：水位偏低，补水
        summer = run("summer")
        assert summer[1].edge_flows["G"] == 0.0
        assert summer[1].edge_flows["inlaat"] == pytest.approx(0.5)


class TestSchedules:
    """测试泵站调度驱动的仿真"""

    def _schedule(self, fractions):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        entries = tuple(
            PumpScheduleEntry(start + timedelta(hours=i), f, 0.0, 0.0)
            for i, f in enumerate(fractions)
        )
        return PumpSchedule(entries=entries, capacity=1.0)

    def test_schedule_applied_without_delay(self):
        """调度开度 × 容量，无控制延迟"""
        schedule = self._schedule([0.5, 0.0])
        result = NetworkSimulator().run(
            _polder_topology(), 7200.0, 600.0, schedules={"G": schedule}
        )

        assert result[0].edge_flows["G"] == pytest.approx(0.5)
        assert result[6].edge_flows["G"] == 0.0
        # 全部泵站都按调度运行时不创建控制回路
        assert result[0].controller_outputs == {}

    def test_schedule_requires_controllable_gemaal(self):
        topology = NetworkTopology(
            [
                Peilgebied(code="A", surface_area=100.0),
                Peilgebied(code="B", surface_area=100.0),
            ],
            [Overstort(id="o", from_area="A", to_area="B", crest_level=1.0)],
        )
        with pytest.raises(InvalidParameterError, match="受控 Gemaal"):
            NetworkSimulator().run(topology, 600.0, 60.0, schedules={"o": self._schedule([1.0])})


class TestFailures:
    """测试发散与取消"""

    def test_divergence(self):
        """水位出现非有限数值时报告步号与区域"""

        class BrokenModel(WaterBalanceModel):
            def step(self, area, *args, **kwargs):
                return WaterBalanceResult(float("nan"), float("nan"), 0.0)

        topology = NetworkTopology([Peilgebied(code="A", surface_area=100.0)])
        with pytest.raises(SimulationDivergedError) as excinfo:
            NetworkSimulator(BrokenModel()).run(topology, 600.0, 60.0)
        assert excinfo.value.step_index == 0
        assert excinfo.value.area_code == "A"

    def test_cancelled(self):
        """取消后返回 Cancelled 而不是部分结果"""
        token = CancellationToken()
        token.cancel()
        outcome = NetworkSimulator().run(_polder_topology(), 3600.0, 60.0, cancel_token=token)
        assert outcome == Cancelled("simulation", 0)


class TestResultFrames:
    """测试结果转换"""

    def test_dataframe(self):
        result = NetworkSimulator().run(_polder_topology(), 600.0, 60.0)
        df = result.to_dataframe()

        assert len(df) == 10 * 2
        assert set(df["area"]) == {"P", "Z"}
        series = result.level_series("P")
        assert len(series) == 11
        assert series.iloc[0] == 0.5
        assert list(result.edge_flow_dataframe().columns) == ["G"]

        with pytest.raises(TopologyError):
            result.level_series("X")

    def test_steps_are_read_only(self):
        """记录的映射字段只读，且与构造时传入的字典脱钩"""
        result = NetworkSimulator().run(_polder_topology(), 120.0, 60.0)
        step = result[0]
        with pytest.raises(TypeError):
            step.levels["P"] = 9.0
        with pytest.raises(TypeError):
            step.edge_flows["G"] = 1.0
        assert step.levels["P"] != 9.0

        levels = {"A": 1.0}
        manual = SimulationStep(index=0, time_seconds=60.0, levels=levels, volumes={},
                                inflows={}, outflows={}, edge_flows={})
        levels["A"] = 2.0
        assert manual.levels == {"A": 1.0}

        restored = pickle.loads(pickle.dumps(step))
        assert restored == step
        with pytest.raises(TypeError):
            restored.volumes["P"] = 0.0


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
