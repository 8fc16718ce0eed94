"""
边界条件测试：测试各种边缘情况和异常场景
"""
import sys
from datetime import datetime, timezone
from pathlib import Path
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from peilbeheer.defaults import (
    OPTIMIZER_DEFAULTS,
    PID_DEFAULTS,
    SIMULATION_DEFAULTS,
    get_default,
    update_defaults,
)
from peilbeheer.exceptions import InvalidParameterError
from peilbeheer.models import Gemaal, OpenVerbinding, Overstort, Peilgebied, PumpSchedule
from peilbeheer.optimizer import OptimizationProblem, pump_power_kw
from peilbeheer.pid import PidParams
from peilbeheer.scenario import Scenario
from peilbeheer.simulator import BoundaryInputs, ControlLoop, NetworkSimulator
from peilbeheer.topology import NetworkTopology
from peilbeheer.utils import TimeSeriesGenerator, hourly_price_points


class TestEmptyNetwork:
    """测试空网络或最小配置"""

    def test_minimal_network(self):
        """测试最小可运行网络（单个 Peilgebied）"""
        config = {"areas": [{"code": "A", "surface_area": 100.0, "current_level": 1.0}]}
        topology = NetworkTopology.from_config(config)
        result = NetworkSimulator().run(topology, 3600.0, 600.0)

        assert len(result) == 6
        assert result.final_levels == {"A": 1.0}
        assert result[0].edge_flows == {}

    def test_empty_schedule(self):
        """空调度在任何时刻开度为0"""
        schedule = PumpSchedule(entries=())
        assert schedule.total_cost == 0
        assert schedule.fraction_for_offset(0.0) == 0.0
        assert schedule.fraction_at(datetime(2024, 1, 1, tzinfo=timezone.utc)) == 0.0


class TestBoundaryValues:
    """测试边界值情况"""

    def test_zero_capacity(self):
        """零容量泵站不输水"""
        topology = NetworkTopology(
            [
                Peilgebied(code="P", surface_area=1000.0, current_level=1.0, target_level_summer=0.0),
                Peilgebied(code="Z", surface_area=1000.0, current_level=0.0),
            ],
            [Gemaal(id="g", from_area="P", to_area="Z", capacity=0.0)],
        )
        result = NetworkSimulator().run(topology, 600.0, 60.0)
        assert all(step.edge_flows["g"] == 0.0 for step in result)
        assert result.final_levels["P"] == pytest.approx(1.0)

    def test_negative_capacity_invalid(self):
        """负容量无效"""
        with pytest.raises(InvalidParameterError, match="不能为负"):
            Gemaal(id="g", from_area="A", to_area="B", capacity=-1.0)

    def test_large_values(self):
        """大面积、大流量不产生数值问题"""
        topology = NetworkTopology(
            [
                Peilgebied(code="boezem", surface_area=1e9, current_level=-0.4, bottom_level=-3.0),
                Peilgebied(code="polder", surface_area=1e8, current_level=-2.0, bottom_level=-5.0),
            ],
            [OpenVerbinding(id="v", from_area="boezem", to_area="polder", conductance=1e3)],
        )
        boundary = BoundaryInputs(inflow_m3s={"boezem": [1e4] * 24})
        result = NetworkSimulator().run(topology, 86400.0, 3600.0, boundary)
        assert len(result) == 24
        assert result.total_volume() == pytest.approx(
            sum(result.initial_volumes.values()) + 1e4 * 86400.0
        )

    def test_external_withdrawal_limited(self):
        """外部取水不超过可用蓄量"""
        topology = NetworkTopology([Peilgebied(code="A", surface_area=100.0, current_level=0.1)])
        boundary = BoundaryInputs(inflow_m3s={"A": [-1.0]})
        result = NetworkSimulator().run(topology, 600.0, 60.0, boundary)
        assert all(step.volumes["A"] >= 0.0 for step in result)
        assert result[0].outflows["A"] == pytest.approx(10.0 / 60.0)


class TestTopologyVariations:
    """测试不同拓扑结构"""

    def test_chain_network(self):
        """测试链式网络：溢流堰逐级向下游"""
        areas = [
            Peilgebied(code=f"A{i}", surface_area=1000.0, current_level=2.0 - 0.5 * i)
            for i in range(5)
        ]
        connections = [
            Overstort(id=f"o{i}", from_area=f"A{i}", to_area=f"A{i + 1}", crest_level=1.5 - 0.5 * i)
            for i in range(4)
        ]
        topology = NetworkTopology(areas, connections)
        result = NetworkSimulator().run(topology, 3600.0, 60.0)

        assert result[0].edge_flows["o0"] > 0
        assert result.total_volume() == pytest.approx(sum(result.initial_volumes.values()))

    def test_star_network(self):
        """测试星形网络：多个 polder 排向同一 boezem"""
        areas = [Peilgebied(code="boezem", surface_area=1e6, current_level=0.0)] + [
            Peilgebied(code=f"p{i}", surface_area=1e4, current_level=0.3,
                       target_level_summer=0.0, bottom_level=-1.0)
            for i in range(4)
        ]
        connections = [
            Gemaal(id=f"g{i}", from_area=f"p{i}", to_area="boezem", capacity=0.5)
            for i in range(4)
        ]
        result = NetworkSimulator().run(NetworkTopology(areas, connections), 7200.0, 60.0)

        finals = result.final_levels
        assert all(finals[f"p{i}"] < 0.3 for i in range(4))
        assert finals["boezem"] > 0.0

    def test_parallel_edges(self):
        """测试同一对区域之间的并联连接"""
        topology = NetworkTopology(
            [
                Peilgebied(code="A", surface_area=1000.0, current_level=1.0),
                Peilgebied(code="B", surface_area=1000.0, current_level=0.0),
            ],
            [
                OpenVerbinding(id="v1", from_area="A", to_area="B", conductance=0.1),
                OpenVerbinding(id="v2", from_area="A", to_area="B", conductance=0.1),
            ],
        )
        result = NetworkSimulator().run(topology, 60.0, 60.0)
        assert result[0].edge_flows["v1"] == pytest.approx(result[0].edge_flows["v2"])
        assert result[0].outflows["A"] == pytest.approx(0.2)


class TestTimeSeriesHandling:
    """测试时间序列处理"""

    def test_short_time_series(self):
        """边界输入短于仿真时长时超出部分取0"""
        topology = NetworkTopology([Peilgebied(code="A", surface_area=3600.0, current_level=0.0)])
        boundary = BoundaryInputs(inflow_m3s={"A": [1.0]})
        result = NetworkSimulator().run(topology, 3 * 3600.0, 3600.0, boundary)
        assert [step.levels["A"] for step in result] == pytest.approx([1.0, 1.0, 1.0])

    def test_custom_interval(self):
        boundary = BoundaryInputs(inflow_m3s={"A": [1.0, 2.0]}, interval_seconds=600.0)
        assert boundary.inflow("A", 599.0) == 1.0
        assert boundary.inflow("A", 600.0) == 2.0
        assert boundary.inflow("A", 1200.0) == 0.0
        assert boundary.precipitation("A", 0.0) == 0.0

    def test_invalid_interval(self):
        with pytest.raises(InvalidParameterError, match="必须大于0"):
            BoundaryInputs(interval_seconds=0.0)

    def test_generators(self):
        assert TimeSeriesGenerator.constant(2.0, 3) == [2.0, 2.0, 2.0]
        assert TimeSeriesGenerator.step_change(0.0, 5.0, 6, 2, 2) == [0.0, 0.0, 5.0, 5.0, 0.0, 0.0]
        assert TimeSeriesGenerator.piecewise([1.0, 2.0], [1, 2]) == [1.0, 2.0, 2.0]
        with pytest.raises(InvalidParameterError, match="长度必须相同"):
            TimeSeriesGenerator.piecewise([1.0], [1, 2])

        prices = TimeSeriesGenerator.sinusoidal(50.0, 20.0, 24, noise_std=1.0, seed=1)
        assert prices == TimeSeriesGenerator.sinusoidal(50.0, 20.0, 24, noise_std=1.0, seed=1)
        assert len(prices) == 24

    def test_hourly_price_points(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        points = hourly_price_points(start, [10, 20])
        assert points[1].hour_start == start.replace(hour=1)
        assert points[1].price_eur_per_mwh == 20.0

        with pytest.raises(InvalidParameterError):
            hourly_price_points(start, [float("nan")])


class TestDefaults:
    """测试默认参数管理"""

    def test_get_default(self):
        assert get_default("simulation", "dt_seconds") == 60.0
        assert get_default("unknown", "x", 5) == 5

    def test_update_defaults(self):
        original = OPTIMIZER_DEFAULTS.n_buckets
        try:
            update_defaults("optimizer", n_buckets=51)
            assert get_default("optimizer", "n_buckets") == 51
        finally:
            update_defaults("optimizer", n_buckets=original)

    def test_update_defaults_applies_to_new_objects(self):
        """运行时修改默认值后，新构造的对象使用新值"""
        saved = {
            "optimizer": {"n_buckets": OPTIMIZER_DEFAULTS.n_buckets,
                          "efficiency": OPTIMIZER_DEFAULTS.efficiency},
            "pid": {"kp": PID_DEFAULTS.kp},
            "simulation": {"default_margin": SIMULATION_DEFAULTS.default_margin,
                           "balance_factor": SIMULATION_DEFAULTS.balance_factor,
                           "boundary_interval_seconds": SIMULATION_DEFAULTS.boundary_interval_seconds,
                           "dt_seconds": SIMULATION_DEFAULTS.dt_seconds},
        }
        try:
            update_defaults("optimizer", n_buckets=51, efficiency=0.5)
            update_defaults("pid", kp=1.5)
            update_defaults("simulation", default_margin=0.3, balance_factor=0.25,
                            boundary_interval_seconds=600.0, dt_seconds=30.0)

            problem = OptimizationProblem(
                surface_area=100.0,
                initial_level=0.0,
                min_level=-1.0,
                max_level=1.0,
                prices=hourly_price_points(datetime(2024, 1, 1, tzinfo=timezone.utc), [10.0]),
                capacity=1.0,
            )
            assert problem.n_buckets == 51
            assert problem.efficiency == 0.5
            assert pump_power_kw(1.0, 2.0) == pytest.approx(1000.0 * 9.81 * 2.0 / 0.5 / 1000.0)
            assert Gemaal(id="g", from_area="A", to_area="B", capacity=1.0).efficiency == 0.5
            assert PidParams().kp == 1.5
            assert PidParams(ki=0.1).kp == 1.5
            area = Peilgebied(code="A", surface_area=1.0)
            assert area.margin == 0.3
            assert ControlLoop(area="A").balance_factor == 0.25
            assert BoundaryInputs().interval_seconds == 600.0
            scenario = Scenario(id="s", topology=NetworkTopology([area]))
            assert scenario.dt_seconds == 30.0
            assert scenario.balance_factor == 0.25
        finally:
            for category, values in saved.items():
                update_defaults(category, **values)

        assert PidParams().kp == PID_DEFAULTS.kp == 5.0
        assert Peilgebied(code="A", surface_area=1.0).margin == 0.20
        # 显式给出的值不受默认值影响
        assert Peilgebied(code="A", surface_area=1.0, margin=0.0).margin == 0.0

    def test_update_unknown(self):
        with pytest.raises(ValueError, match="Unknown category"):
            update_defaults("nothing", x=1)
        with pytest.raises(ValueError, match="Unknown parameter"):
            update_defaults("pid", gain=1)


def test_comprehensive_stress():
    """综合压力测试：48小时、20个区域的网络"""
    areas = [
        Peilgebied(code=f"a{i}", surface_area=5e4, current_level=0.0,
                   target_level_summer=0.0, bottom_level=-2.0)
        for i in range(20)
    ] + [Peilgebied(code="zee", surface_area=1e8, fixed_level=0.5)]
    connections = [
        OpenVerbinding(id=f"v{i}", from_area=f"a{i}", to_area=f"a{i + 1}", conductance=0.5)
        for i in range(19)
    ] + [Gemaal(id="hoofdgemaal", from_area="a19", to_area="zee", capacity=3.0)]
    rain = {f"a{i}": TimeSeriesGenerator.step_change(0.0, 5.0, 48, 6, 12) for i in range(20)}

    result = NetworkSimulator().run(
        NetworkTopology(areas, connections),
        48 * 3600.0,
        300.0,
        BoundaryInputs(precipitation_mm_per_hour=rain),
    )
    assert len(result) == 576
    assert all(step.levels["zee"] == 0.5 for step in result)
    print(f"压力测试: {len(result)} 步, 最终水位 a0 = {result.final_levels['a0']:.3f}")


if __name__ == "__main__":
    # 运行所有测试
    pytest.main([__file__, "-v", "--tb=short"])
