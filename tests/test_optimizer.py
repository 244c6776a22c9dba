"""
Tests for the recommendation engine: ranking, confidence, disruption
responses and AI-vs-manual comparison.
"""

import pytest

from corridor_dss.models import (
    Disruption, DisruptionType, KPIs, Recommendation, RecommendationPriority,
    RecommendationType, Severity, TrainClass
)
from corridor_dss.optimizer import RecommendationEngine, score_recommendation


def make_rec(rec_id, confidence=85, priority=RecommendationPriority.MEDIUM,
             rec_type=RecommendationType.SPEED_ADJUSTMENT, savings=150,
             implementation_time=2, sections=None):
    return Recommendation(
        id=rec_id,
        recommendation_type=rec_type,
        priority=priority,
        title=rec_id,
        description="",
        impact=f"impact of {rec_id}",
        confidence=confidence,
        action=f"do {rec_id}",
        estimated_savings=savings,
        affected_trains=[],
        affected_sections=sections or [],
        implementation_time=implementation_time
    )


def make_disruption(disruption_type, sections, disruption_id='disruption_1'):
    return Disruption(
        id=disruption_id,
        disruption_type=disruption_type,
        severity=Severity.HIGH,
        affected_sections=[float(s) for s in sections],
        start_time=0,
        duration=30
    )


# =============================================================================
# Pipeline
# =============================================================================

class TestOptimize:

    def test_conflict_free_snapshot(self, engine, make_state, make_train):
        result = engine.optimize(make_state(trains=[make_train('E1', 10.0)]))

        assert result.success is False
        assert result.recommendations == []
        assert result.conflicts == []
        assert result.confidence == 0
        assert result.implementation_plan == []

    def test_requires_snapshot_or_simulation(self):
        with pytest.raises(ValueError):
            RecommendationEngine().optimize()

    def test_congestion_confidence_is_capped(self, engine, make_state, make_station):
        station = make_station('C', capacity=1, current_trains=['T1', 'T2', 'T3'])
        result = engine.optimize(make_state(stations=[station]))

        assert result.success
        assert [r.id for r in result.recommendations] == ['congestion_station_congestion_C']
        assert result.confidence == 95
        assert result.metrics.throughput_improvement == pytest.approx(0.1)

    def test_pipeline_on_live_simulation(self, simulation):
        engine = RecommendationEngine(simulation)
        simulation.run_for(10)
        before = simulation.get_state()

        result = engine.optimize()

        after = simulation.get_state()
        assert [t.position for t in after.trains] == [t.position for t in before.trains]
        assert result.timestamp == 10
        assert len(result.recommendations) <= 5
        assert all(r.confidence > 70 for r in result.recommendations)

    def test_results_are_recorded(self, engine, make_state, make_train):
        engine.optimize(make_state(trains=[make_train('E1', 10.0)]))
        engine.optimize(make_state(trains=[make_train('E1', 10.0)]))

        assert len(engine.get_optimization_history()) == 2
        summary = engine.get_optimization_summary()
        assert summary['total_runs'] == 2
        assert summary['successful_runs'] == 0

        engine.reset()
        assert engine.get_optimization_history() == []


class TestRanking:

    def test_score(self):
        rec = make_rec('r', confidence=90, priority=RecommendationPriority.HIGH,
                       savings=1200, implementation_time=15)
        assert score_recommendation(rec) == pytest.approx(1.47)

    def test_threshold_is_exclusive(self, engine):
        ranked = engine.rank_candidates([make_rec('at', confidence=70), make_rec('above', confidence=71)])
        assert [r.id for r in ranked] == ['above']

    def test_keeps_top_five_by_score(self, engine):
        candidates = [make_rec(f"r{i}", savings=100 * i) for i in range(1, 8)]
        ranked = engine.rank_candidates(candidates)

        assert [r.id for r in ranked] == ['r7', 'r6', 'r5', 'r4', 'r3']

    def test_ties_keep_generation_order(self, engine):
        candidates = [make_rec(f"r{i}") for i in range(3)]
        assert [r.id for r in engine.rank_candidates(candidates)] == ['r0', 'r1', 'r2']

    def test_strategy_performance(self, engine, make_state, make_train):
        assert set(engine.get_strategy_performance().values()) == {1.0}

        trains = [make_train(f"E{i}", 10.0 * i, energy_consumption=100.0) for i in range(1, 7)]
        result = engine.optimize(make_state(trains=trains))

        assert [r.id for r in result.recommendations] == [f"energy_opt_E{i}" for i in range(1, 6)]
        performance = engine.get_strategy_performance()
        assert performance['energy_optimization'] == pytest.approx(0.833)
        assert performance['conflict_resolution'] == 1.0


class TestMetricsAndPlan:

    def test_metrics(self, engine, make_train):
        recs = [
            make_rec('speed', savings=600),
            make_rec('reroute', rec_type=RecommendationType.REROUTE, savings=300),
            make_rec('platform', rec_type=RecommendationType.PLATFORM_REALLOCATION, savings=0),
        ]
        trains = [
            make_train('E1', 10.0, passenger_count=1000, delay=4),
            make_train('F1', 20.0, train_class=TrainClass.FREIGHT, priority=3, max_speed=80),
        ]

        metrics = engine.calculate_metrics(recs, trains)

        assert metrics.delay_reduction == 15
        assert metrics.energy_saved == 600
        assert metrics.throughput_improvement == pytest.approx(0.1)
        assert metrics.passenger_impact == 50
        assert metrics.system_efficiency == 80

    def test_plan_chains_steps(self, engine):
        recs = [make_rec('a', sections=['S30']), make_rec('b', sections=['A', 'B'])]
        plan = engine.build_implementation_plan(recs)

        assert [s.step for s in plan] == [1, 2]
        assert plan[0].dependencies == []
        assert plan[1].dependencies == ['step_1']
        assert plan[1].target == 'A, B'
        assert plan[0].expected_outcome == 'impact of a'

    def test_failed_history_depresses_confidence(self, engine, make_state, make_train):
        engine.optimize(make_state(trains=[make_train('E1', 10.0)]))

        assert engine.historical_performance() == 0.0
        assert engine.calculate_confidence([make_rec('r')], []) == 0.0


# =============================================================================
# Disruption response
# =============================================================================

class TestHandleDisruption:

    def test_signal_failure(self, engine, make_state, make_train):
        state = make_state(trains=[make_train('T1', 25.0), make_train('T2', 35.0), make_train('T3', 50.0)])
        recs = engine.handle_disruption(make_disruption(DisruptionType.SIGNAL_FAILURE, [30]), state)

        assert len(recs) == 1
        rec = recs[0]
        assert rec.id == 'signal_failure_disruption_1'
        assert rec.recommendation_type == RecommendationType.SIGNAL_REPAIR
        assert rec.confidence == 90
        assert rec.estimated_savings == 1200
        assert rec.affected_trains == ['T1', 'T2']
        assert rec.affected_sections == ['30']
        assert rec.parameters == {'signal_ids': [30.0]}

    def test_weather_caps_speed(self, engine, make_state, make_train):
        state = make_state(trains=[make_train('T1', 5.0), make_train('T2', 100.0)])
        recs = engine.handle_disruption(make_disruption(DisruptionType.WEATHER, [0]), state)

        assert recs[0].id == 'weather_disruption_1'
        assert recs[0].parameters == {'train_ids': ['T1'], 'speed_limit': 60.0, 'until': 30}

    def test_emergency_holds_lower_priority_trains(self, engine, make_state, make_train):
        state = make_state(trains=[
            make_train('X1', 0.5),
            make_train('F1', 5.0, train_class=TrainClass.FREIGHT, priority=3, max_speed=80),
        ])
        recs = engine.handle_disruption(make_disruption(DisruptionType.EMERGENCY_TRAIN, [0, 30]), state)

        assert recs[0].id == 'emergency_disruption_1'
        assert recs[0].confidence == 95
        assert recs[0].parameters == {'hold_trains': ['F1'], 'hold_minutes': 3}

    def test_track_blockage_has_no_response(self, engine, make_state, make_train):
        state = make_state(trains=[make_train('T1', 60.0)])
        assert engine.handle_disruption(make_disruption(DisruptionType.TRACK_BLOCKAGE, [60]), state) == []

    def test_without_snapshot_no_trains_affected(self, engine):
        recs = engine.handle_disruption(make_disruption(DisruptionType.SIGNAL_FAILURE, [90]))
        assert recs[0].affected_trains == []


# =============================================================================
# Comparison
# =============================================================================

class TestComparePerformance:

    def test_improvement(self, engine):
        ai = [KPIs(average_delay=4, system_efficiency=60, energy_usage=90, conflicts=1),
              KPIs(average_delay=6, system_efficiency=40, energy_usage=110, conflicts=1)]
        manual = [KPIs(average_delay=8, system_efficiency=20, energy_usage=150, conflicts=3)]

        comparison = engine.compare_performance(ai, manual)

        assert comparison.ai_mode.samples == 2
        assert comparison.ai_mode.average_delay == 5
        assert comparison.improvement == {
            'delay_reduction': 3,
            'efficiency_gain': 30,
            'energy_saved': 50,
            'conflict_reduction': 2,
        }

    def test_accepts_dicts(self, engine):
        comparison = engine.compare_performance(
            [{'average_delay': 2, 'system_efficiency': 80, 'unknown': 1}],
            [{'average_delay': 3, 'system_efficiency': 70}],
            scenario="dicts"
        )

        assert comparison.scenario == "dicts"
        assert comparison.improvement['delay_reduction'] == 1
        assert comparison.improvement['efficiency_gain'] == 10

    def test_empty_batches(self, engine):
        comparison = engine.compare_performance([], [])

        assert comparison.ai_mode.samples == 0
        assert comparison.ai_mode.average_delay == 0
        assert set(comparison.improvement.values()) == {0}
