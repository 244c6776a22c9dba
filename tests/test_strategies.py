"""
Tests for the recommendation strategies and the platform allocator.
"""

import pytest

from corridor_dss.conflicts import detect_conflicts
from corridor_dss.models import (
    RecommendationPriority, RecommendationType, TrainClass, WeatherCondition, WeatherType
)
from corridor_dss.platform_allocator import PlatformAllocator
from corridor_dss.strategies import (
    ConflictResolutionStrategy, DelayPredictionStrategy,
    EnergyOptimizationStrategy, PassengerImpactStrategy
)


def freight(make_train, train_id, position, **kwargs):
    return make_train(train_id, position, train_class=TrainClass.FREIGHT,
                      priority=3, max_speed=80, **kwargs)


# =============================================================================
# Conflict resolution
# =============================================================================

class TestConflictResolution:

    def test_track_conflict_holds_lower_priority_train(self, make_state, make_train):
        state = make_state(trains=[freight(make_train, 'F1', 41.0), make_train('E1', 42.0)])
        recs = ConflictResolutionStrategy().propose(state, detect_conflicts(state))

        track = next(r for r in recs if r.recommendation_type == RecommendationType.REROUTE)
        assert track.id == 'track_track_conflict_F1_E1'
        assert track.parameters == {'hold_train': 'F1', 'hold_minutes': 2}
        assert track.estimated_savings == 300
        assert track.confidence == 80

    def test_track_conflict_tie_holds_second_train(self, make_state, make_train):
        state = make_state(trains=[make_train('E1', 41.0), make_train('E2', 42.0)])
        recs = ConflictResolutionStrategy().propose(state, detect_conflicts(state))

        assert len(recs) == 1
        assert recs[0].parameters['hold_train'] == 'E2'

    def test_signal_failure_response(self, make_state, make_signal, make_train):
        state = make_state(trains=[make_train('T1', 25.0)], signals=[make_signal(30, failure=True)])
        recs = ConflictResolutionStrategy().propose(state, detect_conflicts(state))

        assert len(recs) == 1
        rec = recs[0]
        assert rec.id == 'signal_signal_failure_S30'
        assert rec.recommendation_type == RecommendationType.SIGNAL_REPAIR
        assert rec.priority == RecommendationPriority.HIGH
        assert rec.confidence == 95
        assert rec.estimated_savings == 600
        assert rec.parameters == {'signal_ids': ['S30']}

    def test_congestion_carries_platform_plan(self, make_state, make_station, make_train):
        trains = [
            make_train('E1', 60.0, passenger_count=900),
            freight(make_train, 'F1', 60.0),
            make_train('E2', 60.0, passenger_count=1000),
        ]
        station = make_station('C', position=60, platforms=2, capacity=1,
                               current_trains=['E1', 'F1', 'E2'])
        state = make_state(trains=trains, stations=[station])
        conflicts = [c for c in detect_conflicts(state) if c.conflict_id == 'station_congestion_C']

        rec = ConflictResolutionStrategy().propose(state, conflicts)[0]

        assert rec.id == 'congestion_station_congestion_C'
        assert rec.recommendation_type == RecommendationType.PLATFORM_REALLOCATION
        assert rec.estimated_savings == 600
        assert rec.parameters['station_id'] == 'C'
        assert rec.parameters['overflow'] == ['F1']
        assert sorted(t for t in rec.parameters['plan'].values() if t) == ['E1', 'E2']

    def test_priority_conflict_promotes_follower(self, make_state, make_train):
        state = make_state(trains=[make_train('E1', 20.0), freight(make_train, 'F1', 23.0)])
        recs = ConflictResolutionStrategy().propose(state, detect_conflicts(state))

        rec = next(r for r in recs if r.recommendation_type == RecommendationType.PRIORITY_CHANGE)
        assert rec.id == 'priority_priority_conflict_E1_F1'
        assert rec.parameters == {'train_ids': ['E1'], 'priority': 1}
        assert rec.estimated_savings == 600


# =============================================================================
# Delay prediction
# =============================================================================

class TestDelayPrediction:

    def test_prediction_formula(self, make_train):
        strategy = DelayPredictionStrategy()
        train = freight(make_train, 'F1', 50.0, delay=20)

        assert strategy.predict(train, 0.7, 1.0) == pytest.approx(28.2)

    def test_priority_factor_damps_prediction(self, make_train):
        strategy = DelayPredictionStrategy()
        train = make_train('E1', 50.0, delay=10)

        assert strategy.predict(train, 0.0, 0.0) == pytest.approx(8.0)

    def test_congested_fog_triggers_speed_up(self, make_state, make_train):
        trains = [freight(make_train, 'F1', 50.0, delay=12)]
        trains += [make_train(f"E{i}", 50.0 + i) for i in range(1, 8)]
        state = make_state(trains=trains)
        state.weather = WeatherCondition.preset(WeatherType.FOG, 0)

        recs = DelayPredictionStrategy().propose(state, [])

        assert len(recs) == 1
        rec = recs[0]
        assert rec.id == 'delay_min_F1'
        assert rec.recommendation_type == RecommendationType.SPEED_ADJUSTMENT
        assert rec.estimated_savings == pytest.approx((12 * 1.53 - 12) * 60)
        assert rec.parameters['train_ids'] == ['F1']
        assert rec.parameters['speed_limit'] is None
        assert rec.parameters['target_speed'] == 20

    def test_growth_at_ratio_boundary_is_ignored(self, make_state, make_train):
        # 20 * (1 + 0.7 * 0.3 + 1.4 * 0.2) = 29.8, under 1.5 x 20
        trains = [freight(make_train, 'F1', 50.0, delay=20)]
        trains += [make_train(f"E{i}", 50.0 + i) for i in range(1, 7)]
        state = make_state(trains=trains)
        state.weather = WeatherCondition.preset(WeatherType.FOG, 0)

        strategy = DelayPredictionStrategy()
        assert strategy.predict(trains[0], 0.7, 1.4) == pytest.approx(29.8)
        assert strategy.propose(state, []) == []

    def test_small_delay_is_ignored(self, make_state, make_train):
        trains = [freight(make_train, 'F1', 50.0, delay=10)]
        trains += [make_train(f"E{i}", 50.0 + i) for i in range(1, 8)]
        state = make_state(trains=trains)
        state.weather = WeatherCondition.preset(WeatherType.STORM, 0)

        assert DelayPredictionStrategy().propose(state, []) == []

    def test_clear_weather_isolated_train(self, make_state, make_train):
        state = make_state(trains=[freight(make_train, 'F1', 50.0, delay=30)])
        assert DelayPredictionStrategy().propose(state, []) == []


# =============================================================================
# Energy and passengers
# =============================================================================

class TestEnergyOptimization:

    def test_heavy_consumer_gets_speed_cap(self, make_state, make_train):
        state = make_state(trains=[
            make_train('E1', 30.0, energy_consumption=100.0),
            make_train('E2', 40.0, energy_consumption=90.0),
        ])

        recs = EnergyOptimizationStrategy().propose(state, [])

        assert [r.id for r in recs] == ['energy_opt_E1']
        assert recs[0].parameters == {'train_ids': ['E1'], 'speed_limit': pytest.approx(96.0)}
        assert recs[0].implementation_time == 2


class TestPassengerImpact:

    def test_delayed_passenger_trains_promoted(self, make_state, make_train):
        state = make_state(trains=[
            make_train('E1', 30.0, delay=5, passenger_count=1000),
            make_train('E2', 40.0, passenger_count=900),
            freight(make_train, 'F1', 50.0, delay=30),
        ])

        recs = PassengerImpactStrategy().propose(state, [])

        assert len(recs) == 1
        assert recs[0].id == 'priority_optimization'
        assert recs[0].affected_trains == ['E1']
        assert recs[0].parameters == {'train_ids': ['E1'], 'priority': 1}

    def test_no_passenger_delay_no_candidate(self, make_state, make_train):
        state = make_state(trains=[
            make_train('E1', 30.0, passenger_count=1000),
            freight(make_train, 'F1', 50.0, delay=30),
        ])

        assert PassengerImpactStrategy().passenger_impact(state.trains) == 0
        assert PassengerImpactStrategy().propose(state, []) == []


# =============================================================================
# Platform allocator
# =============================================================================

class TestPlatformAllocator:

    @pytest.fixture
    def crowded(self, make_station, make_train):
        station = make_station('C', position=60, platforms=3, capacity=3)
        trains = [
            make_train('E1', 60.0, passenger_count=1000),
            make_train('E2', 60.0, passenger_count=900),
            make_train('L1', 60.0, train_class=TrainClass.SUBURBAN, priority=2,
                       max_speed=60, passenger_count=250),
            freight(make_train, 'F1', 60.0),
        ]
        station.current_trains = [t.id for t in trains]
        return station, trains

    def test_weights(self, crowded):
        station, trains = crowded
        allocator = PlatformAllocator()

        assert allocator.train_weight(trains[0], station) == pytest.approx(40.0)
        assert allocator.train_weight(trains[2], station) == pytest.approx(22.5)
        assert allocator.train_weight(trains[3], station) == pytest.approx(10.0)

    def test_lowest_weight_overflows(self, crowded):
        station, trains = crowded
        plan = PlatformAllocator().allocate(station, trains)

        assert plan.overflow == ['F1']
        assert sorted(plan.placed_trains) == ['E1', 'E2', 'L1']
        assert set(plan.assignments) == {'P1', 'P2', 'P3'}

    def test_greedy_keeps_berthed_train_in_place(self, make_station, make_train):
        station = make_station('C', position=60, platforms=2, capacity=2)
        station.platform_occupancy['P2'] = 'L1'
        trains = [
            make_train('E1', 60.0, passenger_count=1000),
            make_train('L1', 60.0, train_class=TrainClass.SUBURBAN, priority=2, max_speed=60),
            freight(make_train, 'F1', 60.0),
        ]
        allocator = PlatformAllocator()
        weights = {t.id: allocator.train_weight(t, station, i) for i, t in enumerate(trains)}

        plan = allocator._greedy(station, trains, ['P1', 'P2'], weights, status="test")

        assert plan.assignments == {'P1': 'E1', 'P2': 'L1'}
        assert plan.overflow == ['F1']
        assert plan.solver == 'greedy'

    def test_no_trains_is_trivial(self, make_station):
        plan = PlatformAllocator().allocate(make_station('C'), [])

        assert plan.status == 'trivial'
        assert plan.assignments == {'P1': None, 'P2': None}
