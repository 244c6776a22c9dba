"""
Shared fixtures: seeded engines and builders for hand-made snapshots.
"""

import pytest

from corridor_dss.config import OptimizerConfig, SimulationConfig
from corridor_dss.models import (
    KPIs, Signal, SimulationState, Station, Train, TrainClass,
    WeatherCondition
)
from corridor_dss.optimizer import RecommendationEngine
from corridor_dss.simulation import DEFAULT_ROUTE, RailwaySimulation


def build_train(train_id, position, train_class=TrainClass.EXPRESS, priority=1,
                max_speed=120, **kwargs):
    kwargs.setdefault('route', list(DEFAULT_ROUTE))
    return Train(
        id=train_id,
        name=f"Train {train_id}",
        train_class=train_class,
        priority=priority,
        position=position,
        max_speed=max_speed,
        **kwargs
    )


def build_state(trains=None, stations=None, signals=None, current_time=0):
    return SimulationState(
        current_time=current_time,
        is_running=False,
        speed=1.0,
        weather=WeatherCondition.clear(),
        trains=trains or [],
        stations=stations or [],
        signals=signals or [],
        junctions=[],
        disruptions=[],
        kpis=KPIs(),
        events=[]
    )


@pytest.fixture
def make_train():
    """Factory for trains with sensible defaults."""
    return build_train


@pytest.fixture
def make_state():
    """Factory for hand-built snapshots."""
    return build_state


@pytest.fixture
def make_station():
    def _make(station_id='S', position=0, platforms=2, capacity=4, current_trains=None):
        return Station(
            id=station_id,
            name=f"Station {station_id}",
            position=position,
            platforms=platforms,
            capacity=capacity,
            current_trains=list(current_trains or [])
        )
    return _make


@pytest.fixture
def make_signal():
    def _make(position, failure=False):
        return Signal(id=f"S{position}", position=position, failure=failure)
    return _make


@pytest.fixture
def sim_config():
    return SimulationConfig(seed=7)


@pytest.fixture
def simulation(sim_config):
    """Default corridor with the seeded fleet."""
    sim = RailwaySimulation(sim_config)
    yield sim
    sim.destroy()


@pytest.fixture
def empty_simulation(sim_config):
    """Default infrastructure with no trains, for controlled movement tests."""
    sim = RailwaySimulation(sim_config)
    sim.state.trains = []
    sim.state.kpis = sim.calculate_kpis([])
    yield sim
    sim.destroy()


@pytest.fixture
def engine():
    """Recommendation engine with no simulation attached; pass snapshots explicitly."""
    return RecommendationEngine(config=OptimizerConfig())
