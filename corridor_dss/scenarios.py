"""
Scenario library
Named operating scenarios that prepare a fresh simulation, run it for a fixed
number of simulated minutes with or without the live controller, and judge the
outcome against each scenario's success criteria
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .config import OptimizerConfig, SimulationConfig
from .live_controller import LiveRailwayController
from .models import (
    DisruptionType, KPIs, PerformanceComparison, SerializableMixin, Severity,
    Train, TrainClass, TrainStatus, WeatherType
)
from .optimizer import RecommendationEngine
from .simulation import DEFAULT_ROUTE, RailwaySimulation

logger = logging.getLogger(__name__)

SAFETY_DISTANCE_KM = 0.5
EMERGENCY_TRAIN_ID = "X1"


@dataclass
class ScenarioContext:
    simulation: RailwaySimulation
    samples: List[KPIs]
    controller: Optional[LiveRailwayController] = None


Criterion = Tuple[str, Callable[[ScenarioContext], bool]]


@dataclass
class Scenario:
    id: str
    name: str
    description: str
    duration: int
    expected_outcome: str
    setup: Callable[[RailwaySimulation], None]
    criteria: List[Criterion] = field(default_factory=list)

    def describe(self) -> Dict:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'duration': self.duration,
            'expected_outcome': self.expected_outcome,
            'success_criteria': [label for label, _ in self.criteria],
        }


@dataclass
class ScenarioResult(SerializableMixin):
    scenario_id: str
    ai_mode: bool
    duration: int
    final_kpis: KPIs
    samples: List[KPIs]
    criteria: Dict[str, bool]
    success: bool
    decisions_applied: int = 0
    events: int = 0


# =============================================================================
# Criteria helpers
# =============================================================================

def _final(ctx: ScenarioContext) -> KPIs:
    return ctx.samples[-1] if ctx.samples else ctx.simulation.get_kpis()


def _no_safety_incidents(ctx: ScenarioContext) -> bool:
    """No two trains closer than the safety distance on the open line"""
    trains = [t for t in ctx.simulation.get_trains() if t.position > 0 and t.status != TrainStatus.STOPPED]
    for i in range(len(trains)):
        for j in range(i + 1, len(trains)):
            if abs(trains[i].position - trains[j].position) < SAFETY_DISTANCE_KM:
                return False
    return True


def _signal_restored_within(minutes: int) -> Callable[[ScenarioContext], bool]:
    def check(ctx: ScenarioContext) -> bool:
        events = ctx.simulation.get_events()
        failures = [e for e in events if e.event_type == 'disruption_activated']
        repairs = [e for e in events if e.event_type == 'signal_repaired']
        if not failures:
            return True
        return any(r.timestamp - failures[0].timestamp <= minutes for r in repairs)
    return check


def _emergency_delay_below(minutes: float) -> Callable[[ScenarioContext], bool]:
    def check(ctx: ScenarioContext) -> bool:
        train = ctx.simulation.get_train(EMERGENCY_TRAIN_ID)
        return train is None or train.delay < minutes
    return check


def _others_delay_below(minutes: float) -> Callable[[ScenarioContext], bool]:
    def check(ctx: ScenarioContext) -> bool:
        others = [t for t in ctx.simulation.get_trains() if t.id != EMERGENCY_TRAIN_ID]
        if not others:
            return True
        return sum(t.delay for t in others) / len(others) < minutes
    return check


# =============================================================================
# Scenario setups
# =============================================================================

def _setup_basic(simulation: RailwaySimulation):
    pass


def _setup_peak(simulation: RailwaySimulation):
    """Six extra suburban services leaving Station A at 3-minute headways"""
    for i in range(1, 7):
        train = Train(
            id=f"P{i}",
            name=f"Peak Local {i}",
            train_class=TrainClass.SUBURBAN,
            priority=2,
            position=0.0,
            max_speed=60,
            passenger_count=int(simulation.rng.uniform(200, 300)),
            route=list(DEFAULT_ROUTE),
            departure_time=(i - 1) * 3
        )
        simulation.add_train(train)
        if train.departure_time > 0:
            simulation.hold_train(train.id, train.departure_time)


def _setup_signal_failure(simulation: RailwaySimulation):
    simulation.inject_disruption(
        DisruptionType.SIGNAL_FAILURE, [30], duration=7, severity=Severity.CRITICAL,
        description="Signal failure at Junction B"
    )


def _setup_weather(simulation: RailwaySimulation):
    simulation.inject_disruption(
        DisruptionType.WEATHER, [0, 30, 60, 90, 120], duration=60, severity=Severity.HIGH,
        description="Dense fog reducing speeds by 50%", weather_type=WeatherType.FOG
    )


def _setup_emergency(simulation: RailwaySimulation):
    simulation.add_train(Train(
        id=EMERGENCY_TRAIN_ID,
        name="Emergency Special",
        train_class=TrainClass.EXPRESS,
        priority=1,
        position=0.5,
        max_speed=120,
        route=list(DEFAULT_ROUTE)
    ))
    simulation.inject_disruption(
        DisruptionType.EMERGENCY_TRAIN, [0, 30], duration=30, severity=Severity.CRITICAL,
        description="Emergency special requires a clear path"
    )


SCENARIOS: Dict[str, Scenario] = {
    'basic': Scenario(
        id='basic',
        name='Basic Operations',
        description='Normal traffic with the default fleet',
        duration=60,
        expected_outcome='Maintain on-time performance with minimal delays',
        setup=_setup_basic,
        criteria=[
            ('Average delay < 5 minutes', lambda ctx: _final(ctx).average_delay < 5),
            ('System efficiency > 85%', lambda ctx: _final(ctx).system_efficiency > 85),
            ('No conflicts', lambda ctx: _final(ctx).conflicts == 0),
        ]
    ),
    'peak': Scenario(
        id='peak',
        name='Peak Hour Congestion',
        description='Extra suburban services at 3-minute headways',
        duration=60,
        expected_outcome='Manage congestion and minimize cascading delays',
        setup=_setup_peak,
        criteria=[
            ('Average delay < 15 minutes', lambda ctx: _final(ctx).average_delay < 15),
            ('System efficiency > 70%', lambda ctx: _final(ctx).system_efficiency > 70),
            ('Resolve all conflicts', lambda ctx: _final(ctx).conflicts == 0),
        ]
    ),
    'signal_failure': Scenario(
        id='signal_failure',
        name='Signal Failure at Junction B',
        description='Signal S30 fails for 7 minutes',
        duration=60,
        expected_outcome='Minimize cascading delays and restore normal operations',
        setup=_setup_signal_failure,
        criteria=[
            ('Total delay < 30 minutes', lambda ctx: _final(ctx).total_delay < 30),
            ('Restore signal within 15 minutes', _signal_restored_within(15)),
            ('No safety incidents', _no_safety_incidents),
        ]
    ),
    'weather': Scenario(
        id='weather',
        name='Weather Disruption',
        description='Fog over the whole corridor halves line speeds',
        duration=60,
        expected_outcome='Maintain safety while minimizing delays',
        setup=_setup_weather,
        criteria=[
            ('Average delay < 20 minutes', lambda ctx: _final(ctx).average_delay < 20),
            ('No accidents', _no_safety_incidents),
            ('Maintain 60% efficiency', lambda ctx: _final(ctx).system_efficiency >= 60),
        ]
    ),
    'emergency': Scenario(
        id='emergency',
        name='Emergency Train',
        description='An emergency special enters at Station A',
        duration=60,
        expected_outcome='Provide clear path for emergency train',
        setup=_setup_emergency,
        criteria=[
            ('Emergency train delay < 5 minutes', _emergency_delay_below(5)),
            ('Minimize impact on other trains', _others_delay_below(10)),
            ('No safety incidents', _no_safety_incidents),
        ]
    ),
}


def list_scenarios() -> List[Dict]:
    return [scenario.describe() for scenario in SCENARIOS.values()]


def get_scenario(name: str) -> Scenario:
    if name not in SCENARIOS:
        raise ValueError(f"Unknown scenario: {name}")
    return SCENARIOS[name]


def run_scenario(name: str, minutes: Optional[int] = None, ai_mode: bool = True,
                 seed: Optional[int] = None, config: Optional[SimulationConfig] = None,
                 optimization_interval: int = 5) -> ScenarioResult:
    """
    Run a named scenario on a fresh simulation, ticking synchronously.

    In AI mode a live controller optimizes every optimization_interval minutes,
    answers disruptions as they activate, and applies every decision it makes.
    In manual mode nothing intervenes.
    """
    scenario = get_scenario(name)
    duration = scenario.duration if minutes is None else int(minutes)

    sim_config = config or SimulationConfig()
    if seed is not None:
        sim_config = dataclasses.replace(sim_config, seed=seed)

    simulation = RailwaySimulation(sim_config)
    scenario.setup(simulation)

    controller = None
    if ai_mode:
        optimizer_config = OptimizerConfig(
            optimization_interval=optimization_interval,
            auto_approve_confidence=0.0
        )
        controller = LiveRailwayController(simulation, config=optimizer_config)
        controller.start_live_control()

    logger.info(f"Running scenario '{scenario.name}' for {duration} min ({'AI' if ai_mode else 'manual'} mode)")

    samples = []
    try:
        for _ in range(duration):
            simulation.tick()
            samples.append(simulation.get_kpis())
    finally:
        if controller:
            controller.stop_live_control()

    ctx = ScenarioContext(simulation=simulation, samples=samples, controller=controller)
    criteria = {label: bool(check(ctx)) for label, check in scenario.criteria}

    result = ScenarioResult(
        scenario_id=scenario.id,
        ai_mode=ai_mode,
        duration=duration,
        final_kpis=_final(ctx),
        samples=samples,
        criteria=criteria,
        success=all(criteria.values()),
        decisions_applied=controller.get_optimization_stats()['applied'] if controller else 0,
        events=len(simulation.get_events())
    )
    logger.info(f"Scenario '{scenario.id}' finished: success={result.success} {criteria}")
    return result


def compare_modes(name: str, minutes: Optional[int] = None,
                  seed: Optional[int] = None) -> PerformanceComparison:
    """Run a scenario in AI and manual mode from the same seed and compare KPIs"""
    scenario = get_scenario(name)
    ai_result = run_scenario(name, minutes=minutes, ai_mode=True, seed=seed)
    manual_result = run_scenario(name, minutes=minutes, ai_mode=False, seed=seed)

    return RecommendationEngine().compare_performance(
        ai_result.samples, manual_result.samples, scenario=scenario.name
    )
