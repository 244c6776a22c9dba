"""
Recommendation strategies
One class per recommendation family; each turns a snapshot (and the detected
conflicts) into candidate Recommendations for the optimizer to filter and rank
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from .config import OptimizerConfig
from .models import (
    ConflictAnalysis, ConflictType, Recommendation, RecommendationPriority,
    RecommendationType, SimulationState, Train
)
from .platform_allocator import PlatformAllocator


class RecommendationStrategy(ABC):
    """Base class for recommendation families"""

    name: str

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.config = config or OptimizerConfig()

    @abstractmethod
    def propose(self, state: SimulationState,
                conflicts: List[ConflictAnalysis]) -> List[Recommendation]:
        pass


class ConflictResolutionStrategy(RecommendationStrategy):
    """One corrective action per detected conflict, in conflict order"""

    name = "conflict_resolution"

    def __init__(self, config: Optional[OptimizerConfig] = None,
                 allocator: Optional[PlatformAllocator] = None):
        super().__init__(config)
        self.allocator = allocator or PlatformAllocator(self.config)
        self._handlers: Dict[ConflictType, Callable] = {
            ConflictType.STATION_CONGESTION: self._resolve_congestion,
            ConflictType.SIGNAL_FAILURE: self._resolve_signal_failure,
            ConflictType.TRACK_CONFLICT: self._resolve_track_conflict,
            ConflictType.PRIORITY_CONFLICT: self._resolve_priority_conflict,
        }

    def propose(self, state: SimulationState,
                conflicts: List[ConflictAnalysis]) -> List[Recommendation]:
        recommendations = []
        for conflict in conflicts:
            handler = self._handlers.get(conflict.conflict_type)
            if handler:
                recommendations.append(handler(state, conflict))
        return recommendations

    def _resolve_congestion(self, state: SimulationState, conflict: ConflictAnalysis) -> Recommendation:
        station = state.find_station(conflict.affected_sections[0])
        parameters = {'station_id': conflict.affected_sections[0]}

        if station:
            occupants = [state.find_train(tid) for tid in station.current_trains]
            plan = self.allocator.allocate(station, [t for t in occupants if t is not None])
            parameters.update({
                'plan': dict(plan.assignments),
                'overflow': list(plan.overflow),
                'solver': plan.solver,
            })

        return Recommendation(
            id=f"congestion_{conflict.conflict_id}",
            recommendation_type=RecommendationType.PLATFORM_REALLOCATION,
            priority=RecommendationPriority.HIGH,
            title="Station Congestion Resolution",
            description=f"Reallocate platforms at {conflict.affected_sections[0]} to reduce congestion",
            impact=f"Reduce delay by {conflict.current_impact:g} minutes",
            confidence=90,
            action="Reassign platforms and adjust arrival times",
            estimated_savings=conflict.current_impact * 60,
            affected_trains=list(conflict.affected_trains),
            affected_sections=list(conflict.affected_sections),
            implementation_time=5,
            strategy=self.name,
            parameters=parameters
        )

    def _resolve_signal_failure(self, state: SimulationState, conflict: ConflictAnalysis) -> Recommendation:
        return Recommendation(
            id=f"signal_{conflict.conflict_id}",
            recommendation_type=RecommendationType.SIGNAL_REPAIR,
            priority=RecommendationPriority.HIGH,
            title="Signal Failure Response",
            description=f"Prioritize signal repair at {conflict.affected_sections[0]}",
            impact="Restore normal operations",
            confidence=95,
            action="Dispatch maintenance team and implement temporary measures",
            estimated_savings=conflict.current_impact * 60,
            affected_trains=list(conflict.affected_trains),
            affected_sections=list(conflict.affected_sections),
            implementation_time=15,
            strategy=self.name,
            parameters={'signal_ids': [conflict.affected_sections[0]]}
        )

    def _resolve_track_conflict(self, state: SimulationState, conflict: ConflictAnalysis) -> Recommendation:
        first, second = (state.find_train(tid) for tid in conflict.affected_trains[:2])
        # hold the lower-priority train; the second one on a tie
        held = second
        if first and second and first.priority > second.priority:
            held = first

        return Recommendation(
            id=f"track_{conflict.conflict_id}",
            recommendation_type=RecommendationType.REROUTE,
            priority=RecommendationPriority.MEDIUM,
            title="Track Conflict Resolution",
            description="Reroute trains to avoid track conflict",
            impact="Prevent cascading delays",
            confidence=80,
            action="Implement alternative routing",
            estimated_savings=300,
            affected_trains=list(conflict.affected_trains),
            affected_sections=list(conflict.affected_sections),
            implementation_time=10,
            strategy=self.name,
            parameters={
                'hold_train': held.id if held else conflict.affected_trains[-1],
                'hold_minutes': 2,
            }
        )

    def _resolve_priority_conflict(self, state: SimulationState, conflict: ConflictAnalysis) -> Recommendation:
        follower = conflict.affected_trains[0]
        return Recommendation(
            id=f"priority_{conflict.conflict_id}",
            recommendation_type=RecommendationType.PRIORITY_CHANGE,
            priority=RecommendationPriority.MEDIUM,
            title="Priority Precedence",
            description=f"Give {follower} precedence over {conflict.affected_trains[1]}",
            impact=f"Recover {conflict.current_impact:g} minutes for the faster train",
            confidence=75,
            action=f"Raise {follower} to top priority at the next passing point",
            estimated_savings=conflict.current_impact * 60,
            affected_trains=list(conflict.affected_trains),
            affected_sections=list(conflict.affected_sections),
            implementation_time=4,
            strategy=self.name,
            parameters={'train_ids': [follower], 'priority': 1}
        )


class DelayPredictionStrategy(RecommendationStrategy):
    """
    Predicts how a delayed train's lateness will grow under the current
    weather and local congestion, and proposes a speed-up when the
    prediction exceeds the growth ratio.
    """

    name = "delay_prediction"

    PRIORITY_FACTORS = {1: 0.8, 2: 0.9}

    def predict(self, train: Train, weather_severity: float, congestion: float) -> float:
        growth = 1 + weather_severity * 0.3 + congestion * 0.2
        priority_factor = self.PRIORITY_FACTORS.get(train.priority, 1.0)
        return train.delay * growth * priority_factor

    def congestion_at(self, state: SimulationState, position: float) -> float:
        nearby = [
            t for t in state.trains
            if abs(t.position - position) < self.config.congestion_radius_km
        ]
        return len(nearby) / 5

    def propose(self, state: SimulationState,
                conflicts: List[ConflictAnalysis]) -> List[Recommendation]:
        recommendations = []
        for train in state.trains:
            if train.delay <= self.config.delay_threshold_minutes:
                continue

            predicted = self.predict(train, state.weather.severity,
                                     self.congestion_at(state, train.position))
            if predicted <= train.delay * self.config.delay_growth_ratio:
                continue

            target_speed = min(train.max_speed, train.speed + 20)
            recommendations.append(Recommendation(
                id=f"delay_min_{train.id}",
                recommendation_type=RecommendationType.SPEED_ADJUSTMENT,
                priority=RecommendationPriority.MEDIUM,
                title="Delay Minimization",
                description=f"Increase speed for {train.name} to reduce delay",
                impact=f"Reduce delay by {round(predicted - train.delay)} minutes",
                confidence=80,
                action=f"Increase speed to {target_speed:g} km/h",
                estimated_savings=(predicted - train.delay) * 60,
                affected_trains=[train.id],
                affected_sections=[train.current_station] if train.current_station else [],
                implementation_time=3,
                strategy=self.name,
                parameters={'train_ids': [train.id], 'speed_limit': None, 'target_speed': target_speed}
            ))
        return recommendations


class EnergyOptimizationStrategy(RecommendationStrategy):
    """Caps trains whose accumulated energy draw exceeds a share of their max speed"""

    name = "energy_optimization"

    def propose(self, state: SimulationState,
                conflicts: List[ConflictAnalysis]) -> List[Recommendation]:
        recommendations = []
        for train in state.trains:
            if train.energy_consumption <= train.max_speed * self.config.energy_ratio:
                continue

            target_speed = train.max_speed * self.config.energy_ratio
            recommendations.append(Recommendation(
                id=f"energy_opt_{train.id}",
                recommendation_type=RecommendationType.SPEED_ADJUSTMENT,
                priority=RecommendationPriority.MEDIUM,
                title="Energy Optimization",
                description=f"Optimize speed profile for {train.name} to reduce energy consumption",
                impact="Reduce energy consumption by 15-20%",
                confidence=85,
                action=f"Adjust speed to {target_speed:g} km/h",
                estimated_savings=150,
                affected_trains=[train.id],
                affected_sections=[train.current_station] if train.current_station else [],
                implementation_time=2,
                strategy=self.name,
                parameters={'train_ids': [train.id], 'speed_limit': target_speed}
            ))
        return recommendations


class PassengerImpactStrategy(RecommendationStrategy):
    """Raises delayed passenger trains to top priority while passengers are being delayed"""

    name = "passenger_impact"

    def passenger_impact(self, trains: List[Train]) -> float:
        return sum(t.passenger_count * t.delay for t in trains if t.carries_passengers)

    def propose(self, state: SimulationState,
                conflicts: List[ConflictAnalysis]) -> List[Recommendation]:
        if self.passenger_impact(state.trains) <= 0:
            return []

        delayed = [t.id for t in state.trains if t.carries_passengers and t.delay > 0 and t.passenger_count > 0]
        return [Recommendation(
            id="priority_optimization",
            recommendation_type=RecommendationType.PRIORITY_CHANGE,
            priority=RecommendationPriority.HIGH,
            title="Passenger Priority Optimization",
            description="Prioritize passenger trains to minimize passenger impact",
            impact="Reduce passenger delay by 20-30%",
            confidence=85,
            action="Adjust train precedence to favor passenger trains",
            estimated_savings=600,
            affected_trains=delayed,
            affected_sections=[],
            implementation_time=5,
            strategy=self.name,
            parameters={'train_ids': delayed, 'priority': 1}
        )]


DEFAULT_STRATEGIES = (
    ConflictResolutionStrategy,
    DelayPredictionStrategy,
    EnergyOptimizationStrategy,
    PassengerImpactStrategy,
)
