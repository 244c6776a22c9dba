"""
Conflict Detector
Deterministic rule-based detection of operational conflicts on a world snapshot.

Each rule:
- Has a unique identifier
- Checks a specific condition
- Returns zero or more ConflictAnalysis objects
- Is stateless (never mutates the snapshot)

Rules do not suppress each other; overlapping conflicts are reported independently.
"""

from abc import ABC, abstractmethod
import math
from typing import List, Optional

from .config import OptimizerConfig
from .models import (
    ConflictAnalysis, ConflictType, ResolutionOption, Severity,
    SimulationState, Signal, Station, TrainStatus
)


class ConflictRule(ABC):
    """Base class for all conflict detection rules."""

    rule_id: str
    description: str

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.config = config or OptimizerConfig()

    @abstractmethod
    def evaluate(self, state: SimulationState) -> List[ConflictAnalysis]:
        """Evaluate rule against a snapshot. Returns list of conflicts."""
        pass


# =============================================================================
# STATION RULES
# =============================================================================

class StationCongestionRule(ConflictRule):
    """
    Rule: STATION_CONGESTION_001
    Detects stations holding more trains than their capacity.

    Trigger: occupants > capacity
    Severity: CRITICAL above 1.5x capacity, HIGH otherwise
    Impact: (occupants - capacity) x 5 minutes
    """

    rule_id = "STATION_CONGESTION_001"
    description = "Station congestion detection"

    def evaluate(self, state: SimulationState) -> List[ConflictAnalysis]:
        conflicts = []

        for station in state.stations:
            occupants = station.occupancy
            if occupants <= station.capacity:
                continue

            critical = occupants > station.capacity * self.config.congestion_critical_ratio
            conflicts.append(ConflictAnalysis(
                conflict_id=f"station_congestion_{station.id}",
                conflict_type=ConflictType.STATION_CONGESTION,
                severity=Severity.CRITICAL if critical else Severity.HIGH,
                affected_trains=list(station.current_trains),
                affected_sections=[station.id],
                current_impact=(occupants - station.capacity) * self.config.congestion_impact_per_train,
                resolution_options=self._resolution_options(station)
            ))

        return conflicts

    def _resolution_options(self, station: Station) -> List[ResolutionOption]:
        return [
            ResolutionOption(
                id=f"platform_reallocation_{station.id}",
                option_type="platform_reallocation",
                description="Reallocate platforms to reduce congestion",
                estimated_delay_reduction=10,
                implementation_cost=2,
                feasibility=0.9,
                side_effects=["May affect other trains"]
            ),
            ResolutionOption(
                id=f"hold_trains_{station.id}",
                option_type="hold_trains",
                description="Hold incoming trains until congestion clears",
                estimated_delay_reduction=5,
                implementation_cost=1,
                feasibility=0.8,
                side_effects=["Delays for held trains"]
            ),
        ]


# =============================================================================
# SIGNAL RULES
# =============================================================================

class SignalFailureRule(ConflictRule):
    """
    Rule: SIGNAL_FAILURE_001
    Detects failed signals and the trains they hold up.

    Trigger: signal.failure
    Severity: always CRITICAL
    Impact: 10 minutes per train within 10 km of the signal
    """

    rule_id = "SIGNAL_FAILURE_001"
    description = "Signal failure detection"

    def evaluate(self, state: SimulationState) -> List[ConflictAnalysis]:
        conflicts = []

        for signal in state.signals:
            if not signal.failure:
                continue

            affected = [
                train.id for train in state.trains
                if abs(train.position - signal.position) < self.config.signal_radius_km
            ]
            conflicts.append(ConflictAnalysis(
                conflict_id=f"signal_failure_{signal.id}",
                conflict_type=ConflictType.SIGNAL_FAILURE,
                severity=Severity.CRITICAL,
                affected_trains=affected,
                affected_sections=[signal.id],
                current_impact=len(affected) * self.config.signal_impact_per_train,
                resolution_options=self._resolution_options(signal)
            ))

        return conflicts

    def _resolution_options(self, signal: Signal) -> List[ResolutionOption]:
        return [
            ResolutionOption(
                id=f"emergency_repair_{signal.id}",
                option_type="emergency_repair",
                description="Dispatch emergency repair team",
                estimated_delay_reduction=20,
                implementation_cost=5,
                feasibility=0.7,
                side_effects=["High cost", "Temporary service disruption"]
            ),
            ResolutionOption(
                id=f"temporary_measures_{signal.id}",
                option_type="temporary_measures",
                description="Implement temporary manual control",
                estimated_delay_reduction=10,
                implementation_cost=2,
                feasibility=0.9,
                side_effects=["Reduced efficiency"]
            ),
        ]


# =============================================================================
# TRAIN RULES
# =============================================================================

class TrackProximityRule(ConflictRule):
    """
    Rule: TRACK_PROXIMITY_001
    Detects pairs of trains on the open line closer than the minimum spacing.

    Trigger: |pos_i - pos_j| < 2 km with both positions > 0
    Severity: HIGH
    Impact: fixed 15 minutes
    One conflict per unordered pair, named in train order.
    """

    rule_id = "TRACK_PROXIMITY_001"
    description = "Track proximity detection"

    def evaluate(self, state: SimulationState) -> List[ConflictAnalysis]:
        conflicts = []
        trains = state.trains

        for i in range(len(trains)):
            for j in range(i + 1, len(trains)):
                first, second = trains[i], trains[j]
                if first.position <= 0 or second.position <= 0:
                    continue
                if abs(first.position - second.position) >= self.config.proximity_km:
                    continue

                section = int(math.floor(first.position / 10) * 10)
                conflicts.append(ConflictAnalysis(
                    conflict_id=f"track_conflict_{first.id}_{second.id}",
                    conflict_type=ConflictType.TRACK_CONFLICT,
                    severity=Severity.HIGH,
                    affected_trains=[first.id, second.id],
                    affected_sections=[str(section)],
                    current_impact=self.config.proximity_impact
                ))

        return conflicts


class PriorityConflictRule(ConflictRule):
    """
    Rule: PRIORITY_CONFLICT_001
    Detects a higher-priority train running close behind a slower, lower-priority one.

    Trigger: follower priority rank < leader rank, leader 0-5 km ahead,
             leader max speed < follower max speed, both on the move
    Severity: MEDIUM
    Impact: 5 minutes per rank of priority gap
    """

    rule_id = "PRIORITY_CONFLICT_001"
    description = "Priority inversion detection"

    def evaluate(self, state: SimulationState) -> List[ConflictAnalysis]:
        conflicts = []
        moving = [t for t in state.trains if t.status == TrainStatus.RUNNING and not t.completed]

        for follower in moving:
            for leader in moving:
                if leader.id == follower.id or leader.priority <= follower.priority:
                    continue
                gap = leader.position - follower.position
                if not 0 < gap < self.config.priority_window_km:
                    continue
                if leader.max_speed >= follower.max_speed:
                    continue

                section = int(math.floor(leader.position / 10) * 10)
                rank_gap = leader.priority - follower.priority
                conflicts.append(ConflictAnalysis(
                    conflict_id=f"priority_conflict_{follower.id}_{leader.id}",
                    conflict_type=ConflictType.PRIORITY_CONFLICT,
                    severity=Severity.MEDIUM,
                    affected_trains=[follower.id, leader.id],
                    affected_sections=[str(section)],
                    current_impact=rank_gap * self.config.priority_impact_per_rank
                ))

        return conflicts


# =============================================================================
# DETECTOR
# =============================================================================

DEFAULT_RULES = (
    StationCongestionRule,
    SignalFailureRule,
    TrackProximityRule,
    PriorityConflictRule,
)


class ConflictDetector:
    """Runs every rule over a snapshot, in rule order"""

    def __init__(self, rules: Optional[List[ConflictRule]] = None,
                 config: Optional[OptimizerConfig] = None):
        self.config = config or OptimizerConfig()
        if rules is None:
            rules = [rule_cls(self.config) for rule_cls in DEFAULT_RULES]
        self.rules = rules

    def detect(self, state: SimulationState) -> List[ConflictAnalysis]:
        conflicts = []
        for rule in self.rules:
            conflicts.extend(rule.evaluate(state))
        return conflicts

    def count(self, state: SimulationState) -> int:
        return len(self.detect(state))


def detect_conflicts(state: SimulationState,
                     config: Optional[OptimizerConfig] = None) -> List[ConflictAnalysis]:
    return ConflictDetector(config=config).detect(state)
