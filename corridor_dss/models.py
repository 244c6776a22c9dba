"""
World model for the corridor simulation and the analysis layer
Entities are plain dataclasses; enumerated fields use Enums whose values are the wire strings
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar, Union


# =============================================================================
# Enums
# =============================================================================

class TrainClass(Enum):
    EXPRESS = "express"
    FREIGHT = "freight"
    SUBURBAN = "suburban"


class TrainStatus(Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    DELAYED = "delayed"
    EARLY = "early"


class SignalState(Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class WeatherType(Enum):
    CLEAR = "clear"
    FOG = "fog"
    RAIN = "rain"
    STORM = "storm"


class DisruptionType(Enum):
    SIGNAL_FAILURE = "signal_failure"
    TRACK_BLOCKAGE = "track_blockage"
    WEATHER = "weather"
    EMERGENCY_TRAIN = "emergency_train"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConflictType(Enum):
    TRACK_CONFLICT = "track_conflict"
    STATION_CONGESTION = "station_congestion"
    SIGNAL_FAILURE = "signal_failure"
    PRIORITY_CONFLICT = "priority_conflict"


class RecommendationType(Enum):
    REROUTE = "reroute"
    PRIORITY_CHANGE = "priority_change"
    SPEED_ADJUSTMENT = "speed_adjustment"
    PLATFORM_REALLOCATION = "platform_reallocation"
    SIGNAL_REPAIR = "signal_repair"


class RecommendationPriority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PASSENGER_CLASSES = (TrainClass.EXPRESS, TrainClass.SUBURBAN)

SEVERITY_SCORES = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}

PRIORITY_WEIGHTS = {
    RecommendationPriority.HIGH: 3,
    RecommendationPriority.MEDIUM: 2,
    RecommendationPriority.LOW: 1,
}

E = TypeVar('E', bound=Enum)


def coerce_enum(enum_cls: Type[E], value: Union[E, str]) -> E:
    """Accept either an enum member or its string value"""
    if isinstance(value, enum_cls):
        return value
    return enum_cls(value)


def _to_plain(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {k: _to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_plain(item) for item in obj]
    return obj


class SerializableMixin:
    def to_dict(self) -> Dict:
        return _to_plain(asdict(self))


# =============================================================================
# Infrastructure
# =============================================================================

@dataclass
class Station(SerializableMixin):
    id: str
    name: str
    position: float
    platforms: int
    capacity: int
    current_trains: List[str] = field(default_factory=list)
    waiting_trains: List[str] = field(default_factory=list)
    platform_occupancy: Dict[str, Optional[str]] = field(default_factory=dict)

    def __post_init__(self):
        if not self.platform_occupancy:
            self.platform_occupancy = {f"P{i}": None for i in range(1, self.platforms + 1)}

    @property
    def occupancy(self) -> int:
        return len(self.current_trains)

    @property
    def is_at_capacity(self) -> bool:
        return self.occupancy >= self.capacity

    def free_platform(self) -> Optional[str]:
        for platform, train_id in self.platform_occupancy.items():
            if train_id is None:
                return platform
        return None

    def platform_of(self, train_id: str) -> Optional[str]:
        for platform, occupant in self.platform_occupancy.items():
            if occupant == train_id:
                return platform
        return None

    def release(self, train_id: str):
        """Remove a train from occupants, platforms and the waiting queue"""
        if train_id in self.current_trains:
            self.current_trains.remove(train_id)
        if train_id in self.waiting_trains:
            self.waiting_trains.remove(train_id)
        platform = self.platform_of(train_id)
        if platform:
            self.platform_occupancy[platform] = None


@dataclass
class Signal(SerializableMixin):
    id: str
    position: float
    state: SignalState = SignalState.GREEN
    failure: bool = False
    last_change: int = 0
    controlled_by: str = "system"


@dataclass
class Junction(SerializableMixin):
    """Modeled for snapshots only; the engine does not route through junctions"""
    id: str
    name: str
    position: float
    connections: List[str] = field(default_factory=list)
    current_trains: List[str] = field(default_factory=list)
    queue: List[str] = field(default_factory=list)


# =============================================================================
# Environment
# =============================================================================

# (severity, speed_reduction, visibility_reduction)
WEATHER_PRESETS = {
    WeatherType.CLEAR: (0.0, 0.0, 0.0),
    WeatherType.FOG: (0.7, 0.5, 0.8),
    WeatherType.RAIN: (0.4, 0.25, 0.3),
    WeatherType.STORM: (0.9, 0.6, 0.6),
}


@dataclass
class WeatherCondition(SerializableMixin):
    weather_type: WeatherType = WeatherType.CLEAR
    severity: float = 0.0
    speed_reduction: float = 0.0
    visibility_reduction: float = 0.0
    start_time: int = 0
    end_time: Optional[int] = None

    @classmethod
    def clear(cls, start_time: int = 0) -> "WeatherCondition":
        return cls(start_time=start_time)

    @classmethod
    def preset(cls, weather_type: WeatherType, start_time: int,
               end_time: Optional[int] = None) -> "WeatherCondition":
        severity, speed_reduction, visibility_reduction = WEATHER_PRESETS[weather_type]
        return cls(weather_type, severity, speed_reduction, visibility_reduction,
                   start_time, end_time)

    @property
    def is_clear(self) -> bool:
        return self.weather_type == WeatherType.CLEAR

    def has_expired(self, current_time: int) -> bool:
        return self.end_time is not None and current_time >= self.end_time


@dataclass
class Disruption(SerializableMixin):
    """
    An injected disruption. The kind is closed over DisruptionType; only the
    weather kind carries a payload (the condition it installs).
    """
    id: str
    disruption_type: DisruptionType
    severity: Severity
    affected_sections: List[float]
    start_time: int
    duration: int
    description: str = ""
    resolved: bool = False
    activated: bool = False
    weather: Optional[WeatherCondition] = None

    @property
    def end_time(self) -> int:
        return self.start_time + self.duration


# =============================================================================
# Rolling stock
# =============================================================================

@dataclass
class Train(SerializableMixin):
    id: str
    name: str
    train_class: TrainClass
    priority: int               # 1 = highest
    position: float             # km from origin
    max_speed: float            # km/h
    speed: float = 0.0
    status: TrainStatus = TrainStatus.RUNNING
    delay: float = 0.0          # minutes, negative when early
    passenger_count: int = 0
    energy_consumption: float = 0.0
    route: List[str] = field(default_factory=list)
    current_station: Optional[str] = None
    next_station: Optional[str] = None
    departure_time: int = 0     # scheduled departure minute, used by the timetable estimator

    # Operator controls
    speed_limit: Optional[float] = None
    speed_limit_until: Optional[int] = None   # minute the limit lapses, None for standing limits
    hold_until: Optional[int] = None

    # Station stop bookkeeping
    dwell_until: Optional[int] = None
    completed: bool = False

    @property
    def is_moving(self) -> bool:
        return self.status in (TrainStatus.RUNNING, TrainStatus.EARLY)

    @property
    def carries_passengers(self) -> bool:
        return self.train_class in PASSENGER_CLASSES


# =============================================================================
# Events and KPIs
# =============================================================================

@dataclass(frozen=True)
class Event(SerializableMixin):
    id: str
    timestamp: int
    event_type: str
    description: str
    train_id: Optional[str] = None
    station_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class KPIs(SerializableMixin):
    trains_cleared_per_hour: float = 0.0
    average_delay: float = 0.0
    passenger_impact: float = 0.0
    energy_usage: float = 0.0
    system_efficiency: float = 0.0
    conflicts: int = 0
    total_delay: float = 0.0
    throughput: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict) -> "KPIs":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class SimulationState(SerializableMixin):
    current_time: int
    is_running: bool
    speed: float
    weather: WeatherCondition
    trains: List[Train]
    stations: List[Station]
    signals: List[Signal]
    junctions: List[Junction]
    disruptions: List[Disruption]
    kpis: KPIs
    events: List[Event]
    corridor_length: float = 120.0

    def find_train(self, train_id: str) -> Optional[Train]:
        return next((t for t in self.trains if t.id == train_id), None)

    def find_station(self, station_id: str) -> Optional[Station]:
        return next((s for s in self.stations if s.id == station_id), None)


# =============================================================================
# Analysis results
# =============================================================================

@dataclass
class ResolutionOption(SerializableMixin):
    id: str
    option_type: str
    description: str
    estimated_delay_reduction: float
    implementation_cost: float
    feasibility: float
    side_effects: List[str] = field(default_factory=list)


@dataclass
class ConflictAnalysis(SerializableMixin):
    conflict_id: str
    conflict_type: ConflictType
    severity: Severity
    affected_trains: List[str]
    affected_sections: List[str]
    current_impact: float
    resolution_options: List[ResolutionOption] = field(default_factory=list)


@dataclass
class Recommendation(SerializableMixin):
    id: str
    recommendation_type: RecommendationType
    priority: RecommendationPriority
    title: str
    description: str
    impact: str
    confidence: float
    action: str
    estimated_savings: float
    affected_trains: List[str]
    affected_sections: List[str]
    implementation_time: float
    strategy: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ImplementationStep(SerializableMixin):
    step: int
    action: str
    target: str
    duration: float
    dependencies: List[str]
    expected_outcome: str


@dataclass
class OptimizationMetrics(SerializableMixin):
    delay_reduction: float = 0.0
    energy_saved: float = 0.0
    throughput_improvement: float = 0.0
    passenger_impact: float = 0.0
    system_efficiency: float = 0.0


@dataclass
class OptimizationResult(SerializableMixin):
    success: bool
    recommendations: List[Recommendation]
    conflicts: List[ConflictAnalysis]
    metrics: OptimizationMetrics
    confidence: float
    implementation_plan: List[ImplementationStep]
    timestamp: int = 0


@dataclass
class KPISummary(SerializableMixin):
    average_delay: float = 0.0
    system_efficiency: float = 0.0
    energy_usage: float = 0.0
    conflicts: float = 0.0
    samples: int = 0


@dataclass
class PerformanceComparison(SerializableMixin):
    scenario: str
    ai_mode: KPISummary
    manual_mode: KPISummary
    improvement: Dict[str, float]
