"""
Railway Corridor Simulation Engine
Discrete-time simulation of a 120 km double-line section: train movement, station
occupancy, signal aspects, disruptions and KPIs, advanced one simulated minute per tick
"""

import copy
import itertools
import logging
import random
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Union

from .config import SimulationConfig
from .conflicts import ConflictDetector
from .events import EventChannel
from .models import (
    Disruption, DisruptionType, Event, Junction, KPIs, Severity, Signal, SignalState,
    SimulationState, Station, Train, TrainClass, TrainStatus, WeatherCondition,
    WeatherType, coerce_enum
)

logger = logging.getLogger(__name__)

# (id, name, position km, platforms, capacity)
STATION_LAYOUT = [
    ('A', 'Station A', 0, 4, 8),
    ('B', 'Junction B', 30, 6, 12),
    ('C', 'Station C', 60, 3, 6),
    ('D', 'Station D', 90, 4, 8),
    ('E', 'Junction E', 120, 5, 10),
]

# (id, name, position km, connections)
JUNCTION_LAYOUT = [
    ('J1', 'Junction B', 30, ['A', 'C']),
    ('J2', 'Junction E', 120, ['D', 'F']),
]

# (id prefix, name, class, count, priority, max speed km/h, passenger range)
DEFAULT_FLEET = [
    ('E', 'Express', TrainClass.EXPRESS, 8, 1, 120, (800, 1200)),
    ('F', 'Freight', TrainClass.FREIGHT, 4, 3, 80, (0, 0)),
    ('L', 'Local', TrainClass.SUBURBAN, 2, 2, 60, (200, 300)),
]

DEFAULT_ROUTE = ['A', 'B', 'C', 'D', 'E']


# =============================================================================
# Arrival estimators
# =============================================================================

class ArrivalEstimator(ABC):
    """Supplies the expected arrival minute used to compute delay on arrival"""

    @abstractmethod
    def expected_arrival(self, train: Train, station: Station, current_time: int) -> float:
        pass


class PlaceholderArrivalEstimator(ArrivalEstimator):
    """
    Stand-in estimate: now plus a uniform draw in [0, spread). Carries no
    scheduling intent; with it a punctual arrival always records zero delay.
    """

    def __init__(self, rng: random.Random, spread: float = 10.0):
        self.rng = rng
        self.spread = spread

    def expected_arrival(self, train: Train, station: Station, current_time: int) -> float:
        return current_time + self.rng.uniform(0, self.spread)


class TimetableArrivalEstimator(ArrivalEstimator):
    """Looks up expected arrivals in a per-train timetable (train id -> station id -> minute)"""

    def __init__(self, timetable: Dict[str, Dict[str, float]],
                 fallback: Optional[ArrivalEstimator] = None):
        self.timetable = timetable
        self.fallback = fallback

    def expected_arrival(self, train: Train, station: Station, current_time: int) -> float:
        scheduled = self.timetable.get(train.id, {}).get(station.id)
        if scheduled is not None:
            return scheduled
        if self.fallback:
            return self.fallback.expected_arrival(train, station, current_time)
        return current_time

    @classmethod
    def from_running_times(cls, trains: List[Train], stations: List[Station],
                           config: Optional[SimulationConfig] = None,
                           margin: float = 1.1) -> "TimetableArrivalEstimator":
        """
        Build a timetable from each train's scheduled departure minute, its class
        maximum speed (padded by margin) and the class dwell at every stop.
        """
        config = config or SimulationConfig()
        positions = {s.id: s.position for s in stations}
        timetable = {}

        for train in trains:
            schedule = {}
            minute = float(train.departure_time)
            position = train.position
            dwell = config.dwell_minutes.get(train.train_class.value, 2)
            for station_id in train.route:
                station_position = positions.get(station_id)
                if station_position is None or station_position <= position:
                    continue
                running = (station_position - position) / train.max_speed * 60 * margin
                minute += running
                schedule[station_id] = round(minute, 2)
                minute += dwell
                position = station_position
            timetable[train.id] = schedule

        return cls(timetable)


# =============================================================================
# Engine
# =============================================================================

class RailwaySimulation:
    """
    Owns the world model and advances it on a fixed-period tick.

    All mutation (tick, lifecycle controls and the operator mutation API) is
    serialized through one re-entrant lock, so external callers may invoke
    mutation methods from any thread between or during ticks.
    """

    def __init__(self, config: Optional[SimulationConfig] = None,
                 rng: Optional[random.Random] = None,
                 detector: Optional[ConflictDetector] = None,
                 arrival_estimator: Optional[ArrivalEstimator] = None):
        self.config = config or SimulationConfig()
        self.rng = rng or random.Random(self.config.seed)
        self._initial_rng_state = self.rng.getstate()
        self.detector = detector or ConflictDetector()
        self.arrival_estimator = arrival_estimator or PlaceholderArrivalEstimator(
            self.rng, self.config.placeholder_arrival_spread
        )

        self.channel = EventChannel()
        self._lock = threading.RLock()
        self._timer_thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._disruption_counter = itertools.count(1)

        self._disruption_handlers: Dict[DisruptionType, Callable[[Disruption], None]] = {
            DisruptionType.SIGNAL_FAILURE: self._apply_signal_failure,
            DisruptionType.TRACK_BLOCKAGE: self._apply_external_trigger,
            DisruptionType.WEATHER: self._apply_weather,
            DisruptionType.EMERGENCY_TRAIN: self._apply_external_trigger,
        }

        self.state = self._initialize_simulation()

    # -------------------------------------------------------------------------
    # World construction
    # -------------------------------------------------------------------------

    def _initialize_simulation(self) -> SimulationState:
        stations = [
            Station(id=sid, name=name, position=pos, platforms=platforms, capacity=capacity)
            for sid, name, pos, platforms, capacity in STATION_LAYOUT
        ]

        signals = [
            Signal(id=f"S{km}", position=km)
            for km in range(0, int(self.config.corridor_length) + 1, self.config.signal_spacing_km)
        ]

        junctions = [
            Junction(id=jid, name=name, position=pos, connections=list(connections))
            for jid, name, pos, connections in JUNCTION_LAYOUT
        ]

        state = SimulationState(
            current_time=0,
            is_running=False,
            speed=self.config.initial_speed,
            weather=WeatherCondition.clear(),
            trains=[],
            stations=stations,
            signals=signals,
            junctions=junctions,
            disruptions=[],
            kpis=KPIs(),
            events=[],
            corridor_length=self.config.corridor_length
        )
        state.trains = self._initialize_trains(stations)
        state.kpis = self.calculate_kpis(state.trains, state)
        return state

    def _initialize_trains(self, stations: List[Station]) -> List[Train]:
        trains = []
        for prefix, name, train_class, count, priority, max_speed, passengers in DEFAULT_FLEET:
            for i in range(1, count + 1):
                low, high = passengers
                train = Train(
                    id=f"{prefix}{i}",
                    name=f"{name} {i}",
                    train_class=train_class,
                    priority=priority,
                    position=self.rng.uniform(0, self.config.corridor_length),
                    max_speed=max_speed,
                    passenger_count=int(self.rng.uniform(low, high)) if high else 0,
                    route=list(DEFAULT_ROUTE)
                )
                train.next_station = self._first_station_ahead(train, stations)
                trains.append(train)
        return trains

    def _first_station_ahead(self, train: Train, stations: List[Station]) -> Optional[str]:
        positions = {s.id: s.position for s in stations}
        for station_id in train.route:
            if station_id in positions and positions[station_id] > train.position:
                return station_id
        return None

    # -------------------------------------------------------------------------
    # Lifecycle controls
    # -------------------------------------------------------------------------

    @property
    def tick_interval(self) -> float:
        """Wall-clock seconds between ticks at the current speed"""
        return self.config.base_interval_seconds / self.state.speed

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    def start(self):
        """Start the periodic tick; no-op when already running"""
        with self._lock:
            if self.state.is_running:
                return

            self.state.is_running = True
            self._stop_event = threading.Event()
            self._timer_thread = threading.Thread(
                target=self._timer_loop,
                args=(self._stop_event, self.tick_interval),
                name="corridor-tick",
                daemon=True
            )
            self._timer_thread.start()
            self._log_event('simulation_started', 'Simulation started')
        logger.info(f"Simulation started (speed x{self.state.speed}, tick every {self.tick_interval:.2f}s)")

    def pause(self):
        """Cancel the periodic tick, preserving state"""
        with self._lock:
            self.state.is_running = False
            stop_event, thread = self._stop_event, self._timer_thread
            self._stop_event = None
            self._timer_thread = None
            if stop_event:
                stop_event.set()
            self._log_event('simulation_paused', 'Simulation paused')

        if thread and thread is not threading.current_thread():
            thread.join(timeout=2)
        logger.info("Simulation paused")

    def reset(self):
        """Pause and rebuild the default world from the original random state"""
        self.pause()
        with self._lock:
            self.rng.setstate(self._initial_rng_state)
            self.channel.clear()
            self._disruption_counter = itertools.count(1)
            self.state = self._initialize_simulation()
            self._log_event('simulation_reset', 'Simulation reset')
        logger.info("Simulation has been reset to its initial state.")

    def set_speed(self, speed: float) -> float:
        """Clamp the speed multiplier to [0.1, 10]; restart the timer if running"""
        with self._lock:
            self.state.speed = self.config.clamp_speed(float(speed))
            restart = self.state.is_running

        if restart:
            self.pause()
            self.start()
        logger.info(f"Simulation speed set to x{self.state.speed}")
        return self.state.speed

    def destroy(self):
        self.pause()
        with self._lock:
            self.channel.clear_listeners()

    def _timer_loop(self, stop_event: threading.Event, interval: float):
        while not stop_event.wait(interval):
            try:
                with self._lock:
                    if stop_event.is_set():
                        break
                    self.tick()
            except Exception as e:
                logger.error(f"Error in simulation tick: {e}")

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def tick(self):
        """Advance simulated time by one tick and apply every rule in order"""
        with self._lock:
            self.state.current_time += self.config.tick_minutes

            self._process_station_stops()
            self._update_train_positions()
            self._update_signals()
            self._handle_disruptions()
            self.state.kpis = self.calculate_kpis(self.state.trains)

            if self.state.current_time % self.config.state_log_interval == 0:
                self._log_state()

    def run_for(self, minutes: int):
        """Tick synchronously for a number of simulated minutes"""
        for _ in range(max(0, int(minutes))):
            self.tick()

    def _process_station_stops(self):
        now = self.state.current_time

        for train in list(self.state.trains):
            if (train.status == TrainStatus.STOPPED and train.current_station
                    and train.dwell_until is not None and now >= train.dwell_until):
                self._depart_train(train)

        for station in self.state.stations:
            self._admit_waiting_trains(station)

    def _depart_train(self, train: Train):
        station = self.state.find_station(train.current_station)
        if station:
            station.release(train.id)
        train.dwell_until = None

        if train.completed:
            self.state.trains.remove(train)
            train.status = TrainStatus.STOPPED
            train.current_station = None
            train.next_station = None
            self._log_event('train_exited', f"Train {train.id} left the corridor at {station.name if station else 'terminus'}",
                            train_id=train.id, station_id=station.id if station else None)
            return

        train.status = TrainStatus.EARLY if train.delay < 0 else TrainStatus.RUNNING
        train.speed = 0.0
        train.current_station = None
        self._log_event('train_departed', f"Train {train.id} departed {station.name if station else 'station'}",
                        train_id=train.id, station_id=station.id if station else None,
                        data={'next_station': train.next_station})

    def _admit_waiting_trains(self, station: Station):
        if not station.waiting_trains:
            return

        queue_order = {train_id: index for index, train_id in enumerate(station.waiting_trains)}
        waiting = [t for t in self.state.trains if t.id in queue_order]
        waiting.sort(key=lambda t: (t.priority, queue_order[t.id]))

        for train in waiting:
            if station.is_at_capacity:
                train.delay += self.config.waiting_delay_per_tick
            else:
                self._admit_train(train, station, from_queue=True)

    def _update_train_positions(self):
        now = self.state.current_time

        for train in self.state.trains:
            if train.speed_limit_until is not None and now >= train.speed_limit_until:
                self._lift_speed_limit(train)

        for train in self.state.trains:
            if not train.is_moving:
                continue

            target_speed = self._target_speed(train, now)
            train.speed = min(train.speed + self.config.acceleration_step, target_speed)

            distance_moved = (train.speed / 60) * self.config.tick_minutes
            train.position = min(self.config.corridor_length, train.position + distance_moved)

            next_station = self.state.find_station(train.next_station) if train.next_station else None
            if next_station and train.position >= next_station.position - self.config.arrival_window_km:
                self._handle_train_arrival(train, next_station)

            train.energy_consumption += train.speed * self.config.energy_factor

    def _lift_speed_limit(self, train: Train):
        train.speed_limit = None
        train.speed_limit_until = None
        self._log_event('speed_limit_lifted', f"Train {train.id} speed limit lifted", train_id=train.id)

    def _target_speed(self, train: Train, now: int) -> float:
        target_speed = train.max_speed

        weather = self.state.weather
        if not weather.is_clear:
            target_speed *= (1 - weather.speed_reduction)

        if train.speed_limit is not None:
            target_speed = min(target_speed, train.speed_limit)

        if train.hold_until is not None:
            if now < train.hold_until:
                target_speed = 0.0
            else:
                train.hold_until = None
                self._log_event('train_released', f"Train {train.id} released from hold", train_id=train.id)

        signal_ahead = self._get_signal_ahead(train.position)
        if signal_ahead:
            if signal_ahead.state == SignalState.RED:
                target_speed = 0.0
            elif signal_ahead.state == SignalState.YELLOW:
                target_speed *= self.config.yellow_speed_factor

        return max(0.0, target_speed)

    def _get_signal_ahead(self, position: float) -> Optional[Signal]:
        for signal in self.state.signals:
            if position < signal.position < position + self.config.signal_lookahead_km:
                return signal
        return None

    def _handle_train_arrival(self, train: Train, station: Station):
        if station.is_at_capacity:
            train.delay += self.config.capacity_penalty_minutes
            train.status = TrainStatus.DELAYED
            train.speed = 0.0
            if train.id not in station.waiting_trains:
                station.waiting_trains.append(train.id)
            self._log_event('train_delayed', f"Train {train.id} delayed at {station.name}",
                            train_id=train.id, station_id=station.id,
                            data={'delay': train.delay, 'occupancy': station.occupancy})
        else:
            self._admit_train(train, station, from_queue=False)

    def _admit_train(self, train: Train, station: Station, from_queue: bool):
        now = self.state.current_time

        if train.id in station.waiting_trains:
            station.waiting_trains.remove(train.id)
        station.current_trains.append(train.id)
        platform = station.free_platform()
        if platform:
            station.platform_occupancy[platform] = train.id

        expected_arrival = self.arrival_estimator.expected_arrival(train, station, now)
        arrival_delay = max(0.0, now - expected_arrival)
        train.delay = max(train.delay, arrival_delay) if from_queue else arrival_delay

        train.status = TrainStatus.STOPPED
        train.speed = 0.0
        train.current_station = station.id
        train.completed = bool(train.route) and station.id == train.route[-1]
        train.next_station = None if train.completed else self._following_station(train, station)
        train.dwell_until = now + self.config.dwell_minutes.get(train.train_class.value, 2)

        self._log_event('train_arrived', f"Train {train.id} arrived at {station.name}",
                        train_id=train.id, station_id=station.id,
                        data={'platform': platform, 'delay': train.delay})

    def _following_station(self, train: Train, station: Station) -> Optional[str]:
        if station.id in train.route:
            index = train.route.index(station.id)
            return train.route[index + 1] if index + 1 < len(train.route) else None
        return self._first_station_ahead(train, self.state.stations)

    def _update_signals(self):
        now = self.state.current_time
        block = self.config.signal_block_km

        for signal in self.state.signals:
            if signal.failure:
                new_state = SignalState.RED
            else:
                occupied = any(
                    signal.position < train.position < signal.position + block
                    for train in self.state.trains
                )
                new_state = SignalState.RED if occupied else SignalState.GREEN

            if new_state != signal.state:
                signal.state = new_state
                signal.last_change = now

    # -------------------------------------------------------------------------
    # Disruptions
    # -------------------------------------------------------------------------

    def _handle_disruptions(self):
        now = self.state.current_time

        for disruption in self.state.disruptions:
            if disruption.resolved:
                continue
            if not disruption.activated and now >= disruption.start_time:
                self._apply_disruption(disruption)
            if disruption.activated and now >= disruption.end_time:
                disruption.resolved = True
                self._log_event('disruption_resolved', f"Disruption {disruption.id} ({disruption.disruption_type.value}) ended",
                                data={'disruption_id': disruption.id})

        weather = self.state.weather
        if not weather.is_clear and weather.has_expired(now):
            self.state.weather = WeatherCondition.clear(now)
            self._log_event('weather_cleared', f"{weather.weather_type.value.title()} cleared")

    def _apply_disruption(self, disruption: Disruption):
        disruption.activated = True
        self._disruption_handlers[disruption.disruption_type](disruption)
        self._log_event('disruption_activated', f"Disruption activated: {disruption.disruption_type.value}",
                        data={'disruption_id': disruption.id,
                              'affected_sections': list(disruption.affected_sections)})
        logger.info(f"Disruption {disruption.id} ({disruption.disruption_type.value}) active "
                    f"on sections {disruption.affected_sections}")

    def _apply_signal_failure(self, disruption: Disruption):
        for signal in self._signals_at(disruption.affected_sections):
            signal.failure = True
            if signal.state != SignalState.RED:
                signal.state = SignalState.RED
                signal.last_change = self.state.current_time

    def _apply_weather(self, disruption: Disruption):
        self.state.weather = copy.deepcopy(disruption.weather) or WeatherCondition.preset(
            WeatherType.FOG, disruption.start_time, disruption.end_time
        )

    def _apply_external_trigger(self, disruption: Disruption):
        """Track blockages and emergency trains are left to the optimizer"""
        pass

    def _signals_at(self, sections: List[float]) -> List[Signal]:
        return [
            signal for signal in self.state.signals
            if any(abs(signal.position - float(section)) < 1e-9 for section in sections)
        ]

    def inject_disruption(self, disruption_type: Union[DisruptionType, str],
                          affected_sections: List[float],
                          start_time: Optional[int] = None,
                          duration: int = 30,
                          severity: Union[Severity, str] = Severity.HIGH,
                          description: str = "",
                          weather_type: Union[WeatherType, str] = WeatherType.FOG) -> Disruption:
        """
        Queue a disruption; it takes effect on the first tick at or after its
        start time. Sections, start time and duration are taken as given.

        Raises ValueError when a type, severity or weather string names no
        member of its enum, since such a disruption has no handler.
        """
        with self._lock:
            disruption_type = coerce_enum(DisruptionType, disruption_type)
            severity = coerce_enum(Severity, severity)
            weather_type = coerce_enum(WeatherType, weather_type)
            start = self.state.current_time if start_time is None else int(start_time)
            disruption = Disruption(
                id=f"disruption_{next(self._disruption_counter)}",
                disruption_type=disruption_type,
                severity=severity,
                affected_sections=[float(s) for s in affected_sections],
                start_time=start,
                duration=int(duration),
                description=description
            )
            if disruption_type == DisruptionType.WEATHER:
                disruption.weather = WeatherCondition.preset(weather_type, start, start + int(duration))

            self.state.disruptions.append(disruption)
            self._log_event('disruption_injected', f"Disruption injected: {disruption_type.value}",
                            data={'disruption_id': disruption.id, 'start_time': start})
        logger.info(f"Injected {disruption.id} ({disruption_type.value}) starting at minute {start}")
        return copy.deepcopy(disruption)

    def resolve_disruption(self, disruption_id: str) -> bool:
        """Operator resolution: end the disruption and undo its engine-side effects"""
        with self._lock:
            disruption = next((d for d in self.state.disruptions if d.id == disruption_id), None)
            if not disruption or disruption.resolved:
                return False

            disruption.resolved = True
            if disruption.disruption_type == DisruptionType.SIGNAL_FAILURE:
                for signal in self._signals_at(disruption.affected_sections):
                    signal.failure = False
                self._update_signals()
            elif disruption.disruption_type == DisruptionType.WEATHER and disruption.activated:
                self.state.weather = WeatherCondition.clear(self.state.current_time)
                for train in self.state.trains:
                    if train.speed_limit_until == disruption.end_time:
                        self._lift_speed_limit(train)

            self._log_event('disruption_resolved', f"Disruption {disruption_id} resolved by operator",
                            data={'disruption_id': disruption_id})
        logger.info(f"Disruption {disruption_id} resolved by operator")
        return True

    # -------------------------------------------------------------------------
    # Operator mutation API
    # -------------------------------------------------------------------------

    def repair_signal(self, signal_ref: Union[str, float]) -> bool:
        """Clear a signal's failure flag; accepts a signal id ("S30") or km position"""
        with self._lock:
            signal = self._find_signal(signal_ref)
            if not signal:
                return False
            was_failed = signal.failure
            signal.failure = False
            self._update_signals()
            self._log_event('signal_repaired', f"Signal {signal.id} repaired",
                            data={'signal_id': signal.id, 'was_failed': was_failed})
        logger.info(f"Signal {signal.id} repaired")
        return True

    def _find_signal(self, signal_ref: Union[str, float]) -> Optional[Signal]:
        for signal in self.state.signals:
            if signal.id == str(signal_ref):
                return signal
        try:
            position = float(signal_ref)
        except (TypeError, ValueError):
            return None
        return next((s for s in self.state.signals if abs(s.position - position) < 1e-9), None)

    def set_train_speed_limit(self, train_id: str, speed_limit: Optional[float],
                              until: Optional[int] = None) -> bool:
        """Cap a train's speed, lifted on the first tick at or after `until` when given"""
        with self._lock:
            train = self.state.find_train(train_id)
            if not train:
                return False
            train.speed_limit = None if speed_limit is None else max(0.0, float(speed_limit))
            train.speed_limit_until = None if speed_limit is None or until is None else int(until)
            self._log_event('speed_limit_set', f"Train {train_id} speed limit set to {train.speed_limit}",
                            train_id=train_id, data={'speed_limit': train.speed_limit,
                                                     'until': train.speed_limit_until})
        return True

    def hold_train(self, train_id: str, minutes: float) -> bool:
        with self._lock:
            train = self.state.find_train(train_id)
            if not train:
                return False
            train.hold_until = self.state.current_time + int(round(minutes))
            self._log_event('train_held', f"Train {train_id} held for {minutes} minutes",
                            train_id=train_id, data={'hold_until': train.hold_until})
        return True

    def set_train_priority(self, train_id: str, priority: int) -> bool:
        with self._lock:
            train = self.state.find_train(train_id)
            if not train:
                return False
            old_priority = train.priority
            train.priority = max(1, int(priority))
            self._log_event('priority_changed', f"Train {train_id} priority {old_priority} -> {train.priority}",
                            train_id=train_id, data={'old': old_priority, 'new': train.priority})
        return True

    def assign_platforms(self, station_id: str, plan: Dict[str, str]) -> bool:
        """
        Apply a platform plan (platform -> train id) at a station. Occupants left
        without a platform while the station is over capacity move to the
        waiting queue, lowest priority first.
        """
        with self._lock:
            station = self.state.find_station(station_id)
            if not station:
                return False

            occupancy = {platform: None for platform in station.platform_occupancy}
            for platform, train_id in plan.items():
                if platform in occupancy and train_id in station.current_trains:
                    occupancy[platform] = train_id
            station.platform_occupancy = occupancy

            placed = {train_id for train_id in occupancy.values() if train_id}
            overflow = station.occupancy - station.capacity
            if overflow > 0:
                unplaced = [self.state.find_train(tid) for tid in station.current_trains if tid not in placed]
                unplaced = [t for t in unplaced if t is not None]
                unplaced.sort(key=lambda t: t.priority, reverse=True)
                for train in unplaced[:overflow]:
                    station.current_trains.remove(train.id)
                    station.waiting_trains.append(train.id)
                    train.status = TrainStatus.DELAYED
                    train.dwell_until = None
                    train.completed = False
                    train.current_station = None
                    train.next_station = station.id
                    self._log_event('train_held', f"Train {train.id} moved to the waiting line at {station.name}",
                                    train_id=train.id, station_id=station.id)

            self._log_event('platforms_reassigned', f"Platforms reassigned at {station.name}",
                            station_id=station.id, data={'plan': dict(occupancy)})
        logger.info(f"Applied platform plan at {station_id}: {plan}")
        return True

    def add_train(self, train: Train) -> bool:
        with self._lock:
            if self.state.find_train(train.id):
                return False
            train = copy.deepcopy(train)
            train.position = max(0.0, min(self.config.corridor_length, train.position))
            if train.next_station is None and not train.completed:
                train.next_station = self._first_station_ahead(train, self.state.stations)
            self.state.trains.append(train)
            self._log_event('train_added', f"Train {train.id} entered the corridor at km {train.position:.1f}",
                            train_id=train.id)
        return True

    # -------------------------------------------------------------------------
    # KPIs
    # -------------------------------------------------------------------------

    def calculate_kpis(self, trains: List[Train], state: Optional[SimulationState] = None) -> KPIs:
        """Aggregate KPIs; an empty train set yields all-zero KPIs"""
        if not trains:
            return KPIs()

        state = state or getattr(self, 'state', None)
        current_time = state.current_time if state else 0

        total_delay = sum(train.delay for train in trains)
        average_delay = total_delay / len(trains)
        trains_running = len([t for t in trains if t.status == TrainStatus.RUNNING])
        passenger_impact = sum(t.passenger_count * t.delay for t in trains if t.carries_passengers)
        energy_usage = sum(t.energy_consumption for t in trains)
        conflicts = self.detector.count(state) if state else 0
        throughput = trains_running / (current_time / 60) if current_time > 0 else 0.0
        system_efficiency = max(0.0, 100 - (average_delay / 10) * 100)

        return KPIs(
            trains_cleared_per_hour=round(throughput, 2),
            average_delay=round(average_delay, 2),
            passenger_impact=round(passenger_impact),
            energy_usage=round(energy_usage, 2),
            system_efficiency=round(system_efficiency, 2),
            conflicts=conflicts,
            total_delay=round(total_delay),
            throughput=round(throughput, 2)
        )

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def _log_event(self, event_type: str, description: str, train_id: Optional[str] = None,
                   station_id: Optional[str] = None, data: Optional[Dict] = None) -> Event:
        return self.channel.publish(self.state.current_time, event_type, description,
                                    train_id=train_id, station_id=station_id, data=data)

    def _log_state(self):
        summary = {
            'timestamp': self.state.current_time,
            'trains': [
                {'id': t.id, 'position': round(t.position, 2), 'delay': t.delay, 'status': t.status.value}
                for t in self.state.trains
            ],
            'signals': [
                {'id': s.id, 'state': s.state.value, 'failure': s.failure}
                for s in self.state.signals
            ],
            'kpis': self.state.kpis.to_dict()
        }
        logger.debug(f"[{self.state.current_time}min] {summary}")
        self._log_event('tick', f"Simulation minute {self.state.current_time}",
                        data={'kpis': summary['kpis']})

    def add_event_listener(self, listener: Callable[[Event], None]):
        self.channel.subscribe(listener)

    def remove_event_listener(self, listener: Callable[[Event], None]) -> bool:
        return self.channel.unsubscribe(listener)

    # -------------------------------------------------------------------------
    # Read API
    # -------------------------------------------------------------------------

    def get_state(self) -> SimulationState:
        with self._lock:
            snapshot = copy.deepcopy(self.state)
            snapshot.events = self.channel.events
        return snapshot

    def get_trains(self) -> List[Train]:
        with self._lock:
            return copy.deepcopy(self.state.trains)

    def get_train(self, train_id: str) -> Optional[Train]:
        with self._lock:
            return copy.deepcopy(self.state.find_train(train_id))

    def get_stations(self) -> List[Station]:
        with self._lock:
            return copy.deepcopy(self.state.stations)

    def get_signals(self) -> List[Signal]:
        with self._lock:
            return copy.deepcopy(self.state.signals)

    def get_junctions(self) -> List[Junction]:
        with self._lock:
            return copy.deepcopy(self.state.junctions)

    def get_disruptions(self) -> List[Disruption]:
        with self._lock:
            return copy.deepcopy(self.state.disruptions)

    def get_kpis(self) -> KPIs:
        with self._lock:
            return copy.deepcopy(self.state.kpis)

    def get_events(self) -> List[Event]:
        return self.channel.events
