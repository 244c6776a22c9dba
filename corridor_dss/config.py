"""
Configuration for the corridor decision support system
Every tunable constant of the simulation engine and the optimizer lives here
"""

import os
from dataclasses import dataclass, field
from typing import Dict


@dataclass
class SimulationConfig:
    """Constants of the tick-driven corridor simulation"""
    corridor_length: float = 120.0      # km
    tick_minutes: int = 1               # simulated minutes per tick
    base_interval_seconds: float = 1.0  # wall-clock seconds per tick at speed 1
    min_speed: float = 0.1
    max_speed: float = 10.0
    initial_speed: float = 1.0

    acceleration_step: float = 5.0      # km/h gained per tick
    arrival_window_km: float = 1.0
    capacity_penalty_minutes: float = 5.0
    waiting_delay_per_tick: float = 1.0
    signal_block_km: float = 5.0
    signal_lookahead_km: float = 10.0
    signal_spacing_km: int = 10
    yellow_speed_factor: float = 0.5
    energy_factor: float = 0.1

    dwell_minutes: Dict[str, int] = field(default_factory=lambda: {
        'express': 2,
        'suburban': 1,
        'freight': 3,
    })

    placeholder_arrival_spread: float = 10.0
    state_log_interval: int = 1
    seed: int = 42

    def clamp_speed(self, speed: float) -> float:
        return max(self.min_speed, min(self.max_speed, speed))

    @classmethod
    def from_env(cls) -> "SimulationConfig":
        """Build a config, overriding the seed and speed from the environment"""
        config = cls()
        if os.environ.get('CORRIDOR_DSS_SEED'):
            config.seed = int(os.environ['CORRIDOR_DSS_SEED'])
        if os.environ.get('CORRIDOR_DSS_SPEED'):
            config.initial_speed = config.clamp_speed(float(os.environ['CORRIDOR_DSS_SPEED']))
        return config


@dataclass
class OptimizerConfig:
    """Constants of conflict detection, recommendation scoring and live control"""
    # Conflict detection
    congestion_critical_ratio: float = 1.5
    congestion_impact_per_train: float = 5.0
    signal_radius_km: float = 10.0
    signal_impact_per_train: float = 10.0
    proximity_km: float = 2.0
    proximity_impact: float = 15.0
    priority_window_km: float = 5.0
    priority_impact_per_rank: float = 5.0

    # Candidate filtering and ranking
    confidence_threshold: float = 70.0
    max_recommendations: int = 5
    history_window: int = 10
    confidence_cap: float = 95.0

    # Strategy thresholds
    delay_threshold_minutes: float = 10.0
    delay_growth_ratio: float = 1.5
    congestion_radius_km: float = 10.0
    energy_ratio: float = 0.8

    # Platform reallocation solver
    solver_time_limit: int = 10

    # Live control
    optimization_interval: int = 15        # simulated minutes between live runs
    auto_approve_low_impact: bool = True
    auto_approve_max_implementation: float = 3.0
    auto_approve_confidence: float = 101.0  # above the 0-100 range: off unless lowered

    @classmethod
    def from_env(cls) -> "OptimizerConfig":
        config = cls()
        if os.environ.get('CORRIDOR_DSS_OPTIMIZATION_INTERVAL'):
            config.optimization_interval = int(os.environ['CORRIDOR_DSS_OPTIMIZATION_INTERVAL'])
        return config
