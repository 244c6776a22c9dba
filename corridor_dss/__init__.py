"""
Corridor DSS - simulation and decision support for a double-track railway corridor
"""

from .config import OptimizerConfig, SimulationConfig
from .conflicts import ConflictDetector, detect_conflicts
from .events import EventChannel
from .live_controller import LiveRailwayController
from .optimizer import RecommendationEngine
from .simulation import RailwaySimulation

__version__ = "0.1.0"

__all__ = [
    'ConflictDetector',
    'EventChannel',
    'LiveRailwayController',
    'OptimizerConfig',
    'RailwaySimulation',
    'RecommendationEngine',
    'SimulationConfig',
    'detect_conflicts',
]
