"""
Platform allocation for congested stations
Binary assignment of station occupants to platforms solved with PuLP/CBC
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pulp

from .config import OptimizerConfig
from .models import SerializableMixin, Station, Train

logger = logging.getLogger(__name__)

PRIORITY_WEIGHT = 10.0      # per rank above the lowest (priority 3)
PASSENGER_WEIGHT = 0.01     # per passenger on board
KEEP_PLATFORM_BONUS = 5.0   # for leaving a train where it already stands
ORDER_EPSILON = 1e-3        # earlier trains win exact ties


@dataclass
class PlatformPlan(SerializableMixin):
    station_id: str
    assignments: Dict[str, Optional[str]]   # platform -> train id
    overflow: List[str] = field(default_factory=list)
    objective: float = 0.0
    status: str = "optimal"
    solver: str = "cbc"
    computation_time: float = 0.0

    @property
    def placed_trains(self) -> List[str]:
        return [train_id for train_id in self.assignments.values() if train_id]


class PlatformAllocator:
    """
    Chooses which trains keep a platform at a station. Each train may take at
    most one platform and each platform at most one train; the objective
    favours high-priority, heavily loaded trains and trains that are already
    berthed on a platform.
    """

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.config = config or OptimizerConfig()

    def train_weight(self, train: Train, station: Station, index: int = 0) -> float:
        weight = (4 - min(train.priority, 3)) * PRIORITY_WEIGHT
        weight += train.passenger_count * PASSENGER_WEIGHT
        if station.platform_of(train.id):
            weight += KEEP_PLATFORM_BONUS
        return weight - index * ORDER_EPSILON

    def allocate(self, station: Station, trains: List[Train]) -> PlatformPlan:
        platforms = list(station.platform_occupancy.keys())
        if not trains or not platforms:
            return PlatformPlan(
                station_id=station.id,
                assignments={p: None for p in platforms},
                overflow=[t.id for t in trains],
                status="trivial",
                solver="none"
            )

        weights = {t.id: self.train_weight(t, station, i) for i, t in enumerate(trains)}

        try:
            return self._solve(station, trains, platforms, weights)
        except pulp.PulpError as e:
            logger.error(f"Platform assignment solver error at {station.id}: {e}")
            return self._greedy(station, trains, platforms, weights, status="error")

    def _solve(self, station: Station, trains: List[Train], platforms: List[str],
               weights: Dict[str, float]) -> PlatformPlan:
        start_time = time.time()
        prob = pulp.LpProblem(f"Platform_Assignment_{station.id}", pulp.LpMaximize)

        x = {}
        for i, train in enumerate(trains):
            for j, platform in enumerate(platforms):
                x[(train.id, platform)] = pulp.LpVariable(f"x_{i}_{j}", cat='Binary')

        prob += pulp.lpSum([
            weights[train.id] * x[(train.id, platform)]
            for train in trains for platform in platforms
        ])

        for platform in platforms:
            prob += pulp.lpSum([x[(train.id, platform)] for train in trains]) <= 1

        for train in trains:
            prob += pulp.lpSum([x[(train.id, platform)] for platform in platforms]) <= 1

        solver = pulp.PULP_CBC_CMD(msg=False, timeLimit=self.config.solver_time_limit)
        prob.solve(solver)

        if prob.status != pulp.LpStatusOptimal:
            logger.warning(f"Platform assignment at {station.id} ended with status "
                           f"{pulp.LpStatus[prob.status]}, falling back to greedy plan")
            return self._greedy(station, trains, platforms, weights, status=pulp.LpStatus[prob.status].lower())

        assignments = {platform: None for platform in platforms}
        for train in trains:
            for platform in platforms:
                if (pulp.value(x[(train.id, platform)]) or 0) > 0.5:
                    assignments[platform] = train.id

        placed = set(assignments.values())
        plan = PlatformPlan(
            station_id=station.id,
            assignments=assignments,
            overflow=[t.id for t in trains if t.id not in placed],
            objective=round(pulp.value(prob.objective) or 0.0, 3),
            status="optimal",
            solver="cbc",
            computation_time=time.time() - start_time
        )
        logger.info(f"Platform plan for {station.id}: {len(plan.placed_trains)} placed, "
                    f"{len(plan.overflow)} overflow in {plan.computation_time:.2f}s")
        return plan

    def _greedy(self, station: Station, trains: List[Train], platforms: List[str],
                weights: Dict[str, float], status: str) -> PlatformPlan:
        assignments = {platform: None for platform in platforms}
        ranked = sorted(trains, key=lambda t: weights[t.id], reverse=True)

        for train in ranked:
            current = station.platform_of(train.id)
            if current in assignments and assignments[current] is None:
                assignments[current] = train.id
                continue
            free = next((p for p in platforms if assignments[p] is None), None)
            if free is None:
                break
            assignments[free] = train.id

        placed = set(assignments.values())
        return PlatformPlan(
            station_id=station.id,
            assignments=assignments,
            overflow=[t.id for t in trains if t.id not in placed],
            objective=round(sum(weights[tid] for tid in placed if tid), 3),
            status=status,
            solver="greedy"
        )
