"""
Recommendation Engine for the corridor decision support system
Detects conflicts on a snapshot, collects candidate corrective actions from the
strategies, filters and ranks them, and reports metrics, a plan and a confidence
"""

import logging
from typing import Dict, List, Optional, Union

from .config import OptimizerConfig
from .conflicts import ConflictDetector
from .models import (
    PRIORITY_WEIGHTS, SEVERITY_SCORES, ConflictAnalysis, Disruption, DisruptionType,
    ImplementationStep, KPIs, KPISummary, OptimizationMetrics, OptimizationResult,
    PerformanceComparison, Recommendation, RecommendationPriority, RecommendationType,
    SimulationState, Train
)
from .strategies import DEFAULT_STRATEGIES, RecommendationStrategy

logger = logging.getLogger(__name__)

WEATHER_SPEED_LIMIT = 60.0  # km/h, advised under adverse weather


def score_recommendation(recommendation: Recommendation) -> float:
    """Weighted ranking score; higher ranks first"""
    priority_score = PRIORITY_WEIGHTS[recommendation.priority]
    confidence_score = recommendation.confidence / 100
    savings_score = min(recommendation.estimated_savings / 1000, 1)
    feasibility_score = 1 - (recommendation.implementation_time / 30)

    return priority_score * 0.3 + confidence_score * 0.3 + savings_score * 0.2 + feasibility_score * 0.2


class RecommendationEngine:
    """
    Pull-based optimizer. optimize() works on a deep-copied snapshot and never
    mutates the simulation; corrective actions are applied by the caller (see
    LiveRailwayController) through the engine's mutation API.

    Ranking is a stable sort on descending score: equal scores keep generation
    order, i.e. conflict resolutions in conflict order, then delay, energy and
    passenger candidates in train order.
    """

    def __init__(self, simulation=None, config: Optional[OptimizerConfig] = None,
                 strategies: Optional[List[RecommendationStrategy]] = None,
                 detector: Optional[ConflictDetector] = None):
        self.simulation = simulation
        self.config = config or OptimizerConfig()
        self.detector = detector or ConflictDetector(config=self.config)
        if strategies is None:
            strategies = [strategy_cls(self.config) for strategy_cls in DEFAULT_STRATEGIES]
        self.strategies = strategies

        self.optimization_history: List[OptimizationResult] = []
        self._strategy_stats: Dict[str, Dict[str, int]] = {}
        self._reset_strategy_stats()

        self._disruption_handlers = {
            DisruptionType.SIGNAL_FAILURE: self._signal_failure_response,
            DisruptionType.WEATHER: self._weather_response,
            DisruptionType.EMERGENCY_TRAIN: self._emergency_response,
            DisruptionType.TRACK_BLOCKAGE: lambda disruption, trains: [],
        }

    def _reset_strategy_stats(self):
        self._strategy_stats = {s.name: {'proposed': 0, 'selected': 0} for s in self.strategies}

    def _snapshot(self, state: Optional[SimulationState]) -> SimulationState:
        if state is not None:
            return state
        if self.simulation is None:
            raise ValueError("No simulation attached and no snapshot given")
        return self.simulation.get_state()

    # -------------------------------------------------------------------------
    # Main pipeline
    # -------------------------------------------------------------------------

    def optimize(self, state: Optional[SimulationState] = None) -> OptimizationResult:
        """Run detect -> propose -> filter -> rank -> metrics -> plan -> confidence"""
        state = self._snapshot(state)

        conflicts = self.detector.detect(state)
        candidates = self.generate_candidates(state, conflicts)
        recommendations = self.rank_candidates(candidates)
        metrics = self.calculate_metrics(recommendations, state.trains)
        implementation_plan = self.build_implementation_plan(recommendations)
        confidence = self.calculate_confidence(recommendations, conflicts)

        self._record_strategy_outcomes(candidates, recommendations)

        result = OptimizationResult(
            success=len(recommendations) > 0,
            recommendations=recommendations,
            conflicts=conflicts,
            metrics=metrics,
            confidence=confidence,
            implementation_plan=implementation_plan,
            timestamp=state.current_time
        )
        self.optimization_history.append(result)

        logger.info(f"Optimization at minute {state.current_time}: {len(conflicts)} conflicts, "
                    f"{len(candidates)} candidates, {len(recommendations)} recommendations "
                    f"(confidence {confidence:.1f})")
        return result

    def generate_candidates(self, state: SimulationState,
                            conflicts: List[ConflictAnalysis]) -> List[Recommendation]:
        candidates = []
        for strategy in self.strategies:
            candidates.extend(strategy.propose(state, conflicts))
        return candidates

    def rank_candidates(self, candidates: List[Recommendation]) -> List[Recommendation]:
        qualified = [c for c in candidates if c.confidence > self.config.confidence_threshold]
        ranked = sorted(qualified, key=score_recommendation, reverse=True)
        return ranked[:self.config.max_recommendations]

    def calculate_metrics(self, recommendations: List[Recommendation],
                          trains: List[Train]) -> OptimizationMetrics:
        delay_reduction = sum(
            r.estimated_savings for r in recommendations
            if r.recommendation_type in (RecommendationType.SPEED_ADJUSTMENT, RecommendationType.REROUTE)
        ) / 60

        energy_saved = sum(
            r.estimated_savings for r in recommendations
            if r.recommendation_type == RecommendationType.SPEED_ADJUSTMENT
        )

        throughput_improvement = len([
            r for r in recommendations
            if r.recommendation_type == RecommendationType.PLATFORM_REALLOCATION
        ]) * 0.1

        passenger_impact = sum(t.passenger_count for t in trains if t.carries_passengers) * 0.05

        if trains:
            mean_delay = sum(t.delay for t in trains) / len(trains)
            system_efficiency = max(0.0, 100 - mean_delay * 10)
        else:
            system_efficiency = 0.0

        return OptimizationMetrics(
            delay_reduction=round(delay_reduction, 2),
            energy_saved=round(energy_saved, 2),
            throughput_improvement=round(throughput_improvement, 2),
            passenger_impact=round(passenger_impact, 2),
            system_efficiency=round(system_efficiency, 2)
        )

    def build_implementation_plan(self, recommendations: List[Recommendation]) -> List[ImplementationStep]:
        return [
            ImplementationStep(
                step=index + 1,
                action=rec.action,
                target=', '.join(rec.affected_sections),
                duration=rec.implementation_time,
                dependencies=[f"step_{index}"] if index > 0 else [],
                expected_outcome=rec.impact
            )
            for index, rec in enumerate(recommendations)
        ]

    def calculate_confidence(self, recommendations: List[Recommendation],
                             conflicts: List[ConflictAnalysis]) -> float:
        if not recommendations:
            return 0.0

        average_confidence = sum(r.confidence for r in recommendations) / len(recommendations)
        historical_factor = self.historical_performance()

        conflict_factor = 0.0
        if conflicts:
            severity_total = sum(SEVERITY_SCORES[c.severity] for c in conflicts)
            conflict_factor = min(severity_total / (len(conflicts) * 4), 1)

        confidence = average_confidence * historical_factor * (1 + conflict_factor * 0.1)
        return round(min(confidence, self.config.confidence_cap), 2)

    def historical_performance(self) -> float:
        """Rolling factor over the last results; 1.0 with no history"""
        if not self.optimization_history:
            return 1.0

        recent = self.optimization_history[-self.config.history_window:]
        success_rate = len([r for r in recent if r.success]) / len(recent)
        average_gain = sum(r.metrics.delay_reduction + r.metrics.energy_saved for r in recent) / len(recent)

        return min(success_rate * 1.2 + (average_gain / 1000) * 0.1, 1.0)

    def _record_strategy_outcomes(self, candidates: List[Recommendation],
                                  selected: List[Recommendation]):
        selected_ids = {id(r) for r in selected}
        for candidate in candidates:
            stats = self._strategy_stats.setdefault(candidate.strategy, {'proposed': 0, 'selected': 0})
            stats['proposed'] += 1
            if id(candidate) in selected_ids:
                stats['selected'] += 1

    # -------------------------------------------------------------------------
    # Disruption response
    # -------------------------------------------------------------------------

    def handle_disruption(self, disruption: Disruption,
                          state: Optional[SimulationState] = None) -> List[Recommendation]:
        """Fixed response set keyed by disruption type; does not run the pipeline"""
        if state is None and self.simulation is None:
            trains = []
        else:
            trains = self._snapshot(state).trains

        affected = [
            t for t in trains
            if any(abs(t.position - float(section)) < self.config.signal_radius_km
                   for section in disruption.affected_sections)
        ]

        handler = self._disruption_handlers[disruption.disruption_type]
        recommendations = handler(disruption, affected)
        logger.info(f"Disruption {disruption.id} ({disruption.disruption_type.value}): "
                    f"{len(recommendations)} recommendations for {len(affected)} trains")
        return recommendations

    def _sections(self, disruption: Disruption) -> List[str]:
        return [f"{section:g}" for section in disruption.affected_sections]

    def _signal_failure_response(self, disruption: Disruption, affected: List[Train]) -> List[Recommendation]:
        sections = self._sections(disruption)
        return [Recommendation(
            id=f"signal_failure_{disruption.id}",
            recommendation_type=RecommendationType.SIGNAL_REPAIR,
            priority=RecommendationPriority.HIGH,
            title="Signal Failure Response",
            description=f"Emergency response to signal failure at {sections[0] if sections else 'unknown section'}",
            impact="Restore signal functionality",
            confidence=90,
            action="Dispatch maintenance team and implement temporary control",
            estimated_savings=1200,
            affected_trains=[t.id for t in affected],
            affected_sections=sections,
            implementation_time=15,
            strategy="disruption_response",
            parameters={'signal_ids': list(disruption.affected_sections)}
        )]

    def _weather_response(self, disruption: Disruption, affected: List[Train]) -> List[Recommendation]:
        return [Recommendation(
            id=f"weather_{disruption.id}",
            recommendation_type=RecommendationType.SPEED_ADJUSTMENT,
            priority=RecommendationPriority.MEDIUM,
            title="Weather Adaptation",
            description="Adjust operations for weather conditions",
            impact="Maintain safety while minimizing delays",
            confidence=85,
            action="Reduce speeds and increase headways",
            estimated_savings=600,
            affected_trains=[t.id for t in affected],
            affected_sections=self._sections(disruption),
            implementation_time=5,
            strategy="disruption_response",
            parameters={'train_ids': [t.id for t in affected], 'speed_limit': WEATHER_SPEED_LIMIT,
                        'until': disruption.end_time}
        )]

    def _emergency_response(self, disruption: Disruption, affected: List[Train]) -> List[Recommendation]:
        held = [t.id for t in affected if t.priority > 1]
        return [Recommendation(
            id=f"emergency_{disruption.id}",
            recommendation_type=RecommendationType.PRIORITY_CHANGE,
            priority=RecommendationPriority.HIGH,
            title="Emergency Train Priority",
            description="Clear path for emergency train",
            impact="Ensure emergency response",
            confidence=95,
            action="Hold all other trains and clear emergency route",
            estimated_savings=0,
            affected_trains=[t.id for t in affected],
            affected_sections=self._sections(disruption),
            implementation_time=3,
            strategy="disruption_response",
            parameters={'hold_trains': held, 'hold_minutes': 3}
        )]

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def compare_performance(self, ai_runs: List[Union[KPIs, Dict]], manual_runs: List[Union[KPIs, Dict]],
                            scenario: str = "AI vs Manual Comparison") -> PerformanceComparison:
        """Reduce two batches of KPI samples to mean KPIs and report the deltas"""
        ai_mode = self._summarize(ai_runs)
        manual_mode = self._summarize(manual_runs)

        return PerformanceComparison(
            scenario=scenario,
            ai_mode=ai_mode,
            manual_mode=manual_mode,
            improvement={
                'delay_reduction': round(manual_mode.average_delay - ai_mode.average_delay, 2),
                'efficiency_gain': round(ai_mode.system_efficiency - manual_mode.system_efficiency, 2),
                'energy_saved': round(manual_mode.energy_usage - ai_mode.energy_usage, 2),
                'conflict_reduction': round(manual_mode.conflicts - ai_mode.conflicts, 2),
            }
        )

    def _summarize(self, runs: List[Union[KPIs, Dict]]) -> KPISummary:
        if not runs:
            return KPISummary()

        samples = [KPIs.from_dict(run) if isinstance(run, dict) else run for run in runs]
        count = len(samples)
        return KPISummary(
            average_delay=round(sum(s.average_delay for s in samples) / count, 2),
            system_efficiency=round(sum(s.system_efficiency for s in samples) / count, 2),
            energy_usage=round(sum(s.energy_usage for s in samples) / count, 2),
            conflicts=round(sum(s.conflicts for s in samples) / count, 2),
            samples=count
        )

    def get_optimization_history(self) -> List[OptimizationResult]:
        return list(self.optimization_history)

    def get_strategy_performance(self) -> Dict[str, float]:
        """Share of each strategy's candidates that made it into a result (1.0 if none proposed)"""
        performance = {}
        for name, stats in self._strategy_stats.items():
            if stats['proposed'] == 0:
                performance[name] = 1.0
            else:
                performance[name] = round(stats['selected'] / stats['proposed'], 3)
        return performance

    def get_optimization_summary(self) -> Dict:
        successful = [r for r in self.optimization_history if r.success]
        return {
            'total_runs': len(self.optimization_history),
            'successful_runs': len(successful),
            'historical_factor': round(self.historical_performance(), 3),
            'last_confidence': self.optimization_history[-1].confidence if self.optimization_history else 0.0,
            'strategy_performance': self.get_strategy_performance(),
        }

    def reset(self):
        self.optimization_history = []
        self._reset_strategy_stats()
        logger.info("Optimizer history cleared")
