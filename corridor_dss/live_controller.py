"""
Live Railway Control System
Runs the recommendation engine on the simulation clock and routes every
recommendation through an operator approval workflow before it touches the world
"""

import itertools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from .config import OptimizerConfig
from .models import (
    Event, OptimizationResult, Recommendation, RecommendationPriority,
    RecommendationType, SerializableMixin
)
from .optimizer import RecommendationEngine

logger = logging.getLogger(__name__)


class DecisionStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    APPLIED = "applied"


@dataclass
class OptimizationDecision(SerializableMixin):
    decision_id: str
    recommendation: Recommendation
    timestamp: int
    status: DecisionStatus = DecisionStatus.PENDING
    approval_reason: Optional[str] = None
    applied_at: Optional[int] = None

    @property
    def decision_type(self) -> RecommendationType:
        return self.recommendation.recommendation_type

    def to_dict(self) -> Dict:
        result = super().to_dict()
        result['decision_type'] = self.decision_type.value
        result['title'] = self.recommendation.title
        result['message'] = self.recommendation.action
        return result


class LiveRailwayController:
    """
    Live control loop driven by the simulation's tick events. Every
    optimization_interval simulated minutes it runs optimize(); each resulting
    recommendation becomes a decision that is either auto-applied (low impact)
    or parked for an operator to approve or reject.
    """

    def __init__(self, simulation, optimizer: Optional[RecommendationEngine] = None,
                 config: Optional[OptimizerConfig] = None):
        self.simulation = simulation
        self.config = config or (optimizer.config if optimizer else OptimizerConfig())
        self.optimizer = optimizer or RecommendationEngine(simulation, self.config)

        # Live control state
        self.running = False
        self.optimization_interval = self.config.optimization_interval
        self.last_optimization_time: Optional[int] = None

        # Decision approval settings
        self.auto_approve_low_impact = self.config.auto_approve_low_impact
        self.auto_approve_threshold = self.config.auto_approve_max_implementation

        # Decisions
        self._lock = threading.Lock()
        self._decision_counter = itertools.count(1)
        self.pending_decisions: List[OptimizationDecision] = []
        self.optimization_decisions: List[OptimizationDecision] = []
        self.auto_applied_decisions: List[OptimizationDecision] = []
        self.live_events: List[Dict] = []

        # Performance tracking
        self.optimization_stats = {
            'total_optimizations': 0,
            'decisions_generated': 0,
            'auto_approved': 0,
            'manual_approvals_needed': 0,
            'applied': 0,
            'rejected': 0,
            'total_savings': 0.0
        }

        self._appliers: Dict[RecommendationType, Callable[[Recommendation], bool]] = {
            RecommendationType.SIGNAL_REPAIR: self._apply_signal_repair,
            RecommendationType.SPEED_ADJUSTMENT: self._apply_speed_adjustment,
            RecommendationType.PRIORITY_CHANGE: self._apply_priority_change,
            RecommendationType.REROUTE: self._apply_reroute,
            RecommendationType.PLATFORM_REALLOCATION: self._apply_platform_reallocation,
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start_live_control(self):
        """Start optimizing on the simulation clock"""
        if self.running:
            return

        self.running = True
        self.simulation.add_event_listener(self._on_simulation_event)
        logger.info(f"Live Railway Control System started (every {self.optimization_interval} min)")

    def stop_live_control(self):
        """Stop the live railway control system"""
        self.running = False
        self.simulation.remove_event_listener(self._on_simulation_event)
        logger.info("Live Railway Control System stopped")

    def _on_simulation_event(self, event: Event):
        if not self.running:
            return

        if event.event_type == 'disruption_activated':
            self.respond_to_disruption(event.data.get('disruption_id'), event.timestamp)
        elif event.event_type == 'tick':
            if (self.last_optimization_time is None
                    or event.timestamp - self.last_optimization_time >= self.optimization_interval):
                self.run_live_optimization(event.timestamp)

    def respond_to_disruption(self, disruption_id: str, current_time: int) -> List[OptimizationDecision]:
        """Feed the fixed disruption response set into the approval workflow"""
        disruption = next((d for d in self.simulation.state.disruptions if d.id == disruption_id), None)
        if not disruption:
            return []

        recommendations = self.optimizer.handle_disruption(disruption)
        return self.process_recommendations(recommendations, current_time)

    # -------------------------------------------------------------------------
    # Optimization and approval workflow
    # -------------------------------------------------------------------------

    def run_live_optimization(self, current_time: Optional[int] = None) -> OptimizationResult:
        """Run one optimization pass and feed its recommendations into the workflow"""
        result = self.optimizer.optimize()
        current_time = result.timestamp if current_time is None else current_time

        self.last_optimization_time = current_time
        self.optimization_stats['total_optimizations'] += 1
        self.process_recommendations(result.recommendations, current_time)
        return result

    def process_recommendations(self, recommendations: List[Recommendation],
                                current_time: int) -> List[OptimizationDecision]:
        """Turn recommendations into decisions; auto-apply the low-impact ones"""
        decisions = []

        for recommendation in recommendations:
            with self._lock:
                if any(d.recommendation.id == recommendation.id for d in self.pending_decisions):
                    continue
                decision = OptimizationDecision(
                    decision_id=f"decision_{next(self._decision_counter)}",
                    recommendation=recommendation,
                    timestamp=current_time
                )
                self.optimization_stats['decisions_generated'] += 1
                auto = self._can_auto_approve(decision)
                if not auto:
                    self.pending_decisions.append(decision)
                    self.optimization_stats['manual_approvals_needed'] += 1
                    self._create_approval_notification(decision)

            decisions.append(decision)

            if auto:
                decision.status = DecisionStatus.APPROVED
                decision.approval_reason = "Auto-approved (low impact)"
                if self._apply_decision(decision):
                    with self._lock:
                        self.auto_applied_decisions.append(decision)
                        self.optimization_stats['auto_approved'] += 1
                    logger.info(f"Auto-approved and applied: {decision.decision_type.value} ({recommendation.id})")
                else:
                    logger.error(f"Failed to apply auto-approved decision: {decision.decision_id}")
            else:
                logger.info(f"Decision requires approval: {decision.decision_type.value} ({recommendation.id})")

        return decisions

    def _can_auto_approve(self, decision: OptimizationDecision) -> bool:
        """Determine if a decision can be auto-approved"""
        if not self.auto_approve_low_impact:
            return False

        recommendation = decision.recommendation

        # Quick actions that are not flagged high priority
        if (recommendation.implementation_time <= self.auto_approve_threshold
                and recommendation.priority != RecommendationPriority.HIGH):
            return True

        if recommendation.confidence >= self.config.auto_approve_confidence:
            return True

        return False

    def approve_decision(self, decision_id: str, approval_reason: str = "Manually approved") -> bool:
        """Approve a pending decision and apply it"""
        decision = self._take_pending(decision_id)
        if not decision:
            return False

        decision.status = DecisionStatus.APPROVED
        decision.approval_reason = approval_reason
        applied = self._apply_decision(decision)

        with self._lock:
            self.optimization_decisions.append(decision)

        if applied:
            logger.info(f"Manually approved and applied: {decision.decision_id}")
        else:
            logger.error(f"Failed to apply approved decision: {decision.decision_id}")
        return applied

    def reject_decision(self, decision_id: str, rejection_reason: str = "Rejected by operator") -> bool:
        """Reject a pending decision"""
        decision = self._take_pending(decision_id)
        if not decision:
            return False

        decision.status = DecisionStatus.REJECTED
        decision.approval_reason = rejection_reason
        with self._lock:
            self.optimization_decisions.append(decision)
            self.optimization_stats['rejected'] += 1

        logger.info(f"Decision rejected: {decision.decision_id} - {rejection_reason}")
        return True

    def _take_pending(self, decision_id: str) -> Optional[OptimizationDecision]:
        with self._lock:
            for decision in self.pending_decisions:
                if decision.decision_id == decision_id:
                    self.pending_decisions.remove(decision)
                    return decision
        return None

    def _create_approval_notification(self, decision: OptimizationDecision):
        """Create notification for operators about pending decision"""
        recommendation = decision.recommendation
        self.live_events.append({
            'type': 'decision_approval_needed',
            'decision_id': decision.decision_id,
            'decision_type': decision.decision_type.value,
            'priority': recommendation.priority.value,
            'affected_trains': list(recommendation.affected_trains),
            'timestamp': decision.timestamp,
            'message': f"{recommendation.title}: {recommendation.action}"
        })

    # -------------------------------------------------------------------------
    # Applying decisions through the simulation's mutation API
    # -------------------------------------------------------------------------

    def _apply_decision(self, decision: OptimizationDecision) -> bool:
        """Apply a decision to the live system"""
        try:
            applied = self._appliers[decision.decision_type](decision.recommendation)
        except Exception as e:
            logger.error(f"Failed to apply decision {decision.decision_id}: {e}")
            return False

        if applied:
            decision.status = DecisionStatus.APPLIED
            decision.applied_at = self.simulation.state.current_time
            with self._lock:
                self.optimization_stats['applied'] += 1
                self.optimization_stats['total_savings'] += decision.recommendation.estimated_savings
        return applied

    def _apply_signal_repair(self, recommendation: Recommendation) -> bool:
        results = [self.simulation.repair_signal(ref)
                   for ref in recommendation.parameters.get('signal_ids', [])]
        return any(results)

    def _apply_speed_adjustment(self, recommendation: Recommendation) -> bool:
        speed_limit = recommendation.parameters.get('speed_limit')
        until = recommendation.parameters.get('until')
        results = [self.simulation.set_train_speed_limit(train_id, speed_limit, until)
                   for train_id in recommendation.parameters.get('train_ids', [])]
        return any(results)

    def _apply_priority_change(self, recommendation: Recommendation) -> bool:
        parameters = recommendation.parameters
        results = [self.simulation.hold_train(train_id, parameters.get('hold_minutes', 3))
                   for train_id in parameters.get('hold_trains', [])]
        results += [self.simulation.set_train_priority(train_id, parameters.get('priority', 1))
                    for train_id in parameters.get('train_ids', [])]
        return any(results)

    def _apply_reroute(self, recommendation: Recommendation) -> bool:
        train_id = recommendation.parameters.get('hold_train')
        if not train_id:
            return False
        return self.simulation.hold_train(train_id, recommendation.parameters.get('hold_minutes', 2))

    def _apply_platform_reallocation(self, recommendation: Recommendation) -> bool:
        plan = recommendation.parameters.get('plan')
        if not plan:
            return False
        return self.simulation.assign_platforms(recommendation.parameters['station_id'], plan)

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def get_pending_decisions(self) -> List[Dict]:
        """Get all pending decisions requiring approval"""
        with self._lock:
            return [decision.to_dict() for decision in self.pending_decisions]

    def get_decision_history(self, limit: int = 20) -> List[Dict]:
        """Get recent decision history"""
        with self._lock:
            all_decisions = self.optimization_decisions + self.auto_applied_decisions
        all_decisions.sort(key=lambda d: d.timestamp)
        return [decision.to_dict() for decision in all_decisions[-limit:]]

    def get_optimization_stats(self) -> Dict:
        """Get optimization performance statistics"""
        with self._lock:
            return self.optimization_stats.copy()

    def get_override_analysis(self) -> Dict:
        """How often operators accepted the decisions put in front of them"""
        with self._lock:
            decided = list(self.optimization_decisions)
        accepted = len([d for d in decided if d.status != DecisionStatus.REJECTED])
        overridden = len(decided) - accepted

        return {
            'total_decisions': len(decided),
            'accepted': accepted,
            'overridden': overridden,
            'acceptance_rate': round(accepted / len(decided) * 100, 1) if decided else 0.0
        }

    def get_system_status(self) -> Dict:
        return {
            'running': self.running,
            'optimization_interval': self.optimization_interval,
            'last_optimization_time': self.last_optimization_time,
            'pending_decisions': len(self.pending_decisions),
            'stats': self.get_optimization_stats(),
            'override_analysis': self.get_override_analysis(),
        }

    def reset(self):
        with self._lock:
            self.pending_decisions = []
            self.optimization_decisions = []
            self.auto_applied_decisions = []
            self.live_events = []
            self._decision_counter = itertools.count(1)
            for key in self.optimization_stats:
                self.optimization_stats[key] = 0.0 if key == 'total_savings' else 0
        self.last_optimization_time = None
        self.optimizer.reset()
