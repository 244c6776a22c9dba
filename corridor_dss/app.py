"""
Flask backend for the corridor decision support system
JSON control surface over the simulation, the recommendation engine and the
live controller's approval workflow
"""

from flask import Flask, request, jsonify
from flask_cors import CORS
import math
from enum import Enum
from typing import Dict, Optional

from .config import OptimizerConfig, SimulationConfig
from .live_controller import LiveRailwayController
from .models import DisruptionType, Severity, WeatherType
from .optimizer import RecommendationEngine
from .scenarios import compare_modes, list_scenarios, run_scenario, SCENARIOS
from .simulation import RailwaySimulation

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)

# --- Global State ---
simulation: Optional[RailwaySimulation] = None
optimizer: Optional[RecommendationEngine] = None
live_controller: Optional[LiveRailwayController] = None

# --- Helper Functions ---

def sanitize_for_json(obj):
    """Recursively remove problematic values for JSON serialization."""
    if isinstance(obj, dict):
        return {k: sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_json(item) for item in obj]
    if isinstance(obj, float) and (math.isinf(obj) or math.isnan(obj)):
        return None
    if isinstance(obj, Enum):
        return obj.value
    return obj


def init_services(config: Optional[SimulationConfig] = None,
                  optimizer_config: Optional[OptimizerConfig] = None):
    """(Re)build the simulation, optimizer and live controller globals."""
    global simulation, optimizer, live_controller

    if simulation:
        simulation.destroy()

    simulation = RailwaySimulation(config or SimulationConfig.from_env())
    optimizer = RecommendationEngine(simulation, optimizer_config or OptimizerConfig.from_env())
    live_controller = LiveRailwayController(simulation, optimizer)
    logger.info(f"Services initialized: {len(simulation.state.trains)} trains, "
                f"{len(simulation.state.stations)} stations, seed {simulation.config.seed}")
    return simulation


def _services_ready():
    if not simulation or not optimizer or not live_controller:
        return jsonify({'success': False, 'message': 'Simulation not available'}), 500
    return None


def _json_body() -> Dict:
    return request.get_json(silent=True) or {}

# --- Simulation control ---

@app.route('/')
def index():
    if simulation is None:
        return jsonify({'name': 'Corridor DSS', 'status': 'uninitialized'})
    state = simulation.state
    return jsonify({
        'name': 'Corridor DSS',
        'status': 'running' if state.is_running else 'stopped',
        'trains': len(state.trains),
        'stations': len(state.stations),
        'time': state.current_time,
        'speed': state.speed,
    })


@app.route('/start_sim', methods=['POST'])
def start_simulation():
    not_ready = _services_ready()
    if not_ready:
        return not_ready
    if simulation.is_running:
        return jsonify({'success': True, 'message': 'Simulation already running.'})
    simulation.start()
    live_controller.start_live_control()
    return jsonify({'success': True, 'message': 'Simulation started.'})


@app.route('/stop_sim', methods=['POST'])
def stop_simulation():
    not_ready = _services_ready()
    if not_ready:
        return not_ready
    simulation.pause()
    live_controller.stop_live_control()
    return jsonify({'success': True, 'message': 'Simulation stopped.'})


@app.route('/reset_sim', methods=['POST'])
def reset_simulation():
    not_ready = _services_ready()
    if not_ready:
        return not_ready
    live_controller.stop_live_control()
    simulation.reset()
    live_controller.reset()
    return jsonify({'success': True, 'message': 'Simulation reset.'})


@app.route('/set_speed', methods=['POST'])
def set_simulation_speed():
    not_ready = _services_ready()
    if not_ready:
        return not_ready
    data = _json_body()
    try:
        new_speed = float(data.get('speed', 1.0))
    except (TypeError, ValueError):
        return jsonify({'success': False, 'message': 'Speed must be a number'}), 400
    return jsonify({'success': True, 'speed': simulation.set_speed(new_speed)})


@app.route('/tick', methods=['POST'])
def tick_simulation():
    not_ready = _services_ready()
    if not_ready:
        return not_ready
    try:
        minutes = int(_json_body().get('minutes', 1))
    except (TypeError, ValueError):
        return jsonify({'success': False, 'message': 'Minutes must be an integer'}), 400
    simulation.run_for(minutes)
    return jsonify({'success': True, 'time': simulation.state.current_time})

# --- Read API ---

@app.route('/state', methods=['GET'])
def get_state():
    not_ready = _services_ready()
    if not_ready:
        return not_ready
    return jsonify(sanitize_for_json(simulation.get_state().to_dict()))


@app.route('/trains', methods=['GET'])
def get_trains():
    not_ready = _services_ready()
    if not_ready:
        return not_ready
    return jsonify(sanitize_for_json({'trains': [t.to_dict() for t in simulation.get_trains()]}))


@app.route('/stations', methods=['GET'])
def get_stations():
    not_ready = _services_ready()
    if not_ready:
        return not_ready
    return jsonify(sanitize_for_json({'stations': [s.to_dict() for s in simulation.get_stations()]}))


@app.route('/signals', methods=['GET'])
def get_signals():
    not_ready = _services_ready()
    if not_ready:
        return not_ready
    return jsonify(sanitize_for_json({'signals': [s.to_dict() for s in simulation.get_signals()]}))


@app.route('/kpis', methods=['GET'])
def get_kpis():
    not_ready = _services_ready()
    if not_ready:
        return not_ready
    return jsonify(sanitize_for_json({
        'kpis': simulation.get_kpis().to_dict(),
        'simulation_time': simulation.state.current_time
    }))


@app.route('/train_events', methods=['GET'])
def get_train_events():
    not_ready = _services_ready()
    if not_ready:
        return not_ready
    limit = request.args.get('limit', default=100, type=int)
    events = simulation.get_events()[-limit:] if limit > 0 else []
    return jsonify(sanitize_for_json({'events': [e.to_dict() for e in events]}))

# --- Disruptions ---

@app.route('/disrupt', methods=['POST'])
def add_disruption():
    not_ready = _services_ready()
    if not_ready:
        return not_ready

    data = _json_body()
    try:
        disruption_type = DisruptionType(data.get('type', 'signal_failure'))
        severity = Severity(data.get('severity', 'high'))
        weather_type = WeatherType(data.get('weather_type', 'fog'))
        sections = [float(s) for s in data.get('affected_sections', [])]
        duration = int(data.get('duration', 30))
        start_time = data.get('start_time')
        start_time = int(start_time) if start_time is not None else None
    except (TypeError, ValueError) as e:
        return jsonify({'success': False, 'message': f'Invalid disruption: {e}'}), 400

    disruption = simulation.inject_disruption(
        disruption_type, sections, start_time=start_time, duration=duration,
        severity=severity, description=data.get('description', ''), weather_type=weather_type
    )
    return jsonify(sanitize_for_json({
        'success': True,
        'message': f'Injected {disruption.id} ({disruption_type.value}).',
        'disruption': disruption.to_dict()
    }))


@app.route('/repair_signal', methods=['POST'])
def repair_signal():
    not_ready = _services_ready()
    if not_ready:
        return not_ready
    signal_ref = _json_body().get('signal')
    if signal_ref is None:
        return jsonify({'success': False, 'message': 'Signal id or position is required'}), 400
    if not simulation.repair_signal(signal_ref):
        return jsonify({'success': False, 'message': f'Signal {signal_ref} not found'}), 404
    return jsonify({'success': True, 'message': f'Signal {signal_ref} repaired.'})

# --- Optimization ---

@app.route('/optimize', methods=['POST'])
def optimize_corridor():
    not_ready = _services_ready()
    if not_ready:
        return not_ready

    logger.info("Running corridor optimization...")
    result = live_controller.run_live_optimization()

    if result.success:
        message = 'Optimization successful. Review pending decisions for approval.'
    else:
        message = 'No recommendations cleared the confidence threshold.'
    return jsonify(sanitize_for_json({
        'success': result.success,
        'message': message,
        'result': result.to_dict(),
        'summary': optimizer.get_optimization_summary()
    }))


@app.route('/handle_disruption', methods=['POST'])
def handle_disruption():
    not_ready = _services_ready()
    if not_ready:
        return not_ready

    disruption_id = _json_body().get('disruption_id')
    if not disruption_id:
        return jsonify({'success': False, 'message': 'Disruption ID is required'}), 400
    disruption = next((d for d in simulation.get_disruptions() if d.id == disruption_id), None)
    if not disruption:
        return jsonify({'success': False, 'message': 'Disruption not found'}), 404

    recommendations = optimizer.handle_disruption(disruption)
    return jsonify(sanitize_for_json({
        'success': True,
        'recommendations': [r.to_dict() for r in recommendations]
    }))


@app.route('/compare_performance', methods=['POST'])
def compare_performance():
    not_ready = _services_ready()
    if not_ready:
        return not_ready

    data = _json_body()
    ai_runs = data.get('ai_runs')
    manual_runs = data.get('manual_runs')
    if not isinstance(ai_runs, list) or not isinstance(manual_runs, list):
        return jsonify({'success': False, 'message': 'ai_runs and manual_runs must be lists'}), 400

    comparison = optimizer.compare_performance(ai_runs, manual_runs)
    return jsonify(sanitize_for_json({'success': True, 'comparison': comparison.to_dict()}))

# --- Approval workflow ---

@app.route('/pending_decisions', methods=['GET'])
def get_pending_decisions():
    not_ready = _services_ready()
    if not_ready:
        return not_ready

    formatted_decisions = []
    for d in live_controller.get_pending_decisions():
        recommendation = d['recommendation']
        formatted_decisions.append({
            'id': d['decision_id'],
            'type': d['decision_type'],
            'title': d['title'],
            'description': recommendation['description'],
            'impact': recommendation['priority'],
            'expected_savings': recommendation['estimated_savings'],
            'affected_trains': recommendation['affected_trains'],
            'details': d
        })

    return jsonify(sanitize_for_json({'success': True, 'decisions': formatted_decisions}))


@app.route('/approve_decision', methods=['POST'])
def approve_decision_endpoint():
    not_ready = _services_ready()
    if not_ready:
        return not_ready

    decision_id = _json_body().get('decision_id')
    if not decision_id:
        return jsonify({'success': False, 'message': 'Decision ID is required'}), 400

    if not any(d['decision_id'] == decision_id for d in live_controller.get_pending_decisions()):
        return jsonify({'success': False, 'message': 'Decision not found or already processed'}), 404

    if live_controller.approve_decision(decision_id):
        logger.info(f"Decision {decision_id} approved and applied.")
        return jsonify({'success': True, 'message': f'Decision {decision_id} approved and applied.'})
    return jsonify({'success': False, 'message': 'Failed to apply decision'}), 500


@app.route('/reject_decision', methods=['POST'])
def reject_decision_endpoint():
    not_ready = _services_ready()
    if not_ready:
        return not_ready

    data = _json_body()
    decision_id = data.get('decision_id')
    if not decision_id:
        return jsonify({'success': False, 'message': 'Decision ID is required'}), 400

    if not live_controller.reject_decision(decision_id, data.get('reason', 'Rejected by operator')):
        return jsonify({'success': False, 'message': 'Decision not found or already processed'}), 404
    return jsonify({'success': True, 'message': f'Decision {decision_id} rejected.'})


@app.route('/decision_history', methods=['GET'])
def get_decision_history():
    not_ready = _services_ready()
    if not_ready:
        return not_ready
    limit = request.args.get('limit', default=20, type=int)
    return jsonify(sanitize_for_json({
        'success': True,
        'decisions': live_controller.get_decision_history(limit),
        'stats': live_controller.get_optimization_stats(),
        'override_analysis': live_controller.get_override_analysis()
    }))

# --- Scenarios ---

@app.route('/scenarios', methods=['GET'])
def get_scenarios():
    return jsonify({'scenarios': list_scenarios()})


@app.route('/run_scenario', methods=['POST'])
def run_scenario_endpoint():
    data = _json_body()
    name = data.get('scenario')
    if name not in SCENARIOS:
        return jsonify({'success': False, 'message': f'Unknown scenario: {name}'}), 404

    minutes = data.get('minutes')
    seed = data.get('seed')
    try:
        minutes = int(minutes) if minutes is not None else None
        seed = int(seed) if seed is not None else None
    except (TypeError, ValueError):
        return jsonify({'success': False, 'message': 'minutes and seed must be integers'}), 400

    if data.get('compare'):
        comparison = compare_modes(name, minutes=minutes, seed=seed)
        return jsonify(sanitize_for_json({'success': True, 'comparison': comparison.to_dict()}))

    result = run_scenario(name, minutes=minutes, ai_mode=bool(data.get('ai_mode', True)), seed=seed)
    payload = result.to_dict()
    payload.pop('samples')
    return jsonify(sanitize_for_json({'success': True, 'result': payload}))


def main():
    logger.info("Starting Corridor DSS Backend...")
    init_services()
    logger.info("Starting Flask server on http://localhost:5000")
    app.run(host='0.0.0.0', port=5000, debug=False, threaded=True)


# --- Main Application Setup ---
if __name__ == '__main__':
    main()
