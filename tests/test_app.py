"""
Tests for the Flask control surface.
"""

import pytest

from corridor_dss import app as app_module
from corridor_dss.config import OptimizerConfig, SimulationConfig


@pytest.fixture
def client():
    app_module.init_services(SimulationConfig(seed=7), OptimizerConfig())
    app_module.app.config['TESTING'] = True
    with app_module.app.test_client() as client:
        yield client
    app_module.simulation.destroy()


def _fail_signal(client, section=30):
    response = client.post('/disrupt', json={'type': 'signal_failure', 'affected_sections': [section]})
    client.post('/tick', json={'minutes': 1})
    return response.get_json()['disruption']['id']


# =============================================================================
# Simulation control
# =============================================================================

class TestSimulationControl:

    def test_index(self, client):
        data = client.get('/').get_json()

        assert data['status'] == 'stopped'
        assert data['trains'] == 14
        assert data['stations'] == 5

    def test_tick(self, client):
        response = client.post('/tick', json={'minutes': 3})
        assert response.status_code == 200
        assert response.get_json()['time'] == 3

    def test_tick_rejects_bad_minutes(self, client):
        assert client.post('/tick', json={'minutes': 'soon'}).status_code == 400

    def test_set_speed(self, client):
        assert client.post('/set_speed', json={'speed': 25}).get_json()['speed'] == 10
        assert client.post('/set_speed', json={'speed': 'fast'}).status_code == 400

    def test_start_and_stop(self, client):
        assert client.post('/start_sim').get_json()['success']
        assert app_module.simulation.is_running
        assert app_module.live_controller.running
        assert 'already' in client.post('/start_sim').get_json()['message']

        assert client.post('/stop_sim').get_json()['success']
        assert not app_module.simulation.is_running
        assert not app_module.live_controller.running

    def test_reset(self, client):
        client.post('/tick', json={'minutes': 5})
        assert client.post('/reset_sim').get_json()['success']
        assert app_module.simulation.state.current_time == 0

    def test_services_not_ready(self, client, monkeypatch):
        monkeypatch.setattr(app_module, 'simulation', None)
        response = client.get('/state')

        assert response.status_code == 500
        assert response.get_json()['success'] is False


# =============================================================================
# Read API
# =============================================================================

class TestReadApi:

    def test_state(self, client):
        data = client.get('/state').get_json()

        assert data['current_time'] == 0
        assert len(data['trains']) == 14
        assert data['trains'][0]['train_class'] in ('express', 'freight', 'suburban')
        assert data['weather']['weather_type'] == 'clear'

    def test_collections(self, client):
        assert len(client.get('/trains').get_json()['trains']) == 14
        assert len(client.get('/stations').get_json()['stations']) == 5
        signals = client.get('/signals').get_json()['signals']
        assert len(signals) == 13
        assert signals[0]['state'] in ('green', 'red')

    def test_kpis(self, client):
        client.post('/tick', json={'minutes': 2})
        data = client.get('/kpis').get_json()

        assert data['simulation_time'] == 2
        assert 'system_efficiency' in data['kpis']

    def test_train_events_limit(self, client):
        client.post('/tick', json={'minutes': 3})

        events = client.get('/train_events?limit=2').get_json()['events']
        assert len(events) == 2
        assert events[-1]['event_type'] == 'tick'
        assert client.get('/train_events?limit=0').get_json()['events'] == []


# =============================================================================
# Disruptions
# =============================================================================

class TestDisruptionRoutes:

    def test_inject(self, client):
        response = client.post('/disrupt', json={
            'type': 'weather', 'affected_sections': [0, 60], 'duration': 10, 'weather_type': 'rain'
        })

        data = response.get_json()
        assert data['success']
        assert data['disruption']['id'] == 'disruption_1'
        assert data['disruption']['weather']['weather_type'] == 'rain'

    def test_inject_rejects_unknown_type(self, client):
        assert client.post('/disrupt', json={'type': 'meteor', 'affected_sections': [30]}).status_code == 400
        assert client.post('/disrupt', json={'affected_sections': ['abc']}).status_code == 400

    def test_repair_signal(self, client):
        _fail_signal(client)

        assert client.post('/repair_signal', json={}).status_code == 400
        assert client.post('/repair_signal', json={'signal': 'S999'}).status_code == 404
        assert client.post('/repair_signal', json={'signal': 'S30'}).status_code == 200

        s30 = next(s for s in app_module.simulation.get_signals() if s.id == 'S30')
        assert not s30.failure

    def test_handle_disruption(self, client):
        disruption_id = _fail_signal(client)

        assert client.post('/handle_disruption', json={}).status_code == 400
        assert client.post('/handle_disruption', json={'disruption_id': 'nope'}).status_code == 404

        data = client.post('/handle_disruption', json={'disruption_id': disruption_id}).get_json()
        assert [r['id'] for r in data['recommendations']] == [f"signal_failure_{disruption_id}"]
        assert data['recommendations'][0]['recommendation_type'] == 'signal_repair'


# =============================================================================
# Optimization and approvals
# =============================================================================

class TestApprovalRoutes:

    def _pending_signal_repair(self, client):
        _fail_signal(client)
        data = client.post('/optimize').get_json()
        assert data['success']
        assert data['summary']['total_runs'] == 1

        decisions = client.get('/pending_decisions').get_json()['decisions']
        return next(d for d in decisions if d['type'] == 'signal_repair')

    def test_approve(self, client):
        decision = self._pending_signal_repair(client)

        assert client.post('/approve_decision', json={}).status_code == 400
        assert client.post('/approve_decision', json={'decision_id': 'decision_999'}).status_code == 404

        response = client.post('/approve_decision', json={'decision_id': decision['id']})
        assert response.status_code == 200
        assert client.post('/approve_decision', json={'decision_id': decision['id']}).status_code == 404

        history = client.get('/decision_history').get_json()
        assert history['stats']['applied'] >= 1
        assert any(d['decision_id'] == decision['id'] for d in history['decisions'])

    def test_reject(self, client):
        decision = self._pending_signal_repair(client)

        assert client.post('/reject_decision', json={}).status_code == 400
        response = client.post('/reject_decision', json={'decision_id': decision['id'], 'reason': 'No crew'})
        assert response.status_code == 200
        assert client.post('/reject_decision', json={'decision_id': decision['id']}).status_code == 404

        analysis = client.get('/decision_history').get_json()['override_analysis']
        assert analysis['overridden'] == 1

    def test_compare_performance(self, client):
        assert client.post('/compare_performance', json={'ai_runs': []}).status_code == 400

        data = client.post('/compare_performance', json={
            'ai_runs': [{'average_delay': 2, 'system_efficiency': 80}],
            'manual_runs': [{'average_delay': 5, 'system_efficiency': 50}],
        }).get_json()
        assert data['comparison']['improvement']['delay_reduction'] == 3
        assert data['comparison']['improvement']['efficiency_gain'] == 30


# =============================================================================
# Scenarios
# =============================================================================

class TestScenarioRoutes:

    def test_list(self, client):
        scenarios = client.get('/scenarios').get_json()['scenarios']
        assert [s['id'] for s in scenarios] == ['basic', 'peak', 'signal_failure', 'weather', 'emergency']

    def test_run(self, client):
        data = client.post('/run_scenario', json={'scenario': 'basic', 'minutes': 3, 'ai_mode': False}).get_json()

        assert data['success']
        assert data['result']['duration'] == 3
        assert 'samples' not in data['result']

    def test_run_errors(self, client):
        assert client.post('/run_scenario', json={'scenario': 'nope'}).status_code == 404
        assert client.post('/run_scenario', json={'scenario': 'basic', 'minutes': 'x'}).status_code == 400

    def test_compare(self, client):
        data = client.post('/run_scenario', json={'scenario': 'basic', 'minutes': 2, 'compare': True}).get_json()

        assert data['comparison']['ai_mode']['samples'] == 2
        assert data['comparison']['manual_mode']['samples'] == 2
