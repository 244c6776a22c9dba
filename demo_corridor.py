#!/usr/bin/env python3
"""
Demo script for the Corridor Decision Support System
Walks through a signal failure, the optimizer's recommendations and the
operator approval workflow against a running backend
"""

import sys
import time

import requests

BASE_URL = "http://localhost:5000"


def print_header(title):
    print("\n" + "=" * 60)
    print(f"🚂 {title}")
    print("=" * 60)


def print_step(step, description):
    print(f"\n📋 Step {step}: {description}")
    print("-" * 40)


def make_request(endpoint, method="GET", data=None):
    """Make API request with error handling"""
    try:
        url = f"{BASE_URL}{endpoint}"
        if method == "GET":
            response = requests.get(url, timeout=10)
        else:
            response = requests.post(url, json=data, timeout=60)

        if response.status_code == 200:
            return response.json()
        print(f"❌ API Error {response.status_code}: {response.text}")
        return None
    except requests.RequestException as e:
        print(f"❌ Connection Error: {e}")
        return None


def show_kpis():
    """Display current KPIs"""
    result = make_request("/kpis")
    if not result:
        return
    kpis = result['kpis']
    print(f"🕐 Simulation minute: {result['simulation_time']}")
    print(f"⚡ Efficiency: {kpis['system_efficiency']:.1f}%")
    print(f"⏱️ Avg Delay: {kpis['average_delay']:.1f} min")
    print(f"🚄 Throughput: {kpis['throughput']:.1f} trains/h")
    print(f"⚠️ Conflicts: {kpis['conflicts']}")


def inject_signal_failure():
    print_step(1, "Inject Signal Failure")
    print("🚨 Failing signal S30 at Junction B for 20 minutes")

    result = make_request("/disrupt", "POST", {
        "type": "signal_failure",
        "affected_sections": [30],
        "duration": 20,
        "severity": "critical",
        "description": "Signal failure at Junction B"
    })
    if not result or not result.get('success'):
        print("❌ Failed to inject disruption")
        return None

    disruption = result['disruption']
    print(f"✅ {result['message']}")
    make_request("/tick", "POST", {"minutes": 2})
    return disruption['id']


def run_optimization():
    print_step(2, "Run Optimization")

    start_time = time.time()
    result = make_request("/optimize", "POST", {})
    if not result:
        print("❌ Optimization failed")
        return None

    outcome = result['result']
    print(f"✅ Optimization completed in {time.time() - start_time:.2f}s")
    print(f"🎯 Confidence: {outcome['confidence']:.1f}")
    print(f"🔍 Conflicts detected: {len(outcome['conflicts'])}")
    for rec in outcome['recommendations']:
        print(f"   • [{rec['priority']}] {rec['title']}: {rec['action']}")

    metrics = outcome['metrics']
    print(f"📉 Expected delay reduction: {metrics['delay_reduction']:.1f} min")
    return outcome


def review_and_approve():
    print_step(3, "Review Pending Decisions")

    result = make_request("/pending_decisions")
    if not result or not result.get('success'):
        print("❌ Failed to get pending decisions")
        return False

    decisions = result['decisions']
    print(f"📋 Found {len(decisions)} decisions requiring approval")
    for decision in decisions:
        print(f"   • {decision['id']} ({decision['type']}, {decision['impact']}): {decision['title']}")

    repair = next((d for d in decisions if d['type'] == 'signal_repair'), None)
    if not repair:
        print("ℹ️ No signal repair awaiting approval")
        return True

    print(f"\n👨‍💼 Approving {repair['id']}")
    approval = make_request("/approve_decision", "POST", {"decision_id": repair['id']})
    if not approval or not approval.get('success'):
        print("❌ Approval failed")
        return False
    print(f"✅ {approval['message']}")

    remaining = make_request("/pending_decisions") or {}
    if any(d['id'] == repair['id'] for d in remaining.get('decisions', [])):
        print(f"❌ {repair['id']} is still pending after approval")
        return False
    print(f"🧹 {repair['id']} cleared from the pending queue")
    return True


def compare_scenario():
    print_step(4, "AI vs Manual: Signal Failure Scenario")

    result = make_request("/run_scenario", "POST", {
        "scenario": "signal_failure",
        "minutes": 30,
        "seed": 42,
        "compare": True
    })
    if not result:
        return

    comparison = result['comparison']
    for key, value in comparison['improvement'].items():
        print(f"   {key}: {value:+.2f}")


def main():
    print_header("Corridor Decision Support System Demo")

    print_step(0, "Reset and Initial Status")
    if not make_request("/reset_sim", "POST", {}):
        print("❌ Failed to reset simulation. Make sure the server is running.")
        return False
    make_request("/tick", "POST", {"minutes": 5})
    show_kpis()

    if not inject_signal_failure():
        return False
    if not run_optimization():
        return False
    if not review_and_approve():
        return False

    print("\n📊 Status after approval:")
    make_request("/tick", "POST", {"minutes": 5})
    show_kpis()

    compare_scenario()

    history = make_request("/decision_history")
    if history:
        analysis = history['override_analysis']
        print(f"\n🧾 Decisions: {analysis['total_decisions']}, acceptance rate {analysis['acceptance_rate']}%")

    print_header("Demo Completed")
    return True


if __name__ == "__main__":
    print("🚂 Starting Corridor DSS Demo")
    print("📋 Make sure the Flask server is running on port 5000")

    try:
        sys.exit(0 if main() else 1)
    except KeyboardInterrupt:
        print("\n⏸️ Demo interrupted by user")
