# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports upgrade watcher metrics in Prometheus format.

Metrics:
- Poll ticks and their outcome
- Upgrade plans detected / accepted
- Callback deliveries per endpoint and outcome
- Height probe failures and last probed height
"""

from prometheus_client import Counter, Gauge, CollectorRegistry

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# WATCHER METRICS
# ═══════════════════════════════════════════════════════════════════

polls_total = Counter(
    'chainvisor_polls_total',
    'Number of decision routine runs',
    ['result'],
    registry=metrics_registry
)

plans_detected_total = Counter(
    'chainvisor_plans_detected_total',
    'Upgrade plans read from a modified upgrade-info file',
    registry=metrics_registry
)

upgrades_ready_total = Counter(
    'chainvisor_upgrades_ready_total',
    'Upgrade plans accepted as pending',
    registry=metrics_registry
)

pending_upgrade = Gauge(
    'chainvisor_pending_upgrade',
    'Whether an accepted upgrade is waiting to be applied (0/1)',
    registry=metrics_registry
)

current_plan_height = Gauge(
    'chainvisor_current_plan_height',
    'Height of the last accepted upgrade plan',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# HEIGHT PROBE METRICS
# ═══════════════════════════════════════════════════════════════════

probed_height = Gauge(
    'chainvisor_probed_height',
    'Last block height reported by the node (0 = unknown)',
    registry=metrics_registry
)

probe_failures_total = Counter(
    'chainvisor_probe_failures_total',
    'Height probe failures',
    ['reason'],
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# CALLBACK METRICS
# ═══════════════════════════════════════════════════════════════════

callbacks_total = Counter(
    'chainvisor_callbacks_total',
    'Callback notifications by endpoint and outcome',
    ['endpoint', 'outcome'],
    registry=metrics_registry
)


def update_metrics(snapshot):
    """
    Sync gauges with a watcher snapshot.

    Args:
        snapshot: WatcherSnapshot
    """
    pending_upgrade.set(1 if snapshot.needs_update else 0)
    current_plan_height.set(snapshot.current_info.height)
    probed_height.set(snapshot.last_height)
