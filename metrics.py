"""
metrics.py - Sidecar self-monitoring metrics
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest

# Metrics definitions
config_reloads = Counter(
    'influxdb_sidecar_config_reloads_total',
    'Configuration reload attempts',
    ['status']  # 'success', 'skipped' or 'failed'
)

config_changes = Counter(
    'influxdb_sidecar_config_changes_total',
    'Configuration keys changed across reloads',
    ['change_type']
)

subscriber_errors = Counter(
    'influxdb_sidecar_subscriber_errors_total',
    'Configuration change subscribers that raised',
    ['key']
)

export_ticks = Counter(
    'influxdb_sidecar_export_ticks_total',
    'Export ticks handed to the sender',
    ['status']
)

export_duration = Histogram(
    'influxdb_sidecar_export_duration_seconds',
    'Time spent formatting and sending one export batch'
)

reporter_restarts = Counter(
    'influxdb_sidecar_reporter_restarts_total',
    'Reporter rebuilds triggered by configuration changes'
)

sender_failures = Counter(
    'influxdb_sidecar_sender_setup_failures_total',
    'Sender constructions rejected by configuration',
    ['mode']
)

reporter_running = Gauge(
    'influxdb_sidecar_reporter_running',
    'Export task state (0=stopped, 1=running)'
)


def get_metrics():
    """Get Prometheus metrics"""
    return generate_latest()
