"""
Prometheus metrics for the replication loop.
"""

from prometheus_client import Counter, Gauge, Histogram, start_http_server

events_applied_total = Counter(
    'mongosync_events_total',
    'Change events handed to the applier',
    ['database', 'operation', 'outcome']
)

events_filtered_total = Counter(
    'mongosync_events_filtered_total',
    'Change events dropped because their database is not replicated'
)

apply_errors_total = Counter(
    'mongosync_apply_errors_total',
    'Per-event apply failures',
    ['kind']
)

replication_lag_seconds = Gauge(
    'mongosync_replication_lag_seconds',
    'Seconds between the source commit of the head of the last batch and now'
)

apply_duration_seconds = Histogram(
    'mongosync_apply_seconds',
    'Time to apply one change event, including its transaction'
)

batches_total = Counter(
    'mongosync_batches_total',
    'Batches received from the change stream',
    ['empty']
)


def start_metrics_server(port: int) -> None:
    """Expose the default registry over HTTP."""
    start_http_server(port)
