"""
Prometheus metrics for the connector.
"""

from prometheus_client import Counter, Gauge

events_total = Counter(
    'mongostream_events_total',
    'Total events pushed to the delivery channel',
    ['collection', 'action']
)

errors_total = Counter(
    'mongostream_errors_total',
    'Total fatal pump errors',
    ['collection', 'error_type']
)

pump_running = Gauge(
    'mongostream_pump_running',
    'Whether the ingestion pump thread is running',
    ['collection', 'connector_id']
)
