"""Prometheus metrics for the application"""
from prometheus_client import Counter, Histogram, REGISTRY

# Webhook metrics
try:
    webhook_events_counter = Counter(
        'billing_webhook_events_total',
        'Total number of webhook deliveries by event type and outcome',
        ['event_type', 'outcome']
    )
except ValueError:
    webhook_events_counter = REGISTRY._names_to_collectors.get('billing_webhook_events_total')

try:
    webhook_signature_failures_counter = Counter(
        'billing_webhook_signature_failures_total',
        'Total number of webhook deliveries rejected for a bad signature'
    )
except ValueError:
    webhook_signature_failures_counter = REGISTRY._names_to_collectors.get('billing_webhook_signature_failures_total')

try:
    webhook_processing_seconds = Histogram(
        'billing_webhook_processing_seconds',
        'Time spent applying a webhook event to billing state',
        ['event_type']
    )
except ValueError:
    webhook_processing_seconds = REGISTRY._names_to_collectors.get('billing_webhook_processing_seconds')
