"""Prometheus metrics for the reconciliation layer"""
from prometheus_client import Counter, REGISTRY


def _counter(name, documentation, labelnames=()):
    # Re-importing the module (tests, reloaders) must not register twice
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


webhook_events_counter = _counter(
    'lemons_webhook_events_total',
    'Webhook deliveries by event family and outcome',
    ['family', 'outcome']
)

orders_materialized_counter = _counter(
    'lemons_orders_materialized_total',
    'Orders written from checkout completion events',
    ['status']
)

subscription_reconciliations_counter = _counter(
    'lemons_subscription_reconciliations_total',
    'Subscription lifecycle events reconciled',
    ['outcome']
)

fee_lookup_fallbacks_counter = _counter(
    'lemons_fee_lookup_fallbacks_total',
    'Fee rate lookups that fell back to the default rate'
)
