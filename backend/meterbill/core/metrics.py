"""Prometheus metrics for the billing core"""
from prometheus_client import Counter, REGISTRY

# Quota metrics
try:
    quota_consumption_counter = Counter(
        'meterbill_quota_consumption_total',
        'Total number of quota consumption attempts',
        ['outcome']
    )
except ValueError:
    quota_consumption_counter = REGISTRY._names_to_collectors.get('meterbill_quota_consumption_total')

# Payment metrics
try:
    settlement_counter = Counter(
        'meterbill_settlements_total',
        'Total number of payment settlement attempts',
        ['result', 'outcome']
    )
except ValueError:
    settlement_counter = REGISTRY._names_to_collectors.get('meterbill_settlements_total')

# Sweep metrics
try:
    sweep_runs_counter = Counter(
        'meterbill_sweep_runs_total',
        'Total number of sweep runs',
        ['sweep', 'status']
    )
except ValueError:
    sweep_runs_counter = REGISTRY._names_to_collectors.get('meterbill_sweep_runs_total')

try:
    sweep_rows_counter = Counter(
        'meterbill_sweep_rows_total',
        'Total number of subscription rows handled by sweeps',
        ['sweep', 'outcome']
    )
except ValueError:
    sweep_rows_counter = REGISTRY._names_to_collectors.get('meterbill_sweep_rows_total')

# Notification metrics
try:
    notifications_counter = Counter(
        'meterbill_notifications_total',
        'Total number of billing notifications dispatched',
        ['event_type', 'status']
    )
except ValueError:
    notifications_counter = REGISTRY._names_to_collectors.get('meterbill_notifications_total')
