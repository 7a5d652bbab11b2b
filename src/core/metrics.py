"""
Prometheus metrics for the dispatch pipeline
"""

from prometheus_client import Counter, Histogram

notifications_total = Counter(
    'bloodlink_notifications_total',
    'Outbound messages by kind and outcome',
    ['kind', 'outcome']
)
dispatch_duration = Histogram(
    'bloodlink_dispatch_duration_seconds',
    'Duration of a dispatch pass'
)
lifecycle_transitions_total = Counter(
    'bloodlink_lifecycle_transitions_total',
    'Lifecycle transitions by name and result',
    ['transition', 'result']
)
optimistic_conflicts_total = Counter(
    'bloodlink_optimistic_conflicts_total',
    'Conditional updates rejected because the document changed'
)
inbound_replies_total = Counter(
    'bloodlink_inbound_replies_total',
    'Inbound donor replies by result code',
    ['result']
)
matched_candidates = Histogram(
    'bloodlink_matched_candidates',
    'Candidates found per matching pass',
    buckets=(0, 1, 2, 5, 10, 20, 50, 100)
)
