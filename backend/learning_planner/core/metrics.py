from prometheus_client import Counter

auth_events = Counter(
    "auth_events_total",
    "Successful auth operations",
    labelnames=("event",),
)
refresh_reuse_detected = Counter(
    "refresh_reuse_detected_total",
    "Refresh token families revoked after an anomalous presentation",
    labelnames=("reason",),
)
refresh_tokens_purged = Counter(
    "refresh_tokens_purged_total",
    "Expired refresh token rows deleted by the retention sweep",
)
