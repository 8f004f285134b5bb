# smmpanel/metrics.py
from prometheus_client import Counter, Histogram, make_asgi_app

# Counters
orders_placed_total = Counter("orders_placed_total", "Orders created with their charge settled")
refunds_total = Counter("refunds_total", "Orders refunded or cancelled with a credit", ["kind"])
ledger_entries_total = Counter("ledger_entries_total", "Ledger entries appended", ["kind"])
insufficient_funds_total = Counter(
    "insufficient_funds_total",
    "Ledger appends rejected because the balance would go negative",
)
balance_conflicts = Counter(
    "balance_conflicts_total",
    "Write conflicts on an account balance",
    ["outcome"],  # retried | surfaced
)

idempotency_hits = Counter(
    "idempotency_hits_total",
    "Idempotency cache hits (same key, same request)",
    ["endpoint"],
)
idempotency_conflicts = Counter(
    "idempotency_conflicts_total",
    "Key reused for different request (409)",
    ["endpoint"],
)
inflight_retries = Counter(
    "idempotency_inflight_total",
    "Requests returned 425 Too Early (key still in-flight)",
    ["endpoint"],
)

# Latency
order_latency = Histogram("order_latency_seconds", "placeOrder latency in seconds")
refund_latency = Histogram("refund_latency_seconds", "refundOrder/cancel latency in seconds")

# ASGI app for /metrics
metrics_asgi_app = make_asgi_app()
