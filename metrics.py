from prometheus_client import Counter, Gauge, Histogram

# Invoice creation outcomes: ok | fallback | invalid
invoices_created_total = Counter(
    "lnpos_invoices_created_total",
    "Invoices requested from the payment processor",
    ["outcome"],
)

# Exchange rate lookups: fetched | cached | stale | fallback
rate_lookups_total = Counter(
    "lnpos_rate_lookups_total",
    "Exchange rate lookups by asset and outcome",
    ["asset", "outcome"],
)

# Failed status polls by kind: transport | rate_limited | malformed | timeout
status_poll_errors_total = Counter(
    "lnpos_status_poll_errors_total",
    "Failed invoice status polls",
    ["kind"],
)

# Histogram for the latency of a single invoice status poll
status_poll_latency_seconds = Histogram(
    "lnpos_status_poll_latency_seconds",
    "Latency of invoice status requests in seconds",
)

# Sessions reaching a terminal state
payment_sessions_finished_total = Counter(
    "lnpos_payment_sessions_finished_total",
    "Payment sessions by terminal state",
    ["state"],
)

# Gauge representing the number of sessions currently being monitored
active_payment_sessions = Gauge(
    "lnpos_active_payment_sessions",
    "Payment sessions currently being monitored",
)
