"""Prometheus metrics for monitoring reconciliation, sales, sweeps and gateway health"""

from prometheus_client import Counter, Histogram

# Webhook metrics
webhook_event_counter = Counter(
    "crediario_webhook_events_total",
    "Gateway webhook events processed",
    ["outcome"],  # applied | stale | ignored | no_op | late_payment | invoice_not_found | error
)

cashback_points_counter = Counter(
    "crediario_cashback_points_total",
    "Loyalty points credited as cashback",
)

installments_generated_counter = Counter(
    "crediario_installments_generated_total",
    "Installment invoices generated from paid down payments",
)

late_payment_counter = Counter(
    "crediario_late_payments_total",
    "Approved payments for invoices already cancelled or expired",
)

# Sale metrics
sale_counter = Counter(
    "crediario_sales_total",
    "Sales recorded",
    ["sale_type", "artifact"],  # crediario | direct ; created | failed | not_required
)

# Sweep metrics
sweep_counter = Counter(
    "crediario_sweep_actions_total",
    "Sweeper actions",
    ["action"],  # down_payment_expired | contract_cancelled | invoice_cancelled | reminder | failure
)

# Gateway metrics
gateway_latency_histogram = Histogram(
    "crediario_gateway_latency_seconds",
    "Payment gateway response time",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

gateway_failure_counter = Counter(
    "crediario_gateway_failures_total",
    "Failed payment gateway calls",
    ["operation"],
)

mail_failure_counter = Counter(
    "crediario_mail_failures_total",
    "Failed email relay deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_sale(sale_type: str, artifact_status: str) -> None:
    sale_counter.labels(sale_type=sale_type, artifact=artifact_status).inc()


def record_webhook(outcome: str, cashback_points: int = 0, installments: int = 0) -> None:
    """Record one reconciled webhook event"""
    webhook_event_counter.labels(outcome=outcome).inc()
    if cashback_points:
        cashback_points_counter.inc(cashback_points)
    if installments:
        installments_generated_counter.inc(installments)
    if outcome == "late_payment":
        late_payment_counter.inc()


def record_sweep(report) -> None:
    """Fold a sweep report into counters"""
    sweep_counter.labels(action="down_payment_expired").inc(report.down_payments_expired)
    sweep_counter.labels(action="contract_cancelled").inc(report.contracts_cancelled)
    sweep_counter.labels(action="invoice_cancelled").inc(report.invoices_cancelled)
    sweep_counter.labels(action="reminder").inc(report.reminders_sent)
    sweep_counter.labels(action="failure").inc(report.failures)
