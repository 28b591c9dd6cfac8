"""
Prometheus-compatible metrics for observability.

Tracks:
- Lifecycle transitions of service requests (by from/to status)
- Payment operations (by kind and outcome)
- Remote-call retries (by reason)

Usage:
    from servicehub.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_transitions(from_status="pending", to_status="in-process")
    metrics.increment_payment_operations(kind="refund", status="confirmed")

    prometheus_output = metrics.export_prometheus()
"""

from typing import Dict, Tuple
from threading import Lock


class MetricsCollector:
    """
    Prometheus-style counter collector.

    Counters:
    - service_request_transitions_total (labels: from_status, to_status)
    - payment_operations_total (labels: kind, status)
    - remote_call_retries_total (labels: reason)

    Thread-safe for concurrent increments.
    """

    HELP_TEXTS = {
        "service_request_transitions_total": "Total number of service request status transitions",
        "payment_operations_total": "Total number of payment gateway operations",
        "remote_call_retries_total": "Total number of retried remote calls",
    }

    def __init__(self):
        self._lock = Lock()
        # key = (metric_name, sorted label pairs), value = count
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}

    def _get_counter_key(self, metric_name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        return (metric_name, tuple(sorted(labels.items())))

    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def increment_transitions(self, from_status: str, to_status: str, amount: int = 1):
        """Count a lifecycle transition."""
        labels = {
            "from_status": from_status.lower(),
            "to_status": to_status.lower(),
        }
        self._increment("service_request_transitions_total", labels, amount)

    def increment_payment_operations(self, kind: str, status: str, amount: int = 1):
        """
        Count a payment operation outcome.

        Args:
            kind: intent, checkout_session, refund or cash
            status: created, confirmed or failed
            amount: Increment amount
        """
        labels = {"kind": kind.lower(), "status": status.lower()}
        self._increment("payment_operations_total", labels, amount)

    def increment_retries(self, reason: str, amount: int = 1):
        """Count one retried remote call (reason: http_5xx, transport)."""
        self._increment("remote_call_retries_total", {"reason": reason.lower()}, amount)

    def export_prometheus(self) -> str:
        """
        Export all metrics in Prometheus text format.

        Returns:
            Prometheus-compatible text output
        """
        output_lines = []

        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                metrics_by_name.setdefault(metric_name, []).append((dict(labels_tuple), value))

        for metric_name in sorted(metrics_by_name.keys()):
            help_text = self.HELP_TEXTS.get(metric_name, "Counter metric")
            output_lines.append(f"# HELP {metric_name} {help_text}")
            output_lines.append(f"# TYPE {metric_name} counter")

            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                labels_str = ",".join([f'{k}="{v}"' for k, v in sorted(labels_dict.items())])
                output_lines.append(f"{metric_name}{{{labels_str}}} {value}")

            output_lines.append("")

        return "\n".join(output_lines)

    def get_counter_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    def reset_all(self):
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton."""
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset global metrics collector (for testing)."""
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
