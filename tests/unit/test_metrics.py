"""
Unit tests for metrics collection and Prometheus export.
"""

import pytest
from servicehub.lib.metrics import MetricsCollector, get_metrics_collector, reset_metrics


@pytest.fixture
def metrics():
    """Fresh metrics collector for each test."""
    return MetricsCollector()


@pytest.mark.unit
def test_metrics_collector_initialization(metrics):
    assert metrics.export_prometheus() == ""


@pytest.mark.unit
def test_increment_transitions(metrics):
    metrics.increment_transitions("pending", "in-process")
    metrics.increment_transitions("pending", "in-process")
    metrics.increment_transitions("in-process", "completed")

    assert metrics.get_counter_value(
        "service_request_transitions_total", {"from_status": "pending", "to_status": "in-process"}
    ) == 2
    assert metrics.get_counter_value(
        "service_request_transitions_total", {"from_status": "in-process", "to_status": "completed"}
    ) == 1


@pytest.mark.unit
def test_increment_payment_operations_with_amount(metrics):
    metrics.increment_payment_operations("refund", "confirmed", amount=3)
    metrics.increment_payment_operations("REFUND", "Confirmed")

    assert metrics.get_counter_value("payment_operations_total", {"kind": "refund", "status": "confirmed"}) == 4


@pytest.mark.unit
def test_increment_retries(metrics):
    metrics.increment_retries("http_5xx")
    metrics.increment_retries("transport", amount=2)

    assert metrics.get_counter_value("remote_call_retries_total", {"reason": "http_5xx"}) == 1
    assert metrics.get_counter_value("remote_call_retries_total", {"reason": "transport"}) == 2


@pytest.mark.unit
def test_export_prometheus_format(metrics):
    metrics.increment_transitions("pending", "rejected")
    metrics.increment_payment_operations("intent", "created", amount=2)

    output = metrics.export_prometheus()

    assert "# HELP payment_operations_total Total number of payment gateway operations" in output
    assert "# TYPE payment_operations_total counter" in output
    assert 'payment_operations_total{kind="intent",status="created"} 2' in output
    assert 'service_request_transitions_total{from_status="pending",to_status="rejected"} 1' in output
    # Metric families are sorted by name
    assert output.index("payment_operations_total") < output.index("service_request_transitions_total")


@pytest.mark.unit
def test_reset_all_clears_counters(metrics):
    metrics.increment_retries("transport", amount=100)
    metrics.reset_all()

    assert metrics.get_counter_value("remote_call_retries_total", {"reason": "transport"}) == 0
    assert metrics.export_prometheus() == ""


@pytest.mark.unit
def test_get_metrics_collector_singleton():
    reset_metrics()
    collector1 = get_metrics_collector()
    collector2 = get_metrics_collector()

    assert collector1 is collector2
    collector1.increment_retries("http_5xx")
    assert collector2.get_counter_value("remote_call_retries_total", {"reason": "http_5xx"}) == 1

    reset_metrics()
    assert collector1.get_counter_value("remote_call_retries_total", {"reason": "http_5xx"}) == 0


@pytest.mark.unit
def test_nonexistent_counter_returns_zero(metrics):
    assert metrics.get_counter_value("nonexistent_metric", {"label": "value"}) == 0
