import pytest

from enforcex import Enforcer
from enforcex.core.ports import MetricsObserve, MetricsSink
from enforcex.metrics import OpenTelemetryMetrics, PrometheusMetrics


def test_prometheus_counts_decisions(acl_model):
    prometheus_client = pytest.importorskip("prometheus_client")
    registry = prometheus_client.CollectorRegistry()
    metrics = PrometheusMetrics(registry=registry)
    assert isinstance(metrics, MetricsSink) and isinstance(metrics, MetricsObserve)

    e = Enforcer(acl_model, metrics=metrics)
    e.add_policy("alice", "/data", "GET")
    e.enforce("alice", "/data", "GET")
    e.enforce("alice", "/data", "GET")
    e.enforce("bob", "/data", "GET")

    def sample(name, decision):
        return registry.get_sample_value(name, {"decision": decision})

    assert sample("enforcex_decisions_total", "allow") == 2.0
    assert sample("enforcex_decisions_total", "deny") == 1.0
    assert sample("enforcex_decision_seconds_count", "allow") == 2.0


def test_prometheus_namespace():
    prometheus_client = pytest.importorskip("prometheus_client")
    registry = prometheus_client.CollectorRegistry()
    metrics = PrometheusMetrics(registry=registry, namespace="svc")
    metrics.inc("enforcex_decisions_total", {"decision": "deny"})
    assert registry.get_sample_value("svc_enforcex_decisions_total", {"decision": "deny"}) == 1.0


class _Counter:
    def __init__(self):
        self.calls = []

    def add(self, amount, attributes=None):
        self.calls.append((amount, attributes))


class _Histogram:
    def __init__(self):
        self.calls = []

    def record(self, amount, attributes=None):
        self.calls.append((amount, attributes))


class _Meter:
    def __init__(self):
        self.counter = _Counter()
        self.histogram = _Histogram()

    def create_counter(self, name, **kw):
        assert name == "enforcex_decisions_total"
        return self.counter

    def create_histogram(self, name, **kw):
        assert kw.get("unit") == "s"
        return self.histogram


def test_opentelemetry_with_explicit_meter(acl_model):
    meter = _Meter()
    e = Enforcer(acl_model, metrics=OpenTelemetryMetrics(meter=meter))
    e.add_policy("alice", "/data", "GET")
    e.enforce("alice", "/data", "GET")
    e.enforce("bob", "/data", "GET")
    assert meter.counter.calls == [(1, {"decision": "allow"}), (1, {"decision": "deny"})]
    assert [attrs for _, attrs in meter.histogram.calls] == [{"decision": "allow"}, {"decision": "deny"}]


def test_opentelemetry_default_meter_is_usable():
    pytest.importorskip("opentelemetry.metrics")
    metrics = OpenTelemetryMetrics()
    # the API's no-op meter accepts calls without an SDK configured
    metrics.inc("enforcex_decisions_total", {"decision": "allow"})
    metrics.observe("enforcex_decision_seconds", 0.001, {"decision": "allow"})
