from __future__ import annotations

from typing import Any, Dict, Optional

from enforcex.core.ports import MetricsObserve, MetricsSink

try:
    from prometheus_client import Counter, Histogram  # type: ignore
except Exception:  # pragma: no cover
    Counter = Histogram = None  # type: ignore


class PrometheusMetrics(MetricsSink, MetricsObserve):
    """Prometheus-backed sink.

    Exposes:
      - enforcex_decisions_total{decision="allow|deny|error"}
      - enforcex_decision_seconds{decision=...} (Histogram)

    Pass *registry* (a ``CollectorRegistry``) to keep instruments out of the
    process-wide default registry.
    """

    _counter: Optional[Any]
    _hist: Optional[Any]

    def __init__(self, *, registry: Any | None = None, namespace: str = "") -> None:
        self._counter = None
        self._hist = None

        if Counter is None or Histogram is None:  # pragma: no cover
            return

        kw: Dict[str, Any] = {"namespace": namespace}
        if registry is not None:
            kw["registry"] = registry
        self._counter = Counter(
            "enforcex_decisions_total",
            "Total enforcement decisions by outcome.",
            labelnames=("decision",),
            **kw,
        )
        self._hist = Histogram(
            "enforcex_decision_seconds",
            "Enforcement evaluation duration in seconds.",
            labelnames=("decision",),
            **kw,
        )

    # -- MetricsSink ------------------------------------------------------------

    def inc(self, name: str, labels: Dict[str, str] | None = None) -> None:
        """Increment the decision counter; *name* is informational."""
        if self._counter is None:  # pragma: no cover
            return
        decision = (labels or {}).get("decision", "unknown")
        self._counter.labels(decision=decision).inc()

    def observe(self, name: str, value: float, labels: Dict[str, str] | None = None) -> None:
        if self._hist is None:  # pragma: no cover
            return
        decision = (labels or {}).get("decision", "unknown")
        self._hist.labels(decision=decision).observe(float(value))
