from __future__ import annotations

from typing import Any, Dict, Optional

from enforcex.core.ports import MetricsObserve, MetricsSink

try:
    from opentelemetry.metrics import get_meter  # type: ignore
except Exception:  # pragma: no cover
    get_meter = None  # type: ignore


class OpenTelemetryMetrics(MetricsSink, MetricsObserve):
    """OpenTelemetry-backed sink.

    Creates:
      - Counter: enforcex_decisions_total (attribute: decision)
      - Histogram: enforcex_decision_seconds (unit: s)
    """

    _counter: Optional[Any]
    _hist: Optional[Any]

    def __init__(self, meter: Any | None = None) -> None:
        self._counter = None
        self._hist = None

        if meter is None:
            if get_meter is None:  # pragma: no cover
                return
            meter = get_meter("enforcex.metrics")

        self._counter = meter.create_counter(
            name="enforcex_decisions_total",
            description="Total enforcement decisions by outcome.",
        )
        self._hist = meter.create_histogram(
            name="enforcex_decision_seconds",
            description="Enforcement evaluation duration in seconds.",
            unit="s",
        )

    # -- MetricsSink ------------------------------------------------------------

    def inc(self, name: str, labels: Dict[str, str] | None = None) -> None:
        if self._counter is None:  # pragma: no cover
            return
        self._counter.add(1, {"decision": (labels or {}).get("decision", "unknown")})

    def observe(self, name: str, value: float, labels: Dict[str, str] | None = None) -> None:
        if self._hist is None:  # pragma: no cover
            return
        self._hist.record(float(value), {"decision": (labels or {}).get("decision", "unknown")})
