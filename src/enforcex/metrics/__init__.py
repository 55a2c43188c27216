from __future__ import annotations

from .otel import OpenTelemetryMetrics
from .prometheus import PrometheusMetrics

__all__ = ["PrometheusMetrics", "OpenTelemetryMetrics"]
