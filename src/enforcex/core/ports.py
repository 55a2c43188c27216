from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable


@runtime_checkable
class PolicySource(Protocol):
    """Backing store for policy lines.

    ``load()`` returns rows such as ``["p", "alice", "/data", "GET"]``; the
    first field names the rule type (``p`` for policies, ``g``/``g2``… for
    role assignments).
    """

    def load(self) -> List[List[str]]: ...

    def etag(self) -> Optional[str]: ...


@runtime_checkable
class WritablePolicySource(PolicySource, Protocol):
    def save(self, rows: Sequence[Sequence[str]]) -> None: ...


@runtime_checkable
class MetricsSink(Protocol):
    def inc(self, name: str, labels: Dict[str, str] | None = None) -> None: ...


@runtime_checkable
class MetricsObserve(Protocol):
    """Optional histogram extension of :class:`MetricsSink`."""

    def observe(self, name: str, value: float, labels: Dict[str, str] | None = None) -> None: ...


@runtime_checkable
class DecisionLogSink(Protocol):
    def log(self, payload: Dict[str, Any]) -> None: ...


__all__ = [
    "PolicySource",
    "WritablePolicySource",
    "MetricsSink",
    "MetricsObserve",
    "DecisionLogSink",
]
