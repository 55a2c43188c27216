from __future__ import annotations

import json
import logging
import random
from typing import Any, Dict, Iterable, Mapping, Optional

from ..core.ports import DecisionLogSink

REDACTED = "[REDACTED]"

_DEFAULT_CATEGORY_RATES: Dict[str, float] = {"deny": 1.0, "error": 1.0}


class DecisionLogger(DecisionLogSink):
    """Audit sink that writes one record per enforcement decision.

    Payloads come from :class:`~enforcex.core.enforcer.Enforcer` and look like::

        {"request": {"sub": "alice", "obj": "/data", "act": "GET"},
         "decision": "allow", "allowed": True, "effect": "allow",
         "rule": ["alice", "/data", "GET"], "reason": "allowed by rule",
         "duration_ms": 0.041}

    Options:
      - sample_rate: probability of logging a decision (0.0 .. 1.0).
      - smart_sampling: when True, per-category rates apply first; by default
        every ``deny`` and ``error`` is kept even with a low sample_rate.
      - category_sampling_rates: overrides for ``allow`` / ``deny`` / ``error``.
      - redact_fields: request field names whose values are replaced with
        ``[REDACTED]``.
      - max_request_chars: replace the request with a placeholder when its
        serialized form is longer.
    """

    def __init__(
        self,
        *,
        sample_rate: float = 1.0,
        smart_sampling: bool = False,
        category_sampling_rates: Optional[Mapping[str, float]] = None,
        redact_fields: Iterable[str] = (),
        max_request_chars: Optional[int] = None,
        as_json: bool = False,
        level: int = logging.INFO,
        logger_name: str = "enforcex.audit",
    ) -> None:
        self.sample_rate = float(sample_rate)
        self.smart_sampling = bool(smart_sampling)
        self.category_sampling_rates = dict(category_sampling_rates or _DEFAULT_CATEGORY_RATES)
        self.redact_fields = frozenset(redact_fields)
        self.max_request_chars = max_request_chars
        self.as_json = as_json
        self.level = level
        self.logger = logging.getLogger(logger_name)

    def _rate_for(self, payload: Mapping[str, Any]) -> float:
        if self.smart_sampling:
            category = str(payload.get("decision", ""))
            if category in self.category_sampling_rates:
                return float(self.category_sampling_rates[category])
        return self.sample_rate

    def _should_log(self, payload: Mapping[str, Any]) -> bool:
        rate = self._rate_for(payload)
        if rate <= 0.0:
            return False
        return rate >= 1.0 or random.random() < rate

    def _prepare(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        out = dict(payload)
        request = out.get("request")
        if isinstance(request, dict) and self.redact_fields:
            out["request"] = {
                k: (REDACTED if k in self.redact_fields else v) for k, v in request.items()
            }
        if self.max_request_chars is not None and "request" in out:
            size = len(json.dumps(out["request"], ensure_ascii=False, default=str))
            if size > self.max_request_chars:
                out["request"] = {"_truncated": True, "size_chars": size}
        return out

    def log(self, payload: Dict[str, Any]) -> None:
        if not self._should_log(payload):
            return
        data = self._prepare(payload)
        if self.as_json:
            msg = json.dumps(data, ensure_ascii=False, default=str)
        else:
            msg = f"decision {data}"
        self.logger.log(self.level, msg)


__all__ = ["DecisionLogger", "REDACTED"]
