#!/usr/bin/env python3
"""
DecisionLogger configuration demo.

Run:
  python examples/logging/decision_logger_demo.py

This script shows:
  1) Plain text records, every decision
  2) JSON records with a redacted subject
  3) Smart sampling: allows dropped, denies kept

It emits lines to stdout via the 'enforcex.audit' logger.
"""

import logging

from enforcex import Enforcer
from enforcex.logging import DecisionLogger

MODEL = """
[request_definition]
r = sub, obj, act

[policy_definition]
p = sub, obj, act

[policy_effect]
e = some(where (p.eft == allow))

[matchers]
m = r.sub == p.sub && keyMatch(r.obj, p.obj) && r.act == p.act
"""


def setup_logging() -> None:
    """Configure logging so 'enforcex.audit' emits to stdout."""
    root = logging.getLogger()
    if not root.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(h)
    root.setLevel(logging.INFO)


def run(title: str, sink: DecisionLogger) -> None:
    print(f"--- {title}")
    e = Enforcer(MODEL, logger_sink=sink)
    e.add_policy("alice", "/docs/*", "read")
    e.enforce("alice", "/docs/1", "read")
    e.enforce("mallory", "/docs/1", "delete")


def main() -> None:
    setup_logging()
    run("text", DecisionLogger())
    run("json + redaction", DecisionLogger(as_json=True, redact_fields=["sub"]))
    run("smart sampling", DecisionLogger(as_json=True, sample_rate=0.0, smart_sampling=True))


if __name__ == "__main__":
    main()
