from __future__ import annotations

from .decision_logger import DecisionLogger

__all__ = ["DecisionLogger"]
