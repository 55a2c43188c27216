"""enforcex: a model-driven access-control decision engine.

Quickstart::

    from enforcex import Enforcer

    e = Enforcer(MODEL_TEXT)
    e.add_policy("admin", "/data/*", "GET")
    e.add_role_for_user("alice", "admin")
    assert e.enforce("alice", "/data/1", "GET")
"""

from __future__ import annotations

from . import adapters, core, storage
from .core.enforcer import Enforcer
from .core.errors import CompileError, EnforcexError, EvaluationError, MutationError
from .core.evaluator import Decision
from .core.functions import FunctionRegistry, MatchOptions
from .core.model import Effect, EffectKind, Model, compile_model
from .core.policy import PolicyStore
from .core.roles import RoleGraph
from .storage import FilePolicySource, HotReloader

__version__ = "0.1.0"

__all__ = [
    "Enforcer",
    "Model",
    "compile_model",
    "Decision",
    "Effect",
    "EffectKind",
    "MatchOptions",
    "FunctionRegistry",
    "PolicyStore",
    "RoleGraph",
    "EnforcexError",
    "CompileError",
    "MutationError",
    "EvaluationError",
    "FilePolicySource",
    "HotReloader",
    "core",
    "adapters",
    "storage",
    "__version__",
]
