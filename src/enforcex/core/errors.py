from __future__ import annotations


class EnforcexError(Exception):
    """Base class for all errors raised by enforcex."""


class CompileError(EnforcexError):
    """The model text could not be compiled.

    Raised at construction or on :meth:`Enforcer.load_model`; a previously
    compiled model stays active.
    """

    def __init__(self, message: str, *, section: str | None = None) -> None:
        self.section = section
        if section:
            message = f"[{section}] {message}"
        super().__init__(message)


class MutationError(EnforcexError):
    """A policy or role mutation was rejected; the store is unchanged."""


class EvaluationError(EnforcexError):
    """A request could not be evaluated.

    Never conflated with a deny: callers must treat it as a failure.
    """


__all__ = ["EnforcexError", "CompileError", "MutationError", "EvaluationError"]
