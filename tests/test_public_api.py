import importlib


def test_public_api_imports():
    names = [
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
    mod = importlib.import_module("enforcex")
    for n in names:
        assert hasattr(mod, n), f"Missing public import: enforcex.{n}"


def test_errors_share_a_base():
    from enforcex import CompileError, EvaluationError, MutationError
    from enforcex.core.errors import EnforcexError

    for exc in (CompileError, EvaluationError, MutationError):
        assert issubclass(exc, EnforcexError)
    assert str(CompileError("bad", section="matchers")) == "[matchers] bad"
