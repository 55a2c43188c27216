import json

import pytest

from enforcex import __version__
from enforcex import cli


@pytest.fixture
def files(tmp_path, rbac_model):
    model = tmp_path / "model.conf"
    policy = tmp_path / "policy.csv"
    model.write_text(rbac_model, encoding="utf-8")
    policy.write_text("p, admin, /data/*, GET\ng, alice, admin\n", encoding="utf-8")
    return str(model), str(policy)


def test_version(capsys):
    rc = cli.main(["--version"])
    assert rc == cli.EXIT_OK
    assert capsys.readouterr().out.strip() == f"enforcex {__version__}"


def test_unknown_flag_exits():
    with pytest.raises(SystemExit):
        cli.main(["--definitely-unknown"])


def test_no_command_prints_usage(capsys):
    assert cli.main([]) == cli.EXIT_ERROR
    assert "usage" in capsys.readouterr().err


def test_validate_model_and_policy(files, capsys):
    model, policy = files
    rc = cli.main(["validate", "--model", model, "--policy", policy])
    assert rc == cli.EXIT_OK
    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is True
    assert out["request"] == ["sub", "obj", "act"]
    assert out["effect"] == "allow-override"
    assert out["policies"] == 1
    assert out["role_links"] == 1


def test_validate_reports_compile_error(tmp_path, capsys):
    bad = tmp_path / "bad.conf"
    bad.write_text("[request_definition]\nr = sub\n", encoding="utf-8")
    rc = cli.main(["validate", "--model", str(bad)])
    assert rc == cli.EXIT_ERROR
    out = json.loads(capsys.readouterr().out)
    assert out == {"ok": False, "error": "compile", "message": out["message"]}
    assert "missing section" in out["message"]


def test_validate_text_format(files, capsys):
    model, _ = files
    assert cli.main(["validate", "--model", model, "--format", "text"]) == cli.EXIT_OK
    assert "effect: allow-override" in capsys.readouterr().out


def test_check_allow_and_deny(files, capsys):
    model, policy = files
    assert cli.main(["check", "--model", model, "--policy", policy, "alice", "/data/1", "GET"]) == cli.EXIT_OK
    out = json.loads(capsys.readouterr().out)
    assert out["allowed"] is True
    assert out["rule"] == ["admin", "/data/*", "GET"]

    assert cli.main(["check", "--model", model, "--policy", policy, "bob", "/data/1", "GET"]) == cli.EXIT_DENIED
    assert json.loads(capsys.readouterr().out)["allowed"] is False


def test_check_wrong_arity_is_an_error(files, capsys):
    model, policy = files
    rc = cli.main(["check", "--model", model, "--policy", policy, "alice", "/data/1"])
    assert rc == cli.EXIT_ERROR
    assert json.loads(capsys.readouterr().out)["error"] == "EvaluationError"


def test_check_ignore_case(files, capsys):
    model, policy = files
    argv = ["check", "--model", model, "--policy", policy, "alice", "/data/1", "get"]
    assert cli.main(argv) == cli.EXIT_DENIED
    capsys.readouterr()
    assert cli.main(argv[:1] + ["--ignore-case"] + argv[1:]) == cli.EXIT_OK
