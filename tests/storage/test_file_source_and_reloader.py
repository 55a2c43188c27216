import os
import time

import pytest

from enforcex import Enforcer
from enforcex.core.errors import MutationError
from enforcex.storage import (
    FilePolicySource,
    HotReloader,
    atomic_write,
    format_policy_lines,
    parse_policy_lines,
)


def test_parse_policy_lines_skips_comments_and_blanks():
    text = """
# admins
p, admin, /data, GET

g, alice, admin
p, "bob, jr", "/a,b", GET
"""
    assert parse_policy_lines(text) == [
        ["p", "admin", "/data", "GET"],
        ["g", "alice", "admin"],
        ["p", "bob, jr", "/a,b", "GET"],
    ]


def test_format_quotes_fields_with_commas():
    out = format_policy_lines([["p", "bob, jr", "/a", "GET"], ["g", "alice", "admin"]])
    assert out == 'p,"bob, jr",/a,GET\ng,alice,admin\n'
    assert parse_policy_lines(out) == [["p", "bob, jr", "/a", "GET"], ["g", "alice", "admin"]]


def test_atomic_write_leaves_no_temp_files(tmp_path):
    path = tmp_path / "policy.csv"
    atomic_write(str(path), "p, a, b, c\n")
    atomic_write(str(path), "p, x, y, z\n")
    assert path.read_text(encoding="utf-8") == "p, x, y, z\n"
    assert [p.name for p in tmp_path.iterdir()] == ["policy.csv"]


def test_etag_changes_with_content(tmp_path):
    path = tmp_path / "policy.csv"
    path.write_text("p, a, b, c\n", encoding="utf-8")
    src = FilePolicySource(str(path))
    e1 = src.etag()
    assert e1 == src.etag()
    atomic_write(str(path), "p, a, b, d\n")
    assert src.etag() != e1
    assert FilePolicySource(str(tmp_path / "missing.csv")).etag() is None


def test_etag_with_mtime(tmp_path):
    path = tmp_path / "policy.csv"
    path.write_text("p, a, b, c\n", encoding="utf-8")
    src = FilePolicySource(str(path), include_mtime_in_etag=True)
    e1 = src.etag()
    st = os.stat(path)
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))
    assert src.etag() != e1


def test_save_policy_round_trips_through_file(tmp_path, rbac_model):
    path = tmp_path / "policy.csv"
    path.write_text("p, admin, /data, GET\n", encoding="utf-8")
    e = Enforcer(rbac_model, FilePolicySource(str(path)))
    e.add_role_for_user("alice", "admin")
    e.save_policy()
    assert path.read_text(encoding="utf-8") == "p,admin,/data,GET\ng,alice,admin\n"

    e2 = Enforcer(rbac_model, FilePolicySource(str(path)))
    assert e2.enforce("alice", "/data", "GET")


def test_missing_file_is_a_mutation_error(tmp_path, acl_model):
    with pytest.raises(MutationError):
        Enforcer(acl_model, FilePolicySource(str(tmp_path / "nope.csv")))


def test_hot_reloader_applies_changes(tmp_path, rbac_model):
    path = tmp_path / "policy.csv"
    path.write_text("p, admin, /data, GET\ng, alice, admin\n", encoding="utf-8")
    e = Enforcer(rbac_model, FilePolicySource(str(path)))
    reloader = HotReloader(e, poll_interval=None)

    assert reloader.check_and_reload() is False  # unchanged
    atomic_write(str(path), "p, admin, /data, GET\ng, bob, admin\n")
    assert reloader.check_and_reload() is True
    assert e.enforce("bob", "/data", "GET")
    assert not e.enforce("alice", "/data", "GET")
    assert reloader.last_reload_at is not None
    assert reloader.last_error is None


def test_hot_reloader_keeps_policy_on_bad_file(tmp_path, rbac_model, caplog):
    path = tmp_path / "policy.csv"
    path.write_text("p, admin, /data, GET\ng, alice, admin\n", encoding="utf-8")
    e = Enforcer(rbac_model, FilePolicySource(str(path)))
    reloader = HotReloader(e, backoff_min=0.0, backoff_max=0.0)

    atomic_write(str(path), "p, admin, /data\n")
    with caplog.at_level("ERROR", logger="enforcex.storage"):
        assert reloader.check_and_reload() is False
    assert isinstance(reloader.last_error, MutationError)
    assert reloader.suppressed_until > 0
    assert e.enforce("alice", "/data", "GET")
    assert any("invalid policy" in r.getMessage() for r in caplog.records)


def test_hot_reloader_missing_file_warns(tmp_path, rbac_model, caplog):
    path = tmp_path / "policy.csv"
    path.write_text("p, admin, /data, GET\ng, alice, admin\n", encoding="utf-8")
    e = Enforcer(rbac_model, FilePolicySource(str(path)))
    reloader = HotReloader(e)
    path.unlink()
    with caplog.at_level("WARNING", logger="enforcex.storage"):
        assert reloader.check_and_reload() is False
    assert isinstance(reloader.last_error, FileNotFoundError)
    assert e.enforce("alice", "/data", "GET")


def test_hot_reloader_needs_a_source(acl_model):
    with pytest.raises(ValueError):
        HotReloader(Enforcer(acl_model))


def test_hot_reloader_background_thread(tmp_path, rbac_model):
    path = tmp_path / "policy.csv"
    path.write_text("p, admin, /data, GET\n", encoding="utf-8")
    e = Enforcer(rbac_model, FilePolicySource(str(path)))
    reloader = HotReloader(e, poll_interval=0.05, jitter_ratio=0.0)
    reloader.start()
    try:
        atomic_write(str(path), "p, admin, /data, GET\ng, carol, admin\n")
        deadline = time.time() + 5
        while time.time() < deadline and not e.enforce("carol", "/data", "GET"):
            time.sleep(0.02)
        assert e.enforce("carol", "/data", "GET")
    finally:
        reloader.stop()
