import threading

from enforcex import Enforcer
from enforcex.core.rwlock import ReadWriteLock

STATE_A = [["p", "admin", "/data", "GET"], ["g", "alice", "admin"]]
STATE_B = [["p", "staff", "/data", "GET"], ["g", "alice", "staff"]]


def test_readers_never_see_half_applied_reload(rbac_model):
    # alice is allowed in both states; a mix of A's policy with B's roles would deny
    e = Enforcer(rbac_model)
    e.set_policy_rows(STATE_A)
    stop = threading.Event()
    failures = []

    def reader():
        while not stop.is_set():
            if not e.enforce("alice", "/data", "GET"):
                failures.append(1)

    def writer():
        for i in range(200):
            e.set_policy_rows(STATE_B if i % 2 else STATE_A)
        stop.set()

    readers = [threading.Thread(target=reader) for _ in range(4)]
    w = threading.Thread(target=writer)
    for t in readers:
        t.start()
    w.start()
    w.join(timeout=30)
    stop.set()
    for t in readers:
        t.join(timeout=30)
    assert failures == []


def test_concurrent_mutations_are_all_applied(acl_model):
    e = Enforcer(acl_model)

    def add(n):
        for i in range(100):
            e.add_policy(f"user{n}", f"/obj{i}", "GET")

    threads = [threading.Thread(target=add, args=(n,)) for n in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    assert len(e.get_policy()) == 500
    assert e.enforce("user3", "/obj42", "GET")


def test_rwlock_allows_shared_readers_and_exclusive_writer():
    lock = ReadWriteLock()
    with lock.read():
        with lock.read():
            pass
    entered = threading.Event()
    release = threading.Event()
    order = []

    def hold_read():
        with lock.read():
            entered.set()
            release.wait(timeout=5)
            order.append("reader-done")

    t = threading.Thread(target=hold_read)
    t.start()
    entered.wait(timeout=5)

    def write():
        with lock.write():
            order.append("writer")

    w = threading.Thread(target=write)
    w.start()
    w.join(timeout=0.1)
    assert order == []  # writer blocked by the active reader
    release.set()
    t.join(timeout=5)
    w.join(timeout=5)
    assert order == ["reader-done", "writer"]
