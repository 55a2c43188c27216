import argparse
import statistics
import time

from enforcex import Enforcer

MODEL = """
[request_definition]
r = sub, obj, act

[policy_definition]
p = sub, obj, act

[role_definition]
g = _, _

[policy_effect]
e = some(where (p.eft == allow))

[matchers]
m = g(r.sub, p.sub) && keyMatch2(r.obj, p.obj) && r.act == p.act
"""


def build(n: int) -> Enforcer:
    e = Enforcer(MODEL)
    e.add_policies([[f"role{i}", f"/res{i}/:id", "read"] for i in range(n)])
    e.add_named_grouping_policies("g", [[f"role{i}", f"role{i + 1}"] for i in range(min(n, 20) - 1)])
    e.add_role_for_user("u", "role0")
    return e


def run(size: int, iters: int):
    e = build(size)
    obj = f"/res{size - 1}/42"
    lat = []
    for _ in range(iters):
        t0 = time.perf_counter()
        allowed = e.enforce("u", obj, "read")
        lat.append((time.perf_counter() - t0) * 1000.0)
    return {
        "p50": statistics.median(lat),
        "avg": sum(lat) / len(lat),
        "p90": percentile(lat, 90),
        "allowed": allowed,
    }


def percentile(arr, p):
    arr2 = sorted(arr)
    k = int(round((p / 100.0) * (len(arr2) - 1)))
    return arr2[k]


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--sizes", type=int, nargs="+", default=[10, 50, 100, 500, 1000])
    ap.add_argument("--iters", type=int, default=200)
    args = ap.parse_args()
    print("size,avg_ms,p50_ms,p90_ms,allowed")
    for s in args.sizes:
        r = run(s, args.iters)
        print(f"{s},{r['avg']:.3f},{r['p50']:.3f},{r['p90']:.3f},{r['allowed']}")


if __name__ == "__main__":
    main()
