from enforcex import Enforcer

MODEL = """
[request_definition]
r = sub, dom, obj, act

[policy_definition]
p = sub, dom, obj, act, eft

[role_definition]
g = _, _, _

[policy_effect]
e = some(where (p.eft == allow)) && !some(where (p.eft == deny))

[matchers]
m = g(r.sub, p.sub, r.dom) && r.dom == p.dom && keyMatch(r.obj, p.obj) && r.act == p.act
"""


def main() -> None:
    e = Enforcer(MODEL)
    e.add_policies(
        [
            ["admin", "acme", "/reports/*", "GET", "allow"],
            ["admin", "acme", "/reports/secret", "GET", "deny"],
        ]
    )
    e.add_role_for_user("alice", "admin", "acme")

    print(e.enforce("alice", "acme", "/reports/q1", "GET"))  # True
    print(e.enforce("alice", "globex", "/reports/q1", "GET"))  # False: other tenant
    d = e.enforce_ex("alice", "acme", "/reports/secret", "GET")
    print(d.allowed, d.effect.value, d.rule)  # False deny (...)


if __name__ == "__main__":
    main()
