import base64

import pytest

pytest.importorskip("starlette")
pytest.importorskip("httpx")
jwt = pytest.importorskip("jwt")

from starlette.applications import Starlette  # noqa: E402
from starlette.middleware import Middleware  # noqa: E402
from starlette.responses import PlainTextResponse  # noqa: E402
from starlette.routing import Route  # noqa: E402
from starlette.testclient import TestClient  # noqa: E402

from enforcex import Enforcer  # noqa: E402
from enforcex.adapters._common import (  # noqa: E402
    AdapterConfig,
    AuthType,
    get_user_name_basic,
    get_user_name_jwt,
)
from enforcex.adapters.starlette import EnforcerMiddleware, require_access  # noqa: E402

SECRET = "test-secret-that-is-long-enough-for-hs256"


def _basic(user, password="pw"):
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


def _bearer(sub):
    return {"Authorization": "Bearer " + jwt.encode({"sub": sub}, SECRET, algorithm="HS256")}


async def _ok(request):
    return PlainTextResponse("ok")


@pytest.fixture
def enforcer(rbac_model):
    e = Enforcer(rbac_model)
    e.add_policy("reader", "/data/*", "GET")
    e.add_policy("", "/public", "GET")
    e.add_role_for_user("alice", "reader")
    return e


def _app(enforcer, **kw):
    routes = [
        Route("/data/{item}", _ok),
        Route("/public", _ok),
        Route("/health", _ok),
    ]
    return Starlette(routes=routes, middleware=[Middleware(EnforcerMiddleware, enforcer=enforcer, **kw)])


def test_basic_auth_allow_and_deny(enforcer):
    client = TestClient(_app(enforcer))
    assert client.get("/data/1", headers=_basic("alice")).status_code == 200
    r = client.get("/data/1", headers=_basic("bob"))
    assert r.status_code == 403
    assert r.json() == {"detail": "Forbidden"}
    assert client.post("/data/1", headers=_basic("alice")).status_code in (403, 405)


def test_anonymous_subject_is_empty_string(enforcer):
    client = TestClient(_app(enforcer))
    assert client.get("/public").status_code == 200
    assert client.get("/data/1").status_code == 403


def test_jwt_subject(enforcer):
    client = TestClient(_app(enforcer, auth_type="jwt"))
    assert client.get("/data/1", headers=_bearer("alice")).status_code == 200
    assert client.get("/data/1", headers=_bearer("bob")).status_code == 403
    assert client.get("/data/1", headers={"Authorization": "Bearer garbage"}).status_code == 403


def test_skipper_bypasses_enforcement(enforcer):
    client = TestClient(_app(enforcer, skipper=lambda req: req.url.path == "/health"))
    assert client.get("/health").status_code == 200
    assert client.get("/data/1").status_code == 403


def test_deny_headers(enforcer):
    client = TestClient(_app(enforcer, add_headers=True))
    r = client.get("/data/1", headers=_basic("bob"))
    assert r.status_code == 403
    assert r.headers["X-Enforcex-Reason"] == "no matching rule"
    assert "X-Enforcex-Rule" not in r.headers


def test_evaluation_error_is_500_not_403():
    e = Enforcer(
        """
[request_definition]
r = sub, obj
[policy_definition]
p = sub, obj
[policy_effect]
e = some(where (p.eft == allow))
[matchers]
m = r.sub == p.sub && r.obj == p.obj
"""
    )
    client = TestClient(_app(e))
    r = client.get("/data/1", headers=_basic("alice"))
    assert r.status_code == 500


def test_require_access_decorator(enforcer):
    @require_access(enforcer)
    def sync_view(request):
        return PlainTextResponse("sync")

    @require_access(enforcer)
    async def async_view(request):
        return PlainTextResponse("async")

    app = Starlette(routes=[Route("/data/sync", sync_view), Route("/data/async", async_view)])
    client = TestClient(app)
    assert client.get("/data/sync", headers=_basic("alice")).text == "sync"
    assert client.get("/data/async", headers=_basic("alice")).text == "async"
    assert client.get("/data/async", headers=_basic("bob")).status_code == 403
    assert async_view.__name__ == "async_view"


def test_user_name_helpers():
    assert get_user_name_basic(_basic("alice")) == "alice"
    assert get_user_name_basic({"authorization": "Basic !!!"}) == ""
    assert get_user_name_basic({"Authorization": "Bearer abc"}) == ""
    assert get_user_name_jwt(_bearer("carol")) == "carol"
    assert get_user_name_jwt({}) == ""
    cfg = AdapterConfig(auth_type=AuthType.JWT)
    assert cfg.request_tuple(_bearer("dave"), "/x", "GET") == ("dave", "/x", "GET")


@pytest.mark.asyncio
async def test_non_http_scopes_pass_through(enforcer):
    seen = []

    async def app(scope, receive, send):
        seen.append(scope["type"])

    mw = EnforcerMiddleware(app, enforcer=enforcer)
    await mw({"type": "lifespan"}, None, None)
    assert seen == ["lifespan"]
