import logging
import os

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.responses import JSONResponse
from starlette.routing import Route

from enforcex import Enforcer
from enforcex.adapters.starlette import EnforcerMiddleware
from enforcex.logging import DecisionLogger

logging.basicConfig(level=logging.INFO)

MODELS = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "models")

enforcer = Enforcer.from_files(
    os.path.join(MODELS, "rbac_model.conf"),
    os.path.join(MODELS, "rbac_policy.csv"),
    logger_sink=DecisionLogger(as_json=True, smart_sampling=True, sample_rate=0.1),
)


async def health(request):
    return JSONResponse({"ok": True})


async def read_doc(request):
    return JSONResponse({"id": request.path_params["id"]})


async def update_doc(request):
    return JSONResponse({"id": request.path_params["id"], "updated": True})


app = Starlette(
    routes=[
        Route("/health", health),
        Route("/docs/{id}", read_doc, methods=["GET"]),
        Route("/docs/{id}", update_doc, methods=["PUT"]),
    ],
    middleware=[Middleware(EnforcerMiddleware, enforcer=enforcer, add_headers=True)],
)

# uvicorn examples.starlette_demo.app:app --reload
# curl -u alice:pw -X PUT localhost:8000/docs/1
