from fastapi import FastAPI
import logging

from gamestack.adapters.factory import build_adapters, create_runtime
from gamestack.api.routes import router
from gamestack.controller import Controller
from gamestack.infra.aws_runtime import AwsRuntimeClient
from gamestack.infra.redis_client import create_redis
from gamestack.settings import ControllerSettings, settings_from_env
from gamestack.state_store import MemoryStateStore, RedisStateStore, StateStore

app = FastAPI(title="gamestack-controller", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_store(settings: ControllerSettings) -> StateStore:
    if settings.state_backend == "redis":
        return RedisStateStore(r=create_redis(settings.redis_url))
    return MemoryStateStore()


def build_controller(settings: ControllerSettings, runtime: AwsRuntimeClient | None) -> Controller:
    return Controller(store=build_store(settings), adapters=build_adapters(settings=settings, runtime=runtime))


@app.on_event("startup")
async def _startup() -> None:
    # Tests install their own controller before the app starts.
    if getattr(app.state, "controller", None) is not None:
        return

    settings = settings_from_env()
    runtime = create_runtime(settings)
    app.state.runtime = runtime
    app.state.controller = build_controller(settings, runtime)
    app.state.operation_timeout = settings.operation_timeout
    logger.info(
        "controller ready workloads=%s state_backend=%s region=%s",
        ",".join(app.state.controller.workloads),
        settings.state_backend,
        settings.aws.region,
    )


@app.on_event("shutdown")
async def _shutdown() -> None:
    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        runtime.close()
        app.state.runtime = None


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "gamestack-controller", "version": "0.1.0"}
