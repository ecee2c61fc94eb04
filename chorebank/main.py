import logging
import os
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from chorebank.core.context import BuildServiceContext, ServiceContext
from chorebank.core.env import ReadBoolEnv
from chorebank.core.logging import setup_logging
from chorebank.core.migrations import RunMigrations
from chorebank.db import BuildEngine, BuildSessionFactory
from chorebank.modules.chores.router import router as chores_router
from chorebank.modules.core.router import router as core_router
from chorebank.modules.coupons.router import router as coupons_router
from chorebank.modules.families.router import router as families_router
from chorebank.modules.ledger.router import router as ledger_router
from chorebank.modules.rewards.router import router as rewards_router
from chorebank.modules.scheduler.router import router as scheduler_router
from chorebank.modules.scheduler.service import SchedulerRunner
from chorebank.modules.subscriptions.router import router as subscriptions_router

logger = logging.getLogger("app.request")
startup_logger = logging.getLogger("app.startup")


async def request_logger(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = int((time.perf_counter() - start) * 1000)

    parts = [f"{request.method} {request.url.path}"]
    if request.url.query:
        parts.append(f"query={request.url.query}")

    status = response.status_code
    if status >= 400:
        if status == 404:
            parts.append("ERROR: not found")
        elif status >= 500:
            parts.append("ERROR: server error")
        else:
            parts.append("ERROR: client error")

    parts.append(f"status={status}")
    parts.append(f"{duration_ms}ms")
    parts.append(f"request_id={request_id}")

    log_msg = " | ".join(parts)
    if status >= 500:
        logger.error(log_msg)
    elif status >= 400:
        logger.warning(log_msg)
    else:
        logger.info(log_msg)

    response.headers["X-Request-Id"] = request_id
    return response


def CreateApp(
    engine: Engine | None = None,
    ctx: ServiceContext | None = None,
    configure_logging: bool = True,
) -> FastAPI:
    if configure_logging:
        setup_logging()

    if engine is None:
        if ReadBoolEnv("RUN_MIGRATIONS_ON_STARTUP"):
            RunMigrations()
        engine = BuildEngine()
    session_factory = BuildSessionFactory(engine)
    ctx = ctx or BuildServiceContext()

    app = FastAPI(title="Chorebank API")
    app.state.Engine = engine
    app.state.SessionLocal = session_factory
    app.state.ServiceContext = ctx
    app.state.SchedulerRunner = SchedulerRunner(session_factory, ctx)

    allowed_origins = os.getenv("ALLOWED_ORIGINS", "")
    origin_list = [origin.strip() for origin in allowed_origins.split(",") if origin.strip()]
    if origin_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origin_list,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.middleware("http")(request_logger)

    app.include_router(core_router)
    app.include_router(families_router)
    app.include_router(chores_router)
    app.include_router(ledger_router)
    app.include_router(rewards_router)
    app.include_router(scheduler_router)
    app.include_router(coupons_router)
    app.include_router(subscriptions_router)

    startup_logger.info("startup complete")
    return app
