"""FastAPI 应用入口：组装生命周期、请求追踪中间件、健康检查与部署路由。"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from deployer.api.router import api_router
from deployer.application.container import shutdown_container_resources
from deployer.config import Settings, get_settings
from deployer.infra.logging.context import bind_log_context
from deployer.infra.logging.setup import configure_logging, shutdown_logging

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期：退出时关闭网关连接池并停止日志队列。"""
    logger.info("api startup ready", extra={"event": "api.startup.succeeded"})
    try:
        yield
    finally:
        logger.info("api shutdown begin", extra={"event": "api.shutdown.started"})
        shutdown_container_resources()
        shutdown_logging()


async def trace_request(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    """透传或生成请求 ID，记录耗时与状态码，并回写到响应头。"""
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
    op = f"{request.method} {request.url.path}"
    started = time.perf_counter()
    with bind_log_context(request_id=request_id):
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception(
                "http request failed",
                extra={
                    "event": "http.request.failed",
                    "op": op,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            raise
        logger.info(
            "http request completed",
            extra={
                "event": "http.request.completed",
                "op": op,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "status_code": response.status_code,
            },
        )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def create_app(settings: Settings) -> FastAPI:
    application = FastAPI(title=settings.app_name, lifespan=lifespan)
    origins = settings.cors_allowed_origins_list()
    if origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=settings.cors_allowed_methods_list(),
            allow_headers=settings.cors_allowed_headers_list(),
            allow_credentials=settings.cors_allow_credentials,
        )
    application.middleware("http")(trace_request)

    @application.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @application.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    application.include_router(api_router)
    return application


settings = get_settings()
configure_logging(settings)
app = create_app(settings)


def run() -> None:
    """命令行入口：以 uvicorn 启动服务。"""
    uvicorn.run("deployer.main:app", host=settings.api_host, port=settings.api_port, log_config=None)
