"""API 总路由配置，注册 deployments 子路由。"""

from __future__ import annotations

from fastapi import APIRouter

from deployer.api.v1.deployments import router as deployments_router
from deployer.config import get_settings

settings = get_settings()

api_router = APIRouter(prefix=settings.api_prefix)
api_router.include_router(deployments_router, tags=["deployments"])
