"""部署接口：接收仓库地址与签名凭据，同步执行部署流水线。"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import JSONResponse

from deployer.api.v1.schemas import DeploymentResponse, ServiceInfoResponse
from deployer.application.container import get_deployment_pipeline
from deployer.application.pipeline import DeploymentPipeline
from deployer.config import get_settings
from deployer.domain.enums import ErrorKind
from deployer.domain.errors import InputValidationError
from deployer.domain.models import DeploymentRequest, PipelineResult

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)

# 同时运行的流水线数量上限，超出的请求排队等待。
_run_slots = asyncio.Semaphore(max(1, settings.max_concurrent_runs))


def _pipeline() -> DeploymentPipeline:
    return get_deployment_pipeline()


def parse_tags(raw: str | None) -> list[tuple[str, str]]:
    """解析 JSON 形式的附加标签列表：[{"name": ..., "value": ...}]。"""
    if not raw or not raw.strip():
        return []
    try:
        payload: Any = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InputValidationError(f"invalid tags JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise InputValidationError("tags must be a JSON list of {name, value} objects")
    tags: list[tuple[str, str]] = []
    for item in payload:
        if not isinstance(item, dict) or not isinstance(item.get("name"), str) or "value" not in item:
            raise InputValidationError("tags must be a JSON list of {name, value} objects")
        tags.append((item["name"], str(item["value"])))
    return tags


def status_code_for(result: PipelineResult) -> int:
    if result.success:
        return status.HTTP_200_OK
    if result.error_kind is ErrorKind.input_validation:
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _respond(result: PipelineResult) -> JSONResponse:
    body = DeploymentResponse.model_validate(result.to_payload())
    return JSONResponse(status_code=status_code_for(result), content=body.model_dump())


def _rejected(exc: InputValidationError) -> JSONResponse:
    body = DeploymentResponse(
        success=False,
        error_kind=exc.error_kind.value,
        message=str(exc),
        failed_stage="init",
        stage_history=["init"],
    )
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())


@router.post("/deployments", response_model=DeploymentResponse)
async def create_deployment(
    repository_url: Annotated[str | None, Form()] = None,
    storage_key: Annotated[UploadFile | None, File()] = None,
    ledger_key: Annotated[UploadFile | None, File()] = None,
    label: Annotated[str | None, Form()] = None,
    tags: Annotated[str | None, Form()] = None,
    pipeline: DeploymentPipeline = Depends(_pipeline),
) -> JSONResponse:
    """解析上传参数并执行一次完整部署。"""
    try:
        extra_tags = parse_tags(tags)
    except InputValidationError as exc:
        return _rejected(exc)

    request = DeploymentRequest(
        repository_url=repository_url or "",
        storage_credential=await storage_key.read() if storage_key is not None else None,
        ledger_credential=(await ledger_key.read() or None) if ledger_key is not None else None,
        label=label.strip() if label and label.strip() else None,
        extra_tags=extra_tags,
        storage_credential_filename=(storage_key.filename if storage_key is not None else None) or "wallet.json",
    )
    logger.info(
        "deployment requested",
        extra={
            "event": "deployment.requested",
            "payload_preview": {
                "repository_url": request.repository_url,
                "has_ledger_credential": request.ledger_credential is not None,
                "label": request.label,
                "tag_count": len(extra_tags),
            },
        },
    )
    async with _run_slots:
        result = await asyncio.to_thread(pipeline.run, request)
    return _respond(result)


@router.get("/deployments", response_model=ServiceInfoResponse)
def deployment_info() -> ServiceInfoResponse:
    """返回部署服务说明。"""
    path = f"{settings.api_prefix}/deployments"
    return ServiceInfoResponse(
        status="ok",
        environment=settings.environment,
        message=f"{settings.app_name} deployment API is running",
        endpoints={"POST": path, "GET": path},
    )
