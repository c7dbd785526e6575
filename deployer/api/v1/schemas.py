"""API 响应数据模型定义，约束部署接口返回结构。"""

from __future__ import annotations

from pydantic import BaseModel


class ProjectInfo(BaseModel):
    """项目分类信息。"""
    kind: str
    has_dependency_manifest: bool
    inferred_build_command: str | None = None
    framework_version: str | None = None


class PerFileUrl(BaseModel):
    """单文件访问地址；confirmed 为 False 表示仍在网络中传播。"""
    path: str
    url: str
    confirmed: bool


class RegistrationInfo(BaseModel):
    """链上登记结果。"""
    succeeded: bool
    transaction_signature: str | None = None
    reason: str | None = None


class DeploymentResponse(BaseModel):
    """部署接口响应模型；成功与失败共用同一结构。"""
    success: bool
    content_id: str | None = None
    resolvable_url: str | None = None
    per_file_urls: list[PerFileUrl] | None = None
    partial_publication: bool = False
    registration: RegistrationInfo | None = None
    project: ProjectInfo | None = None
    error_kind: str | None = None
    message: str | None = None
    failed_stage: str | None = None
    stage_history: list[str] = []


class ServiceInfoResponse(BaseModel):
    """部署服务说明。"""
    status: str
    environment: str
    message: str
    endpoints: dict[str, str]
