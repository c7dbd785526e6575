"""领域数据结构定义：项目描述、构建结果、发布记录与流水线结果等值对象。"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from deployer.domain.enums import ErrorKind, PipelineStage, ProjectKind


@dataclass(slots=True, frozen=True)
class ProjectDescriptor:
    """源码树分类结果，由分析器生成后不再变更。"""
    kind: ProjectKind
    has_dependency_manifest: bool
    inferred_build_command: str | None = None
    framework_version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "has_dependency_manifest": self.has_dependency_manifest,
            "inferred_build_command": self.inferred_build_command,
            "framework_version": self.framework_version,
        }

    def to_json(self) -> str:
        """稳定序列化，相同描述得到逐字节相同的输出。"""
        return json.dumps(self.to_dict(), ensure_ascii=False, sort_keys=True, separators=(",", ":"))


@dataclass(slots=True, frozen=True)
class BuildOutcome:
    """构建执行结果；output_directory 仅在 succeeded 时有效。"""
    succeeded: bool
    output_directory: Path | None = None
    diagnostic: str | None = None
    error_kind: ErrorKind | None = None


@dataclass(slots=True, frozen=True)
class PublishedFile:
    """单个已上传文件的访问信息。"""
    path: str
    url: str
    transaction_id: str
    content_type: str
    confirmed: bool


@dataclass(slots=True, frozen=True)
class PublicationRecord:
    """内容发布结果；per_file_urls 仅在存在待确认文件时给出。"""
    content_id: str
    resolvable_url: str
    per_file_urls: tuple[PublishedFile, ...] | None = None
    manifest: dict[str, Any] | None = None

    @property
    def partial(self) -> bool:
        return self.per_file_urls is not None


@dataclass(slots=True, frozen=True)
class LedgerRegistration:
    """链上登记结果，失败不影响已完成的发布。"""
    succeeded: bool
    transaction_signature: str | None = None
    reason: str | None = None


@dataclass(slots=True)
class DeploymentRequest:
    """一次部署请求的输入。"""
    repository_url: str
    storage_credential: bytes | None
    ledger_credential: bytes | None = None
    label: str | None = None
    extra_tags: list[tuple[str, str]] = field(default_factory=list)
    storage_credential_filename: str = "wallet.json"


@dataclass(slots=True)
class PipelineResult:
    """流水线聚合结果，返回给调用方。"""
    success: bool
    stage: PipelineStage
    failed_stage: PipelineStage | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None
    project: ProjectDescriptor | None = None
    publication: PublicationRecord | None = None
    registration: LedgerRegistration | None = None
    stage_history: list[PipelineStage] = field(default_factory=list)

    @property
    def partial_publication(self) -> bool:
        return self.publication is not None and self.publication.partial

    def to_payload(self) -> dict[str, Any]:
        """转换为接口层使用的字典结构。"""
        payload: dict[str, Any] = {
            "success": self.success,
            "stage_history": [stage.value for stage in self.stage_history],
        }
        if self.project is not None:
            payload["project"] = self.project.to_dict()
        if not self.success:
            payload["error_kind"] = self.error_kind.value if self.error_kind else None
            payload["message"] = self.message
            payload["failed_stage"] = self.failed_stage.value if self.failed_stage else None
            return payload

        publication = self.publication
        if publication is not None:
            payload["content_id"] = publication.content_id
            payload["resolvable_url"] = publication.resolvable_url
            payload["partial_publication"] = publication.partial
            payload["per_file_urls"] = (
                [
                    {"path": item.path, "url": item.url, "confirmed": item.confirmed}
                    for item in publication.per_file_urls
                ]
                if publication.per_file_urls is not None
                else None
            )
        if self.registration is not None:
            payload["registration"] = {
                "succeeded": self.registration.succeeded,
                "transaction_signature": self.registration.transaction_signature,
                "reason": self.registration.reason,
            }
        return payload
