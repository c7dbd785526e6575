"""部署流水线编排：获取 → 分析 → 构建 → 发布 → 登记，统一失败与回收语义。"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

from deployer.application.builder import BuildExecutor
from deployer.application.publisher import ContentPublisher
from deployer.domain.analyzer import ProjectAnalyzer
from deployer.domain.enums import ErrorKind, PipelineStage
from deployer.domain.errors import DeploymentError, InputValidationError, error_for_kind
from deployer.domain.models import DeploymentRequest, PipelineResult, ProjectDescriptor
from deployer.infra.logging.context import bind_log_context
from deployer.infra.solana.registrar import SolanaLedgerRegistrar
from deployer.infra.storage.workspace import Workspace, WorkspaceManager
from deployer.infra.vcs.git import GitRepositoryAcquirer

logger = logging.getLogger(__name__)


class DeploymentPipeline:
    """单次部署流水线；每次 run 独占一个工作区，返回时工作区已回收。"""
    def __init__(
        self,
        *,
        workspace_manager: WorkspaceManager,
        acquirer: GitRepositoryAcquirer,
        analyzer: ProjectAnalyzer,
        builder: BuildExecutor,
        publisher: ContentPublisher,
        registrar: SolanaLedgerRegistrar | None = None,
        app_name: str = "Solynx",
    ) -> None:
        self._workspace_manager = workspace_manager
        self._acquirer = acquirer
        self._analyzer = analyzer
        self._builder = builder
        self._publisher = publisher
        self._registrar = registrar
        self._app_name = app_name

    @staticmethod
    def validate(request: DeploymentRequest) -> None:
        """校验必填输入，失败时不触发任何外部调用。"""
        if not request.repository_url or not request.repository_url.strip():
            raise InputValidationError("repository url is required")
        if not request.storage_credential:
            raise InputValidationError("storage credential is required")
        if request.label and not request.label.isascii():
            raise InputValidationError(f"label must be ASCII: {request.label!r}")
        for name, value in request.extra_tags:
            if not name or not name.strip():
                raise InputValidationError(f"tag name must not be empty (value={value!r})")
            # 存储网络的标签按 ASCII 编码
            if not (name.isascii() and value.isascii()):
                raise InputValidationError(f"tag {name!r} must be ASCII")

    def deployment_tags(self, request: DeploymentRequest, descriptor: ProjectDescriptor) -> list[tuple[str, str]]:
        tags = [
            ("App-Name", self._app_name),
            ("Deploy-Platform", self._app_name),
            ("Project-Type", descriptor.kind.value),
        ]
        if request.label:
            tags.append(("Domain", request.label))
        tags.extend(request.extra_tags)
        return tags

    def run(self, request: DeploymentRequest) -> PipelineResult:
        result = PipelineResult(success=False, stage=PipelineStage.init, stage_history=[PipelineStage.init])
        try:
            self.validate(request)
        except InputValidationError as exc:
            return self._fail(result, exc)

        started = time.perf_counter()
        with self._workspace_manager.scoped() as workspace, bind_log_context(run_id=workspace.run_id):
            try:
                self._execute(request, workspace, result)
            except DeploymentError as exc:
                self._fail(result, exc)
            except Exception as exc:
                logger.exception(
                    "pipeline crashed",
                    extra={
                        "event": "pipeline.crashed",
                        "stage": result.stage.value,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
                raise
            logger.info(
                "pipeline finished",
                extra={
                    "event": "pipeline.succeeded" if result.success else "pipeline.failed",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "payload_preview": {
                        "failed_stage": result.failed_stage.value if result.failed_stage else None,
                        "partial_publication": result.partial_publication,
                    },
                },
            )
        return result

    def _execute(self, request: DeploymentRequest, workspace: Workspace, result: PipelineResult) -> None:
        try:
            credential_path = self._workspace_manager.store_credential(
                workspace, request.storage_credential_filename, request.storage_credential or b""
            )
        except ValueError as exc:
            raise InputValidationError(str(exc)) from exc

        with self._stage(result, PipelineStage.acquiring):
            source_root = self._acquirer.acquire(request.repository_url.strip(), workspace)

        with self._stage(result, PipelineStage.analyzing):
            descriptor = self._analyzer.analyze(source_root)
            result.project = descriptor

        with self._stage(result, PipelineStage.building):
            outcome = self._builder.build(
                source_root,
                descriptor,
                output_dir=self._workspace_manager.allocate_output_dir(workspace),
            )
            if not outcome.succeeded or outcome.output_directory is None:
                raise error_for_kind(
                    outcome.error_kind or ErrorKind.build_command_failed,
                    outcome.diagnostic or "build failed",
                )

        with self._stage(result, PipelineStage.publishing):
            result.publication = self._publisher.publish(
                outcome.output_directory,
                credential_path,
                tags=self.deployment_tags(request, descriptor),
            )

        if request.ledger_credential and self._registrar is not None:
            with self._stage(result, PipelineStage.registering):
                result.registration = self._registrar.register(
                    result.publication.content_id,
                    request.label or "",
                    request.ledger_credential,
                )

        result.success = True
        self._enter(result, PipelineStage.done)

    @contextmanager
    def _stage(self, result: PipelineResult, stage: PipelineStage) -> Iterator[None]:
        """进入阶段并在作用域内把阶段名绑定到日志上下文。"""
        self._enter(result, stage)
        with bind_log_context(stage=stage.value):
            yield

    @staticmethod
    def _enter(result: PipelineResult, stage: PipelineStage) -> None:
        result.stage = stage
        result.stage_history.append(stage)
        logger.info("pipeline stage entered", extra={"event": "pipeline.stage.entered", "stage": stage.value})

    @staticmethod
    def _fail(result: PipelineResult, exc: DeploymentError) -> PipelineResult:
        result.success = False
        result.failed_stage = result.stage
        result.error_kind = exc.error_kind
        result.message = str(exc)
        result.stage = PipelineStage.failed
        result.stage_history.append(PipelineStage.failed)
        logger.warning(
            "pipeline stage failed",
            extra={
                "event": "pipeline.stage.failed",
                "stage": result.failed_stage.value,
                "error_type": exc.error_kind.value,
                "error": str(exc),
            },
        )
        return result
