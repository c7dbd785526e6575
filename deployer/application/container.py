"""依赖容器模块，负责单例化创建工作区、外部客户端与流水线对象。"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from deployer.application.builder import BuildExecutor
from deployer.application.pipeline import DeploymentPipeline
from deployer.application.publisher import ContentPublisher
from deployer.config import get_settings
from deployer.domain.analyzer import ProjectAnalyzer
from deployer.infra.arweave.gateway import ArweaveGateway
from deployer.infra.arweave.uploader import ArweaveUploader
from deployer.infra.process.runner import CommandRunner
from deployer.infra.solana.registrar import SolanaLedgerRegistrar
from deployer.infra.storage.workspace import WorkspaceManager
from deployer.infra.vcs.git import GitRepositoryAcquirer

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_workspace_manager() -> WorkspaceManager:
    """获取工作区管理器单例。"""
    settings = get_settings()
    return WorkspaceManager(
        settings.workspace_root,
        prefix=settings.workspace_prefix,
        retain=settings.retain_workspaces,
        max_credential_file_size_bytes=settings.max_credential_file_size_bytes,
    )


@lru_cache(maxsize=1)
def get_command_runner() -> CommandRunner:
    return CommandRunner()


@lru_cache(maxsize=1)
def get_repository_acquirer() -> GitRepositoryAcquirer:
    """获取 git 仓库获取器单例。"""
    settings = get_settings()
    return GitRepositoryAcquirer(
        get_command_runner(),
        git_executable=settings.git_executable,
        clone_depth=settings.git_clone_depth,
        timeout_seconds=settings.acquire_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_build_executor() -> BuildExecutor:
    """获取构建执行器单例。"""
    settings = get_settings()
    return BuildExecutor(
        get_command_runner(),
        install_command=settings.install_command,
        install_timeout_seconds=settings.install_timeout_seconds,
        build_timeout_seconds=settings.build_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_arweave_gateway() -> ArweaveGateway:
    """获取 Arweave 网关客户端单例。"""
    settings = get_settings()
    return ArweaveGateway(settings.arweave_gateway_url, timeout_seconds=settings.arweave_request_timeout_seconds)


def _load_uploader(key_path: Path) -> ArweaveUploader:
    settings = get_settings()
    return ArweaveUploader.from_key_file(
        key_path,
        gateway=get_arweave_gateway(),
        chunked_threshold_bytes=settings.arweave_chunked_upload_threshold_bytes,
    )


@lru_cache(maxsize=1)
def get_content_publisher() -> ContentPublisher:
    """获取内容发布器单例。"""
    settings = get_settings()
    return ContentPublisher(
        get_arweave_gateway(),
        uploader_factory=_load_uploader,
        confirmation_attempts=settings.arweave_confirmation_attempts,
        confirmation_interval_seconds=settings.arweave_confirmation_interval_seconds,
    )


@lru_cache(maxsize=1)
def get_ledger_registrar() -> SolanaLedgerRegistrar:
    """获取链上登记器单例。"""
    settings = get_settings()
    return SolanaLedgerRegistrar(
        settings.solana_rpc_url,
        settings.solana_program_id,
        commitment=settings.solana_commitment,
    )


@lru_cache(maxsize=1)
def get_deployment_pipeline() -> DeploymentPipeline:
    """获取部署流水线单例；流水线本身无状态，可被并发运行共享。"""
    settings = get_settings()
    return DeploymentPipeline(
        workspace_manager=get_workspace_manager(),
        acquirer=get_repository_acquirer(),
        analyzer=ProjectAnalyzer(),
        builder=get_build_executor(),
        publisher=get_content_publisher(),
        registrar=get_ledger_registrar(),
        app_name=settings.deploy_app_name,
    )


def shutdown_container_resources() -> None:
    """关闭共享客户端并清理依赖容器缓存。"""
    if get_arweave_gateway.cache_info().currsize:
        try:
            get_arweave_gateway().close()
        except Exception as exc:
            logger.warning(
                "arweave gateway close failed",
                extra={"event": "container.shutdown.failed", "error_type": type(exc).__name__, "error": str(exc)},
            )

    # 按依赖顺序清理缓存，确保后续请求可重新构建全新实例。
    for provider in (
        get_deployment_pipeline,
        get_ledger_registrar,
        get_content_publisher,
        get_arweave_gateway,
        get_build_executor,
        get_repository_acquirer,
        get_command_runner,
        get_workspace_manager,
    ):
        provider.cache_clear()
