"""全局配置加载模块：从环境变量构建运行参数并提供缓存访问。"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _csv_to_list(value: str) -> list[str]:
    """将逗号分隔字符串转换为去空白列表。"""
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """系统运行配置对象，从环境变量读取并提供类型化访问。"""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Solynx Deployer"
    api_prefix: str = "/api/v1"
    environment: str = "dev"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_allowed_origins: str = ""
    cors_allowed_methods: str = "GET,POST,OPTIONS"
    cors_allowed_headers: str = "Content-Type,X-Request-Id"
    cors_allow_credentials: bool = False

    # 为空时使用系统临时目录，每次运行在其下创建独立工作区。
    workspace_root: Path | None = None
    workspace_prefix: str = "solynx-"
    retain_workspaces: bool = False
    max_credential_file_size_bytes: int = 1024 * 1024
    max_concurrent_runs: int = 4

    git_executable: str = "git"
    git_clone_depth: int = 1
    install_command: str = "npm install"
    acquire_timeout_seconds: int = 5 * 60
    install_timeout_seconds: int = 15 * 60
    build_timeout_seconds: int = 15 * 60

    arweave_gateway_url: str = "https://arweave.net"
    arweave_request_timeout_seconds: int = 30
    arweave_confirmation_attempts: int = 1
    arweave_confirmation_interval_seconds: float = 2.0
    arweave_chunked_upload_threshold_bytes: int = 10 * 1024 * 1024
    deploy_app_name: str = "Solynx"

    solana_rpc_url: str = "https://api.devnet.solana.com"
    solana_program_id: str | None = None
    solana_commitment: str = "confirmed"

    log_dir: Path = Field(default=Path("./logs"))
    log_level: str = "INFO"
    log_debug_modules: str = ""
    log_debug_run_ids: str = ""
    log_redaction_mode: str = "standard"
    log_payload_preview_chars: int = 2000
    log_max_bytes: int = 20 * 1024 * 1024
    log_backup_count: int = 10

    def cors_allowed_origins_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_origins)

    def cors_allowed_methods_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_methods)

    def cors_allowed_headers_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_headers)

    def log_debug_modules_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_modules)

    def log_debug_run_ids_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_run_ids)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """构建并缓存 Settings，同时确保工作区根目录存在。"""
    settings = Settings()
    if settings.workspace_root is not None:
        # 相对路径统一按当前工作目录解析，避免不同启动方式下语义漂移。
        if not settings.workspace_root.is_absolute():
            settings.workspace_root = (Path.cwd() / settings.workspace_root).resolve()
        settings.workspace_root.mkdir(parents=True, exist_ok=True)
    return settings
