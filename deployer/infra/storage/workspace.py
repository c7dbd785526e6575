"""工作区管理器：为每次部署创建独立目录，并保证在任何退出路径上回收。"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

FILENAME_SAFE_RE = re.compile(r"[^a-zA-Z0-9._-]+")

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Workspace:
    """单次运行独占的工作区目录。"""
    run_id: str
    root: Path

    @property
    def source_dir(self) -> Path:
        return self.root / "source"

    @property
    def credentials_dir(self) -> Path:
        return self.root / "credentials"


class WorkspaceManager:
    """工作区文件管理器，负责目录创建、凭据落盘与回收。"""
    def __init__(
        self,
        base_dir: Path | None,
        *,
        prefix: str = "solynx-",
        retain: bool = False,
        max_credential_file_size_bytes: int = 1024 * 1024,
    ) -> None:
        self._base_dir = base_dir
        self._prefix = prefix
        self._retain = retain
        self._max_credential_file_size_bytes = max_credential_file_size_bytes

    def acquire_workspace(self) -> Workspace:
        """创建名称唯一的工作区目录。"""
        run_id = uuid4().hex
        if self._base_dir is not None:
            self._base_dir.mkdir(parents=True, exist_ok=True)
        # mkdtemp 以随机后缀保证并发运行互不冲突。
        root = Path(tempfile.mkdtemp(prefix=f"{self._prefix}{run_id[:8]}-", dir=self._base_dir))
        workspace = Workspace(run_id=run_id, root=root)
        logger.info(
            "workspace acquired",
            extra={"event": "workspace.acquired", "run_id": run_id, "payload_preview": {"root": str(root)}},
        )
        return workspace

    def release(self, workspace: Workspace) -> None:
        """递归删除工作区；删除失败只记录日志，不向上抛出。"""
        if self._retain:
            logger.info(
                "workspace retained for debugging",
                extra={"event": "workspace.retained", "payload_preview": {"root": str(workspace.root)}},
            )
            return
        try:
            shutil.rmtree(workspace.root)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning(
                "workspace release failed",
                extra={
                    "event": "workspace.release.failed",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "payload_preview": {"root": str(workspace.root)},
                },
            )
            return
        logger.info("workspace released", extra={"event": "workspace.released"})

    @contextmanager
    def scoped(self) -> Iterator[Workspace]:
        """作用域内持有工作区，退出时恰好释放一次。"""
        workspace = self.acquire_workspace()
        try:
            yield workspace
        finally:
            self.release(workspace)

    def sanitize_filename(self, filename: str) -> str:
        """清洗上传文件名，移除潜在非法字符。"""
        clean_name = Path(filename).name.strip()
        # 仅保留白名单字符，防止路径穿越或奇异文件名导致写入风险。
        clean_name = FILENAME_SAFE_RE.sub("_", clean_name)
        return clean_name or "credential.json"

    def store_credential(self, workspace: Workspace, filename: str, content: bytes) -> Path:
        """将上传的凭据写入工作区，随工作区一起销毁。"""
        if len(content) == 0:
            raise ValueError(f"empty credential is not allowed: {filename}")
        if len(content) > self._max_credential_file_size_bytes:
            raise ValueError(f"credential exceeds size limit: {filename}")
        workspace.credentials_dir.mkdir(parents=True, exist_ok=True)
        target = workspace.credentials_dir / self.sanitize_filename(filename)
        target.write_bytes(content)
        os.chmod(target, 0o600)
        return target

    def allocate_output_dir(self, workspace: Workspace) -> Path:
        """分配一个尚未使用的输出目录。"""
        candidate = workspace.root / "site"
        idx = 1
        while candidate.exists():
            candidate = workspace.root / f"site-{idx}"
            idx += 1
        candidate.mkdir(parents=True)
        return candidate
