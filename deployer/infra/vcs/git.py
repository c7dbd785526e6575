"""仓库获取：调用 git clone 将远端仓库拉取到工作区。"""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import urldefrag

from deployer.domain.errors import AcquisitionError, InputValidationError
from deployer.infra.process.runner import CommandRunner
from deployer.infra.storage.workspace import Workspace

logger = logging.getLogger(__name__)


def split_remote_ref(remote_ref: str) -> tuple[str, str | None]:
    """拆分 `url#ref` 形式的引用，返回 (url, 分支或标签)。"""
    url, fragment = urldefrag(remote_ref.strip())
    return url, fragment or None


class GitRepositoryAcquirer:
    """基于 git 命令行的仓库获取器，失败不重试。"""
    def __init__(
        self,
        runner: CommandRunner,
        *,
        git_executable: str = "git",
        clone_depth: int = 1,
        timeout_seconds: float | None = None,
    ) -> None:
        self._runner = runner
        self._git_executable = git_executable
        self._clone_depth = clone_depth
        self._timeout_seconds = timeout_seconds

    def build_clone_command(self, remote_ref: str, target: Path) -> list[str]:
        url, ref = split_remote_ref(remote_ref)
        if not url or url.startswith("-"):
            raise InputValidationError(f"invalid repository reference: {remote_ref!r}")
        argv = [self._git_executable, "clone", "--quiet"]
        if self._clone_depth > 0:
            argv += ["--depth", str(self._clone_depth)]
        if ref:
            argv += ["--branch", ref]
        # `--` 之后的参数不会被 git 当作选项解析。
        argv += ["--", url, str(target)]
        return argv

    def acquire(self, remote_ref: str, workspace: Workspace) -> Path:
        """克隆仓库到 workspace/source 并返回源码根目录。"""
        target = workspace.source_dir
        argv = self.build_clone_command(remote_ref, target)
        result = self._runner.run(
            argv,
            cwd=workspace.root,
            timeout_seconds=self._timeout_seconds,
            env={"GIT_TERMINAL_PROMPT": "0"},
            op="git.clone",
        )
        if not result.ok:
            raise AcquisitionError(f"failed to clone repository: {result.describe()}")
        if not target.is_dir():
            raise AcquisitionError(f"git clone reported success but {target.name}/ is missing")
        logger.info("repository acquired", extra={"event": "repository.acquired", "op": "git.clone"})
        return target
