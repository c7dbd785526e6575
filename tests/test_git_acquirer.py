"""仓库获取测试：clone 参数构造与失败诊断透传。"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

import pytest

from deployer.domain.errors import AcquisitionError, InputValidationError
from deployer.infra.process.runner import CommandResult
from deployer.infra.storage.workspace import Workspace
from deployer.infra.vcs.git import GitRepositoryAcquirer, split_remote_ref


class _CloneRunnerStub:
    """测试用 clone 执行桩。"""
    def __init__(self, *, exit_code: int = 0, stderr: str = "") -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        self.calls: list[tuple[list[str], Mapping[str, str] | None]] = []

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        timeout_seconds: float | None = None,
        env: Mapping[str, str] | None = None,
        op: str | None = None,
    ) -> CommandResult:
        self.calls.append((list(argv), env))
        if self.exit_code == 0:
            Path(argv[-1]).mkdir(parents=True)
        return CommandResult(
            argv=tuple(argv), cwd=cwd, exit_code=self.exit_code, stdout="", stderr=self.stderr, duration_ms=3.0
        )


def test_split_remote_ref_reads_fragment() -> None:
    assert split_remote_ref("https://example.com/org/site.git#gh-pages") == (
        "https://example.com/org/site.git",
        "gh-pages",
    )
    assert split_remote_ref(" https://example.com/org/site.git ") == ("https://example.com/org/site.git", None)


def test_acquire_clones_into_source_dir(tmp_path: Path) -> None:
    runner = _CloneRunnerStub()
    acquirer = GitRepositoryAcquirer(runner, clone_depth=1)  # type: ignore[arg-type]
    workspace = Workspace(run_id="run-1", root=tmp_path)

    source = acquirer.acquire("https://example.com/org/site.git#main", workspace)

    assert source == tmp_path / "source"
    argv, env = runner.calls[0]
    assert argv == [
        "git",
        "clone",
        "--quiet",
        "--depth",
        "1",
        "--branch",
        "main",
        "--",
        "https://example.com/org/site.git",
        str(tmp_path / "source"),
    ]
    assert env == {"GIT_TERMINAL_PROMPT": "0"}


def test_clone_failure_carries_exit_status_and_stderr(tmp_path: Path) -> None:
    """clone 失败时错误信息包含退出码与原始 stderr。"""
    runner = _CloneRunnerStub(exit_code=128, stderr="fatal: repository not found")
    acquirer = GitRepositoryAcquirer(runner)  # type: ignore[arg-type]

    with pytest.raises(AcquisitionError) as excinfo:
        acquirer.acquire("https://example.com/missing.git", Workspace(run_id="run-2", root=tmp_path))

    assert "exited with status 128" in str(excinfo.value)
    assert "fatal: repository not found" in str(excinfo.value)


def test_option_like_reference_is_rejected(tmp_path: Path) -> None:
    acquirer = GitRepositoryAcquirer(_CloneRunnerStub())  # type: ignore[arg-type]

    with pytest.raises(InputValidationError):
        acquirer.build_clone_command("--upload-pack=touch /tmp/x", tmp_path / "source")
