"""外部进程执行器：以参数列表启动命令，同步等待并捕获输出。"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CommandResult:
    """外部命令执行结果。"""
    argv: tuple[str, ...]
    cwd: Path
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def describe(self) -> str:
        """返回包含退出码与原始输出的诊断文本。"""
        command = " ".join(self.argv)
        if self.timed_out:
            head = f"command `{command}` timed out"
        else:
            head = f"command `{command}` exited with status {self.exit_code}"
        return f"{head}\nstderr:\n{self.stderr}\nstdout:\n{self.stdout}"


def _decode(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class CommandRunner:
    """同步执行外部命令；不经过 shell，不做重试。"""

    def __init__(self, base_env: Mapping[str, str] | None = None) -> None:
        self._base_env = dict(base_env or {})

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        timeout_seconds: float | None = None,
        env: Mapping[str, str] | None = None,
        op: str | None = None,
    ) -> CommandResult:
        """执行命令并返回退出码、stdout 与 stderr。"""
        if not argv:
            raise ValueError("command cannot be empty")
        command_env = {**os.environ, **self._base_env, **(env or {})}
        op_name = op or argv[0]
        started = time.perf_counter()
        timed_out = False
        try:
            completed = subprocess.run(
                list(argv),
                cwd=str(cwd),
                env=command_env,
                capture_output=True,
                text=True,
                timeout=timeout_seconds,
                check=False,
            )
            exit_code = completed.returncode
            stdout = completed.stdout or ""
            stderr = completed.stderr or ""
        except subprocess.TimeoutExpired as exc:
            exit_code = -1
            stdout = _decode(exc.stdout)
            stderr = _decode(exc.stderr)
            timed_out = True
        except OSError as exc:
            # 可执行文件缺失或无权限时按 shell 约定返回 127。
            exit_code = 127
            stdout = ""
            stderr = str(exc)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)

        result = CommandResult(
            argv=tuple(argv),
            cwd=cwd,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_ms=duration_ms,
            timed_out=timed_out,
        )
        extra = {
            "event": "process.completed" if result.ok else "process.failed",
            "external_service": "process",
            "op": op_name,
            "duration_ms": duration_ms,
            "payload_preview": {"argv": list(argv), "exit_code": exit_code, "timed_out": timed_out},
        }
        if result.ok:
            logger.info("external command completed", extra=extra)
        else:
            logger.warning("external command failed", extra={**extra, "error": stderr[-2000:]})
        return result
