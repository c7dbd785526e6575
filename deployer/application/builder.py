"""构建执行器：按项目类型分派构建配方，产出仅含可发布静态文件的输出目录。"""

from __future__ import annotations

import logging
import shlex
import shutil
from collections.abc import Callable, Sequence
from pathlib import Path

from deployer.application.next_config import ensure_static_export
from deployer.domain.enums import ProjectKind
from deployer.domain.errors import BuildCommandFailed, BuildOutputMissing, DeploymentError, UnsupportedProjectKind
from deployer.domain.models import BuildOutcome, ProjectDescriptor
from deployer.infra.process.runner import CommandRunner

logger = logging.getLogger(__name__)

# 所有拷贝均排除依赖缓存与版本库元数据（按相对路径子串匹配）。
BASE_EXCLUDES: tuple[str, ...] = ("node_modules", ".git")
STATIC_EXCLUDES: tuple[str, ...] = BASE_EXCLUDES + (".github", ".gitlab", ".circleci")

CONVENTIONAL_OUTPUT_DIRS: dict[ProjectKind, str] = {
    ProjectKind.next: "out",
    ProjectKind.react: "build",
    ProjectKind.vue: "dist",
}

BUILD_ENV = {"CI": "true", "NEXT_TELEMETRY_DISABLED": "1"}

Recipe = Callable[[Path, ProjectDescriptor, Path], None]


def copy_filtered(source: Path, destination: Path, excluded: Sequence[str]) -> None:
    """复制目录树，跳过符号链接以及相对路径包含排除子串的条目。"""
    def _ignore(directory: str, names: list[str]) -> set[str]:
        base = Path(directory)
        ignored: set[str] = set()
        for name in names:
            entry = base / name
            relative = entry.relative_to(source).as_posix()
            if entry.is_symlink() or any(marker in relative for marker in excluded):
                ignored.add(name)
        return ignored

    shutil.copytree(source, destination, ignore=_ignore, dirs_exist_ok=True)


class BuildExecutor:
    """按 ProjectKind 选择构建配方；外部命令失败不重试。"""
    def __init__(
        self,
        runner: CommandRunner,
        *,
        install_command: str = "npm install",
        install_timeout_seconds: float | None = None,
        build_timeout_seconds: float | None = None,
    ) -> None:
        self._runner = runner
        self._install_argv = shlex.split(install_command)
        self._install_timeout_seconds = install_timeout_seconds
        self._build_timeout_seconds = build_timeout_seconds
        self._recipes: dict[ProjectKind, Recipe] = {
            ProjectKind.next: self._build_next,
            ProjectKind.react: self._build_bundled,
            ProjectKind.vue: self._build_bundled,
            ProjectKind.static: self._copy_static,
            ProjectKind.unrecognized: self._reject_unrecognized,
        }

    def build(
        self,
        source_root: Path,
        descriptor: ProjectDescriptor,
        *,
        output_dir: Path | None = None,
    ) -> BuildOutcome:
        """执行构建配方，失败时返回带诊断信息的 BuildOutcome。"""
        target = output_dir or self._default_output_dir(source_root)
        if target == source_root or source_root in target.parents:
            raise ValueError("output directory must live outside the source tree")
        recipe = self._recipes[descriptor.kind]
        failure: DeploymentError
        try:
            recipe(source_root, descriptor, target)
        except DeploymentError as exc:
            failure = exc
        except (OSError, UnicodeError) as exc:
            # 读写项目文件或复制产物出错同样归为构建失败
            failure = BuildCommandFailed(f"build step failed: {type(exc).__name__}: {exc}")
        else:
            logger.info("build succeeded", extra={"event": "build.succeeded", "op": descriptor.kind.value})
            return BuildOutcome(succeeded=True, output_directory=target)
        logger.warning(
            "build failed",
            extra={
                "event": "build.failed",
                "op": descriptor.kind.value,
                "error_type": failure.error_kind.value,
                "error": str(failure),
            },
        )
        return BuildOutcome(succeeded=False, diagnostic=str(failure), error_kind=failure.error_kind)

    @staticmethod
    def _default_output_dir(source_root: Path) -> Path:
        candidate = source_root.parent / "site"
        idx = 1
        while candidate.exists():
            candidate = source_root.parent / f"site-{idx}"
            idx += 1
        return candidate

    def _build_next(self, source_root: Path, descriptor: ProjectDescriptor, target: Path) -> None:
        self._install(source_root, descriptor)
        # 构建前必须声明静态导出，否则 next build 不会生成 out/。
        ensure_static_export(source_root)
        self._run_build(source_root, descriptor)
        self._collect_output(source_root, descriptor, target)

    def _build_bundled(self, source_root: Path, descriptor: ProjectDescriptor, target: Path) -> None:
        self._install(source_root, descriptor)
        self._run_build(source_root, descriptor)
        self._collect_output(source_root, descriptor, target)

    def _copy_static(self, source_root: Path, descriptor: ProjectDescriptor, target: Path) -> None:
        copy_filtered(source_root, target, STATIC_EXCLUDES)

    def _reject_unrecognized(self, source_root: Path, descriptor: ProjectDescriptor, target: Path) -> None:
        raise UnsupportedProjectKind(
            "unable to determine project type; expected a Next.js, React, Vue or static HTML project"
        )

    def _install(self, source_root: Path, descriptor: ProjectDescriptor) -> None:
        if not descriptor.has_dependency_manifest:
            return
        result = self._runner.run(
            self._install_argv,
            cwd=source_root,
            timeout_seconds=self._install_timeout_seconds,
            env=BUILD_ENV,
            op="build.install",
        )
        if not result.ok:
            raise BuildCommandFailed(f"dependency install failed: {result.describe()}")

    def _run_build(self, source_root: Path, descriptor: ProjectDescriptor) -> None:
        if not descriptor.inferred_build_command:
            raise BuildCommandFailed(f"no build command inferred for {descriptor.kind.value} project")
        result = self._runner.run(
            shlex.split(descriptor.inferred_build_command),
            cwd=source_root,
            timeout_seconds=self._build_timeout_seconds,
            env=BUILD_ENV,
            op="build.compile",
        )
        if not result.ok:
            raise BuildCommandFailed(f"build command failed: {result.describe()}")

    def _collect_output(self, source_root: Path, descriptor: ProjectDescriptor, target: Path) -> None:
        dirname = CONVENTIONAL_OUTPUT_DIRS[descriptor.kind]
        built = source_root / dirname
        if not built.is_dir():
            raise BuildOutputMissing(
                f"{descriptor.kind.value} build completed but no {dirname}/ directory was found"
            )
        copy_filtered(built, target, BASE_EXCLUDES)
