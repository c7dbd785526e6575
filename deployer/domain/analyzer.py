"""项目分析器：根据依赖清单与根目录文件判断项目类型与构建命令。"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from deployer.domain.enums import ProjectKind
from deployer.domain.models import ProjectDescriptor

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "package.json"
MARKUP_EXTENSIONS = {".html", ".htm"}
MANIFEST_BUILD_COMMAND = "npm run build"

# 按优先级排列：next 构建于 react 之上，两者同时出现时判定为 next。
FRAMEWORK_MARKERS: tuple[tuple[ProjectKind, str], ...] = (
    (ProjectKind.next, "next"),
    (ProjectKind.react, "react"),
    (ProjectKind.vue, "vue"),
)

DEFAULT_BUILD_COMMANDS: dict[ProjectKind, str] = {
    ProjectKind.next: "npx --no-install next build",
    ProjectKind.react: "npx --no-install react-scripts build",
    ProjectKind.vue: "npx --no-install vite build",
}
VUE_CLI_BUILD_COMMAND = "npx --no-install vue-cli-service build"


def _as_mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


class ProjectAnalyzer:
    """纯分类函数：无副作用，相同源码树得到相同结果。"""

    def analyze(self, source_root: Path) -> ProjectDescriptor:
        manifest_path = source_root / MANIFEST_FILENAME
        if manifest_path.is_file():
            return self._analyze_manifest(manifest_path)
        if self._has_markup_document(source_root):
            return ProjectDescriptor(kind=ProjectKind.static, has_dependency_manifest=False)
        return ProjectDescriptor(kind=ProjectKind.unrecognized, has_dependency_manifest=False)

    def _analyze_manifest(self, manifest_path: Path) -> ProjectDescriptor:
        try:
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning(
                "dependency manifest unreadable",
                extra={"event": "analyzer.manifest.invalid", "error_type": type(exc).__name__, "error": str(exc)},
            )
            return ProjectDescriptor(kind=ProjectKind.unrecognized, has_dependency_manifest=True)
        manifest = _as_mapping(manifest)

        dependencies = {
            **_as_mapping(manifest.get("dependencies")),
            **_as_mapping(manifest.get("devDependencies")),
        }
        scripts = _as_mapping(manifest.get("scripts"))

        for kind, marker in FRAMEWORK_MARKERS:
            if marker not in dependencies:
                continue
            version = dependencies[marker]
            return ProjectDescriptor(
                kind=kind,
                has_dependency_manifest=True,
                inferred_build_command=self._build_command(kind, scripts, dependencies),
                framework_version=str(version) if version is not None else None,
            )
        return ProjectDescriptor(kind=ProjectKind.unrecognized, has_dependency_manifest=True)

    @staticmethod
    def _build_command(kind: ProjectKind, scripts: dict[str, Any], dependencies: dict[str, Any]) -> str:
        """清单声明了 build 脚本则使用之，否则使用框架默认命令。"""
        if scripts.get("build"):
            return MANIFEST_BUILD_COMMAND
        if kind is ProjectKind.vue and "@vue/cli-service" in dependencies:
            return VUE_CLI_BUILD_COMMAND
        return DEFAULT_BUILD_COMMANDS[kind]

    @staticmethod
    def _has_markup_document(source_root: Path) -> bool:
        try:
            entries = list(source_root.iterdir())
        except OSError:
            return False
        return any(entry.is_file() and entry.suffix.lower() in MARKUP_EXTENSIONS for entry in entries)
